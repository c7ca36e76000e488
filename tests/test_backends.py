"""Tests for backends — the LanguageModel contract and the OpenAI binding."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

import streamrun.core.config as config_module
from streamrun.backends.base import (
    BackendEventType,
    FunctionModel,
    GenerateResponse,
    LanguageModel,
)
from streamrun.backends.openai_chat import OpenAIChatModel, to_openai_messages
from streamrun.cancellation import CancellationToken
from streamrun.core.config import reload_config
from streamrun.llm.contracts import (
    FinishReason,
    Message,
    ToolCall,
    ToolResult,
    Usage,
)
from streamrun.tools.base import ToolParam, tool


# ─── Helpers ──────────────────────────────────────────────────


def _chunk(content=None, tool_calls=None, finish_reason=None, usage=None, choices=True):
    choice = SimpleNamespace(
        delta=SimpleNamespace(content=content, tool_calls=tool_calls),
        finish_reason=finish_reason,
    )
    return SimpleNamespace(
        id="chatcmpl-1",
        model="gpt-test",
        created=1700000000,
        usage=usage,
        choices=[choice] if choices else [],
    )


def _tool_delta(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(
        index=index,
        id=call_id,
        function=SimpleNamespace(name=name, arguments=arguments),
    )


def _mock_client(chunks):
    async def _stream():
        for chunk in chunks:
            yield chunk

    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_stream())
    return client


async def _drain(model, messages=None, tools=None):
    return [
        e
        async for e in model.stream(
            tuple(messages or [Message.user("hi")]), tools or [], CancellationToken()
        )
    ]


# ─── FunctionModel ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_function_model_replays_response():
    async def generate(messages, tools, token):
        return GenerateResponse(
            text="calling",
            tool_calls=[ToolCall("c1", "double", {"x": 1})],
            finish_reason="tool_calls",
            usage=Usage(4, 2),
        )

    events = await _drain(FunctionModel(generate, model_id="fn-test"))

    assert [e.type for e in events] == [
        BackendEventType.TEXT_DELTA,
        BackendEventType.TOOL_CALL,
        BackendEventType.FINISH,
    ]
    assert events[-1].finish_reason == FinishReason.TOOL_CALLS
    assert events[-1].usage == Usage(4, 2)
    assert events[-1].response.model_id == "fn-test"


@pytest.mark.asyncio
async def test_function_model_accepts_sync_generate():
    model = FunctionModel(lambda messages, tools, token: GenerateResponse(text="sync"))

    events = await _drain(model)

    assert events[0].text == "sync"
    assert events[-1].finish_reason == FinishReason.STOP


def test_models_satisfy_protocol():
    assert isinstance(FunctionModel(lambda *a: GenerateResponse()), LanguageModel)
    assert isinstance(OpenAIChatModel(client=MagicMock()), LanguageModel)


# ─── Message conversion ───────────────────────────────────────


def test_to_openai_messages():
    call = ToolCall("c1", "double", {"x": 21})
    other = ToolCall("c2", "double", {"x": 1})
    messages = [
        Message.system("be brief"),
        Message.user("double 21 and 1"),
        Message.assistant("", [call, other]),
        Message.tool([ToolResult.success(call, 42), ToolResult.success(other, {"v": 2})]),
        Message.assistant("42 and 2"),
    ]

    converted = to_openai_messages(messages)

    assert converted[0] == {"role": "system", "content": "be brief"}
    assert converted[1] == {"role": "user", "content": "double 21 and 1"}
    assert converted[2]["content"] is None
    assert [tc["id"] for tc in converted[2]["tool_calls"]] == ["c1", "c2"]
    assert json.loads(converted[2]["tool_calls"][0]["function"]["arguments"]) == {"x": 21}
    # One "tool" message per result
    assert converted[3] == {"role": "tool", "tool_call_id": "c1", "content": "42"}
    assert converted[4] == {"role": "tool", "tool_call_id": "c2", "content": '{"v": 2}'}
    assert converted[5] == {"role": "assistant", "content": "42 and 2"}


# ─── OpenAIChatModel ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_openai_streams_text_and_usage():
    client = _mock_client(
        [
            _chunk(content="Hel"),
            _chunk(content="lo", finish_reason="stop"),
            _chunk(usage=SimpleNamespace(prompt_tokens=7, completion_tokens=2), choices=False),
        ]
    )
    model = OpenAIChatModel(model="gpt-test", client=client)

    events = await _drain(model)

    assert [e.text for e in events if e.type == BackendEventType.TEXT_DELTA] == ["Hel", "lo"]
    finish = events[-1]
    assert finish.type == BackendEventType.FINISH
    assert finish.finish_reason == FinishReason.STOP
    assert finish.usage == Usage(7, 2)
    assert finish.response.id == "chatcmpl-1"

    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["stream"] is True
    assert "tools" not in kwargs


@pytest.mark.asyncio
async def test_openai_assembles_streamed_tool_calls():
    @tool(name="double", parameters=[ToolParam("x", "number")])
    async def double(input, token):
        return input["x"] * 2

    client = _mock_client(
        [
            _chunk(tool_calls=[_tool_delta(0, "call_a", "double", '{"x"')]),
            _chunk(tool_calls=[_tool_delta(0, arguments=": 21}")]),
            _chunk(tool_calls=[_tool_delta(1, "call_b", "double", '{"x": 1}')]),
            _chunk(finish_reason="tool_calls"),
        ]
    )
    model = OpenAIChatModel(model="gpt-test", client=client)

    events = await _drain(model, tools=[double])

    starts = [e for e in events if e.type == BackendEventType.TOOL_CALL_START]
    deltas = [e for e in events if e.type == BackendEventType.TOOL_CALL_DELTA]
    calls = [e for e in events if e.type == BackendEventType.TOOL_CALL]

    assert [e.call_id for e in starts] == ["call_a", "call_b"]
    assert "".join(d.args_delta for d in deltas if d.call_id == "call_a") == '{"x": 21}'
    assert [(c.call_id, c.input) for c in calls] == [("call_a", {"x": 21}), ("call_b", {"x": 1})]
    assert events[-1].finish_reason == FinishReason.TOOL_CALLS

    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["tools"][0]["function"]["name"] == "double"


@pytest.mark.asyncio
async def test_openai_passes_unparseable_arguments_through():
    client = _mock_client(
        [
            _chunk(tool_calls=[_tool_delta(0, "call_a", "double", '{"x": ')]),
            _chunk(finish_reason="tool_calls"),
        ]
    )

    events = await _drain(OpenAIChatModel(client=client))

    call = next(e for e in events if e.type == BackendEventType.TOOL_CALL)
    assert call.input == '{"x": '


@pytest.mark.asyncio
async def test_openai_maps_content_filter():
    client = _mock_client([_chunk(content="I", finish_reason="content_filter")])

    events = await _drain(OpenAIChatModel(client=client))

    assert events[-1].finish_reason == FinishReason.CONTENT_FILTER


def test_openai_model_uses_reloaded_config(monkeypatch):
    monkeypatch.setenv("STREAMRUN_LLM_MODEL", "gpt-4.1-mini")
    monkeypatch.setenv("STREAMRUN_LLM_MAX_TOKENS", "256")
    reload_config()

    model = OpenAIChatModel(client=MagicMock())

    assert model.model_id == "gpt-4.1-mini"
    assert model.max_tokens == 256
    assert config_module.config.llm.model == "gpt-4.1-mini"
