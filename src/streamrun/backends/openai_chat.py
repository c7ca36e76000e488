"""
OpenAI Chat Backend — streaming chat completions with tool calling.

Works with any OpenAI-compatible endpoint (set STREAMRUN_LLM_BASE_URL).
Streams text tokens AND tool calls: OpenAI sends tool calls incrementally
(index, id and name first, then argument fragments), so each fragment is
surfaced as a tool_call_delta and the complete call is emitted once the
stream finishes.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, AsyncGenerator

from openai import AsyncOpenAI

from streamrun.backends.base import BackendEvent
from streamrun.core import config as config_module
from streamrun.llm.contracts import (
    Message,
    ResponseMetadata,
    Role,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    Usage,
)

if TYPE_CHECKING:
    from streamrun.cancellation import CancellationToken
    from streamrun.tools.base import Tool

logger = logging.getLogger(__name__)

_FINISH_REASONS = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "content_filter": "content-filter",
}


def to_openai_messages(messages: tuple[Message, ...] | list[Message]) -> list[dict]:
    """Convert history to the OpenAI chat format.

    A tool message holding several results becomes one "tool" message per
    result, as OpenAI requires.
    """
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == Role.TOOL:
            for part in message.content:
                if isinstance(part, ToolResultPart):
                    converted.append(
                        {
                            "role": "tool",
                            "tool_call_id": part.call_id,
                            "content": _stringify(part.output),
                        }
                    )
            continue

        if message.role == Role.ASSISTANT:
            entry: dict[str, Any] = {
                "role": "assistant",
                "content": message.text or None,
            }
            calls = [p for p in message.content if isinstance(p, ToolCallPart)]
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": p.call_id,
                        "type": "function",
                        "function": {
                            "name": p.tool_name,
                            "arguments": json.dumps(p.input),
                        },
                    }
                    for p in calls
                ]
            converted.append(entry)
            continue

        converted.append(
            {
                "role": message.role.value,
                "content": "".join(
                    p.text for p in message.content if isinstance(p, TextPart)
                ),
            }
        )
    return converted


def _stringify(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)


def _parse_arguments(raw: str) -> Any:
    """Parse accumulated argument JSON. Unparseable text is passed through so
    tool validation reports it to the model instead of silently using {}."""
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse tool args: {raw[:100]}")
        return raw


class OpenAIChatModel:
    """Streaming LanguageModel over openai.AsyncOpenAI."""

    def __init__(
        self,
        model: str | None = None,
        client: AsyncOpenAI | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        llm = config_module.config.llm
        self.model_id = model or llm.model
        self.max_tokens = max_tokens if max_tokens is not None else llm.max_tokens
        self.temperature = temperature if temperature is not None else llm.temperature
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            llm = config_module.config.llm
            client_kwargs: dict[str, Any] = {}
            if llm.api_key:
                client_kwargs["api_key"] = llm.api_key
            if llm.base_url:
                client_kwargs["base_url"] = llm.base_url
                logger.info(f"Using custom base_url: {llm.base_url}")
            self._client = AsyncOpenAI(**client_kwargs)
        return self._client

    async def stream(
        self,
        messages: tuple[Message, ...],
        tools: "list[Tool]",
        token: "CancellationToken",
    ) -> AsyncGenerator[BackendEvent, None]:
        kwargs: dict[str, Any] = {
            "model": self.model_id,
            "messages": to_openai_messages(messages),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = [t.to_openai_schema() for t in tools]
            kwargs["tool_choice"] = "auto"

        stream = await self.client.chat.completions.create(**kwargs)

        # index -> {id, name, arguments}
        pending_tool_calls: dict[int, dict[str, str]] = {}
        finish_reason = "other"
        usage = Usage()
        response = ResponseMetadata(model_id=self.model_id)

        async for chunk in stream:
            if chunk.id and not response.id:
                response = ResponseMetadata(
                    id=chunk.id,
                    model_id=chunk.model or self.model_id,
                    timestamp=float(chunk.created or time.time()),
                )
            if chunk.usage is not None:
                usage = Usage(
                    input_tokens=chunk.usage.prompt_tokens or 0,
                    output_tokens=chunk.usage.completion_tokens or 0,
                )
            if not chunk.choices:
                continue

            choice = chunk.choices[0]
            delta = choice.delta

            if delta and delta.content:
                yield BackendEvent.text_delta(delta.content)

            for tc in (delta.tool_calls or []) if delta else []:
                entry = pending_tool_calls.get(tc.index)
                if entry is None:
                    entry = {
                        "id": tc.id or f"call_{tc.index}",
                        "name": (tc.function.name or "") if tc.function else "",
                        "arguments": "",
                    }
                    pending_tool_calls[tc.index] = entry
                    yield BackendEvent.tool_call_start(entry["id"], entry["name"])
                elif tc.function and tc.function.name and not entry["name"]:
                    entry["name"] = tc.function.name

                if tc.function and tc.function.arguments:
                    entry["arguments"] += tc.function.arguments
                    yield BackendEvent.tool_call_delta(
                        entry["id"], tc.function.arguments, entry["name"]
                    )

            if choice.finish_reason:
                finish_reason = _FINISH_REASONS.get(choice.finish_reason, "other")

        for idx in sorted(pending_tool_calls):
            entry = pending_tool_calls[idx]
            yield BackendEvent.tool_call(
                entry["id"], entry["name"], _parse_arguments(entry["arguments"])
            )

        yield BackendEvent.finish(finish_reason, usage, response)

    def __repr__(self) -> str:
        return f"<OpenAIChatModel model={self.model_id}>"
