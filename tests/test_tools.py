"""Tests for tools — parameter validation, the registry and the ToolEngine."""

import asyncio
import threading

import pytest
from pydantic import BaseModel, Field

from streamrun.cancellation import CancellationToken
from streamrun.core.metrics import metrics
from streamrun.errors import (
    FatalToolError,
    InvalidToolInputError,
    ToolExecutionError,
)
from streamrun.llm.contracts import ToolCall
from streamrun.tools import FunctionTool, Tool, ToolEngine, ToolParam, ToolRegistry, tool


class EchoTool(Tool):
    name = "echo"
    description = "Echo the message back."
    parameters = [
        ToolParam("message", "string", "Text to echo"),
        ToolParam("times", "integer", "Repeat count", required=False, default=1),
        ToolParam("style", "string", required=False, enum=["plain", "loud"]),
    ]

    async def execute(self, input, token):
        text = input["message"] * input["times"]
        return text.upper() if input.get("style") == "loud" else text


class RangeTool(Tool):
    name = "range"
    parameters = [ToolParam("low", "number"), ToolParam("high", "number")]

    def validate(self, input):
        if input["low"] > input["high"]:
            raise ValueError("low must not exceed high")
        return input

    async def execute(self, input, token):
        return input["high"] - input["low"]


# ─── Validation ───────────────────────────────────────────────


def test_valid_input_applies_defaults():
    cleaned = EchoTool().validate_input({"message": "hi"})
    assert cleaned == {"message": "hi", "times": 1}


def test_extra_keys_are_dropped():
    cleaned = EchoTool().validate_input({"message": "hi", "bogus": True})
    assert "bogus" not in cleaned


def test_missing_required_parameter():
    with pytest.raises(InvalidToolInputError, match="missing required parameter"):
        EchoTool().validate_input({})


def test_null_counts_as_missing():
    with pytest.raises(InvalidToolInputError):
        EchoTool().validate_input({"message": None})


def test_wrong_type_rejected():
    with pytest.raises(InvalidToolInputError) as exc_info:
        EchoTool().validate_input({"message": 42})
    assert exc_info.value.tool_name == "echo"
    assert exc_info.value.input == {"message": 42}


def test_bool_is_not_a_number():
    with pytest.raises(InvalidToolInputError):
        EchoTool().validate_input({"message": "x", "times": True})


def test_enum_enforced():
    with pytest.raises(InvalidToolInputError, match="Input should be 'plain' or 'loud'"):
        EchoTool().validate_input({"message": "x", "style": "whisper"})


def test_non_object_input_rejected():
    with pytest.raises(InvalidToolInputError, match="expected an object"):
        EchoTool().validate_input('{"message": "unparsed json"')


def test_validate_hook_value_error_becomes_invalid_input():
    with pytest.raises(InvalidToolInputError, match="low must not exceed high"):
        RangeTool().validate_input({"low": 5, "high": 1})


def test_openai_schema():
    schema = EchoTool().to_openai_schema()

    assert schema["type"] == "function"
    fn = schema["function"]
    assert fn["name"] == "echo"
    assert fn["parameters"]["required"] == ["message"]
    assert fn["parameters"]["properties"]["style"]["enum"] == ["plain", "loud"]


class SearchInput(BaseModel):
    query: str
    limit: int = Field(default=5, ge=1, le=20)


class SearchTool(Tool):
    name = "search"
    description = "Search the index."
    input_model = SearchInput

    async def execute(self, input, token):
        return [input["query"]] * input["limit"]


def test_input_model_validates_and_fills_defaults():
    assert SearchTool().validate_input({"query": "cats"}) == {"query": "cats", "limit": 5}


def test_input_model_constraint_violation_rejected():
    with pytest.raises(InvalidToolInputError, match="parameter 'limit'"):
        SearchTool().validate_input({"query": "cats", "limit": 50})


def test_input_model_schema_export():
    params = SearchTool().to_openai_schema()["function"]["parameters"]

    assert params["required"] == ["query"]
    assert params["properties"]["limit"]["maximum"] == 20


# ─── FunctionTool ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_decorated_async_function():
    @tool(parameters=[ToolParam("x", "number")])
    async def double(input, token):
        """Double a number."""
        return input["x"] * 2

    assert isinstance(double, FunctionTool)
    assert double.name == "double"
    assert double.description == "Double a number."
    assert await double.execute({"x": 4}, CancellationToken()) == 8


@pytest.mark.asyncio
async def test_sync_function_runs_off_loop():
    loop_thread = threading.get_ident()

    def where(input, token):
        return threading.get_ident()

    fn_tool = FunctionTool(where, name="where")

    assert await fn_tool.execute({}, CancellationToken()) != loop_thread


def test_function_tool_validator():
    def positive(input):
        if input["x"] <= 0:
            raise ValueError("x must be positive")

    fn_tool = FunctionTool(
        lambda input, token: input["x"],
        name="positive",
        parameters=[ToolParam("x", "number")],
        validator=positive,
    )

    assert fn_tool.validate_input({"x": 3}) == {"x": 3}
    with pytest.raises(InvalidToolInputError, match="x must be positive"):
        fn_tool.validate_input({"x": -1})


# ─── Registry ─────────────────────────────────────────────────


def test_registry_lookup():
    registry = ToolRegistry.from_tools([EchoTool(), RangeTool()])

    assert "echo" in registry
    assert len(registry) == 2
    assert registry.get("range").name == "range"
    assert registry.get("missing") is None
    assert registry.tool_names() == ["echo", "range"]
    assert [s["function"]["name"] for s in registry.to_openai_tools()] == ["echo", "range"]


def test_registry_rejects_duplicates():
    registry = ToolRegistry()
    registry.register(EchoTool())

    with pytest.raises(ValueError, match="already registered"):
        registry.register(EchoTool())


def test_registry_rejects_unnamed_tool():
    class Nameless(Tool):
        async def execute(self, input, token):
            return None

    with pytest.raises(ValueError):
        ToolRegistry().register(Nameless())


def test_registry_without():
    registry = ToolRegistry.from_tools([EchoTool(), RangeTool()])

    filtered = registry.without("echo")

    assert filtered.tool_names() == ["range"]
    assert len(registry) == 2


# ─── Engine ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_engine_returns_one_result_per_call():
    registry = ToolRegistry.from_tools([EchoTool()])
    calls = [
        ToolCall("c1", "echo", {"message": "a"}),
        ToolCall("c2", "nope", {}),
        ToolCall("c3", "echo", {"message": 1}),
    ]

    results = await ToolEngine().invoke(calls, registry, CancellationToken())

    assert [r.call_id for r in results] == ["c1", "c2", "c3"]
    assert results[0].output == "a"
    assert results[1].error_type == "unknown_tool"
    assert results[2].error_type == "invalid_input"


@pytest.mark.asyncio
async def test_engine_empty_batch():
    assert await ToolEngine().invoke([], ToolRegistry(), CancellationToken()) == []


@pytest.mark.asyncio
async def test_engine_runs_calls_concurrently():
    running = 0
    peak = 0

    @tool(name="busy")
    async def busy(input, token):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.02)
        running -= 1
        return "ok"

    registry = ToolRegistry.from_tools([busy])
    calls = [ToolCall(f"c{i}", "busy", {}) for i in range(4)]

    await ToolEngine(max_concurrency=0).invoke(calls, registry, CancellationToken())
    assert peak == 4

    peak = 0
    await ToolEngine(max_concurrency=2).invoke(calls, registry, CancellationToken())
    assert peak == 2


@pytest.mark.asyncio
async def test_engine_skips_executor_when_cancelled():
    executed = []

    @tool(name="work")
    async def work(input, token):
        executed.append(True)

    token = CancellationToken()
    token.cancel()

    results = await ToolEngine().invoke(
        [ToolCall("c1", "work", {})], ToolRegistry.from_tools([work]), token
    )

    assert executed == []
    assert results[0].error_type == "cancelled"


@pytest.mark.asyncio
async def test_engine_maps_run_cancelled_error():
    @tool(name="checker")
    async def checker(input, token):
        token.cancel("mid-tool")
        token.raise_if_cancelled()

    results = await ToolEngine().invoke(
        [ToolCall("c1", "checker", {})],
        ToolRegistry.from_tools([checker]),
        CancellationToken(),
    )

    assert results[0].error_type == "cancelled"


@pytest.mark.asyncio
async def test_engine_fatal_error_after_batch_completes():
    finished = []

    @tool(name="fatal")
    async def fatal(input, token):
        raise FatalToolError("quota exhausted")

    @tool(name="slow")
    async def slow(input, token):
        await asyncio.sleep(0.02)
        finished.append(True)
        return "done"

    registry = ToolRegistry.from_tools([fatal, slow])
    calls = [ToolCall("c1", "fatal", {}), ToolCall("c2", "slow", {})]

    with pytest.raises(ToolExecutionError) as exc_info:
        await ToolEngine().invoke(calls, registry, CancellationToken())

    error = exc_info.value
    assert finished == [True]
    assert error.tool_call.call_id == "c1"
    assert [r.call_id for r in error.tool_results] == ["c1", "c2"]
    assert error.tool_results[0].is_error
    assert error.tool_results[1].output == "done"
    assert isinstance(error.cause, FatalToolError)


@pytest.mark.asyncio
async def test_engine_records_metrics():
    registry = ToolRegistry.from_tools([EchoTool()])

    await ToolEngine().invoke(
        [ToolCall("c1", "echo", {"message": "a"}), ToolCall("c2", "nope", {})],
        registry,
        CancellationToken(),
    )

    assert metrics.counter("tool.executed", {"tool": "echo", "status": "ok"}) == 1
    assert metrics.counter("tool.executed", {"tool": "nope", "status": "unknown_tool"}) == 1
    assert metrics.percentile("tool.duration_ms", 50) is not None
