"""
Shared fixtures for streamrun tests.

ScriptedModel stands in for a real LLM backend: each backend call replays the
next scripted response (a list of BackendEvents). No network, no API keys.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator

import pytest

from streamrun.backends.base import BackendEvent
from streamrun.core import config as config_module
from streamrun.core.config import StreamRunConfig
from streamrun.core.metrics import metrics
from streamrun.llm.contracts import Message, ResponseMetadata, ToolCall, Usage
from streamrun.tools.base import ToolParam, tool

# Script marker: block until the consuming task is cancelled
HANG = object()


class ScriptedModel:
    """
    Fake LanguageModel replaying scripted responses.

    Each response is a list of BackendEvents, an exception to raise, or a
    list mixing both (events are yielded up to the exception). The last
    response repeats once the script runs out.
    """

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[tuple[Message, ...]] = []
        self.tool_names: list[list[str]] = []
        self.cancelled = False

    async def stream(self, messages, tools, token) -> AsyncGenerator[BackendEvent, None]:
        self.calls.append(messages)
        self.tool_names.append([t.name for t in tools])
        script = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(script, BaseException):
            raise script

        try:
            for item in script:
                if item is HANG:
                    await asyncio.Event().wait()
                    continue
                if isinstance(item, BaseException):
                    raise item
                yield item
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


def _response() -> ResponseMetadata:
    return ResponseMetadata(id="resp-1", model_id="scripted")


def text_response(text: str, usage: Usage | None = None) -> list[BackendEvent]:
    """A plain text answer, streamed word by word."""
    words = text.split(" ")
    deltas = [w if i == 0 else " " + w for i, w in enumerate(words)]
    return [BackendEvent.text_delta(d) for d in deltas] + [
        BackendEvent.finish("stop", usage or Usage(10, 5), _response())
    ]


def tool_response(*calls: ToolCall, usage: Usage | None = None) -> list[BackendEvent]:
    """A response that only requests tool calls."""
    events = [BackendEvent.tool_call(c.call_id, c.tool_name, c.input) for c in calls]
    return events + [BackendEvent.finish("tool-calls", usage or Usage(10, 5), _response())]


@pytest.fixture(autouse=True)
def reset_state(monkeypatch):
    """Clean metrics and default config for every test."""
    metrics.reset()
    monkeypatch.setattr(config_module, "config", StreamRunConfig())
    yield
    metrics.reset()


@pytest.fixture
def double_tool():
    @tool(
        name="double",
        description="Double a number.",
        parameters=[ToolParam("x", "number", "The number to double")],
    )
    async def double(input, token):
        return input["x"] * 2

    return double


@pytest.fixture
def collect():
    """Drain an async iterable into a list, with a timeout."""

    async def _collect(stream, timeout: float = 5.0) -> list:
        async def _drain():
            return [item async for item in stream]

        return await asyncio.wait_for(_drain(), timeout)

    return _collect
