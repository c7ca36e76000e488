"""
Backend capability — the one contract the step controller needs from a model.

A backend is anything with a `stream(messages, tools, token)` method that
yields BackendEvents and ends with exactly one `finish` event. It is a
structural Protocol, not a base class: any object with the right method can
be substituted without touching the controller.

Backends that only offer a blocking request/response call can be wrapped in
FunctionModel, which replays a GenerateResponse as a stream.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncGenerator,
    AsyncIterator,
    Awaitable,
    Callable,
    Protocol,
    runtime_checkable,
)

from streamrun.llm.contracts import (
    FinishReason,
    Message,
    ResponseMetadata,
    ToolCall,
    Usage,
)

if TYPE_CHECKING:
    from streamrun.cancellation import CancellationToken
    from streamrun.tools.base import Tool


class BackendEventType(str, Enum):
    TEXT_DELTA = "text_delta"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_DELTA = "tool_call_delta"
    TOOL_CALL = "tool_call"
    FINISH = "finish"


@dataclass
class BackendEvent:
    """
    A low-level delta from the backend stream.

    type:
      - "text_delta": a text fragment (text)
      - "tool_call_start": a tool call began (call_id, tool_name)
      - "tool_call_delta": a fragment of streamed arguments (call_id, args_delta)
      - "tool_call": a complete tool call (call_id, tool_name, input)
      - "finish": end of the response (finish_reason, usage, response)
    """

    type: BackendEventType
    text: str = ""
    call_id: str = ""
    tool_name: str = ""
    args_delta: str = ""
    input: Any = None
    finish_reason: FinishReason = FinishReason.STOP
    usage: Usage = field(default_factory=Usage)
    response: ResponseMetadata | None = None

    @classmethod
    def text_delta(cls, text: str) -> "BackendEvent":
        return cls(BackendEventType.TEXT_DELTA, text=text)

    @classmethod
    def tool_call_start(cls, call_id: str, tool_name: str) -> "BackendEvent":
        return cls(BackendEventType.TOOL_CALL_START, call_id=call_id, tool_name=tool_name)

    @classmethod
    def tool_call_delta(
        cls, call_id: str, args_delta: str, tool_name: str = ""
    ) -> "BackendEvent":
        return cls(
            BackendEventType.TOOL_CALL_DELTA,
            call_id=call_id,
            tool_name=tool_name,
            args_delta=args_delta,
        )

    @classmethod
    def tool_call(cls, call_id: str, tool_name: str, input: Any) -> "BackendEvent":
        return cls(
            BackendEventType.TOOL_CALL, call_id=call_id, tool_name=tool_name, input=input
        )

    @classmethod
    def finish(
        cls,
        finish_reason: "FinishReason | str" = FinishReason.STOP,
        usage: Usage | None = None,
        response: ResponseMetadata | None = None,
    ) -> "BackendEvent":
        return cls(
            BackendEventType.FINISH,
            finish_reason=FinishReason.parse(finish_reason),
            usage=usage or Usage(),
            response=response,
        )


@runtime_checkable
class LanguageModel(Protocol):
    """Streaming generation capability."""

    def stream(
        self,
        messages: tuple[Message, ...],
        tools: "list[Tool]",
        token: "CancellationToken",
    ) -> AsyncIterator[BackendEvent]:
        """
        Stream one response for the given history and tool definitions.

        Must end with a single finish event. Raising ends the step as a
        backend failure. The controller cancels the consuming task when the
        token is cancelled, so implementations only need to let
        asyncio.CancelledError propagate.
        """
        ...


@dataclass
class GenerateResponse:
    """Non-streaming backend output."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: "FinishReason | str" = FinishReason.STOP
    usage: Usage = field(default_factory=Usage)
    response: ResponseMetadata | None = None


GenerateFn = Callable[..., "Awaitable[GenerateResponse] | GenerateResponse"]


class FunctionModel:
    """
    Adapts `generate(messages, tools, token) -> GenerateResponse` into the
    streaming contract.

    Usage:
        async def generate(messages, tools, token):
            return GenerateResponse(text="42")

        model = FunctionModel(generate)
    """

    def __init__(self, generate: GenerateFn, model_id: str = "function"):
        self._generate = generate
        self.model_id = model_id

    async def stream(
        self,
        messages: tuple[Message, ...],
        tools: "list[Tool]",
        token: "CancellationToken",
    ) -> AsyncGenerator[BackendEvent, None]:
        result = self._generate(messages, tools, token)
        if inspect.isawaitable(result):
            result = await result

        if result.text:
            yield BackendEvent.text_delta(result.text)
        for call in result.tool_calls:
            yield BackendEvent.tool_call(call.call_id, call.tool_name, call.input)
        yield BackendEvent.finish(
            result.finish_reason,
            result.usage,
            result.response or ResponseMetadata(model_id=self.model_id),
        )
