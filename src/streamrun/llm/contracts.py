"""
LLM Contracts — fixed structures shared by every part of a run.

- Message / content parts: one conversation turn, immutable once appended
- ConversationHistory: append-only list of Messages owned by a run
- ToolCall / ToolResult: a model's tool request and its paired outcome
- StepResult: one finished backend request/response cycle
- StreamEvent: one incremental unit of a run's observable output
- RunResult: terminal outcome of a run

Everything here is a plain dataclass so it can be logged, compared in tests
and serialized with to_dict().
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Union


class Role(str, Enum):
    """Who authored a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class FinishReason(str, Enum):
    """Why the backend stopped generating for a step."""

    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool-calls"
    CONTENT_FILTER = "content-filter"
    ERROR = "error"
    OTHER = "other"

    @classmethod
    def parse(cls, value: "str | FinishReason | None") -> "FinishReason":
        """Lenient conversion; accepts provider spellings like "tool_calls"."""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.OTHER
        normalized = str(value).replace("_", "-").lower()
        try:
            return cls(normalized)
        except ValueError:
            return cls.OTHER


# Finish reasons that make the step (and the run) fail
FATAL_FINISH_REASONS = frozenset({FinishReason.ERROR, FinishReason.CONTENT_FILTER})


@dataclass(frozen=True)
class Usage:
    """Token counts. Missing or negative counts are recorded as 0."""

    input_tokens: int = 0
    output_tokens: int = 0

    def __post_init__(self):
        object.__setattr__(self, "input_tokens", max(int(self.input_tokens or 0), 0))
        object.__setattr__(self, "output_tokens", max(int(self.output_tokens or 0), 0))

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class ResponseMetadata:
    """What the backend reported about the response it produced."""

    id: str = ""
    model_id: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "model_id": self.model_id, "timestamp": self.timestamp}


# ═══════════════════════════════════════════════════════════════════════════════
# MESSAGES
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ToolCallPart:
    call_id: str
    tool_name: str
    input: dict[str, Any]


@dataclass(frozen=True)
class ToolResultPart:
    call_id: str
    tool_name: str
    output: Any
    is_error: bool = False
    error_type: str | None = None


ContentPart = Union[TextPart, ToolCallPart, ToolResultPart]


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model. call_id is unique per step."""

    call_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_part(self) -> ToolCallPart:
        return ToolCallPart(self.call_id, self.tool_name, self.input)

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "input": self.input,
        }


@dataclass(frozen=True)
class ToolResult:
    """
    Outcome of one tool call, paired to it by call_id.

    error_type is None on success, otherwise one of:
    unknown_tool, invalid_input, execution_error, cancelled.
    """

    call_id: str
    tool_name: str
    output: Any
    is_error: bool = False
    error_type: str | None = None

    @classmethod
    def success(cls, call: ToolCall, output: Any) -> "ToolResult":
        return cls(call_id=call.call_id, tool_name=call.tool_name, output=output)

    @classmethod
    def failed(cls, call: ToolCall, message: str, error_type: str) -> "ToolResult":
        return cls(
            call_id=call.call_id,
            tool_name=call.tool_name,
            output={"error": error_type, "message": message},
            is_error=True,
            error_type=error_type,
        )

    def to_part(self) -> ToolResultPart:
        return ToolResultPart(
            self.call_id, self.tool_name, self.output, self.is_error, self.error_type
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "output": self.output,
            "is_error": self.is_error,
            "error_type": self.error_type,
        }


@dataclass(frozen=True)
class Message:
    """
    One turn in the conversation.

    Usage:
        Message.user("What is 21 doubled?")
        Message.assistant("", tool_calls=[ToolCall("c1", "double", {"x": 21})])
        Message.tool([ToolResult.success(call, {"result": 42})])
    """

    role: Role
    content: tuple[ContentPart, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "role", Role(self.role))
        object.__setattr__(self, "content", tuple(self.content))

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(Role.USER, (TextPart(text),))

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(Role.SYSTEM, (TextPart(text),))

    @classmethod
    def assistant(
        cls, text: str = "", tool_calls: "list[ToolCall] | tuple[ToolCall, ...]" = ()
    ) -> "Message":
        parts: list[ContentPart] = [TextPart(text)] if text else []
        parts.extend(tc.to_part() for tc in tool_calls)
        return cls(Role.ASSISTANT, tuple(parts))

    @classmethod
    def tool(
        cls, results: "list[ToolResult] | tuple[ToolResult, ...]"
    ) -> "Message":
        return cls(Role.TOOL, tuple(r.to_part() for r in results))

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> tuple[ToolCall, ...]:
        return tuple(
            ToolCall(p.call_id, p.tool_name, p.input)
            for p in self.content
            if isinstance(p, ToolCallPart)
        )

    @property
    def tool_results(self) -> tuple[ToolResult, ...]:
        return tuple(
            ToolResult(p.call_id, p.tool_name, p.output, p.is_error, p.error_type)
            for p in self.content
            if isinstance(p, ToolResultPart)
        )

    def to_dict(self) -> dict[str, Any]:
        parts: list[dict[str, Any]] = []
        for p in self.content:
            if isinstance(p, TextPart):
                parts.append({"type": "text", "text": p.text})
            elif isinstance(p, ToolCallPart):
                parts.append(
                    {
                        "type": "tool-call",
                        "call_id": p.call_id,
                        "tool_name": p.tool_name,
                        "input": p.input,
                    }
                )
            else:
                parts.append(
                    {
                        "type": "tool-result",
                        "call_id": p.call_id,
                        "tool_name": p.tool_name,
                        "output": p.output,
                        "is_error": p.is_error,
                        "error_type": p.error_type,
                    }
                )
        return {"role": self.role.value, "content": parts}


class ConversationHistory:
    """
    Ordered, append-only sequence of Messages.

    Only the step controller appends. Readers (a UI snapshotting for display)
    may iterate at any time and simply see a shorter prefix.
    """

    def __init__(self, messages: "list[Message] | tuple[Message, ...]" = ()):
        self._messages: list[Message] = []
        for message in messages:
            self.append(message)
        self._initial_len = len(self._messages)

    def append(self, message: Message) -> None:
        if not isinstance(message, Message):
            raise TypeError(f"Expected Message, got {type(message).__name__}")
        self._messages.append(message)

    def extend(self, messages: "list[Message] | tuple[Message, ...]") -> None:
        for message in messages:
            self.append(message)

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def appended(self) -> tuple[Message, ...]:
        """Messages added after construction (i.e. by the run)."""
        return tuple(self._messages[self._initial_len :])

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    def __repr__(self) -> str:
        return f"<ConversationHistory messages={len(self._messages)}>"


# ═══════════════════════════════════════════════════════════════════════════════
# STEPS & RUN OUTCOME
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class StepResult:
    """One finished request/response cycle with the backend."""

    index: int
    input_messages: tuple[Message, ...]
    tool_names: tuple[str, ...]
    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_results: tuple[ToolResult, ...] = ()
    finish_reason: FinishReason = FinishReason.STOP
    usage: Usage = field(default_factory=Usage)
    response: ResponseMetadata | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "text": self.text,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "tool_results": [tr.to_dict() for tr in self.tool_results],
            "finish_reason": self.finish_reason.value,
            "usage": self.usage.to_dict(),
        }


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RunResult:
    """Terminal outcome of a run."""

    run_id: str
    status: RunStatus
    text: str = ""
    object: Any = None
    steps: tuple[StepResult, ...] = ()
    messages: tuple[Message, ...] = ()  # appended by this run
    total_usage: Usage = field(default_factory=Usage)
    finish_reason: FinishReason | None = None
    error: BaseException | None = None

    @property
    def tool_calls(self) -> tuple[ToolCall, ...]:
        return self.steps[-1].tool_calls if self.steps else ()

    @property
    def tool_results(self) -> tuple[ToolResult, ...]:
        return self.steps[-1].tool_results if self.steps else ()


# ═══════════════════════════════════════════════════════════════════════════════
# STREAM EVENTS
# ═══════════════════════════════════════════════════════════════════════════════


class StreamEventType(str, Enum):
    """Event types emitted during a run."""

    STEP_START = "step-start"
    TEXT_DELTA = "text-delta"
    TOOL_CALL_START = "tool-call-start"
    TOOL_CALL_DELTA = "tool-call-delta"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"
    STEP_FINISH = "step-finish"
    RUN_FINISH = "run-finish"
    ERROR = "error"
    ABORT = "abort"


TERMINAL_EVENT_TYPES = frozenset(
    {StreamEventType.RUN_FINISH, StreamEventType.ERROR, StreamEventType.ABORT}
)


@dataclass(frozen=True)
class StreamEvent:
    """
    One incremental unit of a run's output.

    sequence is monotonic per run. step_index is None for run-level events
    (run-finish, error, abort).

    payload by type:
    - step-start:      {}
    - text-delta:      {text}
    - tool-call-start: {call_id, tool_name}
    - tool-call-delta: {call_id, tool_name, args_delta}
    - tool-call:       {call_id, tool_name, input}
    - tool-result:     {call_id, tool_name, output, is_error, error_type}
    - step-finish:     {finish_reason, usage, has_tool_calls}
    - run-finish:      {finish_reason, usage, steps, text}
    - error:           {name, message, step_index}
    - abort:           {reason}
    """

    run_id: str
    type: StreamEventType
    sequence: int
    step_index: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "type": self.type.value,
            "sequence": self.sequence,
            "step_index": self.step_index,
            "payload": self.payload,
        }

    @classmethod
    def step_start(cls, run_id: str, sequence: int, step_index: int) -> "StreamEvent":
        return cls(run_id, StreamEventType.STEP_START, sequence, step_index)

    @classmethod
    def text_delta(
        cls, run_id: str, sequence: int, step_index: int, text: str
    ) -> "StreamEvent":
        return cls(
            run_id, StreamEventType.TEXT_DELTA, sequence, step_index, {"text": text}
        )

    @classmethod
    def tool_call_start(
        cls, run_id: str, sequence: int, step_index: int, call_id: str, tool_name: str
    ) -> "StreamEvent":
        return cls(
            run_id,
            StreamEventType.TOOL_CALL_START,
            sequence,
            step_index,
            {"call_id": call_id, "tool_name": tool_name},
        )

    @classmethod
    def tool_call_delta(
        cls,
        run_id: str,
        sequence: int,
        step_index: int,
        call_id: str,
        tool_name: str,
        args_delta: str,
    ) -> "StreamEvent":
        return cls(
            run_id,
            StreamEventType.TOOL_CALL_DELTA,
            sequence,
            step_index,
            {"call_id": call_id, "tool_name": tool_name, "args_delta": args_delta},
        )

    @classmethod
    def tool_call(
        cls, run_id: str, sequence: int, step_index: int, call: ToolCall
    ) -> "StreamEvent":
        return cls(
            run_id, StreamEventType.TOOL_CALL, sequence, step_index, call.to_dict()
        )

    @classmethod
    def tool_result(
        cls, run_id: str, sequence: int, step_index: int, result: ToolResult
    ) -> "StreamEvent":
        return cls(
            run_id, StreamEventType.TOOL_RESULT, sequence, step_index, result.to_dict()
        )

    @classmethod
    def step_finish(cls, run_id: str, sequence: int, step: StepResult) -> "StreamEvent":
        return cls(
            run_id,
            StreamEventType.STEP_FINISH,
            sequence,
            step.index,
            {
                "finish_reason": step.finish_reason.value,
                "usage": step.usage.to_dict(),
                "has_tool_calls": step.has_tool_calls,
            },
        )

    @classmethod
    def run_finish(
        cls,
        run_id: str,
        sequence: int,
        finish_reason: FinishReason | None,
        usage: Usage,
        steps: int,
        text: str,
    ) -> "StreamEvent":
        return cls(
            run_id,
            StreamEventType.RUN_FINISH,
            sequence,
            None,
            {
                "finish_reason": finish_reason.value if finish_reason else None,
                "usage": usage.to_dict(),
                "steps": steps,
                "text": text,
            },
        )

    @classmethod
    def error(
        cls,
        run_id: str,
        sequence: int,
        name: str,
        message: str,
        step_index: int | None = None,
    ) -> "StreamEvent":
        return cls(
            run_id,
            StreamEventType.ERROR,
            sequence,
            None,
            {"name": name, "message": message, "step_index": step_index},
        )

    @classmethod
    def abort(cls, run_id: str, sequence: int, reason: str) -> "StreamEvent":
        return cls(run_id, StreamEventType.ABORT, sequence, None, {"reason": reason})
