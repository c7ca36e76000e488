"""
streamrun errors — one hierarchy for everything a run can raise.

Two families:
- Tool-level errors (NoSuchToolError, InvalidToolInputError) are caught by the
  tool engine and folded into history as error tool results. The model sees
  them on the next step and can correct itself.
- Run-level errors (RunError and subclasses) end the run. They carry the
  steps, usage and partial text accumulated so far so a caller can diagnose
  a failure without re-running it.

Cancellation is not an error: a cancelled run ends with RunStatus.CANCELLED.
RunCancelledError exists only for executors that prefer raising over polling
(token.raise_if_cancelled()).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from streamrun.llm.contracts import (
        ResponseMetadata,
        StepResult,
        ToolCall,
        ToolResult,
        Usage,
    )


class StreamRunError(Exception):
    """Base exception for all streamrun errors."""

    name = "StreamRunError"

    def __init__(self, message: str = "", cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


# ─── Tool-level (recovered locally) ──────────────────────────────


class NoSuchToolError(StreamRunError):
    """The model called a tool that is not registered for this run."""

    name = "NoSuchToolError"

    def __init__(self, tool_name: str, available: list[str] | None = None):
        available = available or []
        super().__init__(
            f"Unknown tool: {tool_name}. Available tools: "
            f"{', '.join(available) if available else '(none)'}"
        )
        self.tool_name = tool_name
        self.available = available


class InvalidToolInputError(StreamRunError):
    """Tool input did not match the tool's declared parameters."""

    name = "InvalidToolInputError"

    def __init__(self, tool_name: str, detail: str, input: Any = None):
        super().__init__(f"Invalid input for tool {tool_name}: {detail}")
        self.tool_name = tool_name
        self.detail = detail
        self.input = input


class FatalToolError(StreamRunError):
    """Raised by a tool executor to escalate its failure to the whole run.

    Any other exception from an executor is recorded as an error tool result
    and the run continues.
    """

    name = "FatalToolError"


class RunCancelledError(StreamRunError):
    """Raised by CancellationToken.raise_if_cancelled()."""

    name = "RunCancelledError"


# ─── Run-level (fatal) ───────────────────────────────────────────


class RunError(StreamRunError):
    """A run terminated in the failed state."""

    name = "RunError"

    def __init__(
        self,
        message: str = "",
        cause: BaseException | None = None,
        steps: "tuple[StepResult, ...]" = (),
        usage: "Usage | None" = None,
        partial_text: str = "",
    ):
        super().__init__(message, cause)
        self.steps = tuple(steps)
        self.usage = usage
        self.partial_text = partial_text


class BackendError(RunError):
    """The model backend failed, or finished with reason error/content-filter."""

    name = "BackendError"

    def __init__(
        self,
        message: str = "",
        cause: BaseException | None = None,
        step_index: int = 0,
        finish_reason: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, cause, **kwargs)
        self.step_index = step_index
        self.finish_reason = finish_reason


class ToolExecutionError(RunError):
    """A tool executor escalated with FatalToolError."""

    name = "ToolExecutionError"

    def __init__(
        self,
        message: str = "",
        cause: BaseException | None = None,
        tool_call: "ToolCall | None" = None,
        tool_results: "list[ToolResult] | None" = None,
        **kwargs: Any,
    ):
        super().__init__(message, cause, **kwargs)
        self.tool_call = tool_call
        # Every result of the batch, so the caller can still fold them
        self.tool_results = list(tool_results or [])


class NoObjectGeneratedError(RunError):
    """No structured object could be produced from the model's output.

    This can have several causes:
    - The model finished without producing any text.
    - The text could not be parsed.
    - The parsed value failed validation.

    `text` holds whatever raw text the model produced, alongside the response
    metadata and usage of the final step.
    """

    name = "NoObjectGeneratedError"

    def __init__(
        self,
        message: str = "No object generated.",
        cause: BaseException | None = None,
        text: str | None = None,
        response: "ResponseMetadata | None" = None,
        usage: "Usage | None" = None,
        steps: "tuple[StepResult, ...]" = (),
    ):
        super().__init__(
            message, cause, steps=steps, usage=usage, partial_text=text or ""
        )
        self.text = text
        self.response = response
