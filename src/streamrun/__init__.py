"""
streamrun — multi-step LLM runs with tool calling and live event streaming.

    from streamrun import Message, ToolParam, step_count_is, stream_run, tool

    @tool("double", "Double a number", [ToolParam("x", "number")])
    async def double(input, token):
        return input["x"] * 2

    run = stream_run(model, [Message.user("double 21")], tools=[double],
                     stop_when=step_count_is(5))
    async for text in run.text_stream():
        print(text, end="")
"""

from streamrun.backends.base import (
    BackendEvent,
    FunctionModel,
    GenerateResponse,
    LanguageModel,
)
from streamrun.cancellation import CancellationToken
from streamrun.errors import (
    BackendError,
    FatalToolError,
    InvalidToolInputError,
    NoObjectGeneratedError,
    NoSuchToolError,
    RunCancelledError,
    RunError,
    StreamRunError,
    ToolExecutionError,
)
from streamrun.llm.contracts import (
    ConversationHistory,
    FinishReason,
    Message,
    RunResult,
    Role,
    RunStatus,
    StepResult,
    StreamEvent,
    StreamEventType,
    ToolCall,
    ToolResult,
    Usage,
)
from streamrun.run import (
    Run,
    any_of,
    generate_run,
    has_tool_call,
    json_output,
    step_count_is,
    stream_run,
)
from streamrun.tools import FunctionTool, Tool, ToolParam, ToolRegistry, tool

__all__ = [
    "BackendError",
    "BackendEvent",
    "CancellationToken",
    "ConversationHistory",
    "FatalToolError",
    "FinishReason",
    "FunctionModel",
    "FunctionTool",
    "GenerateResponse",
    "InvalidToolInputError",
    "LanguageModel",
    "Message",
    "NoObjectGeneratedError",
    "NoSuchToolError",
    "Run",
    "RunCancelledError",
    "RunError",
    "RunResult",
    "Role",
    "RunStatus",
    "StepResult",
    "StreamEvent",
    "StreamEventType",
    "StreamRunError",
    "Tool",
    "ToolCall",
    "ToolExecutionError",
    "ToolParam",
    "ToolRegistry",
    "ToolResult",
    "Usage",
    "any_of",
    "generate_run",
    "has_tool_call",
    "json_output",
    "step_count_is",
    "stream_run",
    "tool",
]
