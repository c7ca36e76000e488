"""
LLM Package — the fixed data contracts of a run.

- Message, ConversationHistory: conversation state
- ToolCall, ToolResult: tool requests and outcomes
- StepResult, RunResult: per-step and terminal records
- StreamEvent: the observable event sequence
"""

from streamrun.llm.contracts import (
    ConversationHistory,
    FinishReason,
    Message,
    ResponseMetadata,
    Role,
    RunResult,
    RunStatus,
    StepResult,
    StreamEvent,
    StreamEventType,
    TextPart,
    ToolCall,
    ToolCallPart,
    ToolResult,
    ToolResultPart,
    Usage,
)

__all__ = [
    "ConversationHistory",
    "FinishReason",
    "Message",
    "ResponseMetadata",
    "Role",
    "RunResult",
    "RunStatus",
    "StepResult",
    "StreamEvent",
    "StreamEventType",
    "TextPart",
    "ToolCall",
    "ToolCallPart",
    "ToolResult",
    "ToolResultPart",
    "Usage",
]
