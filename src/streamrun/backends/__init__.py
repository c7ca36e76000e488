"""
streamrun backends — the model capability contract and its adapters.

The controller only depends on the LanguageModel protocol. OpenAIChatModel
is one binding; FunctionModel wraps any non-streaming generate function.
"""

from streamrun.backends.base import (
    BackendEvent,
    BackendEventType,
    FunctionModel,
    GenerateResponse,
    LanguageModel,
)

__all__ = [
    "BackendEvent",
    "BackendEventType",
    "FunctionModel",
    "GenerateResponse",
    "LanguageModel",
]
