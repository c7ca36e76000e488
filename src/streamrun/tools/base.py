"""
Tool — the base class for every capability the model may invoke mid-run.

A tool is name + description + parameters + execute. The parameters double as
the input-shape validator: they are turned into a strict pydantic model, and
validate_input() checks the model's raw arguments against it before execute()
is ever called, so executors only see clean input. A tool can also set
input_model to its own pydantic model instead of listing parameters.

Tools are provider-agnostic. Backends convert them to whatever schema format
their API needs (to_openai_schema() covers OpenAI-style function calling).

Two ways to define one:

    class DoubleTool(Tool):
        name = "double"
        description = "Double a number."
        parameters = [ToolParam("x", "number", "The number to double")]

        async def execute(self, input, token):
            return {"result": input["x"] * 2}

    @tool(parameters=[ToolParam("x", "number", "The number to double")])
    async def double(input, token):
        return {"result": input["x"] * 2}
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import cached_property
from typing import TYPE_CHECKING, Any, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from streamrun.errors import InvalidToolInputError

if TYPE_CHECKING:
    from streamrun.cancellation import CancellationToken

logger = logging.getLogger(__name__)

# JSON schema type -> field annotation for the generated input model.
# Unknown type names are not enforced.
_FIELD_TYPES: dict[str, Any] = {
    "string": str,
    "number": int | float,
    "integer": int,
    "boolean": bool,
    "array": list[Any],
    "object": dict[str, Any],
}

InputValidator = Callable[[dict[str, Any]], "dict[str, Any] | None"]


def _describe(error: dict[str, Any]) -> str:
    field_name = ".".join(str(part) for part in error["loc"]) or "input"
    if error["type"] == "missing":
        return f"missing required parameter: {field_name}"
    return f"parameter '{field_name}': {error['msg']}"


@dataclass
class ToolParam:
    """A single parameter for a tool."""

    name: str
    type: str  # "string", "number", "integer", "boolean", "array", "object"
    description: str = ""
    required: bool = True
    default: Any = None
    enum: list[Any] | None = None
    items: dict | None = None  # For array types


class Tool(ABC):
    """
    Base class for all tools.

    Subclass this, set the class attributes, implement execute().
    Override validate() for rules the parameter list can't express.
    """

    # --- Override these in subclasses ---
    name: str = ""
    description: str = ""
    parameters: list[ToolParam] = []
    # Optional: a pydantic model that replaces `parameters` for validation
    # and schema export.
    input_model: type[BaseModel] | None = None

    @abstractmethod
    async def execute(self, input: dict[str, Any], token: "CancellationToken") -> Any:
        """
        Run the tool with validated input.

        Long-running executors should check token.cancelled (or call
        token.raise_if_cancelled()) between units of work. Raise
        FatalToolError to fail the whole run; any other exception becomes
        an error tool result the model can react to.
        """
        ...

    def validate(self, input: dict[str, Any]) -> dict[str, Any]:
        """Extra validation hook. Raise ValueError to reject the input."""
        return input

    @cached_property
    def args_model(self) -> type[BaseModel]:
        """The pydantic model raw arguments are validated against."""
        if self.input_model is not None:
            return self.input_model

        fields: dict[str, Any] = {}
        for param in self.parameters:
            annotation = _FIELD_TYPES.get(param.type, Any)
            if param.enum:
                annotation = Literal[tuple(param.enum)]
            if param.required:
                fields[param.name] = (annotation, Field(description=param.description))
            else:
                fields[param.name] = (
                    Optional[annotation],
                    Field(default=param.default, description=param.description),
                )

        return create_model(
            f"{self.name or type(self).__name__}Input",
            __config__=ConfigDict(strict=True, extra="ignore"),
            **fields,
        )

    def validate_input(self, args: Any) -> dict[str, Any]:
        """Check raw model arguments against the parameters. Returns cleaned input."""
        if not isinstance(args, dict):
            raise InvalidToolInputError(
                self.name, f"expected an object, got {type(args).__name__}", args
            )

        # null counts as absent, so defaults apply
        present = {key: value for key, value in args.items() if value is not None}
        try:
            model = self.args_model.model_validate(present)
        except ValidationError as e:
            detail = "; ".join(_describe(error) for error in e.errors())
            raise InvalidToolInputError(self.name, detail, args) from e

        try:
            cleaned = {k: v for k, v in model.model_dump().items() if v is not None}
            return self.validate(cleaned)
        except ValueError as e:
            raise InvalidToolInputError(self.name, str(e), args) from e

    def to_openai_schema(self) -> dict:
        """Convert to OpenAI function calling format."""
        if self.input_model is not None:
            return {
                "type": "function",
                "function": {
                    "name": self.name,
                    "description": self.description,
                    "parameters": self.input_model.model_json_schema(),
                },
            }

        properties = {}
        required = []

        for param in self.parameters:
            prop: dict[str, Any] = {"type": param.type}
            if param.description:
                prop["description"] = param.description
            if param.enum:
                prop["enum"] = param.enum
            if param.items:
                prop["items"] = param.items
            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }

    def __repr__(self) -> str:
        return f"<Tool:{self.name}>"


class FunctionTool(Tool):
    """
    Wraps a plain callable `fn(input, token)` as a Tool.

    Coroutine functions are awaited. Plain functions run in a worker thread
    so a slow sync tool doesn't stall the other tools of the same step.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        name: str | None = None,
        description: str = "",
        parameters: list[ToolParam] | None = None,
        validator: InputValidator | None = None,
        input_model: type[BaseModel] | None = None,
    ):
        self._fn = fn
        self.input_model = input_model
        self._validator = validator
        self.name = name or fn.__name__
        self.description = description or inspect.getdoc(fn) or ""
        self.parameters = list(parameters or [])

    def validate(self, input: dict[str, Any]) -> dict[str, Any]:
        if self._validator is None:
            return input
        result = self._validator(input)
        return input if result is None else result

    async def execute(self, input: dict[str, Any], token: "CancellationToken") -> Any:
        if inspect.iscoroutinefunction(self._fn):
            return await self._fn(input, token)
        result = await asyncio.to_thread(self._fn, input, token)
        if inspect.isawaitable(result):
            result = await result
        return result


def tool(
    name: str | None = None,
    description: str = "",
    parameters: list[ToolParam] | None = None,
    validator: InputValidator | None = None,
    input_model: type[BaseModel] | None = None,
) -> Callable[[Callable[..., Any]], FunctionTool]:
    """Decorator form of FunctionTool."""

    def decorator(fn: Callable[..., Any]) -> FunctionTool:
        return FunctionTool(
            fn,
            name=name,
            description=description,
            parameters=parameters,
            validator=validator,
            input_model=input_model,
        )

    return decorator
