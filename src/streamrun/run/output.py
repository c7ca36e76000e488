"""
Structured output parsers.

An output parser turns the final text of a successful run into a value. Any
exception it raises fails the run with NoObjectGeneratedError, which keeps
the raw text, response metadata and usage for inspection.

    class Answer(BaseModel):
        answer: int

    result = await generate_run(model, messages, output=json_output(Answer))
    result.object.answer
"""

from __future__ import annotations

import re
from typing import Any, Callable

from pydantic import BaseModel, TypeAdapter

OutputParser = Callable[[str], Any]

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

_ANY_JSON = TypeAdapter(Any)


def json_output(
    schema: type[BaseModel] | None = None,
    validator: Callable[[Any], Any] | None = None,
) -> OutputParser:
    """
    Parse the final text as JSON.

    With a schema, the text is validated into an instance of that pydantic
    model; otherwise the plain JSON value is returned. The optional validator
    receives the parsed value and returns the (possibly converted) value, or
    raises to reject it. Markdown code fences around the JSON are tolerated.
    """

    def parse(text: str) -> Any:
        stripped = text.strip()
        if not stripped:
            raise ValueError("model produced no text")
        match = _FENCE.match(stripped)
        if match:
            stripped = match.group(1)
        if schema is not None:
            value = schema.model_validate_json(stripped)
        else:
            value = _ANY_JSON.validate_json(stripped)
        if validator is not None:
            value = validator(value)
        return value

    return parse
