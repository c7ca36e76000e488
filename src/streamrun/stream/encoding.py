"""
Wire encodings for the event stream.

The core only defines event order and content; framing belongs to the
transport. Two line-oriented framings are provided:

Data stream (one tagged record per line, `<code>:<json>\\n`):
    f  step-start        0  text-delta       b  tool-call-start
    c  tool-call-delta   9  tool-call        a  tool-result
    e  step-finish       d  run-finish       3  error
    x  abort

Server-Sent Events:
    event: <type>\\ndata: <json>\\n\\n
"""

from __future__ import annotations

import json
from typing import Any, AsyncGenerator, AsyncIterable

from streamrun.llm.contracts import StreamEvent, StreamEventType

DATA_STREAM_CODES: dict[StreamEventType, str] = {
    StreamEventType.STEP_START: "f",
    StreamEventType.TEXT_DELTA: "0",
    StreamEventType.TOOL_CALL_START: "b",
    StreamEventType.TOOL_CALL_DELTA: "c",
    StreamEventType.TOOL_CALL: "9",
    StreamEventType.TOOL_RESULT: "a",
    StreamEventType.STEP_FINISH: "e",
    StreamEventType.RUN_FINISH: "d",
    StreamEventType.ERROR: "3",
    StreamEventType.ABORT: "x",
}

_CODE_TO_TYPE = {code: event_type for event_type, code in DATA_STREAM_CODES.items()}


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str, separators=(",", ":"))


def to_data_stream_line(event: StreamEvent) -> str:
    """Encode one event as a tagged data stream record."""
    code = DATA_STREAM_CODES[event.type]
    if event.type == StreamEventType.TEXT_DELTA:
        body: Any = event.payload["text"]
    elif event.type == StreamEventType.ERROR:
        body = event.payload["message"]
    elif event.type == StreamEventType.STEP_START:
        body = {"step_index": event.step_index}
    else:
        body = event.payload
    return f"{code}:{_dumps(body)}\n"


def parse_data_stream_line(line: str) -> tuple[StreamEventType, Any]:
    """Decode a data stream record back to (type, body). For clients and tests."""
    code, sep, body = line.rstrip("\n").partition(":")
    if not sep or code not in _CODE_TO_TYPE:
        raise ValueError(f"Not a data stream record: {line!r}")
    return _CODE_TO_TYPE[code], json.loads(body)


def to_sse(event: StreamEvent) -> str:
    """Encode one event as a Server-Sent Event."""
    return f"event: {event.type.value}\ndata: {_dumps(event.to_dict())}\n\n"


async def encode_data_stream(
    events: AsyncIterable[StreamEvent],
) -> AsyncGenerator[str, None]:
    async for event in events:
        yield to_data_stream_line(event)


async def encode_sse(events: AsyncIterable[StreamEvent]) -> AsyncGenerator[str, None]:
    async for event in events:
        yield to_sse(event)
