"""streamrun stream — event fan-out and wire encodings."""

from streamrun.stream.encoding import (
    encode_data_stream,
    encode_sse,
    parse_data_stream_line,
    to_data_stream_line,
    to_sse,
)
from streamrun.stream.multiplexer import StreamMultiplexer, Subscription

__all__ = [
    "StreamMultiplexer",
    "Subscription",
    "encode_data_stream",
    "encode_sse",
    "parse_data_stream_line",
    "to_data_stream_line",
    "to_sse",
]
