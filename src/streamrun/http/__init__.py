"""streamrun http — FastAPI streaming boundary for runs."""

from streamrun.http.streaming import (
    create_app,
    create_run_router,
    parse_messages,
    run_summary,
    stream_response,
)

__all__ = [
    "create_app",
    "create_run_router",
    "parse_messages",
    "run_summary",
    "stream_response",
]
