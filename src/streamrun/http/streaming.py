"""
Run API — HTTP endpoints that start runs and stream their events.

create_app() wraps the router in a FastAPI app and sets up logging.

Endpoints:
    POST /v1/runs                  → Start a run, stream its events
    GET  /v1/runs/{id}             → Current run status
    POST /v1/runs/{id}/cancel      → Cancel a running run

The response body of POST /v1/runs is either the line-oriented data stream
(default, `protocol: "data"`) or Server-Sent Events (`protocol: "sse"`).
With `stream: false` the request waits and returns the final result as JSON.
The run id is returned in the X-Run-Id header so a client can cancel
while it is still reading.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, AsyncGenerator, Callable

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from streamrun.core.logging import setup_logging
from streamrun.errors import RunError
from streamrun.llm.contracts import Message, Role, RunResult, Usage
from streamrun.stream.encoding import encode_data_stream, encode_sse

if TYPE_CHECKING:
    from streamrun.run.run import Run
    from streamrun.stream.multiplexer import Subscription

logger = logging.getLogger(__name__)

# (messages, request body) -> started Run
RunFactory = Callable[[list[Message], dict[str, Any]], "Run"]

DATA_STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"
SSE_MEDIA_TYPE = "text/event-stream"

_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Finished runs kept around for status queries
_MAX_FINISHED_RUNS = 100


def stream_response(
    run: "Run",
    protocol: str = "data",
    subscription: "Subscription | None" = None,
) -> StreamingResponse:
    """
    Wrap a run's full event stream in a StreamingResponse.

    Pass a subscription taken right after the run was started to guarantee
    the body contains every event; otherwise one is created now.
    """
    if protocol not in ("data", "sse"):
        raise ValueError(f"Unknown stream protocol: {protocol}")

    subscription = subscription or run.full_stream()
    encoder = encode_sse if protocol == "sse" else encode_data_stream
    media_type = SSE_MEDIA_TYPE if protocol == "sse" else DATA_STREAM_MEDIA_TYPE

    async def body() -> AsyncGenerator[str, None]:
        try:
            async for chunk in encoder(subscription):
                yield chunk
        finally:
            await subscription.aclose()

    return StreamingResponse(
        body(),
        media_type=media_type,
        headers={**_STREAM_HEADERS, "X-Run-Id": run.run_id},
    )


def parse_messages(raw: Any) -> list[Message]:
    """Build Messages from `[{"role": ..., "content": "..."}]`."""
    if not isinstance(raw, list) or not raw:
        raise ValueError("'messages' must be a non-empty list")

    messages: list[Message] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError("each message must be an object")
        role = item.get("role")
        content = item.get("content", "")
        if not isinstance(content, str):
            raise ValueError("message content must be a string")
        if role == Role.USER.value:
            messages.append(Message.user(content))
        elif role == Role.SYSTEM.value:
            messages.append(Message.system(content))
        elif role == Role.ASSISTANT.value:
            messages.append(Message.assistant(content))
        else:
            raise ValueError(f"unsupported message role: {role!r}")
    return messages


def run_summary(run: "Run") -> dict[str, Any]:
    steps = run.steps
    usage = Usage()
    for step in steps:
        usage = usage + step.usage
    return {
        "run_id": run.run_id,
        "status": run.status.value,
        "steps": len(steps),
        "finish_reason": steps[-1].finish_reason.value if steps else None,
        "usage": usage.to_dict(),
    }


def _result_body(result: RunResult) -> dict[str, Any]:
    return {
        "run_id": result.run_id,
        "status": result.status.value,
        "text": result.text,
        "object": result.object,
        "steps": len(result.steps),
        "finish_reason": result.finish_reason.value if result.finish_reason else None,
        "usage": result.total_usage.to_dict(),
        "messages": [m.to_dict() for m in result.messages],
    }


def create_run_router(run_factory: RunFactory) -> APIRouter:
    """Create the run router. `run_factory` starts a Run for a request."""

    router = APIRouter(prefix="/v1", tags=["runs"])
    runs: dict[str, "Run"] = {}

    def _track(run: "Run") -> None:
        runs[run.run_id] = run
        finished = [run_id for run_id, r in runs.items() if r.done]
        for run_id in finished[: max(0, len(finished) - _MAX_FINISHED_RUNS)]:
            del runs[run_id]

    @router.post("/runs")
    async def create_run(request: Request):
        """
        Start a run.

        Body: {"messages": [...], "protocol": "data" | "sse", "stream": true}
        """
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Body must be an object"}, status_code=400)

        try:
            messages = parse_messages(body.get("messages"))
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        protocol = body.get("protocol", "data")
        if protocol not in ("data", "sse"):
            return JSONResponse(
                {"error": f"Unknown protocol: {protocol}"}, status_code=400
            )

        run = run_factory(messages, body)
        # Subscribe before yielding control so the body sees every event
        subscription = run.full_stream()
        _track(run)
        logger.info(f"Run {run.run_id} started via HTTP", extra={"run_id": run.run_id})

        if body.get("stream", True):
            return stream_response(run, protocol, subscription)

        await subscription.aclose()
        try:
            result = await run.result()
        except RunError as e:
            return JSONResponse(
                {
                    "run_id": run.run_id,
                    "status": "failed",
                    "error": {"name": e.name, "message": e.message},
                },
                status_code=500,
                headers={"X-Run-Id": run.run_id},
            )
        return JSONResponse(_result_body(result), headers={"X-Run-Id": run.run_id})

    @router.get("/runs/{run_id}")
    async def get_run(run_id: str) -> JSONResponse:
        """Get current run status."""
        run = runs.get(run_id)
        if run is None:
            return JSONResponse({"error": f"Run {run_id} not found"}, status_code=404)
        return JSONResponse(run_summary(run))

    @router.post("/runs/{run_id}/cancel")
    async def cancel_run(run_id: str) -> JSONResponse:
        """Cancel a running run. Cancelling twice is harmless."""
        run = runs.get(run_id)
        if run is None:
            return JSONResponse({"error": f"Run {run_id} not found"}, status_code=404)
        if run.done:
            return JSONResponse({"run_id": run_id, "status": run.status.value})
        run.cancel("cancelled by client")
        return JSONResponse({"run_id": run_id, "status": "cancelled"})

    return router


def create_app(
    run_factory: RunFactory,
    title: str = "streamrun",
    configure_logging: bool = True,
) -> FastAPI:
    """
    A ready-to-serve app around the run router.

        app = create_app(lambda messages, body: stream_run(model, messages, tools))
        # uvicorn mymodule:app
    """
    if configure_logging:
        setup_logging()

    app = FastAPI(title=title)
    app.include_router(create_run_router(run_factory))

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    logger.info(f"{title} app created")
    return app
