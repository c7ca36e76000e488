"""
Step Controller — drives the request/response loop of a run.

Each iteration is one Step:
1. Emit step-start and call the backend with a snapshot of the history
2. Stream the backend's deltas out as events (text, tool-call construction)
3. Append the assistant message, then run every tool call of the step
   through the ToolEngine and append their results in call order
4. Record the StepResult, emit step-finish
5. Stop if the model answered without tool calls, or the stop condition
   holds; otherwise go round again

The stop condition is checked after tool results are folded into history, so
a step's tool calls are always executed and recorded even when it is the
last step. The model gets to see tool output up to the limit.

Failure handling:
- backend raises, or finishes with error / content-filter → BackendError,
  run fails, no further steps
- tool errors → error tool results, the model sees them next step
- FatalToolError from an executor → results are still folded, then the run
  fails with ToolExecutionError
- token cancelled → the backend task is cancelled, an abort event closes
  every subscription, and no further backend call is made
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from streamrun.backends.base import BackendEventType
from streamrun.core.metrics import metrics
from streamrun.errors import (
    BackendError,
    NoObjectGeneratedError,
    RunError,
    ToolExecutionError,
)
from streamrun.llm.contracts import (
    FATAL_FINISH_REASONS,
    ConversationHistory,
    FinishReason,
    Message,
    ResponseMetadata,
    RunResult,
    RunStatus,
    StepResult,
    StreamEvent,
    ToolCall,
    Usage,
)
from streamrun.stream.multiplexer import StreamMultiplexer
from streamrun.tools.engine import ToolEngine

if TYPE_CHECKING:
    from streamrun.backends.base import LanguageModel
    from streamrun.cancellation import CancellationToken
    from streamrun.run.output import OutputParser
    from streamrun.run.stop import StopCondition
    from streamrun.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

StepCallback = Callable[[StepResult], Any]
FinishCallback = Callable[[RunResult], Any]


@dataclass
class _StepBuffer:
    """Accumulates one step's backend output while it streams."""

    text_parts: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: FinishReason | None = None
    usage: Usage = field(default_factory=Usage)
    response: ResponseMetadata | None = None

    @property
    def text(self) -> str:
        return "".join(self.text_parts)


class StepController:
    """
    Runs the step loop for exactly one run.

    All events go through the multiplexer. The controller is the only writer
    of the run's history and step list.
    """

    def __init__(
        self,
        model: "LanguageModel",
        multiplexer: StreamMultiplexer | None = None,
        engine: ToolEngine | None = None,
        run_id: str | None = None,
        output: "OutputParser | None" = None,
        on_step_finish: StepCallback | None = None,
        on_finish: FinishCallback | None = None,
    ):
        self.model = model
        self.multiplexer = multiplexer or StreamMultiplexer()
        self.engine = engine or ToolEngine()
        self.run_id = run_id or uuid.uuid4().hex
        self.steps: list[StepResult] = []
        self._output = output
        self._on_step_finish = on_step_finish
        self._on_finish = on_finish
        self._sequence = 0
        self._terminated = False
        self._backend_task: asyncio.Task | None = None
        self._started_at = 0.0
        self._ttft_recorded = False

    @property
    def total_usage(self) -> Usage:
        total = Usage()
        for step in self.steps:
            total = total + step.usage
        return total

    # ─── Entry point ──────────────────────────────────────────────

    async def run_steps(
        self,
        history: ConversationHistory,
        tools: "ToolRegistry",
        stop_when: "StopCondition",
        token: "CancellationToken",
    ) -> RunResult:
        """Drive the run to a terminal state. Never raises for run failures;
        the returned RunResult carries the error."""
        loop = asyncio.get_running_loop()
        self._started_at = time.time()
        metrics.inc("run.started")
        logger.info(
            f"Run started ({len(history)} messages, {len(tools)} tools)",
            extra={"run_id": self.run_id},
        )

        def _on_cancel(reason: str) -> None:
            loop.call_soon_threadsafe(self._handle_cancel, reason)

        remove = token.on_cancel(_on_cancel)
        try:
            result = await self._loop(history, tools, stop_when, token)
        except asyncio.CancelledError:
            # The driving task itself was cancelled, not the token
            self._handle_cancel("task cancelled")
            metrics.inc("run.finished", labels={"status": RunStatus.CANCELLED.value})
            raise
        except Exception as e:
            logger.error(f"Run crashed: {e}", exc_info=True, extra={"run_id": self.run_id})
            result = self._failed(
                RunError(
                    f"Run failed unexpectedly: {e}",
                    cause=e,
                    steps=tuple(self.steps),
                    usage=self.total_usage,
                ),
                history,
            )
        finally:
            remove()

        elapsed_ms = round((time.time() - self._started_at) * 1000)
        metrics.inc("run.finished", labels={"status": result.status.value})
        metrics.observe("run.duration_ms", elapsed_ms)
        logger.info(
            f"Run {result.status.value} after {len(self.steps)} steps in {elapsed_ms}ms",
            extra={
                "run_id": self.run_id,
                "status": result.status.value,
                "duration_ms": elapsed_ms,
            },
        )
        await self._callback(self._on_finish, result)
        return result

    # ─── The loop ─────────────────────────────────────────────────

    async def _loop(
        self,
        history: ConversationHistory,
        tools: "ToolRegistry",
        stop_when: "StopCondition",
        token: "CancellationToken",
    ) -> RunResult:
        while True:
            if token.cancelled or self._terminated:
                return self._cancelled(history, token.reason)

            step_index = len(self.steps)
            step_started = time.time()
            input_messages = history.snapshot()
            self._emit(StreamEvent.step_start, step_index)

            buffer = _StepBuffer()
            self._backend_task = asyncio.create_task(
                self._consume_backend(step_index, input_messages, tools, token, buffer),
                name=f"backend-{self.run_id}-{step_index}",
            )
            try:
                await self._backend_task
            except asyncio.CancelledError:
                if token.cancelled:
                    return self._cancelled(history, token.reason)
                raise
            except Exception as e:
                logger.error(
                    f"Backend failed at step {step_index}: {e}",
                    exc_info=True,
                    extra={"run_id": self.run_id, "step": step_index},
                )
                return self._failed(
                    BackendError(
                        f"Backend failed at step {step_index}: {e}",
                        cause=e,
                        step_index=step_index,
                        steps=tuple(self.steps),
                        usage=self.total_usage + buffer.usage,
                        partial_text=buffer.text,
                    ),
                    history,
                )
            finally:
                self._backend_task = None

            finish_reason = buffer.finish_reason or (
                FinishReason.TOOL_CALLS if buffer.tool_calls else FinishReason.OTHER
            )
            if finish_reason in FATAL_FINISH_REASONS:
                return self._failed(
                    BackendError(
                        f"Backend finished step {step_index} with reason "
                        f"{finish_reason.value}",
                        step_index=step_index,
                        finish_reason=finish_reason.value,
                        steps=tuple(self.steps),
                        usage=self.total_usage + buffer.usage,
                        partial_text=buffer.text,
                    ),
                    history,
                )

            tool_calls = list(buffer.tool_calls)
            history.append(Message.assistant(buffer.text, tool_calls))

            results = []
            fatal: ToolExecutionError | None = None
            if tool_calls:
                try:
                    results = await self.engine.invoke(
                        tool_calls, tools, token, run_id=self.run_id
                    )
                except ToolExecutionError as e:
                    results = e.tool_results
                    fatal = e
                history.append(Message.tool(results))
                for result in results:
                    self._emit(StreamEvent.tool_result, step_index, result)

            step = StepResult(
                index=step_index,
                input_messages=input_messages,
                tool_names=tuple(tools.tool_names()),
                text=buffer.text,
                tool_calls=tuple(tool_calls),
                tool_results=tuple(results),
                finish_reason=finish_reason,
                usage=buffer.usage,
                response=buffer.response,
            )
            self.steps.append(step)
            self._sequence += 1
            self.multiplexer.publish(
                StreamEvent.step_finish(self.run_id, self._sequence, step)
            )

            step_ms = round((time.time() - step_started) * 1000)
            metrics.inc("step.finished", labels={"finish_reason": finish_reason.value})
            metrics.observe("step.duration_ms", step_ms)
            logger.debug(
                f"Step {step_index} finished: {len(tool_calls)} tool calls",
                extra={
                    "run_id": self.run_id,
                    "step": step_index,
                    "finish_reason": finish_reason.value,
                    "duration_ms": step_ms,
                },
            )
            await self._callback(self._on_step_finish, step)

            if fatal is not None:
                return self._failed(
                    ToolExecutionError(
                        fatal.message,
                        cause=fatal.cause,
                        tool_call=fatal.tool_call,
                        tool_results=fatal.tool_results,
                        steps=tuple(self.steps),
                        usage=self.total_usage,
                        partial_text=buffer.text,
                    ),
                    history,
                )
            if token.cancelled or self._terminated:
                return self._cancelled(history, token.reason)
            if not tool_calls:
                return self._succeeded(history, finish_reason)
            if stop_when(tuple(self.steps)):
                logger.info(
                    f"Stop condition met after {len(self.steps)} steps",
                    extra={"run_id": self.run_id},
                )
                return self._succeeded(history, finish_reason)

    async def _consume_backend(
        self,
        step_index: int,
        input_messages: tuple[Message, ...],
        tools: "ToolRegistry",
        token: "CancellationToken",
        buffer: _StepBuffer,
    ) -> None:
        """Stream one backend response into the buffer and out as events."""
        seen_ids: set[str] = set()
        # backend id -> id used in events, for calls whose start was emitted
        started: dict[str, str] = {}

        def _assign(backend_id: str) -> str:
            call_id = backend_id
            if not call_id or call_id in seen_ids:
                call_id = f"call_{step_index}_{len(seen_ids)}"
            seen_ids.add(call_id)
            return call_id

        async for event in self.model.stream(input_messages, tools.list_tools(), token):
            if event.type == BackendEventType.TEXT_DELTA:
                if not event.text:
                    continue
                if not self._ttft_recorded:
                    metrics.observe("run.ttft_ms", (time.time() - self._started_at) * 1000)
                    self._ttft_recorded = True
                buffer.text_parts.append(event.text)
                self._emit(StreamEvent.text_delta, step_index, event.text)

            elif event.type == BackendEventType.TOOL_CALL_START:
                call_id = _assign(event.call_id)
                started[event.call_id] = call_id
                self._emit(StreamEvent.tool_call_start, step_index, call_id, event.tool_name)

            elif event.type == BackendEventType.TOOL_CALL_DELTA:
                self._emit(
                    StreamEvent.tool_call_delta,
                    step_index,
                    started.get(event.call_id, event.call_id),
                    event.tool_name,
                    event.args_delta,
                )

            elif event.type == BackendEventType.TOOL_CALL:
                if event.call_id in started:
                    call_id = started.pop(event.call_id)
                else:
                    call_id = _assign(event.call_id)
                call = ToolCall(
                    call_id=call_id,
                    tool_name=event.tool_name,
                    input=event.input if event.input is not None else {},
                )
                buffer.tool_calls.append(call)
                self._emit(StreamEvent.tool_call, step_index, call)

            elif event.type == BackendEventType.FINISH:
                buffer.finish_reason = event.finish_reason
                buffer.usage = event.usage
                buffer.response = event.response

    # ─── Terminal states ──────────────────────────────────────────

    def _succeeded(
        self, history: ConversationHistory, finish_reason: FinishReason
    ) -> RunResult:
        last = self.steps[-1]
        value = None
        if self._output is not None:
            try:
                value = self._output(last.text)
            except Exception as e:
                return self._failed(
                    NoObjectGeneratedError(
                        f"No object generated: {e}",
                        cause=e,
                        text=last.text,
                        response=last.response,
                        usage=last.usage,
                        steps=tuple(self.steps),
                    ),
                    history,
                )

        usage = self.total_usage
        self._sequence += 1
        if not self._terminate(
            StreamEvent.run_finish(
                self.run_id,
                self._sequence,
                finish_reason,
                usage,
                len(self.steps),
                last.text,
            )
        ):
            # cancellation won the race and already closed the stream
            return self._cancelled(history, "cancelled")

        return RunResult(
            run_id=self.run_id,
            status=RunStatus.SUCCESS,
            text=last.text,
            object=value,
            steps=tuple(self.steps),
            messages=history.appended,
            total_usage=usage,
            finish_reason=finish_reason,
        )

    def _failed(self, error: RunError, history: ConversationHistory) -> RunResult:
        step_index = getattr(error, "step_index", None)
        usage = self.total_usage
        if isinstance(error, BackendError) and error.usage is not None:
            usage = error.usage
        self._sequence += 1
        self._terminate(
            StreamEvent.error(
                self.run_id, self._sequence, error.name, error.message, step_index
            )
        )
        return RunResult(
            run_id=self.run_id,
            status=RunStatus.FAILED,
            text=error.partial_text,
            steps=tuple(self.steps),
            messages=history.appended,
            total_usage=usage,
            finish_reason=self.steps[-1].finish_reason if self.steps else None,
            error=error,
        )

    def _cancelled(self, history: ConversationHistory, reason: str) -> RunResult:
        self._handle_cancel(reason or "cancelled")
        return RunResult(
            run_id=self.run_id,
            status=RunStatus.CANCELLED,
            text=self.steps[-1].text if self.steps else "",
            steps=tuple(self.steps),
            messages=history.appended,
            total_usage=self.total_usage,
            finish_reason=self.steps[-1].finish_reason if self.steps else None,
        )

    def _handle_cancel(self, reason: str) -> None:
        """Abort in-flight backend work and close the stream. Runs on the loop."""
        if self._terminated:
            return
        logger.info(f"Run cancelled: {reason}", extra={"run_id": self.run_id})
        self._sequence += 1
        self._terminate(StreamEvent.abort(self.run_id, self._sequence, reason))
        if self._backend_task is not None and not self._backend_task.done():
            self._backend_task.cancel()

    def _terminate(self, event: StreamEvent) -> bool:
        if self._terminated:
            return False
        self._terminated = True
        self.multiplexer.close(event)
        return True

    # ─── Helpers ──────────────────────────────────────────────────

    def _emit(self, factory: Callable[..., StreamEvent], *args: Any) -> None:
        if self._terminated:
            return
        self._sequence += 1
        self.multiplexer.publish(factory(self.run_id, self._sequence, *args))

    async def _callback(self, callback: Callable[[Any], Any] | None, arg: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(arg)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"Callback {getattr(callback, '__name__', callback)} failed: {e}",
                exc_info=True,
                extra={"run_id": self.run_id},
            )
