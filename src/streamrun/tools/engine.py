"""
Tool Engine — validates and executes the tool calls of a single step.

This is the bridge between the step controller and the tool registry:
1. The controller hands over every tool call the backend produced in a step
2. Each call is looked up, validated, then executed with the run's token
3. All calls of the step run concurrently and independently
4. Results come back in call order, one per call, never dropped

Failures are converted, not raised:
- unknown tool name       → error result (unknown_tool)
- input fails validation  → error result (invalid_input), executor not called
- token already cancelled → error result (cancelled), executor not called
- executor raises         → error result (execution_error)
- stray CancelledError    → error result (execution_error), or cancelled
                            when the token is cancelled

The one exception is FatalToolError: it is still recorded as an error result,
and once the whole batch has finished the engine raises ToolExecutionError
carrying every result of the batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from streamrun.core import config as config_module
from streamrun.core.metrics import metrics
from streamrun.errors import (
    FatalToolError,
    InvalidToolInputError,
    NoSuchToolError,
    RunCancelledError,
    ToolExecutionError,
)
from streamrun.llm.contracts import ToolCall, ToolResult

if TYPE_CHECKING:
    from streamrun.cancellation import CancellationToken
    from streamrun.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolEngine:
    """
    Executes a batch of tool calls.

    Concurrency is bounded by max_concurrency (0 = unbounded). Defaults to
    config.run.tool_concurrency.
    """

    def __init__(self, max_concurrency: int | None = None):
        if max_concurrency is None:
            max_concurrency = config_module.config.run.tool_concurrency
        self.max_concurrency = max_concurrency

    async def invoke(
        self,
        tool_calls: list[ToolCall],
        registry: "ToolRegistry",
        token: "CancellationToken",
        run_id: str = "",
    ) -> list[ToolResult]:
        """
        Execute every call and return one result per call, in call order.

        Raises:
            ToolExecutionError: an executor raised FatalToolError. The error's
                tool_results holds the complete, ordered batch.
        """
        if not tool_calls:
            return []

        semaphore = (
            asyncio.Semaphore(self.max_concurrency) if self.max_concurrency > 0 else None
        )
        fatal: list[tuple[ToolCall, FatalToolError]] = []

        async def _run(call: ToolCall) -> ToolResult:
            if semaphore is None:
                return await self._execute(call, registry, token, run_id, fatal)
            async with semaphore:
                return await self._execute(call, registry, token, run_id, fatal)

        started = time.time()
        # gather keeps input order regardless of completion order
        results = list(await asyncio.gather(*(_run(call) for call in tool_calls)))

        elapsed_ms = round((time.time() - started) * 1000)
        ok_count = sum(1 for r in results if not r.is_error)
        logger.info(
            f"Batch: {len(results)} tools in {elapsed_ms}ms "
            f"({ok_count} ok, {len(results) - ok_count} errors)",
            extra={"run_id": run_id, "duration_ms": elapsed_ms},
        )

        if fatal:
            call, error = fatal[0]
            raise ToolExecutionError(
                f"Tool {call.tool_name} ({call.call_id}) failed fatally: {error}",
                cause=error,
                tool_call=call,
                tool_results=results,
            )
        return results

    async def _execute(
        self,
        call: ToolCall,
        registry: "ToolRegistry",
        token: "CancellationToken",
        run_id: str,
        fatal: list[tuple[ToolCall, FatalToolError]],
    ) -> ToolResult:
        tool = registry.get(call.tool_name)
        if tool is None:
            error = NoSuchToolError(call.tool_name, registry.tool_names())
            logger.warning(str(error), extra={"run_id": run_id, "call_id": call.call_id})
            self._record(call.tool_name, "unknown_tool", 0)
            return ToolResult.failed(call, str(error), "unknown_tool")

        try:
            validated = tool.validate_input(call.input)
        except InvalidToolInputError as e:
            logger.info(
                f"Rejected input for {call.tool_name}: {e.detail}",
                extra={"run_id": run_id, "call_id": call.call_id},
            )
            self._record(call.tool_name, "invalid_input", 0)
            return ToolResult.failed(call, str(e), "invalid_input")

        if token.cancelled:
            self._record(call.tool_name, "cancelled", 0)
            return ToolResult.failed(
                call, f"Tool {call.tool_name} skipped: run cancelled", "cancelled"
            )

        logger.info(
            f"Tool: {call.tool_name}({', '.join(validated.keys())})",
            extra={"run_id": run_id, "tool_name": call.tool_name, "call_id": call.call_id},
        )
        started = time.time()
        try:
            output = await tool.execute(validated, token)
        except FatalToolError as e:
            logger.error(
                f"Tool '{call.tool_name}' escalated: {e}",
                extra={"run_id": run_id, "call_id": call.call_id},
            )
            fatal.append((call, e))
            self._record(call.tool_name, "fatal", started)
            return ToolResult.failed(call, str(e), "execution_error")
        except RunCancelledError as e:
            self._record(call.tool_name, "cancelled", started)
            return ToolResult.failed(call, str(e), "cancelled")
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise  # the batch itself is being torn down
            if token.cancelled:
                self._record(call.tool_name, "cancelled", started)
                return ToolResult.failed(
                    call, f"Tool {call.tool_name} cancelled: {token.reason}", "cancelled"
                )
            logger.error(
                f"Tool '{call.tool_name}' raised CancelledError outside a run cancel",
                extra={"run_id": run_id, "call_id": call.call_id},
            )
            self._record(call.tool_name, "error", started)
            return ToolResult.failed(
                call, "Tool error: executor was cancelled", "execution_error"
            )
        except Exception as e:
            logger.error(
                f"Tool '{call.tool_name}' failed: {e}",
                exc_info=True,
                extra={"run_id": run_id, "call_id": call.call_id},
            )
            self._record(call.tool_name, "error", started)
            return ToolResult.failed(call, f"Tool error: {e}", "execution_error")

        self._record(call.tool_name, "ok", started)
        return ToolResult.success(call, output)

    @staticmethod
    def _record(tool_name: str, status: str, started: float) -> None:
        metrics.inc("tool.executed", labels={"tool": tool_name, "status": status})
        if started:
            metrics.observe(
                "tool.duration_ms",
                (time.time() - started) * 1000,
                labels={"tool": tool_name},
            )
