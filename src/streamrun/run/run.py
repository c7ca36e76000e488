"""
Run — the caller's handle on one in-flight multi-step generation.

    run = stream_run(model, [Message.user("What is double 21?")], tools=[double])
    async for text in run.text_stream():
        print(text, end="")
    result = await run.result()

stream_run() returns immediately. The step loop starts as a task on the
running event loop, so any stream subscribed before the caller next awaits
sees the run from its first event. Streams subscribed later see only the
events published after they attached.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Iterable

from streamrun.cancellation import CancellationToken
from streamrun.core import config as config_module
from streamrun.llm.contracts import (
    ConversationHistory,
    Message,
    RunResult,
    RunStatus,
    StepResult,
    StreamEvent,
)
from streamrun.run.controller import FinishCallback, StepCallback, StepController
from streamrun.run.stop import step_count_is
from streamrun.stream.multiplexer import StreamMultiplexer, Subscription
from streamrun.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from streamrun.backends.base import LanguageModel
    from streamrun.run.output import OutputParser
    from streamrun.run.stop import StopCondition
    from streamrun.tools.base import Tool
    from streamrun.tools.engine import ToolEngine

logger = logging.getLogger(__name__)


class Run:
    """One run: its token, its history, its event fan-out and its outcome."""

    def __init__(
        self,
        model: "LanguageModel",
        messages: Iterable[Message],
        tools: "ToolRegistry | Iterable[Tool] | None" = None,
        stop_when: "StopCondition | None" = None,
        output: "OutputParser | None" = None,
        token: CancellationToken | None = None,
        timeout: float | None = None,
        on_step_finish: StepCallback | None = None,
        on_finish: FinishCallback | None = None,
        engine: "ToolEngine | None" = None,
        run_id: str | None = None,
    ):
        run_config = config_module.config.run
        self.run_id = run_id or uuid.uuid4().hex
        self.token = token or CancellationToken()
        self.history = ConversationHistory(list(messages))
        if isinstance(tools, ToolRegistry):
            self.registry = tools
        else:
            self.registry = ToolRegistry.from_tools(tools or [])
        self.multiplexer = StreamMultiplexer()
        self.stop_when = stop_when or step_count_is(run_config.max_steps)
        self.timeout = run_config.timeout if timeout is None else timeout

        self._controller = StepController(
            model,
            multiplexer=self.multiplexer,
            engine=engine,
            run_id=self.run_id,
            output=output,
            on_step_finish=on_step_finish,
            on_finish=on_finish,
        )
        self._task: asyncio.Task[RunResult] | None = None
        self._result: RunResult | None = None

    # ─── Lifecycle ────────────────────────────────────────────────

    def start(self) -> "Run":
        """Schedule the step loop. Idempotent; needs a running event loop."""
        if self._task is None:
            self._task = asyncio.create_task(self._drive(), name=f"run-{self.run_id}")
        return self

    async def _drive(self) -> RunResult:
        timer = None
        if self.timeout and self.timeout > 0:
            timer = self.token.cancel_after(self.timeout)
        try:
            self._result = await self._controller.run_steps(
                self.history, self.registry, self.stop_when, self.token
            )
        finally:
            if timer is not None:
                timer.cancel()
        return self._result

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the run. Safe to call repeatedly, from any thread, at any
        time. Returns True only for the call that performed the cancellation."""
        return self.token.cancel(reason)

    async def result(self) -> RunResult:
        """
        Wait for the run to reach a terminal state.

        Returns the RunResult for succeeded and cancelled runs. Raises the
        run's RunError when it failed.
        """
        self.start()
        result = await asyncio.shield(self._task)
        if result.status == RunStatus.FAILED and result.error is not None:
            raise result.error
        return result

    @property
    def status(self) -> RunStatus:
        if self._result is None:
            return RunStatus.RUNNING
        return self._result.status

    @property
    def done(self) -> bool:
        return self._result is not None

    @property
    def steps(self) -> tuple[StepResult, ...]:
        return tuple(self._controller.steps)

    # ─── Streams ──────────────────────────────────────────────────

    def subscribe(
        self,
        predicate: Callable[[StreamEvent], bool] | None = None,
        transform: Callable[[StreamEvent], Any] | None = None,
    ) -> Subscription:
        return self.multiplexer.subscribe(predicate, transform)

    def full_stream(self) -> Subscription:
        return self.multiplexer.full_stream()

    def text_stream(self) -> AsyncIterator[str]:
        return self.multiplexer.text_stream()

    def __repr__(self) -> str:
        return f"<Run id={self.run_id} status={self.status.value} steps={len(self.steps)}>"


def stream_run(
    model: "LanguageModel",
    messages: Iterable[Message],
    tools: "ToolRegistry | Iterable[Tool] | None" = None,
    stop_when: "StopCondition | None" = None,
    output: "OutputParser | None" = None,
    token: CancellationToken | None = None,
    timeout: float | None = None,
    on_step_finish: StepCallback | None = None,
    on_finish: FinishCallback | None = None,
    engine: "ToolEngine | None" = None,
    run_id: str | None = None,
) -> Run:
    """Start a run and return its handle without waiting for any output."""
    run = Run(
        model,
        messages,
        tools=tools,
        stop_when=stop_when,
        output=output,
        token=token,
        timeout=timeout,
        on_step_finish=on_step_finish,
        on_finish=on_finish,
        engine=engine,
        run_id=run_id,
    )
    return run.start()


async def generate_run(
    model: "LanguageModel",
    messages: Iterable[Message],
    tools: "ToolRegistry | Iterable[Tool] | None" = None,
    stop_when: "StopCondition | None" = None,
    output: "OutputParser | None" = None,
    token: CancellationToken | None = None,
    timeout: float | None = None,
    on_step_finish: StepCallback | None = None,
    on_finish: FinishCallback | None = None,
    engine: "ToolEngine | None" = None,
) -> RunResult:
    """Run to completion and return the aggregate result."""
    run = stream_run(
        model,
        messages,
        tools=tools,
        stop_when=stop_when,
        output=output,
        token=token,
        timeout=timeout,
        on_step_finish=on_step_finish,
        on_finish=on_finish,
        engine=engine,
    )
    return await run.result()
