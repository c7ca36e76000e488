"""
Stop conditions — pure predicates over the steps completed so far.

Evaluated by the step controller after every completed step, once that
step's tool results are in history. Returning True means "issue no further
backend call".

    stop_when=step_count_is(5)
    stop_when=any_of(step_count_is(10), has_tool_call("final_answer"))
"""

from __future__ import annotations

from typing import Callable, Sequence

from streamrun.llm.contracts import StepResult

StopCondition = Callable[[Sequence[StepResult]], bool]


def step_count_is(count: int) -> StopCondition:
    """Stop once `count` steps have completed."""
    if count < 1:
        raise ValueError(f"step count must be >= 1, got {count}")

    def condition(steps: Sequence[StepResult]) -> bool:
        return len(steps) >= count

    condition.__name__ = f"step_count_is({count})"
    return condition


def has_tool_call(tool_name: str) -> StopCondition:
    """Stop after a step in which the model called `tool_name`."""

    def condition(steps: Sequence[StepResult]) -> bool:
        if not steps:
            return False
        return any(tc.tool_name == tool_name for tc in steps[-1].tool_calls)

    condition.__name__ = f"has_tool_call({tool_name!r})"
    return condition


def any_of(*conditions: StopCondition) -> StopCondition:
    """Stop when any of the conditions holds."""

    def condition(steps: Sequence[StepResult]) -> bool:
        return any(c(steps) for c in conditions)

    condition.__name__ = "any_of(" + ", ".join(
        getattr(c, "__name__", repr(c)) for c in conditions
    ) + ")"
    return condition
