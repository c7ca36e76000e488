"""streamrun run — the step loop, stop conditions and the Run handle."""

from streamrun.run.controller import StepController
from streamrun.run.output import json_output
from streamrun.run.run import Run, generate_run, stream_run
from streamrun.run.stop import any_of, has_tool_call, step_count_is

__all__ = [
    "Run",
    "StepController",
    "any_of",
    "generate_run",
    "has_tool_call",
    "json_output",
    "step_count_is",
    "stream_run",
]
