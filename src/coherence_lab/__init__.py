"""Coherence lab: orchestration of LLM generation/evaluation experiments.

Runs protocols (convergence loops, method comparisons, context ablations
and consistency checks) over a pluggable oracle, records every produced
text as a write-once node in a version graph, and measures how much
independently produced variants agree.
"""

from .graph import create_step_graph, get_step_graph, run_generation_step
from .runner import ProtocolRunner, RunnerCallbacks
from .state import StepState
from .version_graph import VersionGraph, plan_runs

__all__ = [
    "ProtocolRunner",
    "RunnerCallbacks",
    "StepState",
    "VersionGraph",
    "create_step_graph",
    "get_step_graph",
    "plan_runs",
    "run_generation_step",
]
