"""Diff node: change statistics of a refinement against its predecessor."""

from __future__ import annotations

from typing import Any

from coherence_lab.state import StepState
from coherence_lab.tools.diff_stats import calculate_diff_stats


async def diff_node(state: StepState) -> dict[str, Any]:
    predecessor = state.get("predecessor")
    if predecessor is None:
        return {}
    return {
        "diff_stats": calculate_diff_stats(
            predecessor.content, state.get("content") or ""
        )
    }
