"""Assemble node: fold usage and outputs into the write-once DocumentVersion."""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.runnables import RunnableConfig

from coherence_lab.dependencies import get_deps
from coherence_lab.models import (
    DocumentVersion,
    GenerationMethod,
    StepConfig,
    StepTokenMeta,
)
from coherence_lab.state import StepState
from coherence_lab.tools.token_usage import build_step_token_usage, format_step_usage

logger = logging.getLogger(__name__)


async def assemble_node(state: StepState, config: RunnableConfig) -> dict[str, Any]:
    if state.get("error"):
        return {}

    deps = get_deps(config)
    exp = state["config"]
    method: GenerationMethod = state["method"]
    predecessor = state.get("predecessor")
    refine = state.get("refinement_config")

    usage = build_step_token_usage(
        generator_model_id=exp.generator_model_id,
        generator_usage=state.get("generator_usage"),
        evaluator_model_id=exp.evaluator_model_id,
        evaluator_usage=state.get("evaluator_usage"),
        meta=StepTokenMeta(
            run_id=state["run_id"],
            run_label=state["run_label"],
            step_number=state["step_number"],
            iteration=state["iteration"],
            method=method,
        ),
    )
    if usage is not None:
        line = format_step_usage(
            state["step_number"], state["run_label"], method, usage
        )
        logger.info(line)
        deps.on_log(line)

    node = DocumentVersion(
        parent_id=predecessor.id if predecessor is not None else None,
        content=state.get("content") or "",
        thoughts=tuple(state.get("thoughts") or ()),
        model_id=exp.generator_model_id,
        method=method,
        system_prompt_snapshot=exp.system_prompt,
        task_prompt_snapshot=state.get("task_prompt") or "",
        eval_prompt_snapshot=exp.evaluator_prompt or None,
        full_prompt_snapshot=state.get("full_prompt"),
        refinement_config=(
            refine if method is GenerationMethod.REFINE_LOOP else None
        ),
        step_config=(
            (exp.step_config or StepConfig())
            if method is GenerationMethod.STEP_BY_STEP
            else None
        ),
        active_resource_ids=tuple(
            (refine.active_resource_ids or ())
            if refine is not None
            else state["active_resource_ids"]
        ),
        annotations=list(state.get("annotations") or []),
        scores=dict(state.get("scores") or {}),
        token_usage=usage,
        diff_stats=state.get("diff_stats"),
        experiment_id=exp.id,
        run_id=state["run_id"],
        run_label=state["run_label"],
    )
    return {"node": node}
