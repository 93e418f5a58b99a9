"""Evaluate node: score and annotate the generated text.

A failed evaluation call aborts the step. A malformed evaluation reply
degrades to empty annotations and scores.
"""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.runnables import RunnableConfig

from coherence_lab.dependencies import get_deps
from coherence_lab.prompts import default_evaluator_prompt
from coherence_lab.schemas.oracle import EvaluationRequest
from coherence_lab.state import StepState
from coherence_lab.tools.evaluation import (
    materialize_annotations,
    normalize_scores,
    parse_evaluation,
)

logger = logging.getLogger(__name__)


async def evaluate_node(state: StepState, config: RunnableConfig) -> dict[str, Any]:
    """Invoke the evaluation oracle on the generated content.

    Only resources selected for the run are offered to the evaluator.
    """
    if state.get("error"):
        return {}

    deps = get_deps(config)
    exp = state["config"]
    refine = state.get("refinement_config")
    run_ids = set(
        refine.active_resource_ids
        if refine and refine.active_resource_ids is not None
        else state["active_resource_ids"]
    )
    deps.on_log("Evaluating...")

    try:
        reply = await deps.oracle.evaluate(
            EvaluationRequest(
                text=state.get("content") or "",
                resources=[r for r in state["resources"] if r.id in run_ids],
                categories=exp.evaluation_categories,
                model_id=exp.evaluator_model_id,
                prompt_template=exp.evaluator_prompt or default_evaluator_prompt(),
            )
        )
    except Exception as e:
        logger.exception(
            "Evaluation failed for run %s step %s",
            state["run_id"],
            state["step_number"],
        )
        return {"error": f"Evaluation failed: {e}", "failure": e}

    await deps.pace(exp.delay_seconds)

    payload = parse_evaluation(reply.text)
    annotations = materialize_annotations(payload.annotations)
    scores = normalize_scores(exp.evaluation_categories, payload.scores)
    logger.info(
        "Evaluation for run %s step %s: %d annotations, %d scores",
        state["run_id"],
        state["step_number"],
        len(annotations),
        len(scores),
    )
    return {
        "annotations": annotations,
        "scores": scores,
        "evaluator_usage": reply.token_usage,
    }
