"""Prepare node: select the generation method and assemble the full prompt.

No oracle call happens here.
"""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.runnables import RunnableConfig

from coherence_lab.dependencies import get_deps
from coherence_lab.models import GenerationMethod, RefinementConfig, StepConfig
from coherence_lab.state import StepState
from coherence_lab.tools.prompt_builder import RefinementContext

logger = logging.getLogger(__name__)


def select_method(
    predecessor_present: bool, override: GenerationMethod | None
) -> GenerationMethod:
    """Predecessor means refinement, else the override, else standard."""
    if predecessor_present:
        return GenerationMethod.REFINE_LOOP
    return override or GenerationMethod.STANDARD


def effective_refinement(
    configured: RefinementConfig | None, active_resource_ids: list[str]
) -> RefinementConfig:
    """Fill unset refinement settings with defaults and the run's resources."""
    configured = configured or RefinementConfig()
    return RefinementConfig(
        include_original_text=configured.include_original_text,
        include_ai_annotations=configured.include_ai_annotations,
        include_human_annotations=configured.include_human_annotations,
        active_resource_ids=(
            list(configured.active_resource_ids)
            if configured.active_resource_ids is not None
            else list(active_resource_ids)
        ),
    )


async def prepare_node(state: StepState, config: RunnableConfig) -> dict[str, Any]:
    """Pick the method and task prompt, then render the full prompt.

    Args:
        state: Step state with config, predecessor and resources.
        config: Runnable config carrying StepDependencies.

    Returns:
        Dict with method, task_prompt, full_prompt and refinement_config.
    """
    deps = get_deps(config)
    exp = state["config"]
    predecessor = state.get("predecessor")
    method = select_method(predecessor is not None, state.get("method_override"))
    refine = effective_refinement(exp.refine_config, state["active_resource_ids"])

    try:
        if method is GenerationMethod.REFINE_LOOP and predecessor is not None:
            task_prompt = exp.refine_prompt or exp.task_prompt
            full_prompt = deps.prompt_builder.build_full_prompt(
                task_prompt,
                state["resources"],
                refinement=RefinementContext(
                    original_text=predecessor.content,
                    annotations=list(predecessor.annotations),
                    config=refine,
                ),
            )
        else:
            task_prompt = exp.task_prompt
            step_config = None
            if method is GenerationMethod.STEP_BY_STEP:
                task_prompt = exp.step_prompt or exp.task_prompt
                step_config = exp.step_config or StepConfig()
            full_prompt = deps.prompt_builder.build_full_prompt(
                task_prompt, state["resources"], step_config=step_config
            )
    except Exception as e:
        logger.exception("Prompt assembly failed for run %s", state["run_id"])
        return {"error": f"Prompt assembly failed: {e}", "failure": e}

    return {
        "method": method,
        "task_prompt": task_prompt,
        "full_prompt": full_prompt,
        "refinement_config": refine,
    }
