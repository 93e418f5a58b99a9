"""Generate node: one call to the generation oracle, then the pacing delay."""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.runnables import RunnableConfig

from coherence_lab.dependencies import get_deps
from coherence_lab.models import GenerationMethod
from coherence_lab.schemas.oracle import GenerationRequest
from coherence_lab.state import StepState
from coherence_lab.tools.step_parser import assemble_step_output

logger = logging.getLogger(__name__)


async def generate_node(state: StepState, config: RunnableConfig) -> dict[str, Any]:
    """Invoke the generation oracle once.

    Step-by-step replies are split into narrative text and a reasoning
    trace. A failed call sets ``error`` and ends the graph without a node.
    """
    if state.get("error"):
        return {}

    deps = get_deps(config)
    exp = state["config"]
    method = state["method"]
    deps.on_log(f"Generating ({method.value})...")

    try:
        reply = await deps.oracle.generate(
            GenerationRequest(
                full_prompt=state["full_prompt"] or "",
                system_instruction=exp.system_prompt,
                model_id=exp.generator_model_id,
                method=method,
            )
        )
    except Exception as e:
        logger.exception(
            "Generation failed for run %s step %s",
            state["run_id"],
            state["step_number"],
        )
        return {"error": f"Generation failed: {e}", "failure": e}

    await deps.pace(exp.delay_seconds)

    if method is GenerationMethod.STEP_BY_STEP:
        content, thoughts = assemble_step_output(reply.text)
    else:
        content, thoughts = reply.text, []

    logger.info(
        "Generated %d chars for run %s step %s (%s)",
        len(content),
        state["run_id"],
        state["step_number"],
        method.value,
    )
    return {
        "content": content,
        "thoughts": thoughts,
        "generator_usage": reply.token_usage,
    }
