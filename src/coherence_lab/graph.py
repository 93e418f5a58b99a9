"""LangGraph workflow for a single generation step.

START -> prepare -> generate -> [diff] -> evaluate -> assemble -> END

Error routing:
- After prepare, generate and evaluate: conditional edges route to END on error
- Diff only runs for refinement steps (a predecessor is present)
- run_generation_step raises OracleError when the graph ended on an error,
  so a failed step never yields a partial node
"""

from typing import Any

from langgraph.graph import END, START, StateGraph

from coherence_lab.dependencies import StepDependencies
from coherence_lab.models import (
    DocumentVersion,
    ExperimentConfig,
    GenerationMethod,
    Resource,
)
from coherence_lab.nodes import (
    assemble_node,
    diff_node,
    evaluate_node,
    generate_node,
    prepare_node,
)
from coherence_lab.state import StepState
from coherence_lab.tools.oracle import OracleError


def should_continue(state: StepState) -> str:
    """Route to error END or continue to next node.

    Args:
        state: Current step state.

    Returns:
        'error' if state has a fatal error, 'continue' otherwise.
    """
    return "error" if state.get("error") else "continue"


def route_after_generate(state: StepState) -> str:
    """Send refinement steps through the diff node."""
    if state.get("error"):
        return "error"
    if state.get("method") is GenerationMethod.REFINE_LOOP and state.get(
        "predecessor"
    ):
        return "diff"
    return "evaluate"


def create_step_graph() -> Any:
    """Create and compile the generation-step workflow graph.

    Returns:
        Compiled StateGraph ready for async execution.
    """
    workflow = StateGraph(StepState)

    workflow.add_node("prepare", prepare_node)
    workflow.add_node("generate", generate_node)
    workflow.add_node("diff", diff_node)
    workflow.add_node("evaluate", evaluate_node)
    workflow.add_node("assemble", assemble_node)

    workflow.add_edge(START, "prepare")
    workflow.add_conditional_edges(
        "prepare",
        should_continue,
        {"continue": "generate", "error": END},
    )
    workflow.add_conditional_edges(
        "generate",
        route_after_generate,
        {"diff": "diff", "evaluate": "evaluate", "error": END},
    )
    workflow.add_edge("diff", "evaluate")
    workflow.add_conditional_edges(
        "evaluate",
        should_continue,
        {"continue": "assemble", "error": END},
    )
    workflow.add_edge("assemble", END)

    return workflow.compile()


# Compiled once; the graph holds no per-call state.
_graph = None


def get_step_graph() -> Any:
    """Get or create the compiled graph singleton."""
    global _graph  # noqa: PLW0603
    if _graph is None:
        _graph = create_step_graph()
    return _graph


async def run_generation_step(
    deps: StepDependencies,
    *,
    config: ExperimentConfig,
    run_id: str,
    run_label: str,
    predecessor: DocumentVersion | None,
    resources: list[Resource],
    active_resource_ids: list[str],
    method_override: GenerationMethod | None = None,
    step_number: int = 1,
    iteration: int = 0,
) -> DocumentVersion:
    """Produce exactly one node for a run.

    Raises:
        OracleError: If prompt assembly, generation or evaluation failed.
    """
    initial_state: StepState = {
        "config": config,
        "run_id": run_id,
        "run_label": run_label,
        "predecessor": predecessor,
        "method_override": method_override,
        "step_number": step_number,
        "iteration": iteration,
        "resources": resources,
        "active_resource_ids": active_resource_ids,
        "method": None,
        "task_prompt": None,
        "full_prompt": None,
        "refinement_config": None,
        "content": None,
        "thoughts": [],
        "generator_usage": None,
        "diff_stats": None,
        "annotations": [],
        "scores": {},
        "evaluator_usage": None,
        "node": None,
        "error": None,
        "failure": None,
    }
    result = await get_step_graph().ainvoke(
        initial_state, config={"configurable": {"deps": deps}}
    )
    if result.get("error"):
        raise OracleError(result["error"]) from result.get("failure")
    return result["node"]
