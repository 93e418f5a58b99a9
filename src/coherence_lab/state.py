"""Pipeline state for the generation-step graph.

One invocation of the graph produces exactly one DocumentVersion:
prepare -> generate -> [diff] -> evaluate -> assemble
"""

from typing import Any

from typing_extensions import TypedDict

from coherence_lab.models import (
    Annotation,
    DiffStats,
    DocumentVersion,
    ExperimentConfig,
    GenerationMethod,
    RefinementConfig,
    Resource,
    ScoreMap,
    TokenUsage,
)


class StepState(TypedDict):
    """State for a single generation step.

    Attributes:
        config: Experiment configuration driving the step.
        run_id: Run the node belongs to.
        run_label: Human label of the run.
        predecessor: Previous node of the run; its presence means refinement.
        method_override: Method to use for a seed step, if any.
        step_number: 1-based position within the run.
        iteration: 0 for the seed, then the refinement count.
        resources: Resource snapshot with per-run enabled flags.
        active_resource_ids: Resource ids selected for the run.
        method: Selected generation method. Set by prepare.
        task_prompt: Task prompt used for the step. Set by prepare.
        full_prompt: Assembled generation prompt. Set by prepare.
        refinement_config: Effective refinement settings. Set by prepare.
        content: Generated narrative. Set by generate.
        thoughts: Reasoning trace (step-by-step only). Set by generate.
        generator_usage: Usage reported by the generation call.
        diff_stats: Change statistics vs predecessor. Set by diff.
        annotations: Evaluator annotations. Set by evaluate.
        scores: Normalised evaluator scores. Set by evaluate.
        evaluator_usage: Usage reported by the evaluation call.
        node: The finished node. Set by assemble.
        error: Fatal error message; routes to END.
        failure: The exception behind ``error``.
    """

    # Input (always present)
    config: ExperimentConfig
    run_id: str
    run_label: str
    predecessor: DocumentVersion | None
    method_override: GenerationMethod | None
    step_number: int
    iteration: int
    resources: list[Resource]
    active_resource_ids: list[str]

    # Prompt preparation
    method: GenerationMethod | None
    task_prompt: str | None
    full_prompt: str | None
    refinement_config: RefinementConfig | None

    # Generation
    content: str | None
    thoughts: list[str]
    generator_usage: TokenUsage | None
    diff_stats: DiffStats | None

    # Evaluation
    annotations: list[Annotation]
    scores: ScoreMap
    evaluator_usage: TokenUsage | None

    # Output
    node: DocumentVersion | None
    error: str | None
    failure: Any
