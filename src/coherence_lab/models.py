"""Shared data models for generation experiments and their version graph."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coherence_lab.config import DEFAULT_MODEL

# Reserved rater id for automated evaluator scores in a ScoreMap.
AI_RATER = "AI"

# Authorship tags for automated annotation sources.
AI_EVALUATOR = "AI_EVALUATOR"
AI_CONSISTENCY = "AI_CONSISTENCY"

# Category id -> rater id -> score (0-100).
ScoreMap = dict[str, dict[str, int]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class GenerationMethod(str, Enum):
    """How a document node was produced."""

    STANDARD = "Standard Generation"
    STEP_BY_STEP = "Step-by-Step (Visible Thought)"
    REFINE_LOOP = "Refinement Loop"


class ProtocolType(str, Enum):
    """Experiment topologies supported by the protocol runner."""

    CONVERGENCE = "Convergence Loop"
    COMPARATIVE = "Method Comparison"
    ABLATION = "Context Ablation"
    CONSISTENCY_TEXT = "Text Consistency Check"
    CONSISTENCY_ANNOTATION = "Annotation Consistency Check"
    CUSTOM = "Custom Protocol"

    @property
    def is_consistency(self) -> bool:
        return self in (
            ProtocolType.CONSISTENCY_TEXT,
            ProtocolType.CONSISTENCY_ANNOTATION,
        )


class RunStatus(str, Enum):
    """Run lifecycle status. Completed and failed are terminal."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


_ALLOWED_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.FAILED}),
    RunStatus.RUNNING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


class EvaluationCategory(BaseModel):
    """A configurable evaluation criterion."""

    id: str
    name: str
    description: str = ""


class Resource(BaseModel):
    """Reference material offered to the generator and evaluator."""

    id: str = Field(default_factory=_new_id)
    name: str
    content: str
    usage_instruction: str | None = None
    type: Literal["primary_source", "context", "literature"] = "context"
    enabled: bool = True


class RefinementConfig(BaseModel):
    """What a refinement pass feeds back into the generator.

    Attributes:
        include_original_text: Include the predecessor's text.
        include_ai_annotations: Include automated critique annotations.
        include_human_annotations: Include human reviewer notes.
        active_resource_ids: Resource ids for refinement passes. None means
            "whatever the run has enabled".
    """

    include_original_text: bool = True
    include_ai_annotations: bool = True
    include_human_annotations: bool = False
    active_resource_ids: list[str] | None = None


class StepConfig(BaseModel):
    """Segmenting instructions for step-by-step generation."""

    step_size: str = "1 paragraph"
    show_thoughts: bool = True
    enable_self_correction: bool = False
    self_correction_instruction: str = ""


class Refutation(BaseModel):
    """A reviewer's disagreement with an annotation."""

    reviewer: str
    reason: str
    timestamp: datetime = Field(default_factory=_utcnow)


class Annotation(BaseModel):
    """A highlighted quote with a category label and comment.

    The quote is what the annotator reported; it is not guaranteed to be
    locatable in the node content.
    """

    id: str = Field(default_factory=_new_id)
    quote: str
    category: str
    comment: str = ""
    source_id: str | None = None
    source_quote: str | None = None
    related_variant: str | None = None
    related_quote: str | None = None
    origin_hint: Literal["original", "variant"] | None = None
    author: str
    timestamp: datetime = Field(default_factory=_utcnow)
    confirmations: list[str] = Field(default_factory=list)
    refutations: list[Refutation] = Field(default_factory=list)

    @property
    def is_automated(self) -> bool:
        """True for evaluator/judge/consistency authored annotations."""
        return self.author.upper().startswith("AI")


class TokenUsage(BaseModel):
    """Usage reported by a single oracle call."""

    prompt_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class LlmCallUsage(TokenUsage):
    """Usage of one oracle call attributed to a role within a step."""

    model_id: str
    role: Literal["generator", "evaluator", "other"]


class StepTokenMeta(BaseModel):
    run_id: str
    run_label: str
    step_number: int
    iteration: int
    method: GenerationMethod


class StepTokenUsage(BaseModel):
    """Per-step usage: each contributing call plus the aggregate."""

    calls: list[LlmCallUsage]
    aggregate: TokenUsage
    meta: StepTokenMeta | None = None


class DiffStats(BaseModel):
    """Word-level change statistics of a node against its parent."""

    additions: int
    deletions: int
    added_length: int
    removed_length: int
    change_ratio: float


class DocumentVersion(BaseModel):
    """Write-once node of the version graph.

    Identity, lineage, content and prompt snapshots are frozen. Annotations
    and scores stay mutable so reviewers can append to them later.
    """

    id: str = Field(default_factory=_new_id, frozen=True)
    parent_id: str | None = Field(default=None, frozen=True)
    timestamp: datetime = Field(default_factory=_utcnow, frozen=True)
    content: str = Field(frozen=True)
    thoughts: tuple[str, ...] = Field(default=(), frozen=True)
    model_id: str = Field(frozen=True)
    method: GenerationMethod = Field(frozen=True)
    system_prompt_snapshot: str = Field(frozen=True)
    task_prompt_snapshot: str = Field(frozen=True)
    eval_prompt_snapshot: str | None = Field(default=None, frozen=True)
    full_prompt_snapshot: str | None = Field(default=None, frozen=True)
    refinement_config: RefinementConfig | None = Field(default=None, frozen=True)
    step_config: StepConfig | None = Field(default=None, frozen=True)
    active_resource_ids: tuple[str, ...] = Field(default=(), frozen=True)

    annotations: list[Annotation] = Field(default_factory=list)
    scores: ScoreMap = Field(default_factory=dict)

    token_usage: StepTokenUsage | None = Field(default=None, frozen=True)
    diff_stats: DiffStats | None = Field(default=None, frozen=True)

    experiment_id: str | None = Field(default=None, frozen=True)
    run_id: str | None = Field(default=None, frozen=True)
    run_label: str | None = Field(default=None, frozen=True)


class ExperimentConfig(BaseModel):
    """Configuration of one protocol execution.

    Inconsistent counts are clamped rather than rejected.
    """

    id: str = Field(default_factory=_new_id)
    name: str = "Untitled experiment"
    type: ProtocolType = ProtocolType.CONVERGENCE
    description: str = ""

    iterations: int = 1
    run_count: int = 1
    delay_seconds: float = 0.0

    generator_model_id: str = DEFAULT_MODEL
    evaluator_model_id: str = DEFAULT_MODEL

    system_prompt: str = ""
    task_prompt: str = ""
    step_prompt: str | None = None
    refine_prompt: str = ""
    evaluator_prompt: str = ""
    refine_config: RefinementConfig | None = None

    active_resource_ids: list[str] = Field(default_factory=list)
    evaluation_categories: list[EvaluationCategory] = Field(default_factory=list)

    step_config: StepConfig | None = None

    @field_validator("iterations", mode="before")
    @classmethod
    def _clamp_iterations(cls, value: int) -> int:
        return max(0, int(value))

    @field_validator("run_count", mode="before")
    @classmethod
    def _clamp_run_count(cls, value: int) -> int:
        return max(1, int(value))

    @field_validator("delay_seconds", mode="before")
    @classmethod
    def _clamp_delay(cls, value: float) -> float:
        return max(0.0, float(value))

    @property
    def variant_count(self) -> int:
        """Number of variants for consistency protocols (at least two)."""
        return max(2, self.run_count)


class ExperimentRun(BaseModel):
    """One labeled branch of a protocol and the ids of its nodes."""

    id: str = Field(default_factory=_new_id)
    experiment_id: str
    run_number: int
    label: str
    start_time: datetime = Field(default_factory=_utcnow)
    status: RunStatus = RunStatus.PENDING
    step_ids: list[str] = Field(default_factory=list)

    model_config = ConfigDict(validate_assignment=True)

    def transition_to(self, status: RunStatus) -> None:
        """Move to a new status, enforcing pending -> running -> terminal.

        Re-asserting the current status is a no-op.

        Raises:
            ValueError: On a backwards or post-terminal transition.
        """
        if status == self.status:
            return
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(
                f"Run {self.id} cannot move from {self.status.value} "
                f"to {status.value}"
            )
        self.status = status
