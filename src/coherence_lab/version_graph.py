"""In-memory, append-only version graph and run planning.

The runner is the only writer of nodes and run status. Reviewers may
append confirmations, refutations and scores to existing nodes; node
content is never touched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from coherence_lab.models import (
    Annotation,
    DocumentVersion,
    ExperimentConfig,
    ExperimentRun,
    ProtocolType,
    Refutation,
    RunStatus,
)
from coherence_lab.runner import RunnerCallbacks

logger = logging.getLogger(__name__)

_PAIRED_LABELS: dict[ProtocolType, tuple[str, ...]] = {
    ProtocolType.CONVERGENCE: ("Convergence",),
    ProtocolType.COMPARATIVE: ("Step-by-Step", "Refinement Loop"),
    ProtocolType.ABLATION: ("Full Context", "Zero Context"),
    ProtocolType.CUSTOM: ("Custom",),
}


def plan_runs(config: ExperimentConfig) -> list[ExperimentRun]:
    """Create the pending runs a protocol will execute, in execution order."""
    if config.type.is_consistency:
        planned = [(i + 1, f"Variant {i + 1}") for i in range(config.variant_count)]
    else:
        per_repetition = _PAIRED_LABELS.get(config.type, ("Custom",))
        planned = [
            (i + 1, label) for i in range(config.run_count) for label in per_repetition
        ]

    return [
        ExperimentRun(experiment_id=config.id, run_number=number, label=label)
        for number, label in planned
    ]


class VersionGraph:
    """Append-only forest of DocumentVersion nodes plus the runs owning them."""

    def __init__(self) -> None:
        self.documents: list[DocumentVersion] = []
        self.runs: list[ExperimentRun] = []
        self.log_lines: list[str] = []
        self._by_id: dict[str, DocumentVersion] = {}

    # --- runs ----------------------------------------------------------

    def add_runs(self, runs: list[ExperimentRun]) -> None:
        self.runs.extend(runs)

    def get_run(self, run_id: str) -> ExperimentRun | None:
        return next((r for r in self.runs if r.id == run_id), None)

    def resolve_run_id(self, label: str, index: int) -> str:
        """Id of the ``index``-th planned run with ``label``.

        Unknown label/index pairs get a fresh ad-hoc run.
        """
        matching = [r for r in self.runs if r.label == label]
        if 0 <= index < len(matching):
            return matching[index].id
        run = ExperimentRun(
            experiment_id="",
            run_number=len(self.runs) + 1,
            label=label,
        )
        logger.info("No planned run %s #%d; created run %s", label, index, run.id)
        self.runs.append(run)
        return run.id

    def set_status(self, run_id: str, status: RunStatus) -> None:
        run = self.get_run(run_id)
        if run is None:
            raise KeyError(f"Unknown run {run_id}")
        run.transition_to(status)

    # --- nodes ---------------------------------------------------------

    def append_step(self, run_id: str, node: DocumentVersion) -> None:
        """Append a node and record it in its run's lineage."""
        if node.id in self._by_id:
            raise ValueError(f"Node {node.id} already appended")
        if node.parent_id is not None and node.parent_id not in self._by_id:
            raise ValueError(f"Parent {node.parent_id} of {node.id} is unknown")
        self.documents.append(node)
        self._by_id[node.id] = node
        run = self.get_run(run_id)
        if run is not None:
            run.step_ids = [*run.step_ids, node.id]

    def get(self, node_id: str) -> DocumentVersion | None:
        return self._by_id.get(node_id)

    def lineage(self, run_id: str) -> list[DocumentVersion]:
        run = self.get_run(run_id)
        if run is None:
            return []
        return [self._by_id[node_id] for node_id in run.step_ids]

    # --- reviewer mutations --------------------------------------------

    def _annotation(self, node_id: str, annotation_id: str) -> Annotation:
        node = self._by_id.get(node_id)
        if node is None:
            raise KeyError(f"Unknown node {node_id}")
        for ann in node.annotations:
            if ann.id == annotation_id:
                return ann
        raise KeyError(f"Unknown annotation {annotation_id} on node {node_id}")

    def confirm(self, node_id: str, annotation_id: str, reviewer: str) -> None:
        ann = self._annotation(node_id, annotation_id)
        if reviewer not in ann.confirmations:
            ann.confirmations.append(reviewer)

    def refute(
        self, node_id: str, annotation_id: str, reviewer: str, reason: str
    ) -> None:
        ann = self._annotation(node_id, annotation_id)
        ann.refutations.append(Refutation(reviewer=reviewer, reason=reason))

    def set_score(self, node_id: str, category_id: str, rater: str, score: int) -> None:
        """Record a rater's 0-100 score for a category.

        Raises:
            KeyError: If the node is unknown.
            ValueError: If the score is outside 0-100.
        """
        if not 0 <= score <= 100:
            raise ValueError(f"Score must be between 0 and 100, got {score}")
        node = self._by_id.get(node_id)
        if node is None:
            raise KeyError(f"Unknown node {node_id}")
        node.scores.setdefault(category_id, {})[rater] = int(score)

    # --- runner wiring -------------------------------------------------

    def callbacks(
        self, on_log: Callable[[str], None] | None = None
    ) -> RunnerCallbacks:
        """Callbacks that publish runner output into this graph."""

        def log(message: str) -> None:
            self.log_lines.append(message)
            if on_log:
                on_log(message)

        return RunnerCallbacks(
            on_step_appended=self.append_step,
            on_run_status_changed=self.set_status,
            on_log=log,
            resolve_run_id=self.resolve_run_id,
        )
