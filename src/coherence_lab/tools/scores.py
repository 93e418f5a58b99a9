"""Score map helpers."""

from __future__ import annotations

from coherence_lab.models import AI_RATER, DocumentVersion


def mean_ai_score(node: DocumentVersion) -> float:
    """Mean of the AI rater's scores across categories (0 when none)."""
    values = [
        raters[AI_RATER] for raters in node.scores.values() if AI_RATER in raters
    ]
    return sum(values) / len(values) if values else 0.0


def mean_score(node: DocumentVersion) -> float | None:
    """Mean over every rater and category, or None for an unscored node."""
    values = [score for raters in node.scores.values() for score in raters.values()]
    return sum(values) / len(values) if values else None
