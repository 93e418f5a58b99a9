"""Interpretation of evaluation oracle replies.

A malformed reply never fails the step: it degrades to an empty payload.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from coherence_lab.models import (
    AI_EVALUATOR,
    AI_RATER,
    Annotation,
    EvaluationCategory,
    ScoreMap,
)
from coherence_lab.schemas.oracle import AnnotationCandidate, EvaluationPayload
from coherence_lab.tools.json_utils import safe_json_loads

logger = logging.getLogger(__name__)


def parse_evaluation(text: str | None) -> EvaluationPayload:
    """Parse an evaluation reply, falling back to an empty payload."""
    data = safe_json_loads(text)
    if not isinstance(data, dict):
        if text:
            logger.warning("Evaluation reply was not a JSON object; ignoring it")
        return EvaluationPayload()

    if not isinstance(data.get("scores"), dict):
        data["scores"] = {}
    raw_annotations = data.get("annotations")
    if not isinstance(raw_annotations, list):
        raw_annotations = []

    candidates: list[AnnotationCandidate] = []
    for raw in raw_annotations:
        try:
            candidates.append(AnnotationCandidate.model_validate(raw))
        except ValidationError as e:
            logger.warning("Dropping malformed evaluator annotation: %s", e)

    return EvaluationPayload(annotations=candidates, scores=data["scores"])


def _as_score(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return max(0, min(100, round(value)))


def normalize_scores(
    categories: Iterable[EvaluationCategory], raw_scores: Mapping[str, Any] | None
) -> ScoreMap:
    """Map raw score keys onto category ids under the AI rater.

    Keys match a category by id or name; unmatched keys are kept verbatim.
    Non-numeric and NaN values are dropped.
    """
    result: ScoreMap = {}
    if not raw_scores:
        return result

    categories = list(categories)
    for key, value in raw_scores.items():
        score = _as_score(value)
        if score is None:
            continue
        cat_id = next(
            (c.id for c in categories if key in (c.id, c.name)),
            key,
        )
        result.setdefault(cat_id, {})[AI_RATER] = score
    return result


def materialize_annotations(
    candidates: Iterable[AnnotationCandidate], author: str = AI_EVALUATOR
) -> list[Annotation]:
    """Turn evaluator candidates into annotations with fresh ids."""
    return [
        Annotation(
            quote=c.quote or "",
            category=c.level or "",
            comment=c.comment or "",
            source_id=c.source_id or None,
            source_quote=c.source_quote or None,
            author=author,
        )
        for c in candidates
    ]
