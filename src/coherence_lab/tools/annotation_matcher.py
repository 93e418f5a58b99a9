"""Alignment of two independently produced annotation sets.

A heuristic matcher always runs. When a judging oracle is supplied its
integrity-filtered matches replace the heuristic result, provided it
returned at least one.

Heuristic scoring:
- quote overlap: 1.0 on verbatim containment, else token Jaccard
- comment similarity: 1.0 on equal/containing normalised comments, else Jaccard
- combined: 0.65 * quote + 0.35 * comment, quote below 0.35 is ineligible
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import ValidationError

from coherence_lab.models import Annotation
from coherence_lab.prompts import format_judge_listing
from coherence_lab.schemas.oracle import JudgePayload, JudgeRequest
from coherence_lab.tools.json_utils import safe_json_loads
from coherence_lab.tools.lexical import comment_similarity_score, quote_overlap_score
from coherence_lab.tools.oracle import Oracle

logger = logging.getLogger(__name__)

# Minimum quote overlap for a heuristic pair to be considered at all.
MIN_QUOTE_OVERLAP = 0.35
QUOTE_WEIGHT = 0.65
COMMENT_WEIGHT = 0.35

DEFAULT_JUDGE_ROLE = "You are an impartial annotation judge."


@dataclass(frozen=True)
class AnnotationMatch:
    """A proposed pairing of A[a_index] with B[b_index]."""

    a_index: int
    b_index: int
    reason: str = ""
    quote_score: float = 0.0
    comment_score: float = 0.0


class AnnotationMatcher(Protocol):
    """Strategy computing a partial alignment between two annotation lists."""

    def match(
        self, a: Sequence[Annotation], b: Sequence[Annotation]
    ) -> list[AnnotationMatch]: ...


def _reason(quote_score: float, comment_score: float) -> str:
    return (
        f"Quote overlap {quote_score * 100:.0f}%, "
        f"comment similarity {comment_score * 100:.0f}%"
    )


class GreedyAnnotationMatcher:
    """Order-dependent greedy best-match over A.

    Each A item takes the highest scoring unconsumed B item. The result
    approximates an optimal bipartite matching.
    """

    def __init__(
        self,
        min_quote_overlap: float = MIN_QUOTE_OVERLAP,
        quote_weight: float = QUOTE_WEIGHT,
        comment_weight: float = COMMENT_WEIGHT,
    ) -> None:
        self.min_quote_overlap = min_quote_overlap
        self.quote_weight = quote_weight
        self.comment_weight = comment_weight

    def _find_best_match(
        self, item: Annotation, b: Sequence[Annotation], used_b: set[int]
    ) -> AnnotationMatch | None:
        best: AnnotationMatch | None = None
        best_score = 0.0

        for idx, candidate in enumerate(b):
            if idx in used_b:
                continue
            q_score = quote_overlap_score(item.quote, candidate.quote)
            if q_score < self.min_quote_overlap:
                continue
            c_score = comment_similarity_score(item.comment, candidate.comment)
            combined = self.quote_weight * q_score + self.comment_weight * c_score
            if combined > best_score:
                best_score = combined
                best = AnnotationMatch(
                    a_index=-1,
                    b_index=idx,
                    reason=_reason(q_score, c_score),
                    quote_score=q_score,
                    comment_score=c_score,
                )
        return best

    def match(
        self, a: Sequence[Annotation], b: Sequence[Annotation]
    ) -> list[AnnotationMatch]:
        matches: list[AnnotationMatch] = []
        used_b: set[int] = set()
        for idx_a, item in enumerate(a):
            best = self._find_best_match(item, b, used_b)
            if best is None:
                continue
            used_b.add(best.b_index)
            matches.append(
                AnnotationMatch(
                    a_index=idx_a,
                    b_index=best.b_index,
                    reason=best.reason,
                    quote_score=best.quote_score,
                    comment_score=best.comment_score,
                )
            )
        return matches


def _as_index(value: Any, size: int) -> int | None:
    """Coerce a judge index to an in-range int, or None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if not isinstance(value, int) or not 0 <= value < size:
        return None
    return value


def filter_judge_matches(
    payload: JudgePayload, size_a: int, size_b: int
) -> list[AnnotationMatch]:
    """Keep integer, in-range index pairs, each index used at most once.

    Later pairs reusing an A or B index already taken are dropped.
    """
    matches: list[AnnotationMatch] = []
    seen_a: set[int] = set()
    seen_b: set[int] = set()
    for raw in payload.matches:
        a_idx = _as_index(raw.a_index, size_a)
        b_idx = _as_index(raw.b_index, size_b)
        if a_idx is None or b_idx is None:
            continue
        if a_idx in seen_a or b_idx in seen_b:
            logger.debug("Dropping duplicate judge pair (%s, %s)", a_idx, b_idx)
            continue
        seen_a.add(a_idx)
        seen_b.add(b_idx)
        reason = raw.reason or raw.note or ""
        matches.append(AnnotationMatch(a_index=a_idx, b_index=b_idx, reason=reason))
    return matches


async def judge_annotation_matches(
    oracle: Oracle,
    a: Sequence[Annotation],
    b: Sequence[Annotation],
    *,
    model_id: str,
    role: str = DEFAULT_JUDGE_ROLE,
) -> list[AnnotationMatch]:
    """Ask the judging oracle for matches. Failures yield an empty list."""
    if not a or not b:
        return []

    request = JudgeRequest(
        listing_a=format_judge_listing(a),
        listing_b=format_judge_listing(b),
        role=role or DEFAULT_JUDGE_ROLE,
        model_id=model_id,
    )
    try:
        reply = await oracle.judge(request)
    except Exception as e:
        logger.warning("Annotation judge failed; using fallback matching: %s", e)
        return []

    data = safe_json_loads(reply.text)
    if not isinstance(data, dict):
        logger.warning("Annotation judge reply could not be parsed; using fallback")
        return []
    try:
        payload = JudgePayload.model_validate(data)
    except ValidationError as e:
        logger.warning("Annotation judge reply had unexpected shape: %s", e)
        return []
    return filter_judge_matches(payload, len(a), len(b))


@dataclass
class AnnotationComparison:
    """Agreement metrics between two annotation lists."""

    shared: int = 0
    only_a: int = 0
    only_b: int = 0
    shared_fraction: float = 0.0
    average_quote_overlap: float = 0.0
    average_comment_similarity: float = 0.0
    note: str = ""
    judged: bool = False
    matches: list[AnnotationMatch] = field(default_factory=list)


async def compare_annotations(
    a: Sequence[Annotation],
    b: Sequence[Annotation],
    *,
    matcher: AnnotationMatcher | None = None,
    oracle: Oracle | None = None,
    judge_model_id: str = "",
    judge_role: str = DEFAULT_JUDGE_ROLE,
) -> AnnotationComparison:
    """Align A and B and summarise the agreement.

    Averages are always recomputed with the heuristic scores, whichever
    matcher produced the pairs.
    """
    if not a and not b:
        return AnnotationComparison()

    matcher = matcher or GreedyAnnotationMatcher()
    matches = matcher.match(a, b)
    note = matches[0].reason if matches else ""
    judged = False

    if oracle is not None:
        judged_matches = await judge_annotation_matches(
            oracle, a, b, model_id=judge_model_id, role=judge_role
        )
        if judged_matches:
            matches = judged_matches
            note = judged_matches[0].reason or note
            judged = True

    shared = len(matches)
    matched_b = {m.b_index for m in matches}
    largest = max(len(a), len(b))

    total_quote = total_comment = 0.0
    for m in matches:
        total_quote += quote_overlap_score(a[m.a_index].quote, b[m.b_index].quote)
        total_comment += comment_similarity_score(
            a[m.a_index].comment, b[m.b_index].comment
        )

    return AnnotationComparison(
        shared=shared,
        only_a=max(len(a) - shared, 0),
        only_b=max(len(b) - len(matched_b), 0),
        shared_fraction=shared / largest if largest else 0.0,
        average_quote_overlap=round(total_quote / shared, 3) if shared else 0.0,
        average_comment_similarity=round(total_comment / shared, 3) if shared else 0.0,
        note=note,
        judged=judged,
        matches=matches,
    )
