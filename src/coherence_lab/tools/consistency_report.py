"""Cross-variant consistency report and optional narrative commentary."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from itertools import combinations

from coherence_lab.models import AI_RATER, DocumentVersion
from coherence_lab.schemas.oracle import CommentaryRequest
from coherence_lab.schemas.report import (
    AnnotationConsistencyMetric,
    AnnotationDetail,
    AnnotationSummary,
    ConsistencyPairMetric,
    ConsistencyReport,
    GradeComparison,
    GradeDelta,
    VariantConsistencyStat,
)
from coherence_lab.tools.annotation_matcher import (
    DEFAULT_JUDGE_ROLE,
    AnnotationMatcher,
    compare_annotations,
)
from coherence_lab.tools.lexical import jaccard, style_signature, token_set
from coherence_lab.tools.oracle import Oracle
from coherence_lab.tools.scores import mean_ai_score

logger = logging.getLogger(__name__)

# Another run "shares" content with a variant above this token overlap.
SHARED_WITH_THRESHOLD = 0.05


@dataclass(frozen=True)
class VariantOutput:
    """A finished variant: its run label and the node being compared."""

    label: str
    node: DocumentVersion
    run_id: str | None = None


def _pair_metric(a: VariantOutput, b: VariantOutput) -> ConsistencyPairMetric:
    set_a = token_set(a.node.content)
    set_b = token_set(b.node.content)
    style = style_signature(a.node.content).distance(style_signature(b.node.content))
    return ConsistencyPairMetric(
        pair_label=f"{a.label} vs {b.label}",
        overlap=round(jaccard(set_a, set_b), 3),
        length_delta=abs(len(a.node.content) - len(b.node.content)),
        style_delta=round(style, 3),
        unique_a=len(set_a - set_b),
        unique_b=len(set_b - set_a),
    )


def _grade_comparison(a: VariantOutput, b: VariantOutput) -> GradeComparison:
    scores_a = a.node.scores or {}
    scores_b = b.node.scores or {}
    categories = list(dict.fromkeys([*scores_a, *scores_b]))
    deltas = []
    for cat in categories:
        score_a = scores_a.get(cat, {}).get(AI_RATER)
        score_b = scores_b.get(cat, {}).get(AI_RATER)
        delta = (
            abs(score_a - score_b)
            if score_a is not None and score_b is not None
            else None
        )
        deltas.append(
            GradeDelta(category=cat, score_a=score_a, score_b=score_b, delta=delta)
        )
    return GradeComparison(pair_label=f"{a.label} vs {b.label}", categories=deltas)


def _variant_breakdown(
    outputs: Sequence[VariantOutput],
) -> list[VariantConsistencyStat]:
    sets = [token_set(o.node.content) for o in outputs]
    stats = []
    for idx, output in enumerate(outputs):
        own = sets[idx]
        others = [s for jdx, s in enumerate(sets) if jdx != idx]
        union_others: set[str] = set().union(*others) if others else set()
        total = len(own) or 1

        overlaps = [jaccard(own, other) for other in others]
        average = sum(overlaps) / len(overlaps) if overlaps else 0.0
        shared_with = sum(1 for o in overlaps if o > SHARED_WITH_THRESHOLD)
        ratio = shared_with / len(others) if others else 0.0

        stats.append(
            VariantConsistencyStat(
                run_label=output.label,
                unique_fraction=round(len(own - union_others) / total, 3),
                shared_fraction=round(len(own & union_others) / total, 3),
                shared_with_ratio=round(ratio, 3),
                average_overlap=round(average, 3),
            )
        )
    return stats


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def summarize(
    text_pairs: Sequence[ConsistencyPairMetric],
    annotation_pairs: Sequence[AnnotationConsistencyMetric],
    annotation_only: bool,
) -> str:
    agreement = round(_mean([p.shared_fraction for p in annotation_pairs]), 3)
    if annotation_only:
        quote = round(_mean([p.average_quote_overlap for p in annotation_pairs]), 3)
        comment = round(
            _mean([p.average_comment_similarity for p in annotation_pairs]), 3
        )
        return (
            f"Annotation agreement: {agreement} (shared fraction); "
            f"highlight overlap: {quote}; comment alignment: {comment}. "
            "Higher is better."
        )

    overlaps = [p.overlap for p in text_pairs]
    avg = round(_mean(overlaps), 3)
    low = min(overlaps) if overlaps else 0.0
    high = max(overlaps) if overlaps else 0.0
    return (
        f"Average text overlap: {avg} (min {low:.3f}, max {high:.3f}). "
        f"Annotation agreement (judge-matched): {agreement}. "
        "Lower values indicate greater divergence."
    )


async def build_consistency_report(
    outputs: Sequence[VariantOutput],
    baseline: VariantOutput | None = None,
    *,
    oracle: Oracle | None = None,
    judge_model_id: str = "",
    judge_role: str = DEFAULT_JUDGE_ROLE,
    annotation_only: bool = False,
    matcher: AnnotationMatcher | None = None,
    on_log: Callable[[str], None] | None = None,
) -> ConsistencyReport:
    """Compare every unordered pair of variants.

    In annotation-only mode text metrics, baseline comparisons and the
    per-variant breakdown are skipped.
    """
    text_pairs: list[ConsistencyPairMetric] = []
    annotation_pairs: list[AnnotationConsistencyMetric] = []
    grade_comparisons: list[GradeComparison] = []

    for a, b in combinations(outputs, 2):
        pair_label = f"{a.label} vs {b.label}"
        if not annotation_only:
            text_pairs.append(_pair_metric(a, b))

        comparison = await compare_annotations(
            a.node.annotations,
            b.node.annotations,
            matcher=matcher,
            oracle=oracle,
            judge_model_id=judge_model_id,
            judge_role=judge_role,
        )
        if on_log:
            source = "judge" if comparison.judged else "heuristic"
            on_log(
                f"Annotations {pair_label}: {comparison.shared} shared "
                f"({source} matching)."
            )

        annotation_pairs.append(
            AnnotationConsistencyMetric(
                pair_label=pair_label,
                shared=comparison.shared,
                only_a=comparison.only_a,
                only_b=comparison.only_b,
                shared_fraction=round(comparison.shared_fraction, 3),
                avg_score_delta=round(
                    abs(mean_ai_score(a.node) - mean_ai_score(b.node)), 2
                ),
                agreement_note=comparison.note or None,
                average_quote_overlap=comparison.average_quote_overlap,
                average_comment_similarity=comparison.average_comment_similarity,
            )
        )
        grade_comparisons.append(_grade_comparison(a, b))

    baseline_comparisons: list[ConsistencyPairMetric] = []
    if baseline is not None and not annotation_only:
        baseline_comparisons = [
            _pair_metric(baseline, other)
            for other in outputs
            if other.label != baseline.label
        ]

    report = ConsistencyReport(
        text_pairs=text_pairs,
        annotation_pairs=annotation_pairs,
        baseline_label=baseline.label if baseline else None,
        baseline_text_length=len(baseline.node.content) if baseline else None,
        baseline_comparisons=baseline_comparisons,
        grade_comparisons=grade_comparisons,
        variant_breakdown=[] if annotation_only else _variant_breakdown(outputs),
        annotation_details=[
            AnnotationDetail(
                run_label=o.label,
                annotations=[
                    AnnotationSummary(
                        quote=ann.quote,
                        category=ann.category,
                        comment=ann.comment,
                        source_id=ann.source_id,
                        source_quote=ann.source_quote,
                    )
                    for ann in o.node.annotations
                ],
            )
            for o in outputs
        ],
        summary=summarize(text_pairs, annotation_pairs, annotation_only),
    )
    logger.info(
        "Consistency report: %d text pairs, %d annotation pairs",
        len(text_pairs),
        len(annotation_pairs),
    )
    return report


def commentary_lines(report: ConsistencyReport) -> list[str]:
    """The numeric summary handed to the commentary oracle."""
    overlaps = [p.overlap for p in report.text_pairs]
    top = max(overlaps) if overlaps else "n/a"
    low = min(overlaps) if overlaps else "n/a"
    avg_shared = round(_mean([p.shared_fraction for p in report.annotation_pairs]), 3)
    return [
        f"Summary: {report.summary}",
        f"Top text overlap: {top}",
        f"Lowest text overlap: {low}",
        f"Annotation pairs: {len(report.annotation_pairs)} (avg shared: {avg_shared})",
    ]


async def generate_consistency_commentary(
    report: ConsistencyReport,
    oracle: Oracle,
    *,
    model_id: str,
    system_instruction: str = "",
    on_log: Callable[[str], None] | None = None,
) -> str | None:
    """Short qualitative reading of the report. Failures return None."""
    if not report.text_pairs and not report.annotation_pairs:
        return None

    request = CommentaryRequest(
        summary_lines=commentary_lines(report),
        model_id=model_id,
        system_instruction=system_instruction,
    )
    try:
        reply = await oracle.comment(request)
    except Exception as e:
        logger.warning("Commentary generation failed: %s", e)
        if on_log:
            on_log(f"Commentary generation failed: {e}")
        return None

    if on_log:
        on_log("Generated LLM commentary on consistency.")
    return reply.text or None
