"""Pydantic schemas for oracle traffic and consistency reports."""

from coherence_lab.schemas.oracle import (
    AnnotationCandidate,
    CommentaryRequest,
    EvaluationPayload,
    EvaluationRequest,
    GenerationRequest,
    HighlightPayload,
    HighlightRequest,
    JudgePayload,
    JudgeRequest,
    OracleReply,
    VariantText,
)
from coherence_lab.schemas.report import (
    AnnotationConsistencyMetric,
    AnnotationDetail,
    ConsistencyPairMetric,
    ConsistencyReport,
    GradeComparison,
    GradeDelta,
    VariantConsistencyStat,
)

__all__ = [
    "AnnotationCandidate",
    "AnnotationConsistencyMetric",
    "AnnotationDetail",
    "CommentaryRequest",
    "ConsistencyPairMetric",
    "ConsistencyReport",
    "EvaluationPayload",
    "EvaluationRequest",
    "GenerationRequest",
    "GradeComparison",
    "GradeDelta",
    "HighlightPayload",
    "HighlightRequest",
    "JudgePayload",
    "JudgeRequest",
    "OracleReply",
    "VariantConsistencyStat",
    "VariantText",
]
