"""Pydantic schemas for the consistency report.

A report is a derived value, recomputed on every protocol execution.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ConsistencyPairMetric(BaseModel):
    """Text-level comparison of two variants."""

    pair_label: str
    overlap: float = Field(description="Token-set Jaccard overlap (0-1).")
    length_delta: int = Field(description="Absolute character length difference.")
    style_delta: float = Field(description="Aggregate stylistic divergence.")
    unique_a: int = Field(description="Distinct tokens only in A.")
    unique_b: int = Field(description="Distinct tokens only in B.")


class AnnotationConsistencyMetric(BaseModel):
    """Annotation agreement between two variants."""

    pair_label: str
    shared: int
    only_a: int
    only_b: int
    avg_score_delta: float | None = None
    shared_fraction: float = 0.0
    agreement_note: str | None = None
    average_quote_overlap: float = 0.0
    average_comment_similarity: float = 0.0


class GradeDelta(BaseModel):
    category: str
    score_a: int | None = None
    score_b: int | None = None
    delta: int | None = None


class GradeComparison(BaseModel):
    pair_label: str
    categories: list[GradeDelta] = Field(default_factory=list)


class AnnotationSummary(BaseModel):
    quote: str
    category: str
    comment: str
    source_id: str | None = None
    source_quote: str | None = None


class AnnotationDetail(BaseModel):
    run_label: str
    annotations: list[AnnotationSummary] = Field(default_factory=list)


class VariantConsistencyStat(BaseModel):
    """Coverage of one variant against the union of all others."""

    run_label: str
    unique_fraction: float
    shared_fraction: float
    shared_with_ratio: float
    average_overlap: float


class ConsistencyReport(BaseModel):
    text_pairs: list[ConsistencyPairMetric] = Field(default_factory=list)
    annotation_pairs: list[AnnotationConsistencyMetric] = Field(default_factory=list)
    baseline_label: str | None = None
    baseline_text_length: int | None = None
    baseline_comparisons: list[ConsistencyPairMetric] = Field(default_factory=list)
    grade_comparisons: list[GradeComparison] = Field(default_factory=list)
    annotation_details: list[AnnotationDetail] = Field(default_factory=list)
    variant_breakdown: list[VariantConsistencyStat] = Field(default_factory=list)
    summary: str = ""
    commentary: str | None = None
