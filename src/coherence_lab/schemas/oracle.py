"""Request/response schemas for the oracle capability.

Every oracle call returns the raw reply text plus optional usage; the
structured payloads below are parsed from that text by this package so
malformed output can be recovered locally.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from coherence_lab.models import (
    EvaluationCategory,
    GenerationMethod,
    Resource,
    TokenUsage,
)


class OracleReply(BaseModel):
    """Raw text returned by any oracle call."""

    text: str = ""
    token_usage: TokenUsage | None = None


class GenerationRequest(BaseModel):
    full_prompt: str
    system_instruction: str
    model_id: str
    method: GenerationMethod = GenerationMethod.STANDARD


class EvaluationRequest(BaseModel):
    text: str
    resources: list[Resource] = Field(default_factory=list)
    categories: list[EvaluationCategory] = Field(default_factory=list)
    model_id: str
    prompt_template: str


class VariantText(BaseModel):
    label: str
    text: str


class HighlightRequest(BaseModel):
    original_text: str
    variants: list[VariantText]
    model_id: str
    system_instruction: str = ""


class JudgeRequest(BaseModel):
    listing_a: str
    listing_b: str
    role: str
    model_id: str


class CommentaryRequest(BaseModel):
    summary_lines: list[str]
    model_id: str
    system_instruction: str = ""


# --- Parsed payloads ----------------------------------------------------


class AnnotationCandidate(BaseModel):
    """Annotation proposed by the evaluation oracle."""

    quote: str | None = None
    level: str | None = Field(
        default=None,
        description="Category name or id the issue or praise belongs to.",
    )
    comment: str | None = None
    source_id: str | None = Field(default=None, alias="sourceId")
    source_quote: str | None = Field(default=None, alias="sourceQuote")

    model_config = ConfigDict(populate_by_name=True)


class EvaluationPayload(BaseModel):
    """Evaluation oracle JSON payload. Scores stay untyped until normalised."""

    annotations: list[AnnotationCandidate] = Field(default_factory=list)
    scores: dict[str, Any] = Field(default_factory=dict)


class HighlightAnnotation(BaseModel):
    type: str | None = "DIFF"
    quote: str | None = None
    comment: str | None = None
    related_variant: str | None = Field(default=None, alias="relatedVariant")
    related_quote: str | None = Field(default=None, alias="relatedQuote")
    source_quote: str | None = Field(default=None, alias="sourceQuote")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def kind(self) -> Literal["DIFF", "ADDITION", "SOURCE"]:
        upper = (self.type or "").strip().upper()
        if upper == "SOURCE":
            return "SOURCE"
        if upper == "ADDITION":
            return "ADDITION"
        return "DIFF"


class HighlightVariant(BaseModel):
    label: str
    annotations: list[HighlightAnnotation] = Field(default_factory=list)


class HighlightPayload(BaseModel):
    variants: list[HighlightVariant]


class JudgeMatch(BaseModel):
    """One index pair proposed by the judging oracle, before integrity checks."""

    a_index: Any = Field(default=None, alias="aIndex")
    b_index: Any = Field(default=None, alias="bIndex")
    reason: str | None = None
    note: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class JudgePayload(BaseModel):
    matches: list[JudgeMatch] = Field(default_factory=list)
