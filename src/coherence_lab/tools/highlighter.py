"""Cross-variant DIFF / ADDITION / SOURCE highlighting for text consistency."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from pydantic import ValidationError

from coherence_lab.models import AI_CONSISTENCY, Annotation, Resource
from coherence_lab.schemas.oracle import (
    HighlightAnnotation,
    HighlightPayload,
    HighlightRequest,
    VariantText,
)
from coherence_lab.tools.json_utils import safe_json_loads
from coherence_lab.tools.oracle import Oracle

logger = logging.getLogger(__name__)

HIGHLIGHT_CATEGORIES = {
    "SOURCE": "Consistency-Source",
    "ADDITION": "Consistency-Addition",
    "DIFF": "Consistency-Diff",
}


def resolve_original_text(resources: Sequence[Resource], fallback: str) -> str:
    """Primary sources, else every resource, else the fallback text."""
    primary = "\n\n".join(r.content for r in resources if r.type == "primary_source")
    if primary:
        return primary
    return "\n\n".join(r.content for r in resources) or fallback


def _default_comment(item: HighlightAnnotation) -> str:
    if item.kind == "SOURCE":
        return "Matches the original event or other variants."
    if item.kind == "ADDITION":
        return "Unique addition versus other variants."
    return f"Diverges from {item.related_variant or 'another variant'}."


def to_annotation(item: HighlightAnnotation) -> Annotation | None:
    """Convert one highlight into an annotation; empty quotes yield None."""
    if not item.quote or not item.quote.strip():
        return None
    related_quote = item.related_quote or item.source_quote
    if item.kind == "SOURCE":
        origin = "original"
    elif item.related_variant:
        origin = "variant"
    else:
        origin = None
    return Annotation(
        quote=item.quote,
        category=HIGHLIGHT_CATEGORIES[item.kind],
        comment=item.comment or _default_comment(item),
        source_quote=related_quote,
        related_variant=item.related_variant,
        related_quote=related_quote,
        origin_hint=origin,
        author=AI_CONSISTENCY,
    )


def parse_highlights(text: str | None) -> dict[str, list[Annotation]] | None:
    """Map variant label to its highlight annotations, or None if unparsable."""
    data = safe_json_loads(text)
    if not isinstance(data, dict) or not isinstance(data.get("variants"), list):
        return None
    try:
        payload = HighlightPayload.model_validate(data)
    except ValidationError as e:
        logger.warning("Highlight payload had unexpected shape: %s", e)
        return None

    by_label: dict[str, list[Annotation]] = {}
    for variant in payload.variants:
        annotations = [to_annotation(item) for item in variant.annotations]
        by_label[variant.label] = [a for a in annotations if a is not None]
    return by_label


async def highlight_variants(
    oracle: Oracle,
    variants: Sequence[VariantText],
    *,
    original_text: str,
    model_id: str,
    system_instruction: str = "",
    on_log: Callable[[str], None] | None = None,
) -> dict[str, list[Annotation]]:
    """Request consistency highlights for every variant.

    Any failure, transport or parsing, yields no annotations.
    """
    request = HighlightRequest(
        original_text=original_text,
        variants=list(variants),
        model_id=model_id,
        system_instruction=system_instruction,
    )
    try:
        reply = await oracle.highlight(request)
    except Exception as e:
        logger.warning("Consistency highlight failed: %s", e)
        if on_log:
            on_log(f"Highlight generation failed: {e}")
        return {}

    parsed = parse_highlights(reply.text)
    if parsed is None:
        logger.warning("Consistency highlight could not be parsed")
        if on_log:
            on_log("Consistency highlight could not be parsed; skipping annotations.")
        return {}
    return parsed
