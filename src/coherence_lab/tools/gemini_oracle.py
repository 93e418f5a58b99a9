"""Gemini-backed oracle: free-text generation and JSON-schema calls.

Every method issues exactly one ``generate_content`` call. Transport and
API errors are re-raised as OracleError; nothing is retried here.
"""

from __future__ import annotations

import logging
from typing import Any

from google import genai
from google.genai import types

from coherence_lab.config import OracleSettings
from coherence_lab.models import EvaluationCategory, TokenUsage
from coherence_lab.prompts import (
    render_commentary_prompt,
    render_evaluation_prompt,
    render_highlight_prompt,
    render_judge_prompt,
)
from coherence_lab.schemas.oracle import (
    CommentaryRequest,
    EvaluationRequest,
    GenerationRequest,
    HighlightRequest,
    JudgeRequest,
    OracleReply,
)
from coherence_lab.tools.annotation_matcher import DEFAULT_JUDGE_ROLE
from coherence_lab.tools.oracle import OracleError

logger = logging.getLogger(__name__)


def _string(description: str | None = None, **kwargs: Any) -> types.Schema:
    return types.Schema(type=types.Type.STRING, description=description, **kwargs)


def build_evaluation_schema(categories: list[EvaluationCategory]) -> types.Schema:
    """Response schema for evaluation: integer score per category id + annotations."""
    score_properties = {
        c.id: types.Schema(
            type=types.Type.INTEGER, description=f"Score (0-100) for {c.name}"
        )
        for c in categories
    }
    annotation = types.Schema(
        type=types.Type.OBJECT,
        properties={
            "quote": _string(
                "The EXACT, verbatim substring from the text being evaluated. "
                "Do not paraphrase. Copy directly."
            ),
            "level": _string(
                "The category of the issue or praise.",
                enum=[c.name for c in categories] or None,
            ),
            "comment": _string("Critique, explanation, or confirmation."),
            "sourceId": _string("ID of the resource supporting this claim."),
            "sourceQuote": _string(
                "Direct quote from the resource that proves or disproves the text."
            ),
        },
        required=["quote", "level", "comment"],
    )
    return types.Schema(
        type=types.Type.OBJECT,
        properties={
            "scores": types.Schema(
                type=types.Type.OBJECT,
                properties=score_properties or None,
                required=list(score_properties) or None,
            ),
            "annotations": types.Schema(type=types.Type.ARRAY, items=annotation),
        },
        required=["annotations", "scores"],
    )


def _usage_from_response(response: Any) -> TokenUsage | None:
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return None
    return TokenUsage(
        prompt_tokens=usage.prompt_token_count or 0,
        output_tokens=usage.candidates_token_count or 0,
        total_tokens=usage.total_token_count or 0,
    )


class GeminiOracle:
    """Oracle implementation over the google-genai async client.

    Args:
        settings: Connection and sampling settings.
        client: Optional pre-built client (tests inject a mock).
    """

    def __init__(
        self,
        settings: OracleSettings | None = None,
        client: genai.Client | None = None,
    ) -> None:
        self.settings = settings or OracleSettings.from_env()
        if client is None:
            if not self.settings.configured:
                logger.warning("GOOGLE_API_KEY not set; Gemini calls will fail")
            client = genai.Client(api_key=self.settings.api_key or None)
        self._client = client

    async def _call(
        self,
        *,
        operation: str,
        model: str,
        contents: str,
        config: types.GenerateContentConfig,
    ) -> OracleReply:
        try:
            response = await self._client.aio.models.generate_content(
                model=model or self.settings.default_model,
                contents=contents,
                config=config,
            )
        except Exception as e:
            logger.error("Gemini %s call failed (model=%s): %s", operation, model, e)
            raise OracleError(f"Gemini {operation} call failed: {e}") from e

        return OracleReply(
            text=response.text or "",
            token_usage=_usage_from_response(response),
        )

    async def generate(self, request: GenerationRequest) -> OracleReply:
        return await self._call(
            operation="generate",
            model=request.model_id,
            contents=request.full_prompt,
            config=types.GenerateContentConfig(
                system_instruction=request.system_instruction or None,
                temperature=self.settings.temperature,
                max_output_tokens=self.settings.max_output_tokens,
            ),
        )

    async def evaluate(self, request: EvaluationRequest) -> OracleReply:
        prompt = render_evaluation_prompt(
            request.text,
            request.resources,
            request.categories,
            request.prompt_template,
        )
        return await self._call(
            operation="evaluate",
            model=request.model_id,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=build_evaluation_schema(request.categories),
            ),
        )

    async def highlight(self, request: HighlightRequest) -> OracleReply:
        prompt = render_highlight_prompt(request.original_text, request.variants)
        return await self._call(
            operation="highlight",
            model=request.model_id,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=request.system_instruction or None,
                response_mime_type="application/json",
            ),
        )

    async def judge(self, request: JudgeRequest) -> OracleReply:
        prompt = render_judge_prompt(request.listing_a, request.listing_b)
        return await self._call(
            operation="judge",
            model=request.model_id,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=request.role or DEFAULT_JUDGE_ROLE,
                response_mime_type="application/json",
            ),
        )

    async def comment(self, request: CommentaryRequest) -> OracleReply:
        prompt = render_commentary_prompt(request.summary_lines)
        return await self._call(
            operation="comment",
            model=request.model_id,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=request.system_instruction or None,
                temperature=self.settings.temperature,
            ),
        )
