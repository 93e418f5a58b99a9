"""Prompt loading utilities.

Provides a Jinja2 Environment pre-configured to load templates from
this package directory, plus render helpers for each oracle call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateError

from coherence_lab.models import Annotation, EvaluationCategory, Resource

logger = logging.getLogger(__name__)

# Directory containing prompt templates (this package directory)
PROMPTS_DIR = Path(__file__).parent

# Judge listings trim quotes and comments to keep prompts bounded.
LISTING_FIELD_MAX = 300

_NO_CONTEXT = "No specific resources provided."


def get_prompts_env() -> Environment:
    """Return a Jinja2 Environment for the prompts directory.

    Returns:
        Jinja2 Environment with FileSystemLoader pointing to the prompts directory.
    """
    return Environment(
        loader=FileSystemLoader(str(PROMPTS_DIR)),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_template(template_name: str, **kwargs: Any) -> str:
    """Render a packaged template with the given variables.

    Args:
        template_name: File name of a template in the prompts directory.
        **kwargs: Variables to pass to the template.

    Returns:
        Rendered prompt with trailing whitespace removed.
    """
    env = get_prompts_env()
    template = env.get_template(template_name)
    return template.render(**kwargs).rstrip()


def default_evaluator_prompt() -> str:
    """Unrendered default evaluation template ({{TEXT}}/{{CRITERIA}}/{{CONTEXT}})."""
    return (PROMPTS_DIR / "evaluator.jinja2").read_text(encoding="utf-8")


def render_evaluation_prompt(
    text: str,
    resources: Iterable[Resource],
    categories: Iterable[EvaluationCategory],
    template: str | None = None,
) -> str:
    """Fill an evaluation template's TEXT, CRITERIA and CONTEXT placeholders.

    Only enabled resources contribute to CONTEXT. A template Jinja2 cannot
    parse is filled by plain placeholder substitution instead.
    """
    enabled = [r for r in resources if r.enabled]
    context = (
        "\n\n".join(f"[ID: {r.id}] {r.name}:\n{r.content}" for r in enabled)
        if enabled
        else _NO_CONTEXT
    )
    criteria = "\n".join(f"- {c.name}: {c.description}" for c in categories)
    values = {"TEXT": text or "", "CRITERIA": criteria, "CONTEXT": context}
    source = template or default_evaluator_prompt()

    try:
        return get_prompts_env().from_string(source).render(**values).rstrip()
    except TemplateError as e:
        logger.warning("Evaluator template is not valid Jinja2 (%s); substituting", e)
        for key, value in values.items():
            source = source.replace("{{" + key + "}}", value)
        return source.rstrip()


def _trim(value: str | None, limit: int = LISTING_FIELD_MAX) -> str:
    return (value or "")[:limit]


def format_judge_listing(annotations: Sequence[Annotation]) -> str:
    """Compact indexed listing of annotations for the judging oracle."""
    return "\n".join(
        f'{idx}. [{a.category or "NA"}] Q:"{_trim(a.quote)}" C:"{_trim(a.comment)}"'
        for idx, a in enumerate(annotations)
    )


def render_judge_prompt(listing_a: str, listing_b: str) -> str:
    return render_template("judge.jinja2", listing_a=listing_a, listing_b=listing_b)


def render_highlight_prompt(original_text: str, variants: Sequence[Any]) -> str:
    return render_template(
        "highlight.jinja2", original_text=original_text, variants=variants
    )


def render_commentary_prompt(summary_lines: Sequence[str]) -> str:
    return render_template("commentary.jinja2", summary_lines=summary_lines)
