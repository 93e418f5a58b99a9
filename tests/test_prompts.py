"""Tests for prompt templates and full-prompt assembly."""

from __future__ import annotations

from coherence_lab.models import Annotation, RefinementConfig, Resource, StepConfig
from coherence_lab.prompts import (
    LISTING_FIELD_MAX,
    format_judge_listing,
    render_commentary_prompt,
    render_evaluation_prompt,
    render_judge_prompt,
)
from coherence_lab.tools.prompt_builder import PromptBuilder, RefinementContext


class TestRenderEvaluationPrompt:
    """Tests for render_evaluation_prompt()."""

    def test_fills_placeholders(self, resources, categories):
        """TEXT, CRITERIA and CONTEXT are substituted."""
        prompt = render_evaluation_prompt(
            "A scene.", resources, categories, "{{TEXT}}|{{CRITERIA}}|{{CONTEXT}}"
        )
        text, criteria, context = prompt.split("|")
        assert text == "A scene."
        assert criteria == "- Accuracy: Factual\n- Clarity: Readable"
        assert context.startswith("[ID: src-1] Field notes:\nThe gondola")
        assert "[ID: ctx-1] Background:\nVenice, 1890." in context

    def test_disabled_resources_are_skipped(self, categories):
        """Only enabled resources reach the context block."""
        hidden = Resource(id="x", name="Hidden", content="secret", enabled=False)
        prompt = render_evaluation_prompt("t", [hidden], categories, "{{CONTEXT}}")
        assert prompt == "No specific resources provided."

    def test_default_template(self, categories):
        """The packaged evaluator template is used when none is given."""
        prompt = render_evaluation_prompt("Body text.", [], categories)
        assert "=== CRITERIA ===\n- Accuracy: Factual" in prompt
        assert "=== TEXT TO ANALYZE ===\nBody text." in prompt

    def test_invalid_jinja_falls_back_to_substitution(self, categories):
        """Templates Jinja2 cannot parse still get their placeholders filled."""
        prompt = render_evaluation_prompt(
            "T", [], categories, "Check {{TEXT}} {% broken"
        )
        assert prompt == "Check T {% broken"


class TestJudgeAndCommentaryPrompts:
    """Tests for judge listings and the judge/commentary templates."""

    def test_listing_trims_long_fields(self):
        """Quotes and comments are cut to the listing limit."""
        long_quote = "q" * (LISTING_FIELD_MAX + 50)
        listing = format_judge_listing(
            [
                Annotation(quote=long_quote, category="", comment="c", author="AI"),
                Annotation(quote="short", category="Tone", author="AI"),
            ]
        )
        first, second = listing.split("\n")
        assert first == f'0. [NA] Q:"{"q" * LISTING_FIELD_MAX}" C:"c"'
        assert second == '1. [Tone] Q:"short" C:""'

    def test_judge_prompt_contains_both_lists(self):
        """Both listings appear under their headings."""
        prompt = render_judge_prompt("0. A", "0. B")
        assert prompt.endswith("LIST A:\n0. A\n\nLIST B:\n0. B")

    def test_commentary_prompt_lists_metrics(self):
        """Each summary line is rendered on its own line."""
        prompt = render_commentary_prompt(["Summary: s", "Top text overlap: n/a"])
        assert "METRICS:\nSummary: s\nTop text overlap: n/a\n" in prompt


class TestPromptBuilder:
    """Tests for PromptBuilder.build_full_prompt()."""

    def test_standard_prompt(self, resources):
        """Resources precede the instructions."""
        prompt = PromptBuilder().build_full_prompt("Write it.", resources)
        assert prompt.startswith("=== ARCHIVAL CONTEXT & RESOURCES ===")
        assert "--- [ID: src-1] Field notes ---" in prompt
        assert prompt.endswith("=== INSTRUCTIONS ===\nWrite it.")
        assert "ORIGINAL TEXT TO REFINE" not in prompt

    def test_usage_instruction_is_included(self):
        """Resources with a usage hint carry a HOW TO USE line."""
        resource = Resource(
            id="r", name="Map", content="A map.", usage_instruction="Check places."
        )
        prompt = PromptBuilder().build_full_prompt("Go.", [resource])
        assert "[HOW TO USE]: Check places.\nA map." in prompt

    def test_no_resources(self):
        """Without resources only the instructions remain."""
        prompt = PromptBuilder().build_full_prompt("Go.", [])
        assert prompt == "=== INSTRUCTIONS ===\nGo."

    def test_refinement_sections_follow_toggles(self, resources):
        """Original text and AI notes are included, human notes are not."""
        notes = [
            Annotation(quote="q1", category="Accuracy", comment="c1", author="AI"),
            Annotation(quote="q2", category="Tone", comment="c2", author="alice"),
        ]
        prompt = PromptBuilder().build_full_prompt(
            "Improve.",
            resources,
            refinement=RefinementContext(original_text="Old text.", annotations=notes),
        )
        assert "=== ORIGINAL TEXT TO REFINE ===\nOld text." in prompt
        assert '[Accuracy] "q1": c1' in prompt
        assert "HUMAN REVIEWER NOTES" not in prompt

    def test_refinement_human_notes_and_resource_subset(self, resources):
        """Human notes and the refinement resource subset are honoured."""
        config = RefinementConfig(
            include_original_text=False,
            include_ai_annotations=False,
            include_human_annotations=True,
            active_resource_ids=["ctx-1"],
        )
        notes = [Annotation(quote="q", category="Tone", comment="c", author="alice")]
        prompt = PromptBuilder().build_full_prompt(
            "Improve.",
            resources,
            refinement=RefinementContext("Old.", notes, config),
        )
        assert '[Tone] alice says regarding "q": c' in prompt
        assert "AI CRITIQUE" not in prompt
        assert "ORIGINAL TEXT TO REFINE" not in prompt
        assert "Field notes" not in prompt
        assert "Background" in prompt

    def test_step_protocol(self):
        """Step configs append the segment protocol."""
        prompt = PromptBuilder().build_full_prompt(
            "Go.", [], step_config=StepConfig(step_size="2 sentences")
        )
        assert "[SYSTEM MODE: STEP-BY-STEP GENERATION]" in prompt
        assert "Target Chunk Size: 2 sentences." in prompt
        assert "SELF-CORRECTION" not in prompt

    def test_self_correction_default_instruction(self):
        """Self-correction without custom text uses the default wording."""
        prompt = PromptBuilder().build_full_prompt(
            "Go.", [], step_config=StepConfig(enable_self_correction=True)
        )
        assert prompt.endswith(
            "[SELF-CORRECTION PROTOCOL ACTIVE]:\n"
            "You are explicitly authorized to rewrite history if the coherence "
            "drifts. Monitor your own output."
        )
