"""Tests for per-step and per-run token accounting."""

from __future__ import annotations

from coherence_lab.models import (
    DocumentVersion,
    GenerationMethod,
    StepTokenMeta,
    TokenUsage,
)
from coherence_lab.tools.token_usage import (
    RunTokenTally,
    build_step_token_usage,
    format_step_usage,
    summarize_token_usage,
)

GEN = TokenUsage(prompt_tokens=10, output_tokens=5, total_tokens=15)
EVAL = TokenUsage(prompt_tokens=20, output_tokens=10, total_tokens=30)


def _node(usage=None) -> DocumentVersion:
    return DocumentVersion(
        content="text",
        model_id="m",
        method=GenerationMethod.STANDARD,
        system_prompt_snapshot="",
        task_prompt_snapshot="",
        token_usage=usage,
    )


class TestBuildStepTokenUsage:
    """Tests for build_step_token_usage()."""

    def test_none_when_no_call_reported_usage(self):
        """A step whose calls reported nothing has no usage record."""
        assert (
            build_step_token_usage(
                generator_model_id="g",
                generator_usage=None,
                evaluator_model_id="e",
                evaluator_usage=None,
            )
            is None
        )

    def test_generator_only(self):
        """Only the reporting call contributes."""
        usage = build_step_token_usage(
            generator_model_id="g",
            generator_usage=GEN,
            evaluator_model_id="e",
            evaluator_usage=None,
        )
        assert usage is not None
        assert [c.role for c in usage.calls] == ["generator"]
        assert usage.calls[0].model_id == "g"
        assert usage.aggregate == GEN

    def test_aggregate_sums_calls_and_keeps_meta(self):
        """Aggregate is the field-wise sum; meta is carried through."""
        meta = StepTokenMeta(
            run_id="r",
            run_label="Convergence",
            step_number=2,
            iteration=1,
            method=GenerationMethod.REFINE_LOOP,
        )
        usage = build_step_token_usage(
            generator_model_id="g",
            generator_usage=GEN,
            evaluator_model_id="e",
            evaluator_usage=EVAL,
            meta=meta,
        )
        assert usage.aggregate == TokenUsage(
            prompt_tokens=30, output_tokens=15, total_tokens=45
        )
        assert [c.role for c in usage.calls] == ["generator", "evaluator"]
        assert usage.meta == meta


class TestFormatting:
    """Tests for the log lines."""

    def test_step_line(self):
        """Per-step line lists the aggregate and each call."""
        usage = build_step_token_usage(
            generator_model_id="g",
            generator_usage=GEN,
            evaluator_model_id="e",
            evaluator_usage=EVAL,
        )
        line = format_step_usage(
            2, "Convergence", GenerationMethod.REFINE_LOOP, usage
        )
        assert line == (
            "Tokens step 2 (Convergence, Refinement Loop): "
            "prompt=30 output=15 total=45 "
            "[gen: p10 o5 t15 | eval: p20 o10 t30]"
        )

    def test_run_tally_accumulates(self):
        """The tally counts every step but only sums reported usage."""
        tally = RunTokenTally(label="Variant 1")
        step = build_step_token_usage(
            generator_model_id="g",
            generator_usage=GEN,
            evaluator_model_id="e",
            evaluator_usage=None,
        )
        tally.add(step)
        tally.add(None)
        tally.add(step)
        assert tally.steps == 3
        assert tally.usage.total_tokens == 30
        assert tally.format() == (
            "Cumulative tokens for Variant 1 after 3 step(s): "
            "prompt=20 output=10 total=30"
        )


class TestSummarizeTokenUsage:
    """Tests for summarize_token_usage()."""

    def test_skips_nodes_without_usage(self):
        """Nodes without usage do not affect the total."""
        step = build_step_token_usage(
            generator_model_id="g",
            generator_usage=GEN,
            evaluator_model_id="e",
            evaluator_usage=EVAL,
        )
        total = summarize_token_usage([_node(step), _node(None), _node(step)])
        assert total == TokenUsage(prompt_tokens=60, output_tokens=30, total_tokens=90)

    def test_empty(self):
        """No nodes means zero usage."""
        assert summarize_token_usage([]) == TokenUsage()
