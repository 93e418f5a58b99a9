"""Tests for the protocol runner.

Each protocol runs end to end against FakeOracle and an in-memory
VersionGraph, so lineage, statuses, logs and pacing can be inspected.
"""

from __future__ import annotations

import json

from coherence_lab.models import (
    AI_CONSISTENCY,
    GenerationMethod,
    ProtocolType,
    RunStatus,
)
from coherence_lab.runner import ProtocolRunner, RunnerCallbacks
from coherence_lab.version_graph import VersionGraph, plan_runs


def _setup(config, oracle, pacer):
    graph = VersionGraph()
    graph.add_runs(plan_runs(config))
    runner = ProtocolRunner(oracle, graph.callbacks(), pacer=pacer)
    return graph, runner


class TestConvergence:
    """Tests for the convergence loop protocol."""

    async def test_zero_iterations_yield_one_root_node(
        self, make_config, fake_oracle, pacer, resources
    ):
        """A run with no refinements holds exactly one parentless node."""
        config = make_config(iterations=0)
        graph, runner = _setup(config, fake_oracle, pacer)

        assert await runner.run(config, resources) is None

        [run] = graph.runs
        nodes = graph.lineage(run.id)
        assert len(nodes) == 1
        assert nodes[0].parent_id is None
        assert run.status is RunStatus.COMPLETED

    async def test_k_iterations_form_one_chain(
        self, make_config, fake_oracle, pacer, resources
    ):
        """K refinements give K+1 nodes, each the parent of the next."""
        config = make_config(iterations=3)
        graph, runner = _setup(config, fake_oracle, pacer)
        await runner.run(config, resources)

        nodes = graph.lineage(graph.runs[0].id)
        assert len(nodes) == 4
        assert nodes[0].parent_id is None
        for parent, child in zip(nodes, nodes[1:]):
            assert child.parent_id == parent.id
        assert [n.method for n in nodes] == [
            GenerationMethod.STANDARD,
            GenerationMethod.REFINE_LOOP,
            GenerationMethod.REFINE_LOOP,
            GenerationMethod.REFINE_LOOP,
        ]
        assert [n.token_usage.meta.step_number for n in nodes] == [1, 2, 3, 4]
        assert [n.token_usage.meta.iteration for n in nodes] == [0, 1, 2, 3]
        assert all(n.diff_stats is not None for n in nodes[1:])

    async def test_repetitions_use_separate_runs(
        self, make_config, fake_oracle, pacer, resources
    ):
        """Each repetition fills its own planned run."""
        config = make_config(iterations=1, run_count=2)
        graph, runner = _setup(config, fake_oracle, pacer)
        await runner.run(config, resources)

        assert [r.label for r in graph.runs] == ["Convergence", "Convergence"]
        assert [len(graph.lineage(r.id)) for r in graph.runs] == [2, 2]
        assert all(r.status is RunStatus.COMPLETED for r in graph.runs)
        assert len(graph.documents) == 4

    async def test_progress_log(self, make_config, fake_oracle, pacer, resources):
        """Banners, iteration markers and token lines are logged."""
        config = make_config(iterations=2)
        graph, runner = _setup(config, fake_oracle, pacer)
        await runner.run(config, resources)

        log = graph.log_lines
        assert log[0] == "=== STARTING CONVERGENCE RUN 1 ==="
        assert "Refinement Iteration 1/2" in log
        assert "Refinement Iteration 2/2" in log
        assert (
            "Cumulative tokens for Convergence after 3 step(s): "
            "prompt=60 output=30 total=90"
        ) in log
        assert log[-1] == "All protocols finished."

    async def test_paces_every_call(self, make_config, fake_oracle, pacer, resources):
        """Every generate and evaluate call is followed by the delay."""
        config = make_config(iterations=1, delay_seconds=2)
        _, runner = _setup(config, fake_oracle, pacer)
        await runner.run(config, resources)
        assert pacer.delays == [2.0] * 4

    async def test_status_transitions(self, make_config, fake_oracle, pacer, resources):
        """A run moves pending -> running -> completed."""
        events: list[tuple[str, RunStatus]] = []
        config = make_config(iterations=0)
        callbacks = RunnerCallbacks(
            on_step_appended=lambda run_id, node: None,
            on_run_status_changed=lambda run_id, status: events.append(
                (run_id, status)
            ),
            on_log=lambda line: None,
            resolve_run_id=lambda label, index: f"{label}-{index}",
        )
        await ProtocolRunner(fake_oracle, callbacks, pacer=pacer).run(
            config, resources
        )
        assert events == [
            ("Convergence-0", RunStatus.RUNNING),
            ("Convergence-0", RunStatus.COMPLETED),
        ]


class TestComparative:
    """Tests for the method comparison protocol."""

    async def test_step_by_step_then_loop(
        self, make_config, oracle_factory, pacer, resources
    ):
        """Each repetition runs step-by-step first, then the refinement loop."""
        oracle = oracle_factory(
            generate=["[[THOUGHT]]plan[[/THOUGHT]][[TEXT]]Segment.[[/TEXT]]"]
        )
        config = make_config(type=ProtocolType.COMPARATIVE, iterations=1)
        graph, runner = _setup(config, oracle, pacer)
        await runner.run(config, resources)

        sbs, loop = graph.runs
        assert (sbs.label, loop.label) == ("Step-by-Step", "Refinement Loop")
        [sbs_node] = graph.lineage(sbs.id)
        assert sbs_node.method is GenerationMethod.STEP_BY_STEP
        assert sbs_node.content == "Segment."
        assert sbs_node.thoughts == ("plan",)
        assert len(graph.lineage(loop.id)) == 2
        assert graph.log_lines.index(
            "=== STARTING COMPARISON (SBS) RUN 1 ==="
        ) < graph.log_lines.index("=== STARTING COMPARISON (LOOP) RUN 1 ===")
        assert "Running Step-by-Step Generation..." in graph.log_lines


class TestAblation:
    """Tests for the context ablation protocol."""

    async def test_zero_context_sees_no_resources(
        self, make_config, fake_oracle, pacer, resources
    ):
        """The zero-context branch gets no resources at all."""
        config = make_config(type=ProtocolType.ABLATION, iterations=1)
        graph, runner = _setup(config, fake_oracle, pacer)
        await runner.run(config, resources)

        full, zero = graph.runs
        assert (full.label, zero.label) == ("Full Context", "Zero Context")
        prompts = [r.full_prompt for r in fake_oracle.calls_to("generate")]
        assert all("ARCHIVAL CONTEXT" in p for p in prompts[:2])
        assert not any("ARCHIVAL CONTEXT" in p for p in prompts[2:])

        evaluations = fake_oracle.calls_to("evaluate")
        assert [r.id for r in evaluations[0].resources] == ["src-1", "ctx-1"]
        assert evaluations[2].resources == []
        assert all(n.active_resource_ids == () for n in graph.lineage(zero.id))


class TestCustomProtocol:
    """Tests for the custom protocol."""

    async def test_runs_a_labelled_chain(
        self, make_config, fake_oracle, pacer, resources
    ):
        """Custom protocols run a refinement chain under 'Custom'."""
        config = make_config(type=ProtocolType.CUSTOM, iterations=1)
        graph, runner = _setup(config, fake_oracle, pacer)
        await runner.run(config, resources)

        [run] = graph.runs
        assert run.label == "Custom"
        assert len(graph.lineage(run.id)) == 2
        assert "=== STARTING CUSTOM RUN 1 ===" in graph.log_lines


class TestConsistencyText:
    """Tests for the text consistency protocol."""

    async def test_m_variants_and_pairwise_report(
        self, make_config, oracle_factory, pacer, resources
    ):
        """M single-step variants yield M(M-1)/2 text pair metrics."""
        highlight = {
            "variants": [
                {
                    "label": "Variant 2",
                    "annotations": [
                        {"type": "ADDITION", "quote": "Draft number 2."},
                        {"type": "SOURCE", "quote": "  "},
                    ],
                }
            ]
        }
        oracle = oracle_factory(highlight=[json.dumps(highlight)])
        config = make_config(type=ProtocolType.CONSISTENCY_TEXT, run_count=3)
        graph, runner = _setup(config, oracle, pacer)

        report = await runner.run(config, resources)

        assert [r.label for r in graph.runs] == ["Variant 1", "Variant 2", "Variant 3"]
        assert all(len(graph.lineage(r.id)) == 1 for r in graph.runs)
        assert all(r.status is RunStatus.COMPLETED for r in graph.runs)
        assert report is not None
        assert len(report.text_pairs) == 3
        assert report.baseline_label == "Variant 1"
        assert len(report.baseline_comparisons) == 2
        assert report.commentary == "The variants broadly agree."

        request = oracle.calls_to("highlight")[0]
        assert request.original_text == resources[0].content
        assert [v.label for v in request.variants] == [
            "Variant 1",
            "Variant 2",
            "Variant 3",
        ]

        [variant_2] = graph.lineage(graph.runs[1].id)
        added = [a for a in variant_2.annotations if a.author == AI_CONSISTENCY]
        assert len(added) == 1
        assert added[0].category == "Consistency-Addition"
        assert added[0].comment == "Unique addition versus other variants."
        assert "Added 1 consistency highlights to Variant 2" in graph.log_lines

        assert len(oracle.calls_to("judge")) == 3
        assert len(oracle.calls_to("comment")) == 1
        assert len(pacer.delays) == 3 * 2 + 1 + 3 + 1
        assert graph.log_lines[-2].startswith("Consistency report ready.")

    async def test_variant_count_is_at_least_two(
        self, make_config, fake_oracle, pacer, resources
    ):
        """A single requested run still compares two variants."""
        config = make_config(type=ProtocolType.CONSISTENCY_TEXT, run_count=1)
        graph, runner = _setup(config, fake_oracle, pacer)
        report = await runner.run(config, resources)
        assert len(graph.runs) == 2
        assert len(report.text_pairs) == 1

    async def test_highlight_failure_does_not_abort(
        self, make_config, oracle_factory, pacer, resources
    ):
        """A failing highlight call just adds no annotations."""
        oracle = oracle_factory(highlight=[RuntimeError("highlight down")])
        config = make_config(type=ProtocolType.CONSISTENCY_TEXT, run_count=2)
        graph, runner = _setup(config, oracle, pacer)
        report = await runner.run(config, resources)

        assert report is not None
        assert all(
            a.author != AI_CONSISTENCY for n in graph.documents for a in n.annotations
        )
        assert "Highlight generation failed: highlight down" in graph.log_lines

    async def test_judge_and_commentary_failures_degrade(
        self, make_config, oracle_factory, pacer, resources
    ):
        """Judge failure falls back to heuristics; commentary becomes None."""
        oracle = oracle_factory(
            judge=[RuntimeError("judge down")], comment=[RuntimeError("no quota")]
        )
        config = make_config(type=ProtocolType.CONSISTENCY_TEXT, run_count=2)
        _, runner = _setup(config, oracle, pacer)
        report = await runner.run(config, resources)

        assert report.commentary is None
        assert report.annotation_pairs[0].shared == 1

    async def test_failed_judge_calls_are_still_paced(
        self, make_config, oracle_factory, pacer, resources
    ):
        """Every oracle call is followed by a delay, including failed ones."""
        oracle = oracle_factory(judge=[RuntimeError("judge down")] * 3)
        config = make_config(type=ProtocolType.CONSISTENCY_TEXT, run_count=3)
        _, runner = _setup(config, oracle, pacer)

        report = await runner.run(config, resources)

        assert report is not None
        assert len(oracle.calls_to("judge")) == 3
        assert len(oracle.calls) == 11
        assert len(pacer.delays) == len(oracle.calls)


class TestConsistencyAnnotation:
    """Tests for the annotation consistency protocol."""

    async def test_reevaluates_one_base_text(
        self, make_config, fake_oracle, pacer, resources
    ):
        """One generation, then an independent evaluation per variant."""
        config = make_config(type=ProtocolType.CONSISTENCY_ANNOTATION, run_count=2)
        graph, runner = _setup(config, fake_oracle, pacer)

        report = await runner.run(config, resources)

        assert len(fake_oracle.calls_to("generate")) == 1
        assert len(fake_oracle.calls_to("evaluate")) == 3
        first, second = graph.runs
        base, pass_1 = graph.lineage(first.id)
        [pass_2] = graph.lineage(second.id)
        assert pass_1.parent_id == base.id
        assert pass_2.parent_id == base.id
        assert pass_1.content == pass_2.content == base.content
        assert [c.role for c in pass_2.token_usage.calls] == ["evaluator"]
        assert pass_2.token_usage.meta.run_id == second.id
        assert pass_2.token_usage.meta.run_label == "Variant 2"
        assert pass_2.token_usage.meta.method is GenerationMethod.STANDARD
        assert pass_2.scores == {"accuracy": {"AI": 80}, "clarity": {"AI": 70}}

        assert report.text_pairs == []
        assert report.variant_breakdown == []
        assert len(report.annotation_pairs) == 1
        assert report.summary.startswith("Annotation agreement:")
        assert first.status is RunStatus.COMPLETED
        assert second.status is RunStatus.COMPLETED
        assert len(pacer.delays) == 4 + 1 + 1


class TestFailurePolicy:
    """Tests for oracle failures during a protocol."""

    async def test_failure_marks_run_failed_and_keeps_nodes(
        self, make_config, oracle_factory, pacer, resources
    ):
        """An oracle failure stops the protocol but keeps published nodes."""
        oracle = oracle_factory(generate=["First draft.", RuntimeError("boom")])
        config = make_config(iterations=2, run_count=2)
        graph, runner = _setup(config, oracle, pacer)

        assert await runner.run(config, resources) is None

        first, second = graph.runs
        assert first.status is RunStatus.FAILED
        assert second.status is RunStatus.PENDING
        [survivor] = graph.lineage(first.id)
        assert survivor.content == "First draft."
        assert "CRITICAL ERROR: Generation failed: boom" in graph.log_lines
        assert "All protocols finished." not in graph.log_lines

    async def test_malformed_evaluation_does_not_abort(
        self, make_config, oracle_factory, pacer, resources
    ):
        """Unparsable evaluator output degrades to an unscored node."""
        oracle = oracle_factory(evaluate=["not json"])
        config = make_config(iterations=1)
        graph, runner = _setup(config, oracle, pacer)
        await runner.run(config, resources)

        first, second = graph.lineage(graph.runs[0].id)
        assert first.scores == {}
        assert second.scores != {}
        assert graph.runs[0].status is RunStatus.COMPLETED


class TestPrepareResources:
    """Tests for ProtocolRunner.prepare_resources()."""

    def test_enabled_follows_selection(self, resources):
        """Only selected resources are enabled; the inputs are untouched."""
        prepared = ProtocolRunner.prepare_resources(resources, ["ctx-1"])
        assert [r.enabled for r in prepared] == [False, True]
        assert all(r.enabled for r in resources)
