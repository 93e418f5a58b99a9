"""Protocol runner: sequences generation steps per experiment topology.

Every oracle call is awaited in order; there is no fan-out across runs.
Any uncaught exception aborts the remaining protocol, marks the run in
flight as failed and keeps every node already published.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from coherence_lab.dependencies import Pacer, StepDependencies
from coherence_lab.graph import run_generation_step
from coherence_lab.models import (
    DocumentVersion,
    ExperimentConfig,
    GenerationMethod,
    ProtocolType,
    Resource,
    RunStatus,
    StepTokenMeta,
)
from coherence_lab.prompts import default_evaluator_prompt
from coherence_lab.schemas.oracle import EvaluationRequest, VariantText
from coherence_lab.schemas.report import ConsistencyReport
from coherence_lab.tools.annotation_matcher import AnnotationMatcher
from coherence_lab.tools.consistency_report import (
    VariantOutput,
    build_consistency_report,
    generate_consistency_commentary,
)
from coherence_lab.tools.evaluation import (
    materialize_annotations,
    normalize_scores,
    parse_evaluation,
)
from coherence_lab.tools.highlighter import highlight_variants, resolve_original_text
from coherence_lab.tools.oracle import Oracle, PacedOracle
from coherence_lab.tools.prompt_builder import PromptBuilder
from coherence_lab.tools.token_usage import (
    RunTokenTally,
    build_step_token_usage,
    format_step_usage,
)

logger = logging.getLogger(__name__)

CONSISTENCY_JUDGE_ROLE = (
    "You are an impartial annotation judge for consistency analysis."
)


def _noop(*args: Any) -> None:
    return None


@dataclass
class RunnerCallbacks:
    """Hooks through which the runner publishes state to its caller.

    Attributes:
        on_step_appended: (run_id, node) after each node is created.
        on_run_status_changed: (run_id, status) on every status change.
        on_log: Human-facing progress lines.
        resolve_run_id: (label, index) -> run id for a planned run.
        on_node_updated: (run_id, node) after annotations are appended to
            an already-published node.
    """

    on_step_appended: Callable[[str, DocumentVersion], None]
    on_run_status_changed: Callable[[str, RunStatus], None]
    on_log: Callable[[str], None]
    resolve_run_id: Callable[[str, int], str]
    on_node_updated: Callable[[str, DocumentVersion], None] = field(default=_noop)


class ProtocolRunner:
    """Executes one configured protocol against an injected oracle.

    Args:
        oracle: Generation/evaluation/judging oracle.
        callbacks: Publication hooks.
        prompt_builder: Full-prompt assembler.
        pacer: Awaited with the configured delay after every oracle call.
        matcher: Heuristic annotation matching strategy for reports.
    """

    def __init__(
        self,
        oracle: Oracle,
        callbacks: RunnerCallbacks,
        *,
        prompt_builder: PromptBuilder | None = None,
        pacer: Pacer = asyncio.sleep,
        matcher: AnnotationMatcher | None = None,
    ) -> None:
        self.oracle = oracle
        self.callbacks = callbacks
        self.pacer = pacer
        self.matcher = matcher
        self.deps = StepDependencies(
            oracle=oracle,
            prompt_builder=prompt_builder or PromptBuilder(),
            pacer=pacer,
            on_log=self._log,
        )
        self._in_flight: str | None = None
        self._tallies: dict[str, RunTokenTally] = {}

    # --- publication helpers -------------------------------------------

    def _log(self, message: str) -> None:
        logger.info(message)
        self.callbacks.on_log(message)

    def _set_status(self, run_id: str, status: RunStatus) -> None:
        self.callbacks.on_run_status_changed(run_id, status)
        self._in_flight = None if status.is_terminal else run_id

    def _publish(self, run_id: str, label: str, node: DocumentVersion) -> None:
        self.callbacks.on_step_appended(run_id, node)
        tally = self._tallies.setdefault(run_id, RunTokenTally(label=label))
        tally.add(node.token_usage)
        if node.token_usage is not None:
            self._log(tally.format())

    async def _run_labeled(
        self,
        label: str,
        index: int,
        banner: str,
        body: Callable[[str], Awaitable[Any]],
    ) -> Any:
        run_id = self.callbacks.resolve_run_id(label, index)
        self._set_status(run_id, RunStatus.RUNNING)
        self._log(banner)
        result = await body(run_id)
        self._set_status(run_id, RunStatus.COMPLETED)
        return result

    # --- resource snapshots --------------------------------------------

    @staticmethod
    def prepare_resources(
        resources: Sequence[Resource], active_ids: Sequence[str]
    ) -> list[Resource]:
        """Copy the library with ``enabled`` set by run selection."""
        wanted = set(active_ids)
        return [r.model_copy(update={"enabled": r.id in wanted}) for r in resources]

    # --- step primitives -----------------------------------------------

    async def _step(
        self,
        config: ExperimentConfig,
        run_id: str,
        label: str,
        predecessor: DocumentVersion | None,
        resources: list[Resource],
        active_ids: list[str],
        method: GenerationMethod | None,
        step_number: int,
        iteration: int,
    ) -> DocumentVersion:
        return await run_generation_step(
            self.deps,
            config=config,
            run_id=run_id,
            run_label=label,
            predecessor=predecessor,
            resources=resources,
            active_resource_ids=active_ids,
            method_override=method,
            step_number=step_number,
            iteration=iteration,
        )

    async def execute_refinement_loop(
        self,
        config: ExperimentConfig,
        run_id: str,
        label: str,
        resources: list[Resource],
        active_ids: list[str],
    ) -> list[DocumentVersion]:
        """Seed step followed by ``config.iterations`` refinements."""
        current = await self._step(
            config, run_id, label, None, resources, active_ids,
            GenerationMethod.STANDARD, 1, 0,
        )
        self._publish(run_id, label, current)
        chain = [current]

        for i in range(config.iterations):
            self._log(f"Refinement Iteration {i + 1}/{config.iterations}")
            current = await self._step(
                config, run_id, label, current, resources, active_ids,
                GenerationMethod.REFINE_LOOP, i + 2, i + 1,
            )
            self._publish(run_id, label, current)
            chain.append(current)
        return chain

    async def execute_step_by_step(
        self,
        config: ExperimentConfig,
        run_id: str,
        label: str,
        resources: list[Resource],
        active_ids: list[str],
    ) -> DocumentVersion:
        self._log("Running Step-by-Step Generation...")
        node = await self._step(
            config, run_id, label, None, resources, active_ids,
            GenerationMethod.STEP_BY_STEP, 1, 0,
        )
        self._publish(run_id, label, node)
        return node

    async def _reevaluate(
        self,
        config: ExperimentConfig,
        base: DocumentVersion,
        run_id: str,
        label: str,
        resources: list[Resource],
    ) -> DocumentVersion:
        """Independent evaluation pass over the base node's content."""
        reply = await self.oracle.evaluate(
            EvaluationRequest(
                text=base.content,
                resources=[r for r in resources if r.enabled],
                categories=config.evaluation_categories,
                model_id=config.evaluator_model_id,
                prompt_template=config.evaluator_prompt or default_evaluator_prompt(),
            )
        )
        await self.pacer(config.delay_seconds)

        payload = parse_evaluation(reply.text)
        usage = build_step_token_usage(
            generator_model_id=config.generator_model_id,
            generator_usage=None,
            evaluator_model_id=config.evaluator_model_id,
            evaluator_usage=reply.token_usage,
            meta=StepTokenMeta(
                run_id=run_id,
                run_label=label,
                step_number=1,
                iteration=0,
                method=GenerationMethod.STANDARD,
            ),
        )
        if usage is not None:
            self._log(format_step_usage(1, label, GenerationMethod.STANDARD, usage))

        return DocumentVersion(
            parent_id=base.id,
            content=base.content,
            model_id=config.generator_model_id,
            method=GenerationMethod.STANDARD,
            system_prompt_snapshot=config.system_prompt,
            task_prompt_snapshot=config.task_prompt,
            eval_prompt_snapshot=config.evaluator_prompt or None,
            full_prompt_snapshot=base.full_prompt_snapshot,
            active_resource_ids=tuple(config.active_resource_ids),
            annotations=materialize_annotations(payload.annotations),
            scores=normalize_scores(config.evaluation_categories, payload.scores),
            token_usage=usage,
            experiment_id=config.id,
            run_id=run_id,
            run_label=label,
        )

    # --- protocols -----------------------------------------------------

    async def _run_chains(
        self,
        config: ExperimentConfig,
        label: str,
        banner: str,
        resources: list[Resource],
    ) -> None:
        active = list(config.active_resource_ids)
        for i in range(config.run_count):

            async def body(run_id: str) -> None:
                await self.execute_refinement_loop(
                    config, run_id, label, resources, active
                )

            await self._run_labeled(label, i, banner.format(n=i + 1), body)

    async def _run_comparative(
        self, config: ExperimentConfig, resources: list[Resource]
    ) -> None:
        active = list(config.active_resource_ids)
        for i in range(config.run_count):

            async def sbs(run_id: str) -> None:
                await self.execute_step_by_step(
                    config, run_id, "Step-by-Step", resources, active
                )

            async def loop(run_id: str) -> None:
                await self.execute_refinement_loop(
                    config, run_id, "Refinement Loop", resources, active
                )

            await self._run_labeled(
                "Step-by-Step", i, f"=== STARTING COMPARISON (SBS) RUN {i + 1} ===", sbs
            )
            await self._run_labeled(
                "Refinement Loop",
                i,
                f"=== STARTING COMPARISON (LOOP) RUN {i + 1} ===",
                loop,
            )

    async def _run_ablation(
        self, config: ExperimentConfig, resources: list[Resource]
    ) -> None:
        active = list(config.active_resource_ids)
        for i in range(config.run_count):

            async def full(run_id: str) -> None:
                await self.execute_refinement_loop(
                    config, run_id, "Full Context", resources, active
                )

            async def zero(run_id: str) -> None:
                await self.execute_refinement_loop(
                    config, run_id, "Zero Context", [], []
                )

            await self._run_labeled(
                "Full Context", i, f"=== STARTING ABLATION (FULL) RUN {i + 1} ===", full
            )
            await self._run_labeled(
                "Zero Context", i, f"=== STARTING ABLATION (ZERO) RUN {i + 1} ===", zero
            )

    async def _run_consistency_text(
        self, config: ExperimentConfig, resources: list[Resource]
    ) -> ConsistencyReport:
        active = list(config.active_resource_ids)
        count = config.variant_count
        outputs: list[VariantOutput] = []

        for i in range(count):
            label = f"Variant {i + 1}"

            async def body(run_id: str, label: str = label) -> VariantOutput:
                node = await self._step(
                    config, run_id, label, None, resources, active,
                    GenerationMethod.STANDARD, 1, 0,
                )
                self._publish(run_id, label, node)
                return VariantOutput(label=label, node=node, run_id=run_id)

            outputs.append(
                await self._run_labeled(
                    label,
                    0,
                    f"=== STARTING CONSISTENCY VARIANT {i + 1}/{count} ===",
                    body,
                )
            )

        paced = PacedOracle(self.oracle, config.delay_seconds, self.pacer)
        enabled = [r for r in resources if r.enabled]
        highlights = await highlight_variants(
            paced,
            [VariantText(label=o.label, text=o.node.content) for o in outputs],
            original_text=resolve_original_text(enabled, outputs[0].node.content),
            model_id=config.generator_model_id,
            system_instruction=config.system_prompt,
            on_log=self._log,
        )
        for output in outputs:
            extra = highlights.get(output.label, [])
            if not extra:
                continue
            output.node.annotations.extend(extra)
            self.callbacks.on_node_updated(output.run_id or "", output.node)
            self._log(f"Added {len(extra)} consistency highlights to {output.label}")

        return await self._finish_report(
            config, paced, outputs, outputs[0], annotation_only=False
        )

    async def _run_consistency_annotation(
        self, config: ExperimentConfig, resources: list[Resource]
    ) -> ConsistencyReport:
        active = list(config.active_resource_ids)
        count = config.variant_count
        outputs: list[VariantOutput] = []

        base_run_id = self.callbacks.resolve_run_id("Variant 1", 0)
        self._set_status(base_run_id, RunStatus.RUNNING)
        self._log("=== GENERATING BASE TEXT FOR ANNOTATION CONSISTENCY ===")
        base = await self._step(
            config, base_run_id, "Variant 1", None, resources, active,
            GenerationMethod.STANDARD, 1, 0,
        )
        self._publish(base_run_id, "Variant 1", base)

        for i in range(count):
            label = f"Variant {i + 1}"

            async def body(run_id: str, label: str = label) -> VariantOutput:
                node = await self._reevaluate(config, base, run_id, label, resources)
                self._publish(run_id, label, node)
                return VariantOutput(label=label, node=node, run_id=run_id)

            outputs.append(
                await self._run_labeled(
                    label, 0, f"=== ANNOTATION PASS {i + 1}/{count} ===", body
                )
            )

        paced = PacedOracle(self.oracle, config.delay_seconds, self.pacer)
        return await self._finish_report(
            config, paced, outputs, outputs[0], annotation_only=True
        )

    async def _finish_report(
        self,
        config: ExperimentConfig,
        oracle: Oracle,
        outputs: list[VariantOutput],
        baseline: VariantOutput,
        *,
        annotation_only: bool,
    ) -> ConsistencyReport:
        report = await build_consistency_report(
            outputs,
            baseline,
            oracle=oracle,
            judge_model_id=config.evaluator_model_id,
            judge_role=CONSISTENCY_JUDGE_ROLE,
            annotation_only=annotation_only,
            matcher=self.matcher,
            on_log=self._log,
        )
        report.commentary = await generate_consistency_commentary(
            report,
            oracle,
            model_id=config.generator_model_id,
            system_instruction=config.system_prompt,
            on_log=self._log,
        )
        self._log(f"Consistency report ready. {report.summary}")
        return report

    # --- entry point ---------------------------------------------------

    async def run(
        self, config: ExperimentConfig, resources: Sequence[Resource]
    ) -> ConsistencyReport | None:
        """Execute the protocol described by ``config``.

        Returns:
            The consistency report for consistency protocols that finish,
            otherwise None. Failures are logged, never raised.
        """
        self._in_flight = None
        self._tallies = {}
        snapshot = self.prepare_resources(resources, config.active_resource_ids)
        logger.info(
            "Starting protocol %s (%s) runs=%d iterations=%d",
            config.name,
            config.type.value,
            config.run_count,
            config.iterations,
        )

        try:
            report: ConsistencyReport | None = None
            if config.type is ProtocolType.CONSISTENCY_TEXT:
                report = await self._run_consistency_text(config, snapshot)
            elif config.type is ProtocolType.CONSISTENCY_ANNOTATION:
                report = await self._run_consistency_annotation(config, snapshot)
            elif config.type is ProtocolType.CONVERGENCE:
                await self._run_chains(
                    config,
                    "Convergence",
                    "=== STARTING CONVERGENCE RUN {n} ===",
                    snapshot,
                )
            elif config.type is ProtocolType.COMPARATIVE:
                await self._run_comparative(config, snapshot)
            elif config.type is ProtocolType.ABLATION:
                await self._run_ablation(config, snapshot)
            else:
                await self._run_chains(
                    config, "Custom", "=== STARTING CUSTOM RUN {n} ===", snapshot
                )
        except Exception as e:
            logger.exception("Protocol %s aborted", config.name)
            self.callbacks.on_log(f"CRITICAL ERROR: {e}")
            if self._in_flight is not None:
                self._set_status(self._in_flight, RunStatus.FAILED)
            return None

        self._log("All protocols finished.")
        return report
