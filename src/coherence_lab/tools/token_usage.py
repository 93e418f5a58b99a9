"""Per-step and per-run token accounting."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from coherence_lab.models import (
    DocumentVersion,
    GenerationMethod,
    LlmCallUsage,
    StepTokenMeta,
    StepTokenUsage,
    TokenUsage,
)


def _sum_usage(usages: Iterable[TokenUsage]) -> TokenUsage:
    total = TokenUsage()
    for usage in usages:
        total.prompt_tokens += usage.prompt_tokens
        total.output_tokens += usage.output_tokens
        total.total_tokens += usage.total_tokens
    return total


def build_step_token_usage(
    *,
    generator_model_id: str,
    generator_usage: TokenUsage | None,
    evaluator_model_id: str,
    evaluator_usage: TokenUsage | None,
    meta: StepTokenMeta | None = None,
) -> StepTokenUsage | None:
    """Combine the usage of a step's oracle calls.

    A call only contributes when it reported usage. Returns None when
    neither did.
    """
    calls: list[LlmCallUsage] = []
    if generator_usage is not None:
        calls.append(
            LlmCallUsage(
                model_id=generator_model_id,
                role="generator",
                **generator_usage.model_dump(),
            )
        )
    if evaluator_usage is not None:
        calls.append(
            LlmCallUsage(
                model_id=evaluator_model_id,
                role="evaluator",
                **evaluator_usage.model_dump(),
            )
        )
    if not calls:
        return None
    return StepTokenUsage(calls=calls, aggregate=_sum_usage(calls), meta=meta)


_ROLE_TAGS = {"generator": "gen", "evaluator": "eval", "other": "other"}


def format_step_usage(
    step_number: int, label: str, method: GenerationMethod, usage: StepTokenUsage
) -> str:
    """Single log line describing one step's usage."""
    agg = usage.aggregate
    calls = " | ".join(
        f"{_ROLE_TAGS[call.role]}: p{call.prompt_tokens} "
        f"o{call.output_tokens} t{call.total_tokens}"
        for call in usage.calls
    )
    return (
        f"Tokens step {step_number} ({label}, {method.value}): "
        f"prompt={agg.prompt_tokens} output={agg.output_tokens} "
        f"total={agg.total_tokens} [{calls}]"
    )


@dataclass
class RunTokenTally:
    """Cumulative usage of a single run."""

    label: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    steps: int = 0

    def add(self, step: StepTokenUsage | None) -> None:
        self.steps += 1
        if step is None:
            return
        self.usage = _sum_usage([self.usage, step.aggregate])

    def format(self) -> str:
        return (
            f"Cumulative tokens for {self.label} after {self.steps} step(s): "
            f"prompt={self.usage.prompt_tokens} "
            f"output={self.usage.output_tokens} total={self.usage.total_tokens}"
        )


def summarize_token_usage(nodes: Iterable[DocumentVersion]) -> TokenUsage:
    """Total aggregate usage across nodes, skipping nodes without usage."""
    return _sum_usage(node.token_usage.aggregate for node in nodes if node.token_usage)
