"""Collaborators injected into the generation-step graph."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from coherence_lab.tools.oracle import Oracle
from coherence_lab.tools.prompt_builder import PromptBuilder

Pacer = Callable[[float], Awaitable[Any]]


def _discard(message: str) -> None:
    return None


@dataclass
class StepDependencies:
    """Everything a step needs besides its state.

    Attributes:
        oracle: Generation/evaluation oracle.
        prompt_builder: Full-prompt assembler.
        pacer: Awaited with the configured delay after every oracle call.
        on_log: Receives human-facing progress lines.
    """

    oracle: Oracle
    prompt_builder: PromptBuilder = field(default_factory=PromptBuilder)
    pacer: Pacer = asyncio.sleep
    on_log: Callable[[str], None] = _discard

    async def pace(self, delay_seconds: float) -> None:
        await self.pacer(delay_seconds)


def get_deps(config: Any) -> StepDependencies:
    """Pull StepDependencies out of a LangGraph RunnableConfig."""
    return config["configurable"]["deps"]
