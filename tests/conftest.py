"""Shared fixtures: a scripted oracle double, a recording pacer and configs.

No test talks to a live model. FakeOracle replays queued replies per
operation (falling back to defaults) and records every request it saw.
"""

from __future__ import annotations

import json
from typing import Any

import pytest

from coherence_lab.models import (
    EvaluationCategory,
    ExperimentConfig,
    ProtocolType,
    Resource,
    TokenUsage,
)
from coherence_lab.schemas.oracle import OracleReply

DEFAULT_EVALUATION = {
    "scores": {"accuracy": 80, "Clarity": 70},
    "annotations": [
        {
            "quote": "Draft",
            "level": "Accuracy",
            "comment": "Opening is vague.",
        }
    ],
}

USAGE = TokenUsage(prompt_tokens=10, output_tokens=5, total_tokens=15)


class FakeOracle:
    """Oracle double with per-operation reply queues.

    Queue items may be an OracleReply, a plain string (wrapped into a
    reply) or an exception instance (raised).
    """

    OPERATIONS = ("generate", "evaluate", "highlight", "judge", "comment")

    def __init__(self, **queues: list[Any]) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.queues: dict[str, list[Any]] = {
            op: list(queues.get(op, [])) for op in self.OPERATIONS
        }

    def calls_to(self, operation: str) -> list[Any]:
        return [req for op, req in self.calls if op == operation]

    def _default(self, operation: str) -> OracleReply:
        if operation == "generate":
            count = len(self.calls_to("generate"))
            return OracleReply(text=f"Draft number {count}.", token_usage=USAGE)
        if operation == "evaluate":
            return OracleReply(text=json.dumps(DEFAULT_EVALUATION), token_usage=USAGE)
        if operation == "highlight":
            return OracleReply(text='{"variants": []}')
        if operation == "judge":
            return OracleReply(text='{"matches": []}')
        return OracleReply(text="The variants broadly agree.")

    async def _reply(self, operation: str, request: Any) -> OracleReply:
        self.calls.append((operation, request))
        queue = self.queues[operation]
        item = queue.pop(0) if queue else self._default(operation)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            return OracleReply(text=item)
        return item

    async def generate(self, request):
        return await self._reply("generate", request)

    async def evaluate(self, request):
        return await self._reply("evaluate", request)

    async def highlight(self, request):
        return await self._reply("highlight", request)

    async def judge(self, request):
        return await self._reply("judge", request)

    async def comment(self, request):
        return await self._reply("comment", request)


class RecordingPacer:
    """Pacer that records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def oracle_factory():
    """FakeOracle constructor, for tests that script reply queues."""
    return FakeOracle


@pytest.fixture
def pacer() -> RecordingPacer:
    return RecordingPacer()


@pytest.fixture
def categories() -> list[EvaluationCategory]:
    return [
        EvaluationCategory(id="accuracy", name="Accuracy", description="Factual"),
        EvaluationCategory(id="clarity", name="Clarity", description="Readable"),
    ]


@pytest.fixture
def resources() -> list[Resource]:
    return [
        Resource(
            id="src-1",
            name="Field notes",
            content="The gondola drifted past the old bridge at dusk.",
            type="primary_source",
        ),
        Resource(id="ctx-1", name="Background", content="Venice, 1890."),
    ]


@pytest.fixture
def make_config(categories):
    """Factory for ExperimentConfig with test-friendly defaults."""

    def _make(**overrides: Any) -> ExperimentConfig:
        values: dict[str, Any] = {
            "name": "Test experiment",
            "type": ProtocolType.CONVERGENCE,
            "task_prompt": "Write a short scene.",
            "refine_prompt": "Improve the scene.",
            "system_prompt": "You are a careful writer.",
            "evaluator_prompt": "Evaluate:\n{{TEXT}}\n{{CRITERIA}}\n{{CONTEXT}}",
            "evaluation_categories": categories,
            "active_resource_ids": ["src-1", "ctx-1"],
            "delay_seconds": 0.5,
        }
        values.update(overrides)
        return ExperimentConfig(**values)

    return _make
