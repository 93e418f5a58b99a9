"""The oracle capability consumed by the pipeline, runner and report builder.

Oracles are injected explicitly. Each call returns the raw reply text and
optional usage; interpreting the text is left to this package.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from coherence_lab.schemas.oracle import (
    CommentaryRequest,
    EvaluationRequest,
    GenerationRequest,
    HighlightRequest,
    JudgeRequest,
    OracleReply,
)


class OracleError(Exception):
    """Base exception for oracle transport or API failures."""

    pass


@runtime_checkable
class Oracle(Protocol):
    """Black-box generation/evaluation service."""

    async def generate(self, request: GenerationRequest) -> OracleReply: ...

    async def evaluate(self, request: EvaluationRequest) -> OracleReply: ...

    async def highlight(self, request: HighlightRequest) -> OracleReply: ...

    async def judge(self, request: JudgeRequest) -> OracleReply: ...

    async def comment(self, request: CommentaryRequest) -> OracleReply: ...


class PacedOracle:
    """Oracle wrapper awaiting the pacing delay after every call, failed or not."""

    def __init__(
        self,
        oracle: Oracle,
        delay_seconds: float,
        pacer: Callable[[float], Awaitable[Any]],
    ) -> None:
        self._oracle = oracle
        self._delay = delay_seconds
        self._pacer = pacer

    async def _paced(self, reply: Awaitable[OracleReply]) -> OracleReply:
        try:
            return await reply
        finally:
            await self._pacer(self._delay)

    async def generate(self, request: GenerationRequest) -> OracleReply:
        return await self._paced(self._oracle.generate(request))

    async def evaluate(self, request: EvaluationRequest) -> OracleReply:
        return await self._paced(self._oracle.evaluate(request))

    async def highlight(self, request: HighlightRequest) -> OracleReply:
        return await self._paced(self._oracle.highlight(request))

    async def judge(self, request: JudgeRequest) -> OracleReply:
        return await self._paced(self._oracle.judge(request))

    async def comment(self, request: CommentaryRequest) -> OracleReply:
        return await self._paced(self._oracle.comment(request))
