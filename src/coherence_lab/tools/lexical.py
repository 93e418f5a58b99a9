"""Lexical similarity helpers shared by the matcher and the report builder.

Tokenisation is deliberately coarse: lower-cased ASCII alphanumeric runs.
Every score here is in [0, 1] and symmetric in its arguments.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_NON_WORD = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def tokenize(text: str) -> list[str]:
    """Split text into lower-cased alphanumeric tokens."""
    return [tok for tok in _TOKEN_SPLIT.split((text or "").lower()) if tok]


def token_set(text: str) -> frozenset[str]:
    return frozenset(tokenize(text))


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard similarity of two token collections (0 when both are empty)."""
    set_a = a if isinstance(a, (set, frozenset)) else set(a)
    set_b = b if isinstance(b, (set, frozenset)) else set(b)
    union = len(set_a | set_b) or 1
    return len(set_a & set_b) / union


@dataclass(frozen=True)
class StyleSignature:
    avg_sentence_length: float
    type_token_ratio: float

    def distance(self, other: "StyleSignature") -> float:
        """|delta mean tokens per sentence| + |delta type-token ratio|."""
        return abs(self.avg_sentence_length - other.avg_sentence_length) + abs(
            self.type_token_ratio - other.type_token_ratio
        )


def style_signature(text: str) -> StyleSignature:
    """Mean tokens per sentence and type-token ratio of a text."""
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text or "") if s.strip()]
    tokens = tokenize(text)
    avg_len = (
        sum(len(tokenize(s)) for s in sentences) / len(sentences) if sentences else 0.0
    )
    ttr = len(set(tokens)) / len(tokens) if tokens else 0.0
    return StyleSignature(avg_sentence_length=avg_len, type_token_ratio=ttr)


def quote_overlap_score(a: str, b: str) -> float:
    """1.0 when one quote verbatim-contains the other, else token Jaccard."""
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return 1.0
    return jaccard(token_set(a), token_set(b))


def normalize_comment(text: str) -> str:
    cleaned = _NON_WORD.sub("", (text or "").lower())
    return _WHITESPACE.sub(" ", cleaned).strip()


def comment_similarity_score(a: str, b: str) -> float:
    """1.0 on equal or containing normalised comments, else token Jaccard."""
    if not a or not b:
        return 0.0
    clean_a = normalize_comment(a)
    clean_b = normalize_comment(b)
    if not clean_a or not clean_b:
        return 0.0
    if clean_a == clean_b or clean_a in clean_b or clean_b in clean_a:
        return 1.0
    return jaccard(token_set(clean_a), token_set(clean_b))
