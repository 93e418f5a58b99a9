"""Word-level diff statistics between a node and its parent.

The LCS primitive is rapidfuzz's Indel opcodes run over token lists, so
words, whitespace runs and punctuation are diffed as atomic units.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from rapidfuzz.distance import Indel

from coherence_lab.models import DiffStats

_WORD_TOKENS = re.compile(r"\s+|\w+|[^\w\s]")


@dataclass(frozen=True)
class DiffPart:
    """One contiguous run of the diff."""

    value: str
    added: bool = False
    removed: bool = False


def _split_words(text: str) -> list[str]:
    return _WORD_TOKENS.findall(text)


def calculate_diff(old_text: str, new_text: str) -> list[DiffPart]:
    """Diff two texts word by word, merging adjacent runs of the same kind."""
    old_tokens = _split_words(old_text)
    new_tokens = _split_words(new_text)
    parts: list[DiffPart] = []

    if not old_tokens and not new_tokens:
        return parts
    if not old_tokens:
        return [DiffPart("".join(new_tokens), added=True)]
    if not new_tokens:
        return [DiffPart("".join(old_tokens), removed=True)]

    for op in Indel.opcodes(old_tokens, new_tokens):
        removed = "".join(old_tokens[op.src_start : op.src_end])
        added = "".join(new_tokens[op.dest_start : op.dest_end])
        if op.tag == "equal":
            parts.append(DiffPart(removed))
            continue
        if op.tag in ("delete", "replace") and removed:
            parts.append(DiffPart(removed, removed=True))
        if op.tag in ("insert", "replace") and added:
            parts.append(DiffPart(added, added=True))

    return _merge(parts)


def _merge(parts: list[DiffPart]) -> list[DiffPart]:
    merged: list[DiffPart] = []
    for part in parts:
        if (
            merged
            and merged[-1].added == part.added
            and merged[-1].removed == part.removed
        ):
            last = merged.pop()
            part = DiffPart(last.value + part.value, part.added, part.removed)
        merged.append(part)
    return merged


def calculate_diff_stats(old_text: str, new_text: str) -> DiffStats:
    """Count added/removed runs and their character lengths.

    change_ratio = (added_length + removed_length) / max(1, len(new_text)).
    """
    additions = deletions = added_length = removed_length = 0
    for part in calculate_diff(old_text, new_text):
        if part.added:
            additions += 1
            added_length += len(part.value)
        elif part.removed:
            deletions += 1
            removed_length += len(part.value)

    return DiffStats(
        additions=additions,
        deletions=deletions,
        added_length=added_length,
        removed_length=removed_length,
        change_ratio=(added_length + removed_length) / (len(new_text) or 1),
    )
