"""Lenient parser for step-by-step generation replies.

Step-by-step replies interleave ``[[THOUGHT]]...[[/THOUGHT]]`` and
``[[TEXT]]...[[/TEXT]]`` blocks. Models frequently drop brackets or
closing tags, so the reply is walked by a three-state machine:

    IDLE        outside any block
    IN_THOUGHT  inside a reasoning block
    IN_TEXT     inside a narrative block

Recovery rules:
    * A tag needs its closing ``]]`` but may lose one or both opening
      brackets (``THOUGHT]]`` still counts).
    * Opening THOUGHT flushes any text collected so far as a segment.
    * Opening TEXT implicitly closes an open THOUGHT.
    * ``[[/TEXT]]`` while still in a THOUGHT with no text yet closes the
      thought.
    * Content seen while IDLE is narrative text, never dropped.
    * End of input flushes whatever is pending.
    * A reply with no recognisable segments becomes one segment holding
      the whole stripped reply with no reasoning trace.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

_TAG = re.compile(
    r"(?:\[{1,2}|(?<![A-Za-z]))\s*(/)?\s*(THOUGHT|TEXT)\s*\]\]",
    re.IGNORECASE,
)
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


class ParserState(Enum):
    IDLE = "idle"
    IN_THOUGHT = "in_thought"
    IN_TEXT = "in_text"


@dataclass(frozen=True)
class StepSegment:
    text: str
    thought: str | None = None


class StepSegmentParser:
    """Single-use state machine over one reply."""

    def __init__(self) -> None:
        self.state = ParserState.IDLE
        self.segments: list[StepSegment] = []
        self._thought: list[str] = []
        self._text: list[str] = []

    def _flush(self) -> None:
        thought = "".join(self._thought).strip()
        text = "".join(self._text).strip()
        if thought or text:
            self.segments.append(StepSegment(text=text, thought=thought or None))
        self._thought.clear()
        self._text.clear()

    def _consume(self, chunk: str) -> None:
        if not chunk:
            return
        if self.state is ParserState.IN_THOUGHT:
            self._thought.append(chunk)
        else:
            self._text.append(chunk)

    def _on_tag(self, closing: bool, tag: str) -> None:
        has_text = bool("".join(self._text).strip())
        if tag == "THOUGHT" and not closing:
            if has_text or self._thought:
                self._flush()
            self.state = ParserState.IN_THOUGHT
        elif tag == "THOUGHT":
            self.state = ParserState.IDLE
        elif not closing:
            self.state = ParserState.IN_TEXT
        elif self.state is ParserState.IN_TEXT:
            self._flush()
            self.state = ParserState.IDLE
        elif self.state is ParserState.IN_THOUGHT and not has_text:
            self.state = ParserState.IDLE
        else:
            self._flush()
            self.state = ParserState.IDLE

    def feed(self, raw: str) -> list[StepSegment]:
        pos = 0
        for match in _TAG.finditer(raw):
            self._consume(raw[pos : match.start()])
            self._on_tag(bool(match.group(1)), match.group(2).upper())
            pos = match.end()
        self._consume(raw[pos:])
        self._flush()
        return self.segments


def parse_step_segments(raw: str) -> list[StepSegment]:
    """Split a step-by-step reply into (thought, text) segments."""
    segments = StepSegmentParser().feed(raw or "")
    if not segments:
        return [StepSegment(text=(raw or "").strip())]
    return segments


def assemble_step_output(raw: str) -> tuple[str, list[str]]:
    """Return the narrative text and the ordered reasoning trace of a reply."""
    segments = parse_step_segments(raw)
    text = "\n\n".join(seg.text for seg in segments if seg.text)
    text = _EXCESS_NEWLINES.sub("\n\n", text).strip()
    thoughts = [seg.thought for seg in segments if seg.thought]
    return text or (raw or "").strip(), thoughts
