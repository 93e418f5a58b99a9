"""Lenient JSON extraction from model replies."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def safe_json_loads(text: str | None) -> Any | None:
    """Parse a JSON object out of a model reply.

    Tries the whole (fence-stripped) reply first, then the outermost
    ``{...}`` block. Returns None when nothing parses.
    """
    if not text:
        return None
    stripped = _FENCE.sub("", text.strip())
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        return json.loads(stripped[start : end + 1])
    except json.JSONDecodeError as e:
        logger.debug("Could not recover JSON from reply: %s", e)
        return None
