"""Lenient JSON extraction from model text output."""

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def parse_json_lenient(text: str) -> Any | None:
    """
    Parse JSON from model output.

    Tries the raw text, then the first fenced code block, then the span from
    the first ``{`` to the last ``}``. Returns None when nothing parses.
    """
    if not text:
        return None
    candidates = [text.strip()]
    fence = _FENCE_RE.search(text)
    if fence:
        candidates.append(fence.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None
