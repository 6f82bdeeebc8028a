"""Best-effort recovery of a JSON value from free-form model output."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_FENCE_EDGE_RE = re.compile(r"^```|```$")


def _reject_constant(name: str) -> Any:
    # NaN, Infinity and -Infinity are not JSON
    raise ValueError(f"Non-standard JSON constant: {name}")


def _loads(text: str) -> Any | None:
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except (ValueError, RecursionError):
        return None


def _strip_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return _FENCE_EDGE_RE.sub("", text).strip()


def extract_json(text: str | None) -> Any | None:
    """Return the JSON value embedded in ``text`` or ``None``.

    Tries, in order, the content of a fenced code block (optionally labelled
    ``json``), the text with stray leading/trailing fence markers removed, and
    finally the span between the first ``{`` and the last ``}``. The last step
    can over- or under-capture when several JSON fragments are present.
    Never raises.
    """

    if not text:
        return None
    original = str(text)
    candidate = _strip_fences(original.strip())
    if candidate:
        parsed = _loads(candidate)
        if parsed is not None:
            return parsed

    start = original.find("{")
    end = original.rfind("}")
    if start == -1 or end <= start:
        logger.debug("No JSON object found in model output")
        return None
    return _loads(original[start : end + 1])


__all__ = ["extract_json"]
