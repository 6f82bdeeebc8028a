from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping

from skinscan.config import DEFAULT_CONFIDENCE_LEVELS
from skinscan.models import Detection


@dataclass(frozen=True)
class FlatFields:
    condition: str = ""
    confidence: float | None = None
    advice: str = ""
    urgency: str = ""
    medications: dict | None = None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _top_condition(result: Mapping[str, Any]) -> Mapping[str, Any] | None:
    candidates = result.get("possible_conditions")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        return candidates[0]
    return None


def _confidence(value: Any, levels: Mapping[str, float]) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
        # 1e999 parses to inf
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        return levels.get(value.strip().upper())
    return None


def flatten_result(
    result: Any, levels: Mapping[str, float] | None = None
) -> FlatFields:
    """Project the parsed model output onto the flat query columns.

    Handles both the flat schema (``condition``/``confidence``) and the nested
    one where ``possible_conditions`` carries qualitative levels; ``levels``
    maps those levels to numbers.
    """

    if not isinstance(result, dict):
        return FlatFields()
    levels = levels if levels is not None else DEFAULT_CONFIDENCE_LEVELS
    top = _top_condition(result)

    condition = _text(result.get("condition"))
    if not condition and top is not None:
        condition = _text(top.get("name")) or _text(top.get("condition"))

    confidence = _confidence(result.get("confidence"), levels)
    if confidence is None and top is not None:
        confidence = _confidence(
            top.get("confidence", top.get("confidence_level")), levels
        )

    medications = result.get("medications")
    return FlatFields(
        condition=condition,
        confidence=confidence,
        advice=_text(result.get("advice")),
        urgency=_text(result.get("urgency")),
        medications=medications if isinstance(medications, dict) else None,
    )


def build_detection(
    *,
    user_id: str,
    image_url: str,
    image_meta: dict | None,
    description: str | None,
    model_name: str,
    completion_id: str,
    raw: str,
    result: Any,
    levels: Mapping[str, float] | None = None,
) -> Detection:
    """Assemble a new, unsaved ``Detection`` row."""

    flat = flatten_result(result, levels)
    return Detection(
        user_id=user_id,
        image_url=image_url,
        image_meta=image_meta,
        description=description or "",
        model_name=model_name or "",
        completion_id=completion_id or "",
        result=result if isinstance(result, dict) else None,
        condition=flat.condition,
        confidence=flat.confidence,
        advice=flat.advice,
        urgency=flat.urgency,
        medications=flat.medications,
        raw=raw or "",
    )


__all__ = ["FlatFields", "flatten_result", "build_detection"]
