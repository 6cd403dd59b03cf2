"""
Learning-insight ingestion rules.

The agent posts insights about a user; every insight is logged as a learning
event and the confident ones are folded into the profile's learned context.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft7Validator

VALID_DIMENSIONS = ("skill-level", "interaction-style", "topic-interests", "frustration-signals")
MAX_LEARNED_CONTEXT = 50
MIN_WRITEBACK_CONFIDENCE = 0.5

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)

LEARN_BODY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["userId", "insights"],
    "properties": {
        "userId": {"type": "string", "minLength": 1},
        "insights": {"type": "array", "minItems": 1, "items": {"type": "object"}},
    },
}

INSIGHT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["dimension", "insight", "confidence"],
    "properties": {
        "dimension": {"enum": list(VALID_DIMENSIONS)},
        "insight": {"type": "string", "pattern": r"\S"},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "evidence": {"type": ["array", "null"]},
    },
}

_BODY_VALIDATOR = Draft7Validator(LEARN_BODY_SCHEMA)
_INSIGHT_VALIDATOR = Draft7Validator(INSIGHT_SCHEMA)


def is_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value))


def _schema_errors(validator: Draft7Validator, instance: Any) -> List[Dict[str, Any]]:
    return [{"path": list(err.path), "message": err.message} for err in validator.iter_errors(instance)]


def validate_learn_body(body: Any) -> Optional[str]:
    """Return an error message for a malformed body, or None when userId/insights are usable."""
    if _schema_errors(_BODY_VALIDATOR, body):
        return "userId and insights[] required"
    if not is_uuid(body["userId"]):
        return "Invalid userId (expected UUID)"
    return None


def _is_finite(value: Any) -> bool:
    return isinstance(value, int) or math.isfinite(value)


def _insight_message(insight: Dict[str, Any]) -> str:
    if insight.get("dimension") not in VALID_DIMENSIONS:
        return f"Invalid dimension: {insight.get('dimension')}"
    text = insight.get("insight")
    if not isinstance(text, str) or not text.strip():
        return "insight text required"
    if insight.get("evidence") is not None and not isinstance(insight["evidence"], list):
        return "evidence must be an array"
    return "confidence must be 0-1"


def validate_insights(insights: List[Dict[str, Any]]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Return (message, details) for the first invalid insight, or (None, [])."""
    for insight in insights:
        errors = _schema_errors(_INSIGHT_VALIDATOR, insight)
        if not errors and not _is_finite(insight["confidence"]):
            errors = [{"path": ["confidence"], "message": f"{insight['confidence']!r} is not a finite number"}]
        if not errors:
            continue
        return _insight_message(insight), errors
    return None, []


def merge_learned_context(
    existing: Any,
    insights: List[Dict[str, Any]],
) -> Tuple[List[str], int]:
    """
    Fold confident insights into the learned context.

    Returns (merged_list, appended_count). When nothing new qualifies the
    existing list comes back unchanged with a count of 0.
    """
    current: List[str] = [item for item in existing if isinstance(item, str)] if isinstance(existing, list) else []
    confident = [
        {**insight, "insight": insight["insight"].strip()}
        for insight in insights
        if insight["confidence"] >= MIN_WRITEBACK_CONFIDENCE
    ]
    if not confident:
        return current, 0

    known = set(current)
    new_items: List[str] = []
    for insight in confident:
        text = insight["insight"]
        if text and text not in known and text not in new_items:
            new_items.append(text)
    if not new_items:
        return current, 0

    merged = list(dict.fromkeys(current + new_items))
    if len(merged) > MAX_LEARNED_CONTEXT:
        scores = {}
        for insight in confident:
            scores.setdefault(insight["insight"], insight["confidence"])
        ranked = sorted(merged, key=lambda text: scores.get(text, 0.5), reverse=True)
        merged = ranked[:MAX_LEARNED_CONTEXT]

    kept = set(merged)
    return merged, sum(1 for text in new_items if text in kept)
