"""
Normalization of preference payloads: pinned sessions and session titles.

All functions are pure and never raise on malformed input. Invalid values
come back as None (single values) or are dropped (collections).
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional

PINNED_SESSIONS_PREF_KEY = "fc_pinned_sessions_v1"
SESSION_TITLES_PREF_KEY = "fc_session_titles_v1"

MAX_SESSION_KEY_LENGTH = 512
MAX_PINNED_SESSIONS = 50
MAX_SESSION_TITLES = 500
MAX_TITLE_LENGTH = 160

TITLE_SOURCES = ("auto", "user", "remote")


def is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def normalize_session_key(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    key = value.strip()
    if not key or len(key) > MAX_SESSION_KEY_LENGTH:
        return None
    return key


def normalize_pinned_keys(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    keys: List[str] = []
    seen = set()
    for item in value:
        key = normalize_session_key(item)
        if key is None or key in seen:
            continue
        seen.add(key)
        keys.append(key)
        if len(keys) >= MAX_PINNED_SESSIONS:
            break
    return keys


def normalize_stored_pinned_sessions(value: Any) -> Dict[str, Any]:
    """Read-path tolerance: accept a bare list, a {keys, updatedAtMs} object, or garbage."""
    if isinstance(value, (list, tuple)):
        return {"keys": normalize_pinned_keys(value), "updatedAtMs": 0}
    if not isinstance(value, Mapping):
        return {"keys": [], "updatedAtMs": 0}
    updated_at = value.get("updatedAtMs")
    return {
        "keys": normalize_pinned_keys(value.get("keys")),
        "updatedAtMs": updated_at if is_finite_number(updated_at) else 0,
    }


def normalize_stored_title(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, str):
        title = value.strip()
        if not title:
            return None
        return {"title": title[:MAX_TITLE_LENGTH], "source": "auto", "updatedAtMs": 0}
    if not isinstance(value, Mapping):
        return None

    raw_title = value.get("title")
    title = raw_title.strip() if isinstance(raw_title, str) else ""
    if not title:
        return None
    source = value.get("source")
    updated_at = value.get("updatedAtMs")
    return {
        "title": title[:MAX_TITLE_LENGTH],
        "source": source if source in ("user", "remote") else "auto",
        "updatedAtMs": updated_at if is_finite_number(updated_at) else 0,
    }


def normalize_title_map(value: Any) -> Dict[str, Dict[str, Any]]:
    if not isinstance(value, Mapping):
        return {}
    titles: Dict[str, Dict[str, Any]] = {}
    for raw_key, raw_value in value.items():
        key = normalize_session_key(raw_key)
        if key is None:
            continue
        entry = normalize_stored_title(raw_value)
        if entry is None:
            continue
        titles[key] = entry
    return titles


def coerce_preferences(value: Any) -> Dict[str, Any]:
    """Treat anything but a JSON object as an empty preference blob."""
    return dict(value) if isinstance(value, Mapping) else {}


def merge_pinned_sessions(preferences: Any, keys: List[str], updated_at_ms: float) -> Dict[str, Any]:
    """Replace the pinned-sessions sub-key wholesale, keeping unrelated sub-keys."""
    merged = coerce_preferences(preferences)
    merged[PINNED_SESSIONS_PREF_KEY] = {"keys": list(keys), "updatedAtMs": updated_at_ms}
    return merged


def merge_session_titles(
    preferences: Any,
    set_map: Mapping[str, Dict[str, Any]],
    remove_keys: Iterable[str] = (),
) -> Dict[str, Any]:
    """
    Shallow-merge titles into the stored map, then apply removals.

    A key present in both `set_map` and `remove_keys` ends up removed.
    """
    merged = coerce_preferences(preferences)
    titles = normalize_title_map(merged.get(SESSION_TITLES_PREF_KEY))
    titles.update(set_map)
    for key in remove_keys:
        titles.pop(key, None)
    merged[SESSION_TITLES_PREF_KEY] = titles
    return merged
