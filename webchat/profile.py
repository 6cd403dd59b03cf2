from __future__ import annotations

import time
from typing import Any, Dict, List, Mapping, Optional

LANGUAGE_OPTIONS = ("en", "zh", "ja", "es", "fr", "de")
RESPONSE_STYLE_OPTIONS = ("concise", "detailed", "casual", "formal")
TIMEZONE_OPTIONS = (
    "Europe/London",
    "America/New_York",
    "America/Los_Angeles",
    "Asia/Tokyo",
    "Asia/Shanghai",
    "Europe/Paris",
)

DEFAULT_LANGUAGE = "en"
DEFAULT_RESPONSE_STYLE = "concise"
DEFAULT_TIMEZONE = "Europe/London"

PROFILE_PREFERENCE_FIELDS = ("language", "responseStyle", "timezone", "workContext")


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _choice(value: Any, options: tuple, default: str) -> str:
    return value if isinstance(value, str) and value in options else default


def create_default_profile(seed: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    seed = seed or {}
    prefs = seed.get("preferences") if isinstance(seed.get("preferences"), Mapping) else {}
    return {
        "name": seed.get("name") or "",
        "role": seed.get("role") or "",
        "software": _string_list(seed.get("software")),
        "preferences": {
            "language": _choice(prefs.get("language"), LANGUAGE_OPTIONS, DEFAULT_LANGUAGE),
            "responseStyle": _choice(prefs.get("responseStyle"), RESPONSE_STYLE_OPTIONS, DEFAULT_RESPONSE_STYLE),
            "timezone": _choice(prefs.get("timezone"), TIMEZONE_OPTIONS, DEFAULT_TIMEZONE),
            "workContext": prefs.get("workContext") if isinstance(prefs.get("workContext"), str) else "",
        },
        "frequentTopics": _string_list(seed.get("frequentTopics")),
        "learnedContext": _string_list(seed.get("learnedContext")),
        "lastUpdated": seed.get("lastUpdated") or _now_iso(),
    }


def profile_from_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a user_profiles row to the API profile shape, defaulting anything invalid."""
    prefs = row.get("preferences") if isinstance(row.get("preferences"), Mapping) else {}
    return create_default_profile(
        {
            "name": row.get("name"),
            "role": row.get("role"),
            "software": row.get("software"),
            "preferences": prefs,
            "frequentTopics": row.get("frequent_topics"),
            "learnedContext": row.get("learned_context"),
            "lastUpdated": row.get("updated_at"),
        }
    )


def profile_to_row(profile: Mapping[str, Any], user_id: str, existing_preferences: Any = None) -> Dict[str, Any]:
    """
    Map an API profile to a user_profiles row.

    Profile preference fields are merged into `existing_preferences` so other
    namespaced sub-keys (pinned sessions, session titles) are kept.
    """
    normalized = create_default_profile(profile)
    preferences = dict(existing_preferences) if isinstance(existing_preferences, Mapping) else {}
    for name in PROFILE_PREFERENCE_FIELDS:
        preferences[name] = normalized["preferences"][name]
    return {
        "user_id": user_id,
        "name": normalized["name"],
        "role": normalized["role"],
        "software": normalized["software"],
        "preferences": preferences,
        "frequent_topics": normalized["frequentTopics"],
        "learned_context": normalized["learnedContext"],
    }
