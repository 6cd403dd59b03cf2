"""
Profile store: SQLite- or Postgres-backed user profiles.

user_profiles table: (user_id, name, role, software, preferences, frequent_topics, learned_context, updated_at)
JSON columns are stored as text. A missing row is an empty state, never an error.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from webchat.storage.db import connect, dump_json, ensure_sqlite_dir, is_postgres, load_json, sql

logger = logging.getLogger("webchat")

_PROFILE_COLUMNS = "user_id, name, role, software, preferences, frequent_topics, learned_context, updated_at"


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def init_db() -> None:
    """Create the user_profiles table. Call at app startup."""
    ensure_sqlite_dir()
    with connect() as conn:
        if not is_postgres():
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS user_profiles (
                user_id TEXT PRIMARY KEY,
                name TEXT,
                role TEXT,
                software TEXT,
                preferences TEXT,
                frequent_topics TEXT,
                learned_context TEXT,
                updated_at TEXT
            )
            """
        )
        conn.commit()


def _row_to_dict(row: Any) -> Dict[str, Any]:
    return {
        "user_id": row["user_id"],
        "name": row["name"],
        "role": row["role"],
        "software": load_json(row["software"], None),
        "preferences": load_json(row["preferences"], None),
        "frequent_topics": load_json(row["frequent_topics"], None),
        "learned_context": load_json(row["learned_context"], None),
        "updated_at": row["updated_at"],
    }


def get_profile_row(user_id: str) -> Optional[Dict[str, Any]]:
    """Return the raw profile row as a dict, or None when the user has no profile."""
    init_db()  # Idempotent; ensures tables exist when TestClient doesn't run lifespan before first request
    with connect() as conn:
        row = conn.execute(
            sql(f"SELECT {_PROFILE_COLUMNS} FROM user_profiles WHERE user_id = ?"),
            (user_id,),
        ).fetchone()
    if row is None:
        return None
    return _row_to_dict(row)


def get_preferences(user_id: str) -> Dict[str, Any]:
    """Preference blob for a user; {} when the row or blob is missing or not an object."""
    row = get_profile_row(user_id)
    if row is None:
        return {}
    prefs = row.get("preferences")
    return prefs if isinstance(prefs, dict) else {}


def save_preferences(user_id: str, preferences: Dict[str, Any]) -> None:
    """Upsert only the preference blob, leaving other profile columns intact."""
    init_db()
    with connect() as conn:
        conn.execute(
            sql(
                "INSERT INTO user_profiles (user_id, preferences, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT (user_id) DO UPDATE SET preferences = excluded.preferences, updated_at = excluded.updated_at"
            ),
            (user_id, dump_json(preferences), _now_iso()),
        )
        conn.commit()


def upsert_profile(row: Dict[str, Any]) -> Dict[str, Any]:
    """Insert or replace every profile column for row['user_id']; returns the stored row."""
    init_db()
    updated_at = _now_iso()
    with connect() as conn:
        conn.execute(
            sql(
                f"INSERT INTO user_profiles ({_PROFILE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (user_id) DO UPDATE SET "
                "name = excluded.name, role = excluded.role, software = excluded.software, "
                "preferences = excluded.preferences, frequent_topics = excluded.frequent_topics, "
                "learned_context = excluded.learned_context, updated_at = excluded.updated_at"
            ),
            (
                row["user_id"],
                row.get("name"),
                row.get("role"),
                dump_json(row.get("software") or []),
                dump_json(row.get("preferences") or {}),
                dump_json(row.get("frequent_topics") or []),
                dump_json(row.get("learned_context") or []),
                updated_at,
            ),
        )
        conn.commit()
    return get_profile_row(row["user_id"]) or {}


def create_learned_context(user_id: str, learned_context: List[str]) -> bool:
    """
    Create a profile row holding only learned context.

    Returns False when a row already exists (e.g. created concurrently).
    """
    init_db()
    with connect() as conn:
        cur = conn.execute(
            sql(
                "INSERT INTO user_profiles (user_id, learned_context, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT (user_id) DO NOTHING"
            ),
            (user_id, dump_json(learned_context), _now_iso()),
        )
        created = cur.rowcount == 1
        conn.commit()
    return created


def update_learned_context(user_id: str, learned_context: List[str]) -> None:
    init_db()
    with connect() as conn:
        conn.execute(
            sql("UPDATE user_profiles SET learned_context = ?, updated_at = ? WHERE user_id = ?"),
            (dump_json(learned_context), _now_iso(), user_id),
        )
        conn.commit()
