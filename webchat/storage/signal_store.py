"""
Signal store: behavioral signals and learning events.

user_signals table: (id, user_id, signal_type, payload, session_key_hash, created_at)
learning_events table: (id, user_id, dimension, insight, confidence, evidence, source, created_at)
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from webchat.storage.db import connect, dump_json, ensure_sqlite_dir, is_postgres, load_json, sql

logger = logging.getLogger("webchat")


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def init_db() -> None:
    ensure_sqlite_dir()
    id_column = "id BIGSERIAL PRIMARY KEY" if is_postgres() else "id INTEGER PRIMARY KEY AUTOINCREMENT"
    with connect() as conn:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS user_signals (
                {id_column},
                user_id TEXT NOT NULL,
                signal_type TEXT NOT NULL,
                payload TEXT NOT NULL,
                session_key_hash TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS learning_events (
                {id_column},
                user_id TEXT NOT NULL,
                dimension TEXT NOT NULL,
                insight TEXT NOT NULL,
                confidence REAL NOT NULL,
                evidence TEXT NOT NULL,
                source TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_signals_user_created ON user_signals (user_id, created_at)")
        conn.commit()


def insert_signal(user_id: str, signal: Dict[str, Any]) -> None:
    init_db()  # Idempotent; ensures tables exist when TestClient doesn't run lifespan before first request
    with connect() as conn:
        conn.execute(
            sql(
                "INSERT INTO user_signals (user_id, signal_type, payload, session_key_hash, created_at) "
                "VALUES (?, ?, ?, ?, ?)"
            ),
            (
                user_id,
                signal["signal_type"],
                dump_json(signal.get("payload") or {}),
                signal.get("session_key_hash"),
                signal.get("created_at") or _now_iso(),
            ),
        )
        conn.commit()


def list_signals(
    user_id: str,
    *,
    signal_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    init_db()
    query = "SELECT id, user_id, signal_type, payload, session_key_hash, created_at FROM user_signals WHERE user_id = ?"
    params: List[Any] = [user_id]
    if signal_type:
        query += " AND signal_type = ?"
        params.append(signal_type)
    query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])
    with connect() as conn:
        rows = conn.execute(sql(query), tuple(params)).fetchall()
    out: List[Dict[str, Any]] = []
    for row in rows:
        item = dict(row)
        item["payload"] = load_json(item.get("payload"), {})
        out.append(item)
    return out


def insert_learning_events(user_id: str, insights: List[Dict[str, Any]], source: str = "heartbeat") -> int:
    """Insert all events in one transaction; any failure rolls back the whole batch."""
    init_db()
    created_at = _now_iso()
    with connect() as conn:
        for insight in insights:
            conn.execute(
                sql(
                    "INSERT INTO learning_events (user_id, dimension, insight, confidence, evidence, source, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)"
                ),
                (
                    user_id,
                    insight["dimension"],
                    insight["insight"],
                    float(insight["confidence"]),
                    dump_json(insight.get("evidence") or []),
                    source,
                    created_at,
                ),
            )
        conn.commit()
    return len(insights)


def list_learning_events(user_id: str) -> List[Dict[str, Any]]:
    init_db()
    with connect() as conn:
        rows = conn.execute(
            sql(
                "SELECT id, user_id, dimension, insight, confidence, evidence, source, created_at "
                "FROM learning_events WHERE user_id = ? ORDER BY id"
            ),
            (user_id,),
        ).fetchall()
    out = []
    for row in rows:
        item = dict(row)
        item["evidence"] = load_json(item.get("evidence"), [])
        out.append(item)
    return out
