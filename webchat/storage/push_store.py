"""
Push subscription store.

web_push_subscriptions table: (id, user_id, endpoint, p256dh, auth, peer_id, user_agent, updated_at)
One row per endpoint; re-subscribing the same endpoint overwrites its routing data.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from webchat.storage.db import connect, ensure_sqlite_dir, is_postgres, sql

logger = logging.getLogger("webchat")


def init_db() -> None:
    ensure_sqlite_dir()
    with connect() as conn:
        if not is_postgres():
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS web_push_subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    endpoint TEXT NOT NULL UNIQUE,
                    p256dh TEXT NOT NULL,
                    auth TEXT NOT NULL,
                    peer_id TEXT,
                    user_agent TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
        else:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS web_push_subscriptions (
                    id BIGSERIAL PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    endpoint TEXT NOT NULL UNIQUE,
                    p256dh TEXT NOT NULL,
                    auth TEXT NOT NULL,
                    peer_id TEXT,
                    user_agent TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_push_user_id ON web_push_subscriptions (user_id)")
        conn.commit()


def upsert_subscription(
    *,
    user_id: str,
    endpoint: str,
    p256dh: str,
    auth: str,
    peer_id: Optional[str],
    user_agent: Optional[str],
    updated_at: Optional[str] = None,
) -> None:
    init_db()  # Idempotent; ensures tables exist when TestClient doesn't run lifespan before first request
    updated_at = updated_at or time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    with connect() as conn:
        conn.execute(
            sql(
                "INSERT INTO web_push_subscriptions (user_id, endpoint, p256dh, auth, peer_id, user_agent, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (endpoint) DO UPDATE SET user_id = excluded.user_id, p256dh = excluded.p256dh, "
                "auth = excluded.auth, peer_id = excluded.peer_id, user_agent = excluded.user_agent, "
                "updated_at = excluded.updated_at"
            ),
            (user_id, endpoint, p256dh, auth, peer_id, user_agent, updated_at),
        )
        conn.commit()


def list_subscriptions() -> List[Dict[str, Any]]:
    init_db()
    with connect() as conn:
        rows = conn.execute(
            "SELECT id, user_id, endpoint, p256dh, auth, peer_id, updated_at FROM web_push_subscriptions ORDER BY id"
        ).fetchall()
    return [dict(row) for row in rows]


def delete_subscription(endpoint: str, user_id: Optional[str] = None) -> int:
    """Delete by endpoint, optionally scoped to the owning user. Returns rows removed."""
    init_db()
    with connect() as conn:
        if user_id is None:
            cur = conn.execute(sql("DELETE FROM web_push_subscriptions WHERE endpoint = ?"), (endpoint,))
        else:
            cur = conn.execute(
                sql("DELETE FROM web_push_subscriptions WHERE user_id = ? AND endpoint = ?"),
                (user_id, endpoint),
            )
        removed = cur.rowcount
        conn.commit()
    return removed


def find_duplicate_subscriptions() -> Dict[str, List[Dict[str, Any]]]:
    """
    Group subscriptions by user, newest first, keeping only users with more than one.
    The first row of every group is the one to keep.
    """
    init_db()
    with connect() as conn:
        rows = conn.execute(
            "SELECT id, user_id, endpoint, updated_at FROM web_push_subscriptions "
            "ORDER BY user_id, updated_at DESC, id DESC"
        ).fetchall()
    groups: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
    for row in rows:
        groups.setdefault(row["user_id"], []).append(dict(row))
    return OrderedDict((user_id, subs) for user_id, subs in groups.items() if len(subs) > 1)


def delete_subscription_ids(ids: List[int]) -> int:
    if not ids:
        return 0
    init_db()
    removed = 0
    with connect() as conn:
        for sub_id in ids:
            cur = conn.execute(sql("DELETE FROM web_push_subscriptions WHERE id = ?"), (sub_id,))
            removed += cur.rowcount
        conn.commit()
    return removed
