from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Protocol, Tuple

from webchat.storage.db import connect, ensure_sqlite_dir, sql


@dataclass(frozen=True)
class RateRule:
    limit: int
    window_seconds: int


LEARN_RULE = RateRule(limit=10, window_seconds=60)


class RateLimiter(Protocol):
    async def check(self, key: str) -> bool: ...


class InMemoryRateLimiter:
    """
    Fixed-window counter per key held in process memory.

    Entries are created lazily and never evicted, so only use this for a
    single instance.
    """

    def __init__(self, rule: RateRule, clock: Callable[[], float] = time.monotonic):
        self._rule = rule
        self._clock = clock
        self._state: Dict[str, Tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def check(self, key: str) -> bool:
        rule = self._rule
        now = self._clock()
        async with self._lock:
            count, reset_at = self._state.get(key, (0, now + rule.window_seconds))
            if now >= reset_at:
                count = 0
                reset_at = now + rule.window_seconds
            count += 1
            self._state[key] = (count, reset_at)
            return count <= rule.limit


def init_db() -> None:
    ensure_sqlite_dir()
    with connect() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS rate_limits (
                key TEXT PRIMARY KEY,
                count INTEGER NOT NULL,
                reset_at DOUBLE PRECISION NOT NULL
            )
            """
        )
        conn.commit()


class DbRateLimiter:
    """Fixed-window counter stored in the database so every instance shares it."""

    def __init__(self, rule: RateRule, clock: Callable[[], float] = time.time):
        self._rule = rule
        self._clock = clock

    async def check(self, key: str) -> bool:
        now = self._clock()
        next_reset = now + self._rule.window_seconds
        init_db()
        with connect() as conn:
            row = conn.execute(
                sql(
                    "INSERT INTO rate_limits (key, count, reset_at) VALUES (?, 1, ?) "
                    "ON CONFLICT (key) DO UPDATE SET "
                    "count = CASE WHEN rate_limits.reset_at <= ? THEN 1 ELSE rate_limits.count + 1 END, "
                    "reset_at = CASE WHEN rate_limits.reset_at <= ? THEN ? ELSE rate_limits.reset_at END "
                    "RETURNING count"
                ),
                (key, next_reset, now, now, next_reset),
            ).fetchone()
            conn.commit()
        return row["count"] <= self._rule.limit


def build_rate_limiter(backend: str, rule: RateRule = LEARN_RULE) -> RateLimiter:
    if backend == "db":
        return DbRateLimiter(rule)
    return InMemoryRateLimiter(rule)
