import asyncio

from webchat.rate_limit import (
    LEARN_RULE,
    DbRateLimiter,
    InMemoryRateLimiter,
    RateRule,
    build_rate_limiter,
)


class FakeClock:
    def __init__(self, start: float = 5000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def _run_checks(limiter, key: str, count: int):
    async def _go():
        return [await limiter.check(key) for _ in range(count)]

    return asyncio.run(_go())


def test_memory_limiter_allows_limit_then_blocks():
    limiter = InMemoryRateLimiter(LEARN_RULE, clock=FakeClock())
    results = _run_checks(limiter, "agent-learn:1.2.3.4:u", 11)
    assert results == [True] * 10 + [False]


def test_memory_limiter_window_resets():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(RateRule(limit=2, window_seconds=60), clock=clock)
    assert _run_checks(limiter, "k", 3) == [True, True, False]
    clock.now += 59
    assert _run_checks(limiter, "k", 1) == [False]
    clock.now += 1
    assert _run_checks(limiter, "k", 2) == [True, True]


def test_memory_limiter_keys_are_independent():
    limiter = InMemoryRateLimiter(RateRule(limit=1, window_seconds=60), clock=FakeClock())
    assert _run_checks(limiter, "a", 2) == [True, False]
    assert _run_checks(limiter, "b", 1) == [True]


def test_db_limiter_shares_counts_between_instances():
    clock = FakeClock()
    rule = RateRule(limit=3, window_seconds=60)
    first = DbRateLimiter(rule, clock=clock)
    second = DbRateLimiter(rule, clock=clock)
    assert _run_checks(first, "k", 2) == [True, True]
    assert _run_checks(second, "k", 2) == [True, False]


def test_db_limiter_window_resets():
    clock = FakeClock()
    limiter = DbRateLimiter(RateRule(limit=1, window_seconds=60), clock=clock)
    assert _run_checks(limiter, "k", 2) == [True, False]
    clock.now += 60
    assert _run_checks(limiter, "k", 2) == [True, False]


def test_build_rate_limiter_selects_backend():
    assert isinstance(build_rate_limiter("db"), DbRateLimiter)
    assert isinstance(build_rate_limiter("memory"), InMemoryRateLimiter)
    assert isinstance(build_rate_limiter("anything-else"), InMemoryRateLimiter)
