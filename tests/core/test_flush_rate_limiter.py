# tests/core/test_flush_rate_limiter.py
"""Tests for the flush rate limiter wrapper."""

import asyncio
import time

import pytest

from roomflush.core.config import FlushRateLimit
from roomflush.core.rate_limit import FlushRateLimiter
from roomflush.engine.deadline import DeadlineController


class TestConstruction:
    @pytest.mark.parametrize(
        ("kwargs", "message"),
        [
            ({"requests_per_second": 0}, "requests_per_second"),
            ({"requests_per_second": 1, "requests_per_minute": 0}, "requests_per_minute"),
            ({"requests_per_second": 1, "poll_interval_ms": 0}, "poll_interval_ms"),
        ],
    )
    def test_rejects_non_positive_values(self, kwargs: dict[str, int], message: str) -> None:
        with pytest.raises(ValueError, match=message):
            FlushRateLimiter(**kwargs)

    def test_from_config(self) -> None:
        limiter = FlushRateLimiter.from_config(FlushRateLimit(requests_per_second=3, poll_interval_ms=5))
        try:
            assert [limiter.try_acquire() for _ in range(4)] == [True, True, True, False]
        finally:
            limiter.close()


class TestTryAcquire:
    def test_limits_per_second(self) -> None:
        with FlushRateLimiter(requests_per_second=2) as limiter:
            assert limiter.try_acquire()
            assert limiter.try_acquire()
            assert not limiter.try_acquire()

            assert limiter.get_stats()["acquired"] == 2
            assert limiter.get_stats()["limited"] == 1

    def test_minute_limit_applies_under_second_limit(self) -> None:
        with FlushRateLimiter(requests_per_second=10, requests_per_minute=3) as limiter:
            results = [limiter.try_acquire() for _ in range(5)]

        assert results == [True, True, True, False, False]

    def test_closed_limiter_rejects_acquire(self) -> None:
        limiter = FlushRateLimiter(requests_per_second=1)
        limiter.close()
        limiter.close()

        with pytest.raises(RuntimeError, match="closed"):
            limiter.try_acquire()


class TestAsyncAcquire:
    @pytest.mark.asyncio
    async def test_waits_for_next_window(self) -> None:
        with FlushRateLimiter(requests_per_second=1, poll_interval_ms=20) as limiter:
            assert await limiter.acquire()
            started = time.monotonic()

            assert await limiter.acquire()

            waited = time.monotonic() - started
            assert 0.5 <= waited < 1.5
            assert limiter.get_stats()["total_wait_ms"] > 0

    @pytest.mark.asyncio
    async def test_cancelled_wait_returns_false(self) -> None:
        deadline = DeadlineController()
        deadline.start()
        with FlushRateLimiter(requests_per_second=1, poll_interval_ms=10) as limiter:
            assert limiter.try_acquire()
            asyncio.get_running_loop().call_later(0.03, deadline.abort)

            started = time.monotonic()
            assert await limiter.acquire(deadline) is False
            assert time.monotonic() - started < 0.5
