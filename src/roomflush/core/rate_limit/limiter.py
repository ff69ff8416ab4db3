"""Flush rate limiter wrapper around pyrate-limiter."""

from __future__ import annotations

import asyncio
import threading
import time
from typing import TYPE_CHECKING

from pyrate_limiter import Duration, InMemoryBucket, Limiter, Rate, TimeClock  # type: ignore[attr-defined]

from roomflush.core.logging import get_logger

if TYPE_CHECKING:
    from types import TracebackType

    from roomflush.core.config import FlushRateLimit
    from roomflush.engine.deadline import DeadlineController

logger = get_logger(__name__)


class FlushRateLimiter:
    """Global rate limiter for persistence flushes.

    Shared by every FlushScheduler of a run, so the backend sees at most
    ``requests_per_second`` flushes per second regardless of concurrency.

    Example:
        limiter = FlushRateLimiter(requests_per_second=10)

        # Non-blocking check
        if limiter.try_acquire():
            await backend.flush(document_id, batch)

        # Cancellation-aware wait
        if await limiter.acquire(deadline):
            await backend.flush(document_id, batch)
    """

    def __init__(
        self,
        requests_per_second: int,
        requests_per_minute: int | None = None,
        poll_interval_ms: int = 10,
        name: str = "flush",
    ) -> None:
        """Initialize rate limiter.

        Args:
            requests_per_second: Maximum flushes allowed per second (> 0)
            requests_per_minute: Optional maximum flushes per minute (> 0)
            poll_interval_ms: Sleep between attempts while limited (> 0)
            name: Bucket key

        Raises:
            ValueError: If a rate or the poll interval is not positive.
        """
        if requests_per_second <= 0:
            raise ValueError(f"requests_per_second must be positive, got {requests_per_second}")
        if requests_per_minute is not None and requests_per_minute <= 0:
            raise ValueError(f"requests_per_minute must be positive, got {requests_per_minute}")
        if poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be positive, got {poll_interval_ms}")

        self.name = name
        self._poll_interval = poll_interval_ms / 1000
        self._lock = threading.Lock()
        self._closed = False

        # pyrate-limiter can skip checking longer-interval rates while under
        # shorter-interval limits, so each rate gets its own limiter.
        rates = [Rate(requests_per_second, Duration.SECOND)]
        if requests_per_minute is not None:
            rates.append(Rate(requests_per_minute, Duration.MINUTE))

        self._clock = TimeClock()
        self._buckets: list[InMemoryBucket] = [InMemoryBucket([rate]) for rate in rates]
        self._limiters: list[Limiter] = [Limiter(bucket, clock=self._clock, raise_when_fail=False) for bucket in self._buckets]

        self._acquired = 0
        self._limited = 0
        self._total_wait_ms = 0.0

    @classmethod
    def from_config(cls, config: FlushRateLimit) -> FlushRateLimiter:
        return cls(
            requests_per_second=config.requests_per_second,
            requests_per_minute=config.requests_per_minute,
            poll_interval_ms=config.poll_interval_ms,
        )

    def _would_all_buckets_accept(self, weight: int) -> bool:
        """Peek at every bucket without consuming tokens."""
        now = self._clock.now()
        for bucket in self._buckets:
            # Expired items linger until the background leak runs, which can be
            # seconds apart, so drop them before counting
            bucket.leak(now)
            current_count = bucket.count()
            for rate in bucket.rates:
                if current_count + weight > rate.limit:
                    return False
        return True

    def try_acquire(self, weight: int = 1) -> bool:
        """Try to acquire tokens without blocking.

        Returns:
            True if acquired, False if rate limited
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("FlushRateLimiter is closed")
            if not self._would_all_buckets_accept(weight):
                self._limited += 1
                return False
            for limiter in self._limiters:
                limiter.try_acquire(self.name, weight=weight)
            self._acquired += 1
            return True

    async def acquire(self, deadline: DeadlineController | None = None, weight: int = 1) -> bool:
        """Wait until tokens are available.

        Waiting yields to the event loop and stops as soon as ``deadline``
        trips.

        Returns:
            True if acquired, False if the run was cancelled while waiting
        """
        started = time.monotonic()
        try:
            while not self.try_acquire(weight):
                if deadline is None:
                    await asyncio.sleep(self._poll_interval)
                elif not await deadline.sleep(self._poll_interval):
                    return False
            return True
        finally:
            waited_ms = (time.monotonic() - started) * 1000
            with self._lock:
                self._total_wait_ms += waited_ms

    def get_stats(self) -> dict[str, float | int]:
        """Acquire statistics for the run result."""
        with self._lock:
            return {
                "acquired": self._acquired,
                "limited": self._limited,
                "total_wait_ms": self._total_wait_ms,
            }

    def close(self) -> None:
        """Dispose buckets and release their leak threads."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for limiter, bucket in zip(self._limiters, self._buckets, strict=True):
            limiter.dispose(bucket)
        logger.debug("Flush rate limiter closed", **self.get_stats())

    def __enter__(self) -> FlushRateLimiter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
