"""Concurrency limiter admitting at most K mutation tasks at once."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from roomflush.contracts.errors import PermitReleasedError
from roomflush.engine.deadline import DeadlineController


@dataclass(eq=False)
class Permit:
    """Right to run one mutation task.

    Attributes:
        sequence: Admission order within the run (0-indexed)
        admitted_at: time.monotonic() when the permit was granted
    """

    sequence: int
    admitted_at: float = field(default_factory=time.monotonic)
    released: bool = False


class ConcurrencyLimiter:
    """Counting semaphore that observes run cancellation.

    asyncio.Semaphore wakes waiters in FIFO order, so no admission request
    is starved while the run is live.

    Usage:
        limiter = ConcurrencyLimiter(concurrency=20, deadline=deadline)

        permit = await limiter.admit()
        if permit is None:
            return  # run cancelled, admit nothing else
        try:
            await do_work()
        finally:
            limiter.release(permit)
    """

    def __init__(self, concurrency: int, deadline: DeadlineController) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._concurrency = concurrency
        self._deadline = deadline
        self._semaphore = asyncio.Semaphore(concurrency)

        self._admitted = 0
        self._active = 0
        self._max_concurrent = 0
        self._total_admission_wait_ms = 0.0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def active(self) -> int:
        """Permits currently outstanding."""
        return self._active

    @property
    def max_concurrent(self) -> int:
        """Highest number of permits outstanding at once."""
        return self._max_concurrent

    def _grant(self, waited_since: float) -> Permit:
        now = time.monotonic()
        permit = Permit(sequence=self._admitted, admitted_at=now)
        self._admitted += 1
        self._active += 1
        if self._active > self._max_concurrent:
            self._max_concurrent = self._active
        self._total_admission_wait_ms += (now - waited_since) * 1000
        return permit

    async def admit(self) -> Permit | None:
        """Wait for a free slot.

        Returns:
            A Permit, or None if the run is (or becomes) cancelled before a
            slot frees up
        """
        if self._deadline.tripped:
            return None

        waited_since = time.monotonic()
        if not self._semaphore.locked():
            # Free slot and no queued waiters: acquire() returns without suspending
            await self._semaphore.acquire()
            return self._grant(waited_since)

        acquire = asyncio.ensure_future(self._semaphore.acquire())
        cancelled = asyncio.ensure_future(self._deadline.wait())
        granted = False
        try:
            await asyncio.wait((acquire, cancelled), return_when=asyncio.FIRST_COMPLETED)
            if acquire.done() and not acquire.cancelled() and not self._deadline.tripped:
                granted = True
                return self._grant(waited_since)
            return None
        finally:
            cancelled.cancel()
            if not granted:
                # Only release what we actually hold
                if acquire.done() and not acquire.cancelled():
                    self._semaphore.release()
                else:
                    acquire.cancel()

    def release(self, permit: Permit) -> None:
        """Return a slot.

        Raises:
            PermitReleasedError: If the permit was already released
        """
        if permit.released:
            raise PermitReleasedError(f"Permit {permit.sequence} released twice")
        permit.released = True
        self._active -= 1
        self._semaphore.release()

    def get_stats(self) -> dict[str, float | int]:
        """Limiter statistics for the run result."""
        return {
            "concurrency": self._concurrency,
            "admitted": self._admitted,
            "active": self._active,
            "max_concurrent_reached": self._max_concurrent,
            "total_admission_wait_ms": self._total_admission_wait_ms,
        }
