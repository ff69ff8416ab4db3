"""One-shot cancellation latch for a mutation run.

The latch trips when the run deadline elapses or when an abort is
requested. Every suspension point in the engine
waits on the latch alongside its own work, so cancellation propagates
within one event loop iteration rather than at task boundaries.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from roomflush.contracts.enums import StopReason
from roomflush.core.logging import get_logger

if TYPE_CHECKING:
    from roomflush.core.config import RunConfig

logger = get_logger(__name__)


class DeadlineController:
    """Cancellation latch armed with an optional deadline.

    Once tripped it never resets, and the first trip reason wins.

    Usage:
        deadline = DeadlineController(timeout_seconds=5)
        deadline.start()  # arms the timer on the running loop

        if not await deadline.sleep(0.005):
            ...  # cancelled while sleeping

        deadline.abort()  # external cancellation
        deadline.close()  # disarm timer and abort watcher
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        deadline_at: datetime | None = None,
    ) -> None:
        if timeout_seconds is not None and deadline_at is not None:
            raise ValueError("timeout_seconds and deadline_at are mutually exclusive")
        if deadline_at is not None and deadline_at.tzinfo is None:
            raise ValueError("deadline_at must be timezone-aware")

        self._timeout_seconds = timeout_seconds
        self._deadline_at = deadline_at
        self._event = asyncio.Event()
        self._reason: StopReason | None = None
        self._started_at: float | None = None
        self._expires_at: float | None = None
        self._tripped_at: float | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._watchers: list[asyncio.Task[None]] = []

    @classmethod
    def from_config(cls, config: RunConfig) -> DeadlineController:
        return cls(timeout_seconds=config.timeout_seconds, deadline_at=config.deadline_at)

    @property
    def tripped(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> StopReason | None:
        """Why the latch tripped, or None while it is still open."""
        return self._reason

    @property
    def started(self) -> bool:
        return self._started_at is not None

    def start(self) -> None:
        """Arm the deadline timer on the running event loop.

        A deadline that is already in the past trips immediately.
        """
        if self._started_at is not None:
            raise RuntimeError("DeadlineController already started")
        loop = asyncio.get_running_loop()
        self._started_at = time.monotonic()

        delay: float | None = None
        if self._timeout_seconds is not None:
            delay = self._timeout_seconds
        elif self._deadline_at is not None:
            delay = (self._deadline_at - datetime.now(UTC)).total_seconds()

        if delay is None:
            return
        self._expires_at = self._started_at + max(delay, 0.0)
        if delay <= 0:
            self.trip(StopReason.DEADLINE_EXCEEDED)
        else:
            self._timer = loop.call_later(delay, self.trip, StopReason.DEADLINE_EXCEEDED)

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None when no deadline is set."""
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)

    def trip(self, reason: StopReason) -> bool:
        """Trip the latch.

        Returns:
            True if this call tripped it, False if it was already tripped
        """
        if reason == StopReason.COMPLETED:
            raise ValueError("COMPLETED is not a cancellation reason")
        if self._event.is_set():
            return False
        self._reason = reason
        self._tripped_at = time.monotonic()
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        elapsed = self._tripped_at - self._started_at if self._started_at is not None else 0.0
        logger.info("Run cancellation tripped", reason=reason.value, elapsed_seconds=round(elapsed, 3))
        return True

    def abort(self) -> bool:
        """Request cancellation from outside the run."""
        return self.trip(StopReason.ABORT_REQUESTED)

    def link(self, abort_event: asyncio.Event) -> None:
        """Trip the latch with ABORT_REQUESTED when ``abort_event`` is set."""
        if abort_event.is_set():
            self.abort()
            return

        async def _watch() -> None:
            await abort_event.wait()
            self.abort()

        self._watchers.append(asyncio.create_task(_watch(), name="roomflush-abort-watcher"))

    async def wait(self) -> None:
        """Suspend until the latch trips."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep for ``seconds`` unless the latch trips first.

        Always yields to the event loop, even for zero-length sleeps.

        Returns:
            True if the full duration elapsed, False if cancelled
        """
        if self._event.is_set():
            return False
        if seconds <= 0:
            await asyncio.sleep(0)
            return not self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return not self._event.is_set()
        return False

    def close(self) -> None:
        """Disarm the timer and stop abort watchers. Does not trip the latch."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for watcher in self._watchers:
            watcher.cancel()
        self._watchers.clear()
