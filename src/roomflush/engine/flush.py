"""Per-document flush scheduler.

Decouples flush cadence from write pacing: a task may issue many small
paced writes while the backend sees at most one flush per
``flush_interval_ms`` for that document.

State machine:
    IDLE --record--> PENDING --timer/flush--> FLUSHING --> IDLE
    any --close / rejected flush--> CLOSED
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from roomflush.contracts.documents import Mutation
from roomflush.contracts.enums import FlushState
from roomflush.contracts.errors import FlushError, FlushFailedError, SchedulerClosedError
from roomflush.core.logging import get_logger

if TYPE_CHECKING:
    from roomflush.contracts.protocols import PersistenceBackend
    from roomflush.core.rate_limit import FlushRateLimiter
    from roomflush.engine.deadline import DeadlineController

logger = get_logger(__name__)


class FlushScheduler:
    """Buffers one document's writes and persists them in batches.

    Flushes are serialized, so batches reach the backend in the order the
    writes were recorded. A rejected flush closes the scheduler: the
    failure is kept on ``failure`` and every later record raises
    FlushFailedError.

    Usage:
        scheduler = FlushScheduler("room-1", backend, flush_interval_ms=200)
        scheduler.record(Mutation("0_0_0", "#ff0000"))  # arms the timer
        ...
        await scheduler.close()  # final flush, then CLOSED
        if scheduler.failure is not None:
            ...
    """

    def __init__(
        self,
        document_id: str,
        backend: PersistenceBackend,
        *,
        flush_interval_ms: int,
        rate_limiter: FlushRateLimiter | None = None,
        deadline: DeadlineController | None = None,
    ) -> None:
        if flush_interval_ms < 0:
            raise ValueError(f"flush_interval_ms must be >= 0, got {flush_interval_ms}")
        self.document_id = document_id
        self._backend = backend
        self._interval = flush_interval_ms / 1000
        self._rate_limiter = rate_limiter
        self._deadline = deadline

        self._state = FlushState.IDLE
        self._pending: list[Mutation] = []
        self._lock = asyncio.Lock()
        self._timer: asyncio.TimerHandle | None = None
        self._timer_flush: asyncio.Task[None] | None = None
        self._closing = False
        self._failure: FlushError | None = None

        self._flush_count = 0
        self._recorded = 0
        self._flushed = 0
        self._dropped = 0

    @property
    def state(self) -> FlushState:
        return self._state

    @property
    def failure(self) -> FlushError | None:
        """The rejected flush that closed this scheduler, if any."""
        return self._failure

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def flush_count(self) -> int:
        return self._flush_count

    @property
    def mutations_recorded(self) -> int:
        return self._recorded

    @property
    def mutations_flushed(self) -> int:
        return self._flushed

    @property
    def mutations_dropped(self) -> int:
        """Writes discarded because a flush was rejected."""
        return self._dropped

    def record(self, mutation: Mutation) -> None:
        """Buffer a write, arming the flush timer if the scheduler was idle.

        Raises:
            FlushFailedError: If an earlier flush was rejected
            SchedulerClosedError: If the scheduler is closing or closed
        """
        if self._failure is not None:
            raise FlushFailedError(self.document_id, self._failure)
        if self._closing or self._state == FlushState.CLOSED:
            raise SchedulerClosedError(f"Flush scheduler for {self.document_id!r} is closed")

        self._pending.append(mutation)
        self._recorded += 1
        if self._state == FlushState.IDLE:
            self._state = FlushState.PENDING
            self._arm_timer()

    async def flush(self) -> None:
        """Flush the pending buffer now.

        A no-op when nothing is pending.

        Raises:
            FlushError: If the backend rejected this or an earlier flush
        """
        await self._flush_pending(final=False)
        if self._failure is not None:
            raise self._failure

    async def close(self) -> None:
        """Flush whatever is buffered and move to CLOSED.

        Waits for an in-flight timer flush first. Never raises a flush
        failure; inspect ``failure`` afterwards. Idempotent.
        """
        if self._closing:
            return
        self._closing = True
        self._cancel_timer()
        if self._timer_flush is not None and not self._timer_flush.done():
            # wait() does not forward our cancellation into the in-flight flush
            await asyncio.wait((self._timer_flush,))
        await self._flush_pending(final=True)

    def _arm_timer(self) -> None:
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._interval, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        self._timer_flush = asyncio.ensure_future(self._flush_pending(final=False))

    async def _flush_pending(self, *, final: bool) -> None:
        async with self._lock:
            if self._state == FlushState.CLOSED:
                return
            # Everything pending goes out now; a stale timer would only flush nothing
            self._cancel_timer()

            if not self._pending:
                self._state = FlushState.CLOSED if final else FlushState.IDLE
                return

            batch = tuple(self._pending)
            self._pending.clear()
            self._state = FlushState.FLUSHING

            # A cancelled caller still gets its batch persisted before unwinding
            cancelled = False
            if self._rate_limiter is not None:
                try:
                    # False means the run was cancelled while waiting; the drain
                    # proceeds without a token
                    await self._rate_limiter.acquire(self._deadline)
                except asyncio.CancelledError:
                    cancelled = True

            flush = asyncio.ensure_future(self._backend.flush(self.document_id, batch))
            try:
                await asyncio.wait((flush,))
            except asyncio.CancelledError:
                cancelled = True
                await asyncio.wait((flush,))
            self._settle(flush, batch, final=final)
            if cancelled:
                raise asyncio.CancelledError

    def _settle(self, flush: asyncio.Future[None], batch: tuple[Mutation, ...], *, final: bool) -> None:
        if flush.cancelled():
            self._fail(FlushError(self.document_id, "flush was cancelled", batch_size=len(batch)), batch)
            return
        error = flush.exception()
        if isinstance(error, FlushError):
            self._fail(error, batch)
            return
        if error is not None:
            failure = FlushError(self.document_id, f"{type(error).__name__}: {error}", batch_size=len(batch))
            failure.__cause__ = error
            self._fail(failure, batch)
            return

        self._flush_count += 1
        self._flushed += len(batch)
        logger.debug(
            "Flushed document batch",
            document_id=self.document_id,
            batch_size=len(batch),
            flush_count=self._flush_count,
            final=final,
        )

        if final:
            # record() rejects writes once closing, so nothing arrived meanwhile
            self._state = FlushState.CLOSED
        elif self._pending:
            # Writes recorded while FLUSHING start the next batch
            self._state = FlushState.PENDING
            self._arm_timer()
        else:
            self._state = FlushState.IDLE

    def _fail(self, failure: FlushError, batch: tuple[Mutation, ...]) -> None:
        self._failure = failure
        self._dropped += len(batch) + len(self._pending)
        self._pending.clear()
        self._state = FlushState.CLOSED
        logger.warning(
            "Flush rejected, document closed for writes",
            document_id=self.document_id,
            batch_size=len(batch),
            error=str(failure),
        )

    def get_stats(self) -> dict[str, int | str]:
        return {
            "state": self._state.value,
            "flush_count": self._flush_count,
            "mutations_recorded": self._recorded,
            "mutations_flushed": self._flushed,
            "mutations_dropped": self._dropped,
            "pending": len(self._pending),
        }
