"""Mutation task harness.

Runs a caller-supplied mutation function against one document. The
function receives a MutationContext instead of touching shared state:
writes go through ``ctx.write`` (applied to the root and recorded with the
document's FlushScheduler before returning) and pacing goes through
``await ctx.pace(ms)``, which yields to the event loop and observes run
cancellation.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import TYPE_CHECKING, Any

from roomflush.contracts.documents import DocumentHandle, Mutation
from roomflush.contracts.enums import DocumentOutcome
from roomflush.contracts.errors import FlushFailedError, MutationCancelledError
from roomflush.contracts.results import DocumentResult
from roomflush.core.logging import document_log_context, get_logger

if TYPE_CHECKING:
    from roomflush.contracts.protocols import MutationFn
    from roomflush.engine.deadline import DeadlineController
    from roomflush.engine.flush import FlushScheduler

logger = get_logger(__name__)


class MutationContext:
    """Per-task view of one document, handed to the mutation function.

    Example:
        async def paint(ctx: MutationContext) -> None:
            for i, color in enumerate(colors):
                ctx.write(f"0_{i // 16}_{i % 16}", color)
                await ctx.pace(5)
    """

    def __init__(
        self,
        document: DocumentHandle,
        scheduler: FlushScheduler,
        deadline: DeadlineController,
    ) -> None:
        self._document = document
        self._scheduler = scheduler
        self._deadline = deadline
        self._interrupted = False

    @property
    def document(self) -> DocumentHandle:
        return self._document

    @property
    def document_id(self) -> str:
        return self._document.document_id

    @property
    def root(self) -> dict[str, Any]:
        """The document's root state. Read freely; write via ``write()``."""
        return self._document.root

    @property
    def cancelled(self) -> bool:
        """True once the run's deadline or abort signal has tripped."""
        return self._deadline.tripped

    @property
    def interrupted(self) -> bool:
        """True if a write or pace was refused because of cancellation."""
        return self._interrupted

    def _check_cancelled(self) -> None:
        if self._deadline.tripped:
            self._interrupted = True
            raise MutationCancelledError(f"Run cancelled ({self._deadline.reason}) while mutating {self.document_id!r}")

    def write(self, key: str, value: Any) -> None:
        """Write ``value`` under ``key``."""
        self.write_mutation(Mutation(key, value))

    def write_mutation(self, mutation: Mutation) -> None:
        """Record a write with the flush scheduler, then apply it to the root.

        Raises:
            MutationCancelledError: If the run has been cancelled
            FlushFailedError: If an earlier flush for this document was rejected
        """
        self._check_cancelled()
        self._scheduler.record(mutation)
        mutation.apply(self._document.root)

    async def pace(self, duration_ms: float) -> None:
        """Suspend this task for ``duration_ms`` without blocking others.

        Raises:
            MutationCancelledError: If the run is cancelled before or during the wait
            ValueError: If duration_ms is negative
        """
        if duration_ms < 0:
            raise ValueError(f"duration_ms must be >= 0, got {duration_ms}")
        self._check_cancelled()
        if not await self._deadline.sleep(duration_ms / 1000):
            self._check_cancelled()


async def _invoke(mutate_fn: MutationFn, ctx: MutationContext) -> None:
    # Plain functions are accepted; only awaitable results are awaited
    result = mutate_fn(ctx)
    if inspect.isawaitable(result):
        await result


async def run_mutation_task(
    document: DocumentHandle,
    mutate_fn: MutationFn,
    scheduler: FlushScheduler,
    deadline: DeadlineController,
) -> DocumentResult:
    """Run ``mutate_fn`` on one document and flush its writes.

    The mutation function races the cancellation latch: if the latch trips
    while the function is suspended anywhere (not only in ``pace``) it is
    cancelled. Whatever the outcome, the scheduler's buffer is flushed
    before this returns.

    Failures of the mutation function are captured on the result, never
    raised. Only cancellation of the calling task propagates, after the
    final flush.
    """
    started = time.monotonic()
    ctx = MutationContext(document, scheduler, deadline)
    with document_log_context(document.document_id):
        return await _run_body(mutate_fn, ctx, scheduler, deadline, started)


async def _run_body(
    mutate_fn: MutationFn,
    ctx: MutationContext,
    scheduler: FlushScheduler,
    deadline: DeadlineController,
    started: float,
) -> DocumentResult:
    outcome = DocumentOutcome.SUCCEEDED
    error: BaseException | None = None

    try:
        body = asyncio.ensure_future(_invoke(mutate_fn, ctx))
        cancelled = asyncio.ensure_future(deadline.wait())
        try:
            await asyncio.wait((body, cancelled), return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not body.done():
                body.cancel()
                # Let the function unwind its own finally blocks
                await asyncio.wait((body,))

        if body.cancelled():
            outcome = DocumentOutcome.CANCELLED
        else:
            exc = body.exception()
            if exc is None:
                if ctx.interrupted:
                    outcome = DocumentOutcome.CANCELLED
            elif isinstance(exc, MutationCancelledError):
                outcome = DocumentOutcome.CANCELLED
            elif isinstance(exc, FlushFailedError):
                outcome = DocumentOutcome.FAILED
                error = exc.cause
            else:
                outcome = DocumentOutcome.FAILED
                error = exc
                logger.warning(
                    "Mutation function raised",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=exc,
                )
    finally:
        await scheduler.close()

    if scheduler.failure is not None and outcome != DocumentOutcome.FAILED:
        outcome = DocumentOutcome.FAILED
        error = scheduler.failure

    result = DocumentResult(
        document_id=ctx.document_id,
        outcome=outcome,
        writes_recorded=scheduler.mutations_recorded,
        writes_flushed=scheduler.mutations_flushed,
        flush_count=scheduler.flush_count,
        error=str(error) if error is not None else None,
        error_type=type(error).__name__ if error is not None else None,
        duration_seconds=time.monotonic() - started,
    )
    logger.info(
        "Document settled",
        outcome=outcome.value,
        writes_recorded=result.writes_recorded,
        writes_flushed=result.writes_flushed,
        flush_count=result.flush_count,
    )
    return result
