# src/roomflush/engine/orchestrator.py
"""Orchestrator: runs a mutation function over many documents.

Coordinates:
- Pulling documents lazily from the source, one at a time
- Admission through the concurrency limiter
- One mutation task and one flush scheduler per admitted document
- The run-wide cancellation latch (deadline, abort)
- Aggregating per-document outcomes into a RunResult
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator, AsyncIterable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from roomflush.contracts.documents import DocumentHandle
from roomflush.contracts.enums import StopReason
from roomflush.contracts.results import DocumentResult, RunResult
from roomflush.core.config import RunConfig, build_run_config
from roomflush.core.logging import get_logger
from roomflush.core.rate_limit import FlushRateLimiter
from roomflush.engine.deadline import DeadlineController
from roomflush.engine.flush import FlushScheduler
from roomflush.engine.limiter import ConcurrencyLimiter, Permit
from roomflush.engine.task import run_mutation_task

if TYPE_CHECKING:
    from roomflush.contracts.protocols import (
        DocumentPredicate,
        DocumentSource,
        MutationFn,
        PersistenceBackend,
    )

logger = get_logger(__name__)


async def _iterate(source: DocumentSource, predicate: DocumentPredicate | None) -> AsyncGenerator[DocumentHandle, None]:
    """Adapt sync and async document sequences to one async iterator.

    ``enumerate`` is called lazily so that a failing source surfaces on the
    first pull, inside the run's error handling.
    """
    documents: Iterable[DocumentHandle] | AsyncIterable[DocumentHandle] = source.enumerate(predicate)
    if isinstance(documents, AsyncIterable):
        async for document in documents:
            yield document
    else:
        for document in documents:
            yield document


async def _pull(documents: AsyncGenerator[DocumentHandle, None], deadline: DeadlineController) -> DocumentHandle | None:
    """Fetch the next document, giving up as soon as the run is cancelled.

    Returns:
        The next document, or None when the source is exhausted or the
        latch tripped while waiting

    Raises:
        Exception: Whatever the source raised
    """
    if deadline.tripped:
        return None
    pull = asyncio.ensure_future(anext(documents, None))
    cancelled = asyncio.ensure_future(deadline.wait())
    try:
        await asyncio.wait((pull, cancelled), return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancelled.cancel()
        if not pull.done():
            pull.cancel()
            await asyncio.wait((pull,))
    if pull.cancelled():
        return None
    return pull.result()


class MutationOrchestrator:
    """Runs mutation functions over documents against one backend.

    Example:
        store = InMemoryDocumentStore({...})
        orchestrator = MutationOrchestrator(store)
        result = await orchestrator.run(
            store,
            paint,
            RunConfig(concurrency=20, flush_interval_ms=200, timeout_seconds=5),
            predicate=DocumentQuery(id_prefix="pixel-"),
        )
        print(result.summary())
    """

    def __init__(self, backend: PersistenceBackend) -> None:
        self._backend = backend
        self._deadline: DeadlineController | None = None

    def abort(self) -> bool:
        """Request cancellation of the active run.

        Returns:
            True if this call tripped the run's latch, False if no run is
            active or it was already cancelled
        """
        if self._deadline is None:
            return False
        return self._deadline.abort()

    async def run(
        self,
        source: DocumentSource,
        mutate_fn: MutationFn,
        config: RunConfig | Mapping[str, Any],
        *,
        predicate: DocumentPredicate | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> RunResult:
        """Apply ``mutate_fn`` to every document ``source`` yields.

        Returns once every admitted document has settled (succeeded, failed
        or cancelled) and flushed. Per-document failures and source failures
        are reported on the result, never raised.

        Raises:
            ConfigError: If ``config`` is invalid (before any document is touched)
            RuntimeError: If this orchestrator already has an active run
        """
        run_config = build_run_config(config)
        if self._deadline is not None:
            raise RuntimeError("MutationOrchestrator is already running")

        started = time.monotonic()
        deadline = DeadlineController.from_config(run_config)
        self._deadline = deadline
        rate_limiter = FlushRateLimiter.from_config(run_config.flush_rate_limit) if run_config.flush_rate_limit else None
        limiter = ConcurrencyLimiter(run_config.concurrency, deadline)

        tasks: list[asyncio.Task[DocumentResult]] = []
        seen: set[str] = set()
        skipped = 0
        source_error: BaseException | None = None

        logger.info(
            "Mutation run started",
            concurrency=run_config.concurrency,
            flush_interval_ms=run_config.flush_interval_ms,
            timeout_seconds=run_config.timeout_seconds,
            deadline_at=run_config.deadline_at.isoformat() if run_config.deadline_at else None,
        )

        try:
            deadline.start()
            if abort_event is not None:
                deadline.link(abort_event)

            documents = _iterate(source, predicate)
            try:
                while (document := await _pull(documents, deadline)) is not None:
                    if deadline.tripped:
                        skipped += 1
                        break
                    if document.document_id in seen:
                        skipped += 1
                        logger.warning("Duplicate document skipped", document_id=document.document_id)
                        continue

                    permit = await limiter.admit()
                    if permit is None:
                        skipped += 1
                        break

                    seen.add(document.document_id)
                    scheduler = FlushScheduler(
                        document.document_id,
                        self._backend,
                        flush_interval_ms=run_config.flush_interval_ms,
                        rate_limiter=rate_limiter,
                        deadline=deadline,
                    )
                    logger.debug("Document admitted", document_id=document.document_id, sequence=permit.sequence)
                    tasks.append(
                        asyncio.create_task(
                            self._run_admitted(document, mutate_fn, scheduler, deadline, limiter, permit),
                            name=f"roomflush-{document.document_id}",
                        )
                    )
            except Exception as e:
                # Stop pulling only: admitted documents keep running to completion
                source_error = e
                logger.error(
                    "Document source failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    in_flight=sum(1 for task in tasks if not task.done()),
                )
            finally:
                await documents.aclose()

            # wait() rather than gather(): our own cancellation must not reach
            # the tasks, or their final flushes would be cut short
            if tasks:
                await asyncio.wait(tasks)
            results = [task.result() for task in tasks]
        except asyncio.CancelledError:
            # The caller cancelled us: wind tasks down and let them flush
            deadline.abort()
            if tasks:
                await asyncio.wait(tasks)
            raise
        finally:
            deadline.close()
            if rate_limiter is not None:
                rate_limiter.close()
            self._deadline = None

        stats: dict[str, Any] = {"limiter": limiter.get_stats()}
        if rate_limiter is not None:
            stats["rate_limiter"] = rate_limiter.get_stats()

        result = RunResult(
            documents=tuple(results),
            stop_reason=StopReason.SOURCE_FAILED if source_error is not None else deadline.reason or StopReason.COMPLETED,
            error=source_error,
            elapsed_seconds=time.monotonic() - started,
            max_concurrent_reached=limiter.max_concurrent,
            skipped=skipped,
            stats=stats,
        )
        logger.info("Mutation run finished", **result.summary())
        return result

    async def _run_admitted(
        self,
        document: DocumentHandle,
        mutate_fn: MutationFn,
        scheduler: FlushScheduler,
        deadline: DeadlineController,
        limiter: ConcurrencyLimiter,
        permit: Permit,
    ) -> DocumentResult:
        try:
            return await run_mutation_task(document, mutate_fn, scheduler, deadline)
        finally:
            limiter.release(permit)


async def mass_mutate(
    source: DocumentSource,
    backend: PersistenceBackend,
    mutate_fn: MutationFn,
    config: RunConfig | Mapping[str, Any],
    *,
    predicate: DocumentPredicate | None = None,
    abort_event: asyncio.Event | None = None,
) -> RunResult:
    """Run ``mutate_fn`` over every matching document in one call."""
    orchestrator = MutationOrchestrator(backend)
    return await orchestrator.run(source, mutate_fn, config, predicate=predicate, abort_event=abort_event)


async def mutate_one(
    backend: PersistenceBackend,
    document: DocumentHandle,
    mutate_fn: MutationFn,
    config: RunConfig | Mapping[str, Any] | None = None,
) -> DocumentResult:
    """Run ``mutate_fn`` on a single document with the same guarantees.

    The deadline and flush settings of ``config`` apply; concurrency does not.

    Raises:
        ConfigError: If ``config`` is invalid
    """
    run_config = build_run_config(config if config is not None else RunConfig())
    deadline = DeadlineController.from_config(run_config)
    rate_limiter = FlushRateLimiter.from_config(run_config.flush_rate_limit) if run_config.flush_rate_limit else None
    deadline.start()
    try:
        scheduler = FlushScheduler(
            document.document_id,
            backend,
            flush_interval_ms=run_config.flush_interval_ms,
            rate_limiter=rate_limiter,
            deadline=deadline,
        )
        return await run_mutation_task(document, mutate_fn, scheduler, deadline)
    finally:
        deadline.close()
        if rate_limiter is not None:
            rate_limiter.close()
