# tests/engine/test_mutation_task.py
"""Tests for the mutation task harness and MutationContext."""

from __future__ import annotations

import asyncio
import json

import pytest

from roomflush.contracts import (
    DocumentHandle,
    DocumentOutcome,
    MutationCancelledError,
    StopReason,
)
from roomflush.core.logging import configure_logging, get_logger
from roomflush.engine.deadline import DeadlineController
from roomflush.engine.flush import FlushScheduler
from roomflush.engine.task import MutationContext, run_mutation_task
from tests.fixtures.stores import RecordingBackend, make_store, paced_writer


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend(store=make_store(1))


def _harness(
    backend: RecordingBackend,
    *,
    timeout_seconds: float | None = None,
    flush_interval_ms: int = 1000,
) -> tuple[DocumentHandle, FlushScheduler, DeadlineController]:
    deadline = DeadlineController(timeout_seconds=timeout_seconds)
    deadline.start()
    document = DocumentHandle("room-0")
    scheduler = FlushScheduler("room-0", backend, flush_interval_ms=flush_interval_ms, deadline=deadline)
    return document, scheduler, deadline


class TestMutationContext:
    """Writes are recorded and applied; pacing observes cancellation."""

    @pytest.mark.asyncio
    async def test_write_applies_to_root_and_records(self, backend: RecordingBackend) -> None:
        document, scheduler, deadline = _harness(backend)
        ctx = MutationContext(document, scheduler, deadline)

        ctx.write("title", "hello")

        assert ctx.root == {"title": "hello"}
        assert scheduler.mutations_recorded == 1
        assert ctx.document_id == "room-0"
        await scheduler.close()

    @pytest.mark.asyncio
    async def test_write_after_cancel_raises(self, backend: RecordingBackend) -> None:
        document, scheduler, deadline = _harness(backend)
        ctx = MutationContext(document, scheduler, deadline)
        deadline.abort()

        with pytest.raises(MutationCancelledError):
            ctx.write("title", "hello")

        assert ctx.cancelled
        assert ctx.interrupted
        assert ctx.root == {}
        assert scheduler.mutations_recorded == 0

    @pytest.mark.asyncio
    async def test_pace_interrupted_by_cancel(self, backend: RecordingBackend) -> None:
        document, scheduler, deadline = _harness(backend)
        ctx = MutationContext(document, scheduler, deadline)
        asyncio.get_running_loop().call_later(0.01, deadline.abort)

        with pytest.raises(MutationCancelledError):
            await ctx.pace(5000)

    @pytest.mark.asyncio
    async def test_negative_pace_rejected(self, backend: RecordingBackend) -> None:
        document, scheduler, deadline = _harness(backend)
        ctx = MutationContext(document, scheduler, deadline)

        with pytest.raises(ValueError, match="duration_ms"):
            await ctx.pace(-1)

    @pytest.mark.asyncio
    async def test_pace_yields_to_other_tasks(self, backend: RecordingBackend) -> None:
        document, scheduler, deadline = _harness(backend)
        ctx = MutationContext(document, scheduler, deadline)
        ticks: list[int] = []

        async def ticker() -> None:
            for i in range(3):
                ticks.append(i)
                await asyncio.sleep(0.005)

        task = asyncio.create_task(ticker())
        await ctx.pace(30)

        assert ticks == [0, 1, 2]
        await task


class TestRunMutationTask:
    """Outcome classification and the guaranteed final flush."""

    @pytest.mark.asyncio
    async def test_success_flushes_all_writes(self, backend: RecordingBackend) -> None:
        document, scheduler, deadline = _harness(backend)

        result = await run_mutation_task(document, paced_writer(5, 1), scheduler, deadline)

        assert result.outcome == DocumentOutcome.SUCCEEDED
        assert result.writes_recorded == 5
        assert result.writes_flushed == 5
        assert result.fully_flushed
        assert result.error is None
        assert backend.store.get("room-0") == {f"k{i}": i for i in range(5)}

    @pytest.mark.asyncio
    async def test_sync_mutation_function_accepted(self, backend: RecordingBackend) -> None:
        document, scheduler, deadline = _harness(backend)

        def rename(ctx: MutationContext) -> None:
            ctx.write("title", "renamed")

        result = await run_mutation_task(document, rename, scheduler, deadline)

        assert result.outcome == DocumentOutcome.SUCCEEDED
        assert backend.store.get("room-0") == {"title": "renamed"}

    @pytest.mark.asyncio
    async def test_failure_keeps_writes_made_before_it(self, backend: RecordingBackend) -> None:
        document, scheduler, deadline = _harness(backend)

        async def half_then_fail(ctx: MutationContext) -> None:
            ctx.write("a", 1)
            ctx.write("b", 2)
            await ctx.pace(1)
            raise RuntimeError("palette exhausted")

        result = await run_mutation_task(document, half_then_fail, scheduler, deadline)

        assert result.outcome == DocumentOutcome.FAILED
        assert result.error == "palette exhausted"
        assert result.error_type == "RuntimeError"
        assert result.writes_flushed == 2
        assert backend.store.get("room-0") == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_deadline_mid_task_cancels_and_flushes_prefix(self, backend: RecordingBackend) -> None:
        document, scheduler, deadline = _harness(backend, timeout_seconds=0.05)

        result = await run_mutation_task(document, paced_writer(1000, 5), scheduler, deadline)

        assert result.outcome == DocumentOutcome.CANCELLED
        assert deadline.reason == StopReason.DEADLINE_EXCEEDED
        assert 0 < result.writes_recorded < 1000
        assert result.fully_flushed
        persisted = backend.store.get("room-0")
        assert persisted == {f"k{i}": i for i in range(result.writes_recorded)}

    @pytest.mark.asyncio
    async def test_cancel_interrupts_non_pace_await(self, backend: RecordingBackend) -> None:
        document, scheduler, deadline = _harness(backend, timeout_seconds=0.02)
        unwound = asyncio.Event()

        async def stuck(ctx: MutationContext) -> None:
            ctx.write("a", 1)
            try:
                await asyncio.sleep(10)
            finally:
                unwound.set()

        result = await asyncio.wait_for(run_mutation_task(document, stuck, scheduler, deadline), timeout=2.0)

        assert result.outcome == DocumentOutcome.CANCELLED
        assert unwound.is_set()
        assert backend.store.get("room-0") == {"a": 1}

    @pytest.mark.asyncio
    async def test_swallowed_cancellation_still_reported_cancelled(self, backend: RecordingBackend) -> None:
        document, scheduler, deadline = _harness(backend)
        deadline.abort()

        async def swallow(ctx: MutationContext) -> None:
            try:
                ctx.write("a", 1)
            except MutationCancelledError:
                return

        result = await run_mutation_task(document, swallow, scheduler, deadline)

        assert result.outcome == DocumentOutcome.CANCELLED
        assert result.writes_recorded == 0
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_rejected_flush_fails_document(self) -> None:
        backend = RecordingBackend(store=make_store(1), reject={"room-0"})
        document, scheduler, deadline = _harness(backend, flush_interval_ms=5)

        result = await run_mutation_task(document, paced_writer(20, 5), scheduler, deadline)

        assert result.outcome == DocumentOutcome.FAILED
        assert result.error_type == "FlushError"
        assert result.writes_flushed == 0
        # The task stopped at the first write after the rejection
        assert result.writes_recorded < 20
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_rejected_final_flush_fails_document(self) -> None:
        backend = RecordingBackend(store=make_store(1), reject={"room-0"})
        document, scheduler, deadline = _harness(backend)

        def one_write(ctx: MutationContext) -> None:
            ctx.write("a", 1)

        result = await run_mutation_task(document, one_write, scheduler, deadline)

        assert result.outcome == DocumentOutcome.FAILED
        assert result.error_type == "FlushError"
        assert not result.fully_flushed


class TestTaskLogging:
    @pytest.mark.asyncio
    async def test_log_lines_tagged_with_document_id(
        self, backend: RecordingBackend, capsys: pytest.CaptureFixture[str]
    ) -> None:
        configure_logging(json_output=True, level="DEBUG")
        document, scheduler, deadline = _harness(backend, flush_interval_ms=5)

        async def write_then_log(ctx: MutationContext) -> None:
            ctx.write("a", 1)
            await ctx.pace(30)
            get_logger("tests.mutator").info("painting")

        await run_mutation_task(document, write_then_log, scheduler, deadline)
        get_logger("tests").info("after task")

        lines = [json.loads(line) for line in capsys.readouterr().err.splitlines() if line.startswith("{")]
        by_event = {line["event"]: line for line in lines}
        assert by_event["painting"]["document_id"] == "room-0"
        assert by_event["Document settled"]["document_id"] == "room-0"
        assert by_event["Flushed document batch"]["logger"] == "roomflush.engine.flush"
        assert "document_id" not in by_event["after task"]
