"""Tests for the lifecycle loops."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from mediatier.config import SchedulerConfig
from mediatier.core.gate import ExecutionGate
from mediatier.scheduler import (
    DOWNLOAD_MONITOR,
    LIBRARY_SCANNER,
    TRANSITION_SCHEDULER,
    WATCH_MONITOR,
    LifecycleScheduler,
)


@pytest.fixture
def gate():
    return ExecutionGate()


@pytest.fixture
def scheduler(gate, settings):
    return LifecycleScheduler(gate, MagicMock(return_value=settings), SchedulerConfig())


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_body_receives_current_settings(self, scheduler, settings):
        body = AsyncMock(return_value=3)
        scheduler.register(DOWNLOAD_MONITOR, body)

        await scheduler.run_loop(DOWNLOAD_MONITOR)

        body.assert_awaited_once_with(settings)

    @pytest.mark.asyncio
    async def test_body_runs_under_the_gate(self, scheduler, gate):
        holders = []

        async def body(settings):
            holders.append(gate.holder)

        scheduler.register(LIBRARY_SCANNER, body)
        await scheduler.run_loop(LIBRARY_SCANNER)

        assert holders == [LIBRARY_SCANNER]
        assert not gate.locked()

    @pytest.mark.asyncio
    async def test_error_is_logged_and_loop_survives(self, scheduler, gate):
        body = AsyncMock(side_effect=[RuntimeError("boom"), 1])
        scheduler.register(TRANSITION_SCHEDULER, body)

        await scheduler.run_loop(TRANSITION_SCHEDULER)
        assert not gate.locked()

        await scheduler.run_loop(TRANSITION_SCHEDULER)
        assert body.await_count == 2

    @pytest.mark.asyncio
    async def test_settings_failure_is_contained(self, gate):
        loader = MagicMock(side_effect=RuntimeError("db locked"))
        scheduler = LifecycleScheduler(gate, loader)
        body = AsyncMock()
        scheduler.register(WATCH_MONITOR, body)

        await scheduler.run_loop(WATCH_MONITOR)

        body.assert_not_called()
        assert not gate.locked()

    @pytest.mark.asyncio
    async def test_loops_never_overlap(self, scheduler):
        active = 0
        max_active = 0

        async def body(settings):
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1

        for name in (DOWNLOAD_MONITOR, LIBRARY_SCANNER, WATCH_MONITOR, TRANSITION_SCHEDULER):
            scheduler.register(name, body)

        await asyncio.gather(*(scheduler.run_loop(name) for name in
                               (DOWNLOAD_MONITOR, LIBRARY_SCANNER, WATCH_MONITOR, TRANSITION_SCHEDULER)))
        assert max_active == 1


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_loop_stops_running_cycle(self, scheduler, gate):
        started = asyncio.Event()

        async def body(settings):
            started.set()
            await asyncio.Event().wait()

        scheduler.register(LIBRARY_SCANNER, body)
        task = asyncio.create_task(scheduler.run_loop(LIBRARY_SCANNER))
        await started.wait()

        assert scheduler.cancel_loop(LIBRARY_SCANNER) is True
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not gate.locked()

    def test_cancel_unknown_loop(self, scheduler):
        assert scheduler.cancel_loop("nope") is False

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_cycles(self, scheduler, gate):
        started = asyncio.Event()

        async def body(settings):
            started.set()
            await asyncio.Event().wait()

        scheduler.register(WATCH_MONITOR, body)
        task = asyncio.create_task(scheduler.run_loop(WATCH_MONITOR))
        await started.wait()

        await scheduler.shutdown()

        assert task.cancelled()
        assert not gate.locked()


class TestStart:
    @pytest.mark.asyncio
    async def test_jobs_are_registered_with_intervals(self, gate, settings):
        config = SchedulerConfig(library_scanner_startup_delay_seconds=600)
        scheduler = LifecycleScheduler(gate, MagicMock(return_value=settings), config)
        for name in (DOWNLOAD_MONITOR, LIBRARY_SCANNER):
            scheduler.register(name, AsyncMock())

        scheduler.start()
        try:
            download_job = scheduler.scheduler.get_job(DOWNLOAD_MONITOR)
            scanner_job = scheduler.scheduler.get_job(LIBRARY_SCANNER)
            assert download_job.trigger.interval.total_seconds() == config.download_monitor_seconds
            assert scanner_job.trigger.interval.total_seconds() == config.library_scanner_seconds
            assert scanner_job.next_run_time > download_job.next_run_time
        finally:
            await scheduler.shutdown()

    def test_disabled_scheduler_does_not_start(self, gate, settings):
        scheduler = LifecycleScheduler(gate, MagicMock(return_value=settings), SchedulerConfig(enabled=False))
        scheduler.register(DOWNLOAD_MONITOR, AsyncMock())

        scheduler.start()

        assert scheduler.scheduler is None
