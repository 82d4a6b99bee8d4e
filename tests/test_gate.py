"""Tests for the global execution gate."""

import asyncio

import pytest

from mediatier.core.errors import GateReentryError
from mediatier.core.gate import ExecutionGate


@pytest.fixture
def gate():
    return ExecutionGate()


class TestMutualExclusion:
    @pytest.mark.asyncio
    async def test_one_holder_at_a_time(self, gate):
        active = 0
        max_active = 0

        async def worker(name):
            nonlocal active, max_active
            async with gate.hold(name):
                active += 1
                max_active = max(max_active, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker(f"loop-{i}") for i in range(5)))
        assert max_active == 1
        assert not gate.locked()

    @pytest.mark.asyncio
    async def test_holder_is_visible_while_held(self, gate):
        async with gate.hold("library_scanner"):
            assert gate.holder == "library_scanner"
            assert gate.locked()
        assert gate.holder is None


class TestRelease:
    @pytest.mark.asyncio
    async def test_released_after_exception(self, gate):
        with pytest.raises(ValueError):
            async with gate.hold("download_monitor"):
                raise ValueError("boom")
        assert not gate.locked()

        async with gate.hold("download_monitor"):
            pass

    @pytest.mark.asyncio
    async def test_released_when_holder_cancelled(self, gate):
        entered = asyncio.Event()

        async def holder():
            async with gate.hold("watch_monitor"):
                entered.set()
                await asyncio.Event().wait()

        task = asyncio.create_task(holder())
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not gate.locked()

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_gate_unheld(self, gate):
        release = asyncio.Event()
        entered = asyncio.Event()

        async def holder():
            async with gate.hold("first"):
                entered.set()
                await release.wait()

        async def waiter():
            async with gate.hold("second"):
                pass

        first = asyncio.create_task(holder())
        await entered.wait()
        second = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        second.cancel()
        with pytest.raises(asyncio.CancelledError):
            await second

        release.set()
        await first
        assert not gate.locked()
        assert gate.holder is None
        async with gate.hold("third"):
            assert gate.holder == "third"


class TestReentry:
    @pytest.mark.asyncio
    async def test_same_owner_raises_instead_of_deadlock(self, gate):
        async with gate.hold("transition_scheduler"):
            with pytest.raises(GateReentryError):
                async with gate.hold("transition_scheduler"):
                    pass
            assert gate.holder == "transition_scheduler"
        assert not gate.locked()
