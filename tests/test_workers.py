"""
Tests for the worker pool, deadlines and per-key locks
"""
import asyncio
import threading
import time

import pytest

from mqctl.errors import ProbeTimeoutError
from mqctl.workers import Deadline, KeyedLock, WorkerPool, backoff_delay


class TestDeadline:
    """Test deadline arithmetic"""

    def test_remaining_counts_down(self):
        """Test that remaining time never exceeds the budget"""
        deadline = Deadline(10)
        assert 0 < deadline.remaining() <= 10
        assert not deadline.expired

    def test_default_timeout(self):
        """Test the 30 second default"""
        assert Deadline().seconds == 30

    def test_non_positive_rejected(self):
        """Test that zero and negative budgets are refused"""
        with pytest.raises(ValueError):
            Deadline(0)
        with pytest.raises(ValueError):
            Deadline(-1)


class TestWorkerPool:
    """Test running blocking calls off the event loop"""

    @pytest.mark.asyncio
    async def test_run_returns_result(self, pool):
        """Test that results are passed back"""
        assert await pool.run(lambda a, b: a + b, 2, 3) == 5

    @pytest.mark.asyncio
    async def test_run_propagates_errors(self, pool):
        """Test that exceptions from the call are raised"""
        def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await pool.run(boom)

    @pytest.mark.asyncio
    async def test_deadline_expiry_raises_timeout(self, pool):
        """Test that a slow call is abandoned at the deadline"""
        release = threading.Event()
        try:
            with pytest.raises(ProbeTimeoutError) as exc_info:
                await pool.run(release.wait, 5, deadline=Deadline(0.05), operation="Probe of slowhost")
            assert "Probe of slowhost" in str(exc_info.value)
            assert isinstance(exc_info.value, TimeoutError)
        finally:
            release.set()

    @pytest.mark.asyncio
    async def test_pool_bounds_concurrency(self):
        """Test that no more than max_workers calls run at once"""
        workers = WorkerPool(max_workers=2)
        lock = threading.Lock()
        state = {"running": 0, "peak": 0}

        def work():
            with lock:
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
            time.sleep(0.05)
            with lock:
                state["running"] -= 1

        try:
            await asyncio.gather(*(workers.run(work) for _ in range(6)))
        finally:
            workers.close()
        assert state["peak"] <= 2

    @pytest.mark.asyncio
    async def test_closed_pool_refuses_work(self):
        """Test that a closed pool raises"""
        workers = WorkerPool(max_workers=1)
        workers.close()
        with pytest.raises(RuntimeError):
            await workers.run(lambda: None)

    def test_invalid_size(self):
        """Test that a pool needs at least one worker"""
        with pytest.raises(ValueError):
            WorkerPool(max_workers=0)


class TestKeyedLock:
    """Test per-key mutual exclusion"""

    @pytest.mark.asyncio
    async def test_same_key_serialized(self):
        """Test that holders of one key never overlap"""
        locks = KeyedLock()
        order = []

        async def hold(tag):
            async with locks.hold("conn-1"):
                order.append(f"{tag}-start")
                await asyncio.sleep(0.01)
                order.append(f"{tag}-end")

        await asyncio.gather(hold("a"), hold("b"))
        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_keys_independent(self):
        """Test that one key never blocks another"""
        locks = KeyedLock()
        entered = asyncio.Event()

        async def holder():
            async with locks.hold("conn-1"):
                await entered.wait()

        task = asyncio.create_task(holder())
        await asyncio.sleep(0)
        assert locks.locked("conn-1")

        async with locks.hold("conn-2"):
            entered.set()
        await task

    @pytest.mark.asyncio
    async def test_locks_released_after_use(self):
        """Test that unused keys are cleaned up"""
        locks = KeyedLock()
        async with locks.hold("conn-1"):
            assert len(locks) == 1
        assert len(locks) == 0
        assert not locks.locked("conn-1")


class TestBackoff:
    """Test exponential backoff"""

    def test_exponential(self):
        """Test delay = base ** attempts"""
        assert backoff_delay(0) == 1
        assert backoff_delay(3) == 8
        assert backoff_delay(2, base=3) == 9
