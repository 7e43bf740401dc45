"""
Tests for periodic tasks and the scheduler lifecycle.
"""
import asyncio
import pytest

from inventory_ops.core.scheduler import (
    CancellationToken,
    PeriodicTask,
    Scheduler,
    StopRequested,
)


class Recorder:
    """Body that counts firings."""

    def __init__(self, fail=False, delay=0.0):
        self.calls = 0
        self.fail = fail
        self.delay = delay

    async def __call__(self, token):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("body failed")


class TestCancellationToken:

    def test_throw_if_cancelled(self):
        token = CancellationToken()
        token.throw_if_cancelled()

        token.cancel()

        assert token.is_cancelled
        with pytest.raises(StopRequested):
            token.throw_if_cancelled()

    @pytest.mark.asyncio
    async def test_wait_returns_early_on_cancel(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        assert await token.wait(5) is True
        assert await CancellationToken().wait(0.01) is False


class TestPeriodicTask:
    """A single repeating body."""

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            PeriodicTask("bad", 0, Recorder())

    @pytest.mark.asyncio
    async def test_fires_repeatedly(self):
        body = Recorder()
        task = PeriodicTask("tick", 0.01, body)
        token = CancellationToken()

        runner = asyncio.create_task(task.run(token))
        await asyncio.sleep(0.1)
        token.cancel()
        await runner

        assert body.calls >= 3
        assert task.invocations == body.calls

    @pytest.mark.asyncio
    async def test_run_immediately(self):
        body = Recorder()
        task = PeriodicTask("tick", 60, body, run_immediately=True)
        token = CancellationToken()

        runner = asyncio.create_task(task.run(token))
        await asyncio.sleep(0.02)
        token.cancel()
        await runner

        assert body.calls == 1

    @pytest.mark.asyncio
    async def test_failing_body_keeps_schedule(self):
        body = Recorder(fail=True)
        task = PeriodicTask("tick", 0.01, body)
        token = CancellationToken()

        runner = asyncio.create_task(task.run(token))
        await asyncio.sleep(0.1)
        token.cancel()
        await runner

        assert body.calls >= 3

    @pytest.mark.asyncio
    async def test_firings_never_overlap(self):
        active = []
        overlaps = []

        async def body(token):
            if active:
                overlaps.append(1)
            active.append(1)
            await asyncio.sleep(0.03)
            active.pop()

        task = PeriodicTask("slow", 0.005, body, run_immediately=True)
        token = CancellationToken()
        runner = asyncio.create_task(task.run(token))
        await asyncio.sleep(0.15)
        token.cancel()
        await runner

        assert overlaps == []

    @pytest.mark.asyncio
    async def test_stop_requested_ends_loop(self):
        token = CancellationToken()

        async def body(t):
            t.cancel()
            t.throw_if_cancelled()

        task = PeriodicTask("once", 0.01, body, run_immediately=True)
        await asyncio.wait_for(task.run(token), timeout=1)

        assert task.invocations == 1


class TestScheduler:
    """Lifecycle guarantees."""

    @pytest.mark.asyncio
    async def test_one_task_per_concern(self):
        scheduler = Scheduler()
        scheduler.add(PeriodicTask("a", 60, Recorder()))
        scheduler.add(PeriodicTask("b", 60, Recorder()))

        await scheduler.start()
        assert scheduler.active_task_count == 2

        await scheduler.stop()
        assert scheduler.active_task_count == 0

    def test_duplicate_name_rejected(self):
        scheduler = Scheduler()
        scheduler.add(PeriodicTask("a", 60, Recorder()))

        with pytest.raises(ValueError):
            scheduler.add(PeriodicTask("a", 30, Recorder()))

    @pytest.mark.asyncio
    async def test_start_while_running_is_noop(self):
        scheduler = Scheduler()
        scheduler.add(PeriodicTask("a", 60, Recorder()))

        await scheduler.start()
        token = scheduler.token
        await scheduler.start()

        assert scheduler.active_task_count == 1
        assert scheduler.token is token
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_start_cycle_leaves_no_duplicate_timers(self):
        body = Recorder()
        scheduler = Scheduler()
        scheduler.add(PeriodicTask("a", 0.01, body))

        for _ in range(3):
            await scheduler.start()
            await scheduler.stop()
        await scheduler.start()

        assert scheduler.active_task_count == 1
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_restart_uses_fresh_token(self):
        scheduler = Scheduler()
        scheduler.add(PeriodicTask("a", 60, Recorder()))

        await scheduler.start()
        first = scheduler.token
        await scheduler.stop()
        await scheduler.start()

        assert first.is_cancelled
        assert not scheduler.token.is_cancelled
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        scheduler = Scheduler()
        await scheduler.stop()
        await scheduler.start()
        await scheduler.stop()
        await scheduler.stop()

        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_stuck_body_cancelled_after_grace(self):
        async def stuck(token):
            await asyncio.sleep(60)

        scheduler = Scheduler(shutdown_grace_seconds=0.05)
        scheduler.add(PeriodicTask("stuck", 60, stuck, run_immediately=True))
        await scheduler.start()
        await asyncio.sleep(0.01)

        await asyncio.wait_for(scheduler.stop(), timeout=2)

        assert scheduler.active_task_count == 0

    def test_clear_only_when_stopped(self):
        scheduler = Scheduler()
        scheduler.add(PeriodicTask("a", 60, Recorder()))
        scheduler.clear()

        assert scheduler.periodic_tasks == []
