"""
Tests for the circuit breaker state machine.
"""
import asyncio

import pytest

from inventory_ops.errors import CircuitOpenError
from inventory_ops.monitoring.circuit_breaker import BreakerState, CircuitBreaker


def make_breaker(clock, threshold=3, reset_timeout=60):
    return CircuitBreaker("database", failure_threshold=threshold, reset_timeout=reset_timeout, clock=clock)


class TestTransitions:
    """closed -> open -> half-open -> closed | open."""

    def test_opens_after_threshold_consecutive_failures(self, clock):
        breaker = make_breaker(clock)

        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == BreakerState.CLOSED

        breaker.record_failure()
        assert breaker.state == BreakerState.OPEN
        assert not breaker.can_execute()

    def test_success_resets_failure_count(self, clock):
        breaker = make_breaker(clock)

        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        breaker.record_failure()

        assert breaker.state == BreakerState.CLOSED

    def test_half_open_after_reset_timeout(self, clock):
        breaker = make_breaker(clock)
        for _ in range(3):
            breaker.record_failure()

        clock.advance(59)
        assert breaker.state == BreakerState.OPEN

        clock.advance(1)
        assert breaker.state == BreakerState.HALF_OPEN
        assert breaker.can_execute()

    def test_half_open_admits_one_trial(self, clock):
        breaker = make_breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)

        assert breaker.can_execute()
        assert not breaker.can_execute()
        assert breaker.snapshot().trial_in_flight

        breaker.release_trial()
        assert breaker.can_execute()

        breaker.record_success()
        assert breaker.can_execute()
        assert breaker.can_execute()

    def test_half_open_success_closes(self, clock):
        breaker = make_breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)

        breaker.record_success()

        snapshot = breaker.snapshot()
        assert snapshot.state == BreakerState.CLOSED
        assert snapshot.consecutive_failures == 0
        assert snapshot.opened_at is None

    def test_half_open_failure_reopens_with_new_timestamp(self, clock):
        breaker = make_breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        first_opened = breaker.snapshot().opened_at
        clock.advance(60)

        breaker.record_failure()

        snapshot = breaker.snapshot()
        assert snapshot.state == BreakerState.OPEN
        assert snapshot.opened_at == first_opened + 60
        assert snapshot.times_opened == 2

    def test_failures_while_open_do_not_extend_timeout(self, clock):
        breaker = make_breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        opened_at = breaker.snapshot().opened_at

        clock.advance(30)
        breaker.record_failure()

        assert breaker.snapshot().opened_at == opened_at

    def test_threshold_must_be_positive(self, clock):
        with pytest.raises(ValueError):
            make_breaker(clock, threshold=0)


class TestCall:
    """Calls routed through the breaker."""

    @pytest.mark.asyncio
    async def test_open_breaker_skips_call(self, clock):
        breaker = make_breaker(clock, threshold=1)
        breaker.record_failure()
        calls = []

        async def probe():
            calls.append(1)

        with pytest.raises(CircuitOpenError):
            await breaker.call(probe)
        assert calls == []

    @pytest.mark.asyncio
    async def test_exception_recorded_and_reraised(self, clock):
        breaker = make_breaker(clock)

        async def probe():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await breaker.call(probe)
        assert breaker.snapshot().consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_result_returned(self, clock):
        breaker = make_breaker(clock)

        async def probe():
            return {"ok": True}

        assert await breaker.call(probe) == {"ok": True}

    @pytest.mark.asyncio
    async def test_second_call_rejected_while_trial_runs(self, clock):
        breaker = make_breaker(clock, threshold=1)
        breaker.record_failure()
        clock.advance(60)
        started = asyncio.Event()
        finish = asyncio.Event()

        async def slow():
            started.set()
            await finish.wait()
            return "ok"

        trial = asyncio.create_task(breaker.call(slow))
        await started.wait()

        with pytest.raises(CircuitOpenError):
            await breaker.call(slow)

        finish.set()
        assert await trial == "ok"
        assert breaker.state == BreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_trial_is_released(self, clock):
        breaker = make_breaker(clock, threshold=1)
        breaker.record_failure()
        clock.advance(60)

        async def hang():
            await asyncio.sleep(10)

        trial = asyncio.create_task(breaker.call(hang))
        await asyncio.sleep(0)
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial

        assert breaker.state == BreakerState.HALF_OPEN
        assert breaker.can_execute()


class TestRegistry:

    def test_one_breaker_per_component(self, breakers):
        assert breakers.get("database") is breakers.get("database")
        assert breakers.get("database") is not breakers.get("blockchain")
        assert len(breakers) == 2
        assert "database" in breakers

    def test_snapshots_are_copies(self, breakers):
        breakers.get("database").record_failure()
        snapshot = breakers.snapshots()["database"]

        snapshot.consecutive_failures = 99

        assert breakers.get("database").snapshot().consecutive_failures == 1
