"""
Circuit breaker for monitored dependencies.

One breaker per component key. A breaker stops the agent from hammering a
dependency that keeps failing, then lets a single trial call through once
reset_timeout has elapsed.

    closed --(failure_threshold consecutive failures)--> open
    open --(reset_timeout elapsed, checked lazily)--> half-open
    half-open --(success)--> closed
    half-open --(failure)--> open (opened_at reset)

While half-open only one trial is admitted; other callers are short-circuited
until its outcome is recorded.

Breaker state lives only in memory and is authoritative there; it is never
persisted.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from inventory_ops.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitBreakerState:
    """Snapshot of a breaker."""

    component: str
    state: BreakerState
    consecutive_failures: int
    opened_at: Optional[float]
    failure_threshold: int
    reset_timeout: float
    times_opened: int = 0
    trial_in_flight: bool = False


class CircuitBreaker:
    """
    Three-state breaker with an injectable clock.

    Usage:
        breaker = CircuitBreaker("database", failure_threshold=5, reset_timeout=60)

        if breaker.can_execute():
            try:
                await db.health_check()
                breaker.record_success()
            except Exception:
                breaker.record_failure()

        # or
        result = await breaker.call(lambda: ops.get_service_status())
    """

    def __init__(
        self,
        component: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self._state = CircuitBreakerState(
            component=component,
            state=BreakerState.CLOSED,
            consecutive_failures=0,
            opened_at=None,
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
        )
        self._clock = clock

    @property
    def component(self) -> str:
        return self._state.component

    @property
    def state(self) -> BreakerState:
        self._maybe_half_open()
        return self._state.state

    def can_execute(self) -> bool:
        """
        False while open. Once reset_timeout has elapsed, true for exactly one
        caller (the trial) until record_success, record_failure or
        release_trial is called.
        """
        s = self._state
        state = self.state
        if state == BreakerState.OPEN:
            return False
        if state == BreakerState.HALF_OPEN:
            if s.trial_in_flight:
                return False
            s.trial_in_flight = True
        return True

    def release_trial(self) -> None:
        """Give up an admitted trial without an outcome (e.g. cancellation)."""
        self._state.trial_in_flight = False

    def record_success(self) -> None:
        s = self._state
        s.trial_in_flight = False
        if s.state == BreakerState.HALF_OPEN:
            logger.info(f"Circuit for {s.component} closed after successful trial")
        s.state = BreakerState.CLOSED
        s.consecutive_failures = 0
        s.opened_at = None

    def record_failure(self) -> None:
        self._maybe_half_open()
        s = self._state
        s.trial_in_flight = False
        s.consecutive_failures += 1

        if s.state == BreakerState.HALF_OPEN:
            self._open()
        elif s.state == BreakerState.CLOSED and s.consecutive_failures >= s.failure_threshold:
            self._open()
        # Already open: counted, no new transition

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run fn through the breaker.

        Raises:
            CircuitOpenError: If the breaker is open or its half-open trial is
                already running (fn is not called)
        """
        if not self.can_execute():
            raise CircuitOpenError(self.component)
        try:
            result = await fn()
        except asyncio.CancelledError:
            self.release_trial()
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def snapshot(self) -> CircuitBreakerState:
        self._maybe_half_open()
        return replace(self._state)

    def _open(self) -> None:
        s = self._state
        s.state = BreakerState.OPEN
        s.opened_at = self._clock()
        s.times_opened += 1
        logger.warning(
            f"Circuit for {s.component} opened after {s.consecutive_failures} "
            f"consecutive failures"
        )

    def _maybe_half_open(self) -> None:
        s = self._state
        if s.state != BreakerState.OPEN or s.opened_at is None:
            return
        if self._clock() >= s.opened_at + s.reset_timeout:
            s.state = BreakerState.HALF_OPEN
            logger.info(f"Circuit for {s.component} half-open, allowing a trial call")


class BreakerRegistry:
    """
    Get-or-create registry guaranteeing one breaker per component.

    Usage:
        breakers = BreakerRegistry(failure_threshold=5, reset_timeout=60)
        breakers.get("database").can_execute()
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, component: str) -> CircuitBreaker:
        breaker = self._breakers.get(component)
        if breaker is None:
            breaker = CircuitBreaker(
                component,
                failure_threshold=self._failure_threshold,
                reset_timeout=self._reset_timeout,
                clock=self._clock,
            )
            self._breakers[component] = breaker
        return breaker

    def snapshots(self) -> Dict[str, CircuitBreakerState]:
        return {name: b.snapshot() for name, b in self._breakers.items()}

    def __contains__(self, component: str) -> bool:
        return component in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)
