"""
Health Checker for component health monitoring.

Runs one probe per tracked component (database, ledger, API, Redis) through that
component's circuit breaker and keeps the last aggregate result so the
health endpoint can answer even when the latest probe cycle failed.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional

import httpx
import redis.asyncio as redis

from inventory_ops.errors import ProbeError

if TYPE_CHECKING:
    from inventory_ops.clients.ledger import LedgerClient
    from inventory_ops.monitoring.circuit_breaker import BreakerRegistry
    from inventory_ops.storage.store import Store

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health of a single component."""

    UP = "up"
    DEGRADED = "degraded"
    DOWN = "down"


class OverallStatus(str, Enum):
    """Health of the whole system."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


@dataclass
class ComponentHealth:
    """Health check result for a single component. Never persisted."""

    component: str
    status: HealthStatus
    latency_ms: Optional[float] = None
    last_check: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None


@dataclass
class AggregateHealth:
    """Overall system health."""

    status: OverallStatus
    components: List[ComponentHealth] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    stale: bool = False

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "checked_at": self.checked_at.isoformat(),
            "stale": self.stale,
            "components": {
                c.component: {
                    "status": c.status.value,
                    "latency_ms": c.latency_ms,
                    "last_check": c.last_check.isoformat(),
                    "error": c.error,
                }
                for c in self.components
            },
        }


@dataclass
class HealthProbe:
    """
    A single component check.

    check is a coroutine function that returns on success and raises on
    failure. A successful check slower than degraded_after_ms reports
    degraded instead of up.
    """

    component: str
    check: Callable[[], Awaitable[object]]
    timeout: float = 5.0
    degraded_after_ms: float = 1000.0

    async def run(self) -> ComponentHealth:
        start = time.monotonic()
        try:
            await asyncio.wait_for(self.check(), timeout=self.timeout)
        except asyncio.TimeoutError:
            return ComponentHealth(
                component=self.component,
                status=HealthStatus.DOWN,
                latency_ms=(time.monotonic() - start) * 1000,
                error=f"{self.component} check timed out after {self.timeout}s",
            )
        except Exception as e:
            logger.error(f"{self.component} health check failed: {e}")
            return ComponentHealth(
                component=self.component,
                status=HealthStatus.DOWN,
                latency_ms=(time.monotonic() - start) * 1000,
                error=str(e),
            )

        latency_ms = (time.monotonic() - start) * 1000
        status = HealthStatus.DEGRADED if latency_ms > self.degraded_after_ms else HealthStatus.UP
        return ComponentHealth(component=self.component, status=status, latency_ms=latency_ms)


# =============================================================================
# Probe factories
# =============================================================================


def database_probe(store: "Store", timeout: float = 5.0) -> HealthProbe:
    async def check() -> None:
        if not await store.health_check():
            raise ProbeError("database", "SELECT 1 failed")

    return HealthProbe("database", check, timeout=timeout, degraded_after_ms=1000)


def ledger_probe(ledger: "LedgerClient", timeout: float = 5.0) -> HealthProbe:
    async def check() -> None:
        await ledger.get_block_height()

    return HealthProbe("blockchain", check, timeout=timeout, degraded_after_ms=5000)


def http_probe(
    component: str,
    url: str,
    timeout: float = 5.0,
    client: Optional[httpx.AsyncClient] = None,
) -> HealthProbe:
    """Probe an HTTP liveness endpoint; any non-2xx response is down."""

    async def check() -> None:
        if client is not None:
            response = await client.get(url, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as c:
                response = await c.get(url)
        if response.status_code >= 400:
            raise ProbeError(component, f"HTTP {response.status_code} from {url}")

    return HealthProbe(component, check, timeout=timeout, degraded_after_ms=2000)


def redis_probe(
    url: str,
    timeout: float = 5.0,
    client: Optional[redis.Redis] = None,
) -> HealthProbe:
    """Probe Redis with PING. Without a client, one is opened per check."""

    async def ping(c: redis.Redis) -> None:
        if not await c.ping():
            raise ProbeError("redis", "PING returned no PONG")

    async def check() -> None:
        if client is not None:
            await ping(client)
            return
        c = redis.Redis.from_url(url, socket_timeout=timeout, socket_connect_timeout=timeout)
        try:
            await ping(c)
        finally:
            await c.aclose()

    return HealthProbe("redis", check, timeout=timeout, degraded_after_ms=500)


# =============================================================================
# Checker
# =============================================================================


class HealthChecker:
    """
    Checks health of the tracked components.

    Each probe runs only if its component's breaker allows it. An open
    breaker yields a synthetic down result without calling the dependency.
    Probe results are fed back to the breaker. Probes own the breakers named
    after their components; the metric collector uses its own keys.

    Usage:
        checker = HealthChecker(
            [database_probe(store), ledger_probe(ledger), http_probe("api", url)],
            breakers,
        )
        overall = await checker.check_all()
        last = checker.last_known(stale_after=90)
    """

    def __init__(self, probes: List[HealthProbe], breakers: "BreakerRegistry") -> None:
        self._probes: Dict[str, HealthProbe] = {p.component: p for p in probes}
        self._breakers = breakers
        self._last: Optional[AggregateHealth] = None

    @property
    def components(self) -> List[str]:
        return list(self._probes)

    async def check_component(self, component: str) -> ComponentHealth:
        probe = self._probes[component]
        breaker = self._breakers.get(component)

        if not breaker.can_execute():
            return ComponentHealth(
                component=component,
                status=HealthStatus.DOWN,
                error="circuit open",
            )

        try:
            result = await probe.run()
        except asyncio.CancelledError:
            breaker.release_trial()
            raise
        if result.status == HealthStatus.DOWN:
            breaker.record_failure()
        else:
            breaker.record_success()
        return result

    async def check_all(self) -> AggregateHealth:
        """Probe every component concurrently and store the aggregate."""
        results = await asyncio.gather(
            *(self.check_component(name) for name in self._probes)
        )
        aggregate = AggregateHealth(
            status=self._calculate_overall_status(list(results)),
            components=list(results),
        )
        self._last = aggregate
        return aggregate

    def last_known(self, stale_after: Optional[float] = None) -> Optional[AggregateHealth]:
        """
        Last aggregate, flagged stale when older than stale_after seconds.

        Returns None until the first check has completed.
        """
        if self._last is None:
            return None
        age = (datetime.now(timezone.utc) - self._last.checked_at).total_seconds()
        stale = stale_after is not None and age > stale_after
        return AggregateHealth(
            status=self._last.status,
            components=list(self._last.components),
            checked_at=self._last.checked_at,
            stale=stale,
        )

    def _calculate_overall_status(self, components: List[ComponentHealth]) -> OverallStatus:
        """critical if at least half are down, degraded if any is not up."""
        if not components:
            return OverallStatus.HEALTHY

        down = sum(1 for c in components if c.status == HealthStatus.DOWN)
        if down * 2 >= len(components):
            return OverallStatus.CRITICAL

        if any(c.status != HealthStatus.UP for c in components):
            return OverallStatus.DEGRADED

        return OverallStatus.HEALTHY
