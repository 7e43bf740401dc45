"""
Metric collection for failure classification and anomaly detection.

Gathers one snapshot per domain from the store, the ledger, the
operational API and the local host. Each domain is collected on its own:
a failing source leaves its domain as None and never prevents the other
domains from being collected.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

import psutil

if TYPE_CHECKING:
    from inventory_ops.clients.ledger import LedgerClient
    from inventory_ops.clients.operations import OperationsClient
    from inventory_ops.config import ThresholdConfig
    from inventory_ops.monitoring.circuit_breaker import BreakerRegistry
    from inventory_ops.storage.store import Store

logger = logging.getLogger(__name__)

# Samples kept for resource utilisation forecasts
RESOURCE_HISTORY_SIZE = 288

# Breaker keys owned by the collector, one per source. Health probes own the
# plain component keys ("database", "blockchain", ...).
STORE_BREAKER = "metrics:database"
LEDGER_BREAKER = "metrics:blockchain"
OPS_BREAKER = "metrics:operations"

# domain -> (collector method, required source attribute, breaker key)
DOMAIN_SOURCES: Dict[str, Tuple[str, Optional[str], Optional[str]]] = {
    "resource": ("collect_resource_metrics", None, None),
    "database": ("collect_database_metrics", "_store", STORE_BREAKER),
    "blockchain": ("collect_blockchain_metrics", "_ledger", LEDGER_BREAKER),
    "network": ("collect_network_metrics", "_ops", OPS_BREAKER),
    "services": ("collect_service_metrics", "_ops", OPS_BREAKER),
    "performance": ("collect_performance_metrics", "_ops", OPS_BREAKER),
    "inventory": ("collect_inventory_metrics", "_store", STORE_BREAKER),
    "security": ("collect_security_metrics", "_store", STORE_BREAKER),
}

SYSTEM_DOMAINS = ("resource", "database", "blockchain", "network", "services")
SNAPSHOT_DOMAINS = ("performance", "inventory", "security", "blockchain")


def sample_host_resources() -> Dict[str, float]:
    """CPU, memory and root-disk utilisation in percent. Blocking."""
    return {
        "cpu": float(psutil.cpu_percent(interval=None)),
        "memory": float(psutil.virtual_memory().percent),
        "disk": float(psutil.disk_usage("/").percent),
    }


class MetricCollector:
    """
    Collects per-domain metric snapshots.

    Sources that have a breaker key are called through the collector's
    breaker for that source, so an open breaker skips the call entirely.

    Usage:
        collector = MetricCollector(store, ledger, ops, breakers, thresholds)

        system = await collector.collect_system_metrics()
        # {"resource": {...}, "database": {...} or None, "blockchain": ..., ...}

        snapshot = await collector.collect_snapshot()
        # {"performance": ..., "inventory": ..., "blockchain": ..., "security": ...}
    """

    def __init__(
        self,
        store: Optional["Store"],
        ledger: Optional["LedgerClient"],
        ops: Optional["OperationsClient"],
        breakers: "BreakerRegistry",
        thresholds: "ThresholdConfig",
        resource_sampler: Callable[[], Dict[str, float]] = sample_host_resources,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._ops = ops
        self._breakers = breakers
        self._thresholds = thresholds
        self._resource_sampler = resource_sampler
        self._resource_history: Deque[Tuple[float, Dict[str, float]]] = deque(
            maxlen=RESOURCE_HISTORY_SIZE
        )

    @property
    def resource_history(self) -> List[Tuple[float, Dict[str, float]]]:
        """(unix timestamp, sample) pairs, oldest first."""
        return list(self._resource_history)

    async def _collect(
        self,
        domain: str,
        fn: Callable[[], Awaitable[Any]],
        breaker_key: Optional[str] = None,
    ) -> Optional[Any]:
        """Run one domain collector, returning None if it fails."""
        try:
            if breaker_key is None:
                return await fn()
            return await self._breakers.get(breaker_key).call(fn)
        except Exception as e:
            logger.error(f"Failed to collect {domain} metrics: {e}")
            return None

    # =========================================================================
    # Domains
    # =========================================================================

    async def collect_resource_metrics(self) -> Dict[str, float]:
        sample = await asyncio.to_thread(self._resource_sampler)
        self._resource_history.append((time.time(), sample))
        return sample

    async def collect_database_metrics(self) -> Dict[str, float]:
        return await self._store.get_health_metrics()

    async def collect_blockchain_metrics(self) -> Dict[str, float]:
        metrics = dict(await self._ledger.get_health_metrics())
        if self._store is not None:
            try:
                metrics["failed_transactions"] = await self._store.count_unconfirmed_transactions()
            except Exception as e:
                logger.warning(f"Cannot count unconfirmed transactions: {e}")
        return metrics

    async def collect_service_metrics(self) -> Dict[str, Dict[str, Any]]:
        return await self._ops.get_service_status()

    async def collect_network_metrics(self) -> Dict[str, float]:
        return await self._ops.get_network_metrics()

    async def collect_performance_metrics(self) -> Dict[str, float]:
        return await self._ops.get_performance_metrics()

    async def collect_inventory_metrics(self) -> Dict[str, int]:
        low = await self._store.get_low_stock_items(self._thresholds.low_stock)
        over = await self._store.get_overstock_items(self._thresholds.overstock)
        discrepancies = await self._store.get_discrepancies()
        return {
            "low_stock_items": len(low),
            "overstock_items": len(over),
            "discrepancies": len(discrepancies),
        }

    async def collect_security_metrics(self) -> Dict[str, int]:
        counters = await self._store.get_security_counters()
        return {
            "failed_logins": counters.failed_logins,
            "unauthorized_attempts": counters.unauthorized_attempts,
            "distinct_ips": counters.distinct_ips,
        }

    # =========================================================================
    # Snapshots
    # =========================================================================

    async def collect_domain(self, domain: str) -> Optional[Dict[str, Any]]:
        """
        Collect one domain by name, through its breaker.

        None if the domain's source is not configured or fails.
        """
        collector, source, breaker_key = DOMAIN_SOURCES[domain]
        if source is not None and getattr(self, source) is None:
            return None
        return await self._collect(domain, getattr(self, collector), breaker_key)

    async def collect_system_metrics(self) -> Dict[str, Optional[Dict[str, Any]]]:
        """
        Input for the failure classifier.

        Domains whose source is not configured are omitted. Domains whose
        source failed are present with value None.
        """
        return await self._collect_domains(SYSTEM_DOMAINS)

    async def collect_snapshot(self) -> Dict[str, Optional[Dict[str, Any]]]:
        """Input for the anomaly detector."""
        return await self._collect_domains(SNAPSHOT_DOMAINS)

    async def _collect_domains(
        self, domains: Tuple[str, ...]
    ) -> Dict[str, Optional[Dict[str, Any]]]:
        result: Dict[str, Optional[Dict[str, Any]]] = {}
        for domain in domains:
            source = DOMAIN_SOURCES[domain][1]
            if source is not None and getattr(self, source) is None:
                continue
            result[domain] = await self.collect_domain(domain)
        return result
