"""
Failure classification.

Turns a system metrics snapshot into deduplicated Failure records using a
deterministic rule table. Each rule compares one metric (or a ratio of two)
against a threshold and, when it fires, yields a failure of a fixed type,
component and severity.

Dedup:
    dedup_key = "{component}:{type}:{rule}:{bucket}"
    bucket = floor(timestamp / dedup_window_seconds)

A condition reported again inside the same window maps to the same key and
returns the existing unresolved record instead of creating a new one. A
full pass resolves open failures whose rule no longer fires.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from inventory_ops.errors import ClassificationError, PersistenceError
from inventory_ops.storage.models import Failure, FailureType, Severity, utcnow

if TYPE_CHECKING:
    from inventory_ops.core.context import SupervisorContext
    from inventory_ops.monitoring.alerting import AlertManager
    from inventory_ops.storage.store import Store

logger = logging.getLogger(__name__)

DETECTION_SOURCE = "failure-classifier"

SERVICE_RESOURCE_LIMIT = 90.0


@dataclass(frozen=True)
class ClassificationRule:
    """
    One row of the rule table.

    The rule fires when metrics[domain][metric] (divided by
    metrics[domain][denominator] when set) is strictly above threshold.
    """

    name: str
    domain: str
    metric: str
    threshold: float
    severity: Severity
    failure_type: FailureType
    component: str
    description: str
    denominator: Optional[str] = None
    connectivity: bool = False

    def evaluate(self, data: Mapping[str, Any]) -> Optional[float]:
        """
        Value of the rule's metric if the rule fires, else None.

        A missing metric does not fire. A non-numeric one, or a zero
        denominator, raises ClassificationError.
        """
        if self.metric not in data:
            return None
        value = _number(self.domain, self.metric, data[self.metric])

        if self.denominator is not None:
            if self.denominator not in data:
                return None
            divisor = _number(self.domain, self.denominator, data[self.denominator])
            if divisor <= 0:
                raise ClassificationError(self.domain, f"{self.denominator} must be positive")
            value = value / divisor

        return value if value > self.threshold else None


def _number(domain: str, key: str, raw: Any) -> float:
    if isinstance(raw, bool):
        raise ClassificationError(domain, f"{key} is not numeric: {raw!r}")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ClassificationError(domain, f"{key} is not numeric: {raw!r}")
    if math.isnan(value):
        raise ClassificationError(domain, f"{key} is NaN")
    return value


DEFAULT_RULES: List[ClassificationRule] = [
    ClassificationRule(
        "cpu_high", "resource", "cpu", 90, Severity.HIGH, FailureType.RESOURCE, "system",
        "High CPU usage detected ({value:.1f}%)",
    ),
    ClassificationRule(
        "memory_high", "resource", "memory", 90, Severity.CRITICAL, FailureType.RESOURCE, "system",
        "High memory usage detected ({value:.1f}%)",
    ),
    ClassificationRule(
        "disk_high", "resource", "disk", 85, Severity.MEDIUM, FailureType.RESOURCE, "system",
        "High disk usage detected ({value:.1f}%)",
    ),
    ClassificationRule(
        "connections_near_limit", "database", "connections", 0.9, Severity.HIGH,
        FailureType.DATABASE, "database",
        "Database connections approaching limit ({value:.0%} of max_connections)",
        denominator="max_connections", connectivity=True,
    ),
    ClassificationRule(
        "slow_queries", "database", "query_time_ms", 5000, Severity.MEDIUM,
        FailureType.DATABASE, "database",
        "Database query performance degraded ({value:.0f}ms average)",
    ),
    ClassificationRule(
        "block_delay", "blockchain", "block_delay", 300, Severity.HIGH,
        FailureType.BLOCKCHAIN, "blockchain",
        "Blockchain block delay too high ({value:.0f} seconds)",
    ),
    ClassificationRule(
        "failed_transactions", "blockchain", "failed_transactions", 10, Severity.MEDIUM,
        FailureType.BLOCKCHAIN, "blockchain",
        "High number of failed transactions ({value:.0f})",
    ),
    ClassificationRule(
        "packet_loss", "network", "packet_loss", 5, Severity.MEDIUM,
        FailureType.NETWORK, "network",
        "Network packet loss detected ({value:.1f}%)",
    ),
    ClassificationRule(
        "network_latency", "network", "latency_ms", 1000, Severity.HIGH,
        FailureType.NETWORK, "network",
        "High network latency detected ({value:.0f}ms)",
    ),
]

# Domains whose collection failure is itself a connectivity failure
UNREACHABLE: Dict[str, Tuple[str, FailureType]] = {
    "database": ("database_unreachable", FailureType.DATABASE),
    "blockchain": ("blockchain_unreachable", FailureType.BLOCKCHAIN),
}


class FailureClassifier:
    """
    Classifies metrics into Failures and keeps one open record per dedup key.

    Usage:
        classifier = FailureClassifier(context, store, alerts, dedup_window_seconds=3600)

        metrics = await collector.collect_system_metrics()
        active = await classifier.detect(metrics)  # new and still-open failures
    """

    def __init__(
        self,
        context: "SupervisorContext",
        store: Optional["Store"] = None,
        alerts: Optional["AlertManager"] = None,
        rules: Optional[List[ClassificationRule]] = None,
        dedup_window_seconds: float = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if dedup_window_seconds <= 0:
            raise ValueError("dedup_window_seconds must be positive")
        self._index = context.open_failures
        self._actions = context.actions
        self._store = store
        self._alerts = alerts
        self._rules = rules if rules is not None else DEFAULT_RULES
        self._window = dedup_window_seconds
        self._clock = clock

        self._rule_domain: Dict[str, str] = {r.name: r.domain for r in self._rules}
        self._rule_domain["service_down"] = "services"
        self._rule_domain["service_resources"] = "services"
        for domain, (rule_name, _) in UNREACHABLE.items():
            self._rule_domain[rule_name] = domain

    @property
    def rules(self) -> List[ClassificationRule]:
        return list(self._rules)

    def dedup_key(self, component: str, failure_type: FailureType, rule: str, at: datetime) -> str:
        bucket = math.floor(at.timestamp() / self._window)
        return f"{component}:{failure_type.value}:{rule}:{bucket}"

    async def load_open_failures(self) -> int:
        """Seed the in-memory index from the store (on start)."""
        if self._store is None:
            return 0
        try:
            failures = await self._store.get_open_failures()
        except PersistenceError as e:
            logger.error(f"Cannot load open failures: {e}")
            return 0
        for failure in failures:
            self._index.add(failure)
        logger.info(f"Loaded {len(failures)} open failures")
        return len(failures)

    # =========================================================================
    # Classification
    # =========================================================================

    def classify(self, domain: str, data: Any, at: datetime) -> List[Failure]:
        """
        Candidate failures for one domain. Pure.

        Raises:
            ClassificationError: If the domain's metrics are malformed
        """
        if data is None:
            if domain in UNREACHABLE:
                rule, failure_type = UNREACHABLE[domain]
                return [self._build(
                    component=domain, failure_type=failure_type, rule=rule,
                    severity=Severity.CRITICAL, description=f"{domain.capitalize()} connection failed",
                    metrics={}, at=at, connectivity=True,
                )]
            return []

        if not isinstance(data, Mapping):
            raise ClassificationError(domain, f"expected a mapping, got {type(data).__name__}")

        if domain == "services":
            return self._classify_services(data, at)

        failures = []
        for rule in self._rules:
            if rule.domain != domain:
                continue
            value = rule.evaluate(data)
            if value is None:
                continue
            failures.append(self._build(
                component=rule.component,
                failure_type=rule.failure_type,
                rule=rule.name,
                severity=rule.severity,
                description=rule.description.format(value=value, threshold=rule.threshold),
                metrics=dict(data),
                at=at,
                connectivity=rule.connectivity,
            ))
        return failures

    def _classify_services(self, services: Mapping[str, Any], at: datetime) -> List[Failure]:
        failures = []
        for name, status in services.items():
            if not isinstance(status, Mapping) or "running" not in status:
                raise ClassificationError("services", f"malformed status for {name}")

            if not status["running"]:
                failures.append(self._build(
                    component=name, failure_type=FailureType.SERVICE, rule="service_down",
                    severity=Severity.CRITICAL, description=f"Service {name} is not running",
                    metrics=dict(status), at=at,
                ))
                continue

            cpu = _number("services", f"{name}.cpu", status.get("cpu", 0))
            memory = _number("services", f"{name}.memory", status.get("memory", 0))
            if cpu > SERVICE_RESOURCE_LIMIT or memory > SERVICE_RESOURCE_LIMIT:
                failures.append(self._build(
                    component=name, failure_type=FailureType.SERVICE, rule="service_resources",
                    severity=Severity.MEDIUM,
                    description=f"Service {name} high resource usage (CPU: {cpu:g}%, Memory: {memory:g}%)",
                    metrics=dict(status), at=at,
                ))
        return failures

    def _build(
        self,
        component: str,
        failure_type: FailureType,
        rule: str,
        severity: Severity,
        description: str,
        metrics: Dict[str, Any],
        at: datetime,
        connectivity: bool = False,
    ) -> Failure:
        return Failure(
            component=component,
            type=failure_type,
            severity=severity,
            description=description,
            timestamp=at,
            metrics=metrics,
            rule=rule,
            dedup_key=self.dedup_key(component, failure_type, rule, at),
            detection_source=DETECTION_SOURCE,
            connectivity=connectivity,
        )

    # =========================================================================
    # Detection pass
    # =========================================================================

    async def detect(self, metrics: Mapping[str, Any]) -> List[Failure]:
        """
        Classify every domain, record new failures, resolve cleared ones.

        A domain with malformed metrics is logged and skipped; the others
        are still classified. Returns the active failures (new and already
        open) for this pass.
        """
        at = self._clock()
        candidates: List[Failure] = []
        evaluated: Set[str] = set()

        for domain, data in metrics.items():
            try:
                candidates.extend(self.classify(domain, data, at))
            except ClassificationError as e:
                logger.error(f"Skipping {domain}: {e}")
                continue
            # Nothing collected means nothing is known to have cleared
            if data is not None:
                evaluated.add(domain)

        active: List[Failure] = []
        for candidate in candidates:
            active.append(await self.record(candidate))

        await self._resolve_cleared({f.dedup_key for f in active}, evaluated)
        return active

    async def record(self, candidate: Failure) -> Failure:
        """
        Record a candidate unless an open failure shares its dedup key.

        Returns the record that now represents the condition.
        """
        key = candidate.dedup_key
        async with self._index.lock_for(key):
            existing = self._index.get(key)
            if existing is not None:
                return existing

            if self._store is not None:
                try:
                    existing = await self._store.find_open_failure(key)
                    if existing is None:
                        created = await self._store.save_failure(candidate)
                        if created is None:
                            # Another writer inserted the same key first
                            existing = await self._store.find_open_failure(key)
                except PersistenceError as e:
                    logger.error(f"Failure {candidate.id} not persisted: {e}")

                if existing is not None:
                    self._index.add(existing)
                    return existing

            self._index.add(candidate)

        logger.warning(
            f"Failure detected: {candidate.component} {candidate.type.value}/"
            f"{candidate.severity.value} {candidate.description}"
        )
        if self._alerts is not None:
            title = f"Failure detected in {candidate.component}"
            if candidate.severity == Severity.CRITICAL:
                self._alerts.send_critical(title, candidate.description, dedup_key=key)
            else:
                self._alerts.send_warning(title, candidate.description, dedup_key=key)
        return candidate

    async def resolve(self, failure: Failure) -> None:
        """Mark a failure resolved in memory and in the store."""
        failure.resolve(self._clock())
        self._index.remove(failure.dedup_key)
        self._actions.forget(failure.id)
        if self._store is None:
            return
        try:
            await self._store.resolve_failure(failure.id, failure.resolved_at)
        except PersistenceError as e:
            logger.error(f"Resolution of {failure.id} not persisted: {e}")

    async def _resolve_cleared(self, active_keys: Set[str], evaluated: Set[str]) -> None:
        for failure in self._index.values():
            if failure.dedup_key in active_keys:
                continue
            domain = self._rule_domain.get(failure.rule)
            if domain is None or domain not in evaluated:
                continue
            logger.info(f"Failure cleared: {failure.component} {failure.rule}")
            await self.resolve(failure)
