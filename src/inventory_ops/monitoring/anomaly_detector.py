"""
Anomaly detection over performance, inventory, blockchain and security
metrics.

Two detectors run over every snapshot:

1. Threshold checks: ratio = value / threshold. A ratio above 1 flags;
   severity grows with the ratio (low < 1.5 <= medium < 2 <= high < 3 <=
   critical).
2. Learned baselines: a rolling window per metric. Once min_samples
   values have been seen, a z-score above z_threshold flags, with severity
   taken from z / z_threshold on the same scale.

Anomalies are advisory. They are always persisted, alerted when high or
critical, and never trigger healing.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, List, Mapping, Optional

import numpy as np

from inventory_ops.errors import PersistenceError
from inventory_ops.storage.models import Anomaly, AnomalyType, Severity

if TYPE_CHECKING:
    from inventory_ops.config import ThresholdConfig
    from inventory_ops.monitoring.alerting import AlertManager
    from inventory_ops.storage.store import Store

logger = logging.getLogger(__name__)

DETECTED_BY = "anomaly-detector"

# Fixed security limits per hour of audit log
FAILED_LOGIN_LIMIT = 10
UNAUTHORIZED_ACCESS_LIMIT = 5


def severity_for_ratio(ratio: float) -> Optional[Severity]:
    """Map a deviation ratio to a severity; None when not anomalous."""
    if ratio <= 1.0:
        return None
    if ratio < 1.5:
        return Severity.LOW
    if ratio < 2.0:
        return Severity.MEDIUM
    if ratio < 3.0:
        return Severity.HIGH
    return Severity.CRITICAL


def deviation_ratio(value: float, threshold: float) -> float:
    """
    value / threshold.

    A zero threshold means no tolerance at all: any positive value maps to
    1 + value so a single occurrence already rates high.
    """
    if threshold > 0:
        return value / threshold
    return 1.0 + value if value > 0 else 0.0


@dataclass(frozen=True)
class ThresholdCheck:
    """A metric compared against a configured limit."""

    category: AnomalyType
    metric: str
    limit: Callable[["ThresholdConfig"], float]
    label: str


DEFAULT_CHECKS: List[ThresholdCheck] = [
    ThresholdCheck(AnomalyType.PERFORMANCE, "error_rate", lambda t: t.error_rate, "Error rate"),
    ThresholdCheck(AnomalyType.PERFORMANCE, "response_time", lambda t: t.response_time, "Response time"),
    ThresholdCheck(AnomalyType.BLOCKCHAIN, "block_delay", lambda t: t.ledger_delay, "Block delay"),
    ThresholdCheck(
        AnomalyType.BLOCKCHAIN, "pending_transactions",
        lambda t: t.pending_transactions, "Pending transactions",
    ),
    ThresholdCheck(AnomalyType.INVENTORY, "discrepancies", lambda t: t.discrepancy, "Inventory discrepancies"),
    ThresholdCheck(AnomalyType.SECURITY, "failed_logins", lambda t: FAILED_LOGIN_LIMIT, "Failed logins"),
    ThresholdCheck(
        AnomalyType.SECURITY, "unauthorized_attempts",
        lambda t: UNAUTHORIZED_ACCESS_LIMIT, "Unauthorized access attempts",
    ),
]


class RollingBaseline:
    """Rolling window of one metric's recent values."""

    def __init__(self, window: int = 100) -> None:
        self._values: Deque[float] = deque(maxlen=window)

    def __len__(self) -> int:
        return len(self._values)

    def zscore(self, value: float) -> Optional[float]:
        """z-score of value against the window (None if std is zero)."""
        if not self._values:
            return None
        arr = np.asarray(self._values, dtype=float)
        std = float(arr.std())
        if std == 0.0:
            return None
        return abs(value - float(arr.mean())) / std

    def add(self, value: float) -> None:
        self._values.append(value)


class AnomalyDetector:
    """
    Flags deviations in a metrics snapshot.

    Usage:
        detector = AnomalyDetector(config.threshold, store, alerts)

        snapshot = await collector.collect_snapshot()
        anomalies = await detector.detect(snapshot)
    """

    def __init__(
        self,
        thresholds: "ThresholdConfig",
        store: Optional["Store"] = None,
        alerts: Optional["AlertManager"] = None,
        checks: Optional[List[ThresholdCheck]] = None,
        baseline_window: int = 100,
        min_samples: int = 20,
        z_threshold: float = 3.0,
    ) -> None:
        self._thresholds = thresholds
        self._store = store
        self._alerts = alerts
        self._checks = checks if checks is not None else DEFAULT_CHECKS
        self._baseline_window = baseline_window
        self._min_samples = min_samples
        self._z_threshold = z_threshold
        self._baselines: Dict[str, RollingBaseline] = {}

    async def detect(self, snapshot: Mapping[str, Optional[Mapping[str, Any]]]) -> List[Anomaly]:
        """Evaluate, alert and persist. Returns every anomaly found."""
        anomalies = self.evaluate(snapshot)
        for anomaly in anomalies:
            await self._handle(anomaly)
        return anomalies

    def evaluate(self, snapshot: Mapping[str, Optional[Mapping[str, Any]]]) -> List[Anomaly]:
        """Pure detection pass (updates baselines, no side effects otherwise)."""
        anomalies: List[Anomaly] = []
        flagged = set()

        for check in self._checks:
            domain = snapshot.get(check.category.value)
            if not domain or check.metric not in domain:
                continue
            try:
                value = float(domain[check.metric])
            except (TypeError, ValueError):
                logger.warning(f"Non-numeric {check.category.value}.{check.metric}: {domain[check.metric]!r}")
                continue

            limit = float(check.limit(self._thresholds))
            ratio = deviation_ratio(value, limit)
            severity = severity_for_ratio(ratio)
            if severity is None:
                continue

            flagged.add(f"{check.category.value}.{check.metric}")
            anomalies.append(Anomaly(
                type=check.category,
                severity=severity,
                description=f"{check.label} {value:g} exceeds threshold {limit:g} ({ratio:.1f}x)",
                metrics={"metric": check.metric, "value": value, "threshold": limit, "ratio": ratio},
                detected_by=DETECTED_BY,
            ))

        anomalies.extend(self._evaluate_baselines(snapshot, flagged))
        return anomalies

    def _evaluate_baselines(
        self, snapshot: Mapping[str, Optional[Mapping[str, Any]]], flagged: set
    ) -> List[Anomaly]:
        anomalies: List[Anomaly] = []

        for category in AnomalyType:
            domain = snapshot.get(category.value)
            if not domain:
                continue
            for metric, raw in domain.items():
                if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                    continue
                key = f"{category.value}.{metric}"
                baseline = self._baselines.setdefault(key, RollingBaseline(self._baseline_window))
                value = float(raw)

                if key not in flagged and len(baseline) >= self._min_samples:
                    z = baseline.zscore(value)
                    severity = severity_for_ratio(z / self._z_threshold) if z is not None else None
                    if severity is not None:
                        anomalies.append(Anomaly(
                            type=category,
                            severity=severity,
                            description=f"{metric} {value:g} deviates from baseline (z={z:.1f})",
                            metrics={"metric": metric, "value": value, "zscore": z},
                            detected_by=DETECTED_BY,
                        ))

                baseline.add(value)

        return anomalies

    async def _handle(self, anomaly: Anomaly) -> None:
        logger.warning(
            f"Anomaly detected: {anomaly.type.value}/{anomaly.severity.value} {anomaly.description}"
        )

        if self._alerts is not None:
            key = f"anomaly_{anomaly.type.value}_{anomaly.metrics.get('metric')}"
            if anomaly.severity == Severity.CRITICAL:
                self._alerts.send_critical("Anomaly", anomaly.description, dedup_key=key)
            elif anomaly.severity == Severity.HIGH:
                self._alerts.send_warning("Anomaly", anomaly.description, dedup_key=key)

        if self._store is not None:
            try:
                await self._store.save_anomaly(anomaly)
            except PersistenceError as e:
                logger.error(f"Dropped anomaly record {anomaly.id}: {e}")
