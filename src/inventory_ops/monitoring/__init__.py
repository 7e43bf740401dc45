"""
Monitoring Layer - Health checks, circuit breakers, metrics, anomaly
detection, alerting and the dashboard.

This module provides:
    - HealthChecker / HealthProbe: Breaker-gated component probes with timeouts
    - ComponentHealth / AggregateHealth: Probe results and their aggregate
    - CircuitBreaker / BreakerRegistry: One three-state breaker per component
    - MetricCollector: Per-domain metric snapshots (store, ledger, ops API, host)
    - AnomalyDetector: Threshold and learned-baseline anomaly detection
    - AlertManager: Telegram notifications with deduplication
    - Dashboard: Flask health and recommendation review endpoints
"""

from .alerting import AlertManager
from .anomaly_detector import AnomalyDetector, severity_for_ratio
from .circuit_breaker import BreakerRegistry, BreakerState, CircuitBreaker, CircuitBreakerState
from .dashboard import Dashboard
from .health_checker import (
    AggregateHealth,
    ComponentHealth,
    HealthChecker,
    HealthProbe,
    HealthStatus,
    OverallStatus,
    database_probe,
    http_probe,
    ledger_probe,
    redis_probe,
)
from .metrics import MetricCollector

__all__ = [
    # Health checking
    "HealthChecker",
    "HealthProbe",
    "HealthStatus",
    "OverallStatus",
    "ComponentHealth",
    "AggregateHealth",
    "database_probe",
    "http_probe",
    "ledger_probe",
    "redis_probe",
    # Circuit breakers
    "CircuitBreaker",
    "CircuitBreakerState",
    "BreakerRegistry",
    "BreakerState",
    # Metrics and anomalies
    "MetricCollector",
    "AnomalyDetector",
    "severity_for_ratio",
    # Alerting
    "AlertManager",
    # Dashboard
    "Dashboard",
]
