"""
Monitoring test fixtures.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from inventory_ops.config import ThresholdConfig
from inventory_ops.monitoring.circuit_breaker import BreakerRegistry


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breakers(clock):
    return BreakerRegistry(failure_threshold=3, reset_timeout=60, clock=clock)


@pytest.fixture
def thresholds():
    return ThresholdConfig()


@pytest.fixture
def mock_alerts():
    alerts = MagicMock()
    alerts.send_critical = MagicMock(return_value=True)
    alerts.send_warning = MagicMock(return_value=True)
    alerts.send_info = MagicMock(return_value=True)
    return alerts


@pytest.fixture
def mock_store():
    store = MagicMock()
    store.save_anomaly = AsyncMock(side_effect=lambda a: a)
    store.health_check = AsyncMock(return_value=True)
    store.get_health_metrics = AsyncMock(return_value={"connections": 10, "max_connections": 100})
    store.count_unconfirmed_transactions = AsyncMock(return_value=0)
    store.get_low_stock_items = AsyncMock(return_value=[])
    store.get_overstock_items = AsyncMock(return_value=[])
    store.get_discrepancies = AsyncMock(return_value=[])
    return store
