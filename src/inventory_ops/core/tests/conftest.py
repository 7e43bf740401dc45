"""
Core test fixtures: a supervisor wired to mocks only.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from inventory_ops.config import AgentConfig
from inventory_ops.core.supervisor import SupervisorLoop


def quiet_host():
    return {"cpu": 20.0, "memory": 40.0, "disk": 50.0}


@pytest.fixture
def config():
    config = AgentConfig()
    config.shutdown_grace_seconds = 0.5
    return config


@pytest.fixture
def mock_alerts():
    alerts = MagicMock()
    alerts.drain = AsyncMock()
    return alerts


@pytest.fixture
def mock_store():
    store = MagicMock()
    store.get_open_failures = AsyncMock(return_value=[])
    store.find_open_failure = AsyncMock(return_value=None)
    store.save_failure = AsyncMock(side_effect=lambda f: f)
    store.resolve_failure = AsyncMock(return_value=True)
    store.save_healing_action = AsyncMock(side_effect=lambda a: a)
    store.save_anomaly = AsyncMock(side_effect=lambda a: a)
    store.save_prediction = AsyncMock(side_effect=lambda p: p)
    store.save_recommendation = AsyncMock(side_effect=lambda r: r)
    store.get_health_metrics = AsyncMock(return_value={"connections": 5, "max_connections": 100})
    store.health_check = AsyncMock(return_value=True)
    store.get_latest_predictions = AsyncMock(return_value=[])
    store.get_active_items = AsyncMock(return_value=[])
    store.get_low_stock_items = AsyncMock(return_value=[])
    store.get_overstock_items = AsyncMock(return_value=[])
    store.get_discrepancies = AsyncMock(return_value=[])
    store.get_recent_transactions = AsyncMock(return_value=[])
    store.get_turnover = AsyncMock(return_value={})
    store.count_unconfirmed_transactions = AsyncMock(return_value=0)
    store.reconnect = AsyncMock(return_value={"reconnected": True})
    return store


@pytest.fixture
def supervisor(config, mock_store, mock_alerts):
    return SupervisorLoop(
        config, store=mock_store, alerts=mock_alerts, probes=[], resource_sampler=quiet_host,
    )
