"""
Healing test fixtures: shared context, mocked store/ops/alerts and a
fixed clock.
"""
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from inventory_ops.config import AutoHealingConfig
from inventory_ops.core.context import SupervisorContext
from inventory_ops.healing.classifier import FailureClassifier
from inventory_ops.healing.dispatcher import HealingDispatcher

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def context():
    return SupervisorContext.create(failure_threshold=3, reset_timeout=60)


@pytest.fixture
def mock_store():
    store = MagicMock()
    store.find_open_failure = AsyncMock(return_value=None)
    store.save_failure = AsyncMock(side_effect=lambda f: f)
    store.get_open_failures = AsyncMock(return_value=[])
    store.resolve_failure = AsyncMock(return_value=True)
    store.save_healing_action = AsyncMock(side_effect=lambda a: a)
    store.reconnect = AsyncMock(return_value={"reconnected": True})
    store.cleanup = AsyncMock(return_value={"terminated": 2})
    return store


@pytest.fixture
def mock_ops():
    ops = MagicMock()
    ops.restart_service = AsyncMock(return_value={"restarted": True})
    ops.scale_resources = AsyncMock(return_value={"replicas": 3})
    ops.reconnect = AsyncMock(return_value={"reconnected": True})
    ops.cleanup = AsyncMock(return_value={"cleaned": True})
    return ops


@pytest.fixture
def mock_alerts():
    return MagicMock()


@pytest.fixture
def clock():
    """Mutable fixed clock: set clock.now to move time."""
    class Clock:
        now = NOW

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture
def classifier(context, mock_store, mock_alerts, clock):
    return FailureClassifier(context, mock_store, mock_alerts, dedup_window_seconds=3600, clock=clock)


@pytest.fixture
def dispatcher(context, mock_store, mock_ops, mock_alerts, classifier):
    return HealingDispatcher(
        AutoHealingConfig(), context,
        ops=mock_ops, store=mock_store, alerts=mock_alerts, classifier=classifier,
    )
