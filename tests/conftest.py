"""
Shared test fixtures for integration tests.

This file provides fixtures that span multiple components, unlike the
component-specific fixtures in src/inventory_ops/{component}/tests/conftest.py.
Cross-component flows run against an in-memory store with the same
interface and dedup semantics as the PostgreSQL-backed Store.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from inventory_ops.config import AgentConfig
from inventory_ops.storage.models import (
    DemandObservation,
    InventoryDiscrepancy,
    InventoryItem,
    LedgerTransaction,
    SecurityCounters,
    utcnow,
)


class InMemoryStore:
    """Store double: dicts instead of tables, same return conventions."""

    def __init__(self):
        self.failures = {}
        self.healing_actions = {}
        self.anomalies = []
        self.predictions = []
        self.recommendations = {}
        self.items: List[InventoryItem] = []
        self.demand: Dict[str, List[DemandObservation]] = {}
        self.discrepancies: List[InventoryDiscrepancy] = []
        self.transactions: List[LedgerTransaction] = []
        self.db_metrics = {"connections": 5, "max_connections": 100}
        self.reconnects = 0

    # Failures

    async def save_failure(self, failure):
        if await self.find_open_failure(failure.dedup_key) is not None:
            return None
        self.failures[failure.id] = failure.model_copy()
        return failure

    async def find_open_failure(self, dedup_key):
        for failure in self.failures.values():
            if failure.dedup_key == dedup_key and not failure.resolved:
                return failure.model_copy()
        return None

    async def get_open_failures(self, component=None):
        return [
            f.model_copy() for f in self.failures.values()
            if not f.resolved and (component is None or f.component == component)
        ]

    async def resolve_failure(self, failure_id, resolved_at):
        failure = self.failures.get(failure_id)
        if failure is None or failure.resolved:
            return False
        failure.resolve(resolved_at)
        return True

    # Healing actions, anomalies, predictions

    async def save_healing_action(self, action):
        self.healing_actions[action.id] = action.model_copy()
        return action

    async def get_healing_actions(self, limit=100):
        return list(self.healing_actions.values())[:limit]

    async def save_anomaly(self, anomaly):
        self.anomalies.append(anomaly)
        return anomaly

    async def save_prediction(self, prediction):
        self.predictions.append(prediction)
        return prediction

    async def get_latest_predictions(self, prediction_type, timeframe, since):
        return [
            p for p in self.predictions
            if p.type == prediction_type and p.timeframe == timeframe and p.created_at >= since
        ]

    # Recommendations

    async def save_recommendation(self, recommendation):
        existing = self.recommendations.get(recommendation.id)
        if existing is not None:
            # Review fields only, as the upsert does
            existing.status = recommendation.status
            existing.reviewed_by = recommendation.reviewed_by
            existing.reviewed_at = recommendation.reviewed_at
            existing.implemented_at = recommendation.implemented_at
            return existing.model_copy()
        self.recommendations[recommendation.id] = recommendation.model_copy()
        return recommendation

    async def get_recommendation(self, recommendation_id):
        rec = self.recommendations.get(recommendation_id)
        return rec.model_copy() if rec else None

    async def find_recommendations(self, filters=None, limit=200):
        result = []
        for rec in self.recommendations.values():
            if all(getattr(rec, k) == v for k, v in (filters or {}).items() if v is not None):
                result.append(rec.model_copy())
        return result[:limit]

    # Inventory

    async def get_active_items(self):
        return list(self.items)

    async def get_low_stock_items(self, threshold):
        return [i for i in self.items if i.quantity < threshold]

    async def get_overstock_items(self, threshold):
        return [i for i in self.items if i.quantity > threshold]

    async def get_demand_history(self, item_id, days=90):
        return list(self.demand.get(item_id, []))

    async def get_discrepancies(self):
        return list(self.discrepancies)

    async def get_recent_transactions(self, limit=1000):
        return list(self.transactions)[:limit]

    async def count_unconfirmed_transactions(self, older_than_minutes=10):
        return sum(1 for t in self.transactions if not t.blockchain_tx_hash)

    async def get_security_counters(self, window_minutes=60):
        return SecurityCounters(window_minutes=window_minutes)

    async def get_turnover(self, days=30):
        return {i.sku: 0.0 for i in self.items}

    # Database health

    async def health_check(self):
        return True

    async def get_health_metrics(self):
        return dict(self.db_metrics)

    async def reconnect(self):
        self.reconnects += 1
        return {"reconnected": True}

    async def cleanup(self):
        return {"terminated": 0}


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def config():
    config = AgentConfig()
    config.shutdown_grace_seconds = 0.5
    config.threshold.low_stock = 15
    return config


@pytest.fixture
def mock_alerts():
    alerts = MagicMock()
    alerts.drain = AsyncMock()
    return alerts


@pytest.fixture
def mock_ops():
    ops = MagicMock()
    ops.get_service_status = AsyncMock(return_value={
        "inventory-api": {"running": True, "cpu": 30.0, "memory": 40.0},
    })
    ops.get_network_metrics = AsyncMock(return_value={"packet_loss": 0.0, "latency_ms": 20.0})
    ops.get_performance_metrics = AsyncMock(return_value={
        "error_rate": 0.01, "response_time": 200.0, "requests_per_minute": 120.0,
    })
    ops.restart_service = AsyncMock(return_value={"restarted": True})
    ops.scale_resources = AsyncMock(return_value={"replicas": 3})
    ops.reconnect = AsyncMock(return_value={"reconnected": True})
    ops.cleanup = AsyncMock(return_value={"cleaned": True})
    return ops


class HostSampler:
    """Mutable host resource readings."""

    def __init__(self):
        self.reading = {"cpu": 20.0, "memory": 40.0, "disk": 50.0}

    def __call__(self):
        return dict(self.reading)


@pytest.fixture
def host():
    return HostSampler()


@pytest.fixture
def stocked_store(memory_store):
    """One low-stock item with two months of steady demand up to today."""
    item = InventoryItem(id="item-1", sku="SKU-1", name="Widget", quantity=12, unit_price=Decimal("10"))
    memory_store.items = [item]
    today = utcnow().date()
    memory_store.demand["item-1"] = [
        DemandObservation(day=today - timedelta(days=i), quantity=4)
        for i in range(60)
    ]
    return memory_store
