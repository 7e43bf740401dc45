"""
Store facade over the repositories.

Every component persists and queries through this one object so that
database errors surface uniformly as PersistenceError. Callers decide
whether a lost write is tolerable (audit records) or not.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional

import asyncpg

from inventory_ops.errors import PersistenceError
from inventory_ops.storage.database import CONNECTION_ERRORS, Database
from inventory_ops.storage.models import (
    Anomaly,
    DemandObservation,
    Failure,
    HealingAction,
    InventoryDiscrepancy,
    InventoryItem,
    LedgerTransaction,
    Prediction,
    PredictionType,
    Recommendation,
    SecurityCounters,
    Severity,
)
from inventory_ops.storage.repositories import (
    AnomalyRepository,
    FailureRepository,
    HealingActionRepository,
    InventoryRepository,
    PredictionRepository,
    RecommendationRepository,
)

logger = logging.getLogger(__name__)

_STORE_ERRORS = (asyncpg.PostgresError, RuntimeError) + CONNECTION_ERRORS


class Store:
    """
    Persistence interface used by the agent.

    Usage:
        store = Store(db)
        created = await store.save_failure(failure)  # None if deduplicated
        items = await store.get_low_stock_items(10)
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        self.failures = FailureRepository(db)
        self.healing_actions = HealingActionRepository(db)
        self.anomalies = AnomalyRepository(db)
        self.predictions = PredictionRepository(db)
        self.recommendations = RecommendationRepository(db)
        self.inventory = InventoryRepository(db)

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except _STORE_ERRORS as e:
            raise PersistenceError(operation, e) from e

    # =========================================================================
    # Failures
    # =========================================================================

    async def save_failure(self, failure: Failure) -> Optional[Failure]:
        """Insert a failure. Returns None if an open one shares its dedup key."""
        async with self._guard("save_failure"):
            return await self.failures.create(failure)

    async def find_open_failure(self, dedup_key: str) -> Optional[Failure]:
        async with self._guard("find_open_failure"):
            return await self.failures.get_unresolved_by_key(dedup_key)

    async def get_open_failures(self, component: Optional[str] = None) -> list[Failure]:
        async with self._guard("get_open_failures"):
            return await self.failures.get_unresolved(component)

    async def resolve_failure(self, failure_id: str, resolved_at: datetime) -> bool:
        async with self._guard("resolve_failure"):
            return await self.failures.resolve(failure_id, resolved_at)

    # =========================================================================
    # Healing actions
    # =========================================================================

    async def save_healing_action(self, action: HealingAction) -> HealingAction:
        async with self._guard("save_healing_action"):
            return await self.healing_actions.upsert(action)

    async def get_healing_actions(self, limit: int = 100) -> list[HealingAction]:
        async with self._guard("get_healing_actions"):
            return await self.healing_actions.get_recent(limit)

    async def get_actions_for_failure(self, failure_id: str) -> list[HealingAction]:
        async with self._guard("get_actions_for_failure"):
            return await self.healing_actions.get_by_failure(failure_id)

    # =========================================================================
    # Anomalies and predictions
    # =========================================================================

    async def save_anomaly(self, anomaly: Anomaly) -> Anomaly:
        async with self._guard("save_anomaly"):
            return await self.anomalies.create(anomaly)

    async def get_recent_anomalies(
        self, since: datetime, severity: Optional[Severity] = None
    ) -> list[Anomaly]:
        async with self._guard("get_recent_anomalies"):
            return await self.anomalies.get_recent(since, severity)

    async def save_prediction(self, prediction: Prediction) -> Prediction:
        async with self._guard("save_prediction"):
            return await self.predictions.create(prediction)

    async def get_latest_predictions(
        self, prediction_type: PredictionType, timeframe: str, since: datetime
    ) -> list[Prediction]:
        async with self._guard("get_latest_predictions"):
            return await self.predictions.get_latest(prediction_type, timeframe, since)

    # =========================================================================
    # Recommendations
    # =========================================================================

    async def save_recommendation(self, recommendation: Recommendation) -> Recommendation:
        async with self._guard("save_recommendation"):
            return await self.recommendations.upsert(recommendation)

    async def get_recommendation(self, recommendation_id: str) -> Optional[Recommendation]:
        async with self._guard("get_recommendation"):
            return await self.recommendations.get_by_id(recommendation_id)

    async def find_recommendations(
        self, filters: Optional[Dict[str, Any]] = None, limit: int = 200
    ) -> list[Recommendation]:
        async with self._guard("find_recommendations"):
            return await self.recommendations.find(filters, limit)

    # =========================================================================
    # Inventory read models
    # =========================================================================

    async def get_active_items(self) -> list[InventoryItem]:
        async with self._guard("get_active_items"):
            return await self.inventory.get_active_items()

    async def get_low_stock_items(self, threshold: int) -> list[InventoryItem]:
        async with self._guard("get_low_stock_items"):
            return await self.inventory.get_low_stock_items(threshold)

    async def get_overstock_items(self, threshold: int) -> list[InventoryItem]:
        async with self._guard("get_overstock_items"):
            return await self.inventory.get_overstock_items(threshold)

    async def get_demand_history(self, item_id: str, days: int = 90) -> list[DemandObservation]:
        async with self._guard("get_demand_history"):
            return await self.inventory.get_demand_history(item_id, days)

    async def get_discrepancies(self) -> list[InventoryDiscrepancy]:
        async with self._guard("get_discrepancies"):
            return await self.inventory.get_discrepancies()

    async def get_recent_transactions(self, limit: int = 1000) -> list[LedgerTransaction]:
        async with self._guard("get_recent_transactions"):
            return await self.inventory.get_recent_transactions(limit)

    async def count_unconfirmed_transactions(self, older_than_minutes: int = 10) -> int:
        async with self._guard("count_unconfirmed_transactions"):
            return await self.inventory.count_unconfirmed_transactions(older_than_minutes)

    async def get_security_counters(self, window_minutes: int = 60) -> SecurityCounters:
        async with self._guard("get_security_counters"):
            return await self.inventory.get_security_counters(window_minutes)

    async def get_turnover(self, days: int = 30) -> Dict[str, float]:
        async with self._guard("get_turnover"):
            return await self.inventory.get_turnover(days)

    # =========================================================================
    # Database health and remediation
    # =========================================================================

    async def health_check(self) -> bool:
        return await self.db.health_check()

    async def get_health_metrics(self) -> Dict[str, float]:
        async with self._guard("get_health_metrics"):
            return await self.db.get_health_metrics()

    async def reconnect(self) -> Dict[str, Any]:
        async with self._guard("reconnect"):
            return await self.db.reconnect()

    async def cleanup(self) -> Dict[str, Any]:
        async with self._guard("cleanup"):
            return await self.db.cleanup()
