"""
Storage Layer - Async PostgreSQL database, repositories and the Store facade.

Public API:
    Database, DatabaseConfig - Connection pool management
    Store - Persistence interface used by every component

    Models:
        Anomaly, Failure, HealingAction, Prediction, Recommendation, Impact
        InventoryItem, DemandObservation, InventoryDiscrepancy,
        LedgerTransaction, SecurityCounters

    Repositories (inventory_ops.storage.repositories):
        FailureRepository, HealingActionRepository, AnomalyRepository,
        PredictionRepository, RecommendationRepository, InventoryRepository
"""
from inventory_ops.storage.database import Database, DatabaseConfig
from inventory_ops.storage.models import (
    Anomaly,
    AnomalyType,
    DemandObservation,
    Failure,
    FailureType,
    HealingAction,
    HealingActionType,
    HealingStatus,
    Impact,
    InventoryDiscrepancy,
    InventoryItem,
    LedgerTransaction,
    Prediction,
    PredictionType,
    Recommendation,
    RecommendationStatus,
    RecommendationType,
    SecurityCounters,
    Severity,
)
from inventory_ops.storage.store import Store

__all__ = [
    "Database",
    "DatabaseConfig",
    "Store",
    "Anomaly",
    "AnomalyType",
    "DemandObservation",
    "Failure",
    "FailureType",
    "HealingAction",
    "HealingActionType",
    "HealingStatus",
    "Impact",
    "InventoryDiscrepancy",
    "InventoryItem",
    "LedgerTransaction",
    "Prediction",
    "PredictionType",
    "Recommendation",
    "RecommendationStatus",
    "RecommendationType",
    "SecurityCounters",
    "Severity",
]
