"""
Repositories for the agent's tables and the inventory read models.
"""
from inventory_ops.storage.repositories.anomaly_repo import AnomalyRepository
from inventory_ops.storage.repositories.base import BaseRepository
from inventory_ops.storage.repositories.failure_repo import FailureRepository
from inventory_ops.storage.repositories.healing_repo import HealingActionRepository
from inventory_ops.storage.repositories.inventory_repo import InventoryRepository
from inventory_ops.storage.repositories.prediction_repo import PredictionRepository
from inventory_ops.storage.repositories.recommendation_repo import RecommendationRepository

__all__ = [
    "BaseRepository",
    "AnomalyRepository",
    "FailureRepository",
    "HealingActionRepository",
    "InventoryRepository",
    "PredictionRepository",
    "RecommendationRepository",
]
