"""
Optimization Layer - Predictions and recommendations for human review.

This module provides:
    - PredictionEngine: Demand, resource and fraud scoring with a confidence contract
    - RecommendationEngine: Reorder, fraud, cost, adjustment and resource suggestions
"""

from .prediction import (
    DemandForecast,
    FraudAlert,
    PredictionEngine,
    moving_average_scorer,
    rule_based_fraud_scorer,
)
from .recommendation import RecommendationEngine, reorder_quantity

__all__ = [
    "PredictionEngine",
    "DemandForecast",
    "FraudAlert",
    "moving_average_scorer",
    "rule_based_fraud_scorer",
    "RecommendationEngine",
    "reorder_quantity",
]
