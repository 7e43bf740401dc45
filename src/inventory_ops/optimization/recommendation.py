"""
Recommendation engine - turns predictions and inventory state into
prioritized suggestions for human review.

Generators (each gated by its feature toggle):
    reorder                demandForecasting     low stock with a confident forecast
    fraud_alert            fraudDetection        high/critical fraud patterns
    cost_saving            costOptimization      overstocked items
    resource_optimization  resourceOptimization  CPU forecast above 80% or below 20%
    adjustment             (always)              ledger vs. recorded quantity

Priority is decided once at creation and never recomputed. Review decisions
move a recommendation through its lifecycle:
    pending -> reviewed | accepted | rejected
    reviewed -> accepted | rejected
    accepted -> implemented
"""
from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence

from inventory_ops.errors import PersistenceError, RecommendationNotFoundError
from inventory_ops.storage.models import (
    Impact,
    InventoryDiscrepancy,
    InventoryItem,
    Prediction,
    PredictionType,
    Recommendation,
    RecommendationStatus,
    RecommendationType,
    Severity,
)

if TYPE_CHECKING:
    from inventory_ops.config import AgentConfig
    from inventory_ops.core.scheduler import CancellationToken
    from inventory_ops.monitoring.alerting import AlertManager
    from inventory_ops.optimization.prediction import FraudAlert, PredictionEngine
    from inventory_ops.storage.store import Store

logger = logging.getLogger(__name__)

DEMAND_WINDOW_DAYS = 30

# Yearly cost of holding one unit, as a fraction of its price
HOLDING_COST_RATE = 0.25

# Score (confidence x impact.cost) boundaries for cost-driven priority
HIGH_PRIORITY_SCORE = 10000
MEDIUM_PRIORITY_SCORE = 1000

# Units of mismatch for adjustment priority
HIGH_DISCREPANCY_UNITS = 100
MEDIUM_DISCREPANCY_UNITS = 10

SCALE_UP_THRESHOLD = 80.0
SCALE_DOWN_THRESHOLD = 20.0
URGENT_SCALE_UP = 95.0

RECENT_TRANSACTIONS = 1000


def priority_for_score(score: float) -> Severity:
    if score >= HIGH_PRIORITY_SCORE:
        return Severity.HIGH
    if score >= MEDIUM_PRIORITY_SCORE:
        return Severity.MEDIUM
    return Severity.LOW


def reorder_quantity(
    forecast_value: float,
    current_stock: int,
    lead_time_days: int,
    safety_stock: int,
) -> int:
    """
    Units to order so stock covers lead-time demand plus safety stock.

    lead_time_demand = (forecast_value / 30) * lead_time_days
    order = max(0, lead_time_demand + safety_stock - current_stock)
    """
    lead_time_demand = forecast_value / DEMAND_WINDOW_DAYS * lead_time_days
    # Rounded up so a fractional unit of demand is still covered
    return max(0, math.ceil(lead_time_demand + safety_stock - current_stock - 1e-9))


class RecommendationEngine:
    """
    Builds, stores and reviews recommendations.

    Usage:
        engine = RecommendationEngine(config, predictions, store, alerts)

        demand = await predictions.generate_demand_predictions()
        recommendations = await engine.generate_recommendations(demand)

        await engine.update_recommendation_status(rec_id, RecommendationStatus.ACCEPTED, "ops@acme")
    """

    def __init__(
        self,
        config: "AgentConfig",
        predictions: "PredictionEngine",
        store: Optional["Store"] = None,
        alerts: Optional["AlertManager"] = None,
    ) -> None:
        self._thresholds = config.threshold
        self._features = config.features
        self._lead_time_days = config.lead_time_days
        self._predictions = predictions
        self._store = store
        self._alerts = alerts

    # =========================================================================
    # Reorder
    # =========================================================================

    def recommend_reorder(
        self, item: InventoryItem, prediction: Prediction
    ) -> Optional[Recommendation]:
        """
        Reorder suggestion for one item, or None.

        Requires confidence above reorder_confidence and quantity below the
        low-stock threshold.
        """
        if prediction.type != PredictionType.DEMAND:
            return None
        if prediction.confidence <= self._thresholds.reorder_confidence:
            return None
        if item.quantity >= self._thresholds.low_stock:
            return None

        order = reorder_quantity(
            prediction.value,
            item.quantity,
            self._lead_time_days,
            self._thresholds.reorder_point,
        )
        if order == 0:
            return None

        priority = (
            Severity.HIGH if item.quantity < self._thresholds.reorder_point else Severity.MEDIUM
        )
        return Recommendation(
            type=RecommendationType.REORDER,
            priority=priority,
            title=f"Reorder {item.name} ({item.sku})",
            description=(
                f"Stock {item.quantity} is below {self._thresholds.low_stock}; "
                f"forecast demand {prediction.value:.0f} units over {prediction.timeframe}"
            ),
            impact=Impact(
                cost=order * float(item.unit_price),
                risk="Stock-out before resupply",
                benefit="Prevent lost sales",
            ),
            data={
                "item_id": item.id,
                "sku": item.sku,
                "current_stock": item.quantity,
                "recommended_order": order,
                "prediction_id": prediction.id,
                "lead_time_days": self._lead_time_days,
            },
            confidence=prediction.confidence,
        )

    async def generate_reorder_recommendations(
        self, predictions: Sequence[Prediction]
    ) -> List[Recommendation]:
        if not self._features.demand_forecasting or self._store is None:
            return []

        by_sku = {p.target: p for p in predictions if p.type == PredictionType.DEMAND}
        if not by_sku:
            return []

        recommendations = []
        for item in await self._store.get_low_stock_items(self._thresholds.low_stock):
            prediction = by_sku.get(item.sku)
            if prediction is None:
                continue
            rec = self.recommend_reorder(item, prediction)
            if rec is not None:
                recommendations.append(rec)
        return recommendations

    # =========================================================================
    # Fraud
    # =========================================================================

    def recommend_fraud(self, alert: "FraudAlert") -> Optional[Recommendation]:
        """Only high and critical patterns become recommendations."""
        if alert.severity not in (Severity.HIGH, Severity.CRITICAL):
            return None

        return Recommendation(
            type=RecommendationType.FRAUD_ALERT,
            priority=alert.severity,
            title=f"Potential fraud detected: {alert.pattern}",
            description=f"Unusual activity pattern detected: {alert.description}",
            impact=Impact(
                cost=alert.estimated_loss,
                risk=alert.risk_level,
                benefit="Prevention of financial loss",
            ),
            data=alert.to_dict(),
            confidence=alert.confidence,
        )

    async def detect_fraud(self) -> List[Recommendation]:
        if not self._features.fraud_detection or self._store is None:
            return []

        transactions = await self._store.get_recent_transactions(RECENT_TRANSACTIONS)
        alerts = self._predictions.detect_fraud(transactions)

        recommendations = []
        for alert in alerts:
            rec = self.recommend_fraud(alert)
            if rec is not None:
                recommendations.append(rec)
        return recommendations

    # =========================================================================
    # Cost saving
    # =========================================================================

    def recommend_cost_saving(self, item: InventoryItem) -> Optional[Recommendation]:
        excess = item.quantity - self._thresholds.overstock
        if excess <= 0:
            return None

        saving = excess * float(item.unit_price) * HOLDING_COST_RATE
        # Further above the threshold -> more certain the stock is surplus
        confidence = round(min(0.95, 0.6 + 0.35 * excess / item.quantity), 3)
        score = confidence * saving

        return Recommendation(
            type=RecommendationType.COST_SAVING,
            priority=priority_for_score(score),
            title=f"Reduce stock of {item.name} ({item.sku})",
            description=(
                f"{item.quantity} units on hand, {excess} above the overstock "
                f"threshold of {self._thresholds.overstock}"
            ),
            impact=Impact(
                cost=round(saving, 2),
                risk="Capital tied up in surplus stock",
                benefit=f"Save about {saving:.2f} per year in holding cost",
            ),
            data={"item_id": item.id, "sku": item.sku, "excess_units": excess},
            confidence=confidence,
        )

    async def generate_cost_optimizations(self) -> List[Recommendation]:
        if not self._features.cost_optimization or self._store is None:
            return []

        recommendations = []
        for item in await self._store.get_overstock_items(self._thresholds.overstock):
            rec = self.recommend_cost_saving(item)
            if rec is not None:
                recommendations.append(rec)
        return recommendations

    # =========================================================================
    # Adjustments
    # =========================================================================

    def recommend_adjustment(self, discrepancy: InventoryDiscrepancy) -> Optional[Recommendation]:
        difference = discrepancy.difference
        if difference == 0:
            return None

        units = abs(difference)
        if units >= HIGH_DISCREPANCY_UNITS:
            priority = Severity.HIGH
        elif units >= MEDIUM_DISCREPANCY_UNITS:
            priority = Severity.MEDIUM
        else:
            priority = Severity.LOW

        return Recommendation(
            type=RecommendationType.ADJUSTMENT,
            priority=priority,
            title=f"Reconcile {discrepancy.name} ({discrepancy.sku})",
            description=(
                f"Recorded quantity {discrepancy.recorded_quantity} differs from "
                f"movement total {discrepancy.movement_total} by {difference}"
            ),
            impact=Impact(
                cost=float(units),
                risk="Inaccurate stock figures",
                benefit="Recorded stock matches the ledger",
            ),
            data={
                "item_id": discrepancy.item_id,
                "sku": discrepancy.sku,
                "recorded_quantity": discrepancy.recorded_quantity,
                "movement_total": discrepancy.movement_total,
                "adjust_by": -difference,
            },
            # Movement history is authoritative
            confidence=1.0,
        )

    async def generate_adjustments(self) -> List[Recommendation]:
        if self._store is None:
            return []

        recommendations = []
        for discrepancy in await self._store.get_discrepancies():
            rec = self.recommend_adjustment(discrepancy)
            if rec is not None:
                recommendations.append(rec)
        return recommendations

    # =========================================================================
    # Resources
    # =========================================================================

    def recommend_resource(self, prediction: Prediction) -> Optional[Recommendation]:
        if prediction.type != PredictionType.RESOURCE:
            return None

        if prediction.value > SCALE_UP_THRESHOLD:
            direction = "up"
            priority = Severity.HIGH if prediction.value > URGENT_SCALE_UP else Severity.MEDIUM
            risk = "Saturation and failed requests"
            benefit = "Headroom for expected load"
        elif prediction.value < SCALE_DOWN_THRESHOLD:
            direction = "down"
            priority = Severity.LOW
            risk = "Less headroom for spikes"
            benefit = "Lower infrastructure cost"
        else:
            return None

        return Recommendation(
            type=RecommendationType.RESOURCE_OPTIMIZATION,
            priority=priority,
            title=f"Scale {direction}: {prediction.target} forecast {prediction.value:.0f}%",
            description=(
                f"{prediction.target} utilisation is expected to reach "
                f"{prediction.value:.1f}% within {prediction.timeframe}"
            ),
            impact=Impact(cost=0.0, risk=risk, benefit=benefit),
            data={
                "metric": prediction.target,
                "forecast": prediction.value,
                "direction": direction,
                "prediction_id": prediction.id,
            },
            confidence=prediction.confidence,
        )

    async def generate_resource_optimizations(
        self, history: Sequence[Any]
    ) -> List[Recommendation]:
        if not self._features.resource_optimization:
            return []

        forecasts = await self._predictions.generate_resource_predictions(history, metrics=("cpu",))
        recommendations = []
        for prediction in forecasts:
            rec = self.recommend_resource(prediction)
            if rec is not None:
                recommendations.append(rec)
        return recommendations

    # =========================================================================
    # Orchestration
    # =========================================================================

    async def generate_recommendations(
        self,
        predictions: Sequence[Prediction] = (),
        resource_history: Sequence[Any] = (),
        token: Optional["CancellationToken"] = None,
    ) -> List[Recommendation]:
        """
        Run every enabled generator, store the results and send a digest.

        A generator whose store reads fail is skipped; recommendations that
        fail to persist are left out of the result.
        """
        generators = (
            ("reorder", lambda: self.generate_reorder_recommendations(predictions)),
            ("fraud", self.detect_fraud),
            ("cost_saving", self.generate_cost_optimizations),
            ("adjustment", self.generate_adjustments),
            ("resource", lambda: self.generate_resource_optimizations(resource_history)),
        )

        created: List[Recommendation] = []
        for name, generate in generators:
            if token is not None:
                token.throw_if_cancelled()
            try:
                created.extend(await generate())
            except PersistenceError as e:
                logger.error(f"Skipping {name} recommendations: {e}")

        if token is not None:
            token.throw_if_cancelled()

        # Alerted before persisting: a store outage must not hide fraud
        self._alert_critical_fraud(created)
        stored = [rec for rec in created if await self._persist(rec)]

        if stored and self._alerts is not None:
            self._alerts.send_recommendation_summary(stored)

        logger.info(f"Generated {len(stored)} recommendations")
        return stored

    def _alert_critical_fraud(self, recommendations: Iterable[Recommendation]) -> None:
        critical = [
            r for r in recommendations
            if r.type == RecommendationType.FRAUD_ALERT and r.priority == Severity.CRITICAL
        ]
        if not critical or self._alerts is None:
            return

        details = "\n".join(f"- {r.title}: {r.description}" for r in critical)
        self._alerts.send_critical("Critical fraud patterns detected", details)

    async def _persist(self, recommendation: Recommendation) -> bool:
        if self._store is None:
            return True
        try:
            await self._store.save_recommendation(recommendation)
            return True
        except PersistenceError as e:
            logger.error(f"Recommendation {recommendation.id} not persisted: {e}")
            return False

    # =========================================================================
    # Review
    # =========================================================================

    async def get_recommendations(
        self, filters: Optional[Dict[str, Any]] = None, limit: int = 200
    ) -> List[Recommendation]:
        if self._store is None:
            return []
        return await self._store.find_recommendations(filters, limit)

    async def update_recommendation_status(
        self,
        recommendation_id: str,
        status: RecommendationStatus,
        reviewed_by: Optional[str] = None,
    ) -> Recommendation:
        """
        Apply a review decision.

        Raises:
            RecommendationNotFoundError: unknown id
            InvalidTransitionError: the lifecycle does not allow the move
            PersistenceError: the store is unavailable
        """
        if self._store is None:
            raise RecommendationNotFoundError(recommendation_id)

        recommendation = await self._store.get_recommendation(recommendation_id)
        if recommendation is None:
            raise RecommendationNotFoundError(recommendation_id)

        previous = recommendation.status
        recommendation.review(RecommendationStatus(status), reviewed_by)
        await self._store.save_recommendation(recommendation)

        logger.info(
            f"Recommendation {recommendation_id}: {previous.value} -> "
            f"{recommendation.status.value} by {reviewed_by or 'unknown'}"
        )
        return recommendation
