"""
Prediction engine - demand forecasts, resource trends and fraud scoring.

Scoring functions are pluggable black boxes with a confidence contract:
every forecast carries a confidence in [0, 1], and anything below
threshold.prediction_confidence is discarded (not stored, not actionable).

Defaults:
    demand   - moving average of daily outflow plus linear trend (numpy)
    resource - least-squares line over sampled utilisation, r^2 as confidence
    fraud    - rule-based scoring of recent inventory movements
"""
from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from inventory_ops.errors import PersistenceError
from inventory_ops.monitoring.anomaly_detector import severity_for_ratio
from inventory_ops.storage.models import (
    DemandObservation,
    InventoryItem,
    LedgerTransaction,
    Prediction,
    PredictionType,
    Severity,
    utcnow,
)

if TYPE_CHECKING:
    from inventory_ops.config import ThresholdConfig
    from inventory_ops.core.scheduler import CancellationToken
    from inventory_ops.storage.store import Store

logger = logging.getLogger(__name__)

DEMAND_TIMEFRAME = "30d"
DEMAND_HORIZON_DAYS = 30
MOVING_AVERAGE_DAYS = 7
MIN_HISTORY_DAYS = 7
FULL_COVERAGE_DAYS = 60

RESOURCE_MIN_SAMPLES = 10
RESOURCE_HORIZON_SECONDS = 3600

# Fraud rule limits (per scoring window)
RAPID_OUTFLOW_LIMIT = 20  # outbound movements by one performer
LARGE_ADJUSTMENT_UNITS = 100  # units in a single adjustment
UNCONFIRMED_OUTFLOW_LIMIT = 5  # outbound movements with no ledger hash


@dataclass
class DemandForecast:
    """Expected units demanded over the forecast horizon."""

    value: float
    confidence: float
    factors: List[str] = field(default_factory=list)


class DemandScorer(Protocol):
    def __call__(
        self, item: InventoryItem, history: Sequence[DemandObservation]
    ) -> Optional[DemandForecast]:
        ...


@dataclass
class FraudAlert:
    """Suspicious movement pattern found by a fraud scorer."""

    pattern: str
    description: str
    severity: Severity
    confidence: float
    estimated_loss: float = 0.0
    data: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def risk_level(self) -> str:
        return self.severity.value

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["severity"] = self.severity.value
        result["risk_level"] = self.risk_level
        return result


class FraudScorer(Protocol):
    def __call__(self, transactions: Sequence[LedgerTransaction]) -> List[FraudAlert]:
        ...


# =============================================================================
# Default scorers
# =============================================================================


def _daily_series(history: Sequence[DemandObservation]) -> np.ndarray:
    """Daily outflow from the first to the last day given, zero-filled."""
    by_day: Dict[Any, int] = defaultdict(int)
    for obs in history:
        by_day[obs.day] += obs.quantity

    first, last = min(by_day), max(by_day)
    span = (last - first).days + 1
    series = np.zeros(span, dtype=float)
    for day, quantity in by_day.items():
        series[(day - first).days] = quantity
    return series


def moving_average_scorer(
    item: InventoryItem, history: Sequence[DemandObservation]
) -> Optional[DemandForecast]:
    """
    Moving-average demand with a linear trend.

    Confidence is sample coverage (days of history out of FULL_COVERAGE_DAYS)
    discounted by dispersion (coefficient of variation of daily outflow).
    Returns None with less than MIN_HISTORY_DAYS of history.
    """
    if not history:
        return None

    series = _daily_series(history)
    if len(series) < MIN_HISTORY_DAYS:
        return None

    recent = series[-MOVING_AVERAGE_DAYS:]
    daily_rate = float(recent.mean())

    days = np.arange(len(series), dtype=float)
    slope = float(np.polyfit(days, series, 1)[0])

    # Trend applied at the middle of the horizon
    projected_rate = max(0.0, daily_rate + slope * DEMAND_HORIZON_DAYS / 2)
    value = projected_rate * DEMAND_HORIZON_DAYS

    coverage = min(1.0, len(series) / FULL_COVERAGE_DAYS)
    mean = float(series.mean())
    dispersion = float(series.std()) / mean if mean > 0 else 1.0
    confidence = max(0.0, min(1.0, coverage / (1.0 + dispersion)))

    factors = [f"moving_average_{MOVING_AVERAGE_DAYS}d"]
    if slope > 0.01:
        factors.append("trend_up")
    elif slope < -0.01:
        factors.append("trend_down")
    else:
        factors.append("trend_flat")
    if coverage < 1.0:
        factors.append("short_history")

    return DemandForecast(value=round(value, 2), confidence=round(confidence, 3), factors=factors)


def _movement_value(tx: LedgerTransaction) -> float:
    return abs(tx.quantity) * float(tx.unit_price)


def _fraud_confidence(ratio: float) -> float:
    return round(min(0.95, 0.5 + 0.15 * ratio), 3)


def rule_based_fraud_scorer(transactions: Sequence[LedgerTransaction]) -> List[FraudAlert]:
    """
    Flag suspicious movement patterns.

    rapid_outflow        one performer with more than RAPID_OUTFLOW_LIMIT
                         outbound movements
    large_adjustment     a manual adjustment of LARGE_ADJUSTMENT_UNITS or more
    unconfirmed_outflow  more than UNCONFIRMED_OUTFLOW_LIMIT outbound movements
                         that never reached the ledger
    """
    alerts: List[FraudAlert] = []

    outflow_by_performer: Dict[str, List[LedgerTransaction]] = defaultdict(list)
    for tx in transactions:
        if tx.movement_type == "out" and tx.performed_by:
            outflow_by_performer[tx.performed_by].append(tx)

    for performer, txs in outflow_by_performer.items():
        ratio = len(txs) / RAPID_OUTFLOW_LIMIT
        severity = severity_for_ratio(ratio)
        if severity is None:
            continue
        alerts.append(FraudAlert(
            pattern="rapid_outflow",
            description=f"{performer} recorded {len(txs)} outbound movements",
            severity=severity,
            confidence=_fraud_confidence(ratio),
            estimated_loss=sum(_movement_value(tx) for tx in txs),
            data={"performed_by": performer, "movements": len(txs)},
        ))

    for tx in transactions:
        if tx.movement_type != "adjustment":
            continue
        ratio = abs(tx.quantity) / LARGE_ADJUSTMENT_UNITS
        if ratio < 1.0:
            continue
        # Exactly at the limit still counts
        severity = severity_for_ratio(ratio) or Severity.LOW
        alerts.append(FraudAlert(
            pattern="large_adjustment",
            description=f"Adjustment of {tx.quantity} units on item {tx.item_id}",
            severity=severity,
            confidence=_fraud_confidence(ratio),
            estimated_loss=_movement_value(tx),
            data={"movement_id": tx.id, "item_id": tx.item_id, "performed_by": tx.performed_by},
        ))

    unconfirmed = [
        tx for tx in transactions
        if tx.movement_type == "out" and not tx.blockchain_tx_hash
    ]
    ratio = len(unconfirmed) / UNCONFIRMED_OUTFLOW_LIMIT
    severity = severity_for_ratio(ratio)
    if severity is not None:
        alerts.append(FraudAlert(
            pattern="unconfirmed_outflow",
            description=f"{len(unconfirmed)} outbound movements have no ledger record",
            severity=severity,
            confidence=_fraud_confidence(ratio),
            estimated_loss=sum(_movement_value(tx) for tx in unconfirmed),
            data={"movement_ids": [tx.id for tx in unconfirmed[:50]]},
        ))

    return alerts


def linear_trend(
    samples: Sequence[Tuple[float, float]], horizon_seconds: float
) -> Optional[Tuple[float, float]]:
    """
    Extrapolate (timestamp, value) samples horizon_seconds past the last one.

    Returns (forecast, r_squared), or None with too few samples.
    """
    if len(samples) < RESOURCE_MIN_SAMPLES:
        return None

    t = np.asarray([s[0] for s in samples], dtype=float)
    y = np.asarray([s[1] for s in samples], dtype=float)
    t = t - t[0]
    if np.ptp(t) == 0:
        return None

    slope, intercept = np.polyfit(t, y, 1)
    fitted = slope * t + intercept
    ss_res = float(np.sum((y - fitted) ** 2))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    # A flat series is perfectly explained by its line
    r_squared = 1.0 if ss_tot == 0 else max(0.0, 1.0 - ss_res / ss_tot)

    forecast = float(slope * (t[-1] + horizon_seconds) + intercept)
    return forecast, r_squared


# =============================================================================
# Engine
# =============================================================================


class PredictionEngine:
    """
    Produces confidence-scored predictions.

    Usage:
        engine = PredictionEngine(config.threshold, store)

        predictions = await engine.generate_demand_predictions()
        alerts = engine.detect_fraud(await store.get_recent_transactions())
    """

    def __init__(
        self,
        thresholds: "ThresholdConfig",
        store: Optional["Store"] = None,
        demand_scorer: Optional[DemandScorer] = None,
        fraud_scorer: Optional[FraudScorer] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._thresholds = thresholds
        self._store = store
        self._clock = clock
        self._demand_scorer: DemandScorer = demand_scorer or moving_average_scorer
        self._fraud_scorer: FraudScorer = fraud_scorer or rule_based_fraud_scorer

    def is_confident(self, confidence: float) -> bool:
        return confidence >= self._thresholds.prediction_confidence

    # =========================================================================
    # Demand
    # =========================================================================

    def predict_demand(
        self,
        item: InventoryItem,
        history: Sequence[DemandObservation],
        as_of: Optional[date] = None,
    ) -> Optional[DemandForecast]:
        """
        Score one item. None when the scorer has nothing to say.

        History only holds days with outflow. With as_of, the days after the
        last observation up to as_of count as zero demand.
        """
        if as_of is not None and history:
            last = max(obs.day for obs in history)
            if last < as_of:
                history = [*history, DemandObservation(day=as_of, quantity=0)]
        forecast = self._demand_scorer(item, history)
        if forecast is None:
            return None
        if not 0.0 <= forecast.confidence <= 1.0:
            logger.warning(
                f"Demand scorer returned confidence {forecast.confidence} for {item.sku}, discarding"
            )
            return None
        return forecast

    async def generate_demand_predictions(
        self, token: Optional["CancellationToken"] = None
    ) -> List[Prediction]:
        """Forecast demand for every active item and store the confident ones."""
        if self._store is None:
            return []

        items = await self._store.get_active_items()
        as_of = self._clock().date()
        predictions = []
        discarded = 0

        for item in items:
            if token is not None:
                token.throw_if_cancelled()

            history = await self._store.get_demand_history(item.id)
            forecast = self.predict_demand(item, history, as_of)
            if forecast is None:
                continue
            if not self.is_confident(forecast.confidence):
                discarded += 1
                continue

            prediction = Prediction(
                type=PredictionType.DEMAND,
                target=item.sku,
                timeframe=DEMAND_TIMEFRAME,
                value=forecast.value,
                confidence=forecast.confidence,
                factors=forecast.factors,
            )
            await self._persist(prediction)
            predictions.append(prediction)

        logger.info(
            f"Generated {len(predictions)} demand predictions "
            f"({discarded} below confidence {self._thresholds.prediction_confidence})"
        )
        return predictions

    # =========================================================================
    # Resources
    # =========================================================================

    def predict_resource(
        self,
        metric: str,
        samples: Sequence[Tuple[float, float]],
        horizon_seconds: float = RESOURCE_HORIZON_SECONDS,
    ) -> Optional[Prediction]:
        """
        Linear-trend forecast of a utilisation percentage.

        None with too few samples or when the fit is below the confidence
        threshold.
        """
        trend = linear_trend(samples, horizon_seconds)
        if trend is None:
            return None

        forecast, r_squared = trend
        if not self.is_confident(r_squared):
            logger.debug(f"{metric} trend fit r^2={r_squared:.2f}, discarding")
            return None

        hours = max(1, int(horizon_seconds // 3600))
        return Prediction(
            type=PredictionType.RESOURCE,
            target=metric,
            timeframe=f"{hours}h",
            value=round(min(100.0, max(0.0, forecast)), 2),
            confidence=round(r_squared, 3),
            factors=["linear_trend", f"samples_{len(samples)}"],
        )

    async def generate_resource_predictions(
        self,
        history: Sequence[Tuple[float, Dict[str, float]]],
        metrics: Sequence[str] = ("cpu", "memory"),
    ) -> List[Prediction]:
        """Forecast each metric from (timestamp, sample) history and store them."""
        predictions = []
        for metric in metrics:
            samples = [(ts, sample[metric]) for ts, sample in history if metric in sample]
            prediction = self.predict_resource(metric, samples)
            if prediction is None:
                continue
            await self._persist(prediction)
            predictions.append(prediction)
        return predictions

    # =========================================================================
    # Fraud
    # =========================================================================

    def detect_fraud(self, transactions: Sequence[LedgerTransaction]) -> List[FraudAlert]:
        """Score recent movements. Alerts below the confidence threshold are dropped."""
        alerts = self._fraud_scorer(transactions)
        return [a for a in alerts if self.is_confident(a.confidence)]

    async def _persist(self, prediction: Prediction) -> None:
        if self._store is None:
            return
        try:
            await self._store.save_prediction(prediction)
        except PersistenceError as e:
            logger.error(f"Prediction {prediction.id} not persisted: {e}")
