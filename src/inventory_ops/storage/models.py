"""
Pydantic models for the agent's records and the inventory read models.

The record models mirror storage/schema.sql (system_anomalies,
system_failures, healing_actions, ai_predictions, ai_recommendations).
The read models mirror the inventory tables owned by the main application
(inventory_items, inventory_movements, audit_logs).

IMPORTANT: Anomalies and predictions are immutable once created. A failure
only ever changes its resolved flag. Healing actions and recommendations
move through explicit state machines below.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from inventory_ops.errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Unique id per event, prefixed by record kind."""
    return f"{prefix}-{uuid.uuid4().hex}"


# =============================================================================
# ENUMERATIONS
# =============================================================================


class Severity(str, Enum):
    """Severity shared by anomalies, failures and healing actions."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: "Severity") -> bool:
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class AnomalyType(str, Enum):
    PERFORMANCE = "performance"
    SECURITY = "security"
    INVENTORY = "inventory"
    BLOCKCHAIN = "blockchain"


class FailureType(str, Enum):
    SERVICE = "service"
    DATABASE = "database"
    BLOCKCHAIN = "blockchain"
    NETWORK = "network"
    RESOURCE = "resource"


class HealingActionType(str, Enum):
    RESTART = "restart"
    ROLLBACK = "rollback"
    SCALE = "scale"
    RECONNECT = "reconnect"
    CLEANUP = "cleanup"


class HealingStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (HealingStatus.COMPLETED, HealingStatus.FAILED)


class PredictionType(str, Enum):
    DEMAND = "demand"
    PRICE = "price"
    FRAUD = "fraud"
    RESOURCE = "resource"


class RecommendationType(str, Enum):
    REORDER = "reorder"
    ADJUSTMENT = "adjustment"
    FRAUD_ALERT = "fraud_alert"
    COST_SAVING = "cost_saving"
    RESOURCE_OPTIMIZATION = "resource_optimization"


class RecommendationStatus(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IMPLEMENTED = "implemented"


# Human review drives this lifecycle; rejected and implemented are final.
RECOMMENDATION_TRANSITIONS: Dict[RecommendationStatus, frozenset] = {
    RecommendationStatus.PENDING: frozenset({
        RecommendationStatus.REVIEWED,
        RecommendationStatus.ACCEPTED,
        RecommendationStatus.REJECTED,
    }),
    RecommendationStatus.REVIEWED: frozenset({
        RecommendationStatus.ACCEPTED,
        RecommendationStatus.REJECTED,
    }),
    RecommendationStatus.ACCEPTED: frozenset({RecommendationStatus.IMPLEMENTED}),
    RecommendationStatus.REJECTED: frozenset(),
    RecommendationStatus.IMPLEMENTED: frozenset(),
}


# =============================================================================
# MONITORING RECORDS
# =============================================================================


class Anomaly(BaseModel):
    """Advisory deviation. Never acted upon, persisted for analysis."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("anomaly"))
    type: AnomalyType
    severity: Severity
    description: str
    timestamp: datetime = Field(default_factory=utcnow)
    metrics: Dict[str, Any] = Field(default_factory=dict)
    detected_by: str


class Failure(BaseModel):
    """Classified, deduplicated record of an abnormal condition."""

    id: str = Field(default_factory=lambda: new_id("failure"))
    component: str
    type: FailureType
    severity: Severity
    description: str
    timestamp: datetime = Field(default_factory=utcnow)
    metrics: Dict[str, Any] = Field(default_factory=dict)
    rule: str
    dedup_key: str
    detection_source: str = "failure-classifier"
    connectivity: bool = False
    resolved: bool = False
    resolved_at: Optional[datetime] = None

    def resolve(self, at: Optional[datetime] = None) -> None:
        if self.resolved:
            return
        self.resolved = True
        self.resolved_at = at or utcnow()


class HealingAction(BaseModel):
    """Automated remediation attempt tied to one failure."""

    id: str = Field(default_factory=lambda: new_id("healing"))
    type: HealingActionType
    component: str
    severity: Severity
    description: str = ""
    failure_id: Optional[str] = None
    target: Optional[str] = None
    status: HealingStatus = HealingStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    executed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None

    def mark_executing(self) -> None:
        self._move(HealingStatus.PENDING, HealingStatus.EXECUTING)
        self.executed_at = utcnow()

    def mark_completed(self, result: Optional[Dict[str, Any]] = None) -> None:
        self._move(HealingStatus.EXECUTING, HealingStatus.COMPLETED)
        self.result = result
        self.completed_at = utcnow()

    def mark_failed(self, error_message: str) -> None:
        self._move(HealingStatus.EXECUTING, HealingStatus.FAILED)
        self.error_message = error_message
        self.completed_at = utcnow()

    def _move(self, expected: HealingStatus, new: HealingStatus) -> None:
        if self.status != expected:
            raise InvalidTransitionError("HealingAction", self.status.value, new.value)
        self.status = new


# =============================================================================
# OPTIMIZATION RECORDS
# =============================================================================


class Prediction(BaseModel):
    """Confidence-scored forecast. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("prediction"))
    type: PredictionType
    target: str  # SKU, component, ...
    timeframe: str  # '7d', '30d', '90d'
    value: float
    confidence: float = Field(ge=0.0, le=1.0)
    factors: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class Impact(BaseModel):
    """Expected impact of acting on a recommendation."""

    cost: float = 0.0
    risk: str = ""
    benefit: str = ""


class Recommendation(BaseModel):
    """Prioritized suggestion awaiting human review."""

    id: str = Field(default_factory=lambda: new_id("recommendation"))
    type: RecommendationType
    priority: Severity
    title: str
    description: str = ""
    impact: Impact = Field(default_factory=Impact)
    data: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(ge=0.0, le=1.0)
    status: RecommendationStatus = RecommendationStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    implemented_at: Optional[datetime] = None

    @property
    def score(self) -> float:
        """confidence x impact.cost, the ordering key within a type."""
        return self.confidence * self.impact.cost

    def review(
        self,
        status: RecommendationStatus,
        reviewed_by: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> None:
        """Apply a review decision. Priority is never recomputed."""
        allowed = RECOMMENDATION_TRANSITIONS[self.status]
        if status not in allowed:
            raise InvalidTransitionError("Recommendation", self.status.value, status.value)

        now = at or utcnow()
        self.status = status
        self.reviewed_by = reviewed_by
        self.reviewed_at = now
        if status == RecommendationStatus.IMPLEMENTED:
            self.implemented_at = now


# =============================================================================
# INVENTORY READ MODELS
# =============================================================================


class InventoryItem(BaseModel):
    """Row from inventory_items."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    sku: str
    name: str
    quantity: int
    unit_price: Decimal = Decimal("0")
    category: Optional[str] = None
    status: str = "active"


class DemandObservation(BaseModel):
    """Units moved out of stock on one day."""

    day: date
    quantity: int


class InventoryDiscrepancy(BaseModel):
    """Item whose recorded quantity disagrees with its movement history."""

    item_id: str
    sku: str
    name: str
    recorded_quantity: int
    movement_total: int

    @property
    def difference(self) -> int:
        return self.recorded_quantity - self.movement_total


class LedgerTransaction(BaseModel):
    """Row from inventory_movements."""

    id: str
    item_id: str
    movement_type: str  # 'in', 'out', 'adjustment', 'transfer'
    quantity: int
    performed_by: Optional[str] = None
    blockchain_tx_hash: Optional[str] = None
    created_at: datetime
    unit_price: Decimal = Decimal("0")


class SecurityCounters(BaseModel):
    """Authentication activity over a recent window (from audit_logs)."""

    window_minutes: int
    failed_logins: int = 0
    unauthorized_attempts: int = 0
    distinct_ips: int = 0
