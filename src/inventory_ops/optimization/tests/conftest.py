"""
Optimization test fixtures.
"""
import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from inventory_ops.config import AgentConfig
from inventory_ops.optimization.prediction import PredictionEngine
from inventory_ops.optimization.recommendation import RecommendationEngine
from inventory_ops.storage.models import (
    DemandObservation,
    InventoryItem,
    LedgerTransaction,
    Prediction,
    PredictionType,
)


def make_item(sku="SKU-1", quantity=12, unit_price="10.00", item_id="item-1", name="Widget"):
    return InventoryItem(
        id=item_id, sku=sku, name=name, quantity=quantity, unit_price=Decimal(unit_price),
    )


def make_demand(sku="SKU-1", value=120.0, confidence=0.9):
    return Prediction(
        type=PredictionType.DEMAND, target=sku, timeframe="30d", value=value, confidence=confidence,
    )


HISTORY_END = date(2024, 5, 1)


def steady_history(days=60, per_day=4, end=HISTORY_END):
    return [
        DemandObservation(day=end - timedelta(days=i), quantity=per_day)
        for i in range(days)
    ]


def make_movement(n, movement_type="out", quantity=-1, performed_by="user-1",
                  tx_hash="0xhash", unit_price="5"):
    return LedgerTransaction(
        id=f"m{n}",
        item_id="item-1",
        movement_type=movement_type,
        quantity=quantity,
        performed_by=performed_by,
        blockchain_tx_hash=tx_hash,
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        unit_price=Decimal(unit_price),
    )


@pytest.fixture
def config():
    config = AgentConfig()
    config.threshold.low_stock = 15
    return config


@pytest.fixture
def mock_store():
    store = MagicMock()
    store.get_active_items = AsyncMock(return_value=[])
    store.get_demand_history = AsyncMock(return_value=[])
    store.save_prediction = AsyncMock(side_effect=lambda p: p)
    store.get_low_stock_items = AsyncMock(return_value=[])
    store.get_overstock_items = AsyncMock(return_value=[])
    store.get_discrepancies = AsyncMock(return_value=[])
    store.get_recent_transactions = AsyncMock(return_value=[])
    store.save_recommendation = AsyncMock(side_effect=lambda r: r)
    store.get_recommendation = AsyncMock(return_value=None)
    store.find_recommendations = AsyncMock(return_value=[])
    return store


@pytest.fixture
def mock_alerts():
    return MagicMock()


@pytest.fixture
def predictions(config, mock_store):
    # Forecasts are made on the last day of steady_history
    as_of = datetime(HISTORY_END.year, HISTORY_END.month, HISTORY_END.day, 12, tzinfo=timezone.utc)
    return PredictionEngine(config.threshold, mock_store, clock=lambda: as_of)


@pytest.fixture
def engine(config, predictions, mock_store, mock_alerts):
    return RecommendationEngine(config, predictions, mock_store, mock_alerts)


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture(name="make_item")
def make_item_fixture():
    return make_item


@pytest.fixture(name="make_demand")
def make_demand_fixture():
    return make_demand


@pytest.fixture(name="steady_history")
def steady_history_fixture():
    return steady_history


@pytest.fixture(name="make_movement")
def make_movement_fixture():
    return make_movement
