"""
Storage layer test fixtures.

Repositories and the Store run against a mocked Database whose query
methods are AsyncMocks, so tests assert on SQL arguments and on how
records map to models.
"""
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from inventory_ops.storage.models import Failure, FailureType, Severity
from inventory_ops.storage.store import Store


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def mock_db():
    """Mock database for unit tests."""
    db = MagicMock()
    db.execute = AsyncMock(return_value="UPDATE 1")
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)
    db.health_check = AsyncMock(return_value=True)
    db.get_health_metrics = AsyncMock(return_value={"connections": 5, "max_connections": 100})
    db.reconnect = AsyncMock(return_value={"reconnected": True})
    db.cleanup = AsyncMock(return_value={"terminated": 2})
    return db


@pytest.fixture
def store(mock_db):
    return Store(mock_db)


# =============================================================================
# Model Fixtures
# =============================================================================

@pytest.fixture
def sample_failure():
    return Failure(
        component="system",
        type=FailureType.RESOURCE,
        severity=Severity.CRITICAL,
        description="High memory usage detected (95.0%)",
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        metrics={"memory": 95.0},
        rule="memory_high",
        dedup_key="system:resource:memory_high:476868",
    )


@pytest.fixture
def failure_record(sample_failure):
    """Row as returned by asyncpg for sample_failure."""
    return sample_failure.model_dump()
