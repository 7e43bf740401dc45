"""
Anomaly repository. Anomalies are append-only.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from inventory_ops.storage.models import Anomaly, Severity
from inventory_ops.storage.repositories.base import BaseRepository, db_value


class AnomalyRepository(BaseRepository[Anomaly]):
    """Repository for detected anomalies."""

    table_name = "system_anomalies"
    model_class = Anomaly

    async def create(self, anomaly: Anomaly) -> Anomaly:
        query = """
            INSERT INTO system_anomalies
            (id, type, severity, description, timestamp, metrics, detected_by)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (id) DO NOTHING
        """
        await self.db.execute(
            query,
            anomaly.id,
            db_value(anomaly.type),
            db_value(anomaly.severity),
            anomaly.description,
            anomaly.timestamp,
            anomaly.metrics,
            anomaly.detected_by,
        )
        return anomaly

    async def get_recent(
        self, since: datetime, severity: Optional[Severity] = None
    ) -> list[Anomaly]:
        """Anomalies since a time, optionally of one severity."""
        if severity is not None:
            query = """
                SELECT * FROM system_anomalies
                WHERE timestamp >= $1 AND severity = $2
                ORDER BY timestamp DESC
            """
            records = await self.db.fetch(query, since, db_value(severity))
        else:
            query = """
                SELECT * FROM system_anomalies
                WHERE timestamp >= $1
                ORDER BY timestamp DESC
            """
            records = await self.db.fetch(query, since)
        return self._to_models(records)
