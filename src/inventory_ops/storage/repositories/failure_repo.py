"""
Failure repository with dedup-key protection.

A partial unique index (dedup_key WHERE NOT resolved) guarantees that a
persistently failing probe produces one open record per dedup key, even
when two detection cycles race to insert it.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from inventory_ops.storage.models import Failure
from inventory_ops.storage.repositories.base import BaseRepository, db_value


class FailureRepository(BaseRepository[Failure]):
    """Repository for classified failures."""

    table_name = "system_failures"
    model_class = Failure

    async def create(self, failure: Failure) -> Optional[Failure]:
        """
        Insert a new failure.

        Returns None when an unresolved failure with the same dedup key
        already exists (the insert is skipped by ON CONFLICT).
        """
        query = """
            INSERT INTO system_failures
            (id, component, type, severity, description, timestamp, metrics,
             rule, dedup_key, detection_source, connectivity, resolved, resolved_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            ON CONFLICT (dedup_key) WHERE NOT resolved DO NOTHING
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            failure.id,
            failure.component,
            db_value(failure.type),
            db_value(failure.severity),
            failure.description,
            failure.timestamp,
            failure.metrics,
            failure.rule,
            failure.dedup_key,
            failure.detection_source,
            failure.connectivity,
            failure.resolved,
            failure.resolved_at,
        )
        return self._to_model(record)

    async def get_unresolved_by_key(self, dedup_key: str) -> Optional[Failure]:
        """Get the open failure for a dedup key, if any."""
        query = """
            SELECT * FROM system_failures
            WHERE dedup_key = $1 AND NOT resolved
            LIMIT 1
        """
        record = await self.db.fetchrow(query, dedup_key)
        return self._to_model(record)

    async def get_unresolved(self, component: Optional[str] = None) -> list[Failure]:
        """Get open failures, optionally for one component."""
        if component is not None:
            query = """
                SELECT * FROM system_failures
                WHERE NOT resolved AND component = $1
                ORDER BY timestamp DESC
            """
            records = await self.db.fetch(query, component)
        else:
            query = """
                SELECT * FROM system_failures
                WHERE NOT resolved
                ORDER BY timestamp DESC
            """
            records = await self.db.fetch(query)
        return self._to_models(records)

    async def resolve(self, failure_id: str, resolved_at: datetime) -> bool:
        """Flip a failure to resolved. Returns True if a row changed."""
        query = """
            UPDATE system_failures
            SET resolved = true, resolved_at = $2
            WHERE id = $1 AND NOT resolved
        """
        result = await self.db.execute(query, failure_id, resolved_at)
        return result != "UPDATE 0"
