"""
Healing action repository (audit trail of remediation attempts).
"""
from __future__ import annotations

from inventory_ops.storage.models import HealingAction
from inventory_ops.storage.repositories.base import BaseRepository, db_value


class HealingActionRepository(BaseRepository[HealingAction]):
    """Repository for healing actions."""

    table_name = "healing_actions"
    model_class = HealingAction

    async def upsert(self, action: HealingAction) -> HealingAction:
        """Insert or update an action by id. Terminal states overwrite."""
        query = """
            INSERT INTO healing_actions
            (id, type, component, severity, description, failure_id, target,
             status, created_at, executed_at, completed_at, result, error_message)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            ON CONFLICT (id) DO UPDATE
            SET status = EXCLUDED.status,
                executed_at = EXCLUDED.executed_at,
                completed_at = EXCLUDED.completed_at,
                result = EXCLUDED.result,
                error_message = EXCLUDED.error_message
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            action.id,
            db_value(action.type),
            action.component,
            db_value(action.severity),
            action.description,
            action.failure_id,
            action.target,
            db_value(action.status),
            action.created_at,
            action.executed_at,
            action.completed_at,
            action.result,
            action.error_message,
        )
        return self._to_model(record) if record else action

    async def get_by_failure(self, failure_id: str) -> list[HealingAction]:
        """All actions taken for a failure, newest first."""
        query = """
            SELECT * FROM healing_actions
            WHERE failure_id = $1
            ORDER BY created_at DESC
        """
        records = await self.db.fetch(query, failure_id)
        return self._to_models(records)

    async def get_recent(self, limit: int = 100) -> list[HealingAction]:
        query = """
            SELECT * FROM healing_actions
            ORDER BY created_at DESC
            LIMIT $1
        """
        records = await self.db.fetch(query, limit)
        return self._to_models(records)
