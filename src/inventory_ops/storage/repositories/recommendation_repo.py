"""
Recommendation repository.

Creation and priority are decided by the agent; status changes come from
human review through update_recommendation_status.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from inventory_ops.storage.models import Recommendation
from inventory_ops.storage.repositories.base import BaseRepository, db_value

_FILTER_COLUMNS = ("type", "priority", "status")


class RecommendationRepository(BaseRepository[Recommendation]):
    """Repository for recommendations."""

    table_name = "ai_recommendations"
    model_class = Recommendation

    async def upsert(self, recommendation: Recommendation) -> Recommendation:
        """
        Insert a recommendation or update its review fields.

        Priority, impact and confidence are not updated on conflict.
        """
        query = """
            INSERT INTO ai_recommendations
            (id, type, priority, title, description, impact, data, confidence,
             status, created_at, reviewed_by, reviewed_at, implemented_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            ON CONFLICT (id) DO UPDATE
            SET status = EXCLUDED.status,
                reviewed_by = EXCLUDED.reviewed_by,
                reviewed_at = EXCLUDED.reviewed_at,
                implemented_at = EXCLUDED.implemented_at
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            recommendation.id,
            db_value(recommendation.type),
            db_value(recommendation.priority),
            recommendation.title,
            recommendation.description,
            db_value(recommendation.impact),
            recommendation.data,
            recommendation.confidence,
            db_value(recommendation.status),
            recommendation.created_at,
            recommendation.reviewed_by,
            recommendation.reviewed_at,
            recommendation.implemented_at,
        )
        return self._to_model(record) if record else recommendation

    async def find(
        self, filters: Optional[Dict[str, Any]] = None, limit: int = 200
    ) -> list[Recommendation]:
        """
        List recommendations, newest first.

        Args:
            filters: Optional equality filters on type, priority, status
            limit: Maximum rows
        """
        clauses = []
        args: list = []
        for column in _FILTER_COLUMNS:
            value = (filters or {}).get(column)
            if value is None:
                continue
            args.append(db_value(value))
            clauses.append(f"{column} = ${len(args)}")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        args.append(limit)
        query = f"""
            SELECT * FROM ai_recommendations
            {where}
            ORDER BY created_at DESC
            LIMIT ${len(args)}
        """
        records = await self.db.fetch(query, *args)
        return self._to_models(records)
