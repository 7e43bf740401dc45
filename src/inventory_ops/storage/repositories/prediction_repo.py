"""
Prediction repository.
"""
from __future__ import annotations

from datetime import datetime

from inventory_ops.storage.models import Prediction, PredictionType
from inventory_ops.storage.repositories.base import BaseRepository, db_value


class PredictionRepository(BaseRepository[Prediction]):
    """Repository for stored (above-cutoff) predictions."""

    table_name = "ai_predictions"
    model_class = Prediction

    async def create(self, prediction: Prediction) -> Prediction:
        query = """
            INSERT INTO ai_predictions
            (id, type, target, timeframe, value, confidence, factors, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (id) DO NOTHING
        """
        await self.db.execute(
            query,
            prediction.id,
            db_value(prediction.type),
            prediction.target,
            prediction.timeframe,
            prediction.value,
            prediction.confidence,
            prediction.factors,
            prediction.created_at,
        )
        return prediction

    async def get_latest(
        self, prediction_type: PredictionType, timeframe: str, since: datetime
    ) -> list[Prediction]:
        """
        Latest prediction per target since a time.

        Older predictions for the same target are superseded.
        """
        query = """
            SELECT DISTINCT ON (target) *
            FROM ai_predictions
            WHERE type = $1 AND timeframe = $2 AND created_at >= $3
            ORDER BY target, created_at DESC
        """
        records = await self.db.fetch(query, db_value(prediction_type), timeframe, since)
        return self._to_models(records)
