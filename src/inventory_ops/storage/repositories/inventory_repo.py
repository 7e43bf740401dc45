"""
Read-only queries against the application's inventory tables.

inventory_items, inventory_movements and audit_logs belong to the main
application; the agent only reads them to build metrics, demand history
and fraud/cost analysis input.
"""
from __future__ import annotations

from typing import Dict

from inventory_ops.storage.models import (
    DemandObservation,
    InventoryDiscrepancy,
    InventoryItem,
    LedgerTransaction,
    SecurityCounters,
)
from inventory_ops.storage.repositories.base import BaseRepository

_ITEM_COLUMNS = "id::text AS id, sku, name, quantity, unit_price, category, status"


class InventoryRepository(BaseRepository[InventoryItem]):
    """Inventory queries for prediction, recommendation and anomaly input."""

    table_name = "inventory_items"
    model_class = InventoryItem

    async def get_active_items(self) -> list[InventoryItem]:
        query = f"""
            SELECT {_ITEM_COLUMNS}
            FROM inventory_items
            WHERE status = 'active'
            ORDER BY sku
        """
        records = await self.db.fetch(query)
        return self._to_models(records)

    async def get_low_stock_items(self, threshold: int) -> list[InventoryItem]:
        """Items with quantity strictly below the threshold."""
        query = f"""
            SELECT {_ITEM_COLUMNS}
            FROM inventory_items
            WHERE status = 'active' AND quantity < $1
            ORDER BY quantity ASC
        """
        records = await self.db.fetch(query, threshold)
        return self._to_models(records)

    async def get_overstock_items(self, threshold: int) -> list[InventoryItem]:
        """Items with quantity strictly above the threshold."""
        query = f"""
            SELECT {_ITEM_COLUMNS}
            FROM inventory_items
            WHERE status = 'active' AND quantity > $1
            ORDER BY quantity DESC
        """
        records = await self.db.fetch(query, threshold)
        return self._to_models(records)

    async def get_demand_history(self, item_id: str, days: int = 90) -> list[DemandObservation]:
        """Daily outbound quantity for an item over the last N days."""
        query = """
            SELECT created_at::date AS day, SUM(ABS(quantity))::int AS quantity
            FROM inventory_movements
            WHERE item_id = $1::uuid
              AND movement_type = 'out'
              AND created_at >= NOW() - ($2 || ' days')::interval
            GROUP BY day
            ORDER BY day
        """
        records = await self.db.fetch(query, item_id, str(days))
        return [DemandObservation(**dict(r)) for r in records]

    async def get_discrepancies(self) -> list[InventoryDiscrepancy]:
        """Items whose recorded quantity differs from their movement total."""
        query = """
            SELECT i.id::text AS item_id, i.sku, i.name,
                   i.quantity AS recorded_quantity,
                   COALESCE(SUM(m.quantity), 0)::int AS movement_total
            FROM inventory_items i
            LEFT JOIN inventory_movements m ON i.id = m.item_id
            GROUP BY i.id, i.sku, i.name, i.quantity
            HAVING i.quantity != COALESCE(SUM(m.quantity), 0)
        """
        records = await self.db.fetch(query)
        return [InventoryDiscrepancy(**dict(r)) for r in records]

    async def get_recent_transactions(self, limit: int = 1000) -> list[LedgerTransaction]:
        query = """
            SELECT m.id::text AS id, m.item_id::text AS item_id, m.movement_type,
                   m.quantity, m.performed_by::text AS performed_by,
                   m.blockchain_tx_hash, m.created_at,
                   COALESCE(i.unit_price, 0) AS unit_price
            FROM inventory_movements m
            JOIN inventory_items i ON i.id = m.item_id
            ORDER BY m.created_at DESC
            LIMIT $1
        """
        records = await self.db.fetch(query, limit)
        return [LedgerTransaction(**dict(r)) for r in records]

    async def count_unconfirmed_transactions(self, older_than_minutes: int = 10) -> int:
        """Movements that never received a ledger transaction hash."""
        query = """
            SELECT COUNT(*) FROM inventory_movements
            WHERE blockchain_tx_hash IS NULL
              AND created_at < NOW() - ($1 || ' minutes')::interval
              AND created_at >= NOW() - INTERVAL '1 day'
        """
        return int(await self.db.fetchval(query, str(older_than_minutes)) or 0)

    async def get_security_counters(self, window_minutes: int = 60) -> SecurityCounters:
        query = """
            SELECT
                COUNT(*) FILTER (WHERE action = 'login_failed') AS failed_logins,
                COUNT(*) FILTER (WHERE action = 'unauthorized_access') AS unauthorized_attempts,
                COUNT(DISTINCT ip_address) AS distinct_ips
            FROM audit_logs
            WHERE created_at >= NOW() - ($1 || ' minutes')::interval
        """
        record = await self.db.fetchrow(query, str(window_minutes))
        if not record:
            return SecurityCounters(window_minutes=window_minutes)
        return SecurityCounters(window_minutes=window_minutes, **dict(record))

    async def get_turnover(self, days: int = 30) -> Dict[str, float]:
        """Outbound units over the window divided by current stock, per SKU."""
        query = """
            SELECT i.sku,
                   COALESCE(SUM(ABS(m.quantity)) FILTER (WHERE m.movement_type = 'out'), 0) AS outbound,
                   GREATEST(i.quantity, 1) AS stock
            FROM inventory_items i
            LEFT JOIN inventory_movements m
              ON m.item_id = i.id AND m.created_at >= NOW() - ($1 || ' days')::interval
            WHERE i.status = 'active'
            GROUP BY i.sku, i.quantity
        """
        records = await self.db.fetch(query, str(days))
        return {r["sku"]: float(r["outbound"]) / float(r["stock"]) for r in records}
