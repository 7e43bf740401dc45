"""
Tests for the supervisor loop wiring and concern bodies.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from inventory_ops.core.scheduler import CancellationToken, StopRequested
from inventory_ops.core.supervisor import SupervisorLoop
from inventory_ops.errors import PersistenceError
from inventory_ops.monitoring.health_checker import HealthProbe, OverallStatus
from inventory_ops.storage.models import (
    HealingActionType,
    Prediction,
    PredictionType,
    SecurityCounters,
)

ALL_CONCERNS = {
    "system_health", "blockchain_health", "inventory_health", "performance",
    "prediction", "analysis", "recommendation", "auto_recovery",
}


class TestWiring:
    """Concern registration and lifecycle."""

    def test_all_concerns_registered(self, supervisor):
        names = {t.name for t in supervisor.scheduler.periodic_tasks}
        assert names == ALL_CONCERNS

    def test_auto_recovery_absent_when_disabled(self, config, mock_store, mock_alerts):
        config.auto_healing.enabled = False

        supervisor = SupervisorLoop(config, store=mock_store, alerts=mock_alerts, probes=[])

        names = {t.name for t in supervisor.scheduler.periodic_tasks}
        assert names == ALL_CONCERNS - {"auto_recovery"}

    def test_intervals_from_config(self, config, mock_store, mock_alerts):
        config.interval.system_health = 15

        supervisor = SupervisorLoop(config, store=mock_store, alerts=mock_alerts, probes=[])

        by_name = {t.name: t for t in supervisor.scheduler.periodic_tasks}
        assert by_name["system_health"].interval == 15

    def test_default_probes_follow_configured_components(self, config, mock_store, mock_alerts):
        config.monitored_components = ("database", "mainframe")

        supervisor = SupervisorLoop(config, store=mock_store, alerts=mock_alerts)

        assert supervisor.health_checker.components == ["database"]

    def test_redis_probed_only_when_url_set(self, config, mock_store, mock_alerts):
        config.monitored_components = ("database", "redis")

        without = SupervisorLoop(config, store=mock_store, alerts=mock_alerts)
        config.redis_url = "redis://cache:6379"
        with_url = SupervisorLoop(config, store=mock_store, alerts=mock_alerts)

        assert without.health_checker.components == ["database"]
        assert with_url.health_checker.components == ["database", "redis"]

    @pytest.mark.asyncio
    async def test_stop_start_leaves_one_timer_per_concern(self, supervisor):
        await supervisor.start()
        await supervisor.stop()
        await supervisor.start()
        await supervisor.start()

        assert supervisor.scheduler.active_task_count == len(ALL_CONCERNS)
        await supervisor.stop()
        await supervisor.stop()
        assert not supervisor.is_running

    @pytest.mark.asyncio
    async def test_start_loads_open_failures(self, supervisor, mock_store):
        await supervisor.start()
        await supervisor.stop()

        mock_store.get_open_failures.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_unknown_before_first_check(self, supervisor):
        assert supervisor.get_health_status() is None

        await supervisor.run_system_health(CancellationToken())

        assert supervisor.get_health_status().status == OverallStatus.HEALTHY


class TestConcernBodies:
    """One firing of each concern."""

    @pytest.mark.asyncio
    async def test_system_health_alerts_on_down_component(self, config, mock_store, mock_alerts):
        async def down():
            raise ConnectionError("refused")

        supervisor = SupervisorLoop(
            config, store=mock_store, alerts=mock_alerts,
            probes=[HealthProbe("api", down)], resource_sampler=lambda: {"cpu": 1.0},
        )

        await supervisor.run_system_health(CancellationToken())

        mock_alerts.send_critical.assert_any_call(
            "System critical components down",
            "Down: api (overall critical)",
            dedup_key="health:down:api",
        )

    @pytest.mark.asyncio
    async def test_cancelled_token_discards_results(self, supervisor, mock_store):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(StopRequested):
            await supervisor.run_system_health(token)
        mock_store.save_failure.assert_not_called()

    @pytest.mark.asyncio
    async def test_blockchain_delay_warning(self, config, mock_store, mock_alerts):
        ledger = MagicMock()
        ledger.get_health_metrics = AsyncMock(return_value={
            "block_height": 1, "block_delay": 900.0, "pending_transactions": 500,
        })
        supervisor = SupervisorLoop(config, store=mock_store, ledger=ledger, alerts=mock_alerts, probes=[])

        await supervisor.run_blockchain_health(CancellationToken())

        titles = [c[0][0] for c in mock_alerts.send_warning.call_args_list]
        assert titles == ["Blockchain delay detected", "High transaction queue"]

    @pytest.mark.asyncio
    async def test_blockchain_unreachable_is_critical(self, config, mock_store, mock_alerts):
        ledger = MagicMock()
        ledger.get_health_metrics = AsyncMock(side_effect=ConnectionError("node down"))
        supervisor = SupervisorLoop(config, store=mock_store, ledger=ledger, alerts=mock_alerts, probes=[])

        await supervisor.run_blockchain_health(CancellationToken())

        assert mock_alerts.send_critical.call_args[0][0] == "Blockchain health check failed"

    @pytest.mark.asyncio
    async def test_inventory_discrepancy_warning(self, supervisor, mock_store, mock_alerts):
        mock_store.get_discrepancies = AsyncMock(return_value=[object(), object()])

        await supervisor.run_inventory_health(CancellationToken())

        assert mock_alerts.send_warning.call_args[0][0] == "Inventory discrepancies detected"

    @pytest.mark.asyncio
    async def test_prediction_skipped_when_forecasting_disabled(self, supervisor, mock_store):
        supervisor.config.features.demand_forecasting = False

        await supervisor.run_prediction(CancellationToken())

        mock_store.get_active_items.assert_not_called()

    @pytest.mark.asyncio
    async def test_analysis_records_turnover(self, supervisor, mock_store):
        mock_store.get_security_counters = AsyncMock(return_value=SecurityCounters(window_minutes=60))
        mock_store.get_turnover = AsyncMock(return_value={"SKU-1": 2.0, "SKU-2": 0.0})

        await supervisor.run_analysis(CancellationToken())

        assert supervisor.turnover == {"SKU-1": 2.0, "SKU-2": 0.0}

    @pytest.mark.asyncio
    async def test_recommendation_falls_back_to_memory(self, supervisor, mock_store):
        prediction = Prediction(
            type=PredictionType.DEMAND, target="SKU-1", timeframe="30d", value=120, confidence=0.9,
        )
        supervisor._latest_predictions = [prediction]
        mock_store.get_latest_predictions = AsyncMock(side_effect=PersistenceError("get_latest_predictions"))
        supervisor.recommendations.generate_recommendations = AsyncMock(return_value=[])

        await supervisor.run_recommendation(CancellationToken())

        args = supervisor.recommendations.generate_recommendations.call_args
        assert args[0][0] == [prediction]


class TestAutoRecovery:

    @pytest.mark.asyncio
    async def test_detect_and_heal(self, config, mock_store, mock_alerts):
        ops = MagicMock()
        ops.scale_resources = AsyncMock(return_value={"replicas": 2})
        supervisor = SupervisorLoop(
            config, store=mock_store, ops=ops, alerts=mock_alerts, probes=[],
            resource_sampler=lambda: {"cpu": 97.0, "memory": 40.0, "disk": 10.0},
        )

        [action] = await supervisor.run_auto_recovery()

        assert action.type == HealingActionType.SCALE
        ops.scale_resources.assert_awaited_once_with("system")

    @pytest.mark.asyncio
    async def test_disabled_detects_without_healing(self, config, mock_store, mock_alerts):
        config.auto_healing.enabled = False
        supervisor = SupervisorLoop(
            config, store=mock_store, alerts=mock_alerts, probes=[],
            resource_sampler=lambda: {"cpu": 97.0},
        )

        assert await supervisor.run_auto_recovery() == []
        mock_store.save_failure.assert_awaited_once()
