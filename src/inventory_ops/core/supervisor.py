"""
Supervisor loop - wires the agent together and runs its concerns.

Concerns (one PeriodicTask each, interval from config.interval):
    system_health       Probe components, alert on down ones, classify failures
    blockchain_health   Ledger delay and transaction queue warnings
    inventory_health    Discrepancy warnings
    performance         Error rate and response time warnings
    prediction          Demand forecasts
    analysis            Anomaly detection and turnover analysis
    recommendation      Reorder, fraud, cost, adjustment and resource suggestions
    auto_recovery       Failure detection plus healing (only if autoHealing.enabled)

Lifecycle:
    stopped -> running (start) -> stopped (stop)
start() while running and stop() while stopped are no-ops.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from inventory_ops.config import AgentConfig
from inventory_ops.core.context import SupervisorContext
from inventory_ops.core.scheduler import CancellationToken, PeriodicTask, Scheduler
from inventory_ops.errors import PersistenceError
from inventory_ops.healing.classifier import FailureClassifier
from inventory_ops.healing.dispatcher import HealingDispatcher
from inventory_ops.monitoring.alerting import AlertManager
from inventory_ops.monitoring.anomaly_detector import AnomalyDetector
from inventory_ops.monitoring.health_checker import (
    AggregateHealth,
    HealthChecker,
    HealthProbe,
    HealthStatus,
    database_probe,
    http_probe,
    ledger_probe,
    redis_probe,
)
from inventory_ops.monitoring.metrics import MetricCollector, sample_host_resources
from inventory_ops.optimization.prediction import (
    DEMAND_TIMEFRAME,
    DemandScorer,
    FraudScorer,
    PredictionEngine,
)
from inventory_ops.optimization.recommendation import RecommendationEngine
from inventory_ops.storage.models import (
    Anomaly,
    Failure,
    HealingAction,
    Prediction,
    PredictionType,
    Recommendation,
    RecommendationStatus,
    utcnow,
)

if TYPE_CHECKING:
    from inventory_ops.clients.ledger import LedgerClient
    from inventory_ops.clients.operations import OperationsClient
    from inventory_ops.storage.store import Store

logger = logging.getLogger(__name__)

# Health older than this many system-health intervals is reported stale
STALE_INTERVALS = 3

# Items with no outbound movement over the turnover window
DEAD_STOCK_TURNOVER = 0.0


class SupervisorLoop:
    """
    Owns the agent's components and runs every concern on its own schedule.

    Usage:
        supervisor = SupervisorLoop(config, store=store, ledger=ledger, ops=ops, alerts=alerts)
        await supervisor.start()

        health = supervisor.get_health_status()
        failures = await supervisor.detect_failures()
        recs = await supervisor.get_recommendations({"status": RecommendationStatus.PENDING})

        await supervisor.stop()
    """

    def __init__(
        self,
        config: AgentConfig,
        store: Optional["Store"] = None,
        ledger: Optional["LedgerClient"] = None,
        ops: Optional["OperationsClient"] = None,
        alerts: Optional[AlertManager] = None,
        probes: Optional[List[HealthProbe]] = None,
        resource_sampler: Callable[[], Dict[str, float]] = sample_host_resources,
        demand_scorer: Optional[DemandScorer] = None,
        fraud_scorer: Optional[FraudScorer] = None,
    ) -> None:
        self.config = config
        self._store = store
        self._ledger = ledger
        self._ops = ops
        self._running = False

        self.context = SupervisorContext.create(
            failure_threshold=config.breaker.failure_threshold,
            reset_timeout=config.breaker.reset_timeout,
        )
        self.alerts = alerts or AlertManager(
            telegram_bot_token=config.telegram_bot_token,
            telegram_chat_id=config.telegram_chat_id,
        )

        self.collector = MetricCollector(
            store, ledger, ops, self.context.breakers, config.threshold, resource_sampler
        )
        self.health_checker = HealthChecker(
            probes if probes is not None else self._default_probes(),
            self.context.breakers,
        )
        self.anomaly_detector = AnomalyDetector(config.threshold, store, self.alerts)
        self.classifier = FailureClassifier(
            self.context,
            store,
            self.alerts,
            dedup_window_seconds=config.dedup_window_seconds,
        )
        self.dispatcher = HealingDispatcher(
            config.auto_healing,
            self.context,
            ops=ops,
            store=store,
            ledger=ledger,
            alerts=self.alerts,
            classifier=self.classifier,
        )
        self.predictions = PredictionEngine(
            config.threshold, store, demand_scorer=demand_scorer, fraud_scorer=fraud_scorer
        )
        self.recommendations = RecommendationEngine(config, self.predictions, store, self.alerts)

        self.scheduler = Scheduler(shutdown_grace_seconds=config.shutdown_grace_seconds)
        self._register_concerns()

        self._latest_predictions: List[Prediction] = []
        self.turnover: Dict[str, float] = {}

    def _default_probes(self) -> List[HealthProbe]:
        probes = []
        timeout = self.config.probe_timeout
        for component in self.config.monitored_components:
            if component == "database":
                if self._store is not None:
                    probes.append(database_probe(self._store, timeout))
            elif component == "blockchain":
                if self._ledger is not None:
                    probes.append(ledger_probe(self._ledger, timeout))
            elif component == "api":
                probes.append(http_probe("api", self.config.api_health_url, timeout))
            elif component == "redis":
                if self.config.redis_url:
                    probes.append(redis_probe(self.config.redis_url, timeout))
                else:
                    logger.info("REDIS_URL not set, redis not probed")
            else:
                logger.warning(f"No health probe for component {component}, skipping")
        return probes

    def _register_concerns(self) -> None:
        interval = self.config.interval
        concerns = [
            PeriodicTask("system_health", interval.system_health, self.run_system_health,
                         run_immediately=True),
            PeriodicTask("blockchain_health", interval.blockchain_health, self.run_blockchain_health),
            PeriodicTask("inventory_health", interval.inventory_health, self.run_inventory_health),
            PeriodicTask("performance", interval.performance, self.run_performance_check),
            PeriodicTask("prediction", interval.prediction, self.run_prediction),
            PeriodicTask("analysis", interval.analysis, self.run_analysis),
            PeriodicTask("recommendation", interval.recommendation, self.run_recommendation),
        ]
        if self.config.auto_healing.enabled:
            concerns.append(
                PeriodicTask("auto_recovery", interval.auto_recovery, self.run_auto_recovery_task)
            )
        for concern in concerns:
            self.scheduler.add(concern)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Load open failures and start every concern.

        Raises whatever initialisation raises; the loop stays stopped.
        """
        if self._running:
            logger.warning("Supervisor already running")
            return

        logger.info("=" * 60)
        logger.info("INVENTORY OPERATIONS AGENT")
        logger.info("=" * 60)
        logger.info(f"Components: {', '.join(self.health_checker.components) or '(none)'}")
        logger.info(f"Auto-healing: {'ENABLED' if self.config.auto_healing.enabled else 'DISABLED'}")

        await self.classifier.load_open_failures()
        await self.scheduler.start()
        self._running = True

        logger.info(f"Supervisor started ({len(self.scheduler.periodic_tasks)} concerns)")

    async def stop(self) -> None:
        if not self._running:
            logger.debug("Supervisor not running")
            return

        logger.info("Stopping supervisor...")
        self._running = False
        await self.scheduler.stop()
        logger.info("Supervisor stopped")

    # =========================================================================
    # Public hooks
    # =========================================================================

    def get_health_status(self) -> Optional[AggregateHealth]:
        """Last known health (stale flagged), or None before the first check."""
        stale_after = self.config.interval.system_health * STALE_INTERVALS
        return self.health_checker.last_known(stale_after=stale_after)

    async def detect_anomalies(self, token: Optional[CancellationToken] = None) -> List[Anomaly]:
        snapshot = await self.collector.collect_snapshot()
        if token is not None:
            token.throw_if_cancelled()
        return await self.anomaly_detector.detect(snapshot)

    async def detect_failures(self, token: Optional[CancellationToken] = None) -> List[Failure]:
        metrics = await self.collector.collect_system_metrics()
        if token is not None:
            token.throw_if_cancelled()
        return await self.classifier.detect(metrics)

    async def run_auto_recovery(
        self, token: Optional[CancellationToken] = None
    ) -> List[HealingAction]:
        """Detect failures and heal the auto-healable ones."""
        failures = await self.detect_failures(token)
        if not self.config.auto_healing.enabled:
            logger.info("Auto-healing disabled, not acting on failures")
            return []
        return await self.dispatcher.heal(failures, token)

    async def get_recommendations(
        self, filters: Optional[Dict[str, Any]] = None
    ) -> List[Recommendation]:
        return await self.recommendations.get_recommendations(filters)

    async def update_recommendation_status(
        self,
        recommendation_id: str,
        status: RecommendationStatus,
        reviewed_by: Optional[str] = None,
    ) -> Recommendation:
        return await self.recommendations.update_recommendation_status(
            recommendation_id, status, reviewed_by
        )

    # =========================================================================
    # Concern bodies
    # =========================================================================

    async def run_system_health(self, token: CancellationToken) -> None:
        health = await self.health_checker.check_all()
        token.throw_if_cancelled()

        down = sorted(c.component for c in health.components if c.status == HealthStatus.DOWN)
        logger.debug(f"System health {health.status.value} ({len(health.components)} components)")
        if down:
            self.alerts.send_critical(
                "System critical components down",
                f"Down: {', '.join(down)} (overall {health.status.value})",
                dedup_key=f"health:down:{','.join(down)}",
            )

        await self.detect_failures(token)

    async def run_blockchain_health(self, token: CancellationToken) -> None:
        metrics = await self.collector.collect_domain("blockchain")
        token.throw_if_cancelled()
        if self._ledger is None:
            return

        if metrics is None:
            self.alerts.send_critical(
                "Blockchain health check failed",
                "Ledger metrics could not be collected",
                dedup_key="blockchain:unreachable",
            )
            return

        thresholds = self.config.threshold
        delay = metrics.get("block_delay", 0)
        if delay > thresholds.ledger_delay:
            self.alerts.send_warning(
                "Blockchain delay detected",
                f"Block delay {delay:.0f}s exceeds {thresholds.ledger_delay:.0f}s",
                dedup_key="blockchain:delay",
            )

        pending = metrics.get("pending_transactions", 0)
        if pending > thresholds.pending_transactions:
            self.alerts.send_warning(
                "High transaction queue",
                f"{pending} pending transactions",
                dedup_key="blockchain:queue",
            )

    async def run_inventory_health(self, token: CancellationToken) -> None:
        metrics = await self.collector.collect_domain("inventory")
        token.throw_if_cancelled()
        if metrics is None:
            return

        count = metrics.get("discrepancies", 0)
        if count > self.config.threshold.discrepancy:
            self.alerts.send_warning(
                "Inventory discrepancies detected",
                f"{count} items disagree with their movement history",
                dedup_key="inventory:discrepancies",
            )

    async def run_performance_check(self, token: CancellationToken) -> None:
        metrics = await self.collector.collect_domain("performance")
        token.throw_if_cancelled()
        if metrics is None:
            return

        thresholds = self.config.threshold
        error_rate = metrics.get("error_rate", 0)
        if error_rate > thresholds.error_rate:
            self.alerts.send_warning(
                "High error rate detected",
                f"Error rate {error_rate:.2%} exceeds {thresholds.error_rate:.2%}",
                dedup_key="performance:error_rate",
            )

        response_time = metrics.get("response_time", 0)
        if response_time > thresholds.response_time:
            self.alerts.send_warning(
                "High response time detected",
                f"Response time {response_time:.0f}ms exceeds {thresholds.response_time:.0f}ms",
                dedup_key="performance:response_time",
            )

    async def run_prediction(self, token: CancellationToken) -> None:
        if not self.config.features.demand_forecasting:
            return
        try:
            self._latest_predictions = await self.predictions.generate_demand_predictions(token)
        except PersistenceError as e:
            logger.error(f"Demand predictions skipped: {e}")

    async def run_analysis(self, token: CancellationToken) -> None:
        await self.detect_anomalies(token)
        token.throw_if_cancelled()

        if self._store is None:
            return
        try:
            self.turnover = await self._store.get_turnover()
        except PersistenceError as e:
            logger.error(f"Turnover analysis skipped: {e}")
            return

        dead = [sku for sku, rate in self.turnover.items() if rate <= DEAD_STOCK_TURNOVER]
        logger.info(
            f"Turnover analysis: {len(self.turnover)} items, {len(dead)} with no outbound movement"
        )

    async def run_recommendation(self, token: CancellationToken) -> None:
        predictions = await self._recent_demand_predictions()
        token.throw_if_cancelled()
        await self.recommendations.generate_recommendations(
            predictions,
            resource_history=self.collector.resource_history,
            token=token,
        )

    async def run_auto_recovery_task(self, token: CancellationToken) -> None:
        actions = await self.run_auto_recovery(token)
        if actions:
            logger.info(f"Auto-recovery executed {len(actions)} actions")

    async def _recent_demand_predictions(self) -> List[Prediction]:
        """Stored forecasts from the last two prediction cycles, else the in-memory ones."""
        if self._store is None:
            return list(self._latest_predictions)
        since = utcnow() - timedelta(seconds=self.config.interval.prediction * 2)
        try:
            return await self._store.get_latest_predictions(
                PredictionType.DEMAND, DEMAND_TIMEFRAME, since
            )
        except PersistenceError as e:
            logger.warning(f"Using in-memory predictions: {e}")
            return list(self._latest_predictions)
