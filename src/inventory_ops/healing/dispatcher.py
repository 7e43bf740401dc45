"""
Healing dispatcher - maps failures to remediation actions and runs them.

Failure type -> action type:
    service     -> restart
    blockchain  -> reconnect
    database    -> reconnect if the failure is a loss of connectivity, else cleanup
    resource    -> scale
    network     -> no action (monitored only)

Only high and critical failures are healed automatically. A failed action
is marked failed, alerted as critical and not retried within the same pass;
the next detection pass that finds the failure still open plans a new
action. A completed action resolves the failure it was created for.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from inventory_ops.clients.ledger import LedgerError
from inventory_ops.clients.operations import OperationsAPIError
from inventory_ops.errors import HealingExecutionError, OpsAgentError, PersistenceError
from inventory_ops.storage.models import (
    Failure,
    FailureType,
    HealingAction,
    HealingActionType,
    HealingStatus,
    Severity,
)

if TYPE_CHECKING:
    from inventory_ops.clients.ledger import LedgerClient
    from inventory_ops.clients.operations import OperationsClient
    from inventory_ops.config import AutoHealingConfig
    from inventory_ops.core.context import SupervisorContext
    from inventory_ops.core.scheduler import CancellationToken
    from inventory_ops.healing.classifier import FailureClassifier
    from inventory_ops.monitoring.alerting import AlertManager
    from inventory_ops.storage.store import Store

logger = logging.getLogger(__name__)

AUTO_HEAL_SEVERITIES = frozenset({Severity.HIGH, Severity.CRITICAL})

FAILURE_ACTIONS: Dict[FailureType, Callable[[Failure], Optional[HealingActionType]]] = {
    FailureType.SERVICE: lambda f: HealingActionType.RESTART,
    FailureType.BLOCKCHAIN: lambda f: HealingActionType.RECONNECT,
    FailureType.DATABASE: lambda f: (
        HealingActionType.RECONNECT if f.connectivity else HealingActionType.CLEANUP
    ),
    FailureType.RESOURCE: lambda f: HealingActionType.SCALE,
    FailureType.NETWORK: lambda f: None,
}

# Handler method per action type
HANDLERS: Dict[HealingActionType, str] = {
    HealingActionType.RESTART: "_restart",
    HealingActionType.ROLLBACK: "_rollback",
    HealingActionType.SCALE: "_scale",
    HealingActionType.RECONNECT: "_reconnect",
    HealingActionType.CLEANUP: "_cleanup",
}

# AutoHealingConfig flag gating each action type (ungated types always allowed)
ACTION_TOGGLES: Dict[HealingActionType, str] = {
    HealingActionType.RESTART: "restart_services",
    HealingActionType.ROLLBACK: "rollback_transactions",
    HealingActionType.SCALE: "scale_resources",
}

if set(FAILURE_ACTIONS) != set(FailureType):
    raise RuntimeError(f"Unmapped failure types: {set(FailureType) - set(FAILURE_ACTIONS)}")
if set(HANDLERS) != set(HealingActionType):
    raise RuntimeError(f"Action types without a handler: {set(HealingActionType) - set(HANDLERS)}")

# Errors a remediation primitive may raise
PRIMITIVE_ERRORS = (
    OperationsAPIError,
    LedgerError,
    OpsAgentError,
    OSError,
    asyncio.TimeoutError,
)


def action_type_for(failure: Failure) -> Optional[HealingActionType]:
    return FAILURE_ACTIONS[failure.type](failure)


class HealingDispatcher:
    """
    Plans and executes healing actions.

    Usage:
        dispatcher = HealingDispatcher(
            config.auto_healing, context,
            ops=ops, store=store, ledger=ledger, alerts=alerts, classifier=classifier,
        )

        failures = await classifier.detect(metrics)
        actions = await dispatcher.heal(failures)
    """

    def __init__(
        self,
        config: "AutoHealingConfig",
        context: "SupervisorContext",
        ops: Optional["OperationsClient"] = None,
        store: Optional["Store"] = None,
        ledger: Optional["LedgerClient"] = None,
        alerts: Optional["AlertManager"] = None,
        classifier: Optional["FailureClassifier"] = None,
    ) -> None:
        self._config = config
        self._registry = context.actions
        self._open_failures = context.open_failures
        self._ops = ops
        self._store = store
        self._ledger = ledger
        self._alerts = alerts
        self._classifier = classifier

    # =========================================================================
    # Planning
    # =========================================================================

    def is_allowed(self, action_type: HealingActionType) -> bool:
        toggle = ACTION_TOGGLES.get(action_type)
        return toggle is None or bool(getattr(self._config, toggle))

    def plan(self, failure: Failure) -> Optional[HealingAction]:
        """
        Create a pending action for a failure, or None.

        None when the failure is below high severity, maps to no action,
        its action type is switched off, or it already has an active action.
        """
        if failure.resolved or failure.severity not in AUTO_HEAL_SEVERITIES:
            return None

        action_type = action_type_for(failure)
        if action_type is None:
            logger.debug(f"No healing action for {failure.type.value} failure {failure.id}")
            return None

        if not self.is_allowed(action_type):
            logger.info(f"{action_type.value} disabled, not healing {failure.component}")
            return None

        return self._registry.claim(
            failure.id,
            lambda: HealingAction(
                type=action_type,
                component=failure.component,
                severity=failure.severity,
                description=f"Auto-healing action for {failure.description}",
                failure_id=failure.id,
            ),
        )

    async def heal(
        self,
        failures: List[Failure],
        token: Optional["CancellationToken"] = None,
    ) -> List[HealingAction]:
        """Plan and execute actions for auto-healable failures, in order."""
        actions = []
        for failure in failures:
            if token is not None:
                token.throw_if_cancelled()
            action = self.plan(failure)
            if action is None:
                continue
            actions.append(await self.execute(action, failure))
        return actions

    async def rollback_transaction(
        self, tx_hash: str, severity: Severity = Severity.HIGH
    ) -> Optional[HealingAction]:
        """Replace a stuck ledger transaction. None if rollbacks are disabled."""
        if not self.is_allowed(HealingActionType.ROLLBACK):
            logger.info(f"Rollback disabled, not replacing {tx_hash}")
            return None
        action = HealingAction(
            type=HealingActionType.ROLLBACK,
            component="blockchain",
            severity=severity,
            description=f"Replace pending transaction {tx_hash}",
            target=tx_hash,
        )
        self._registry.upsert(action)
        return await self.execute(action)

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, action: HealingAction, failure: Optional[Failure] = None) -> HealingAction:
        """Run a pending action to a terminal state, alert and persist it."""
        action.mark_executing()
        self._registry.upsert(action)
        logger.info(f"Executing {action.type.value} on {action.component} ({action.id})")

        try:
            handler = getattr(self, HANDLERS[action.type])
            result = await handler(action)
            action.mark_completed(result)
        except HealingExecutionError as e:
            action.mark_failed(str(e))
        except Exception as e:
            logger.exception(f"Unexpected error in {action.type.value} on {action.component}")
            action.mark_failed(f"{type(e).__name__}: {e}")
        except asyncio.CancelledError:
            action.mark_failed("cancelled during shutdown")
            self._registry.upsert(action)
            raise

        self._registry.upsert(action)

        if action.status == HealingStatus.COMPLETED:
            logger.info(f"Healing action {action.type.value} completed for {action.component}")
            if self._alerts is not None:
                self._alerts.send_info(
                    "Recovery",
                    f"Healing action {action.type.value} completed for {action.component}",
                )
            await self._resolve(action, failure)
        else:
            logger.error(
                f"Healing action {action.type.value} failed for {action.component}: "
                f"{action.error_message}"
            )
            if self._alerts is not None:
                self._alerts.send_critical(
                    "Healing failed",
                    f"Healing action {action.type.value} failed for {action.component}: "
                    f"{action.error_message}",
                )

        await self._persist(action)
        return action

    async def _resolve(self, action: HealingAction, failure: Optional[Failure]) -> None:
        if action.failure_id is None or self._classifier is None:
            return
        if failure is None:
            failure = self._open_failures.find_by_id(action.failure_id)
        if failure is not None:
            await self._classifier.resolve(failure)

    async def _persist(self, action: HealingAction) -> None:
        if self._store is None:
            return
        try:
            await self._store.save_healing_action(action)
        except PersistenceError as e:
            logger.error(f"Healing action {action.id} not persisted: {e}")

    async def _invoke(
        self, action: HealingAction, fn: Callable[[], Awaitable[Any]]
    ) -> Dict[str, Any]:
        try:
            result = await fn()
        except PRIMITIVE_ERRORS as e:
            raise HealingExecutionError(action.type.value, action.component, str(e)) from e
        return result if isinstance(result, dict) else {"result": result}

    def _require(self, dependency: Any, name: str, action: HealingAction) -> None:
        if dependency is None:
            raise HealingExecutionError(
                action.type.value, action.component, f"{name} not configured"
            )

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _restart(self, action: HealingAction) -> Dict[str, Any]:
        self._require(self._ops, "operations API", action)
        return await self._invoke(action, lambda: self._ops.restart_service(action.component))

    async def _scale(self, action: HealingAction) -> Dict[str, Any]:
        self._require(self._ops, "operations API", action)
        return await self._invoke(action, lambda: self._ops.scale_resources(action.component))

    async def _reconnect(self, action: HealingAction) -> Dict[str, Any]:
        if action.component == "database":
            self._require(self._store, "store", action)
            return await self._invoke(action, self._store.reconnect)
        if action.component == "blockchain":
            self._require(self._ledger, "ledger client", action)
            return await self._invoke(action, self._ledger.reconnect)
        self._require(self._ops, "operations API", action)
        return await self._invoke(action, lambda: self._ops.reconnect(action.component))

    async def _cleanup(self, action: HealingAction) -> Dict[str, Any]:
        if action.component == "database":
            self._require(self._store, "store", action)
            return await self._invoke(action, self._store.cleanup)
        self._require(self._ops, "operations API", action)
        return await self._invoke(action, lambda: self._ops.cleanup(action.component))

    async def _rollback(self, action: HealingAction) -> Dict[str, Any]:
        self._require(self._ledger, "ledger client", action)
        if not action.target:
            raise HealingExecutionError(action.type.value, action.component, "no transaction hash")
        return await self._invoke(action, lambda: self._ledger.rollback_transaction(action.target))
