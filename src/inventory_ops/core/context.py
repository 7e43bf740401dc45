"""
Supervisor-owned shared state.

The breakers, the active healing-action registry and the open-failure
index are the only structures several concerns touch. They are built once
by the supervisor and handed to each component at construction; nothing
here is a module-level singleton.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from inventory_ops.monitoring.circuit_breaker import BreakerRegistry
from inventory_ops.storage.models import Failure, HealingAction

logger = logging.getLogger(__name__)


class ActionRegistry:
    """
    Non-terminal healing actions, keyed by action id.

    upsert() is idempotent per id. An index by failure id guarantees at most
    one non-terminal action per failure, so two overlapping detection passes
    cannot heal the same failure twice at once. Once an action is terminal
    its failure can be claimed again by a later detection pass.
    """

    def __init__(self) -> None:
        self._actions: Dict[str, HealingAction] = {}
        self._by_failure: Dict[str, str] = {}

    def upsert(self, action: HealingAction) -> None:
        if action.status.is_terminal:
            self._actions.pop(action.id, None)
            if action.failure_id and self._by_failure.get(action.failure_id) == action.id:
                del self._by_failure[action.failure_id]
            return

        self._actions[action.id] = action
        if action.failure_id:
            self._by_failure[action.failure_id] = action.id

    def claim(
        self, failure_id: str, factory: Callable[[], HealingAction]
    ) -> Optional[HealingAction]:
        """
        Register a new action for a failure unless one is already active.

        Returns the new action, or None if the failure already has an
        active one. Check and insert happen without an await in between.
        """
        if failure_id in self._by_failure:
            return None
        action = factory()
        self.upsert(action)
        return action

    def forget(self, failure_id: str) -> None:
        """Drop the active action of a resolved failure, if any."""
        action_id = self._by_failure.pop(failure_id, None)
        if action_id is not None:
            self._actions.pop(action_id, None)

    def get(self, action_id: str) -> Optional[HealingAction]:
        return self._actions.get(action_id)

    def active_for(self, failure_id: str) -> Optional[HealingAction]:
        action_id = self._by_failure.get(failure_id)
        return self._actions.get(action_id) if action_id else None

    def active(self) -> List[HealingAction]:
        return list(self._actions.values())

    def __len__(self) -> int:
        return len(self._actions)


class OpenFailureIndex:
    """Unresolved failures by dedup key, plus one lock per key."""

    def __init__(self) -> None:
        self._failures: Dict[str, Failure] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, dedup_key: str) -> asyncio.Lock:
        lock = self._locks.get(dedup_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[dedup_key] = lock
        return lock

    def get(self, dedup_key: str) -> Optional[Failure]:
        return self._failures.get(dedup_key)

    def add(self, failure: Failure) -> None:
        self._failures[failure.dedup_key] = failure

    def remove(self, dedup_key: str) -> Optional[Failure]:
        lock = self._locks.get(dedup_key)
        if lock is not None and not lock.locked():
            del self._locks[dedup_key]
        return self._failures.pop(dedup_key, None)

    def find_by_id(self, failure_id: str) -> Optional[Failure]:
        for failure in self._failures.values():
            if failure.id == failure_id:
                return failure
        return None

    def values(self) -> List[Failure]:
        return list(self._failures.values())

    def __contains__(self, dedup_key: str) -> bool:
        return dedup_key in self._failures

    def __len__(self) -> int:
        return len(self._failures)


@dataclass
class SupervisorContext:
    """
    Everything the concerns share.

    Usage:
        context = SupervisorContext.create(failure_threshold=5, reset_timeout=60)
        classifier = FailureClassifier(context, store)
        dispatcher = HealingDispatcher(config.auto_healing, context, ...)
    """

    breakers: BreakerRegistry
    actions: ActionRegistry = field(default_factory=ActionRegistry)
    open_failures: OpenFailureIndex = field(default_factory=OpenFailureIndex)

    @classmethod
    def create(
        cls, failure_threshold: int = 5, reset_timeout: float = 60.0
    ) -> "SupervisorContext":
        return cls(breakers=BreakerRegistry(failure_threshold, reset_timeout))
