"""
Tests for the shared supervisor state.
"""
import pytest

from inventory_ops.core.context import ActionRegistry, OpenFailureIndex, SupervisorContext
from inventory_ops.storage.models import (
    Failure,
    FailureType,
    HealingAction,
    HealingActionType,
    Severity,
)


def make_action(failure_id="failure-1"):
    return HealingAction(
        type=HealingActionType.RESTART,
        component="inventory-api",
        severity=Severity.CRITICAL,
        failure_id=failure_id,
    )


def make_failure(key="api:service:service_down:1"):
    return Failure(
        component="inventory-api",
        type=FailureType.SERVICE,
        severity=Severity.CRITICAL,
        description="Service inventory-api is not running",
        rule="service_down",
        dedup_key=key,
    )


class TestActionRegistry:
    """At most one action per failure."""

    def test_claim_once(self):
        registry = ActionRegistry()

        first = registry.claim("failure-1", make_action)
        second = registry.claim("failure-1", make_action)

        assert first is not None
        assert second is None
        assert registry.active_for("failure-1") is first

    def test_terminal_action_allows_next_claim(self):
        registry = ActionRegistry()
        action = registry.claim("failure-1", make_action)

        action.mark_executing()
        assert registry.claim("failure-1", make_action) is None

        action.mark_failed("boom")
        registry.upsert(action)

        assert len(registry) == 0
        assert registry.active_for("failure-1") is None
        retry = registry.claim("failure-1", make_action)
        assert retry is not None
        assert retry.id != action.id

    def test_forget_drops_active_action(self):
        registry = ActionRegistry()
        registry.claim("failure-1", make_action)

        registry.forget("failure-1")

        assert len(registry) == 0
        assert registry.active_for("failure-1") is None

    def test_upsert_idempotent(self):
        registry = ActionRegistry()
        action = make_action()

        registry.upsert(action)
        registry.upsert(action)

        assert registry.active() == [action]


class TestOpenFailureIndex:

    def test_add_get_remove(self):
        index = OpenFailureIndex()
        failure = make_failure()

        index.add(failure)

        assert failure.dedup_key in index
        assert index.find_by_id(failure.id) is failure
        assert index.remove(failure.dedup_key) is failure
        assert len(index) == 0

    def test_one_lock_per_key(self):
        index = OpenFailureIndex()

        assert index.lock_for("a") is index.lock_for("a")
        assert index.lock_for("a") is not index.lock_for("b")

    @pytest.mark.asyncio
    async def test_held_lock_survives_remove(self):
        index = OpenFailureIndex()
        index.add(make_failure("k"))
        lock = index.lock_for("k")

        async with lock:
            index.remove("k")
            assert index.lock_for("k") is lock


def test_context_builds_breakers_from_settings():
    context = SupervisorContext.create(failure_threshold=2, reset_timeout=10)

    snapshot = context.breakers.get("database").snapshot()

    assert snapshot.failure_threshold == 2
    assert snapshot.reset_timeout == 10
    assert len(context.actions) == 0
