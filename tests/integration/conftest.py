"""
Integration test fixtures: a supervisor wired to the in-memory store.
"""
import pytest

from inventory_ops.core.supervisor import SupervisorLoop


@pytest.fixture
def make_supervisor(config, memory_store, mock_ops, mock_alerts, host):
    """Build supervisors sharing one store (restarts, multiple instances)."""
    def build(**overrides):
        kwargs = dict(
            store=memory_store, ops=mock_ops, alerts=mock_alerts, probes=[], resource_sampler=host,
        )
        kwargs.update(overrides)
        return SupervisorLoop(config, **kwargs)

    return build
