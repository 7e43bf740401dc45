"""
Error taxonomy for the operations agent.

Every per-component or per-action error is caught at the narrowest scope
that can handle it, so one failing dependency never stops monitoring or
healing of the others. Only start-up failures propagate to the caller.
"""
from __future__ import annotations

from typing import Optional


class OpsAgentError(Exception):
    """Base exception for operations agent errors."""
    pass


class ProbeError(OpsAgentError):
    """A health check itself failed. Treated as status=down, never fatal."""

    def __init__(self, component: str, message: str):
        super().__init__(f"{component}: {message}")
        self.component = component


class CircuitOpenError(OpsAgentError):
    """A call was short-circuited because the component's breaker is open."""

    def __init__(self, component: str):
        super().__init__(f"Circuit open for {component}")
        self.component = component


class ClassificationError(OpsAgentError):
    """Metrics for a domain were malformed and could not be classified."""

    def __init__(self, domain: str, message: str):
        super().__init__(f"Cannot classify {domain} metrics: {message}")
        self.domain = domain


class HealingExecutionError(OpsAgentError):
    """A remediation primitive failed."""

    def __init__(self, action_type: str, component: str, message: str):
        super().__init__(f"{action_type} failed for {component}: {message}")
        self.action_type = action_type
        self.component = component


class PersistenceError(OpsAgentError):
    """The store was unavailable while recording or querying."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        message = f"Store operation '{operation}' failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation
        self.cause = cause


class InvalidTransitionError(OpsAgentError):
    """A lifecycle transition that the state machine does not allow."""

    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(f"{entity} cannot move from {current} to {requested}")
        self.current = current
        self.requested = requested


class RecommendationNotFoundError(OpsAgentError):
    """No recommendation exists with the requested id."""

    def __init__(self, recommendation_id: str):
        super().__init__(f"Recommendation not found: {recommendation_id}")
        self.recommendation_id = recommendation_id
