"""
Core - The supervisor loop, its scheduler and the state its concerns share.

This module provides:
    - SupervisorLoop: Wires every component and runs one periodic task per concern
    - Scheduler / PeriodicTask: Cancellable repeating tasks
    - CancellationToken / StopRequested: Cooperative stop for in-flight bodies
    - SupervisorContext: Breakers, active healing actions and open failures
"""

from .context import ActionRegistry, OpenFailureIndex, SupervisorContext
from .scheduler import CancellationToken, PeriodicTask, Scheduler, StopRequested
from .supervisor import SupervisorLoop

__all__ = [
    "SupervisorLoop",
    "Scheduler",
    "PeriodicTask",
    "CancellationToken",
    "StopRequested",
    "SupervisorContext",
    "ActionRegistry",
    "OpenFailureIndex",
]
