"""
Healing Layer - Failure classification and automated remediation.

This module provides:
    - FailureClassifier: Rule-based, deduplicated failure detection
    - HealingDispatcher: Maps failures to actions and executes them
"""

from .classifier import DEFAULT_RULES, ClassificationRule, FailureClassifier
from .dispatcher import FAILURE_ACTIONS, HANDLERS, HealingDispatcher, action_type_for

__all__ = [
    "FailureClassifier",
    "ClassificationRule",
    "DEFAULT_RULES",
    "HealingDispatcher",
    "FAILURE_ACTIONS",
    "HANDLERS",
    "action_type_for",
]
