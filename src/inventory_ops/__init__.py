"""
Inventory Operations Agent.

Autonomous operations control loop for a ledger-backed inventory system.
The agent watches the health of the system's dependencies, classifies and
heals failures, flags anomalies, and raises confidence-scored optimization
recommendations for human review. The ledger, relational store, operational
API and alert channel are external collaborators reached through clients.
"""

__version__ = "0.1.0"
