"""
Clients for the agent's external collaborators: the ledger node and the
operational API.
"""
from inventory_ops.clients.ledger import LedgerClient, LedgerError
from inventory_ops.clients.operations import OperationsAPIError, OperationsClient

__all__ = [
    "LedgerClient",
    "LedgerError",
    "OperationsAPIError",
    "OperationsClient",
]
