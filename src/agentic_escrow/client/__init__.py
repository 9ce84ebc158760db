"""Backend ledger client."""

from agentic_escrow.client.base import BackendClient
from agentic_escrow.client.transactions import TransactionsClient

__all__ = ["BackendClient", "TransactionsClient"]
