"""Typed operations on `/api/v1/transactions`."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from agentic_escrow.domain.enums import EvidenceType, TransactionStatus
from agentic_escrow.schemas.transactions import (
    DeliverRequest,
    DisputeRequest,
    DisputeStatus,
    EvidenceInput,
    EvidenceReceipt,
    FundRequest,
    FundResult,
    Transaction,
    TransactionList,
)

if TYPE_CHECKING:
    from agentic_escrow.client.base import BackendClient

_BASE = "/api/v1/transactions"


class TransactionsClient:
    """Ledger operations. All return validated schema objects."""

    def __init__(self, client: BackendClient) -> None:
        self._client = client

    async def list(
        self,
        role: str | None = None,
        status: TransactionStatus | str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> TransactionList:
        data = await self._client.request(
            "GET",
            _BASE,
            params={"role": role, "status": status, "limit": limit, "offset": offset},
        )
        return TransactionList.model_validate(data)

    async def get(self, transaction_id: str) -> Transaction:
        data = await self._client.request("GET", f"{_BASE}/{transaction_id}")
        return Transaction.model_validate(data)

    async def deliver(self, transaction_id: str, response_payload: Any) -> Transaction:
        body = DeliverRequest(response_payload=response_payload).to_wire()
        data = await self._client.request("POST", f"{_BASE}/{transaction_id}/deliver", body)
        return Transaction.model_validate(data)

    async def confirm(self, transaction_id: str) -> Transaction:
        data = await self._client.request("POST", f"{_BASE}/{transaction_id}/confirm")
        return Transaction.model_validate(data)

    async def dispute(self, transaction_id: str, reason: str) -> Transaction:
        body = DisputeRequest(reason=reason).to_wire()
        data = await self._client.request("POST", f"{_BASE}/{transaction_id}/dispute", body)
        return Transaction.model_validate(data)

    async def get_dispute(self, transaction_id: str) -> DisputeStatus:
        data = await self._client.request("GET", f"{_BASE}/{transaction_id}/dispute")
        return DisputeStatus.model_validate(data)

    async def submit_evidence(
        self, transaction_id: str, evidence_type: EvidenceType | str, content: str
    ) -> EvidenceReceipt:
        body = EvidenceInput(type=EvidenceType(evidence_type), content=content).to_wire()
        data = await self._client.request("POST", f"{_BASE}/{transaction_id}/dispute/evidence", body)
        return EvidenceReceipt.model_validate(data)

    async def fund(self, transaction_id: str, tx_hash: str) -> FundResult:
        """Report a funding tx hash; the backend reads the chain itself before answering."""
        body = FundRequest(tx_hash=tx_hash).to_wire()
        data = await self._client.request("POST", f"{_BASE}/{transaction_id}/fund", body)
        return FundResult.model_validate(data)
