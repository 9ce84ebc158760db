"""Pydantic schemas for the backend transaction ledger.

The backend speaks camelCase JSON; every model here accepts both the wire
alias and the Python field name, and dumps by alias when sent back out.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agentic_escrow.domain.enums import (
    DisputeOutcome,
    DisputeState,
    EvidenceType,
    TransactionStatus,
)


class CamelModel(BaseModel):
    """Base for backend payloads: camelCase on the wire, unknown keys ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class DeliverRequest(CamelModel):
    """Seller's delivery of the service result."""

    response_payload: Any


class DisputeRequest(CamelModel):
    """Open an off-chain dispute record."""

    reason: str = Field(..., min_length=1, max_length=2000)


class EvidenceInput(CamelModel):
    """Evidence attached to an open dispute by either party."""

    type: EvidenceType
    content: str = Field(..., min_length=1)


class FundRequest(CamelModel):
    """Report an on-chain funding transaction for independent verification."""

    tx_hash: str = Field(..., min_length=66, max_length=66, pattern=r"^0x[0-9a-fA-F]{64}$")


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class Transaction(CamelModel):
    """The backend's record of one purchase. Owned by the ledger."""

    id: str
    service_id: str
    buyer_agent_id: str
    seller_agent_id: str
    quantity: int = 1
    unit_price: Decimal = Decimal(0)
    subtotal: Decimal = Decimal(0)
    buyer_fee: Decimal = Decimal(0)
    seller_fee: Decimal = Decimal(0)
    total_charged: Decimal = Decimal(0)
    seller_receives: Decimal = Decimal(0)
    currency: str = "USDC"
    payment_method: str | None = None
    payment_status: str | None = None
    status: TransactionStatus
    escrow_address: str | None = None
    escrow_tx_hash: str | None = None
    response_payload: Any = None
    delivery_proof: str | None = None
    delivered_at: datetime | None = None
    completed_at: datetime | None = None
    dispute_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    my_role: Literal["buyer", "seller"] | None = None


class TransactionList(CamelModel):
    transactions: list[Transaction]
    total: int
    limit: int
    offset: int


class OnChainEscrow(CamelModel):
    """The backend's independent read of the escrow contract."""

    escrow_id: str
    buyer: str
    seller: str
    # Base units, sent as decimal strings to survive JSON number precision.
    locked_amount: int
    platform_fee: int
    status: str


class FundResult(CamelModel):
    """Authoritative result of fund verification."""

    id: str
    status: TransactionStatus
    escrow_tx_hash: str
    on_chain: OnChainEscrow


class DisputeStatus(CamelModel):
    status: DisputeState
    outcome: DisputeOutcome | None = None
    buyer_percent: int | None = None
    seller_percent: int | None = None
    evidence_count: int = 0
    created_at: datetime
    resolved_at: datetime | None = None


class EvidenceReceipt(CamelModel):
    evidence_id: str
