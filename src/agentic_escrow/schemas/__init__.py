"""Pydantic schemas for backend and webhook payloads."""

from agentic_escrow.schemas.transactions import (
    CamelModel,
    DeliverRequest,
    DisputeRequest,
    DisputeStatus,
    EvidenceInput,
    EvidenceReceipt,
    FundRequest,
    FundResult,
    OnChainEscrow,
    Transaction,
    TransactionList,
)
from agentic_escrow.schemas.webhooks import HealthResponse, WebhookAck, WebhookEvent

__all__ = [
    "CamelModel",
    "DeliverRequest",
    "DisputeRequest",
    "DisputeStatus",
    "EvidenceInput",
    "EvidenceReceipt",
    "FundRequest",
    "FundResult",
    "HealthResponse",
    "OnChainEscrow",
    "Transaction",
    "TransactionList",
    "WebhookAck",
    "WebhookEvent",
]
