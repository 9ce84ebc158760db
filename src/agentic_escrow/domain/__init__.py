"""Domain layer — escrow rules and value objects with zero framework dependencies."""

from agentic_escrow.domain.chain_protocol import BalanceReader, ChainGateway, ChainSigner
from agentic_escrow.domain.enums import (
    DisputeOutcome,
    DisputeState,
    EscrowStatus,
    EvidenceType,
    GasStrategy,
    ParamCondition,
    TransactionStatus,
)
from agentic_escrow.domain.exceptions import (
    EscrowError,
    InvalidCredentialError,
    InvalidStateTransitionError,
    PolicyViolationError,
    PreconditionNotMetError,
    is_retryable,
)
from agentic_escrow.domain.models import (
    AccountValidation,
    ChainCall,
    ChainInfo,
    EscrowAccount,
    TokenInfo,
    compute_platform_fee,
)
from agentic_escrow.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)

__all__ = [
    "BalanceReader",
    "ChainGateway",
    "ChainSigner",
    "DisputeOutcome",
    "DisputeState",
    "EscrowStatus",
    "EvidenceType",
    "GasStrategy",
    "ParamCondition",
    "TransactionStatus",
    "EscrowError",
    "InvalidCredentialError",
    "InvalidStateTransitionError",
    "PolicyViolationError",
    "PreconditionNotMetError",
    "is_retryable",
    "AccountValidation",
    "ChainCall",
    "ChainInfo",
    "EscrowAccount",
    "TokenInfo",
    "compute_platform_fee",
    "EscrowStateMachine",
    "validate_transition",
]
