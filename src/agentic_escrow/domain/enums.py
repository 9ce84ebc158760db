"""Domain enumerations for escrow coordination.

Two status vocabularies exist side by side: the on-chain EscrowStatus (what
the contract says) and the backend TransactionStatus (what the ledger says).
They are framework-agnostic (no web3, no FastAPI imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """On-chain lifecycle states of one escrow.

    The contract stores these as a uint8 in declaration order, see
    from_code(). Transitions are guarded by EscrowStateMachine.
    """

    NONE = "None"
    FUNDED = "Funded"
    DELIVERED = "Delivered"
    RELEASED = "Released"
    REFUNDED = "Refunded"
    DISPUTED = "Disputed"
    RESOLVED = "Resolved"
    ABANDONED = "Abandoned"

    @classmethod
    def from_code(cls, code: int) -> "EscrowStatus":
        """Map the contract's uint8 status to the enum member."""
        members = list(cls)
        if not 0 <= code < len(members):
            raise ValueError(f"Unknown on-chain escrow status code: {code}")
        return members[code]

    @property
    def code(self) -> int:
        return list(type(self)).index(self)


class TransactionStatus(enum.StrEnum):
    """Backend ledger states of a Transaction. Owned by the backend."""

    PENDING = "pending"
    ESCROWED = "escrowed"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    DISPUTED = "disputed"
    ABANDONED = "abandoned"


class GasStrategy(enum.StrEnum):
    """Who pays gas. AUTO is only ever an input; it is resolved per session."""

    SELF_FUNDED = "self-funded"
    ERC20_SPONSORED = "erc20-sponsored"
    AUTO = "auto"


class DisputeState(enum.StrEnum):
    """Backend dispute record states."""

    EVALUATING = "evaluating"
    RESOLVED = "resolved"
    PENDING_ADMIN = "pending_admin"


class DisputeOutcome(enum.StrEnum):
    BUYER_REFUND = "buyer_refund"
    SELLER_PAID = "seller_paid"
    SPLIT = "split"


class EvidenceType(enum.StrEnum):
    TEXT = "text"
    LINK = "link"
    FILE = "file"


class ParamCondition(enum.StrEnum):
    """Argument constraint operators understood by the capability policy."""

    EQUAL = "equal"
    NOT_EQUAL = "not_equal"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
