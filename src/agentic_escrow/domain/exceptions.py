"""Domain exceptions for escrow coordination.

Every error raised by this package derives from EscrowError. The `retryable`
class attribute tells callers whether re-querying state and trying again can
succeed (timeouts, network errors, rate limits) or whether the failure is
terminal (policy violations, validation errors, forbidden).
"""

from __future__ import annotations

from typing import Any


class EscrowError(Exception):
    """Base exception for all escrow errors."""

    retryable: bool = False

    def __init__(self, message: str, code: str = "ESCROW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


def is_retryable(exc: BaseException) -> bool:
    """Return True if the error is transient and the caller may retry."""
    return isinstance(exc, EscrowError) and exc.retryable


# --- Registry Errors ---


class UnsupportedChainError(EscrowError):
    """Raised when a chain is unknown or has no escrow contract registered."""

    def __init__(self, chain: str | int, reason: str = "not supported") -> None:
        super().__init__(
            message=f"Unsupported chain {chain!r}: {reason}",
            code="UNSUPPORTED_CHAIN",
        )
        self.chain = chain


class UnregisteredTokenError(EscrowError):
    """Raised when a token symbol is not registered for a chain."""

    def __init__(self, chain_id: int, symbol: str) -> None:
        super().__init__(
            message=f"Token {symbol!r} is not registered on chain {chain_id}",
            code="UNREGISTERED_TOKEN",
        )
        self.chain_id = chain_id
        self.symbol = symbol


class EmptyTokenSetError(EscrowError):
    """Raised when a capability policy would allow no token at all."""

    def __init__(self, chain_id: int) -> None:
        super().__init__(
            message=f"No token addresses resolved for chain {chain_id}",
            code="EMPTY_TOKEN_SET",
        )
        self.chain_id = chain_id


# --- Capability Errors ---


class PolicyViolationError(EscrowError):
    """Raised when a call does not match any permission of the capability."""

    def __init__(self, message: str, target: str | None = None, function: str | None = None) -> None:
        super().__init__(message=message, code="POLICY_VIOLATION")
        self.target = target
        self.function = function


class InvalidCredentialError(EscrowError):
    """Raised when a serialized capability is malformed, expired or revoked."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_CREDENTIAL")


# --- Lifecycle Errors ---


class PreconditionNotMetError(EscrowError):
    """Raised when a local precondition fails before any network call.

    Examples: dispute outside the dispute window, abandonment claim before the
    grace period elapsed, no signer loaded.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="PRECONDITION_NOT_MET")


class InvalidStateTransitionError(PreconditionNotMetError):
    """Raised when the on-chain escrow status does not allow the operation.

    Example: Funded -> Released (delivery must be submitted first)
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(f"Invalid escrow transition: {attempted} from {current_state}")
        self.code = "INVALID_STATE_TRANSITION"
        self.current_state = current_state
        self.attempted = attempted


class VerificationMismatchError(EscrowError):
    """Raised when the backend's on-chain read disagrees with what was submitted."""

    def __init__(self, message: str, mismatches: dict[str, tuple[Any, Any]] | None = None) -> None:
        super().__init__(message=message, code="VERIFICATION_MISMATCH")
        self.mismatches = mismatches or {}


# --- Transport Errors ---


class EscrowTimeoutError(EscrowError):
    """Raised when a network call exceeds its timeout.

    No partial state may be assumed committed: re-read chain or backend state
    before retrying a state-changing call.
    """

    retryable = True

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(
            message=f"{operation} timed out after {timeout}s",
            code="TIMEOUT",
        )
        self.operation = operation
        self.timeout = timeout


class NetworkError(EscrowError):
    """Raised when a network call fails before a response was received."""

    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="NETWORK_ERROR")


class ChainSubmissionError(EscrowError):
    """Raised when the chain gateway rejects or reverts a submitted call."""

    def __init__(self, message: str, tx_hash: str | None = None) -> None:
        super().__init__(message=message, code="CHAIN_SUBMISSION_ERROR")
        self.tx_hash = tx_hash


# --- Backend Errors (passthrough) ---


class BackendError(EscrowError):
    """Error response returned by the backend ledger API."""

    def __init__(
        self,
        status: int,
        message: str,
        details: Any = None,
        code: str = "BACKEND_ERROR",
    ) -> None:
        super().__init__(message=message, code=code)
        self.status = status
        self.details = details


class AuthenticationError(BackendError):
    def __init__(self, message: str) -> None:
        super().__init__(401, message, code="UNAUTHENTICATED")


class PaymentRequiredError(BackendError):
    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(402, message, details, code="PAYMENT_REQUIRED")


class ForbiddenError(BackendError):
    def __init__(self, message: str) -> None:
        super().__init__(403, message, code="FORBIDDEN")


class NotFoundError(BackendError):
    def __init__(self, message: str) -> None:
        super().__init__(404, message, code="NOT_FOUND")


class ValidationError(BackendError):
    """400 response; `details` carries the field-level errors."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(400, message, details, code="VALIDATION_ERROR")


class RateLimitError(BackendError):
    retryable = True

    def __init__(self, message: str, retry_after: int = 60) -> None:
        super().__init__(429, message, code="RATE_LIMITED")
        self.retry_after = retry_after
