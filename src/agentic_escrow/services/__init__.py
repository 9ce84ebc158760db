"""Application services — use case orchestration."""

from agentic_escrow.services.escrow_coordinator import (
    EscrowCoordinator,
    ReleaseResult,
    escrow_id_for,
    proof_hash_for,
)

__all__ = ["EscrowCoordinator", "ReleaseResult", "escrow_id_for", "proof_hash_for"]
