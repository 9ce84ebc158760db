"""Delegated capabilities: policies, session keys, signers and the chain gateway."""

from agentic_escrow.wallet.policies import (
    ArgConstraint,
    CapabilityPolicy,
    Permission,
    build_escrow_policy,
    validate_escrow_policy,
)
from agentic_escrow.wallet.session_keys import (
    DelegatedCapability,
    SessionHandle,
    SessionKeyResult,
    decode_session_key,
    issue_session_key,
    load_session_key,
    revoke_session_key,
)
from agentic_escrow.wallet.signers import DelegatedSigner, OwnerSigner, load_owner_signer

__all__ = [
    "ArgConstraint",
    "CapabilityPolicy",
    "DelegatedCapability",
    "DelegatedSigner",
    "OwnerSigner",
    "Permission",
    "SessionHandle",
    "SessionKeyResult",
    "build_escrow_policy",
    "decode_session_key",
    "issue_session_key",
    "load_owner_signer",
    "load_session_key",
    "revoke_session_key",
    "validate_escrow_policy",
]
