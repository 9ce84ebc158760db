"""Delegated session keys: issue, load, revoke.

Owner side:
    result = issue_session_key(owner_key, chain="baseSepolia")
    # hand result.serialized_session_key to the agent
    tx_hash = await revoke_session_key(owner_key, result.serialized_session_key, "baseSepolia", gateway)

Agent side:
    handle = await load_session_key(serialized, "baseSepolia", gateway)
    await handle.signer.submit_call(call)   # only escrow calls pass the policy

The serialized credential embeds a freshly generated session key (unrelated
to the owner key), the capability policy, and the owner's signature binding
the two to the owner's smart account. The owner key is used only while
issuing and revoking, and is never stored in the credential.

Revocation is an on-chain uninstall of the delegate's permission plugin. It
is eventually consistent: until that transaction is confirmed, the session
key can still sign.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_abi import encode
from eth_utils import is_hex_address, keccak, to_bytes, to_checksum_address
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from agentic_escrow.domain.enums import GasStrategy
from agentic_escrow.domain.exceptions import InvalidCredentialError, PolicyViolationError
from agentic_escrow.domain.models import AccountValidation, ChainCall, PluginEnable
from agentic_escrow.gas import resolve_gas_strategy
from agentic_escrow.logging_config import get_logger
from agentic_escrow.registry import get_chain
from agentic_escrow.wallet import abi
from agentic_escrow.wallet.accounts import derive_smart_account_address
from agentic_escrow.wallet.policies import (
    DEFAULT_VALIDITY_SECONDS,
    CapabilityPolicy,
    build_escrow_policy,
    validate_escrow_policy,
)
from agentic_escrow.wallet.signers import (
    DEFAULT_CHAIN_TIMEOUT,
    DelegatedSigner,
    TimeoutBalanceReader,
    load_owner_signer,
    owner_account,
    with_timeout,
)

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

    from agentic_escrow.domain.chain_protocol import ChainGateway

logger = get_logger(__name__)

CREDENTIAL_VERSION = 1

# Validation type prefix for permission plugins in a bytes21 validation id.
_PERMISSION_VALIDATION_TYPE = b"\x02"


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DelegatedCapability:
    """A decoded, signature-checked credential. Holds no owner secret."""

    chain_id: int
    owner_address: str
    smart_account_address: str
    delegate_address: str
    policy: CapabilityPolicy
    enable_signature: str

    @property
    def valid_until(self) -> int:
        return self.policy.valid_until

    @property
    def permission_id(self) -> bytes:
        """4-byte id of the delegate's permission plugin on the account."""
        return permission_id(self.delegate_address, self.policy)

    @property
    def validation_id(self) -> str:
        """bytes21 validation id the account uses to address the plugin."""
        vid = _PERMISSION_VALIDATION_TYPE + self.permission_id + bytes(16)
        return "0x" + vid.hex()

    @property
    def validation(self) -> AccountValidation:
        """Selects the delegate's plugin and carries its owner-signed install payload."""
        return AccountValidation(
            owner_address=self.owner_address,
            validation_id=self.validation_id,
            enable=PluginEnable(
                validator_data=plugin_install_data(self.delegate_address, self.policy),
                enable_signature=to_bytes(hexstr=self.enable_signature),
            ),
        )


@dataclass(frozen=True)
class SessionKeyResult:
    """What the owner receives from issuance."""

    serialized_session_key: str
    session_key_address: str
    smart_account_address: str
    valid_until: int


@dataclass(frozen=True)
class SessionHandle:
    """What the agent receives from loading a credential."""

    signer: DelegatedSigner
    capability: DelegatedCapability
    gas_strategy: GasStrategy

    @property
    def address(self) -> str:
        return self.signer.address


class _SerializedCapability(BaseModel):
    """Wire form of the opaque credential (JSON, then base64url)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    version: int = Field(default=CREDENTIAL_VERSION)
    chain_id: int
    owner_address: str
    smart_account_address: str
    delegate_address: str
    session_private_key: str
    policy: dict
    enable_signature: str


# ---------------------------------------------------------------------------
# Derivations
# ---------------------------------------------------------------------------


def permission_id(delegate_address: str, policy: CapabilityPolicy) -> bytes:
    return keccak(bytes.fromhex(delegate_address[2:]) + policy.digest())[:4]


def plugin_install_data(delegate_address: str, policy: CapabilityPolicy) -> bytes:
    """Permission plugin install data: delegate, window and one entry per permission.

    Each entry is (target, selector, canonical JSON of its argument
    constraints). The policy digest is included so the owner's enable
    signature can be checked against it.
    """
    entries = [
        encode(
            ["address", "bytes4", "bytes"],
            [
                permission.target,
                to_bytes(hexstr=permission.selector),
                json.dumps(permission.to_dict()["args"], sort_keys=True, separators=(",", ":")).encode(),
            ],
        )
        for permission in policy.permissions
    ]
    return encode(
        ["address", "bytes32", "uint48", "uint48", "bytes[]"],
        [delegate_address, policy.digest(), policy.valid_after, policy.valid_until, entries],
    )


def _enable_digest(chain_id: int, smart_account: str, delegate: str, policy: CapabilityPolicy) -> bytes:
    """What the owner signs to enable `delegate` with `policy` on `smart_account`."""
    return keccak(
        chain_id.to_bytes(32, "big")
        + bytes.fromhex(smart_account[2:])
        + bytes.fromhex(delegate[2:])
        + policy.digest()
    )


def _encode(payload: _SerializedCapability) -> str:
    raw = payload.model_dump_json(by_alias=True).encode()
    return base64.urlsafe_b64encode(raw).decode()


def _decode(serialized: str) -> _SerializedCapability:
    try:
        raw = base64.urlsafe_b64decode(serialized.encode())
        return _SerializedCapability.model_validate(json.loads(raw))
    except (binascii.Error, ValueError, UnicodeError, PydanticValidationError) as err:
        raise InvalidCredentialError("Session key could not be parsed") from err


# ---------------------------------------------------------------------------
# Issue (owner)
# ---------------------------------------------------------------------------


def issue_session_key(
    owner_private_key: str,
    chain: str = "baseSepolia",
    *,
    validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
    tokens: list[str] | None = None,
    policy: CapabilityPolicy | None = None,
    now: int | None = None,
) -> SessionKeyResult:
    """Mint an escrow-scoped session key for an agent.

    Args:
        owner_private_key: The owner's master key. Used to sign the enable
            authorization, then discarded.
        chain: Chain name ("baseSepolia", "base", ...).
        validity_seconds: Lifetime when building the default escrow policy.
        tokens: Token symbols for the default escrow policy.
        policy: Custom policy; must still satisfy the escrow safety rules.
        now: Issuance time for the default policy (unix seconds).

    Raises:
        UnsupportedChainError, EmptyTokenSetError, PolicyViolationError,
        InvalidCredentialError (malformed owner key).
    """
    chain_info = get_chain(chain)
    owner = owner_account(owner_private_key)

    if policy is None:
        policy = build_escrow_policy(chain_info.chain_id, validity_seconds, tokens, now)
    elif policy.chain_id != chain_info.chain_id:
        raise PolicyViolationError(
            f"Policy is for chain {policy.chain_id}, not {chain} ({chain_info.chain_id})"
        )
    validate_escrow_policy(policy)

    session: LocalAccount = Account.create()
    smart_account = derive_smart_account_address(owner.address)
    digest = _enable_digest(chain_info.chain_id, smart_account, session.address, policy)
    signed = owner.sign_message(encode_defunct(primitive=digest))

    payload = _SerializedCapability(
        chain_id=chain_info.chain_id,
        owner_address=owner.address,
        smart_account_address=smart_account,
        delegate_address=session.address,
        session_private_key="0x" + bytes(session.key).hex(),
        policy=policy.to_dict(),
        enable_signature="0x" + bytes(signed.signature).hex(),
    )

    logger.info(
        "session_key.issued",
        chain=chain,
        smart_account=smart_account,
        delegate=session.address,
        permissions=len(policy.permissions),
        valid_until=policy.valid_until,
    )
    return SessionKeyResult(
        serialized_session_key=_encode(payload),
        session_key_address=session.address,
        smart_account_address=smart_account,
        valid_until=policy.valid_until,
    )


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------


def decode_session_key(serialized: str) -> tuple[DelegatedCapability, LocalAccount]:
    """Parse a credential and check its internal consistency.

    Verifies that the embedded key belongs to the declared delegate and that
    the owner's signature over (chain, account, delegate, policy) recovers to
    the declared owner. Does NOT check expiry or revocation.
    """
    payload = _decode(serialized)
    if payload.version != CREDENTIAL_VERSION:
        raise InvalidCredentialError(f"Unsupported credential version {payload.version}")

    try:
        policy = CapabilityPolicy.from_dict(payload.policy)
        session = Account.from_key(payload.session_private_key)
    except Exception as err:  # KeyError/ValueError from the policy, eth_keys errors from the key
        raise InvalidCredentialError("Session key contents are malformed") from err

    for field in ("owner_address", "smart_account_address", "delegate_address"):
        if not is_hex_address(getattr(payload, field)):
            raise InvalidCredentialError(f"Credential {field} is not an address")

    if session.address.lower() != payload.delegate_address.lower():
        raise InvalidCredentialError("Embedded session key does not match the delegate address")
    if policy.chain_id != payload.chain_id:
        raise InvalidCredentialError("Policy chain does not match the credential chain")

    digest = _enable_digest(payload.chain_id, payload.smart_account_address, session.address, policy)
    try:
        signer = Account.recover_message(encode_defunct(primitive=digest), signature=payload.enable_signature)
    except Exception as err:  # malformed signature bytes
        raise InvalidCredentialError("Owner authorization signature is malformed") from err
    if signer.lower() != payload.owner_address.lower():
        raise InvalidCredentialError("Owner authorization signature does not match the owner")

    capability = DelegatedCapability(
        chain_id=payload.chain_id,
        owner_address=to_checksum_address(payload.owner_address),
        smart_account_address=to_checksum_address(payload.smart_account_address),
        delegate_address=session.address,
        policy=policy,
        enable_signature=payload.enable_signature,
    )
    return capability, session


# ---------------------------------------------------------------------------
# Load (agent)
# ---------------------------------------------------------------------------


async def load_session_key(
    serialized: str,
    chain: str,
    gateway: ChainGateway,
    *,
    gas_strategy: GasStrategy | str = GasStrategy.AUTO,
    timeout: float = DEFAULT_CHAIN_TIMEOUT,
    clock: Callable[[], int] | None = None,
) -> SessionHandle:
    """Reconstruct a policy-bound signer from a serialized credential.

    Raises:
        UnsupportedChainError: `chain` is not a known chain.
        InvalidCredentialError: malformed, for another chain, outside its
            validity window, or revoked on-chain.
        EscrowTimeoutError: the revocation or balance read timed out.
    """
    chain_info = get_chain(chain)
    clock = clock or (lambda: int(time.time()))
    capability, session = decode_session_key(serialized)

    if capability.chain_id != chain_info.chain_id:
        raise InvalidCredentialError(
            f"Session key was issued for chain {capability.chain_id}, not {chain}"
        )
    now = clock()
    if now > capability.policy.valid_until:
        raise InvalidCredentialError(f"Session key expired at {capability.policy.valid_until}")
    if now < capability.policy.valid_after:
        raise InvalidCredentialError(f"Session key is not valid before {capability.policy.valid_after}")

    # Revocation lives on-chain only; never trust a cached answer.
    revoked = await with_timeout(
        gateway.is_validation_revoked(capability.smart_account_address, capability.validation_id),
        "is_validation_revoked",
        timeout,
    )
    if revoked:
        raise InvalidCredentialError("Session key has been revoked")

    strategy = await resolve_gas_strategy(
        TimeoutBalanceReader(gateway, timeout), capability.smart_account_address, gas_strategy
    )
    signer = DelegatedSigner(
        gateway=gateway,
        account=session,
        smart_account=capability.smart_account_address,
        policy=capability.policy,
        validation=capability.validation,
        gas_strategy=strategy,
        timeout=timeout,
        clock=clock,
    )
    logger.info(
        "session_key.loaded",
        chain=chain,
        smart_account=capability.smart_account_address,
        delegate=capability.delegate_address,
        gas_strategy=strategy.value,
    )
    return SessionHandle(signer=signer, capability=capability, gas_strategy=strategy)


# ---------------------------------------------------------------------------
# Revoke (owner)
# ---------------------------------------------------------------------------


async def revoke_session_key(
    owner_private_key: str,
    serialized: str,
    chain: str,
    gateway: ChainGateway,
    *,
    gas_strategy: GasStrategy | str = GasStrategy.AUTO,
    timeout: float = DEFAULT_CHAIN_TIMEOUT,
) -> str:
    """Uninstall the delegate's permission plugin; return the tx hash.

    The session key stays usable on-chain until this transaction confirms.
    Expired credentials can still be revoked.
    """
    chain_info = get_chain(chain)
    capability, _ = decode_session_key(serialized)
    if capability.chain_id != chain_info.chain_id:
        raise InvalidCredentialError(
            f"Session key was issued for chain {capability.chain_id}, not {chain}"
        )
    owner = owner_account(owner_private_key)
    if owner.address.lower() != capability.owner_address.lower():
        raise InvalidCredentialError("Owner key did not issue this session key")

    owner_signer = await load_owner_signer(
        owner_private_key,
        gateway,
        smart_account=capability.smart_account_address,
        gas_strategy=gas_strategy,
        timeout=timeout,
    )
    call = ChainCall(
        target=capability.smart_account_address,
        signature=abi.ACCOUNT_UNINSTALL_VALIDATION,
        args=(capability.validation_id, "0x", "0x"),
    )
    tx_hash = await owner_signer.submit_call(call)
    logger.info(
        "session_key.revocation_submitted",
        smart_account=capability.smart_account_address,
        delegate=capability.delegate_address,
        tx_hash=tx_hash,
    )
    return tx_hash
