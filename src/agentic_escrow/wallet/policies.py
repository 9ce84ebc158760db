"""Capability policies for delegated session keys.

A policy is a CLOSED whitelist of (target contract, function, argument
constraints) plus a validity window. A call is allowed only if it matches one
permission exactly and the current time falls inside the window; every
constraint of the matching permission must hold. Nothing is implicit.

The escrow policy built here contains, for chain C with escrow contract E:
    - approve(spender == E, amount: any) on every allowed token
    - createEscrow(5 args, unconstrained) on E
    - submitDelivery, accept, finalizeRelease, dispute on E

Usage:
    policy = build_escrow_policy(84532, validity_seconds=3600)
    policy.check(call, now=int(time.time()))   # raises PolicyViolationError
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from eth_utils import is_hex_address, keccak

from agentic_escrow.domain.enums import ParamCondition
from agentic_escrow.domain.exceptions import EmptyTokenSetError, PolicyViolationError
from agentic_escrow.logging_config import get_logger
from agentic_escrow.registry import TOKEN_REGISTRY, escrow_address
from agentic_escrow.wallet import abi

if TYPE_CHECKING:
    from agentic_escrow.domain.models import ChainCall

logger = get_logger(__name__)

DEFAULT_VALIDITY_SECONDS = 86400  # 24 hours

# Functions that would let a delegate call anything through the account.
_ARBITRARY_CALL_FUNCTIONS = frozenset({"execute", "executeBatch", "executeFromExecutor", "delegatecall"})


def _normalize(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("0x"):
        return value.lower()
    return value


@dataclass(frozen=True)
class ArgConstraint:
    """Constraint on one positional argument."""

    condition: ParamCondition
    value: Any

    def matches(self, actual: Any) -> bool:
        expected, actual = _normalize(self.value), _normalize(actual)
        if self.condition is ParamCondition.EQUAL:
            return actual == expected
        if self.condition is ParamCondition.NOT_EQUAL:
            return actual != expected
        try:
            if self.condition is ParamCondition.GREATER_THAN:
                return int(actual) > int(expected)
            if self.condition is ParamCondition.LESS_THAN:
                return int(actual) < int(expected)
        except (TypeError, ValueError):
            return False
        return False

    def to_dict(self) -> dict:
        return {"condition": self.condition.value, "value": self.value}


@dataclass(frozen=True)
class Permission:
    """One allowed call shape. `args` has one entry per positional argument;
    None means that argument is unconstrained."""

    target: str
    signature: str
    args: tuple[ArgConstraint | None, ...] = ()

    @property
    def function(self) -> str:
        return self.signature.split("(", 1)[0]

    @property
    def selector(self) -> str:
        return abi.selector(self.signature)

    def matches(self, target: str, signature: str, args: tuple) -> bool:
        if target.lower() != self.target.lower() or signature != self.signature:
            return False
        if len(args) != len(self.args):
            return False
        return all(c is None or c.matches(a) for c, a in zip(self.args, args))

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "signature": self.signature,
            "selector": self.selector,
            "args": [c.to_dict() if c else None for c in self.args],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Permission:
        args = tuple(
            ArgConstraint(ParamCondition(a["condition"]), a["value"]) if a else None
            for a in data["args"]
        )
        if not is_hex_address(data["target"]):
            raise ValueError(f"Permission target {data['target']!r} is not an address")
        permission = cls(target=data["target"], signature=data["signature"], args=args)
        if data.get("selector") not in (None, permission.selector):
            raise ValueError(f"Selector mismatch for {permission.signature}")
        return permission


@dataclass(frozen=True)
class CapabilityPolicy:
    """Closed permission set plus validity window (unix seconds, inclusive)."""

    chain_id: int
    permissions: tuple[Permission, ...]
    valid_after: int
    valid_until: int

    def is_active(self, now: int) -> bool:
        return self.valid_after <= now <= self.valid_until

    def find(self, call: ChainCall) -> Permission | None:
        for permission in self.permissions:
            if permission.matches(call.target, call.signature, tuple(call.args)):
                return permission
        return None

    def check(self, call: ChainCall, now: int | None = None) -> Permission:
        """Return the matching permission or raise PolicyViolationError."""
        now = int(time.time()) if now is None else now
        if not self.is_active(now):
            raise PolicyViolationError(
                f"Capability not valid at {now} (window {self.valid_after}..{self.valid_until})",
                target=call.target,
                function=call.signature,
            )
        permission = self.find(call)
        if permission is None:
            raise PolicyViolationError(
                f"Call {call.signature} on {call.target} is outside the capability's permitted calls",
                target=call.target,
                function=call.signature,
            )
        return permission

    def to_dict(self) -> dict:
        return {
            "chainId": self.chain_id,
            "validAfter": self.valid_after,
            "validUntil": self.valid_until,
            "permissions": [p.to_dict() for p in self.permissions],
        }

    @classmethod
    def from_dict(cls, data: dict) -> CapabilityPolicy:
        return cls(
            chain_id=int(data["chainId"]),
            valid_after=int(data["validAfter"]),
            valid_until=int(data["validUntil"]),
            permissions=tuple(Permission.from_dict(p) for p in data["permissions"]),
        )

    def digest(self) -> bytes:
        """keccak-256 over the canonical JSON form; what the owner signs."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return keccak(text=canonical)


def build_escrow_policy(
    chain_id: int,
    validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
    tokens: list[str] | None = None,
    now: int | None = None,
) -> CapabilityPolicy:
    """Build the escrow-scoped capability policy for a chain.

    Args:
        chain_id: Target chain; its escrow contract must be registered.
        validity_seconds: Lifetime of the capability from `now`.
        tokens: Token symbols to allow. Defaults to every registered token.
            Unknown symbols are skipped.
        now: Issuance time (unix seconds). Defaults to the wall clock.

    Raises:
        UnsupportedChainError: No escrow contract registered for the chain.
        EmptyTokenSetError: No token resolved to an address.
    """
    escrow = escrow_address(chain_id)
    registry = TOKEN_REGISTRY.get(chain_id, {})
    symbols = list(registry) if tokens is None else tokens
    token_addresses = [registry[s].address for s in symbols if s in registry]
    if not token_addresses:
        raise EmptyTokenSetError(chain_id)

    spender_is_escrow = ArgConstraint(ParamCondition.EQUAL, escrow)
    permissions: list[Permission] = [
        Permission(token, abi.ERC20_APPROVE, (spender_is_escrow, None))
        for token in token_addresses
    ]
    permissions += [
        # escrowId, seller, amount, token, deadline
        Permission(escrow, abi.ESCROW_CREATE, (None, None, None, None, None)),
        Permission(escrow, abi.ESCROW_SUBMIT_DELIVERY, (None, None)),
        Permission(escrow, abi.ESCROW_ACCEPT, (None,)),
        Permission(escrow, abi.ESCROW_FINALIZE_RELEASE, (None,)),
        Permission(escrow, abi.ESCROW_DISPUTE, (None,)),
    ]

    issued_at = int(time.time()) if now is None else now
    policy = CapabilityPolicy(
        chain_id=chain_id,
        permissions=tuple(permissions),
        valid_after=issued_at,
        valid_until=issued_at + validity_seconds,
    )
    logger.debug(
        "policy.built",
        chain_id=chain_id,
        tokens=len(token_addresses),
        permissions=len(permissions),
        valid_until=policy.valid_until,
    )
    return policy


def validate_escrow_policy(policy: CapabilityPolicy) -> None:
    """Reject policies that could escalate beyond escrow use.

    Every approve must pin the spender to the chain's escrow contract and no
    permission may grant an arbitrary-call entry point.
    """
    escrow = escrow_address(policy.chain_id).lower()
    if policy.valid_until <= policy.valid_after:
        raise PolicyViolationError("Capability validity window is empty")
    for permission in policy.permissions:
        if permission.function in _ARBITRARY_CALL_FUNCTIONS:
            raise PolicyViolationError(
                f"Arbitrary-call permission {permission.signature} is not allowed",
                target=permission.target,
                function=permission.signature,
            )
        if permission.signature == abi.ERC20_APPROVE:
            spender = permission.args[0] if permission.args else None
            if (
                spender is None
                or spender.condition is not ParamCondition.EQUAL
                or str(spender.value).lower() != escrow
            ):
                raise PolicyViolationError(
                    f"approve on {permission.target} must be restricted to the escrow contract",
                    target=permission.target,
                    function=permission.signature,
                )
