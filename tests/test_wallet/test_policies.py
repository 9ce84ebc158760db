"""Tests for escrow capability policies."""

from __future__ import annotations

import pytest

from agentic_escrow.domain.enums import ParamCondition
from agentic_escrow.domain.exceptions import (
    EmptyTokenSetError,
    PolicyViolationError,
    UnsupportedChainError,
)
from agentic_escrow.domain.models import ChainCall
from agentic_escrow.registry import BASE_MAINNET_CHAIN_ID, BASE_SEPOLIA_CHAIN_ID, escrow_address, get_token
from agentic_escrow.wallet import abi
from agentic_escrow.wallet.policies import (
    ArgConstraint,
    CapabilityPolicy,
    Permission,
    build_escrow_policy,
    validate_escrow_policy,
)

NOW = 1_750_000_000
ESCROW = escrow_address(BASE_SEPOLIA_CHAIN_ID)
USDC = get_token(BASE_SEPOLIA_CHAIN_ID, "USDC").address
ESCROW_ID = "0x" + "ab" * 32
STRANGER = "0x" + "99" * 20


@pytest.fixture
def policy() -> CapabilityPolicy:
    return build_escrow_policy(BASE_SEPOLIA_CHAIN_ID, validity_seconds=3600, now=NOW)


class TestBuildEscrowPolicy:
    def test_one_approve_per_token_plus_escrow_calls(self, policy: CapabilityPolicy) -> None:
        assert len(policy.permissions) == 1 + 5
        signatures = [p.signature for p in policy.permissions]
        assert signatures.count(abi.ERC20_APPROVE) == 1
        assert set(signatures) - {abi.ERC20_APPROVE} == {
            abi.ESCROW_CREATE,
            abi.ESCROW_SUBMIT_DELIVERY,
            abi.ESCROW_ACCEPT,
            abi.ESCROW_FINALIZE_RELEASE,
            abi.ESCROW_DISPUTE,
        }

    def test_approve_spender_pinned_to_escrow(self, policy: CapabilityPolicy) -> None:
        approvals = [p for p in policy.permissions if p.signature == abi.ERC20_APPROVE]
        for permission in approvals:
            spender = permission.args[0]
            assert spender.condition is ParamCondition.EQUAL
            assert spender.value == ESCROW

    def test_no_arbitrary_call_permission(self, policy: CapabilityPolicy) -> None:
        assert all(p.function != "execute" for p in policy.permissions)
        assert all(p.function != "claimAbandoned" for p in policy.permissions)

    def test_validity_window(self, policy: CapabilityPolicy) -> None:
        assert policy.valid_after == NOW
        assert policy.valid_until == NOW + 3600

    def test_unknown_symbols_are_skipped(self) -> None:
        policy = build_escrow_policy(BASE_SEPOLIA_CHAIN_ID, tokens=["USDC", "DOGE"], now=NOW)
        assert len(policy.permissions) == 6

    def test_empty_token_set(self) -> None:
        with pytest.raises(EmptyTokenSetError):
            build_escrow_policy(BASE_SEPOLIA_CHAIN_ID, tokens=["DOGE"], now=NOW)

    def test_chain_without_escrow(self) -> None:
        with pytest.raises(UnsupportedChainError):
            build_escrow_policy(BASE_MAINNET_CHAIN_ID, now=NOW)


class TestPolicyCheck:
    def test_create_escrow_allowed(self, policy: CapabilityPolicy) -> None:
        call = ChainCall(ESCROW, abi.ESCROW_CREATE, (ESCROW_ID, STRANGER, 100, USDC, NOW + 60))
        assert policy.check(call, now=NOW).signature == abi.ESCROW_CREATE

    def test_approve_to_escrow_allowed_any_case(self, policy: CapabilityPolicy) -> None:
        call = ChainCall(USDC.lower(), abi.ERC20_APPROVE, (ESCROW.lower(), 10**30))
        policy.check(call, now=NOW)

    def test_approve_to_other_spender_rejected(self, policy: CapabilityPolicy) -> None:
        call = ChainCall(USDC, abi.ERC20_APPROVE, (STRANGER, 100))
        with pytest.raises(PolicyViolationError) as exc_info:
            policy.check(call, now=NOW)
        assert exc_info.value.function == abi.ERC20_APPROVE
        assert exc_info.value.code == "POLICY_VIOLATION"

    def test_transfer_rejected(self, policy: CapabilityPolicy) -> None:
        call = ChainCall(USDC, "transfer(address,uint256)", (STRANGER, 100))
        with pytest.raises(PolicyViolationError):
            policy.check(call, now=NOW)

    def test_escrow_function_on_other_contract_rejected(self, policy: CapabilityPolicy) -> None:
        call = ChainCall(STRANGER, abi.ESCROW_ACCEPT, (ESCROW_ID,))
        with pytest.raises(PolicyViolationError):
            policy.check(call, now=NOW)

    def test_claim_abandoned_rejected(self, policy: CapabilityPolicy) -> None:
        call = ChainCall(ESCROW, abi.ESCROW_CLAIM_ABANDONED, (ESCROW_ID,))
        with pytest.raises(PolicyViolationError):
            policy.check(call, now=NOW)

    def test_window_is_inclusive(self, policy: CapabilityPolicy) -> None:
        call = ChainCall(ESCROW, abi.ESCROW_ACCEPT, (ESCROW_ID,))
        policy.check(call, now=NOW)
        policy.check(call, now=NOW + 3600)
        with pytest.raises(PolicyViolationError, match="not valid"):
            policy.check(call, now=NOW + 3601)
        with pytest.raises(PolicyViolationError, match="not valid"):
            policy.check(call, now=NOW - 1)


class TestArgConstraint:
    def test_comparisons(self) -> None:
        assert ArgConstraint(ParamCondition.GREATER_THAN, 10).matches(11)
        assert not ArgConstraint(ParamCondition.GREATER_THAN, 10).matches(10)
        assert ArgConstraint(ParamCondition.LESS_THAN, 10).matches(9)
        assert ArgConstraint(ParamCondition.NOT_EQUAL, STRANGER).matches(ESCROW)

    def test_non_numeric_comparison_fails_closed(self) -> None:
        assert not ArgConstraint(ParamCondition.GREATER_THAN, 10).matches("lots")


class TestSerialization:
    def test_dict_round_trip_preserves_digest(self, policy: CapabilityPolicy) -> None:
        restored = CapabilityPolicy.from_dict(policy.to_dict())
        assert restored == policy
        assert restored.digest() == policy.digest()

    def test_selector_mismatch_rejected(self, policy: CapabilityPolicy) -> None:
        data = policy.to_dict()
        data["permissions"][0]["selector"] = "0xdeadbeef"
        with pytest.raises(ValueError, match="Selector mismatch"):
            CapabilityPolicy.from_dict(data)


class TestValidateEscrowPolicy:
    def _policy(self, *permissions: Permission) -> CapabilityPolicy:
        return CapabilityPolicy(BASE_SEPOLIA_CHAIN_ID, permissions, NOW, NOW + 60)

    def test_built_policy_is_valid(self, policy: CapabilityPolicy) -> None:
        validate_escrow_policy(policy)

    def test_execute_permission_rejected(self) -> None:
        policy = self._policy(Permission(STRANGER, abi.ACCOUNT_EXECUTE, (None, None)))
        with pytest.raises(PolicyViolationError, match="Arbitrary-call"):
            validate_escrow_policy(policy)

    def test_unconstrained_approve_rejected(self) -> None:
        policy = self._policy(Permission(USDC, abi.ERC20_APPROVE, (None, None)))
        with pytest.raises(PolicyViolationError, match="escrow contract"):
            validate_escrow_policy(policy)

    def test_empty_window_rejected(self) -> None:
        policy = CapabilityPolicy(BASE_SEPOLIA_CHAIN_ID, (), NOW, NOW)
        with pytest.raises(PolicyViolationError):
            validate_escrow_policy(policy)
