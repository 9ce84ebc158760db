"""Tests for the delegated and owner signers and gas strategy resolution."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account

from agentic_escrow.domain.enums import GasStrategy
from agentic_escrow.domain.exceptions import (
    EscrowTimeoutError,
    InvalidCredentialError,
    PolicyViolationError,
)
from agentic_escrow.domain.models import AccountValidation, ChainCall
from agentic_escrow.gas import choose_gas_strategy, resolve_gas_strategy
from agentic_escrow.registry import BASE_SEPOLIA_CHAIN_ID, MIN_GAS_BALANCE, escrow_address, get_token
from agentic_escrow.wallet import abi
from agentic_escrow.wallet.policies import build_escrow_policy
from agentic_escrow.wallet.signers import DelegatedSigner, OwnerSigner, load_owner_signer, owner_account

NOW = 1_750_000_000
ESCROW = escrow_address(BASE_SEPOLIA_CHAIN_ID)
USDC = get_token(BASE_SEPOLIA_CHAIN_ID, "USDC").address
SMART_ACCOUNT = "0x" + "aa" * 20
PLUGIN = AccountValidation(owner_address="0x" + "0b" * 20, validation_id="0x02" + "ab" * 4 + "00" * 16)


@pytest.fixture
def gateway() -> MagicMock:
    mock = MagicMock()
    mock.chain_id = BASE_SEPOLIA_CHAIN_ID
    mock.send_call = AsyncMock(return_value="0x" + "01" * 32)
    mock.get_balance = AsyncMock(return_value=0)
    return mock


def _delegated(gateway: MagicMock, timeout: float = 5.0, now: int = NOW) -> DelegatedSigner:
    return DelegatedSigner(
        gateway=gateway,
        account=Account.from_key("0x" + "11" * 32),
        smart_account=SMART_ACCOUNT,
        policy=build_escrow_policy(BASE_SEPOLIA_CHAIN_ID, validity_seconds=3600, now=NOW),
        validation=PLUGIN,
        gas_strategy=GasStrategy.ERC20_SPONSORED,
        timeout=timeout,
        clock=lambda: now,
    )


class TestDelegatedSigner:
    @pytest.mark.asyncio
    async def test_allowed_call_reaches_gateway(self, gateway: MagicMock) -> None:
        signer = _delegated(gateway)
        call = ChainCall(USDC, abi.ERC20_APPROVE, (ESCROW, 100))

        tx_hash = await signer.submit_call(call)

        assert tx_hash == "0x" + "01" * 32
        gateway.send_call.assert_awaited_once()
        kwargs = gateway.send_call.await_args.kwargs
        assert kwargs["sender"] == SMART_ACCOUNT
        assert kwargs["gas_strategy"] is GasStrategy.ERC20_SPONSORED
        assert kwargs["validation"] is PLUGIN

    @pytest.mark.asyncio
    async def test_disallowed_call_never_reaches_gateway(self, gateway: MagicMock) -> None:
        signer = _delegated(gateway)
        call = ChainCall(USDC, "transfer(address,uint256)", ("0x" + "99" * 20, 100))

        with pytest.raises(PolicyViolationError):
            await signer.submit_call(call)
        gateway.send_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_capability_rejected(self, gateway: MagicMock) -> None:
        signer = _delegated(gateway, now=NOW + 3601)
        with pytest.raises(PolicyViolationError):
            await signer.submit_call(ChainCall(ESCROW, abi.ESCROW_ACCEPT, ("0x" + "ab" * 32,)))
        gateway.send_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_slow_gateway_times_out(self, gateway: MagicMock) -> None:
        async def hang(**kwargs: object) -> str:
            await asyncio.sleep(5)
            return "0x"

        gateway.send_call = AsyncMock(side_effect=hang)
        signer = _delegated(gateway, timeout=0.01)

        with pytest.raises(EscrowTimeoutError) as exc_info:
            await signer.submit_call(ChainCall(USDC, abi.ERC20_APPROVE, (ESCROW, 1)))
        assert exc_info.value.retryable is True
        assert exc_info.value.operation == "submit approve"

    def test_root_validation_rejected(self, gateway: MagicMock) -> None:
        with pytest.raises(ValueError, match="root validator"):
            DelegatedSigner(
                gateway=gateway,
                account=Account.create(),
                smart_account=SMART_ACCOUNT,
                policy=build_escrow_policy(BASE_SEPOLIA_CHAIN_ID, now=NOW),
                validation=AccountValidation(owner_address="0x" + "0b" * 20),
                gas_strategy=GasStrategy.ERC20_SPONSORED,
            )

    def test_auto_strategy_rejected(self, gateway: MagicMock) -> None:
        with pytest.raises(ValueError, match="resolved gas strategy"):
            OwnerSigner(
                gateway=gateway,
                account=Account.create(),
                smart_account=SMART_ACCOUNT,
                gas_strategy=GasStrategy.AUTO,
            )


class TestOwnerSigner:
    @pytest.mark.asyncio
    async def test_owner_may_call_anything(self, gateway: MagicMock) -> None:
        signer_owner = Account.create()
        signer = OwnerSigner(
            gateway=gateway,
            account=signer_owner,
            smart_account=SMART_ACCOUNT,
            gas_strategy=GasStrategy.SELF_FUNDED,
        )
        call = ChainCall(ESCROW, abi.ESCROW_CLAIM_ABANDONED, ("0x" + "ab" * 32,))
        signer.check(call)
        await signer.submit_call(call)
        gateway.send_call.assert_awaited_once()
        validation = gateway.send_call.await_args.kwargs["validation"]
        assert validation.is_root
        assert validation.owner_address == signer_owner.address

    @pytest.mark.asyncio
    async def test_load_owner_signer_resolves_gas(self, gateway: MagicMock, buyer_key: str, buyer_account: str) -> None:
        gateway.get_balance = AsyncMock(return_value=MIN_GAS_BALANCE)
        signer = await load_owner_signer(buyer_key, gateway)
        assert signer.address == buyer_account
        assert signer.gas_strategy is GasStrategy.SELF_FUNDED
        gateway.get_balance.assert_awaited_once_with(buyer_account)

    def test_malformed_owner_key(self) -> None:
        with pytest.raises(InvalidCredentialError):
            owner_account("0x1234")


class TestGasStrategy:
    def test_threshold_is_self_funded(self) -> None:
        assert choose_gas_strategy(MIN_GAS_BALANCE) is GasStrategy.SELF_FUNDED

    def test_below_threshold_is_sponsored(self) -> None:
        assert choose_gas_strategy(MIN_GAS_BALANCE - 1) is GasStrategy.ERC20_SPONSORED
        assert choose_gas_strategy(0) is GasStrategy.ERC20_SPONSORED

    @pytest.mark.asyncio
    async def test_auto_reads_balance(self) -> None:
        reader = MagicMock()
        reader.get_balance = AsyncMock(return_value=10**18)
        assert await resolve_gas_strategy(reader, SMART_ACCOUNT) is GasStrategy.SELF_FUNDED
        reader.get_balance.assert_awaited_once_with(SMART_ACCOUNT)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("requested", ["self-funded", "erc20-sponsored"])
    async def test_explicit_strategy_passes_through(self, requested: str) -> None:
        reader = MagicMock()
        reader.get_balance = AsyncMock(return_value=0)
        assert await resolve_gas_strategy(reader, SMART_ACCOUNT, requested) == requested
        reader.get_balance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_strategy(self) -> None:
        with pytest.raises(ValueError):
            await resolve_gas_strategy(MagicMock(), SMART_ACCOUNT, "free")


class TestAbi:
    def test_approve_selector(self) -> None:
        assert abi.selector(abi.ERC20_APPROVE) == "0x095ea7b3"

    def test_encode_call_layout(self) -> None:
        data = abi.encode_call(abi.ERC20_APPROVE, (ESCROW, 5))
        assert data[:4].hex() == "095ea7b3"
        assert len(data) == 4 + 2 * 32
        assert data[-1] == 5

    def test_encode_call_accepts_hex_bytes32(self) -> None:
        data = abi.encode_call(abi.ESCROW_ACCEPT, ("0x" + "ab" * 32,))
        assert data[4:] == bytes.fromhex("ab" * 32)

    def test_argument_count_mismatch(self) -> None:
        with pytest.raises(ValueError, match="takes 2 arguments"):
            abi.encode_call(abi.ERC20_APPROVE, (ESCROW,))
