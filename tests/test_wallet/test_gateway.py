"""Tests for the web3 gateway: user operation hashing, validator selection
and the bundler / paymaster submission flow.

No node is contacted: chain reads and JSON-RPC calls are stubbed on the
gateway instance.
"""

from __future__ import annotations

import copy
from unittest.mock import AsyncMock

import httpx
import pytest
from eth_abi import decode, encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak

from agentic_escrow.domain.enums import GasStrategy
from agentic_escrow.domain.exceptions import ChainSubmissionError, NetworkError
from agentic_escrow.domain.models import AccountValidation, ChainCall, PluginEnable
from agentic_escrow.registry import BASE_SEPOLIA_CHAIN_ID, escrow_address, get_token
from agentic_escrow.wallet import abi
from agentic_escrow.wallet.accounts import ACCOUNT_META_FACTORY_ADDRESS, account_factory_data
from agentic_escrow.wallet.gateway import (
    ENTRY_POINT_V07,
    Web3ChainGateway,
    nonce_key,
    user_operation_hash,
    user_operation_signature,
)

SENDER = "0x" + "aA" * 20
VALIDATION_ID = "0x02" + "12345678" + "00" * 16
TX_HASH = "0x" + "cd" * 32
USER_OP_HASH = "0x" + "ef" * 32

BASE_OP = {
    "sender": "0x1111111111111111111111111111111111111111",
    "nonce": "0x5",
    "callData": "0xdeadbeef",
    "verificationGasLimit": "0x186a0",
    "callGasLimit": "0xc350",
    "preVerificationGas": "0xbb8",
    "maxPriorityFeePerGas": "0x3b9aca00",
    "maxFeePerGas": "0x77359400",
    "signature": "0x",
}


def _gateway(**kwargs: object) -> Web3ChainGateway:
    return Web3ChainGateway(
        chain_id=BASE_SEPOLIA_CHAIN_ID,
        rpc_url="http://rpc.test",
        bundler_url="http://bundler.test",
        paymaster_url="http://paymaster.test",
        **kwargs,
    )


def _approve() -> ChainCall:
    usdc = get_token(BASE_SEPOLIA_CHAIN_ID, "USDC").address
    return ChainCall(usdc, abi.ERC20_APPROVE, (escrow_address(BASE_SEPOLIA_CHAIN_ID), 10))


class TestUserOperationHash:
    def test_matches_packed_v07_layout(self) -> None:
        account_gas_limits = bytes.fromhex("000000000000000000000000000186a0" "0000000000000000000000000000c350")
        gas_fees = bytes.fromhex("0000000000000000000000003b9aca00" "00000000000000000000000077359400")
        inner = encode(
            ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
            [
                BASE_OP["sender"],
                5,
                keccak(b""),
                keccak(bytes.fromhex("deadbeef")),
                account_gas_limits,
                3000,
                gas_fees,
                keccak(b""),
            ],
        )
        expected = keccak(
            encode(["bytes32", "address", "uint256"], [keccak(inner), ENTRY_POINT_V07, BASE_SEPOLIA_CHAIN_ID])
        )
        assert user_operation_hash(BASE_OP, ENTRY_POINT_V07, BASE_SEPOLIA_CHAIN_ID) == expected

    def test_init_code_and_paymaster_are_packed(self) -> None:
        factory, factory_data = "0x" + "22" * 20, "0xabcd"
        paymaster = "0x" + "33" * 20
        op = dict(
            BASE_OP,
            factory=factory,
            factoryData=factory_data,
            paymaster=paymaster,
            paymasterVerificationGasLimit="0x10",
            paymasterPostOpGasLimit="0x20",
            paymasterData="0x99",
        )
        paymaster_and_data = bytes.fromhex("33" * 20 + "00" * 15 + "10" + "00" * 15 + "20" + "99")
        inner = encode(
            ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
            [
                op["sender"],
                5,
                keccak(bytes.fromhex("22" * 20 + "abcd")),
                keccak(bytes.fromhex("deadbeef")),
                (100_000).to_bytes(16, "big") + (50_000).to_bytes(16, "big"),
                3000,
                (1_000_000_000).to_bytes(16, "big") + (2_000_000_000).to_bytes(16, "big"),
                keccak(paymaster_and_data),
            ],
        )
        expected = keccak(
            encode(["bytes32", "address", "uint256"], [keccak(inner), ENTRY_POINT_V07, BASE_SEPOLIA_CHAIN_ID])
        )
        assert user_operation_hash(op, ENTRY_POINT_V07, BASE_SEPOLIA_CHAIN_ID) == expected

    def test_signature_field_is_not_hashed(self) -> None:
        signed = dict(BASE_OP, signature="0x" + "ab" * 65)
        assert user_operation_hash(signed, ENTRY_POINT_V07, 1) == user_operation_hash(BASE_OP, ENTRY_POINT_V07, 1)

    def test_chain_id_is_hashed(self) -> None:
        assert user_operation_hash(BASE_OP, ENTRY_POINT_V07, 1) != user_operation_hash(
            BASE_OP, ENTRY_POINT_V07, BASE_SEPOLIA_CHAIN_ID
        )


class TestValidatorSelection:
    def test_root_uses_key_zero(self) -> None:
        assert nonce_key(AccountValidation(owner_address=SENDER)) == 0
        assert nonce_key(AccountValidation(owner_address=SENDER), enable=True) == 0

    def test_plugin_key_layout(self) -> None:
        validation = AccountValidation(owner_address=SENDER, validation_id=VALIDATION_ID)

        default = nonce_key(validation).to_bytes(24, "big")
        enable = nonce_key(validation, enable=True).to_bytes(24, "big")

        assert default[0] == 0x00
        assert enable[0] == 0x01
        assert default[1:22] == enable[1:22] == bytes.fromhex(VALIDATION_ID[2:])
        assert default[22:] == b"\x00\x00"

    def test_plain_signature_without_enable(self) -> None:
        assert user_operation_signature(b"\x01" * 65) == b"\x01" * 65

    def test_enable_signature_layout(self) -> None:
        enable = PluginEnable(validator_data=b"install", enable_signature=b"\x02" * 65)

        packed = user_operation_signature(b"\x01" * 65, enable)

        assert packed[:20] == bytes(20)
        validator_data, hook_data, selector_data, enable_sig, op_sig = decode(
            ["bytes", "bytes", "bytes", "bytes", "bytes"], packed[20:]
        )
        assert validator_data == b"install"
        assert hook_data == b""
        assert "0x" + selector_data.hex() == abi.selector(abi.ACCOUNT_EXECUTE)
        assert enable_sig == b"\x02" * 65
        assert op_sig == b"\x01" * 65


class TestSendCall:
    @pytest.fixture
    def rpc_calls(self) -> list[tuple[str, str, list]]:
        return []

    @pytest.fixture
    def gateway(self, rpc_calls: list[tuple[str, str, list]]) -> Web3ChainGateway:
        gateway = _gateway()

        async def rpc(url: str, method: str, params: list) -> object:
            rpc_calls.append((url, method, copy.deepcopy(params)))
            if method == "pm_sponsorUserOperation":
                return {
                    "callGasLimit": "0xc350",
                    "verificationGasLimit": "0x186a0",
                    "preVerificationGas": "0xbb8",
                    "paymaster": "0x" + "33" * 20,
                    "paymasterVerificationGasLimit": "0x10",
                    "paymasterPostOpGasLimit": "0x20",
                    "paymasterData": "0x99",
                }
            if method == "eth_estimateUserOperationGas":
                return {"callGasLimit": "0xc350", "verificationGasLimit": "0x186a0", "preVerificationGas": "0xbb8"}
            if method == "eth_sendUserOperation":
                return USER_OP_HASH
            return {"receipt": {"transactionHash": TX_HASH}, "success": True}

        gateway._rpc = AsyncMock(side_effect=rpc)
        gateway._fees = AsyncMock(return_value=(1_000_000_000, 100_000_000))
        gateway._nonce = AsyncMock(return_value=7)
        gateway._is_deployed = AsyncMock(return_value=True)
        gateway._is_installed = AsyncMock(return_value=True)
        return gateway

    def _sent_op(self, rpc_calls: list[tuple[str, str, list]]) -> dict[str, str]:
        (op, entry_point) = next(params for _, method, params in rpc_calls if method == "eth_sendUserOperation")
        assert entry_point == ENTRY_POINT_V07
        return op

    @pytest.mark.asyncio
    async def test_self_funded_owner_call(
        self, gateway: Web3ChainGateway, rpc_calls: list[tuple[str, str, list]]
    ) -> None:
        owner = Account.create()
        validation = AccountValidation(owner_address=owner.address)

        tx_hash = await gateway.send_call(
            account=owner, sender=SENDER, call=_approve(), gas_strategy=GasStrategy.SELF_FUNDED, validation=validation
        )

        assert tx_hash == TX_HASH
        assert [(url, method) for url, method, _ in rpc_calls] == [
            ("http://bundler.test", "eth_estimateUserOperationGas"),
            ("http://bundler.test", "eth_sendUserOperation"),
            ("http://bundler.test", "eth_getUserOperationReceipt"),
        ]
        op = self._sent_op(rpc_calls)
        assert "factory" not in op
        assert "paymaster" not in op
        assert op["nonce"] == "0x7"
        gateway._nonce.assert_awaited_once_with(op["sender"], 0)
        gateway._is_installed.assert_not_awaited()

        signature = bytes.fromhex(op["signature"][2:])
        assert len(signature) == 65
        op_hash = user_operation_hash(op, ENTRY_POINT_V07, BASE_SEPOLIA_CHAIN_ID)
        assert Account.recover_message(encode_defunct(primitive=op_hash), signature=signature) == owner.address

    @pytest.mark.asyncio
    async def test_sponsored_first_session_call_deploys_and_enables(
        self, gateway: Web3ChainGateway, rpc_calls: list[tuple[str, str, list]]
    ) -> None:
        owner, session = Account.create(), Account.create()
        enable = PluginEnable(validator_data=b"install-data", enable_signature=b"\x07" * 65)
        validation = AccountValidation(owner_address=owner.address, validation_id=VALIDATION_ID, enable=enable)
        gateway._is_deployed = AsyncMock(return_value=False)

        await gateway.send_call(
            account=session,
            sender=SENDER,
            call=_approve(),
            gas_strategy=GasStrategy.ERC20_SPONSORED,
            validation=validation,
        )

        assert rpc_calls[0][:2] == ("http://paymaster.test", "pm_sponsorUserOperation")
        op = self._sent_op(rpc_calls)
        assert (op["factory"], op["factoryData"]) == account_factory_data(owner.address)
        assert op["factory"] == ACCOUNT_META_FACTORY_ADDRESS
        assert op["paymaster"] == "0x" + "33" * 20
        gateway._nonce.assert_awaited_once_with(op["sender"], nonce_key(validation, enable=True))
        gateway._is_installed.assert_not_awaited()

        packed = bytes.fromhex(op["signature"][2:])
        validator_data, _, _, enable_sig, op_sig = decode(["bytes"] * 5, packed[20:])
        assert validator_data == b"install-data"
        assert enable_sig == b"\x07" * 65
        op_hash = user_operation_hash(op, ENTRY_POINT_V07, BASE_SEPOLIA_CHAIN_ID)
        assert Account.recover_message(encode_defunct(primitive=op_hash), signature=op_sig) == session.address

    @pytest.mark.asyncio
    async def test_installed_plugin_skips_enable(
        self, gateway: Web3ChainGateway, rpc_calls: list[tuple[str, str, list]]
    ) -> None:
        enable = PluginEnable(validator_data=b"install-data", enable_signature=b"\x07" * 65)
        validation = AccountValidation(owner_address=SENDER, validation_id=VALIDATION_ID, enable=enable)

        await gateway.send_call(
            account=Account.create(),
            sender=SENDER,
            call=_approve(),
            gas_strategy=GasStrategy.ERC20_SPONSORED,
            validation=validation,
        )

        op = self._sent_op(rpc_calls)
        gateway._is_installed.assert_awaited_once_with(op["sender"], VALIDATION_ID)
        gateway._nonce.assert_awaited_once_with(op["sender"], nonce_key(validation))
        assert len(bytes.fromhex(op["signature"][2:])) == 65
        assert "factory" not in op

    @pytest.mark.asyncio
    async def test_reverted_operation(self, gateway: Web3ChainGateway) -> None:
        async def rpc(url: str, method: str, params: list) -> object:
            if method == "eth_getUserOperationReceipt":
                return {"receipt": {"transactionHash": TX_HASH}, "success": False}
            if method == "eth_sendUserOperation":
                return USER_OP_HASH
            return {"callGasLimit": "0x1", "verificationGasLimit": "0x1", "preVerificationGas": "0x1"}

        gateway._rpc = AsyncMock(side_effect=rpc)
        with pytest.raises(ChainSubmissionError, match="reverted"):
            await gateway.send_call(
                account=Account.create(),
                sender=SENDER,
                call=_approve(),
                gas_strategy=GasStrategy.SELF_FUNDED,
                validation=AccountValidation(owner_address=SENDER),
            )


class TestJsonRpc:
    def _gateway_replying(self, response: httpx.Response) -> Web3ChainGateway:
        transport = httpx.MockTransport(lambda request: response)
        return _gateway(http_client=httpx.AsyncClient(transport=transport))

    @pytest.mark.asyncio
    async def test_non_json_reply(self) -> None:
        gateway = self._gateway_replying(httpx.Response(200, text="<html>Bad gateway</html>"))
        with pytest.raises(NetworkError, match="invalid JSON"):
            await gateway._rpc("http://bundler.test", "eth_sendUserOperation", [])

    @pytest.mark.asyncio
    async def test_non_object_reply(self) -> None:
        gateway = self._gateway_replying(httpx.Response(200, json=[1, 2]))
        with pytest.raises(NetworkError, match="unexpected response shape"):
            await gateway._rpc("http://bundler.test", "eth_sendUserOperation", [])

    @pytest.mark.asyncio
    async def test_rpc_error_is_submission_error(self) -> None:
        body = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32500, "message": "AA23 reverted"}}
        gateway = self._gateway_replying(httpx.Response(200, json=body))
        with pytest.raises(ChainSubmissionError, match="AA23 reverted"):
            await gateway._rpc("http://bundler.test", "eth_sendUserOperation", [])

    @pytest.mark.asyncio
    async def test_http_error_is_network_error(self) -> None:
        gateway = self._gateway_replying(httpx.Response(503, text="unavailable"))
        with pytest.raises(NetworkError):
            await gateway._rpc("http://bundler.test", "eth_sendUserOperation", [])

    @pytest.mark.asyncio
    async def test_result_returned(self) -> None:
        gateway = self._gateway_replying(httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0x1"}))
        assert await gateway._rpc("http://bundler.test", "eth_chainId", []) == "0x1"
        await gateway.close()
