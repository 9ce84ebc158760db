"""Web3-backed ChainGateway.

Reads go straight to the chain RPC through AsyncWeb3. Writes are wrapped in
the smart account's execute() and submitted as ERC-4337 user operations to
the bundler over JSON-RPC; erc20-sponsored operations are first sent to the
paymaster for sponsorship data.

The nonce key selects the validator that checks the signature: key 0 is the
root (owner) validator, a session key uses its permission plugin. Until the
plugin is installed, operations run in enable mode and carry the owner-signed
install payload. Operations from an undeployed account also carry the
factory call that deploys it.

The returned value of send_call is the hash of the transaction that included
the user operation, so callers can treat it like any other tx hash.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import httpx
from eth_abi import encode
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_bytes
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, Web3Exception

from agentic_escrow.domain.enums import EscrowStatus, GasStrategy
from agentic_escrow.domain.exceptions import ChainSubmissionError, NetworkError
from agentic_escrow.domain.models import EscrowAccount
from agentic_escrow.logging_config import get_logger
from agentic_escrow.registry import escrow_address
from agentic_escrow.wallet import abi
from agentic_escrow.wallet.accounts import account_factory_data

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

    from agentic_escrow.domain.models import AccountValidation, ChainCall, PluginEnable

logger = get_logger(__name__)

ENTRY_POINT_V07 = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"
RECEIPT_POLL_INTERVAL = 2.0
_ZERO_BYTES32 = "0x" + "00" * 32
# Placeholder signature for gas estimation (65 bytes, valid ECDSA shape).
_DUMMY_SIGNATURE = bytes.fromhex("ff" * 64 + "1c")
_ZERO_ADDRESS = "0x" + "00" * 20

VALIDATION_MODE_DEFAULT = b"\x00"
VALIDATION_MODE_ENABLE = b"\x01"


def _hex(value: int) -> str:
    return hex(value)


def _optional_hash(value: bytes) -> str | None:
    hex_value = "0x" + bytes(value).hex()
    return None if hex_value == _ZERO_BYTES32 else hex_value


def _pack_uint128s(high: int, low: int) -> bytes:
    return high.to_bytes(16, "big") + low.to_bytes(16, "big")


def user_operation_hash(op: dict[str, str], entry_point: str, chain_id: int) -> bytes:
    """ERC-4337 v0.7 user operation hash over the unpacked JSON-RPC form."""
    init_code = b""
    if op.get("factory"):
        init_code = bytes.fromhex(op["factory"][2:]) + bytes.fromhex(op.get("factoryData", "0x")[2:])
    paymaster_and_data = b""
    if op.get("paymaster"):
        paymaster_and_data = (
            bytes.fromhex(op["paymaster"][2:])
            + _pack_uint128s(
                int(op["paymasterVerificationGasLimit"], 16), int(op["paymasterPostOpGasLimit"], 16)
            )
            + bytes.fromhex(op.get("paymasterData", "0x")[2:])
        )
    packed = encode(
        ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
        [
            op["sender"],
            int(op["nonce"], 16),
            keccak(init_code),
            keccak(hexstr=op["callData"]),
            _pack_uint128s(int(op["verificationGasLimit"], 16), int(op["callGasLimit"], 16)),
            int(op["preVerificationGas"], 16),
            _pack_uint128s(int(op["maxPriorityFeePerGas"], 16), int(op["maxFeePerGas"], 16)),
            keccak(paymaster_and_data),
        ],
    )
    return keccak(encode(["bytes32", "address", "uint256"], [keccak(packed), entry_point, chain_id]))


def nonce_key(validation: AccountValidation, *, enable: bool = False) -> int:
    """uint192 EntryPoint nonce key: mode (1 byte) | validation id (21) | 0 (2)."""
    if validation.is_root:
        return 0
    mode = VALIDATION_MODE_ENABLE if enable else VALIDATION_MODE_DEFAULT
    return int.from_bytes(mode + to_bytes(hexstr=validation.validation_id) + bytes(2), "big")


def user_operation_signature(signature: bytes, enable: PluginEnable | None = None) -> bytes:
    """The op's signature field; in enable mode it also carries the plugin install."""
    if enable is None:
        return signature
    selector_data = to_bytes(hexstr=abi.selector(abi.ACCOUNT_EXECUTE))
    return bytes.fromhex(_ZERO_ADDRESS[2:]) + encode(
        ["bytes", "bytes", "bytes", "bytes", "bytes"],
        [enable.validator_data, b"", selector_data, enable.enable_signature, signature],
    )


class Web3ChainGateway:
    """ChainGateway over an RPC node plus an ERC-4337 bundler/paymaster."""

    def __init__(
        self,
        *,
        chain_id: int,
        rpc_url: str,
        bundler_url: str,
        paymaster_url: str | None = None,
        entry_point: str = ENTRY_POINT_V07,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.chain_id = chain_id
        self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self._bundler_url = bundler_url
        self._paymaster_url = paymaster_url or bundler_url
        self._entry_point = AsyncWeb3.to_checksum_address(entry_point)
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> Web3ChainGateway:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # JSON-RPC to bundler / paymaster
    # ------------------------------------------------------------------

    async def _rpc(self, url: str, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            response = await self._http.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as err:
            raise NetworkError(f"{method} failed: {err}") from err
        try:
            body = response.json()
        except ValueError as err:
            raise NetworkError(f"{method} returned invalid JSON (HTTP {response.status_code})") from err
        if not isinstance(body, dict):
            raise NetworkError(f"{method} returned an unexpected response shape")
        if body.get("error"):
            error = body["error"]
            raise ChainSubmissionError(f"{method} rejected: {error.get('message', error)}")
        return body.get("result")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> int:
        try:
            return await self._w3.eth.get_balance(AsyncWeb3.to_checksum_address(address))
        except (Web3Exception, httpx.HTTPError, OSError) as err:
            raise NetworkError(f"get_balance failed: {err}") from err

    async def get_escrow(self, escrow_id: str) -> EscrowAccount | None:
        contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(escrow_address(self.chain_id)),
            abi=abi.ESCROW_VIEW_ABI,
        )
        try:
            record = await contract.functions.getEscrow(escrow_id).call()
        except ContractLogicError:
            return None
        except (Web3Exception, httpx.HTTPError, OSError) as err:
            raise NetworkError(f"getEscrow failed: {err}") from err

        (token, buyer, seller, locked, fee, status, created, deadline,
         window, grace, delivered_at, proof_hash, criteria_hash) = record
        if status == 0:
            return None
        return EscrowAccount(
            escrow_id=escrow_id,
            token=token,
            buyer=buyer,
            seller=seller,
            locked_amount=locked,
            platform_fee=fee,
            status=EscrowStatus.from_code(status),
            created_at=created,
            deadline=deadline,
            dispute_window=window,
            abandonment_grace=grace,
            delivered_at=delivered_at,
            proof_hash=_optional_hash(proof_hash),
            criteria_hash=_optional_hash(criteria_hash),
        )

    async def is_validation_revoked(self, smart_account: str, validation_id: str) -> bool:
        address = AsyncWeb3.to_checksum_address(smart_account)
        try:
            if not await self._w3.eth.get_code(address):
                # Undeployed accounts enable the plugin on first use.
                return False
            account = self._w3.eth.contract(address=address, abi=abi.SMART_ACCOUNT_VIEW_ABI)
            return bool(await account.functions.isValidationRevoked(validation_id).call())
        except (Web3Exception, httpx.HTTPError, OSError) as err:
            raise NetworkError(f"isValidationRevoked failed: {err}") from err

    async def _is_deployed(self, address: str) -> bool:
        try:
            return bool(await self._w3.eth.get_code(address))
        except (Web3Exception, httpx.HTTPError, OSError) as err:
            raise NetworkError(f"get_code failed: {err}") from err

    async def _is_installed(self, smart_account: str, validation_id: str) -> bool:
        account = self._w3.eth.contract(address=smart_account, abi=abi.SMART_ACCOUNT_VIEW_ABI)
        try:
            _, hook = await account.functions.validationConfig(validation_id).call()
        except (Web3Exception, httpx.HTTPError, OSError) as err:
            raise NetworkError(f"validationConfig failed: {err}") from err
        return int(hook, 16) != 0

    async def _nonce(self, sender: str, key: int = 0) -> int:
        entry_point = self._w3.eth.contract(address=self._entry_point, abi=abi.ENTRY_POINT_VIEW_ABI)
        try:
            return await entry_point.functions.getNonce(sender, key).call()
        except (Web3Exception, httpx.HTTPError, OSError) as err:
            raise NetworkError(f"getNonce failed: {err}") from err

    async def _fees(self) -> tuple[int, int]:
        """(gas price, max priority fee) in wei."""
        try:
            return await self._w3.eth.gas_price, await self._w3.eth.max_priority_fee
        except (Web3Exception, httpx.HTTPError, OSError) as err:
            raise NetworkError(f"fee lookup failed: {err}") from err

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def send_call(
        self,
        *,
        account: LocalAccount,
        sender: str,
        call: ChainCall,
        gas_strategy: GasStrategy,
        validation: AccountValidation,
    ) -> str:
        sender = AsyncWeb3.to_checksum_address(sender)
        deployed = await self._is_deployed(sender)
        enable: PluginEnable | None = None
        if not validation.is_root and validation.enable is not None:
            if not deployed or not await self._is_installed(sender, validation.validation_id):
                enable = validation.enable

        call_data = abi.encode_execute(
            AsyncWeb3.to_checksum_address(call.target), abi.encode_call(call.signature, call.args)
        )
        gas_price, priority_fee = await self._fees()
        op: dict[str, str] = {
            "sender": sender,
            "nonce": _hex(await self._nonce(sender, nonce_key(validation, enable=enable is not None))),
            "callData": "0x" + call_data.hex(),
            "maxFeePerGas": _hex(gas_price + priority_fee),
            "maxPriorityFeePerGas": _hex(priority_fee),
            "signature": "0x" + user_operation_signature(_DUMMY_SIGNATURE, enable).hex(),
        }
        if not deployed:
            op["factory"], op["factoryData"] = account_factory_data(validation.owner_address)
        if gas_strategy is GasStrategy.ERC20_SPONSORED:
            sponsorship = await self._rpc(
                self._paymaster_url, "pm_sponsorUserOperation", [op, self._entry_point]
            )
            op.update(sponsorship)
        else:
            estimate = await self._rpc(
                self._bundler_url, "eth_estimateUserOperationGas", [op, self._entry_point]
            )
            op.update(estimate)

        op_hash = user_operation_hash(op, self._entry_point, self.chain_id)
        signed = account.sign_message(encode_defunct(primitive=op_hash))
        op["signature"] = "0x" + user_operation_signature(bytes(signed.signature), enable).hex()

        user_op_hash = await self._rpc(self._bundler_url, "eth_sendUserOperation", [op, self._entry_point])
        logger.debug(
            "chain.user_operation_sent",
            sender=sender,
            function=call.function,
            gas_strategy=gas_strategy.value,
            deployed=deployed,
            enable_mode=enable is not None,
            user_op_hash=user_op_hash,
        )
        return await self._wait_for_inclusion(user_op_hash)

    async def _wait_for_inclusion(self, user_op_hash: str) -> str:
        """Poll the bundler until the operation lands; callers bound this with a timeout."""
        while True:
            receipt = await self._rpc(self._bundler_url, "eth_getUserOperationReceipt", [user_op_hash])
            if receipt:
                tx_hash = receipt["receipt"]["transactionHash"]
                if not receipt.get("success", True):
                    raise ChainSubmissionError(
                        f"User operation {user_op_hash} reverted", tx_hash=tx_hash
                    )
                return tx_hash
            await asyncio.sleep(RECEIPT_POLL_INTERVAL)
