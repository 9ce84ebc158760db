"""Function signatures, calldata encoding and the view ABIs this package reads.

Signatures are the canonical Solidity form; they key capability permissions
and produce 4-byte selectors.
"""

from __future__ import annotations

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector

# --- ERC-20 ---
ERC20_APPROVE = "approve(address,uint256)"

# --- Escrow V2 ---
ESCROW_CREATE = "createEscrow(bytes32,address,uint256,address,uint256)"
ESCROW_SUBMIT_DELIVERY = "submitDelivery(bytes32,bytes32)"
ESCROW_ACCEPT = "accept(bytes32)"
ESCROW_FINALIZE_RELEASE = "finalizeRelease(bytes32)"
ESCROW_DISPUTE = "dispute(bytes32)"
ESCROW_CLAIM_ABANDONED = "claimAbandoned(bytes32)"

# --- Smart account ---
ACCOUNT_EXECUTE = "execute(bytes32,bytes)"
ACCOUNT_UNINSTALL_VALIDATION = "uninstallValidation(bytes21,bytes,bytes)"
ACCOUNT_INITIALIZE = "initialize(bytes21,address,bytes,bytes,bytes[])"
FACTORY_DEPLOY = "deployWithFactory(address,bytes,bytes32)"

# ERC-7579 execution mode: single call, default exec type.
SINGLE_CALL_MODE = bytes(32)


def selector(signature: str) -> str:
    """0x-prefixed 4-byte selector for a canonical function signature."""
    return "0x" + function_signature_to_4byte_selector(signature).hex()


def argument_types(signature: str) -> list[str]:
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [t for t in inner.split(",") if t]


def _coerce(abi_type: str, value: object) -> object:
    if abi_type.startswith("bytes") and isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    return value


def encode_call(signature: str, args: tuple) -> bytes:
    """selector + ABI-encoded arguments. Hex strings are accepted for bytes types."""
    types = argument_types(signature)
    if len(types) != len(args):
        raise ValueError(f"{signature} takes {len(types)} arguments, got {len(args)}")
    values = [_coerce(t, v) for t, v in zip(types, args)]
    return function_signature_to_4byte_selector(signature) + encode(types, values)


def encode_execute(target: str, data: bytes, value: int = 0) -> bytes:
    """Wrap one call in the smart account's execute(mode, executionCalldata)."""
    execution = bytes.fromhex(target[2:]) + value.to_bytes(32, "big") + data
    return encode_call(ACCOUNT_EXECUTE, (SINGLE_CALL_MODE, execution))


def _view(name: str, inputs: list[tuple[str, str]], outputs: list[tuple[str, str]]) -> dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


ESCROW_VIEW_ABI = [
    _view(
        "getEscrow",
        [("escrowId", "bytes32")],
        [
            ("token", "address"),
            ("buyer", "address"),
            ("seller", "address"),
            ("lockedAmount", "uint256"),
            ("platformFee", "uint256"),
            ("status", "uint8"),
            ("createdAt", "uint256"),
            ("deadline", "uint256"),
            ("disputeWindow", "uint256"),
            ("abandonmentGrace", "uint256"),
            ("deliveredAt", "uint256"),
            ("proofHash", "bytes32"),
            ("criteriaHash", "bytes32"),
        ],
    ),
]

ENTRY_POINT_VIEW_ABI = [
    _view("getNonce", [("sender", "address"), ("key", "uint192")], [("nonce", "uint256")]),
]

SMART_ACCOUNT_VIEW_ABI = [
    _view("isValidationRevoked", [("vId", "bytes21")], [("", "bool")]),
    _view("validationConfig", [("vId", "bytes21")], [("nonce", "uint32"), ("hook", "address")]),
]
