"""Smart-account address derivation and deployment data.

Accounts are ERC-1967 proxies created by the account factory with CREATE2.
The salt commits to the account's initialize() calldata (root validator =
the owner's ECDSA key) and an index, so the address is known before
deployment and is the same on every chain.
"""

from __future__ import annotations

from eth_utils import keccak, to_checksum_address

from agentic_escrow.wallet import abi

ACCOUNT_FACTORY_ADDRESS = "0xaac5D4240AF87249B3f71BC8E4A2cae074A3E419"
ACCOUNT_META_FACTORY_ADDRESS = "0xd703aaE79538628d27099B8c4f621bE4CCd142d5"
ACCOUNT_IMPLEMENTATION_ADDRESS = "0xBAC849bB641841b44E965fB01A4Bf5F074f84b4D"
ECDSA_VALIDATOR_ADDRESS = "0x845ADb2C711129d4f3966735eD98a9F09fC4cE57"
_ZERO_ADDRESS = "0x" + "00" * 20

# Validation type prefix for plain validator modules in a bytes21 validation id.
_VALIDATOR_VALIDATION_TYPE = b"\x01"

# ERC-1967 minimal proxy creation code, split around the implementation address.
_PROXY_CODE_PREFIX = bytes.fromhex("603d3d8160223d3973")
_PROXY_CODE_SUFFIX = bytes.fromhex(
    "6009"
    "5155f3363d3d373d3d363d7f360894a13ba1a3210667c828492db98dca3e2076"
    "cc3735a920a3ca505d382bbc545af43d6000803e6038573d6000fd5b3d6000f3"
)


def proxy_init_code_hash(implementation: str = ACCOUNT_IMPLEMENTATION_ADDRESS) -> bytes:
    return keccak(_PROXY_CODE_PREFIX + bytes.fromhex(implementation[2:]) + _PROXY_CODE_SUFFIX)


def root_validation_id() -> str:
    return "0x" + (_VALIDATOR_VALIDATION_TYPE + bytes.fromhex(ECDSA_VALIDATOR_ADDRESS[2:])).hex()


def account_init_data(owner_address: str) -> bytes:
    """initialize() calldata: ECDSA root validator for `owner_address`, no hook."""
    return abi.encode_call(
        abi.ACCOUNT_INITIALIZE,
        (root_validation_id(), _ZERO_ADDRESS, bytes.fromhex(owner_address[2:]), b"", []),
    )


def _salt(index: int) -> bytes:
    return index.to_bytes(32, "big")


def derive_smart_account_address(owner_address: str, index: int = 0) -> str:
    """Counterfactual CREATE2 address of the owner's smart account.

    The same owner gets the same account for a given index, before and after
    deployment.
    """
    salt = keccak(account_init_data(owner_address) + _salt(index))
    raw = keccak(
        b"\xff" + bytes.fromhex(ACCOUNT_FACTORY_ADDRESS[2:]) + salt + proxy_init_code_hash()
    )
    return to_checksum_address(raw[12:])


def account_factory_data(owner_address: str, index: int = 0) -> tuple[str, str]:
    """(factory, factoryData) for the user operation that deploys the account."""
    data = abi.encode_call(
        abi.FACTORY_DEPLOY,
        (ACCOUNT_FACTORY_ADDRESS, account_init_data(owner_address), _salt(index)),
    )
    return ACCOUNT_META_FACTORY_ADDRESS, "0x" + data.hex()
