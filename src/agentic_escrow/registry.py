"""Chain, contract and token registries.

Immutable configuration data loaded once at import. Lookups are pure and
never mutate anything; callers cannot add entries at runtime.

Usage:
    from agentic_escrow.registry import get_chain, get_token, escrow_address
    chain = get_chain("baseSepolia")
    usdc = get_token(chain.chain_id, "USDC")
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from agentic_escrow.domain.exceptions import UnregisteredTokenError, UnsupportedChainError
from agentic_escrow.domain.models import ChainInfo, TokenInfo

POLYGON_AMOY_CHAIN_ID = 80002
POLYGON_MAINNET_CHAIN_ID = 137
BASE_SEPOLIA_CHAIN_ID = 84532
BASE_MAINNET_CHAIN_ID = 8453

# Minimum native balance (wei) for self-funded gas: 0.01 ETH, enough for a
# handful of operations on Base. Below it, "auto" falls back to sponsorship.
MIN_GAS_BALANCE = 10_000_000_000_000_000

CHAINS: Mapping[str, ChainInfo] = MappingProxyType(
    {
        "polygon": ChainInfo("polygon", POLYGON_MAINNET_CHAIN_ID, "https://polygon-rpc.com"),
        "polygonAmoy": ChainInfo("polygonAmoy", POLYGON_AMOY_CHAIN_ID, "https://rpc-amoy.polygon.technology"),
        "baseSepolia": ChainInfo("baseSepolia", BASE_SEPOLIA_CHAIN_ID, "https://sepolia.base.org"),
        "base": ChainInfo("base", BASE_MAINNET_CHAIN_ID, "https://mainnet.base.org"),
    }
)

# Escrow V2 (UUPS upgradeable). Mainnet entries are added on deployment.
ESCROW_ADDRESSES: Mapping[int, str] = MappingProxyType(
    {
        BASE_SEPOLIA_CHAIN_ID: "0x1Aed68edafC24cc936cFabEcF88012CdF5DA0601",
    }
)

def _tokens(*tokens: TokenInfo) -> Mapping[str, TokenInfo]:
    return MappingProxyType({t.symbol: t for t in tokens})


TOKEN_REGISTRY: Mapping[int, Mapping[str, TokenInfo]] = MappingProxyType(
    {
        POLYGON_MAINNET_CHAIN_ID: _tokens(
            # Tier 1
            TokenInfo("USDC", "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359", 6, 1),
            TokenInfo("WPOL", "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270", 18, 1),
            TokenInfo("USDT", "0xc2132D05D31c914a87C6611C10748AEb04B58e8F", 6, 1),
            TokenInfo("DAI", "0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063", 18, 1),
            # Tier 2
            TokenInfo("AAVE", "0xD6DF932A45C0f255f85145f286eA0b292B21C90B", 18, 2),
            TokenInfo("WETH", "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619", 18, 2),
            TokenInfo("UNI", "0xb33EaAd8d922B1083446DC23f610c2567fB5180f", 18, 2),
            # Tier 3
            TokenInfo("WBTC", "0x1BFD67037B42Cf73acF2047067bd4F2C47D9BfD6", 8, 3),
        ),
        BASE_SEPOLIA_CHAIN_ID: _tokens(
            TokenInfo("USDC", "0x036CbD53842c5426634e7929541eC2318f3dCF7e", 6, 1),
        ),
        BASE_MAINNET_CHAIN_ID: _tokens(
            TokenInfo("USDC", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6, 1),
        ),
    }
)


def get_chain(name: str) -> ChainInfo:
    """Resolve a chain by name ("baseSepolia", "base", ...)."""
    chain = CHAINS.get(name)
    if chain is None:
        raise UnsupportedChainError(name, f"known chains: {', '.join(CHAINS)}")
    return chain


def escrow_address(chain_id: int) -> str:
    """Escrow contract address for a chain, or UnsupportedChainError."""
    address = ESCROW_ADDRESSES.get(chain_id)
    if address is None:
        raise UnsupportedChainError(chain_id, "no escrow contract registered")
    return address


def get_token(chain_id: int, symbol: str) -> TokenInfo:
    """Look up a token by chain and symbol."""
    token = TOKEN_REGISTRY.get(chain_id, {}).get(symbol)
    if token is None:
        raise UnregisteredTokenError(chain_id, symbol)
    return token


def get_tokens_by_tier(chain_id: int, tier: int) -> list[TokenInfo]:
    """All tokens on a chain whose tier is at most `tier`."""
    return [t for t in TOKEN_REGISTRY.get(chain_id, {}).values() if t.tier <= tier]


def is_token_supported(chain_id: int, symbol: str) -> bool:
    return symbol in TOKEN_REGISTRY.get(chain_id, {})


def token_symbols(chain_id: int) -> list[str]:
    """All registered token symbols for a chain, in registry order."""
    return list(TOKEN_REGISTRY.get(chain_id, {}))
