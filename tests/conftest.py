"""Shared test fixtures for the agentic escrow test suite.

Provides:
    - A simulated clock, in-memory escrow chain and simulated backend ledger
    - Deterministic owner keys and their smart-account addresses
    - A backend client wired to the simulated ledger
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from agentic_escrow.client import BackendClient
from agentic_escrow.config import get_settings
from agentic_escrow.registry import BASE_SEPOLIA_CHAIN_ID, get_token
from agentic_escrow.simulator import InMemoryChain, LedgerSimulator, SimulatedClock
from agentic_escrow.wallet.accounts import derive_smart_account_address
from agentic_escrow.wallet.signers import owner_account

BUYER_OWNER_KEY = "0x" + "b1" * 32
SELLER_OWNER_KEY = "0x" + "5e" * 32
START_TIME = 1_750_000_000


@pytest.fixture
def buyer_key() -> str:
    return BUYER_OWNER_KEY


@pytest.fixture
def seller_key() -> str:
    return SELLER_OWNER_KEY


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Settings come from defaults, never from the developer's environment."""
    for var in ("WEBHOOK_SIGNING_SECRET", "BACKEND_API_KEY", "GAS_STRATEGY", "CHAIN"):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Chain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> SimulatedClock:
    return SimulatedClock(START_TIME)


@pytest.fixture
def chain(clock: SimulatedClock) -> InMemoryChain:
    return InMemoryChain(BASE_SEPOLIA_CHAIN_ID, clock=clock)


@pytest.fixture
def usdc():
    return get_token(BASE_SEPOLIA_CHAIN_ID, "USDC")


@pytest.fixture
def buyer_account() -> str:
    """The buyer owner's counterfactual smart-account address."""
    return derive_smart_account_address(owner_account(BUYER_OWNER_KEY).address)


@pytest.fixture
def seller_account() -> str:
    return derive_smart_account_address(owner_account(SELLER_OWNER_KEY).address)


@pytest.fixture
def funded_chain(chain: InMemoryChain, usdc, buyer_account: str) -> InMemoryChain:
    """Chain where the buyer's account holds 1,000 USDC and no native gas."""
    chain.mint(usdc.address, buyer_account, usdc.to_base_units(1_000))
    return chain


# ---------------------------------------------------------------------------
# Backend Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger(chain: InMemoryChain) -> LedgerSimulator:
    return LedgerSimulator(chain)


@pytest.fixture
def backend(ledger: LedgerSimulator) -> BackendClient:
    return BackendClient(api_key="test-key", base_url="https://ledger.test", transport=ledger.transport)
