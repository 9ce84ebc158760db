#!/usr/bin/env python3
"""Agentic Escrow — End-to-End Simulation.

Runs three scenarios with a BuyerAgent and a SellerAgent against an
in-memory escrow contract and a simulated backend ledger, on a simulated
clock. Nothing touches a network.

    Scenario 1: Happy Path
        - Owner issues an escrow-scoped session key; the buyer agent loads it
        - Buyer funds 100 USDC (2 USDC fee, 98 locked) and the ledger verifies it
        - Seller delivers; buyer confirms and releases -> Released / completed

    Scenario 2: Dispute Window
        - Seller delivers; the dispute window lapses
        - Buyer's late on-chain dispute is refused locally
        - Seller finalizes the release

    Scenario 3: Abandoned Escrow
        - Buyer funds; the seller never delivers
        - Claim before deadline + grace is refused locally
        - The session key cannot claim (outside its capability)
        - The owner's wallet claims after the grace period

Usage:
    uv run python simulation.py
    uv run python simulation.py --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio

from agentic_escrow.agents import BuyerAgent, SellerAgent
from agentic_escrow.client import BackendClient
from agentic_escrow.domain.exceptions import EscrowError
from agentic_escrow.domain.models import DEFAULT_ABANDONMENT_GRACE, DEFAULT_DISPUTE_WINDOW
from agentic_escrow.logging_config import get_logger, setup_logging
from agentic_escrow.registry import BASE_SEPOLIA_CHAIN_ID, get_token
from agentic_escrow.simulator import InMemoryChain, LedgerSimulator, SimulatedClock
from agentic_escrow.wallet.accounts import derive_smart_account_address
from agentic_escrow.wallet.session_keys import issue_session_key
from agentic_escrow.wallet.signers import owner_account

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

CHAIN = "baseSepolia"
BUYER_OWNER_KEY = "0x" + "b1" * 32
SELLER_OWNER_KEY = "0x" + "5e" * 32
USDC = get_token(BASE_SEPOLIA_CHAIN_ID, "USDC")
HUNDRED_USDC = USDC.to_base_units(100)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def usdc(amount: int) -> str:
    return f"{amount / 10**USDC.decimals:,.2f} USDC"


async def expect_refusal(label: str, operation) -> None:
    """Run an operation that must be refused and print why."""
    try:
        await operation
    except EscrowError as exc:
        print(f"  ✅ {label} refused: [{exc.code}] {exc.message}")
    else:
        raise AssertionError(f"{label} was not refused")


# ---------------------------------------------------------------------------
# World setup
# ---------------------------------------------------------------------------
class World:
    """One simulated chain + ledger + a buyer and a seller agent."""

    def __init__(self) -> None:
        self.clock = SimulatedClock()
        self.chain = InMemoryChain(BASE_SEPOLIA_CHAIN_ID, clock=self.clock)
        self.ledger = LedgerSimulator(self.chain)
        buyer_owner = owner_account(BUYER_OWNER_KEY)
        self.buyer_account = derive_smart_account_address(buyer_owner.address)
        self.chain.mint(USDC.address, self.buyer_account, USDC.to_base_units(1_000))

    def backend(self) -> BackendClient:
        return BackendClient(api_key="sim", base_url="https://ledger.sim", transport=self.ledger.transport)

    def buyer(self) -> BuyerAgent:
        return BuyerAgent(chain=CHAIN, gateway=self.chain, backend=self.backend(), clock=self.clock)

    async def seller(self) -> SellerAgent:
        seller = SellerAgent(chain=CHAIN, gateway=self.chain, backend=self.backend(), clock=self.clock)
        await seller.init_wallet(SELLER_OWNER_KEY, gas_strategy="erc20-sponsored")
        return seller

    async def session_buyer(self) -> BuyerAgent:
        credential = issue_session_key(
            BUYER_OWNER_KEY, CHAIN, validity_seconds=30 * 86400, now=self.clock()
        )
        buyer = self.buyer()
        address = await buyer.init_with_session_key(credential.serialized_session_key)
        print(f"  Session key {credential.session_key_address} loaded for {address}")
        print(f"  Gas strategy: {buyer.gas_strategy}")
        return buyer


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: Happy Path — Session-Key Buyer Funds and Releases")
    world = World()
    txn = "txn_happy"
    world.ledger.open_transaction(txn)

    section("Step 1: Owner issues a session key; agent loads it")
    buyer = await world.session_buyer()
    seller = await world.seller()

    section("Step 2: Buyer funds 100 USDC and the ledger verifies it")
    result = await buyer.fund_and_verify(txn, seller.wallet_address, HUNDRED_USDC)
    print(f"  Locked: {usdc(result.on_chain.locked_amount)}  Fee: {usdc(result.on_chain.platform_fee)}")
    print(f"  Ledger status: {result.status}")

    section("Step 3: Seller delivers")
    await seller.deliver(txn, {"answer": 55})
    await seller.submit_delivery(txn, '{"answer": 55}')

    section("Step 4: Buyer confirms and releases")
    release = await buyer.confirm_and_release(txn)
    escrow = await buyer.coordinator.get_escrow(txn)
    print(f"  Ledger status: {release.transaction.status}  On-chain: {escrow.status}")
    print(f"  Seller balance: {usdc(world.chain.token_balance(USDC.address, seller.wallet_address))}")

    await buyer.close()
    await seller.close()


# ===========================================================================
# Scenario 2: Dispute Window
# ===========================================================================
async def scenario_2_dispute_window() -> None:
    banner("SCENARIO 2: Dispute Window — Late Dispute, Seller Finalizes")
    world = World()
    txn = "txn_window"
    world.ledger.open_transaction(txn)
    buyer = await world.session_buyer()
    seller = await world.seller()

    section("Step 1: Fund and deliver")
    await buyer.fund_and_verify(txn, seller.wallet_address, HUNDRED_USDC)
    await seller.submit_delivery(txn, "report.pdf")

    section("Step 2: Dispute window lapses")
    world.clock.advance(DEFAULT_DISPUTE_WINDOW + 1)
    await expect_refusal("Late dispute", buyer.dispute_on_chain(txn))

    section("Step 3: Seller finalizes release")
    await seller.finalize_release(txn)
    escrow = await seller.coordinator.get_escrow(txn)
    print(f"  On-chain: {escrow.status}")

    await buyer.close()
    await seller.close()


# ===========================================================================
# Scenario 3: Abandoned Escrow
# ===========================================================================
async def scenario_3_abandoned() -> None:
    banner("SCENARIO 3: Abandoned Escrow — Claim After Grace Period")
    world = World()
    txn = "txn_abandoned"
    world.ledger.open_transaction(txn)
    buyer = await world.session_buyer()
    seller = await world.seller()

    section("Step 1: Fund; seller never delivers")
    await buyer.fund_and_verify(txn, seller.wallet_address, HUNDRED_USDC)
    escrow = await buyer.coordinator.get_escrow(txn)

    section("Step 2: Claim before the grace period ends")
    world.clock.now = escrow.deadline + DEFAULT_ABANDONMENT_GRACE
    await expect_refusal("Early claim", buyer.claim_abandoned(txn))

    section("Step 3: Claim after the grace period")
    world.clock.advance(1)
    await expect_refusal("Session-key claim", buyer.claim_abandoned(txn))
    owner = world.buyer()
    await owner.init_wallet(BUYER_OWNER_KEY, gas_strategy="erc20-sponsored")
    await owner.claim_abandoned(txn)
    escrow = await owner.coordinator.get_escrow(txn)
    print(f"  On-chain: {escrow.status}")
    print(f"  Buyer balance: {usdc(world.chain.token_balance(USDC.address, world.buyer_account))}")

    for agent in (buyer, seller, owner):
        await agent.close()


SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_dispute_window,
    3: scenario_3_abandoned,
}


async def run(num: int) -> None:
    if num == 0:
        for scenario in SCENARIOS.values():
            await scenario()
        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")
        return
    if num not in SCENARIOS:
        print(f"Unknown scenario {num}. Available: 1, 2, 3")
        return
    await SCENARIOS[num]()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Agentic Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    args = parser.parse_args()
    asyncio.run(run(args.scenario))
