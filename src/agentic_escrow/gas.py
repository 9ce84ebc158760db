"""Gas strategy resolution.

Decides whether an account pays gas from its own native balance or through
the sponsored ERC-20 paymaster path. Resolved once per session and never
cached across sessions, since balances change.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from agentic_escrow.domain.enums import GasStrategy
from agentic_escrow.logging_config import get_logger
from agentic_escrow.registry import MIN_GAS_BALANCE

if TYPE_CHECKING:
    from agentic_escrow.domain.chain_protocol import BalanceReader

logger = get_logger(__name__)


def choose_gas_strategy(balance: int, threshold: int = MIN_GAS_BALANCE) -> GasStrategy:
    """Self-funded iff the balance meets the threshold."""
    return GasStrategy.SELF_FUNDED if balance >= threshold else GasStrategy.ERC20_SPONSORED


async def resolve_gas_strategy(
    reader: BalanceReader,
    address: str,
    requested: GasStrategy | str = GasStrategy.AUTO,
    threshold: int = MIN_GAS_BALANCE,
) -> GasStrategy:
    """Resolve AUTO against the account's balance; pass anything else through.

    Args:
        reader: Source of the native balance (a chain gateway).
        address: Account whose balance decides the strategy.
        requested: "self-funded", "erc20-sponsored" or "auto".
        threshold: Minimum balance in wei for self-funded gas.
    """
    strategy = GasStrategy(requested)
    if strategy is not GasStrategy.AUTO:
        return strategy

    balance = await reader.get_balance(address)
    resolved = choose_gas_strategy(balance, threshold)
    logger.info(
        "gas.strategy_resolved",
        address=address,
        balance=balance,
        threshold=threshold,
        strategy=resolved.value,
    )
    return resolved
