"""Value objects shared by the wallet, coordinator and registry layers."""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from agentic_escrow.domain.enums import EscrowStatus

# 2% of the funded amount, fixed at funding time.
PLATFORM_FEE_BPS = 200
BPS_DENOMINATOR = 10_000

DEFAULT_DISPUTE_WINDOW = 3600  # 1 hour
DEFAULT_ABANDONMENT_GRACE = 2 * 86400  # 2 days
DEFAULT_DEADLINE_OFFSET = 7 * 86400  # 7 days


def compute_platform_fee(amount: int) -> int:
    """Platform fee in token base units, rounded half-to-even like round()."""
    if amount <= 0:
        raise ValueError(f"Escrow amount must be positive, got {amount}")
    fee, remainder = divmod(amount * PLATFORM_FEE_BPS, BPS_DENOMINATOR)
    if remainder * 2 > BPS_DENOMINATOR or (remainder * 2 == BPS_DENOMINATOR and fee % 2):
        fee += 1
    return fee


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    address: str
    decimals: int
    tier: int

    def to_base_units(self, amount: int | str) -> int:
        """Convert a whole-token amount (e.g. "100" USDC) to base units."""
        return int(Decimal(str(amount)) * (10**self.decimals))


@dataclass(frozen=True)
class ChainInfo:
    name: str
    chain_id: int
    rpc_url: str


@dataclass(frozen=True)
class ChainCall:
    """One contract call as submitted through a signer.

    Attributes:
        target: Contract address the call is sent to.
        signature: Canonical function signature, e.g. "approve(address,uint256)".
        args: Positional arguments in ABI order.
    """

    target: str
    signature: str
    args: tuple = ()

    @property
    def function(self) -> str:
        return self.signature.split("(", 1)[0]


@dataclass(frozen=True)
class PluginEnable:
    """Install payload for a permission plugin, authorized by the owner."""

    validator_data: bytes
    enable_signature: bytes


@dataclass(frozen=True)
class AccountValidation:
    """Which validator on the smart account authorizes an operation.

    `validation_id` None selects the root validator (the owner key). `enable`
    is sent with operations until the plugin is installed on the account.
    `owner_address` lets the gateway deploy an account that does not exist yet.
    """

    owner_address: str
    validation_id: str | None = None
    enable: PluginEnable | None = None

    @property
    def is_root(self) -> bool:
        return self.validation_id is None


@dataclass(frozen=True)
class EscrowAccount:
    """On-chain view of one escrow, as read from the contract.

    Never mutated by the coordinator; a fresh instance is read after every
    state-changing call.
    """

    escrow_id: str
    token: str
    buyer: str
    seller: str
    locked_amount: int
    platform_fee: int
    status: EscrowStatus
    created_at: int
    deadline: int
    dispute_window: int = DEFAULT_DISPUTE_WINDOW
    abandonment_grace: int = DEFAULT_ABANDONMENT_GRACE
    delivered_at: int = 0
    proof_hash: str | None = None
    criteria_hash: str | None = None

    @property
    def amount(self) -> int:
        """The gross amount the buyer funded."""
        return self.locked_amount + self.platform_fee

    @property
    def dispute_closes_at(self) -> int | None:
        """End of the dispute window, or None if nothing was delivered yet."""
        if not self.delivered_at:
            return None
        return self.delivered_at + self.dispute_window

    @property
    def abandonable_after(self) -> int:
        return self.deadline + self.abandonment_grace

    def with_status(self, status: EscrowStatus, **changes: object) -> EscrowAccount:
        return replace(self, status=status, **changes)
