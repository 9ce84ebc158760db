"""Chain-facing protocols.

The RPC / bundler / paymaster machinery is an opaque external service. The
coordinator and the session-key layer only see these shapes, so a concrete
implementation (agentic_escrow.wallet.gateway) is wired in only when wallet
features are actually exercised.

The domain layer has ZERO imports from web3 or any RPC library.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from agentic_escrow.domain.enums import GasStrategy
    from agentic_escrow.domain.models import AccountValidation, ChainCall, EscrowAccount


@runtime_checkable
class BalanceReader(Protocol):
    """Anything that can read a native-currency balance (in wei)."""

    async def get_balance(self, address: str) -> int: ...


@runtime_checkable
class ChainGateway(Protocol):
    """Opaque signing-and-submission service for one chain.

    Concrete implementations:
        - wallet/gateway.py  (web3 RPC + bundler relay)
        - tests/conftest.py  (in-memory escrow contract simulator)
    """

    chain_id: int

    async def send_call(
        self,
        *,
        account: Any,
        sender: str,
        call: ChainCall,
        gas_strategy: GasStrategy,
        validation: AccountValidation,
    ) -> str:
        """Sign `call` with `account` on behalf of `sender`, submit it, return the tx hash.

        `validation` picks the account validator that checks the signature and
        carries what is needed to deploy the account or enable the plugin.
        """
        ...

    async def get_balance(self, address: str) -> int: ...

    async def get_escrow(self, escrow_id: str) -> EscrowAccount | None:
        """Read one escrow; None if the contract has no record of it."""
        ...

    async def is_validation_revoked(self, smart_account: str, validation_id: str) -> bool:
        """Whether the permission plugin behind `validation_id` was uninstalled."""
        ...


@runtime_checkable
class ChainSigner(Protocol):
    """A loaded signing handle, either delegated (session key) or full authority."""

    @property
    def address(self) -> str:
        """The smart-account address calls are made from."""
        ...

    @property
    def gas_strategy(self) -> GasStrategy: ...

    def check(self, call: ChainCall) -> None:
        """Raise PolicyViolationError if this signer may not make `call`."""
        ...

    async def submit_call(self, call: ChainCall) -> str:
        """Submit one call and return its transaction hash."""
        ...

    async def get_balance(self) -> int: ...
