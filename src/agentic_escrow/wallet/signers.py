"""Chain-facing signers.

Two implementations of the ChainSigner protocol:
    - DelegatedSigner: holds a session key; checks every call against its
      capability policy BEFORE anything reaches the gateway.
    - OwnerSigner: holds the owner's master key; full authority over the
      smart account. Used for revocation and for owner-operated wallets.

Every gateway call is bounded by a timeout and surfaces EscrowTimeoutError
instead of hanging.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from eth_account import Account

from agentic_escrow.domain.enums import GasStrategy
from agentic_escrow.domain.exceptions import EscrowTimeoutError, InvalidCredentialError
from agentic_escrow.domain.models import AccountValidation
from agentic_escrow.gas import resolve_gas_strategy
from agentic_escrow.logging_config import get_logger
from agentic_escrow.wallet.accounts import derive_smart_account_address

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

    from agentic_escrow.domain.chain_protocol import ChainGateway
    from agentic_escrow.domain.models import ChainCall
    from agentic_escrow.wallet.policies import CapabilityPolicy

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_CHAIN_TIMEOUT = 60.0


async def with_timeout(awaitable: Awaitable[T], operation: str, timeout: float) -> T:
    """Await with a deadline, translating expiry into EscrowTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as err:
        logger.warning("chain.timeout", operation=operation, timeout=timeout)
        raise EscrowTimeoutError(operation, timeout) from err


class TimeoutBalanceReader:
    """Adapts a gateway's get_balance to a bounded call for gas resolution."""

    def __init__(self, gateway: ChainGateway, timeout: float) -> None:
        self._gateway = gateway
        self._timeout = timeout

    async def get_balance(self, address: str) -> int:
        return await with_timeout(self._gateway.get_balance(address), "get_balance", self._timeout)


class _GatewaySigner:
    """Shared plumbing: submits through the gateway as `smart_account`."""

    def __init__(
        self,
        *,
        gateway: ChainGateway,
        account: LocalAccount,
        smart_account: str,
        gas_strategy: GasStrategy,
        timeout: float = DEFAULT_CHAIN_TIMEOUT,
        validation: AccountValidation | None = None,
    ) -> None:
        if gas_strategy is GasStrategy.AUTO:
            raise ValueError("Signer needs a resolved gas strategy, not auto")
        self._gateway = gateway
        self._account = account
        self._smart_account = smart_account
        self._gas_strategy = gas_strategy
        self._timeout = timeout
        self._validation = validation or AccountValidation(owner_address=account.address)

    @property
    def address(self) -> str:
        return self._smart_account

    @property
    def gas_strategy(self) -> GasStrategy:
        return self._gas_strategy

    @property
    def chain_id(self) -> int:
        return self._gateway.chain_id

    async def get_balance(self) -> int:
        return await with_timeout(
            self._gateway.get_balance(self._smart_account), "get_balance", self._timeout
        )

    async def _send(self, call: ChainCall) -> str:
        tx_hash = await with_timeout(
            self._gateway.send_call(
                account=self._account,
                sender=self._smart_account,
                call=call,
                gas_strategy=self._gas_strategy,
                validation=self._validation,
            ),
            f"submit {call.function}",
            self._timeout,
        )
        logger.info(
            "chain.call_submitted",
            function=call.function,
            target=call.target,
            sender=self._smart_account,
            tx_hash=tx_hash,
        )
        return tx_hash


class DelegatedSigner(_GatewaySigner):
    """Session-key signer bound to a capability policy."""

    def __init__(
        self,
        *,
        gateway: ChainGateway,
        account: LocalAccount,
        smart_account: str,
        policy: CapabilityPolicy,
        validation: AccountValidation,
        gas_strategy: GasStrategy,
        timeout: float = DEFAULT_CHAIN_TIMEOUT,
        clock: Callable[[], int] | None = None,
    ) -> None:
        if validation.is_root:
            raise ValueError("A delegated signer cannot use the root validator")
        super().__init__(
            gateway=gateway,
            account=account,
            smart_account=smart_account,
            gas_strategy=gas_strategy,
            timeout=timeout,
            validation=validation,
        )
        self._policy = policy
        self._clock = clock or (lambda: int(time.time()))

    @property
    def delegate_address(self) -> str:
        return self._account.address

    @property
    def policy(self) -> CapabilityPolicy:
        return self._policy

    def check(self, call: ChainCall) -> None:
        """Raise PolicyViolationError if the capability does not allow `call`."""
        self._policy.check(call, now=self._clock())

    async def submit_call(self, call: ChainCall) -> str:
        self.check(call)
        return await self._send(call)


class OwnerSigner(_GatewaySigner):
    """Full-authority signer backed by the owner's master key."""

    def check(self, call: ChainCall) -> None:
        """Owner keys may call anything on their own account."""

    async def submit_call(self, call: ChainCall) -> str:
        return await self._send(call)


def owner_account(private_key: str) -> LocalAccount:
    """Parse an owner private key, raising InvalidCredentialError if malformed."""
    try:
        return Account.from_key(private_key)
    except Exception as err:  # eth_keys raises its own ValidationError
        raise InvalidCredentialError("Owner key is not a valid secp256k1 private key") from err


async def load_owner_signer(
    owner_private_key: str,
    gateway: ChainGateway,
    *,
    smart_account: str | None = None,
    gas_strategy: GasStrategy | str = GasStrategy.AUTO,
    timeout: float = DEFAULT_CHAIN_TIMEOUT,
) -> OwnerSigner:
    """Build a full-authority signer for the owner's smart account."""
    account = owner_account(owner_private_key)
    sender = smart_account or derive_smart_account_address(account.address)
    strategy = await resolve_gas_strategy(TimeoutBalanceReader(gateway, timeout), sender, gas_strategy)
    logger.info("wallet.owner_signer_loaded", address=sender, gas_strategy=strategy.value)
    return OwnerSigner(
        gateway=gateway,
        account=account,
        smart_account=sender,
        gas_strategy=strategy,
        timeout=timeout,
    )
