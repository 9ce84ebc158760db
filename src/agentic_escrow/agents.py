"""Buyer and seller agent facades.

An agent holds a backend client and, once a wallet is initialized, a signer
for its smart account. Wallet features are optional: an agent that never
calls init_wallet / init_with_session_key can still confirm and dispute
off-chain, and never opens a chain connection.

    buyer = BuyerAgent(api_key="aba_...")
    await buyer.init_with_session_key(serialized)          # no owner key needed
    result = await buyer.fund_and_verify(txn_id, seller, 100_000_000)
    await buyer.confirm_and_release(txn_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from agentic_escrow.client import BackendClient
from agentic_escrow.config import get_settings
from agentic_escrow.domain.enums import GasStrategy
from agentic_escrow.logging_config import get_logger
from agentic_escrow.registry import get_chain
from agentic_escrow.services.escrow_coordinator import EscrowCoordinator
from agentic_escrow.wallet.session_keys import issue_session_key, load_session_key, revoke_session_key
from agentic_escrow.wallet.signers import load_owner_signer

if TYPE_CHECKING:
    from agentic_escrow.domain.chain_protocol import ChainGateway, ChainSigner
    from agentic_escrow.domain.enums import EvidenceType
    from agentic_escrow.main import WebhookHandler
    from agentic_escrow.schemas.transactions import (
        DisputeStatus,
        EvidenceReceipt,
        FundResult,
        Transaction,
    )
    from agentic_escrow.server import WebhookServer
    from agentic_escrow.services.escrow_coordinator import ReleaseResult
    from agentic_escrow.wallet.gateway import Web3ChainGateway
    from agentic_escrow.wallet.session_keys import SessionKeyResult

logger = get_logger(__name__)


class _EscrowAgent:
    """Shared wallet and coordinator plumbing."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        chain: str | None = None,
        gateway: ChainGateway | None = None,
        backend: BackendClient | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        settings = get_settings()
        self._chain = chain or settings.chain
        self._backend = backend or BackendClient(api_key=api_key, base_url=base_url)
        self._gateway = gateway
        self._owned_gateway: Web3ChainGateway | None = None
        self._clock = clock
        self._timeout = settings.chain_timeout_seconds
        self._signer: ChainSigner | None = None
        self._coordinator = self._new_coordinator()

    @property
    def wallet_address(self) -> str | None:
        return self._signer.address if self._signer else None

    @property
    def gas_strategy(self) -> GasStrategy | None:
        return self._signer.gas_strategy if self._signer else None

    @property
    def coordinator(self) -> EscrowCoordinator:
        return self._coordinator

    def _new_coordinator(self) -> EscrowCoordinator:
        return EscrowCoordinator(
            self._backend.transactions,
            gateway=self._gateway,
            signer=self._signer,
            timeout=self._timeout,
            clock=self._clock,
        )

    def _chain_gateway(self) -> ChainGateway:
        """The injected gateway, or a web3 gateway built from settings on first use."""
        if self._gateway is None:
            from agentic_escrow.wallet.gateway import Web3ChainGateway

            settings = get_settings()
            chain = get_chain(self._chain)
            self._gateway = self._owned_gateway = Web3ChainGateway(
                chain_id=chain.chain_id,
                rpc_url=settings.rpc_url or chain.rpc_url,
                bundler_url=settings.project_bundler_url,
                paymaster_url=settings.project_paymaster_url,
                timeout=self._timeout,
            )
        return self._gateway

    def _requested_strategy(self, gas_strategy: GasStrategy | str | None) -> GasStrategy:
        return GasStrategy(gas_strategy or get_settings().gas_strategy)

    async def init_wallet(
        self, owner_private_key: str, *, gas_strategy: GasStrategy | str | None = None
    ) -> str:
        """Load a full-authority signer from the owner key; return the account address."""
        gateway = self._chain_gateway()
        self._signer = await load_owner_signer(
            owner_private_key,
            gateway,
            gas_strategy=self._requested_strategy(gas_strategy),
            timeout=self._timeout,
        )
        self._coordinator = self._new_coordinator()
        return self._signer.address

    async def init_with_session_key(
        self, serialized_session_key: str, *, gas_strategy: GasStrategy | str | None = None
    ) -> str:
        """Load a policy-bound signer from a session credential; return the account address."""
        gateway = self._chain_gateway()
        handle = await load_session_key(
            serialized_session_key,
            self._chain,
            gateway,
            gas_strategy=self._requested_strategy(gas_strategy),
            timeout=self._timeout,
            clock=self._clock,
        )
        self._signer = handle.signer
        self._coordinator = self._new_coordinator()
        return handle.address

    async def get_transaction(self, transaction_id: str) -> Transaction:
        return await self._coordinator.get_transaction(transaction_id)

    async def close(self) -> None:
        """Close the backend client, and the chain gateway if this agent built it."""
        await self._backend.close()
        if self._owned_gateway is not None:
            await self._owned_gateway.close()
            self._owned_gateway = None

    async def __aenter__(self) -> _EscrowAgent:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


class BuyerAgent(_EscrowAgent):
    """Funds, accepts, disputes and reclaims escrows."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._webhook_server: WebhookServer | None = None

    @staticmethod
    def create_session_key(
        owner_private_key: str,
        chain: str | None = None,
        *,
        validity_seconds: int | None = None,
        tokens: list[str] | None = None,
    ) -> SessionKeyResult:
        """Owner operation: mint an escrow-scoped session key for an agent."""
        settings = get_settings()
        return issue_session_key(
            owner_private_key,
            chain or settings.chain,
            validity_seconds=validity_seconds or settings.session_validity_seconds,
            tokens=tokens,
        )

    async def revoke_session_key(self, owner_private_key: str, serialized_session_key: str) -> str:
        """Owner operation: uninstall a session key's plugin; return the tx hash."""
        return await revoke_session_key(
            owner_private_key,
            serialized_session_key,
            self._chain,
            self._chain_gateway(),
            gas_strategy=get_settings().gas_strategy,
            timeout=self._timeout,
        )

    async def fund_escrow(
        self,
        transaction_id: str,
        seller_address: str,
        amount: int,
        token_symbol: str = "USDC",
        deadline: int | None = None,
    ) -> str:
        return await self._coordinator.fund(transaction_id, seller_address, amount, token_symbol, deadline)

    async def fund_and_verify(
        self,
        transaction_id: str,
        seller_address: str,
        amount: int,
        token_symbol: str = "USDC",
        deadline: int | None = None,
    ) -> FundResult:
        return await self._coordinator.fund_and_verify(
            transaction_id, seller_address, amount, token_symbol, deadline
        )

    async def confirm(self, transaction_id: str) -> Transaction:
        return await self._coordinator.confirm(transaction_id)

    async def confirm_and_release(self, transaction_id: str) -> ReleaseResult:
        return await self._coordinator.confirm_and_release(transaction_id)

    async def dispute(self, transaction_id: str, reason: str) -> Transaction:
        return await self._coordinator.dispute(transaction_id, reason)

    async def dispute_on_chain(self, transaction_id: str) -> str:
        return await self._coordinator.dispute_on_chain(transaction_id)

    async def get_dispute(self, transaction_id: str) -> DisputeStatus:
        return await self._coordinator.get_dispute(transaction_id)

    async def submit_evidence(
        self, transaction_id: str, evidence_type: EvidenceType | str, content: str
    ) -> EvidenceReceipt:
        return await self._coordinator.submit_evidence(transaction_id, evidence_type, content)

    async def claim_abandoned(self, transaction_id: str) -> str:
        return await self._coordinator.claim_abandoned(transaction_id)

    async def on_delivery(
        self,
        handler: WebhookHandler,
        port: int | None = None,
        *,
        signing_secret: str | None = None,
        path: str | None = None,
    ) -> str:
        """Start the delivery listener; return its URL."""
        from agentic_escrow.server import WebhookServer

        if self._webhook_server is not None:
            raise RuntimeError("Delivery listener already running; call stop_webhook() first")
        server = WebhookServer(handler, signing_secret=signing_secret, path=path)
        url = await server.start(port)
        self._webhook_server = server
        return url

    async def stop_webhook(self) -> None:
        if self._webhook_server is not None:
            await self._webhook_server.stop()
            self._webhook_server = None

    async def close(self) -> None:
        await self.stop_webhook()
        await super().close()


class SellerAgent(_EscrowAgent):
    """Delivers results and collects released funds."""

    async def deliver(self, transaction_id: str, response_payload: Any) -> Transaction:
        return await self._coordinator.deliver(transaction_id, response_payload)

    async def submit_delivery(self, transaction_id: str, artifact: bytes | str) -> str:
        return await self._coordinator.submit_delivery(transaction_id, artifact)

    async def finalize_release(self, transaction_id: str) -> str:
        return await self._coordinator.finalize_release(transaction_id)
