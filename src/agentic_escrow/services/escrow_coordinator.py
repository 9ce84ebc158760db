"""Escrow Coordinator: drives one escrow's lifecycle across chain and ledger.

This is the application layer that coordinates between:
    - the on-chain escrow (read through a ChainGateway, written through a ChainSigner)
    - the backend transaction ledger (TransactionsClient)
    - the escrow state machine (local transition guard)

Two views are kept apart:
    - EscrowAccount.status is read from the chain before every state-changing
      call and never stored locally.
    - The ledger status is whatever the backend last returned. The coordinator
      never asserts a ledger status itself; it only reports evidence (tx
      hashes) and records the backend's answer.

Local preconditions (signer loaded, on-chain status, deadlines and windows,
capability policy) are all checked before any transaction is submitted. No
call is retried here; on EscrowTimeoutError the caller must re-read state
before trying again.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from eth_utils import keccak
from statemachine.exceptions import TransitionNotAllowed

from agentic_escrow.domain.enums import DisputeState, EscrowStatus, EvidenceType, TransactionStatus
from agentic_escrow.domain.exceptions import (
    InvalidStateTransitionError,
    PreconditionNotMetError,
    VerificationMismatchError,
)
from agentic_escrow.domain.models import DEFAULT_DEADLINE_OFFSET, ChainCall, compute_platform_fee
from agentic_escrow.domain.state_machine import validate_transition
from agentic_escrow.logging_config import get_logger
from agentic_escrow.registry import escrow_address, get_token
from agentic_escrow.wallet import abi
from agentic_escrow.wallet.signers import DEFAULT_CHAIN_TIMEOUT, with_timeout

if TYPE_CHECKING:
    from agentic_escrow.client.transactions import TransactionsClient
    from agentic_escrow.domain.chain_protocol import ChainGateway, ChainSigner
    from agentic_escrow.domain.models import EscrowAccount
    from agentic_escrow.schemas.transactions import (
        DisputeStatus,
        EvidenceReceipt,
        FundResult,
        Transaction,
    )

logger = get_logger(__name__)


def escrow_id_for(transaction_id: str) -> str:
    """bytes32 escrow id bound 1:1 to a ledger transaction id."""
    return "0x" + keccak(text=transaction_id).hex()


def proof_hash_for(artifact: bytes | str) -> str:
    """Content hash of a delivered artifact."""
    data = artifact.encode() if isinstance(artifact, str) else artifact
    return "0x" + keccak(data).hex()


@dataclass(frozen=True)
class ReleaseResult:
    """Outcome of confirm & release.

    `release_tx_hash` is None when nothing was submitted on-chain (no signer
    loaded, or delivery never submitted on-chain).
    """

    transaction: Transaction
    release_tx_hash: str | None


class EscrowCoordinator:
    """Manages escrow lifecycles for one agent on one chain.

    Holds no shared mutable state beyond the last ledger status seen per
    transaction, so independent coordinators can run concurrently.
    """

    def __init__(
        self,
        transactions: TransactionsClient,
        *,
        gateway: ChainGateway | None = None,
        signer: ChainSigner | None = None,
        timeout: float = DEFAULT_CHAIN_TIMEOUT,
        clock: Callable[[], int] | None = None,
    ) -> None:
        if signer is not None and gateway is None:
            raise ValueError("A signer needs a gateway to read escrow state")
        self._transactions = transactions
        self._gateway = gateway
        self._signer = signer
        self._timeout = timeout
        self._clock = clock or (lambda: int(time.time()))
        self._ledger: dict[str, TransactionStatus] = {}

    @property
    def signer(self) -> ChainSigner | None:
        return self._signer

    @property
    def chain_id(self) -> int:
        if self._gateway is None:
            raise PreconditionNotMetError("No chain gateway configured")
        return self._gateway.chain_id

    def ledger_status(self, transaction_id: str) -> TransactionStatus | None:
        """Last status the backend reported for a transaction, if any."""
        return self._ledger.get(transaction_id)

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def fund(
        self,
        transaction_id: str,
        seller: str,
        amount: int,
        token_symbol: str = "USDC",
        deadline: int | None = None,
    ) -> str:
        """Approve and lock `amount` (base units) for `seller`; return the create tx hash.

        The ledger is NOT advanced here: call report_funding (or use
        fund_and_verify) so the backend can read the chain independently.
        """
        signer = self._require_signer("fund")
        if amount <= 0:
            raise PreconditionNotMetError(f"Escrow amount must be positive, got {amount}")
        now = self._clock()
        deadline = now + DEFAULT_DEADLINE_OFFSET if deadline is None else deadline
        if deadline <= now:
            raise PreconditionNotMetError(f"Deadline {deadline} is not in the future")

        token = get_token(self.chain_id, token_symbol)
        escrow = escrow_address(self.chain_id)
        escrow_id = escrow_id_for(transaction_id)
        approve = ChainCall(token.address, abi.ERC20_APPROVE, (escrow, amount))
        create = ChainCall(
            escrow, abi.ESCROW_CREATE, (escrow_id, seller, amount, token.address, deadline)
        )
        # Both calls are checked up front so a rejected create never costs an approve.
        signer.check(approve)
        signer.check(create)

        existing = await self._read_escrow(escrow_id)
        self._guard(existing.status if existing else EscrowStatus.NONE, "fund")

        await signer.submit_call(approve)
        tx_hash = await signer.submit_call(create)
        fee = compute_platform_fee(amount)
        logger.info(
            "escrow.funded",
            transaction_id=transaction_id,
            escrow_id=escrow_id,
            token=token.symbol,
            amount=amount,
            platform_fee=fee,
            locked_amount=amount - fee,
            deadline=deadline,
            tx_hash=tx_hash,
        )
        return tx_hash

    async def report_funding(self, transaction_id: str, tx_hash: str) -> FundResult:
        """Hand the funding tx hash to the backend for independent verification."""
        result = await self._transactions.fund(transaction_id, tx_hash)
        self._record(transaction_id, result.status)
        return result

    async def fund_and_verify(
        self,
        transaction_id: str,
        seller: str,
        amount: int,
        token_symbol: str = "USDC",
        deadline: int | None = None,
    ) -> FundResult:
        """Fund on-chain, then check the backend's on-chain read matches what was sent.

        Raises:
            VerificationMismatchError: the backend saw a different escrow id,
                seller, locked amount or fee.
        """
        tx_hash = await self.fund(transaction_id, seller, amount, token_symbol, deadline)
        result = await self.report_funding(transaction_id, tx_hash)

        fee = compute_platform_fee(amount)
        expected: dict[str, Any] = {
            "escrow_id": escrow_id_for(transaction_id).lower(),
            "seller": seller.lower(),
            "locked_amount": amount - fee,
            "platform_fee": fee,
        }
        reported: dict[str, Any] = {
            "escrow_id": result.on_chain.escrow_id.lower(),
            "seller": result.on_chain.seller.lower(),
            "locked_amount": result.on_chain.locked_amount,
            "platform_fee": result.on_chain.platform_fee,
        }
        mismatches = {
            key: (expected[key], reported[key]) for key in expected if expected[key] != reported[key]
        }
        if mismatches:
            logger.warning(
                "escrow.verification_mismatch",
                transaction_id=transaction_id,
                tx_hash=tx_hash,
                fields=sorted(mismatches),
            )
            raise VerificationMismatchError(
                f"Backend's on-chain read of {tx_hash} disagrees on {', '.join(sorted(mismatches))}",
                mismatches,
            )
        logger.info("escrow.funding_verified", transaction_id=transaction_id, status=result.status.value)
        return result

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def confirm(self, transaction_id: str) -> Transaction:
        """Off-chain confirmation only."""
        transaction = await self._transactions.confirm(transaction_id)
        self._record(transaction_id, transaction.status)
        return transaction

    async def confirm_and_release(self, transaction_id: str) -> ReleaseResult:
        """Confirm off-chain, then accept on-chain if a signer is loaded and delivery exists.

        The off-chain confirmation always happens. The on-chain accept is only
        submitted when the escrow is Delivered; otherwise nothing is sent.
        """
        transaction = await self.confirm(transaction_id)
        if self._signer is None:
            return ReleaseResult(transaction, None)

        escrow_id = escrow_id_for(transaction_id)
        accept = self._checked_call(self._signer, abi.ESCROW_ACCEPT, escrow_id)
        escrow = await self._read_escrow(escrow_id)
        if escrow is None or escrow.status is not EscrowStatus.DELIVERED:
            logger.info(
                "escrow.release_skipped",
                transaction_id=transaction_id,
                on_chain_status=escrow.status.value if escrow else EscrowStatus.NONE.value,
            )
            return ReleaseResult(transaction, None)

        tx_hash = await self._signer.submit_call(accept)
        logger.info(
            "escrow.released",
            transaction_id=transaction_id,
            locked_amount=escrow.locked_amount,
            tx_hash=tx_hash,
        )
        return ReleaseResult(transaction, tx_hash)

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def dispute(self, transaction_id: str, reason: str) -> Transaction:
        """Open the off-chain dispute record."""
        if not reason.strip():
            raise PreconditionNotMetError("A dispute needs a reason")
        transaction = await self._transactions.dispute(transaction_id, reason)
        self._record(transaction_id, transaction.status)
        logger.info("escrow.dispute_opened", transaction_id=transaction_id)
        return transaction

    async def dispute_on_chain(self, transaction_id: str) -> str:
        """Dispute a delivery on-chain while the dispute window is open."""
        signer = self._require_signer("dispute")
        escrow_id = escrow_id_for(transaction_id)
        call = self._checked_call(signer, abi.ESCROW_DISPUTE, escrow_id)
        escrow = await self._require_escrow(escrow_id)
        self._guard(escrow.status, "dispute")

        now = self._clock()
        closes_at = escrow.dispute_closes_at
        if closes_at is None or now > closes_at:
            raise PreconditionNotMetError(
                f"Dispute window closed at {closes_at} (now {now}) for escrow {escrow_id}"
            )
        tx_hash = await signer.submit_call(call)
        logger.info("escrow.disputed", transaction_id=transaction_id, tx_hash=tx_hash)
        return tx_hash

    async def get_dispute(self, transaction_id: str) -> DisputeStatus:
        return await self._transactions.get_dispute(transaction_id)

    async def submit_evidence(
        self, transaction_id: str, evidence_type: EvidenceType | str, content: str
    ) -> EvidenceReceipt:
        """Attach evidence; only accepted while the dispute is still being evaluated."""
        evidence_type = EvidenceType(evidence_type)
        dispute = await self._transactions.get_dispute(transaction_id)
        if dispute.status is not DisputeState.EVALUATING:
            raise PreconditionNotMetError(
                f"Dispute for {transaction_id} is {dispute.status.value}; evidence is closed"
            )
        receipt = await self._transactions.submit_evidence(transaction_id, evidence_type, content)
        logger.info(
            "escrow.evidence_submitted",
            transaction_id=transaction_id,
            evidence_type=evidence_type.value,
            evidence_id=receipt.evidence_id,
        )
        return receipt

    # ------------------------------------------------------------------
    # Abandonment
    # ------------------------------------------------------------------

    async def claim_abandoned(self, transaction_id: str) -> str:
        """Recover funds from an escrow never delivered by deadline + grace."""
        signer = self._require_signer("claim_abandoned")
        escrow_id = escrow_id_for(transaction_id)
        call = self._checked_call(signer, abi.ESCROW_CLAIM_ABANDONED, escrow_id)
        escrow = await self._require_escrow(escrow_id)
        self._guard(escrow.status, "claim_abandoned")

        now = self._clock()
        if now <= escrow.abandonable_after:
            raise PreconditionNotMetError(
                f"Escrow {escrow_id} is claimable only after {escrow.abandonable_after} (now {now})"
            )
        tx_hash = await signer.submit_call(call)
        logger.info(
            "escrow.abandon_claimed",
            transaction_id=transaction_id,
            locked_amount=escrow.locked_amount,
            tx_hash=tx_hash,
        )
        return tx_hash

    # ------------------------------------------------------------------
    # Seller side
    # ------------------------------------------------------------------

    async def deliver(self, transaction_id: str, response_payload: Any) -> Transaction:
        """Record the delivered result with the backend."""
        transaction = await self._transactions.deliver(transaction_id, response_payload)
        self._record(transaction_id, transaction.status)
        return transaction

    async def submit_delivery(self, transaction_id: str, artifact: bytes | str) -> str:
        """Commit the delivered artifact's hash on-chain before the deadline."""
        signer = self._require_signer("submit_delivery")
        escrow_id = escrow_id_for(transaction_id)
        proof_hash = proof_hash_for(artifact)
        call = self._checked_call(signer, abi.ESCROW_SUBMIT_DELIVERY, escrow_id, proof_hash)
        escrow = await self._require_escrow(escrow_id)
        self._guard(escrow.status, "submit_delivery")

        now = self._clock()
        if now >= escrow.deadline:
            raise PreconditionNotMetError(
                f"Delivery deadline {escrow.deadline} has passed (now {now})"
            )
        tx_hash = await signer.submit_call(call)
        logger.info(
            "escrow.delivery_submitted",
            transaction_id=transaction_id,
            proof_hash=proof_hash,
            tx_hash=tx_hash,
        )
        return tx_hash

    async def finalize_release(self, transaction_id: str) -> str:
        """Release to the seller once the dispute window passed without a dispute."""
        signer = self._require_signer("finalize_release")
        escrow_id = escrow_id_for(transaction_id)
        call = self._checked_call(signer, abi.ESCROW_FINALIZE_RELEASE, escrow_id)
        escrow = await self._require_escrow(escrow_id)
        self._guard(escrow.status, "finalize_release")

        now = self._clock()
        closes_at = escrow.dispute_closes_at
        if closes_at is None or now <= closes_at:
            raise PreconditionNotMetError(
                f"Dispute window for {escrow_id} is open until {closes_at} (now {now})"
            )
        tx_hash = await signer.submit_call(call)
        logger.info("escrow.release_finalized", transaction_id=transaction_id, tx_hash=tx_hash)
        return tx_hash

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_escrow(self, transaction_id: str) -> EscrowAccount | None:
        """Current on-chain view of the escrow for a transaction."""
        return await self._read_escrow(escrow_id_for(transaction_id))

    async def get_transaction(self, transaction_id: str) -> Transaction:
        transaction = await self._transactions.get(transaction_id)
        self._record(transaction_id, transaction.status)
        return transaction

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_signer(self, operation: str) -> ChainSigner:
        if self._signer is None:
            raise PreconditionNotMetError(f"{operation} needs a loaded signer (wallet or session key)")
        return self._signer

    def _checked_call(self, signer: ChainSigner, signature: str, *args: Any) -> ChainCall:
        """Build an escrow call and run the signer's policy check on it."""
        call = ChainCall(escrow_address(self.chain_id), signature, args)
        signer.check(call)
        return call

    async def _read_escrow(self, escrow_id: str) -> EscrowAccount | None:
        if self._gateway is None:
            raise PreconditionNotMetError("No chain gateway configured")
        return await with_timeout(self._gateway.get_escrow(escrow_id), "get_escrow", self._timeout)

    async def _require_escrow(self, escrow_id: str) -> EscrowAccount:
        escrow = await self._read_escrow(escrow_id)
        if escrow is None:
            raise PreconditionNotMetError(f"No escrow {escrow_id} on chain {self.chain_id}")
        return escrow

    def _record(self, transaction_id: str, status: TransactionStatus) -> None:
        previous = self._ledger.get(transaction_id)
        self._ledger[transaction_id] = status
        if previous is not status:
            logger.debug(
                "ledger.status_changed",
                transaction_id=transaction_id,
                old_status=previous.value if previous else None,
                new_status=status.value,
            )

    @staticmethod
    def _guard(status: EscrowStatus, event_name: str) -> None:
        """Check the on-chain status allows `event_name`.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        try:
            validate_transition(status.value, event_name)
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(status.value, event_name) from err
