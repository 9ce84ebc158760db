"""In-memory chain and ledger for dry runs.

InMemoryChain implements the ChainGateway protocol over a simulated escrow
contract and ERC-20 balances, enforcing the same transition and timing rules
the contract does, on a SimulatedClock. LedgerSimulator plays the backend
transaction API behind an httpx.MockTransport, and reads InMemoryChain
itself when a funding tx hash is reported, just as the real backend reads
the chain.

Used by simulation.py and the test suite; nothing here touches a network.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

import httpx
from eth_utils import keccak
from statemachine.exceptions import TransitionNotAllowed

from agentic_escrow.domain.enums import DisputeState, EscrowStatus, GasStrategy, TransactionStatus
from agentic_escrow.domain.exceptions import ChainSubmissionError
from agentic_escrow.domain.models import AccountValidation, EscrowAccount, compute_platform_fee
from agentic_escrow.domain.state_machine import validate_transition
from agentic_escrow.logging_config import get_logger
from agentic_escrow.registry import BASE_SEPOLIA_CHAIN_ID, escrow_address
from agentic_escrow.services.escrow_coordinator import escrow_id_for
from agentic_escrow.wallet import abi

if TYPE_CHECKING:
    from agentic_escrow.domain.models import ChainCall

logger = get_logger(__name__)

_EVENT_FOR_SIGNATURE = {
    abi.ESCROW_CREATE: "fund",
    abi.ESCROW_SUBMIT_DELIVERY: "submit_delivery",
    abi.ESCROW_ACCEPT: "accept",
    abi.ESCROW_FINALIZE_RELEASE: "finalize_release",
    abi.ESCROW_DISPUTE: "dispute",
    abi.ESCROW_CLAIM_ABANDONED: "claim_abandoned",
}


class SimulatedClock:
    """Manually advanced unix clock."""

    def __init__(self, start: int = 1_750_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


@dataclass(frozen=True)
class SubmittedCall:
    sender: str
    call: ChainCall
    gas_strategy: GasStrategy
    tx_hash: str
    validation: AccountValidation | None = None


class InMemoryChain:
    """ChainGateway over a simulated escrow contract."""

    def __init__(
        self,
        chain_id: int = BASE_SEPOLIA_CHAIN_ID,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.chain_id = chain_id
        self.clock = clock or SimulatedClock()
        self.escrow_contract = escrow_address(chain_id).lower()
        self.native_balances: dict[str, int] = {}
        self.token_balances: dict[tuple[str, str], int] = {}
        self.allowances: dict[tuple[str, str, str], int] = {}
        self.escrows: dict[str, EscrowAccount] = {}
        self.revoked_validations: set[tuple[str, str]] = set()
        self.installed_validations: set[tuple[str, str]] = set()
        self.submitted: list[SubmittedCall] = []

    # --- setup helpers ---

    def set_native_balance(self, address: str, wei: int) -> None:
        self.native_balances[address.lower()] = wei

    def mint(self, token: str, holder: str, amount: int) -> None:
        key = (token.lower(), holder.lower())
        self.token_balances[key] = self.token_balances.get(key, 0) + amount

    def token_balance(self, token: str, holder: str) -> int:
        return self.token_balances.get((token.lower(), holder.lower()), 0)

    # --- ChainGateway ---

    async def get_balance(self, address: str) -> int:
        return self.native_balances.get(address.lower(), 0)

    async def get_escrow(self, escrow_id: str) -> EscrowAccount | None:
        return self.escrows.get(escrow_id.lower())

    async def is_validation_revoked(self, smart_account: str, validation_id: str) -> bool:
        return (smart_account.lower(), validation_id.lower()) in self.revoked_validations

    async def send_call(
        self,
        *,
        account: Any,
        sender: str,
        call: ChainCall,
        gas_strategy: GasStrategy,
        validation: AccountValidation | None = None,
    ) -> str:
        sender = sender.lower()
        if validation is not None and not validation.is_root:
            self._validate_plugin(sender, validation)
        if gas_strategy is GasStrategy.SELF_FUNDED and not self.native_balances.get(sender):
            raise ChainSubmissionError("revert: sender cannot pay for gas")
        if call.signature == abi.ERC20_APPROVE:
            self._approve(sender, call)
        elif call.signature == abi.ACCOUNT_UNINSTALL_VALIDATION:
            self._uninstall(sender, call)
        elif call.signature in _EVENT_FOR_SIGNATURE:
            if call.target.lower() != self.escrow_contract:
                raise ChainSubmissionError(f"revert: {call.target} is not the escrow contract")
            self._escrow_call(sender, call)
        else:
            raise ChainSubmissionError(f"revert: unknown function {call.signature}")

        tx_hash = "0x" + keccak(text=f"{self.chain_id}:{len(self.submitted)}:{sender}").hex()
        self.submitted.append(SubmittedCall(sender, call, gas_strategy, tx_hash, validation))
        return tx_hash

    # --- contract logic ---

    def _validate_plugin(self, sender: str, validation: AccountValidation) -> None:
        key = (sender, validation.validation_id.lower())
        if key in self.revoked_validations:
            raise ChainSubmissionError("revert: validation has been uninstalled")
        if key not in self.installed_validations:
            if validation.enable is None:
                raise ChainSubmissionError("revert: validation not installed")
            self.installed_validations.add(key)

    def _approve(self, sender: str, call: ChainCall) -> None:
        spender, amount = call.args
        self.allowances[(call.target.lower(), sender, spender.lower())] = amount

    def _uninstall(self, sender: str, call: ChainCall) -> None:
        if call.target.lower() != sender:
            raise ChainSubmissionError("revert: only the account can uninstall its validators")
        validation_id = call.args[0]
        self.revoked_validations.add((sender, validation_id.lower()))
        self.installed_validations.discard((sender, validation_id.lower()))

    def _escrow_call(self, sender: str, call: ChainCall) -> None:
        escrow_id = call.args[0].lower()
        existing = self.escrows.get(escrow_id)
        status = existing.status if existing else EscrowStatus.NONE
        event = _EVENT_FOR_SIGNATURE[call.signature]
        try:
            new_status = EscrowStatus(validate_transition(status.value, event))
        except TransitionNotAllowed as err:
            raise ChainSubmissionError(f"revert: cannot {event} from {status.value}") from err

        now = self.clock()
        if existing is None:
            self.escrows[escrow_id] = self._create(sender, escrow_id, call.args, now)
            return

        if event == "submit_delivery":
            self._only(sender, existing.seller)
            if now >= existing.deadline:
                raise ChainSubmissionError("revert: deadline passed")
            updated = existing.with_status(new_status, delivered_at=now, proof_hash=call.args[1])
        elif event == "accept":
            self._only(sender, existing.buyer)
            self.mint(existing.token, existing.seller, existing.locked_amount)
            updated = existing.with_status(new_status)
        elif event == "finalize_release":
            self._only(sender, existing.seller)
            if now <= existing.delivered_at + existing.dispute_window:
                raise ChainSubmissionError("revert: dispute window still open")
            self.mint(existing.token, existing.seller, existing.locked_amount)
            updated = existing.with_status(new_status)
        elif event == "dispute":
            self._only(sender, existing.buyer)
            if now > existing.delivered_at + existing.dispute_window:
                raise ChainSubmissionError("revert: dispute window closed")
            updated = existing.with_status(new_status)
        else:  # claim_abandoned
            self._only(sender, existing.buyer)
            if now <= existing.abandonable_after:
                raise ChainSubmissionError("revert: grace period not over")
            self.mint(existing.token, existing.buyer, existing.locked_amount)
            updated = existing.with_status(new_status)
        self.escrows[escrow_id] = updated

    def _create(self, buyer: str, escrow_id: str, args: tuple, now: int) -> EscrowAccount:
        _, seller, amount, token, deadline = args
        token = token.lower()
        allowance_key = (token, buyer, self.escrow_contract)
        if self.allowances.get(allowance_key, 0) < amount:
            raise ChainSubmissionError("revert: insufficient allowance")
        if self.token_balance(token, buyer) < amount:
            raise ChainSubmissionError("revert: insufficient balance")
        if deadline <= now:
            raise ChainSubmissionError("revert: deadline in the past")
        self.allowances[allowance_key] -= amount
        self.token_balances[(token, buyer)] -= amount
        fee = compute_platform_fee(amount)
        return EscrowAccount(
            escrow_id=escrow_id,
            token=token,
            buyer=buyer,
            seller=seller.lower(),
            locked_amount=amount - fee,
            platform_fee=fee,
            status=EscrowStatus.FUNDED,
            created_at=now,
            deadline=deadline,
        )

    @staticmethod
    def _only(sender: str, allowed: str) -> None:
        if sender != allowed.lower():
            raise ChainSubmissionError(f"revert: {sender} is not {allowed}")


# ---------------------------------------------------------------------------
# Backend ledger
# ---------------------------------------------------------------------------


@dataclass
class _DisputeRecord:
    created_at: str
    evidence: list[dict[str, str]] = field(default_factory=list)
    status: DisputeState = DisputeState.EVALUATING


class LedgerSimulator:
    """The backend transaction API, served through httpx.MockTransport."""

    def __init__(self, chain: InMemoryChain) -> None:
        self.chain = chain
        self.transactions: dict[str, dict[str, Any]] = {}
        self.disputes: dict[str, _DisputeRecord] = {}
        self.requests: list[tuple[str, str]] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def _timestamp(self) -> str:
        return datetime.fromtimestamp(self.chain.clock(), tz=timezone.utc).isoformat()

    def open_transaction(
        self,
        transaction_id: str,
        *,
        service_id: str = "svc_sim",
        buyer_agent_id: str = "agent_buyer",
        seller_agent_id: str = "agent_seller",
        price: str = "100",
    ) -> dict[str, Any]:
        record = {
            "id": transaction_id,
            "serviceId": service_id,
            "buyerAgentId": buyer_agent_id,
            "sellerAgentId": seller_agent_id,
            "unitPrice": price,
            "subtotal": price,
            "currency": "USDC",
            "paymentMethod": "crypto",
            "status": TransactionStatus.PENDING.value,
            "createdAt": self._timestamp(),
            "updatedAt": self._timestamp(),
        }
        self.transactions[transaction_id] = record
        return record

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if request.headers.get("X-API-Key") in (None, ""):
            return self._error(401, "Missing API key")
        parts = request.url.path.strip("/").split("/")[3:]  # after api/v1/transactions
        body = json.loads(request.content) if request.content else {}

        if not parts:
            items = list(self.transactions.values())
            return self._ok({"transactions": items, "total": len(items), "limit": 20, "offset": 0})

        record = self.transactions.get(parts[0])
        if record is None:
            return self._error(404, f"Transaction {parts[0]} not found")
        action = "/".join(parts[1:])
        handler = {
            ("GET", ""): self._get,
            ("POST", "fund"): self._fund,
            ("POST", "deliver"): self._deliver,
            ("POST", "confirm"): self._confirm,
            ("POST", "dispute"): self._open_dispute,
            ("GET", "dispute"): self._get_dispute,
            ("POST", "dispute/evidence"): self._add_evidence,
        }.get((request.method, action))
        if handler is None:
            return self._error(404, f"No route {request.method} {request.url.path}")
        return handler(record, body)

    def _get(self, record: dict[str, Any], body: dict[str, Any]) -> httpx.Response:
        return self._ok(record)

    def _fund(self, record: dict[str, Any], body: dict[str, Any]) -> httpx.Response:
        escrow = self.chain.escrows.get(escrow_id_for(record["id"]).lower())
        if escrow is None or escrow.status is not EscrowStatus.FUNDED:
            return self._error(400, "On-chain escrow not found or not funded")
        self._update(record, status=TransactionStatus.ESCROWED.value, escrowTxHash=body["txHash"])
        return self._ok(
            {
                "id": record["id"],
                "status": record["status"],
                "escrowTxHash": body["txHash"],
                "onChain": {
                    "escrowId": escrow.escrow_id,
                    "buyer": escrow.buyer,
                    "seller": escrow.seller,
                    "lockedAmount": str(escrow.locked_amount),
                    "platformFee": str(escrow.platform_fee),
                    "status": escrow.status.value,
                },
            }
        )

    def _deliver(self, record: dict[str, Any], body: dict[str, Any]) -> httpx.Response:
        self._update(
            record,
            status=TransactionStatus.DELIVERED.value,
            responsePayload=body.get("responsePayload"),
            deliveredAt=self._timestamp(),
        )
        return self._ok(record)

    def _confirm(self, record: dict[str, Any], body: dict[str, Any]) -> httpx.Response:
        if record["status"] not in (TransactionStatus.DELIVERED.value, TransactionStatus.ESCROWED.value):
            return self._error(400, f"Cannot confirm a {record['status']} transaction")
        self._update(record, status=TransactionStatus.COMPLETED.value, completedAt=self._timestamp())
        return self._ok(record)

    def _open_dispute(self, record: dict[str, Any], body: dict[str, Any]) -> httpx.Response:
        self._update(record, status=TransactionStatus.DISPUTED.value, disputeReason=body.get("reason"))
        self.disputes[record["id"]] = _DisputeRecord(created_at=self._timestamp())
        return self._ok(record)

    def _get_dispute(self, record: dict[str, Any], body: dict[str, Any]) -> httpx.Response:
        dispute = self.disputes.get(record["id"])
        if dispute is None:
            return self._error(404, "No dispute for this transaction")
        return self._ok(
            {
                "status": dispute.status.value,
                "outcome": None,
                "buyerPercent": None,
                "sellerPercent": None,
                "evidenceCount": len(dispute.evidence),
                "createdAt": dispute.created_at,
                "resolvedAt": None,
            }
        )

    def _add_evidence(self, record: dict[str, Any], body: dict[str, Any]) -> httpx.Response:
        dispute = self.disputes.get(record["id"])
        if dispute is None:
            return self._error(404, "No dispute for this transaction")
        dispute.evidence.append(body)
        return self._ok({"evidenceId": f"ev_{len(dispute.evidence)}"})

    def _update(self, record: dict[str, Any], **changes: Any) -> None:
        record.update(changes, updatedAt=self._timestamp())

    @staticmethod
    def _ok(data: Any) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": data})

    @staticmethod
    def _error(status: int, message: str) -> httpx.Response:
        return httpx.Response(status, json={"success": False, "error": message})
