"""On-chain Escrow State Machine Guard.

Uses python-statemachine to mirror the escrow contract's transition rules.
The coordinator checks every state-changing call against this table before
submitting it, so an operation the contract would revert is rejected locally
without spending gas.

The machine is instantiated per check from the status just read on-chain;
it never holds authoritative state itself.

Transition table:
    None       -> Funded      (fund)
    Funded     -> Delivered   (submit_delivery)
    Funded     -> Abandoned   (claim_abandoned)
    Funded     -> Refunded    (refund)
    Delivered  -> Released    (accept)
    Delivered  -> Released    (finalize_release)
    Delivered  -> Disputed    (dispute)
    Disputed   -> Resolved    (resolve)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class EscrowStateMachine(StateMachine):
    """State machine that guards on-chain escrow lifecycle transitions.

    Usage:
        sm = EscrowStateMachine(current_status="Delivered")
        sm.accept()          # transitions to Released
        sm.status            # "Released"
    """

    # --- States ---
    NONE = State("None", value="None", initial=True)
    FUNDED = State("Funded", value="Funded")
    DELIVERED = State("Delivered", value="Delivered")
    RELEASED = State("Released", value="Released", final=True)
    REFUNDED = State("Refunded", value="Refunded", final=True)
    DISPUTED = State("Disputed", value="Disputed")
    RESOLVED = State("Resolved", value="Resolved", final=True)
    ABANDONED = State("Abandoned", value="Abandoned", final=True)

    # --- Events / Transitions ---

    # Funding
    fund = NONE.to(FUNDED)

    # Seller delivery
    submit_delivery = FUNDED.to(DELIVERED)

    # Settlement
    accept = DELIVERED.to(RELEASED)
    finalize_release = DELIVERED.to(RELEASED)
    refund = FUNDED.to(REFUNDED)

    # Disputes
    dispute = DELIVERED.to(DISPUTED)
    resolve = DISPUTED.to(RESOLVED)

    # Missed deadline
    claim_abandoned = FUNDED.to(ABANDONED)

    def __init__(self, current_status: str = "None") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current EscrowStatus value (e.g., "Funded").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches EscrowStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a transition and return the status it leads to.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = EscrowStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
