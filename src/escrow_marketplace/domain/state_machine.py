"""Escrow Instance State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API or an adversarial caller does, an illegal transition
(e.g., OPEN -> accept) raises TransitionNotAllowed before any funds move.

The state machine is instantiated per call and validates the transition before
the contract's status field is updated. Caller and balance guards live on the
contract itself; this table only knows which operation is legal from which state.

Transition table:
    OPEN  -> NEGO   (bid)
    NEGO  -> NEGO   (bid)
    HOLD  -> NEGO   (bid)
    NEGO  -> HOLD   (hold)
    NEGO  -> OPEN   (cancel, refuse)
    HOLD  -> OPEN   (cancel, refuse)
    OPEN  -> OPEN   (adjust)          likewise NEGO, HOLD
    NEGO  -> DONE   (accept)          likewise HOLD
    OPEN  -> DONE   (revoke)          likewise NEGO, HOLD
    DONE  -> DONE   (sweep_the_table)
    *     -> DONE   (do_a_backflip)
    *     -> *      (reassign)

DONE is terminal: every event fired from it loops back to DONE.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class EscrowStateMachine(StateMachine):
    """State machine that guards the escrow negotiation lifecycle.

    Usage:
        sm = EscrowStateMachine(current_status="NEGO")
        sm.hold()            # transitions to HOLD
        sm.status            # "HOLD"
    """

    # --- States ---
    OPEN = State("OPEN", initial=True)
    NEGO = State("NEGO")
    HOLD = State("HOLD")
    DONE = State("DONE")

    # --- Events / Transitions ---

    # Negotiation
    bid = OPEN.to(NEGO) | NEGO.to.itself() | HOLD.to(NEGO)
    hold = NEGO.to(HOLD)
    cancel = NEGO.to(OPEN) | HOLD.to(OPEN)
    refuse = NEGO.to(OPEN) | HOLD.to(OPEN)
    adjust = OPEN.to.itself() | NEGO.to.itself() | HOLD.to.itself()

    # Settlement
    accept = NEGO.to(DONE) | HOLD.to(DONE)
    revoke = OPEN.to(DONE) | NEGO.to(DONE) | HOLD.to(DONE)
    sweep_the_table = DONE.to.itself()

    # Administrative
    do_a_backflip = (
        OPEN.to(DONE) | NEGO.to(DONE) | HOLD.to(DONE) | DONE.to.itself()
    )
    reassign = (
        OPEN.to.itself() | NEGO.to.itself() | HOLD.to.itself() | DONE.to.itself()
    )

    def __init__(self, current_status: str = "OPEN") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current SaleStatus value (e.g., "NEGO").
                           Must match one of the State value strings exactly.
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
        """Return the current state value as a string (matches SaleStatus enum)."""
        return str(self.current_state_value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Args:
        current_status: Current SaleStatus value.
        event_name: The event to fire (e.g., "accept").

    Returns:
        The new status string after the transition.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = EscrowStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method) or event_name not in {
        e.id for e in sm.events
    }:
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
