"""Order Status State Machine Guard.

Uses python-statemachine to enforce legal status transitions at the domain level.
No matter what the API or a marketplace variant does, an illegal transition
(e.g., pending_payment -> delivered) is rejected before the order row changes.

OrderStateMachine holds the edges. TRANSITIONS maps every edge to its allowed
roles and side effects; tests/test_domain/test_state_machine.py checks that
the two agree.

Transition table:
    pending_payment   -> confirmed          (confirm_payment)      admin, system
    pending_payment   -> payment_rejected   (reject_payment)       admin
    payment_rejected  -> pending_payment    (resubmit_payment)     buyer
    confirmed         -> assigned           (assign_agent)         agent, admin
    assigned          -> picked_up          (pick_up)              agent, admin
    picked_up         -> in_delivery        (start_delivery)       agent, admin
    in_delivery       -> delivered          (mark_delivered)       agent, admin
    delivered         -> completed          (confirm_receipt)      buyer, admin, system
    delivered         -> disputed           (open_dispute)         buyer, admin
    disputed          -> confirmed          (resolve_to_confirmed) admin
    *pre-delivered*   -> cancelled          (cancel_order)         see table
    disputed          -> cancelled          (cancel_order)         admin
"""

from __future__ import annotations

from dataclasses import dataclass

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from order_settlement.domain.enums import OrderStatus, Role, SideEffect
from order_settlement.domain.exceptions import IllegalTransitionError


class OrderStateMachine(StateMachine):
    """State machine that guards order lifecycle transitions.

    Usage:
        sm = OrderStateMachine(current_status="confirmed")
        sm.assign_agent()  # transitions to assigned
        sm.status          # "assigned"
    """

    # --- States ---
    PENDING_PAYMENT = State("Pending payment", value=OrderStatus.PENDING_PAYMENT.value, initial=True)
    PAYMENT_REJECTED = State("Payment rejected", value=OrderStatus.PAYMENT_REJECTED.value)
    CONFIRMED = State("Confirmed", value=OrderStatus.CONFIRMED.value)
    ASSIGNED = State("Assigned", value=OrderStatus.ASSIGNED.value)
    PICKED_UP = State("Picked up", value=OrderStatus.PICKED_UP.value)
    IN_DELIVERY = State("In delivery", value=OrderStatus.IN_DELIVERY.value)
    DELIVERED = State("Delivered", value=OrderStatus.DELIVERED.value)
    COMPLETED = State("Completed", value=OrderStatus.COMPLETED.value, final=True)
    CANCELLED = State("Cancelled", value=OrderStatus.CANCELLED.value, final=True)
    DISPUTED = State("Disputed", value=OrderStatus.DISPUTED.value)

    # --- Events / Transitions ---

    # Payment
    confirm_payment = PENDING_PAYMENT.to(CONFIRMED)
    reject_payment = PENDING_PAYMENT.to(PAYMENT_REJECTED)
    resubmit_payment = PAYMENT_REJECTED.to(PENDING_PAYMENT)

    # Fulfillment
    assign_agent = CONFIRMED.to(ASSIGNED)
    pick_up = ASSIGNED.to(PICKED_UP)
    start_delivery = PICKED_UP.to(IN_DELIVERY)
    mark_delivered = IN_DELIVERY.to(DELIVERED)

    # Settlement
    confirm_receipt = DELIVERED.to(COMPLETED)

    # Disputes
    open_dispute = DELIVERED.to(DISPUTED)
    resolve_to_confirmed = DISPUTED.to(CONFIRMED)

    # Cancellation (any pre-delivered state, or a dispute resolved for the buyer)
    cancel_order = (
        PENDING_PAYMENT.to(CANCELLED)
        | PAYMENT_REJECTED.to(CANCELLED)
        | CONFIRMED.to(CANCELLED)
        | ASSIGNED.to(CANCELLED)
        | PICKED_UP.to(CANCELLED)
        | IN_DELIVERY.to(CANCELLED)
        | DISPUTED.to(CANCELLED)
    )

    def __init__(self, current_status: str = OrderStatus.PENDING_PAYMENT.value) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current OrderStatus value (e.g., "confirmed").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=str(current_status))

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches OrderStatus enum)."""
        return str(self.current_state.value)


@dataclass(frozen=True)
class TransitionRule:
    """One edge of the order graph with who may take it and what it triggers."""

    source: OrderStatus
    target: OrderStatus
    event: str
    roles: frozenset[Role]
    side_effects: tuple[SideEffect, ...] = ()


def _rule(
    source: OrderStatus,
    target: OrderStatus,
    event: str,
    roles: set[Role],
    *side_effects: SideEffect,
) -> tuple[tuple[OrderStatus, OrderStatus], TransitionRule]:
    return (source, target), TransitionRule(source, target, event, frozenset(roles), side_effects)


_S = OrderStatus
_R = Role

TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], TransitionRule] = dict(
    [
        _rule(_S.PENDING_PAYMENT, _S.CONFIRMED, "confirm_payment",
              {_R.ADMIN, _R.SYSTEM}, SideEffect.REQUIRE_ESCROW),
        _rule(_S.PENDING_PAYMENT, _S.PAYMENT_REJECTED, "reject_payment", {_R.ADMIN}),
        _rule(_S.PAYMENT_REJECTED, _S.PENDING_PAYMENT, "resubmit_payment", {_R.BUYER}),
        _rule(_S.CONFIRMED, _S.ASSIGNED, "assign_agent", {_R.AGENT, _R.ADMIN}),
        _rule(_S.ASSIGNED, _S.PICKED_UP, "pick_up", {_R.AGENT, _R.ADMIN}),
        _rule(_S.PICKED_UP, _S.IN_DELIVERY, "start_delivery", {_R.AGENT, _R.ADMIN}),
        _rule(_S.IN_DELIVERY, _S.DELIVERED, "mark_delivered",
              {_R.AGENT, _R.ADMIN}, SideEffect.START_GRACE_PERIOD),
        _rule(_S.DELIVERED, _S.COMPLETED, "confirm_receipt",
              {_R.BUYER, _R.ADMIN, _R.SYSTEM}, SideEffect.RELEASE_ESCROW),
        _rule(_S.DELIVERED, _S.DISPUTED, "open_dispute",
              {_R.BUYER, _R.ADMIN}, SideEffect.REJECT_PENDING_RELEASES),
        _rule(_S.DISPUTED, _S.CONFIRMED, "resolve_to_confirmed",
              {_R.ADMIN}, SideEffect.RETURN_TO_CLAIM_POOL),
        _rule(_S.PENDING_PAYMENT, _S.CANCELLED, "cancel_order",
              {_R.BUYER, _R.ADMIN, _R.SYSTEM}, SideEffect.REFUND_ESCROW),
        _rule(_S.PAYMENT_REJECTED, _S.CANCELLED, "cancel_order",
              {_R.BUYER, _R.ADMIN}, SideEffect.REFUND_ESCROW),
        _rule(_S.CONFIRMED, _S.CANCELLED, "cancel_order",
              {_R.BUYER, _R.SELLER, _R.ADMIN}, SideEffect.REFUND_ESCROW),
        _rule(_S.ASSIGNED, _S.CANCELLED, "cancel_order", {_R.ADMIN}, SideEffect.REFUND_ESCROW),
        _rule(_S.PICKED_UP, _S.CANCELLED, "cancel_order", {_R.ADMIN}, SideEffect.REFUND_ESCROW),
        _rule(_S.IN_DELIVERY, _S.CANCELLED, "cancel_order", {_R.ADMIN}, SideEffect.REFUND_ESCROW),
        _rule(_S.DISPUTED, _S.CANCELLED, "cancel_order", {_R.ADMIN}, SideEffect.REFUND_ESCROW),
    ]
)

# Timestamp column stamped when an order enters each status
STATUS_TIMESTAMPS: dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.ASSIGNED: "assigned_at",
    OrderStatus.PICKED_UP: "picked_up_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.DISPUTED: "disputed_at",
}

# The only edge allowed to move an order backwards through fulfillment
REGRESSION_EDGES = frozenset({(OrderStatus.DISPUTED, OrderStatus.CONFIRMED)})


def allowed_targets(current_status: OrderStatus) -> list[OrderStatus]:
    """Return the statuses reachable in one step from current_status."""
    return [target for (source, target) in TRANSITIONS if source == current_status]


def validate_transition(current_status: OrderStatus, target_status: OrderStatus) -> TransitionRule:
    """Validate a status transition and return its rule.

    Creates a temporary state machine at current_status and fires the edge's
    event, so the table can never permit an edge the machine does not have.

    Raises:
        IllegalTransitionError: If the edge is not part of the graph.
    """
    rule = TRANSITIONS.get((current_status, target_status))
    if rule is None:
        raise IllegalTransitionError(current_status.value, target_status.value)

    sm = OrderStateMachine(current_status=current_status.value)
    try:
        sm.send(rule.event)
    except TransitionNotAllowed as err:
        raise IllegalTransitionError(current_status.value, target_status.value) from err

    if sm.status != target_status.value:
        raise IllegalTransitionError(current_status.value, target_status.value)
    return rule
