"""Domain enumerations for the order settlement engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class OrderStatus(enum.StrEnum):
    """Lifecycle states of an order, shared by every marketplace variant.

    State transitions are enforced by the OrderStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING_PAYMENT = "pending_payment"
    PAYMENT_REJECTED = "payment_rejected"
    CONFIRMED = "confirmed"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_DELIVERY = "in_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class MarketplaceVariant(enum.StrEnum):
    """The three storefronts that share one settlement engine."""

    STANDARD = "standard"
    LOCAL_MARKET = "local_market"
    GROCERY = "grocery"


class Role(enum.StrEnum):
    """Who is acting on an order.

    SYSTEM is used for transitions the engine performs itself
    (wallet-funded confirmation, release after an approved request).
    """

    BUYER = "buyer"
    SELLER = "seller"
    AGENT = "agent"
    ADMIN = "admin"
    SYSTEM = "system"


class AgentType(enum.StrEnum):
    """Delivery agent types. Each has its own fee schedule."""

    FAST_DELIVERY = "fast_delivery"
    PICKUP_DELIVERY = "pickup_delivery"


class EscrowStatus(enum.StrEnum):
    """Escrow moves HELD -> RELEASED or HELD -> REFUNDED, exactly once."""

    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class FundingSource(enum.StrEnum):
    """How the buyer paid for the order."""

    WALLET = "wallet"
    PAYMENT_PROOF = "payment_proof"


class ReleaseRequestStatus(enum.StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SideEffect(enum.StrEnum):
    """Work the orchestrator must perform alongside a status transition."""

    REQUIRE_ESCROW = "require_escrow"
    START_GRACE_PERIOD = "start_grace_period"
    RELEASE_ESCROW = "release_escrow"
    REFUND_ESCROW = "refund_escrow"
    REJECT_PENDING_RELEASES = "reject_pending_releases"
    RETURN_TO_CLAIM_POOL = "return_to_claim_pool"


class EventType(enum.StrEnum):
    """Types of domain events emitted to the notification layer.

    Every event is also appended to the order_events table.
    """

    ORDER_CREATED = "OrderCreated"
    ORDER_STATUS_CHANGED = "OrderStatusChanged"
    ORDER_CLAIMED = "OrderClaimed"
    ESCROW_HELD = "EscrowHeld"
    ESCROW_RELEASED = "EscrowReleased"
    ESCROW_REFUNDED = "EscrowRefunded"
    RELEASE_REQUESTED = "ReleaseRequested"
    RELEASE_DECIDED = "ReleaseDecided"
    RELEASE_ELIGIBLE = "ReleaseEligible"
