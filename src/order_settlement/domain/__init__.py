"""Domain layer — pure business logic with zero framework dependencies."""

from order_settlement.domain.actor import Actor
from order_settlement.domain.enums import (
    AgentType,
    EscrowStatus,
    EventType,
    FundingSource,
    MarketplaceVariant,
    OrderStatus,
    ReleaseRequestStatus,
    Role,
    SideEffect,
)
from order_settlement.domain.exceptions import (
    IllegalTransitionError,
    NotFoundError,
    SettlementError,
    StateAlreadySatisfiedError,
)
from order_settlement.domain.state_machine import (
    TRANSITIONS,
    OrderStateMachine,
    TransitionRule,
    validate_transition,
)
from order_settlement.domain.variants import VariantPolicy

__all__ = [
    "Actor",
    "AgentType",
    "EscrowStatus",
    "EventType",
    "FundingSource",
    "MarketplaceVariant",
    "OrderStatus",
    "ReleaseRequestStatus",
    "Role",
    "SideEffect",
    "IllegalTransitionError",
    "NotFoundError",
    "SettlementError",
    "StateAlreadySatisfiedError",
    "TRANSITIONS",
    "OrderStateMachine",
    "TransitionRule",
    "validate_transition",
    "VariantPolicy",
]
