"""Domain events handed to the notification layer after a commit.

Events are immutable values. The orchestrator collects them while an
operation runs, appends them to the audit trail inside the transaction, and
dispatches them only once the transaction has committed.
"""

from __future__ import annotations

import dataclasses
import enum
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, ClassVar

from order_settlement.domain.enums import EventType


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """Base class for every emitted event."""

    event_type: ClassVar[EventType]

    order_id: uuid.UUID
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def name(self) -> str:
        return self.event_type.value

    def payload(self) -> dict[str, Any]:
        """Event-specific fields, JSON-ready."""
        return {
            f.name: _jsonable(getattr(self, f.name))
            for f in dataclasses.fields(self)
            if f.name not in ("order_id", "occurred_at")
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.name,
            "order_id": str(self.order_id),
            "occurred_at": self.occurred_at.isoformat(),
            **self.payload(),
        }


@dataclass(frozen=True, kw_only=True)
class OrderCreated(DomainEvent):
    event_type: ClassVar[EventType] = EventType.ORDER_CREATED

    buyer_id: str
    seller_id: str
    variant: str
    display_total: Decimal


@dataclass(frozen=True, kw_only=True)
class OrderStatusChanged(DomainEvent):
    event_type: ClassVar[EventType] = EventType.ORDER_STATUS_CHANGED

    from_status: str
    to_status: str
    actor: str = "SYSTEM"


@dataclass(frozen=True, kw_only=True)
class OrderClaimed(DomainEvent):
    event_type: ClassVar[EventType] = EventType.ORDER_CLAIMED

    agent_id: str


@dataclass(frozen=True, kw_only=True)
class EscrowHeld(DomainEvent):
    event_type: ClassVar[EventType] = EventType.ESCROW_HELD

    escrow_id: uuid.UUID
    amount: Decimal
    currency: str
    funding_source: str


@dataclass(frozen=True, kw_only=True)
class EscrowReleased(DomainEvent):
    event_type: ClassVar[EventType] = EventType.ESCROW_RELEASED

    seller_amount: Decimal
    agent_amount: Decimal
    commission_amount: Decimal


@dataclass(frozen=True, kw_only=True)
class EscrowRefunded(DomainEvent):
    event_type: ClassVar[EventType] = EventType.ESCROW_REFUNDED

    amount: Decimal


@dataclass(frozen=True, kw_only=True)
class ReleaseRequested(DomainEvent):
    event_type: ClassVar[EventType] = EventType.RELEASE_REQUESTED

    request_id: uuid.UUID
    requested_by: str


@dataclass(frozen=True, kw_only=True)
class ReleaseDecided(DomainEvent):
    event_type: ClassVar[EventType] = EventType.RELEASE_DECIDED

    request_id: uuid.UUID
    approved: bool


@dataclass(frozen=True, kw_only=True)
class ReleaseEligible(DomainEvent):
    """The grace period ended without a dispute; release may now be approved."""

    event_type: ClassVar[EventType] = EventType.RELEASE_ELIGIBLE
