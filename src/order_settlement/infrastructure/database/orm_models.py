"""SQLAlchemy 2.0 ORM models for the order settlement engine.

Tables:
    1. orders                    — The canonical order record and its status.
    2. order_lines               — Priced lines, created with the order.
    3. escrows                   — At most one fund hold per order.
    4. settlements               — The disbursement of a terminated escrow.
    5. payment_release_requests  — Stakeholder asks to release held funds.
    6. wallet_balances           — Per-user, per-currency balances.
    7. platform_ledger_entries   — Commission credited to the platform.
    8. commission_settings       — Admin-managed rates.
    9. order_events              — Append-only audit log of emitted events.

Design decisions:
    - UUIDs as primary keys, Numeric(18, 2) for money.
    - orders.version is the mapper's version_id_col: every ORM UPDATE is a
      compare-and-swap on it, and a stale write raises StaleDataError.
    - CHECK constraints mirror the enums so invalid values never reach disk.
    - One pending release request per order is enforced by a partial unique
      index rather than by application reads.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from order_settlement.domain.enums import (
    EscrowStatus,
    FundingSource,
    MarketplaceVariant,
    OrderStatus,
    ReleaseRequestStatus,
)


def _in_check(column: str, values: type) -> str:
    allowed = ", ".join(f"'{member.value}'" for member in values)
    return f"{column} IN ({allowed})"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that comes back aware from every driver.

    SQLite drops tzinfo on the way out; values read from it are UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value

    def process_result_value(self, value, dialect):  # noqa: ANN001
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


Money = Numeric(18, 2)
Rate = Numeric(6, 4)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. orders
# ---------------------------------------------------------------------------
class Order(Base):
    """An order placed by a buyer with one seller, fulfilled by at most one agent."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    agent_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        default=None,
        comment="Set exactly once by the atomic claim; cleared when a dispute reopens the order",
    )

    variant: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MarketplaceVariant.STANDARD.value
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.PENDING_PAYMENT.value,
        comment="Current lifecycle state (guarded by OrderStateMachine)",
    )

    # --- Money ---
    base_total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    commission_total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    discount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    display_total: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        comment="What the buyer was charged",
    )
    agent_commission: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0"),
        comment="Agent earnings captured at claim time",
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # --- Fulfillment ---
    funding_source: Mapped[str | None] = mapped_column(String(20), nullable=True, default=None)
    delivery_code: Mapped[str | None] = mapped_column(String(12), nullable=True, default=None)
    grace_period_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    release_eligible_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="Set when the grace period ran out with no dispute",
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    picked_up_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Relationships ---
    lines: Mapped[list[OrderLine]] = relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_check("status", OrderStatus), name="ck_order_valid_status"),
        CheckConstraint(_in_check("variant", MarketplaceVariant), name="ck_order_valid_variant"),
        CheckConstraint("display_total >= 0", name="ck_order_display_total_non_negative"),
        CheckConstraint(
            "base_total >= 0 AND commission_total >= 0 AND delivery_fee >= 0 "
            "AND tax >= 0 AND discount >= 0",
            name="ck_order_amounts_non_negative",
        ),
        Index("idx_order_status", "status"),
        Index("idx_order_agent_status", "agent_id", "status"),
        Index("idx_order_buyer", "buyer_id"),
        Index("idx_order_seller", "seller_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} status={self.status} "
            f"total={self.display_total} {self.currency} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# 2. order_lines
# ---------------------------------------------------------------------------
class OrderLine(Base):
    """One catalog item on an order, priced with the rate in force at checkout."""

    __tablename__ = "order_lines"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_base_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit_display_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(
        Rate,
        nullable=False,
        comment="Platform rate captured at checkout; never re-read",
    )
    line_commission: Mapped[Decimal] = mapped_column(Money, nullable=False)
    pricing_flagged: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Display price found below base price during a pricing audit",
    )

    order: Mapped[Order] = relationship("Order", back_populates="lines")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_line_positive_quantity"),
        CheckConstraint("unit_base_price >= 0", name="ck_line_base_non_negative"),
        Index("idx_line_order", "order_id"),
    )

    def __repr__(self) -> str:
        return f"<OrderLine item={self.item_id} qty={self.quantity} flagged={self.pricing_flagged}>"


# ---------------------------------------------------------------------------
# 3. escrows
# ---------------------------------------------------------------------------
class Escrow(Base):
    """Funds held against one order until a single release or refund."""

    __tablename__ = "escrows"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EscrowStatus.HELD.value
    )
    funding_source: Mapped[str] = mapped_column(String(20), nullable=False)
    held_by: Mapped[str] = mapped_column(String(80), nullable=False)

    held_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    release_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(_in_check("status", EscrowStatus), name="ck_escrow_valid_status"),
        CheckConstraint(
            _in_check("funding_source", FundingSource), name="ck_escrow_valid_funding"
        ),
        CheckConstraint("amount >= 0", name="ck_escrow_amount_non_negative"),
        CheckConstraint(
            "NOT (released_at IS NOT NULL AND refunded_at IS NOT NULL)",
            name="ck_escrow_single_termination",
        ),
    )

    def __repr__(self) -> str:
        return f"<Escrow id={self.id} order={self.order_id} status={self.status} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 4. settlements
# ---------------------------------------------------------------------------
class Settlement(Base):
    """How a terminated escrow was paid out. One row per escrow."""

    __tablename__ = "settlements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrows.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False
    )
    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="released or refunded"
    )
    seller_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    agent_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    platform_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    buyer_refund_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("kind IN ('released', 'refunded')", name="ck_settlement_kind"),
        CheckConstraint(
            "seller_amount >= 0 AND agent_amount >= 0 AND buyer_refund_amount >= 0",
            name="ck_settlement_payouts_non_negative",
        ),
        Index("idx_settlement_order", "order_id"),
    )


# ---------------------------------------------------------------------------
# 5. payment_release_requests
# ---------------------------------------------------------------------------
class PaymentReleaseRequest(Base):
    """A stakeholder's request to disburse the escrow of a delivered order."""

    __tablename__ = "payment_release_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    requested_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    requested_by_role: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReleaseRequestStatus.PENDING.value
    )
    auto_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    decided_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    decision_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            _in_check("status", ReleaseRequestStatus), name="ck_release_request_valid_status"
        ),
        Index(
            "uq_release_request_one_pending",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_release_request_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<PaymentReleaseRequest id={self.id} order={self.order_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 6. wallet_balances
# ---------------------------------------------------------------------------
class WalletBalance(Base):
    """Spendable balance of one user in one currency. Only adjusted atomically."""

    __tablename__ = "wallet_balances"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "currency", name="uq_wallet_user_currency"),
        CheckConstraint("balance >= 0", name="ck_wallet_non_negative"),
    )


# ---------------------------------------------------------------------------
# 7. platform_ledger_entries
# ---------------------------------------------------------------------------
class PlatformLedgerEntry(Base):
    """Platform pseudo-account: one credit (or debit) per released escrow."""

    __tablename__ = "platform_ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False
    )
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrows.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        comment="Negative when the platform funded a discount above its margin",
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    entry_type: Mapped[str] = mapped_column(String(20), nullable=False, default="commission")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_platform_ledger_order", "order_id"),)


# ---------------------------------------------------------------------------
# 8. commission_settings
# ---------------------------------------------------------------------------
class CommissionSetting(Base):
    """An admin-managed rate, read when orders are priced."""

    __tablename__ = "commission_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint("rate >= 0 AND rate <= 1", name="ck_commission_rate_bounds"),
    )


# ---------------------------------------------------------------------------
# 9. order_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class OrderEvent(Base):
    """Immutable audit record of every domain event emitted for an order.

    This table is APPEND-ONLY. Rows are written in the same transaction as
    the change they describe.
    """

    __tablename__ = "order_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    actor: Mapped[str] = mapped_column(String(80), nullable=False, default="system:SYSTEM")
    payload: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_order_event_order", "order_id"),
        Index("idx_order_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return f"<OrderEvent order={self.order_id} type={self.event_type}>"
