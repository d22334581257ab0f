"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the UnitOfWork's responsibility).

Every write that another request could race is a single conditional
statement whose affected-row count tells the caller whether it won:
    - OrderRepository.claim           UPDATE ... WHERE agent_id IS NULL AND status IN (...)
    - EscrowRepository.terminate      UPDATE ... WHERE status = 'held'
    - ReleaseRequestRepository.decide UPDATE ... WHERE status = 'pending'
    - WalletRepository.credit / debit balance = balance +/- :amount
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite

from order_settlement.domain.enums import (
    EscrowStatus,
    OrderStatus,
    ReleaseRequestStatus,
)
from order_settlement.infrastructure.database.orm_models import (
    CommissionSetting,
    Escrow,
    Order,
    OrderEvent,
    PaymentReleaseRequest,
    PlatformLedgerEntry,
    Settlement,
    WalletBalance,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from order_settlement.domain.events import DomainEvent

# Statuses in which an order occupies its agent
AGENT_ACTIVE_STATUSES = (
    OrderStatus.ASSIGNED,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_DELIVERY,
)


def _values(statuses: Iterable[OrderStatus]) -> list[str]:
    return [status.value for status in statuses]


class OrderRepository:
    """Data access for orders and their lines."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, order: Order) -> Order:
        """Insert an order together with its lines."""
        self._session.add(order)
        await self._session.flush()
        return order

    async def get_by_id(self, order_id: uuid.UUID, *, refresh: bool = False) -> Order | None:
        """Fetch an order; refresh=True overwrites any stale identity-map copy."""
        stmt = select(Order).where(Order.id == order_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def count_active_for_agent(self, agent_id: str) -> int:
        """Number of orders the agent is currently fulfilling."""
        result = await self._session.execute(
            select(func.count())
            .select_from(Order)
            .where(
                Order.agent_id == agent_id,
                Order.status.in_(_values(AGENT_ACTIVE_STATUSES)),
            )
        )
        return int(result.scalar_one())

    async def claim(
        self,
        order_id: uuid.UUID,
        agent_id: str,
        eligible_statuses: Iterable[OrderStatus],
        *,
        agent_commission: Decimal,
        delivery_code: str,
    ) -> bool:
        """Assign the agent if and only if nobody holds the order yet.

        Returns True when this statement won the claim.
        """
        now = datetime.now(UTC)
        result = await self._session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.agent_id.is_(None),
                Order.status.in_(_values(eligible_statuses)),
            )
            .values(
                agent_id=agent_id,
                status=OrderStatus.ASSIGNED.value,
                assigned_at=now,
                updated_at=now,
                agent_commission=agent_commission,
                delivery_code=delivery_code,
                version=Order.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def awaiting_release_eligibility(self) -> list[Order]:
        """Delivered orders whose grace period has been recorded."""
        result = await self._session.execute(
            select(Order)
            .where(
                Order.status == OrderStatus.DELIVERED.value,
                Order.grace_period_ends_at.is_not(None),
            )
            .order_by(Order.grace_period_ends_at.asc())
        )
        return list(result.scalars().all())


class EscrowRepository:
    """Data access for escrow holds."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, escrow: Escrow) -> Escrow:
        """Insert a hold. The unique order_id rejects a second one."""
        self._session.add(escrow)
        await self._session.flush()
        return escrow

    async def get_by_id(self, escrow_id: uuid.UUID, *, refresh: bool = False) -> Escrow | None:
        stmt = select(Escrow).where(Escrow.id == escrow_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_order(self, order_id: uuid.UUID, *, refresh: bool = False) -> Escrow | None:
        stmt = select(Escrow).where(Escrow.order_id == order_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def terminate(
        self,
        escrow_id: uuid.UUID,
        new_status: EscrowStatus,
        reason: str | None = None,
    ) -> bool:
        """Move a held escrow to released or refunded. False if it was not held."""
        now = datetime.now(UTC)
        values: dict = {"status": new_status.value, "release_reason": reason}
        if new_status is EscrowStatus.RELEASED:
            values["released_at"] = now
        else:
            values["refunded_at"] = now

        result = await self._session.execute(
            update(Escrow)
            .where(Escrow.id == escrow_id, Escrow.status == EscrowStatus.HELD.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SettlementRepository:
    """Data access for settlements and the platform pseudo-account."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, settlement: Settlement) -> Settlement:
        self._session.add(settlement)
        await self._session.flush()
        return settlement

    async def credit_platform(
        self,
        order_id: uuid.UUID,
        escrow_id: uuid.UUID,
        amount: Decimal,
        currency: str,
    ) -> PlatformLedgerEntry:
        entry = PlatformLedgerEntry(
            order_id=order_id,
            escrow_id=escrow_id,
            amount=amount,
            currency=currency,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def platform_total(self, currency: str) -> Decimal:
        result = await self._session.execute(
            select(func.coalesce(func.sum(PlatformLedgerEntry.amount), 0)).where(
                PlatformLedgerEntry.currency == currency
            )
        )
        return Decimal(str(result.scalar_one()))


class ReleaseRequestRepository:
    """Data access for payment release requests."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, request: PaymentReleaseRequest) -> PaymentReleaseRequest:
        """Insert a request. The partial unique index rejects a second pending one."""
        self._session.add(request)
        await self._session.flush()
        return request

    async def get_by_id(
        self, request_id: uuid.UUID, *, refresh: bool = False
    ) -> PaymentReleaseRequest | None:
        stmt = select(PaymentReleaseRequest).where(PaymentReleaseRequest.id == request_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pending_for_order(self, order_id: uuid.UUID) -> PaymentReleaseRequest | None:
        result = await self._session.execute(
            select(PaymentReleaseRequest).where(
                PaymentReleaseRequest.order_id == order_id,
                PaymentReleaseRequest.status == ReleaseRequestStatus.PENDING.value,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_order(self, order_id: uuid.UUID) -> list[PaymentReleaseRequest]:
        result = await self._session.execute(
            select(PaymentReleaseRequest)
            .where(PaymentReleaseRequest.order_id == order_id)
            .order_by(PaymentReleaseRequest.created_at.asc())
        )
        return list(result.scalars().all())

    async def decide(
        self,
        request_id: uuid.UUID,
        new_status: ReleaseRequestStatus,
        decided_by: str,
        notes: str | None = None,
        auto_approved: bool = False,
    ) -> bool:
        """Close a pending request. False if it was already decided."""
        result = await self._session.execute(
            update(PaymentReleaseRequest)
            .where(
                PaymentReleaseRequest.id == request_id,
                PaymentReleaseRequest.status == ReleaseRequestStatus.PENDING.value,
            )
            .values(
                status=new_status.value,
                decided_by=decided_by,
                decision_notes=notes,
                auto_approved=auto_approved,
                decided_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class WalletRepository:
    """Atomic wallet balance adjustments."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def _insert(self):  # noqa: ANN202
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise RuntimeError(f"Wallet upsert not supported on the {dialect} dialect")

    async def balance(self, user_id: str, currency: str) -> Decimal:
        result = await self._session.execute(
            select(WalletBalance.balance).where(
                WalletBalance.user_id == user_id,
                WalletBalance.currency == currency,
            )
        )
        value = result.scalar_one_or_none()
        return Decimal("0.00") if value is None else Decimal(str(value))

    async def credit(self, user_id: str, currency: str, amount: Decimal) -> None:
        """balance += amount, creating the wallet row on first credit."""
        now = datetime.now(UTC)
        insert = self._insert()
        stmt = insert(WalletBalance).values(
            id=uuid.uuid4(),
            user_id=user_id,
            currency=currency,
            balance=amount,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "currency"],
            set_={
                "balance": WalletBalance.balance + stmt.excluded.balance,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self._session.execute(stmt)

    async def debit(self, user_id: str, currency: str, amount: Decimal) -> bool:
        """balance -= amount only if the balance covers it."""
        result = await self._session.execute(
            update(WalletBalance)
            .where(
                WalletBalance.user_id == user_id,
                WalletBalance.currency == currency,
                WalletBalance.balance >= amount,
            )
            .values(
                balance=WalletBalance.balance - amount,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class CommissionSettingRepository:
    """Data access for admin-managed rates."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_rate(self, key: str) -> Decimal | None:
        result = await self._session.execute(
            select(CommissionSetting.rate).where(CommissionSetting.key == key)
        )
        value = result.scalar_one_or_none()
        return None if value is None else Decimal(str(value))

    async def upsert(self, key: str, rate: Decimal, updated_by: str) -> CommissionSetting:
        setting = await self._session.get(CommissionSetting, key)
        if setting is None:
            setting = CommissionSetting(key=key, rate=rate, updated_by=updated_by)
            self._session.add(setting)
        else:
            setting.rate = rate
            setting.updated_by = updated_by
        await self._session.flush()
        return setting

    async def all(self) -> list[CommissionSetting]:
        result = await self._session.execute(
            select(CommissionSetting).order_by(CommissionSetting.key.asc())
        )
        return list(result.scalars().all())


class EventRepository:
    """Data access for the append-only order event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, event: DomainEvent, actor: str) -> OrderEvent:
        """Append an audit row. This is the ONLY write operation allowed."""
        row = OrderEvent(
            order_id=event.order_id,
            event_type=event.name,
            actor=actor,
            payload=event.payload(),
            created_at=event.occurred_at,
        )
        self._session.add(row)
        return row

    async def get_by_order(self, order_id: uuid.UUID) -> list[OrderEvent]:
        """Fetch all events for an order in chronological order."""
        result = await self._session.execute(
            select(OrderEvent)
            .where(OrderEvent.order_id == order_id)
            .order_by(OrderEvent.id.asc())
        )
        return list(result.scalars().all())
