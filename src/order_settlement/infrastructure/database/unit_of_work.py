"""Unit of work: one transaction per engine operation.

Every mutation an operation makes, including the audit rows for the events it
emits, is committed together or rolled back together. Events are only handed
out (via `committed_events`) after the commit succeeded.

Usage:
    async with UnitOfWork(session_factory) as uow:
        order = await uow.orders.get_by_id(order_id)
        ...
        uow.emit(OrderStatusChanged(...), actor)
    dispatch(uow.committed_events)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.orm.exc import StaleDataError

from order_settlement.domain.exceptions import ConflictError
from order_settlement.infrastructure.database.repositories import (
    CommissionSettingRepository,
    EscrowRepository,
    EventRepository,
    OrderRepository,
    ReleaseRequestRepository,
    SettlementRepository,
    WalletRepository,
)
from order_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_settlement.domain.actor import Actor
    from order_settlement.domain.events import DomainEvent

logger = get_logger(__name__)


class UnitOfWork:
    """Owns an AsyncSession and the repositories bound to it."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._pending: list[tuple[DomainEvent, str]] = []
        self._committed: list[DomainEvent] = []

    async def __aenter__(self) -> UnitOfWork:
        self.session = self._session_factory()
        self.orders = OrderRepository(self.session)
        self.escrows = EscrowRepository(self.session)
        self.settlements = SettlementRepository(self.session)
        self.release_requests = ReleaseRequestRepository(self.session)
        self.wallets = WalletRepository(self.session)
        self.commission_settings = CommissionSettingRepository(self.session)
        self.events = EventRepository(self.session)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is None:
                await self.commit()
            else:
                await self.session.rollback()
                self._pending.clear()
        finally:
            await self.session.close()

    def emit(self, event: DomainEvent, actor: Actor | str = "system:SYSTEM") -> None:
        """Queue an event for the audit log and for post-commit dispatch."""
        self._pending.append((event, str(actor)))

    async def flush(self) -> None:
        """Flush pending ORM writes; a lost version check becomes ConflictError."""
        try:
            await self.session.flush()
        except StaleDataError as err:
            logger.info("order.version_conflict", error=str(err))
            raise ConflictError("The order was modified concurrently; reload and retry") from err

    async def commit(self) -> None:
        for event, actor in self._pending:
            await self.events.record(event, actor)
        await self.flush()
        await self.session.commit()
        self._committed.extend(event for event, _ in self._pending)
        self._pending.clear()

    @property
    def committed_events(self) -> list[DomainEvent]:
        return list(self._committed)
