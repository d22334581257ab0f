"""Database infrastructure — engine, ORM models, repositories and unit of work."""

from order_settlement.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    create_tables,
    get_session_factory,
    init_db,
)
from order_settlement.infrastructure.database.orm_models import (
    Base,
    CommissionSetting,
    Escrow,
    Order,
    OrderEvent,
    OrderLine,
    PaymentReleaseRequest,
    PlatformLedgerEntry,
    Settlement,
    WalletBalance,
)
from order_settlement.infrastructure.database.unit_of_work import UnitOfWork

__all__ = [
    "Base",
    "CommissionSetting",
    "Escrow",
    "Order",
    "OrderEvent",
    "OrderLine",
    "PaymentReleaseRequest",
    "PlatformLedgerEntry",
    "Settlement",
    "WalletBalance",
    "UnitOfWork",
    "build_engine",
    "build_session_factory",
    "close_db",
    "create_tables",
    "get_session_factory",
    "init_db",
]
