"""Shared test fixtures for the order settlement test suite.

Provides:
    - A throwaway SQLite database per test (aiosqlite, file-backed so that
      concurrent sessions really contend for the same rows)
    - A SettlementOrchestrator wired to an in-memory event publisher
    - A controllable clock for grace-period tests

Actors and lifecycle helpers live in tests/support.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from support import CURRENCY, FakeClock

from order_settlement.config import Settings
from order_settlement.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    create_tables,
)
from order_settlement.services.event_dispatcher import EventDispatcher, InMemoryEventPublisher
from order_settlement.services.orchestrator import SettlementOrchestrator

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url="sqlite+aiosqlite://",
        default_currency=CURRENCY,
        grace_period_seconds=300,
    )


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}")
    await create_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
async def orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    publisher: InMemoryEventPublisher,
    clock: FakeClock,
) -> AsyncGenerator[SettlementOrchestrator, None]:
    engine = SettlementOrchestrator(
        session_factory,
        settings,
        dispatcher=EventDispatcher([publisher]),
        clock=clock,
    )
    yield engine
    engine.grace_scheduler.shutdown()
    await engine.dispatcher.drain()
