"""FastAPI application entry point for the order settlement engine.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, build the orchestrator
       and re-arm grace-period timers lost with the previous process.
    2. Running: Serve the REST API at /api/v1/*.
    3. Shutdown: Stop timers, flush in-flight notifications, close database
       and Redis connections.

Run with:
    uvicorn order_settlement.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from order_settlement.config import get_settings
from order_settlement.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Initialize database
    from order_settlement.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()

    # 3. Notifications go out over Redis when it is reachable
    from order_settlement.infrastructure.redis_client import close_redis, init_redis
    from order_settlement.services import (
        EventDispatcher,
        RedisEventPublisher,
        SettlementOrchestrator,
    )

    dispatcher = EventDispatcher()
    try:
        await init_redis()
        dispatcher.add_publisher(RedisEventPublisher(settings.events_channel))
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Engine
    orchestrator = SettlementOrchestrator(get_session_factory(), settings, dispatcher)
    app.state.orchestrator = orchestrator
    rescheduled = await orchestrator.reschedule_pending()

    logger.info(
        "app.started",
        host=settings.app_host,
        port=settings.app_port,
        grace_timers=rescheduled,
    )

    yield

    # Shutdown
    logger.info("app.shutting_down")
    orchestrator.grace_scheduler.shutdown()
    await orchestrator.dispatcher.drain()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Order Settlement Engine",
        description=(
            "Order lifecycle, escrow and payout settlement shared by the "
            "standard, local-market and grocery storefronts."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from order_settlement.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from order_settlement.api.routes.accounts import router as accounts_router
    from order_settlement.api.routes.escrow import router as escrow_router
    from order_settlement.api.routes.health import router as health_router
    from order_settlement.api.routes.orders import router as orders_router

    app.include_router(health_router)
    app.include_router(orders_router)
    app.include_router(escrow_router)
    app.include_router(accounts_router)

    return app


# The app instance used by Uvicorn
app = create_app()
