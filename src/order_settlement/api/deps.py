"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the caller's
identity, the settlement orchestrator and configuration.

Authentication happens in front of this service: the gateway sets
X-Actor-Id and X-Actor-Role on every request it forwards.
"""

from __future__ import annotations

from fastapi import Header, HTTPException, Request

from order_settlement.config import Settings, get_settings
from order_settlement.domain.actor import Actor
from order_settlement.domain.enums import Role
from order_settlement.logging_config import bind_log_context
from order_settlement.services.orchestrator import SettlementOrchestrator


async def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Actor:
    """Resolve the caller from the gateway headers."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="X-Actor-Id and X-Actor-Role are required")
    try:
        role = Role(x_actor_role.strip().lower())
    except ValueError as err:
        raise HTTPException(status_code=401, detail=f"Unknown role: {x_actor_role}") from err
    if role == Role.SYSTEM:
        raise HTTPException(status_code=403, detail="The system role cannot be assumed over HTTP")

    actor = Actor(id=x_actor_id.strip(), role=role)
    bind_log_context(actor=str(actor))
    return actor


def get_orchestrator(request: Request) -> SettlementOrchestrator:
    """Provide the orchestrator created during application startup."""
    return request.app.state.orchestrator


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
