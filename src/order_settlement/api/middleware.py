"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser-based admin consoles
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from order_settlement.domain.exceptions import (
    ConflictError,
    IllegalTransitionError,
    InsufficientFundsError,
    NotFoundError,
    SettlementError,
    StateAlreadySatisfiedError,
    UnauthorizedError,
    ValidationError,
)
from order_settlement.logging_config import bind_log_context, clear_log_context, get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = get_logger(__name__)


def _error(status_code: int, exc: SettlementError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, "idempotent": exc.idempotent},
    )


def status_code_for(exc: SettlementError) -> int:
    """HTTP status for a domain error."""
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, UnauthorizedError):
        return 403
    if isinstance(exc, (StateAlreadySatisfiedError, ConflictError, IllegalTransitionError)):
        return 409
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, InsufficientFundsError):
        return 402
    return 400


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        clear_log_context()
        bind_log_context(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except StateAlreadySatisfiedError as exc:
            logger.info("request.already_satisfied", code=exc.code, error=exc.message)
            return _error(409, exc)
        except IllegalTransitionError as exc:
            logger.warning(
                "state_machine.illegal_transition",
                current=exc.current_state,
                attempted=exc.attempted_state,
            )
            return _error(409, exc)
        except SettlementError as exc:
            status_code = status_code_for(exc)
            log = logger.error if status_code == 400 else logger.warning
            log("domain.error", code=exc.code, error=exc.message, status_code=status_code)
            return _error(status_code, exc)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
