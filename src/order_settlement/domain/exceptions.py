"""Domain exceptions for the order settlement engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
None of them may be swallowed: each one stands for money or order state.
"""


class SettlementError(Exception):
    """Base exception for all domain errors."""

    idempotent = False

    def __init__(self, message: str, code: str = "SETTLEMENT_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Lookup Errors ---


class NotFoundError(SettlementError):
    """Raised when an order, escrow or release request does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(
            message=f"{kind} not found: {identifier}",
            code="NOT_FOUND",
        )
        self.kind = kind
        self.identifier = identifier


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str) -> None:
        super().__init__("Order", order_id)
        self.code = "ORDER_NOT_FOUND"


class EscrowNotFoundError(NotFoundError):
    def __init__(self, identifier: str) -> None:
        super().__init__("Escrow", identifier)
        self.code = "ESCROW_NOT_FOUND"


class ReleaseRequestNotFoundError(NotFoundError):
    def __init__(self, request_id: str) -> None:
        super().__init__("Release request", request_id)
        self.code = "RELEASE_REQUEST_NOT_FOUND"


# --- State Machine Errors ---


class IllegalTransitionError(SettlementError):
    """Raised when (current status, target status) is not an edge of the graph.

    Example: pending_payment -> delivered (must go through confirmed, assigned, ...)
    """

    def __init__(self, current_state: str, attempted_state: str) -> None:
        super().__init__(
            message=f"Illegal status transition: {current_state} -> {attempted_state}",
            code="ILLEGAL_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_state = attempted_state


class UnauthorizedError(SettlementError):
    """Raised when the actor's role or identity may not perform the operation."""

    def __init__(self, role: str, action: str) -> None:
        super().__init__(
            message=f"Role '{role}' is not allowed to {action}",
            code="UNAUTHORIZED",
        )
        self.role = role
        self.action = action


class ConflictError(SettlementError):
    """Raised when a concurrent mutation on the same order won the race."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="CONFLICT")


class AgentAtCapacityError(ConflictError):
    """Raised when an agent already carries the maximum number of active orders."""

    def __init__(self, agent_id: str, limit: int) -> None:
        super().__init__(f"Agent {agent_id} already has {limit} active orders")
        self.code = "AGENT_AT_CAPACITY"
        self.agent_id = agent_id
        self.limit = limit


# --- Idempotency Errors ---


class StateAlreadySatisfiedError(SettlementError):
    """Base for errors a client retry can treat as "already done"."""

    idempotent = True


class AlreadyHeldError(StateAlreadySatisfiedError):
    """Raised when an escrow already exists for the order."""

    def __init__(self, order_id: str) -> None:
        super().__init__(
            message=f"Escrow already held for order: {order_id}",
            code="ALREADY_HELD",
        )
        self.order_id = order_id


class AlreadyClaimedError(StateAlreadySatisfiedError):
    """Raised when another agent claimed the order first."""

    def __init__(self, order_id: str) -> None:
        super().__init__(
            message=f"Order already claimed by another agent: {order_id}",
            code="ALREADY_CLAIMED",
        )
        self.order_id = order_id


class DuplicatePendingError(StateAlreadySatisfiedError):
    """Raised when a release request is already pending for the order."""

    def __init__(self, order_id: str) -> None:
        super().__init__(
            message=f"A release request is already pending for order: {order_id}",
            code="DUPLICATE_PENDING",
        )
        self.order_id = order_id


# --- Escrow Errors ---


class NotHeldError(SettlementError):
    """Raised when releasing or refunding an escrow that is no longer held."""

    def __init__(self, escrow_id: str, status: str) -> None:
        super().__init__(
            message=f"Escrow {escrow_id} is not held (status: {status})",
            code="NOT_HELD",
        )
        self.escrow_id = escrow_id
        self.status = status


class OrderNotDeliveredError(SettlementError):
    """Raised when funds are released before the order reached delivered."""

    def __init__(self, order_id: str, status: str) -> None:
        super().__init__(
            message=f"Order {order_id} is not delivered (status: {status})",
            code="ORDER_NOT_DELIVERED",
        )
        self.order_id = order_id
        self.status = status


class InsufficientFundsError(SettlementError):
    """Raised when the payer's wallet cannot cover the hold."""

    def __init__(self, user_id: str, required: str) -> None:
        super().__init__(
            message=f"Insufficient funds: wallet {user_id} cannot cover {required}",
            code="INSUFFICIENT_FUNDS",
        )
        self.user_id = user_id
        self.required = required


# --- Release Request Errors ---


class NotEligibleError(SettlementError):
    """Raised when the order is not in a state that allows the request."""

    def __init__(self, order_id: str, reason: str) -> None:
        super().__init__(
            message=f"Order {order_id} is not eligible: {reason}",
            code="NOT_ELIGIBLE",
        )
        self.order_id = order_id
        self.reason = reason


class NotPendingError(SettlementError):
    """Raised when deciding a release request that was already decided."""

    def __init__(self, request_id: str, status: str) -> None:
        super().__init__(
            message=f"Release request {request_id} is not pending (status: {status})",
            code="NOT_PENDING",
        )
        self.request_id = request_id
        self.status = status


# --- Input Errors ---


class ValidationError(SettlementError):
    """Raised for malformed monetary or quantity fields."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field
