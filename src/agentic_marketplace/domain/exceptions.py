"""Domain exceptions for the Agentic Marketplace.

These exceptions are framework-agnostic and represent business rule violations
or failures of an external collaborator. They are caught and translated to HTTP
responses by the API layer's middleware:

    ValidationError        -> 400
    AuthorizationError     -> 403
    NotFoundError          -> 404
    ConflictError          -> 409
    ExternalServiceError   -> 502
"""


class MarketplaceError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "MARKETPLACE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Validation ---


class ValidationError(MarketplaceError):
    """Raised when input is malformed (bad amount, short reason, missing field)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field


class InvalidAmountError(ValidationError):
    """Raised when an amount is not a positive finite USDC value."""

    def __init__(self, amount: object) -> None:
        super().__init__(
            message=f"Invalid amount: {amount!r} (must be positive with at most 6 decimals)",
            field="amount",
        )
        self.code = "INVALID_AMOUNT"


# --- Authorization ---


class AuthorizationError(MarketplaceError):
    """Raised when the actor is not a party allowed to act on the record."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="FORBIDDEN")


class RoleNotPermittedError(AuthorizationError):
    """Raised when the transition exists but this role may not perform it."""

    def __init__(self, role: str, action: str) -> None:
        super().__init__(message=f"Role '{role}' cannot perform '{action}'")
        self.code = "ROLE_NOT_PERMITTED"
        self.role = role
        self.action = action


# --- Conflict ---


class ConflictError(MarketplaceError):
    """Raised when the request is incompatible with the record's current state."""

    def __init__(self, message: str, code: str = "CONFLICT") -> None:
        super().__init__(message=message, code=code)


class InvalidStateTransitionError(ConflictError):
    """Raised when an action is not allowed from the current status.

    Example: pending --accept--> (orders must be delivered before acceptance)
    """

    def __init__(self, current_state: str, action: str, entity: str = "order") -> None:
        super().__init__(
            message=f"Cannot {action} {entity} in status '{current_state}'",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.action = action
        self.entity = entity


class StaleRecordError(ConflictError):
    """Raised when a record changed between read and write (another writer won)."""

    def __init__(self, entity: str, record_id: str) -> None:
        super().__init__(
            message=f"{entity} {record_id} was modified concurrently",
            code="STALE_RECORD",
        )
        self.entity = entity
        self.record_id = record_id


class DuplicateOperationError(ConflictError):
    """Raised when a duplicate idempotency key or active record is detected."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="DUPLICATE_OPERATION")


# --- Not found ---


class NotFoundError(MarketplaceError):
    """Base for missing records."""

    def __init__(self, entity: str, record_id: str) -> None:
        super().__init__(
            message=f"{entity} not found: {record_id}",
            code=f"{entity.upper()}_NOT_FOUND",
        )
        self.record_id = record_id


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str) -> None:
        super().__init__("Order", order_id)


class EscrowNotFoundError(NotFoundError):
    def __init__(self, escrow_id: str) -> None:
        super().__init__("Escrow", escrow_id)


class DisputeNotFoundError(NotFoundError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__("Dispute", dispute_id)


class SellerNotFoundError(NotFoundError):
    def __init__(self, agent_id: str) -> None:
        super().__init__("Seller", agent_id)


# --- External failures ---


class ExternalServiceError(MarketplaceError):
    """Raised when a collaborator (settlement, advisor, store) fails."""

    def __init__(self, message: str, code: str = "EXTERNAL_SERVICE_ERROR") -> None:
        super().__init__(message=message, code=code)


class SettlementError(ExternalServiceError):
    """Raised when a transfer batch is rejected or cannot be confirmed."""

    def __init__(self, message: str, reference: str | None = None) -> None:
        super().__init__(message=message, code="SETTLEMENT_ERROR")
        self.reference = reference


class InsufficientFundsError(SettlementError):
    """Raised when the custody account cannot cover a transfer batch."""

    def __init__(self, required: str, available: str | None = None) -> None:
        detail = f", available {available} USDC" if available is not None else ""
        super().__init__(message=f"Insufficient funds: required {required} USDC{detail}")
        self.code = "INSUFFICIENT_FUNDS"


class ArbitrationError(ExternalServiceError):
    """Raised when the arbitration advisor fails or times out."""

    def __init__(self, message: str, timed_out: bool = False) -> None:
        super().__init__(
            message=message,
            code="ARBITRATION_TIMEOUT" if timed_out else "ARBITRATION_ERROR",
        )
        self.timed_out = timed_out


class WebhookDeliveryError(ExternalServiceError):
    """Raised on a non-retryable webhook response (4xx)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message=message, code="WEBHOOK_DELIVERY_ERROR")
        self.status_code = status_code
