"""Pydantic API schemas."""

from agentic_marketplace.schemas.common import (
    HealthResponse,
    OutboxReportResponse,
    SweepResponse,
    TransactionOutcomeResponse,
)
from agentic_marketplace.schemas.disputes import (
    AutoResolveRequest,
    DisputeResponse,
    ResolveDisputeRequest,
)
from agentic_marketplace.schemas.escrow import EscrowResponse
from agentic_marketplace.schemas.orders import (
    AuditEventResponse,
    DeliverRequest,
    OpenDisputeRequest,
    OrderRequirements,
    OrderResponse,
    PlaceOrderRequest,
    RecordPaymentRequest,
    TransitionRequest,
)

__all__ = [
    "AuditEventResponse",
    "AutoResolveRequest",
    "DeliverRequest",
    "DisputeResponse",
    "EscrowResponse",
    "HealthResponse",
    "OpenDisputeRequest",
    "OrderRequirements",
    "OrderResponse",
    "OutboxReportResponse",
    "PlaceOrderRequest",
    "RecordPaymentRequest",
    "ResolveDisputeRequest",
    "SweepResponse",
    "TransactionOutcomeResponse",
    "TransitionRequest",
]
