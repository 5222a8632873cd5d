"""Shared response schemas: flow outcomes, job reports, health."""

from __future__ import annotations

from pydantic import BaseModel, Field

from agentic_marketplace.domain.enums import DisputeResolution
from agentic_marketplace.schemas.disputes import DisputeResponse
from agentic_marketplace.schemas.escrow import EscrowResponse
from agentic_marketplace.schemas.orders import OrderResponse


class TransactionOutcomeResponse(BaseModel):
    """Result of an orchestrated flow.

    ``complete`` is false when the primary step succeeded but a secondary
    one did not; ``warnings`` explains what needs attention.
    """

    order: OrderResponse | None = None
    escrow: EscrowResponse | None = None
    dispute: DisputeResponse | None = None
    resolution: DisputeResolution | None = None
    complete: bool = True
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome) -> TransactionOutcomeResponse:
        return cls(
            order=OrderResponse.model_validate(outcome.order) if outcome.order else None,
            escrow=EscrowResponse.model_validate(outcome.escrow) if outcome.escrow else None,
            dispute=DisputeResponse.model_validate(outcome.dispute) if outcome.dispute else None,
            resolution=outcome.resolution,
            complete=outcome.complete,
            warnings=list(outcome.warnings),
        )


class SweepResponse(BaseModel):
    released: list[str]
    completed_orders: list[str]
    failures: dict[str, str]


class OutboxReportResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    skipped: int
    errors: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    settlement: str = "simulated"
