"""Pydantic schemas for the Disputes API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from agentic_marketplace.domain.enums import (
    DisputeCategory,
    DisputeResolution,
    DisputeStatus,
)

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class ResolveDisputeRequest(BaseModel):
    """Request body for an admin resolving a dispute."""

    resolution: DisputeResolution = Field(..., examples=["refund_buyer"])
    notes: str = Field(
        ...,
        min_length=1,
        max_length=5000,
        description="Why this resolution was chosen (at least 10 characters)",
    )


class AutoResolveRequest(BaseModel):
    confidence_threshold: int | None = Field(
        default=None,
        ge=0,
        le=100,
        description="Overrides the configured auto-resolve threshold",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class DisputeResponse(BaseModel):
    """Response schema for a dispute."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    escrow_id: str | None
    buyer_wallet: str
    seller_wallet: str
    amount_usdc: Decimal
    category: DisputeCategory
    reason: str
    details: str | None
    status: DisputeStatus
    ai_analysis: str | None
    ai_recommendation: str | None
    ai_confidence: int | None
    ai_arbitrated_at: datetime | None
    resolution: str | None
    resolution_notes: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    auto_resolved: bool
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def status_label(self) -> str:
        return self.status.label

    @computed_field
    @property
    def category_label(self) -> str:
        return self.category.label
