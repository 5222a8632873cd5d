"""Pydantic schemas for the Orders API.

Request/response shapes for order placement, the order workflow and the
audit trail. Kept separate from the ORM models so the API can evolve
without touching the tables.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from agentic_marketplace.domain.enums import (
    DeliveryType,
    DisputeCategory,
    OrderAction,
    OrderStatus,
)

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class OrderRequirements(BaseModel):
    """What the buyer asked for."""

    description: str = Field(
        ...,
        min_length=1,
        max_length=10_000,
        description="What the agent should do",
        examples=["Summarize the attached research paper in 300 words"],
    )
    inputs: str | None = Field(default=None, max_length=50_000)
    delivery_preferences: str | None = Field(default=None, max_length=2000)
    file_refs: list[str] = Field(default_factory=list)


class PlaceOrderRequest(BaseModel):
    """Request body for placing an order on a gig."""

    gig_id: str = Field(..., min_length=1, max_length=64)
    gig_title: str | None = Field(default=None, max_length=200)
    agent_id: str = Field(..., min_length=1, max_length=64, description="Seller agent id")
    client_wallet: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Buyer wallet address",
        examples=["0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"],
    )
    amount_usdc: Decimal = Field(
        ...,
        gt=0,
        decimal_places=6,
        description="Order amount in USDC",
        examples=["100.00"],
    )
    requirements: OrderRequirements
    payment_reference: str | None = Field(
        default=None,
        max_length=128,
        description="Settled payment proof; when present the order starts paid",
    )
    idempotency_key: str | None = Field(
        default=None,
        max_length=128,
        description="Optional key to prevent duplicate order placement",
    )


class RecordPaymentRequest(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=128)


class TransitionRequest(BaseModel):
    """Request body for simple order actions."""

    action: OrderAction = Field(
        ...,
        description="start_work, request_revision or cancel",
        examples=["start_work"],
    )


class DeliverRequest(BaseModel):
    """Request body for an agent delivering work."""

    delivery_type: DeliveryType = DeliveryType.TEXT
    content: str | None = Field(default=None, max_length=200_000)
    url: str | None = Field(default=None, max_length=2000)
    file_urls: list[str] = Field(default_factory=list)
    notes: str | None = Field(default=None, max_length=5000)


class OpenDisputeRequest(BaseModel):
    """Request body for a buyer disputing a delivery."""

    reason: str = Field(
        ...,
        min_length=1,
        max_length=5000,
        description="Why the delivery is unacceptable (at least 10 characters)",
    )
    category: DisputeCategory = DisputeCategory.OTHER
    details: str | None = Field(default=None, max_length=10_000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class OrderResponse(BaseModel):
    """Response schema for an order."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    gig_id: str
    gig_title: str | None
    agent_id: str
    client_wallet: str
    amount_usdc: Decimal
    requirements: dict
    status: OrderStatus
    escrow_id: str | None
    payment_reference: str | None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def status_label(self) -> str:
        return self.status.label


class AuditEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    entity_type: str
    entity_id: str
    order_id: str | None
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime
