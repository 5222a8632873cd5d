"""Pydantic schemas for the Escrow API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, computed_field

from agentic_marketplace.domain.enums import EscrowStatus
from agentic_marketplace.domain.money import from_minor_units


class EscrowResponse(BaseModel):
    """Response schema for an escrow. Amounts are micro-USDC integers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    buyer_wallet: str
    seller_wallet: str
    amount: int
    platform_fee_rate: Decimal
    platform_fee: int
    seller_amount: int
    status: EscrowStatus
    funded_at: datetime | None
    auto_release_deadline: datetime | None
    released_at: datetime | None
    refunded_at: datetime | None
    dispute_reason: str | None
    resolution: str | None
    resolution_notes: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    funding_reference: str | None
    settlement_reference: str | None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def amount_usdc(self) -> Decimal:
        return from_minor_units(self.amount)
