"""USDC amounts and fee arithmetic.

Amounts are carried as integers in micro-USDC (6 decimals, the token's native
precision) everywhere below the API boundary. Fees round half-up to the
nearest micro-USDC and the seller gets the exact remainder, so
``seller_amount + platform_fee == amount`` always holds.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from agentic_marketplace.domain.exceptions import InvalidAmountError

USDC_DECIMALS = 6
MICRO_PER_USDC = 10**USDC_DECIMALS
_QUANTUM = Decimal(1).scaleb(-USDC_DECIMALS)


def to_minor_units(amount: Decimal | str | int | float) -> int:
    """Convert a USDC amount to micro-USDC, rejecting anything that is not a
    positive, finite value with at most 6 decimal places."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmountError(amount) from exc
    if not value.is_finite() or value <= 0:
        raise InvalidAmountError(amount)
    minor = value.scaleb(USDC_DECIMALS)
    if minor != minor.to_integral_value():
        raise InvalidAmountError(amount)
    return int(minor)


def from_minor_units(minor: int) -> Decimal:
    """Convert micro-USDC back to a 6-decimal USDC Decimal."""
    return Decimal(minor).scaleb(-USDC_DECIMALS).quantize(_QUANTUM)


def compute_platform_fee(amount: int, fee_rate_percent: Decimal) -> int:
    """round_half_up(amount * rate / 100) in micro-USDC."""
    if amount < 0:
        raise InvalidAmountError(amount)
    fee = (Decimal(amount) * Decimal(fee_rate_percent) / Decimal(100)).to_integral_value(
        rounding=ROUND_HALF_UP
    )
    return min(int(fee), amount)


@dataclass(frozen=True)
class FeeBreakdown:
    amount: int
    fee_rate_percent: Decimal
    platform_fee: int
    seller_amount: int

    @classmethod
    def compute(cls, amount: int, fee_rate_percent: Decimal) -> FeeBreakdown:
        fee = compute_platform_fee(amount, fee_rate_percent)
        return cls(
            amount=amount,
            fee_rate_percent=Decimal(fee_rate_percent),
            platform_fee=fee,
            seller_amount=amount - fee,
        )


@dataclass(frozen=True)
class PayoutPlan:
    """How an escrow's gross amount is distributed when it settles.

    The three shares always add up to the escrow amount.
    """

    buyer: int = 0
    seller: int = 0
    platform: int = 0

    @property
    def total(self) -> int:
        return self.buyer + self.seller + self.platform

    @classmethod
    def release(cls, fees: FeeBreakdown) -> PayoutPlan:
        return cls(seller=fees.seller_amount, platform=fees.platform_fee)

    @classmethod
    def refund(cls, fees: FeeBreakdown) -> PayoutPlan:
        return cls(buyer=fees.amount)
