"""Tests for micro-USDC conversion and fee arithmetic."""

from __future__ import annotations

from decimal import Decimal

import pytest

from agentic_marketplace.domain.exceptions import InvalidAmountError
from agentic_marketplace.domain.money import (
    FeeBreakdown,
    PayoutPlan,
    compute_platform_fee,
    from_minor_units,
    to_minor_units,
)


class TestMinorUnits:
    def test_whole_and_fractional_amounts(self) -> None:
        assert to_minor_units("100.00") == 100_000_000
        assert to_minor_units(Decimal("0.000001")) == 1
        assert to_minor_units(5) == 5_000_000

    @pytest.mark.parametrize("bad", ["0", "-1", "0.0000001", "abc", "NaN", "Infinity"])
    def test_rejects_invalid_amounts(self, bad) -> None:
        with pytest.raises(InvalidAmountError):
            to_minor_units(bad)

    def test_from_minor_units_keeps_six_decimals(self) -> None:
        assert from_minor_units(90_000_000) == Decimal("90.000000")
        assert str(from_minor_units(1)) == "0.000001"


class TestPlatformFee:
    def test_ten_percent_of_one_hundred(self) -> None:
        fees = FeeBreakdown.compute(100_000_000, Decimal("10"))
        assert fees.platform_fee == 10_000_000
        assert fees.seller_amount == 90_000_000

    def test_rounds_half_up(self) -> None:
        # 2.5% of 0.000005 USDC = 0.125 micro -> 0; 10% of 5 micro = 0.5 -> 1
        assert compute_platform_fee(5, Decimal("2.5")) == 0
        assert compute_platform_fee(5, Decimal("10")) == 1

    def test_zero_rate(self) -> None:
        assert compute_platform_fee(123_456, Decimal("0")) == 0

    @pytest.mark.parametrize("rate", ["0", "2.5", "10", "12.345", "33.3333", "100"])
    def test_no_leakage(self, rate) -> None:
        for amount in (1, 3, 7, 999, 1_000_001, 123_456_789, 10**12 + 7):
            fees = FeeBreakdown.compute(amount, Decimal(rate))
            assert fees.seller_amount + fees.platform_fee == amount
            assert 0 <= fees.platform_fee <= amount


class TestPayoutPlan:
    def test_release_pays_seller_and_platform(self) -> None:
        plan = PayoutPlan.release(FeeBreakdown.compute(100_000_000, Decimal("10")))
        assert plan == PayoutPlan(buyer=0, seller=90_000_000, platform=10_000_000)

    def test_refund_returns_everything(self) -> None:
        plan = PayoutPlan.refund(FeeBreakdown.compute(100_000_000, Decimal("10")))
        assert plan == PayoutPlan(buyer=100_000_000)
