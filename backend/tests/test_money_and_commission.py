from decimal import Decimal

import pytest

from teller.errors import ValidationError
from teller.money import (
    format_cents,
    from_cents,
    round_down_to_unit,
    round_up_to_unit,
    to_cents,
    to_decimal,
    within_tolerance,
)
from teller.services.commission_service import (
    BAF_WAIVER_REASON,
    calculate_batch_commissions,
    calculate_commission,
)


class TestMoney:
    def test_to_cents(self):
        assert to_cents("74.50") == 7450
        assert to_cents(Decimal("0.1")) == 10
        assert to_cents(0.1) == 10
        assert to_cents(1.005) == 101
        assert to_cents(200) == 20000

    def test_invalid_amounts(self):
        for value in ("abc", "", None, True, "NaN", "Infinity"):
            with pytest.raises(ValidationError):
                to_decimal(value)

    def test_from_and_format_cents(self):
        assert from_cents(7450) == Decimal("74.50")
        assert format_cents(5) == "0.05"
        assert from_cents(None) is None

    def test_tolerance_is_strictly_below_one_cent(self):
        assert within_tolerance(100, 100)
        assert not within_tolerance(101, 100)

    def test_rounding_to_unit(self):
        unit = Decimal("0.50")
        assert round_up_to_unit(Decimal("250.01"), unit) == Decimal("250.50")
        assert round_up_to_unit(Decimal("250.00"), unit) == Decimal("250.00")
        assert round_down_to_unit(Decimal("899.90"), unit) == Decimal("899.50")


class TestCommission:
    def test_rate_plus_fixed(self):
        result = calculate_commission("500.00", "0.015", "2.00")
        assert result.percentage_commission == Decimal("7.50")
        assert result.commission == Decimal("9.50")
        assert result.total_payable == Decimal("509.50")
        assert not result.waived

    def test_half_up_rounding(self):
        assert calculate_commission("10.10", "0.05").commission == Decimal("0.51")
        assert calculate_commission("100.50", "0.025").commission == Decimal("2.51")

    def test_baf_waiver(self):
        result = calculate_commission("500.00", "0.015", "2.00", has_baf_account=True)
        assert result.commission == Decimal("0.00")
        assert result.total_payable == Decimal("500.00")
        assert result.waived
        assert result.waiver_reason == BAF_WAIVER_REASON

    def test_min_and_max_clamp(self):
        assert calculate_commission("10", "0.01", min_commission="5").commission == Decimal("5.00")
        assert calculate_commission("10000", "0.01", max_commission="25").commission == Decimal("25.00")

    def test_negative_rate_rejected(self):
        with pytest.raises(ValidationError):
            calculate_commission("100", "-0.01")

    def test_batch(self):
        summary = calculate_batch_commissions([
            {"amount": "100.00", "commission_rate": "0.10"},
            {"amount": "100.00", "commission_rate": "0.10", "has_baf_account": True},
        ])
        assert summary["total_payments"] == Decimal("200.00")
        assert summary["total_commissions"] == Decimal("10.00")
        assert summary["total_payable"] == Decimal("210.00")
        assert summary["average_commission_rate"] == Decimal("5.00")
        assert [r.waived for r in summary["individual"]] == [False, True]
