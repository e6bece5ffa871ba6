# Overview: Service commission calculation; rate x amount + fixed, waived for BAF account holders.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from ..errors import ValidationError
from ..models import Service
from ..money import CENT, to_decimal

BAF_WAIVER_REASON = "BAF account holder - commission waived"

# Diestel payments never carry a commission
COMMISSION_EXEMPT_PROVIDERS = {"DIESTEL"}


@dataclass(frozen=True)
class CommissionResult:
    base_amount: Decimal
    percentage_commission: Decimal
    fixed_commission: Decimal
    commission: Decimal
    total_payable: Decimal
    waived: bool = False
    waiver_reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "base_amount": f"{self.base_amount:.2f}",
            "percentage_commission": f"{self.percentage_commission:.2f}",
            "fixed_commission": f"{self.fixed_commission:.2f}",
            "commission": f"{self.commission:.2f}",
            "total_payable": f"{self.total_payable:.2f}",
            "waived": self.waived,
            "waiver_reason": self.waiver_reason,
        }


def calculate_commission(
    amount,
    commission_rate="0",
    fixed_commission="0",
    *,
    has_baf_account: bool = False,
    min_commission=None,
    max_commission=None,
) -> CommissionResult:
    """
    commission = amount * rate + fixed, clamped to [min, max] when given,
    rounded half-up to the cent.
    """
    base = to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
    if base < 0:
        raise ValidationError("Payment amount cannot be negative")

    zero = Decimal("0.00")
    if has_baf_account:
        return CommissionResult(
            base_amount=base,
            percentage_commission=zero,
            fixed_commission=zero,
            commission=zero,
            total_payable=base,
            waived=True,
            waiver_reason=BAF_WAIVER_REASON,
        )

    rate = to_decimal(commission_rate, field="commission_rate")
    if rate < 0:
        raise ValidationError("Commission rate cannot be negative")
    fixed = to_decimal(fixed_commission or "0", field="fixed_commission")

    percentage = base * rate
    commission = percentage + fixed
    if min_commission is not None:
        commission = max(commission, to_decimal(min_commission, field="min_commission"))
    if max_commission is not None:
        commission = min(commission, to_decimal(max_commission, field="max_commission"))
    commission = commission.quantize(CENT, rounding=ROUND_HALF_UP)

    return CommissionResult(
        base_amount=base,
        percentage_commission=percentage.quantize(CENT, rounding=ROUND_HALF_UP),
        fixed_commission=fixed.quantize(CENT, rounding=ROUND_HALF_UP),
        commission=commission,
        total_payable=base + commission,
    )


def commission_for_service(service: Service, amount, *, has_baf_account: bool = False) -> CommissionResult:
    if service.service_code.split("-")[0].upper() in COMMISSION_EXEMPT_PROVIDERS:
        return calculate_commission(amount, "0", "0")
    return calculate_commission(
        amount,
        service.commission_rate,
        Decimal(service.fixed_commission_cents) / 100,
        has_baf_account=has_baf_account,
    )


def calculate_batch_commissions(payments: list[dict]) -> dict:
    """
    payments: [{"amount", "commission_rate", "fixed_commission", "has_baf_account"}]

    Returns the individual results plus totals and the average rate (percent).
    """
    individual = [
        calculate_commission(
            p["amount"],
            p.get("commission_rate", "0"),
            p.get("fixed_commission", "0"),
            has_baf_account=p.get("has_baf_account", False),
        )
        for p in payments
    ]
    total_payments = sum((r.base_amount for r in individual), Decimal("0.00"))
    total_commissions = sum((r.commission for r in individual), Decimal("0.00"))
    average_rate = (
        (total_commissions / total_payments * 100).quantize(CENT, rounding=ROUND_HALF_UP)
        if total_payments > 0 else Decimal("0.00")
    )
    return {
        "individual": individual,
        "total_payments": total_payments,
        "total_commissions": total_commissions,
        "total_payable": total_payments + total_commissions,
        "average_commission_rate": average_rate,
    }
