# Overview: Provider credit limits (Diestel) and read-only SPEI settlement summaries.

"""
Credit limit policy

- Used amounts are always SUMs over COMPLETED payments, never cached counters.
- "Today" is [midnight, next midnight) in UTC.
- The total cap is checked before the daily maximum.
- The daily minimum is reported (below_daily_minimum), never enforced: a
  small payment early in the day is legitimate.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Transaction
from ..money import format_cents, from_cents, to_cents
from ..time_utils import end_of_day, start_of_day, utcnow
from .checksum_service import base_provider_code

DIESTEL = "DIESTEL"

COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class CreditLimitStatus:
    can_process: bool
    remaining_total: Decimal
    remaining_daily: Decimal
    total_used: Decimal
    daily_used: Decimal
    credit_limit: Decimal
    daily_limit: Decimal
    daily_minimum: Decimal
    below_daily_minimum: bool
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "can_process": self.can_process,
            "remaining_total": f"{self.remaining_total:.2f}",
            "remaining_daily": f"{self.remaining_daily:.2f}",
            "total_used": f"{self.total_used:.2f}",
            "daily_used": f"{self.daily_used:.2f}",
            "credit_limit": f"{self.credit_limit:.2f}",
            "daily_limit": f"{self.daily_limit:.2f}",
            "daily_minimum": f"{self.daily_minimum:.2f}",
            "below_daily_minimum": self.below_daily_minimum,
            "message": self.message,
        }


def get_credit_limits(provider_code: str) -> dict[str, int]:
    """{"total", "daily_min", "daily_max"} in cents for provider_code."""
    code = base_provider_code(provider_code)
    limits = current_app.config.get("PROVIDER_CREDIT_LIMITS", {}).get(code)
    if not limits:
        raise ValidationError(f"No credit limits configured for provider: {code}")
    return {
        "total": to_cents(limits["total"], field="total"),
        "daily_min": to_cents(limits.get("daily_min", "0"), field="daily_min"),
        "daily_max": to_cents(limits["daily_max"], field="daily_max"),
    }


def has_credit_limits(provider_code: str) -> bool:
    return base_provider_code(provider_code) in current_app.config.get("PROVIDER_CREDIT_LIMITS", {})


def _completed_sum(provider_code: str, since: Optional[datetime] = None, until: Optional[datetime] = None) -> int:
    query = db.session.query(func.coalesce(func.sum(Transaction.total_cents), 0)).filter(
        Transaction.provider_code == provider_code,
        Transaction.status == COMPLETED,
    )
    if since is not None:
        query = query.filter(Transaction.created_at >= since)
    if until is not None:
        query = query.filter(Transaction.created_at < until)
    return int(query.scalar() or 0)


def check_credit_limit(provider_code: str, amount, *, now: Optional[datetime] = None) -> CreditLimitStatus:
    code = base_provider_code(provider_code)
    limits = get_credit_limits(code)
    amount_cents = to_cents(amount)
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be greater than zero")

    now = now or utcnow()
    total_used = _completed_sum(code)
    daily_used = _completed_sum(code, since=start_of_day(now), until=end_of_day(now))

    remaining_total = max(limits["total"] - total_used, 0)
    remaining_daily = max(limits["daily_max"] - daily_used, 0)

    can_process = True
    message = None
    if total_used + amount_cents > limits["total"]:
        can_process = False
        message = f"Total credit limit exceeded. Available: ${format_cents(remaining_total)}"
    elif daily_used + amount_cents > limits["daily_max"]:
        can_process = False
        message = f"Daily limit exceeded. Available today: ${format_cents(remaining_daily)}"

    return CreditLimitStatus(
        can_process=can_process,
        remaining_total=from_cents(remaining_total),
        remaining_daily=from_cents(remaining_daily),
        total_used=from_cents(total_used),
        daily_used=from_cents(daily_used),
        credit_limit=from_cents(limits["total"]),
        daily_limit=from_cents(limits["daily_max"]),
        daily_minimum=from_cents(limits["daily_min"]),
        below_daily_minimum=daily_used + amount_cents < limits["daily_min"],
        message=message,
    )


def get_pending_spei_summary(day: Optional[date] = None, provider_code: str = DIESTEL) -> dict:
    """
    Completed payments of one day awaiting SPEI settlement (read-only).

    Transfer execution happens elsewhere; this only totals what is due.
    """
    code = base_provider_code(provider_code)
    limits = get_credit_limits(code)
    since = start_of_day(datetime.combine(day, time.min) if day else utcnow())
    until = end_of_day(since)

    rows = (
        db.session.query(Transaction)
        .filter(
            Transaction.provider_code == code,
            Transaction.status == COMPLETED,
            Transaction.created_at >= since,
            Transaction.created_at < until,
        )
        .order_by(Transaction.created_at.asc(), Transaction.id.asc())
        .all()
    )
    total_cents = sum(t.total_cents for t in rows)

    return {
        "provider_code": code,
        "scheduled_date": since.date().isoformat(),
        "transaction_count": len(rows),
        "total_amount": format_cents(total_cents),
        "daily_minimum": format_cents(limits["daily_min"]),
        "daily_limit": format_cents(limits["daily_max"]),
        "meets_daily_minimum": total_cents >= limits["daily_min"],
        "transactions": [t.transaction_number for t in rows],
        "message": f"{len(rows)} {code.title()} payment(s) scheduled for SPEI transfer totaling ${format_cents(total_cents)}",
    }
