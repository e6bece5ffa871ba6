# Overview: Card payment policy; statements, minimum payment and payment amount validation.

"""
Card payment policy

- minimum = max(balance * MIN_PAYMENT_RATE, MIN_PAYMENT_FLOOR), capped at the
  balance, then rounded UP to the smallest denomination unit.
- balance due rounds UP; available credit rounds DOWN. The asymmetry always
  favours the institution.
- MINIMUM payments must reach the minimum, TOTAL payments must equal the
  balance due within 0.01, CUSTOM payments only need to be positive. No
  payment may exceed the balance due.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..denominations import get_denominations
from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Account, Card
from ..money import from_cents, round_down_to_unit, round_up_to_unit, to_cents, to_decimal, within_tolerance
from .checksum_service import require_valid_card_number

PAYMENT_MINIMUM = "MINIMUM"
PAYMENT_TOTAL = "TOTAL"
PAYMENT_CUSTOM = "CUSTOM"
PAYMENT_TYPES = {PAYMENT_MINIMUM, PAYMENT_TOTAL, PAYMENT_CUSTOM}


@dataclass(frozen=True)
class CardStatement:
    card_number: str
    account_id: int
    balance: Decimal
    balance_due: Decimal
    minimum_payment: Decimal
    credit_limit: Decimal
    available_credit: Decimal

    def to_dict(self) -> dict:
        return {
            "card_number": self.card_number,
            "account_id": self.account_id,
            "balance": f"{self.balance:.2f}",
            "balance_due": f"{self.balance_due:.2f}",
            "minimum_payment": f"{self.minimum_payment:.2f}",
            "credit_limit": f"{self.credit_limit:.2f}",
            "available_credit": f"{self.available_credit:.2f}",
        }


def rounding_unit() -> Decimal:
    """Smallest denomination of the active currency profile (0.50 for MXN)."""
    return from_cents(min(get_denominations()))


def calculate_minimum_payment(balance, *, rate=None, floor=None) -> Decimal:
    balance = to_decimal(balance, field="balance")
    if balance <= 0:
        return Decimal("0.00")

    rate = to_decimal(rate if rate is not None else current_app.config["MIN_PAYMENT_RATE"], field="rate")
    floor = to_decimal(floor if floor is not None else current_app.config["MIN_PAYMENT_FLOOR"], field="floor")

    minimum = min(max(balance * rate, floor), balance)
    return round_up_to_unit(minimum, rounding_unit())


def calculate_balance_due(balance) -> Decimal:
    balance = to_decimal(balance, field="balance")
    if balance <= 0:
        return Decimal("0.00")
    return round_up_to_unit(balance, rounding_unit())


def calculate_available_credit(credit_limit, balance) -> Decimal:
    available = to_decimal(credit_limit, field="credit_limit") - to_decimal(balance, field="balance")
    if available <= 0:
        return Decimal("0.00")
    return round_down_to_unit(available, rounding_unit())


def get_card(card_number: str) -> Card:
    number = require_valid_card_number(card_number)
    card = db.session.query(Card).filter_by(card_number=number).first()
    if not card or not card.is_active:
        raise NotFoundError("Card not found", card_number=f"****{number[-4:]}")
    return card


def build_statement(card: Card, account: Account | None = None) -> CardStatement:
    account = account or card.account
    balance = from_cents(account.balance_cents)
    credit_limit = from_cents(account.credit_limit_cents)
    return CardStatement(
        card_number=card.masked_number,
        account_id=account.id,
        balance=balance,
        balance_due=calculate_balance_due(balance),
        minimum_payment=calculate_minimum_payment(balance),
        credit_limit=credit_limit,
        available_credit=calculate_available_credit(credit_limit, balance),
    )


def get_statement(card_number: str) -> CardStatement:
    return build_statement(get_card(card_number))


def validate_payment_amount(account: Account, amount, payment_type: str) -> Decimal:
    """Raises ValidationError when amount breaks the policy for payment_type."""
    if payment_type not in PAYMENT_TYPES:
        raise ValidationError(
            f"Invalid payment type '{payment_type}'. Must be one of: {', '.join(sorted(PAYMENT_TYPES))}"
        )

    amount_cents = to_cents(amount, field="payment amount")
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be greater than zero")

    balance = from_cents(account.balance_cents)
    balance_due_cents = to_cents(calculate_balance_due(balance))
    if amount_cents > balance_due_cents:
        raise ValidationError(
            f"Payment amount (${from_cents(amount_cents)}) exceeds balance due (${from_cents(balance_due_cents)})",
            balance_due=str(from_cents(balance_due_cents)),
        )

    if payment_type == PAYMENT_MINIMUM:
        minimum = calculate_minimum_payment(balance)
        if amount_cents < to_cents(minimum):
            raise ValidationError(
                f"Minimum payment required: ${minimum}",
                minimum_payment=str(minimum),
            )

    if payment_type == PAYMENT_TOTAL and not within_tolerance(amount_cents, balance_due_cents):
        raise ValidationError(
            f"Total payment must equal balance due: ${from_cents(balance_due_cents)}",
            balance_due=str(from_cents(balance_due_cents)),
        )

    return from_cents(amount_cents)
