from decimal import Decimal

import pytest

from teller.errors import NotFoundError, ValidationError
from teller.models import Account
from teller.services.card_service import (
    calculate_available_credit,
    calculate_balance_due,
    calculate_minimum_payment,
    get_statement,
    rounding_unit,
    validate_payment_amount,
)

from conftest import VALID_CARD


@pytest.mark.parametrize("balance,expected", [
    ("5000.00", "250.00"),
    ("1000.00", "200.00"),
    ("150.00", "150.00"),
    ("10001.10", "500.50"),
    ("0", "0.00"),
])
def test_minimum_payment(app, balance, expected):
    assert calculate_minimum_payment(balance) == Decimal(expected)


def test_rounding_favours_the_institution(app):
    assert rounding_unit() == Decimal("0.50")
    assert calculate_balance_due("100.10") == Decimal("100.50")
    assert calculate_available_credit("1000", "100.10") == Decimal("899.50")
    assert calculate_available_credit("100", "150") == Decimal("0.00")


class TestValidatePaymentAmount:
    def _account(self, balance_cents=500000):
        return Account(account_number="ACC-X", holder_name="X", balance_cents=balance_cents)

    def test_minimum(self, app):
        assert validate_payment_amount(self._account(), "250", "MINIMUM") == Decimal("250.00")
        with pytest.raises(ValidationError) as exc:
            validate_payment_amount(self._account(), "249.50", "MINIMUM")
        assert str(exc.value) == "Minimum payment required: $250.00"

    def test_total_must_match_balance_due(self, app):
        assert validate_payment_amount(self._account(10010), "100.50", "TOTAL") == Decimal("100.50")
        with pytest.raises(ValidationError) as exc:
            validate_payment_amount(self._account(10010), "100.00", "TOTAL")
        assert str(exc.value) == "Total payment must equal balance due: $100.50"

    def test_never_above_balance_due(self, app):
        with pytest.raises(ValidationError) as exc:
            validate_payment_amount(self._account(), "6000", "CUSTOM")
        assert str(exc.value) == "Payment amount ($6000.00) exceeds balance due ($5000.00)"

    def test_custom_and_bad_input(self, app):
        assert validate_payment_amount(self._account(), "1", "CUSTOM") == Decimal("1.00")
        with pytest.raises(ValidationError):
            validate_payment_amount(self._account(), "0", "CUSTOM")
        with pytest.raises(ValidationError):
            validate_payment_amount(self._account(), "10", "PARTIAL")


def test_statement(db_session, card_account):
    statement = get_statement(VALID_CARD)
    assert statement.to_dict() == {
        "card_number": statement.card_number,
        "account_id": card_account.id,
        "balance": "5000.00",
        "balance_due": "5000.00",
        "minimum_payment": "250.00",
        "credit_limit": "20000.00",
        "available_credit": "15000.00",
    }
    assert statement.card_number.endswith("1486")


def test_unknown_card(db_session):
    with pytest.raises(NotFoundError):
        get_statement("4111111111111111")
