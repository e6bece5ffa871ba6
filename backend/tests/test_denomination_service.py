from decimal import Decimal

import pytest

from teller.errors import InsufficientInventoryError, ValidationError
from teller.extensions import db
from teller.models import DrawerBalance
from teller.services.denomination_service import (
    ENTRY_CHANGE,
    ENTRY_PAYMENT,
    ENTRY_RECEIVED,
    OP_ADD,
    OP_SUBTRACT,
    adjust_drawer,
    check_sufficiency,
    get_drawer_balance,
    get_drawer_inventory,
    get_drawer_total,
    get_transaction_denominations,
    normalize_entries,
    record_entries,
    reverse_transaction_entries,
)
from teller.services.transaction_service import create_transaction

from conftest import BRANCH, OPERATOR


def _draft(total="500.00", transaction_type="CASH_DEPOSIT"):
    return create_transaction(
        transaction_type=transaction_type,
        operator_id=OPERATOR,
        branch_id=BRANCH,
        items=[{"description": "Deposit", "amount": total}],
    )


def _quantity(operator_id, cents):
    row = db.session.query(DrawerBalance).filter_by(operator_id=operator_id, denomination_cents=cents).first()
    return row.quantity if row else 0


class TestNormalizeEntries:
    def test_accepts_mapping_and_list(self, app):
        assert normalize_entries({"500": 1, Decimal("0.5"): 2}) == {50000: 1, 50: 2}
        assert normalize_entries([{"denomination": "20", "quantity": 3}]) == {2000: 3}

    @pytest.mark.parametrize("entries", [
        {"3": 1},
        {"20": -1},
        {"20": 1.5},
        [{"denomination": "20", "quantity": 1}, {"denomination": "20.00", "quantity": 2}],
        [{"denomination": "20"}],
    ])
    def test_rejects_bad_entries(self, app, entries):
        with pytest.raises(ValidationError):
            normalize_entries(entries)


class TestDrawer:
    def test_add_and_read(self, db_session):
        adjust_drawer(OPERATOR, "200", 2, OP_ADD)
        line = adjust_drawer(OPERATOR, "0.50", 4, OP_ADD)
        db_session.commit()

        assert line.quantity == 4
        assert line.amount == Decimal("2.00")
        assert [row.to_dict() for row in get_drawer_balance(OPERATOR)] == [
            {"denomination": "200.00", "quantity": 2, "amount": "400.00"},
            {"denomination": "0.50", "quantity": 4, "amount": "2.00"},
        ]
        assert get_drawer_total(OPERATOR) == Decimal("402.00")
        assert get_drawer_inventory(OPERATOR) == {Decimal("200.00"): 2, Decimal("0.50"): 4}

    def test_subtract_never_goes_negative(self, db_session):
        adjust_drawer(OPERATOR, "100", 2, OP_ADD)
        db_session.commit()

        with pytest.raises(InsufficientInventoryError) as exc:
            adjust_drawer(OPERATOR, "100", 3, OP_SUBTRACT)
        db_session.rollback()

        assert exc.value.deficient_denominations == ["100.00"]
        assert exc.value.deficiencies[0]["short"] == 1
        assert _quantity(OPERATOR, 10000) == 2

        adjust_drawer(OPERATOR, "100", 2, OP_SUBTRACT)
        db_session.commit()
        assert _quantity(OPERATOR, 10000) == 0

    def test_drawers_are_per_operator(self, db_session):
        adjust_drawer("op-a", "50", 1, OP_ADD)
        db_session.commit()
        with pytest.raises(InsufficientInventoryError):
            adjust_drawer("op-b", "50", 1, OP_SUBTRACT)
        db_session.rollback()

    def test_unknown_operation(self, db_session):
        with pytest.raises(ValidationError):
            adjust_drawer(OPERATOR, "50", 1, "multiply")

    def test_check_sufficiency(self, loaded_drawer):
        assert check_sufficiency(OPERATOR, {"200": 10, "0.50": 1}) == []
        assert check_sufficiency(OPERATOR, {"500": 1, "200": 11}) == [
            {"denomination": "500.00", "required": 1, "available": 0, "short": 1},
            {"denomination": "200.00", "required": 11, "available": 10, "short": 1},
        ]


class TestTransactionEntries:
    def test_received_adds_and_change_subtracts(self, db_session, loaded_drawer):
        txn = _draft()
        total = record_entries(txn.id, ENTRY_RECEIVED, {"500": 1})
        record_entries(txn.id, ENTRY_CHANGE, {"20": 2})
        db_session.commit()

        assert total == Decimal("500.00")
        assert _quantity(OPERATOR, 50000) == 1
        assert _quantity(OPERATOR, 2000) == 8

    def test_payment_entries_are_informational(self, db_session):
        txn = _draft()
        record_entries(txn.id, ENTRY_PAYMENT, {"500": 1})
        db_session.commit()

        assert get_drawer_balance(OPERATOR) == []
        grouped = get_transaction_denominations(txn.id)
        assert [e["denomination"] for e in grouped[ENTRY_PAYMENT]] == ["500.00"]

    def test_change_lists_every_deficient_denomination(self, db_session):
        adjust_drawer(OPERATOR, "20", 1, OP_ADD)
        txn = _draft()
        db_session.commit()

        with pytest.raises(InsufficientInventoryError) as exc:
            record_entries(txn.id, ENTRY_CHANGE, {"50": 1, "20": 2, "10": 1})
        db_session.rollback()

        assert exc.value.deficient_denominations == ["50.00", "20.00", "10.00"]
        assert _quantity(OPERATOR, 2000) == 1

    def test_duplicate_recording_rejected(self, db_session):
        txn = _draft()
        record_entries(txn.id, ENTRY_RECEIVED, {"500": 1})
        db_session.commit()

        with pytest.raises(ValidationError):
            record_entries(txn.id, ENTRY_RECEIVED, {"500": 1})
        db_session.rollback()
        assert _quantity(OPERATOR, 50000) == 1

    def test_reverse_entries(self, db_session, loaded_drawer):
        txn = _draft()
        record_entries(txn.id, ENTRY_RECEIVED, {"500": 1})
        record_entries(txn.id, ENTRY_CHANGE, {"10": 3})
        db_session.commit()

        reversal = reverse_transaction_entries(txn)
        db_session.commit()

        assert reversal == {"received_removed": "500.00", "change_returned": "30.00", "entries_reversed": 2}
        assert _quantity(OPERATOR, 50000) == 0
        assert _quantity(OPERATOR, 1000) == 10

    def test_reverse_is_all_or_nothing(self, db_session, loaded_drawer):
        txn = _draft()
        record_entries(txn.id, ENTRY_RECEIVED, {"500": 1, "200": 1})
        db_session.commit()

        # The 500 has left the drawer since
        adjust_drawer(OPERATOR, "500", 1, OP_SUBTRACT)
        db_session.commit()

        with pytest.raises(InsufficientInventoryError):
            reverse_transaction_entries(txn)
        db_session.rollback()

        assert _quantity(OPERATOR, 20000) == 11
