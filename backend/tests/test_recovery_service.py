import dataclasses
from datetime import timedelta
from decimal import Decimal

import pytest

from teller.errors import ProviderUnavailableError, StateConflictError, ValidationError
from teller.extensions import db
from teller.models import Account, AuditEntry, TransactionItem
from teller.services import recovery_service
from teller.services.denomination_service import (
    ENTRY_RECEIVED,
    OP_ADD,
    OP_SUBTRACT,
    adjust_drawer,
    get_drawer_inventory,
    record_entries,
)
from teller.services.payment_service import PaymentRequest, post_payment
from teller.services.recovery_service import (
    NOT_FAILED_MESSAGE,
    TransactionSnapshot,
    can_rollback,
    create_snapshot,
    get_rollback_history,
    restore_snapshot,
    retry_transaction,
    rollback_transaction,
)
from teller.services.transaction_service import create_transaction, get_transaction, post_transaction
from teller.time_utils import utcnow

from conftest import BRANCH, OPERATOR, VALID_CARD, make_failed_transaction


class FailingProvider:
    def confirm(self, transaction, timeout=None):
        raise ProviderUnavailableError("Provider did not answer")


class AcceptingProvider:
    def __init__(self):
        self.calls = 0

    def confirm(self, transaction, timeout=None):
        self.calls += 1


def _posted_deposit():
    txn = create_transaction(
        transaction_type="CASH_DEPOSIT",
        operator_id=OPERATOR,
        branch_id=BRANCH,
        items=[{"description": "Deposit", "amount": "500.00"}],
    )
    record_entries(txn.id, ENTRY_RECEIVED, {"500": 1})
    db.session.commit()
    return post_transaction(txn.id, actor_id=OPERATOR)


def _actions(transaction_id):
    return [
        e.action for e in
        db.session.query(AuditEntry).filter_by(transaction_id=transaction_id).order_by(AuditEntry.id)
    ]


def _card_request():
    return PaymentRequest(
        transaction_type="CARD_PAYMENT",
        operator_id=OPERATOR,
        branch_id=BRANCH,
        amount="250.00",
        received={"200": 1, "100": 1},
        card_number=VALID_CARD,
        payment_type="MINIMUM",
    )


class TestRollback:
    def test_posted_deposit(self, db_session):
        txn = _posted_deposit()
        assert can_rollback(txn.id).allowed

        result = rollback_transaction(txn.id, "user_cancelled", actor_id=OPERATOR, detail="wrong account")

        assert result.success
        assert "Reversed 1 denomination entries" in result.actions
        assert "Transaction status updated from POSTED to ROLLED_BACK" in result.actions
        txn = get_transaction(txn.id)
        assert txn.status == "ROLLED_BACK"
        assert txn.notes == "Rolled back (user_cancelled): wrong account"
        assert get_drawer_inventory(OPERATOR)[Decimal("500")] == 0
        assert _actions(txn.id)[-1] == "ROLLBACK"

        again = rollback_transaction(txn.id, "user_cancelled")
        assert not again.success
        assert again.reason == "Transaction already rolled back"
        assert _actions(txn.id)[-1] == "ROLLBACK_FAILED"

    def test_outside_window(self, db_session):
        txn = _posted_deposit()
        later = utcnow() + timedelta(hours=25)

        eligibility = can_rollback(txn.id, now=later)
        assert not eligibility.allowed
        assert eligibility.reason == "Transaction is older than 24 hours and cannot be rolled back"

        result = rollback_transaction(txn.id, "system_error", now=later)
        assert not result.success
        assert get_transaction(txn.id).status == "POSTED"

    def test_not_found(self, db_session):
        result = rollback_transaction(424242, "system_error")
        assert not result.success
        assert result.reason == "Transaction not found"

    def test_invalid_reason(self, db_session):
        txn = _posted_deposit()
        with pytest.raises(ValidationError):
            rollback_transaction(txn.id, "bored")

    def test_card_payment_restores_balance(self, db_session, card_account, loaded_drawer):
        payment = post_payment(_card_request())
        assert db_session.get(Account, card_account.id).balance_cents == 475000

        result = rollback_transaction(payment.transaction_id, "payment_failure")

        assert result.success
        assert "Restored 250.00 to account ACC-0001" in result.actions
        assert db_session.get(Account, card_account.id).balance_cents == 500000
        inventory = get_drawer_inventory(OPERATOR)
        assert inventory[Decimal("200")] == 10
        assert inventory[Decimal("50")] == 10

    def test_failure_leaves_transaction_untouched(self, db_session):
        txn = _posted_deposit()
        # The received note has already left the drawer
        adjust_drawer(OPERATOR, "500", 1, OP_SUBTRACT)
        db_session.commit()

        result = rollback_transaction(txn.id, "system_error")

        assert not result.success
        assert get_transaction(txn.id).status == "POSTED"
        assert _actions(txn.id)[-1] == "ROLLBACK_FAILED"
        assert [h["action"] for h in get_rollback_history(txn.id)] == ["ROLLBACK_FAILED"]


class TestRetry:
    def test_custom_processor_succeeds(self, db_session):
        txn = make_failed_transaction()
        seen = []

        result = retry_transaction(txn.id, processor=lambda t: seen.append(t.status), sleep=lambda s: None)

        assert result.success
        assert result.attempts == 1
        assert seen == ["PENDING"]
        assert get_transaction(txn.id).status == "COMPLETED"

    def test_failed_card_payment_reprocessed(self, db_session, card_account, loaded_drawer):
        failed = post_payment(_card_request(), provider=FailingProvider())
        assert failed.status == "FAILED"
        provider = AcceptingProvider()

        result = retry_transaction(failed.transaction_id, provider=provider, sleep=lambda s: None)

        assert result.success
        assert provider.calls == 1
        txn = get_transaction(failed.transaction_id)
        assert txn.status == "COMPLETED"
        assert txn.failure_reason is None
        assert db_session.get(Account, card_account.id).balance_cents == 475000

    def test_exhausts_attempts_with_backoff(self, db_session):
        transaction_id = make_failed_transaction().id
        sleeps = []

        def processor(t):
            raise ProviderUnavailableError("still down")

        result = retry_transaction(transaction_id, processor=processor, sleep=sleeps.append)

        assert not result.success
        assert result.attempts == 3
        assert result.error == "still down"
        assert sleeps == [2, 4]
        assert get_transaction(transaction_id).status == "FAILED"
        history = get_rollback_history(transaction_id)
        failed_attempts = [h for h in history if h["action"] == "RETRY_ATTEMPT"]
        assert [h["details"]["attempt"] for h in failed_attempts] == [1, 2, 3]
        assert history[-1]["action"] == "RETRY_EXHAUSTED"

    def test_non_infrastructure_error_stops(self, db_session):
        txn = make_failed_transaction()
        sleeps = []

        def processor(t):
            raise ValidationError("Reference no longer valid")

        result = retry_transaction(txn.id, processor=processor, sleep=sleeps.append)

        assert not result.success
        assert result.attempts == 1
        assert sleeps == []
        assert get_transaction(txn.id).status == "FAILED"

    def test_only_failed_transactions(self, db_session):
        txn = _posted_deposit()
        result = retry_transaction(txn.id, sleep=lambda s: None)
        assert result == recovery_service.RetryResult(False, 0, NOT_FAILED_MESSAGE)


class TestSnapshots:
    def test_dict_round_trip_and_frozen(self, db_session):
        txn = _posted_deposit()
        snapshot = create_snapshot(txn.id)

        restored = TransactionSnapshot.from_dict(snapshot.to_dict())
        assert restored.transaction_id == txn.id
        assert restored.transaction["transaction_number"] == txn.transaction_number
        assert len(restored.denominations) == 1
        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.transaction = {}

    def test_from_dict_requires_transaction(self):
        with pytest.raises(ValidationError):
            TransactionSnapshot.from_dict({"items": []})

    def test_restore(self, db_session):
        txn = create_transaction(
            transaction_type="CASH_DEPOSIT",
            operator_id=OPERATOR,
            branch_id=BRANCH,
            items=[{"description": "First", "amount": "100.00"}, {"description": "Second", "amount": "50.00"}],
            notes="original",
        )
        snapshot = create_snapshot(txn.id)

        txn.notes = "overwritten"
        db_session.delete(txn.items[1])
        db_session.commit()
        assert len(get_transaction(txn.id).items) == 1

        restored = restore_snapshot(snapshot, actor_id="admin")

        assert restored.notes == "original"
        assert [i.description for i in restored.items] == ["First", "Second"]
        assert db_session.query(TransactionItem).count() == 2
        history = get_rollback_history(txn.id)
        assert history[-1]["action"] == "SNAPSHOT_RESTORED"
        assert history[-1]["details"]["items_restored"] == 1

    def test_snapshot_is_read_only_all_the_way_down(self, db_session):
        txn = _posted_deposit()
        snapshot = create_snapshot(txn.id)

        with pytest.raises(TypeError):
            snapshot.transaction["status"] = "DRAFT"
        with pytest.raises(TypeError):
            snapshot.denominations[0]["quantity"] = 5

        source = {"transaction": {"id": 1, "request_payload": {"amount": "1.00"}}, "items": [{"id": 1}]}
        copy = TransactionSnapshot.from_dict(source)
        source["transaction"]["request_payload"]["amount"] = "9.00"
        source["items"][0]["id"] = 2
        assert copy.transaction["request_payload"]["amount"] == "1.00"
        assert copy.items[0]["id"] == 1
        assert copy.to_dict()["transaction"]["request_payload"] == {"amount": "1.00"}

    def test_restore_cannot_revive_rolled_back_transaction(self, db_session):
        adjust_drawer(OPERATOR, "500", 3, OP_ADD)
        db_session.commit()
        transaction_id = _posted_deposit().id
        snapshot = create_snapshot(transaction_id)

        assert rollback_transaction(transaction_id, "user_cancelled").success
        with pytest.raises(StateConflictError):
            restore_snapshot(snapshot)

        assert get_transaction(transaction_id).status == "ROLLED_BACK"
        assert not rollback_transaction(transaction_id, "user_cancelled").success
        assert get_drawer_inventory(OPERATOR)[Decimal("500")] == 3
