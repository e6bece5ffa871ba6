"""
Pytest fixtures for the teller settlement engine tests.

Provides the application (in-memory SQLite), a per-test clean database,
and the catalogue, card and drawer fixtures most payment tests need.
"""

import pytest

from teller import create_app
from teller.extensions import db
from teller.models import Account, Card, Service
from teller.services.denomination_service import OP_ADD, adjust_drawer
from teller.services.transaction_service import STATUS_PENDING, create_transaction, mark_failed


OPERATOR = "op-1"
BRANCH = "branch-1"

VALID_CARD = "4539578763621486"
TELMEX_REFERENCE = "1234567890"
TELMEX_DIGIT = "3"
DIESTEL_REFERENCE = "123456789012345678901234567891"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (Core deletes bypass the append-only listeners)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def cli_runner(app, db_session):
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def services(db_session):
    """Bill-payment catalogue: fixed fee for TELMEX/CFE, percentage for GNM."""
    catalogue = [
        Service(service_code="CFE", name="CFE", commission_rate="0", fixed_commission_cents=1000),
        Service(service_code="TELMEX", name="Telmex", commission_rate="0", fixed_commission_cents=1000),
        Service(service_code="GNM", name="Gas Natural", commission_rate="0.01", fixed_commission_cents=0),
        Service(service_code="DIESTEL", name="Diestel", commission_rate="0.05", fixed_commission_cents=500),
    ]
    db_session.add_all(catalogue)
    db_session.commit()
    return {s.service_code: s for s in catalogue}


@pytest.fixture(scope='function')
def card_account(db_session):
    """Credit account owing 5,000.00 of a 20,000.00 limit, with one active card."""
    account = Account(
        account_number="ACC-0001",
        holder_name="Ana Torres",
        balance_cents=500000,
        credit_limit_cents=2000000,
    )
    db_session.add(account)
    db_session.flush()
    card = Card(account_id=account.id, card_number=VALID_CARD)
    db_session.add(card)
    db_session.commit()
    return account


@pytest.fixture(scope='function')
def baf_account(db_session):
    account = Account(account_number="BAF-0001", holder_name="Luis Perez", is_baf=True)
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture(scope='function')
def loaded_drawer(db_session):
    """Opening float for OPERATOR: 10 of every MXN denomination from 200 down to 0.50."""
    for denomination in ("200", "100", "50", "20", "10", "5", "2", "1", "0.50"):
        adjust_drawer(OPERATOR, denomination, 10, OP_ADD)
    db_session.commit()
    return OPERATOR


def make_failed_transaction(total="100.00", request_payload=None):
    """PENDING -> FAILED transaction as left behind by an infrastructure failure."""
    txn = create_transaction(
        transaction_type="SERVICE_PAYMENT",
        operator_id=OPERATOR,
        branch_id=BRANCH,
        items=[{"description": "CFE payment", "amount": total}],
        status=STATUS_PENDING,
        request_payload=request_payload,
        commit=False,
    )
    return mark_failed(txn, "Provider timed out", actor_id=OPERATOR)
