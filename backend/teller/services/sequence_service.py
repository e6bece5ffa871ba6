# Overview: Service-layer operations for document numbering; atomic daily sequences.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import business_date_str

RECEIPT_PREFIX = "RCP"


def transaction_prefix(transaction_type: str) -> str:
    """'SERVICE_PAYMENT' -> 'SER'; CASH_DEPOSIT and CASH_WITHDRAWAL share 'CAS'."""
    return transaction_type.replace("_", "")[:3].upper()


def _increment(prefix: str, business_date: str) -> Optional[int]:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.prefix == prefix,
            DocumentSequence.business_date == business_date,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(prefix=prefix, business_date=business_date)
        .scalar()
    )
    return current - 1


def next_sequence_number(prefix: str, when: Optional[datetime] = None) -> tuple[str, int]:
    """
    Atomically allocate the next daily number for prefix.

    The increment is a single UPDATE so concurrent callers serialize on the
    row. First use of a (prefix, date) inserts inside a savepoint; losing an
    insert race falls back to the UPDATE without discarding the caller's
    unit of work. Returns (business_date, number).
    """
    business_date = business_date_str(when)

    number = _increment(prefix, business_date)
    if number is not None:
        return business_date, number

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(prefix=prefix, business_date=business_date, next_number=2))
        return business_date, 1
    except IntegrityError:
        number = _increment(prefix, business_date)
        if number is None:
            raise
        return business_date, number


def next_transaction_number(transaction_type: str, when: Optional[datetime] = None) -> str:
    """{TYPE3}-{YYYYMMDD}-{seq4}"""
    prefix = transaction_prefix(transaction_type)
    business_date, number = next_sequence_number(prefix, when)
    return f"{prefix}-{business_date}-{number:04d}"


def next_receipt_number(when: Optional[datetime] = None) -> str:
    """RCP-{YYYYMMDD}-{seq6}"""
    business_date, number = next_sequence_number(RECEIPT_PREFIX, when)
    return f"{RECEIPT_PREFIX}-{business_date}-{number:06d}"
