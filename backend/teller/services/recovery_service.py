# Overview: Rollback/retry coordinator; rollback eligibility, bounded retry with backoff, snapshots and history.

"""
Recovery invariants

- Rollback is all-or-nothing: status, notes, drawer reversal, card balance
  restore and the audit entry commit together or not at all. A refused or
  failed rollback is itself audit-logged and reported with success=False.
- Only FAILED transactions are retried. Each attempt runs
  FAILED -> PENDING -> reprocess -> COMPLETED in its own unit of work and is
  audit-logged with its attempt number, success or not.
- The session is released before sleeping between attempts so no drawer or
  transaction row stays locked during backoff.
- Only infrastructure errors are retried; anything else stops the loop and
  leaves the transaction FAILED.
- Snapshots are immutable bundles; restore is an explicit data-recovery step
  that never moves drawer inventory or revives a CANCELLED or ROLLED_BACK
  transaction.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from flask import current_app
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from ..errors import NotFoundError, StateConflictError, TellerError, ValidationError
from ..extensions import db
from ..models import Account, DenominationEntry, Transaction, TransactionItem
from ..money import format_cents
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow
from . import audit_service, transaction_service
from .concurrency import is_infrastructure_error, lock_for_update
from .denomination_service import reverse_transaction_entries
from .payment_service import reprocess_payment

ROLLBACK_REASONS = {
    "payment_failure",
    "external_system_error",
    "insufficient_inventory",
    "duplicate_transaction",
    "user_cancelled",
    "system_error",
}

HISTORY_ACTIONS = [
    audit_service.ACTION_ROLLBACK,
    audit_service.ACTION_ROLLBACK_FAILED,
    audit_service.ACTION_RETRY_ATTEMPT,
    audit_service.ACTION_RETRY_EXHAUSTED,
    audit_service.ACTION_SNAPSHOT_RESTORED,
]

NOT_FAILED_MESSAGE = "Transaction is not in Failed status"


@dataclass(frozen=True)
class RollbackEligibility:
    allowed: bool
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "reason": self.reason}


@dataclass(frozen=True)
class RollbackResult:
    success: bool
    transaction_id: int
    timestamp: datetime
    reason: Optional[str] = None
    actions: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "transaction_id": self.transaction_id,
            "reason": self.reason,
            "actions": list(self.actions),
            "timestamp": to_utc_z(self.timestamp),
        }


@dataclass(frozen=True)
class RetryResult:
    success: bool
    attempts: int
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"success": self.success, "attempts": self.attempts, "error": self.error}


def _freeze(value):
    """Read-only copy: mappings become MappingProxyType, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value):
    """Plain JSON-compatible copy of a frozen value."""
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class TransactionSnapshot:
    transaction: Mapping
    items: tuple[Mapping, ...] = ()
    denominations: tuple[Mapping, ...] = ()
    taken_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        # Frozen all the way down, detached from the caller's dicts
        object.__setattr__(self, "transaction", _freeze(self.transaction))
        object.__setattr__(self, "items", _freeze(tuple(self.items)))
        object.__setattr__(self, "denominations", _freeze(tuple(self.denominations)))

    @property
    def transaction_id(self) -> int:
        return self.transaction["id"]

    def to_dict(self) -> dict:
        return {
            "transaction": _thaw(self.transaction),
            "items": [_thaw(i) for i in self.items],
            "denominations": [_thaw(d) for d in self.denominations],
            "taken_at": to_utc_z(self.taken_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TransactionSnapshot":
        if not data.get("transaction") or "id" not in data["transaction"]:
            raise ValidationError("Snapshot has no transaction row")
        return cls(
            transaction=data["transaction"],
            items=tuple(data.get("items") or []),
            denominations=tuple(data.get("denominations") or []),
            taken_at=parse_iso_datetime(data.get("taken_at")) or utcnow(),
        )


# =============================================================================
# ROLLBACK
# =============================================================================

def _window() -> timedelta:
    return timedelta(hours=current_app.config.get("ROLLBACK_WINDOW_HOURS", 24))


def _eligibility(txn: Optional[Transaction], now: datetime) -> RollbackEligibility:
    if txn is None:
        return RollbackEligibility(False, "Transaction not found")
    if txn.status == transaction_service.STATUS_ROLLED_BACK:
        return RollbackEligibility(False, "Transaction already rolled back")
    if txn.status == transaction_service.STATUS_CANCELLED:
        return RollbackEligibility(False, "Transaction is cancelled")
    if now - txn.created_at > _window():
        hours = current_app.config.get("ROLLBACK_WINDOW_HOURS", 24)
        return RollbackEligibility(False, f"Transaction is older than {hours} hours and cannot be rolled back")
    return RollbackEligibility(True)


def can_rollback(transaction_id: int, *, now: Optional[datetime] = None) -> RollbackEligibility:
    return _eligibility(db.session.get(Transaction, transaction_id), now or utcnow())


def _restore_card_balance(txn: Transaction) -> str:
    account = lock_for_update(db.session.query(Account).filter(Account.id == txn.account_id)).first()
    if not account:
        raise NotFoundError(f"Account {txn.account_id} not found", account_id=txn.account_id)
    account.balance_cents += txn.total_cents
    db.session.flush()
    return f"Restored {format_cents(txn.total_cents)} to account {account.account_number}"


def _record_rollback_failure(transaction_id: int, reason: str, message: str, actor_id: str | None) -> None:
    audit_service.append_audit_entry(
        action=audit_service.ACTION_ROLLBACK_FAILED,
        transaction_id=transaction_id,
        reason_code=reason,
        actor_id=actor_id,
        details={"error": message},
        commit=True,
    )


def rollback_transaction(
    transaction_id: int,
    reason: str,
    *,
    actor_id: str | None = None,
    detail: str | None = None,
    now: Optional[datetime] = None,
) -> RollbackResult:
    """
    Reverse a transaction's effects and mark it ROLLED_BACK.

    Returns success=False (with the refusal or failure reason) instead of
    raising when the transaction is ineligible or reversal fails; the attempt
    is audit-logged either way.
    """
    if reason not in ROLLBACK_REASONS:
        raise ValidationError(
            f"Invalid rollback reason '{reason}'. Must be one of: {', '.join(sorted(ROLLBACK_REASONS))}"
        )

    timestamp = now or utcnow()
    actions: list[str] = []

    try:
        txn = lock_for_update(db.session.query(Transaction).filter(Transaction.id == transaction_id)).first()
        eligibility = _eligibility(txn, timestamp)
        if not eligibility.allowed:
            db.session.rollback()
            _record_rollback_failure(transaction_id, reason, eligibility.reason, actor_id)
            return RollbackResult(False, transaction_id, timestamp, reason=eligibility.reason)

        original_status = txn.status

        reversal = reverse_transaction_entries(txn)
        if reversal["entries_reversed"]:
            actions.append(f"Reversed {reversal['entries_reversed']} denomination entries")

        if txn.account_id is not None and original_status in transaction_service.FINAL_STATUSES:
            actions.append(_restore_card_balance(txn))

        note = f"Rolled back ({reason})"
        if detail:
            note = f"{note}: {detail}"
        transaction_service.append_note(txn, note)
        actions.append(f"Transaction status updated from {original_status} to ROLLED_BACK")

        transaction_service.transition(
            txn,
            transaction_service.STATUS_ROLLED_BACK,
            action=audit_service.ACTION_ROLLBACK,
            actor_id=actor_id,
            reason_code=reason,
            details={
                "original_status": original_status,
                "detail": detail,
                "actions": actions,
                **reversal,
            },
        )
        actions.append("Audit entry created")
        db.session.commit()
        return RollbackResult(True, transaction_id, timestamp, actions=tuple(actions))
    except (TellerError, SQLAlchemyError) as exc:
        db.session.rollback()
        message = getattr(exc, "message", None) or str(exc)
        current_app.logger.warning("Rollback of transaction %s failed: %s", transaction_id, message)
        _record_rollback_failure(transaction_id, reason, message, actor_id)
        return RollbackResult(False, transaction_id, timestamp, reason=message)


# =============================================================================
# RETRY
# =============================================================================

def _record_failed_attempt(transaction_id: int, attempt: int, max_attempts: int, exc: Exception, actor_id) -> str:
    message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    txn = db.session.get(Transaction, transaction_id)
    if txn is not None:
        txn.failure_reason = message[:255]
    audit_service.append_audit_entry(
        action=audit_service.ACTION_RETRY_ATTEMPT,
        transaction_id=transaction_id,
        before_status=transaction_service.STATUS_FAILED,
        after_status=transaction_service.STATUS_FAILED,
        actor_id=actor_id,
        details={
            "attempt": attempt,
            "max_attempts": max_attempts,
            "success": False,
            "error": message,
            "error_type": type(exc).__name__,
        },
        commit=True,
    )
    return message


def retry_transaction(
    transaction_id: int,
    max_attempts: int | None = None,
    *,
    actor_id: str | None = None,
    processor: Callable[[Transaction], object] | None = None,
    provider=None,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult:
    """
    Bounded retry of a FAILED transaction.

    processor(txn) re-runs the business logic for a PENDING transaction
    (payment_service.reprocess_payment by default) and raises on failure.
    The delay before attempt n+1 is RETRY_BACKOFF_BASE_SECONDS ** n.
    The session is closed before each sleep, so ORM instances the caller
    loaded are detached; pass ids and re-read afterwards.
    """
    cap = current_app.config.get("RETRY_MAX_ATTEMPTS", 3)
    if max_attempts is not None and max_attempts < 1:
        raise ValidationError("max_attempts must be at least 1")
    attempts_allowed = min(max_attempts or cap, cap)
    backoff_base = current_app.config.get("RETRY_BACKOFF_BASE_SECONDS", 2)

    if processor is None:
        def processor(txn):
            return reprocess_payment(txn, provider=provider)

    last_error: Optional[str] = None
    for attempt in range(1, attempts_allowed + 1):
        txn = transaction_service.get_transaction(transaction_id, for_update=True)
        if txn.status != transaction_service.STATUS_FAILED:
            db.session.rollback()
            return RetryResult(False, attempt - 1, NOT_FAILED_MESSAGE if attempt == 1 else last_error)

        try:
            transaction_service.transition(
                txn,
                transaction_service.STATUS_PENDING,
                action=audit_service.ACTION_RETRY_ATTEMPT,
                actor_id=actor_id,
                details={"attempt": attempt, "max_attempts": attempts_allowed},
            )
            processor(txn)
            if txn.status == transaction_service.STATUS_PENDING:
                transaction_service.transition(
                    txn,
                    transaction_service.STATUS_COMPLETED,
                    action=audit_service.ACTION_COMPLETED,
                    actor_id=actor_id,
                    details={"attempt": attempt},
                )
            db.session.commit()
            current_app.logger.info("Transaction %s completed on retry attempt %s", transaction_id, attempt)
            return RetryResult(True, attempt)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Retry attempt %s/%s for transaction %s failed: %s",
                attempt, attempts_allowed, transaction_id, exc,
            )
            last_error = _record_failed_attempt(transaction_id, attempt, attempts_allowed, exc, actor_id)
            if not is_infrastructure_error(exc):
                return RetryResult(False, attempt, last_error)

        if attempt < attempts_allowed:
            db.session.close()
            sleep(backoff_base ** attempt)

    audit_service.append_audit_entry(
        action=audit_service.ACTION_RETRY_EXHAUSTED,
        transaction_id=transaction_id,
        before_status=transaction_service.STATUS_FAILED,
        after_status=transaction_service.STATUS_FAILED,
        actor_id=actor_id,
        details={"attempts": attempts_allowed, "error": last_error},
        commit=True,
    )
    return RetryResult(False, attempts_allowed, last_error or "All retry attempts failed")


# =============================================================================
# SNAPSHOTS
# =============================================================================

def _serialize(obj) -> dict:
    data = {}
    for attr in inspect(obj).mapper.column_attrs:
        value = getattr(obj, attr.key)
        data[attr.key] = to_utc_z(value) if isinstance(value, datetime) else value
    return data


def _deserialize(model, data: dict) -> dict:
    values = {}
    for attr in inspect(model).column_attrs:
        if attr.key not in data:
            continue
        value = _thaw(data[attr.key])
        column = attr.columns[0]
        if value is not None and isinstance(column.type, db.DateTime):
            value = parse_iso_datetime(value)
        values[attr.key] = value
    return values


def create_snapshot(transaction_id: int) -> TransactionSnapshot:
    txn = transaction_service.get_transaction(transaction_id)
    entries = (
        db.session.query(DenominationEntry)
        .filter(DenominationEntry.transaction_id == txn.id)
        .order_by(DenominationEntry.id.asc())
        .all()
    )
    return TransactionSnapshot(
        transaction=_serialize(txn),
        items=tuple(_serialize(i) for i in txn.items),
        denominations=tuple(_serialize(e) for e in entries),
        taken_at=utcnow(),
    )


def restore_snapshot(snapshot: TransactionSnapshot, *, actor_id: str | None = None) -> Transaction:
    """
    Restore the transaction row and recreate missing items and denomination
    entries. Existing denomination entries are left as they are (append-only)
    and drawer balances are not touched.

    A CANCELLED or ROLLED_BACK transaction keeps its status: restoring it to
    a live status would let its reversed effects be reversed again.
    """
    try:
        values = _deserialize(Transaction, snapshot.transaction)
        txn = lock_for_update(db.session.query(Transaction).filter(Transaction.id == snapshot.transaction_id)).first()
        before_status = txn.status if txn else None
        if (
            before_status in transaction_service.TERMINAL_STATUSES
            and values.get("status") != before_status
        ):
            # Its drawer and card effects were already reversed
            raise StateConflictError(
                f"Cannot restore transaction with status {before_status} to {values.get('status')}",
                current_status=before_status,
            )
        if txn is None:
            txn = Transaction(**values)
            db.session.add(txn)
        else:
            for key, value in values.items():
                if key != "id":
                    setattr(txn, key, value)
        db.session.flush()

        items_restored = 0
        for item_data in snapshot.items:
            item_values = _deserialize(TransactionItem, item_data)
            item = db.session.get(TransactionItem, item_values.get("id"))
            if item is None:
                db.session.add(TransactionItem(**item_values))
                items_restored += 1
            else:
                for key, value in item_values.items():
                    if key != "id":
                        setattr(item, key, value)

        entries_restored = 0
        for entry_data in snapshot.denominations:
            entry_values = _deserialize(DenominationEntry, entry_data)
            if db.session.get(DenominationEntry, entry_values.get("id")) is None:
                db.session.add(DenominationEntry(**entry_values))
                entries_restored += 1
        db.session.flush()

        audit_service.append_audit_entry(
            action=audit_service.ACTION_SNAPSHOT_RESTORED,
            transaction_id=txn.id,
            before_status=before_status,
            after_status=txn.status,
            actor_id=actor_id,
            details={
                "snapshot_taken_at": to_utc_z(snapshot.taken_at),
                "item_count": len(snapshot.items),
                "items_restored": items_restored,
                "entries_restored": entries_restored,
            },
        )
        db.session.commit()
        return txn
    except Exception:
        db.session.rollback()
        raise


def get_rollback_history(transaction_id: int) -> list[dict]:
    return [
        {
            "action": e.action,
            "timestamp": to_utc_z(e.occurred_at),
            "actor_id": e.actor_id,
            "before_status": e.before_status,
            "after_status": e.after_status,
            "reason_code": e.reason_code,
            "details": e.details,
        }
        for e in audit_service.list_audit_entries(transaction_id=transaction_id, actions=HISTORY_ACTIONS)
    ]
