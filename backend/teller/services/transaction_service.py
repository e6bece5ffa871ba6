# Overview: Service-layer operations for the transaction lifecycle; state machine, posting and cancellation.

"""
Teller Transaction Lifecycle Service

================================================================================
PURPOSE: Enforce the transaction state machine and its posting gates
================================================================================

STATE MACHINE:
    DRAFT   -> POSTED | CANCELLED | ROLLED_BACK
    PENDING -> COMPLETED | FAILED | CANCELLED | ROLLED_BACK
    FAILED  -> PENDING | CANCELLED | ROLLED_BACK
    POSTED, COMPLETED -> ROLLED_BACK
    CANCELLED, ROLLED_BACK: terminal

    DRAFT:   explicit two-step creation; items and cash may still be added
    PENDING: synchronous payment in progress (see payment_service)
    POSTED / COMPLETED: financially final, reachable only by rollback

RULES (NON-NEGOTIABLE):
1. Posting is allowed only from DRAFT; the error names the actual status
2. A POSTED or COMPLETED transaction cannot be cancelled
3. Every status change writes an audit entry with before/after status
4. Item subtotals reconcile with the total within 0.01
5. Cash transactions reconcile net cash entries with the total before posting

================================================================================
"""

from __future__ import annotations

from typing import Optional

from ..errors import NotFoundError, ReconciliationError, StateConflictError, ValidationError
from ..extensions import db
from ..models import Receipt, Transaction, TransactionItem
from ..money import format_cents, to_cents, within_tolerance
from ..time_utils import utcnow
from . import audit_service
from .checksum_service import has_validation_rules, require_valid_reference
from .concurrency import lock_for_update
from .denomination_service import (
    get_transaction_denominations,
    net_cash_cents,
    reverse_transaction_entries,
)
from .sequence_service import next_receipt_number, next_transaction_number


STATUS_DRAFT = "DRAFT"
STATUS_PENDING = "PENDING"
STATUS_POSTED = "POSTED"
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"
STATUS_CANCELLED = "CANCELLED"
STATUS_ROLLED_BACK = "ROLLED_BACK"

VALID_STATUSES = {
    STATUS_DRAFT, STATUS_PENDING, STATUS_POSTED, STATUS_COMPLETED,
    STATUS_FAILED, STATUS_CANCELLED, STATUS_ROLLED_BACK,
}
TERMINAL_STATUSES = {STATUS_CANCELLED, STATUS_ROLLED_BACK}
FINAL_STATUSES = {STATUS_POSTED, STATUS_COMPLETED}

VALID_TRANSITIONS = {
    STATUS_DRAFT: {STATUS_POSTED, STATUS_CANCELLED, STATUS_ROLLED_BACK},
    STATUS_PENDING: {STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED, STATUS_ROLLED_BACK},
    STATUS_FAILED: {STATUS_PENDING, STATUS_CANCELLED, STATUS_ROLLED_BACK},
    STATUS_POSTED: {STATUS_ROLLED_BACK},
    STATUS_COMPLETED: {STATUS_ROLLED_BACK},
    STATUS_CANCELLED: set(),
    STATUS_ROLLED_BACK: set(),
}

TYPE_SERVICE_PAYMENT = "SERVICE_PAYMENT"
TYPE_CARD_PAYMENT = "CARD_PAYMENT"
TYPE_DIESTEL_PAYMENT = "DIESTEL_PAYMENT"
TYPE_CASH_DEPOSIT = "CASH_DEPOSIT"
TYPE_CASH_WITHDRAWAL = "CASH_WITHDRAWAL"

VALID_TYPES = {
    TYPE_SERVICE_PAYMENT, TYPE_CARD_PAYMENT, TYPE_DIESTEL_PAYMENT,
    TYPE_CASH_DEPOSIT, TYPE_CASH_WITHDRAWAL,
}

PAYMENT_METHOD_CASH = "CASH"


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    validate_status(from_status)
    validate_status(to_status)
    return to_status in VALID_TRANSITIONS[from_status]


def transition(
    txn: Transaction,
    to_status: str,
    *,
    action: str,
    actor_id: str | None = None,
    reason_code: str | None = None,
    details: dict | None = None,
) -> Transaction:
    """Move txn to to_status and append the audit entry. Does not commit."""
    from_status = txn.status
    if not can_transition(from_status, to_status):
        raise StateConflictError(
            f"Cannot move transaction {txn.transaction_number} from {from_status} to {to_status}",
            current_status=from_status,
        )

    txn.status = to_status
    txn.updated_at = utcnow()
    db.session.flush()

    audit_service.append_audit_entry(
        action=action,
        transaction_id=txn.id,
        before_status=from_status,
        after_status=to_status,
        reason_code=reason_code,
        actor_id=actor_id,
        details=details,
    )
    return txn


def append_note(txn: Transaction, note: str) -> None:
    """Notes are appended, never replaced."""
    txn.notes = f"{txn.notes}\n{note}" if txn.notes else note


# =============================================================================
# READS
# =============================================================================

def get_transaction(transaction_id: int, *, for_update: bool = False) -> Transaction:
    query = db.session.query(Transaction).filter(Transaction.id == transaction_id)
    if for_update:
        query = lock_for_update(query)
    txn = query.first()
    if not txn:
        raise NotFoundError(f"Transaction {transaction_id} not found", transaction_id=transaction_id)
    return txn


def get_transaction_by_number(transaction_number: str) -> Transaction:
    txn = db.session.query(Transaction).filter_by(transaction_number=transaction_number).first()
    if not txn:
        raise NotFoundError(
            f"Transaction {transaction_number} not found",
            transaction_number=transaction_number,
        )
    return txn


def get_transaction_detail(transaction_id: int) -> dict:
    txn = get_transaction(transaction_id)
    data = txn.to_dict(include_items=True)
    data["denominations"] = get_transaction_denominations(txn.id)
    data["receipts"] = [r.to_dict() for r in txn.receipts]
    data["audit"] = [e.to_dict() for e in audit_service.list_audit_entries(transaction_id=txn.id)]
    return data


# =============================================================================
# CREATION
# =============================================================================

def _build_items(items: list[dict]) -> list[TransactionItem]:
    if not items:
        raise ValidationError("Transaction requires at least one item")

    built = []
    for idx, item in enumerate(items, start=1):
        description = (item.get("description") or "").strip()
        if not description:
            raise ValidationError(f"Item {idx}: description is required")

        amount_cents = to_cents(item.get("amount"), field=f"item {idx} amount")
        if amount_cents < 0:
            raise ValidationError(f"Item {idx}: amount cannot be negative")

        quantity = item.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f"Item {idx}: quantity must be a positive integer")

        built.append(TransactionItem(
            description=description,
            amount_cents=amount_cents,
            quantity=quantity,
            service_code=item.get("service_code"),
            reference_number=item.get("reference_number"),
            item_metadata=item.get("metadata"),
        ))
    return built


def _reconcile_items(items_total_cents: int, total_cents: int) -> None:
    if not within_tolerance(items_total_cents, total_cents):
        raise ReconciliationError(
            "Item subtotals do not reconcile with the transaction total",
            expected=format_cents(total_cents),
            actual=format_cents(items_total_cents),
        )


def create_transaction(
    *,
    transaction_type: str,
    operator_id: str,
    branch_id: str,
    items: list[dict],
    total=None,
    status: str = STATUS_DRAFT,
    payment_method: str = PAYMENT_METHOD_CASH,
    customer_reference: str | None = None,
    provider_code: str | None = None,
    account_id: int | None = None,
    notes: str | None = None,
    request_payload: dict | None = None,
    actor_id: str | None = None,
    commit: bool = True,
) -> Transaction:
    """
    Create a DRAFT (two-step) or PENDING (synchronous payment) transaction.

    total defaults to the item sum; when given it must reconcile with the
    items within 0.01.
    """
    if transaction_type not in VALID_TYPES:
        raise ValidationError(f"Unknown transaction type: {transaction_type}")
    if status not in (STATUS_DRAFT, STATUS_PENDING):
        raise ValidationError("Transactions are created in DRAFT or PENDING status")
    if not operator_id:
        raise ValidationError("operator_id is required")
    if not branch_id:
        raise ValidationError("branch_id is required")

    built_items = _build_items(items)
    items_total = sum(i.subtotal_cents for i in built_items)
    total_cents = items_total if total is None else to_cents(total, field="total")
    if total_cents < 0:
        raise ValidationError("Transaction total cannot be negative")
    _reconcile_items(items_total, total_cents)

    txn = Transaction(
        transaction_number=next_transaction_number(transaction_type),
        transaction_type=transaction_type,
        status=status,
        total_cents=total_cents,
        payment_method=payment_method,
        customer_reference=customer_reference,
        provider_code=provider_code,
        account_id=account_id,
        operator_id=operator_id,
        branch_id=branch_id,
        notes=notes,
        request_payload=request_payload,
    )
    db.session.add(txn)
    db.session.flush()

    txn.items.extend(built_items)
    db.session.flush()

    audit_service.append_audit_entry(
        action=audit_service.ACTION_CREATED,
        transaction_id=txn.id,
        after_status=status,
        actor_id=actor_id or operator_id,
        details={"transaction_number": txn.transaction_number, "total": format_cents(total_cents)},
    )

    if commit:
        db.session.commit()
    return txn


def add_item(transaction_id: int, item: dict, *, commit: bool = True) -> TransactionItem:
    """Add a line to a DRAFT transaction; the total follows the item sum."""
    txn = get_transaction(transaction_id, for_update=True)
    if txn.status != STATUS_DRAFT:
        raise StateConflictError(
            f"Cannot edit transaction with status: {txn.status}",
            current_status=txn.status,
        )

    built = _build_items([item])[0]
    txn.items.append(built)
    db.session.flush()

    txn.total_cents = sum(i.subtotal_cents for i in txn.items)
    db.session.flush()

    if commit:
        db.session.commit()
    return built


# =============================================================================
# POSTING
# =============================================================================

def _validate_item_references(txn: Transaction) -> None:
    for item in txn.items:
        if not item.reference_number or not item.service_code:
            continue
        if not has_validation_rules(item.service_code):
            continue
        digit = (item.item_metadata or {}).get("verification_digit")
        require_valid_reference(item.service_code, item.reference_number, digit)


def _reconcile_cash(txn: Transaction) -> None:
    """
    Net cash (received - change) must match the money the transaction moves.

    Deposits and payments bring total in; withdrawals pay total out (recorded
    as CHANGE entries). A cash transaction with no entries nets to zero.
    """
    if txn.payment_method != PAYMENT_METHOD_CASH:
        return

    net = net_cash_cents(txn.id)

    expected = -txn.total_cents if txn.transaction_type == TYPE_CASH_WITHDRAWAL else txn.total_cents
    if not within_tolerance(net, expected):
        raise ReconciliationError(
            "Denomination entries do not reconcile with the transaction total",
            expected=format_cents(expected),
            actual=format_cents(net),
        )


def issue_receipt(txn: Transaction) -> Receipt:
    receipt = Receipt(transaction_id=txn.id, receipt_number=next_receipt_number())
    db.session.add(receipt)
    db.session.flush()
    return receipt


def post_transaction(transaction_id: int, *, actor_id: str | None = None) -> Transaction:
    """
    DRAFT -> POSTED.

    Gates: item references pass their provider checksum, items reconcile with
    the total, cash entries reconcile with the total. On success sets
    posted_at and issues a receipt in the same unit of work.
    """
    try:
        txn = get_transaction(transaction_id, for_update=True)
        if txn.status != STATUS_DRAFT:
            raise StateConflictError(
                f"Cannot post transaction with status: {txn.status}",
                current_status=txn.status,
            )

        _validate_item_references(txn)
        _reconcile_items(sum(i.subtotal_cents for i in txn.items), txn.total_cents)
        _reconcile_cash(txn)

        txn.posted_at = utcnow()
        receipt = issue_receipt(txn)
        transition(
            txn,
            STATUS_POSTED,
            action=audit_service.ACTION_POSTED,
            actor_id=actor_id,
            details={"receipt_number": receipt.receipt_number},
        )
        db.session.commit()
        return txn
    except Exception:
        db.session.rollback()
        raise


def cancel_transaction(transaction_id: int, reason: str, *, actor_id: str | None = None) -> Transaction:
    """
    Cancel a DRAFT, PENDING or FAILED transaction.

    Cancellation is decided by the state check here, never by interrupting
    work in flight. Drawer effects of recorded cash are reversed.
    """
    try:
        txn = get_transaction(transaction_id, for_update=True)
        if txn.status in FINAL_STATUSES:
            raise StateConflictError("Cannot cancel a posted transaction", current_status=txn.status)
        if txn.status in TERMINAL_STATUSES:
            raise StateConflictError(
                f"Cannot cancel transaction with status: {txn.status}",
                current_status=txn.status,
            )

        reversal = reverse_transaction_entries(txn)
        append_note(txn, f"Cancelled: {reason}")
        transition(
            txn,
            STATUS_CANCELLED,
            action=audit_service.ACTION_CANCELLED,
            actor_id=actor_id,
            details={"reason": reason, **reversal},
        )
        db.session.commit()
        return txn
    except Exception:
        db.session.rollback()
        raise


def mark_failed(
    txn: Transaction,
    reason: str,
    *,
    actor_id: str | None = None,
    details: dict | None = None,
    commit: bool = True,
) -> Transaction:
    """PENDING -> FAILED, keeping the failure reason for the retry path."""
    txn.failure_reason = (reason or "")[:255]
    transition(
        txn,
        STATUS_FAILED,
        action=audit_service.ACTION_FAILED,
        actor_id=actor_id,
        reason_code="infrastructure_error",
        details={"error": reason, **(details or {})},
    )
    if commit:
        db.session.commit()
    return txn


def list_transactions(
    *,
    status: Optional[str] = None,
    transaction_type: Optional[str] = None,
    operator_id: Optional[str] = None,
    limit: int = 100,
) -> list[Transaction]:
    query = db.session.query(Transaction)
    if status:
        validate_status(status)
        query = query.filter(Transaction.status == status)
    if transaction_type:
        query = query.filter(Transaction.transaction_type == transaction_type)
    if operator_id:
        query = query.filter(Transaction.operator_id == operator_id)
    return query.order_by(Transaction.id.desc()).limit(max(1, min(limit, 500))).all()
