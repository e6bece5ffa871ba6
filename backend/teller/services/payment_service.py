# Overview: Service-layer operations for synchronous payments; gates, effects and failure recording in one unit of work.

"""
Synchronous payment posting (card, service bill, Diestel)

================================================================================
ONE UNIT OF WORK
================================================================================

    _prepare_payment   (read-only gates, nothing written)
        1. reference checksum (or card number Luhn)
        2. Diestel credit limits from completed-payment sums
        3. cash reconciliation: received == cash_received, cash_received >= owed,
           change supplied-and-validated or computed from drawer + received
    _apply_payment     (effects, all inside the same session transaction)
        4. card balance debit, denomination entries + drawer moves, receipt
    provider.confirm   (optional external confirmation, may time out)
    PENDING -> COMPLETED, commit

Validation, inventory and state errors roll the session back and propagate:
nothing persists. Infrastructure errors (SQLAlchemyError,
ProviderUnavailableError, TimeoutError) roll back the effects and record a
FAILED transaction carrying the original request, so the recovery service can
reprocess it later.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import LimitExceededError, NotFoundError, ReconciliationError, StateConflictError, ValidationError
from ..extensions import db
from ..models import Account, Receipt, Service, Transaction
from ..money import format_cents, from_cents, to_cents
from ..time_utils import utcnow
from . import audit_service, transaction_service
from .card_service import PAYMENT_CUSTOM, calculate_available_credit, get_card, validate_payment_amount
from .change_service import compute_change
from .checksum_service import base_provider_code, extract_reference_info, require_valid_reference
from .commission_service import commission_for_service
from .concurrency import INFRASTRUCTURE_ERRORS, lock_for_update
from .denomination_service import (
    ENTRY_CHANGE,
    ENTRY_PAYMENT,
    ENTRY_RECEIVED,
    entries_total_cents,
    get_inventory_cents,
    normalize_entries,
    record_cents_entries,
)
from .diestel_service import CreditLimitStatus, check_credit_limit


@dataclass
class PaymentRequest:
    """
    Payment submitted by the teller UI/API.

    received / change / payment_split accept {face value: quantity} or a list
    of {"denomination", "quantity"} dicts. Amounts accept Decimal, int or
    decimal strings.
    """
    transaction_type: str
    operator_id: str
    branch_id: str
    amount: Any
    received: Any
    cash_received: Any = None
    provider_code: Optional[str] = None
    reference: Optional[str] = None
    verification_digit: Optional[str] = None
    card_number: Optional[str] = None
    payment_type: Optional[str] = None
    account_number: Optional[str] = None
    change: Any = None
    payment_split: Any = None
    customer_reference: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        """JSON-safe payload; amounts as fixed-point strings."""
        def _amount(value):
            return None if value is None else format_cents(to_cents(value))

        def _entries(value):
            if value is None:
                return None
            return [
                {"denomination": format_cents(d), "quantity": q}
                for d, q in sorted(normalize_entries(value).items(), reverse=True)
            ]

        return {
            "transaction_type": self.transaction_type,
            "operator_id": self.operator_id,
            "branch_id": self.branch_id,
            "amount": _amount(self.amount),
            "received": _entries(self.received),
            "cash_received": _amount(self.cash_received),
            "provider_code": self.provider_code,
            "reference": self.reference,
            "verification_digit": self.verification_digit,
            "card_number": self.card_number,
            "payment_type": self.payment_type,
            "account_number": self.account_number,
            "change": _entries(self.change),
            "payment_split": _entries(self.payment_split),
            "customer_reference": self.customer_reference,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentRequest":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__ if k in data})


@dataclass
class PaymentResult:
    status: str
    transaction_id: Optional[int] = None
    transaction_number: Optional[str] = None
    amount: Optional[Decimal] = None
    commission: Decimal = Decimal("0.00")
    total_owed: Optional[Decimal] = None
    cash_received: Optional[Decimal] = None
    change_amount: Decimal = Decimal("0.00")
    change: list[dict] = field(default_factory=list)
    receipt_number: Optional[str] = None
    new_balance: Optional[Decimal] = None
    available_credit: Optional[Decimal] = None
    credit_status: Optional[dict] = None
    error: Optional[dict] = None

    @property
    def success(self) -> bool:
        return self.status == transaction_service.STATUS_COMPLETED

    def to_dict(self) -> dict:
        def _fmt(value):
            return None if value is None else f"{value:.2f}"

        return {
            "status": self.status,
            "success": self.success,
            "transaction_id": self.transaction_id,
            "transaction_number": self.transaction_number,
            "amount": _fmt(self.amount),
            "commission": _fmt(self.commission),
            "total_owed": _fmt(self.total_owed),
            "cash_received": _fmt(self.cash_received),
            "change_amount": _fmt(self.change_amount),
            "change": self.change,
            "receipt_number": self.receipt_number,
            "new_balance": _fmt(self.new_balance),
            "available_credit": _fmt(self.available_credit),
            "credit_status": self.credit_status,
            "error": self.error,
        }


@dataclass
class _PaymentPlan:
    request: PaymentRequest
    amount_cents: int
    commission_cents: int
    total_owed_cents: int
    cash_received_cents: int
    received: dict[int, int]
    change: dict[int, int]
    split: dict[int, int]
    items: list[dict]
    provider_code: Optional[str] = None
    customer_reference: Optional[str] = None
    account_id: Optional[int] = None
    credit_status: Optional[CreditLimitStatus] = None

    @property
    def change_cents(self) -> int:
        return self.cash_received_cents - self.total_owed_cents


# =============================================================================
# GATES
# =============================================================================

def _prepare_card(request: PaymentRequest, amount_cents: int) -> dict:
    if not request.card_number:
        raise ValidationError("card_number is required for card payments")
    card = get_card(request.card_number)
    payment_type = (request.payment_type or PAYMENT_CUSTOM).upper()
    validate_payment_amount(card.account, from_cents(amount_cents), payment_type)
    return {
        "account_id": card.account_id,
        "customer_reference": card.masked_number,
        "commission_cents": 0,
        "items": [{
            "description": f"Card payment ({payment_type})",
            "amount": format_cents(amount_cents),
            "metadata": {"card": card.masked_number, "payment_type": payment_type},
        }],
    }


def _lookup_service(provider_code: str) -> Service:
    service = db.session.query(Service).filter_by(service_code=provider_code).first()
    if not service:
        service = db.session.query(Service).filter_by(service_code=base_provider_code(provider_code)).first()
    if not service or not service.is_active:
        raise NotFoundError(f"Service {provider_code} not found", provider_code=provider_code)
    return service


def _has_baf_account(account_number: Optional[str]) -> bool:
    if not account_number:
        return False
    account = db.session.query(Account).filter_by(account_number=account_number).first()
    if not account:
        raise NotFoundError(f"Account {account_number} not found", account_number=account_number)
    return bool(account.is_baf)


def _prepare_service(request: PaymentRequest, amount_cents: int) -> dict:
    if not request.provider_code:
        raise ValidationError("provider_code is required for service payments")
    reference = require_valid_reference(request.provider_code, request.reference, request.verification_digit)
    service = _lookup_service(request.provider_code)
    commission = commission_for_service(
        service,
        from_cents(amount_cents),
        has_baf_account=_has_baf_account(request.account_number),
    )
    commission_cents = to_cents(commission.commission)

    metadata = {"commission": commission.to_dict()}
    if request.verification_digit is not None:
        metadata["verification_digit"] = str(request.verification_digit).strip()
    items = [{
        "description": f"{service.name} payment",
        "amount": format_cents(amount_cents),
        "service_code": base_provider_code(request.provider_code),
        "reference_number": reference,
        "metadata": metadata,
    }]
    if commission_cents:
        items.append({"description": "Commission", "amount": format_cents(commission_cents)})

    return {
        "provider_code": base_provider_code(request.provider_code),
        "customer_reference": reference,
        "commission_cents": commission_cents,
        "items": items,
    }


def _prepare_diestel(request: PaymentRequest, amount_cents: int) -> dict:
    provider_code = base_provider_code(request.provider_code or "DIESTEL")
    reference = require_valid_reference(provider_code, request.reference)

    status = check_credit_limit(provider_code, from_cents(amount_cents))
    if not status.can_process:
        raise LimitExceededError(
            status.message,
            remaining_total=f"{status.remaining_total:.2f}",
            remaining_daily=f"{status.remaining_daily:.2f}",
        )

    return {
        "provider_code": provider_code,
        "customer_reference": reference,
        "commission_cents": 0,
        "credit_status": status,
        "items": [{
            "description": "Diestel payment",
            "amount": format_cents(amount_cents),
            "service_code": provider_code,
            "reference_number": reference,
            "metadata": extract_reference_info(provider_code, reference),
        }],
    }


_PREPARERS = {
    transaction_service.TYPE_CARD_PAYMENT: _prepare_card,
    transaction_service.TYPE_SERVICE_PAYMENT: _prepare_service,
    transaction_service.TYPE_DIESTEL_PAYMENT: _prepare_diestel,
}


def _resolve_change(request: PaymentRequest, change_cents: int, received: dict[int, int]) -> dict[int, int]:
    if change_cents == 0:
        if request.change:
            supplied = {d: q for d, q in normalize_entries(request.change).items() if q}
            if supplied:
                raise ReconciliationError(
                    "Change supplied but none is owed",
                    expected="0.00",
                    actual=format_cents(entries_total_cents(supplied)),
                )
        return {}

    if request.change is not None:
        supplied = {d: q for d, q in normalize_entries(request.change).items() if q}
        supplied_total = entries_total_cents(supplied)
        if supplied_total != change_cents:
            raise ReconciliationError(
                "Change denominations do not add up to the change owed",
                expected=format_cents(change_cents),
                actual=format_cents(supplied_total),
            )
        return supplied

    # Cash just received is available for change
    inventory = get_inventory_cents(request.operator_id)
    for denom, qty in received.items():
        inventory[denom] = inventory.get(denom, 0) + qty
    entries = compute_change(
        from_cents(change_cents),
        {from_cents(d): q for d, q in inventory.items()},
    )
    return {e.denomination_cents: e.quantity for e in entries}


def _prepare_payment(request: PaymentRequest) -> _PaymentPlan:
    preparer = _PREPARERS.get(request.transaction_type)
    if preparer is None:
        raise ValidationError(f"Unsupported payment type: {request.transaction_type}")
    if not request.operator_id:
        raise ValidationError("operator_id is required")
    if not request.branch_id:
        raise ValidationError("branch_id is required")

    amount_cents = to_cents(request.amount, field="amount")
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be greater than zero")

    prepared = preparer(request, amount_cents)
    total_owed_cents = amount_cents + prepared["commission_cents"]

    received = {d: q for d, q in normalize_entries(request.received).items() if q}
    received_cents = entries_total_cents(received)
    if not received:
        raise ReconciliationError(
            "Cash received requires denomination entries",
            expected=format_cents(total_owed_cents),
            actual="0.00",
        )

    cash_received_cents = (
        received_cents if request.cash_received is None
        else to_cents(request.cash_received, field="cash_received")
    )
    if received_cents != cash_received_cents:
        raise ReconciliationError(
            "Denomination entries do not add up to the cash received",
            expected=format_cents(cash_received_cents),
            actual=format_cents(received_cents),
        )
    if cash_received_cents < total_owed_cents:
        raise ReconciliationError(
            "Cash received is less than the total owed",
            expected=format_cents(total_owed_cents),
            actual=format_cents(cash_received_cents),
        )

    split = {}
    if request.payment_split is not None:
        split = {d: q for d, q in normalize_entries(request.payment_split).items() if q}
        split_cents = entries_total_cents(split)
        if split_cents != total_owed_cents:
            raise ReconciliationError(
                "Payment split does not add up to the total owed",
                expected=format_cents(total_owed_cents),
                actual=format_cents(split_cents),
            )

    change = _resolve_change(request, cash_received_cents - total_owed_cents, received)

    return _PaymentPlan(
        request=request,
        amount_cents=amount_cents,
        commission_cents=prepared["commission_cents"],
        total_owed_cents=total_owed_cents,
        cash_received_cents=cash_received_cents,
        received=received,
        change=change,
        split=split,
        items=prepared["items"],
        provider_code=prepared.get("provider_code"),
        customer_reference=request.customer_reference or prepared.get("customer_reference"),
        account_id=prepared.get("account_id"),
        credit_status=prepared.get("credit_status"),
    )


# =============================================================================
# EFFECTS
# =============================================================================

def _debit_card_account(plan: _PaymentPlan) -> Account:
    account = lock_for_update(db.session.query(Account).filter(Account.id == plan.account_id)).first()
    if not account:
        raise NotFoundError(f"Account {plan.account_id} not found", account_id=plan.account_id)

    # Re-check under the row lock; the balance may have moved since the gate ran
    payment_type = (plan.request.payment_type or PAYMENT_CUSTOM).upper()
    validate_payment_amount(account, from_cents(plan.amount_cents), payment_type)
    account.balance_cents -= plan.amount_cents
    db.session.flush()
    return account


def _apply_payment(plan: _PaymentPlan, txn: Transaction) -> tuple[Receipt, Optional[Account]]:
    account = None
    if plan.account_id is not None:
        account = _debit_card_account(plan)

    record_cents_entries(txn.id, ENTRY_RECEIVED, plan.received, operator_id=txn.operator_id)
    if plan.split:
        record_cents_entries(txn.id, ENTRY_PAYMENT, plan.split, operator_id=txn.operator_id)
    if plan.change:
        record_cents_entries(txn.id, ENTRY_CHANGE, plan.change, operator_id=txn.operator_id)

    txn.posted_at = utcnow()
    receipt = transaction_service.issue_receipt(txn)
    return receipt, account


def _confirm_with_provider(provider, txn: Transaction) -> None:
    """provider.confirm(transaction, timeout=...) may raise ProviderUnavailableError or TimeoutError."""
    if provider is None:
        return
    provider.confirm(txn, timeout=current_app.config.get("PROVIDER_TIMEOUT_SECONDS"))


def _complete(plan: _PaymentPlan, txn: Transaction, provider) -> PaymentResult:
    receipt, account = _apply_payment(plan, txn)
    _confirm_with_provider(provider, txn)
    txn.failure_reason = None
    transaction_service.transition(
        txn,
        transaction_service.STATUS_COMPLETED,
        action=audit_service.ACTION_COMPLETED,
        actor_id=plan.request.operator_id,
        details={
            "receipt_number": receipt.receipt_number,
            "cash_received": format_cents(plan.cash_received_cents),
            "change": format_cents(plan.change_cents),
        },
    )
    return _result(plan, txn, receipt=receipt, account=account)


def _result(plan: _PaymentPlan, txn: Transaction, *, receipt=None, account=None, error=None) -> PaymentResult:
    result = PaymentResult(
        status=txn.status,
        transaction_id=txn.id,
        transaction_number=txn.transaction_number,
        amount=from_cents(plan.amount_cents),
        commission=from_cents(plan.commission_cents),
        total_owed=from_cents(plan.total_owed_cents),
        cash_received=from_cents(plan.cash_received_cents),
        change_amount=from_cents(plan.change_cents),
        change=[
            {"denomination": format_cents(d), "quantity": q, "amount": format_cents(d * q)}
            for d, q in sorted(plan.change.items(), reverse=True)
        ],
        receipt_number=receipt.receipt_number if receipt else None,
        credit_status=plan.credit_status.to_dict() if plan.credit_status else None,
        error=error,
    )
    if account is not None:
        result.new_balance = from_cents(account.balance_cents)
        result.available_credit = calculate_available_credit(
            from_cents(account.credit_limit_cents), from_cents(account.balance_cents)
        )
    return result


def _create_pending(plan: _PaymentPlan) -> Transaction:
    request = plan.request
    return transaction_service.create_transaction(
        transaction_type=request.transaction_type,
        operator_id=request.operator_id,
        branch_id=request.branch_id,
        items=plan.items,
        total=from_cents(plan.total_owed_cents),
        status=transaction_service.STATUS_PENDING,
        customer_reference=plan.customer_reference,
        provider_code=plan.provider_code,
        account_id=plan.account_id,
        notes=request.notes,
        request_payload=request.to_dict(),
        commit=False,
    )


def _record_failed_payment(plan: _PaymentPlan, exc: BaseException) -> PaymentResult:
    """New unit of work: the failed attempt's effects were already rolled back."""
    error = {"error": type(exc).__name__, "message": str(exc) or type(exc).__name__}
    try:
        txn = _create_pending(plan)
        transaction_service.mark_failed(
            txn,
            error["message"],
            actor_id=plan.request.operator_id,
            details={"error_type": error["error"]},
            commit=True,
        )
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Could not record failed payment for operator %s", plan.request.operator_id)
        raise
    return _result(plan, txn, error=error)


# =============================================================================
# PUBLIC API
# =============================================================================

def post_payment(request: PaymentRequest, provider=None) -> PaymentResult:
    """
    Validate and settle a card, service or Diestel payment atomically.

    Returns a COMPLETED result, or a FAILED result when infrastructure broke
    mid-way (the transaction is recorded FAILED for retry). Validation,
    inventory and not-found errors propagate with nothing persisted.
    """
    try:
        plan = _prepare_payment(request)
    except Exception:
        db.session.rollback()
        raise

    try:
        txn = _create_pending(plan)
        result = _complete(plan, txn, provider)
        db.session.commit()
        return result
    except INFRASTRUCTURE_ERRORS as exc:
        db.session.rollback()
        current_app.logger.error(
            "Payment %s for operator %s failed: %s",
            request.transaction_type, request.operator_id, exc,
        )
        return _record_failed_payment(plan, exc)
    except Exception:
        db.session.rollback()
        raise


def reprocess_payment(txn: Transaction, provider=None) -> PaymentResult:
    """
    Re-run gates and effects for a PENDING transaction created by a failed
    payment. Reuses the stored request and the existing items; the caller
    owns the commit.
    """
    if txn.status != transaction_service.STATUS_PENDING:
        raise StateConflictError(
            f"Cannot reprocess transaction with status: {txn.status}",
            current_status=txn.status,
        )
    if not txn.request_payload:
        raise ValidationError(
            f"Transaction {txn.transaction_number} has no stored payment request",
            transaction_id=txn.id,
        )

    plan = _prepare_payment(PaymentRequest.from_dict(txn.request_payload))
    return _complete(plan, txn, provider)
