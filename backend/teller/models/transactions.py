from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z, utcnow


class Transaction(db.Model):
    """
    Teller transaction (one customer payment, deposit or withdrawal).

    LIFECYCLE:
    - DRAFT:       explicit two-step creation, editable, no money final
    - PENDING:     synchronous payment in progress
    - POSTED:      draft committed as financially final
    - COMPLETED:   synchronous payment settled
    - FAILED:      infrastructure failure, awaiting retry or rollback
    - CANCELLED:   terminal, never posted
    - ROLLED_BACK: terminal, effects reversed

    All amounts in cents. total_cents is never negative.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint("total_cents >= 0", name="ck_transactions_total_non_negative"),
        db.Index("ix_transactions_provider_status_created", "provider_code", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable identifier: {TYPE3}-{YYYYMMDD}-{seq4}
    transaction_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(32), nullable=False, default="CASH")

    customer_reference = db.Column(db.String(64), nullable=True)
    provider_code = db.Column(db.String(32), nullable=True, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)

    # Opaque identities supplied by the auth layer
    operator_id = db.Column(db.String(64), nullable=False, index=True)
    branch_id = db.Column(db.String(64), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    posted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    notes = db.Column(db.Text, nullable=True)

    # Original payment request, kept so a FAILED payment can be reprocessed
    request_payload = db.Column(db.JSON, nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        lazy=True,
        order_by="TransactionItem.id",
    )
    account = db.relationship("Account", backref=db.backref("transactions", lazy=True))

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "transaction_type": self.transaction_type,
            "status": self.status,
            "total_amount": format_cents(self.total_cents),
            "payment_method": self.payment_method,
            "customer_reference": self.customer_reference,
            "provider_code": self.provider_code,
            "account_id": self.account_id,
            "operator_id": self.operator_id,
            "branch_id": self.branch_id,
            "created_at": to_utc_z(self.created_at),
            "posted_at": to_utc_z(self.posted_at) if self.posted_at else None,
            "notes": self.notes,
            "failure_reason": self.failure_reason,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    """Line of a transaction; amount is per unit, subtotal = amount * quantity."""
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)

    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    service_code = db.Column(db.String(32), nullable=True)
    reference_number = db.Column(db.String(64), nullable=True)
    item_metadata = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def subtotal_cents(self) -> int:
        return self.amount_cents * (self.quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "description": self.description,
            "amount": format_cents(self.amount_cents),
            "quantity": self.quantity,
            "subtotal": format_cents(self.subtotal_cents),
            "service_code": self.service_code,
            "reference_number": self.reference_number,
            "metadata": self.item_metadata,
            "created_at": to_utc_z(self.created_at),
        }


class Receipt(db.Model):
    """Receipt number issued when a transaction becomes final (RCP-{YYYYMMDD}-{seq6})."""
    __tablename__ = "receipts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    receipt_number = db.Column(db.String(32), nullable=False, unique=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    transaction = db.relationship("Transaction", backref=db.backref("receipts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "receipt_number": self.receipt_number,
            "issued_at": to_utc_z(self.issued_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic daily document sequences.

    WHY: Prevent race conditions when generating transaction and receipt
    numbers. One row per (prefix, business_date).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", "business_date", name="uq_doc_sequences_prefix_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(8), nullable=False)
    business_date = db.Column(db.String(8), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "business_date": self.business_date,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
