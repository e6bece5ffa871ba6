from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z, utcnow


class DenominationEntry(db.Model):
    """
    Denomination breakdown of cash attached to a transaction.

    TYPES:
    - RECEIVED: cash handed over by the customer (adds to the drawer)
    - PAYMENT:  informational split of the amount applied (no drawer effect)
    - CHANGE:   cash dispensed back to the customer (subtracts from the drawer)

    IMMUTABLE: corrections are new entries on a new transaction, never edits.
    """
    __tablename__ = "denomination_entries"
    __table_args__ = (
        db.UniqueConstraint(
            "transaction_id", "entry_type", "denomination_cents",
            name="uq_denomination_entries_txn_type_denom",
        ),
        db.CheckConstraint("quantity >= 0", name="ck_denomination_entries_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    operator_id = db.Column(db.String(64), nullable=False, index=True)

    entry_type = db.Column(db.String(16), nullable=False)  # RECEIVED, PAYMENT, CHANGE
    denomination_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    transaction = db.relationship("Transaction", backref=db.backref("denomination_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "operator_id": self.operator_id,
            "entry_type": self.entry_type,
            "denomination": format_cents(self.denomination_cents),
            "quantity": self.quantity,
            "amount": format_cents(self.amount_cents),
            "created_at": to_utc_z(self.created_at),
        }


class DrawerBalance(db.Model):
    """
    Running per-operator, per-denomination drawer inventory.

    Mutated only through denomination_service.adjust_drawer. The check
    constraint is the last line against a negative balance; the service
    uses a conditional UPDATE so it is never reached in practice.
    """
    __tablename__ = "drawer_balances"
    __table_args__ = (
        db.UniqueConstraint("operator_id", "denomination_cents", name="uq_drawer_balances_operator_denom"),
        db.CheckConstraint("quantity >= 0", name="ck_drawer_balances_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    operator_id = db.Column(db.String(64), nullable=False, index=True)
    denomination_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def amount_cents(self) -> int:
        return self.denomination_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operator_id": self.operator_id,
            "denomination": format_cents(self.denomination_cents),
            "quantity": self.quantity,
            "amount": format_cents(self.amount_cents),
            "updated_at": to_utc_z(self.updated_at),
        }
