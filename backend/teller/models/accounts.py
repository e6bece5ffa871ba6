from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z, utcnow


class Account(db.Model):
    """
    Customer credit account backing one or more cards.

    balance_cents is the amount owed. It is debited by card payments and
    credited back when such a payment is rolled back.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.CheckConstraint("credit_limit_cents >= 0", name="ck_accounts_credit_limit_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_number = db.Column(db.String(32), nullable=False, unique=True)
    holder_name = db.Column(db.String(128), nullable=False)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)

    # BAF account holders are exempt from service commissions
    is_baf = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_number": self.account_number,
            "holder_name": self.holder_name,
            "balance": format_cents(self.balance_cents),
            "credit_limit": format_cents(self.credit_limit_cents),
            "is_baf": self.is_baf,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Card(db.Model):
    __tablename__ = "cards"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    card_number = db.Column(db.String(16), nullable=False, unique=True)
    card_type = db.Column(db.String(16), nullable=False, default="CREDIT")  # CREDIT, DEBIT
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    account = db.relationship("Account", backref=db.backref("cards", lazy=True))

    @property
    def masked_number(self) -> str:
        return f"**** **** **** {self.card_number[-4:]}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "card_number": self.masked_number,
            "card_type": self.card_type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Service(db.Model):
    """
    Bill-payment provider catalogue entry (CFE, TELMEX, DIESTEL, ...).

    Commission = amount * commission_rate + fixed_commission.
    """
    __tablename__ = "services"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    service_code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)

    # Decimal rate stored as a string ("0.015") to stay fixed-point
    commission_rate = db.Column(db.String(16), nullable=False, default="0")
    fixed_commission_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service_code": self.service_code,
            "name": self.name,
            "commission_rate": self.commission_rate,
            "fixed_commission": format_cents(self.fixed_commission_cents),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
