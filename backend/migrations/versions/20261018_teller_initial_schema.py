"""Teller settlement engine initial schema

Revision ID: 20261018_teller_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_teller_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_number", sa.String(length=32), nullable=False),
        sa.Column("holder_name", sa.String(length=128), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credit_limit_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_baf", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint("credit_limit_cents >= 0", name="ck_accounts_credit_limit_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_accounts_is_active", "accounts", ["is_active"], unique=False)

    op.create_table(
        "cards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("card_number", sa.String(length=16), nullable=False),
        sa.Column("card_type", sa.String(length=16), nullable=False, server_default="CREDIT"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("card_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cards_account_id", "cards", ["account_id"], unique=False)

    op.create_table(
        "services",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("service_code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("commission_rate", sa.String(length=16), nullable=False, server_default="0"),
        sa.Column("fixed_commission_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("service_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_services_is_active", "services", ["is_active"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_number", sa.String(length=32), nullable=False),
        sa.Column("transaction_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="DRAFT"),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(length=32), nullable=False, server_default="CASH"),
        sa.Column("customer_reference", sa.String(length=64), nullable=True),
        sa.Column("provider_code", sa.String(length=32), nullable=True),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("operator_id", sa.String(length=64), nullable=False),
        sa.Column("branch_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("request_payload", sa.JSON(), nullable=True),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.CheckConstraint("total_cents >= 0", name="ck_transactions_total_non_negative"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transactions_transaction_number", "transactions", ["transaction_number"], unique=True)
    op.create_index("ix_transactions_transaction_type", "transactions", ["transaction_type"], unique=False)
    op.create_index("ix_transactions_status", "transactions", ["status"], unique=False)
    op.create_index("ix_transactions_provider_code", "transactions", ["provider_code"], unique=False)
    op.create_index("ix_transactions_account_id", "transactions", ["account_id"], unique=False)
    op.create_index("ix_transactions_operator_id", "transactions", ["operator_id"], unique=False)
    op.create_index("ix_transactions_branch_id", "transactions", ["branch_id"], unique=False)
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"], unique=False)
    op.create_index(
        "ix_transactions_provider_status_created",
        "transactions",
        ["provider_code", "status", "created_at"],
        unique=False,
    )

    op.create_table(
        "transaction_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("service_code", sa.String(length=32), nullable=True),
        sa.Column("reference_number", sa.String(length=64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transaction_items_transaction_id", "transaction_items", ["transaction_id"], unique=False)

    op.create_table(
        "receipts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("receipt_number", sa.String(length=32), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("receipt_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_receipts_transaction_id", "receipts", ["transaction_id"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("prefix", sa.String(length=8), nullable=False),
        sa.Column("business_date", sa.String(length=8), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prefix", "business_date", name="uq_doc_sequences_prefix_date"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "denomination_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("operator_id", sa.String(length=64), nullable=False),
        sa.Column("entry_type", sa.String(length=16), nullable=False),
        sa.Column("denomination_cents", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint("quantity >= 0", name="ck_denomination_entries_quantity_non_negative"),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "transaction_id", "entry_type", "denomination_cents",
            name="uq_denomination_entries_txn_type_denom",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_denomination_entries_transaction_id", "denomination_entries", ["transaction_id"], unique=False)
    op.create_index("ix_denomination_entries_operator_id", "denomination_entries", ["operator_id"], unique=False)

    op.create_table(
        "drawer_balances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("operator_id", sa.String(length=64), nullable=False),
        sa.Column("denomination_cents", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint("quantity >= 0", name="ck_drawer_balances_quantity_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("operator_id", "denomination_cents", name="uq_drawer_balances_operator_denom"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_drawer_balances_operator_id", "drawer_balances", ["operator_id"], unique=False)

    op.create_table(
        "audit_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False, server_default="transaction"),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("before_status", sa.String(length=16), nullable=True),
        sa.Column("after_status", sa.String(length=16), nullable=True),
        sa.Column("reason_code", sa.String(length=64), nullable=True),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_audit_entries_action", "audit_entries", ["action"], unique=False)
    op.create_index("ix_audit_entries_transaction_id", "audit_entries", ["transaction_id"], unique=False)
    op.create_index("ix_audit_entries_occurred_at", "audit_entries", ["occurred_at"], unique=False)
    op.create_index("ix_audit_entries_txn_action", "audit_entries", ["transaction_id", "action"], unique=False)


def downgrade():
    op.drop_index("ix_audit_entries_txn_action", table_name="audit_entries")
    op.drop_index("ix_audit_entries_occurred_at", table_name="audit_entries")
    op.drop_index("ix_audit_entries_transaction_id", table_name="audit_entries")
    op.drop_index("ix_audit_entries_action", table_name="audit_entries")
    op.drop_table("audit_entries")

    op.drop_index("ix_drawer_balances_operator_id", table_name="drawer_balances")
    op.drop_table("drawer_balances")

    op.drop_index("ix_denomination_entries_operator_id", table_name="denomination_entries")
    op.drop_index("ix_denomination_entries_transaction_id", table_name="denomination_entries")
    op.drop_table("denomination_entries")

    op.drop_table("document_sequences")

    op.drop_index("ix_receipts_transaction_id", table_name="receipts")
    op.drop_table("receipts")

    op.drop_index("ix_transaction_items_transaction_id", table_name="transaction_items")
    op.drop_table("transaction_items")

    op.drop_index("ix_transactions_provider_status_created", table_name="transactions")
    op.drop_index("ix_transactions_created_at", table_name="transactions")
    op.drop_index("ix_transactions_branch_id", table_name="transactions")
    op.drop_index("ix_transactions_operator_id", table_name="transactions")
    op.drop_index("ix_transactions_account_id", table_name="transactions")
    op.drop_index("ix_transactions_provider_code", table_name="transactions")
    op.drop_index("ix_transactions_status", table_name="transactions")
    op.drop_index("ix_transactions_transaction_type", table_name="transactions")
    op.drop_index("ix_transactions_transaction_number", table_name="transactions")
    op.drop_table("transactions")

    op.drop_index("ix_services_is_active", table_name="services")
    op.drop_table("services")

    op.drop_index("ix_cards_account_id", table_name="cards")
    op.drop_table("cards")

    op.drop_index("ix_accounts_is_active", table_name="accounts")
    op.drop_table("accounts")
