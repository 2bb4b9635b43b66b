"""Checkout core schema: stores, catalog, customers, sales, compliance, audit

Revision ID: 20261019_checkout_core
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_checkout_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("state_code", sa.String(8), nullable=True),
        sa.Column("address_line1", sa.String(255), nullable=True),
        sa.Column("address_line2", sa.String(255), nullable=True),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("zip_code", sa.String(16), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("tax_id", sa.String(64), nullable=True),
        sa.Column("receipt_footer", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_stores_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stores") as batch_op:
        batch_op.create_index("ix_stores_code", ["code"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("barcode", sa.String(64), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(64), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("on_hand", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("age_restricted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("special_tax_category", sa.String(32), nullable=True),
        sa.Column("is_tax_exempt", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("lot_number", sa.String(64), nullable=True),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        sa.CheckConstraint("on_hand >= 0", name="ck_products_on_hand_nonnegative"),
        sa.CheckConstraint("price_cents >= 0", name="ck_products_price_nonnegative"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products") as batch_op:
        batch_op.create_index("ix_products_store_id", ["store_id"])
        batch_op.create_index("ix_products_store_active", ["store_id", "is_active"])
        batch_op.create_index("ix_products_barcode", ["barcode"])

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("is_tax_exempt", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_exemption_number", sa.String(64), nullable=True),
        sa.Column("loyalty_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("points_lifetime_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("points_lifetime_redeemed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("loyalty_tier", sa.String(16), nullable=False, server_default="BRONZE"),
        sa.Column("total_spent_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("transaction_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("first_purchase_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_purchase_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_customers_email"),
        sa.CheckConstraint("loyalty_points >= 0", name="ck_customers_points_nonnegative"),
        sa.CheckConstraint(
            "loyalty_points = points_lifetime_earned - points_lifetime_redeemed",
            name="ck_customers_points_ledger",
        ),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customers") as batch_op:
        batch_op.create_index("ix_customers_active", ["is_active"])
        batch_op.create_index("ix_customers_loyalty_tier", ["loyalty_tier"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("receipt_number", sa.String(64), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False, server_default="SALE"),
        sa.Column("compensates_transaction_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("employee_id", sa.Integer(), nullable=True),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("tax_cents", sa.Integer(), nullable=False),
        sa.Column("exempt_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("tax_jurisdiction", sa.String(8), nullable=True),
        sa.Column("tax_breakdown", sa.JSON(), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=False),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="COMPLETED"),
        sa.Column("payment_reference", sa.String(128), nullable=True),
        sa.Column("cash_tendered_cents", sa.Integer(), nullable=True),
        sa.Column("change_given_cents", sa.Integer(), nullable=True),
        sa.Column("age_verification_required", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("age_verification_completed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("age_verification_id", sa.String(36), nullable=True),
        sa.Column("loyalty_points_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("loyalty_points_redeemed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("loyalty_balance_after", sa.Integer(), nullable=True),
        sa.Column("loyalty_tier_after", sa.String(length=16), nullable=True),
        sa.Column("transaction_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["compensates_transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("store_id", "receipt_number", name="uq_transactions_store_receipt"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transactions") as batch_op:
        batch_op.create_index("ix_transactions_store_id", ["store_id"])
        batch_op.create_index("ix_transactions_customer_id", ["customer_id"])
        batch_op.create_index("ix_transactions_employee_id", ["employee_id"])
        batch_op.create_index("ix_transactions_store_occurred", ["store_id", "transaction_at"])
        batch_op.create_index("ix_transactions_customer_occurred", ["customer_id", "transaction_at"])

    op.create_table(
        "line_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("product_sku", sa.String(64), nullable=False),
        sa.Column("product_barcode", sa.String(64), nullable=True),
        sa.Column("category", sa.String(64), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("special_tax_category", sa.String(32), nullable=True),
        sa.Column("is_tax_exempt", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("age_verification_required", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("lot_number", sa.String(64), nullable=True),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id", "line_number", name="uq_line_items_txn_line"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("line_items") as batch_op:
        batch_op.create_index("ix_line_items_transaction_id", ["transaction_id"])
        batch_op.create_index("ix_line_items_product_id", ["product_id"])

    op.create_table(
        "loyalty_ledger_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("entry_type", sa.String(16), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("loyalty_ledger_entries") as batch_op:
        batch_op.create_index("ix_loyalty_ledger_entries_customer_id", ["customer_id"])
        batch_op.create_index("ix_loyalty_ledger_entries_entry_type", ["entry_type"])
        batch_op.create_index("ix_loyalty_ledger_entries_transaction_id", ["transaction_id"])
        batch_op.create_index("ix_loyalty_ledger_entries_occurred_at", ["occurred_at"])
        batch_op.create_index("ix_loyalty_ledger_customer_occurred", ["customer_id", "occurred_at"])

    op.create_table(
        "age_verification_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("verification_id", sa.String(36), nullable=False),
        sa.Column("record_type", sa.String(16), nullable=False, server_default="EVALUATION"),
        sa.Column("supersedes_id", sa.Integer(), nullable=True),
        sa.Column("store_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("employee_id", sa.Integer(), nullable=True),
        sa.Column("method", sa.String(16), nullable=False, server_default="MANUAL"),
        sa.Column("state", sa.String(32), nullable=False),
        sa.Column("id_type", sa.String(32), nullable=False),
        sa.Column("id_number_masked", sa.String(32), nullable=True),
        sa.Column("id_issuing_state", sa.String(8), nullable=True),
        sa.Column("id_expiration_date", sa.Date(), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("calculated_age", sa.Integer(), nullable=False),
        sa.Column("min_age", sa.Integer(), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("reason_for_denial", sa.String(255), nullable=True),
        sa.Column("warnings", sa.JSON(), nullable=False),
        sa.Column("requires_manager_override", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("manager_id", sa.Integer(), nullable=True),
        sa.Column("override_reason", sa.String(255), nullable=True),
        sa.Column("consumed_by_transaction_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["supersedes_id"], ["age_verification_records.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["consumed_by_transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("verification_id", name="uq_age_verification_id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("age_verification_records") as batch_op:
        batch_op.create_index("ix_age_verification_records_store_id", ["store_id"])
        batch_op.create_index("ix_age_verification_records_customer_id", ["customer_id"])
        batch_op.create_index("ix_age_verification_records_created_at", ["created_at"])
        batch_op.create_index("ix_age_verification_store_created", ["store_id", "created_at"])
        batch_op.create_index("ix_age_verification_supersedes", ["supersedes_id"], unique=True)

    op.create_table(
        "audit_log_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entry_uuid", sa.String(36), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("actor_role", sa.String(32), nullable=True),
        sa.Column("store_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=True),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_uuid", name="uq_audit_entry_uuid"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("audit_log_entries") as batch_op:
        batch_op.create_index("ix_audit_log_entries_actor_id", ["actor_id"])
        batch_op.create_index("ix_audit_log_entries_store_id", ["store_id"])
        batch_op.create_index("ix_audit_occurred", ["occurred_at"])
        batch_op.create_index("ix_audit_action_occurred", ["action", "occurred_at"])
        batch_op.create_index("ix_audit_severity_occurred", ["severity", "occurred_at"])


def downgrade():
    op.drop_table("audit_log_entries")
    op.drop_table("age_verification_records")
    op.drop_table("loyalty_ledger_entries")
    op.drop_table("line_items")
    op.drop_table("transactions")
    op.drop_table("customers")
    op.drop_table("products")
    op.drop_table("stores")
