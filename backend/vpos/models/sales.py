from __future__ import annotations

from ..extensions import db
from vpos.money import format_money
from vpos.time_utils import to_utc_z, to_iso_date


class Transaction(db.Model):
    """
    Committed sale record.

    IMMUTABLE: inserted exactly once per successful checkout and never
    updated. A void or refund is a new row with transaction_type VOID or
    REFUND pointing at the original through compensates_transaction_id.

    All amounts are in cents. tax_breakdown holds the itemized tax lines
    exactly as the tax engine produced them (fixed 2-decimal strings).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("store_id", "receipt_number", name="uq_transactions_store_receipt"),
        db.Index("ix_transactions_store_occurred", "store_id", "transaction_at"),
        db.Index("ix_transactions_customer_occurred", "customer_id", "transaction_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    receipt_number = db.Column(db.String(64), nullable=False)

    transaction_type = db.Column(db.String(16), nullable=False, default="SALE")  # SALE, VOID, REFUND
    compensates_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    employee_id = db.Column(db.Integer, nullable=True, index=True)

    # Totals (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    exempt_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    tax_jurisdiction = db.Column(db.String(8), nullable=True)
    tax_breakdown = db.Column(db.JSON, nullable=False, default=list)

    # Payment
    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="COMPLETED")
    payment_reference = db.Column(db.String(128), nullable=True)
    cash_tendered_cents = db.Column(db.Integer, nullable=True)
    change_given_cents = db.Column(db.Integer, nullable=True)

    # Compliance
    age_verification_required = db.Column(db.Boolean, nullable=False, default=False)
    age_verification_completed = db.Column(db.Boolean, nullable=False, default=False)
    age_verification_id = db.Column(db.String(36), nullable=True)

    # Loyalty
    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    # Customer state right after this sale, for receipt reprints
    loyalty_balance_after = db.Column(db.Integer, nullable=True)
    loyalty_tier_after = db.Column(db.String(16), nullable=True)

    transaction_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store")
    customer = db.relationship("Customer", backref=db.backref("transactions", lazy=True))
    line_items = db.relationship(
        "LineItem",
        back_populates="transaction",
        order_by="LineItem.line_number",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} receipt={self.receipt_number!r} total_cents={self.total_cents}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "receipt_number": self.receipt_number,
            "transaction_type": self.transaction_type,
            "compensates_transaction_id": self.compensates_transaction_id,
            "customer_id": self.customer_id,
            "employee_id": self.employee_id,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "exempt_cents": self.exempt_cents,
            "total_cents": self.total_cents,
            "subtotal": format_money(self.subtotal_cents),
            "tax": format_money(self.tax_cents),
            "total": format_money(self.total_cents),
            "tax_jurisdiction": self.tax_jurisdiction,
            "tax_breakdown": self.tax_breakdown,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "payment_reference": self.payment_reference,
            "cash_tendered_cents": self.cash_tendered_cents,
            "change_given_cents": self.change_given_cents,
            "age_verification_required": self.age_verification_required,
            "age_verification_completed": self.age_verification_completed,
            "age_verification_id": self.age_verification_id,
            "loyalty_points_earned": self.loyalty_points_earned,
            "loyalty_points_redeemed": self.loyalty_points_redeemed,
            "loyalty_balance_after": self.loyalty_balance_after,
            "loyalty_tier_after": self.loyalty_tier_after,
            "transaction_at": to_utc_z(self.transaction_at),
        }
        if include_lines:
            data["line_items"] = [line.to_dict() for line in self.line_items]
        return data


class LineItem(db.Model):
    """
    Sale-time snapshot of a product on a transaction.

    Name, SKU, price and compliance flags are copied so later product edits
    never change a historical receipt. product_id is kept for reporting only.
    """
    __tablename__ = "line_items"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "line_number", name="uq_line_items_txn_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)
    product_barcode = db.Column(db.String(64), nullable=True)
    category = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    special_tax_category = db.Column(db.String(32), nullable=True)
    is_tax_exempt = db.Column(db.Boolean, nullable=False, default=False)
    age_verification_required = db.Column(db.Boolean, nullable=False, default=False)

    lot_number = db.Column(db.String(64), nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)

    transaction = db.relationship("Transaction", back_populates="line_items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "product_barcode": self.product_barcode,
            "category": self.category,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "special_tax_category": self.special_tax_category,
            "is_tax_exempt": self.is_tax_exempt,
            "age_verification_required": self.age_verification_required,
            "lot_number": self.lot_number,
            "expiration_date": to_iso_date(self.expiration_date),
        }
