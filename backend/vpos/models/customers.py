from __future__ import annotations

from ..extensions import db
from vpos.time_utils import to_utc_z, to_iso_date


class Customer(db.Model):
    """
    Customer with denormalized loyalty and spend aggregates.

    INVARIANT: loyalty_points == points_lifetime_earned - points_lifetime_redeemed.
    Both sides only ever move through loyalty_service, inside the unit of
    work of the operation that caused them, as single UPDATE statements.
    The CHECK constraints make a violating write fail rather than persist.

    loyalty_tier is derived from total_spent_cents and always recomputed
    from the post-update total, never stepped incrementally.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.Index("ix_customers_active", "is_active"),
        db.CheckConstraint("loyalty_points >= 0", name="ck_customers_points_nonnegative"),
        db.CheckConstraint(
            "loyalty_points = points_lifetime_earned - points_lifetime_redeemed",
            name="ck_customers_points_ledger",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)

    # Tax exemption (resale certificate, etc.)
    is_tax_exempt = db.Column(db.Boolean, nullable=False, default=False)
    tax_exemption_number = db.Column(db.String(64), nullable=True)

    # Loyalty ledger aggregates
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    points_lifetime_earned = db.Column(db.Integer, nullable=False, default=0)
    points_lifetime_redeemed = db.Column(db.Integer, nullable=False, default=0)
    loyalty_tier = db.Column(db.String(16), nullable=False, default="BRONZE", index=True)

    # Spend aggregates (updated when sales are committed)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    transaction_count = db.Column(db.Integer, nullable=False, default=0)
    first_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Customer id={self.id} tier={self.loyalty_tier} points={self.loyalty_points}>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "date_of_birth": to_iso_date(self.date_of_birth),
            "is_tax_exempt": self.is_tax_exempt,
            "tax_exemption_number": self.tax_exemption_number,
            "loyalty_points": self.loyalty_points,
            "points_lifetime_earned": self.points_lifetime_earned,
            "points_lifetime_redeemed": self.points_lifetime_redeemed,
            "loyalty_tier": self.loyalty_tier,
            "total_spent_cents": self.total_spent_cents,
            "transaction_count": self.transaction_count,
            "first_purchase_at": to_utc_z(self.first_purchase_at) if self.first_purchase_at else None,
            "last_purchase_at": to_utc_z(self.last_purchase_at) if self.last_purchase_at else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class LoyaltyLedgerEntry(db.Model):
    """
    Append-only ledger of loyalty point mutations.

    ENTRY TYPES:
    - EARN: Points accrued from a sale (or a manual grant)
    - REDEEM: Points spent

    IMMUTABLE: Records are never updated or deleted. Summing signed points
    per customer reproduces Customer.loyalty_points.
    """
    __tablename__ = "loyalty_ledger_entries"
    __table_args__ = (
        db.Index("ix_loyalty_ledger_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    entry_type = db.Column(db.String(16), nullable=False, index=True)  # EARN, REDEEM
    points = db.Column(db.Integer, nullable=False)  # Positive for earn, negative for redeem
    balance_after = db.Column(db.Integer, nullable=False)

    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)
    actor_id = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer = db.relationship("Customer", backref=db.backref("loyalty_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "entry_type": self.entry_type,
            "points": self.points,
            "balance_after": self.balance_after,
            "transaction_id": self.transaction_id,
            "reason": self.reason,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
