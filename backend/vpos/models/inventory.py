from __future__ import annotations

from ..extensions import db
from vpos.time_utils import to_utc_z, to_iso_date


class Product(db.Model):
    """
    Product master data with on-hand stock.

    STOCK: on_hand is the authoritative sellable quantity. It is only ever
    changed by a conditional UPDATE (see checkout_service and
    inventory_service) so it can never go negative; the CHECK constraint
    is the last line.

    LIFECYCLE: products referenced by historical transactions are never
    deleted. Deactivate instead (is_active=False); line items carry their
    own snapshot so receipts are unaffected.
    """
    __tablename__ = "products"
    __table_args__ = (
        # SKUs are unique within a store
        db.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        db.Index("ix_products_store_active", "store_id", "is_active"),
        db.Index("ix_products_barcode", "barcode"),
        db.CheckConstraint("on_hand >= 0", name="ck_products_on_hand_nonnegative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    barcode = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    on_hand = db.Column(db.Integer, nullable=False, default=0)

    # Compliance flags
    age_restricted = db.Column(db.Boolean, nullable=False, default=False)
    special_tax_category = db.Column(db.String(32), nullable=True)  # e.g. "tobacco"
    is_tax_exempt = db.Column(db.Boolean, nullable=False, default=False)

    # Lot tracking (copied onto line items at sale time)
    lot_number = db.Column(db.String(64), nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} on_hand={self.on_hand}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "on_hand": self.on_hand,
            "age_restricted": self.age_restricted,
            "special_tax_category": self.special_tax_category,
            "is_tax_exempt": self.is_tax_exempt,
            "lot_number": self.lot_number,
            "expiration_date": to_iso_date(self.expiration_date),
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
