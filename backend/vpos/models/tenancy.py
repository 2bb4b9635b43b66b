from __future__ import annotations

from ..extensions import db
from vpos.time_utils import to_utc_z


class Store(db.Model):
    """
    Store (point of sale location).

    The store's state_code is its tax jurisdiction and drives both the
    sales-tax lookup and the age-verification compliance rules. The address
    fields exist for the receipt header.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_stores_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)

    # Tax jurisdiction (two-letter state code). NULL -> default rate applies.
    state_code = db.Column(db.String(8), nullable=True)

    # Receipt header
    address_line1 = db.Column(db.String(255), nullable=True)
    address_line2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    zip_code = db.Column(db.String(16), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    tax_id = db.Column(db.String(64), nullable=True)
    receipt_footer = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r} state={self.state_code!r}>"

    def formatted_address(self) -> str:
        locality = " ".join(p for p in [
            f"{self.city}," if self.city else None,
            self.state_code,
            self.zip_code,
        ] if p)
        return ", ".join(p for p in [self.address_line1, self.address_line2, locality] if p)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "state_code": self.state_code,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "zip_code": self.zip_code,
            "phone": self.phone,
            "tax_id": self.tax_id,
            "receipt_footer": self.receipt_footer,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
