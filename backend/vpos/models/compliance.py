from __future__ import annotations

from ..extensions import db
from vpos.time_utils import to_utc_z, to_iso_date


class AgeVerificationRecord(db.Model):
    """
    One row per age-verification attempt or manager override.

    RECORD TYPES:
    - EVALUATION: the adjudicator's decision on presented ID data
    - OVERRIDE: a manager's exception to a failed EVALUATION; points at it
      through supersedes_id

    IMMUTABLE EVIDENCE: outcome fields are written once at creation. An
    override never edits or deletes the failed record it supersedes; both
    rows are retained for audit. The only later write is
    consumed_by_transaction_id, which stamps the record with the sale that
    relied on it so one verification cannot authorize two sales.

    The raw ID number is never stored, only a masked form.
    """
    __tablename__ = "age_verification_records"
    __table_args__ = (
        db.UniqueConstraint("verification_id", name="uq_age_verification_id"),
        db.Index("ix_age_verification_store_created", "store_id", "created_at"),
        db.Index("ix_age_verification_supersedes", "supersedes_id", unique=True),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    verification_id = db.Column(db.String(36), nullable=False)

    record_type = db.Column(db.String(16), nullable=False, default="EVALUATION")  # EVALUATION, OVERRIDE
    supersedes_id = db.Column(db.Integer, db.ForeignKey("age_verification_records.id"), nullable=True)

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    employee_id = db.Column(db.Integer, nullable=True)

    # How the ID data was captured
    method = db.Column(db.String(16), nullable=False, default="MANUAL")  # MANUAL, SCANNER
    state = db.Column(db.String(32), nullable=False)

    # ID document
    id_type = db.Column(db.String(32), nullable=False)
    id_number_masked = db.Column(db.String(32), nullable=True)
    id_issuing_state = db.Column(db.String(8), nullable=True)
    id_expiration_date = db.Column(db.Date, nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)

    # Outcome
    calculated_age = db.Column(db.Integer, nullable=False)
    min_age = db.Column(db.Integer, nullable=False)
    is_verified = db.Column(db.Boolean, nullable=False)
    reason_for_denial = db.Column(db.String(255), nullable=True)
    warnings = db.Column(db.JSON, nullable=False, default=list)
    requires_manager_override = db.Column(db.Boolean, nullable=False, default=False)

    # Override fields (record_type=OVERRIDE only)
    manager_id = db.Column(db.Integer, nullable=True)
    override_reason = db.Column(db.String(255), nullable=True)

    consumed_by_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    supersedes = db.relationship("AgeVerificationRecord", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "verification_id": self.verification_id,
            "record_type": self.record_type,
            "supersedes_id": self.supersedes_id,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "employee_id": self.employee_id,
            "method": self.method,
            "state": self.state,
            "id_type": self.id_type,
            "id_number_masked": self.id_number_masked,
            "id_issuing_state": self.id_issuing_state,
            "id_expiration_date": to_iso_date(self.id_expiration_date),
            "date_of_birth": to_iso_date(self.date_of_birth),
            "calculated_age": self.calculated_age,
            "min_age": self.min_age,
            "is_verified": self.is_verified,
            "reason_for_denial": self.reason_for_denial,
            "warnings": self.warnings or [],
            "requires_manager_override": self.requires_manager_override,
            "manager_id": self.manager_id,
            "override_reason": self.override_reason,
            "consumed_by_transaction_id": self.consumed_by_transaction_id,
            "created_at": to_utc_z(self.created_at),
        }
