from __future__ import annotations

from ..extensions import db
from vpos.time_utils import to_utc_z


class AuditLogEntry(db.Model):
    """
    Append-only audit log.

    IMMUTABLE: Never update or delete. Retention and export belong to the
    reporting side, not to the checkout core.

    entry_uuid is assigned by the producer, so redelivery of a spooled entry
    (at-least-once) collapses onto the existing row.
    """
    __tablename__ = "audit_log_entries"
    __table_args__ = (
        db.UniqueConstraint("entry_uuid", name="uq_audit_entry_uuid"),
        db.Index("ix_audit_occurred", "occurred_at"),
        db.Index("ix_audit_action_occurred", "action", "occurred_at"),
        db.Index("ix_audit_severity_occurred", "severity", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entry_uuid = db.Column(db.String(36), nullable=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    actor_id = db.Column(db.String(64), nullable=True, index=True)
    actor_role = db.Column(db.String(32), nullable=True)
    store_id = db.Column(db.Integer, nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.String(64), nullable=True)
    severity = db.Column(db.String(16), nullable=False)
    details = db.Column(db.JSON, nullable=False, default=dict)

    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entry_uuid": self.entry_uuid,
            "occurred_at": to_utc_z(self.occurred_at),
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "store_id": self.store_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "severity": self.severity,
            "details": self.details or {},
            "recorded_at": to_utc_z(self.recorded_at),
        }
