# Overview: Audit sink with durable local spooling and background redelivery.

"""
Audit Sink

WHY: Compliance events (failed age checks, manager overrides) must never be
lost, but a sale must never wait on, or fail because of, the audit
transport. Entries are handed to the sink after the owning database
transaction has committed.

DESIGN:
- While the daemon thread (start()/stop()) runs, record() only appends the
  entry to a local SQLite spool and wakes the thread, which delivers in
  FIFO order. Without the thread record() tries the transport once and
  spools on failure. record() never raises.
- Delivery is at-least-once. Entries carry a producer-assigned uuid and the
  database transport ignores uuids it has already stored.
- Compliance actions are forced to at least HIGH severity, whatever the
  caller asked for.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime

import httpx
from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.orm import Session

from vpos.models import AuditLogEntry
from vpos.time_utils import parse_iso_datetime, to_utc_z, utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# SEVERITY (CONSTANTS)
# =============================================================================

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"

SEVERITY_ORDER = {
    SEVERITY_LOW: 0,
    SEVERITY_MEDIUM: 1,
    SEVERITY_HIGH: 2,
    SEVERITY_CRITICAL: 3,
}


# =============================================================================
# ACTIONS (CONSTANTS)
# =============================================================================

ACTION_TRANSACTION_CREATED = "transaction_created"
ACTION_CHECKOUT_REJECTED = "checkout_rejected"
ACTION_AGE_VERIFICATION_PASSED = "age_verification_passed"
ACTION_AGE_VERIFICATION_FAILED = "age_verification_failed"
ACTION_AGE_VERIFICATION_CONSUMED = "age_verification_consumed"
ACTION_MANAGER_OVERRIDE_APPLIED = "manager_override_applied"
ACTION_COMPLIANCE_VIOLATION = "compliance_violation"
ACTION_PAYMENT_FAILED = "payment_failed"
ACTION_INVENTORY_ADJUSTED = "inventory_adjusted"
ACTION_PRODUCT_DEACTIVATED = "product_deactivated"
ACTION_CUSTOMER_CREATED = "customer_created"
ACTION_LOYALTY_POINTS_REDEEMED = "loyalty_points_redeemed"

DEFAULT_ACTION_SEVERITY = {
    ACTION_TRANSACTION_CREATED: SEVERITY_LOW,
    ACTION_CHECKOUT_REJECTED: SEVERITY_MEDIUM,
    ACTION_AGE_VERIFICATION_PASSED: SEVERITY_MEDIUM,
    ACTION_AGE_VERIFICATION_FAILED: SEVERITY_HIGH,
    ACTION_AGE_VERIFICATION_CONSUMED: SEVERITY_MEDIUM,
    ACTION_MANAGER_OVERRIDE_APPLIED: SEVERITY_CRITICAL,
    ACTION_COMPLIANCE_VIOLATION: SEVERITY_CRITICAL,
    ACTION_PAYMENT_FAILED: SEVERITY_MEDIUM,
    ACTION_INVENTORY_ADJUSTED: SEVERITY_MEDIUM,
    ACTION_PRODUCT_DEACTIVATED: SEVERITY_MEDIUM,
    ACTION_CUSTOMER_CREATED: SEVERITY_LOW,
    ACTION_LOYALTY_POINTS_REDEEMED: SEVERITY_LOW,
}

# Minimum severity for compliance-relevant actions
COMPLIANCE_ACTIONS = {
    ACTION_AGE_VERIFICATION_FAILED: SEVERITY_HIGH,
    ACTION_MANAGER_OVERRIDE_APPLIED: SEVERITY_CRITICAL,
    ACTION_COMPLIANCE_VIOLATION: SEVERITY_CRITICAL,
}

# Detail keys masked to their last four characters before leaving the process
MASKED_DETAIL_KEYS = {"card_number", "account_number", "id_number"}
DROPPED_DETAIL_KEYS = {"cvv", "card_cvv", "pin"}


# =============================================================================
# ENTRY
# =============================================================================

@dataclass
class AuditEntry:
    action: str
    entity_type: str
    severity: str = SEVERITY_LOW
    entity_id: str | None = None
    actor_id: str | None = None
    actor_role: str | None = None
    store_id: int | None = None
    details: dict = field(default_factory=dict)
    entry_uuid: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "entry_uuid": self.entry_uuid,
            "occurred_at": to_utc_z(self.occurred_at),
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "store_id": self.store_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "severity": self.severity,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        return cls(
            action=data["action"],
            entity_type=data["entity_type"],
            severity=data["severity"],
            entity_id=data.get("entity_id"),
            actor_id=data.get("actor_id"),
            actor_role=data.get("actor_role"),
            store_id=data.get("store_id"),
            details=data.get("details") or {},
            entry_uuid=data["entry_uuid"],
            occurred_at=parse_iso_datetime(data["occurred_at"]) or utcnow(),
        )


def build_entry(
    action: str,
    entity_type: str,
    *,
    entity_id=None,
    actor_id=None,
    actor_role: str | None = None,
    store_id: int | None = None,
    details: dict | None = None,
    severity: str | None = None,
) -> AuditEntry:
    """Construct an entry with the action's default severity and ids as strings."""
    return AuditEntry(
        action=action,
        entity_type=entity_type,
        severity=severity or DEFAULT_ACTION_SEVERITY.get(action, SEVERITY_LOW),
        entity_id=str(entity_id) if entity_id is not None else None,
        actor_id=str(actor_id) if actor_id is not None else None,
        actor_role=actor_role,
        store_id=store_id,
        details=dict(details or {}),
    )


def enforce_severity_floor(action: str, severity: str) -> str:
    if severity not in SEVERITY_ORDER:
        raise ValueError(f"Unknown audit severity: {severity}")
    floor = COMPLIANCE_ACTIONS.get(action)
    if floor and SEVERITY_ORDER[severity] < SEVERITY_ORDER[floor]:
        return floor
    return severity


def mask_value(value) -> str:
    cleaned = "".join(str(value).split())
    if len(cleaned) < 4:
        return "****"
    return "*" * (len(cleaned) - 4) + cleaned[-4:]


def sanitize_details(details: dict) -> dict:
    sanitized = {}
    for key, value in details.items():
        if key in DROPPED_DETAIL_KEYS:
            continue
        if key in MASKED_DETAIL_KEYS and value is not None:
            sanitized[key] = mask_value(value)
        elif isinstance(value, dict):
            sanitized[key] = sanitize_details(value)
        else:
            sanitized[key] = value
    return sanitized


# =============================================================================
# TRANSPORTS
# =============================================================================

class AuditTransport:
    """Delivers one entry or raises. Implementations must be idempotent by entry_uuid."""

    def send(self, entry: AuditEntry) -> None:
        raise NotImplementedError


class DatabaseAuditTransport(AuditTransport):
    """
    Writes entries to the audit_log_entries table through its own session.

    The session is never the checkout's session: audit writes happen after
    the sale has committed and must not be able to roll it back.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def send(self, entry: AuditEntry) -> None:
        session: Session = self.session_factory()
        try:
            exists = session.query(AuditLogEntry.id).filter_by(entry_uuid=entry.entry_uuid).first()
            if exists:
                return
            session.add(AuditLogEntry(
                entry_uuid=entry.entry_uuid,
                occurred_at=entry.occurred_at,
                actor_id=entry.actor_id,
                actor_role=entry.actor_role,
                store_id=entry.store_id,
                action=entry.action,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                severity=entry.severity,
                details=entry.details,
            ))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


class HttpAuditTransport(AuditTransport):
    """POSTs entries as JSON to a remote audit collector."""

    def __init__(self, url: str, timeout: float = 5.0, client: httpx.Client | None = None):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def send(self, entry: AuditEntry) -> None:
        response = self.client.post(self.url, json=entry.to_dict())
        response.raise_for_status()

    def close(self) -> None:
        self.client.close()


# =============================================================================
# DURABLE SPOOL
# =============================================================================

_spool_metadata = MetaData()

audit_spool_table = Table(
    "audit_spool",
    _spool_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("entry_uuid", String(36), nullable=False, unique=True),
    Column("payload", Text, nullable=False),
    Column("attempts", Integer, nullable=False, default=0),
    Column("last_error", Text, nullable=True),
    Column("enqueued_at", DateTime, nullable=False),
    Column("last_attempt_at", DateTime, nullable=True),
    sqlite_autoincrement=True,
)


class AuditSpool:
    """
    Durable FIFO of undelivered entries in a local SQLite file.

    Independent of the main database, so an outage of the main store (or of
    the network) does not take the buffer down with it.
    """

    def __init__(self, path: str):
        self.path = path
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        self.engine = create_engine(
            f"sqlite:///{path}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _spool_metadata.create_all(self.engine)

    def push(self, entry: AuditEntry, error: str | None = None) -> None:
        payload = json.dumps(entry.to_dict(), sort_keys=True)
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(audit_spool_table.c.id).where(audit_spool_table.c.entry_uuid == entry.entry_uuid)
            ).first()
            if existing:
                return
            conn.execute(insert(audit_spool_table).values(
                entry_uuid=entry.entry_uuid,
                payload=payload,
                attempts=1 if error else 0,
                last_error=error,
                enqueued_at=utcnow(),
                last_attempt_at=utcnow() if error else None,
            ))

    def peek(self, limit: int = 100) -> list[tuple[int, AuditEntry]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(audit_spool_table.c.id, audit_spool_table.c.payload)
                .order_by(audit_spool_table.c.id)
                .limit(limit)
            ).all()
        return [(row.id, AuditEntry.from_dict(json.loads(row.payload))) for row in rows]

    def ack(self, spool_id: int) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(audit_spool_table).where(audit_spool_table.c.id == spool_id))

    def mark_failed(self, spool_id: int, error: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(audit_spool_table)
                .where(audit_spool_table.c.id == spool_id)
                .values(
                    attempts=audit_spool_table.c.attempts + 1,
                    last_error=error,
                    last_attempt_at=utcnow(),
                )
            )

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(audit_spool_table)).scalar_one()

    def dispose(self) -> None:
        self.engine.dispose()


# =============================================================================
# SINK
# =============================================================================

class AuditSink:
    """
    Front door for audit entries.

    With the background worker running, record() only appends to the local
    spool and wakes the worker, so a slow or unreachable collector never
    holds up the caller. Without it (tests, CLI) record() delivers inline
    and spools on failure.
    """

    def __init__(self, transport: AuditTransport, spool: AuditSpool, *, retry_interval: float = 15.0):
        self.transport = transport
        self.spool = spool
        self.retry_interval = retry_interval
        self._flush_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def record(self, entry: AuditEntry) -> bool:
        """
        Hand an entry to the sink.

        Returns True if it was delivered inline, False if it was queued in
        the spool (for the worker, or after a failed delivery).
        Never raises.
        """
        if entry.severity not in SEVERITY_ORDER:
            logger.warning("Unknown audit severity %r on %s; recording as medium", entry.severity, entry.action)
            entry.severity = SEVERITY_MEDIUM
        entry.severity = enforce_severity_floor(entry.action, entry.severity)
        entry.details = sanitize_details(entry.details)

        if self.is_running:
            self._spool(entry, error=None)
            self._wake_event.set()
            return False

        try:
            self.transport.send(entry)
            return True
        except Exception as exc:
            logger.warning(
                "Audit delivery failed; spooling entry",
                extra={"extra": {"action": entry.action, "entry_uuid": entry.entry_uuid, "error": str(exc)}},
            )
            self._spool(entry, error=str(exc))
            return False

    def _spool(self, entry: AuditEntry, error: str | None) -> None:
        try:
            self.spool.push(entry, error=error)
        except Exception:
            # Last resort: the entry survives in the log stream
            logger.critical(
                "Audit entry could not be spooled: %s",
                json.dumps(entry.to_dict(), sort_keys=True),
                exc_info=True,
            )

    def emit(self, action: str, entity_type: str, **kwargs) -> bool:
        """Shorthand for record(build_entry(...))."""
        return self.record(build_entry(action, entity_type, **kwargs))

    def flush_pending(self, limit: int = 100) -> int:
        """
        Redeliver spooled entries oldest first.

        Stops at the first failure so entries are not reordered. Returns the
        number delivered.
        """
        delivered = 0
        with self._flush_lock:
            for spool_id, entry in self.spool.peek(limit):
                try:
                    self.transport.send(entry)
                except Exception as exc:
                    self.spool.mark_failed(spool_id, str(exc))
                    logger.info("Audit redelivery deferred: %s", exc)
                    break
                self.spool.ack(spool_id)
                delivered += 1
        if delivered:
            logger.info("Delivered %d spooled audit entries", delivered)
        return delivered

    def pending_count(self) -> int:
        return self.spool.count()

    # -- background delivery loop ----------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="audit-delivery", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the worker. Undelivered entries stay in the spool for the next start."""
        self._stop_event.set()
        self._wake_event.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            # New entries wake the loop; otherwise retry on the interval
            self._wake_event.wait(self.retry_interval)
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            try:
                while self.flush_pending() and not self._stop_event.is_set():
                    pass
            except Exception:
                logger.exception("Audit delivery loop iteration failed")


# =============================================================================
# QUERY
# =============================================================================

def query_audit_log(
    session: Session,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    actor_id: str | None = None,
    action: str | None = None,
    severity: str | None = None,
    entity_type: str | None = None,
    store_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[AuditLogEntry], int]:
    """
    Read-only filtered retrieval, newest first. Range bounds are inclusive.

    Returns:
        (entries, total matching count)
    """
    query = session.query(AuditLogEntry)
    if start is not None:
        query = query.filter(AuditLogEntry.occurred_at >= start)
    if end is not None:
        query = query.filter(AuditLogEntry.occurred_at <= end)
    if actor_id is not None:
        query = query.filter(AuditLogEntry.actor_id == str(actor_id))
    if action is not None:
        query = query.filter(AuditLogEntry.action == action)
    if severity is not None:
        query = query.filter(AuditLogEntry.severity == severity)
    if entity_type is not None:
        query = query.filter(AuditLogEntry.entity_type == entity_type)
    if store_id is not None:
        query = query.filter(AuditLogEntry.store_id == store_id)

    total = query.count()
    entries = (
        query.order_by(AuditLogEntry.occurred_at.desc(), AuditLogEntry.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return entries, total
