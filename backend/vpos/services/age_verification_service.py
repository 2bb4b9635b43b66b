# Overview: Age-verification adjudication, persistence of attempts, and manager overrides.

"""
Age Verification Adjudicator

WHY: A restricted sale may only proceed on a passed verification, or on a
manager override of a failed one. Every attempt is evidence and is kept.

STATE MACHINE (per attempt):
    METHOD_SELECTED -> MANUAL_ENTRY | SCANNER_READ -> EVALUATED -> PASSED | FAILED
    FAILED -> OVERRIDE_REQUESTED -> OVERRIDE_APPLIED

PASSED and OVERRIDE_APPLIED are terminal. Re-evaluating means a new attempt
with a new verification id.

RULES:
- Age is whole years from date of birth to the evaluation date; a birthday
  today counts.
- Verification fails if the ID is expired OR the customer is under the
  minimum age. If both, the denial reason names the expired ID.
- A manager override is only ever offered at age 18 or over. Whether an
  expired ID of an adult may be overridden is jurisdiction policy
  (allow_override_expired).
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vpos.errors import (
    AgeVerificationFailed,
    OverrideNotPermitted,
    ValidationError,
    VerificationNotFound,
)
from vpos.models import AgeVerificationRecord, Store
from vpos.time_utils import today as business_today, utcnow
from .audit_service import (
    ACTION_AGE_VERIFICATION_FAILED,
    ACTION_AGE_VERIFICATION_PASSED,
    ACTION_MANAGER_OVERRIDE_APPLIED,
    AuditSink,
    build_entry,
)


# Hard floor: below this age an override is never offered, whatever the policy
OVERRIDE_AGE_FLOOR = 18
DEFAULT_MIN_AGE = 21

ID_TYPES = ("drivers_license", "state_id", "passport", "military_id")

METHOD_MANUAL = "MANUAL"
METHOD_SCANNER = "SCANNER"
VALID_METHODS = (METHOD_MANUAL, METHOD_SCANNER)

RECORD_EVALUATION = "EVALUATION"
RECORD_OVERRIDE = "OVERRIDE"


class VerificationState(str, Enum):
    METHOD_SELECTED = "METHOD_SELECTED"
    MANUAL_ENTRY = "MANUAL_ENTRY"
    SCANNER_READ = "SCANNER_READ"
    EVALUATED = "EVALUATED"
    PASSED = "PASSED"
    FAILED = "FAILED"
    OVERRIDE_REQUESTED = "OVERRIDE_REQUESTED"
    OVERRIDE_APPLIED = "OVERRIDE_APPLIED"


ALLOWED_TRANSITIONS: dict[VerificationState, frozenset[VerificationState]] = {
    VerificationState.METHOD_SELECTED: frozenset({VerificationState.MANUAL_ENTRY, VerificationState.SCANNER_READ}),
    VerificationState.MANUAL_ENTRY: frozenset({VerificationState.EVALUATED}),
    VerificationState.SCANNER_READ: frozenset({VerificationState.EVALUATED}),
    VerificationState.EVALUATED: frozenset({VerificationState.PASSED, VerificationState.FAILED}),
    VerificationState.FAILED: frozenset({VerificationState.OVERRIDE_REQUESTED}),
    VerificationState.OVERRIDE_REQUESTED: frozenset({VerificationState.OVERRIDE_APPLIED}),
    VerificationState.PASSED: frozenset(),
    VerificationState.OVERRIDE_APPLIED: frozenset(),
}


class VerificationAttempt:
    """Tracks one attempt through the state machine; illegal moves raise."""

    def __init__(self):
        self.state = VerificationState.METHOD_SELECTED
        self.history: list[VerificationState] = [self.state]

    def advance(self, new_state: VerificationState) -> VerificationState:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise ValidationError(
                f"Invalid verification transition: {self.state.value} -> {new_state.value}",
                details={"from": self.state.value, "to": new_state.value},
            )
        self.state = new_state
        self.history.append(new_state)
        return new_state

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.state]


# =============================================================================
# PURE CHECKS
# =============================================================================

# Per-state rules; anything not listed gets DEFAULT_STATE_COMPLIANCE
STATE_COMPLIANCE = {
    "NY": {
        "tobacco_age": 21,
        "acceptable_ids": ["drivers_license", "state_id", "passport"],
        "special_requirements": ["Must be valid (not expired)", "Photo must be clearly visible"],
    },
    "CA": {
        "tobacco_age": 21,
        "acceptable_ids": ["drivers_license", "state_id", "passport", "military_id"],
        "special_requirements": ["Must be valid (not expired)", "Real ID compliant preferred"],
    },
    "TX": {
        "tobacco_age": 21,
        "acceptable_ids": ["drivers_license", "state_id", "passport", "military_id"],
        "special_requirements": ["Must be valid (not expired)", "Out-of-state IDs require additional verification"],
    },
}

DEFAULT_STATE_COMPLIANCE = {
    "tobacco_age": DEFAULT_MIN_AGE,
    "acceptable_ids": ["drivers_license", "state_id", "passport"],
    "special_requirements": ["Must be valid (not expired)"],
}


def get_state_compliance(state: str | None, default_min_age: int = DEFAULT_MIN_AGE) -> dict:
    code = (state or "").strip().upper()
    rules = STATE_COMPLIANCE.get(code)
    if rules is None:
        rules = {**DEFAULT_STATE_COMPLIANCE, "tobacco_age": default_min_age}
    return {
        "tobacco_age": rules["tobacco_age"],
        "acceptable_ids": list(rules["acceptable_ids"]),
        "special_requirements": list(rules["special_requirements"]),
    }


def calculate_age(date_of_birth: date, on: date) -> int:
    """Whole years between date_of_birth and `on` (birthday on `on` counts)."""
    age = on.year - date_of_birth.year
    if (on.month, on.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def is_id_expired(expiration_date: date, on: date) -> bool:
    """An ID is valid through its expiration date."""
    return expiration_date < on


def normalize_id_number(id_number: str) -> str:
    return re.sub(r"\s+", "", id_number or "").upper()


def validate_id_format(id_type: str, id_number: str) -> bool:
    clean = normalize_id_number(id_number)

    if id_type in ("drivers_license", "state_id"):
        # State formats vary widely, length check only
        return 6 <= len(clean) <= 15
    if id_type == "passport":
        return re.fullmatch(r"[A-Z0-9]{9}", clean) is not None
    if id_type == "military_id":
        return 8 <= len(clean) <= 12
    return False


def mask_id_number(id_number: str | None) -> str | None:
    if not id_number:
        return None
    clean = normalize_id_number(id_number)
    if len(clean) <= 4:
        return "****"
    return "*" * (len(clean) - 4) + clean[-4:]


@dataclass(frozen=True)
class VerificationDecision:
    is_verified: bool
    calculated_age: int
    min_age: int
    id_expired: bool
    requires_manager_override: bool
    reason_for_denial: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "is_verified": self.is_verified,
            "calculated_age": self.calculated_age,
            "min_age": self.min_age,
            "id_expired": self.id_expired,
            "requires_manager_override": self.requires_manager_override,
            "reason_for_denial": self.reason_for_denial,
            "warnings": list(self.warnings),
        }


def evaluate(
    id_type: str,
    id_expiration_date: date,
    date_of_birth: date,
    min_age: int = DEFAULT_MIN_AGE,
    *,
    on: date | None = None,
    allow_override_expired: bool = True,
) -> VerificationDecision:
    """
    Adjudicate presented ID data. Pure apart from defaulting `on` to today.

    Raises:
        ValidationError: On an unknown ID type or a date of birth in the future
    """
    if id_type not in ID_TYPES:
        raise ValidationError(f"Invalid id_type: {id_type}. Must be one of {list(ID_TYPES)}")

    on = on or business_today()
    if date_of_birth > on:
        raise ValidationError("date_of_birth cannot be in the future")

    age = calculate_age(date_of_birth, on)
    expired = is_id_expired(id_expiration_date, on)
    underage = age < min_age

    warnings: list[str] = []
    if expired:
        warnings.append("ID has expired")
    if age < OVERRIDE_AGE_FLOOR:
        warnings.append(f"Customer is under {OVERRIDE_AGE_FLOOR}")
    elif underage:
        warnings.append(f"Customer is under {min_age} (tobacco age restriction)")

    is_verified = not expired and not underage

    reason = None
    if expired:
        reason = "Expired identification document"
    elif underage:
        reason = f"Customer age ({age}) is below minimum age requirement ({min_age})"

    requires_override = False
    if not is_verified and age >= OVERRIDE_AGE_FLOOR:
        requires_override = allow_override_expired or not expired

    return VerificationDecision(
        is_verified=is_verified,
        calculated_age=age,
        min_age=min_age,
        id_expired=expired,
        requires_manager_override=requires_override,
        reason_for_denial=reason,
        warnings=tuple(warnings),
    )


# =============================================================================
# PERSISTED ATTEMPTS
# =============================================================================

@dataclass(frozen=True)
class VerificationRequest:
    id_type: str
    id_number: str
    id_expiration_date: date
    date_of_birth: date
    method: str = METHOD_MANUAL
    id_issuing_state: str | None = None
    store_id: int | None = None
    customer_id: int | None = None
    employee_id: int | None = None


def record_verification(
    session: Session,
    request: VerificationRequest,
    *,
    audit_sink: AuditSink | None = None,
    min_age: int | None = None,
    default_min_age: int = DEFAULT_MIN_AGE,
    allow_override_expired: bool = True,
    on: date | None = None,
) -> tuple[AgeVerificationRecord, VerificationDecision]:
    """
    Run one verification attempt and persist it.

    The minimum age defaults to the store jurisdiction's tobacco age. The
    audit entry (passed: medium, failed: high) is emitted after commit.

    Raises:
        ValidationError: On a bad method, id type or id number format
    """
    if request.method not in VALID_METHODS:
        raise ValidationError(f"Invalid method: {request.method}. Must be one of {list(VALID_METHODS)}")
    if not validate_id_format(request.id_type, request.id_number):
        raise ValidationError("Invalid id_number format for id_type", details={"id_type": request.id_type})

    if min_age is None:
        state_code = None
        if request.store_id is not None:
            store = session.get(Store, request.store_id)
            state_code = store.state_code if store else None
        min_age = get_state_compliance(state_code, default_min_age)["tobacco_age"]

    attempt = VerificationAttempt()
    attempt.advance(
        VerificationState.SCANNER_READ if request.method == METHOD_SCANNER else VerificationState.MANUAL_ENTRY
    )

    decision = evaluate(
        request.id_type,
        request.id_expiration_date,
        request.date_of_birth,
        min_age,
        on=on,
        allow_override_expired=allow_override_expired,
    )
    attempt.advance(VerificationState.EVALUATED)
    attempt.advance(VerificationState.PASSED if decision.is_verified else VerificationState.FAILED)

    record = AgeVerificationRecord(
        verification_id=str(uuid.uuid4()),
        record_type=RECORD_EVALUATION,
        store_id=request.store_id,
        customer_id=request.customer_id,
        employee_id=request.employee_id,
        method=request.method,
        state=attempt.state.value,
        id_type=request.id_type,
        id_number_masked=mask_id_number(request.id_number),
        id_issuing_state=request.id_issuing_state,
        id_expiration_date=request.id_expiration_date,
        date_of_birth=request.date_of_birth,
        calculated_age=decision.calculated_age,
        min_age=decision.min_age,
        is_verified=decision.is_verified,
        reason_for_denial=decision.reason_for_denial,
        warnings=list(decision.warnings),
        requires_manager_override=decision.requires_manager_override,
        created_at=utcnow(),
    )
    session.add(record)
    session.commit()

    if audit_sink is not None:
        audit_sink.record(build_entry(
            ACTION_AGE_VERIFICATION_PASSED if decision.is_verified else ACTION_AGE_VERIFICATION_FAILED,
            "age_verification",
            entity_id=record.verification_id,
            actor_id=request.employee_id,
            store_id=request.store_id,
            details={
                "calculated_age": decision.calculated_age,
                "min_age": decision.min_age,
                "id_type": request.id_type,
                "method": request.method,
                "reason_for_denial": decision.reason_for_denial,
                "requires_manager_override": decision.requires_manager_override,
                "warnings": list(decision.warnings),
            },
        ))

    return record, decision


def get_verification(session: Session, verification_id: str) -> AgeVerificationRecord:
    record = session.query(AgeVerificationRecord).filter_by(verification_id=verification_id).first()
    if not record:
        raise VerificationNotFound(f"Verification {verification_id} not found")
    return record


def find_override(session: Session, record: AgeVerificationRecord) -> AgeVerificationRecord | None:
    return (
        session.query(AgeVerificationRecord)
        .filter_by(supersedes_id=record.id, record_type=RECORD_OVERRIDE)
        .first()
    )


def apply_override(
    session: Session,
    verification_id: str,
    manager_id: int,
    reason: str,
    *,
    audit_sink: AuditSink | None = None,
    notes: str | None = None,
) -> AgeVerificationRecord:
    """
    Record a manager override of a failed verification.

    Creates a new OVERRIDE record that supersedes the failed one. The failed
    record is not modified; both are retained.

    Raises:
        ValidationError: If manager_id or reason is missing
        VerificationNotFound: If the verification does not exist
        OverrideNotPermitted: If the record passed, is itself an override,
            was already overridden (also by a concurrent manager), or is
            not eligible (under 18 / policy)
    """
    if manager_id is None:
        raise ValidationError("manager_id required")
    if not reason or not reason.strip():
        raise ValidationError("Override reason required")

    original = get_verification(session, verification_id)

    if original.record_type != RECORD_EVALUATION:
        raise OverrideNotPermitted("Cannot override an override record")
    if original.is_verified:
        raise OverrideNotPermitted("Verification already passed; nothing to override")
    if not original.requires_manager_override:
        raise OverrideNotPermitted(
            "Verification is not eligible for manager override",
            details={"calculated_age": original.calculated_age, "reason_for_denial": original.reason_for_denial},
        )
    if find_override(session, original) is not None:
        raise OverrideNotPermitted("Verification has already been overridden")

    attempt = VerificationAttempt()
    attempt.state = VerificationState(original.state)
    attempt.advance(VerificationState.OVERRIDE_REQUESTED)
    attempt.advance(VerificationState.OVERRIDE_APPLIED)

    override_reason = reason.strip()
    if notes:
        override_reason = f"{override_reason} ({notes.strip()})"

    override = AgeVerificationRecord(
        verification_id=str(uuid.uuid4()),
        record_type=RECORD_OVERRIDE,
        supersedes_id=original.id,
        store_id=original.store_id,
        customer_id=original.customer_id,
        employee_id=original.employee_id,
        method=original.method,
        state=attempt.state.value,
        id_type=original.id_type,
        id_number_masked=original.id_number_masked,
        id_issuing_state=original.id_issuing_state,
        id_expiration_date=original.id_expiration_date,
        date_of_birth=original.date_of_birth,
        calculated_age=original.calculated_age,
        min_age=original.min_age,
        is_verified=True,
        reason_for_denial=original.reason_for_denial,
        warnings=list(original.warnings or []),
        requires_manager_override=False,
        manager_id=manager_id,
        override_reason=override_reason[:255],
        created_at=utcnow(),
    )
    session.add(override)
    try:
        session.commit()
    except IntegrityError as exc:
        # Another manager overrode the same record first
        session.rollback()
        raise OverrideNotPermitted("Verification has already been overridden") from exc

    if audit_sink is not None:
        audit_sink.record(build_entry(
            ACTION_MANAGER_OVERRIDE_APPLIED,
            "age_verification",
            entity_id=override.verification_id,
            actor_id=manager_id,
            actor_role="manager",
            store_id=original.store_id,
            details={
                "overrides_verification_id": original.verification_id,
                "calculated_age": original.calculated_age,
                "original_reason_for_denial": original.reason_for_denial,
                "override_reason": override.override_reason,
                "cashier_id": original.employee_id,
            },
        ))

    return override


def resolve_for_checkout(
    session: Session,
    verification_id: str,
    *,
    store_id: int | None = None,
    ttl_minutes: int = 30,
) -> AgeVerificationRecord:
    """
    Return the record that authorizes a restricted sale.

    Accepts either an evaluation id or an override id. For a failed
    evaluation the superseding override (if any) is the effective record.
    Runs inside the caller's unit of work and does not commit.

    Raises:
        AgeVerificationFailed: If the effective record is not verified, was
            already used by a sale, belongs to another store, or is stale
    """
    record = session.query(AgeVerificationRecord).filter_by(verification_id=verification_id).first()
    if not record:
        raise AgeVerificationFailed(
            "Age verification not found",
            details={"verification_id": verification_id},
        )

    effective = record
    if record.record_type == RECORD_EVALUATION and not record.is_verified:
        effective = find_override(session, record) or record

    if not effective.is_verified:
        raise AgeVerificationFailed(
            effective.reason_for_denial or "Age verification failed",
            details={
                "verification_id": verification_id,
                "requires_manager_override": effective.requires_manager_override,
            },
        )
    if effective.consumed_by_transaction_id is not None:
        raise AgeVerificationFailed(
            "Age verification has already been used for a sale",
            details={"verification_id": effective.verification_id},
        )
    if store_id is not None and effective.store_id is not None and effective.store_id != store_id:
        raise AgeVerificationFailed("Age verification belongs to a different store")
    if effective.created_at is not None and utcnow() - effective.created_at > timedelta(minutes=ttl_minutes):
        raise AgeVerificationFailed(
            "Age verification has expired; verify again",
            details={"verification_id": effective.verification_id, "ttl_minutes": ttl_minutes},
        )
    return effective


def verification_history(session: Session, verification_id: str) -> list[AgeVerificationRecord]:
    """The evaluation record followed by any override of it."""
    record = get_verification(session, verification_id)
    if record.record_type == RECORD_OVERRIDE and record.supersedes_id is not None:
        record = session.get(AgeVerificationRecord, record.supersedes_id)
    history = [record]
    override = find_override(session, record)
    if override is not None:
        history.append(override)
    return history
