from datetime import date, timedelta

import pytest

from vpos.errors import AgeVerificationFailed, OverrideNotPermitted, ValidationError, VerificationNotFound
from vpos.models import AgeVerificationRecord
from vpos.services import age_verification_service as avs
from vpos.services.age_verification_service import (
    VerificationAttempt,
    VerificationRequest,
    VerificationState,
)
from vpos.time_utils import utcnow


ON = date(2026, 10, 19)
VALID_UNTIL = date(2030, 1, 1)


def _request(dob, *, expires=VALID_UNTIL, store=None, id_type="drivers_license", id_number="D1234567"):
    return VerificationRequest(
        id_type=id_type,
        id_number=id_number,
        id_expiration_date=expires,
        date_of_birth=dob,
        store_id=store.id if store is not None else None,
        employee_id=7,
    )


# =============================================================================
# PURE ADJUDICATION
# =============================================================================

def test_birthday_today_counts():
    assert avs.calculate_age(date(2005, 10, 19), ON) == 21
    assert avs.calculate_age(date(2005, 10, 20), ON) == 20


def test_leap_day_birthday_ages_on_march_first():
    dob = date(2004, 2, 29)
    assert avs.calculate_age(dob, date(2025, 2, 28)) == 20
    assert avs.calculate_age(dob, date(2025, 3, 1)) == 21


def test_id_is_valid_through_its_expiration_date():
    assert avs.is_id_expired(ON, ON) is False
    assert avs.is_id_expired(ON - timedelta(days=1), ON) is True


def test_adult_with_valid_id_passes():
    decision = avs.evaluate("drivers_license", VALID_UNTIL, date(1990, 5, 1), 21, on=ON)
    assert decision.is_verified is True
    assert decision.calculated_age == 36
    assert decision.reason_for_denial is None
    assert decision.requires_manager_override is False
    assert decision.warnings == ()


def test_age_twenty_fails_but_allows_override():
    decision = avs.evaluate("drivers_license", VALID_UNTIL, date(2006, 1, 15), 21, on=ON)
    assert decision.is_verified is False
    assert decision.calculated_age == 20
    assert decision.requires_manager_override is True
    assert decision.reason_for_denial == "Customer age (20) is below minimum age requirement (21)"
    assert decision.warnings == ("Customer is under 21 (tobacco age restriction)",)


def test_under_eighteen_never_offers_override():
    decision = avs.evaluate("drivers_license", VALID_UNTIL, date(2010, 1, 1), 21, on=ON)
    assert decision.is_verified is False
    assert decision.requires_manager_override is False
    assert "Customer is under 18" in decision.warnings


def test_expired_id_reason_takes_precedence_over_age():
    decision = avs.evaluate("state_id", date(2026, 1, 1), date(2006, 1, 15), 21, on=ON)
    assert decision.is_verified is False
    assert decision.id_expired is True
    assert decision.reason_for_denial == "Expired identification document"
    assert decision.warnings[0] == "ID has expired"
    assert len(decision.warnings) == 2


def test_expired_adult_override_follows_policy():
    allowed = avs.evaluate("passport", date(2026, 1, 1), date(1980, 1, 1), 21, on=ON)
    denied = avs.evaluate(
        "passport", date(2026, 1, 1), date(1980, 1, 1), 21, on=ON, allow_override_expired=False
    )
    assert allowed.requires_manager_override is True
    assert denied.requires_manager_override is False


def test_future_birth_date_is_rejected():
    with pytest.raises(ValidationError):
        avs.evaluate("drivers_license", VALID_UNTIL, ON + timedelta(days=1), 21, on=ON)


def test_unknown_id_type_is_rejected():
    with pytest.raises(ValidationError):
        avs.evaluate("library_card", VALID_UNTIL, date(1990, 1, 1), 21, on=ON)


def test_id_number_formats():
    assert avs.validate_id_format("passport", "x1234567z") is True
    assert avs.validate_id_format("passport", "12345") is False
    assert avs.validate_id_format("drivers_license", "D 123 456") is True
    assert avs.validate_id_format("military_id", "1234567") is False
    assert avs.mask_id_number("D1234567") == "****4567"
    assert avs.mask_id_number("123") == "****"


def test_state_compliance_lookup():
    assert avs.get_state_compliance("ny")["tobacco_age"] == 21
    assert "military_id" in avs.get_state_compliance("CA")["acceptable_ids"]
    assert avs.get_state_compliance("WY", default_min_age=19)["tobacco_age"] == 19
    assert avs.get_state_compliance(None)["tobacco_age"] == 21


def test_state_machine_rejects_skipped_steps():
    attempt = VerificationAttempt()
    with pytest.raises(ValidationError):
        attempt.advance(VerificationState.PASSED)

    attempt.advance(VerificationState.SCANNER_READ)
    attempt.advance(VerificationState.EVALUATED)
    attempt.advance(VerificationState.PASSED)
    assert attempt.is_terminal

    with pytest.raises(ValidationError):
        attempt.advance(VerificationState.OVERRIDE_REQUESTED)


def test_failed_attempt_can_only_move_to_override():
    attempt = VerificationAttempt()
    for state in (VerificationState.MANUAL_ENTRY, VerificationState.EVALUATED, VerificationState.FAILED):
        attempt.advance(state)
    assert not attempt.is_terminal
    attempt.advance(VerificationState.OVERRIDE_REQUESTED)
    attempt.advance(VerificationState.OVERRIDE_APPLIED)
    assert attempt.history[-1] == VerificationState.OVERRIDE_APPLIED
    assert attempt.is_terminal


# =============================================================================
# PERSISTED ATTEMPTS AND OVERRIDES
# =============================================================================

def test_failed_attempt_is_persisted_and_audited_high(db_session, store_ny, audit_sink, audit_transport):
    record, decision = avs.record_verification(
        db_session, _request(date(2006, 1, 15), store=store_ny), audit_sink=audit_sink, on=ON
    )

    assert decision.is_verified is False
    assert record.state == VerificationState.FAILED.value
    assert record.record_type == avs.RECORD_EVALUATION
    assert record.min_age == 21
    assert record.id_number_masked == "****4567"
    assert record.requires_manager_override is True

    [entry] = audit_transport.sent
    assert entry.action == "age_verification_failed"
    assert entry.severity == "high"
    assert entry.entity_id == record.verification_id


def test_default_min_age_applies_to_unlisted_jurisdiction(db_session, store_default):
    record, decision = avs.record_verification(
        db_session, _request(date(2006, 1, 15), store=store_default), default_min_age=19, on=ON
    )
    assert decision.is_verified is True
    assert record.min_age == 19
    assert record.state == VerificationState.PASSED.value


def test_bad_id_number_is_rejected_before_anything_is_stored(db_session, store_ny):
    with pytest.raises(ValidationError):
        avs.record_verification(db_session, _request(date(1990, 1, 1), store=store_ny, id_number="12"), on=ON)
    assert db_session.query(AgeVerificationRecord).count() == 0


def test_override_keeps_failed_record_and_adds_new_one(db_session, store_ny, audit_sink, audit_transport):
    failed, _ = avs.record_verification(db_session, _request(date(2006, 1, 15), store=store_ny), on=ON)

    override = avs.apply_override(
        db_session, failed.verification_id, 42, "Known regular, ID renewal pending", audit_sink=audit_sink
    )

    assert override.record_type == avs.RECORD_OVERRIDE
    assert override.supersedes_id == failed.id
    assert override.is_verified is True
    assert override.manager_id == 42
    assert override.state == VerificationState.OVERRIDE_APPLIED.value

    db_session.expire_all()
    original = avs.get_verification(db_session, failed.verification_id)
    assert original.is_verified is False
    assert original.state == VerificationState.FAILED.value
    assert db_session.query(AgeVerificationRecord).count() == 2

    history = avs.verification_history(db_session, override.verification_id)
    assert [r.record_type for r in history] == ["EVALUATION", "OVERRIDE"]

    [entry] = audit_transport.sent
    assert entry.action == "manager_override_applied"
    assert entry.severity == "critical"
    assert entry.actor_id == "42"
    assert entry.details["overrides_verification_id"] == failed.verification_id


def test_override_is_applied_at_most_once(db_session, store_ny):
    failed, _ = avs.record_verification(db_session, _request(date(2006, 1, 15), store=store_ny), on=ON)
    avs.apply_override(db_session, failed.verification_id, 42, "Approved")

    with pytest.raises(OverrideNotPermitted):
        avs.apply_override(db_session, failed.verification_id, 43, "Approved again")


def test_simultaneous_overrides_create_one_record(db_session, store_ny, monkeypatch):
    failed, _ = avs.record_verification(db_session, _request(date(2006, 1, 15), store=store_ny), on=ON)
    avs.apply_override(db_session, failed.verification_id, 42, "Approved")

    # Second manager read the record before the first override landed
    monkeypatch.setattr(avs, "find_override", lambda session, record: None)
    with pytest.raises(OverrideNotPermitted):
        avs.apply_override(db_session, failed.verification_id, 43, "Approved again")

    overrides = db_session.query(AgeVerificationRecord).filter_by(supersedes_id=failed.id).all()
    assert [o.manager_id for o in overrides] == [42]


def test_override_refused_for_minor(db_session, store_ny):
    failed, _ = avs.record_verification(db_session, _request(date(2010, 1, 1), store=store_ny), on=ON)
    with pytest.raises(OverrideNotPermitted):
        avs.apply_override(db_session, failed.verification_id, 42, "Looks old enough")


def test_override_refused_for_passed_record(db_session, store_ny):
    passed, _ = avs.record_verification(db_session, _request(date(1990, 1, 1), store=store_ny), on=ON)
    with pytest.raises(OverrideNotPermitted):
        avs.apply_override(db_session, passed.verification_id, 42, "No reason")


def test_override_requires_reason(db_session, store_ny):
    failed, _ = avs.record_verification(db_session, _request(date(2006, 1, 15), store=store_ny), on=ON)
    with pytest.raises(ValidationError):
        avs.apply_override(db_session, failed.verification_id, 42, "   ")


def test_unknown_verification_id(db_session):
    with pytest.raises(VerificationNotFound):
        avs.get_verification(db_session, "no-such-id")


def test_resolve_uses_override_of_failed_evaluation(db_session, store_ny):
    failed, _ = avs.record_verification(db_session, _request(date(2006, 1, 15), store=store_ny), on=ON)

    with pytest.raises(AgeVerificationFailed):
        avs.resolve_for_checkout(db_session, failed.verification_id, store_id=store_ny.id)

    override = avs.apply_override(db_session, failed.verification_id, 42, "Approved")
    effective = avs.resolve_for_checkout(db_session, failed.verification_id, store_id=store_ny.id)
    assert effective.id == override.id


def test_resolve_rejects_other_store(db_session, store_ny, store_default):
    passed, _ = avs.record_verification(db_session, _request(date(1990, 1, 1), store=store_ny), on=ON)
    with pytest.raises(AgeVerificationFailed):
        avs.resolve_for_checkout(db_session, passed.verification_id, store_id=store_default.id)


def test_resolve_rejects_stale_verification(db_session, store_ny):
    passed, _ = avs.record_verification(db_session, _request(date(1990, 1, 1), store=store_ny), on=ON)
    passed.created_at = utcnow() - timedelta(minutes=45)
    db_session.commit()

    with pytest.raises(AgeVerificationFailed) as exc_info:
        avs.resolve_for_checkout(db_session, passed.verification_id, ttl_minutes=30)
    assert exc_info.value.details["ttl_minutes"] == 30


def test_resolve_unknown_id_fails_closed(db_session):
    with pytest.raises(AgeVerificationFailed):
        avs.resolve_for_checkout(db_session, "missing")
