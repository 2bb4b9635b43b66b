# Overview: Flask API routes for age verification attempts and manager overrides.

# backend/vpos/routes/age_verification.py
"""
Age Verification API Routes

POST /api/age-verification records one attempt and returns the decision.
A failed attempt that allows it can be overridden by a manager; the
override is a new record and its verification_id is what checkout should
receive. The failed record stays as evidence.
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from .. import get_audit_sink
from ..errors import PosError
from ..services import age_verification_service
from ..services.age_verification_service import VerificationRequest
from ..validation import optional_int, optional_str, require_date, require_int, require_str


age_verification_bp = Blueprint("age_verification", __name__, url_prefix="/api/age-verification")


@age_verification_bp.post("")
def verify_age_route():
    """
    Record a verification attempt.

    Request body:
    {
        "id_type": "drivers_license",     (drivers_license, state_id, passport, military_id)
        "id_number": "D1234567",
        "id_expiration_date": "2030-01-01",
        "date_of_birth": "1990-05-01",
        "method": "MANUAL",               (MANUAL, SCANNER)
        "id_issuing_state": "NY",         (optional)
        "store_id": 1,                    (optional; selects the minimum age)
        "customer_id": 5,                 (optional)
        "employee_id": 3
    }

    Returns:
        201: verification record plus decision
        400: Invalid input
    """
    try:
        data = request.get_json(silent=True) or {}

        verification_request = VerificationRequest(
            id_type=require_str(data.get("id_type"), "id_type", max_length=32),
            id_number=require_str(data.get("id_number"), "id_number", max_length=64),
            id_expiration_date=require_date(data.get("id_expiration_date"), "id_expiration_date"),
            date_of_birth=require_date(data.get("date_of_birth"), "date_of_birth"),
            method=(optional_str(data.get("method"), "method", max_length=16) or "MANUAL").upper(),
            id_issuing_state=optional_str(data.get("id_issuing_state"), "id_issuing_state", max_length=8),
            store_id=optional_int(data.get("store_id"), "store_id"),
            customer_id=optional_int(data.get("customer_id"), "customer_id"),
            employee_id=optional_int(data.get("employee_id"), "employee_id"),
        )

        record, decision = age_verification_service.record_verification(
            db.session,
            verification_request,
            audit_sink=get_audit_sink(),
            default_min_age=current_app.config["MIN_TOBACCO_AGE"],
            allow_override_expired=current_app.config["ALLOW_OVERRIDE_EXPIRED_ID"],
        )
        return jsonify({"verification": record.to_dict(), "decision": decision.to_dict()}), 201

    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Age verification failed")
        return jsonify({"error": "Internal server error"}), 500


@age_verification_bp.post("/<verification_id>/override")
def override_route(verification_id: str):
    """
    Manager override of a failed verification.

    Request body:
    {
        "manager_id": 2,
        "reason": "Customer known to store, ID renewal in progress",
        "notes": "..."   (optional)
    }

    Returns:
        201: the new OVERRIDE record
        400: missing manager or reason
        404: verification not found
        409: override not permitted for this record
    """
    try:
        data = request.get_json(silent=True) or {}
        manager_id = require_int(data.get("manager_id"), "manager_id")
        reason = require_str(data.get("reason"), "reason", max_length=255)

        override = age_verification_service.apply_override(
            db.session,
            verification_id,
            manager_id,
            reason,
            audit_sink=get_audit_sink(),
            notes=optional_str(data.get("notes"), "notes", max_length=255),
        )
        return jsonify({"verification": override.to_dict()}), 201

    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Manager override failed")
        return jsonify({"error": "Internal server error"}), 500


@age_verification_bp.get("/<verification_id>")
def get_verification_route(verification_id: str):
    """The evaluation record and, if present, the override that superseded it."""
    try:
        history = age_verification_service.verification_history(db.session, verification_id)
        return jsonify({"records": [r.to_dict() for r in history]}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get verification")
        return jsonify({"error": "Internal server error"}), 500


@age_verification_bp.get("/compliance/<state>")
def compliance_route(state: str):
    rules = age_verification_service.get_state_compliance(state, current_app.config["MIN_TOBACCO_AGE"])
    return jsonify({"state": state.upper(), **rules}), 200
