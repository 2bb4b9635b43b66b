# Overview: Read-only audit log query endpoint.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import PosError, ValidationError
from ..services.audit_service import SEVERITY_ORDER, query_audit_log
from ..time_utils import parse_iso_datetime
from ..validation import optional_int, optional_str


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


def _parse_bound(name: str):
    value = request.args.get(name)
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


@audit_bp.get("")
def query_audit_route():
    """
    Filtered audit log, newest first.

    Query params: start, end (ISO-8601, inclusive), actor_id, action,
    severity, entity_type, store_id, limit (max 500), offset
    """
    try:
        severity = optional_str(request.args.get("severity"), "severity", max_length=16)
        if severity is not None and severity not in SEVERITY_ORDER:
            raise ValidationError(f"severity must be one of {list(SEVERITY_ORDER)}")

        limit = min(optional_int(request.args.get("limit"), "limit", minimum=1) or 100, 500)
        offset = optional_int(request.args.get("offset"), "offset", minimum=0) or 0

        entries, total = query_audit_log(
            db.session,
            start=_parse_bound("start"),
            end=_parse_bound("end"),
            actor_id=optional_str(request.args.get("actor_id"), "actor_id", max_length=64),
            action=optional_str(request.args.get("action"), "action", max_length=64),
            severity=severity,
            entity_type=optional_str(request.args.get("entity_type"), "entity_type", max_length=64),
            store_id=optional_int(request.args.get("store_id"), "store_id"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "entries": [e.to_dict() for e in entries],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to query audit log")
        return jsonify({"error": "Internal server error"}), 500
