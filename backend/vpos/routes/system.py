# backend/vpos/routes/system.py
"""
System health endpoint.

Reports database reachability and the audit spool depth. A growing spool
means the audit transport is down; sales keep working, so that is
"degraded", not "unhealthy".
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from .. import get_audit_sink
from ..models import Store, Product
from vpos.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        store_count = db.session.query(Store).count()
        product_count = db.session.query(Product).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"stores": store_count, "products": product_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_audit_health() -> dict:
    try:
        pending = get_audit_sink().pending_count()
    except Exception:
        current_app.logger.exception("Audit spool health check failed")
        return {"status": "unhealthy", "error": "Audit spool error"}
    if pending:
        return {
            "status": "degraded",
            "warning": f"{pending} audit entries awaiting redelivery",
            "details": {"pending": pending},
        }
    return {"status": "healthy", "details": {"pending": 0}}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database or audit spool unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    audit_health = check_audit_health()

    all_checks = [database_health, audit_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "audit": audit_health,
        },
    }, http_status
