# Overview: Flask API routes for customers and loyalty redemption.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from .. import get_audit_sink
from ..errors import PosError
from ..services import customer_service, loyalty_service
from ..validation import optional_int, optional_str, require_bool, require_date, require_int, require_str


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("")
def create_customer_route():
    """
    Register a customer.

    Request body:
    {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",           (optional)
        "phone": "555-0100",                  (optional)
        "date_of_birth": "1990-05-01",        (optional)
        "is_tax_exempt": false,               (optional)
        "tax_exemption_number": "EX-123",     (required when tax exempt)
        "employee_id": 3
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        dob = data.get("date_of_birth")

        customer = customer_service.register_customer(
            db.session,
            first_name=require_str(data.get("first_name"), "first_name", max_length=128),
            last_name=require_str(data.get("last_name"), "last_name", max_length=128),
            email=optional_str(data.get("email"), "email"),
            phone=optional_str(data.get("phone"), "phone", max_length=32),
            date_of_birth=require_date(dob, "date_of_birth") if dob else None,
            is_tax_exempt=require_bool(data.get("is_tax_exempt"), "is_tax_exempt"),
            tax_exemption_number=optional_str(data.get("tax_exemption_number"), "tax_exemption_number", max_length=64),
            actor_id=optional_int(data.get("employee_id"), "employee_id"),
            audit_sink=get_audit_sink(),
        )
        return jsonify({"customer": customer.to_dict()}), 201

    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(db.session, customer_id)
        return jsonify({
            "customer": customer.to_dict(),
            "loyalty": loyalty_service.loyalty_summary(customer),
        }), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/loyalty/redeem")
def redeem_points_route(customer_id: int):
    """
    Redeem loyalty points outside a checkout.

    Request body: {"points": 100, "reason": "Free lighter", "employee_id": 3}

    Returns:
        200: updated customer
        404: customer not found
        409: insufficient points (balance unchanged)
    """
    try:
        data = request.get_json(silent=True) or {}
        customer = loyalty_service.redeem(
            db.session,
            customer_id,
            require_int(data.get("points"), "points", minimum=1),
            require_str(data.get("reason"), "reason"),
            actor_id=optional_int(data.get("employee_id"), "employee_id"),
            audit_sink=get_audit_sink(),
        )
        return jsonify({
            "customer": customer.to_dict(),
            "loyalty": loyalty_service.loyalty_summary(customer),
        }), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to redeem loyalty points")
        return jsonify({"error": "Internal server error"}), 500
