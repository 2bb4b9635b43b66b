# Overview: Flask API routes for product stock adjustment and deactivation.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from .. import get_audit_sink
from ..errors import PosError
from ..services import inventory_service
from ..validation import optional_int, optional_str, require_int, require_str


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = inventory_service.get_product(db.session, product_id)
        return jsonify({"product": product.to_dict()}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/adjust")
def adjust_inventory_route(product_id: int):
    """
    Adjust on-hand stock.

    Request body: {"quantity_delta": -2, "reason": "Damaged", "employee_id": 3}

    Returns:
        200: updated product
        400: zero delta or missing reason
        404: product not found
        409: adjustment would make on-hand negative
    """
    try:
        data = request.get_json(silent=True) or {}
        product = inventory_service.adjust_inventory(
            db.session,
            product_id,
            require_int(data.get("quantity_delta"), "quantity_delta"),
            require_str(data.get("reason"), "reason"),
            actor_id=optional_int(data.get("employee_id"), "employee_id"),
            audit_sink=get_audit_sink(),
        )
        return jsonify({"product": product.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust inventory")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/deactivate")
def deactivate_product_route(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        product = inventory_service.deactivate_product(
            db.session,
            product_id,
            actor_id=optional_int(data.get("employee_id"), "employee_id"),
            reason=optional_str(data.get("reason"), "reason"),
            audit_sink=get_audit_sink(),
        )
        return jsonify({"product": product.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to deactivate product")
        return jsonify({"error": "Internal server error"}), 500
