# Overview: Flask API routes for checkout, transactions and receipts.

# backend/vpos/routes/checkout.py
"""
Checkout API Routes

The register submits the whole cart in one request; the response is the
committed transaction (with line items) or a coded error. The employee
id travels in the body; authentication happens in front of this service.
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from .. import get_audit_sink
from ..errors import PosError, ValidationError
from ..money import decimal_to_cents
from ..services import checkout_service, receipt_service
from ..services.checkout_service import CartLine, CheckoutConfig, CheckoutRequest
from ..validation import optional_int, optional_str, require_bool, require_cents, require_decimal, require_int


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")


def _parse_cash_tendered(data: dict) -> int | None:
    if data.get("cash_tendered_cents") is not None:
        return require_cents(data["cash_tendered_cents"], "cash_tendered_cents")
    if data.get("cash_tendered") is not None:
        amount = require_decimal(data["cash_tendered"], "cash_tendered")
        if amount < 0:
            raise ValidationError("cash_tendered cannot be negative")
        return decimal_to_cents(amount)
    return None


def _parse_checkout_request(data: dict) -> CheckoutRequest:
    items = data.get("cart_items")
    if items is None:
        items = data.get("lines")
    if items is None:
        items = []
    if not isinstance(items, list):
        raise ValidationError("cart_items must be a list")

    lines = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("cart_items entries must be objects", details={"line_index": index})
        lines.append(CartLine(
            product_id=require_int(item.get("product_id"), "product_id"),
            # Sign and zero are checked by the orchestrator (InvalidQuantity)
            quantity=require_int(item.get("quantity"), "quantity"),
        ))

    return CheckoutRequest(
        store_id=require_int(data.get("store_id"), "store_id"),
        lines=tuple(lines),
        payment_method=(optional_str(data.get("payment_method"), "payment_method", max_length=32) or "").upper(),
        customer_id=optional_int(data.get("customer_id"), "customer_id"),
        cash_tendered_cents=_parse_cash_tendered(data),
        age_verification_completed=require_bool(data.get("age_verification_completed"), "age_verification_completed"),
        age_verification_id=optional_str(data.get("age_verification_id"), "age_verification_id", max_length=36),
        employee_id=optional_int(data.get("employee_id"), "employee_id"),
        points_to_redeem=optional_int(data.get("points_to_redeem"), "points_to_redeem", minimum=0) or 0,
        payment_reference=optional_str(data.get("payment_reference"), "payment_reference", max_length=128),
    )


@checkout_bp.post("/checkout")
def checkout_route():
    """
    Run a checkout.

    Request body:
    {
        "store_id": 1,
        "cart_items": [{"product_id": 10, "quantity": 2}],
        "payment_method": "CASH",            (CASH, CARD, GIFT_CARD)
        "cash_tendered": "25.00",            (or cash_tendered_cents; CASH only)
        "customer_id": 5,                    (optional)
        "age_verification_id": "<uuid>",     (optional, restricted items)
        "age_verification_completed": true,  (optional, register attestation)
        "points_to_redeem": 100,             (optional)
        "employee_id": 3
    }

    Returns:
        201: Committed transaction
        400/402/403/404/409: Coded domain error
        503: Persistence failure (nothing recorded)
    """
    try:
        data = request.get_json(silent=True) or {}
        checkout_request = _parse_checkout_request(data)

        txn = checkout_service.checkout(
            db.session,
            checkout_request,
            audit_sink=get_audit_sink(),
            payment_gateway=current_app.extensions.get("vpos_payment_gateway"),
            config=CheckoutConfig.from_app_config(current_app.config),
        )
        return jsonify({"transaction": txn.to_dict()}), 201

    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Checkout failed")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/transactions")
def list_transactions_route():
    try:
        store_id = optional_int(request.args.get("store_id"), "store_id")
        customer_id = optional_int(request.args.get("customer_id"), "customer_id")
        limit = min(optional_int(request.args.get("limit"), "limit", minimum=1) or 50, 200)
        offset = optional_int(request.args.get("offset"), "offset", minimum=0) or 0

        items, total = checkout_service.list_transactions(
            db.session,
            store_id=store_id,
            customer_id=customer_id,
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "transactions": [t.to_dict(include_lines=False) for t in items],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/transactions/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        txn = checkout_service.get_transaction(db.session, transaction_id)
        return jsonify({"transaction": txn.to_dict()}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get transaction")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/transactions/<int:transaction_id>/receipt")
def get_receipt_route(transaction_id: int):
    """
    Receipt projection. ?format=text returns the 40-column printer text.
    """
    try:
        receipt = receipt_service.build_receipt(db.session, transaction_id)
        if request.args.get("format") == "text":
            text = receipt_service.format_receipt_text(receipt)
            return current_app.response_class(text, mimetype="text/plain"), 200
        return jsonify({"receipt": receipt}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build receipt")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/stores/<int:store_id>/receipts/<receipt_number>")
def get_receipt_by_number_route(store_id: int, receipt_number: str):
    """Look a sale up by the number printed on its receipt."""
    try:
        txn = checkout_service.get_transaction_by_receipt(db.session, store_id, receipt_number)
        return jsonify({"receipt": receipt_service.build_receipt(db.session, txn.id)}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to look up receipt")
        return jsonify({"error": "Internal server error"}), 500
