# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""Sales API routes: complete, read, receipt, void."""

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError, NotFound, ValidationError
from ..services import preference_service, sales_service
from ..validation import parse_window


sales_bp = Blueprint("sales", __name__, url_prefix="/api")


@sales_bp.post("/sales")
def complete_sale_route():
    """
    Complete a sale in one call.

    Body: {"department_id", "cashier_name", "payment_method", "customer_id"?,
    "customer_email"?, "amount_paid_cents"?, "remarks"?, "items": [...]}

    Each item is a product line ({"product_id", "quantity", "unit"?}), a
    service line ({"service_id", "quantity"}) or a blend line
    ({"scents": [{"scent", "ml", "scent_id"?}], "total_ml"?}); all lines
    carry "name", "unit_price_cents" and "customer_type".
    """
    try:
        data = request.get_json(silent=True) or {}
        items = data.get("items") or []
        if not isinstance(items, list):
            raise ValidationError("items must be a list")

        receipt = sales_service.complete_sale(items, {k: v for k, v in data.items() if k != "items"})
        return jsonify({"receipt": receipt.to_dict(), "warnings": receipt.warnings}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to complete sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/sales")
def list_sales_route():
    try:
        department_id = request.args.get("department_id", type=int)
        if not department_id:
            raise ValidationError("department_id is required")
        start, end = parse_window(request.args.get("start"), request.args.get("end"))

        sales = sales_service.list_sales(
            department_id,
            start=start,
            end=end,
            status=request.args.get("status"),
            payment_method=request.args.get("payment_method"),
        )
        return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@sales_bp.get("/sales/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        payload = sale.to_dict()
        payload["items"] = [item.to_dict() for item in sale.items]
        return jsonify({"sale": payload}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@sales_bp.get("/sales/<int:sale_id>/receipt")
def get_receipt_route(sale_id: int):
    try:
        receipt = sales_service.build_receipt(sale_id)
        return jsonify({"receipt": receipt.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@sales_bp.post("/sales/<int:sale_id>/void")
def void_sale_route(sale_id: int):
    """Body: {"reason": "...", "actor": "..."}. Stock is put back."""
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.void_sale(sale_id, data.get("reason"), data.get("actor"))
        return jsonify({"sale": sale.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/customers/<int:customer_id>/preferences")
def customer_preferences_route(customer_id: int):
    pref = preference_service.get_customer_preferences(customer_id)
    if pref is None:
        e = NotFound("customer preferences", customer_id)
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"preferences": pref.to_dict()}), 200
