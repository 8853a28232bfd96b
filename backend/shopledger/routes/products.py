# Overview: Flask API routes for departments, products, services and stock.

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError, ValidationError
from ..models.inventory import Units
from ..services import products_service, stock_service


products_bp = Blueprint("products", __name__, url_prefix="/api")


def _level_dict(level) -> dict:
    if isinstance(level, Units):
        return {"unit": level.unit, "count": level.count}
    return {"unit": level.unit, "ml": level.ml}


@products_bp.get("/departments")
def list_departments_route():
    departments = products_service.list_departments()
    return jsonify({"items": [d.to_dict() for d in departments], "count": len(departments)}), 200


@products_bp.post("/departments")
def create_department_route():
    try:
        data = request.get_json(silent=True) or {}
        department = products_service.create_department(data.get("name"), data.get("kind") or "general")
        return jsonify({"department": department.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create department")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/products")
def list_products_route():
    department_id = request.args.get("department_id", type=int)
    include_global = request.args.get("include_global", "true").lower() == "true"
    tracking_type = request.args.get("tracking_type")

    products = products_service.list_products(
        department_id,
        include_global=include_global,
        tracking_type=tracking_type,
    )
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@products_bp.post("/products")
def create_product_route():
    try:
        product = products_service.create_product(request.get_json(silent=True))
        return jsonify({"product": product.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.get("/products/<int:product_id>/stock")
def get_stock_route(product_id: int):
    try:
        level = stock_service.get_level(product_id)
        return jsonify({"product_id": product_id, "level": _level_dict(level)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.post("/products/<int:product_id>/stock/receive")
def receive_stock_route(product_id: int):
    """
    Restock a product.

    Body: {"amount": 12, "unit": "quantity" | "ml", "actor": "...", "note": "..."}
    Quantity amounts are packs; each pack adds quantity_per_unit units.
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("amount") in (None, "") or not data.get("unit"):
            raise ValidationError("amount and unit are required")

        level = stock_service.increment(
            product_id,
            data["amount"],
            data["unit"],
            reason="RECEIVE",
            note=data.get("note"),
            actor=data.get("actor"),
        )
        return jsonify({"product_id": product_id, "level": _level_dict(level)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/products/<int:product_id>/movements")
def list_movements_route(product_id: int):
    try:
        products_service.get_product(product_id)
        limit = min(request.args.get("limit", 100, type=int), 500)
        movements = stock_service.list_movements(product_id, limit=limit)
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.post("/services")
def create_service_route():
    try:
        service = products_service.create_service(request.get_json(silent=True))
        return jsonify({"service": service.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create service")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/services/<int:service_id>")
def get_service_route(service_id: int):
    try:
        return jsonify({"service": products_service.get_service(service_id).to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.get("/products/low-stock")
def low_stock_route():
    try:
        department_id = request.args.get("department_id", type=int)
        if not department_id:
            raise ValidationError("department_id is required")
        products_service.get_department(department_id)
        alerts = stock_service.list_low_stock(department_id)
        return jsonify({
            "items": [a.to_dict() for a in alerts],
            "count": len(alerts),
            "out_of_stock": sum(1 for a in alerts if a.out_of_stock),
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.get("/products/<int:product_id>/variants")
def list_variants_route(product_id: int):
    try:
        variants = products_service.list_variants(product_id)
        return jsonify({"items": [v.to_dict() for v in variants], "count": len(variants)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.post("/products/<int:product_id>/variants")
def create_variant_route(product_id: int):
    try:
        variant = products_service.create_variant(product_id, request.get_json(silent=True))
        return jsonify({"variant": variant.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create variant")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/variants/<int:variant_id>")
def get_variant_route(variant_id: int):
    try:
        return jsonify({"variant": products_service.get_variant(variant_id).to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.post("/variants/<int:variant_id>/stock/receive")
def receive_variant_stock_route(variant_id: int):
    """Body: {"amount": 12, "actor": "...", "note": "..."}; amounts are whole units."""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("amount") in (None, ""):
            raise ValidationError("amount is required")

        level = stock_service.increment_variant(
            variant_id,
            data["amount"],
            reason="RECEIVE",
            note=data.get("note"),
            actor=data.get("actor"),
        )
        return jsonify({"variant_id": variant_id, "level": _level_dict(level)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to receive variant stock")
        return jsonify({"error": "Internal server error"}), 500
