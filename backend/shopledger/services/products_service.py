# backend/shopledger/services/products_service.py
"""
Catalogue of stock-bearing products and non-stock services.

Products are department-scoped, except global ml rows (department_id NULL)
which hold shared scent stock every department may draw from.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Department, Product, ProductVariant, Service
from ..models.inventory import TRACKING_ML, TRACKING_QUANTITY
from ..validation import MAX_AMOUNT_CENTS, MAX_QUANTITY, ModelValidationPolicy, enforce_rules_product, validate_payload


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "department_id", "name", "sku", "tracking_type", "stock", "quantity_per_unit",
        "stock_ml", "min_stock", "price_cents", "wholesale_price_cents", "cost_price_cents", "is_active",
    },
    required_on_create={"name", "tracking_type"},
)

VARIANT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "sku", "size", "color", "price_cents", "stock", "is_active"},
    required_on_create={"name"},
)

SERVICE_POLICY = ModelValidationPolicy(
    writable_fields={"department_id", "name", "price_cents", "material_cost_cents", "is_active"},
    required_on_create={"department_id", "name"},
)


def get_department(department_id: int) -> Department:
    department = db.session.get(Department, department_id)
    if department is None:
        raise NotFound("department", department_id)
    return department


def create_department(name: str, kind: str = "general") -> Department:
    if not name or not name.strip():
        raise ValidationError("Department name is required")
    department = Department(name=name.strip(), kind=kind)
    db.session.add(department)
    db.session.commit()
    return department


def list_departments() -> list[Department]:
    return db.session.query(Department).order_by(Department.name.asc()).all()


def create_product(payload: dict) -> Product:
    """
    Create a product from a JSON-like payload.

    The stock column that does not belong to the tracking model must stay
    at zero; opening stock goes into the model's own column.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    tracking_type = patch["tracking_type"]
    if tracking_type not in (TRACKING_QUANTITY, TRACKING_ML):
        raise ValidationError("tracking_type must be 'quantity' or 'ml'")
    if tracking_type == TRACKING_QUANTITY and patch.get("stock_ml"):
        raise ValidationError("Quantity-tracked products cannot hold stock_ml")
    if tracking_type == TRACKING_ML and patch.get("stock"):
        raise ValidationError("Volume-tracked products cannot hold unit stock")
    if tracking_type == TRACKING_QUANTITY and patch.get("department_id") is None:
        raise ValidationError("Only scent (ml) products may be global; department_id is required")

    if patch.get("department_id") is not None:
        get_department(patch["department_id"])

    product = Product(**patch)
    db.session.add(product)
    db.session.commit()
    return product


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound("product", product_id)
    return product


def list_products(
    department_id: int | None = None,
    *,
    include_global: bool = True,
    tracking_type: str | None = None,
    active_only: bool = True,
) -> list[Product]:
    query = db.session.query(Product)
    if department_id is not None:
        if include_global:
            query = query.filter(or_(Product.department_id == department_id, Product.department_id.is_(None)))
        else:
            query = query.filter(Product.department_id == department_id)
    if tracking_type is not None:
        query = query.filter(Product.tracking_type == tracking_type)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def create_service(payload: dict) -> Service:
    patch = validate_payload(model=Service, payload=payload, policy=SERVICE_POLICY, partial=False)
    for key in ("price_cents", "material_cost_cents"):
        if patch.get(key) is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
    get_department(patch["department_id"])

    service = Service(**patch)
    db.session.add(service)
    db.session.commit()
    return service


def get_service(service_id: int) -> Service:
    service = db.session.get(Service, service_id)
    if service is None:
        raise NotFound("service", service_id)
    return service


def create_variant(product_id: int, payload: dict) -> ProductVariant:
    """Add a variant to a quantity product; opening stock is in units."""
    product = get_product(product_id)
    if product.tracking_type != TRACKING_QUANTITY:
        raise ValidationError("Only quantity-tracked products can have variants")

    patch = validate_payload(model=ProductVariant, payload=payload, policy=VARIANT_POLICY, partial=False)
    if patch.get("stock") is not None and not 0 <= patch["stock"] <= MAX_QUANTITY:
        raise ValidationError(f"stock must be between 0 and {MAX_QUANTITY}")
    if patch.get("price_cents") is not None and not 0 <= patch["price_cents"] <= MAX_AMOUNT_CENTS:
        raise ValidationError(f"price_cents must be between 0 and {MAX_AMOUNT_CENTS}")

    variant = ProductVariant(product_id=product.id, **patch)
    db.session.add(variant)
    db.session.commit()
    return variant


def get_variant(variant_id: int) -> ProductVariant:
    variant = db.session.get(ProductVariant, variant_id)
    if variant is None:
        raise NotFound("variant", variant_id)
    return variant


def list_variants(product_id: int, *, active_only: bool = True) -> list[ProductVariant]:
    get_product(product_id)
    query = db.session.query(ProductVariant).filter(ProductVariant.product_id == product_id)
    if active_only:
        query = query.filter(ProductVariant.is_active.is_(True))
    return query.order_by(ProductVariant.id.asc()).all()
