from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from sqlalchemy.orm import validates

from ..extensions import db
from ..time_utils import to_utc_z


TRACKING_QUANTITY = "quantity"
TRACKING_ML = "ml"
TRACKING_TYPES = (TRACKING_QUANTITY, TRACKING_ML)


@dataclass(frozen=True)
class Units:
    """Discrete on-hand stock (packs already expanded to physical units)."""
    count: int
    unit = TRACKING_QUANTITY


@dataclass(frozen=True)
class Volume:
    """Continuous on-hand stock in millilitres."""
    ml: float
    unit = TRACKING_ML


Stock = Union[Units, Volume]


@dataclass(frozen=True)
class Scope:
    """Either one department or global (shared scent capital)."""
    department_id: int | None

    def visible_from(self, department_id: int | None) -> bool:
        return self.is_global or self.department_id == department_id

    @property
    def is_global(self) -> bool:
        return self.department_id is None


class Product(db.Model):
    """
    Stock-bearing catalogue entry.

    TRACKING MODELS:
    - quantity: integer `stock` in physical units; a sale of n packs removes
      n * quantity_per_unit units.
    - ml: real-valued `stock_ml` (scents and the master blend product).

    tracking_type is fixed at creation. Only the column of the product's own
    model is ever written by the stock service.

    SCOPE: department_id NULL means a global scent row readable by every
    department.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_department_name", "department_id", "name"),
        db.Index("ix_products_tracking_active", "tracking_type", "is_active"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("stock_ml >= 0", name="ck_products_stock_ml_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    tracking_type = db.Column(db.String(16), nullable=False, default=TRACKING_QUANTITY)

    stock = db.Column(db.Integer, nullable=False, default=0)
    quantity_per_unit = db.Column(db.Integer, nullable=False, default=1)
    stock_ml = db.Column(db.Float, nullable=False, default=0.0)
    # Low-stock alert threshold in physical units; NULL uses LOW_STOCK_THRESHOLD
    min_stock = db.Column(db.Integer, nullable=True)

    # Authoritative storage in minor currency units
    price_cents = db.Column(db.Integer, nullable=True)
    wholesale_price_cents = db.Column(db.Integer, nullable=True)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    department = db.relationship("Department", backref=db.backref("products", lazy=True))

    @validates("tracking_type")
    def _validate_tracking_type(self, key, value):
        if value not in TRACKING_TYPES:
            raise ValueError(f"tracking_type must be one of {', '.join(TRACKING_TYPES)}")
        current = self.__dict__.get("tracking_type")
        if self.id is not None and current is not None and current != value:
            raise ValueError("tracking_type cannot change after creation")
        return value

    @property
    def level(self) -> Stock:
        if self.tracking_type == TRACKING_ML:
            return Volume(float(self.stock_ml or 0.0))
        return Units(int(self.stock or 0))

    @property
    def scope(self) -> Scope:
        return Scope(self.department_id)

    def __repr__(self) -> str:
        return (
            f"<Product id={self.id} name={self.name!r} tracking={self.tracking_type} "
            f"department_id={self.department_id}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "name": self.name,
            "sku": self.sku,
            "tracking_type": self.tracking_type,
            "stock": self.stock,
            "quantity_per_unit": self.quantity_per_unit,
            "stock_ml": self.stock_ml,
            "min_stock": self.min_stock,
            "price_cents": self.price_cents,
            "wholesale_price_cents": self.wholesale_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "is_active": self.is_active,
            "is_global": self.department_id is None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """
    Sellable variant of a quantity product (size, colour).

    A variant holds its own unit stock. Selling a variant never touches the
    parent's `stock`; the parent supplies the scope and cost price.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_product_variants_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    size = db.Column(db.String(64), nullable=True)
    color = db.Column(db.String(64), nullable=True)

    price_cents = db.Column(db.Integer, nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship(
        "Product",
        backref=db.backref("variants", lazy=True, order_by="ProductVariant.id"),
    )

    @property
    def level(self) -> Units:
        return Units(int(self.stock or 0))

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} product_id={self.product_id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "size": self.size,
            "color": self.color,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Service(db.Model):
    """Non-stock sale item (e.g. a repair or refill labour) with a material cost."""
    __tablename__ = "services"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    material_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "name": self.name,
            "price_cents": self.price_cents,
            "material_cost_cents": self.material_cost_cents,
            "is_active": self.is_active,
        }


class StockMovement(db.Model):
    """
    Append-only record of every stock change.

    delta is signed and expressed in the product's own unit (physical units
    or ml). level_after is the stored level right after the change. Variant
    movements also carry the parent product_id.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_sale", "sale_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit = db.Column(db.String(16), nullable=False)
    delta = db.Column(db.Float, nullable=False)
    level_after = db.Column(db.Float, nullable=False)

    # SALE, SALE_VOID, RECEIVE, ADJUST
    reason = db.Column(db.String(32), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    actor = db.Column(db.String(128), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "unit": self.unit,
            "delta": self.delta,
            "level_after": self.level_after,
            "reason": self.reason,
            "sale_id": self.sale_id,
            "note": self.note,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
        }
