# Overview: Stock ledger; conditional decrements/increments over two tracking models.

"""
Stock invariants (authoritative)

- Stock lives on the product row: `stock` (units) for quantity-tracked
  products, `stock_ml` for volume-tracked products. The column of the other
  model is never written. Variants of a quantity product keep their own unit
  `stock` on the variant row.
- Every change is a single conditional UPDATE against the row:
      UPDATE products SET stock = stock - :n
      WHERE id = :id AND tracking_type = 'quantity' AND stock >= :n
  so concurrent sales can never oversell; there is no read-then-write.
- A rejected change leaves the row untouched and is diagnosed afterwards
  (missing product, unit mismatch, or insufficient stock).
- Every applied change appends a StockMovement with the signed delta in the
  product's own unit; voids replay a sale's movements in reverse.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy import Numeric, cast, func, or_, update

from ..errors import (
    AmbiguousScentResolution,
    InsufficientStock,
    ProductNotFound,
    UnitMismatch,
    ValidationError,
)
from ..extensions import db
from ..models import Product, ProductVariant, StockMovement
from ..models.inventory import TRACKING_ML, TRACKING_QUANTITY, TRACKING_TYPES, Stock, Units
from ..validation import MAX_QUANTITY, parse_int, parse_ml
from .concurrency import run_with_retry, unit_of_work


SCENT_POLICY_STRICT = "strict"
SCENT_POLICY_DEPARTMENT_FIRST = "department_first"


def _normalize_amount(amount, unit: str):
    if unit not in TRACKING_TYPES:
        raise ValidationError(f"unit must be one of {', '.join(TRACKING_TYPES)}")
    if unit == TRACKING_QUANTITY:
        return parse_int("amount", amount, minimum=0, maximum=MAX_QUANTITY)
    return parse_ml("amount", amount, allow_zero=True)


def ml_level_after(sign: int, amount: float):
    """New stock_ml expression, rounded to 0.001 ml as a NUMERIC."""
    return func.round(cast(Product.stock_ml + sign * amount, Numeric(14, 3)), 3)


def _run_change(op, commit: bool):
    """Deferred changes join the caller's transaction; the rest commit on their own."""
    if not commit:
        return op()
    with unit_of_work("update stock"):
        return run_with_retry(op)


def _diagnose_rejected_change(product_id: int, unit: str, physical_amount) -> None:
    """Explain why a conditional update matched no row. Always raises."""
    product = db.session.get(Product, product_id, populate_existing=True)
    if product is None:
        raise ProductNotFound(details={"product_id": product_id})
    if product.tracking_type != unit:
        raise UnitMismatch(product.id, product.name, product.tracking_type, unit)

    level = product.level
    available = level.count if product.tracking_type == TRACKING_QUANTITY else level.ml
    raise InsufficientStock(product.id, product.name, physical_amount, available, unit)


def _apply_change(
    product_id: int,
    amount,
    unit: str,
    *,
    sign: int,
    per_pack: bool,
    reason: str,
    sale_id: int | None,
    note: str | None,
    actor: str | None,
) -> Stock:
    """
    Core conditional update; no commit.

    per_pack=True multiplies quantity amounts by the row's quantity_per_unit
    inside the UPDATE itself.
    """
    if unit == TRACKING_QUANTITY:
        physical = amount * Product.quantity_per_unit if per_pack else amount
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.tracking_type == TRACKING_QUANTITY)
            .values(stock=Product.stock + sign * physical)
        )
        if sign < 0:
            stmt = stmt.where(Product.stock >= physical)
    else:
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.tracking_type == TRACKING_ML)
            .values(stock_ml=ml_level_after(sign, amount))
        )
        if sign < 0:
            stmt = stmt.where(Product.stock_ml >= amount)

    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    if result.rowcount != 1:
        requested = None
        if unit == TRACKING_ML or not per_pack:
            requested = amount
        else:
            product = db.session.get(Product, product_id)
            if product is not None:
                requested = amount * (product.quantity_per_unit or 1)
        _diagnose_rejected_change(product_id, unit, requested)

    product = db.session.get(Product, product_id, populate_existing=True)
    if unit == TRACKING_QUANTITY:
        delta = amount * (product.quantity_per_unit or 1) if per_pack else amount
        level_after = float(product.stock)
    else:
        delta = amount
        level_after = float(product.stock_ml)

    db.session.add(StockMovement(
        product_id=product_id,
        unit=unit,
        delta=sign * delta,
        level_after=level_after,
        reason=reason,
        sale_id=sale_id,
        note=note,
        actor=actor,
    ))
    db.session.flush()

    current_app.logger.debug(
        "Stock %s product=%s unit=%s delta=%s level=%s sale=%s",
        reason, product_id, unit, sign * delta, level_after, sale_id,
    )
    return product.level


def decrement(
    product_id: int,
    amount,
    unit: str,
    *,
    reason: str = "SALE",
    sale_id: int | None = None,
    note: str | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Stock:
    """
    Take stock off a product row.

    amount is a pack count for quantity products (amount * quantity_per_unit
    physical units are removed) and millilitres for ml products.

    Raises ProductNotFound, UnitMismatch or InsufficientStock; the row is
    unchanged in every failure case. With commit=True, storage failures that
    outlast the retries surface as PersistenceFailure.
    """
    amount = _normalize_amount(amount, unit)

    def _op():
        level = _apply_change(
            product_id, amount, unit,
            sign=-1, per_pack=True, reason=reason, sale_id=sale_id, note=note, actor=actor,
        )
        if commit:
            db.session.commit()
        return level

    return _run_change(_op, commit)


def increment(
    product_id: int,
    amount,
    unit: str,
    *,
    reason: str = "RECEIVE",
    sale_id: int | None = None,
    note: str | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Stock:
    """Put stock back on a product row (restock or void restore)."""
    amount = _normalize_amount(amount, unit)

    def _op():
        level = _apply_change(
            product_id, amount, unit,
            sign=1, per_pack=True, reason=reason, sale_id=sale_id, note=note, actor=actor,
        )
        if commit:
            db.session.commit()
        return level

    return _run_change(_op, commit)


# =============================================================================
# VARIANTS
# =============================================================================

def _apply_variant_change(
    variant_id: int,
    amount: int,
    *,
    sign: int,
    reason: str,
    sale_id: int | None,
    note: str | None,
    actor: str | None,
) -> Units:
    """Conditional update of a variant's unit stock; no commit."""
    stmt = (
        update(ProductVariant)
        .where(ProductVariant.id == variant_id)
        .values(stock=ProductVariant.stock + sign * amount)
    )
    if sign < 0:
        stmt = stmt.where(ProductVariant.stock >= amount)
    result = db.session.execute(stmt.execution_options(synchronize_session=False))

    variant = db.session.get(ProductVariant, variant_id, populate_existing=True)
    if variant is None:
        raise ProductNotFound(f"Variant {variant_id} not found", details={"variant_id": variant_id})
    if result.rowcount != 1:
        raise InsufficientStock(variant.product_id, variant.name, amount, variant.stock, TRACKING_QUANTITY)

    db.session.add(StockMovement(
        product_id=variant.product_id,
        variant_id=variant.id,
        unit=TRACKING_QUANTITY,
        delta=sign * amount,
        level_after=float(variant.stock),
        reason=reason,
        sale_id=sale_id,
        note=note,
        actor=actor,
    ))
    db.session.flush()

    current_app.logger.debug(
        "Stock %s variant=%s product=%s delta=%s level=%s sale=%s",
        reason, variant_id, variant.product_id, sign * amount, variant.stock, sale_id,
    )
    return variant.level


def decrement_variant(
    variant_id: int,
    amount,
    *,
    reason: str = "SALE",
    sale_id: int | None = None,
    note: str | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Units:
    """Take whole units off a variant row. Raises ProductNotFound or InsufficientStock."""
    amount = parse_int("amount", amount, minimum=0, maximum=MAX_QUANTITY)

    def _op():
        level = _apply_variant_change(
            variant_id, amount, sign=-1, reason=reason, sale_id=sale_id, note=note, actor=actor,
        )
        if commit:
            db.session.commit()
        return level

    return _run_change(_op, commit)


def increment_variant(
    variant_id: int,
    amount,
    *,
    reason: str = "RECEIVE",
    sale_id: int | None = None,
    note: str | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Units:
    amount = parse_int("amount", amount, minimum=0, maximum=MAX_QUANTITY)

    def _op():
        level = _apply_variant_change(
            variant_id, amount, sign=1, reason=reason, sale_id=sale_id, note=note, actor=actor,
        )
        if commit:
            db.session.commit()
        return level

    return _run_change(_op, commit)


def restore_sale_stock(sale_id: int, *, actor: str | None = None, note: str | None = None) -> list[StockMovement]:
    """
    Reverse every SALE movement recorded against a sale. No commit.

    Movements already hold physical units, so they are replayed without the
    pack multiplier. Variant movements go back to the variant row.
    """
    movements = (
        db.session.query(StockMovement)
        .filter_by(sale_id=sale_id, reason="SALE")
        .order_by(StockMovement.id.asc())
        .all()
    )
    for movement in movements:
        amount = -movement.delta
        if movement.unit == TRACKING_QUANTITY:
            amount = int(round(amount))
        if movement.variant_id is not None:
            _apply_variant_change(
                movement.variant_id, amount,
                sign=1, reason="SALE_VOID", sale_id=sale_id, note=note, actor=actor,
            )
            continue
        _apply_change(
            movement.product_id, amount, movement.unit,
            sign=1, per_pack=False, reason="SALE_VOID", sale_id=sale_id, note=note, actor=actor,
        )
    return movements


def get_level(product_id: int) -> Stock:
    product = db.session.get(Product, product_id, populate_existing=True)
    if product is None:
        raise ProductNotFound(details={"product_id": product_id})
    return product.level


def list_movements(product_id: int, limit: int = 100) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )


# =============================================================================
# LOW STOCK
# =============================================================================

@dataclass
class LowStockAlert:
    product_id: int
    name: str
    stock: int
    threshold: int
    variant_id: int | None = None

    @property
    def out_of_stock(self) -> bool:
        return self.stock <= 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["out_of_stock"] = self.out_of_stock
        return data


def list_low_stock(department_id: int, *, default_threshold: int | None = None) -> list[LowStockAlert]:
    """
    Active quantity products of a department at or below their threshold.

    A product with active variants is judged per variant (the variants hold
    the real stock) against the parent's threshold. ml scents are not
    alerted. Out-of-stock rows sort first.
    """
    if default_threshold is None:
        default_threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 5)

    products = (
        db.session.query(Product)
        .filter(
            Product.department_id == department_id,
            Product.tracking_type == TRACKING_QUANTITY,
            Product.is_active.is_(True),
        )
        .order_by(Product.id.asc())
        .all()
    )

    alerts = []
    for product in products:
        threshold = product.min_stock if product.min_stock is not None else default_threshold
        variants = [v for v in product.variants if v.is_active]
        if variants:
            alerts.extend(
                LowStockAlert(product.id, f"{product.name} - {v.name}", v.stock, threshold, variant_id=v.id)
                for v in variants
                if v.stock <= threshold
            )
        elif product.stock <= threshold:
            alerts.append(LowStockAlert(product.id, product.name, product.stock, threshold))

    alerts.sort(key=lambda a: (a.stock, a.name))
    return alerts


# =============================================================================
# SCENT RESOLUTION
# =============================================================================

def _master_scent_name() -> str:
    return current_app.config.get("MASTER_SCENT_PRODUCT_NAME", "Oil Perfume")


def resolve_scent(name: str, department_id: int | None, *, policy: str | None = None) -> Product:
    """
    Find the ml-tracked row a blend component draws from.

    Candidates are active ml rows whose name matches case-insensitively and
    that belong to the department or are global. The master blend product
    is never a candidate.

    - Two rows in the same tier (department or global) -> ambiguous.
    - strict policy: a department row AND a global row -> ambiguous.
    - department_first policy: the department row wins.
    - No department row: the single global row is used.
    """
    if not name or not name.strip():
        raise ValidationError("Scent name is required")
    if policy is None:
        policy = current_app.config.get("SCENT_SCOPE_POLICY", SCENT_POLICY_STRICT)
    if policy not in (SCENT_POLICY_STRICT, SCENT_POLICY_DEPARTMENT_FIRST):
        raise ValidationError(f"Unknown scent scope policy: {policy}")

    scope_filter = Product.department_id.is_(None)
    if department_id is not None:
        scope_filter = or_(Product.department_id == department_id, Product.department_id.is_(None))

    candidates = (
        db.session.query(Product)
        .filter(
            func.lower(Product.name) == name.strip().lower(),
            func.lower(Product.name) != _master_scent_name().lower(),
            Product.tracking_type == TRACKING_ML,
            Product.is_active.is_(True),
            scope_filter,
        )
        .order_by(Product.id.asc())
        .all()
    )

    global_rows = [p for p in candidates if p.scope.is_global]
    department_rows = [p for p in candidates if not p.scope.is_global]

    if len(department_rows) > 1:
        raise AmbiguousScentResolution(name, department_id, [p.id for p in department_rows])
    if department_rows and global_rows and policy == SCENT_POLICY_STRICT:
        raise AmbiguousScentResolution(name, department_id, [p.id for p in candidates])
    if department_rows:
        return department_rows[0]
    if len(global_rows) > 1:
        raise AmbiguousScentResolution(name, department_id, [p.id for p in global_rows])
    if global_rows:
        return global_rows[0]

    raise ProductNotFound(
        f"Scent '{name}' is not stocked in this department",
        details={"name": name, "department_id": department_id},
    )


def resolve_scent_by_id(scent_id: int, department_id: int | None) -> Product:
    """Validate an explicitly chosen scent row for a department."""
    product = db.session.get(Product, scent_id)
    if product is None or not product.is_active:
        raise ProductNotFound(f"Scent {scent_id} not found", details={"product_id": scent_id})
    if product.tracking_type != TRACKING_ML:
        raise UnitMismatch(product.id, product.name, product.tracking_type, TRACKING_ML)
    if not product.scope.visible_from(department_id):
        raise ProductNotFound(
            f"Scent '{product.name}' belongs to another department",
            details={"product_id": scent_id, "department_id": department_id},
        )
    return product
