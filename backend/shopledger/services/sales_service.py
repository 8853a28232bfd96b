"""
Sales Service - cart to persisted sale

One call turns a priced cart into a completed sale:

1. reject an empty cart
2. allocate the receipt number (and the invoice number for wholesale carts)
3. take stock for every line (units, ml, or per-component ml for blends)
4. write the Sale header and its SaleItem rows
5. remember the customer's scents (best-effort, after commit)
6. hand a receipt descriptor to the notifier (best-effort, after commit)

Steps 2-4 share one database transaction. Stock changes are conditional
updates, so a line that cannot be served rolls the whole sale back and no
stock, number or row from it survives.

Prices are decided by the caller (retail or wholesale tier); this module only
multiplies quantity by unit price.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field

from flask import current_app

from ..errors import (
    AlreadyVoided,
    EmptyCart,
    NotFound,
    ProductNotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Customer, Product, ProductVariant, Sale, SaleItem, Service
from ..models.inventory import TRACKING_ML, TRACKING_QUANTITY, TRACKING_TYPES
from ..models.sales import PAYMENT_METHODS, SALE_COMPLETED, SALE_VOIDED
from ..time_utils import to_utc_z, utcnow, window_bounds
from ..validation import MAX_AMOUNT_CENTS, MAX_QUANTITY, parse_amount_cents, parse_int, parse_ml
from .concurrency import lock_for_update, run_with_retry, unit_of_work
from .notification_service import Notifier, get_notifier
from .preference_service import format_bottle_size, merge_customer_preferences
from .products_service import get_department
from .sequence_service import (
    allocate_receipt_number,
    derive_invoice_number,
    resolve_or_create_master_scent_product,
)
from . import stock_service


CUSTOMER_TYPES = ("retail", "wholesale")

# Blend totals may differ from the component sum by rounding only
ML_TOLERANCE = 0.001


@dataclass
class ScentComponent:
    name: str
    ml: float
    scent_id: int | None = None

    @classmethod
    def from_dict(cls, data: dict, line_number: int) -> "ScentComponent":
        if not isinstance(data, dict):
            raise ValidationError(f"Line {line_number}: each scent must be an object")
        name = (data.get("scent") or data.get("name") or "").strip()
        if not name:
            raise ValidationError(f"Line {line_number}: scent name is required")
        scent_id = data.get("scent_id")
        if scent_id is not None:
            scent_id = parse_int("scent_id", scent_id, minimum=1)
        return cls(
            name=name,
            ml=parse_ml(f"Line {line_number} scent ml", data.get("ml")),
            scent_id=scent_id,
        )


@dataclass
class LineItem:
    """
    A priced cart line. Exactly one of product, service or blend.

    A variant line names variant_id (and optionally its parent product_id).
    """
    name: str
    unit_price_cents: int
    quantity: float = 1
    product_id: int | None = None
    variant_id: int | None = None
    service_id: int | None = None
    unit: str | None = None
    customer_type: str = "retail"
    scent_mixture: str | None = None
    scent_components: list[ScentComponent] = field(default_factory=list)
    total_ml: float | None = None
    bottle_cost_cents: int | None = None

    @property
    def is_blend(self) -> bool:
        return bool(self.scent_components)

    @property
    def is_wholesale(self) -> bool:
        return self.customer_type == "wholesale"

    @property
    def sold_quantity(self) -> float:
        return self.total_ml if self.is_blend else self.quantity

    @property
    def subtotal_cents(self) -> int:
        return int(round(self.sold_quantity * self.unit_price_cents))

    @classmethod
    def from_dict(cls, data: dict, line_number: int) -> "LineItem":
        if not isinstance(data, dict):
            raise ValidationError(f"Line {line_number}: must be an object")

        components = [
            ScentComponent.from_dict(c, line_number)
            for c in (data.get("scents") or data.get("scent_components") or [])
        ]
        line = cls(
            name=(data.get("name") or "").strip(),
            unit_price_cents=parse_amount_cents(f"Line {line_number} unit_price_cents", data.get("unit_price_cents")),
            quantity=data.get("quantity", 1),
            product_id=data.get("product_id"),
            variant_id=data.get("variant_id"),
            service_id=data.get("service_id"),
            unit=data.get("unit"),
            customer_type=data.get("customer_type") or "retail",
            scent_mixture=data.get("scent_mixture"),
            scent_components=components,
            total_ml=data.get("total_ml"),
            bottle_cost_cents=data.get("bottle_cost_cents"),
        )
        line.validate(line_number)
        return line

    def validate(self, line_number: int) -> None:
        """Normalizes numeric fields in place; raises ValidationError."""
        prefix = f"Line {line_number}"
        if not self.name:
            raise ValidationError(f"{prefix}: item name is required")
        if self.customer_type not in CUSTOMER_TYPES:
            raise ValidationError(f"{prefix}: customer_type must be retail or wholesale")
        if self.unit is not None and self.unit not in TRACKING_TYPES:
            raise ValidationError(f"{prefix}: unit must be one of {', '.join(TRACKING_TYPES)}")
        if self.bottle_cost_cents is not None:
            self.bottle_cost_cents = parse_amount_cents(f"{prefix} bottle_cost_cents", self.bottle_cost_cents)

        has_product = self.product_id is not None or self.variant_id is not None
        targets = sum(1 for t in (has_product, self.service_id is not None, self.is_blend) if t)
        if targets != 1:
            raise ValidationError(f"{prefix}: choose exactly one of product_id, service_id or scents")

        if self.is_blend:
            component_total = round(sum(c.ml for c in self.scent_components), 3)
            if self.total_ml is None:
                self.total_ml = component_total
            else:
                self.total_ml = parse_ml(f"{prefix} total_ml", self.total_ml)
                if abs(self.total_ml - component_total) > ML_TOLERANCE:
                    raise ValidationError(
                        f"{prefix}: scents add up to {component_total}ml but the bottle is {self.total_ml}ml"
                    )
            self.quantity = self.total_ml
            self._check_line_total(prefix)
            return

        if self.product_id is not None:
            self.product_id = parse_int(f"{prefix} product_id", self.product_id, minimum=1)
        if self.variant_id is not None:
            self.variant_id = parse_int(f"{prefix} variant_id", self.variant_id, minimum=1)
            if self.unit not in (None, TRACKING_QUANTITY):
                raise ValidationError(f"{prefix}: variants are sold in whole units")
        if self.service_id is not None:
            self.service_id = parse_int(f"{prefix} service_id", self.service_id, minimum=1)

        if self.unit == TRACKING_ML:
            self.quantity = parse_ml(f"{prefix} quantity", self.quantity)
        elif self.service_id is not None or self.variant_id is not None or self.unit is not None:
            self.quantity = parse_int(f"{prefix} quantity", self.quantity, minimum=1, maximum=MAX_QUANTITY)
        else:
            # Unit comes from the product; integer check happens in the stock ledger
            if isinstance(self.quantity, bool):
                raise ValidationError(f"{prefix}: quantity must be a number")
            try:
                self.quantity = float(self.quantity)
            except (TypeError, ValueError):
                raise ValidationError(f"{prefix}: quantity must be a number")
            if not math.isfinite(self.quantity) or self.quantity <= 0:
                raise ValidationError(f"{prefix}: quantity must be greater than zero")
            if self.quantity > MAX_QUANTITY:
                raise ValidationError(f"{prefix}: quantity cannot exceed {MAX_QUANTITY}")
            if self.quantity.is_integer():
                self.quantity = int(self.quantity)
        if self.total_ml is not None:
            self.total_ml = parse_ml(f"{prefix} total_ml", self.total_ml)
        self._check_line_total(prefix)

    def _check_line_total(self, prefix: str) -> None:
        if self.sold_quantity * self.unit_price_cents > MAX_AMOUNT_CENTS:
            raise ValidationError(f"{prefix}: line total cannot exceed {MAX_AMOUNT_CENTS}")


@dataclass
class SaleContext:
    department_id: int
    cashier_name: str
    payment_method: str = "cash"
    customer_id: int | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    amount_paid_cents: int | None = None
    remarks: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "SaleContext":
        if not isinstance(data, dict):
            raise ValidationError("Sale context must be an object")
        if data.get("department_id") is None:
            raise ValidationError("department_id is required")
        context = cls(
            department_id=parse_int("department_id", data["department_id"], minimum=1),
            cashier_name=(data.get("cashier_name") or "").strip(),
            payment_method=(data.get("payment_method") or "cash").strip().lower(),
            customer_id=data.get("customer_id"),
            customer_name=data.get("customer_name"),
            customer_email=data.get("customer_email"),
            amount_paid_cents=data.get("amount_paid_cents"),
            remarks=data.get("remarks"),
        )
        context.validate()
        return context

    def validate(self) -> None:
        if not self.cashier_name:
            raise ValidationError("cashier_name is required")
        if self.payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
        if self.customer_id is not None:
            self.customer_id = parse_int("customer_id", self.customer_id, minimum=1)
        if self.amount_paid_cents is not None:
            self.amount_paid_cents = parse_amount_cents("amount_paid_cents", self.amount_paid_cents)


@dataclass
class ReceiptLine:
    name: str
    quantity: float
    unit_price_cents: int
    subtotal_cents: int
    customer_type: str
    product_id: int | None = None
    variant_id: int | None = None
    service_id: int | None = None
    scent_mixture: str | None = None
    scent_breakdown: list[dict] | None = None
    total_ml: float | None = None
    bottle_cost_cents: int | None = None


@dataclass
class SaleReceipt:
    """Render-ready descriptor; rebuilt from Sale + SaleItem rows on demand."""
    sale_id: int
    receipt_number: str
    invoice_number: str | None
    is_invoice: bool
    department_id: int
    department_name: str | None
    cashier_name: str
    customer_name: str | None
    payment_method: str
    status: str
    lines: list[ReceiptLine]
    subtotal_cents: int
    total_cents: int
    amount_paid_cents: int
    change_cents: int
    created_at: str | None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _ResolvedLine:
    line: LineItem
    product: Product | None = None
    variant: ProductVariant | None = None
    service: Service | None = None
    unit: str | None = None
    scents: list[tuple[ScentComponent, Product]] = field(default_factory=list)


# =============================================================================
# COMPLETE
# =============================================================================

def _resolve_line(line: LineItem, department_id: int) -> _ResolvedLine:
    if line.service_id is not None:
        service = db.session.get(Service, line.service_id)
        if service is None or not service.is_active:
            raise NotFound("service", line.service_id)
        return _ResolvedLine(line=line, service=service)

    if line.is_blend:
        scents = []
        for component in line.scent_components:
            if component.scent_id is not None:
                scent = stock_service.resolve_scent_by_id(component.scent_id, department_id)
            else:
                scent = stock_service.resolve_scent(component.name, department_id)
            scents.append((component, scent))
        return _ResolvedLine(line=line, unit=TRACKING_ML, scents=scents)

    if line.variant_id is not None:
        variant = db.session.get(ProductVariant, line.variant_id)
        if variant is None or not variant.is_active:
            raise ProductNotFound(f"Variant {line.variant_id} not found", details={"variant_id": line.variant_id})
        if line.product_id is not None and line.product_id != variant.product_id:
            raise ValidationError(
                f"Variant {variant.id} does not belong to product {line.product_id}",
                details={"variant_id": variant.id, "product_id": line.product_id},
            )
        product = variant.product
    else:
        product = db.session.get(Product, line.product_id)
        variant = None
    if product is None or not product.is_active:
        raise ProductNotFound(details={"product_id": product.id if product is not None else line.product_id})
    if not product.scope.visible_from(department_id):
        raise ProductNotFound(
            f"{product.name} is not sold by this department",
            details={"product_id": product.id, "department_id": department_id},
        )
    if variant is not None:
        return _ResolvedLine(line=line, product=product, variant=variant, unit=TRACKING_QUANTITY)
    return _ResolvedLine(line=line, product=product, unit=line.unit or product.tracking_type)


def _take_stock(resolved: _ResolvedLine, sale: Sale) -> list[dict] | None:
    """Decrement stock for one line; returns the blend breakdown if any."""
    note = f"Sale {sale.receipt_number}"
    if resolved.variant is not None:
        stock_service.decrement_variant(
            resolved.variant.id, resolved.line.quantity,
            reason="SALE", sale_id=sale.id, note=note, actor=sale.cashier_name, commit=False,
        )
        return None

    if resolved.product is not None:
        stock_service.decrement(
            resolved.product.id, resolved.line.quantity, resolved.unit,
            reason="SALE", sale_id=sale.id, note=note, actor=sale.cashier_name, commit=False,
        )
        return None

    if resolved.scents:
        breakdown = []
        for component, scent in resolved.scents:
            stock_service.decrement(
                scent.id, component.ml, TRACKING_ML,
                reason="SALE", sale_id=sale.id, note=note, actor=sale.cashier_name, commit=False,
            )
            breakdown.append({"scent": scent.name, "scent_id": scent.id, "ml": component.ml})
        return breakdown

    return None


def _observed_preferences(lines: list[LineItem]) -> tuple[list[str], list[str]]:
    scents: list[str] = []
    sizes: list[str] = []
    for line in lines:
        for component in line.scent_components:
            if component.name not in scents:
                scents.append(component.name)
        if line.total_ml:
            size = format_bottle_size(line.total_ml)
            if size not in sizes:
                sizes.append(size)
    return scents, sizes


def complete_sale(
    cart: list,
    context: SaleContext | dict,
    *,
    notifier: Notifier | None = None,
) -> SaleReceipt:
    """
    Persist a completed sale and take its stock.

    Raises EmptyCart, ValidationError, NotFound, ProductNotFound,
    UnitMismatch, InsufficientStock, AmbiguousScentResolution or
    PersistenceFailure. In every failure case nothing from the sale remains
    committed. Preference and notification failures are returned as
    warnings on the receipt instead.
    """
    if not cart:
        raise EmptyCart()
    if not isinstance(context, SaleContext):
        context = SaleContext.from_dict(context)
    else:
        context.validate()

    lines = []
    for number, raw in enumerate(cart, start=1):
        if isinstance(raw, LineItem):
            raw.validate(number)
            lines.append(raw)
        else:
            lines.append(LineItem.from_dict(raw, number))

    get_department(context.department_id)
    customer_name = context.customer_name
    if context.customer_id is not None:
        customer = db.session.get(Customer, context.customer_id)
        if customer is None:
            raise NotFound("customer", context.customer_id)
        customer_name = customer_name or customer.name

    subtotal = sum(line.subtotal_cents for line in lines)
    total = subtotal
    if total > MAX_AMOUNT_CENTS:
        raise ValidationError(f"Sale total cannot exceed {MAX_AMOUNT_CENTS}", details={"total_cents": total})
    amount_paid = context.amount_paid_cents if context.amount_paid_cents is not None else total
    if amount_paid < total and context.payment_method != "credit":
        raise ValidationError(
            f"Amount paid ({amount_paid}) is less than the total ({total})",
            details={"amount_paid_cents": amount_paid, "total_cents": total},
        )

    def _op() -> int:
        resolved = [_resolve_line(line, context.department_id) for line in lines]

        receipt_number = allocate_receipt_number()
        is_invoice = any(line.is_wholesale for line in lines)
        invoice_number = derive_invoice_number(receipt_number) if is_invoice else None
        master_id = resolve_or_create_master_scent_product() if any(l.is_blend for l in lines) else None

        sale = Sale(
            department_id=context.department_id,
            receipt_number=receipt_number,
            invoice_number=invoice_number,
            is_invoice=is_invoice,
            cashier_name=context.cashier_name,
            customer_id=context.customer_id,
            customer_name=customer_name,
            payment_method=context.payment_method,
            subtotal_cents=subtotal,
            total_cents=total,
            amount_paid_cents=amount_paid,
            change_cents=max(0, amount_paid - total),
            remarks=context.remarks,
            status=SALE_COMPLETED,
        )
        db.session.add(sale)
        db.session.flush()

        for number, item in enumerate(resolved, start=1):
            breakdown = _take_stock(item, sale)
            line = item.line
            if item.service is not None:
                product_id = None
            elif line.is_blend:
                product_id = master_id
            else:
                product_id = item.product.id
            total_ml = line.total_ml
            if total_ml is None and item.unit == TRACKING_ML:
                total_ml = line.quantity
            db.session.add(SaleItem(
                sale_id=sale.id,
                line_number=number,
                product_id=product_id,
                variant_id=item.variant.id if item.variant is not None else None,
                service_id=item.service.id if item.service is not None else None,
                item_name=line.name,
                quantity=line.sold_quantity,
                unit_price_cents=line.unit_price_cents,
                subtotal_cents=line.subtotal_cents,
                customer_type=line.customer_type,
                scent_mixture=line.scent_mixture,
                scent_breakdown=breakdown,
                total_ml=total_ml,
                bottle_cost_cents=line.bottle_cost_cents,
            ))

        db.session.commit()
        return sale.id

    with unit_of_work("complete the sale"):
        sale_id = run_with_retry(_op)

    current_app.logger.info(
        "Sale %s completed: department=%s total=%s lines=%d",
        sale_id, context.department_id, total, len(lines),
    )

    warnings: list[str] = []
    if context.customer_id is not None:
        scents, sizes = _observed_preferences(lines)
        if scents:
            try:
                merge_customer_preferences(context.customer_id, context.department_id, scents, sizes)
            except Exception:
                db.session.rollback()
                current_app.logger.exception("Failed to save scent preferences for customer %s", context.customer_id)
                warnings.append("Sale completed, but the customer's scent preferences could not be saved.")

    receipt = build_receipt(sale_id)
    notifier = notifier or get_notifier()
    try:
        notifier.deliver(receipt.to_dict(), recipient=context.customer_email)
    except Exception:
        current_app.logger.exception("Failed to deliver receipt %s", receipt.receipt_number)
        warnings.append("Sale completed, but the receipt could not be sent.")

    receipt.warnings = warnings
    return receipt


# =============================================================================
# READ
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound("sale", sale_id)
    return sale


def build_receipt(sale_id: int) -> SaleReceipt:
    """Reconstruct the receipt descriptor purely from persisted rows."""
    sale = get_sale(sale_id)
    items = (
        db.session.query(SaleItem)
        .filter_by(sale_id=sale.id)
        .order_by(SaleItem.line_number.asc())
        .all()
    )
    lines = [
        ReceiptLine(
            name=item.item_name,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            subtotal_cents=item.subtotal_cents,
            customer_type=item.customer_type,
            product_id=item.product_id,
            variant_id=item.variant_id,
            service_id=item.service_id,
            scent_mixture=item.scent_mixture,
            scent_breakdown=item.scent_breakdown,
            total_ml=item.total_ml,
            bottle_cost_cents=item.bottle_cost_cents,
        )
        for item in items
    ]
    return SaleReceipt(
        sale_id=sale.id,
        receipt_number=sale.receipt_number,
        invoice_number=sale.invoice_number,
        is_invoice=sale.is_invoice,
        department_id=sale.department_id,
        department_name=sale.department.name if sale.department else None,
        cashier_name=sale.cashier_name,
        customer_name=sale.customer_name,
        payment_method=sale.payment_method,
        status=sale.status,
        lines=lines,
        subtotal_cents=sale.subtotal_cents,
        total_cents=sale.total_cents,
        amount_paid_cents=sale.amount_paid_cents,
        change_cents=sale.change_cents,
        created_at=to_utc_z(sale.created_at),
    )


def list_sales(
    department_id: int,
    *,
    start=None,
    end=None,
    status: str | None = None,
    payment_method: str | None = None,
) -> list[Sale]:
    query = db.session.query(Sale).filter(Sale.department_id == department_id)
    if start is not None and end is not None:
        lower, upper = window_bounds(start, end)
        query = query.filter(Sale.created_at >= lower, Sale.created_at < upper)
    if status is not None:
        query = query.filter(Sale.status == status)
    if payment_method is not None:
        query = query.filter(Sale.payment_method == payment_method)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()


# =============================================================================
# VOID
# =============================================================================

def void_sale(sale_id: int, reason: str, actor: str) -> Sale:
    """
    Void a completed sale and put its stock back.

    The status flip and the stock restoration commit together. Voiding an
    already voided sale raises AlreadyVoided and changes nothing.
    """
    if not reason or not reason.strip():
        raise ValidationError("A reason is required to void a sale")
    if not actor or not actor.strip():
        raise ValidationError("The person voiding the sale must be recorded")

    def _op() -> Sale:
        sale = (
            lock_for_update(db.session.query(Sale).filter_by(id=sale_id))
            .populate_existing()
            .first()
        )
        if sale is None:
            raise NotFound("sale", sale_id)
        if sale.status == SALE_VOIDED:
            raise AlreadyVoided(
                f"Sale {sale.receipt_number} was already voided",
                details={"sale_id": sale.id, "voided_at": to_utc_z(sale.voided_at)},
            )

        stock_service.restore_sale_stock(sale.id, actor=actor, note=f"Void {sale.receipt_number}")

        sale.status = SALE_VOIDED
        sale.voided_by = actor.strip()
        sale.voided_at = utcnow()
        sale.void_reason = reason.strip()

        db.session.commit()
        return sale

    with unit_of_work("void the sale"):
        sale = run_with_retry(_op)

    current_app.logger.info("Sale %s voided by %s: %s", sale.receipt_number, actor, reason)
    return sale
