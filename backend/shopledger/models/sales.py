from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SALE_COMPLETED = "completed"
SALE_VOIDED = "voided"

PAYMENT_METHODS = ("cash", "card", "mobile_money", "bank", "credit")


class Sale(db.Model):
    """
    One completed checkout.

    Sales are created already completed (stock is taken in the same
    transaction) and afterwards only ever flip to voided.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_sales_receipt_number"),
        db.Index("ix_sales_department_status_created", "department_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)

    receipt_number = db.Column(db.String(32), nullable=False)
    invoice_number = db.Column(db.String(32), nullable=True, index=True)
    is_invoice = db.Column(db.Boolean, nullable=False, default=False)

    cashier_name = db.Column(db.String(128), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)

    payment_method = db.Column(db.String(32), nullable=False, index=True)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)
    remarks = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED, index=True)

    # Void audit trail
    voided_by = db.Column(db.String(128), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    department = db.relationship("Department")
    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        order_by="SaleItem.line_number",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "receipt_number": self.receipt_number,
            "invoice_number": self.invoice_number,
            "is_invoice": self.is_invoice,
            "cashier_name": self.cashier_name,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_cents": self.change_cents,
            "remarks": self.remarks,
            "status": self.status,
            "voided_by": self.voided_by,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class SaleItem(db.Model):
    """
    Line item on a sale.

    quantity is in units for quantity-tracked products, variants and
    services, and in ml for volume lines. Variant lines keep the parent in
    product_id. Blend lines point at the master scent product and keep their
    components in scent_breakdown.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint(
            "product_id IS NOT NULL OR service_id IS NOT NULL",
            name="ck_sale_items_has_target",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=True, index=True)
    item_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Float, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    # retail or wholesale
    customer_type = db.Column(db.String(16), nullable=False, default="retail")

    # Scent blend metadata
    scent_mixture = db.Column(db.String(255), nullable=True)
    scent_breakdown = db.Column(db.JSON, nullable=True)
    total_ml = db.Column(db.Float, nullable=True)
    bottle_cost_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    service = db.relationship("Service")

    @property
    def is_blend(self) -> bool:
        return bool(self.scent_breakdown)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "service_id": self.service_id,
            "item_name": self.item_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "customer_type": self.customer_type,
            "scent_mixture": self.scent_mixture,
            "scent_breakdown": self.scent_breakdown,
            "total_ml": self.total_ml,
            "bottle_cost_cents": self.bottle_cost_cents,
            "created_at": to_utc_z(self.created_at),
        }


class ReceiptSequence(db.Model):
    """Install-wide counter behind RCP-n receipt numbers."""
    __tablename__ = "receipt_sequences"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_receipt_sequences_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
