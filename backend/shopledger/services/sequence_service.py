# Overview: Receipt number allocation and the synthetic master scent product.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, ReceiptSequence
from ..models.inventory import TRACKING_ML


RECEIPT_SEQUENCE = "receipt"


def allocate_receipt_number() -> str:
    """
    Atomically allocate the next receipt number (RCP-000001, RCP-000002, ...).

    The counter is bumped with a single UPDATE, so two sessions can never
    read the same value. Runs inside the caller's transaction: if the sale
    rolls back, so does the number. No commit.
    """
    stmt = (
        update(ReceiptSequence)
        .where(ReceiptSequence.name == RECEIPT_SEQUENCE)
        .values(next_number=ReceiptSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(ReceiptSequence.next_number)
            .filter_by(name=RECEIPT_SEQUENCE)
            .scalar()
        )
        number = current - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(ReceiptSequence(name=RECEIPT_SEQUENCE, next_number=2))
            number = 1
        except IntegrityError:
            # Another session created the counter first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            current = (
                db.session.query(ReceiptSequence.next_number)
                .filter_by(name=RECEIPT_SEQUENCE)
                .scalar()
            )
            number = current - 1

    prefix = current_app.config.get("RECEIPT_PREFIX", "RCP")
    pad = current_app.config.get("RECEIPT_NUMBER_PAD", 6)
    return f"{prefix}-{number:0{pad}d}"


def derive_invoice_number(receipt_number: str) -> str:
    """Invoices reuse the receipt sequence with the tag swapped (RCP -> INV)."""
    receipt_prefix = current_app.config.get("RECEIPT_PREFIX", "RCP")
    invoice_prefix = current_app.config.get("INVOICE_PREFIX", "INV")
    return receipt_number.replace(receipt_prefix, invoice_prefix, 1)


def resolve_or_create_master_scent_product() -> int:
    """
    Idempotent lookup-or-create of the global ml product that anchors blend
    lines. No commit; the row is flushed inside the caller's transaction.
    """
    name = current_app.config.get("MASTER_SCENT_PRODUCT_NAME", "Oil Perfume")
    existing = (
        db.session.query(Product.id)
        .filter(
            func.lower(Product.name) == name.lower(),
            Product.tracking_type == TRACKING_ML,
            Product.department_id.is_(None),
        )
        .order_by(Product.id.asc())
        .first()
    )
    if existing is not None:
        return existing[0]

    master = Product(
        name=name,
        tracking_type=TRACKING_ML,
        department_id=None,
        stock_ml=0.0,
        cost_price_cents=0,
    )
    db.session.add(master)
    db.session.flush()
    current_app.logger.info("Created master scent product %s (id=%s)", name, master.id)
    return master.id
