# Overview: Suspended revenue (unexplained cash) and its investigation status.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import SuspendedRevenue
from ..models.cash import SUSPENDED_PENDING, SUSPENDED_STATUSES
from ..time_utils import parse_business_date, today, utcnow
from ..validation import parse_amount_cents
from .concurrency import unit_of_work
from .products_service import get_department


SOURCE_RECONCILIATION = "reconciliation"
SOURCE_MANUAL = "manual"


def _business_date(value):
    try:
        return parse_business_date(value) or today()
    except ValueError:
        raise ValidationError("date must be an ISO date (YYYY-MM-DD)")


def record_suspended_revenue(
    department_id: int,
    amount_cents,
    reason: str,
    *,
    date=None,
    cashier_name: str | None = None,
    created_by: str | None = None,
    source: str = SOURCE_MANUAL,
    reconciliation_id: int | None = None,
) -> SuspendedRevenue:
    """
    Park an amount outside revenue until someone explains it.

    Manual entries are an explicit admin action; reconciliation surpluses
    come through here with source="reconciliation".
    """
    amount = parse_amount_cents("amount_cents", amount_cents, allow_zero=False)
    if not reason or not reason.strip():
        raise ValidationError("reason is required")
    if source not in (SOURCE_MANUAL, SOURCE_RECONCILIATION):
        raise ValidationError("source must be 'manual' or 'reconciliation'")
    get_department(department_id)

    row = SuspendedRevenue(
        department_id=department_id,
        reconciliation_id=reconciliation_id,
        source=source,
        cashier_name=cashier_name,
        date=_business_date(date),
        amount_cents=amount,
        reason=reason.strip(),
        status=SUSPENDED_PENDING,
        created_by=created_by,
    )
    with unit_of_work("record suspended revenue"):
        db.session.add(row)
        db.session.commit()

    current_app.logger.info(
        "Suspended revenue %s recorded: department=%s amount=%s source=%s",
        row.id, department_id, amount, source,
    )
    return row


def get_suspended_revenue(entry_id: int) -> SuspendedRevenue:
    row = db.session.get(SuspendedRevenue, entry_id)
    if row is None:
        raise NotFound("suspended revenue", entry_id)
    return row


def update_investigation(entry_id: int, status: str, notes: str | None = None) -> SuspendedRevenue:
    """
    Move an entry through pending / explained / approved / rejected.

    resolved_at is stamped when the entry leaves pending and cleared if it
    is put back to pending.
    """
    if status not in SUSPENDED_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(SUSPENDED_STATUSES)}")

    with unit_of_work("update the investigation"):
        row = get_suspended_revenue(entry_id)
        if status == SUSPENDED_PENDING:
            row.resolved_at = None
        elif row.status == SUSPENDED_PENDING or row.resolved_at is None:
            row.resolved_at = utcnow()
        row.status = status
        if notes is not None:
            row.investigation_notes = notes
        db.session.commit()

    current_app.logger.info("Suspended revenue %s marked %s", entry_id, status)
    return row


def list_suspended_revenue(
    department_id: int,
    *,
    start=None,
    end=None,
    status: str | None = None,
) -> list[SuspendedRevenue]:
    query = db.session.query(SuspendedRevenue).filter(SuspendedRevenue.department_id == department_id)
    if start is not None and end is not None:
        query = query.filter(SuspendedRevenue.date >= start, SuspendedRevenue.date <= end)
    if status is not None:
        query = query.filter(SuspendedRevenue.status == status)
    return query.order_by(SuspendedRevenue.date.desc(), SuspendedRevenue.id.desc()).all()


def suspended_total(department_id: int, *, start=None, end=None) -> int:
    """Every entry counts, whatever its investigation status."""
    query = db.session.query(func.coalesce(func.sum(SuspendedRevenue.amount_cents), 0)).filter(
        SuspendedRevenue.department_id == department_id
    )
    if start is not None and end is not None:
        query = query.filter(SuspendedRevenue.date >= start, SuspendedRevenue.date <= end)
    return int(query.scalar() or 0)
