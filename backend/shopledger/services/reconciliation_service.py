# Overview: End-of-day cash reconciliation and surplus routing.

"""
Reconciliation rules

- system cash = sum of Sale.total for the department and business date,
  payment_method == cash, status != voided. Card, bank and mobile money
  never touch the drawer.
- discrepancy = reported - system (negative is a shortage).
- status: completed when discrepancy is exactly zero, else pending until an
  admin approves or rejects it. Only approved reconciliations feed the
  revenue report.
- A positive discrepancy also records SuspendedRevenue. That second write
  is best-effort: the reconciliation is committed first and a failure here
  only produces a warning.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..errors import AlreadyDecided, Conflict, NotFound, ValidationError
from ..extensions import db
from ..models import Reconciliation, Sale, SuspendedRevenue
from ..models.cash import (
    RECONCILIATION_APPROVED,
    RECONCILIATION_COMPLETED,
    RECONCILIATION_PENDING,
    RECONCILIATION_REJECTED,
)
from ..models.sales import SALE_VOIDED
from ..time_utils import day_bounds, parse_business_date, utcnow
from ..validation import parse_amount_cents
from .concurrency import run_with_retry, unit_of_work
from .products_service import get_department
from .suspended_revenue_service import SOURCE_RECONCILIATION, record_suspended_revenue


CASH = "cash"
REVIEW_STATUSES = (RECONCILIATION_APPROVED, RECONCILIATION_REJECTED)


@dataclass
class ReconciliationResult:
    reconciliation: Reconciliation
    suspended_revenue: SuspendedRevenue | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "reconciliation": self.reconciliation.to_dict(),
            "suspended_revenue": self.suspended_revenue.to_dict() if self.suspended_revenue else None,
            "warnings": list(self.warnings),
        }


def compute_system_cash(department_id: int, day) -> int:
    lower, upper = day_bounds(day)
    total = (
        db.session.query(func.coalesce(func.sum(Sale.total_cents), 0))
        .filter(
            Sale.department_id == department_id,
            Sale.payment_method == CASH,
            Sale.status != SALE_VOIDED,
            Sale.created_at >= lower,
            Sale.created_at < upper,
        )
        .scalar()
    )
    return int(total or 0)


def reconcile(
    department_id: int,
    day,
    cashier_name: str,
    reported_cash_cents,
    *,
    notes: str | None = None,
) -> ReconciliationResult:
    """
    Compare a cashier's count with system cash for one business date.

    Raises ValidationError, NotFound, Conflict (one count per department,
    date and cashier) or PersistenceFailure.
    """
    try:
        day = parse_business_date(day)
    except ValueError:
        raise ValidationError("date must be an ISO date (YYYY-MM-DD)")
    if day is None:
        raise ValidationError("date is required")
    if not cashier_name or not cashier_name.strip():
        raise ValidationError("cashier_name is required")
    cashier_name = cashier_name.strip()
    reported = parse_amount_cents("reported_cash_cents", reported_cash_cents)
    get_department(department_id)

    duplicate = (
        db.session.query(Reconciliation.id)
        .filter_by(department_id=department_id, date=day, cashier_name=cashier_name)
        .first()
    )
    if duplicate is not None:
        raise Conflict(
            f"{cashier_name} has already reconciled {day.isoformat()}",
            details={"reconciliation_id": duplicate[0]},
        )

    system_cash = compute_system_cash(department_id, day)
    discrepancy = reported - system_cash
    reconciliation = Reconciliation(
        department_id=department_id,
        date=day,
        cashier_name=cashier_name,
        system_cash_cents=system_cash,
        reported_cash_cents=reported,
        discrepancy_cents=discrepancy,
        notes=notes,
        status=RECONCILIATION_COMPLETED if discrepancy == 0 else RECONCILIATION_PENDING,
    )

    with unit_of_work("save the reconciliation"):
        try:
            db.session.add(reconciliation)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict(f"{cashier_name} has already reconciled {day.isoformat()}")

    current_app.logger.info(
        "Reconciliation %s: department=%s date=%s system=%s reported=%s discrepancy=%s",
        reconciliation.id, department_id, day, system_cash, reported, discrepancy,
    )

    result = ReconciliationResult(reconciliation=reconciliation)
    if discrepancy > 0:
        try:
            result.suspended_revenue = _record_surplus(reconciliation)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Reconciliation %s saved but its surplus could not be suspended: %s",
                reconciliation.id, exc,
            )
            result.warnings.append(
                "Reconciliation saved, but the surplus could not be recorded as suspended revenue. "
                "Record it manually."
            )
    return result


def _record_surplus(reconciliation: Reconciliation) -> SuspendedRevenue:
    return record_suspended_revenue(
        reconciliation.department_id,
        reconciliation.discrepancy_cents,
        f"Surplus from reconciliation on {reconciliation.date.isoformat()}",
        date=reconciliation.date,
        cashier_name=reconciliation.cashier_name,
        created_by=reconciliation.cashier_name,
        source=SOURCE_RECONCILIATION,
        reconciliation_id=reconciliation.id,
    )


def get_reconciliation(reconciliation_id: int) -> Reconciliation:
    row = db.session.get(Reconciliation, reconciliation_id)
    if row is None:
        raise NotFound("reconciliation", reconciliation_id)
    return row


def review_reconciliation(reconciliation_id: int, status: str, actor: str) -> Reconciliation:
    """Approve or reject a pending reconciliation. Completed ones are final."""
    if status not in REVIEW_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(REVIEW_STATUSES)}")
    if not actor or not actor.strip():
        raise ValidationError("actor is required")

    def _op() -> int:
        stmt = (
            update(Reconciliation)
            .where(Reconciliation.id == reconciliation_id, Reconciliation.status == RECONCILIATION_PENDING)
            .values(status=status, reviewed_by=actor.strip(), reviewed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        rowcount = db.session.execute(stmt).rowcount
        db.session.commit()
        return rowcount

    with unit_of_work("review the reconciliation"):
        rowcount = run_with_retry(_op)

    row = db.session.get(Reconciliation, reconciliation_id, populate_existing=True)
    if row is None:
        raise NotFound("reconciliation", reconciliation_id)
    if rowcount != 1:
        raise AlreadyDecided(
            f"Reconciliation {reconciliation_id} is already {row.status}",
            details={"reconciliation_id": reconciliation_id, "status": row.status},
        )

    current_app.logger.info("Reconciliation %s %s by %s", reconciliation_id, status, actor)
    return row


def list_reconciliations(
    department_id: int,
    *,
    start=None,
    end=None,
    status: str | None = None,
) -> list[Reconciliation]:
    query = db.session.query(Reconciliation).filter(Reconciliation.department_id == department_id)
    if start is not None and end is not None:
        query = query.filter(Reconciliation.date >= start, Reconciliation.date <= end)
    if status is not None:
        query = query.filter(Reconciliation.status == status)
    return query.order_by(Reconciliation.date.desc(), Reconciliation.id.desc()).all()
