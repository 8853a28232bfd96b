# Overview: Inter-department credit ledger with approval and settlement state machines.

"""
Two independent axes, each guarded at write time:

- approval:   pending -> approved | rejected          (one shot)
- settlement: unsettled -> settled                    (only once approved)

Transitions are conditional UPDATEs keyed on the expected prior state, so
two admins clicking "approve" at once produce one approval and one
AlreadyDecided.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy import and_, or_, update

from ..errors import AlreadyDecided, AlreadySettled, NotApproved, NotFound, ValidationError
from ..extensions import db
from ..models import Credit
from ..models.credits import (
    APPROVAL_TRANSITIONS,
    CREDIT_APPROVED,
    CREDIT_PARTIAL,
    CREDIT_PENDING,
    CREDIT_REJECTED,
    CREDIT_SETTLED,
    CREDIT_STATUSES,
    SETTLED,
    SETTLEMENT_TRANSITIONS,
    TRANSACTION_TYPES,
    UNSETTLED,
)
from ..time_utils import utcnow, window_bounds
from ..validation import parse_amount_cents
from .concurrency import run_with_retry, unit_of_work
from .products_service import get_department


# Approval states that make a credit a real debt. No transition here writes
# partial or settled; they arrive only on rows imported from older ledgers.
COUNTED_STATUSES = (CREDIT_APPROVED, CREDIT_PARTIAL, CREDIT_SETTLED)

DIRECTION_IN = "in"
DIRECTION_OUT = "out"


@dataclass
class CreditTotals:
    """Approved credits relative to one department, in cents."""
    unsettled_in: int = 0
    unsettled_out: int = 0
    settled_in: int = 0
    settled_out: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def create_credit(
    from_department_id: int,
    to_department_id: int,
    amount_cents,
    purpose: str,
    transaction_type: str = "interdepartmental",
    *,
    notes: str | None = None,
    created_by: str | None = None,
) -> Credit:
    """Record a pending, unsettled IOU from one department to another."""
    amount = parse_amount_cents("amount_cents", amount_cents, allow_zero=False)
    if from_department_id == to_department_id:
        raise ValidationError("A department cannot owe itself")
    if not purpose or not purpose.strip():
        raise ValidationError("purpose is required")
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"transaction_type must be one of {', '.join(TRANSACTION_TYPES)}")
    get_department(from_department_id)
    get_department(to_department_id)

    credit = Credit(
        from_department_id=from_department_id,
        to_department_id=to_department_id,
        amount_cents=amount,
        purpose=purpose.strip(),
        transaction_type=transaction_type,
        notes=notes,
        status=CREDIT_PENDING,
        settlement_status=UNSETTLED,
        created_by=created_by,
    )
    with unit_of_work("record the credit"):
        db.session.add(credit)
        db.session.commit()

    current_app.logger.info(
        "Credit %s created: %s -> %s amount=%s",
        credit.id, from_department_id, to_department_id, amount,
    )
    return credit


def get_credit(credit_id: int) -> Credit:
    credit = db.session.get(Credit, credit_id)
    if credit is None:
        raise NotFound("credit", credit_id)
    return credit


def set_approval(credit_id: int, status: str, approver: str) -> Credit:
    """
    One-shot approval decision.

    Raises AlreadyDecided if the credit has left pending, including when a
    concurrent decision landed first.
    """
    allowed = APPROVAL_TRANSITIONS[CREDIT_PENDING]
    if status not in allowed:
        raise ValidationError(f"status must be one of {', '.join(sorted(allowed))}")
    if not approver or not approver.strip():
        raise ValidationError("approver is required")

    def _op() -> int:
        stmt = (
            update(Credit)
            .where(Credit.id == credit_id, Credit.status == CREDIT_PENDING)
            .values(status=status, approved_by=approver.strip(), approved_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        rowcount = db.session.execute(stmt).rowcount
        db.session.commit()
        return rowcount

    with unit_of_work("record the credit decision"):
        rowcount = run_with_retry(_op)

    credit = db.session.get(Credit, credit_id, populate_existing=True)
    if credit is None:
        raise NotFound("credit", credit_id)
    if rowcount != 1:
        raise AlreadyDecided(
            f"Credit {credit_id} was already {credit.status}",
            details={"credit_id": credit_id, "status": credit.status},
        )

    current_app.logger.info("Credit %s %s by %s", credit_id, status, approver)
    return credit


def approve(credit_id: int, approver: str) -> Credit:
    return set_approval(credit_id, CREDIT_APPROVED, approver)


def reject(credit_id: int, approver: str) -> Credit:
    return set_approval(credit_id, CREDIT_REJECTED, approver)


def settle(credit_id: int, settled_by: str | None = None) -> Credit:
    """
    Mark an approved credit as repaid.

    AlreadySettled wins over NotApproved when both would apply.
    """
    from_states = [state for state, targets in SETTLEMENT_TRANSITIONS.items() if SETTLED in targets]

    def _op() -> int:
        stmt = (
            update(Credit)
            .where(
                Credit.id == credit_id,
                Credit.settlement_status.in_(from_states),
                Credit.status.in_(COUNTED_STATUSES),
            )
            .values(settlement_status=SETTLED, settled_by=settled_by, settled_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        rowcount = db.session.execute(stmt).rowcount
        db.session.commit()
        return rowcount

    with unit_of_work("settle the credit"):
        rowcount = run_with_retry(_op)

    credit = db.session.get(Credit, credit_id, populate_existing=True)
    if credit is None:
        raise NotFound("credit", credit_id)
    if rowcount != 1:
        if credit.settlement_status == SETTLED:
            raise AlreadySettled(
                f"Credit {credit_id} is already settled",
                details={"credit_id": credit_id, "settled_at": credit.to_dict()["settled_at"]},
            )
        raise NotApproved(
            f"Credit {credit_id} is {credit.status}; only approved credits can be settled",
            details={"credit_id": credit_id, "status": credit.status},
        )

    current_app.logger.info("Credit %s settled by %s", credit_id, settled_by or "-")
    return credit


def list_credits(
    department_id: int,
    *,
    status: str | None = None,
    counterpart_id: int | None = None,
    direction: str | None = None,
    settlement_status: str | None = None,
    start=None,
    end=None,
) -> list[Credit]:
    """
    Credits touching a department.

    direction "in" means the department is to_department (money owed to
    it); "out" means it is from_department.
    """
    if status is not None and status not in CREDIT_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(CREDIT_STATUSES)}")
    if direction not in (None, DIRECTION_IN, DIRECTION_OUT):
        raise ValidationError("direction must be 'in' or 'out'")

    if direction == DIRECTION_IN:
        touching = Credit.to_department_id == department_id
    elif direction == DIRECTION_OUT:
        touching = Credit.from_department_id == department_id
    else:
        touching = or_(Credit.to_department_id == department_id, Credit.from_department_id == department_id)

    query = db.session.query(Credit).filter(touching)
    if counterpart_id is not None:
        query = query.filter(or_(
            and_(Credit.to_department_id == department_id, Credit.from_department_id == counterpart_id),
            and_(Credit.from_department_id == department_id, Credit.to_department_id == counterpart_id),
        ))
    if status is not None:
        query = query.filter(Credit.status == status)
    if settlement_status is not None:
        query = query.filter(Credit.settlement_status == settlement_status)
    if start is not None and end is not None:
        lower, upper = window_bounds(start, end)
        query = query.filter(Credit.created_at >= lower, Credit.created_at < upper)
    return query.order_by(Credit.created_at.desc(), Credit.id.desc()).all()


def bucket_credit(credit: Credit, department_id: int, totals: CreditTotals) -> None:
    """Add one approved credit to the department's four-bucket split."""
    if credit.status not in COUNTED_STATUSES:
        return
    settled = credit.settlement_status == SETTLED
    if credit.to_department_id == department_id:
        if settled:
            totals.settled_in += credit.amount_cents
        else:
            totals.unsettled_in += credit.amount_cents
    elif credit.from_department_id == department_id:
        if settled:
            totals.settled_out += credit.amount_cents
        else:
            totals.unsettled_out += credit.amount_cents


def credit_totals(department_id: int, *, start=None, end=None) -> CreditTotals:
    totals = CreditTotals()
    for credit in list_credits(department_id, start=start, end=end):
        bucket_credit(credit, department_id, totals)
    return totals
