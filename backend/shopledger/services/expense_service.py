# Overview: Department expenses feeding the revenue report.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Expense
from ..time_utils import parse_business_date, today
from ..validation import parse_amount_cents
from .concurrency import unit_of_work
from .products_service import get_department


def record_expense(
    department_id: int,
    amount_cents,
    *,
    category: str | None = None,
    description: str | None = None,
    expense_date=None,
    created_by: str | None = None,
) -> Expense:
    amount = parse_amount_cents("amount_cents", amount_cents, allow_zero=False)
    try:
        day = parse_business_date(expense_date) or today()
    except ValueError:
        raise ValidationError("expense_date must be an ISO date (YYYY-MM-DD)")
    get_department(department_id)

    expense = Expense(
        department_id=department_id,
        category=(category or "Other").strip() or "Other",
        description=description,
        amount_cents=amount,
        expense_date=day,
        created_by=created_by,
    )
    with unit_of_work("record the expense"):
        db.session.add(expense)
        db.session.commit()

    current_app.logger.info("Expense %s recorded: department=%s amount=%s", expense.id, department_id, amount)
    return expense


def list_expenses(department_id: int, *, start=None, end=None, category: str | None = None) -> list[Expense]:
    query = db.session.query(Expense).filter(Expense.department_id == department_id)
    if start is not None and end is not None:
        query = query.filter(Expense.expense_date >= start, Expense.expense_date <= end)
    if category is not None:
        query = query.filter(Expense.category == category)
    return query.order_by(Expense.expense_date.desc(), Expense.id.desc()).all()


def expenses_by_category(department_id: int, *, start, end) -> dict[str, int]:
    rows = (
        db.session.query(Expense.category, func.sum(Expense.amount_cents))
        .filter(
            Expense.department_id == department_id,
            Expense.expense_date >= start,
            Expense.expense_date <= end,
        )
        .group_by(Expense.category)
        .order_by(Expense.category.asc())
        .all()
    )
    return {category: int(total or 0) for category, total in rows}
