# Overview: Revenue aggregation; folds sales, credits, reconciliations, expenses and suspended revenue.

"""
Adjusted net sales for one department and date window:

    adjusted_total_sales =
        gross_sales
      + unsettled_credits_in
      - unsettled_credits_out
      - settled_credits_in          (money now paid back out)
      + settled_credits_out         (money now received back)
      - total_expenses
      + reconciliation_discrepancy_sum   (approved reconciliations only)
      - total_suspended_revenue          (every status)

aggregate_revenue() is pure: it takes plain records and never touches the
session, so the formula can be tested without a database.
load_revenue_inputs() does the querying.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Iterable

from flask import current_app
from sqlalchemy.orm import joinedload, selectinload

from ..errors import ValidationError
from ..extensions import db
from ..models import Sale, SaleItem
from ..models.cash import RECONCILIATION_APPROVED
from ..models.sales import SALE_VOIDED
from ..time_utils import parse_business_date, to_iso_date, window_bounds
from .credit_service import CreditTotals, bucket_credit, list_credits
from .expense_service import expenses_by_category, list_expenses
from .products_service import get_department
from .reconciliation_service import list_reconciliations
from .suspended_revenue_service import list_suspended_revenue


DEFAULT_NON_CASH_METHODS = ("mobile_money", "card", "bank")


@dataclass(frozen=True)
class LineRecord:
    quantity: float
    subtotal_cents: int
    product_cost_cents: int | None = None
    service_cost_cents: int | None = None


@dataclass(frozen=True)
class SaleRecord:
    payment_method: str
    status: str
    total_cents: int
    lines: tuple[LineRecord, ...] = ()


@dataclass(frozen=True)
class CreditRecord:
    from_department_id: int
    to_department_id: int
    amount_cents: int
    status: str
    settlement_status: str


@dataclass(frozen=True)
class ReconciliationRecord:
    status: str
    discrepancy_cents: int


@dataclass
class RevenueInputs:
    department_id: int
    sales: list[SaleRecord] = field(default_factory=list)
    credits: list[CreditRecord] = field(default_factory=list)
    reconciliations: list[ReconciliationRecord] = field(default_factory=list)
    expenses_cents: list[int] = field(default_factory=list)
    suspended_cents: list[int] = field(default_factory=list)


@dataclass
class RevenueSummary:
    gross_sales_cents: int
    non_cash_sales_cents: int
    transaction_count: int
    product_revenue_cents: int
    service_revenue_cents: int
    unsettled_credits_in_cents: int
    unsettled_credits_out_cents: int
    settled_credits_in_cents: int
    settled_credits_out_cents: int
    total_expenses_cents: int
    reconciliation_discrepancy_cents: int
    total_suspended_revenue_cents: int
    adjusted_total_sales_cents: int
    cogs_cents: int
    coso_cents: int
    gross_profit_cents: int
    adjusted_gross_profit_cents: int

    def to_dict(self) -> dict:
        return asdict(self)


def adjusted_total_sales(
    gross_sales: int,
    credits: CreditTotals,
    total_expenses: int,
    reconciliation_discrepancy_sum: int,
    total_suspended: int,
) -> int:
    return (
        gross_sales
        + credits.unsettled_in
        - credits.unsettled_out
        - credits.settled_in
        + credits.settled_out
        - total_expenses
        + reconciliation_discrepancy_sum
        - total_suspended
    )


def aggregate_revenue(
    inputs: RevenueInputs,
    non_cash_methods: Iterable[str] = DEFAULT_NON_CASH_METHODS,
) -> RevenueSummary:
    """Fold one window of records into the reporting figures."""
    non_cash = set(non_cash_methods)

    gross = 0
    non_cash_total = 0
    count = 0
    product_revenue = 0
    service_revenue = 0
    cogs = 0.0
    coso = 0.0
    for sale in inputs.sales:
        if sale.status == SALE_VOIDED:
            continue
        if sale.payment_method in non_cash:
            non_cash_total += sale.total_cents
            continue
        gross += sale.total_cents
        count += 1
        for line in sale.lines:
            if line.service_cost_cents is not None:
                service_revenue += line.subtotal_cents
                coso += line.service_cost_cents * line.quantity
            else:
                product_revenue += line.subtotal_cents
                if line.product_cost_cents is not None:
                    cogs += line.product_cost_cents * line.quantity

    # CreditRecord quacks like Credit for bucketing
    credits = CreditTotals()
    for credit in inputs.credits:
        bucket_credit(credit, inputs.department_id, credits)

    discrepancy = sum(
        r.discrepancy_cents for r in inputs.reconciliations if r.status == RECONCILIATION_APPROVED
    )
    expenses = sum(inputs.expenses_cents)
    suspended = sum(inputs.suspended_cents)

    adjusted = adjusted_total_sales(gross, credits, expenses, discrepancy, suspended)
    cogs_cents = int(round(cogs))
    coso_cents = int(round(coso))
    costs = cogs_cents + coso_cents

    return RevenueSummary(
        gross_sales_cents=gross,
        non_cash_sales_cents=non_cash_total,
        transaction_count=count,
        product_revenue_cents=product_revenue,
        service_revenue_cents=service_revenue,
        unsettled_credits_in_cents=credits.unsettled_in,
        unsettled_credits_out_cents=credits.unsettled_out,
        settled_credits_in_cents=credits.settled_in,
        settled_credits_out_cents=credits.settled_out,
        total_expenses_cents=expenses,
        reconciliation_discrepancy_cents=discrepancy,
        total_suspended_revenue_cents=suspended,
        adjusted_total_sales_cents=adjusted,
        cogs_cents=cogs_cents,
        coso_cents=coso_cents,
        gross_profit_cents=gross - costs,
        adjusted_gross_profit_cents=adjusted - costs,
    )


def _line_record(item: SaleItem) -> LineRecord:
    if item.service is not None:
        return LineRecord(
            quantity=item.quantity,
            subtotal_cents=item.subtotal_cents,
            service_cost_cents=item.service.material_cost_cents or 0,
        )
    return LineRecord(
        quantity=item.quantity,
        subtotal_cents=item.subtotal_cents,
        product_cost_cents=item.product.cost_price_cents if item.product is not None else None,
    )


def load_revenue_inputs(department_id: int, start, end) -> RevenueInputs:
    lower, upper = window_bounds(start, end)
    sales = (
        db.session.query(Sale)
        .options(
            selectinload(Sale.items).joinedload(SaleItem.product),
            selectinload(Sale.items).joinedload(SaleItem.service),
        )
        .filter(
            Sale.department_id == department_id,
            Sale.status != SALE_VOIDED,
            Sale.created_at >= lower,
            Sale.created_at < upper,
        )
        .all()
    )

    return RevenueInputs(
        department_id=department_id,
        sales=[
            SaleRecord(
                payment_method=sale.payment_method,
                status=sale.status,
                total_cents=sale.total_cents,
                lines=tuple(_line_record(item) for item in sale.items),
            )
            for sale in sales
        ],
        credits=[
            CreditRecord(
                from_department_id=c.from_department_id,
                to_department_id=c.to_department_id,
                amount_cents=c.amount_cents,
                status=c.status,
                settlement_status=c.settlement_status,
            )
            for c in list_credits(department_id, start=start, end=end)
        ],
        reconciliations=[
            ReconciliationRecord(status=r.status, discrepancy_cents=r.discrepancy_cents)
            for r in list_reconciliations(department_id, start=start, end=end)
        ],
        expenses_cents=[e.amount_cents for e in list_expenses(department_id, start=start, end=end)],
        suspended_cents=[s.amount_cents for s in list_suspended_revenue(department_id, start=start, end=end)],
    )


def revenue_report(department_id: int, start, end, *, non_cash_methods: Iterable[str] | None = None) -> dict:
    try:
        start = parse_business_date(start)
        end = parse_business_date(end)
    except ValueError:
        raise ValidationError("start and end must be ISO dates (YYYY-MM-DD)")
    if start is None or end is None:
        raise ValidationError("start and end are required")
    if end < start:
        raise ValidationError("end must not be before start")

    department = get_department(department_id)
    if non_cash_methods is None:
        non_cash_methods = current_app.config.get("NON_CASH_PAYMENT_METHODS", DEFAULT_NON_CASH_METHODS)

    summary = aggregate_revenue(load_revenue_inputs(department_id, start, end), non_cash_methods)
    return {
        "department_id": department.id,
        "department_name": department.name,
        "start": to_iso_date(start),
        "end": to_iso_date(end),
        "summary": summary.to_dict(),
        "expenses_by_category": expenses_by_category(department_id, start=start, end=end),
    }
