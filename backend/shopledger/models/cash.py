from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


RECONCILIATION_PENDING = "pending"
RECONCILIATION_COMPLETED = "completed"
RECONCILIATION_APPROVED = "approved"
RECONCILIATION_REJECTED = "rejected"

SUSPENDED_PENDING = "pending"
SUSPENDED_STATUSES = ("pending", "explained", "approved", "rejected")


class Reconciliation(db.Model):
    """
    End-of-day cash count for one cashier in one department.

    discrepancy_cents = reported_cash_cents - system_cash_cents
    """
    __tablename__ = "reconciliations"
    __table_args__ = (
        db.UniqueConstraint("department_id", "date", "cashier_name", name="uq_reconciliations_dept_date_cashier"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    cashier_name = db.Column(db.String(128), nullable=False)

    system_cash_cents = db.Column(db.Integer, nullable=False)
    reported_cash_cents = db.Column(db.Integer, nullable=False)
    discrepancy_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=RECONCILIATION_PENDING, index=True)
    reviewed_by = db.Column(db.String(128), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "date": to_iso_date(self.date),
            "cashier_name": self.cashier_name,
            "system_cash_cents": self.system_cash_cents,
            "reported_cash_cents": self.reported_cash_cents,
            "discrepancy_cents": self.discrepancy_cents,
            "notes": self.notes,
            "status": self.status,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": to_utc_z(self.reviewed_at) if self.reviewed_at else None,
            "created_at": to_utc_z(self.created_at),
        }


class SuspendedRevenue(db.Model):
    """
    Cash that turned up without an explanation, held outside revenue until
    someone investigates it.
    """
    __tablename__ = "suspended_revenue"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_suspended_revenue_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    reconciliation_id = db.Column(db.Integer, db.ForeignKey("reconciliations.id"), nullable=True, index=True)
    # reconciliation or manual
    source = db.Column(db.String(16), nullable=False, default="reconciliation")

    cashier_name = db.Column(db.String(128), nullable=True)
    date = db.Column(db.Date, nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SUSPENDED_PENDING, index=True)
    investigation_notes = db.Column(db.Text, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "reconciliation_id": self.reconciliation_id,
            "source": self.source,
            "cashier_name": self.cashier_name,
            "date": to_iso_date(self.date),
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "status": self.status,
            "investigation_notes": self.investigation_notes,
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class Expense(db.Model):
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_department_date", "department_id", "expense_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False)
    category = db.Column(db.String(64), nullable=False, default="Other")
    description = db.Column(db.String(255), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    expense_date = db.Column(db.Date, nullable=False)
    created_by = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "category": self.category,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "expense_date": to_iso_date(self.expense_date),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
