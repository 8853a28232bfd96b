from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Approval axis
CREDIT_PENDING = "pending"
CREDIT_APPROVED = "approved"
CREDIT_REJECTED = "rejected"
# partial and settled only arrive on imported rows; approval never writes them
CREDIT_PARTIAL = "partial"
CREDIT_SETTLED = "settled"
CREDIT_STATUSES = (CREDIT_PENDING, CREDIT_APPROVED, CREDIT_REJECTED, CREDIT_PARTIAL, CREDIT_SETTLED)

# Settlement axis
UNSETTLED = "unsettled"
SETTLED = "settled"

# Legal transitions, one table per axis
APPROVAL_TRANSITIONS = {
    CREDIT_PENDING: {CREDIT_APPROVED, CREDIT_REJECTED},
}
SETTLEMENT_TRANSITIONS = {
    UNSETTLED: {SETTLED},
}

TRANSACTION_TYPES = ("interdepartmental", "customer_credit", "loan")


class Credit(db.Model):
    """
    Directed IOU: from_department owes to_department nothing until the
    credit is approved; settlement records that the money went back.
    """
    __tablename__ = "credits"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_credits_amount_positive"),
        db.CheckConstraint("from_department_id <> to_department_id", name="ck_credits_distinct_departments"),
        db.Index("ix_credits_from_status", "from_department_id", "status"),
        db.Index("ix_credits_to_status", "to_department_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False)
    to_department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    purpose = db.Column(db.String(255), nullable=False)
    transaction_type = db.Column(db.String(32), nullable=False, default="interdepartmental")
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=CREDIT_PENDING, index=True)
    settlement_status = db.Column(db.String(16), nullable=False, default=UNSETTLED, index=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    approved_by = db.Column(db.String(128), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    settled_by = db.Column(db.String(128), nullable=True)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    from_department = db.relationship("Department", foreign_keys=[from_department_id])
    to_department = db.relationship("Department", foreign_keys=[to_department_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_department_id": self.from_department_id,
            "to_department_id": self.to_department_id,
            "amount_cents": self.amount_cents,
            "purpose": self.purpose,
            "transaction_type": self.transaction_type,
            "notes": self.notes,
            "status": self.status,
            "settlement_status": self.settlement_status,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "settled_by": self.settled_by,
            "settled_at": to_utc_z(self.settled_at) if self.settled_at else None,
        }
