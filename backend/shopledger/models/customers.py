from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Customer(db.Model):
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerPreference(db.Model):
    """Scents and bottle sizes a customer has bought before (one row per customer)."""
    __tablename__ = "customer_preferences"
    __table_args__ = (
        db.UniqueConstraint("customer_id", name="uq_customer_preferences_customer"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True)
    preferred_scents = db.Column(db.JSON, nullable=False, default=list)
    preferred_bottle_sizes = db.Column(db.JSON, nullable=False, default=list)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("preference", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "department_id": self.department_id,
            "preferred_scents": list(self.preferred_scents or []),
            "preferred_bottle_sizes": list(self.preferred_bottle_sizes or []),
            "updated_at": to_utc_z(self.updated_at),
        }
