from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


DEPARTMENT_KINDS = ("general", "perfume", "mobile_money")


class Department(db.Model):
    """
    A shop counter with its own stock, cash drawer and books.

    Departments lend to each other through Credit rows and are reconciled
    independently.
    """
    __tablename__ = "departments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    kind = db.Column(db.String(32), nullable=False, default="general")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Department id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
