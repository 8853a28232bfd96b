# backend/shopledger/routes/system.py
"""
System health endpoint.

Reports database connectivity and row counts for the main ledgers.
"""

import time

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import Credit, Department, Product, Sale
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "departments": db.session.query(Department).count(),
            "products": db.session.query(Product).count(),
            "sales": db.session.query(Sale).count(),
            "credits": db.session.query(Credit).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


@system_bp.get("/health")
def health():
    database = check_database_health()
    status = 200 if database["status"] == "healthy" else 503
    return jsonify({
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), status
