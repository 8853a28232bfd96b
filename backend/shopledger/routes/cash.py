# Overview: Flask API routes for reconciliations, suspended revenue and expenses.

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError, ValidationError
from ..services import expense_service, reconciliation_service, suspended_revenue_service
from ..validation import parse_int, parse_window, require_fields


cash_bp = Blueprint("cash", __name__, url_prefix="/api")


def _department_arg() -> int:
    department_id = request.args.get("department_id", type=int)
    if not department_id:
        raise ValidationError("department_id is required")
    return department_id


# =============================================================================
# RECONCILIATIONS
# =============================================================================

@cash_bp.post("/reconciliations")
def reconcile_route():
    """
    Body: {"department_id", "date", "cashier_name", "reported_cash_cents", "notes"?}

    201 even when the surplus could not be suspended; check "warnings".
    """
    try:
        data = request.get_json(silent=True) or {}
        require_fields(data, "department_id", "date", "cashier_name", "reported_cash_cents")

        result = reconciliation_service.reconcile(
            parse_int("department_id", data["department_id"], minimum=1),
            data["date"],
            data["cashier_name"],
            data["reported_cash_cents"],
            notes=data.get("notes"),
        )
        return jsonify(result.to_dict()), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reconcile")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.get("/reconciliations")
def list_reconciliations_route():
    try:
        start, end = parse_window(request.args.get("start"), request.args.get("end"))
        rows = reconciliation_service.list_reconciliations(
            _department_arg(), start=start, end=end, status=request.args.get("status"),
        )
        return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@cash_bp.get("/reconciliations/<int:reconciliation_id>")
def get_reconciliation_route(reconciliation_id: int):
    try:
        row = reconciliation_service.get_reconciliation(reconciliation_id)
        return jsonify({"reconciliation": row.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@cash_bp.post("/reconciliations/<int:reconciliation_id>/review")
def review_reconciliation_route(reconciliation_id: int):
    """Body: {"status": "approved" | "rejected", "actor": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        row = reconciliation_service.review_reconciliation(
            reconciliation_id, data.get("status"), data.get("actor"),
        )
        return jsonify({"reconciliation": row.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to review reconciliation")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SUSPENDED REVENUE
# =============================================================================

@cash_bp.post("/suspended-revenue")
def create_suspended_revenue_route():
    try:
        data = request.get_json(silent=True) or {}
        require_fields(data, "department_id", "amount_cents", "reason")

        row = suspended_revenue_service.record_suspended_revenue(
            parse_int("department_id", data["department_id"], minimum=1),
            data["amount_cents"],
            data["reason"],
            date=data.get("date"),
            cashier_name=data.get("cashier_name"),
            created_by=data.get("created_by"),
        )
        return jsonify({"suspended_revenue": row.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record suspended revenue")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.get("/suspended-revenue")
def list_suspended_revenue_route():
    try:
        start, end = parse_window(request.args.get("start"), request.args.get("end"))
        rows = suspended_revenue_service.list_suspended_revenue(
            _department_arg(), start=start, end=end, status=request.args.get("status"),
        )
        return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@cash_bp.patch("/suspended-revenue/<int:entry_id>")
def update_suspended_revenue_route(entry_id: int):
    """Body: {"status": "pending" | "explained" | "approved" | "rejected", "notes"?}"""
    try:
        data = request.get_json(silent=True) or {}
        row = suspended_revenue_service.update_investigation(entry_id, data.get("status"), data.get("notes"))
        return jsonify({"suspended_revenue": row.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update suspended revenue")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# EXPENSES
# =============================================================================

@cash_bp.post("/expenses")
def create_expense_route():
    try:
        data = request.get_json(silent=True) or {}
        require_fields(data, "department_id", "amount_cents")

        expense = expense_service.record_expense(
            parse_int("department_id", data["department_id"], minimum=1),
            data["amount_cents"],
            category=data.get("category"),
            description=data.get("description"),
            expense_date=data.get("expense_date"),
            created_by=data.get("created_by"),
        )
        return jsonify({"expense": expense.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record expense")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.get("/expenses")
def list_expenses_route():
    try:
        start, end = parse_window(request.args.get("start"), request.args.get("end"))
        rows = expense_service.list_expenses(
            _department_arg(), start=start, end=end, category=request.args.get("category"),
        )
        return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
