# Overview: Flask API routes for inter-department credits.

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError, ValidationError
from ..services import credit_service
from ..validation import parse_int, parse_window, require_fields


credits_bp = Blueprint("credits", __name__, url_prefix="/api/credits")


def _department_arg() -> int:
    department_id = request.args.get("department_id", type=int)
    if not department_id:
        raise ValidationError("department_id is required")
    return department_id


@credits_bp.post("/")
def create_credit_route():
    try:
        data = request.get_json(silent=True) or {}
        require_fields(data, "from_department_id", "to_department_id", "amount_cents", "purpose")

        credit = credit_service.create_credit(
            parse_int("from_department_id", data["from_department_id"], minimum=1),
            parse_int("to_department_id", data["to_department_id"], minimum=1),
            data["amount_cents"],
            data["purpose"],
            data.get("transaction_type") or "interdepartmental",
            notes=data.get("notes"),
            created_by=data.get("created_by"),
        )
        return jsonify({"credit": credit.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create credit")
        return jsonify({"error": "Internal server error"}), 500


@credits_bp.get("/")
def list_credits_route():
    try:
        start, end = parse_window(request.args.get("start"), request.args.get("end"))
        credits = credit_service.list_credits(
            _department_arg(),
            status=request.args.get("status"),
            counterpart_id=request.args.get("counterpart_id", type=int),
            direction=request.args.get("direction"),
            settlement_status=request.args.get("settlement_status"),
            start=start,
            end=end,
        )
        return jsonify({"items": [c.to_dict() for c in credits], "count": len(credits)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@credits_bp.get("/totals")
def credit_totals_route():
    try:
        department_id = _department_arg()
        start, end = parse_window(request.args.get("start"), request.args.get("end"))
        totals = credit_service.credit_totals(department_id, start=start, end=end)
        return jsonify({"department_id": department_id, "totals": totals.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@credits_bp.get("/<int:credit_id>")
def get_credit_route(credit_id: int):
    try:
        return jsonify({"credit": credit_service.get_credit(credit_id).to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@credits_bp.post("/<int:credit_id>/approve")
def approve_credit_route(credit_id: int):
    try:
        data = request.get_json(silent=True) or {}
        credit = credit_service.approve(credit_id, data.get("approver"))
        return jsonify({"credit": credit.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to approve credit")
        return jsonify({"error": "Internal server error"}), 500


@credits_bp.post("/<int:credit_id>/reject")
def reject_credit_route(credit_id: int):
    try:
        data = request.get_json(silent=True) or {}
        credit = credit_service.reject(credit_id, data.get("approver"))
        return jsonify({"credit": credit.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reject credit")
        return jsonify({"error": "Internal server error"}), 500


@credits_bp.post("/<int:credit_id>/settle")
def settle_credit_route(credit_id: int):
    try:
        data = request.get_json(silent=True) or {}
        credit = credit_service.settle(credit_id, data.get("settled_by"))
        return jsonify({"credit": credit.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to settle credit")
        return jsonify({"error": "Internal server error"}), 500
