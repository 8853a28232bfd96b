from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/revenue")
def revenue_report_route():
    department_id = request.args.get("department_id", type=int)
    if not department_id:
        return jsonify({"error": "department_id is required", "code": "validation_error"}), 400

    try:
        report = reporting_service.revenue_report(
            department_id,
            request.args.get("start"),
            request.args.get("end"),
        )
        return jsonify(report), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build revenue report")
        return jsonify({"error": "Internal server error"}), 500
