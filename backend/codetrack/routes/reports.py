# Overview: Flask API routes for validation reports and their corrections.

from flask import Blueprint, current_app, jsonify, g, request
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..decorators import require_actor
from ..errors import TrackingError
from ..extensions import db
from ..services import report_service
from ..services.concurrency import commit_or_rollback
from ..validation import coerce_bool, coerce_int, json_body, pagination_args, require_field


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("")
@require_actor
def list_reports_route():
    """
    Query parameters:
    - org_id: reports where the org is either side (defaults to X-Actor-Org-Id)
    - session_id, batch_id, report_type
    - limit / offset
    """
    limit, offset = pagination_args()
    reports, total = report_service.list_reports(
        org_id=request.args.get("org_id", type=int) or g.actor_org_id,
        session_id=request.args.get("session_id", type=int),
        batch_id=request.args.get("batch_id", type=int),
        report_type=request.args.get("report_type"),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [r.to_dict() for r in reports],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@reports_bp.get("/<int:report_id>")
@require_actor
def get_report_route(report_id: int):
    try:
        return jsonify(report_service.get_report(report_id).to_dict())
    except TrackingError as e:
        return jsonify(e.to_dict()), e.http_status


@reports_bp.post("/<int:report_id>/corrections")
@require_actor
def correct_report_route(report_id: int):
    """
    Supersede a report with corrected quantities. The original is unchanged.

    Request body:
    {
        "expected_quantity": int,        // required
        "scanned_quantity": int,         // required
        "note": str,                     // required
        "approve_discrepancy": bool      // optional
    }
    """
    try:
        data = json_body()
        report = report_service.create_correction(
            report_id=report_id,
            expected_quantity=coerce_int(data.get("expected_quantity"), "expected_quantity", required=True, minimum=0),
            scanned_quantity=coerce_int(data.get("scanned_quantity"), "scanned_quantity", required=True, minimum=0),
            note=require_field(data, "note"),
            user_id=g.actor_user_id,
            discrepancy_approved=coerce_bool(data.get("approve_discrepancy"), "approve_discrepancy"),
        )
        commit_or_rollback()
        return jsonify(report.to_dict()), 201
    except TrackingError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.http_status
    except (OperationalError, StaleDataError):
        db.session.rollback()
        return jsonify({"error": "Concurrent update, please retry", "code": "CONFLICT_RETRY"}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to correct report %s", report_id)
        return jsonify({"error": "Internal server error"}), 500
