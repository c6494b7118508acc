# Overview: Flask API routes for distributor-side shipment confirmation.

from flask import Blueprint, current_app, jsonify, g
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..decorators import require_actor
from ..errors import TrackingError
from ..extensions import db
from ..services import shipment_service
from ..services.concurrency import commit_or_rollback
from ..validation import coerce_int, json_body


distributor_bp = Blueprint("distributor", __name__, url_prefix="/api/distributor")


@distributor_bp.post("/shipments/<int:session_id>/confirm")
@require_actor
def confirm_shipment_route(session_id: int):
    """
    Confirm receipt of a closed shipment.

    Request body:
    {
        "distributor_org_id": int,     // optional, defaults to X-Actor-Org-Id
        "unique_codes": [str, ...]     // optional; omit to confirm every shipped unit
    }

    Returns:
        201: distributor_confirmation report
        403: not the shipment's destination
        409: session not closed / already confirmed
    """
    try:
        data = json_body()
        report = shipment_service.confirm_receipt(
            session_id=session_id,
            distributor_org_id=coerce_int(data.get("distributor_org_id"), "distributor_org_id") or g.actor_org_id,
            unique_codes=data.get("unique_codes"),
            user_id=g.actor_user_id,
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
        current_app.logger.exception("Failed to confirm shipment %s", session_id)
        return jsonify({"error": "Internal server error"}), 500
