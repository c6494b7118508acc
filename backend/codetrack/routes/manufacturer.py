# Overview: Flask API routes for factory-floor scanning and case packing.

from flask import Blueprint, current_app, jsonify, g
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..decorators import require_actor
from ..errors import TrackingError
from ..extensions import db
from ..services import packing_service
from ..services.concurrency import commit_or_rollback
from ..validation import coerce_int, json_body, require_field


manufacturer_bp = Blueprint("manufacturer", __name__, url_prefix="/api/manufacturer")


def _conflict_response():
    db.session.rollback()
    return jsonify({"error": "Concurrent update, please retry", "code": "CONFLICT_RETRY"}), 409


@manufacturer_bp.post("/scan-unique")
@require_actor
def scan_unique_route():
    """
    Scan one unit label at the factory.

    Request body:
    {
        "qr_code": str,      // required; bare code or tracking URL
        "org_id": int        // optional, defaults to X-Actor-Org-Id
    }

    Returns:
        200: {product_info, already_scanned}
        404: Code not found
        409: Unit is in a state that cannot be scanned
    """
    try:
        data = json_body()
        org_id = coerce_int(data.get("org_id"), "org_id") or g.actor_org_id
        result = packing_service.scan_unique(
            qr_code=require_field(data, "qr_code"),
            org_id=org_id,
            user_id=g.actor_user_id,
        )
        commit_or_rollback()
        return jsonify(result)
    except TrackingError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.http_status
    except (OperationalError, StaleDataError):
        return _conflict_response()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to scan unit")
        return jsonify({"error": "Internal server error"}), 500


@manufacturer_bp.post("/link-to-master")
@require_actor
def link_to_master_route():
    """
    Pack units into a case.

    Request body:
    {
        "master_code": str,          // required
        "unique_codes": [str, ...],  // required, non-empty
        "org_id": int                // optional, defaults to X-Actor-Org-Id
    }

    Returns:
        200: {linked_count, case_number, actual_linked_count, expected_unit_count, sealed}
        422: One or more codes failed validation; details.failures lists them
    """
    try:
        data = json_body()
        result = packing_service.link_to_master(
            master_code=require_field(data, "master_code"),
            unique_codes=require_field(data, "unique_codes"),
            org_id=coerce_int(data.get("org_id"), "org_id") or g.actor_org_id,
            user_id=g.actor_user_id,
        )
        commit_or_rollback()
        return jsonify(result.to_dict())
    except TrackingError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.http_status
    except (OperationalError, StaleDataError):
        return _conflict_response()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to link units to case")
        return jsonify({"error": "Internal server error"}), 500


@manufacturer_bp.post("/seal-master")
@require_actor
def seal_master_route():
    """
    Seal a case that is short by no more than the configured tolerance.

    Request body:
    {
        "master_code": str,   // required
        "org_id": int         // optional, defaults to X-Actor-Org-Id
    }
    """
    try:
        data = json_body()
        result = packing_service.seal_master(
            master_code=require_field(data, "master_code"),
            org_id=coerce_int(data.get("org_id"), "org_id") or g.actor_org_id,
            user_id=g.actor_user_id,
        )
        commit_or_rollback()
        return jsonify(result)
    except TrackingError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.http_status
    except (OperationalError, StaleDataError):
        return _conflict_response()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to seal case")
        return jsonify({"error": "Internal server error"}), 500
