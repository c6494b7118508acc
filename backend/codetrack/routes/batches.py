# Overview: Flask API routes for code batches; generation, inspection and workbook export.

"""
Batch Routes

Generation commits the batch and every code in one transaction, then writes
the printable workbook as a follow-up step. A workbook failure is logged and
reported (artifact_ref null) but never undoes the batch; it can be retried
through the export endpoint.
"""

from flask import Blueprint, current_app, jsonify, g, request
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..decorators import require_actor
from ..errors import TrackingError
from ..extensions import db
from ..services import batch_service, export_service
from ..services.concurrency import commit_or_rollback
from ..validation import coerce_int, json_body


batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")


@batches_bp.post("")
@require_actor
def generate_batch_route():
    """
    Generate the full code hierarchy for an order.

    Request body:
    {
        "order_id": int,              // required
        "buffer_percent": int,        // optional, default from order/config
        "units_per_case": int         // optional, default from order/config
    }

    The batch is committed first; the workbook is then written inline in
    this request so artifact_ref can be returned. A workbook failure is
    logged, leaves artifact_ref null and never undoes the batch; rebuild it
    with POST /api/batches/<id>/export or `flask batches export`.

    Returns:
        201: {batch_id, total_master_codes, total_unique_codes, artifact_ref, batch}
        400: Invalid request
        404: Order not found
        409: Order not approved / batch already exists
    """
    try:
        data = json_body()
        batch = batch_service.generate_batch(
            order_id=coerce_int(data.get("order_id"), "order_id", required=True),
            user_id=g.actor_user_id,
            buffer_percent=coerce_int(data.get("buffer_percent"), "buffer_percent", minimum=0),
            units_per_case=coerce_int(data.get("units_per_case"), "units_per_case", minimum=1),
        )
        commit_or_rollback()
        batch_id = batch.id
    except TrackingError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.http_status
    except (OperationalError, StaleDataError):
        db.session.rollback()
        current_app.logger.warning("Batch generation conflicted with a concurrent update")
        return jsonify({"error": "Concurrent update, please retry", "code": "CONFLICT_RETRY"}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to generate batch")
        return jsonify({"error": "Internal server error"}), 500

    artifact_ref = None
    try:
        artifact_ref = export_service.export_batch_artifact(batch_id)
        commit_or_rollback()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to write workbook for batch %s", batch_id)

    batch = batch_service.get_batch(batch_id)
    return jsonify({
        "batch_id": batch.id,
        "total_master_codes": batch.total_master_codes,
        "total_unique_codes": batch.total_unique_codes,
        "artifact_ref": artifact_ref,
        "batch": batch.to_dict(),
    }), 201


@batches_bp.get("/<int:batch_id>")
@require_actor
def get_batch_route(batch_id: int):
    """Batch with progress counters and a per-status breakdown of its cases."""
    try:
        return jsonify(batch_service.get_batch_summary(batch_id))
    except TrackingError as e:
        return jsonify(e.to_dict()), e.http_status


@batches_bp.get("/<int:batch_id>/master-codes")
@require_actor
def list_master_codes_route(batch_id: int):
    """
    Master codes of a batch in case order.

    Query parameters:
    - status: Filter by status (generated, sealed, received_by_warehouse, shipped)
    """
    try:
        masters = batch_service.list_master_codes(batch_id, status=request.args.get("status"))
    except TrackingError as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"items": [m.to_dict() for m in masters], "count": len(masters)})


@batches_bp.post("/<int:batch_id>/export")
@require_actor
def export_batch_route(batch_id: int):
    """(Re)write the batch workbook and return its reference."""
    try:
        artifact_ref = export_service.export_batch_artifact(batch_id)
        commit_or_rollback()
        return jsonify({"batch_id": batch_id, "artifact_ref": artifact_ref})
    except TrackingError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to export batch %s", batch_id)
        return jsonify({"error": "Internal server error"}), 500
