# Overview: Flask API routes for warehouse receiving and outbound shipment sessions.

"""
Warehouse Routes

Receiving:
- POST /receive-master           receive one sealed case
- GET  /pending-receives         sealed cases not yet received
- POST /batches/<id>/reconcile   receiving report for a batch

Shipment sessions (warehouse -> distributor):
- POST /shipments                open a session
- GET  /shipments                list sessions
- GET  /shipments/<id>           session with items and running tally
- POST /shipments/<id>/scan      add a case or loose unit
- POST /shipments/<id>/complete  reconcile, ship and report
- POST /shipments/<id>/cancel    abandon, releasing claims
"""

from flask import Blueprint, current_app, jsonify, g, request
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..decorators import require_actor
from ..errors import TrackingError
from ..extensions import db
from ..services import receive_service, shipment_service
from ..services.concurrency import commit_or_rollback
from ..validation import coerce_bool, coerce_int, json_body, pagination_args, require_field


warehouse_bp = Blueprint("warehouse", __name__, url_prefix="/api/warehouse")


def _conflict_response():
    db.session.rollback()
    return jsonify({"error": "Concurrent update, please retry", "code": "CONFLICT_RETRY"}), 409


def _warehouse_org(data: dict):
    return coerce_int(data.get("warehouse_org_id"), "warehouse_org_id") or g.actor_org_id


@warehouse_bp.post("/receive-master")
@require_actor
def receive_master_route():
    """
    Receive a sealed case; every unit inside is received with it.

    Request body:
    {
        "master_code": str,        // required
        "warehouse_org_id": int    // optional, defaults to X-Actor-Org-Id
    }

    Returns:
        200: {status: "received" | "already_received", case_number, product_count, ...}
        404: Code not found
        409: Case not sealed
    """
    try:
        data = json_body()
        result = receive_service.receive_master(
            master_code=require_field(data, "master_code"),
            warehouse_org_id=_warehouse_org(data),
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
        current_app.logger.exception("Failed to receive case")
        return jsonify({"error": "Internal server error"}), 500


@warehouse_bp.get("/pending-receives")
@require_actor
def pending_receives_route():
    """
    Sealed cases awaiting receipt, grouped by batch.

    Query parameters:
    - warehouse_org_id: only batches for orders placed by this warehouse
      (defaults to X-Actor-Org-Id)
    """
    warehouse_org_id = request.args.get("warehouse_org_id", type=int) or g.actor_org_id
    batches = receive_service.pending_receives(warehouse_org_id=warehouse_org_id)
    return jsonify({"items": batches, "count": len(batches)})


@warehouse_bp.post("/batches/<int:batch_id>/reconcile")
@require_actor
def reconcile_batch_route(batch_id: int):
    """Write a receiving report (ordered units vs received units) for a batch."""
    try:
        data = json_body()
        report = receive_service.reconcile_batch_receipt(
            batch_id=batch_id,
            warehouse_org_id=_warehouse_org(data),
            user_id=g.actor_user_id,
        )
        commit_or_rollback()
        return jsonify(report.to_dict()), 201
    except TrackingError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.http_status
    except (OperationalError, StaleDataError):
        return _conflict_response()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reconcile batch %s", batch_id)
        return jsonify({"error": "Internal server error"}), 500


@warehouse_bp.post("/shipments")
@require_actor
def start_shipment_route():
    """
    Open a shipment session.

    Request body:
    {
        "warehouse_org_id": int,     // optional, defaults to X-Actor-Org-Id
        "distributor_org_id": int,   // required
        "expected_quantity": int,    // optional
        "order_id": int              // optional; expected = order total when no expected_quantity
    }

    Returns:
        201: {shipment_session_id, document_number, session}
    """
    try:
        data = json_body()
        session = shipment_service.start_session(
            origin_org_id=_warehouse_org(data),
            destination_org_id=coerce_int(data.get("distributor_org_id"), "distributor_org_id", required=True),
            expected_quantity=coerce_int(data.get("expected_quantity"), "expected_quantity", minimum=0),
            order_id=coerce_int(data.get("order_id"), "order_id"),
            user_id=g.actor_user_id,
        )
        commit_or_rollback()
        return jsonify({
            "shipment_session_id": session.id,
            "document_number": session.document_number,
            "session": session.to_dict(),
        }), 201
    except TrackingError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.http_status
    except (OperationalError, StaleDataError):
        return _conflict_response()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to start shipment session")
        return jsonify({"error": "Internal server error"}), 500


@warehouse_bp.get("/shipments")
@require_actor
def list_shipments_route():
    """
    List shipment sessions.

    Query parameters:
    - warehouse_org_id: origin warehouse (defaults to X-Actor-Org-Id)
    - status: open, closed, expired
    - limit / offset
    """
    limit, offset = pagination_args()
    sessions, total = shipment_service.list_sessions(
        origin_org_id=request.args.get("warehouse_org_id", type=int) or g.actor_org_id,
        status=request.args.get("status"),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [s.to_dict() for s in sessions],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@warehouse_bp.get("/shipments/<int:session_id>")
@require_actor
def get_shipment_route(session_id: int):
    try:
        return jsonify(shipment_service.get_session_summary(session_id))
    except TrackingError as e:
        return jsonify(e.to_dict()), e.http_status


@warehouse_bp.post("/shipments/<int:session_id>/scan")
@require_actor
def scan_for_shipment_route(session_id: int):
    """
    Add a case or a loose unit to an open session.

    Request body:
    {
        "code": str,          // required
        "code_type": str      // optional: "master" | "unique", checked against the code
    }

    Returns:
        200: {status: "accepted" | "already_in_session", item, tally}
        409: SESSION_CLOSED, ALREADY_CLAIMED, ALREADY_SHIPPED, ILLEGAL_TRANSITION
    """
    try:
        data = json_body()
        result = shipment_service.scan_code(
            session_id=session_id,
            code=require_field(data, "code"),
            code_type=data.get("code_type"),
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
        current_app.logger.exception("Failed to scan into shipment %s", session_id)
        return jsonify({"error": "Internal server error"}), 500


@warehouse_bp.post("/shipments/<int:session_id>/complete")
@require_actor
def complete_shipment_route(session_id: int):
    """
    Close a session and ship its contents.

    Request body:
    {
        "approve_discrepancy": bool,   // optional, default false
        "note": str                    // optional
    }

    Returns:
        200: {session, report}
        409: DISCREPANCY_NOT_APPROVED (session stays open)
    """
    try:
        data = json_body()
        result = shipment_service.complete_session(
            session_id=session_id,
            approve_discrepancy=coerce_bool(data.get("approve_discrepancy"), "approve_discrepancy"),
            user_id=g.actor_user_id,
            note=data.get("note"),
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
        current_app.logger.exception("Failed to complete shipment %s", session_id)
        return jsonify({"error": "Internal server error"}), 500


@warehouse_bp.post("/shipments/<int:session_id>/cancel")
@require_actor
def cancel_shipment_route(session_id: int):
    try:
        session = shipment_service.cancel_session(session_id=session_id, user_id=g.actor_user_id)
        commit_or_rollback()
        return jsonify(session.to_dict())
    except TrackingError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.http_status
    except (OperationalError, StaleDataError):
        return _conflict_response()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel shipment %s", session_id)
        return jsonify({"error": "Internal server error"}), 500
