# Overview: Flask API routes for code tracing and the scan event ledger.

from flask import Blueprint, jsonify, request

from ..decorators import require_actor
from ..errors import TrackingError
from ..services import ledger_service, packing_service
from ..services.code_lookup_service import resolve
from ..validation import pagination_args
from codetrack.time_utils import parse_iso_datetime


codes_bp = Blueprint("codes", __name__, url_prefix="/api")


@codes_bp.get("/codes/<string:code>")
@require_actor
def trace_code_route(code: str):
    """
    Current state and full scan history of one code.

    Unit codes include product info; case codes include their member count.
    """
    try:
        ref, record = resolve(code)
    except TrackingError as e:
        return jsonify(e.to_dict()), e.http_status

    body = record.to_dict()
    if ref.is_master:
        body["member_count"] = record.unique_codes.count()
    else:
        body["product_info"] = packing_service.product_info(record)
    body["history"] = [ev.to_dict() for ev in ledger_service.get_code_history(ref.value)]
    return jsonify(body)


@codes_bp.get("/scan-events")
@require_actor
def list_scan_events_route():
    """
    Scan ledger query.

    Query parameters:
    - batch_id, session_id, scan_type
    - since: occurred_at >= since (ISO-8601)
    - limit / offset
    """
    since = None
    since_str = request.args.get("since")
    if since_str:
        try:
            since = parse_iso_datetime(since_str)
        except ValueError:
            return jsonify({"error": "Invalid since format", "code": "VALIDATION_ERROR"}), 400

    limit, offset = pagination_args()
    events, total = ledger_service.list_scan_events(
        batch_id=request.args.get("batch_id", type=int),
        session_id=request.args.get("session_id", type=int),
        scan_type=request.args.get("scan_type"),
        since=since,
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [ev.to_dict() for ev in events],
        "count": total,
        "limit": limit,
        "offset": offset,
    })
