# Overview: Periodic housekeeping; sweeps shipment sessions past their TTL.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import ShipmentSession
from ..models.shipments import SESSION_STATUS_OPEN
from . import shipment_service
from .concurrency import commit_or_rollback, run_with_retry
from codetrack.time_utils import utcnow


logger = logging.getLogger(__name__)


def expire_stale_sessions(*, now=None, limit: int = 500) -> int:
    """
    Expire open sessions whose expires_at has passed and release their claims.

    Each session is expired and committed in its own transaction.
    """
    now = now or utcnow()
    stale_ids = [
        row[0]
        for row in db.session.query(ShipmentSession.id)
        .filter(
            ShipmentSession.status == SESSION_STATUS_OPEN,
            ShipmentSession.expires_at.isnot(None),
            ShipmentSession.expires_at <= now,
        )
        .order_by(ShipmentSession.expires_at.asc())
        .limit(limit)
        .all()
    ]

    expired = 0
    for session_id in stale_ids:
        def _op(session_id=session_id) -> bool:
            session = db.session.get(ShipmentSession, session_id)
            return shipment_service.expire_session(session, reason="ttl sweep")

        if run_with_retry(_op):
            commit_or_rollback()
            expired += 1

    if expired:
        logger.info("Expired %s stale shipment session(s)", expired)
    return expired
