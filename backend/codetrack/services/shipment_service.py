# Overview: Shipment Session service; warehouse -> distributor scanning and reconciliation.

"""
Shipment Session Service

WHY: Outbound handoffs are counted, not assumed. An operator opens a session,
scans the cases and loose units going on the truck, and closes the session;
closing compares what was expected with what was scanned and produces the
report both sides sign off on.

LIFECYCLE:
1. open: scans accepted
2. closed: every claimed code moved to shipped, report written
3. expired: abandoned (TTL lapsed or cancelled); claims released

EXCLUSIVITY: a scan claims the code row itself with a conditional write
(claimed_session_id IS NULL -> session id). Two sessions racing for the same
code get exactly one winner; the loser sees AlreadyClaimed after retry.

TTL: a session whose expires_at has passed no longer accepts scans or
completion. Its claims are released the next time another session needs one
of its codes, or in bulk by the expire-stale maintenance command.

DISTRIBUTOR CONFIRMATION: the destination confirms a closed session once,
moving the units it actually received from shipped to validated.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import (
    ActorRoleMismatch,
    AlreadyClaimed,
    AlreadyConfirmed,
    AlreadyShipped,
    DiscrepancyNotApproved,
    OrderNotFound,
    SessionClosed,
    SessionNotFound,
    StateConflictError,
    ValidationError,
)
from ..models import MasterCode, Order, ShipmentSession, ShipmentSessionItem, UniqueCode
from ..models.codes import (
    MASTER_STATUS_RECEIVED,
    MASTER_STATUS_SHIPPED,
    UNIQUE_STATUS_RECEIVED,
    UNIQUE_STATUS_SHIPPED,
)
from ..models.shipments import (
    REPORT_TYPE_DISTRIBUTOR_CONFIRMATION,
    REPORT_TYPE_SHIPMENT,
    SESSION_STATUS_CLOSED,
    SESSION_STATUS_EXPIRED,
    SESSION_STATUS_OPEN,
)
from ..models.tenancy import ORG_TYPE_DISTRIBUTOR, ORG_TYPE_WAREHOUSE
from . import ledger_service, org_service, report_service
from .code_lookup_service import CODE_KIND_MASTER, CODE_KIND_UNIQUE, parse_code, resolve
from .concurrency import run_with_retry
from .document_service import DOC_TYPE_SHIPMENT, next_document_number
from .ledger_service import TRANSITION_SHIP, TRANSITION_VALIDATE
from codetrack.time_utils import minutes_from, utcnow


logger = logging.getLogger(__name__)

SCAN_STATUS_ACCEPTED = "accepted"
SCAN_STATUS_ALREADY_IN_SESSION = "already_in_session"


def get_session(session_id: int) -> ShipmentSession:
    session = db.session.get(ShipmentSession, session_id)
    if not session:
        raise SessionNotFound(f"Shipment session {session_id} not found", details={"session_id": session_id})
    return session


def is_lapsed(session: ShipmentSession, now=None) -> bool:
    """Open on paper but past its expiry time."""
    if session.status != SESSION_STATUS_OPEN or session.expires_at is None:
        return False
    return (now or utcnow()) >= session.expires_at


def _require_open(session: ShipmentSession) -> None:
    if session.status != SESSION_STATUS_OPEN or is_lapsed(session):
        status = SESSION_STATUS_EXPIRED if is_lapsed(session) else session.status
        raise SessionClosed(
            f"Shipment session {session.document_number} is {status}",
            details={"session_id": session.id, "status": status},
        )


def _session_items(session_id: int) -> list[ShipmentSessionItem]:
    return (
        db.session.query(ShipmentSessionItem)
        .filter(ShipmentSessionItem.session_id == session_id)
        .order_by(ShipmentSessionItem.id.asc())
        .all()
    )


def compute_tally(session: ShipmentSession, items: list[ShipmentSessionItem] | None = None) -> dict:
    """
    Running totals for a session.

    expected_quantity is the session's declared quantity when set, otherwise
    what the scanned cases say they hold plus one per loose unit.
    """
    if items is None:
        items = _session_items(session.id)
    scanned = sum(i.unit_count for i in items)
    derived_expected = sum(i.expected_unit_count for i in items)
    expected = session.expected_quantity if session.expected_quantity is not None else derived_expected
    return {
        "item_count": len(items),
        "master_count": sum(1 for i in items if i.code_type == CODE_KIND_MASTER),
        "loose_unit_count": sum(1 for i in items if i.code_type == CODE_KIND_UNIQUE),
        "scanned_quantity": scanned,
        "expected_quantity": expected,
        "discrepancy": scanned - expected,
        "is_matched": scanned == expected,
    }


def get_session_summary(session_id: int) -> dict:
    session = get_session(session_id)
    items = _session_items(session.id)
    return {
        **session.to_dict(),
        "items": [i.to_dict() for i in items],
        "tally": compute_tally(session, items),
    }


def list_sessions(
    *,
    origin_org_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[ShipmentSession], int]:
    q = db.session.query(ShipmentSession)
    if origin_org_id:
        q = q.filter(ShipmentSession.origin_org_id == origin_org_id)
    if status:
        q = q.filter(ShipmentSession.status == status)
    total = q.count()
    items = q.order_by(ShipmentSession.opened_at.desc(), ShipmentSession.id.desc()).offset(offset).limit(limit).all()
    return items, total


def start_session(
    *,
    origin_org_id: int | None,
    destination_org_id: int | None,
    expected_quantity: int | None = None,
    order_id: int | None = None,
    user_id: str | None = None,
) -> ShipmentSession:
    """
    Open a shipment session from a warehouse to a distributor.

    expected_quantity wins over order_id; with only order_id the expectation
    is the order's total line quantity; with neither it is derived from the
    scans at completion.
    """
    if expected_quantity is not None:
        if isinstance(expected_quantity, bool) or not isinstance(expected_quantity, int) or expected_quantity < 0:
            raise ValidationError(
                "expected_quantity must be a non-negative integer",
                details={"expected_quantity": expected_quantity},
            )

    def _op() -> ShipmentSession:
        origin = org_service.require_org_type(origin_org_id, ORG_TYPE_WAREHOUSE, field="warehouse_org_id")
        destination = org_service.require_org_type(destination_org_id, ORG_TYPE_DISTRIBUTOR, field="distributor_org_id")

        expected = expected_quantity
        if order_id is not None:
            order = db.session.get(Order, order_id)
            if not order:
                raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})
            if expected is None:
                expected = sum(line.quantity for line in order.lines)

        opened_at = utcnow()
        session = ShipmentSession(
            document_number=next_document_number(org_id=origin.id, document_type=DOC_TYPE_SHIPMENT),
            origin_org_id=origin.id,
            destination_org_id=destination.id,
            order_id=order_id,
            status=SESSION_STATUS_OPEN,
            expected_quantity=expected,
            opened_at=opened_at,
            expires_at=minutes_from(opened_at, current_app.config["SHIPMENT_SESSION_TTL_MINUTES"]),
            opened_by_user_id=user_id,
        )
        db.session.add(session)
        db.session.flush()
        return session

    return run_with_retry(_op)


def release_claims(session_id: int) -> int:
    """Drop an abandoned session's claims on codes that have not shipped."""
    released = 0
    for model, status in ((UniqueCode, UNIQUE_STATUS_RECEIVED), (MasterCode, MASTER_STATUS_RECEIVED)):
        result = db.session.execute(
            update(model)
            .where(model.claimed_session_id == session_id, model.status == status)
            .values(claimed_session_id=None, version_id=model.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        released += result.rowcount
    return released


def expire_session(session: ShipmentSession, *, reason: str) -> bool:
    """
    open -> expired with claims released. False when the session was not
    open anymore (closed or already expired by someone else).
    """
    result = db.session.execute(
        update(ShipmentSession)
        .where(ShipmentSession.id == session.id, ShipmentSession.status == SESSION_STATUS_OPEN)
        .values(
            status=SESSION_STATUS_EXPIRED,
            closed_at=utcnow(),
            version_id=ShipmentSession.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    db.session.expire(session)
    if not result.rowcount:
        return False
    released = release_claims(session.id)
    logger.info("Shipment session %s expired (%s); released %s claim(s)", session.id, reason, released)
    return True


def _check_holder(code: str, claimed_session_id: int, session: ShipmentSession) -> None:
    """
    Raise AlreadyClaimed unless the holder is gone. A lapsed holder is
    expired on the spot so the claim can be taken.
    """
    holder = db.session.get(ShipmentSession, claimed_session_id)
    if holder is not None and holder.status == SESSION_STATUS_OPEN:
        if not is_lapsed(holder):
            raise AlreadyClaimed(
                f"Code {code} is already in open shipment session {holder.document_number}",
                details={"code": code, "claimed_session_id": holder.id, "session_id": session.id},
            )
        expire_session(holder, reason="ttl")
    else:
        release_claims(claimed_session_id)


def _check_shippable(record, session: ShipmentSession, received_status: str, shipped_status: str) -> None:
    if ledger_service.is_at_or_past(type(record), record.status, shipped_status):
        raise AlreadyShipped(
            f"Code {record.code} has already shipped",
            details={"code": record.code, "status": record.status},
        )
    if record.status != received_status:
        raise ledger_service.illegal_transition(record, TRANSITION_SHIP)
    if record.warehouse_org_id != session.origin_org_id:
        raise ActorRoleMismatch(
            f"Code {record.code} is held by warehouse {record.warehouse_org_id}, not {session.origin_org_id}",
            details={"code": record.code, "warehouse_org_id": record.warehouse_org_id},
        )


def _claim(model, record_id: int, session_id: int, received_status: str) -> None:
    result = db.session.execute(
        update(model)
        .where(
            model.id == record_id,
            model.status == received_status,
            model.claimed_session_id.is_(None),
        )
        .values(claimed_session_id=session_id, version_id=model.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleDataError(f"{model.__tablename__} {record_id} was claimed concurrently")


def _scan_master(session: ShipmentSession, master: MasterCode, user_id: str | None) -> ShipmentSessionItem:
    _check_shippable(master, session, MASTER_STATUS_RECEIVED, MASTER_STATUS_SHIPPED)

    members = (
        db.session.query(UniqueCode)
        .filter(UniqueCode.master_code_id == master.id)
        .order_by(UniqueCode.sequence_number.asc())
        .all()
    )
    for unit in members:
        if unit.claimed_session_id == session.id:
            raise ValidationError(
                f"Unit {unit.code} from case {master.code} was already scanned loose into this session",
                details={"code": unit.code, "master_code": master.code},
            )
        _check_shippable(unit, session, UNIQUE_STATUS_RECEIVED, UNIQUE_STATUS_SHIPPED)

    if master.claimed_session_id is not None:
        _check_holder(master.code, master.claimed_session_id, session)
    for unit in members:
        if unit.claimed_session_id is not None:
            _check_holder(unit.code, unit.claimed_session_id, session)

    _claim(MasterCode, master.id, session.id, MASTER_STATUS_RECEIVED)
    result = db.session.execute(
        update(UniqueCode)
        .where(
            UniqueCode.master_code_id == master.id,
            UniqueCode.status == UNIQUE_STATUS_RECEIVED,
            UniqueCode.claimed_session_id.is_(None),
        )
        .values(claimed_session_id=session.id, version_id=UniqueCode.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(members):
        raise StaleDataError(f"Units of case {master.code} were claimed concurrently")
    db.session.expire(master)
    for unit in members:
        db.session.expire(unit)

    item = ShipmentSessionItem(
        session_id=session.id,
        code=master.code,
        code_type=CODE_KIND_MASTER,
        master_code_id=master.id,
        unit_count=len(members),
        expected_unit_count=master.expected_unit_count,
        scanned_at=utcnow(),
        scanned_by_user_id=user_id,
    )
    db.session.add(item)
    return item


def _scan_unit(session: ShipmentSession, unit: UniqueCode, user_id: str | None) -> ShipmentSessionItem:
    _check_shippable(unit, session, UNIQUE_STATUS_RECEIVED, UNIQUE_STATUS_SHIPPED)
    if unit.claimed_session_id is not None:
        _check_holder(unit.code, unit.claimed_session_id, session)

    _claim(UniqueCode, unit.id, session.id, UNIQUE_STATUS_RECEIVED)
    db.session.expire(unit)

    item = ShipmentSessionItem(
        session_id=session.id,
        code=unit.code,
        code_type=CODE_KIND_UNIQUE,
        unique_code_id=unit.id,
        master_code_id=unit.master_code_id,
        unit_count=1,
        expected_unit_count=1,
        scanned_at=utcnow(),
        scanned_by_user_id=user_id,
    )
    db.session.add(item)
    return item


def scan_code(
    *,
    session_id: int,
    code: str,
    code_type: str | None = None,
    user_id: str | None = None,
) -> dict:
    """
    Add a case or a loose unit to an open session.

    Returns:
        {"status": "accepted" | "already_in_session", "item": {...}, "tally": {...}}

    Raises:
        SessionNotFound, SessionClosed, CodeNotFound, ValidationError,
        AlreadyShipped, AlreadyClaimed, IllegalTransition, ActorRoleMismatch
    """
    def _op() -> dict:
        session = get_session(session_id)
        _require_open(session)
        ref, record = resolve(code, expected_kind=code_type)

        existing = (
            db.session.query(ShipmentSessionItem)
            .filter_by(session_id=session.id, code=ref.value)
            .first()
        )
        if existing is None and not ref.is_master and record.claimed_session_id == session.id:
            # Unit travelling inside a case already scanned into this session
            existing = (
                db.session.query(ShipmentSessionItem)
                .filter_by(session_id=session.id, master_code_id=record.master_code_id, code_type=CODE_KIND_MASTER)
                .first()
            )
        if existing is not None:
            return {
                "status": SCAN_STATUS_ALREADY_IN_SESSION,
                "item": existing.to_dict(),
                "tally": compute_tally(session),
            }

        if ref.is_master:
            item = _scan_master(session, record, user_id)
        else:
            item = _scan_unit(session, record, user_id)
        db.session.flush()

        return {
            "status": SCAN_STATUS_ACCEPTED,
            "item": item.to_dict(),
            "tally": compute_tally(session),
        }

    return run_with_retry(_op)


def complete_session(
    *,
    session_id: int,
    approve_discrepancy: bool = False,
    user_id: str | None = None,
    note: str | None = None,
) -> dict:
    """
    Close a session: reconcile, ship every claimed code, write the report.

    A mismatch between expected and scanned quantities is rejected unless
    approve_discrepancy is set; the session then stays open and nothing
    changes.

    Raises:
        SessionNotFound, SessionClosed, ValidationError (empty session),
        DiscrepancyNotApproved
    """
    def _op() -> dict:
        session = get_session(session_id)
        _require_open(session)

        items = _session_items(session.id)
        if not items:
            raise ValidationError(
                "Cannot complete a shipment session with no scanned codes",
                details={"session_id": session.id},
            )

        tally = compute_tally(session, items)
        if not tally["is_matched"] and not approve_discrepancy:
            raise DiscrepancyNotApproved(
                f"Expected {tally['expected_quantity']} units, scanned {tally['scanned_quantity']}",
                details={
                    "session_id": session.id,
                    "expected_quantity": tally["expected_quantity"],
                    "scanned_quantity": tally["scanned_quantity"],
                    "discrepancy": tally["discrepancy"],
                },
            )

        units = (
            db.session.query(UniqueCode)
            .filter(UniqueCode.claimed_session_id == session.id, UniqueCode.status == UNIQUE_STATUS_RECEIVED)
            .all()
        )
        masters = (
            db.session.query(MasterCode)
            .filter(MasterCode.claimed_session_id == session.id, MasterCode.status == MASTER_STATUS_RECEIVED)
            .all()
        )
        if len(units) != tally["scanned_quantity"]:
            raise StaleDataError(
                f"Session {session.id} holds {len(units)} units but tallied {tally['scanned_quantity']}"
            )

        closed_at = utcnow()
        result = db.session.execute(
            update(ShipmentSession)
            .where(ShipmentSession.id == session.id, ShipmentSession.status == SESSION_STATUS_OPEN)
            .values(
                status=SESSION_STATUS_CLOSED,
                closed_at=closed_at,
                closed_by_user_id=user_id,
                version_id=ShipmentSession.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleDataError(f"Shipment session {session.id} changed while completing")

        ship_values = {"distributor_org_id": session.destination_org_id}
        ledger_service.bulk_transition(
            units,
            TRANSITION_SHIP,
            actor_org_id=session.origin_org_id,
            actor_user_id=user_id,
            session_id=session.id,
            extra_values=ship_values,
            extra_criteria=(UniqueCode.claimed_session_id == session.id,),
        )
        ledger_service.bulk_transition(
            masters,
            TRANSITION_SHIP,
            actor_org_id=session.origin_org_id,
            actor_user_id=user_id,
            session_id=session.id,
            extra_values=ship_values,
            extra_criteria=(MasterCode.claimed_session_id == session.id,),
        )

        report = report_service.create_report(
            report_type=REPORT_TYPE_SHIPMENT,
            expected_quantity=tally["expected_quantity"],
            scanned_quantity=tally["scanned_quantity"],
            from_org_id=session.origin_org_id,
            to_org_id=session.destination_org_id,
            session_id=session.id,
            user_id=user_id,
            discrepancy_approved=approve_discrepancy,
            note=note,
            detail={
                "session_document_number": session.document_number,
                "master_count": tally["master_count"],
                "loose_unit_count": tally["loose_unit_count"],
            },
        )
        db.session.expire(session)
        return {"session": session.to_dict(), "report": report.to_dict()}

    return run_with_retry(_op)


def cancel_session(*, session_id: int, user_id: str | None = None) -> ShipmentSession:
    """Abandon an open session; its claims are released."""
    def _op() -> ShipmentSession:
        session = get_session(session_id)
        if session.status != SESSION_STATUS_OPEN:
            raise SessionClosed(
                f"Shipment session {session.document_number} is {session.status}",
                details={"session_id": session.id, "status": session.status},
            )
        if not expire_session(session, reason=f"cancelled by {user_id or 'unknown'}"):
            raise StaleDataError(f"Shipment session {session.id} changed while cancelling")
        return session

    return run_with_retry(_op)


def confirm_receipt(
    *,
    session_id: int,
    distributor_org_id: int | None,
    unique_codes: list | None = None,
    user_id: str | None = None,
):
    """
    Distributor confirmation of a closed session.

    Without unique_codes every shipped unit is confirmed; with a list only
    those units are, and the report records the units that did not arrive
    (missing) and scanned codes that were not part of the shipment
    (unexpected).

    Raises:
        SessionNotFound, ActorRoleMismatch, StateConflictError (not closed),
        AlreadyConfirmed, ValidationError (bad payloads)
    """
    def _op():
        session = get_session(session_id)
        org_service.require_org_type(distributor_org_id, ORG_TYPE_DISTRIBUTOR, field="distributor_org_id")
        if distributor_org_id != session.destination_org_id:
            raise ActorRoleMismatch(
                f"Shipment {session.document_number} is addressed to organization {session.destination_org_id}",
                details={"session_id": session.id, "destination_org_id": session.destination_org_id},
            )
        if session.status != SESSION_STATUS_CLOSED:
            raise StateConflictError(
                f"Shipment session {session.document_number} is {session.status}; only closed sessions can be confirmed",
                details={"session_id": session.id, "status": session.status},
            )
        if session.confirmed_at is not None:
            raise AlreadyConfirmed(
                f"Shipment session {session.document_number} was already confirmed",
                details={"session_id": session.id},
            )

        shipped = (
            db.session.query(UniqueCode)
            .filter(UniqueCode.claimed_session_id == session.id, UniqueCode.status == UNIQUE_STATUS_SHIPPED)
            .order_by(UniqueCode.sequence_number.asc())
            .all()
        )

        unexpected: list[str] = []
        if unique_codes is None:
            confirmed = shipped
        else:
            if not isinstance(unique_codes, list):
                raise ValidationError("unique_codes must be a list")
            wanted = {parse_code(raw, expected_kind=CODE_KIND_UNIQUE).value for raw in unique_codes}
            shipped_codes = {u.code for u in shipped}
            confirmed = [u for u in shipped if u.code in wanted]
            unexpected = sorted(wanted - shipped_codes)

        confirmed_codes = {u.code for u in confirmed}
        missing = [u.code for u in shipped if u.code not in confirmed_codes]

        result = db.session.execute(
            update(ShipmentSession)
            .where(ShipmentSession.id == session.id, ShipmentSession.confirmed_at.is_(None))
            .values(confirmed_at=utcnow(), version_id=ShipmentSession.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleDataError(f"Shipment session {session.id} was confirmed concurrently")

        ledger_service.bulk_transition(
            confirmed,
            TRANSITION_VALIDATE,
            actor_org_id=distributor_org_id,
            actor_user_id=user_id,
            session_id=session.id,
            extra_criteria=(UniqueCode.claimed_session_id == session.id,),
        )
        report = report_service.create_report(
            report_type=REPORT_TYPE_DISTRIBUTOR_CONFIRMATION,
            expected_quantity=len(shipped),
            scanned_quantity=len(confirmed),
            from_org_id=session.origin_org_id,
            to_org_id=session.destination_org_id,
            session_id=session.id,
            user_id=user_id,
            detail={
                "session_document_number": session.document_number,
                "missing_codes": missing,
                "unexpected_codes": unexpected,
            },
        )
        db.session.expire(session)
        return report

    return run_with_retry(_op)
