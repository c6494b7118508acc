# Overview: Code state machine and the append-only scan ledger.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import insert, update
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import IllegalTransition
from ..models import MasterCode, ScanEvent, UniqueCode
from ..models.codes import (
    MASTER_STATUS_GENERATED,
    MASTER_STATUS_ORDER,
    MASTER_STATUS_RECEIVED,
    MASTER_STATUS_SEALED,
    MASTER_STATUS_SHIPPED,
    UNIQUE_STATUS_GENERATED,
    UNIQUE_STATUS_LINKED,
    UNIQUE_STATUS_ORDER,
    UNIQUE_STATUS_RECEIVED,
    UNIQUE_STATUS_SCANNED,
    UNIQUE_STATUS_SHIPPED,
    UNIQUE_STATUS_VALIDATED,
)
from codetrack.time_utils import utcnow
"""
Scan Ledger Invariants (authoritative)

- This module is the only writer of code status.
- Every transition is a conditional write keyed on the expected prior status
  (compare-and-swap) and bumps version_id. There is no unguarded
  read-modify-write of a status anywhere.
- A transition that finds the code already at or past its target state is
  "already processed", a non-error outcome. Anything else that fails the
  guard is an IllegalTransition.
- Exactly one ScanEvent is appended per applied transition, inside the same
  transaction. Events are never updated or deleted.
- Bulk transitions are all-or-nothing: if the number of rows moved differs
  from the number requested, StaleDataError is raised so run_with_retry rolls
  back and the caller re-validates from fresh state.
"""


TRANSITION_SCAN_UNIQUE = "scan_unique"
TRANSITION_LINK = "link"
TRANSITION_SEAL = "seal"
TRANSITION_RECEIVE = "receive"
TRANSITION_SHIP = "ship"
TRANSITION_VALIDATE = "validate"

# SQLite's bound-parameter ceiling is well above this; keeps statements small
BULK_CHUNK_SIZE = 500


@dataclass(frozen=True)
class TransitionRule:
    kind: str
    from_statuses: tuple[str, ...]
    to_status: str
    timestamp_column: str


UNIQUE_TRANSITIONS = {
    TRANSITION_SCAN_UNIQUE: TransitionRule(TRANSITION_SCAN_UNIQUE, (UNIQUE_STATUS_GENERATED,), UNIQUE_STATUS_SCANNED, "scanned_at"),
    TRANSITION_LINK: TransitionRule(TRANSITION_LINK, (UNIQUE_STATUS_GENERATED, UNIQUE_STATUS_SCANNED), UNIQUE_STATUS_LINKED, "linked_at"),
    TRANSITION_RECEIVE: TransitionRule(TRANSITION_RECEIVE, (UNIQUE_STATUS_LINKED,), UNIQUE_STATUS_RECEIVED, "received_at"),
    TRANSITION_SHIP: TransitionRule(TRANSITION_SHIP, (UNIQUE_STATUS_RECEIVED,), UNIQUE_STATUS_SHIPPED, "shipped_at"),
    TRANSITION_VALIDATE: TransitionRule(TRANSITION_VALIDATE, (UNIQUE_STATUS_SHIPPED,), UNIQUE_STATUS_VALIDATED, "validated_at"),
}

MASTER_TRANSITIONS = {
    TRANSITION_SEAL: TransitionRule(TRANSITION_SEAL, (MASTER_STATUS_GENERATED,), MASTER_STATUS_SEALED, "sealed_at"),
    TRANSITION_RECEIVE: TransitionRule(TRANSITION_RECEIVE, (MASTER_STATUS_SEALED,), MASTER_STATUS_RECEIVED, "received_at"),
    TRANSITION_SHIP: TransitionRule(TRANSITION_SHIP, (MASTER_STATUS_RECEIVED,), MASTER_STATUS_SHIPPED, "shipped_at"),
}

_MODEL_TABLES = {
    UniqueCode: (UNIQUE_TRANSITIONS, UNIQUE_STATUS_ORDER, "unique"),
    MasterCode: (MASTER_TRANSITIONS, MASTER_STATUS_ORDER, "master"),
}


@dataclass
class TransitionOutcome:
    """Result of a single-code transition attempt."""
    applied: bool
    code: str
    kind: str
    from_status: str
    to_status: str
    current_status: str
    occurred_at: Optional[datetime] = None

    @property
    def already_processed(self) -> bool:
        return not self.applied


def get_rule(model, kind: str) -> TransitionRule:
    transitions, _, code_type = _MODEL_TABLES[model]
    rule = transitions.get(kind)
    if rule is None:
        raise ValueError(f"No '{kind}' transition for {code_type} codes")
    return rule


def is_at_or_past(model, current: str, target: str) -> bool:
    """True when `current` is `target` or a later stage of the lifecycle."""
    _, order, _ = _MODEL_TABLES[model]
    return order.index(current) >= order.index(target)


def can_apply(record, kind: str) -> bool:
    """Whether the record's loaded status satisfies the transition guard."""
    return record.status in get_rule(type(record), kind).from_statuses


def illegal_transition(record, kind: str) -> IllegalTransition:
    rule = get_rule(type(record), kind)
    return IllegalTransition(
        code_value=record.code,
        current_status=record.status,
        attempted_status=rule.to_status,
        transition=kind,
    )


def _event_row(
    record,
    *,
    code_type: str,
    scan_type: str,
    from_status: str,
    to_status: str,
    occurred_at: datetime,
    actor_org_id: int | None,
    actor_user_id: str | None,
    session_id: int | None,
    note: str | None,
) -> dict:
    return {
        "code": record.code,
        "code_type": code_type,
        "unique_code_id": record.id if code_type == "unique" else None,
        "master_code_id": record.id if code_type == "master" else None,
        "batch_id": record.batch_id,
        "scan_type": scan_type,
        "from_status": from_status,
        "to_status": to_status,
        "actor_org_id": actor_org_id,
        "actor_user_id": actor_user_id,
        "session_id": session_id,
        "occurred_at": occurred_at,
        "note": note,
    }


def append_scan_event(
    record,
    *,
    scan_type: str,
    from_status: str,
    to_status: str,
    actor_org_id: int | None = None,
    actor_user_id: str | None = None,
    session_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
) -> ScanEvent:
    """
    Append-only scan event.

    - No domain logic here.
    - No deletes/updates of existing events.
    """
    _, _, code_type = _MODEL_TABLES[type(record)]
    ev = ScanEvent(**_event_row(
        record,
        code_type=code_type,
        scan_type=scan_type,
        from_status=from_status,
        to_status=to_status,
        occurred_at=occurred_at or utcnow(),
        actor_org_id=actor_org_id,
        actor_user_id=actor_user_id,
        session_id=session_id,
        note=note,
    ))
    db.session.add(ev)
    db.session.flush()
    return ev


def transition_code(
    record,
    kind: str,
    *,
    actor_org_id: int | None = None,
    actor_user_id: str | None = None,
    session_id: int | None = None,
    extra_values: dict | None = None,
    extra_criteria: Iterable = (),
    note: str | None = None,
) -> TransitionOutcome:
    """
    Apply one transition to one code, at most once.

    Args:
        record: loaded UniqueCode or MasterCode
        kind: transition name (see UNIQUE_TRANSITIONS / MASTER_TRANSITIONS)
        extra_values: additional columns written with the status change
        extra_criteria: additional guard clauses for the conditional write

    Returns:
        TransitionOutcome; applied=False means the code was already at or
        past the target state and nothing was written.

    Raises:
        IllegalTransition: the code is in a state the transition cannot
        start from, or an extra guard failed.
    """
    model = type(record)
    rule = get_rule(model, kind)
    now = utcnow()
    prior_status = record.status

    values = {
        "status": rule.to_status,
        "version_id": model.version_id + 1,
        rule.timestamp_column: now,
    }
    if extra_values:
        values.update(extra_values)

    stmt = (
        update(model)
        .where(model.id == record.id, model.status.in_(rule.from_statuses), *extra_criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    db.session.expire(record)

    if result.rowcount == 1:
        from_status = prior_status if prior_status in rule.from_statuses else rule.from_statuses[0]
        append_scan_event(
            record,
            scan_type=kind,
            from_status=from_status,
            to_status=rule.to_status,
            actor_org_id=actor_org_id,
            actor_user_id=actor_user_id,
            session_id=session_id,
            occurred_at=now,
            note=note,
        )
        return TransitionOutcome(
            applied=True,
            code=record.code,
            kind=kind,
            from_status=from_status,
            to_status=rule.to_status,
            current_status=rule.to_status,
            occurred_at=now,
        )

    db.session.refresh(record)
    if is_at_or_past(model, record.status, rule.to_status):
        return TransitionOutcome(
            applied=False,
            code=record.code,
            kind=kind,
            from_status=record.status,
            to_status=rule.to_status,
            current_status=record.status,
        )
    raise illegal_transition(record, kind)


def bulk_transition(
    records: list,
    kind: str,
    *,
    actor_org_id: int | None = None,
    actor_user_id: str | None = None,
    session_id: int | None = None,
    extra_values: dict | None = None,
    extra_criteria: Iterable = (),
    note: str | None = None,
) -> datetime:
    """
    Move every record (all of one model) through `kind`, all-or-nothing.

    Callers validate statuses first so ordinary failures surface as domain
    errors; this guard only catches races. If fewer rows move than requested,
    StaleDataError is raised and the whole transaction must roll back.

    Returns the timestamp written on every record and event.
    """
    if not records:
        return utcnow()

    model = type(records[0])
    _, _, code_type = _MODEL_TABLES[model]
    rule = get_rule(model, kind)
    now = utcnow()
    extra_criteria = tuple(extra_criteria)

    prior = {r.id: r.status for r in records}

    values = {
        "status": rule.to_status,
        "version_id": model.version_id + 1,
        rule.timestamp_column: now,
    }
    if extra_values:
        values.update(extra_values)

    moved = 0
    ids = [r.id for r in records]
    for start in range(0, len(ids), BULK_CHUNK_SIZE):
        chunk = ids[start:start + BULK_CHUNK_SIZE]
        stmt = (
            update(model)
            .where(model.id.in_(chunk), model.status.in_(rule.from_statuses), *extra_criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        moved += db.session.execute(stmt).rowcount

    if moved != len(ids):
        raise StaleDataError(
            f"{kind} moved {moved} of {len(ids)} {code_type} codes; state changed concurrently"
        )

    rows = []
    for r in records:
        from_status = prior[r.id] if prior[r.id] in rule.from_statuses else rule.from_statuses[0]
        rows.append(_event_row(
            r,
            code_type=code_type,
            scan_type=kind,
            from_status=from_status,
            to_status=rule.to_status,
            occurred_at=now,
            actor_org_id=actor_org_id,
            actor_user_id=actor_user_id,
            session_id=session_id,
            note=note,
        ))
    db.session.execute(insert(ScanEvent), rows)

    for r in records:
        db.session.expire(r)
    return now


# =============================================================================
# Read API
# =============================================================================

def get_code_history(code: str) -> list[ScanEvent]:
    """All events for one code, oldest first."""
    return (
        db.session.query(ScanEvent)
        .filter(ScanEvent.code == code)
        .order_by(ScanEvent.occurred_at.asc(), ScanEvent.id.asc())
        .all()
    )


def list_scan_events(
    *,
    batch_id: int | None = None,
    session_id: int | None = None,
    scan_type: str | None = None,
    since: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[ScanEvent], int]:
    q = db.session.query(ScanEvent)
    if batch_id:
        q = q.filter(ScanEvent.batch_id == batch_id)
    if session_id:
        q = q.filter(ScanEvent.session_id == session_id)
    if scan_type:
        q = q.filter(ScanEvent.scan_type == scan_type)
    if since:
        q = q.filter(ScanEvent.occurred_at >= since)

    total = q.count()
    items = q.order_by(ScanEvent.occurred_at.asc(), ScanEvent.id.asc()).offset(offset).limit(limit).all()
    return items, total
