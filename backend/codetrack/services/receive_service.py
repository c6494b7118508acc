# Overview: Receiving Reconciler; warehouse receipt of sealed cases.

"""
Receive Service

WHY: Warehouses receive whole cases. One scan of the case label must move
the case and every unit inside it, or nothing at all, so unit-level
traceability survives without anyone opening the carton.

WORKFLOW:
1. receive_master: sealed -> received_by_warehouse for the case, cascading
   linked -> received_by_warehouse to its units, in one transaction
2. pending_receives: sealed cases not yet received, grouped by batch
3. reconcile_batch_receipt: receiving report for a batch (ordered units vs
   units received)

IDEMPOTENT: receiving a case twice is not an error; the second call returns
status "already_received" with the original unit count.
"""

from __future__ import annotations

from ..extensions import db
from ..errors import NotSealed
from ..models import Batch, MasterCode, Order, UniqueCode
from ..models.codes import (
    MASTER_STATUS_RECEIVED,
    MASTER_STATUS_SEALED,
    UNIQUE_STATUS_LINKED,
)
from ..models.shipments import REPORT_TYPE_RECEIVING
from ..models.tenancy import ORG_TYPE_WAREHOUSE
from . import batch_service, ledger_service, org_service, report_service
from .code_lookup_service import CODE_KIND_MASTER, get_master, parse_code
from .concurrency import run_with_retry
from .ledger_service import TRANSITION_RECEIVE
from codetrack.time_utils import to_utc_z


RECEIVE_STATUS_RECEIVED = "received"
RECEIVE_STATUS_ALREADY_RECEIVED = "already_received"


def _receipt(master: MasterCode, status: str) -> dict:
    return {
        "status": status,
        "master_code": master.code,
        "batch_id": master.batch_id,
        "case_number": master.case_number,
        "product_count": master.actual_linked_count,
        "warehouse_org_id": master.warehouse_org_id,
        "received_at": to_utc_z(master.received_at),
    }


def receive_master(*, master_code: str, warehouse_org_id: int | None, user_id: str | None = None) -> dict:
    """
    Receive one sealed case at a warehouse.

    Returns:
        {"status": "received" | "already_received", "case_number", "product_count", ...}

    Raises:
        ValidationError: payload is not a master code
        CodeNotFound: unknown case
        ActorRoleMismatch: receiving org is not a warehouse
        NotSealed: case is still being packed
        IllegalTransition: a unit under the case is not in the linked state
    """
    def _op() -> dict:
        master = get_master(parse_code(master_code, expected_kind=CODE_KIND_MASTER))
        org_service.require_org_type(warehouse_org_id, ORG_TYPE_WAREHOUSE, field="warehouse_org_id")

        if ledger_service.is_at_or_past(MasterCode, master.status, MASTER_STATUS_RECEIVED):
            return _receipt(master, RECEIVE_STATUS_ALREADY_RECEIVED)
        if master.status != MASTER_STATUS_SEALED:
            raise NotSealed(
                f"Case {master.case_number} is not sealed "
                f"({master.actual_linked_count}/{master.expected_unit_count} units packed)",
                details={
                    "code": master.code,
                    "status": master.status,
                    "actual_linked_count": master.actual_linked_count,
                    "expected_unit_count": master.expected_unit_count,
                },
            )

        units = (
            db.session.query(UniqueCode)
            .filter(UniqueCode.master_code_id == master.id)
            .order_by(UniqueCode.sequence_number.asc())
            .all()
        )
        for unit in units:
            if unit.status != UNIQUE_STATUS_LINKED:
                raise ledger_service.illegal_transition(unit, TRANSITION_RECEIVE)

        outcome = ledger_service.transition_code(
            master,
            TRANSITION_RECEIVE,
            actor_org_id=warehouse_org_id,
            actor_user_id=user_id,
            extra_values={"warehouse_org_id": warehouse_org_id},
        )
        if not outcome.applied:
            return _receipt(master, RECEIVE_STATUS_ALREADY_RECEIVED)

        ledger_service.bulk_transition(
            units,
            TRANSITION_RECEIVE,
            actor_org_id=warehouse_org_id,
            actor_user_id=user_id,
            extra_values={"warehouse_org_id": warehouse_org_id},
            extra_criteria=(UniqueCode.master_code_id == master.id,),
            note=f"via case {master.code}",
        )
        batch_service.bump_progress(
            master.batch_id,
            received_master_count=1,
            received_unit_count=len(units),
        )
        return _receipt(master, RECEIVE_STATUS_RECEIVED)

    return run_with_retry(_op)


def pending_receives(*, warehouse_org_id: int | None = None) -> list[dict]:
    """
    Sealed cases awaiting receipt, grouped by batch.

    With warehouse_org_id, only batches for orders that warehouse placed.
    """
    q = (
        db.session.query(MasterCode, Batch, Order)
        .join(Batch, MasterCode.batch_id == Batch.id)
        .join(Order, Batch.order_id == Order.id)
        .filter(MasterCode.status == MASTER_STATUS_SEALED)
    )
    if warehouse_org_id:
        q = q.filter(Order.buyer_org_id == warehouse_org_id)

    grouped: dict[int, dict] = {}
    for master, batch, order in q.order_by(Batch.id.asc(), MasterCode.case_number.asc()).all():
        entry = grouped.setdefault(batch.id, {
            "batch_id": batch.id,
            "order_id": order.id,
            "order_no": order.order_no,
            "manufacturer_org_id": batch.manufacturer_org_id,
            "warehouse_org_id": order.buyer_org_id,
            "pending_case_count": 0,
            "pending_unit_count": 0,
            "cases": [],
        })
        entry["pending_case_count"] += 1
        entry["pending_unit_count"] += master.actual_linked_count
        entry["cases"].append({
            "master_code": master.code,
            "case_number": master.case_number,
            "product_count": master.actual_linked_count,
            "sealed_at": to_utc_z(master.sealed_at),
        })
    return list(grouped.values())


def reconcile_batch_receipt(*, batch_id: int, warehouse_org_id: int | None, user_id: str | None = None):
    """
    Receiving report for a batch: ordered units vs units received.

    Sealed cases still waiting to be received are listed in the report detail.
    """
    def _op():
        batch = batch_service.get_batch(batch_id)
        org_service.require_org_type(warehouse_org_id, ORG_TYPE_WAREHOUSE, field="warehouse_org_id")

        outstanding = (
            db.session.query(MasterCode.code)
            .filter(MasterCode.batch_id == batch.id, MasterCode.status == MASTER_STATUS_SEALED)
            .order_by(MasterCode.case_number.asc())
            .all()
        )
        return report_service.create_report(
            report_type=REPORT_TYPE_RECEIVING,
            expected_quantity=batch.total_base_units,
            scanned_quantity=batch.received_unit_count,
            from_org_id=batch.manufacturer_org_id,
            to_org_id=warehouse_org_id,
            batch_id=batch.id,
            user_id=user_id,
            detail={
                "sealed_master_count": batch.sealed_master_count,
                "received_master_count": batch.received_master_count,
                "outstanding_cases": [row[0] for row in outstanding],
            },
        )

    return run_with_retry(_op)
