# Overview: Hierarchy Linker; manufacturer-side scanning and case packing.

"""
Packing Service - binding unit codes to case codes

WORKFLOW (factory floor):
1. Operator scans a unit label (scan_unique): generated -> scanned_by_manufacturer
2. Operator scans a case label and a group of unit labels (link_to_master):
   every unit -> linked, case counter grows
3. When the case counter reaches the case's expected count the case is sealed
   automatically; seal_master seals a short case within the configured
   tolerance.

ALL-OR-NOTHING: link_to_master validates the whole request before touching
anything. A single bad code rejects the request and the error lists every
offending code with its reason.

Linking is irreversible; there is no unlink.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict

from flask import current_app
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ActorRoleMismatch, LinkValidationError, NotSealable, ValidationError
from ..models import MasterCode, UniqueCode
from ..models.codes import MASTER_STATUS_GENERATED, MASTER_STATUS_SEALED
from . import batch_service, ledger_service, org_service
from .code_lookup_service import CODE_KIND_MASTER, CODE_KIND_UNIQUE, get_master, parse_code, resolve
from .concurrency import run_with_retry
from .ledger_service import TRANSITION_LINK, TRANSITION_SCAN_UNIQUE, TRANSITION_SEAL


# Failure reasons reported per code by link_to_master
REASON_INVALID_FORMAT = "invalid_format"
REASON_DUPLICATE = "duplicate_in_request"
REASON_NOT_FOUND = "not_found"
REASON_WRONG_BATCH = "wrong_batch"
REASON_ALREADY_LINKED = "already_linked"
REASON_INVALID_STATUS = "invalid_status"
REASON_MASTER_SEALED = "master_sealed"
REASON_CASE_OVERFILLED = "case_overfilled"


@dataclass
class LinkResult:
    master_code: str
    case_number: int
    linked_count: int
    actual_linked_count: int
    expected_unit_count: int
    sealed: bool

    def to_dict(self) -> dict:
        return asdict(self)


def _require_batch_manufacturer(org_id: int | None, batch) -> None:
    org_service.require_org_type(org_id)
    if org_id != batch.manufacturer_org_id:
        raise ActorRoleMismatch(
            f"Organization {org_id} is not the manufacturer of batch {batch.id}",
            details={"org_id": org_id, "batch_id": batch.id, "manufacturer_org_id": batch.manufacturer_org_id},
        )


def product_info(unit: UniqueCode) -> dict:
    line = unit.order_line
    return {
        "code": unit.code,
        "status": unit.status,
        "batch_id": unit.batch_id,
        "order_no": unit.batch.order.order_no,
        "sequence_number": unit.sequence_number,
        "planned_case_number": unit.planned_case_number,
        "product_code": line.product_code,
        "product_name": line.product_name,
        "variant_code": line.variant_code,
        "variant_name": line.variant_name,
    }


def scan_unique(*, qr_code: str, org_id: int | None = None, user_id: str | None = None) -> dict:
    """
    Manufacturer scan of one unit label.

    Returns:
        {"product_info": {...}, "already_scanned": bool}
        already_scanned is True when the unit had already been scanned (or
        packed); nothing changes in that case.
    """
    def _op() -> dict:
        _, unit = resolve(qr_code, expected_kind=CODE_KIND_UNIQUE)
        if org_id is not None:
            _require_batch_manufacturer(org_id, unit.batch)

        outcome = ledger_service.transition_code(
            unit,
            TRANSITION_SCAN_UNIQUE,
            actor_org_id=org_id,
            actor_user_id=user_id,
        )
        return {
            "product_info": product_info(unit),
            "already_scanned": outcome.already_processed,
        }

    return run_with_retry(_op)


def _validate_link_request(master: MasterCode, unique_codes: list) -> tuple[list[UniqueCode], list[dict]]:
    failures: list[dict] = []
    values: list[str] = []
    seen: set[str] = set()

    for raw in unique_codes:
        try:
            ref = parse_code(raw, expected_kind=CODE_KIND_UNIQUE)
        except ValidationError as exc:
            failures.append({"code": str(raw), "reason": REASON_INVALID_FORMAT, "message": exc.message})
            continue
        if ref.value in seen:
            failures.append({"code": ref.value, "reason": REASON_DUPLICATE})
            continue
        seen.add(ref.value)
        values.append(ref.value)

    found = {
        u.code: u
        for u in db.session.query(UniqueCode).filter(UniqueCode.code.in_(values)).all()
    } if values else {}

    link_from = ledger_service.get_rule(UniqueCode, TRANSITION_LINK).from_statuses
    units: list[UniqueCode] = []
    for value in values:
        unit = found.get(value)
        if unit is None:
            failures.append({"code": value, "reason": REASON_NOT_FOUND})
        elif unit.batch_id != master.batch_id:
            failures.append({"code": value, "reason": REASON_WRONG_BATCH, "batch_id": unit.batch_id})
        elif unit.master_code_id is not None:
            failures.append({"code": value, "reason": REASON_ALREADY_LINKED, "master_code_id": unit.master_code_id})
        elif unit.status not in link_from:
            failures.append({"code": value, "reason": REASON_INVALID_STATUS, "status": unit.status})
        else:
            units.append(unit)

    if master.status != MASTER_STATUS_GENERATED:
        failures.append({"code": master.code, "reason": REASON_MASTER_SEALED, "status": master.status})
    elif master.actual_linked_count + len(values) > master.expected_unit_count:
        failures.append({
            "code": master.code,
            "reason": REASON_CASE_OVERFILLED,
            "expected_unit_count": master.expected_unit_count,
            "actual_linked_count": master.actual_linked_count,
            "requested": len(values),
        })

    return units, failures


def link_to_master(
    *,
    master_code: str,
    unique_codes: list,
    org_id: int | None,
    user_id: str | None = None,
) -> LinkResult:
    """
    Link a group of unit codes to a case code, sealing the case when full.

    Raises:
        ValidationError: empty list, or master_code is not a master code
        CodeNotFound: unknown master code
        ActorRoleMismatch: acting org is not the batch's manufacturer
        LinkValidationError: any unit failed validation; nothing was linked
    """
    if not isinstance(unique_codes, list) or not unique_codes:
        raise ValidationError("unique_codes must be a non-empty list")

    def _op() -> LinkResult:
        master = get_master(parse_code(master_code, expected_kind=CODE_KIND_MASTER))
        batch = master.batch
        _require_batch_manufacturer(org_id, batch)

        units, failures = _validate_link_request(master, unique_codes)
        if failures:
            raise LinkValidationError(
                f"{len(failures)} code(s) failed validation; nothing was linked",
                failures=failures,
                details={"master_code": master.code},
            )

        n = len(units)
        result = db.session.execute(
            update(MasterCode)
            .where(
                MasterCode.id == master.id,
                MasterCode.status == MASTER_STATUS_GENERATED,
                MasterCode.actual_linked_count + n <= MasterCode.expected_unit_count,
            )
            .values(
                actual_linked_count=MasterCode.actual_linked_count + n,
                version_id=MasterCode.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleDataError(f"Master code {master.code} changed while linking")

        ledger_service.bulk_transition(
            units,
            TRANSITION_LINK,
            actor_org_id=org_id,
            actor_user_id=user_id,
            extra_values={"master_code_id": master.id},
            extra_criteria=(UniqueCode.master_code_id.is_(None),),
            note=f"case {master.case_number}",
        )
        batch_service.bump_progress(batch.id, linked_unit_count=n)
        batch_service.mark_in_production(batch.id)

        db.session.refresh(master)
        ledger_service.append_scan_event(
            master,
            scan_type=TRANSITION_LINK,
            from_status=master.status,
            to_status=master.status,
            actor_org_id=org_id,
            actor_user_id=user_id,
            note=f"{n} unit(s) linked ({master.actual_linked_count}/{master.expected_unit_count})",
        )

        sealed = False
        if master.actual_linked_count == master.expected_unit_count:
            outcome = ledger_service.transition_code(
                master,
                TRANSITION_SEAL,
                actor_org_id=org_id,
                actor_user_id=user_id,
            )
            if outcome.applied:
                batch_service.bump_progress(batch.id, sealed_master_count=1)
            sealed = True

        return LinkResult(
            master_code=master.code,
            case_number=master.case_number,
            linked_count=n,
            actual_linked_count=master.actual_linked_count,
            expected_unit_count=master.expected_unit_count,
            sealed=sealed,
        )

    return run_with_retry(_op)


def seal_master(*, master_code: str, org_id: int | None, user_id: str | None = None) -> dict:
    """
    Seal a case explicitly.

    A full case seals on its last link; this is for cases short by no more
    than SEAL_TOLERANCE_UNITS. An already sealed case returns
    already_sealed=True.

    Raises:
        NotSealable: empty case, or shortfall above the tolerance
    """
    tolerance = current_app.config["SEAL_TOLERANCE_UNITS"]

    def _op() -> dict:
        master = get_master(parse_code(master_code, expected_kind=CODE_KIND_MASTER))
        _require_batch_manufacturer(org_id, master.batch)

        if ledger_service.is_at_or_past(MasterCode, master.status, MASTER_STATUS_SEALED):
            return {**master.to_dict(), "already_sealed": True}

        shortfall = master.expected_unit_count - master.actual_linked_count
        if master.actual_linked_count == 0 or shortfall > tolerance:
            raise NotSealable(
                f"Case {master.case_number} has {master.actual_linked_count} of "
                f"{master.expected_unit_count} units; shortfall exceeds tolerance {tolerance}",
                details={
                    "code": master.code,
                    "actual_linked_count": master.actual_linked_count,
                    "expected_unit_count": master.expected_unit_count,
                    "tolerance": tolerance,
                },
            )

        outcome = ledger_service.transition_code(
            master,
            TRANSITION_SEAL,
            actor_org_id=org_id,
            actor_user_id=user_id,
            extra_criteria=(
                MasterCode.actual_linked_count > 0,
                MasterCode.actual_linked_count + tolerance >= MasterCode.expected_unit_count,
            ),
            note=f"sealed short by {shortfall}" if shortfall else None,
        )
        if outcome.applied:
            batch_service.bump_progress(master.batch_id, sealed_master_count=1)
        return {**master.to_dict(), "already_sealed": outcome.already_processed}

    return run_with_retry(_op)
