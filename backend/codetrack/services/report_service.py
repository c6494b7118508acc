# Overview: Validation Report Engine; immutable expected-vs-actual records.

"""
Validation Report Service

WHY: Every handoff (warehouse -> distributor, factory -> warehouse) ends in a
signed-off comparison of what should have moved against what was scanned.
Disputes are settled against these rows, so they are never edited.

RULES:
- is_matched = expected == scanned
- discrepancy = scanned - expected (negative = short, positive = over)
- A report is written for every completed handoff, matched or not
- Corrections are new reports with supersedes_report_id set
"""

from __future__ import annotations

import json

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ReportNotFound, ValidationError
from ..models import ValidationReport
from ..models.shipments import REPORT_TYPES
from .concurrency import run_with_retry
from .document_service import DOC_TYPE_REPORT, next_document_number
from codetrack.time_utils import utcnow


def compare_quantities(expected: int, scanned: int) -> tuple[bool, int]:
    """(is_matched, discrepancy) for an expected/scanned pair."""
    return expected == scanned, scanned - expected


def _check_quantity(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer", details={name: value})
    return value


def create_report(
    *,
    report_type: str,
    expected_quantity: int,
    scanned_quantity: int,
    from_org_id: int,
    to_org_id: int | None = None,
    session_id: int | None = None,
    batch_id: int | None = None,
    user_id: str | None = None,
    discrepancy_approved: bool = False,
    note: str | None = None,
    detail: dict | None = None,
    supersedes_report_id: int | None = None,
) -> ValidationReport:
    """
    Write one immutable report inside the caller's transaction.

    discrepancy_approved is only recorded for mismatches.
    """
    if report_type not in REPORT_TYPES:
        raise ValidationError(f"Unknown report_type {report_type!r}", details={"report_type": report_type})
    expected_quantity = _check_quantity("expected_quantity", expected_quantity)
    scanned_quantity = _check_quantity("scanned_quantity", scanned_quantity)

    is_matched, discrepancy = compare_quantities(expected_quantity, scanned_quantity)

    report = ValidationReport(
        document_number=next_document_number(org_id=from_org_id, document_type=DOC_TYPE_REPORT),
        report_type=report_type,
        expected_quantity=expected_quantity,
        scanned_quantity=scanned_quantity,
        is_matched=is_matched,
        discrepancy=discrepancy,
        discrepancy_approved=bool(discrepancy_approved) and not is_matched,
        from_org_id=from_org_id,
        to_org_id=to_org_id,
        session_id=session_id,
        batch_id=batch_id,
        supersedes_report_id=supersedes_report_id,
        note=note,
        detail=json.dumps(detail, sort_keys=True) if detail else None,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(report)
    db.session.flush()
    return report


def get_report(report_id: int) -> ValidationReport:
    report = db.session.get(ValidationReport, report_id)
    if not report:
        raise ReportNotFound(f"Report {report_id} not found", details={"report_id": report_id})
    return report


def create_correction(
    *,
    report_id: int,
    expected_quantity: int,
    scanned_quantity: int,
    note: str,
    user_id: str | None = None,
    discrepancy_approved: bool = False,
) -> ValidationReport:
    """
    Supersede a report with corrected quantities; the original stays as it was.

    A report is corrected at most once. The unique supersedes_report_id
    constraint settles two corrections racing for the same report; the loser
    gets the same ValidationError as a late caller.
    """
    if not note or not str(note).strip():
        raise ValidationError("A note explaining the correction is required")

    def _op() -> ValidationReport:
        original = get_report(report_id)
        superseded = (
            db.session.query(ValidationReport.id)
            .filter(ValidationReport.supersedes_report_id == original.id)
            .first()
        )
        if superseded:
            raise ValidationError(
                f"Report {original.document_number} was already corrected by report {superseded[0]}",
                details={"report_id": original.id, "correction_id": superseded[0]},
            )

        document_number = original.document_number
        try:
            return create_report(
                report_type=original.report_type,
                expected_quantity=expected_quantity,
                scanned_quantity=scanned_quantity,
                from_org_id=original.from_org_id,
                to_org_id=original.to_org_id,
                session_id=original.session_id,
                batch_id=original.batch_id,
                user_id=user_id,
                discrepancy_approved=discrepancy_approved,
                note=note,
                detail={"corrects": document_number},
                supersedes_report_id=original.id,
            )
        except IntegrityError:
            db.session.rollback()
            raise ValidationError(
                f"Report {document_number} was already corrected",
                details={"report_id": report_id},
            )

    return run_with_retry(_op)


def list_reports(
    *,
    org_id: int | None = None,
    session_id: int | None = None,
    batch_id: int | None = None,
    report_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[ValidationReport], int]:
    q = db.session.query(ValidationReport)
    if org_id:
        q = q.filter(db.or_(ValidationReport.from_org_id == org_id, ValidationReport.to_org_id == org_id))
    if session_id:
        q = q.filter(ValidationReport.session_id == session_id)
    if batch_id:
        q = q.filter(ValidationReport.batch_id == batch_id)
    if report_type:
        q = q.filter(ValidationReport.report_type == report_type)

    total = q.count()
    items = q.order_by(ValidationReport.created_at.desc(), ValidationReport.id.desc()).offset(offset).limit(limit).all()
    return items, total
