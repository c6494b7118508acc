# Overview: Atomic allocation of human-readable document numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


DOC_TYPE_SHIPMENT = "SHIPMENT"
DOC_TYPE_REPORT = "VALIDATION_REPORT"

DOC_PREFIXES = {
    DOC_TYPE_SHIPMENT: "SHP",
    DOC_TYPE_REPORT: "VR",
}


def _bump(org_id: int, document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.org_id == org_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(org_id=org_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(*, org_id: int, document_type: str, pad: int = 4) -> str:
    """
    Allocate the next number for (org, document type), e.g. "SHP-007-0001".

    The increment happens in the database; the first allocation for a pair
    inserts the sequence row inside a savepoint so a concurrent first insert
    falls back to the increment path instead of failing the caller.

    Runs inside the caller's transaction: the number is only consumed if the
    caller commits.
    """
    if not org_id:
        raise ValueError("org_id is required")
    prefix = DOC_PREFIXES.get(document_type)
    if prefix is None:
        raise ValueError(f"Unknown document type {document_type!r}")

    next_num = _bump(org_id, document_type)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(org_id=org_id, document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _bump(org_id, document_type)
            if next_num is None:
                raise

    return f"{prefix}-{org_id:03d}-{next_num:0{pad}d}"
