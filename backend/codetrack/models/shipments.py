from __future__ import annotations

import json

from sqlalchemy import event

from ..extensions import db
from codetrack.time_utils import to_utc_z
from .scans import _reject_mutation


SESSION_STATUS_OPEN = "open"
SESSION_STATUS_CLOSED = "closed"
SESSION_STATUS_EXPIRED = "expired"

REPORT_TYPE_SHIPMENT = "shipment"
REPORT_TYPE_RECEIVING = "receiving"
REPORT_TYPE_DISTRIBUTOR_CONFIRMATION = "distributor_confirmation"

REPORT_TYPES = (REPORT_TYPE_SHIPMENT, REPORT_TYPE_RECEIVING, REPORT_TYPE_DISTRIBUTOR_CONFIRMATION)


class ShipmentSession(db.Model):
    """
    Warehouse -> distributor scanning window.

    LIFECYCLE:
    1. open: operators scan cases and loose units into the session
    2. closed: tally reconciled, every member code shipped, report written
    3. expired: abandoned (TTL passed or cancelled); claims released

    EXCLUSIVITY: membership is claimed on the code row itself
    (claimed_session_id), so a code is held by at most one open session.
    """
    __tablename__ = "shipment_sessions"
    __table_args__ = (
        db.UniqueConstraint("origin_org_id", "document_number", name="uq_shipment_sessions_origin_docnum"),
        db.Index("ix_shipment_sessions_status_expires", "status", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)

    origin_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    destination_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_STATUS_OPEN, index=True)
    expected_quantity = db.Column(db.Integer, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    opened_by_user_id = db.Column(db.String(64), nullable=True)
    closed_by_user_id = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "ShipmentSessionItem",
        backref="session",
        lazy=True,
        order_by="ShipmentSessionItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "origin_org_id": self.origin_org_id,
            "destination_org_id": self.destination_org_id,
            "order_id": self.order_id,
            "status": self.status,
            "expected_quantity": self.expected_quantity,
            "opened_at": to_utc_z(self.opened_at),
            "expires_at": to_utc_z(self.expires_at),
            "closed_at": to_utc_z(self.closed_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
        }


class ShipmentSessionItem(db.Model):
    """
    One accepted scan in a session.

    A master scan is one item with unit_count = the case's linked units; a
    loose unit is one item with unit_count = 1.
    """
    __tablename__ = "shipment_session_items"
    __table_args__ = (
        db.UniqueConstraint("session_id", "code", name="uq_shipment_items_session_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("shipment_sessions.id"), nullable=False, index=True)
    code = db.Column(db.String(64), nullable=False)
    code_type = db.Column(db.String(16), nullable=False)  # master, unique
    master_code_id = db.Column(db.Integer, db.ForeignKey("master_codes.id"), nullable=True)
    unique_code_id = db.Column(db.Integer, db.ForeignKey("unique_codes.id"), nullable=True)
    unit_count = db.Column(db.Integer, nullable=False)
    expected_unit_count = db.Column(db.Integer, nullable=False)
    scanned_at = db.Column(db.DateTime(timezone=True), nullable=False)
    scanned_by_user_id = db.Column(db.String(64), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "code": self.code,
            "code_type": self.code_type,
            "master_code_id": self.master_code_id,
            "unique_code_id": self.unique_code_id,
            "unit_count": self.unit_count,
            "expected_unit_count": self.expected_unit_count,
            "scanned_at": to_utc_z(self.scanned_at),
            "scanned_by_user_id": self.scanned_by_user_id,
        }


class ValidationReport(db.Model):
    """
    Expected-vs-actual comparison at a handoff boundary.

    IMMUTABLE: written once. A correction is a new report pointing at the one
    it supersedes; the original is never edited.

    discrepancy = scanned_quantity - expected_quantity (negative = short).
    """
    __tablename__ = "validation_reports"
    __table_args__ = (
        db.UniqueConstraint("from_org_id", "document_number", name="uq_validation_reports_org_docnum"),
        db.UniqueConstraint("supersedes_report_id", name="uq_validation_reports_supersedes"),
        db.Index("ix_validation_reports_session", "session_id"),
        db.Index("ix_validation_reports_batch", "batch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)
    report_type = db.Column(db.String(32), nullable=False, index=True)

    expected_quantity = db.Column(db.Integer, nullable=False)
    scanned_quantity = db.Column(db.Integer, nullable=False)
    is_matched = db.Column(db.Boolean, nullable=False)
    discrepancy = db.Column(db.Integer, nullable=False)
    discrepancy_approved = db.Column(db.Boolean, nullable=False, default=False)

    from_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    to_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("shipment_sessions.id"), nullable=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)
    supersedes_report_id = db.Column(db.Integer, db.ForeignKey("validation_reports.id"), nullable=True)

    note = db.Column(db.Text, nullable=True)
    detail = db.Column(db.Text, nullable=True)  # JSON

    created_by_user_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "report_type": self.report_type,
            "expected_quantity": self.expected_quantity,
            "scanned_quantity": self.scanned_quantity,
            "is_matched": self.is_matched,
            "discrepancy": self.discrepancy,
            "discrepancy_approved": self.discrepancy_approved,
            "from_org_id": self.from_org_id,
            "to_org_id": self.to_org_id,
            "session_id": self.session_id,
            "batch_id": self.batch_id,
            "supersedes_report_id": self.supersedes_report_id,
            "note": self.note,
            "detail": json.loads(self.detail) if self.detail else None,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


event.listen(ValidationReport, "before_update", _reject_mutation)
event.listen(ValidationReport, "before_delete", _reject_mutation)
