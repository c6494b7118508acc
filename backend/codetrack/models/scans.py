from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from codetrack.time_utils import to_utc_z


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to update or delete an append-only row."""


class ScanEvent(db.Model):
    """
    Append-only scan fact.

    WHY: The ledger is the audit trail of every code movement and the source
    of truth for "was this code already scanned for purpose X". One row is
    written per applied transition, in the same transaction as the status
    change it records.

    RULES:
    - Never updated, never deleted (ORM attempts raise ImmutableRecordError)
    - occurred_at is set by the ledger service at write time
    - from_status/to_status record the transition exactly as applied
    """
    __tablename__ = "scan_events"
    __table_args__ = (
        db.Index("ix_scan_events_code_occurred", "code", "occurred_at"),
        db.Index("ix_scan_events_batch_type", "batch_id", "scan_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    code = db.Column(db.String(64), nullable=False)
    code_type = db.Column(db.String(16), nullable=False)  # master, unique
    unique_code_id = db.Column(db.Integer, db.ForeignKey("unique_codes.id"), nullable=True, index=True)
    master_code_id = db.Column(db.Integer, db.ForeignKey("master_codes.id"), nullable=True, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False)

    scan_type = db.Column(db.String(32), nullable=False, index=True)
    from_status = db.Column(db.String(32), nullable=False)
    to_status = db.Column(db.String(32), nullable=False)

    actor_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    actor_user_id = db.Column(db.String(64), nullable=True)
    session_id = db.Column(db.Integer, db.ForeignKey("shipment_sessions.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    note = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "code_type": self.code_type,
            "unique_code_id": self.unique_code_id,
            "master_code_id": self.master_code_id,
            "batch_id": self.batch_id,
            "scan_type": self.scan_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_org_id": self.actor_org_id,
            "actor_user_id": self.actor_user_id,
            "session_id": self.session_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
        }


def _reject_mutation(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} {target.id} is append-only")


event.listen(ScanEvent, "before_update", _reject_mutation)
event.listen(ScanEvent, "before_delete", _reject_mutation)
