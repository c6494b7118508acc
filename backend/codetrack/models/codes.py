from __future__ import annotations

from ..extensions import db
from codetrack.time_utils import to_utc_z


# Unique code lifecycle (monotonic, in this order)
UNIQUE_STATUS_GENERATED = "generated"
UNIQUE_STATUS_SCANNED = "scanned_by_manufacturer"
UNIQUE_STATUS_LINKED = "linked"
UNIQUE_STATUS_RECEIVED = "received_by_warehouse"
UNIQUE_STATUS_SHIPPED = "shipped"
UNIQUE_STATUS_VALIDATED = "validated"

UNIQUE_STATUS_ORDER = (
    UNIQUE_STATUS_GENERATED,
    UNIQUE_STATUS_SCANNED,
    UNIQUE_STATUS_LINKED,
    UNIQUE_STATUS_RECEIVED,
    UNIQUE_STATUS_SHIPPED,
    UNIQUE_STATUS_VALIDATED,
)

# Master code lifecycle
MASTER_STATUS_GENERATED = "generated"
MASTER_STATUS_SEALED = "sealed"
MASTER_STATUS_RECEIVED = "received_by_warehouse"
MASTER_STATUS_SHIPPED = "shipped"

MASTER_STATUS_ORDER = (
    MASTER_STATUS_GENERATED,
    MASTER_STATUS_SEALED,
    MASTER_STATUS_RECEIVED,
    MASTER_STATUS_SHIPPED,
)

BATCH_STATUS_GENERATED = "generated"
BATCH_STATUS_IN_PRODUCTION = "in_production"

UNIQUE_CODE_PREFIX = "PROD-"
MASTER_CODE_PREFIX = "MASTER-"


class Batch(db.Model):
    """
    One code-generation run for one order.

    WHY: The batch is the unit of printing and of progress tracking on the
    factory floor. Sizing is frozen at generation time so later config
    changes never reinterpret already-printed labels.

    IMMUTABILITY: After generation only status, the artifact reference and
    the progress counters change. Counters are always incremented in the
    database (col = col + n), never read-modify-written.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_batches_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    manufacturer_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=BATCH_STATUS_GENERATED, index=True)

    total_base_units = db.Column(db.Integer, nullable=False)
    total_unique_codes = db.Column(db.Integer, nullable=False)
    total_master_codes = db.Column(db.Integer, nullable=False)
    buffer_percent = db.Column(db.Integer, nullable=False)
    units_per_case = db.Column(db.Integer, nullable=False)

    # Progress counters
    linked_unit_count = db.Column(db.Integer, nullable=False, default=0)
    sealed_master_count = db.Column(db.Integer, nullable=False, default=0)
    received_master_count = db.Column(db.Integer, nullable=False, default=0)
    received_unit_count = db.Column(db.Integer, nullable=False, default=0)

    artifact_ref = db.Column(db.String(512), nullable=True)
    artifact_generated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    generated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    generated_by_user_id = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("batch", uselist=False))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "manufacturer_org_id": self.manufacturer_org_id,
            "status": self.status,
            "total_base_units": self.total_base_units,
            "total_unique_codes": self.total_unique_codes,
            "total_master_codes": self.total_master_codes,
            "buffer_percent": self.buffer_percent,
            "units_per_case": self.units_per_case,
            "linked_unit_count": self.linked_unit_count,
            "sealed_master_count": self.sealed_master_count,
            "received_master_count": self.received_master_count,
            "received_unit_count": self.received_unit_count,
            "artifact_ref": self.artifact_ref,
            "artifact_generated_at": to_utc_z(self.artifact_generated_at),
            "generated_at": to_utc_z(self.generated_at),
            "generated_by_user_id": self.generated_by_user_id,
            "version_id": self.version_id,
        }


class MasterCode(db.Model):
    """
    Case / carton label.

    INVARIANT: actual_linked_count <= expected_unit_count. The counter only
    moves through a guarded in-database increment (see packing_service).
    """
    __tablename__ = "master_codes"
    __table_args__ = (
        db.UniqueConstraint("batch_id", "case_number", name="uq_master_codes_batch_case"),
        db.CheckConstraint("actual_linked_count <= expected_unit_count", name="ck_master_codes_not_overfilled"),
        db.Index("ix_master_codes_batch_status", "batch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)

    case_number = db.Column(db.Integer, nullable=False)
    expected_unit_count = db.Column(db.Integer, nullable=False)
    actual_linked_count = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(32), nullable=False, default=MASTER_STATUS_GENERATED, index=True)

    # Open shipment session currently holding this case
    claimed_session_id = db.Column(db.Integer, db.ForeignKey("shipment_sessions.id"), nullable=True, index=True)

    warehouse_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    distributor_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    sealed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    batch = db.relationship("Batch", backref=db.backref("master_codes", lazy="dynamic"))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "code_type": "master",
            "batch_id": self.batch_id,
            "case_number": self.case_number,
            "expected_unit_count": self.expected_unit_count,
            "actual_linked_count": self.actual_linked_count,
            "status": self.status,
            "claimed_session_id": self.claimed_session_id,
            "warehouse_org_id": self.warehouse_org_id,
            "distributor_org_id": self.distributor_org_id,
            "sealed_at": to_utc_z(self.sealed_at),
            "received_at": to_utc_z(self.received_at),
            "shipped_at": to_utc_z(self.shipped_at),
        }


class UniqueCode(db.Model):
    """
    Saleable unit label.

    INVARIANT: master_code_id is written once, by the linking transition,
    and never changes afterwards.
    """
    __tablename__ = "unique_codes"
    __table_args__ = (
        db.UniqueConstraint("batch_id", "sequence_number", name="uq_unique_codes_batch_seq"),
        db.Index("ix_unique_codes_batch_status", "batch_id", "status"),
        db.Index("ix_unique_codes_master_status", "master_code_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False, index=True)

    sequence_number = db.Column(db.Integer, nullable=False)
    planned_case_number = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(32), nullable=False, default=UNIQUE_STATUS_GENERATED, index=True)

    master_code_id = db.Column(db.Integer, db.ForeignKey("master_codes.id"), nullable=True)
    claimed_session_id = db.Column(db.Integer, db.ForeignKey("shipment_sessions.id"), nullable=True, index=True)

    warehouse_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True)
    distributor_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True)

    scanned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    linked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    batch = db.relationship("Batch")
    order_line = db.relationship("OrderLine")
    master_code = db.relationship("MasterCode", backref=db.backref("unique_codes", lazy="dynamic"))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "code_type": "unique",
            "batch_id": self.batch_id,
            "order_line_id": self.order_line_id,
            "sequence_number": self.sequence_number,
            "planned_case_number": self.planned_case_number,
            "status": self.status,
            "master_code_id": self.master_code_id,
            "claimed_session_id": self.claimed_session_id,
            "warehouse_org_id": self.warehouse_org_id,
            "distributor_org_id": self.distributor_org_id,
            "scanned_at": to_utc_z(self.scanned_at),
            "linked_at": to_utc_z(self.linked_at),
            "received_at": to_utc_z(self.received_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "validated_at": to_utc_z(self.validated_at),
        }
