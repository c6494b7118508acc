"""Initial tracking schema: orgs, orders, code hierarchy, scan ledger, shipments, reports

Revision ID: 20261018_initial_tracking
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial_tracking"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("org_type", sa.String(length=16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("organizations", schema=None) as batch_op:
        batch_op.create_index("ix_organizations_code", ["code"], unique=True)
        batch_op.create_index("ix_organizations_org_type", ["org_type"], unique=False)
        batch_op.create_index("ix_organizations_is_active", ["is_active"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_no", sa.String(length=64), nullable=False),
        sa.Column("buyer_org_id", sa.Integer(), nullable=False),
        sa.Column("seller_org_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("buffer_percent", sa.Integer(), nullable=True),
        sa.Column("units_per_case", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["buyer_org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["seller_org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_order_no", ["order_no"], unique=True)
        batch_op.create_index("ix_orders_buyer_org_id", ["buyer_org_id"], unique=False)
        batch_op.create_index("ix_orders_seller_org_id", ["seller_org_id"], unique=False)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_seller_status", ["seller_org_id", "status"], unique=False)

    op.create_table(
        "order_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_code", sa.String(length=64), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("variant_code", sa.String(length=64), nullable=True),
        sa.Column("variant_name", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_lines", schema=None) as batch_op:
        batch_op.create_index("ix_order_lines_order_id", ["order_id"], unique=False)

    op.create_table(
        "batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("manufacturer_org_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("total_base_units", sa.Integer(), nullable=False),
        sa.Column("total_unique_codes", sa.Integer(), nullable=False),
        sa.Column("total_master_codes", sa.Integer(), nullable=False),
        sa.Column("buffer_percent", sa.Integer(), nullable=False),
        sa.Column("units_per_case", sa.Integer(), nullable=False),
        sa.Column("linked_unit_count", sa.Integer(), nullable=False),
        sa.Column("sealed_master_count", sa.Integer(), nullable=False),
        sa.Column("received_master_count", sa.Integer(), nullable=False),
        sa.Column("received_unit_count", sa.Integer(), nullable=False),
        sa.Column("artifact_ref", sa.String(length=512), nullable=True),
        sa.Column("artifact_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("generated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("generated_by_user_id", sa.String(length=64), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["manufacturer_org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", name="uq_batches_order"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("batches", schema=None) as batch_op:
        batch_op.create_index("ix_batches_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_batches_manufacturer_org_id", ["manufacturer_org_id"], unique=False)
        batch_op.create_index("ix_batches_status", ["status"], unique=False)

    op.create_table(
        "shipment_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_number", sa.String(length=64), nullable=False),
        sa.Column("origin_org_id", sa.Integer(), nullable=False),
        sa.Column("destination_org_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("expected_quantity", sa.Integer(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opened_by_user_id", sa.String(length=64), nullable=True),
        sa.Column("closed_by_user_id", sa.String(length=64), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["origin_org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["destination_org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("origin_org_id", "document_number", name="uq_shipment_sessions_origin_docnum"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("shipment_sessions", schema=None) as batch_op:
        batch_op.create_index("ix_shipment_sessions_origin_org_id", ["origin_org_id"], unique=False)
        batch_op.create_index("ix_shipment_sessions_destination_org_id", ["destination_org_id"], unique=False)
        batch_op.create_index("ix_shipment_sessions_status", ["status"], unique=False)
        batch_op.create_index("ix_shipment_sessions_status_expires", ["status", "expires_at"], unique=False)

    op.create_table(
        "master_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=False),
        sa.Column("case_number", sa.Integer(), nullable=False),
        sa.Column("expected_unit_count", sa.Integer(), nullable=False),
        sa.Column("actual_linked_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("claimed_session_id", sa.Integer(), nullable=True),
        sa.Column("warehouse_org_id", sa.Integer(), nullable=True),
        sa.Column("distributor_org_id", sa.Integer(), nullable=True),
        sa.Column("sealed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint("actual_linked_count <= expected_unit_count", name="ck_master_codes_not_overfilled"),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.ForeignKeyConstraint(["claimed_session_id"], ["shipment_sessions.id"]),
        sa.ForeignKeyConstraint(["warehouse_org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["distributor_org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_id", "case_number", name="uq_master_codes_batch_case"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("master_codes", schema=None) as batch_op:
        batch_op.create_index("ix_master_codes_code", ["code"], unique=True)
        batch_op.create_index("ix_master_codes_batch_id", ["batch_id"], unique=False)
        batch_op.create_index("ix_master_codes_status", ["status"], unique=False)
        batch_op.create_index("ix_master_codes_batch_status", ["batch_id", "status"], unique=False)
        batch_op.create_index("ix_master_codes_claimed_session_id", ["claimed_session_id"], unique=False)
        batch_op.create_index("ix_master_codes_warehouse_org_id", ["warehouse_org_id"], unique=False)
        batch_op.create_index("ix_master_codes_distributor_org_id", ["distributor_org_id"], unique=False)

    op.create_table(
        "unique_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=False),
        sa.Column("order_line_id", sa.Integer(), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("planned_case_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("master_code_id", sa.Integer(), nullable=True),
        sa.Column("claimed_session_id", sa.Integer(), nullable=True),
        sa.Column("warehouse_org_id", sa.Integer(), nullable=True),
        sa.Column("distributor_org_id", sa.Integer(), nullable=True),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("linked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.ForeignKeyConstraint(["order_line_id"], ["order_lines.id"]),
        sa.ForeignKeyConstraint(["master_code_id"], ["master_codes.id"]),
        sa.ForeignKeyConstraint(["claimed_session_id"], ["shipment_sessions.id"]),
        sa.ForeignKeyConstraint(["warehouse_org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["distributor_org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_id", "sequence_number", name="uq_unique_codes_batch_seq"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("unique_codes", schema=None) as batch_op:
        batch_op.create_index("ix_unique_codes_code", ["code"], unique=True)
        batch_op.create_index("ix_unique_codes_batch_id", ["batch_id"], unique=False)
        batch_op.create_index("ix_unique_codes_order_line_id", ["order_line_id"], unique=False)
        batch_op.create_index("ix_unique_codes_status", ["status"], unique=False)
        batch_op.create_index("ix_unique_codes_batch_status", ["batch_id", "status"], unique=False)
        batch_op.create_index("ix_unique_codes_master_status", ["master_code_id", "status"], unique=False)
        batch_op.create_index("ix_unique_codes_claimed_session_id", ["claimed_session_id"], unique=False)

    op.create_table(
        "shipment_session_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("code_type", sa.String(length=16), nullable=False),
        sa.Column("master_code_id", sa.Integer(), nullable=True),
        sa.Column("unique_code_id", sa.Integer(), nullable=True),
        sa.Column("unit_count", sa.Integer(), nullable=False),
        sa.Column("expected_unit_count", sa.Integer(), nullable=False),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scanned_by_user_id", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(["session_id"], ["shipment_sessions.id"]),
        sa.ForeignKeyConstraint(["master_code_id"], ["master_codes.id"]),
        sa.ForeignKeyConstraint(["unique_code_id"], ["unique_codes.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", "code", name="uq_shipment_items_session_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("shipment_session_items", schema=None) as batch_op:
        batch_op.create_index("ix_shipment_session_items_session_id", ["session_id"], unique=False)

    op.create_table(
        "scan_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("code_type", sa.String(length=16), nullable=False),
        sa.Column("unique_code_id", sa.Integer(), nullable=True),
        sa.Column("master_code_id", sa.Integer(), nullable=True),
        sa.Column("batch_id", sa.Integer(), nullable=False),
        sa.Column("scan_type", sa.String(length=32), nullable=False),
        sa.Column("from_status", sa.String(length=32), nullable=False),
        sa.Column("to_status", sa.String(length=32), nullable=False),
        sa.Column("actor_org_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_id", sa.String(length=64), nullable=True),
        sa.Column("session_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["unique_code_id"], ["unique_codes.id"]),
        sa.ForeignKeyConstraint(["master_code_id"], ["master_codes.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.ForeignKeyConstraint(["actor_org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["session_id"], ["shipment_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("scan_events", schema=None) as batch_op:
        batch_op.create_index("ix_scan_events_unique_code_id", ["unique_code_id"], unique=False)
        batch_op.create_index("ix_scan_events_master_code_id", ["master_code_id"], unique=False)
        batch_op.create_index("ix_scan_events_scan_type", ["scan_type"], unique=False)
        batch_op.create_index("ix_scan_events_actor_org_id", ["actor_org_id"], unique=False)
        batch_op.create_index("ix_scan_events_session_id", ["session_id"], unique=False)
        batch_op.create_index("ix_scan_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_scan_events_code_occurred", ["code", "occurred_at"], unique=False)
        batch_op.create_index("ix_scan_events_batch_type", ["batch_id", "scan_type"], unique=False)

    op.create_table(
        "validation_reports",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_number", sa.String(length=64), nullable=False),
        sa.Column("report_type", sa.String(length=32), nullable=False),
        sa.Column("expected_quantity", sa.Integer(), nullable=False),
        sa.Column("scanned_quantity", sa.Integer(), nullable=False),
        sa.Column("is_matched", sa.Boolean(), nullable=False),
        sa.Column("discrepancy", sa.Integer(), nullable=False),
        sa.Column("discrepancy_approved", sa.Boolean(), nullable=False),
        sa.Column("from_org_id", sa.Integer(), nullable=False),
        sa.Column("to_org_id", sa.Integer(), nullable=True),
        sa.Column("session_id", sa.Integer(), nullable=True),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("supersedes_report_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["from_org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["to_org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["session_id"], ["shipment_sessions.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.ForeignKeyConstraint(["supersedes_report_id"], ["validation_reports.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("from_org_id", "document_number", name="uq_validation_reports_org_docnum"),
        sa.UniqueConstraint("supersedes_report_id", name="uq_validation_reports_supersedes"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("validation_reports", schema=None) as batch_op:
        batch_op.create_index("ix_validation_reports_report_type", ["report_type"], unique=False)
        batch_op.create_index("ix_validation_reports_from_org_id", ["from_org_id"], unique=False)
        batch_op.create_index("ix_validation_reports_to_org_id", ["to_org_id"], unique=False)
        batch_op.create_index("ix_validation_reports_session", ["session_id"], unique=False)
        batch_op.create_index("ix_validation_reports_batch", ["batch_id"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "document_type", name="uq_doc_sequences_org_type"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("document_sequences", schema=None) as batch_op:
        batch_op.create_index("ix_document_sequences_org_id", ["org_id"], unique=False)
        batch_op.create_index("ix_document_sequences_document_type", ["document_type"], unique=False)


def downgrade():
    for table in (
        "document_sequences",
        "validation_reports",
        "scan_events",
        "shipment_session_items",
        "unique_codes",
        "master_codes",
        "shipment_sessions",
        "batches",
        "order_lines",
        "orders",
        "organizations",
    ):
        op.drop_table(table)
