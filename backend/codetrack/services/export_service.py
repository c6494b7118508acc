# Overview: Batch workbook artifact (openpyxl); printable code lists for the factory.

from __future__ import annotations

import logging
import os
import re

from flask import current_app
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy import update

from ..extensions import db
from ..models import Batch, MasterCode, OrderLine, UniqueCode
from . import batch_service
from .code_lookup_service import CODE_KIND_MASTER, CODE_KIND_UNIQUE, tracking_url
from .concurrency import run_with_retry
from codetrack.time_utils import to_utc_z, utcnow


logger = logging.getLogger(__name__)

SHEET_SUMMARY = "Summary"
SHEET_MASTER = "Master Codes"
SHEET_UNIQUE = "Unique Codes"

HEADER_FONT = Font(name="Calibri", bold=True, size=11, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
LABEL_FONT = Font(name="Calibri", bold=True, size=11)

MASTER_HEADERS = ["Case #", "Master Code", "Tracking URL", "Expected Units", "Status"]
UNIQUE_HEADERS = ["Seq #", "Unique Code", "Tracking URL", "Planned Case #", "Product Code", "Product", "Variant", "Status"]


def _style_header(ws, columns: int) -> None:
    for col in range(1, columns + 1):
        cell = ws.cell(row=1, column=col)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center")
    ws.freeze_panes = "A2"


def _set_widths(ws, widths: list[int]) -> None:
    for col, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(col)].width = width


def build_batch_workbook(batch: Batch, *, base_url: str) -> Workbook:
    """Summary, master code and unique code sheets for one batch."""
    wb = Workbook()

    summary = wb.active
    summary.title = SHEET_SUMMARY
    order = batch.order
    rows = [
        ("Order", order.order_no),
        ("Batch ID", batch.id),
        ("Manufacturer Org ID", batch.manufacturer_org_id),
        ("Generated At", to_utc_z(batch.generated_at)),
        ("Ordered Units", batch.total_base_units),
        ("Buffer %", batch.buffer_percent),
        ("Unique Codes", batch.total_unique_codes),
        ("Units per Case", batch.units_per_case),
        ("Master Codes", batch.total_master_codes),
    ]
    for label, value in rows:
        summary.append([label, value])
        summary.cell(row=summary.max_row, column=1).font = LABEL_FONT
    _set_widths(summary, [22, 40])

    ws_master = wb.create_sheet(SHEET_MASTER)
    ws_master.append(MASTER_HEADERS)
    masters = (
        db.session.query(MasterCode)
        .filter(MasterCode.batch_id == batch.id)
        .order_by(MasterCode.case_number.asc())
    )
    for master in masters.yield_per(1000):
        ws_master.append([
            master.case_number,
            master.code,
            tracking_url(base_url, CODE_KIND_MASTER, master.code),
            master.expected_unit_count,
            master.status,
        ])
    _style_header(ws_master, len(MASTER_HEADERS))
    _set_widths(ws_master, [8, 30, 70, 15, 22])

    ws_unique = wb.create_sheet(SHEET_UNIQUE)
    ws_unique.append(UNIQUE_HEADERS)
    units = (
        db.session.query(UniqueCode, OrderLine)
        .join(OrderLine, UniqueCode.order_line_id == OrderLine.id)
        .filter(UniqueCode.batch_id == batch.id)
        .order_by(UniqueCode.sequence_number.asc())
    )
    for unit, line in units.yield_per(5000):
        variant = line.variant_name or line.variant_code or ""
        ws_unique.append([
            unit.sequence_number,
            unit.code,
            tracking_url(base_url, CODE_KIND_UNIQUE, unit.code),
            unit.planned_case_number,
            line.product_code,
            line.product_name,
            variant,
            unit.status,
        ])
    _style_header(ws_unique, len(UNIQUE_HEADERS))
    _set_widths(ws_unique, [8, 30, 70, 14, 16, 30, 20, 22])

    return wb


def _safe_segment(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", value).strip("_") or "unnamed"


def export_batch_artifact(batch_id: int) -> str:
    """
    Write the batch workbook under ARTIFACT_DIR and record its path.

    The file is written outside any write transaction; only the artifact
    reference update is transactional. The caller commits.
    """
    batch = batch_service.get_batch(batch_id)
    base_url = current_app.config["TRACKING_BASE_URL"]
    wb = build_batch_workbook(batch, base_url=base_url)

    generated_at = utcnow()
    directory = os.path.join(
        current_app.config["ARTIFACT_DIR"],
        str(batch.manufacturer_org_id),
        _safe_segment(batch.order.order_no),
    )
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"batch-{batch.id}-{generated_at:%Y%m%d%H%M%S}.xlsx")
    wb.save(path)

    def _op() -> None:
        db.session.execute(
            update(Batch)
            .where(Batch.id == batch_id)
            .values(artifact_ref=path, artifact_generated_at=generated_at, version_id=Batch.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        db.session.expire(batch)

    run_with_retry(_op)
    logger.info("Wrote batch %s workbook to %s", batch_id, path)
    return path
