import os

from openpyxl import load_workbook

from codetrack.models import Batch
from codetrack.services import export_service


def test_workbook_sheets(factory, db_session):
    batch = factory.batch((50,), buffer_percent=0, units_per_case=24)

    wb = export_service.build_batch_workbook(batch, base_url="https://track.test")

    assert wb.sheetnames == ["Summary", "Master Codes", "Unique Codes"]
    masters = wb["Master Codes"]
    units = wb["Unique Codes"]
    assert masters.max_row == 1 + 3
    assert units.max_row == 1 + 50

    header = [c.value for c in masters[1]]
    assert header == export_service.MASTER_HEADERS
    case_3 = [c.value for c in masters[4]]
    assert case_3[0] == 3
    assert case_3[2] == f"https://track.test/track/master/{case_3[1]}"
    assert case_3[3] == 2

    first_unit = [c.value for c in units[2]]
    assert first_unit[0] == 1
    assert first_unit[2] == f"https://track.test/track/product/{first_unit[1]}"
    assert first_unit[4] == "SKU-1"


def test_export_writes_file_and_records_ref(app, factory, db_session):
    batch = factory.batch((24,), buffer_percent=0)

    path = export_service.export_batch_artifact(batch.id)
    db_session.commit()

    assert os.path.exists(path)
    assert path.startswith(app.config["ARTIFACT_DIR"])
    assert path.endswith(".xlsx")

    stored = db_session.get(Batch, batch.id)
    assert stored.artifact_ref == path
    assert stored.artifact_generated_at is not None

    wb = load_workbook(path, read_only=True)
    assert "Unique Codes" in wb.sheetnames
    wb.close()
