"""
Manufacturer scanning and case packing tests.
"""

import pytest

from codetrack.errors import (
    ActorRoleMismatch,
    CodeNotFound,
    LinkValidationError,
    NotSealable,
    ValidationError,
)
from codetrack.models import Batch, MasterCode, ScanEvent, UniqueCode
from codetrack.services import packing_service


class TestScanUnique:
    def test_first_scan_moves_unit(self, factory, db_session, manufacturer):
        batch = factory.batch((24,), buffer_percent=0)
        code = factory.case_units(batch)[0]

        result = packing_service.scan_unique(qr_code=code, org_id=manufacturer.id, user_id="packer-1")
        db_session.commit()

        assert result["already_scanned"] is False
        info = result["product_info"]
        assert info["code"] == code
        assert info["status"] == "scanned_by_manufacturer"
        assert info["product_code"] == "SKU-1"
        assert info["planned_case_number"] == 1

    def test_repeat_scan_is_idempotent(self, factory, db_session):
        batch = factory.batch((24,), buffer_percent=0)
        code = factory.case_units(batch)[0]

        packing_service.scan_unique(qr_code=code)
        result = packing_service.scan_unique(qr_code=code)
        db_session.commit()

        assert result["already_scanned"] is True
        assert db_session.query(ScanEvent).filter_by(code=code).count() == 1

    def test_accepts_tracking_url_payload(self, factory, db_session):
        batch = factory.batch((24,), buffer_percent=0)
        code = factory.case_units(batch)[0]

        result = packing_service.scan_unique(qr_code=f"https://track.test/track/product/{code.lower()}")
        assert result["product_info"]["code"] == code

    def test_master_code_rejected(self, factory):
        batch = factory.batch((24,), buffer_percent=0)
        with pytest.raises(ValidationError):
            packing_service.scan_unique(qr_code=factory.master(batch).code)

    def test_unknown_code(self, db_session):
        with pytest.raises(CodeNotFound):
            packing_service.scan_unique(qr_code="PROD-DOESNOTEXIST")

    def test_other_manufacturer_rejected(self, factory, warehouse):
        batch = factory.batch((24,), buffer_percent=0)
        with pytest.raises(ActorRoleMismatch):
            packing_service.scan_unique(qr_code=factory.case_units(batch)[0], org_id=warehouse.id)


class TestLinkToMaster:
    def test_partial_then_full_case_seals(self, factory, db_session, manufacturer):
        batch = factory.batch((24,), buffer_percent=0)
        master = factory.master(batch)
        codes = factory.case_units(batch)

        first = packing_service.link_to_master(
            master_code=master.code, unique_codes=codes[:23], org_id=manufacturer.id, user_id="packer-1",
        )
        db_session.commit()
        assert first.linked_count == 23
        assert first.actual_linked_count == 23
        assert first.sealed is False
        assert master.status == "generated"

        second = packing_service.link_to_master(
            master_code=master.code, unique_codes=codes[23:], org_id=manufacturer.id, user_id="packer-1",
        )
        db_session.commit()
        assert second.actual_linked_count == 24
        assert second.sealed is True
        assert master.status == "sealed"
        assert master.sealed_at is not None

        batch = db_session.get(Batch, batch.id)
        assert batch.linked_unit_count == 24
        assert batch.sealed_master_count == 1
        assert batch.status == "in_production"
        assert db_session.query(UniqueCode).filter_by(master_code_id=master.id, status="linked").count() == 24

    def test_scanned_units_can_be_linked(self, factory, db_session, manufacturer):
        batch = factory.batch((24,), buffer_percent=0)
        codes = factory.case_units(batch)
        packing_service.scan_unique(qr_code=codes[0])

        result = packing_service.link_to_master(
            master_code=factory.master(batch).code, unique_codes=codes[:2], org_id=manufacturer.id,
        )
        assert result.linked_count == 2

    def test_bad_code_rejects_whole_request(self, factory, db_session, manufacturer):
        batch = factory.batch((24,), buffer_percent=0)
        master = factory.master(batch)
        codes = factory.case_units(batch)[:3]

        with pytest.raises(LinkValidationError) as exc_info:
            packing_service.link_to_master(
                master_code=master.code,
                unique_codes=codes + ["PROD-NOPE", "not-a-code", codes[0]],
                org_id=manufacturer.id,
            )
        db_session.rollback()

        reasons = {f["code"]: f["reason"] for f in exc_info.value.failures}
        assert reasons["PROD-NOPE"] == "not_found"
        assert reasons["not-a-code"] == "invalid_format"
        assert reasons[codes[0]] == "duplicate_in_request"
        assert exc_info.value.http_status == 422

        assert db_session.query(UniqueCode).filter(UniqueCode.master_code_id.isnot(None)).count() == 0
        assert db_session.get(MasterCode, master.id).actual_linked_count == 0

    def test_already_linked_unit_reported(self, factory, db_session, manufacturer):
        batch = factory.batch((48,), buffer_percent=0)
        codes = factory.case_units(batch, 1)
        packing_service.link_to_master(
            master_code=factory.master(batch, 1).code, unique_codes=codes[:2], org_id=manufacturer.id,
        )
        db_session.commit()

        with pytest.raises(LinkValidationError) as exc_info:
            packing_service.link_to_master(
                master_code=factory.master(batch, 2).code, unique_codes=[codes[0]], org_id=manufacturer.id,
            )
        assert exc_info.value.failures[0]["reason"] == "already_linked"

    def test_units_from_other_batch_rejected(self, factory, db_session, manufacturer):
        batch_a = factory.batch((24,), buffer_percent=0)
        batch_b = factory.batch((24,), buffer_percent=0)

        with pytest.raises(LinkValidationError) as exc_info:
            packing_service.link_to_master(
                master_code=factory.master(batch_a).code,
                unique_codes=factory.case_units(batch_b)[:1],
                org_id=manufacturer.id,
            )
        assert exc_info.value.failures[0]["reason"] == "wrong_batch"

    def test_overfill_rejected(self, factory, db_session, manufacturer):
        batch = factory.batch((30,), buffer_percent=0)
        # case 2 expects the 6 remaining units
        master = factory.master(batch, 2)
        too_many = factory.case_units(batch, 1)[:7]

        with pytest.raises(LinkValidationError) as exc_info:
            packing_service.link_to_master(master_code=master.code, unique_codes=too_many, org_id=manufacturer.id)
        assert any(f["reason"] == "case_overfilled" for f in exc_info.value.failures)

    def test_sealed_case_rejects_more_units(self, factory, db_session, manufacturer):
        batch = factory.batch((48,), buffer_percent=0)
        master = factory.pack(batch, 1)

        with pytest.raises(LinkValidationError) as exc_info:
            packing_service.link_to_master(
                master_code=master.code, unique_codes=factory.case_units(batch, 2)[:1], org_id=manufacturer.id,
            )
        assert any(f["reason"] == "master_sealed" for f in exc_info.value.failures)

    def test_empty_list_rejected(self, factory, manufacturer):
        batch = factory.batch((24,), buffer_percent=0)
        with pytest.raises(ValidationError):
            packing_service.link_to_master(master_code=factory.master(batch).code, unique_codes=[], org_id=manufacturer.id)

    def test_only_batch_manufacturer_may_link(self, factory, warehouse):
        batch = factory.batch((24,), buffer_percent=0)
        with pytest.raises(ActorRoleMismatch):
            packing_service.link_to_master(
                master_code=factory.master(batch).code,
                unique_codes=factory.case_units(batch)[:1],
                org_id=warehouse.id,
            )


class TestSealMaster:
    def test_short_case_within_tolerance(self, app, factory, db_session, manufacturer, monkeypatch):
        monkeypatch.setitem(app.config, "SEAL_TOLERANCE_UNITS", 2)
        batch = factory.batch((24,), buffer_percent=0)
        master = factory.master(batch)
        packing_service.link_to_master(
            master_code=master.code, unique_codes=factory.case_units(batch)[:22], org_id=manufacturer.id,
        )

        result = packing_service.seal_master(master_code=master.code, org_id=manufacturer.id)
        db_session.commit()

        assert result["status"] == "sealed"
        assert result["already_sealed"] is False
        assert db_session.get(Batch, batch.id).sealed_master_count == 1

    def test_shortfall_above_tolerance(self, factory, db_session, manufacturer):
        batch = factory.batch((24,), buffer_percent=0)
        master = factory.master(batch)
        packing_service.link_to_master(
            master_code=master.code, unique_codes=factory.case_units(batch)[:23], org_id=manufacturer.id,
        )

        with pytest.raises(NotSealable):
            packing_service.seal_master(master_code=master.code, org_id=manufacturer.id)

    def test_empty_case_never_sealable(self, app, factory, manufacturer, monkeypatch):
        monkeypatch.setitem(app.config, "SEAL_TOLERANCE_UNITS", 100)
        batch = factory.batch((24,), buffer_percent=0)
        with pytest.raises(NotSealable):
            packing_service.seal_master(master_code=factory.master(batch).code, org_id=manufacturer.id)

    def test_already_sealed(self, factory, manufacturer):
        batch = factory.batch((24,), buffer_percent=0)
        master = factory.pack(batch)

        result = packing_service.seal_master(master_code=master.code, org_id=manufacturer.id)
        assert result["already_sealed"] is True
