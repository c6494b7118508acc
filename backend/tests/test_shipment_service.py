"""
Shipment session tests: scanning, claims, reconciliation and confirmation.
"""

from datetime import timedelta

import pytest

from codetrack.errors import (
    ActorRoleMismatch,
    AlreadyClaimed,
    AlreadyConfirmed,
    AlreadyShipped,
    DiscrepancyNotApproved,
    IllegalTransition,
    SessionClosed,
    StateConflictError,
    ValidationError,
)
from codetrack.models import MasterCode, Organization, ShipmentSession, UniqueCode, ValidationReport
from codetrack.models.tenancy import ORG_TYPE_WAREHOUSE
from codetrack.services import maintenance_service, shipment_service
from codetrack.time_utils import utcnow


def _received_batch(factory, cases=4, units_per_case=25):
    batch = factory.batch((cases * units_per_case,), buffer_percent=0, units_per_case=units_per_case)
    masters = [factory.receive(batch, n) for n in range(1, cases + 1)]
    return batch, masters


def _open(db_session, warehouse, distributor, expected=None, **kwargs):
    session = shipment_service.start_session(
        origin_org_id=warehouse.id,
        destination_org_id=distributor.id,
        expected_quantity=expected,
        user_id="shipper-1",
        **kwargs,
    )
    db_session.commit()
    return session


def _scan(db_session, session, code, **kwargs):
    result = shipment_service.scan_code(session_id=session.id, code=code, user_id="shipper-1", **kwargs)
    db_session.commit()
    return result


def _lapse(db_session, session):
    session.expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()


class TestStartSession:
    def test_document_numbers_are_sequential(self, db_session, warehouse, distributor):
        first = _open(db_session, warehouse, distributor)
        second = _open(db_session, warehouse, distributor)

        assert first.document_number == f"SHP-{warehouse.id:03d}-0001"
        assert second.document_number == f"SHP-{warehouse.id:03d}-0002"
        assert first.status == "open"
        assert first.expires_at is not None

    def test_expected_from_order(self, factory, db_session, warehouse, distributor):
        order = factory.order((30, 20))
        session = _open(db_session, warehouse, distributor, order_id=order.id)
        assert session.expected_quantity == 50

    def test_roles_checked(self, db_session, warehouse, distributor):
        with pytest.raises(ActorRoleMismatch):
            shipment_service.start_session(origin_org_id=distributor.id, destination_org_id=distributor.id)
        with pytest.raises(ActorRoleMismatch):
            shipment_service.start_session(origin_org_id=warehouse.id, destination_org_id=warehouse.id)
        with pytest.raises(ValidationError):
            shipment_service.start_session(origin_org_id=warehouse.id, destination_org_id=distributor.id, expected_quantity=-1)


class TestScan:
    def test_case_scan_claims_members(self, factory, db_session, warehouse, distributor):
        _, masters = _received_batch(factory, cases=2)
        session = _open(db_session, warehouse, distributor, expected=50)

        result = _scan(db_session, session, masters[0].code)

        assert result["status"] == "accepted"
        assert result["item"]["code_type"] == "master"
        assert result["item"]["unit_count"] == 25
        assert result["tally"]["scanned_quantity"] == 25
        assert result["tally"]["expected_quantity"] == 50
        assert result["tally"]["discrepancy"] == -25
        assert db_session.query(UniqueCode).filter_by(claimed_session_id=session.id).count() == 25
        assert masters[0].claimed_session_id == session.id

    def test_rescan_reports_already_in_session(self, factory, db_session, warehouse, distributor):
        batch, masters = _received_batch(factory, cases=1)
        session = _open(db_session, warehouse, distributor)

        _scan(db_session, session, masters[0].code)
        again = _scan(db_session, session, masters[0].code)
        inside = _scan(db_session, session, factory.case_units(batch, 1)[3])

        assert again["status"] == "already_in_session"
        assert inside["status"] == "already_in_session"
        assert inside["item"]["code"] == masters[0].code
        assert again["tally"]["scanned_quantity"] == 25

    def test_declared_type_must_match(self, factory, db_session, warehouse, distributor):
        _, masters = _received_batch(factory, cases=1)
        session = _open(db_session, warehouse, distributor)
        with pytest.raises(ValidationError):
            shipment_service.scan_code(session_id=session.id, code=masters[0].code, code_type="unique")

    def test_unreceived_case_rejected(self, factory, db_session, warehouse, distributor):
        batch = factory.batch((24,), buffer_percent=0)
        master = factory.pack(batch)
        session = _open(db_session, warehouse, distributor)

        with pytest.raises(IllegalTransition):
            shipment_service.scan_code(session_id=session.id, code=master.code)

    def test_other_warehouse_stock_rejected(self, factory, db_session, distributor):
        _, masters = _received_batch(factory, cases=1)
        other = Organization(name="South Warehouse", code="WH-S", org_type=ORG_TYPE_WAREHOUSE)
        db_session.add(other)
        db_session.commit()
        session = _open(db_session, other, distributor)

        with pytest.raises(ActorRoleMismatch):
            shipment_service.scan_code(session_id=session.id, code=masters[0].code)

    def test_loose_unit_blocks_its_case(self, factory, db_session, warehouse, distributor):
        batch, masters = _received_batch(factory, cases=1)
        session = _open(db_session, warehouse, distributor)
        _scan(db_session, session, factory.case_units(batch, 1)[0])

        with pytest.raises(ValidationError):
            shipment_service.scan_code(session_id=session.id, code=masters[0].code)


class TestClaims:
    def test_code_held_by_one_open_session(self, factory, db_session, warehouse, distributor):
        batch, masters = _received_batch(factory, cases=1)
        first = _open(db_session, warehouse, distributor)
        second = _open(db_session, warehouse, distributor)
        _scan(db_session, first, masters[0].code)

        with pytest.raises(AlreadyClaimed) as exc_info:
            shipment_service.scan_code(session_id=second.id, code=masters[0].code)
        assert exc_info.value.details["claimed_session_id"] == first.id
        db_session.rollback()

        with pytest.raises(AlreadyClaimed):
            shipment_service.scan_code(session_id=second.id, code=factory.case_units(batch, 1)[5])

    def test_lapsed_session_claims_released_on_conflict(self, factory, db_session, warehouse, distributor):
        _, masters = _received_batch(factory, cases=1)
        stale = _open(db_session, warehouse, distributor)
        fresh = _open(db_session, warehouse, distributor)
        _scan(db_session, stale, masters[0].code)
        _lapse(db_session, stale)

        result = _scan(db_session, fresh, masters[0].code)

        assert result["status"] == "accepted"
        assert db_session.get(ShipmentSession, stale.id).status == "expired"
        assert db_session.query(UniqueCode).filter_by(claimed_session_id=fresh.id).count() == 25

    def test_lapsed_session_refuses_scans(self, factory, db_session, warehouse, distributor):
        _, masters = _received_batch(factory, cases=1)
        session = _open(db_session, warehouse, distributor)
        _lapse(db_session, session)

        with pytest.raises(SessionClosed):
            shipment_service.scan_code(session_id=session.id, code=masters[0].code)

    def test_expire_stale_sweep(self, factory, db_session, warehouse, distributor):
        _, masters = _received_batch(factory, cases=1)
        session = _open(db_session, warehouse, distributor)
        _scan(db_session, session, masters[0].code)
        _lapse(db_session, session)

        assert maintenance_service.expire_stale_sessions() == 1
        assert maintenance_service.expire_stale_sessions() == 0

        assert db_session.get(ShipmentSession, session.id).status == "expired"
        assert db_session.query(UniqueCode).filter(UniqueCode.claimed_session_id.isnot(None)).count() == 0
        assert db_session.get(MasterCode, masters[0].id).claimed_session_id is None

    def test_cancel_releases_claims(self, factory, db_session, warehouse, distributor):
        _, masters = _received_batch(factory, cases=1)
        session = _open(db_session, warehouse, distributor)
        _scan(db_session, session, masters[0].code)

        cancelled = shipment_service.cancel_session(session_id=session.id, user_id="shipper-1")
        db_session.commit()

        assert cancelled.status == "expired"
        assert db_session.query(UniqueCode).filter_by(claimed_session_id=session.id).count() == 0
        with pytest.raises(SessionClosed):
            shipment_service.cancel_session(session_id=session.id)


class TestComplete:
    def test_short_shipment_needs_approval(self, factory, db_session, warehouse, distributor):
        batch, masters = _received_batch(factory, cases=4)
        session = _open(db_session, warehouse, distributor, expected=100)
        for master in masters[:3]:
            _scan(db_session, session, master.code)
        for code in factory.case_units(batch, 4)[:22]:
            _scan(db_session, session, code)

        with pytest.raises(DiscrepancyNotApproved) as exc_info:
            shipment_service.complete_session(session_id=session.id, user_id="shipper-1")
        assert exc_info.value.details["discrepancy"] == -3
        db_session.rollback()
        assert db_session.get(ShipmentSession, session.id).status == "open"
        assert db_session.query(UniqueCode).filter_by(status="shipped").count() == 0

        result = shipment_service.complete_session(
            session_id=session.id, approve_discrepancy=True, user_id="shipper-1", note="3 units damaged",
        )
        db_session.commit()

        report = result["report"]
        assert result["session"]["status"] == "closed"
        assert report["report_type"] == "shipment"
        assert report["expected_quantity"] == 100
        assert report["scanned_quantity"] == 97
        assert report["discrepancy"] == -3
        assert report["is_matched"] is False
        assert report["discrepancy_approved"] is True
        assert report["detail"]["master_count"] == 3
        assert report["detail"]["loose_unit_count"] == 22

        assert db_session.query(UniqueCode).filter_by(status="shipped").count() == 97
        assert db_session.query(UniqueCode).filter_by(status="shipped", distributor_org_id=distributor.id).count() == 97
        assert db_session.query(MasterCode).filter_by(status="shipped").count() == 3
        # the opened case stays in stock
        assert db_session.get(MasterCode, masters[3].id).status == "received_by_warehouse"

    def test_matched_shipment(self, factory, db_session, warehouse, distributor):
        _, masters = _received_batch(factory, cases=2)
        session = _open(db_session, warehouse, distributor, expected=50)
        for master in masters:
            _scan(db_session, session, master.code)

        result = shipment_service.complete_session(session_id=session.id)
        db_session.commit()

        assert result["report"]["is_matched"] is True
        assert result["report"]["discrepancy"] == 0
        assert result["report"]["discrepancy_approved"] is False
        assert db_session.query(ValidationReport).filter_by(session_id=session.id).count() == 1

    def test_expected_derived_from_scans(self, factory, db_session, warehouse, distributor):
        _, masters = _received_batch(factory, cases=1)
        session = _open(db_session, warehouse, distributor)
        _scan(db_session, session, masters[0].code)

        result = shipment_service.complete_session(session_id=session.id)
        assert result["report"]["expected_quantity"] == 25
        assert result["report"]["is_matched"] is True

    def test_empty_session_cannot_complete(self, db_session, warehouse, distributor):
        session = _open(db_session, warehouse, distributor, expected=0)
        with pytest.raises(ValidationError):
            shipment_service.complete_session(session_id=session.id)

    def test_closed_session_refuses_scans_and_shipped_codes_refused(self, factory, db_session, warehouse, distributor):
        _, masters = _received_batch(factory, cases=2)
        session = _open(db_session, warehouse, distributor)
        _scan(db_session, session, masters[0].code)
        shipment_service.complete_session(session_id=session.id)
        db_session.commit()

        with pytest.raises(SessionClosed):
            shipment_service.scan_code(session_id=session.id, code=masters[1].code)

        later = _open(db_session, warehouse, distributor)
        with pytest.raises(AlreadyShipped):
            shipment_service.scan_code(session_id=later.id, code=masters[0].code)


class TestConfirmReceipt:
    def _shipped_session(self, factory, db_session, warehouse, distributor, cases=1):
        _, masters = _received_batch(factory, cases=cases)
        session = _open(db_session, warehouse, distributor)
        for master in masters:
            _scan(db_session, session, master.code)
        shipment_service.complete_session(session_id=session.id)
        db_session.commit()
        return session

    def test_confirm_everything(self, factory, db_session, warehouse, distributor):
        session = self._shipped_session(factory, db_session, warehouse, distributor)

        report = shipment_service.confirm_receipt(session_id=session.id, distributor_org_id=distributor.id)
        db_session.commit()

        body = report.to_dict()
        assert body["report_type"] == "distributor_confirmation"
        assert body["is_matched"] is True
        assert body["scanned_quantity"] == 25
        assert db_session.query(UniqueCode).filter_by(status="validated").count() == 25
        assert db_session.get(ShipmentSession, session.id).confirmed_at is not None

        with pytest.raises(AlreadyConfirmed):
            shipment_service.confirm_receipt(session_id=session.id, distributor_org_id=distributor.id)

    def test_partial_confirmation_lists_missing_and_unexpected(self, factory, db_session, warehouse, distributor):
        session = self._shipped_session(factory, db_session, warehouse, distributor)
        shipped = [
            u.code for u in db_session.query(UniqueCode)
            .filter_by(claimed_session_id=session.id)
            .order_by(UniqueCode.sequence_number)
        ]

        report = shipment_service.confirm_receipt(
            session_id=session.id,
            distributor_org_id=distributor.id,
            unique_codes=shipped[:24] + ["PROD-STRANGER"],
        )
        db_session.commit()

        body = report.to_dict()
        assert body["expected_quantity"] == 25
        assert body["scanned_quantity"] == 24
        assert body["discrepancy"] == -1
        assert body["detail"]["missing_codes"] == [shipped[24]]
        assert body["detail"]["unexpected_codes"] == ["PROD-STRANGER"]
        assert db_session.query(UniqueCode).filter_by(status="shipped").count() == 1

    def test_only_destination_may_confirm(self, factory, db_session, warehouse, distributor):
        session = self._shipped_session(factory, db_session, warehouse, distributor)
        other = Organization(name="Rival Distribution", code="DIST-R", org_type="DISTRIBUTOR")
        db_session.add(other)
        db_session.commit()

        with pytest.raises(ActorRoleMismatch):
            shipment_service.confirm_receipt(session_id=session.id, distributor_org_id=other.id)

    def test_open_session_cannot_be_confirmed(self, db_session, warehouse, distributor):
        session = _open(db_session, warehouse, distributor)
        with pytest.raises(StateConflictError):
            shipment_service.confirm_receipt(session_id=session.id, distributor_org_id=distributor.id)
