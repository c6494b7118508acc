import pytest

from codetrack.errors import ActorRoleMismatch, NotSealed, ValidationError
from codetrack.models import Batch, ScanEvent, UniqueCode
from codetrack.services import packing_service, receive_service


def test_receive_cascades_to_units(factory, db_session, warehouse):
    batch = factory.batch((48,), buffer_percent=0)
    master = factory.pack(batch, 1)

    result = receive_service.receive_master(master_code=master.code, warehouse_org_id=warehouse.id, user_id="r1")
    db_session.commit()

    assert result["status"] == "received"
    assert result["case_number"] == 1
    assert result["product_count"] == 24
    assert result["warehouse_org_id"] == warehouse.id

    assert master.status == "received_by_warehouse"
    units = db_session.query(UniqueCode).filter_by(master_code_id=master.id).all()
    assert len(units) == 24
    assert all(u.status == "received_by_warehouse" for u in units)
    assert all(u.warehouse_org_id == warehouse.id for u in units)

    receive_events = db_session.query(ScanEvent).filter_by(scan_type="receive").count()
    assert receive_events == 25

    batch = db_session.get(Batch, batch.id)
    assert batch.received_master_count == 1
    assert batch.received_unit_count == 24


def test_second_receive_is_idempotent(factory, db_session, warehouse):
    batch = factory.batch((24,), buffer_percent=0)
    master = factory.receive(batch, 1)

    again = receive_service.receive_master(master_code=master.code, warehouse_org_id=warehouse.id)
    db_session.commit()

    assert again["status"] == "already_received"
    assert again["product_count"] == 24
    assert db_session.query(ScanEvent).filter_by(scan_type="receive").count() == 25
    assert db_session.get(Batch, batch.id).received_master_count == 1


def test_unsealed_case_rejected(factory, db_session, manufacturer, warehouse):
    batch = factory.batch((24,), buffer_percent=0)
    master = factory.master(batch)
    packing_service.link_to_master(
        master_code=master.code, unique_codes=factory.case_units(batch)[:10], org_id=manufacturer.id,
    )
    db_session.commit()

    with pytest.raises(NotSealed) as exc_info:
        receive_service.receive_master(master_code=master.code, warehouse_org_id=warehouse.id)
    assert exc_info.value.details["actual_linked_count"] == 10
    db_session.rollback()

    assert db_session.query(UniqueCode).filter_by(status="received_by_warehouse").count() == 0


def test_receiver_must_be_warehouse(factory, manufacturer, distributor):
    batch = factory.batch((24,), buffer_percent=0)
    master = factory.pack(batch)
    with pytest.raises(ActorRoleMismatch):
        receive_service.receive_master(master_code=master.code, warehouse_org_id=distributor.id)


def test_unit_code_rejected(factory, warehouse):
    batch = factory.batch((24,), buffer_percent=0)
    factory.pack(batch)
    with pytest.raises(ValidationError):
        receive_service.receive_master(master_code=factory.case_units(batch)[0], warehouse_org_id=warehouse.id)


def test_pending_receives_grouped_by_batch(factory, db_session, warehouse):
    batch = factory.batch((72,), buffer_percent=0)
    factory.pack(batch, 1)
    factory.pack(batch, 2)
    factory.receive(batch, 3)

    pending = receive_service.pending_receives(warehouse_org_id=warehouse.id)
    assert len(pending) == 1
    entry = pending[0]
    assert entry["batch_id"] == batch.id
    assert entry["pending_case_count"] == 2
    assert entry["pending_unit_count"] == 48
    assert [c["case_number"] for c in entry["cases"]] == [1, 2]

    assert receive_service.pending_receives(warehouse_org_id=warehouse.id + 1000) == []


def test_reconcile_batch_receipt(factory, db_session, warehouse):
    batch = factory.batch((48,), buffer_percent=0)
    factory.receive(batch, 1)
    outstanding = factory.pack(batch, 2)

    report = receive_service.reconcile_batch_receipt(batch_id=batch.id, warehouse_org_id=warehouse.id, user_id="r1")
    db_session.commit()

    body = report.to_dict()
    assert body["report_type"] == "receiving"
    assert body["expected_quantity"] == 48
    assert body["scanned_quantity"] == 24
    assert body["discrepancy"] == -24
    assert body["is_matched"] is False
    assert body["detail"]["outstanding_cases"] == [outstanding.code]
    assert body["to_org_id"] == warehouse.id
