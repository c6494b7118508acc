"""
HTTP surface tests: status codes, error envelopes and the end-to-end flow.
"""

from datetime import timedelta

import pytest

from conftest import actor_headers

from codetrack.models import Batch, ShipmentSession, UniqueCode
from codetrack.services import export_service
from codetrack.time_utils import utcnow


def test_actor_header_required(client, db_session):
    response = client.get('/api/batches/1')
    assert response.status_code == 401
    assert response.json['code'] == 'ACTOR_REQUIRED'


@pytest.mark.parametrize('raw', ['abc', '\N{SUPERSCRIPT TWO}', '-3'])
def test_malformed_org_header_is_a_validation_error(client, db_session, raw):
    response = client.get('/api/batches/1', headers={'X-Actor-User-Id': 'u1', 'X-Actor-Org-Id': raw})
    assert response.status_code == 400
    assert response.json['code'] == 'VALIDATION_ERROR'


def test_health(client, db_session):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.json['status'] == 'healthy'
    assert response.json['checks']['database']['details']['batches'] == 0


def test_health_counts_open_and_lapsed_sessions(client, db_session, warehouse, distributor):
    now = utcnow()
    for n, expires_at in enumerate((now + timedelta(hours=1), now - timedelta(minutes=5), None), start=1):
        db_session.add(ShipmentSession(
            document_number=f'SHP-HC-{n}',
            origin_org_id=warehouse.id,
            destination_org_id=distributor.id,
            status='open',
            opened_at=now - timedelta(hours=1),
            expires_at=expires_at,
        ))
    db_session.commit()

    details = client.get('/api/health').json['checks']['database']['details']
    assert details['open_shipment_sessions'] == 3
    assert details['lapsed_pending_expiry'] == 1


def test_generate_batch_route(client, factory, manufacturer):
    order = factory.order((480,), units_per_case=24)

    response = client.post('/api/batches', json={'order_id': order.id}, headers=actor_headers(org_id=manufacturer.id))

    assert response.status_code == 201
    body = response.json
    assert body['total_unique_codes'] == 528
    assert body['total_master_codes'] == 22
    assert body['artifact_ref'].endswith('.xlsx')

    duplicate = client.post('/api/batches', json={'order_id': order.id}, headers=actor_headers())
    assert duplicate.status_code == 409
    assert duplicate.json['code'] == 'DUPLICATE_BATCH'


def test_generate_batch_survives_workbook_failure(client, factory, db_session, manufacturer, monkeypatch):
    order = factory.order((48,), units_per_case=24)

    def broken_export(batch_id):
        raise OSError('disk full')

    monkeypatch.setattr(export_service, 'export_batch_artifact', broken_export)
    response = client.post('/api/batches', json={'order_id': order.id}, headers=actor_headers(org_id=manufacturer.id))

    assert response.status_code == 201
    assert response.json['artifact_ref'] is None
    batch = db_session.get(Batch, response.json['batch_id'])
    assert batch.total_unique_codes == response.json['total_unique_codes']
    assert batch.artifact_ref is None


def test_generate_batch_validation(client, db_session):
    response = client.post('/api/batches', json={'order_id': 'x'}, headers=actor_headers())
    assert response.status_code == 400
    assert response.json['code'] == 'VALIDATION_ERROR'

    for raw in ('--5', '\N{SUPERSCRIPT TWO}', '1.5'):
        malformed = client.post('/api/batches', json={'order_id': raw}, headers=actor_headers())
        assert malformed.status_code == 400, raw
        assert malformed.json['code'] == 'VALIDATION_ERROR'

    missing = client.post('/api/batches', json={'order_id': 999}, headers=actor_headers())
    assert missing.status_code == 404
    assert missing.json['code'] == 'ORDER_NOT_FOUND'


def test_link_failure_lists_codes(client, factory, manufacturer):
    batch = factory.batch((24,), buffer_percent=0)
    master = factory.master(batch)

    response = client.post(
        '/api/manufacturer/link-to-master',
        json={'master_code': master.code, 'unique_codes': ['PROD-NOPE']},
        headers=actor_headers(org_id=manufacturer.id),
    )
    assert response.status_code == 422
    assert response.json['details']['failures'] == [{'code': 'PROD-NOPE', 'reason': 'not_found'}]


def test_receive_unsealed_case(client, factory, warehouse):
    batch = factory.batch((24,), buffer_percent=0)
    master = factory.master(batch)

    response = client.post(
        '/api/warehouse/receive-master',
        json={'master_code': master.code},
        headers=actor_headers(org_id=warehouse.id),
    )
    assert response.status_code == 409
    assert response.json['code'] == 'NOT_SEALED'


def test_end_to_end_flow(client, factory, db_session, manufacturer, warehouse, distributor):
    batch = factory.batch((48,), buffer_percent=0)
    mfr = actor_headers('packer-1', manufacturer.id)
    wh = actor_headers('clerk-1', warehouse.id)
    dist = actor_headers('driver-1', distributor.id)

    # Pack both cases over HTTP
    for case_number in (1, 2):
        master = factory.master(batch, case_number)
        codes = factory.case_units(batch, case_number)

        scan = client.post('/api/manufacturer/scan-unique', json={'qr_code': codes[0]}, headers=mfr)
        assert scan.status_code == 200
        assert scan.json['already_scanned'] is False

        link = client.post(
            '/api/manufacturer/link-to-master',
            json={'master_code': master.code, 'unique_codes': codes},
            headers=mfr,
        )
        assert link.status_code == 200
        assert link.json['sealed'] is True

    pending = client.get('/api/warehouse/pending-receives', headers=wh)
    assert pending.json['items'][0]['pending_case_count'] == 2

    masters = [factory.master(batch, n).code for n in (1, 2)]
    for code in masters:
        received = client.post('/api/warehouse/receive-master', json={'master_code': code}, headers=wh)
        assert received.status_code == 200
        assert received.json['status'] == 'received'
        assert received.json['product_count'] == 24

    again = client.post('/api/warehouse/receive-master', json={'master_code': masters[0]}, headers=wh)
    assert again.json['status'] == 'already_received'

    start = client.post(
        '/api/warehouse/shipments',
        json={'distributor_org_id': distributor.id, 'expected_quantity': 48},
        headers=wh,
    )
    assert start.status_code == 201
    session_id = start.json['shipment_session_id']
    assert start.json['document_number'] == f"SHP-{warehouse.id:03d}-0001"

    for code in masters:
        scan = client.post(f'/api/warehouse/shipments/{session_id}/scan', json={'code': code}, headers=wh)
        assert scan.status_code == 200
    assert scan.json['tally']['is_matched'] is True

    complete = client.post(f'/api/warehouse/shipments/{session_id}/complete', json={}, headers=wh)
    assert complete.status_code == 200
    assert complete.json['report']['is_matched'] is True

    late = client.post(f'/api/warehouse/shipments/{session_id}/scan', json={'code': masters[0]}, headers=wh)
    assert late.status_code == 409
    assert late.json['code'] == 'SESSION_CLOSED'

    confirm = client.post(f'/api/distributor/shipments/{session_id}/confirm', json={}, headers=dist)
    assert confirm.status_code == 201
    assert confirm.json['report_type'] == 'distributor_confirmation'

    db_session.expire_all()
    assert db_session.query(UniqueCode).filter_by(status='validated').count() == 48

    trace = client.get(f'/api/codes/{factory.case_units(batch, 1)[0]}', headers=dist)
    assert trace.status_code == 200
    steps = [ev['scan_type'] for ev in trace.json['history']]
    assert steps == ['scan_unique', 'link', 'receive', 'ship', 'validate']
    assert trace.json['product_info']['product_code'] == 'SKU-1'

    reports = client.get('/api/reports', headers=wh)
    assert reports.json['count'] == 2


def test_discrepancy_rejected_over_http(client, factory, warehouse, distributor):
    batch = factory.batch((24,), buffer_percent=0)
    master = factory.receive(batch)
    wh = actor_headers('clerk-1', warehouse.id)

    start = client.post(
        '/api/warehouse/shipments',
        json={'distributor_org_id': distributor.id, 'expected_quantity': 30},
        headers=wh,
    )
    session_id = start.json['shipment_session_id']
    client.post(f'/api/warehouse/shipments/{session_id}/scan', json={'code': master.code}, headers=wh)

    rejected = client.post(f'/api/warehouse/shipments/{session_id}/complete', json={}, headers=wh)
    assert rejected.status_code == 409
    assert rejected.json['code'] == 'DISCREPANCY_NOT_APPROVED'
    assert rejected.json['details']['discrepancy'] == -6

    approved = client.post(
        f'/api/warehouse/shipments/{session_id}/complete',
        json={'approve_discrepancy': True, 'note': 'short pick'},
        headers=wh,
    )
    assert approved.status_code == 200
    report_id = approved.json['report']['id']

    correction = client.post(
        f'/api/reports/{report_id}/corrections',
        json={'expected_quantity': 24, 'scanned_quantity': 24, 'note': 'order amended'},
        headers=wh,
    )
    assert correction.status_code == 201
    assert correction.json['supersedes_report_id'] == report_id
    assert correction.json['is_matched'] is True
