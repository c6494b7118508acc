"""
Pytest fixtures for codetrack backend tests.

Provides the test app, a per-test clean database, supply-chain organizations
and a small factory for orders, batches and packed cases.
"""

import pytest

from codetrack import create_app
from codetrack.extensions import db
from codetrack.models import MasterCode, Order, OrderLine, Organization, UniqueCode
from codetrack.models.orders import ORDER_STATUS_APPROVED
from codetrack.models.tenancy import ORG_TYPE_DISTRIBUTOR, ORG_TYPE_MANUFACTURER, ORG_TYPE_WAREHOUSE
from codetrack.services import batch_service, packing_service, receive_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'TRACKING_BASE_URL': 'https://track.test',
    'DEFAULT_BUFFER_PERCENT': 10,
    'DEFAULT_UNITS_PER_CASE': 24,
    'SEAL_TOLERANCE_UNITS': 0,
    'SHIPMENT_SESSION_TTL_MINUTES': 240,
}


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        **TEST_CONFIG,
        'ARTIFACT_DIR': str(tmp_path_factory.mktemp('artifacts')),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (Core deletes bypass the append-only guards)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _org(db_session, name, code, org_type):
    org = Organization(name=name, code=code, org_type=org_type, is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def manufacturer(db_session):
    return _org(db_session, "Acme Bottling", "ACME", ORG_TYPE_MANUFACTURER)


@pytest.fixture(scope='function')
def warehouse(db_session):
    return _org(db_session, "North Warehouse", "WH-N", ORG_TYPE_WAREHOUSE)


@pytest.fixture(scope='function')
def distributor(db_session):
    return _org(db_session, "City Distribution", "DIST-C", ORG_TYPE_DISTRIBUTOR)


class TrackingFactory:
    """Builds the upstream state most tests start from."""

    def __init__(self, session, manufacturer, warehouse):
        self.session = session
        self.manufacturer = manufacturer
        self.warehouse = warehouse
        self._order_seq = 0

    def order(self, quantities=(480,), *, status=ORDER_STATUS_APPROVED, buffer_percent=None, units_per_case=None):
        self._order_seq += 1
        order = Order(
            order_no=f"PO-{1000 + self._order_seq}",
            buyer_org_id=self.warehouse.id,
            seller_org_id=self.manufacturer.id,
            status=status,
            buffer_percent=buffer_percent,
            units_per_case=units_per_case,
        )
        self.session.add(order)
        self.session.flush()
        for i, qty in enumerate(quantities, start=1):
            self.session.add(OrderLine(
                order_id=order.id,
                product_code=f"SKU-{i}",
                product_name=f"Sparkling Water {i}",
                variant_code=f"V{i}",
                variant_name="330ml",
                quantity=qty,
            ))
        self.session.commit()
        return order

    def batch(self, quantities=(480,), **kwargs):
        order = self.order(quantities, **kwargs)
        batch = batch_service.generate_batch(order_id=order.id, user_id="planner-1")
        self.session.commit()
        return batch

    def master(self, batch, case_number=1):
        return (
            self.session.query(MasterCode)
            .filter_by(batch_id=batch.id, case_number=case_number)
            .one()
        )

    def case_units(self, batch, case_number=1):
        """Unit codes planned for a case, in sequence order."""
        return [
            u.code for u in
            self.session.query(UniqueCode)
            .filter_by(batch_id=batch.id, planned_case_number=case_number)
            .order_by(UniqueCode.sequence_number.asc())
            .all()
        ]

    def pack(self, batch, case_number=1):
        """Link every planned unit into its case (seals it)."""
        master = self.master(batch, case_number)
        packing_service.link_to_master(
            master_code=master.code,
            unique_codes=self.case_units(batch, case_number),
            org_id=self.manufacturer.id,
            user_id="packer-1",
        )
        self.session.commit()
        return master

    def receive(self, batch, case_number=1):
        master = self.pack(batch, case_number)
        receive_service.receive_master(
            master_code=master.code,
            warehouse_org_id=self.warehouse.id,
            user_id="receiver-1",
        )
        self.session.commit()
        return master


@pytest.fixture(scope='function')
def factory(db_session, manufacturer, warehouse):
    return TrackingFactory(db_session, manufacturer, warehouse)


def actor_headers(user_id="operator-1", org_id=None) -> dict:
    """Identity headers the upstream auth gateway forwards."""
    headers = {'X-Actor-User-Id': user_id}
    if org_id is not None:
        headers['X-Actor-Org-Id'] = str(org_id)
    return headers
