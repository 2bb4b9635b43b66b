"""
Pytest fixtures for checkout core tests.

Provides an in-memory application, a per-test clean database, stores and
products in two tax jurisdictions, and an audit sink that records what it
was given.
"""

import pytest

from vpos import create_app, AUDIT_SINK_EXTENSION
from vpos.extensions import db
from vpos.models import Store, Product, Customer
from vpos.services.audit_service import AuditSink, AuditSpool, AuditTransport


class RecordingTransport(AuditTransport):
    """Keeps delivered entries in memory; can be switched to fail."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, entry):
        if self.fail:
            raise ConnectionError("collector unreachable")
        self.sent.append(entry)

    def actions(self):
        return [entry.action for entry in self.sent]

    def by_action(self, action):
        return [entry for entry in self.sent if entry.action == action]


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    spool_dir = tmp_path_factory.mktemp("audit")
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'AUDIT_WORKER_ENABLED': False,
        'AUDIT_SPOOL_PATH': str(spool_dir / "spool.sqlite3"),
        'SQLITE_IMMEDIATE_TRANSACTIONS': True,
        'DEFAULT_TAX_JURISDICTION': '',
        'MIN_TOBACCO_AGE': 21,
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
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        app.extensions.pop("vpos_payment_gateway", None)


@pytest.fixture(scope='function')
def audit_transport():
    return RecordingTransport()


@pytest.fixture(scope='function')
def audit_sink(tmp_path, audit_transport):
    """Sink over the recording transport with its own spool file."""
    spool = AuditSpool(str(tmp_path / "spool.sqlite3"))
    sink = AuditSink(audit_transport, spool, retry_interval=0.05)
    yield sink
    sink.stop()
    spool.dispose()


@pytest.fixture(scope='function')
def app_audit(app, audit_sink):
    """Swap the app's audit sink for the recording one for one test."""
    original = app.extensions[AUDIT_SINK_EXTENSION]
    app.extensions[AUDIT_SINK_EXTENSION] = audit_sink
    yield audit_sink
    app.extensions[AUDIT_SINK_EXTENSION] = original


@pytest.fixture(scope='function')
def store_ny(db_session):
    """Store in New York (8% sales, 20% tobacco surcharge, age 21)."""
    store = Store(
        name="Empire Vapes",
        code="NY01",
        state_code="NY",
        address_line1="12 Canal St",
        city="New York",
        zip_code="10013",
        phone="212-555-0100",
        tax_id="NY-123456",
    )
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_default(db_session):
    """Store with no jurisdiction configured (8% base, 5% tobacco)."""
    store = Store(name="Corner Shop", code="DEF01")
    db_session.add(store)
    db_session.commit()
    return store


def make_product(session, store, **overrides):
    values = {
        "store_id": store.id,
        "sku": "SKU-1",
        "name": "Generic Item",
        "price_cents": 1000,
        "on_hand": 10,
    }
    values.update(overrides)
    product = Product(**values)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def cigarettes_ny(db_session, store_ny):
    """Age-restricted tobacco product, $15.99."""
    return make_product(
        db_session,
        store_ny,
        sku="MARL-RED",
        name="Marlboro Red",
        price_cents=1599,
        on_hand=20,
        category="cigarettes",
        age_restricted=True,
        special_tax_category="tobacco",
    )


@pytest.fixture(scope='function')
def lighter_default(db_session, store_default):
    """Unrestricted, untaxed-category product, $30.00."""
    return make_product(
        db_session,
        store_default,
        sku="LIGHTER",
        name="Butane Torch Lighter",
        price_cents=3000,
        on_hand=10,
        category="accessories",
    )


@pytest.fixture(scope='function')
def regular_customer(db_session):
    """$480.00 lifetime spend: BRONZE, just under SILVER."""
    customer = Customer(
        first_name="Dana",
        last_name="Reyes",
        email="dana@example.com",
        loyalty_points=480,
        points_lifetime_earned=480,
        total_spent_cents=48_000,
        transaction_count=12,
        loyalty_tier="BRONZE",
    )
    db_session.add(customer)
    db_session.commit()
    return customer
