import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import event
from app import create_app
from app.extensions import db
from app.services.providers import init_payment_providers

_PROVIDER_KEYS = (
    "STRIPE_SECRET_KEY", "STRIPE_PUBLISHABLE_KEY", "STRIPE_WEBHOOK_SECRET",
    "PAYPAL_CLIENT_ID", "PAYPAL_CLIENT_SECRET", "PAYPAL_WEBHOOK_ID", "PAYPAL_ENVIRONMENT",
)


def _sqlite_savepoints(engine):
    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
        LOGIN_DISABLED=False,
        RATELIMIT_ENABLED=False,
        APP_ENV="test",
        ACCESS_POLL_DELAYS=(),
    )
    with app.app_context():
        _sqlite_savepoints(db.engine)
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()

@pytest.fixture(autouse=True)
def _no_providers(app):
    """Every test starts with Stripe and PayPal unconfigured."""
    saved = {k: app.config.get(k) for k in _PROVIDER_KEYS}
    for k in _PROVIDER_KEYS:
        app.config[k] = None
    init_payment_providers(app)
    yield
    app.config.update(saved)
    init_payment_providers(app)

@pytest.fixture()
def configure_providers(app):
    """configure_providers(stripe=True, paypal=True, paypal_webhook_id="WH-1")"""
    def _configure(stripe=False, paypal=False, paypal_webhook_id=None):
        if stripe:
            app.config.update(
                STRIPE_SECRET_KEY="sk_test_x",
                STRIPE_PUBLISHABLE_KEY="pk_test_x",
                STRIPE_WEBHOOK_SECRET="whsec_test_x",
            )
        if paypal:
            app.config.update(
                PAYPAL_CLIENT_ID="sb-client",
                PAYPAL_CLIENT_SECRET="sb-secret",
                PAYPAL_WEBHOOK_ID=paypal_webhook_id,
                PAYPAL_ENVIRONMENT="sandbox",
            )
        return init_payment_providers(app)
    return _configure

@pytest.fixture()
def make_user(app):
    """Returns a factory; users are committed and returned as ids."""
    from app.models import User

    counter = {"n": 0}

    def _make(email=None, is_admin=False):
        counter["n"] += 1
        with app.app_context():
            u = User(email=email or f"user{counter['n']}@example.com", is_active=True, is_admin=is_admin)
            u.set_password("pw-123456")
            db.session.add(u)
            db.session.commit()
            return u.id
    return _make

@pytest.fixture()
def make_package(app):
    from app.models import PricingPackage

    def _make(slot_id=1, price_cents=999, duration_days=30, is_active=True, product_type=None):
        with app.app_context():
            pkg = PricingPackage(
                slot_id=slot_id,
                name=f"Slot {slot_id} - {duration_days} days",
                product_type=product_type or f"slot_{slot_id}",
                price_cents=price_cents,
                duration_days=duration_days,
                features=[],
                is_active=is_active,
                display_order=0,
            )
            db.session.add(pkg)
            db.session.commit()
            return pkg.id
    return _make
