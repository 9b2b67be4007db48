"""
Pytest fixtures for FinBoost payout tests.

Provides an in-memory database app, per-test table wipe, seeded users,
cycles and winners, and a fake PayPal wired into the app.
"""

import pytest

from finboost import create_app
from finboost.extensions import db
from finboost.models import User, CycleSetting, CycleWinnerSelection
from finboost.services.paypal_client import PayPalSettings

from paypal_fakes import FakePayPal


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYPAL_CLIENT_ID': 'test-client-id',
        'PAYPAL_CLIENT_SECRET': 'test-client-secret',
        'PAYPAL_ENVIRONMENT': 'sandbox',
        'PAYPAL_MAX_RETRIES': 3,
        'PAYPAL_BACKOFF_BASE_SECONDS': 1.0,
        'PAYPAL_BACKOFF_MAX_SECONDS': 30,
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


@pytest.fixture(scope='function')
def settings(app):
    return PayPalSettings.from_config(app.config)


@pytest.fixture(scope='function')
def paypal(app, settings, monkeypatch):
    """Fake PayPal; the app's client is swapped for one bound to it."""
    fake = FakePayPal()
    paypal_client = fake.make_client(settings)
    monkeypatch.setitem(app.extensions, "paypal_client", paypal_client)
    fake.client = paypal_client
    yield fake
    paypal_client.close()


@pytest.fixture(scope='function')
def admin(db_session):
    user = User(email="admin@finboost.test", username="admin", is_admin=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cycle(db_session):
    cycle = CycleSetting(name="October 2026")
    db_session.add(cycle)
    db_session.commit()
    return cycle


@pytest.fixture(scope='function')
def make_winner(db_session, cycle):
    """
    Factory: create a member and their winner row for `cycle`.

    paypal_email=None leaves the live profile blank; snapshot sets the
    selection-time address.
    """
    counter = {"n": 0}

    def _make(amount=1000, paypal_email="default", snapshot=None, override=None, tier="tier1", cycle_id=None):
        counter["n"] += 1
        n = counter["n"]
        if paypal_email == "default":
            paypal_email = f"winner{n}@example.com"
        user = User(email=f"member{n}@finboost.test", username=f"member{n}", paypal_email=paypal_email)
        db_session.add(user)
        db_session.flush()
        winner = CycleWinnerSelection(
            cycle_setting_id=cycle_id or cycle.id,
            user_id=user.id,
            tier=tier,
            payout_calculated=amount,
            payout_override=override,
            paypal_email_snapshot=snapshot,
        )
        db_session.add(winner)
        db_session.commit()
        return winner

    return _make


def admin_headers(user) -> dict:
    """Helper to create identity headers."""
    return {"X-User-Id": str(user.id)}
