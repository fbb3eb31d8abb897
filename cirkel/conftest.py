# cirkel/conftest.py
import os

# Settings are read at import time; pin the test environment first
os.environ["ENV"] = "test"
os.environ["TEST_DATABASE_URL"] = "sqlite://"
os.environ["XENDIT_CALLBACK_TOKEN"] = "test-callback-token"
os.environ["PAYPAL_CLIENT_ID"] = "test-paypal-client"
os.environ["PAYPAL_SECRET"] = "test-paypal-secret"
os.environ["AUTH_JWT_SECRET"] = "test-jwt-secret-0123456789abcdef0123"

import pytest
from fastapi.testclient import TestClient


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    """
    Create all database tables once per test session.

    The in-memory SQLite database lives as long as the engine's single
    shared connection.
    """
    from cirkel.core.database import init_engine, create_all_tables
    init_engine()
    create_all_tables()
    yield


@pytest.fixture(scope="function", autouse=True)
def reset_state():
    """Empty every table and drop live subscriptions before each test."""
    from cirkel.core.database import truncate_all_tables
    from cirkel.core.metrics import METRICS
    from cirkel.realtime.hub import hub
    from cirkel.features.billing.service import reset_paypal_provider

    hub.clear()
    truncate_all_tables()
    METRICS.reset()
    yield
    hub.clear()
    reset_paypal_provider(None)


@pytest.fixture
def client():
    from cirkel.main import app
    return TestClient(app)


@pytest.fixture
def make_user():
    """Factory creating users (with their free-tier entitlement)."""
    from cirkel.features.users.service import create_user

    def _make(user_id: str, display_name: str = None):
        return create_user(user_id, display_name)

    return _make
