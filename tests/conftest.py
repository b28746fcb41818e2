"""
Pytest configuration and shared fixtures.

Test defaults for the environment are set here, before any momowallet import,
so the module-level settings/engine pick them up. Values already exported
(e.g. from a .env.test via Makefile) win.
"""

import hashlib
import hmac
import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_momowallet.db")
os.environ.setdefault("WEBHOOK_SECRET", "test-secret")
os.environ.setdefault("MARKET", "GH")
os.environ.setdefault("RECOVERY_INTERVAL_SECONDS", "0")

import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from momowallet.config import get_settings
get_settings.cache_clear()

from momowallet.storage import Base, SessionLocal, engine  # noqa: E402
from momowallet import models  # noqa: E402,F401


TEST_WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]


def compute_signature(body: str, secret: str = TEST_WEBHOOK_SECRET) -> str:
    """Compute HMAC-SHA256 signature for request body."""
    return hmac.new(
        secret.encode("utf-8"),
        body.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


def post_sms(client, user_id: str, sender: str, body: str, received_at: str = "2025-01-15T10:00:00Z"):
    """Sign and POST one SMS to /sms."""
    payload = json.dumps({
        "user_id": user_id,
        "sender": sender,
        "body": body,
        "received_at": received_at,
    })
    return client.post(
        "/sms",
        content=payload,
        headers={
            "Content-Type": "application/json",
            "X-Signature": compute_signature(payload),
        }
    )


@pytest.fixture(scope="function")
def db():
    """Session on a freshly created schema, dropped after the test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    from fastapi.testclient import TestClient

    from momowallet.main import app

    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)
