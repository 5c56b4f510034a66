# -*- coding: utf-8 -*-
"""
Shared pytest fixtures for all test modules.

The environment is pinned before any ``app`` import so the engine binds to a
throwaway SQLite file and the scheduler never starts.
"""

import json
import os
import tempfile
from datetime import datetime, timezone

import pytest

WEBHOOK_SECRET = "whsec_MfKQ9r8GKYqrTwjUPD8ILPZIo2LaLaSw"

_DB_DIR = tempfile.mkdtemp(prefix="accounts-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["USER_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["CLERK_AUTH_REQUIRED"] = "true"
os.environ["ENVIRONMENT"] = "test"

from fastapi.testclient import TestClient  # noqa: E402
from svix.webhooks import Webhook  # noqa: E402

from app.core.database import Base, SessionLocal, engine  # noqa: E402
from app.core.plans import PlanType  # noqa: E402
from app.core.security import ClerkPrincipal, require_clerk_user  # noqa: E402
from app.main import app  # noqa: E402
from app.models.user import User, utcnow  # noqa: E402
from app.services.quota_engine import QuotaEngine  # noqa: E402

TEST_SUBJECT = "user_test_subject"


# ==================== Database ====================


@pytest.fixture(autouse=True)
def fresh_schema():
    """Every test starts from an empty users table."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    """Factory that persists a user through the same path the API uses."""
    counter = {"n": 0}

    def _make(plan=PlanType.BASIC, email=None, oauth_id=None, **overrides):
        counter["n"] += 1
        n = counter["n"]
        user = QuotaEngine(db).build_user(
            email=email or f"user{n}@example.com",
            oauth_id=oauth_id or f"user_{n}",
            username=f"user{n}",
            plan=plan,
        )
        for key, value in overrides.items():
            setattr(user, key, value)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def now():
    return utcnow().replace(microsecond=0)


# ==================== API ====================


@pytest.fixture
def client():
    """Client with Clerk auth stubbed to a fixed principal."""
    app.dependency_overrides[require_clerk_user] = lambda: ClerkPrincipal(subject=TEST_SUBJECT)
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def anon_client():
    """Client that goes through the real token check."""
    app.dependency_overrides.clear()
    return TestClient(app, raise_server_exceptions=False)


# ==================== Webhooks ====================


def clerk_user_payload(clerk_id="user_2abc", email="jane@example.com", username=None, event_type="user.created"):
    return {
        "type": event_type,
        "object": "event",
        "data": {
            "id": clerk_id,
            "username": username,
            "primary_email_address_id": "idn_primary",
            "email_addresses": [
                {"id": "idn_secondary", "email_address": "other@example.com"},
                {"id": "idn_primary", "email_address": email},
            ],
        },
    }


@pytest.fixture
def signed_webhook():
    """Builds (body, headers) signed the way Svix signs Clerk deliveries."""
    signer = Webhook(WEBHOOK_SECRET)

    def _sign(payload, msg_id="msg_2test"):
        body = json.dumps(payload)
        timestamp = datetime.now(timezone.utc)
        signature = signer.sign(msg_id, timestamp, body)
        headers = {
            "svix-id": msg_id,
            "svix-timestamp": str(int(timestamp.timestamp())),
            "svix-signature": signature,
            "content-type": "application/json",
        }
        return body, headers

    return _sign


@pytest.fixture
def user_event():
    return clerk_user_payload
