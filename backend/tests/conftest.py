"""
Shared test configuration

Environment is set before any app module is imported so the cached settings
never point at a real database, audit file or hosted backend.
"""
import os
from datetime import datetime, timedelta, timezone

import jwt
import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("STORE_BACKEND", "database")
os.environ.setdefault("AUDIT_LOG_FILE", "")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("JWT_SECRET", "test-secret-for-shopfloor-inventory-tests")

USER_ID = "4f6d8a52-1c7e-4b0e-9a51-0d2f3c9e7b11"


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def make_token():
    """Build bearer tokens signed the way the hosted backend signs them"""
    from app.core.settings import settings

    def _make_token(sub=USER_ID, expires_in=timedelta(hours=1), secret=None, **claims):
        payload = {
            "sub": sub,
            "aud": settings.JWT_AUDIENCE,
            "exp": datetime.now(timezone.utc) + expires_in,
        }
        payload.update(claims)
        return jwt.encode(payload, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    return _make_token


@pytest.fixture
def auth_headers(make_token):
    return {"Authorization": f"Bearer {make_token()}"}
