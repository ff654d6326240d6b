"""
Pytest configuration and fixtures for phoneauth tests.

Provides test database isolation, a controllable clock and fake
outbound collaborators (SMS, Turnstile).
"""
import sys
import os
import pathlib
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Settings read the environment at import time
os.environ.setdefault("ENV", "test")
os.environ.setdefault("OTP_SECRET", "test-otp-secret-0123456789")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SMS_PROVIDER", "console")
os.environ.setdefault("TURNSTILE_SECRET_KEY", "")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("SENTRY_DSN", "")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in TEST_DATABASE_URL else {},
    poolclass=StaticPool if "sqlite" in TEST_DATABASE_URL else None,
    echo=False,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

REGISTERED_PHONE = "+15551234567"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSMSProvider:
    """Stands in for the SMS gateway and remembers every code it was asked to send."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent = []

    async def send_otp(self, phone: str, code: str) -> bool:
        self.sent.append((phone, code))
        return self.succeed

    def last_code(self, phone: str = None) -> str:
        for sent_phone, code in reversed(self.sent):
            if phone is None or sent_phone == phone:
                return code
        raise AssertionError(f"No code sent to {phone}")


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create the schema once per test session."""
    from phoneauth.db import Base
    from phoneauth import models  # noqa: F401

    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def db():
    """
    Provide a clean database session for each test.

    Everything runs inside an outer transaction that is rolled back
    after the test, so session.commit() calls never persist.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)

    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 15, 12, 0, 0))


@pytest.fixture
def policy():
    from phoneauth.core.config import OTPPolicy
    return OTPPolicy()


@pytest.fixture
def sms():
    return RecordingSMSProvider()


@pytest.fixture
def captcha():
    verifier = AsyncMock()
    verifier.verify.return_value = True
    return verifier


def make_user(db, email="owner@example.com", phone=None, full_name="Phone Owner", password="secret123"):
    from phoneauth.models import User, Profile
    from phoneauth.core.security import hash_password

    user = User(email=email, password_hash=hash_password(password), is_active=True)
    user.profile = Profile(full_name=full_name, phone_e164=phone, phone_verified_at=datetime(2026, 1, 1) if phone else None)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def registered_user(db):
    return make_user(db, phone=REGISTERED_PHONE)


def issue_challenge(db, phone, code, clock, purpose="login", ttl=timedelta(minutes=5)):
    """Insert an active challenge for a known code."""
    from phoneauth.core.otp_codes import hash_otp_code
    from phoneauth.services.auth.challenge_store import ChallengeStore

    return ChallengeStore(db).supersede_and_insert(phone, purpose, hash_otp_code(code), clock(), ttl)


def override_get_db(db_session):
    def _override():
        yield db_session
    return _override


@pytest.fixture(scope="function")
def client(setup_test_db, db, sms, captcha):
    """
    FastAPI TestClient wired to the test session and the fake SMS and
    Turnstile collaborators.
    """
    from fastapi.testclient import TestClient
    from phoneauth.main import app
    from phoneauth.db import get_db
    from phoneauth.dependencies.auth import get_sms_sender, get_captcha_verifier

    app.dependency_overrides[get_db] = override_get_db(db)
    app.dependency_overrides[get_sms_sender] = lambda: sms
    app.dependency_overrides[get_captcha_verifier] = lambda: captcha

    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def auth_header(user) -> dict:
    from phoneauth.core.security import create_access_token
    return {"Authorization": f"Bearer {create_access_token(user.public_id)}"}
