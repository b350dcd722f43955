"""Shared pytest fixtures for test suite"""
import pytest
import sys
import secrets
from pathlib import Path
from typing import Generator, List
from unittest.mock import patch

import fakeredis
import httpx
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from tokenguard.main import app
from tokenguard.api.deps import get_alert_dispatcher, get_http_client, get_key_vault
from tokenguard.core.config import settings
from tokenguard.db.session import get_db
from tokenguard.db import redis as redis_module
from tokenguard.models import Base
from tokenguard.models.user import User
from tokenguard.models.subscription import Subscription
from tokenguard.models.monthly_usage import MonthlyUsage
from tokenguard.services.key_vault import KeyVault
from tokenguard.services.subscription_service import current_month_key, seed_default_plan_limits


# Resend test email addresses - use these in ALL tests to avoid fake addresses
# See: https://resend.com/docs/dashboard/emails/send-test-emails
RESEND_TEST_DELIVERED = "delivered@resend.dev"

TEST_MASTER_KEY = "test-master-key-for-tokenguard"
TEST_INTERNAL_TOKEN = "internal-test-token"

# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Fresh in-memory database with the default plan limits seeded"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    seed_default_plan_limits(session)

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis (sessions, rate limits, task queue)"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def vault() -> KeyVault:
    return KeyVault(TEST_MASTER_KEY)


class UpstreamStub:
    """Scripted AI provider behind httpx.MockTransport"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.json = {"id": "chatcmpl-test", "choices": [{"message": {"content": "Hello!"}}]}
        self.text = None
        self.error = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error("upstream failure", request=request)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.json)


@pytest.fixture(scope="function")
def upstream() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture(scope="function")
def dispatched_alerts() -> list:
    """Alerts the ledger handed to its dispatcher during the test"""
    return []


@pytest.fixture(scope="function")
def client(
    db_session: Session,
    mock_redis,
    vault: KeyVault,
    upstream: UpstreamStub,
    dispatched_alerts: list
) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, mocked Redis and a stubbed upstream"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_key_vault] = lambda: vault
    app.dependency_overrides[get_http_client] = lambda: http_client
    app.dependency_overrides[get_alert_dispatcher] = lambda: dispatched_alerts.append

    try:
        # No database bootstrap, OpenTelemetry or alert worker in tests
        with patch("tokenguard.main.init_db"):
            with patch("tokenguard.main.initialize_otel", return_value=False):
                with patch("tokenguard.main.instrument_sqlalchemy"):
                    with patch.object(settings, "ALERT_WORKER_ENABLED", False):
                        with patch.object(settings, "INTERNAL_API_TOKEN", TEST_INTERNAL_TOKEN):
                            with TestClient(app) as test_client:
                                yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    """User with the default free/active subscription"""
    user = User(email=RESEND_TEST_DELIVERED, full_name="Test User")
    db_session.add(user)
    db_session.commit()
    db_session.add(Subscription(user_id=user.id, plan="free", status="active"))
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def test_user_2(db_session: Session) -> User:
    """Second user for ownership tests"""
    user = User(email="delivered+test2@resend.dev", full_name="Second User")
    db_session.add(user)
    db_session.commit()
    db_session.add(Subscription(user_id=user.id, plan="pro", status="active"))
    db_session.commit()
    db_session.refresh(user)
    return user


def bearer_for(mock_redis, user: User) -> dict:
    """Register a bearer session for the user and return request headers"""
    token = secrets.token_urlsafe(32)
    mock_redis.setex(f"session:{token}", 3600, str(user.id))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def auth_headers(mock_redis, test_user: User) -> dict:
    return bearer_for(mock_redis, test_user)


@pytest.fixture(scope="function")
def internal_headers() -> dict:
    return {"X-Internal-Token": TEST_INTERNAL_TOKEN}


def set_monthly_usage(db: Session, user_id: int, total_tokens: int, month_year: str = None) -> MonthlyUsage:
    """Seed the current month's aggregate for a user"""
    usage = MonthlyUsage(
        user_id=user_id,
        month_year=month_year or current_month_key(),
        total_tokens=total_tokens,
        total_cost_usd=0.0,
        request_count=1,
    )
    db.add(usage)
    db.commit()
    return usage


@pytest.fixture(scope="function")
def mock_email_service():
    """Mock email service (Resend) to avoid sending actual emails"""
    with patch("tokenguard.services.email_service.resend") as mock_resend:
        mock_resend.Emails.send.return_value = {"id": "email_test123"}
        with patch.object(settings, "RESEND_API_KEY", "re_test_key"):
            yield mock_resend
