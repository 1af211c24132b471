"""Shared pytest fixtures for test suite"""
import pytest
import sys
from pathlib import Path
from typing import Generator
from unittest.mock import Mock, patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import fakeredis

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.main import app
from app.core.config import Settings, get_settings
from app.db.session import get_db
from app.models import Base
from app.models.artist import Artist, ArtistWork
from app.models.billing import BillingPrice
from app.models.entitlement import Entitlement, PlanLimit
from app.services.identity_service import AuthUser
from app.db import redis as redis_module


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

TEST_PEPPER = "test-pepper"
TEST_CLIENT_IP = "203.0.113.7"
ALLOWED_ORIGIN = "https://sunroad.io"

# Resend test email addresses - use these in ALL tests to avoid fake addresses
# See: https://resend.com/docs/dashboard/emails/send-test-emails
RESEND_TEST_DELIVERED = "delivered@resend.dev"
RESEND_TEST_BOUNCED = "bounced@resend.dev"


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def test_settings() -> Settings:
    """Settings passed to the contact pipeline"""
    return Settings(
        CONTACT_IDENTIFIER_PEPPER=TEST_PEPPER,
        RESEND_API_KEY="re_test_123",
        TURNSTILE_SECRET_KEY="turnstile_test_secret",
        PUBLIC_SITE_URL="https://sunroad.io",
    )


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)

    with patch.object(redis_module, 'get_redis_client', return_value=fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, test_settings: Settings) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database (rate limiting disabled: no REDIS_URL)"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings

    try:
        # No exporters or table creation against the configured database in tests
        with patch('app.main.initialize_otel', return_value=False):
            with patch('app.main.init_db'):
                with TestClient(app) as test_client:
                    yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def free_plan(db_session: Session) -> PlanLimit:
    limits = PlanLimit(plan_key="free", can_receive_contact=False)
    db_session.add(limits)
    db_session.commit()
    return limits


@pytest.fixture(scope="function")
def pro_plan(db_session: Session) -> PlanLimit:
    limits = PlanLimit(plan_key="pro", can_receive_contact=True)
    db_session.add(limits)
    db_session.add(BillingPrice(stripe_price_id="price_pro_monthly", plan_key="pro", is_active=True))
    db_session.commit()
    return limits


@pytest.fixture(scope="function")
def artist(db_session: Session) -> Artist:
    """An artist with a complete profile (still on the free plan)"""
    artist = Artist(
        handle="jane-doe",
        auth_user_id="11111111-1111-1111-1111-111111111111",
        display_name="Jane Doe",
        avatar_url="https://cdn.sunroad.io/avatars/jane.png",
        banner_url="https://cdn.sunroad.io/banners/jane.png",
        bio="Painter working in oil and light.",
        location_id="loc_tucson",
        categories=["painting"],
    )
    artist.works.append(ArtistWork(title="Desert Morning"))
    db_session.add(artist)
    db_session.commit()
    db_session.refresh(artist)
    return artist


@pytest.fixture(scope="function")
def pro_artist(db_session: Session, artist: Artist, free_plan, pro_plan) -> Artist:
    """The artist with a pro entitlement, so contact is enabled"""
    db_session.add(Entitlement(auth_user_id=artist.auth_user_id, plan_key="pro", source="stripe"))
    db_session.commit()
    return artist


@pytest.fixture(scope="function")
def auth_user(artist: Artist) -> AuthUser:
    return AuthUser(id=artist.auth_user_id, email=RESEND_TEST_DELIVERED)


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, auth_user: AuthUser) -> Generator[TestClient, None, None]:
    """Client whose bearer token resolves to the artist's auth user"""
    with patch('app.core.security.get_user_from_access_token', return_value=auth_user):
        client.headers.update({"Authorization": "Bearer test-access-token"})
        yield client


@pytest.fixture(scope="function")
def mock_turnstile():
    """Turnstile verification succeeds unless a test says otherwise"""
    with patch('app.services.contact_service.verify_turnstile', return_value=(True, None)) as mock_verify:
        yield mock_verify


@pytest.fixture(scope="function")
def mock_artist_email():
    """Admin identity lookup returns the artist's address"""
    with patch('app.services.contact_service.get_auth_user_email', return_value=RESEND_TEST_DELIVERED) as mock_lookup:
        yield mock_lookup


@pytest.fixture(scope="function")
def mock_email_service():
    """Mock email service (Resend) to avoid sending actual emails"""
    with patch('app.services.email_service.resend') as mock_resend:
        mock_resend.Emails.send = Mock(return_value={"id": "email_test123"})
        yield mock_resend


@pytest.fixture(scope="function")
def contact_payload() -> dict:
    return {
        "artist_handle": "jane-doe",
        "from_name": "Alex Collector",
        "from_email": "Alex@Example.com",
        "subject": "Commission inquiry",
        "message": "I love your desert series. Are you taking commissions?",
        "turnstile_token": "tok_test",
    }
