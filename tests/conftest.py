import os
from datetime import datetime, timedelta, timezone
from typing import Generator

# Override settings for tests before importing authcore modules
TEST_DATABASE_URL = "sqlite:///:memory:"
TEST_JWT_SECRET = "test-signing-key-" + "a1b2c3d4" * 8
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = TEST_JWT_SECRET
os.environ["MAINTENANCE_ENABLED"] = "false"
os.environ["COOKIE_SECURE"] = "false"
os.environ["SMTP_HOST"] = ""
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id.apps.googleusercontent.com"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from authcore.main import app
from authcore.models import Account
from authcore.models.database import Base, get_db
from authcore.services.container import get_auth_services
from authcore.services.passwords import get_password_hash

TEST_PASSWORD = "testpassword123"

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeClock:
    """Settable UTC clock shared by the services under test."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime.now(timezone.utc))


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    get_auth_services().rate_limiter.reset()
    yield
    get_auth_services().rate_limiter.reset()


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite so that threads get their own connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'auth.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_account(db: Session, email: str = "test@example.com", **overrides) -> Account:
    values = {
        "email": email,
        "display_name": "Test User",
        "password_hash": get_password_hash(TEST_PASSWORD),
        "is_email_verified": True,
        "failed_login_attempts": 0,
    }
    values.update(overrides)
    account = Account(**values)
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


@pytest.fixture
def test_account(db: Session) -> Account:
    """Create a test account."""
    return make_account(db)


@pytest.fixture
def test_account2(db: Session) -> Account:
    """Create a second test account."""
    return make_account(db, email="test2@example.com", display_name="Test User 2")


@pytest.fixture
def login_tokens(client: TestClient, test_account: Account) -> dict:
    response = client.post(
        "/api/auth/login",
        json={"email": test_account.email, "password": TEST_PASSWORD},
    )
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def auth_headers(login_tokens: dict) -> dict[str, str]:
    """Get auth headers with token."""
    return {"Authorization": f"Bearer {login_tokens['accessToken']}"}


@pytest.fixture
def account_factory():
    return make_account
