"""Shared pytest fixtures for test suite"""
import json
import os
import sys
import secrets
from decimal import Decimal
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import Mock, patch

import pytest
import fakeredis
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

from reelcoin.main import app
from reelcoin.db.session import get_db
from reelcoin.db import redis as redis_module
from reelcoin.models import Base
from reelcoin.models.account import Account
from reelcoin.services.account_service import create_account


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


class FakeSignatureVerificationError(Exception):
    """Stands in for stripe.SignatureVerificationError while stripe is mocked"""


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function", autouse=True)
def mock_redis():
    """Replace the Redis client with fakeredis for every test"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function", autouse=True)
def auto_mock_stripe():
    """Automatically mock Stripe so webhook tests never call the real SDK"""
    with patch('reelcoin.services.stripe_service.stripe') as mock_stripe_module:
        # Signature always verifies; the event is the parsed payload, as the SDK returns it
        mock_stripe_module.Webhook.construct_event = Mock(side_effect=lambda payload, sig_header, secret: json.loads(payload))
        mock_stripe_module.SignatureVerificationError = FakeSignatureVerificationError
        yield mock_stripe_module


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        with patch('reelcoin.main.init_db'):
            with TestClient(app) as test_client:
                yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def make_account(db_session: Session) -> Callable[..., Account]:
    """Factory: create an account and seed its balances directly"""

    def _make(account_id: str, username: str, content_tokens=0, view_tokens=0, transfer_code=None) -> Account:
        account = create_account(account_id, username, db_session)
        account.content_tokens = Decimal(str(content_tokens))
        account.view_tokens = Decimal(str(view_tokens))
        if transfer_code:
            account.transfer_code = transfer_code
        db_session.commit()
        db_session.refresh(account)
        return account

    return _make


@pytest.fixture(scope="function")
def account_a(make_account) -> Account:
    return make_account("user-a", "alice", content_tokens=500, transfer_code="ABC123")


@pytest.fixture(scope="function")
def account_b(make_account) -> Account:
    return make_account("user-b", "bob", content_tokens=0, transfer_code="XYZ789")


@pytest.fixture(scope="function")
def auth_headers(mock_redis) -> Callable[[str], dict]:
    """Factory: open a session for an account and return request headers"""

    def _headers(account_id: str) -> dict:
        session_id = secrets.token_urlsafe(16)
        redis_module.set_session(session_id, account_id)
        return {"Authorization": f"Bearer {session_id}"}

    return _headers


@pytest.fixture(scope="function")
def file_sessions(tmp_path) -> Generator[sessionmaker, None, None]:
    """Session factory on a file-backed SQLite database.

    Each session gets its own connection, so threads really interleave and
    the account version check decides who wins.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'reelcoin.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()
