# ============================================================================
# FILE: tests/conftest.py
# Shared fixtures: a throwaway SQLite store per test, seeded users and keys,
# and an API client wired to the same store.
# ============================================================================

import pytest
from fastapi.testclient import TestClient

from keyledger.core.auth import hash_password, issue_token
from keyledger.core.db import build_engine, build_session_factory, init_db
from keyledger.core.settings import Settings
from keyledger.main import create_app
from keyledger.repositories.key_repo import KeyRepository
from keyledger.repositories.user_repo import UserRepository
from keyledger.services.ledger_service import AssignmentLedger

TEST_PASSWORD = "correct horse battery staple"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'keyledger-test.sqlite'}",
        SECRET_KEY="test-secret",
        TOKEN_TTL_SECONDS=3600,
        TOKENS={"service-token": 1},
        LOG_LEVEL="DEBUG",
        DB_TIMEOUT_SECONDS=30,
    )


@pytest.fixture
def engine(settings):
    """File-backed so that concurrent sessions see each other's commits."""
    engine = build_engine(settings.DATABASE_URL, settings.DB_TIMEOUT_SECONDS)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def admin(db_session):
    """The acting user (id 1, matching the static service token)."""
    return UserRepository(db_session).create_user(
        "admin@example.com", hash_password(TEST_PASSWORD)
    )


@pytest.fixture
def alice(db_session, admin):
    return UserRepository(db_session).create_user(
        "alice@example.com", hash_password(TEST_PASSWORD)
    )


@pytest.fixture
def bob(db_session, admin):
    return UserRepository(db_session).create_user(
        "bob@example.com", hash_password(TEST_PASSWORD)
    )


@pytest.fixture
def key(db_session):
    return KeyRepository(db_session).create_key("K-100")


@pytest.fixture
def ledger(db_session):
    return AssignmentLedger(db_session)


@pytest.fixture
def client(settings, session_factory):
    app = create_app(settings=settings, session_factory=session_factory)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(settings, admin):
    return {"Authorization": f"Bearer {issue_token(admin.id, settings)}"}
