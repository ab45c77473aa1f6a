"""Pytest configuration and fixtures for Polychat tests.

Test isolation strategy:
- Every test gets its own SQLite database file built from Base.metadata
- WAL journaling lets stream followers read while a producer writes
- Auth tests use authenticated clients with RS256 tokens minted by helpers
- Gateway calls go to FakeLLMRouter; adapter tests mock HTTP with respx
"""

import os
import sys
from collections.abc import Generator
from pathlib import Path

# Settings are read at import time by some modules; set test values first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTH_JWKS_URL", "https://auth.test/.well-known/jwks.json")
os.environ.setdefault("AUTH_ISSUER", "test-issuer")
os.environ.setdefault("AUTH_AUDIENCES", "test-audience")
os.environ.setdefault("POLYCHAT_ENV", "test")
os.environ.setdefault("LOG_JSON", "false")

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from polychat.app import create_app
from polychat.config import clear_settings_cache
from polychat.db.engine import create_db_engine
from polychat.db.models import Base
from polychat.db.session import create_session_factory
from tests.helpers import auth_headers
from tests.support.fake_llm import FakeLLMRouter
from tests.support.test_verifier import MockJwtVerifier


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Drop cached settings so monkeypatched env vars take effect."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """A fresh file-backed SQLite database per test.

    A file (not :memory:) so producer threads and request sessions share it.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'polychat.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """A session for arranging and asserting. Factories commit what they create.

    Call db_session.expire_all() before asserting on rows another session wrote.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def fake_llm() -> FakeLLMRouter:
    return FakeLLMRouter()


@pytest.fixture
def test_verifier() -> MockJwtVerifier:
    """Provide a test token verifier."""
    return MockJwtVerifier()


@pytest.fixture
def app(test_verifier, fake_llm, session_factory):
    """Application wired to the per-test database and the fake gateway."""
    return create_app(
        token_verifier=test_verifier,
        llm_router=fake_llm,
        session_factory=session_factory,
    )


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Test client without credentials. The lifespan runs for the whole test."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def viewer_id() -> str:
    return "user_alice"


@pytest.fixture
def other_viewer_id() -> str:
    return "user_bob"


@pytest.fixture
def auth_client(client: TestClient, viewer_id: str) -> TestClient:
    """The same test client with a valid bearer token for `viewer_id`."""
    client.headers.update(auth_headers(viewer_id))
    return client
