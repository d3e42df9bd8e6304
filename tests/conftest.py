"""
Global test configuration and fixtures for sessiondb

Each test gets its own temporary SQLite database, a controllable clock and a
SessionStore wired to both. API tests override the store dependency so that
the FastAPI app never touches the configured database.
"""

import os
import tempfile
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from sessiondb.api.sessions import get_session_store
from sessiondb.core.config import Settings
from sessiondb.core.limiter import limiter
from sessiondb.core.utils.session_store import SessionStore
from sessiondb.db.base import Base
from sessiondb.db.models import SessionLock, SessionRecord  # noqa: F401
from sessiondb.main import app


class FakeClock:
    """Settable clock returning naive UTC datetimes"""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

    def set(self, moment: datetime) -> None:
        self.now = moment


# ============================================================================
# Settings and Clock Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def test_settings():
    """Settings with short lock waits so timeouts stay fast"""
    return Settings(
        DATABASE_URL="sqlite:///./test_sessions.db",
        SESSION_LOCK_WAIT_SECONDS=5,
        SESSION_LOCK_TIMEOUT_POLICY="fail",
        SESSION_LOCK_BACKEND="auto",
        SESSION_TRACK_IP=False,
        SESSION_TRACK_USER_AGENT=False,
        SESSION_CODEC="json",
    )


@pytest.fixture(scope="function")
def clock():
    return FakeClock()


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def test_engine():
    """Create a file-backed SQLite database for each test function"""
    db_fd, db_path = tempfile.mkstemp(suffix='.db')
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
        hide_parameters=True,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    engine.dispose()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture(scope="function")
def store_factory(test_engine, test_settings, clock):
    """Build stores on the test database with per-test setting overrides"""
    def _make(**overrides) -> SessionStore:
        settings = test_settings.model_copy(update=overrides)
        return SessionStore(engine=test_engine, settings=settings, clock=clock)
    return _make


@pytest.fixture(scope="function")
def store(store_factory):
    return store_factory()


@pytest.fixture(scope="function")
def unavailable_store(test_settings):
    """Store pointed at a database file that can never be opened"""
    engine = create_engine("sqlite:////nonexistent-sessiondb-dir/sessions.db")
    yield SessionStore(engine=engine, settings=test_settings)
    engine.dispose()


# ============================================================================
# Application Client Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_limiter():
    """Clear rate limit counters so tests do not affect each other"""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture(scope="function")
def client(store):
    """FastAPI test client backed by the per-test store"""
    app.dependency_overrides[get_session_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================================================
# Test Markers and Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "critical: mark test as critical path functionality"
    )
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "concurrency: mark test as exercising real threads"
    )
    config.addinivalue_line(
        "markers", "security: mark test as a data protection check"
    )
