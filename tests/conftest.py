"""
Shared test fixtures.

Every test gets its own SQLite file under tmp_path, its own
change feed and session factory, so no test ever touches the
real history database or sees another test's subscribers.
"""

import pytest
from fastapi.testclient import TestClient

from medinsight_history.change_feed import ChangeFeed, get_change_feed
from medinsight_history.config import get_settings
from medinsight_history.main import app
from medinsight_history.api.history import stream_session_factory
from medinsight_history.models.base import (
    build_engine,
    build_session_factory,
    get_db,
    reset_store,
)
from medinsight_history.models.schema_version import init_db


@pytest.fixture
def engine(tmp_path):
    """A freshly created ledger database."""
    engine = build_engine(f"sqlite:///{tmp_path / 'history.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def change_feed():
    return ChangeFeed()


@pytest.fixture
def session_factory(engine, change_feed):
    return build_session_factory(engine, change_feed)


@pytest.fixture
def db_session(session_factory):
    """Provide a database session for direct service testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def unavailable_session(tmp_path, change_feed):
    """A session whose database file can never be opened."""
    engine = build_engine(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'history.db'}")
    session = build_session_factory(engine, change_feed)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def client(db_session, session_factory, change_feed):
    """
    Provide a test client wired to the test database.

    The session, session factory and change feed dependencies
    are all overridden so the app never opens the real store.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[stream_session_factory] = lambda: session_factory
    app.dependency_overrides[get_change_feed] = lambda: change_feed
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def process_store(tmp_path, monkeypatch):
    """Point the process-wide store handle at a throwaway database."""
    reset_store()
    monkeypatch.setattr(
        get_settings(), "DATABASE_URL", f"sqlite:///{tmp_path / 'process.db'}"
    )
    yield tmp_path / "process.db"
    reset_store()



@pytest.fixture
def unloadable_store(monkeypatch):
    """Point the process-wide store at a URL no engine can be built for."""
    reset_store()
    monkeypatch.setattr(get_settings(), "DATABASE_URL", "nosuchdialect://history")
    yield
    reset_store()
