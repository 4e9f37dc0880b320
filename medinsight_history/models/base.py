"""
Database engine, session management, and base model.

The ledger is an embedded database with a single process-wide
handle. The engine and session factory are created lazily on
first use and kept for the life of the process; reset_store()
exists so tests can point the handle at a throwaway database.
"""

import logging
import threading
import weakref
from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from medinsight_history.change_feed import attach_change_feed, get_change_feed
from medinsight_history.config import get_settings
from medinsight_history.errors import StorageUnavailable

logger = logging.getLogger(__name__)


# --- Base Model Class ---
class Base(DeclarativeBase):
    pass


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections are shared with FastAPI's threadpool,
    so the same-thread check is disabled for them.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
    )


def build_session_factory(engine: Engine, feed=None) -> sessionmaker:
    """
    Create a session factory bound to `engine` and wired to a change feed.

    expire_on_commit=False keeps loaded rows readable after the
    service commits, which is when live queries take their snapshot.
    """
    factory = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    attach_change_feed(factory, feed if feed is not None else get_change_feed())
    return factory


@lru_cache()
def get_engine() -> Engine:
    """
    Return the process-wide engine, creating it on first use.

    A URL naming an unknown dialect or a driver that is not
    installed raises StorageUnavailable. Failures are not cached,
    so the next call tries again.
    """
    url = get_settings().DATABASE_URL
    try:
        return build_engine(url)
    except (SQLAlchemyError, ImportError) as e:
        logger.error("Could not create history store engine for %s: %s", url, e)
        raise StorageUnavailable(f"History store unavailable: {e}") from e


@lru_cache()
def get_session_factory() -> sessionmaker:
    """
    Return the process-wide session factory, creating it on first use.

    Raises StorageUnavailable when the engine cannot be created.
    """
    return build_session_factory(get_engine())


# Engines whose schema has already been created in this process
_opened_engines: "weakref.WeakSet[Engine]" = weakref.WeakSet()
_open_lock = threading.Lock()


def open_store(engine: Engine | None = None) -> None:
    """
    Create the ledger tables and stamp the schema version.

    Idempotent: the work happens once per engine per process.
    Raises StorageUnavailable if the database cannot be opened.
    """
    from medinsight_history.models.schema_version import init_db

    if engine is None:
        engine = get_engine()
    with _open_lock:
        if engine in _opened_engines:
            return
        try:
            init_db(engine)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Could not open history store at %s: %s", engine.url, e)
            raise StorageUnavailable(f"History store unavailable: {e}") from e
        _opened_engines.add(engine)
        logger.info("History store opened at %s", engine.url)


def reset_store() -> None:
    """Dispose the process-wide handle so the next use builds a fresh one."""
    if get_engine.cache_info().currsize:
        engine = get_engine()
        _opened_engines.discard(engine)
        engine.dispose()
    get_session_factory.cache_clear()
    get_engine.cache_clear()


# --- Dependency for FastAPI ---
def get_db():
    """
    Provide a database session for a single request.

    The store is opened on first use. If it cannot be opened the
    session is still handed out: reads through it degrade to an
    empty history and writes raise StorageUnavailable, which is
    how the endpoints report an unavailable store. When not even
    an engine can be built the session is unbound, so every
    statement fails with a SQLAlchemyError the services translate.

    The try/finally pattern guarantees the session is closed
    even if the endpoint raises.
    """
    try:
        open_store()
    except StorageUnavailable:
        pass
    try:
        factory = get_session_factory()
    except StorageUnavailable:
        factory = sessionmaker()
    db = factory()
    try:
        yield db
    finally:
        db.close()
