"""Database engine and session factory for the persistent failure store.

Defaults to an embedded SQLite file (data/failures.db). Any SQLAlchemy URL
works; PostgreSQL needs the `postgres` extra (psycopg).
"""
import logging
import os
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

log = logging.getLogger("facegate.database")

DEFAULT_DATABASE_URL = "sqlite:///data/failures.db"
POOL_TIMEOUT_SECONDS = 15
SQLITE_BUSY_TIMEOUT_SECONDS = 15


def resolve_database_url(raw: str | None) -> str:
    """Clean a database URL pasted into an env var.

    Strips whitespace and surrounding quotes, and rewrites the ``postgres://``
    scheme that SQLAlchemy rejects.
    """
    url = (raw or "").strip()
    if len(url) >= 2 and url[0] == url[-1] and url[0] in ('"', "'"):
        url = url[1:-1].strip()
    if not url:
        return DEFAULT_DATABASE_URL
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def _masked(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except Exception:
        return "<unparseable>"


def build_engine(url: str) -> Engine:
    """Create an engine, creating the SQLite file's directory if needed."""
    parsed = make_url(url)
    log.info("Initialising failure store engine -> %s", _masked(url))

    if parsed.get_backend_name() == "sqlite":
        database = parsed.database
        if database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
            echo=False,
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            if database and database != ":memory:":
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        return engine

    return create_engine(
        url,
        pool_size=3,
        max_overflow=5,
        pool_timeout=POOL_TIMEOUT_SECONDS,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=False,
    )


def create_tables(engine: Engine) -> None:
    """Create the failure store schema (idempotent)."""
    from facegate.infrastructure.database.models import Base

    Base.metadata.create_all(bind=engine)
    log.info("Failure store tables verified.")


def check_engine_health(engine: Engine | None) -> bool:
    """Lightweight connectivity probe for an engine."""
    if engine is None:
        return False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


class SessionFactory:
    """Callable handed to the SQL tracker.

    Usage:
        with session_factory() as session:
            ...

    Rolls back on any exception and always closes the session.
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._sessionmaker = sessionmaker(bind=engine, expire_on_commit=False)

    @property
    def engine(self) -> Engine:
        return self._engine

    def __call__(self):
        return self._managed_session()

    @contextmanager
    def _managed_session(self):
        session = self._sessionmaker()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self._engine.dispose()


def session_factory_from_env(env_var: str = "DATABASE_URL") -> SessionFactory:
    """Build engine + schema + factory from an environment variable."""
    engine = build_engine(resolve_database_url(os.environ.get(env_var)))
    create_tables(engine)
    return SessionFactory(engine)
