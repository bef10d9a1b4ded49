"""
Database connection and session management.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from chatrelay.core.config import get_settings
from chatrelay.core.logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()

# Engine and session factory (initialized lazily)
_engine = None
_SessionLocal = None


def _ensure_sqlite_directory(database_url: str) -> None:
    db_path = database_url.replace("sqlite:///", "", 1)
    if db_path.startswith(":memory:") or not db_path:
        return
    db_dir = Path(db_path).parent
    if not db_dir.exists():
        db_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created database directory: {db_dir}")


def get_engine():
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        is_sqlite = settings.database_url.startswith("sqlite")

        connect_args = {}
        if is_sqlite:
            # Sessions are used from the threadpool and from the event loop
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = settings.database_timeout
            _ensure_sqlite_directory(settings.database_url)

        _engine = create_engine(
            settings.database_url,
            connect_args=connect_args,
            echo=settings.debug,
            pool_pre_ping=True,
        )

        if is_sqlite:
            @event.listens_for(_engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.close()

        logger.info("Database engine created", extra={"extra_data": {"database_url": settings.database_url}})

    return _engine


def get_session_factory():
    """Get or create the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=get_engine()
        )
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """Dependency to get database session."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Session scope for code running outside a request (gateway, broadcaster)."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Initialize database tables."""
    from chatrelay.models import conversation, message, read_cursor, user  # noqa: F401 - register models

    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables created")


def reset_engine() -> None:
    """Dispose the engine so the next use re-reads settings."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def check_db_connection() -> bool:
    """Check if database is reachable."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
