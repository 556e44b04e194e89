"""
Database configuration and session management.

Uses synchronous SQLAlchemy with session_scope pattern for transaction management.
Services receive a session factory explicitly; the module-level ``SessionLocal``
is the default used by the outer surfaces (API, workers).
"""

from collections.abc import Callable, Generator
from contextlib import contextmanager

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from dubsync.core.config import settings
from dubsync.core.exceptions import PersistenceError
from dubsync.core.logging import get_logger

logger = get_logger(__name__)

SessionFactory = Callable[[], Session]


# =============================================================================
# Database Engine Configuration
# =============================================================================


def get_engine_args(database_url: str | None = None) -> dict:
    """
    Get database engine arguments based on configuration.

    Args:
        database_url: URL the engine is built for (defaults to settings)

    Returns:
        dict: Engine configuration arguments
    """
    url = database_url or settings.database_url
    args = {
        "pool_pre_ping": settings.db_pool_pre_ping,
        "future": True,
        "echo": settings.debug,
    }

    # SQLite doesn't support connection pools in the same way
    if url.startswith("sqlite"):
        args["connect_args"] = {"check_same_thread": False, "timeout": 30}
        args["poolclass"] = NullPool
    else:
        args["pool_size"] = settings.db_pool_size
        args["max_overflow"] = settings.db_max_overflow
        args["pool_recycle"] = 3600

    return args


def create_db_engine(database_url: str | None = None) -> sa.Engine:
    """Create an engine for the given URL using the configured engine arguments."""
    url = database_url or settings.database_url
    return sa.create_engine(url, **get_engine_args(url))


def create_session_factory(bind: sa.Engine) -> sessionmaker[Session]:
    """Create a session factory bound to an engine."""
    return sessionmaker(
        bind=bind,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


engine = create_db_engine()

SessionLocal = create_session_factory(engine)


# =============================================================================
# Session Management
# =============================================================================


@contextmanager
def session_scope(factory: SessionFactory | None = None) -> Generator[Session, None, None]:
    """
    Provide a transactional scope for database operations.

    Commits on successful completion, rolls back on exception and always
    closes the session. Storage failures surface as ``PersistenceError``.

    Args:
        factory: Session factory to use (defaults to ``SessionLocal``)

    Yields:
        Session: SQLAlchemy database session

    Raises:
        PersistenceError: If the database rejects the transaction

    Example:
        with session_scope(session_factory) as session:
            video = session.get(Video, video_id)
            video.title = "New title"
    """
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Database transaction failed, rolling back: {e}", exc_info=True)
        raise PersistenceError(str(e)) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_if_absent(factory: SessionFactory, instance: object) -> bool:
    """
    Insert a row unless one with the same primary key already exists.

    A concurrent insert of the same key is not an error; the caller re-reads
    the winning row afterwards.

    Returns:
        bool: True if this call inserted the row
    """
    session = factory()
    try:
        session.add(instance)
        session.commit()
        return True
    except IntegrityError:
        session.rollback()
        return False
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(str(e)) from e
    finally:
        session.close()


# =============================================================================
# Database Initialization and Health Check
# =============================================================================


def init_db(bind: sa.Engine | None = None) -> None:
    """
    Create all tables and verify connectivity.

    Called at application and worker startup.
    """
    from dubsync.models import Base

    target = bind or engine
    try:
        Base.metadata.create_all(bind=target)
        with target.connect() as conn:
            conn.execute(sa.text("SELECT 1"))
        logger.info(f"Database ready: {target.url.get_backend_name()}")
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        raise PersistenceError(str(e)) from e


def check_db_health(bind: sa.Engine | None = None) -> bool:
    """
    Check if the database is accessible and healthy.

    Returns:
        bool: True if database is healthy, False otherwise
    """
    try:
        with (bind or engine).connect() as conn:
            conn.execute(sa.text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False


def close_db() -> None:
    """Close all database connections. Called at application shutdown."""
    engine.dispose()
    logger.info("Database connections closed")
