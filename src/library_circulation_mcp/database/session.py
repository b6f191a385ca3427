"""
Database session management for the Library Circulation MCP Server.

Every tool call works in its own short-lived session. Circulation operations
(issue, return, lost) commit once at the end of the unit of work, so a crash
between the loan write and the copy status write leaves nothing behind.

SQLite notes:
- In-memory databases share one connection through ``StaticPool``.
- File databases get a regular pool and a busy timeout, so concurrent writers
  queue on the database lock instead of failing immediately. The allocator
  and the atomic issue transition depend on this behaviour.
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config
from .errors import DuplicateError, StoreError
from .schema import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

SQLITE_BUSY_TIMEOUT_SECONDS = 30


class DatabaseManager:
    """
    Manages database connections and sessions for the server.

    Provides the engine, a session factory and a transactional
    ``session_scope``; also creates the schema for development and tests.
    """

    def __init__(self, database_url: str | None = None):
        if database_url is None:
            database_url = get_config().get_database_url()
            logger.info("Using database at: %s", database_url)

        self.database_url = database_url
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            if self.is_sqlite:
                in_memory = ":memory:" in self.database_url or self.database_url in (
                    "sqlite://",
                    "sqlite:///",
                )
                kwargs = {
                    "connect_args": {
                        "check_same_thread": False,
                        "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
                    },
                    "echo": False,
                }
                if in_memory:
                    kwargs["poolclass"] = StaticPool
                self._engine = create_engine(self.database_url, **kwargs)

                @event.listens_for(self._engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.close()
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_size=10,
                    max_overflow=20,
                    pool_pre_ping=True,
                    echo=False,
                )

            logger.info("Database engine created: %s", self._engine.url)

        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """Create a new database session. The caller owns closing it."""
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        ```python
        with db_manager.session_scope() as session:
            repo = CirculationRepository(session, tenant_id)
            repo.issue_book(request)
        ```
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed successfully")
        except Exception:
            logger.exception("Database error, rolling back")
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """Create the schema. Use migrations for anything beyond development."""
        engine = self.engine

        if drop_existing:
            logger.warning("Dropping all existing tables...")
            Base.metadata.drop_all(bind=engine)

        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialization complete")

    def verify_connection(self) -> bool:
        """Health check: True when a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except SQLAlchemyError:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        """Dispose of the engine on shutdown."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


_db_manager: DatabaseManager | None = None


def get_db_manager(database_url: str | None = None) -> DatabaseManager:
    """Get the global database manager instance (URL only used on first call)."""
    global _db_manager  # noqa: PLW0603 - Singleton pattern for database manager

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def reset_db_manager() -> None:
    """Dispose of and forget the global database manager."""
    global _db_manager  # noqa: PLW0603

    if _db_manager is not None:
        _db_manager.close()
    _db_manager = None


def get_session() -> Session:
    """
    Get a new database session.

    Sessions are context managers, so tool handlers use
    ``with get_session() as session:``.
    """
    return get_db_manager().create_session()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Convenience context manager over the global database manager."""
    with get_db_manager().session_scope() as session:
        yield session


def is_unique_violation(error: IntegrityError) -> bool:
    """True for unique-constraint failures (SQLite and PostgreSQL wording, or SQLSTATE 23505)."""
    if getattr(error.orig, "pgcode", None) == "23505":
        return True
    message = str(error.orig).lower()
    return "unique" in message or "duplicate" in message


def safe_commit(session: Session, operation: str) -> None:
    """
    Commit a session, rolling back on failure.

    Raises:
        DuplicateError: If a uniqueness constraint rejected the write
        StoreError: If the commit fails for any other reason
    """
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        if is_unique_violation(e):
            raise DuplicateError(f"Database operation '{operation}' failed: duplicate entry") from e
        raise StoreError(f"Database operation '{operation}' failed: {e.orig}") from e
    except SQLAlchemyError as e:
        session.rollback()
        raise StoreError(f"Database operation '{operation}' failed: {e!s}") from e


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Execute a query, translating store failures into StoreError.

    Raises:
        StoreError: If the query fails
    """
    try:
        return query_func(session)
    except SQLAlchemyError as e:
        logger.exception("Query failed")
        raise StoreError(f"{error_msg}: Database query failed") from e
