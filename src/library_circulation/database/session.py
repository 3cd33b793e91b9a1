"""
Database session management for the library circulation server.

This module provides connection management and session handling for SQLAlchemy.
Every loan-engine operation runs inside one short-lived ``session_scope()``,
which is the unit of atomicity: either all of its writes commit or none do.

SQLite specifics:
- File databases use a normal connection pool and open every transaction with
  ``BEGIN IMMEDIATE`` so concurrent writers serialize on the database lock
  instead of failing late with "database is locked" at commit.
- In-memory databases share one connection through ``StaticPool``; that is
  only suitable for single-threaded tests.
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

from ..errors import DuplicateError, LibraryError, StorageError
from .schema import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseManager:
    """
    Owns the engine and session factory for one database.

    There is no module-level instance: the entry point opens a manager and
    passes it to the loan engine, the HTTP app and the tool bridge.
    """

    def __init__(self, database_url: str, busy_timeout: float = 30.0):
        """
        Initialize the database manager.

        Args:
            database_url: SQLAlchemy database URL
            busy_timeout: Seconds a SQLite writer waits for the lock
        """
        self.database_url = database_url
        self.busy_timeout = busy_timeout
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @classmethod
    def from_config(cls, config) -> "DatabaseManager":
        return cls(config.get_database_url(), busy_timeout=config.sqlite_busy_timeout)

    @property
    def is_memory(self) -> bool:
        return self.database_url in ("sqlite://", "sqlite:///:memory:")

    def open(self) -> "DatabaseManager":
        """Create the engine. Safe to call more than once."""
        if self._engine is not None:
            return self

        if self.database_url.startswith("sqlite"):
            if self.is_memory:
                self._engine = create_engine(
                    self.database_url,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                    echo=False,
                )
            else:
                self._engine = create_engine(
                    self.database_url,
                    connect_args={
                        "check_same_thread": False,
                        "timeout": self.busy_timeout,
                    },
                    echo=False,
                )
            self._install_sqlite_hooks(self._engine)
        else:
            self._engine = create_engine(
                self.database_url,
                pool_size=10,
                max_overflow=20,
                pool_pre_ping=True,
                echo=False,
            )

        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            # Keep loaded rows usable after the scope commits
            expire_on_commit=False,
        )
        logger.info("Database engine created: %s", self._engine.url)
        return self

    @staticmethod
    def _install_sqlite_hooks(engine: Engine) -> None:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
            # Let SQLAlchemy's "begin" event own transaction start
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def do_begin(conn):
            if conn.get_execution_options().get("read_only"):
                conn.exec_driver_sql("BEGIN")
            else:
                conn.exec_driver_sql("BEGIN IMMEDIATE")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("DatabaseManager is not open; call open() first")
        return self._engine

    def create_session(self) -> Session:
        """
        Create a new database session.

        Prefer ``session_scope()``; a bare session must be closed by the caller.
        """
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager is not open; call open() first")
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        ```python
        with db.session_scope() as session:
            loan = session.get(Loan, loan_id)
        # committed on success, rolled back on any exception
        ```

        Business-rule errors (``LibraryError``) roll back quietly; anything
        else is logged with its traceback before being re-raised.
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed successfully")
        except LibraryError:
            session.rollback()
            raise
        except Exception:
            logger.exception("Database error, rolling back")
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def read_scope(self) -> Generator[Session, None, None]:
        """
        Session for listings and reports.

        Opens a deferred transaction so readers do not queue behind writers
        for the SQLite write lock. Nothing is ever committed.
        """
        session = self.create_session()
        try:
            session.connection(execution_options={"read_only": True})
            yield session
        finally:
            session.rollback()
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Create the schema.

        Args:
            drop_existing: If True, drop all tables before creating
        """
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
        """Dispose of the engine. Called when the server shuts down."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None

    def __enter__(self) -> "DatabaseManager":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()


def safe_flush(session: Session, operation: str) -> None:
    """
    Send pending changes to the database without committing.

    Repositories flush; the enclosing ``session_scope()`` decides whether the
    whole unit commits. Unique-constraint failures become ``DuplicateError``
    and other driver failures ``StorageError``.

    Args:
        session: The database session
        operation: Description of the operation (for error messages)
    """
    try:
        session.flush()
    except IntegrityError as e:
        raise DuplicateError(f"Database operation '{operation}' failed: {e.orig!s}") from e
    except SQLAlchemyError as e:
        raise StorageError(f"Database operation '{operation}' failed: {e!s}") from e


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Execute a query, converting driver failures into ``StorageError``.

    Args:
        session: The database session
        query_func: Function that performs the query
        error_msg: Error message prefix

    Returns:
        Query result
    """
    try:
        return query_func(session)
    except SQLAlchemyError as e:
        logger.exception("Query failed")
        raise StorageError(f"{error_msg}: Database query failed") from e
