"""
Database bootstrap for the revision engine.

Creates the engine and session factory, creates the revision tables and
makes SQLite honour BEGIN/SAVEPOINT so nested transactions roll back
correctly.

SQLite databases run in WAL mode so that a session holding an open read
transaction does not block a manager-owned write. A session that has read
and then wants to write after such a write must end its transaction first
(``commit()`` or ``rollback()``); SQLite refuses to upgrade a stale read
snapshot.
"""

from contextlib import contextmanager
from typing import Iterator

from loguru import logger
from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from revisionable.config import DatabaseConfig
from revisionable.exceptions import StorageError
from revisionable.storage.models import RevisionBase


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into ``StorageError``."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Failed to {action}: {e}")
        raise StorageError(f"Could not {action}: {e}") from e


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy emit BEGIN itself instead of the pysqlite driver."""

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        # Readers don't block writers; in-memory databases ignore this
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


class RevisionDatabase:
    """
    Engine and session factory shared by live entities and revisions.

    Example:
        >>> db = RevisionDatabase("sqlite:///app.db")
        >>> db.create_tables(Base.metadata)
        >>> with db.session() as session:
        ...     post = session.get(Post, 1)
    """

    def __init__(
        self,
        database_url: str = "sqlite:///revisions.db",
        echo: bool = False,
    ):
        """
        Initialize database connection.

        Args:
            database_url: SQLAlchemy database URL
            echo: Whether to echo SQL statements (for debugging)
        """
        self.database_url = database_url
        self.engine = create_engine(database_url, echo=echo)
        if self.engine.dialect.name == "sqlite":
            _enable_sqlite_savepoints(self.engine)

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        # Create revision tables if they don't exist
        RevisionBase.metadata.create_all(self.engine)

        logger.info(f"Initialized RevisionDatabase: {database_url}")

    @classmethod
    def from_config(cls, database_config: DatabaseConfig) -> "RevisionDatabase":
        """Create a database from a ``DatabaseConfig``."""
        return cls(database_config.url, echo=database_config.echo)

    def create_tables(self, *metadata: MetaData) -> None:
        """Create the application's entity tables."""
        for md in metadata:
            md.create_all(self.engine)

    def session(self) -> Session:
        """Open a new session."""
        return self.SessionLocal()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Session scope that commits on success and rolls back on error.

        Database failures, the final commit included, surface as
        ``StorageError``.
        """
        with self.SessionLocal() as session:
            with storage_errors("complete transaction"):
                with session.begin():
                    yield session

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self.engine.dispose()
        logger.info("Closed RevisionDatabase")
