"""
PostgreSQL database connection management.
"""

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from contextlib import contextmanager
from typing import Generator, Optional
import logging

from tracker_sync.core.config import get_settings
from tracker_sync.models.unified_models import Base

logger = logging.getLogger(__name__)


class PostgreSQLDatabase:
    """PostgreSQL connection manager."""

    def __init__(self, connection_string: Optional[str] = None):
        self.engine = None
        self.SessionLocal = None
        self._initialize_engine(connection_string)

    def _initialize_engine(self, connection_string: Optional[str]):
        """Initializes the SQLAlchemy engine and session factory."""
        settings = get_settings()
        url = connection_string or settings.postgres_connection_string

        try:
            if url.startswith("sqlite"):
                # Local development and tests only
                self.engine = create_engine(
                    url,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                    echo=False
                )
            else:
                self.engine = create_engine(
                    url,
                    poolclass=QueuePool,
                    pool_size=settings.DB_POOL_SIZE,
                    max_overflow=settings.DB_MAX_OVERFLOW,
                    pool_timeout=settings.DB_POOL_TIMEOUT,
                    pool_recycle=settings.DB_POOL_RECYCLE,
                    pool_pre_ping=True,
                    echo=False  # Disable SQLAlchemy logging completely
                )

            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine
            )
            logger.info(f"Database connection initialized ({self.engine.dialect.name})")

        except Exception as e:
            logger.error(f"Failed to initialize database connection: {e}")
            raise

    def get_session(self) -> Session:
        """Returns a new database session."""
        if not self.SessionLocal:
            raise RuntimeError("Database not initialized")
        return self.SessionLocal()

    @contextmanager
    def get_session_context(self) -> Generator[Session, None, None]:
        """Context manager for database session (commit on success, rollback on error)."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def is_connection_alive(self) -> bool:
        """Checks if the connection is alive."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                return True
        except Exception as e:
            logger.warning(f"Database check failed: {e}")
            return False

    def create_tables(self):
        """Creates all tables in the database."""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create tables: {e}")
            raise

    def close_connections(self):
        """Closes all connections."""
        if self.engine:
            self.engine.dispose()
        logger.info("Database connections closed")


# Global database instance (lazy initialization)
_database = None


def get_database() -> PostgreSQLDatabase:
    """Returns the database instance (lazy initialization)."""
    global _database
    if _database is None:
        _database = PostgreSQLDatabase()
    return _database


def set_database(database: Optional[PostgreSQLDatabase]) -> None:
    """Replaces the global database instance (used by tests and workers)."""
    global _database
    _database = database


def get_db_session() -> Generator[Session, None, None]:
    """Dependency to get database session in FastAPI."""
    database = get_database()
    with database.get_session_context() as session:
        yield session
