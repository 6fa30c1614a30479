"""
Database connection management.

Connects either through a plain SQLAlchemy URL (local PostgreSQL, SQLite for
tests) or through the Cloud SQL Python Connector with IAM authentication.
"""

from contextlib import contextmanager
from typing import Generator

from google.cloud.sql.connector import Connector
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from shipsync import config
from shipsync.db.tables import metadata


class DatabaseConnection:
    """
    Owns one SQLAlchemy engine and its session factory.

    Each service constructs its own instance and passes it to the components
    that need the database.

    Usage:
        db = DatabaseConnection(database_url="postgresql+pg8000://...")
        db.initialize()

        with db.session() as session:
            # perform database operations
            pass

        db.close()
    """

    def __init__(
        self,
        database_url: str | None = None,
        instance_connection_name: str | None = None,
        db_name: str | None = None,
        db_user: str | None = None,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
    ):
        """
        Args:
            database_url: SQLAlchemy URL; takes precedence over Cloud SQL settings
            instance_connection_name: Cloud SQL instance (project:region:instance)
            db_name: Database name
            db_user: Database user (service account email for IAM auth)
            pool_size: Base connection pool size
            max_overflow: Additional connections allowed beyond pool_size
            pool_timeout: Seconds to wait for a connection
            pool_recycle: Recycle connections after this many seconds
        """
        self.database_url = database_url
        self.instance_connection_name = instance_connection_name
        self.db_name = db_name
        self.db_user = db_user
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_timeout = pool_timeout
        self.pool_recycle = pool_recycle

        self._engine: Engine | None = None
        self._connector: Connector | None = None
        self._session_factory: sessionmaker | None = None

    @classmethod
    def from_env(cls) -> "DatabaseConnection":
        """Build a connection from DATABASE_URL or the Cloud SQL settings."""
        return cls(
            database_url=config.DATABASE_URL,
            instance_connection_name=config.INSTANCE_CONNECTION_NAME,
            db_name=config.DB_NAME,
            db_user=config.DB_USER,
        )

    def initialize(self):
        """Create the engine and session factory."""
        if self._engine is not None:
            return

        if self.database_url:
            self._engine = self._create_url_engine(self.database_url)
        else:
            self._engine = self._create_cloud_sql_engine()

        self._session_factory = sessionmaker(bind=self._engine)

    def _create_url_engine(self, url: str) -> Engine:
        if url.startswith("sqlite"):
            # Worker threads share the engine; wait on the file lock instead of failing
            return create_engine(
                url,
                connect_args={"check_same_thread": False, "timeout": 30},
            )

        return create_engine(
            url,
            pool_size=self.pool_size,
            max_overflow=self.max_overflow,
            pool_timeout=self.pool_timeout,
            pool_recycle=self.pool_recycle,
            pool_pre_ping=True,
        )

    def _create_cloud_sql_engine(self) -> Engine:
        if not self.instance_connection_name:
            raise ValueError(
                "DATABASE_URL or INSTANCE_CONNECTION_NAME is required. "
                "INSTANCE_CONNECTION_NAME format: project:region:instance"
            )

        if not self.db_user:
            raise ValueError(
                "DB_USER environment variable is required. "
                "Should be service account email for IAM auth."
            )

        self._connector = Connector()
        connector = self._connector

        def getconn():
            return connector.connect(
                self.instance_connection_name,
                "pg8000",
                user=self.db_user,
                db=self.db_name,
                enable_iam_auth=True,
            )

        return create_engine(
            "postgresql+pg8000://",
            creator=getconn,
            pool_size=self.pool_size,
            max_overflow=self.max_overflow,
            pool_timeout=self.pool_timeout,
            pool_recycle=self.pool_recycle,
            pool_pre_ping=True,
        )

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        if self._engine is None:
            raise RuntimeError(
                "Database not initialized. Call DatabaseConnection.initialize() first."
            )
        return self._engine

    def create_all(self):
        """Create any missing tables."""
        metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Automatically commits on success and rolls back on exception.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_session(self) -> Session:
        """
        Get a new database session.

        The caller is responsible for committing/rolling back and closing the session.
        """
        if self._session_factory is None:
            raise RuntimeError(
                "Database not initialized. Call DatabaseConnection.initialize() first."
            )
        return self._session_factory()

    def is_initialized(self) -> bool:
        """Check if the engine has been created."""
        return self._engine is not None

    def close(self):
        """Dispose of the pool and close the connector."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

        if self._connector is not None:
            self._connector.close()
            self._connector = None

        self._session_factory = None
