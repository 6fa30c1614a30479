"""
shipsync Database Module.

Provides database connection management and repositories for data persistence.
Uses SQLAlchemy Core with either a database URL or the Cloud SQL Python Connector.
"""

from shipsync.db.connection import DatabaseConnection
from shipsync.db.unit_of_work import UnitOfWork

__all__ = ["DatabaseConnection", "UnitOfWork"]
