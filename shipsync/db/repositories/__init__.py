"""
Repository implementations for the shipsync database.

Repositories provide a clean interface for database CRUD operations,
encapsulating SQLAlchemy queries and Pydantic model conversions.
"""

from shipsync.db.repositories.cron_log import CronLogRepository
from shipsync.db.repositories.customer import CustomerRepository
from shipsync.db.repositories.job import JobRepository
from shipsync.db.repositories.order import OrderRepository
from shipsync.db.repositories.webhook import DeliveryLogRepository, WebhookRepository

__all__ = [
    "CronLogRepository",
    "CustomerRepository",
    "DeliveryLogRepository",
    "JobRepository",
    "OrderRepository",
    "WebhookRepository",
]
