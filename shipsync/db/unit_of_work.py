"""
Unit of Work pattern for transaction coordination.

Provides a clean way to work with multiple repositories within a single transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shipsync.db.repositories.cron_log import CronLogRepository
from shipsync.db.repositories.customer import CustomerRepository
from shipsync.db.repositories.job import JobRepository
from shipsync.db.repositories.order import OrderRepository
from shipsync.db.repositories.webhook import DeliveryLogRepository, WebhookRepository

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from shipsync.db.connection import DatabaseConnection


class UnitOfWork:
    """
    Unit of Work for managing database transactions.

    Coordinates multiple repositories within a single transaction,
    ensuring atomic operations with automatic commit/rollback.

    Usage:
        with UnitOfWork(db) as uow:
            job_id = uow.jobs.enqueue(JobType.LOOKUP_DOCNO, payload)
            uow.orders.update_fields(order_id, erp_slip_no=slip_no)
            uow.commit()  # Explicit commit

        # Auto-rollback on exception:
        with UnitOfWork(db) as uow:
            uow.jobs.mark_completed(job_id)
            raise Exception("Something went wrong")
            # Transaction is automatically rolled back
    """

    def __init__(self, db: DatabaseConnection):
        self._db = db
        self._session: Session | None = None
        self._cron_logs: CronLogRepository | None = None
        self._customers: CustomerRepository | None = None
        self._delivery_logs: DeliveryLogRepository | None = None
        self._jobs: JobRepository | None = None
        self._orders: OrderRepository | None = None
        self._webhooks: WebhookRepository | None = None

    def __enter__(self) -> UnitOfWork:
        self._session = self._db.get_session()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        self._close()
        return False  # Don't suppress exceptions

    @property
    def session(self) -> Session:
        """Get current session (raises if not in context)."""
        if self._session is None:
            raise RuntimeError("UnitOfWork must be used within a context manager")
        return self._session

    @property
    def cron_logs(self) -> CronLogRepository:
        """Producer run log repository for this unit of work."""
        if self._cron_logs is None:
            self._cron_logs = CronLogRepository(self.session)
        return self._cron_logs

    @property
    def customers(self) -> CustomerRepository:
        """Customer repository for this unit of work."""
        if self._customers is None:
            self._customers = CustomerRepository(self.session)
        return self._customers

    @property
    def delivery_logs(self) -> DeliveryLogRepository:
        """Webhook delivery log repository for this unit of work."""
        if self._delivery_logs is None:
            self._delivery_logs = DeliveryLogRepository(self.session)
        return self._delivery_logs

    @property
    def jobs(self) -> JobRepository:
        """Job repository for this unit of work."""
        if self._jobs is None:
            self._jobs = JobRepository(self.session)
        return self._jobs

    @property
    def orders(self) -> OrderRepository:
        """Order repository for this unit of work."""
        if self._orders is None:
            self._orders = OrderRepository(self.session)
        return self._orders

    @property
    def webhooks(self) -> WebhookRepository:
        """Webhook registration repository for this unit of work."""
        if self._webhooks is None:
            self._webhooks = WebhookRepository(self.session)
        return self._webhooks

    def commit(self):
        """Commit the current transaction."""
        self.session.commit()

    def rollback(self):
        """Rollback the current transaction."""
        self.session.rollback()

    def _close(self):
        """Close the session."""
        if self._session is not None:
            self._session.close()
            self._session = None
            self._cron_logs = None
            self._customers = None
            self._delivery_logs = None
            self._jobs = None
            self._orders = None
            self._webhooks = None
