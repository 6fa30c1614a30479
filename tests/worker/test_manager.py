"""
Tests for build_registry and WorkerManager.
"""

from datetime import timedelta
from unittest.mock import MagicMock
from uuid import UUID

from sqlalchemy import update

from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.db.repositories.base import utcnow
from shipsync.db.tables import jobs
from shipsync.integrations.carriers import CarrierRegistry
from shipsync.models.job import JobStatus, JobType
from shipsync.services import WebhookService
from shipsync.utils.notify import TelegramNotifier
from shipsync.worker.manager import WorkerManager, build_registry


def _registry(db: DatabaseConnection, **integrations):
    return build_registry(
        db, WebhookService(db), MagicMock(spec=TelegramNotifier), **integrations
    )


class TestBuildRegistry:
    """Tests for build_registry."""

    def test_webhook_delivery_always_registered(self, db: DatabaseConnection):
        """Without integrations only webhook delivery runs."""
        registry = _registry(db)

        assert [h.job_type for h in registry] == [JobType.WEBHOOK_DELIVERY]

    def test_erp_and_carrier_handlers(self, db: DatabaseConnection):
        """An ERP gateway and carrier clients enable every job type."""
        registry = _registry(
            db, carriers=CarrierRegistry({"YUNEXPRESS": MagicMock()}), erp=MagicMock()
        )

        assert len(registry) == len(JobType)
        for job_type in JobType:
            assert job_type in registry


class TestWorkerManager:
    """Tests for WorkerManager."""

    def _stuck_job(self, db: DatabaseConnection, minutes_ago: int) -> str:
        with UnitOfWork(db) as uow:
            job_id = uow.jobs.enqueue(JobType.WEBHOOK_DELIVERY, {})
            uow.jobs.claim_batch(JobType.WEBHOOK_DELIVERY, "dead-worker", 1)
            uow.commit()
        with db.session() as session:
            session.execute(
                update(jobs)
                .where(jobs.c.id == UUID(job_id))
                .values(locked_at=utcnow() - timedelta(minutes=minutes_ago))
            )
        return job_id

    def test_one_pool_per_handler(self, db: DatabaseConnection):
        """Each registered handler gets its own pool."""
        manager = WorkerManager(db, _registry(db, erp=MagicMock()), worker_id="w1")

        assert sorted(pool.job_type for pool in manager.pools) == sorted(
            [
                JobType.WEBHOOK_DELIVERY,
                JobType.UPDATE_TRACKING_ECOUNT,
                JobType.UPDATE_STATUS_ECOUNT,
                JobType.LOOKUP_DOCNO,
            ]
        )
        assert all(pool.worker_id.startswith("w1:") for pool in manager.pools)

    def test_reclaim_stuck_jobs(self, db: DatabaseConnection):
        """Jobs held past the timeout go back to pending without an attempt."""
        stuck = self._stuck_job(db, minutes_ago=45)
        fresh = self._stuck_job(db, minutes_ago=5)
        manager = WorkerManager(db, _registry(db), stuck_timeout_minutes=30)

        assert manager.reclaim_stuck_jobs() == 1

        with UnitOfWork(db) as uow:
            reclaimed = uow.jobs.get_by_id(stuck)
            untouched = uow.jobs.get_by_id(fresh)
        assert reclaimed.status == JobStatus.PENDING
        assert reclaimed.attempts == 0
        assert reclaimed.locked_by is None
        assert untouched.status == JobStatus.PROCESSING

    def test_start_and_stop(self, db: DatabaseConnection):
        """Pools and the sweep start and stop together."""
        manager = WorkerManager(db, _registry(db), sweep_interval_seconds=0.05)

        manager.start()
        try:
            assert all(pool.running for pool in manager.pools)
        finally:
            manager.stop()

        assert not any(pool.running for pool in manager.pools)
