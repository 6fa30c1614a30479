"""
Tests for the JobQueue enqueue helpers.
"""

from datetime import timedelta

import pytest

from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.db.repositories.base import utcnow
from shipsync.models.job import JobStatus, JobType
from shipsync.scheduler import JobQueue


@pytest.fixture
def queue(db: DatabaseConnection) -> JobQueue:
    return JobQueue(db)


def _get(db: DatabaseConnection, job_id: str):
    with UnitOfWork(db) as uow:
        return uow.jobs.get_by_id(job_id)


class TestEnqueueHelpers:
    """Tests for the typed enqueue helpers."""

    def test_lookup_docno_job_runs_immediately(
        self, db: DatabaseConnection, queue: JobQueue
    ):
        """Document number lookups are due right away."""
        job_id = queue.add_lookup_docno_job(["S1", "S2"], ["o1", "o2"])

        job = _get(db, job_id)
        assert job.payload == {"slipNos": ["S1", "S2"], "orderIds": ["o1", "o2"]}
        assert job.scheduled_at <= utcnow()


class TestTrackingNumberJob:
    """Tests for add_tracking_number_job."""

    def test_job_is_delayed(self, db: DatabaseConnection, queue: JobQueue):
        """Polling starts a few seconds after the order is imported."""
        job_id = queue.add_tracking_number_job("o1", "CO-1", "yunexpress")

        assert _get(db, job_id).scheduled_at > utcnow() + timedelta(seconds=3)

    def test_open_job_is_not_duplicated(self, queue: JobQueue):
        """A second request while one is pending returns None."""
        first = queue.add_tracking_number_job("o1", "CO-1", "yunexpress")

        assert first is not None
        assert queue.add_tracking_number_job("o1", "CO-1", "yunexpress") is None
        assert queue.add_tracking_number_job("o2", "CO-2", "yunexpress") is not None

    def test_finished_job_allows_new_one(self, db: DatabaseConnection, queue: JobQueue):
        """Once the previous job is done a new one may be queued."""
        first = queue.add_tracking_number_job("o1", "CO-1", "yunexpress", delay_seconds=0)
        with UnitOfWork(db) as uow:
            uow.jobs.claim_batch(JobType.TRACKING_NUMBER, "w1", 1)
            uow.jobs.mark_terminally_failed(first, "gave up")
            uow.commit()

        second = queue.add_tracking_number_job("o1", "CO-1", "yunexpress")

        assert second is not None
        assert _get(db, second).max_attempts == 10

    def test_stats_and_listing(self, queue: JobQueue):
        """Queued jobs show up in stats and listings."""
        queue.add_tracking_number_job("o1", "CO-1", "yunexpress")

        assert queue.get_stats()[JobStatus.PENDING.value] == 1
        [job] = queue.list_jobs(job_type=JobType.TRACKING_NUMBER)
        assert job.payload["carrierCode"] == "yunexpress"
