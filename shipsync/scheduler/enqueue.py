"""
Typed producers of queue jobs.

Every helper validates its payload through the job's pydantic payload model
before inserting, so handlers never see a payload a producer could not build.
"""

import logging
from typing import Any

from shipsync import config
from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.models.job import (
    Job,
    JobStatus,
    JobType,
    LookupDocNoPayload,
    TrackingNumberPayload,
)

logger = logging.getLogger(__name__)


class JobQueue:
    """Enqueue helpers and queue inspection."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def _enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        delay_seconds: float = 0,
        max_attempts: int = config.DEFAULT_MAX_ATTEMPTS,
    ) -> str:
        with UnitOfWork(self.db) as uow:
            job_id = uow.jobs.enqueue(job_type, payload, delay_seconds, max_attempts)
            uow.commit()

        logger.info(
            "Enqueued %s job %s",
            job_type,
            job_id,
            extra={"json_fields": {"delay_seconds": delay_seconds, "payload": payload}},
        )
        return job_id

    def add_lookup_docno_job(self, slip_nos: list[str], order_ids: list[str]) -> str:
        """Queue a batched document number lookup."""
        payload = LookupDocNoPayload(slip_nos=slip_nos, order_ids=order_ids)
        return self._enqueue(JobType.LOOKUP_DOCNO, payload.to_payload())

    def add_tracking_number_job(
        self,
        order_id: str,
        order_code: str,
        carrier_code: str,
        delay_seconds: float = 5,
    ) -> str | None:
        """
        Queue polling the carrier for a tracking number.

        Returns:
            Job ID, or None if the order already has an open tracking_number job
        """
        with UnitOfWork(self.db) as uow:
            if uow.jobs.has_open_job(JobType.TRACKING_NUMBER, order_id):
                return None

        payload = TrackingNumberPayload(
            order_id=order_id, order_code=order_code, carrier_code=carrier_code
        )
        return self._enqueue(
            JobType.TRACKING_NUMBER,
            payload.to_payload(),
            delay_seconds,
            max_attempts=10,
        )

    def get_stats(self) -> dict[str, int]:
        """Job counts per status."""
        with UnitOfWork(self.db) as uow:
            return uow.jobs.get_stats()

    def list_jobs(
        self,
        status: JobStatus | None = None,
        job_type: JobType | None = None,
        limit: int = 100,
    ) -> list[Job]:
        with UnitOfWork(self.db) as uow:
            return uow.jobs.list_jobs(status=status, job_type=job_type, limit=limit)
