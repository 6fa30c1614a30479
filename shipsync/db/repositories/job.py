"""
Job repository for database operations.

The jobs table is the queue: producers insert rows, workers claim them with a
compare-and-set update and write back the outcome.
"""

from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Table, delete, func, select, update

from shipsync import config
from shipsync.db.repositories.base import BaseRepository, as_utc, to_uuid, utcnow
from shipsync.db.tables import jobs
from shipsync.models.job import TERMINAL_JOB_STATUSES, Job, JobStatus, JobType


class JobRepository(BaseRepository[Job]):
    """Repository for Job operations with claim and retry management."""

    @property
    def table(self) -> Table:
        return jobs

    def _row_to_model(self, row: Any) -> Job:
        """Convert database row to Job model."""
        return Job(
            id=str(row.id),
            job_type=JobType(row.job_type),
            payload=row.payload or {},
            result=row.result,
            status=JobStatus(row.status),
            attempts=row.attempts or 0,
            max_attempts=row.max_attempts,
            last_error=row.last_error,
            locked_at=as_utc(row.locked_at),
            locked_by=row.locked_by,
            scheduled_at=as_utc(row.scheduled_at),
            completed_at=as_utc(row.completed_at),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _model_to_dict(self, model: Job) -> dict:
        """Convert Job model to database dict."""
        now = utcnow()
        return {
            "id": UUID(model.id) if model.id else uuid4(),
            "job_type": model.job_type.value,
            "payload": model.payload,
            "result": model.result,
            "status": model.status.value,
            "attempts": model.attempts,
            "max_attempts": model.max_attempts,
            "last_error": model.last_error,
            "locked_at": model.locked_at,
            "locked_by": model.locked_by,
            "scheduled_at": model.scheduled_at,
            "completed_at": model.completed_at,
            "created_at": now,
            "updated_at": now,
        }

    def enqueue(
        self,
        job_type: JobType | str,
        payload: dict[str, Any],
        delay_seconds: float = 0,
        max_attempts: int = config.DEFAULT_MAX_ATTEMPTS,
    ) -> str:
        """
        Insert a pending job.

        Args:
            job_type: Handler selector
            payload: Handler input
            delay_seconds: Seconds before the job becomes claimable
            max_attempts: Failed executions allowed before terminal failure

        Returns:
            ID of the new job
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        job = Job(
            id=str(uuid4()),
            job_type=JobType(job_type),
            payload=payload,
            max_attempts=max_attempts,
            scheduled_at=utcnow() + timedelta(seconds=max(delay_seconds, 0)),
        )
        return self.create(job).id

    def claim_batch(self, job_type: JobType | str, worker_id: str, limit: int) -> list[Job]:
        """
        Claim up to ``limit`` due jobs of one type, oldest first.

        Each candidate is taken with a conditional update that only succeeds
        while the row is still pending, so two workers can never both win the
        same job. Candidates lost to a concurrent claimant are skipped.

        Args:
            job_type: Job type to claim
            worker_id: Identifier written to locked_by
            limit: Maximum number of jobs to claim

        Returns:
            Claimed jobs (status processing)
        """
        now = utcnow()
        candidates = (
            select(self.table.c.id)
            .where(
                self.table.c.job_type == JobType(job_type).value,
                self.table.c.status == JobStatus.PENDING.value,
                self.table.c.scheduled_at <= now,
            )
            .order_by(self.table.c.scheduled_at.asc(), self.table.c.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        candidate_ids = [row.id for row in self.session.execute(candidates).fetchall()]

        claimed_ids = []
        for job_id in candidate_ids:
            stmt = (
                update(self.table)
                .where(
                    self.table.c.id == job_id,
                    self.table.c.status == JobStatus.PENDING.value,
                )
                .values(
                    status=JobStatus.PROCESSING.value,
                    locked_at=now,
                    locked_by=worker_id,
                    updated_at=now,
                )
            )
            if self.session.execute(stmt).rowcount == 1:
                claimed_ids.append(job_id)

        if not claimed_ids:
            return []

        stmt = (
            select(self.table)
            .where(self.table.c.id.in_(claimed_ids))
            .order_by(self.table.c.scheduled_at.asc(), self.table.c.created_at.asc())
        )
        return [self._row_to_model(row) for row in self.session.execute(stmt).fetchall()]

    def claim_next(self, job_type: JobType | str, worker_id: str) -> Job | None:
        """
        Claim the oldest due job of one type.

        Returns:
            The claimed job, or None if nothing is due
        """
        claimed = self.claim_batch(job_type, worker_id, limit=1)
        return claimed[0] if claimed else None

    def _processing_update(self, job_id: UUID | str, worker_id: str | None):
        """UPDATE restricted to a job still held in processing (by worker_id if given)."""
        stmt = update(self.table).where(
            self.table.c.id == to_uuid(job_id),
            self.table.c.status == JobStatus.PROCESSING.value,
        )
        if worker_id is not None:
            stmt = stmt.where(self.table.c.locked_by == worker_id)
        return stmt

    def mark_completed(
        self,
        job_id: UUID | str,
        result: dict[str, Any] | None = None,
        worker_id: str | None = None,
    ) -> bool:
        """
        Mark a processing job as completed.

        Args:
            job_id: Job ID
            result: Optional handler result to store
            worker_id: Only update if this worker still holds the claim

        Returns:
            True if job was updated
        """
        now = utcnow()
        stmt = self._processing_update(job_id, worker_id).values(
            status=JobStatus.COMPLETED.value,
            result=result,
            locked_at=None,
            locked_by=None,
            completed_at=now,
            updated_at=now,
        )
        return self.session.execute(stmt).rowcount > 0

    def mark_failed(
        self,
        job_id: UUID | str,
        error: str,
        backoff_seconds: float,
        worker_id: str | None = None,
    ) -> bool:
        """
        Record a failed execution and put the job back in the queue.

        Args:
            job_id: Job ID
            error: Error description
            backoff_seconds: Delay before the job is claimable again
            worker_id: Only update if this worker still holds the claim

        Returns:
            True if job was updated
        """
        now = utcnow()
        stmt = self._processing_update(job_id, worker_id).values(
            status=JobStatus.PENDING.value,
            attempts=self.table.c.attempts + 1,
            last_error=error,
            scheduled_at=now + timedelta(seconds=max(backoff_seconds, 0)),
            locked_at=None,
            locked_by=None,
            updated_at=now,
        )
        return self.session.execute(stmt).rowcount > 0

    def mark_terminally_failed(
        self, job_id: UUID | str, error: str, worker_id: str | None = None
    ) -> bool:
        """
        Record the final failed execution and move the job to failed.

        Args:
            job_id: Job ID
            error: Error description
            worker_id: Only update if this worker still holds the claim

        Returns:
            True if job was updated
        """
        now = utcnow()
        stmt = self._processing_update(job_id, worker_id).values(
            status=JobStatus.FAILED.value,
            attempts=self.table.c.attempts + 1,
            last_error=error,
            locked_at=None,
            locked_by=None,
            completed_at=now,
            updated_at=now,
        )
        return self.session.execute(stmt).rowcount > 0

    def reclaim_stuck(
        self, older_than_minutes: float = config.STUCK_JOB_TIMEOUT_MINUTES
    ) -> int:
        """
        Return jobs stuck in processing to pending.

        The reclaim does not count as an attempt.

        Args:
            older_than_minutes: Claim age after which a job counts as stuck

        Returns:
            Number of jobs reclaimed
        """
        now = utcnow()
        cutoff = now - timedelta(minutes=older_than_minutes)
        stmt = (
            update(self.table)
            .where(
                self.table.c.status == JobStatus.PROCESSING.value,
                self.table.c.locked_at < cutoff,
            )
            .values(
                status=JobStatus.PENDING.value,
                locked_at=None,
                locked_by=None,
                updated_at=now,
            )
        )
        return self.session.execute(stmt).rowcount

    def cleanup_old_jobs(self, days_old: int = config.JOB_RETENTION_DAYS) -> int:
        """
        Delete completed and failed jobs that finished more than ``days_old`` days ago.

        Returns:
            Number of jobs deleted
        """
        cutoff = utcnow() - timedelta(days=days_old)
        stmt = delete(self.table).where(
            self.table.c.status.in_([s.value for s in TERMINAL_JOB_STATUSES]),
            self.table.c.completed_at < cutoff,
        )
        return self.session.execute(stmt).rowcount

    def get_stats(self) -> dict[str, int]:
        """Count jobs per status."""
        stmt = select(self.table.c.status, func.count()).group_by(self.table.c.status)
        stats = {status.value: 0 for status in JobStatus}
        for status, count in self.session.execute(stmt).fetchall():
            stats[status] = count
        return stats

    def list_jobs(
        self,
        status: JobStatus | None = None,
        job_type: JobType | None = None,
        limit: int = 100,
    ) -> list[Job]:
        """
        List jobs, newest first.

        Args:
            status: Optional status filter
            job_type: Optional job type filter
            limit: Maximum number of jobs to return
        """
        stmt = select(self.table)
        if status is not None:
            stmt = stmt.where(self.table.c.status == status.value)
        if job_type is not None:
            stmt = stmt.where(self.table.c.job_type == job_type.value)

        stmt = stmt.order_by(self.table.c.created_at.desc()).limit(limit)
        return [self._row_to_model(row) for row in self.session.execute(stmt).fetchall()]

    def has_open_job(self, job_type: JobType, order_id: str) -> bool:
        """Check for a pending or processing job of this type for an order."""
        stmt = (
            select(self.table.c.id)
            .where(
                self.table.c.job_type == job_type.value,
                self.table.c.status.in_(
                    [JobStatus.PENDING.value, JobStatus.PROCESSING.value]
                ),
                self.table.c.payload["orderId"].as_string() == order_id,
            )
            .limit(1)
        )
        return self.session.execute(stmt).first() is not None
