"""
Worker pool engine.

A ``WorkerPool`` polls the job store for one job type. Each tick claims up to
``concurrency`` due jobs, runs them in parallel on a thread pool, and writes
back the outcome:

    pending -> processing -> completed
                          -> pending (retry after backoff)
                          -> failed (attempts exhausted, dead-letter hook)
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import StrEnum

from pydantic import BaseModel

from shipsync import config
from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.models.job import Job
from shipsync.worker.registry import JobHandler

logger = logging.getLogger(__name__)


class JobOutcome(StrEnum):
    """What a single execution did to the job"""

    COMPLETED = "completed"
    RETRIED = "retried"
    FAILED = "failed"
    LOST = "lost"  # Claim was taken over (e.g. reclaimed as stuck) before write-back


class TickResult(BaseModel):
    """Counts for one polling tick."""

    claimed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    lost: int = 0


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


class WorkerPool:
    """
    Polling executor for a single job type.

    Usage:
        pool = WorkerPool(db, WebhookDeliveryHandler(db, webhook_service))
        pool.run_once()      # one tick, synchronously
        pool.start()         # tick every interval on a background thread
        pool.stop()
    """

    def __init__(
        self,
        db: DatabaseConnection,
        handler: JobHandler,
        worker_id: str = config.WORKER_ID,
    ):
        self.db = db
        self.handler = handler
        self.job_type = handler.job_type
        self.config = handler.config
        self.worker_id = f"{worker_id}:{self.job_type.value}"

        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _get_executor(self) -> ThreadPoolExecutor:
        """Executor for job bodies, recreated after stop()."""
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.concurrency,
                    thread_name_prefix=f"{self.job_type.value}-job",
                )
            return self._executor

    def run_once(self) -> TickResult:
        """
        Claim and execute one batch of due jobs.

        Returns:
            Counts of what happened to the claimed jobs
        """
        # Executor must exist before any job is claimed
        executor = self._get_executor()

        with UnitOfWork(self.db) as uow:
            claimed = uow.jobs.claim_batch(
                self.job_type, self.worker_id, self.config.concurrency
            )
            uow.commit()

        tick = TickResult(claimed=len(claimed))
        if not claimed:
            return tick

        futures = [(job, executor.submit(self._execute, job)) for job in claimed]
        for job, future in futures:
            try:
                outcome = future.result()
            except Exception:
                # Write-back failed; the job stays in processing until the stuck sweep
                logger.exception("Failed to record outcome of job %s", job.id)
                continue

            if outcome == JobOutcome.COMPLETED:
                tick.completed += 1
            elif outcome == JobOutcome.RETRIED:
                tick.retried += 1
            elif outcome == JobOutcome.FAILED:
                tick.failed += 1
            else:
                tick.lost += 1

        return tick

    def _execute(self, job: Job) -> JobOutcome:
        """Run one job and record its outcome."""
        try:
            result = self.handler.process_job(job)
        except Exception as e:
            return self._record_failure(job, e)

        with UnitOfWork(self.db) as uow:
            updated = uow.jobs.mark_completed(
                job.id, result=result, worker_id=self.worker_id
            )
            uow.commit()

        if not updated:
            logger.warning("Job %s finished after its claim was lost", job.id)
            return JobOutcome.LOST

        logger.info(
            "Job %s completed",
            job.id,
            extra={"json_fields": {"job_type": job.job_type, "result": result}},
        )
        return JobOutcome.COMPLETED

    def _record_failure(self, job: Job, error: Exception) -> JobOutcome:
        """Schedule a retry, or fail the job terminally once attempts run out."""
        message = _describe(error)

        if job.attempts + 1 < job.max_attempts:
            delay = self.config.backoff.delay_for(job.attempts)
            with UnitOfWork(self.db) as uow:
                updated = uow.jobs.mark_failed(
                    job.id, message, delay, worker_id=self.worker_id
                )
                uow.commit()

            if not updated:
                return JobOutcome.LOST

            logger.warning(
                "Job %s failed (attempt %s/%s), retrying in %ss: %s",
                job.id,
                job.attempts + 1,
                job.max_attempts,
                delay,
                message,
            )
            return JobOutcome.RETRIED

        with UnitOfWork(self.db) as uow:
            updated = uow.jobs.mark_terminally_failed(
                job.id, message, worker_id=self.worker_id
            )
            uow.commit()

        if not updated:
            return JobOutcome.LOST

        logger.error(
            "Job %s failed permanently after %s attempts: %s",
            job.id,
            job.attempts + 1,
            message,
            extra={"json_fields": {"job_type": job.job_type, "payload": job.payload}},
        )

        exhausted = job.model_copy(
            update={"attempts": job.attempts + 1, "last_error": message}
        )
        try:
            self.handler.on_max_attempts_reached(exhausted, error)
        except Exception:
            logger.exception("on_max_attempts_reached hook failed for job %s", job.id)

        return JobOutcome.FAILED

    def start(self):
        """Start polling on a background thread."""
        if self.running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"{self.job_type.value}-worker",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "Worker started for %s (interval=%ss, concurrency=%s)",
            self.job_type,
            self.config.interval_seconds,
            self.config.concurrency,
        )

    def stop(self, timeout: float | None = 30):
        """Stop polling and wait for in-flight jobs to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        logger.info("Worker stopped for %s", self.job_type)

    def _run_loop(self):
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Worker tick failed for %s", self.job_type)
            self._stop_event.wait(self.config.interval_seconds)
