"""
Job handler contract and registry.

Each job type has exactly one handler. The handler carries its own worker
configuration (poll interval, parallelism, retry backoff) so worker types
are tuned independently.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterator, Literal, Optional, Union

from pydantic import BaseModel, Field

from shipsync import config
from shipsync.models.job import Job, JobType

logger = logging.getLogger(__name__)


class FixedBackoff(BaseModel):
    """Retry after the same delay every time."""

    kind: Literal["fixed"] = "fixed"
    seconds: float = Field(default=60, ge=0)

    def delay_for(self, attempts: int) -> float:
        return self.seconds


class ExponentialBackoff(BaseModel):
    """Retry after ``base_seconds * factor ** attempts`` (5s, 10s, 20s, ... by default)."""

    kind: Literal["exponential"] = "exponential"
    base_seconds: float = Field(default=5, ge=0)
    factor: float = Field(default=2, ge=1)
    max_seconds: Optional[float] = Field(default=None, ge=0)

    def delay_for(self, attempts: int) -> float:
        delay = self.base_seconds * self.factor**attempts
        if self.max_seconds is not None:
            delay = min(delay, self.max_seconds)
        return delay


BackoffPolicy = Union[FixedBackoff, ExponentialBackoff]


class WorkerConfig(BaseModel):
    """Polling and retry settings for one job type."""

    interval_seconds: float = Field(default=5, gt=0, description="Delay between ticks")
    concurrency: int = Field(default=1, ge=1, description="Jobs in flight per tick")
    backoff: BackoffPolicy = Field(
        default_factory=ExponentialBackoff, discriminator="kind"
    )

    @classmethod
    def for_job_type(cls, job_type: JobType, **overrides) -> "WorkerConfig":
        """Build a config from the per-type defaults in ``config.WORKER_SETTINGS``."""
        settings: dict[str, Any] = dict(config.WORKER_SETTINGS.get(job_type.value, {}))
        settings.update(overrides)
        return cls(**settings)


class JobHandler(ABC):
    """
    Business logic for one job type.

    ``process_job`` returns a small JSON-serializable dict on success and raises
    on transient failure. Permanent problems (bad payload, missing entity)
    should return ``{"skipped": True, "reason": ...}`` instead of raising so the
    job is not retried.
    """

    job_type: JobType
    config: WorkerConfig

    @abstractmethod
    def process_job(self, job: Job) -> dict[str, Any] | None:
        """Run the job."""
        pass

    def on_max_attempts_reached(self, job: Job, error: Exception):
        """Called once when a job exhausts its attempts."""
        logger.error(
            "Job %s (%s) failed permanently after %s attempts: %s",
            job.id,
            job.job_type,
            job.attempts,
            error,
        )


class HandlerRegistry:
    """Maps job types to their handlers."""

    def __init__(self, handlers: list[JobHandler] | None = None):
        self._handlers: dict[JobType, JobHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: JobHandler):
        """
        Register a handler for its job type.

        Raises:
            ValueError: If the job type already has a handler
        """
        if handler.job_type in self._handlers:
            raise ValueError(f"Handler already registered for {handler.job_type}")
        self._handlers[handler.job_type] = handler

    def get(self, job_type: JobType | str) -> JobHandler:
        """
        Get the handler for a job type.

        Raises:
            KeyError: If no handler is registered
        """
        try:
            return self._handlers[JobType(job_type)]
        except (KeyError, ValueError):
            raise KeyError(f"No handler registered for job type: {job_type}") from None

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

    def __iter__(self) -> Iterator[JobHandler]:
        return iter(self._handlers.values())

    def __len__(self) -> int:
        return len(self._handlers)
