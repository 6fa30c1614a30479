"""Scheduled producers that feed the job queue."""

from shipsync.scheduler.enqueue import JobQueue
from shipsync.scheduler.producers import (
    CleanupJobsProducer,
    FetchTrackingProducer,
    Producer,
    RunStats,
    SyncOrdersProducer,
    UpdateStatusProducer,
)
from shipsync.scheduler.runner import ProducerScheduler

__all__ = [
    "CleanupJobsProducer",
    "FetchTrackingProducer",
    "JobQueue",
    "Producer",
    "ProducerScheduler",
    "RunStats",
    "SyncOrdersProducer",
    "UpdateStatusProducer",
]
