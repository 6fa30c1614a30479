"""
Worker manager.

Runs one ``WorkerPool`` per registered handler plus the stuck-job sweep
that returns abandoned ``processing`` jobs to the queue.
"""

import logging
import threading

from shipsync import config
from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.integrations.carriers import CarrierRegistry
from shipsync.integrations.erp import ERPGateway
from shipsync.services.webhook import WebhookService
from shipsync.utils.notify import TelegramNotifier
from shipsync.worker.engine import WorkerPool
from shipsync.worker.handlers import (
    LookupDocNoHandler,
    TrackingNumberHandler,
    UpdateStatusEcountHandler,
    UpdateTrackingEcountHandler,
)
from shipsync.worker.registry import HandlerRegistry
from shipsync.worker.webhook_delivery import WebhookDeliveryHandler

logger = logging.getLogger(__name__)


def build_registry(
    db: DatabaseConnection,
    webhook_service: WebhookService,
    notifier: TelegramNotifier,
    carriers: CarrierRegistry | None = None,
    erp: ERPGateway | None = None,
) -> HandlerRegistry:
    """
    Register the handlers the available integrations allow.

    Webhook delivery always runs. ERP handlers need a gateway and the
    tracking_number handler needs carrier clients.
    """
    registry = HandlerRegistry([WebhookDeliveryHandler(db, webhook_service)])

    if erp is not None:
        registry.register(UpdateTrackingEcountHandler(db, erp))
        registry.register(UpdateStatusEcountHandler(db, erp))
        registry.register(LookupDocNoHandler(db, erp, notifier))

    if carriers is not None:
        registry.register(TrackingNumberHandler(db, carriers, webhook_service))

    return registry


class WorkerManager:
    """Starts and stops all worker pools together."""

    def __init__(
        self,
        db: DatabaseConnection,
        registry: HandlerRegistry,
        worker_id: str = config.WORKER_ID,
        stuck_timeout_minutes: float = config.STUCK_JOB_TIMEOUT_MINUTES,
        sweep_interval_seconds: float = config.STUCK_JOB_SWEEP_SECONDS,
    ):
        self.db = db
        self.registry = registry
        self.stuck_timeout_minutes = stuck_timeout_minutes
        self.sweep_interval_seconds = sweep_interval_seconds
        self.pools = [WorkerPool(db, handler, worker_id) for handler in registry]

        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None

    def start(self):
        """Start every pool and the stuck-job sweep."""
        self.reclaim_stuck_jobs()

        for pool in self.pools:
            pool.start()

        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="stuck-job-sweeper", daemon=True
        )
        self._sweeper.start()
        logger.info("Started %s worker pool(s)", len(self.pools))

    def stop(self):
        """Stop the sweep and every pool, waiting for in-flight jobs."""
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join()
            self._sweeper = None

        for pool in self.pools:
            pool.stop()
        logger.info("All worker pools stopped")

    def reclaim_stuck_jobs(self) -> int:
        """
        Return jobs stuck in processing past the timeout to pending.

        Returns:
            Number of jobs reclaimed
        """
        with UnitOfWork(self.db) as uow:
            count = uow.jobs.reclaim_stuck(self.stuck_timeout_minutes)
            uow.commit()

        if count:
            logger.warning(
                "Reclaimed %s job(s) stuck for more than %s minutes",
                count,
                self.stuck_timeout_minutes,
            )
        return count

    def _sweep_loop(self):
        while not self._stop_event.wait(self.sweep_interval_seconds):
            try:
                self.reclaim_stuck_jobs()
            except Exception:
                logger.exception("Stuck-job sweep failed")
