"""
Periodic producers.

Each producer scans the database or an upstream system, does any cheap
work inline, and hands slow or retry-prone work to the job queue. A run is
recorded in ``cron_logs`` with aggregate counters; one failing order is
counted and logged and never aborts the run.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel, ValidationError

from shipsync import config
from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.integrations.carriers import CarrierRegistry
from shipsync.integrations.erp import ERPGateway, ERPOrderRow
from shipsync.models.cron_log import CronLogStatus
from shipsync.models.order import Order, OrderStatus
from shipsync.scheduler.enqueue import JobQueue
from shipsync.services.reconciliation import ReconciliationOutcome, StatusReconciler
from shipsync.services.webhook import WebhookService
from shipsync.worker.handlers import record_tracking_number

logger = logging.getLogger(__name__)


class RunStats(BaseModel):
    """Counters of one producer run."""

    status: CronLogStatus = CronLogStatus.STARTED
    processed: int = 0
    success: int = 0
    failed: int = 0
    updated: int = 0
    error: str | None = None


class Producer(ABC):
    """
    Base class for scheduled producers.

    Subclasses set ``job_name``, implement ``produce`` and ``trigger``.
    Overlapping runs of the same producer instance are refused.
    """

    job_name: str

    def __init__(self, db: DatabaseConnection):
        self.db = db
        self._running = threading.Lock()

    @abstractmethod
    def trigger(self) -> BaseTrigger:
        """APScheduler trigger for this producer."""
        ...

    @abstractmethod
    def produce(self, stats: RunStats):
        """Do one run, updating ``stats`` as items are handled."""
        ...

    def run(self) -> RunStats | None:
        """
        Execute one run and record it in cron_logs.

        Returns:
            Run counters, or None if a previous run is still in progress
        """
        if not self._running.acquire(blocking=False):
            logger.warning("%s is still running, skipping this run", self.job_name)
            return None

        try:
            return self._run()
        finally:
            self._running.release()

    def _run(self) -> RunStats:
        started = time.monotonic()
        stats = RunStats()

        with UnitOfWork(self.db) as uow:
            log_id = uow.cron_logs.start(self.job_name)
            uow.commit()

        logger.info("Starting %s", self.job_name)
        try:
            self.produce(stats)
            stats.status = CronLogStatus.COMPLETED
        except Exception as e:
            logger.exception("%s failed", self.job_name)
            stats.status = CronLogStatus.FAILED
            stats.error = str(e)

        execution_time_ms = int((time.monotonic() - started) * 1000)
        with UnitOfWork(self.db) as uow:
            uow.cron_logs.finish(
                log_id,
                stats.status,
                processed=stats.processed,
                success=stats.success,
                failed=stats.failed,
                updated=stats.updated,
                execution_time_ms=execution_time_ms,
                error_message=stats.error,
            )
            uow.commit()

        logger.info(
            "%s %s in %sms",
            self.job_name,
            stats.status,
            execution_time_ms,
            extra={"json_fields": stats.model_dump(mode="json")},
        )
        return stats


class UpdateStatusProducer(Producer):
    """
    Polls carriers for orders due a status check and reconciles them.

    Processes batches until no due order is left. Every order checked gets
    its ``last_status_check_at`` bumped, even on error, so the scan always
    terminates and a broken order waits a full interval before the next try.
    """

    job_name = "update-status"

    def __init__(
        self,
        db: DatabaseConnection,
        carriers: CarrierRegistry,
        reconciler: StatusReconciler,
        batch_size: int = config.STATUS_CHECK_BATCH_SIZE,
        check_interval_hours: float = config.STATUS_CHECK_INTERVAL_HOURS,
    ):
        super().__init__(db)
        self.carriers = carriers
        self.reconciler = reconciler
        self.batch_size = batch_size
        self.check_interval_hours = check_interval_hours

    def trigger(self) -> BaseTrigger:
        return IntervalTrigger(minutes=10)

    def produce(self, stats: RunStats):
        seen: set[str] = set()

        while True:
            with UnitOfWork(self.db) as uow:
                orders = uow.orders.get_orders_needing_status_check(
                    limit=self.batch_size,
                    check_interval_hours=self.check_interval_hours,
                )

            batch = [order for order in orders if order.id not in seen]
            if not batch:
                break

            for order in batch:
                seen.add(order.id)
                stats.processed += 1
                try:
                    outcome = self.check_order(order)
                except Exception as e:
                    stats.failed += 1
                    logger.error(
                        "Status check failed for order %s: %s",
                        order.id,
                        e,
                        extra={"json_fields": {"waybill_number": order.waybill_number}},
                    )
                    self._mark_checked(order.id)
                    continue

                stats.success += 1
                if outcome.changed:
                    stats.updated += 1

            if len(orders) < self.batch_size:
                break

    def check_order(self, order: Order) -> ReconciliationOutcome:
        """
        Fetch both carrier codes for one order and reconcile them.

        A code the carrier does not return falls back to the stored one.
        """
        carrier = self.carriers.get(order.carrier)
        tracking = carrier.track_order(order.waybill_number)
        info = carrier.get_order_info(order.waybill_number)

        package_status = tracking.status or order.package_status
        order_status = (
            info.data.status if info.success and info.data.status else order.order_status
        )
        return self.reconciler.reconcile(
            order, package_status, order_status, tracking.tracking_info or None
        )

    def _mark_checked(self, order_id: str):
        try:
            with UnitOfWork(self.db) as uow:
                uow.orders.mark_status_checked(order_id)
                uow.commit()
        except Exception:
            logger.exception("Could not record status check for order %s", order_id)


class FetchTrackingProducer(Producer):
    """
    Asks carriers for tracking numbers of orders that do not have one.

    Looks orders up by waybill, falling back to the customer order number.
    A found number is stored, queued for the ERP and announced to webhooks.
    """

    job_name = "fetch-tracking"

    def __init__(
        self,
        db: DatabaseConnection,
        carriers: CarrierRegistry,
        webhook_service: WebhookService,
        batch_size: int = config.FETCH_TRACKING_BATCH_SIZE,
    ):
        super().__init__(db)
        self.carriers = carriers
        self.webhook_service = webhook_service
        self.batch_size = batch_size

    def trigger(self) -> BaseTrigger:
        return IntervalTrigger(minutes=1)

    def produce(self, stats: RunStats):
        with UnitOfWork(self.db) as uow:
            orders = uow.orders.get_orders_missing_tracking(limit=self.batch_size)

        for order in orders:
            stats.processed += 1
            try:
                found = self.fetch_order(order)
            except Exception as e:
                stats.failed += 1
                logger.error("Tracking lookup failed for order %s: %s", order.id, e)
                continue

            stats.success += 1
            if found:
                stats.updated += 1

    def fetch_order(self, order: Order) -> bool:
        """
        Look up one order's tracking number.

        Returns:
            True if a tracking number was found and recorded
        """
        with UnitOfWork(self.db) as uow:
            uow.orders.mark_tracking_checked(order.id)
            uow.commit()

        carrier = self.carriers.get(order.carrier)
        code = order.waybill_number or order.customer_order_number
        info = carrier.get_order_info(code)

        if not info.success or not info.data.tracking_number:
            logger.debug("No tracking number yet for order %s (%s)", order.id, code)
            return False

        record_tracking_number(
            self.db, self.webhook_service, order.id, info.data.tracking_number
        )
        return True


class SyncOrdersProducer(Producer):
    """
    Imports new sales rows from the ERP as orders.

    Fetching may fail wholesale (an expired gateway session, for example)
    and is retried as a whole. Rows already imported are skipped; rows known
    only by slip number are batched into one lookup_docno job, and orders
    without a tracking number get a tracking_number job.
    """

    job_name = "sync-orders"

    def __init__(
        self,
        db: DatabaseConnection,
        erp: ERPGateway,
        job_queue: JobQueue | None = None,
        max_tries: int = config.ERP_SYNC_MAX_TRIES,
        retry_wait_seconds: float = config.ERP_SYNC_RETRY_WAIT_SECONDS,
        ecount_link: str | None = config.ECOUNT_HASH_LINK,
    ):
        super().__init__(db)
        self.erp = erp
        self.job_queue = job_queue or JobQueue(db)
        self.max_tries = max_tries
        self.retry_wait_seconds = retry_wait_seconds
        self.ecount_link = ecount_link

    def trigger(self) -> BaseTrigger:
        return CronTrigger(hour="6,18", minute=0, timezone=config.SCHEDULER_TIMEZONE)

    def produce(self, stats: RunStats):
        rows = self.fetch_rows()
        logger.info("Fetched %s rows from the ERP", len(rows))

        lookup_slips: list[str] = []
        lookup_orders: list[str] = []

        for raw in rows:
            stats.processed += 1
            try:
                row = ERPOrderRow.model_validate(raw)
            except ValidationError as e:
                stats.failed += 1
                logger.warning("Unreadable ERP row: %s", e)
                continue

            if not row.doc_no and not row.slip_no:
                stats.failed += 1
                logger.warning(
                    "ERP row without DOC_NO or slip number",
                    extra={"json_fields": {"row": raw}},
                )
                continue

            try:
                order = self.import_row(row)
            except Exception as e:
                stats.failed += 1
                logger.error("Failed to import ERP row %s: %s", row.doc_no or row.slip_no, e)
                continue

            stats.success += 1
            if order is None:
                continue
            stats.updated += 1

            if not order.erp_order_code:
                lookup_slips.append(order.erp_slip_no)
                lookup_orders.append(order.id)

            if not order.tracking_number and order.customer_order_number:
                try:
                    self.job_queue.add_tracking_number_job(
                        order.id, order.customer_order_number, order.carrier
                    )
                except Exception:
                    logger.exception("Could not queue tracking_number for order %s", order.id)

        if lookup_slips:
            self.job_queue.add_lookup_docno_job(lookup_slips, lookup_orders)

    def fetch_rows(self) -> list[dict]:
        """Fetch rows from the ERP, retrying the whole fetch on failure."""
        for attempt in range(1, self.max_tries + 1):
            try:
                return self.erp.fetch_orders()
            except Exception as e:
                if attempt >= self.max_tries:
                    raise
                logger.warning(
                    "ERP fetch failed (attempt %s/%s): %s; retrying in %ss",
                    attempt,
                    self.max_tries,
                    e,
                    self.retry_wait_seconds,
                )
                time.sleep(self.retry_wait_seconds)
        return []

    def import_row(self, row: ERPOrderRow) -> Order | None:
        """
        Create an order for one ERP row.

        Returns:
            The new order, or None if the row was already imported
        """
        tracking = row.tracking_last_mile or None

        with UnitOfWork(self.db) as uow:
            if row.doc_no:
                existing = uow.orders.get_by_erp_order_code(row.doc_no)
            else:
                existing = uow.orders.get_by_slip_no(row.slip_no)
            if existing is not None:
                return None

            order = uow.orders.create(
                Order(
                    id="",
                    customer_order_number=row.customer_order_number,
                    carrier=row.carrier_code(),
                    waybill_number=tracking,
                    tracking_number=tracking,
                    erp_order_code=row.doc_no,
                    erp_slip_no=row.slip_no,
                    ecount_link=self.ecount_link,
                    erp_status=row.status,
                    status=OrderStatus.CREATED if tracking else OrderStatus.PENDING,
                )
            )
            uow.commit()

        logger.info(
            "Imported ERP order %s",
            row.doc_no or row.slip_no,
            extra={"json_fields": {"order_id": order.id, "carrier": order.carrier}},
        )
        return order


class CleanupJobsProducer(Producer):
    """Deletes completed and failed jobs past the retention period."""

    job_name = "cleanup-jobs"

    def __init__(
        self,
        db: DatabaseConnection,
        days_old: int = config.JOB_RETENTION_DAYS,
    ):
        super().__init__(db)
        self.days_old = days_old

    def trigger(self) -> BaseTrigger:
        return CronTrigger(hour=3, minute=0, timezone=config.SCHEDULER_TIMEZONE)

    def produce(self, stats: RunStats):
        with UnitOfWork(self.db) as uow:
            deleted = uow.jobs.cleanup_old_jobs(self.days_old)
            uow.commit()

        stats.processed = deleted
        stats.success = deleted
        logger.info("Deleted %s job(s) older than %s days", deleted, self.days_old)
