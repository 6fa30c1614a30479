"""
Handlers for ERP and carrier jobs.

ERP handlers drive a single exclusive gateway session, so they run
one at a time. Every handler is idempotent: re-running a job after a crash
or an out-of-order completion leaves the order in the same state.
"""

import logging
from typing import Any

from pydantic import ValidationError

from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.integrations.carriers import CarrierRegistry
from shipsync.integrations.erp import ERPGateway
from shipsync.models.job import (
    Job,
    JobType,
    LookupDocNoPayload,
    TrackingNumberPayload,
    UpdateStatusPayload,
    UpdateTrackingPayload,
)
from shipsync.models.order import OrderStatus
from shipsync.models.webhook import WebhookEvent
from shipsync.services.webhook import WebhookService
from shipsync.utils.notify import TelegramNotifier
from shipsync.worker.registry import FixedBackoff, JobHandler, WorkerConfig

logger = logging.getLogger(__name__)


def _skipped(reason: str) -> dict[str, Any]:
    return {"skipped": True, "reason": reason}


class UpdateTrackingEcountHandler(JobHandler):
    """Writes an order's tracking number to its ERP record."""

    job_type = JobType.UPDATE_TRACKING_ECOUNT

    def __init__(
        self,
        db: DatabaseConnection,
        erp: ERPGateway,
        config: WorkerConfig | None = None,
    ):
        self.db = db
        self.erp = erp
        self.config = config or WorkerConfig.for_job_type(self.job_type)

    def process_job(self, job: Job) -> dict[str, Any]:
        try:
            payload = UpdateTrackingPayload.model_validate(job.payload)
        except ValidationError as e:
            logger.warning("Malformed update_tracking_ecount payload in job %s: %s", job.id, e)
            return _skipped("invalid_payload")

        with UnitOfWork(self.db) as uow:
            order = uow.orders.get_by_id(payload.order_id)

        if order is None:
            return _skipped("order_not_found")

        if order.erp_tracking_updated and order.tracking_number == payload.tracking_number:
            logger.info("Tracking already written to ERP for order %s", order.id)
            return _skipped("already_updated")

        result = self.erp.update_tracking(
            payload.erp_order_code, payload.tracking_number, payload.ecount_link
        )

        with UnitOfWork(self.db) as uow:
            uow.orders.update_fields(order.id, erp_tracking_updated=True)
            uow.commit()

        logger.info(
            "Tracking %s written to ERP for order %s",
            payload.tracking_number,
            order.id,
        )
        return {"success": True, "erp": result}


class UpdateStatusEcountHandler(JobHandler):
    """Writes a label status to an order's ERP record."""

    job_type = JobType.UPDATE_STATUS_ECOUNT

    def __init__(
        self,
        db: DatabaseConnection,
        erp: ERPGateway,
        config: WorkerConfig | None = None,
    ):
        self.db = db
        self.erp = erp
        self.config = config or WorkerConfig.for_job_type(self.job_type)

    def process_job(self, job: Job) -> dict[str, Any]:
        try:
            payload = UpdateStatusPayload.model_validate(job.payload)
        except ValidationError as e:
            logger.warning("Malformed update_status_ecount payload in job %s: %s", job.id, e)
            return _skipped("invalid_payload")

        with UnitOfWork(self.db) as uow:
            order = uow.orders.get_by_id(payload.order_id)

        if order is None:
            return _skipped("order_not_found")

        # A newer label was reconciled after this job was queued
        if order.label_status is not None and order.label_status != payload.status:
            logger.info(
                "Order %s label is now %s, skipping stale update to %s",
                order.id,
                order.label_status,
                payload.status,
            )
            return _skipped("stale_status")

        result = self.erp.update_status(
            payload.erp_order_code,
            payload.status,
            payload.ecount_link,
            tracking_number=payload.tracking_number,
        )

        with UnitOfWork(self.db) as uow:
            uow.orders.update_fields(
                order.id, erp_updated=True, erp_status=payload.status
            )
            uow.commit()

        logger.info("Status %s written to ERP for order %s", payload.status, order.id)
        return {"success": True, "status": payload.status, "erp": result}


class LookupDocNoHandler(JobHandler):
    """Resolves ERP document numbers for orders known only by slip number."""

    job_type = JobType.LOOKUP_DOCNO

    def __init__(
        self,
        db: DatabaseConnection,
        erp: ERPGateway,
        notifier: TelegramNotifier,
        config: WorkerConfig | None = None,
    ):
        self.db = db
        self.erp = erp
        self.notifier = notifier
        self.config = config or WorkerConfig.for_job_type(self.job_type)

    def process_job(self, job: Job) -> dict[str, Any]:
        try:
            payload = LookupDocNoPayload.model_validate(job.payload)
        except ValidationError as e:
            logger.warning("Malformed lookup_docno payload in job %s: %s", job.id, e)
            return _skipped("invalid_payload")

        if len(payload.slip_nos) != len(payload.order_ids) or not payload.slip_nos:
            return _skipped("slip_order_mismatch")

        mapping = self.erp.lookup_doc_no(payload.slip_nos)

        found = 0
        with UnitOfWork(self.db) as uow:
            for slip_no, order_id in zip(payload.slip_nos, payload.order_ids):
                doc_no = mapping.get(slip_no)
                if not doc_no:
                    logger.warning("No DOC_NO found for order %s (slip %s)", order_id, slip_no)
                    continue
                if uow.orders.update_fields(order_id, erp_order_code=doc_no):
                    found += 1
            uow.commit()

        logger.info("DOC_NO lookup resolved %s of %s slips", found, len(payload.slip_nos))
        return {"success": True, "total": len(payload.slip_nos), "found": found}

    def on_max_attempts_reached(self, job: Job, error: Exception):
        super().on_max_attempts_reached(job, error)
        self.notifier.notify_error(
            f"DOC_NO lookup failed permanently: {error}",
            {"action": "Lookup DOC_NO", "job_id": job.id, "attempts": job.attempts},
        )


class TrackingNumberHandler(JobHandler):
    """
    Polls the carrier until it assigns a tracking number.

    Raising while no number is available lets the queue retry on a fixed
    interval until ``max_attempts``.
    """

    job_type = JobType.TRACKING_NUMBER

    def __init__(
        self,
        db: DatabaseConnection,
        carriers: CarrierRegistry,
        webhook_service: WebhookService,
        config: WorkerConfig | None = None,
    ):
        self.db = db
        self.carriers = carriers
        self.webhook_service = webhook_service
        self.config = config or WorkerConfig.for_job_type(
            self.job_type, backoff=FixedBackoff(seconds=60)
        )

    def process_job(self, job: Job) -> dict[str, Any]:
        try:
            payload = TrackingNumberPayload.model_validate(job.payload)
        except ValidationError as e:
            logger.warning("Malformed tracking_number payload in job %s: %s", job.id, e)
            return _skipped("invalid_payload")

        with UnitOfWork(self.db) as uow:
            order = uow.orders.get_by_id(payload.order_id)

        if order is None:
            return _skipped("order_not_found")
        if order.tracking_number:
            return {"success": True, "tracking_number": order.tracking_number}

        try:
            carrier = self.carriers.get(payload.carrier_code)
        except KeyError:
            return _skipped("unsupported_carrier")

        info = carrier.get_order_info(payload.order_code)
        tracking_number = info.data.tracking_number if info.success else None
        if not tracking_number:
            raise RuntimeError(
                f"Tracking number not yet available for order {payload.order_code}"
            )

        return record_tracking_number(
            self.db, self.webhook_service, order.id, tracking_number
        )


def record_tracking_number(
    db: DatabaseConnection,
    webhook_service: WebhookService,
    order_id: str,
    tracking_number: str,
) -> dict[str, Any]:
    """
    Store a newly found tracking number and fan out the follow-up work.

    Queues update_tracking_ecount when the order is linked to an ERP record
    and dispatches tracking.updated to the customer's webhooks.
    """
    with UnitOfWork(db) as uow:
        order = uow.orders.get_by_id(order_id)
        if order is None:
            return _skipped("order_not_found")

        fields: dict[str, Any] = {
            "tracking_number": tracking_number,
            "erp_tracking_updated": False,
        }
        if order.status == OrderStatus.PENDING:
            fields["status"] = OrderStatus.CREATED.value
        uow.orders.update_fields(order.id, **fields)

        erp_job_id = None
        if order.erp_order_code and order.ecount_link:
            erp_job_id = uow.jobs.enqueue(
                JobType.UPDATE_TRACKING_ECOUNT,
                UpdateTrackingPayload(
                    order_id=order.id,
                    erp_order_code=order.erp_order_code,
                    tracking_number=tracking_number,
                    ecount_link=order.ecount_link,
                ).to_payload(),
            )
        uow.commit()

    logger.info("Tracking number %s found for order %s", tracking_number, order.id)

    webhook_job_ids = webhook_service.dispatch(
        WebhookEvent.TRACKING_UPDATED,
        order.customer_id,
        order.id,
        {
            "orderId": order.id,
            "customerOrderNumber": order.customer_order_number,
            "waybillNumber": order.waybill_number,
            "trackingNumber": tracking_number,
        },
    )
    return {
        "success": True,
        "tracking_number": tracking_number,
        "erp_job_id": erp_job_id,
        "webhook_jobs": len(webhook_job_ids),
    }
