"""Handler for webhook_delivery jobs."""

import logging
from typing import Any

from pydantic import ValidationError

from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.models.job import Job, JobType, WebhookDeliveryPayload
from shipsync.models.webhook import WebhookStatus
from shipsync.services.webhook import WebhookService
from shipsync.worker.registry import JobHandler, WorkerConfig

logger = logging.getLogger(__name__)


class WebhookDeliveryHandler(JobHandler):
    """
    Delivers one queued event to one registration.

    Jobs for deleted or inactive registrations, or for customers with
    webhooks switched off, are skipped rather than retried.
    """

    job_type = JobType.WEBHOOK_DELIVERY

    def __init__(
        self,
        db: DatabaseConnection,
        webhook_service: WebhookService,
        config: WorkerConfig | None = None,
    ):
        self.db = db
        self.webhook_service = webhook_service
        self.config = config or WorkerConfig.for_job_type(self.job_type)

    def process_job(self, job: Job) -> dict[str, Any]:
        try:
            payload = WebhookDeliveryPayload.model_validate(job.payload)
        except ValidationError as e:
            logger.warning("Malformed webhook_delivery payload in job %s: %s", job.id, e)
            return {"skipped": True, "reason": "invalid_payload"}

        with UnitOfWork(self.db) as uow:
            webhook = uow.webhooks.get_by_id(payload.webhook_id)
            customer = (
                uow.customers.get_by_id(webhook.customer_id) if webhook else None
            )

        if webhook is None:
            logger.warning("Webhook %s not found, skipping", payload.webhook_id)
            return {"skipped": True, "reason": "webhook_deleted"}

        if webhook.status != WebhookStatus.ACTIVE:
            logger.warning("Webhook %s is %s, skipping", webhook.id, webhook.status)
            return {"skipped": True, "reason": f"webhook_{webhook.status}"}

        if customer is None or not customer.webhook_enabled:
            logger.warning(
                "Customer %s has webhooks disabled, skipping", webhook.customer_id
            )
            return {"skipped": True, "reason": "customer_webhook_disabled"}

        result = self.webhook_service.deliver(
            webhook, payload.event, payload.order_id, payload.payload
        )
        logger.info(
            "Delivered %s to webhook %s",
            payload.event,
            webhook.id,
            extra={"json_fields": {"order_id": payload.order_id, **result}},
        )
        return result

    def on_max_attempts_reached(self, job: Job, error: Exception):
        # fail_count was already incremented per attempt by deliver()
        logger.error(
            "Webhook delivery gave up after %s attempts: %s",
            job.attempts,
            error,
            extra={
                "json_fields": {
                    "webhook_id": job.payload.get("webhookId"),
                    "event": job.payload.get("event"),
                    "order_id": job.payload.get("orderId"),
                }
            },
        )
