"""
Webhook delivery service.

Registrations subscribe a customer endpoint to events. ``dispatch`` only
enqueues jobs; the HTTP call happens later in ``deliver``, run by the
webhook_delivery worker, so retries go through the job queue.

Every request body is signed with HMAC-SHA256 using the registration's
stored secret hash as the key. Receivers verify with
``sign(sha256_hex(secret), raw_body)``.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse
from uuid import uuid4

import requests

from shipsync import config
from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.models.job import JobType, WebhookDeliveryPayload
from shipsync.models.webhook import (
    TEST_EVENT,
    DeliveryResult,
    DeliveryStatus,
    WebhookEvent,
    WebhookRegistration,
    WebhookStatus,
)
from shipsync.utils.hash import compute_sha256, sign

logger = logging.getLogger(__name__)

# Response bodies kept in delivery logs are truncated to this many characters
MAX_LOGGED_RESPONSE = 1000


class WebhookDeliveryError(Exception):
    """A delivery attempt failed (non-2xx response or network error)."""

    def __init__(self, message: str, http_status: int | None = None):
        super().__init__(message)
        self.http_status = http_status


def build_body(event: str, payload: dict[str, Any], timestamp: datetime | None = None) -> bytes:
    """
    Serialize the delivery envelope.

    The returned bytes are both signed and sent, so the signature always
    covers exactly what the receiver gets.
    """
    envelope = {
        "event": event,
        "data": payload,
        "timestamp": (timestamp or datetime.now(timezone.utc))
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
    }
    return json.dumps(envelope, separators=(",", ":"), default=str).encode("utf-8")


class WebhookService:
    """Registers, dispatches and delivers customer webhooks."""

    def __init__(
        self,
        db: DatabaseConnection,
        timeout: float = config.WEBHOOK_TIMEOUT_SECONDS,
        max_fail_count: int = config.WEBHOOK_MAX_FAIL_COUNT,
        max_attempts: int | None = None,
    ):
        self.db = db
        self.timeout = timeout
        self.max_fail_count = max_fail_count
        # Delivery jobs run out of attempts no later than the registration is disabled
        self.max_attempts = (
            max_attempts
            if max_attempts is not None
            else min(config.DEFAULT_MAX_ATTEMPTS, max_fail_count)
        )

    # =========================================================================
    # Registration
    # =========================================================================

    def register(
        self,
        customer_id: str,
        url: str,
        secret: str,
        events: list[str],
    ) -> WebhookRegistration:
        """
        Register an endpoint for a customer.

        Args:
            customer_id: Owning customer
            url: http(s) endpoint receiving events
            secret: Shared secret chosen by the customer (only its hash is stored)
            events: Event names to subscribe to (duplicates are dropped)

        Returns:
            The new registration

        Raises:
            ValueError: On an invalid URL, empty secret or unknown event
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid webhook URL: {url}")

        if not secret:
            raise ValueError("Webhook secret is required")

        allowed = [e.value for e in WebhookEvent]
        invalid = [e for e in events if e not in allowed]
        if invalid or not events:
            raise ValueError(
                f"Invalid events: {', '.join(invalid) or '(none)'}. "
                f"Allowed: {', '.join(allowed)}"
            )

        registration = WebhookRegistration(
            id=str(uuid4()),
            customer_id=customer_id,
            url=url,
            secret_hash=compute_sha256(secret.encode("utf-8")),
            events=[WebhookEvent(e) for e in dict.fromkeys(events)],
        )

        with UnitOfWork(self.db) as uow:
            created = uow.webhooks.create(registration)
            uow.commit()

        logger.info(
            "Webhook registered",
            extra={
                "json_fields": {
                    "webhook_id": created.id,
                    "customer_id": customer_id,
                    "events": created.events,
                }
            },
        )
        return created

    def list_for_customer(self, customer_id: str) -> list[WebhookRegistration]:
        """List a customer's registrations."""
        with UnitOfWork(self.db) as uow:
            return uow.webhooks.get_by_customer(customer_id)

    def delete(self, webhook_id: str, customer_id: str) -> bool:
        """
        Delete a registration owned by ``customer_id``.

        Returns:
            False if it does not exist or belongs to another customer
        """
        with UnitOfWork(self.db) as uow:
            webhook = uow.webhooks.get_by_id(webhook_id)
            if webhook is None or webhook.customer_id != customer_id:
                return False
            uow.webhooks.delete_by_id(webhook_id)
            uow.commit()
        return True

    def reactivate(self, webhook_id: str) -> bool:
        """Owner action: make an auto-disabled registration active again."""
        with UnitOfWork(self.db) as uow:
            updated = uow.webhooks.set_status(webhook_id, WebhookStatus.ACTIVE)
            uow.commit()
        return updated

    # =========================================================================
    # Dispatch
    # =========================================================================

    def dispatch(
        self,
        event: WebhookEvent | str,
        customer_id: str | None,
        order_id: str | None,
        payload: dict[str, Any],
    ) -> list[str]:
        """
        Enqueue one delivery job per active registration subscribed to ``event``.

        Never performs HTTP. A registration whose job cannot be enqueued is
        logged and skipped; the others still get their jobs.

        Args:
            event: Event name
            customer_id: Customer to notify (no-op when None)
            order_id: Order the event is about
            payload: Event data sent as ``data``

        Returns:
            IDs of the enqueued jobs
        """
        event = WebhookEvent(event)
        if customer_id is None:
            return []

        with UnitOfWork(self.db) as uow:
            registrations = uow.webhooks.find_active_for_event(customer_id, event)

        job_ids = []
        for registration in registrations:
            job_payload = WebhookDeliveryPayload(
                webhook_id=registration.id,
                event=event.value,
                order_id=order_id,
                payload=payload,
            ).to_payload()
            try:
                with UnitOfWork(self.db) as uow:
                    job_id = uow.jobs.enqueue(
                        JobType.WEBHOOK_DELIVERY,
                        job_payload,
                        max_attempts=self.max_attempts,
                    )
                    uow.commit()
                job_ids.append(job_id)
            except Exception:
                logger.exception(
                    "Failed to enqueue webhook delivery for webhook %s", registration.id
                )

        if job_ids:
            logger.info(
                "Dispatched %s to %s webhook(s)",
                event,
                len(job_ids),
                extra={"json_fields": {"customer_id": customer_id, "order_id": order_id}},
            )
        return job_ids

    # =========================================================================
    # Delivery
    # =========================================================================

    def _post(
        self, webhook: WebhookRegistration, event: str, payload: dict[str, Any]
    ) -> tuple[int | None, str | None, str | None]:
        """
        POST a signed envelope.

        Returns:
            (http_status, response_body, error); error is None on 2xx
        """
        body = build_body(event, payload)
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Event": event,
            "X-Webhook-Signature": sign(webhook.secret_hash, body),
        }

        try:
            response = requests.post(
                webhook.url, data=body, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            return None, None, str(e) or type(e).__name__

        response_body = response.text[:MAX_LOGGED_RESPONSE] if response.text else None
        if 200 <= response.status_code < 300:
            return response.status_code, response_body, None
        return response.status_code, response_body, f"HTTP {response.status_code}"

    def deliver(
        self,
        webhook: WebhookRegistration,
        event: str,
        order_id: str | None,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Send one event and record the outcome.

        On success the registration's fail count is reset. On failure it is
        incremented (deactivating the registration at the threshold) and
        ``WebhookDeliveryError`` is raised so the job queue retries.

        Returns:
            dict with the response status code

        Raises:
            WebhookDeliveryError: On non-2xx response or network error
        """
        http_status, response_body, error = self._post(webhook, event, payload)

        with UnitOfWork(self.db) as uow:
            if error is None:
                uow.delivery_logs.log(
                    webhook.id,
                    event,
                    DeliveryStatus.SUCCESS,
                    order_id=order_id,
                    payload=payload,
                    http_status=http_status,
                    response_body=response_body,
                )
                uow.webhooks.reset_fail_count(webhook.id)
                updated = None
            else:
                uow.delivery_logs.log(
                    webhook.id,
                    event,
                    DeliveryStatus.FAILED,
                    order_id=order_id,
                    payload=payload,
                    http_status=http_status,
                    response_body=response_body,
                    error=error,
                )
                updated = uow.webhooks.increment_fail_count(
                    webhook.id, threshold=self.max_fail_count
                )
            uow.commit()

        if error is None:
            return {"http_status": http_status}

        if updated is not None and updated.status == WebhookStatus.INACTIVE:
            logger.warning(
                "Webhook %s deactivated after %s consecutive failures",
                webhook.id,
                updated.fail_count,
                extra={"json_fields": {"customer_id": webhook.customer_id, "url": webhook.url}},
            )

        raise WebhookDeliveryError(
            f"Webhook {webhook.id} delivery failed: {error}", http_status=http_status
        )

    def send_test(
        self,
        webhook: WebhookRegistration,
        payload: dict[str, Any] | None = None,
        event: str = TEST_EVENT,
    ) -> DeliveryResult:
        """
        Deliver a sample event synchronously, bypassing the queue.

        The attempt is logged but never changes the fail count, so a test can
        not deactivate a registration. Failures are reported, not raised.
        """
        payload = payload if payload is not None else {"message": "Test webhook delivery"}
        started = time.monotonic()
        http_status, response_body, error = self._post(webhook, event, payload)
        duration_ms = int((time.monotonic() - started) * 1000)

        with UnitOfWork(self.db) as uow:
            uow.delivery_logs.log(
                webhook.id,
                event,
                DeliveryStatus.SUCCESS if error is None else DeliveryStatus.FAILED,
                payload=payload,
                http_status=http_status,
                response_body=response_body,
                error=error,
            )
            uow.commit()

        return DeliveryResult(
            success=error is None,
            http_status=http_status,
            error=error,
            duration_ms=duration_ms,
        )
