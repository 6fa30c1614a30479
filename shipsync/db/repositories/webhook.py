"""
Webhook repositories for registrations and delivery logs.

Fail-count bookkeeping is done in single UPDATE statements so concurrent
deliveries to the same endpoint cannot lose increments.
"""

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Table, case, select, update

from shipsync import config
from shipsync.db.repositories.base import BaseRepository, as_utc, to_uuid, utcnow
from shipsync.db.tables import webhook_delivery_logs, webhook_registrations
from shipsync.models.webhook import (
    DeliveryLog,
    DeliveryStatus,
    WebhookEvent,
    WebhookRegistration,
    WebhookStatus,
)


class WebhookRepository(BaseRepository[WebhookRegistration]):
    """Repository for webhook registrations."""

    @property
    def table(self) -> Table:
        return webhook_registrations

    def _row_to_model(self, row: Any) -> WebhookRegistration:
        """Convert database row to WebhookRegistration model."""
        return WebhookRegistration(
            id=str(row.id),
            customer_id=str(row.customer_id),
            url=row.url,
            secret_hash=row.secret_hash,
            events=[WebhookEvent(e) for e in row.events or []],
            status=WebhookStatus(row.status),
            fail_count=row.fail_count or 0,
            last_triggered_at=as_utc(row.last_triggered_at),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _model_to_dict(self, model: WebhookRegistration) -> dict:
        """Convert WebhookRegistration model to database dict."""
        now = utcnow()
        return {
            "id": UUID(model.id) if model.id else uuid4(),
            "customer_id": UUID(model.customer_id),
            "url": model.url,
            "secret_hash": model.secret_hash,
            "events": [e.value for e in model.events],
            "status": model.status.value,
            "fail_count": model.fail_count,
            "last_triggered_at": model.last_triggered_at,
            "created_at": now,
            "updated_at": now,
        }

    def get_by_customer(self, customer_id: UUID | str) -> list[WebhookRegistration]:
        """List all registrations owned by a customer."""
        stmt = (
            select(self.table)
            .where(self.table.c.customer_id == to_uuid(customer_id))
            .order_by(self.table.c.created_at.asc())
        )
        return [self._row_to_model(row) for row in self.session.execute(stmt).fetchall()]

    def find_active_for_event(
        self, customer_id: UUID | str, event: WebhookEvent | str
    ) -> list[WebhookRegistration]:
        """
        Get the customer's active registrations subscribed to an event.

        Args:
            customer_id: Owning customer
            event: Event name

        Returns:
            Matching registrations
        """
        stmt = select(self.table).where(
            self.table.c.customer_id == to_uuid(customer_id),
            self.table.c.status == WebhookStatus.ACTIVE.value,
        )
        registrations = [
            self._row_to_model(row) for row in self.session.execute(stmt).fetchall()
        ]
        # events is a JSON array; membership is checked here to stay portable
        return [r for r in registrations if event in r.events]

    def increment_fail_count(
        self,
        webhook_id: UUID | str,
        threshold: int = config.WEBHOOK_MAX_FAIL_COUNT,
    ) -> WebhookRegistration | None:
        """
        Count a failed delivery, deactivating the registration at the threshold.

        Args:
            webhook_id: Registration ID
            threshold: Fail count at which the registration becomes inactive

        Returns:
            Updated registration or None if not found
        """
        c = self.table.c
        now = utcnow()
        stmt = (
            update(self.table)
            .where(c.id == to_uuid(webhook_id))
            .values(
                fail_count=c.fail_count + 1,
                status=case(
                    (c.fail_count + 1 >= threshold, WebhookStatus.INACTIVE.value),
                    else_=c.status,
                ),
                last_triggered_at=now,
                updated_at=now,
            )
        )
        self.session.execute(stmt)
        return self.get_by_id(webhook_id)

    def reset_fail_count(self, webhook_id: UUID | str) -> bool:
        """Zero the fail count after a successful delivery."""
        now = utcnow()
        return self.update_by_id(
            webhook_id, fail_count=0, last_triggered_at=now, updated_at=now
        )

    def set_status(self, webhook_id: UUID | str, status: WebhookStatus) -> bool:
        """Explicitly activate or deactivate a registration."""
        fields: dict[str, Any] = {"status": status.value, "updated_at": utcnow()}
        if status == WebhookStatus.ACTIVE:
            fields["fail_count"] = 0
        return self.update_by_id(webhook_id, **fields)


class DeliveryLogRepository(BaseRepository[DeliveryLog]):
    """Append-only repository for webhook delivery logs."""

    @property
    def table(self) -> Table:
        return webhook_delivery_logs

    def _row_to_model(self, row: Any) -> DeliveryLog:
        """Convert database row to DeliveryLog model."""
        return DeliveryLog(
            id=str(row.id),
            webhook_id=str(row.webhook_id),
            event=row.event,
            order_id=str(row.order_id) if row.order_id else None,
            payload=row.payload,
            status=DeliveryStatus(row.status),
            http_status=row.http_status,
            response_body=row.response_body,
            error=row.error,
            created_at=as_utc(row.created_at),
        )

    def _model_to_dict(self, model: DeliveryLog) -> dict:
        """Convert DeliveryLog model to database dict."""
        return {
            "id": UUID(model.id) if model.id else uuid4(),
            "webhook_id": UUID(model.webhook_id),
            "event": model.event,
            "order_id": UUID(model.order_id) if model.order_id else None,
            "payload": model.payload,
            "status": model.status.value,
            "http_status": model.http_status,
            "response_body": model.response_body,
            "error": model.error,
            "created_at": utcnow(),
        }

    def log(
        self,
        webhook_id: str,
        event: str,
        status: DeliveryStatus,
        order_id: str | None = None,
        payload: dict[str, Any] | None = None,
        http_status: int | None = None,
        response_body: str | None = None,
        error: str | None = None,
    ) -> DeliveryLog:
        """Append one delivery record."""
        return self.create(
            DeliveryLog(
                id=str(uuid4()),
                webhook_id=webhook_id,
                event=event,
                order_id=order_id,
                payload=payload,
                status=status,
                http_status=http_status,
                response_body=response_body,
                error=error,
            )
        )

    def get_by_webhook(
        self, webhook_id: UUID | str, limit: int = 100
    ) -> list[DeliveryLog]:
        """List delivery records for a registration, oldest first."""
        stmt = (
            select(self.table)
            .where(self.table.c.webhook_id == to_uuid(webhook_id))
            .order_by(self.table.c.created_at.asc())
            .limit(limit)
        )
        return [self._row_to_model(row) for row in self.session.execute(stmt).fetchall()]
