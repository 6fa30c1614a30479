"""
Carrier/ERP status reconciliation.

``resolve_label_status`` collapses a raw carrier package status and a raw
carrier order status into one canonical label. Rules are checked in order and
the first match wins; some package statuses dominate whatever the order
status says.

``StatusReconciler`` applies a freshly fetched pair of codes to an order and,
when the label changes, persists it, queues the ERP update, alerts operators
for problem labels and notifies the customer's webhooks.
"""

import logging
from typing import Any

from pydantic import BaseModel

from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.db.repositories.base import utcnow
from shipsync.models.job import JobType, UpdateStatusPayload
from shipsync.models.order import (
    LabelStatus,
    Order,
    OrderStatus,
    OrderStatusCode,
    PackageStatusCode,
)
from shipsync.models.webhook import WebhookEvent
from shipsync.services.webhook import WebhookService
from shipsync.utils.notify import TelegramNotifier

logger = logging.getLogger(__name__)

# Labels that page an operator
ALERT_LABELS = (LabelStatus.RETURNED, LabelStatus.DELETED, LabelStatus.ABNORMAL)

# Internal lifecycle implied by each label (labels not listed leave status alone)
LABEL_TO_ORDER_STATUS = {
    LabelStatus.HAVE_BEEN_RECEIVED: OrderStatus.DELIVERED,
    LabelStatus.RETURNED: OrderStatus.RETURNED,
    LabelStatus.DELETED: OrderStatus.CANCELLED,
    LabelStatus.ABNORMAL: OrderStatus.EXCEPTION,
    LabelStatus.IN_TRANSIT: OrderStatus.IN_TRANSIT,
    LabelStatus.RECEIVED: OrderStatus.IN_TRANSIT,
    LabelStatus.SHIPPED: OrderStatus.IN_TRANSIT,
}


def _normalize(code: str | None) -> str | None:
    if code is None:
        return None
    code = code.strip().upper()
    return code or None


def resolve_label_status(
    package_status: str | None, order_status: str | None
) -> LabelStatus:
    """
    Map raw (package status, order status) codes to a label status.

    Codes are compared case-insensitively. Unknown or missing codes fall
    through to ``LabelStatus.UNKNOWN``.

    Examples:
        ("D", "V") -> Have been received
        ("R", any) -> Returned
        ("T", "R") -> Received
        ("T", "D") -> Shipped
        (None, None) -> Unknown
    """
    pkg = _normalize(package_status)
    ord_ = _normalize(order_status)

    if pkg == PackageStatusCode.DELIVERED:
        return LabelStatus.HAVE_BEEN_RECEIVED
    if pkg == PackageStatusCode.RETURNED:
        return LabelStatus.RETURNED
    if pkg == PackageStatusCode.CANCELLED or ord_ in (
        OrderStatusCode.CANCELLED,
        OrderStatusCode.DELETED,
    ):
        return LabelStatus.DELETED
    if pkg == PackageStatusCode.ABNORMAL:
        return LabelStatus.ABNORMAL
    if ord_ in (OrderStatusCode.RETURNED, OrderStatusCode.CLAIMED):
        return LabelStatus.RETURNED
    if ord_ == OrderStatusCode.SIGNED:
        return LabelStatus.HAVE_BEEN_RECEIVED

    if pkg == PackageStatusCode.IN_TRANSIT:
        if ord_ == OrderStatusCode.RECEIVED:
            return LabelStatus.RECEIVED
        if ord_ == OrderStatusCode.OUT_OF_STOCK:
            return LabelStatus.SHIPPED
        return LabelStatus.IN_TRANSIT

    if pkg == PackageStatusCode.FORECASTED:
        if ord_ == OrderStatusCode.SCHEDULED:
            return LabelStatus.SCHEDULED
        if ord_ == OrderStatusCode.PROCESSED:
            return LabelStatus.PROCESSED
        return LabelStatus.FORECASTED

    if pkg == PackageStatusCode.NOT_FOUND:
        return LabelStatus.NOT_FOUND
    if ord_ in (OrderStatusCode.DRAFT, "DRAFT"):
        return LabelStatus.NEW

    return LabelStatus.UNKNOWN


class ReconciliationOutcome(BaseModel):
    """What reconciling one order did."""

    order_id: str
    previous_label: LabelStatus | None = None
    label: LabelStatus
    changed: bool = False
    erp_job_id: str | None = None
    alerted: bool = False
    webhook_job_ids: list[str] = []


class StatusReconciler:
    """Applies carrier status readings to orders."""

    def __init__(
        self,
        db: DatabaseConnection,
        webhook_service: WebhookService,
        notifier: TelegramNotifier,
        erp_update_max_attempts: int = 5,
    ):
        self.db = db
        self.webhook_service = webhook_service
        self.notifier = notifier
        self.erp_update_max_attempts = erp_update_max_attempts

    def reconcile(
        self,
        order: Order,
        package_status: str | None,
        order_status: str | None,
        tracking_info: dict[str, Any] | None = None,
    ) -> ReconciliationOutcome:
        """
        Reconcile one order against freshly fetched carrier codes.

        An "Unknown" result or an unchanged label records only the check time.
        A new label is persisted together with its update_status_ecount job in
        one transaction; the operator alert and webhook dispatch follow and
        never fail the reconciliation.

        Args:
            order: Order as currently stored
            package_status: Raw package status from carrier tracking
            order_status: Raw order status from carrier order inquiry
            tracking_info: Latest tracking payload to store alongside

        Returns:
            Outcome describing what was changed
        """
        label = resolve_label_status(package_status, order_status)
        outcome = ReconciliationOutcome(
            order_id=order.id, previous_label=order.label_status, label=label
        )

        if label == LabelStatus.UNKNOWN or label == order.label_status:
            with UnitOfWork(self.db) as uow:
                uow.orders.mark_status_checked(order.id)
                uow.commit()
            if label == LabelStatus.UNKNOWN:
                logger.info(
                    "Order %s status unresolved (package=%s, order=%s)",
                    order.id,
                    package_status,
                    order_status,
                )
            return outcome

        now = utcnow()
        fields: dict[str, Any] = {
            "package_status": _normalize(package_status),
            "order_status": _normalize(order_status),
            "label_status": label.value,
            "erp_updated": False,
            "last_status_check_at": now,
            "last_tracked_at": now,
        }
        if tracking_info is not None:
            fields["tracking_info"] = tracking_info
        new_status = LABEL_TO_ORDER_STATUS.get(label)
        if new_status is not None:
            fields["status"] = new_status.value
            if new_status == OrderStatus.DELIVERED and order.delivered_at is None:
                fields["delivered_at"] = now

        with UnitOfWork(self.db) as uow:
            uow.orders.update_fields(order.id, **fields)
            if order.erp_order_code and order.ecount_link:
                outcome.erp_job_id = uow.jobs.enqueue(
                    JobType.UPDATE_STATUS_ECOUNT,
                    UpdateStatusPayload(
                        order_id=order.id,
                        erp_order_code=order.erp_order_code,
                        tracking_number=order.tracking_number,
                        status=label.value,
                        ecount_link=order.ecount_link,
                    ).to_payload(),
                    max_attempts=self.erp_update_max_attempts,
                )
            uow.commit()

        outcome.changed = True
        logger.info(
            "Order %s label changed: %s -> %s",
            order.id,
            order.label_status,
            label,
            extra={
                "json_fields": {
                    "package_status": package_status,
                    "order_status": order_status,
                    "erp_job_id": outcome.erp_job_id,
                }
            },
        )

        if label in ALERT_LABELS:
            outcome.alerted = self._alert(order, label, package_status, order_status)

        outcome.webhook_job_ids = self._notify_customer(order, label, tracking_info)
        return outcome

    def _alert(
        self,
        order: Order,
        label: LabelStatus,
        package_status: str | None,
        order_status: str | None,
    ) -> bool:
        try:
            result = self.notifier.notify_error(
                f"Order status changed to {label}",
                {
                    "action": "Track Express Status",
                    "order_id": order.customer_order_number or order.id,
                    "erp_order_code": order.erp_order_code,
                    "waybill_number": order.waybill_number,
                    "tracking_number": order.tracking_number,
                    "package_status": package_status,
                    "order_status": order_status,
                    "label_status": label.value,
                },
            )
        except Exception:
            logger.exception("Operator alert failed for order %s", order.id)
            return False
        return bool(result.get("success"))

    def _notify_customer(
        self, order: Order, label: LabelStatus, tracking_info: dict[str, Any] | None
    ) -> list[str]:
        if order.customer_id is None:
            return []

        payload = {
            "orderId": order.id,
            "customerOrderNumber": order.customer_order_number,
            "trackingNumber": order.tracking_number,
            "waybillNumber": order.waybill_number,
            "labelStatus": label.value,
            "trackingInfo": tracking_info,
        }
        events = [WebhookEvent.ORDER_STATUS]
        if label in ALERT_LABELS:
            events.append(WebhookEvent.ORDER_EXCEPTION)

        job_ids: list[str] = []
        for event in events:
            try:
                job_ids.extend(
                    self.webhook_service.dispatch(
                        event, order.customer_id, order.id, payload
                    )
                )
            except Exception:
                logger.exception("Webhook dispatch failed for order %s", order.id)
        return job_ids
