"""Domain services: webhook delivery and status reconciliation."""

from shipsync.services.reconciliation import (
    ReconciliationOutcome,
    StatusReconciler,
    resolve_label_status,
)
from shipsync.services.webhook import WebhookDeliveryError, WebhookService

__all__ = [
    "ReconciliationOutcome",
    "StatusReconciler",
    "WebhookDeliveryError",
    "WebhookService",
    "resolve_label_status",
]
