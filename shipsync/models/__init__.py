"""
shipsync data models.

Pydantic models for jobs, orders, webhooks and producer run logs.
"""

# Cron log models
from shipsync.models.cron_log import CronLog, CronLogStatus

# Job models
from shipsync.models.job import (
    Job,
    JobStatus,
    JobType,
    LookupDocNoPayload,
    TrackingNumberPayload,
    UpdateStatusPayload,
    UpdateTrackingPayload,
    WebhookDeliveryPayload,
)

# Order models
from shipsync.models.order import (
    LabelStatus,
    Order,
    OrderStatus,
    OrderStatusCode,
    PackageStatusCode,
)

# Webhook models
from shipsync.models.webhook import (
    Customer,
    DeliveryLog,
    DeliveryResult,
    DeliveryStatus,
    WebhookEvent,
    WebhookRegistration,
    WebhookStatus,
)

__all__ = [
    # Cron log models
    "CronLog",
    "CronLogStatus",
    # Job models
    "Job",
    "JobStatus",
    "JobType",
    "LookupDocNoPayload",
    "TrackingNumberPayload",
    "UpdateStatusPayload",
    "UpdateTrackingPayload",
    "WebhookDeliveryPayload",
    # Order models
    "LabelStatus",
    "Order",
    "OrderStatus",
    "OrderStatusCode",
    "PackageStatusCode",
    # Webhook models
    "Customer",
    "DeliveryLog",
    "DeliveryResult",
    "DeliveryStatus",
    "WebhookEvent",
    "WebhookRegistration",
    "WebhookStatus",
]
