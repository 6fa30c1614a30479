from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field


class WebhookEvent(StrEnum):
    """Events a customer can subscribe to"""

    TRACKING_UPDATED = "tracking.updated"
    ORDER_STATUS = "order.status"
    ORDER_EXCEPTION = "order.exception"


# Event name used by synchronous test deliveries
TEST_EVENT = "webhook.test"


class WebhookStatus(StrEnum):
    """Registration status"""

    ACTIVE = "active"
    INACTIVE = "inactive"  # Manually disabled or auto-disabled after failures


class DeliveryStatus(StrEnum):
    """Outcome of one delivery execution"""

    SUCCESS = "success"
    FAILED = "failed"


class Customer(BaseModel):
    """API customer owning webhook registrations."""

    id: str = Field(description="Customer identifier (UUID)")
    name: str = Field(description="Display name")
    webhook_enabled: bool = Field(
        default=True, description="Master switch for all of the customer's webhooks"
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class WebhookRegistration(BaseModel):
    """
    Customer-owned webhook subscription.

    ``secret_hash`` is the SHA-256 hex digest of the secret handed out at
    registration. It doubles as the HMAC key for payload signatures.
    """

    id: str = Field(description="Registration identifier (UUID)")
    customer_id: str = Field(description="Owning customer")
    url: str = Field(description="Endpoint receiving POSTed events")
    secret_hash: str = Field(description="SHA-256 hex digest of the shared secret")
    events: list[WebhookEvent] = Field(
        default_factory=list, description="Subscribed event names"
    )
    status: WebhookStatus = Field(default=WebhookStatus.ACTIVE)
    fail_count: int = Field(
        default=0, description="Consecutive failed deliveries since the last success"
    )
    last_triggered_at: Optional[datetime] = Field(
        default=None, description="Time of the most recent delivery execution"
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DeliveryLog(BaseModel):
    """Append-only record of one delivery execution."""

    id: str
    webhook_id: str
    event: str
    order_id: Optional[str] = None
    payload: Optional[dict[str, Any]] = None
    status: DeliveryStatus
    http_status: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DeliveryResult(BaseModel):
    """Outcome of a synchronous delivery, returned to callers of test sends."""

    success: bool
    http_status: Optional[int] = None
    error: Optional[str] = None
    duration_ms: int = 0
