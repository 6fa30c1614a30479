from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobType(StrEnum):
    """Type of queued background job"""

    UPDATE_TRACKING_ECOUNT = "update_tracking_ecount"  # Push tracking number to ERP
    UPDATE_STATUS_ECOUNT = "update_status_ecount"  # Push label status to ERP
    WEBHOOK_DELIVERY = "webhook_delivery"  # POST an event to a customer endpoint
    LOOKUP_DOCNO = "lookup_docno"  # Resolve ERP document numbers for slips
    TRACKING_NUMBER = "tracking_number"  # Poll carrier until a tracking number exists


class JobStatus(StrEnum):
    """Status of a queued job"""

    PENDING = "pending"  # Waiting to be claimed (possibly scheduled in the future)
    PROCESSING = "processing"  # Claimed by a worker
    COMPLETED = "completed"  # Handler succeeded
    FAILED = "failed"  # Attempts exhausted


TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(BaseModel):
    """
    Durable unit of deferred work.

    Rows are created by producers, claimed by exactly one worker at a time,
    and retried with backoff until ``max_attempts`` is reached.
    """

    # Identity
    id: str = Field(description="Job identifier (UUID)")
    job_type: JobType = Field(description="Selects the handler that runs the job")

    # Payload
    payload: dict[str, Any] = Field(
        default_factory=dict, description="Handler-specific input"
    )
    result: Optional[dict[str, Any]] = Field(
        default=None, description="Handler return value (observability only)"
    )

    # Status
    status: JobStatus = Field(default=JobStatus.PENDING, description="Queue status")
    attempts: int = Field(default=0, description="Failed executions so far")
    max_attempts: int = Field(default=6, description="Attempts before terminal failure")
    last_error: Optional[str] = Field(
        default=None, description="Error from the most recent failed execution"
    )

    # Claim marker
    locked_at: Optional[datetime] = Field(
        default=None, description="When the current claim was taken"
    )
    locked_by: Optional[str] = Field(
        default=None, description="Worker holding the current claim"
    )

    # Timing
    scheduled_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Earliest time the job may be claimed",
    )
    completed_at: Optional[datetime] = Field(
        default=None, description="When the job reached a terminal status"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Record creation time",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Last update time",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "0f6d9a0e-2f4e-4f5b-9a39-0b7a2b1f8d11",
                "job_type": "webhook_delivery",
                "payload": {
                    "webhookId": "8c1f3c55-7d1e-4a8a-b0a2-6b5d2f6f2e01",
                    "event": "order.status",
                    "orderId": "4b7f0b0c-1e8c-4d7f-9b3a-9f2c1e6b7a55",
                    "payload": {"labelStatus": "Shipped"},
                },
                "status": "pending",
                "attempts": 1,
                "max_attempts": 6,
                "last_error": "HTTP 503",
                "scheduled_at": "2026-03-02T10:00:10Z",
            }
        }
    )


# =============================================================================
# Job payloads
# =============================================================================


class _Payload(BaseModel):
    """Payloads are stored with camelCase keys and accept snake_case on input."""

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class UpdateTrackingPayload(_Payload):
    order_id: str = Field(alias="orderId")
    erp_order_code: str = Field(alias="erpOrderCode")
    tracking_number: str = Field(alias="trackingNumber")
    ecount_link: str = Field(alias="ecountLink")


class UpdateStatusPayload(_Payload):
    order_id: str = Field(alias="orderId")
    erp_order_code: str = Field(alias="erpOrderCode")
    tracking_number: Optional[str] = Field(default=None, alias="trackingNumber")
    status: str = Field(description="Label status to write to the ERP")
    ecount_link: str = Field(alias="ecountLink")


class WebhookDeliveryPayload(_Payload):
    webhook_id: str = Field(alias="webhookId")
    event: str
    order_id: Optional[str] = Field(default=None, alias="orderId")
    payload: dict[str, Any] = Field(default_factory=dict)


class LookupDocNoPayload(_Payload):
    slip_nos: list[str] = Field(alias="slipNos")
    order_ids: list[str] = Field(alias="orderIds")


class TrackingNumberPayload(_Payload):
    order_id: str = Field(alias="orderId")
    order_code: str = Field(
        alias="orderCode", description="Code the carrier knows the order by"
    )
    carrier_code: str = Field(alias="carrierCode")
