from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field


class OrderStatus(StrEnum):
    """Internal shipment lifecycle"""

    PENDING = "pending"  # Imported, carrier order not created yet
    CREATED = "created"  # Carrier order created, waybill assigned
    IN_TRANSIT = "in_transit"  # Moving through the carrier network
    DELIVERED = "delivered"  # Received by the consignee
    RETURNED = "returned"  # Sent back to the shipper
    CANCELLED = "cancelled"  # Cancelled or deleted on either side
    EXCEPTION = "exception"  # Carrier reported a problem


TERMINAL_ORDER_STATUSES = (
    OrderStatus.DELIVERED,
    OrderStatus.RETURNED,
    OrderStatus.CANCELLED,
)


class PackageStatusCode(StrEnum):
    """Raw package status code reported by the carrier tracking feed"""

    DELIVERED = "D"
    RETURNED = "R"
    CANCELLED = "C"
    ABNORMAL = "E"
    IN_TRANSIT = "T"
    FORECASTED = "F"
    NOT_FOUND = "N"


class OrderStatusCode(StrEnum):
    """Raw order status code reported by the carrier order inquiry"""

    DRAFT = "T"
    CANCELLED = "C"
    SCHEDULED = "S"
    RECEIVED = "R"
    OUT_OF_STOCK = "D"  # Left the warehouse
    RETURNED = "F"
    DELETED = "Q"
    CLAIMED = "P"
    SIGNED = "V"
    PROCESSED = "O"


class LabelStatus(StrEnum):
    """Canonical, ERP-facing shipment status"""

    HAVE_BEEN_RECEIVED = "Have been received"
    RETURNED = "Returned"
    DELETED = "Deleted"
    ABNORMAL = "Abnormal"
    IN_TRANSIT = "In Transit"
    RECEIVED = "Received"
    SHIPPED = "Shipped"
    SCHEDULED = "Scheduled"
    PROCESSED = "Processed"
    FORECASTED = "Forecasted"
    NOT_FOUND = "Not Found"
    NEW = "New"
    UNKNOWN = "Unknown"


class Order(BaseModel):
    """A shipment correlated with an ERP sales record."""

    # Identity
    id: str = Field(description="Internal order identifier (UUID)")
    customer_id: Optional[str] = Field(
        default=None, description="Owning API customer (receives webhooks)"
    )
    customer_order_number: Optional[str] = Field(
        default=None, description="Order number as known by the customer"
    )

    # Carrier
    carrier: str = Field(default="YUNEXPRESS", description="Carrier code")
    waybill_number: Optional[str] = Field(default=None, description="Carrier waybill")
    tracking_number: Optional[str] = Field(
        default=None, description="Last-mile tracking number"
    )

    # ERP correlation
    erp_order_code: Optional[str] = Field(
        default=None, description="Document number in the ERP"
    )
    erp_slip_no: Optional[str] = Field(
        default=None, description="ERP slip number (resolved to a document number)"
    )
    ecount_link: Optional[str] = Field(default=None, description="ERP record link")
    erp_status: Optional[str] = Field(
        default=None, description="Label status last written to the ERP"
    )
    erp_updated: bool = Field(default=False, description="ERP status is up to date")
    erp_tracking_updated: bool = Field(
        default=False, description="Tracking number has been written to the ERP"
    )

    # Status
    status: OrderStatus = Field(default=OrderStatus.PENDING)
    package_status: Optional[str] = Field(
        default=None, description="Raw carrier package status code"
    )
    order_status: Optional[str] = Field(
        default=None, description="Raw carrier order status code"
    )
    label_status: Optional[LabelStatus] = Field(
        default=None, description="Derived canonical label"
    )
    tracking_info: Optional[dict[str, Any]] = Field(
        default=None, description="Latest carrier tracking payload"
    )

    # Timing
    last_status_check_at: Optional[datetime] = None
    last_tracked_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
