"""
ERP boundary.

The ERP is driven through an external gateway (browser automation against
its web UI). Everything here talks to it through ``ERPGateway``.
"""

from typing import Any, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field


class ERPOrderRow(BaseModel):
    """One sales row as scraped from the ERP order list."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    doc_no: Optional[str] = Field(
        default=None, alias="codeThg", description="ERP document number"
    )
    slip_no: Optional[str] = Field(
        default=None, alias="slipNo", description="Slip number, present before a document number exists"
    )
    customer_order_number: Optional[str] = Field(default=None, alias="orderId")
    service: Optional[str] = Field(default=None, description="Shipping service name")
    tracking_last_mile: Optional[str] = Field(default=None, alias="trackingLastMile")
    status: Optional[str] = None
    customer_name: Optional[str] = Field(default=None, alias="customerName")

    def carrier_code(self) -> str:
        """Derive the carrier from the service name."""
        service = (self.service or "").lower()
        for name in ("ups", "fedex", "dhl", "mason"):
            if name in service:
                return name.upper()
        return "YUNEXPRESS"


class ERPError(Exception):
    """Base error raised by ERP gateways."""


class ERPSessionExpiredError(ERPError):
    """The gateway's login session expired; the whole operation can be retried."""


class ERPGateway(Protocol):
    """Operations the ERP gateway provides."""

    def fetch_orders(self) -> list[dict[str, Any]]:
        """Fetch raw sales rows awaiting shipment."""
        ...

    def lookup_doc_no(self, slip_nos: list[str]) -> dict[str, str]:
        """Map slip numbers to ERP document numbers."""
        ...

    def update_tracking(
        self, erp_order_code: str, tracking_number: str, ecount_link: str
    ) -> dict[str, Any]:
        """Write a tracking number onto an ERP record."""
        ...

    def update_status(
        self,
        erp_order_code: str,
        status: str,
        ecount_link: str,
        tracking_number: str | None = None,
    ) -> dict[str, Any]:
        """Write a label status onto an ERP record."""
        ...
