"""
Carrier boundary.

Carrier HTTP clients live outside this package; producers and handlers only
depend on the ``CarrierClient`` protocol and look clients up by carrier code.
"""

from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field


class OrderInfo(BaseModel):
    """Carrier order inquiry data."""

    tracking_number: Optional[str] = Field(
        default=None, description="Last-mile tracking number, once assigned"
    )
    status: Optional[str] = Field(default=None, description="Raw order status code")


class OrderInfoResult(BaseModel):
    """Result of ``CarrierClient.get_order_info``."""

    success: bool
    data: OrderInfo = Field(default_factory=OrderInfo)
    message: Optional[str] = None


class TrackingResult(BaseModel):
    """Result of ``CarrierClient.track_order``."""

    status: Optional[str] = Field(default=None, description="Raw package status code")
    tracking_info: dict[str, Any] = Field(default_factory=dict)


class CarrierClient(Protocol):
    """Capability exposed by every carrier integration."""

    def get_order_info(self, code: str) -> OrderInfoResult:
        """Look up an order by waybill or customer order number."""
        ...

    def track_order(self, tracking_number: str) -> TrackingResult:
        """Fetch the latest package status and tracking events."""
        ...


class CarrierRegistry:
    """Resolves carrier clients by carrier code (case-insensitive)."""

    def __init__(self, clients: dict[str, CarrierClient] | None = None):
        self._clients: dict[str, CarrierClient] = {}
        for code, client in (clients or {}).items():
            self.register(code, client)

    def register(self, code: str, client: CarrierClient):
        self._clients[code.upper()] = client

    def get(self, code: str) -> CarrierClient:
        """
        Get the client for a carrier.

        Raises:
            KeyError: If no client is registered for the code
        """
        try:
            return self._clients[code.upper()]
        except KeyError:
            raise KeyError(f"Unsupported carrier: {code}") from None

    def codes(self) -> list[str]:
        return sorted(self._clients)
