"""
External system boundaries (carriers and the ERP).

Only protocols and result models live here; concrete clients are supplied
by the deployment.
"""

from shipsync.integrations.carriers import (
    CarrierClient,
    CarrierRegistry,
    OrderInfo,
    OrderInfoResult,
    TrackingResult,
)
from shipsync.integrations.erp import (
    ERPError,
    ERPGateway,
    ERPOrderRow,
    ERPSessionExpiredError,
)

__all__ = [
    "CarrierClient",
    "CarrierRegistry",
    "ERPError",
    "ERPGateway",
    "ERPOrderRow",
    "ERPSessionExpiredError",
    "OrderInfo",
    "OrderInfoResult",
    "TrackingResult",
]
