"""
Operator alerts over the Telegram Bot API.

Alerts are fire-and-forget: every failure is logged and reported in the
return value, never raised to the caller.
"""

import html
import logging
from datetime import datetime, timezone
from typing import Any

import requests

from shipsync import config

logger = logging.getLogger(__name__)

# Context keys rendered in alerts, in display order
_CONTEXT_LABELS = {
    "action": "Action",
    "order_id": "Order ID",
    "erp_order_code": "ERP Code",
    "tracking_number": "Tracking",
    "waybill_number": "Waybill",
    "job_id": "Job ID",
    "job_type": "Job Type",
    "package_status": "Package Status",
    "order_status": "Order Status",
    "label_status": "Label Status",
    "attempts": "Attempts",
}


class TelegramNotifier:
    """Sends operator alerts to a Telegram chat."""

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
        enabled: bool | None = None,
        timeout: float = config.TELEGRAM_TIMEOUT_SECONDS,
    ):
        self.bot_token = bot_token if bot_token is not None else config.TELEGRAM_BOT_TOKEN
        self.chat_id = chat_id if chat_id is not None else config.TELEGRAM_CHAT_ID
        self.enabled = enabled if enabled is not None else config.TELEGRAM_ENABLED
        self.timeout = timeout

    def send_message(self, message: str) -> dict[str, Any]:
        """
        Send an HTML message to the configured chat.

        Args:
            message: Message text (Telegram HTML subset)

        Returns:
            dict with success flag and message_id, reason or error
        """
        if not self.enabled:
            logger.debug("Telegram notification disabled")
            return {"success": False, "reason": "disabled"}

        if not self.bot_token or not self.chat_id:
            logger.warning("Telegram bot token or chat ID not configured")
            return {"success": False, "reason": "not_configured"}

        try:
            response = requests.post(
                f"https://api.telegram.org/bot{self.bot_token}/sendMessage",
                json={
                    "chat_id": self.chat_id,
                    "text": message,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            message_id = response.json().get("result", {}).get("message_id")
            return {"success": True, "message_id": message_id}
        except (requests.RequestException, ValueError) as e:
            logger.error("Failed to send Telegram message: %s", e)
            return {"success": False, "error": str(e)}

    def notify_error(self, message: str, context: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send an error alert with optional order/job context."""
        return self.send_message(format_alert("ERROR ALERT", message, context or {}))


def format_alert(title: str, message: str, context: dict[str, Any]) -> str:
    """Render an alert as Telegram HTML."""
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    lines = [
        f"<b>{html.escape(title)}</b>",
        "",
        f"<b>Time:</b> {timestamp}",
        f"<b>Message:</b> {html.escape(message)}",
    ]
    for key, label in _CONTEXT_LABELS.items():
        value = context.get(key)
        if value is not None and value != "":
            lines.append(f"<b>{label}:</b> {html.escape(str(value))}")
    return "\n".join(lines)
