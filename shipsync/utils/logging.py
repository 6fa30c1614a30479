"""
Logging configuration for shipsync services.

On Cloud Run, logs go through google-cloud-logging. Locally, records print to
stdout with any ``extra={"json_fields": {...}}`` appended as JSON.
"""

import json
import logging
import os
import sys

# Flag to track if logging is already configured
_logging_configured = False


class LocalFormatter(logging.Formatter):
    """Formatter that appends json_fields from the extra dict."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        json_fields = getattr(record, "json_fields", None)
        if json_fields:
            fields_str = json.dumps(json_fields, default=str, sort_keys=True)
            message = f"{message} {fields_str}"

        return message


def setup_logging(service_name: str = "shipsync", level: int = logging.INFO):
    """
    Configure root logging once per process.

    Args:
        service_name: Name of the service for log identification
        level: Root log level
    """
    global _logging_configured

    if _logging_configured:
        return

    if os.getenv("K_SERVICE"):
        _setup_cloud_logging(service_name, level)
    else:
        _setup_local_logging(level)

    # APScheduler logs every run at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    _logging_configured = True


def _setup_cloud_logging(service_name: str, level: int):
    """Configure logging for Cloud Run using google-cloud-logging."""
    try:
        import google.cloud.logging

        client = google.cloud.logging.Client()
        client.setup_logging(log_level=level)

        logging.info("Cloud Logging configured for service: %s", service_name)
    except Exception as e:
        _setup_local_logging(level)
        logging.warning("Failed to setup Cloud Logging, using local logging: %s", e)


def _setup_local_logging(level: int):
    """Configure logging for local development."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        LocalFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
