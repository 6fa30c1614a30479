"""
Configuration for shipsync services.

Values come from the environment (optionally a local .env file).
"""

import os
import socket
from uuid import uuid4

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
INSTANCE_CONNECTION_NAME = os.getenv("INSTANCE_CONNECTION_NAME")
DB_NAME = os.getenv("DB_NAME", "shipsync")
DB_USER = os.getenv("DB_USER")


def default_worker_id() -> str:
    """Worker name unique per process, also across containers that all run as PID 1."""
    return f"worker-{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


# Worker identity (written to jobs.locked_by)
WORKER_ID = os.getenv("WORKER_ID") or default_worker_id()

# Job queue
DEFAULT_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "6"))
STUCK_JOB_TIMEOUT_MINUTES = int(os.getenv("STUCK_JOB_TIMEOUT_MINUTES", "30"))
STUCK_JOB_SWEEP_SECONDS = int(os.getenv("STUCK_JOB_SWEEP_SECONDS", "60"))
JOB_RETENTION_DAYS = int(os.getenv("JOB_RETENTION_DAYS", "7"))

# Webhooks
WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "5"))
WEBHOOK_MAX_FAIL_COUNT = int(os.getenv("WEBHOOK_MAX_FAIL_COUNT", "5"))

# Producers
STATUS_CHECK_BATCH_SIZE = int(os.getenv("STATUS_CHECK_BATCH_SIZE", "50"))
STATUS_CHECK_INTERVAL_HOURS = int(os.getenv("STATUS_CHECK_INTERVAL_HOURS", "6"))
FETCH_TRACKING_BATCH_SIZE = int(os.getenv("FETCH_TRACKING_BATCH_SIZE", "10"))
ERP_SYNC_MAX_TRIES = int(os.getenv("ERP_SYNC_MAX_TRIES", "3"))
ERP_SYNC_RETRY_WAIT_SECONDS = float(os.getenv("ERP_SYNC_RETRY_WAIT_SECONDS", "30"))

# Operator alerts
TELEGRAM_ENABLED = os.getenv("TELEGRAM_ENABLED", "false").lower() == "true"
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")
TELEGRAM_TIMEOUT_SECONDS = 10

# Scheduler on/off (the worker service can run without producers)
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

# Per job type polling interval and parallelism
WORKER_SETTINGS: dict[str, dict[str, float]] = {
    "webhook_delivery": {"interval_seconds": 3, "concurrency": 5},
    "update_status_ecount": {"interval_seconds": 4, "concurrency": 1},
    "update_tracking_ecount": {"interval_seconds": 4, "concurrency": 1},
    "lookup_docno": {"interval_seconds": 10, "concurrency": 1},
    "tracking_number": {"interval_seconds": 5, "concurrency": 1},
}

# ERP
ECOUNT_HASH_LINK = os.getenv("ECOUNT_HASH_LINK")

# APScheduler timezone for the cron-style producers
SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "UTC")
