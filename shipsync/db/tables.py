"""
SQLAlchemy Table definitions for the shipsync database.

Uses SQLAlchemy Core (not ORM) for flexibility with Pydantic models.
Column types are generic so the same metadata runs on PostgreSQL and SQLite;
JSON columns become JSONB on PostgreSQL.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB

metadata = MetaData()

JSONType = JSON().with_variant(JSONB(), "postgresql")

# =============================================================================
# TABLE: jobs
# =============================================================================

jobs = Table(
    "jobs",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("job_type", String(50), nullable=False),
    Column("payload", JSONType, nullable=False, default={}),
    Column("result", JSONType),
    Column("status", String(20), nullable=False, default="pending"),
    Column("attempts", Integer, nullable=False, default=0),
    Column("max_attempts", Integer, nullable=False, default=6),
    Column("last_error", Text),
    # Claim marker
    Column("locked_at", DateTime(timezone=True)),
    Column("locked_by", String(255)),
    Column("scheduled_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("idx_jobs_claim", "job_type", "status", "scheduled_at"),
    Index("idx_jobs_locked_at", "status", "locked_at"),
)

# =============================================================================
# TABLE: customers
# =============================================================================

customers = Table(
    "customers",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("name", String(255), nullable=False),
    Column("webhook_enabled", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

# =============================================================================
# TABLE: orders
# =============================================================================

orders = Table(
    "orders",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("customer_id", Uuid, ForeignKey("customers.id")),
    Column("customer_order_number", String(100)),
    # Carrier
    Column("carrier", String(50), nullable=False, default="YUNEXPRESS"),
    Column("waybill_number", String(100)),
    Column("tracking_number", String(100)),
    # ERP correlation
    Column("erp_order_code", String(100)),
    Column("erp_slip_no", String(100)),
    Column("ecount_link", Text),
    Column("erp_status", String(50)),
    Column("erp_updated", Boolean, nullable=False, default=False),
    Column("erp_tracking_updated", Boolean, nullable=False, default=False),
    # Status
    Column("status", String(20), nullable=False, default="pending"),
    Column("package_status", String(10)),
    Column("order_status", String(10)),
    Column("label_status", String(50)),
    Column("tracking_info", JSONType),
    # Timing
    Column("last_status_check_at", DateTime(timezone=True)),
    Column("last_tracked_at", DateTime(timezone=True)),
    Column("delivered_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("idx_orders_erp_order_code", "erp_order_code"),
    Index("idx_orders_status_check", "status", "last_status_check_at"),
)

# =============================================================================
# TABLE: webhook_registrations
# =============================================================================

webhook_registrations = Table(
    "webhook_registrations",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column(
        "customer_id",
        Uuid,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("url", Text, nullable=False),
    Column("secret_hash", String(64), nullable=False),
    Column("events", JSONType, nullable=False, default=[]),
    Column("status", String(20), nullable=False, default="active"),
    Column("fail_count", Integer, nullable=False, default=0),
    Column("last_triggered_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("idx_webhooks_customer_status", "customer_id", "status"),
)

# =============================================================================
# TABLE: webhook_delivery_logs
# =============================================================================

webhook_delivery_logs = Table(
    "webhook_delivery_logs",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column(
        "webhook_id",
        Uuid,
        ForeignKey("webhook_registrations.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("event", String(50), nullable=False),
    Column("order_id", Uuid),
    Column("payload", JSONType),
    Column("status", String(20), nullable=False),
    Column("http_status", Integer),
    Column("response_body", Text),
    Column("error", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("idx_delivery_logs_webhook", "webhook_id", "created_at"),
)

# =============================================================================
# TABLE: cron_logs
# =============================================================================

cron_logs = Table(
    "cron_logs",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("job_name", String(100), nullable=False),
    Column("status", String(20), nullable=False, default="started"),
    Column("orders_processed", Integer, nullable=False, default=0),
    Column("orders_success", Integer, nullable=False, default=0),
    Column("orders_failed", Integer, nullable=False, default=0),
    Column("orders_updated", Integer, nullable=False, default=0),
    Column("error_message", Text),
    Column("execution_time_ms", Integer),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
)
