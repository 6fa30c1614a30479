from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field


class CronLogStatus(StrEnum):
    """Status of a producer run"""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class CronLog(BaseModel):
    """Execution record of one producer run."""

    id: str = Field(description="Run identifier (UUID)")
    job_name: str = Field(description="Producer name")
    status: CronLogStatus = Field(default=CronLogStatus.STARTED)
    orders_processed: int = Field(default=0, description="Items looked at")
    orders_success: int = Field(default=0, description="Items handled without error")
    orders_failed: int = Field(default=0, description="Items that raised")
    orders_updated: int = Field(default=0, description="Items that produced a change")
    error_message: Optional[str] = None
    execution_time_ms: Optional[int] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
