"""
Cron log repository.

Producers record one row per run: started when the run begins, then
completed or failed with the aggregate counters.
"""

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Table, select

from shipsync.db.repositories.base import BaseRepository, as_utc, utcnow
from shipsync.db.tables import cron_logs
from shipsync.models.cron_log import CronLog, CronLogStatus


class CronLogRepository(BaseRepository[CronLog]):
    """Repository for producer run logs."""

    @property
    def table(self) -> Table:
        return cron_logs

    def _row_to_model(self, row: Any) -> CronLog:
        """Convert database row to CronLog model."""
        return CronLog(
            id=str(row.id),
            job_name=row.job_name,
            status=CronLogStatus(row.status),
            orders_processed=row.orders_processed or 0,
            orders_success=row.orders_success or 0,
            orders_failed=row.orders_failed or 0,
            orders_updated=row.orders_updated or 0,
            error_message=row.error_message,
            execution_time_ms=row.execution_time_ms,
            started_at=as_utc(row.started_at),
            completed_at=as_utc(row.completed_at),
        )

    def _model_to_dict(self, model: CronLog) -> dict:
        """Convert CronLog model to database dict."""
        return {
            "id": UUID(model.id) if model.id else uuid4(),
            "job_name": model.job_name,
            "status": model.status.value,
            "orders_processed": model.orders_processed,
            "orders_success": model.orders_success,
            "orders_failed": model.orders_failed,
            "orders_updated": model.orders_updated,
            "error_message": model.error_message,
            "execution_time_ms": model.execution_time_ms,
            "started_at": model.started_at,
            "completed_at": model.completed_at,
        }

    def start(self, job_name: str) -> str:
        """
        Open a run record.

        Args:
            job_name: Producer name

        Returns:
            ID of the run record
        """
        return self.create(CronLog(id=str(uuid4()), job_name=job_name)).id

    def finish(
        self,
        log_id: str,
        status: CronLogStatus,
        processed: int = 0,
        success: int = 0,
        failed: int = 0,
        updated: int = 0,
        execution_time_ms: int | None = None,
        error_message: str | None = None,
    ) -> bool:
        """
        Close a run record with its counters.

        Returns:
            True if the record was updated
        """
        return self.update_by_id(
            log_id,
            status=status.value,
            orders_processed=processed,
            orders_success=success,
            orders_failed=failed,
            orders_updated=updated,
            execution_time_ms=execution_time_ms,
            error_message=error_message,
            completed_at=utcnow(),
        )

    def get_recent(self, job_name: str | None = None, limit: int = 20) -> list[CronLog]:
        """List the most recent runs, optionally for one producer."""
        stmt = select(self.table)
        if job_name:
            stmt = stmt.where(self.table.c.job_name == job_name)
        stmt = stmt.order_by(self.table.c.started_at.desc()).limit(limit)
        return [self._row_to_model(row) for row in self.session.execute(stmt).fetchall()]
