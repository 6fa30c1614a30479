"""Customer repository for database operations."""

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Table

from shipsync.db.repositories.base import BaseRepository, as_utc, utcnow
from shipsync.db.tables import customers
from shipsync.models.webhook import Customer


class CustomerRepository(BaseRepository[Customer]):
    """Repository for API customers."""

    @property
    def table(self) -> Table:
        return customers

    def _row_to_model(self, row: Any) -> Customer:
        """Convert database row to Customer model."""
        return Customer(
            id=str(row.id),
            name=row.name,
            webhook_enabled=bool(row.webhook_enabled),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _model_to_dict(self, model: Customer) -> dict:
        """Convert Customer model to database dict."""
        now = utcnow()
        return {
            "id": UUID(model.id) if model.id else uuid4(),
            "name": model.name,
            "webhook_enabled": model.webhook_enabled,
            "created_at": now,
            "updated_at": now,
        }

    def set_webhook_enabled(self, customer_id: UUID | str, enabled: bool) -> bool:
        """Toggle delivery of all webhooks for a customer."""
        return self.update_by_id(
            customer_id, webhook_enabled=enabled, updated_at=utcnow()
        )
