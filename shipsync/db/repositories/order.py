"""
Order repository for database operations.

Handles order lookups used by the producers and the ERP handlers.
"""

from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Table, and_, or_, select

from shipsync.db.repositories.base import BaseRepository, as_utc, to_uuid, utcnow
from shipsync.db.tables import orders
from shipsync.models.order import (
    TERMINAL_ORDER_STATUSES,
    LabelStatus,
    Order,
    OrderStatus,
    OrderStatusCode,
)

# Order status codes after which the carrier no longer changes anything
FINAL_ORDER_STATUS_CODES = (
    OrderStatusCode.SIGNED,
    OrderStatusCode.CANCELLED,
    OrderStatusCode.RETURNED,
)


class OrderRepository(BaseRepository[Order]):
    """Repository for Order operations."""

    @property
    def table(self) -> Table:
        return orders

    def _row_to_model(self, row: Any) -> Order:
        """Convert database row to Order model."""
        return Order(
            id=str(row.id),
            customer_id=str(row.customer_id) if row.customer_id else None,
            customer_order_number=row.customer_order_number,
            carrier=row.carrier,
            waybill_number=row.waybill_number,
            tracking_number=row.tracking_number,
            erp_order_code=row.erp_order_code,
            erp_slip_no=row.erp_slip_no,
            ecount_link=row.ecount_link,
            erp_status=row.erp_status,
            erp_updated=bool(row.erp_updated),
            erp_tracking_updated=bool(row.erp_tracking_updated),
            status=OrderStatus(row.status),
            package_status=row.package_status,
            order_status=row.order_status,
            label_status=LabelStatus(row.label_status) if row.label_status else None,
            tracking_info=row.tracking_info,
            last_status_check_at=as_utc(row.last_status_check_at),
            last_tracked_at=as_utc(row.last_tracked_at),
            delivered_at=as_utc(row.delivered_at),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _model_to_dict(self, model: Order) -> dict:
        """Convert Order model to database dict."""
        now = utcnow()
        return {
            "id": UUID(model.id) if model.id else uuid4(),
            "customer_id": UUID(model.customer_id) if model.customer_id else None,
            "customer_order_number": model.customer_order_number,
            "carrier": model.carrier,
            "waybill_number": model.waybill_number,
            "tracking_number": model.tracking_number,
            "erp_order_code": model.erp_order_code,
            "erp_slip_no": model.erp_slip_no,
            "ecount_link": model.ecount_link,
            "erp_status": model.erp_status,
            "erp_updated": model.erp_updated,
            "erp_tracking_updated": model.erp_tracking_updated,
            "status": model.status.value,
            "package_status": model.package_status,
            "order_status": model.order_status,
            "label_status": model.label_status.value if model.label_status else None,
            "tracking_info": model.tracking_info,
            "last_status_check_at": model.last_status_check_at,
            "last_tracked_at": model.last_tracked_at,
            "delivered_at": model.delivered_at,
            "created_at": now,
            "updated_at": now,
        }

    def update_fields(self, order_id: UUID | str, **fields) -> bool:
        """Update fields and bump updated_at."""
        return self.update_by_id(order_id, updated_at=utcnow(), **fields)

    def get_by_erp_order_code(self, erp_order_code: str) -> Order | None:
        """
        Get the most recent order for an ERP document number.

        Args:
            erp_order_code: Document number in the ERP

        Returns:
            Order or None if not found
        """
        stmt = (
            select(self.table)
            .where(self.table.c.erp_order_code == erp_order_code)
            .order_by(self.table.c.created_at.desc())
            .limit(1)
        )
        row = self.session.execute(stmt).fetchone()
        return self._row_to_model(row) if row else None

    def get_by_slip_no(self, slip_no: str) -> Order | None:
        """Get an order by ERP slip number."""
        stmt = select(self.table).where(self.table.c.erp_slip_no == slip_no).limit(1)
        row = self.session.execute(stmt).fetchone()
        return self._row_to_model(row) if row else None

    def get_orders_needing_status_check(
        self, limit: int = 50, check_interval_hours: float = 6
    ) -> list[Order]:
        """
        Get orders whose carrier status should be polled.

        Orders qualify when they have a waybill, are not in a terminal state,
        are linked to an ERP record, and were not checked within the interval.
        Least recently checked orders come first.

        Args:
            limit: Maximum number of orders to return
            check_interval_hours: Minimum time between checks of one order

        Returns:
            List of orders
        """
        cutoff = utcnow() - timedelta(hours=check_interval_hours)
        c = self.table.c
        stmt = (
            select(self.table)
            .where(
                c.waybill_number.is_not(None),
                c.waybill_number != "",
                c.status.not_in(
                    [s.value for s in TERMINAL_ORDER_STATUSES]
                    + [OrderStatus.PENDING.value]
                ),
                or_(
                    c.order_status.is_(None),
                    c.order_status.not_in([s.value for s in FINAL_ORDER_STATUS_CODES]),
                ),
                c.erp_order_code.is_not(None),
                c.ecount_link.is_not(None),
                or_(c.last_status_check_at.is_(None), c.last_status_check_at < cutoff),
            )
            .order_by(c.last_status_check_at.asc().nulls_first(), c.created_at.asc())
            .limit(limit)
        )
        return [self._row_to_model(row) for row in self.session.execute(stmt).fetchall()]

    def get_orders_missing_tracking(self, limit: int = 10) -> list[Order]:
        """
        Get orders that can be looked up at the carrier but have no tracking number.

        Least recently looked-up orders come first, so orders the carrier
        cannot answer for yet do not starve the rest of the backlog.

        Args:
            limit: Maximum number of orders to return

        Returns:
            List of orders
        """
        c = self.table.c
        stmt = (
            select(self.table)
            .where(
                or_(
                    and_(c.waybill_number.is_not(None), c.waybill_number != ""),
                    and_(
                        c.customer_order_number.is_not(None),
                        c.customer_order_number != "",
                    ),
                ),
                or_(c.tracking_number.is_(None), c.tracking_number == ""),
                c.status.not_in([s.value for s in TERMINAL_ORDER_STATUSES]),
            )
            .order_by(c.last_tracked_at.asc().nulls_first(), c.created_at.asc())
            .limit(limit)
        )
        return [self._row_to_model(row) for row in self.session.execute(stmt).fetchall()]

    def mark_status_checked(self, order_id: UUID | str) -> bool:
        """Record that the carrier status was just polled."""
        now = utcnow()
        return self.update_by_id(
            to_uuid(order_id), last_status_check_at=now, updated_at=now
        )

    def mark_tracking_checked(self, order_id: UUID | str) -> bool:
        """Record that the carrier was just asked for a tracking number."""
        now = utcnow()
        return self.update_by_id(to_uuid(order_id), last_tracked_at=now, updated_at=now)
