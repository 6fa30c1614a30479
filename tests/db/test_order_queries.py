"""Tests for the OrderRepository queries used by the producers."""

from datetime import timedelta

from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.db.repositories.base import utcnow
from shipsync.models.order import OrderStatus


class TestOrdersNeedingStatusCheck:
    """Tests for get_orders_needing_status_check."""

    def test_selects_due_orders(self, db: DatabaseConnection, make_order):
        """Never-checked and long-unchecked orders are due; recent checks are not."""
        never = make_order()
        stale = make_order(last_status_check_at=utcnow() - timedelta(hours=7))
        make_order(last_status_check_at=utcnow() - timedelta(hours=1))

        with UnitOfWork(db) as uow:
            due = uow.orders.get_orders_needing_status_check(limit=10, check_interval_hours=6)

        assert [o.id for o in due] == [never.id, stale.id]

    def test_excludes_terminal_and_unlinked_orders(self, db: DatabaseConnection, make_order):
        """Delivered, pending, unlinked and carrier-final orders are skipped."""
        make_order(status=OrderStatus.DELIVERED)
        make_order(status=OrderStatus.PENDING)
        make_order(erp_order_code=None)
        make_order(waybill_number=None)
        make_order(order_status="V")
        wanted = make_order(order_status="T")

        with UnitOfWork(db) as uow:
            due = uow.orders.get_orders_needing_status_check()

        assert [o.id for o in due] == [wanted.id]

    def test_mark_status_checked_removes_order(self, db: DatabaseConnection, make_order):
        """A just-checked order is not due again."""
        order = make_order()

        with UnitOfWork(db) as uow:
            uow.orders.mark_status_checked(order.id)
            uow.commit()

        with UnitOfWork(db) as uow:
            assert uow.orders.get_orders_needing_status_check() == []


class TestOrdersMissingTracking:
    """Tests for get_orders_missing_tracking."""

    def test_selects_orders_without_tracking(self, db: DatabaseConnection, make_order):
        """Orders with a tracking number or in a terminal state are skipped."""
        wanted = make_order(tracking_number=None)
        make_order(tracking_number="1Z999")
        make_order(tracking_number=None, status=OrderStatus.CANCELLED)

        with UnitOfWork(db) as uow:
            missing = uow.orders.get_orders_missing_tracking()

        assert [o.id for o in missing] == [wanted.id]

    def test_least_recently_tracked_first(self, db: DatabaseConnection, make_order):
        """Orders just looked up go to the back of the line."""
        first = make_order(tracking_number=None)
        second = make_order(tracking_number=None)

        with UnitOfWork(db) as uow:
            uow.orders.mark_tracking_checked(first.id)
            uow.commit()

        with UnitOfWork(db) as uow:
            missing = uow.orders.get_orders_missing_tracking(limit=1)

        assert [o.id for o in missing] == [second.id]


class TestLookups:
    """Tests for ERP identifier lookups."""

    def test_get_by_erp_order_code_and_slip(self, db: DatabaseConnection, make_order):
        """Orders are found by document number and by slip number."""
        order = make_order(erp_order_code="DOC-1", erp_slip_no="SLIP-1")

        with UnitOfWork(db) as uow:
            assert uow.orders.get_by_erp_order_code("DOC-1").id == order.id
            assert uow.orders.get_by_slip_no("SLIP-1").id == order.id
            assert uow.orders.get_by_erp_order_code("DOC-2") is None
