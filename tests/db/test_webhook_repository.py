"""Tests for WebhookRepository fail-count bookkeeping and DeliveryLogRepository."""

from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.models.webhook import DeliveryStatus, WebhookEvent, WebhookStatus


class TestFailCount:
    """Tests for increment_fail_count / reset_fail_count / set_status."""

    def test_increment_below_threshold_stays_active(
        self, db: DatabaseConnection, make_customer, make_webhook
    ):
        """Failures below the threshold only bump the counter."""
        webhook = make_webhook(make_customer().id)

        with UnitOfWork(db) as uow:
            for _ in range(4):
                updated = uow.webhooks.increment_fail_count(webhook.id, threshold=5)
            uow.commit()

        assert updated.fail_count == 4
        assert updated.status == WebhookStatus.ACTIVE
        assert updated.last_triggered_at is not None

    def test_increment_to_threshold_deactivates(
        self, db: DatabaseConnection, make_customer, make_webhook
    ):
        """The failure that reaches the threshold deactivates the registration."""
        webhook = make_webhook(make_customer().id, fail_count=4)

        with UnitOfWork(db) as uow:
            updated = uow.webhooks.increment_fail_count(webhook.id, threshold=5)
            uow.commit()

        assert updated.fail_count == 5
        assert updated.status == WebhookStatus.INACTIVE

    def test_reset_after_success(self, db: DatabaseConnection, make_customer, make_webhook):
        """A success zeroes the counter."""
        webhook = make_webhook(make_customer().id, fail_count=3)

        with UnitOfWork(db) as uow:
            assert uow.webhooks.reset_fail_count(webhook.id)
            uow.commit()

        with UnitOfWork(db) as uow:
            assert uow.webhooks.get_by_id(webhook.id).fail_count == 0

    def test_reactivation_resets_fail_count(
        self, db: DatabaseConnection, make_customer, make_webhook
    ):
        """Re-activating an auto-disabled registration starts from zero failures."""
        webhook = make_webhook(
            make_customer().id, status=WebhookStatus.INACTIVE, fail_count=5
        )

        with UnitOfWork(db) as uow:
            uow.webhooks.set_status(webhook.id, WebhookStatus.ACTIVE)
            uow.commit()

        with UnitOfWork(db) as uow:
            reloaded = uow.webhooks.get_by_id(webhook.id)
        assert reloaded.status == WebhookStatus.ACTIVE
        assert reloaded.fail_count == 0

    def test_increment_missing_webhook_returns_none(self, db: DatabaseConnection):
        """Incrementing an unknown registration returns None."""
        with UnitOfWork(db) as uow:
            assert (
                uow.webhooks.increment_fail_count("00000000-0000-0000-0000-000000000000")
                is None
            )


class TestFindActiveForEvent:
    """Tests for find_active_for_event."""

    def test_filters_by_status_and_event(
        self, db: DatabaseConnection, make_customer, make_webhook
    ):
        """Only active registrations subscribed to the event match."""
        customer = make_customer()
        wanted = make_webhook(customer.id, events=["order.status", "order.exception"])
        make_webhook(customer.id, events=["tracking.updated"])
        make_webhook(customer.id, events=["order.status"], status=WebhookStatus.INACTIVE)
        make_webhook(make_customer("Other").id, events=["order.status"])

        with UnitOfWork(db) as uow:
            found = uow.webhooks.find_active_for_event(customer.id, WebhookEvent.ORDER_STATUS)

        assert [w.id for w in found] == [wanted.id]


class TestDeliveryLog:
    """Tests for DeliveryLogRepository."""

    def test_log_appends_rows(self, db: DatabaseConnection, make_customer, make_webhook):
        """Each call appends one record."""
        webhook = make_webhook(make_customer().id)

        with UnitOfWork(db) as uow:
            uow.delivery_logs.log(
                webhook.id, "order.status", DeliveryStatus.FAILED, error="HTTP 500", http_status=500
            )
            uow.delivery_logs.log(
                webhook.id, "order.status", DeliveryStatus.SUCCESS, http_status=200
            )
            uow.commit()

        with UnitOfWork(db) as uow:
            logs = uow.delivery_logs.get_by_webhook(webhook.id)

        assert [log.status for log in logs] == [DeliveryStatus.FAILED, DeliveryStatus.SUCCESS]
        assert logs[0].error == "HTTP 500"
        assert logs[1].http_status == 200
