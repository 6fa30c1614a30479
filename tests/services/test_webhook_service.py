"""
Tests for WebhookService registration, dispatch and delivery.

HTTP is mocked at ``requests.post``.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.db.repositories.job import JobRepository
from shipsync.models.job import JobType
from shipsync.models.webhook import DeliveryStatus, WebhookEvent, WebhookStatus
from shipsync.services.webhook import WebhookDeliveryError, WebhookService, build_body
from shipsync.utils.hash import compute_sha256, verify_signature


def _response(status_code: int, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    return response


@pytest.fixture
def service(db: DatabaseConnection) -> WebhookService:
    return WebhookService(db, timeout=5, max_fail_count=5)


class TestBuildBody:
    """Tests for the delivery envelope."""

    def test_envelope_fields(self):
        """The body carries event, data and an ISO-8601 UTC timestamp."""
        body = json.loads(build_body("order.status", {"orderId": "o1"}))

        assert body["event"] == "order.status"
        assert body["data"] == {"orderId": "o1"}
        assert body["timestamp"].endswith("Z")


class TestRegister:
    """Tests for register."""

    def test_stores_secret_hash_only(self, service: WebhookService, make_customer):
        """Only the SHA-256 of the secret is stored and duplicate events are dropped."""
        customer = make_customer()

        webhook = service.register(
            customer.id,
            "https://hooks.example.com/a",
            "topsecret",
            ["order.status", "order.status", "tracking.updated"],
        )

        assert webhook.secret_hash == compute_sha256(b"topsecret")
        assert webhook.events == [WebhookEvent.ORDER_STATUS, WebhookEvent.TRACKING_UPDATED]
        assert webhook.status == WebhookStatus.ACTIVE
        assert webhook.fail_count == 0

    @pytest.mark.parametrize(
        "url,secret,events",
        [
            ("ftp://hooks.example.com", "s", ["order.status"]),
            ("not a url", "s", ["order.status"]),
            ("https://hooks.example.com", "", ["order.status"]),
            ("https://hooks.example.com", "s", ["order.shipped"]),
            ("https://hooks.example.com", "s", []),
        ],
    )
    def test_rejects_invalid_input(
        self, service: WebhookService, make_customer, url, secret, events
    ):
        """Bad URLs, empty secrets and unknown events are rejected."""
        with pytest.raises(ValueError):
            service.register(make_customer().id, url, secret, events)

    def test_delete_checks_owner(self, service: WebhookService, make_customer, make_webhook):
        """A customer can only delete its own registrations."""
        owner = make_customer()
        webhook = make_webhook(owner.id)

        assert not service.delete(webhook.id, make_customer("Intruder").id)
        assert service.delete(webhook.id, owner.id)
        assert service.list_for_customer(owner.id) == []


class TestDispatch:
    """Tests for dispatch."""

    def test_enqueues_one_job_per_active_subscriber(
        self, db: DatabaseConnection, service: WebhookService, make_customer, make_webhook
    ):
        """Only active registrations subscribed to the event get a job."""
        customer = make_customer()
        subscribed = make_webhook(customer.id, events=["order.status"])
        make_webhook(customer.id, events=["tracking.updated"])
        make_webhook(customer.id, events=["order.status"], status=WebhookStatus.INACTIVE)

        with patch("shipsync.services.webhook.requests.post") as mock_post:
            job_ids = service.dispatch("order.status", customer.id, "order-1", {"x": 1})
            mock_post.assert_not_called()

        assert len(job_ids) == 1
        with UnitOfWork(db) as uow:
            job = uow.jobs.get_by_id(job_ids[0])
        assert job.job_type == JobType.WEBHOOK_DELIVERY
        assert job.max_attempts == 5
        assert job.payload == {
            "webhookId": subscribed.id,
            "event": "order.status",
            "orderId": "order-1",
            "payload": {"x": 1},
        }

    def test_no_customer_is_noop(self, service: WebhookService):
        """Orders without a customer notify nobody."""
        assert service.dispatch("order.status", None, "order-1", {}) == []

    def test_enqueue_failure_does_not_block_others(
        self, service: WebhookService, make_customer, make_webhook
    ):
        """A registration whose job cannot be enqueued is skipped."""
        customer = make_customer()
        make_webhook(customer.id)
        make_webhook(customer.id)

        with patch.object(
            JobRepository, "enqueue", side_effect=[RuntimeError("db hiccup"), "job-2"]
        ):
            job_ids = service.dispatch("order.status", customer.id, "order-1", {})

        assert job_ids == ["job-2"]


class TestDeliver:
    """Tests for deliver."""

    def test_success_posts_signed_body_and_resets_fail_count(
        self, db: DatabaseConnection, service: WebhookService, make_customer, make_webhook
    ):
        """A 2xx response is logged as success and zeroes the fail count."""
        webhook = make_webhook(make_customer().id, secret="s3cret", fail_count=3)

        with patch(
            "shipsync.services.webhook.requests.post", return_value=_response(200, "ok")
        ) as mock_post:
            result = service.deliver(webhook, "order.status", None, {"orderId": "o1"})

        assert result == {"http_status": 200}
        kwargs = mock_post.call_args.kwargs
        body = kwargs["data"]
        headers = kwargs["headers"]
        assert mock_post.call_args.args[0] == webhook.url
        assert kwargs["timeout"] == 5
        assert headers["Content-Type"] == "application/json"
        assert headers["X-Webhook-Event"] == "order.status"
        assert verify_signature(
            compute_sha256(b"s3cret"), body, headers["X-Webhook-Signature"]
        )
        assert json.loads(body)["data"] == {"orderId": "o1"}

        with UnitOfWork(db) as uow:
            assert uow.webhooks.get_by_id(webhook.id).fail_count == 0
            logs = uow.delivery_logs.get_by_webhook(webhook.id)
        assert [log.status for log in logs] == [DeliveryStatus.SUCCESS]
        assert logs[0].response_body == "ok"

    def test_http_error_raises_and_counts(
        self, db: DatabaseConnection, service: WebhookService, make_customer, make_webhook
    ):
        """A non-2xx response is logged, counted and raised."""
        webhook = make_webhook(make_customer().id)

        with patch(
            "shipsync.services.webhook.requests.post", return_value=_response(500, "oops")
        ):
            with pytest.raises(WebhookDeliveryError) as exc_info:
                service.deliver(webhook, "order.status", None, {})

        assert exc_info.value.http_status == 500
        with UnitOfWork(db) as uow:
            assert uow.webhooks.get_by_id(webhook.id).fail_count == 1
            logs = uow.delivery_logs.get_by_webhook(webhook.id)
        assert logs[0].status == DeliveryStatus.FAILED
        assert logs[0].http_status == 500

    def test_network_error_raises(
        self, service: WebhookService, make_customer, make_webhook
    ):
        """Timeouts and connection errors are delivery failures."""
        webhook = make_webhook(make_customer().id)

        with patch(
            "shipsync.services.webhook.requests.post",
            side_effect=requests.Timeout("read timed out"),
        ):
            with pytest.raises(WebhookDeliveryError, match="read timed out"):
                service.deliver(webhook, "order.status", None, {})

    def test_fifth_failure_deactivates(
        self, db: DatabaseConnection, service: WebhookService, make_customer, make_webhook
    ):
        """The registration becomes inactive once fail_count reaches the threshold."""
        webhook = make_webhook(make_customer().id, fail_count=4)

        with patch(
            "shipsync.services.webhook.requests.post", return_value=_response(503)
        ):
            with pytest.raises(WebhookDeliveryError):
                service.deliver(webhook, "order.status", None, {})

        with UnitOfWork(db) as uow:
            reloaded = uow.webhooks.get_by_id(webhook.id)
        assert reloaded.status == WebhookStatus.INACTIVE
        assert reloaded.fail_count == 5


class TestSendTest:
    """Tests for send_test."""

    def test_failure_reported_without_touching_fail_count(
        self, db: DatabaseConnection, service: WebhookService, make_customer, make_webhook
    ):
        """A failing test send is logged but never counts against the registration."""
        webhook = make_webhook(make_customer().id, fail_count=4)

        with patch(
            "shipsync.services.webhook.requests.post", return_value=_response(500)
        ):
            result = service.send_test(webhook)

        assert not result.success
        assert result.http_status == 500
        with UnitOfWork(db) as uow:
            reloaded = uow.webhooks.get_by_id(webhook.id)
            logs = uow.delivery_logs.get_by_webhook(webhook.id)
        assert reloaded.fail_count == 4
        assert reloaded.status == WebhookStatus.ACTIVE
        assert logs[0].event == "webhook.test"

    def test_success_leaves_fail_count_alone(
        self, db: DatabaseConnection, service: WebhookService, make_customer, make_webhook
    ):
        """A 2xx test send reports success without resetting the fail count."""
        webhook = make_webhook(make_customer().id, fail_count=3)

        with patch(
            "shipsync.services.webhook.requests.post", return_value=_response(204)
        ):
            result = service.send_test(webhook, {"hello": "world"})

        assert result.success
        assert result.error is None
        with UnitOfWork(db) as uow:
            assert uow.webhooks.get_by_id(webhook.id).fail_count == 3


class TestFailCountSequence:
    """Consecutive-failure accounting across several deliveries."""

    def _deliver(self, service: WebhookService, webhook, status_code: int):
        with patch(
            "shipsync.services.webhook.requests.post",
            return_value=_response(status_code),
        ):
            if status_code >= 300:
                with pytest.raises(WebhookDeliveryError):
                    service.deliver(webhook, "order.status", None, {})
            else:
                service.deliver(webhook, "order.status", None, {})

    def test_intervening_success_prevents_deactivation(
        self, db: DatabaseConnection, service: WebhookService, make_customer, make_webhook
    ):
        """Four failures, one success, four failures: still active with four failures."""
        webhook = make_webhook(make_customer().id)

        for status_code in [500] * 4 + [200] + [500] * 4:
            self._deliver(service, webhook, status_code)

        with UnitOfWork(db) as uow:
            reloaded = uow.webhooks.get_by_id(webhook.id)
        assert reloaded.status == WebhookStatus.ACTIVE
        assert reloaded.fail_count == 4

    def test_five_consecutive_failures_deactivate(
        self, db: DatabaseConnection, service: WebhookService, make_customer, make_webhook
    ):
        """Without a success in between the fifth failure disables the registration."""
        webhook = make_webhook(make_customer().id)

        for status_code in [200] + [500] * 5:
            self._deliver(service, webhook, status_code)

        with UnitOfWork(db) as uow:
            reloaded = uow.webhooks.get_by_id(webhook.id)
        assert reloaded.status == WebhookStatus.INACTIVE
        assert reloaded.fail_count == 5


class TestReactivate:
    """Tests for reactivate."""

    def test_reactivate_clears_fail_count(
        self, db: DatabaseConnection, service: WebhookService, make_customer, make_webhook
    ):
        """An auto-disabled registration becomes active with a clean counter."""
        webhook = make_webhook(
            make_customer().id, status=WebhookStatus.INACTIVE, fail_count=5
        )

        assert service.reactivate(webhook.id)

        with UnitOfWork(db) as uow:
            reloaded = uow.webhooks.get_by_id(webhook.id)
        assert reloaded.status == WebhookStatus.ACTIVE
        assert reloaded.fail_count == 0

    def test_reactivated_webhook_receives_dispatches(
        self, service: WebhookService, make_customer, make_webhook
    ):
        """Dispatch picks the registration up again once it is reactivated."""
        customer = make_customer()
        webhook = make_webhook(customer.id, status=WebhookStatus.INACTIVE, fail_count=5)
        assert service.dispatch("order.status", customer.id, "order-1", {}) == []

        service.reactivate(webhook.id)

        assert len(service.dispatch("order.status", customer.id, "order-1", {})) == 1

    def test_missing_webhook(self, service: WebhookService):
        """Reactivating an unknown registration reports False."""
        assert not service.reactivate("00000000-0000-0000-0000-000000000000")
