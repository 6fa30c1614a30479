"""
Tests for the ERP and carrier job handlers.

The ERP gateway and carrier clients are mocks; orders and jobs live in SQLite.
"""

from unittest.mock import MagicMock

import pytest

from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.integrations.carriers import CarrierRegistry, OrderInfo, OrderInfoResult
from shipsync.models.job import (
    Job,
    JobType,
    LookupDocNoPayload,
    TrackingNumberPayload,
    UpdateStatusPayload,
    UpdateTrackingPayload,
)
from shipsync.models.order import LabelStatus, OrderStatus
from shipsync.services.webhook import WebhookService
from shipsync.utils.notify import TelegramNotifier
from shipsync.worker.handlers import (
    LookupDocNoHandler,
    TrackingNumberHandler,
    UpdateStatusEcountHandler,
    UpdateTrackingEcountHandler,
)
from shipsync.worker.registry import FixedBackoff


@pytest.fixture
def erp() -> MagicMock:
    erp = MagicMock()
    erp.update_tracking.return_value = {"ok": True}
    erp.update_status.return_value = {"ok": True}
    return erp


def _job(job_type: JobType, payload: dict, attempts: int = 0) -> Job:
    return Job(id="job-1", job_type=job_type, payload=payload, attempts=attempts)


def _order(db: DatabaseConnection, order_id: str):
    with UnitOfWork(db) as uow:
        return uow.orders.get_by_id(order_id)


def _status_job(order, status: LabelStatus) -> Job:
    return _job(
        JobType.UPDATE_STATUS_ECOUNT,
        UpdateStatusPayload(
            order_id=order.id,
            erp_order_code=order.erp_order_code,
            tracking_number=order.tracking_number,
            status=status.value,
            ecount_link=order.ecount_link,
        ).to_payload(),
    )


class TestUpdateTrackingEcountHandler:
    """Tests for update_tracking_ecount jobs."""

    def _payload(self, order, tracking_number: str = "1Z999") -> dict:
        return UpdateTrackingPayload(
            order_id=order.id,
            erp_order_code=order.erp_order_code,
            tracking_number=tracking_number,
            ecount_link=order.ecount_link,
        ).to_payload()

    def test_writes_tracking_to_erp(self, db: DatabaseConnection, erp, make_order):
        """The tracking number is sent to the ERP and the order is flagged."""
        order = make_order(tracking_number="1Z999")
        handler = UpdateTrackingEcountHandler(db, erp)

        result = handler.process_job(_job(JobType.UPDATE_TRACKING_ECOUNT, self._payload(order)))

        assert result["success"]
        erp.update_tracking.assert_called_once_with(
            order.erp_order_code, "1Z999", order.ecount_link
        )
        assert _order(db, order.id).erp_tracking_updated

    def test_already_written_is_skipped(self, db: DatabaseConnection, erp, make_order):
        """Re-running after success does not call the ERP again."""
        order = make_order(tracking_number="1Z999", erp_tracking_updated=True)
        handler = UpdateTrackingEcountHandler(db, erp)

        result = handler.process_job(_job(JobType.UPDATE_TRACKING_ECOUNT, self._payload(order)))

        assert result == {"skipped": True, "reason": "already_updated"}
        erp.update_tracking.assert_not_called()

    def test_erp_error_propagates(self, db: DatabaseConnection, erp, make_order):
        """Gateway failures raise so the queue retries."""
        order = make_order(tracking_number="1Z999")
        erp.update_tracking.side_effect = RuntimeError("session expired")
        handler = UpdateTrackingEcountHandler(db, erp)

        with pytest.raises(RuntimeError):
            handler.process_job(_job(JobType.UPDATE_TRACKING_ECOUNT, self._payload(order)))

        assert not _order(db, order.id).erp_tracking_updated

    def test_missing_order_is_skipped(self, db: DatabaseConnection, erp):
        """A job for a deleted order is skipped."""
        handler = UpdateTrackingEcountHandler(db, erp)
        payload = {
            "orderId": "00000000-0000-0000-0000-000000000000",
            "erpOrderCode": "DOC-1",
            "trackingNumber": "1Z",
            "ecountLink": "x",
        }

        result = handler.process_job(_job(JobType.UPDATE_TRACKING_ECOUNT, payload))

        assert result == {"skipped": True, "reason": "order_not_found"}

    def test_malformed_payload_is_skipped(self, db: DatabaseConnection, erp):
        """A payload missing required keys is skipped, not retried."""
        handler = UpdateTrackingEcountHandler(db, erp)

        result = handler.process_job(_job(JobType.UPDATE_TRACKING_ECOUNT, {"orderId": "x"}))

        assert result == {"skipped": True, "reason": "invalid_payload"}


class TestUpdateStatusEcountHandler:
    """Tests for update_status_ecount jobs."""

    def test_writes_status_to_erp(self, db: DatabaseConnection, erp, make_order):
        """The current label is sent to the ERP and recorded on the order."""
        order = make_order(label_status=LabelStatus.SHIPPED, tracking_number="1Z1")
        handler = UpdateStatusEcountHandler(db, erp)

        result = handler.process_job(_status_job(order, LabelStatus.SHIPPED))

        assert result["status"] == "Shipped"
        erp.update_status.assert_called_once_with(
            order.erp_order_code, "Shipped", order.ecount_link, tracking_number="1Z1"
        )
        reloaded = _order(db, order.id)
        assert reloaded.erp_updated
        assert reloaded.erp_status == "Shipped"

    def test_out_of_order_completion_keeps_latest_status(
        self, db: DatabaseConnection, erp, make_order
    ):
        """If the newer update finishes first, the older one is dropped as stale."""
        order = make_order(label_status=LabelStatus.HAVE_BEEN_RECEIVED)
        older = _status_job(order, LabelStatus.SHIPPED)
        newer = _status_job(order, LabelStatus.HAVE_BEEN_RECEIVED)
        handler = UpdateStatusEcountHandler(db, erp)

        handler.process_job(newer)
        result = handler.process_job(older)

        assert result == {"skipped": True, "reason": "stale_status"}
        erp.update_status.assert_called_once()
        assert _order(db, order.id).erp_status == "Have been received"

    def test_in_order_completion_keeps_latest_status(
        self, db: DatabaseConnection, erp, make_order
    ):
        """Completing in enqueue order reaches the same final state."""
        order = make_order(label_status=LabelStatus.HAVE_BEEN_RECEIVED)
        handler = UpdateStatusEcountHandler(db, erp)

        handler.process_job(_status_job(order, LabelStatus.SHIPPED))
        handler.process_job(_status_job(order, LabelStatus.HAVE_BEEN_RECEIVED))

        assert _order(db, order.id).erp_status == "Have been received"


class TestLookupDocNoHandler:
    """Tests for lookup_docno jobs."""

    def test_resolves_found_slips(self, db: DatabaseConnection, erp, make_order):
        """Orders whose slip resolves get their document number; others stay unset."""
        found = make_order(erp_order_code=None, erp_slip_no="S1")
        missing = make_order(erp_order_code=None, erp_slip_no="S2")
        erp.lookup_doc_no.return_value = {"S1": "DOC-100"}
        handler = LookupDocNoHandler(db, erp, MagicMock(spec=TelegramNotifier))
        payload = LookupDocNoPayload(
            slip_nos=["S1", "S2"], order_ids=[found.id, missing.id]
        ).to_payload()

        result = handler.process_job(_job(JobType.LOOKUP_DOCNO, payload))

        assert result == {"success": True, "total": 2, "found": 1}
        assert _order(db, found.id).erp_order_code == "DOC-100"
        assert _order(db, missing.id).erp_order_code is None

    def test_length_mismatch_is_skipped(self, db: DatabaseConnection, erp):
        """Mismatched slip and order lists are skipped without calling the ERP."""
        handler = LookupDocNoHandler(db, erp, MagicMock(spec=TelegramNotifier))
        payload = {"slipNos": ["S1", "S2"], "orderIds": ["o1"]}

        result = handler.process_job(_job(JobType.LOOKUP_DOCNO, payload))

        assert result == {"skipped": True, "reason": "slip_order_mismatch"}
        erp.lookup_doc_no.assert_not_called()

    def test_exhaustion_alerts_operator(self, db: DatabaseConnection, erp):
        """The dead-letter hook sends an operator alert."""
        notifier = MagicMock(spec=TelegramNotifier)
        handler = LookupDocNoHandler(db, erp, notifier)
        job = _job(JobType.LOOKUP_DOCNO, {"slipNos": ["S1"], "orderIds": ["o1"]}, attempts=6)

        handler.on_max_attempts_reached(job, RuntimeError("ERP down"))

        notifier.notify_error.assert_called_once()
        assert "ERP down" in notifier.notify_error.call_args.args[0]


class TestTrackingNumberHandler:
    """Tests for tracking_number jobs."""

    def _handler(self, db: DatabaseConnection, client: MagicMock) -> TrackingNumberHandler:
        return TrackingNumberHandler(
            db, CarrierRegistry({"YUNEXPRESS": client}), WebhookService(db)
        )

    def _payload(self, order) -> dict:
        return TrackingNumberPayload(
            order_id=order.id,
            order_code=order.customer_order_number,
            carrier_code="yunexpress",
        ).to_payload()

    def test_uses_fixed_backoff(self, db: DatabaseConnection):
        """Polling retries on a fixed one-minute interval."""
        handler = self._handler(db, MagicMock())

        assert isinstance(handler.config.backoff, FixedBackoff)
        assert handler.config.backoff.delay_for(4) == 60

    def test_raises_until_number_available(self, db: DatabaseConnection, make_order):
        """No tracking number yet means a retry."""
        order = make_order(status=OrderStatus.PENDING, waybill_number=None)
        client = MagicMock()
        client.get_order_info.return_value = OrderInfoResult(success=True, data=OrderInfo())

        with pytest.raises(RuntimeError, match="not yet available"):
            self._handler(db, client).process_job(
                _job(JobType.TRACKING_NUMBER, self._payload(order))
            )

        client.get_order_info.assert_called_once_with(order.customer_order_number)

    def test_found_number_is_recorded(
        self, db: DatabaseConnection, make_customer, make_order, make_webhook
    ):
        """A found number is stored, queued for the ERP and announced to webhooks."""
        customer = make_customer()
        make_webhook(customer.id, events=["tracking.updated"])
        order = make_order(customer_id=customer.id, status=OrderStatus.PENDING)
        client = MagicMock()
        client.get_order_info.return_value = OrderInfoResult(
            success=True, data=OrderInfo(tracking_number="1ZNEW")
        )

        result = self._handler(db, client).process_job(
            _job(JobType.TRACKING_NUMBER, self._payload(order))
        )

        assert result["tracking_number"] == "1ZNEW"
        assert result["webhook_jobs"] == 1
        reloaded = _order(db, order.id)
        assert reloaded.tracking_number == "1ZNEW"
        assert reloaded.status == OrderStatus.CREATED
        with UnitOfWork(db) as uow:
            [erp_job] = uow.jobs.list_jobs(job_type=JobType.UPDATE_TRACKING_ECOUNT)
        assert erp_job.id == result["erp_job_id"]
        assert erp_job.payload["trackingNumber"] == "1ZNEW"

    def test_order_with_tracking_completes_without_lookup(
        self, db: DatabaseConnection, make_order
    ):
        """Re-running after success is a no-op."""
        order = make_order(tracking_number="1ZOLD")
        client = MagicMock()

        result = self._handler(db, client).process_job(
            _job(JobType.TRACKING_NUMBER, self._payload(order))
        )

        assert result == {"success": True, "tracking_number": "1ZOLD"}
        client.get_order_info.assert_not_called()

    def test_unsupported_carrier_is_skipped(self, db: DatabaseConnection, make_order):
        """Jobs for carriers without a client are skipped."""
        order = make_order()
        handler = TrackingNumberHandler(db, CarrierRegistry(), WebhookService(db))

        result = handler.process_job(_job(JobType.TRACKING_NUMBER, self._payload(order)))

        assert result == {"skipped": True, "reason": "unsupported_carrier"}
