"""
pytest configuration and fixtures.

Loads environment variables from .env file for all tests and provides a
throwaway SQLite database per test.
"""

from pathlib import Path
from typing import Callable, Generator
from uuid import uuid4

import pytest
from dotenv import load_dotenv

from shipsync.db import DatabaseConnection, UnitOfWork
from shipsync.models.order import Order, OrderStatus
from shipsync.models.webhook import Customer, WebhookRegistration, WebhookStatus
from shipsync.utils.hash import compute_sha256


def pytest_configure(config):
    """Load .env file before running tests"""
    project_root = Path(__file__).parent.parent
    env_file = project_root / ".env"

    if env_file.exists():
        load_dotenv(env_file)


@pytest.fixture
def db(tmp_path: Path) -> Generator[DatabaseConnection, None, None]:
    """File-backed SQLite database with the full schema."""
    database = DatabaseConnection(database_url=f"sqlite:///{tmp_path / 'shipsync.db'}")
    database.initialize()
    database.create_all()
    yield database
    database.close()


@pytest.fixture
def make_customer(db: DatabaseConnection) -> Callable[..., Customer]:
    """Factory inserting customers."""

    def _make(name: str = "Acme", webhook_enabled: bool = True) -> Customer:
        with UnitOfWork(db) as uow:
            customer = uow.customers.create(
                Customer(id=str(uuid4()), name=name, webhook_enabled=webhook_enabled)
            )
            uow.commit()
        return customer

    return _make


@pytest.fixture
def make_order(db: DatabaseConnection) -> Callable[..., Order]:
    """Factory inserting orders linked to an ERP record."""

    def _make(**fields) -> Order:
        defaults = {
            "id": str(uuid4()),
            "customer_order_number": f"CO-{uuid4().hex[:8]}",
            "waybill_number": f"YT{uuid4().hex[:10].upper()}",
            "erp_order_code": f"DOC-{uuid4().hex[:6]}",
            "ecount_link": "https://erp.example.com/ECERP/?hash=abc",
            "status": OrderStatus.CREATED,
        }
        defaults.update(fields)
        with UnitOfWork(db) as uow:
            order = uow.orders.create(Order(**defaults))
            uow.commit()
        return order

    return _make


@pytest.fixture
def make_webhook(db: DatabaseConnection) -> Callable[..., WebhookRegistration]:
    """Factory inserting webhook registrations."""

    def _make(
        customer_id: str,
        events: list[str] | None = None,
        url: str = "https://hooks.example.com/shipsync",
        secret: str = "s3cret",
        status: WebhookStatus = WebhookStatus.ACTIVE,
        fail_count: int = 0,
    ) -> WebhookRegistration:
        with UnitOfWork(db) as uow:
            webhook = uow.webhooks.create(
                WebhookRegistration(
                    id=str(uuid4()),
                    customer_id=customer_id,
                    url=url,
                    secret_hash=compute_sha256(secret.encode("utf-8")),
                    events=events or ["order.status"],
                    status=status,
                    fail_count=fail_count,
                )
            )
            uow.commit()
        return webhook

    return _make
