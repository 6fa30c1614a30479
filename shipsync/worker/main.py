"""
shipsync Worker - Main FastAPI Application.

Hosts the worker pools and the producer scheduler for the lifetime of the
process and exposes health and queue statistics endpoints.
"""

import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request

from shipsync import config
from shipsync.db import DatabaseConnection
from shipsync.integrations.carriers import CarrierRegistry
from shipsync.integrations.erp import ERPGateway
from shipsync.scheduler import (
    CleanupJobsProducer,
    FetchTrackingProducer,
    JobQueue,
    ProducerScheduler,
    SyncOrdersProducer,
    UpdateStatusProducer,
)
from shipsync.services import StatusReconciler, WebhookService
from shipsync.utils.logging import setup_logging
from shipsync.utils.notify import TelegramNotifier
from shipsync.worker.manager import WorkerManager, build_registry

# Load environment variables
load_dotenv()

# Configure logging early
setup_logging("shipsync-worker")


def build_producers(
    db: DatabaseConnection,
    webhook_service: WebhookService,
    notifier: TelegramNotifier,
    carriers: CarrierRegistry | None = None,
    erp: ERPGateway | None = None,
) -> list:
    """Producers the available integrations allow; cleanup always runs."""
    producers: list = [CleanupJobsProducer(db)]

    if carriers is not None:
        reconciler = StatusReconciler(db, webhook_service, notifier)
        producers.append(UpdateStatusProducer(db, carriers, reconciler))
        producers.append(FetchTrackingProducer(db, carriers, webhook_service))

    if erp is not None:
        producers.append(SyncOrdersProducer(db, erp, JobQueue(db)))

    return producers


def create_app(
    db: DatabaseConnection | None = None,
    carriers: CarrierRegistry | None = None,
    erp: ERPGateway | None = None,
    run_workers: bool = True,
    run_scheduler: bool = config.SCHEDULER_ENABLED,
) -> FastAPI:
    """
    Create the worker application.

    Args:
        db: Database connection (built from the environment if omitted)
        carriers: Carrier clients; without them carrier jobs and producers are off
        erp: ERP gateway; without it ERP jobs and the order sync are off
        run_workers: Start the worker pools
        run_scheduler: Start the producer scheduler
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events."""
        # Startup
        print("🔨 Starting shipsync Worker Service...")
        print(f"   Environment: {os.getenv('GOOGLE_CLOUD_PROJECT', 'local')}")

        database = db or DatabaseConnection.from_env()
        database.initialize()
        print("   Database: Connected")

        webhook_service = WebhookService(database)
        notifier = TelegramNotifier()
        registry = build_registry(database, webhook_service, notifier, carriers, erp)

        manager = WorkerManager(database, registry)
        scheduler = ProducerScheduler(
            build_producers(database, webhook_service, notifier, carriers, erp)
        )

        app.state.db = database
        app.state.job_queue = JobQueue(database)
        app.state.manager = manager
        app.state.scheduler = scheduler
        app.state.workers_running = run_workers

        if run_workers:
            manager.start()
            print(f"   Workers: {', '.join(h.job_type.value for h in registry)}")
        if run_scheduler:
            scheduler.start()
            print(f"   Scheduler: {', '.join(scheduler.producers)}")

        yield

        # Shutdown
        if run_scheduler:
            scheduler.shutdown()
        if run_workers:
            manager.stop()

        if db is None:
            database.close()
            print("   Database: Connection closed")

        print("👋 Shutting down shipsync Worker Service...")

    app = FastAPI(
        title="shipsync Worker API",
        description="Job queue workers and scheduled producers for shipment sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/")
    async def root():
        """Root endpoint - service information."""
        return {
            "service": "shipsync Worker API",
            "version": "0.1.0",
            "status": "operational",
            "description": "Job queue workers and scheduled producers",
        }

    @app.get("/health")
    async def health_check(request: Request):
        """
        Health check endpoint for Cloud Run.

        Returns:
            dict: Health status
        """
        state = request.app.state
        return {
            "status": "healthy",
            "service": "shipsync-worker",
            "environment": os.getenv("GOOGLE_CLOUD_PROJECT", "local"),
            "workers": [pool.job_type for pool in state.manager.pools]
            if state.workers_running
            else [],
            "scheduler": state.scheduler.scheduler.running,
        }

    @app.get("/jobs/stats")
    def job_stats(request: Request):
        """Job counts per status."""
        return request.app.state.job_queue.get_stats()

    return app


app = create_app()
