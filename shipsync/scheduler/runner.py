"""
APScheduler wiring for the producers.

Each producer becomes one scheduler job. ``max_instances=1`` and
``coalesce=True`` keep a slow run from overlapping the next one or from
being replayed several times after a stall.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from shipsync import config
from shipsync.scheduler.producers import Producer

logger = logging.getLogger(__name__)

JOB_DEFAULTS = {"coalesce": True, "max_instances": 1, "misfire_grace_time": 60}


class ProducerScheduler:
    """Runs producers on their triggers in a background thread."""

    def __init__(
        self,
        producers: list[Producer],
        timezone: str = config.SCHEDULER_TIMEZONE,
    ):
        self.producers = {producer.job_name: producer for producer in producers}
        self.scheduler = BackgroundScheduler(timezone=timezone, job_defaults=JOB_DEFAULTS)

        for producer in producers:
            self.scheduler.add_job(
                producer.run,
                trigger=producer.trigger(),
                id=producer.job_name,
                name=producer.job_name,
                replace_existing=True,
            )

    def start(self):
        self.scheduler.start()
        for job in self.scheduler.get_jobs():
            logger.info("Scheduled %s, next run at %s", job.id, job.next_run_time)

    def shutdown(self, wait: bool = False):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    def run_now(self, job_name: str):
        """
        Run a producer immediately in the calling thread.

        Raises:
            KeyError: If no producer has that name
        """
        return self.producers[job_name].run()
