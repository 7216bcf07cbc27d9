"""APScheduler jobs that drive the outbox relay.

Jobs (all UTC):
- relay tick every ``poll_interval`` seconds
- retention cleanup daily at ``cleanup_hour:cleanup_minute``
- statistics log every ``stats_interval_minutes``
- stale-claim reaper every ``reaper_interval_seconds``

Every job runs with ``max_instances=1`` and ``coalesce=True``, so a slow
tick delays the next one instead of stacking up behind it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from carecircle_events.core.settings import get_outbox_settings
from carecircle_events.infra.events.outbox.processor import OutboxProcessor

if TYPE_CHECKING:
    from datetime import datetime

    from carecircle_events.core.settings import OutboxSettings
    from carecircle_events.infra.messaging.publisher import BrokerPublisher

logger = logging.getLogger(__name__)

RELAY_JOB_ID = "outbox_relay"
CLEANUP_JOB_ID = "outbox_cleanup"
STATS_JOB_ID = "outbox_stats"
REAPER_JOB_ID = "outbox_reaper"

# Global relay instance
_relay: RelayScheduler | None = None


def _isoformat(value: datetime | None) -> str | None:
    # Jobs have no next_run_time until the scheduler starts
    return value.isoformat() if value else None


class RelayScheduler:
    """Owns an AsyncIOScheduler with the relay's periodic jobs.

    Args:
        processor: The relay whose methods the jobs call
        settings: Intervals and the cleanup time
    """

    def __init__(self, processor: OutboxProcessor, settings: OutboxSettings) -> None:
        self.processor = processor
        self.settings = settings
        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Never overlap a job with itself
                "misfire_grace_time": 30,
            },
        )
        self._setup_jobs()

    def _setup_jobs(self) -> None:
        settings = self.settings

        self.scheduler.add_job(
            func=self.processor.process_pending,
            trigger=IntervalTrigger(seconds=settings.poll_interval),
            id=RELAY_JOB_ID,
            name="Relay pending outbox events",
            replace_existing=True,
        )
        self.scheduler.add_job(
            func=self.processor.run_cleanup,
            trigger=CronTrigger(hour=settings.cleanup_hour, minute=settings.cleanup_minute),
            id=CLEANUP_JOB_ID,
            name="Delete processed outbox events past retention",
            replace_existing=True,
        )
        self.scheduler.add_job(
            func=self.processor.log_stats,
            trigger=IntervalTrigger(minutes=settings.stats_interval_minutes),
            id=STATS_JOB_ID,
            name="Log outbox statistics",
            replace_existing=True,
        )
        self.scheduler.add_job(
            func=self.processor.reap_stale_claims,
            trigger=IntervalTrigger(seconds=settings.reaper_interval_seconds),
            id=REAPER_JOB_ID,
            name="Release stale outbox claims",
            replace_existing=True,
        )

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def start(self) -> None:
        """Start the scheduler on the running event loop."""
        if self.scheduler.running:
            logger.warning("Outbox relay scheduler already running")
            return
        self.scheduler.start()
        logger.info(
            "Outbox relay started",
            extra={
                "jobs": len(self.scheduler.get_jobs()),
                "batch_size": self.processor.batch_size,
                "poll_interval": self.settings.poll_interval,
            },
        )

    async def stop(self) -> None:
        """Stop the scheduler without waiting for running jobs.

        AsyncIOScheduler may defer ``shutdown`` to the event loop, so this
        yields once to let it run. The scheduler is stopped on return and
        can be started again.
        """
        if not self.scheduler.running:
            logger.debug("Outbox relay scheduler is not running")
            return
        self.scheduler.shutdown(wait=False)
        await asyncio.sleep(0)
        logger.info("Outbox relay stopped")

    def get_job_status(self) -> list[dict[str, Any]]:
        """Describe every scheduled job."""
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": _isoformat(getattr(job, "next_run_time", None)),
                "trigger": str(job.trigger),
            }
            for job in self.scheduler.get_jobs()
        ]


def start_outbox_relay(publisher: BrokerPublisher | None = None) -> RelayScheduler | None:
    """Start the process-wide relay.

    Returns:
        The running RelayScheduler, or None when the relay is disabled
    """
    global _relay

    settings = get_outbox_settings()
    if not settings.enabled:
        logger.info("Outbox relay disabled, not scheduling")
        return None

    if _relay is None:
        _relay = RelayScheduler(OutboxProcessor.from_settings(publisher, settings), settings)
    _relay.start()
    return _relay


async def stop_outbox_relay() -> None:
    """Stop the process-wide relay."""
    global _relay

    if _relay is not None:
        await _relay.stop()
        _relay = None


def get_outbox_relay() -> RelayScheduler | None:
    """Get the process-wide relay, if started."""
    return _relay


__all__ = [
    "RelayScheduler",
    "get_outbox_relay",
    "start_outbox_relay",
    "stop_outbox_relay",
]
