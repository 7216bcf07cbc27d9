"""Unit tests for the relay's APScheduler jobs."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from carecircle_events.core.settings import OutboxSettings
from carecircle_events.infra.events.outbox import scheduler as relay_scheduler
from carecircle_events.infra.events.outbox.processor import OutboxProcessor
from carecircle_events.infra.events.outbox.scheduler import (
    CLEANUP_JOB_ID,
    REAPER_JOB_ID,
    RELAY_JOB_ID,
    STATS_JOB_ID,
    RelayScheduler,
    start_outbox_relay,
    stop_outbox_relay,
)
from carecircle_events.infra.messaging.publisher import BrokerPublisher


@pytest.fixture
def settings() -> OutboxSettings:
    return OutboxSettings(
        _env_file=None,
        poll_interval=2.0,
        cleanup_hour=4,
        cleanup_minute=30,
        stats_interval_minutes=15,
        reaper_interval_seconds=30,
    )


@pytest.fixture
def relay(settings) -> RelayScheduler:
    processor = OutboxProcessor(BrokerPublisher(None), session_factory=MagicMock())
    return RelayScheduler(processor, settings)


class TestRelayScheduler:
    """Test suite for RelayScheduler."""

    def test_registers_four_jobs(self, relay):
        """Test the relay, cleanup, stats and reaper jobs."""
        status = {job["id"]: job for job in relay.get_job_status()}

        assert set(status) == {RELAY_JOB_ID, CLEANUP_JOB_ID, STATS_JOB_ID, REAPER_JOB_ID}
        assert "hour='4'" in status[CLEANUP_JOB_ID]["trigger"]
        assert "minute='30'" in status[CLEANUP_JOB_ID]["trigger"]
        assert status[RELAY_JOB_ID]["next_run_time"] is None

    async def test_start_and_stop(self, relay):
        """Test the scheduler lifecycle and job defaults on a running loop."""
        relay.start()
        try:
            assert relay.running
            job = relay.scheduler.get_job(RELAY_JOB_ID)
            assert job.max_instances == 1
            assert job.coalesce is True
            status = {entry["id"]: entry for entry in relay.get_job_status()}
            assert status[RELAY_JOB_ID]["next_run_time"] is not None
        finally:
            await relay.stop()

        assert not relay.running

    async def test_restart_after_stop(self, relay):
        """Test that a stopped scheduler is fully stopped and can start again."""
        relay.start()
        await relay.stop()
        relay.start()
        try:
            assert relay.running
            assert relay.scheduler.get_job(RELAY_JOB_ID) is not None
        finally:
            await relay.stop()

        assert not relay.running


class TestStartOutboxRelay:
    """Test suite for the process-wide relay helpers."""

    def test_disabled_relay_not_started(self, monkeypatch):
        """Test that OUTBOX_ENABLED=false schedules nothing."""
        monkeypatch.setattr(
            relay_scheduler,
            "get_outbox_settings",
            lambda: OutboxSettings(_env_file=None, enabled=False),
        )

        assert start_outbox_relay() is None
        assert relay_scheduler.get_outbox_relay() is None

    async def test_stop_clears_process_relay(self, monkeypatch, settings):
        """Test that the process-wide relay is stopped and forgotten."""
        enabled = settings.model_copy(update={"enabled": True})
        monkeypatch.setattr(relay_scheduler, "get_outbox_settings", lambda: enabled)
        monkeypatch.setattr(
            relay_scheduler.OutboxProcessor,
            "from_settings",
            classmethod(
                lambda cls, publisher, settings: cls(
                    BrokerPublisher(None), session_factory=MagicMock()
                )
            ),
        )

        relay = start_outbox_relay()
        assert relay is not None and relay.running

        await stop_outbox_relay()

        assert not relay.running
        assert relay_scheduler.get_outbox_relay() is None
