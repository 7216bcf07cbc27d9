"""Unit tests for the carecircle-events CLI."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

from click.testing import CliRunner
import pytest

from carecircle_events.cli.commands import outbox as outbox_commands
from carecircle_events.cli.main import cli
from carecircle_events.infra.events.outbox.repository import OutboxStats


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def processor(monkeypatch) -> MagicMock:
    """Processor stand-in returned by the outbox commands."""
    processor = MagicMock()
    processor.retention_days = 7
    processor.collect_stats = AsyncMock(return_value=OutboxStats(pending=4, processed=10))
    processor.list_exhausted = AsyncMock(return_value=[])
    processor.run_cleanup = AsyncMock(return_value=3)
    monkeypatch.setattr(outbox_commands, "get_processor", lambda: processor)
    return processor


# ============================================================================
# outbox
# ============================================================================


class TestOutboxCommands:
    """Test suite for the outbox command group."""

    def test_stats_json(self, runner, processor):
        """Test machine-readable statistics."""
        result = runner.invoke(cli, ["outbox", "stats", "--format", "json"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {
            "pending": 4,
            "processing": 0,
            "processed": 10,
            "failed": 0,
            "exhausted": 0,
        }

    def test_stats_table_warns_on_exhausted(self, runner, processor):
        """Test the warning line for exhausted records."""
        processor.collect_stats.return_value = OutboxStats(failed=2, exhausted=2)

        result = runner.invoke(cli, ["outbox", "stats"])

        assert result.exit_code == 0, result.output
        assert "STATUS" in result.output
        assert "2 record(s) exhausted their retries" in result.output

    def test_exhausted_empty(self, runner, processor):
        """Test the message when nothing needs attention."""
        result = runner.invoke(cli, ["outbox", "exhausted"])

        assert result.exit_code == 0
        assert "No exhausted outbox records" in result.output

    def test_exhausted_lists_records(self, runner, processor):
        """Test the exhausted record table."""
        record_id = uuid.uuid4()
        processor.list_exhausted.return_value = [
            MagicMock(
                id=record_id,
                event_type="medication.logged",
                retry_count=5,
                created_at=datetime(2026, 3, 1, tzinfo=UTC),
                last_error="Publish timed out after 10.0s",
            )
        ]

        result = runner.invoke(cli, ["outbox", "exhausted", "--limit", "5"])

        assert result.exit_code == 0, result.output
        assert str(record_id) in result.output
        assert "Publish timed out" in result.output
        processor.list_exhausted.assert_awaited_once_with(5)

    def test_cleanup_default_retention(self, runner, processor):
        """Test cleanup with the configured retention."""
        result = runner.invoke(cli, ["outbox", "cleanup"])

        assert result.exit_code == 0
        assert "Deleted 3 processed record(s) older than 7 day(s)" in result.output
        processor.run_cleanup.assert_awaited_once_with(None)

    def test_cleanup_rejects_zero_days(self, runner, processor):
        """Test the retention bounds."""
        result = runner.invoke(cli, ["outbox", "cleanup", "--days", "0"])

        assert result.exit_code == 2
        processor.run_cleanup.assert_not_awaited()

    def test_relay_requires_broker(self, runner):
        """Test that the relay refuses to run without RabbitMQ."""
        result = runner.invoke(cli, ["outbox", "relay", "--once"])

        assert result.exit_code == 1


# ============================================================================
# topology
# ============================================================================


class TestTopologyCommands:
    """Test suite for the topology command group."""

    def test_show_json(self, runner):
        """Test the JSON topology description."""
        result = runner.invoke(cli, ["topology", "show", "--format", "json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert {x["name"] for x in data["exchanges"]} == {
            "carecircle.domain.events",
            "carecircle.notifications",
            "carecircle.dlx",
            "carecircle.audit",
        }
        assert data["exchange_bindings"] == [
            {
                "source": "carecircle.domain.events",
                "destination": "carecircle.audit",
                "routing_key": "#",
            }
        ]

    def test_show_table(self, runner):
        """Test the human-readable topology."""
        result = runner.invoke(cli, ["topology", "show"])

        assert result.exit_code == 0, result.output
        assert "carecircle.websocket.updates" in result.output
        assert "(fanout)" in result.output

    def test_declare_requires_broker(self, runner):
        """Test that declaring without RabbitMQ fails."""
        result = runner.invoke(cli, ["topology", "declare"])

        assert result.exit_code == 1


class TestCliRoot:
    """Test suite for the root command."""

    def test_version(self, runner):
        """Test --version output."""
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "carecircle-events" in result.output

    def test_help_lists_groups(self, runner):
        """Test that every command group is registered."""
        result = runner.invoke(cli, ["--help"])

        for name in ("outbox", "topology", "db", "serve"):
            assert name in result.output
