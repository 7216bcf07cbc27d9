"""Tests for broker startup and the application lifespan ordering."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from fastapi import FastAPI
import pytest

from carecircle_events.app import lifespan as lifespan_module
from carecircle_events.core.settings import RabbitSettings
from carecircle_events.infra.messaging.subscriptions import Consumers


@pytest.fixture
def patched_messaging(monkeypatch):
    """Replace broker, subscription and topology calls with recording mocks."""
    broker = MagicMock(name="broker")
    mocks = {
        "broker": broker,
        "register": MagicMock(),
        "start": AsyncMock(return_value=broker),
        "declare": AsyncMock(),
    }
    monkeypatch.setattr(lifespan_module, "get_broker", lambda: broker)
    monkeypatch.setattr(lifespan_module, "register_subscriptions", mocks["register"])
    monkeypatch.setattr(lifespan_module, "start_broker", mocks["start"])
    monkeypatch.setattr(lifespan_module, "declare_topology", mocks["declare"])
    return mocks


def _use_settings(monkeypatch, **overrides) -> None:
    settings = RabbitSettings(_env_file=None, **overrides)
    monkeypatch.setattr(lifespan_module, "get_rabbit_settings", lambda: settings)


# ============================================================================
# startup_messaging
# ============================================================================


class TestStartupMessaging:
    """Test suite for startup_messaging()."""

    async def test_subscribes_before_starting_broker(self, monkeypatch, patched_messaging):
        """Test that consumers are registered, then the broker starts, then topology."""
        _use_settings(monkeypatch)
        order: list[str] = []
        patched_messaging["register"].side_effect = lambda *_: order.append("register")
        patched_messaging["start"].side_effect = lambda: order.append("start")
        patched_messaging["declare"].side_effect = lambda _: order.append("declare")
        consumers = Consumers()

        connected = await lifespan_module.startup_messaging(consumers)

        assert connected is True
        assert order == ["register", "start", "declare"]
        patched_messaging["register"].assert_called_once_with(patched_messaging["broker"], consumers)

    async def test_no_broker_returns_false(self, monkeypatch, patched_messaging):
        """Test that a disabled broker skips every step."""
        _use_settings(monkeypatch)
        monkeypatch.setattr(lifespan_module, "get_broker", lambda: None)

        assert await lifespan_module.startup_messaging(Consumers()) is False
        patched_messaging["register"].assert_not_called()
        patched_messaging["start"].assert_not_awaited()

    async def test_consumers_and_topology_can_be_disabled(self, monkeypatch, patched_messaging):
        """Test that the toggles skip subscription and declaration."""
        _use_settings(monkeypatch, consumers_enabled=False, declare_topology=False)

        assert await lifespan_module.startup_messaging(Consumers()) is True
        patched_messaging["register"].assert_not_called()
        patched_messaging["declare"].assert_not_awaited()

    async def test_unavailable_broker_degrades(self, monkeypatch, patched_messaging):
        """Test that a connection failure is tolerated when RabbitMQ is optional."""
        _use_settings(monkeypatch, startup_require_rabbit=False)
        patched_messaging["start"].side_effect = ConnectionError("refused")

        assert await lifespan_module.startup_messaging(Consumers()) is False

    async def test_unavailable_broker_fails_when_required(self, monkeypatch, patched_messaging):
        """Test that a connection failure propagates when RabbitMQ is required."""
        _use_settings(monkeypatch, startup_require_rabbit=True)
        patched_messaging["start"].side_effect = ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await lifespan_module.startup_messaging(Consumers())


# ============================================================================
# lifespan
# ============================================================================


class TestLifespan:
    """Test suite for the lifespan context manager."""

    async def test_shutdown_stops_relay_before_broker(self, monkeypatch):
        """Test that startup runs in order and shutdown runs in reverse."""
        order: list[str] = []

        async def _record_async(name, result=None):
            order.append(name)
            return result

        monkeypatch.setattr(lifespan_module, "setup_logging", lambda: order.append("logging"))
        monkeypatch.setattr(lifespan_module, "init_database", lambda: _record_async("db_up"))
        monkeypatch.setattr(
            lifespan_module, "startup_messaging", lambda _: _record_async("broker_up", True)
        )
        monkeypatch.setattr(lifespan_module, "start_outbox_relay", lambda: order.append("relay_up"))
        monkeypatch.setattr(lifespan_module, "stop_outbox_relay", lambda: _record_async("relay_down"))
        monkeypatch.setattr(lifespan_module, "stop_broker", lambda: _record_async("broker_down"))
        monkeypatch.setattr(lifespan_module, "close_database", lambda: _record_async("db_down"))

        app = FastAPI()
        async with lifespan_module.lifespan(app):
            assert order == ["logging", "db_up", "broker_up", "relay_up"]

        assert order[4:] == ["relay_down", "broker_down", "db_down"]
