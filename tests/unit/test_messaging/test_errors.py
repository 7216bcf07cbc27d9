"""Unit tests for failure classification."""

from __future__ import annotations

import json

import pytest

from carecircle_events.core.exceptions import (
    ConsumerProcessingError,
    PermanentDeliveryError,
    TransientBrokerError,
)
from carecircle_events.infra.messaging.errors import (
    classify_publish_error,
    is_transient_error,
    register_permanent,
    unregister_permanent,
)


class DeviceTokenRevokedError(Exception):
    """Raised by a push provider for an unregistered device."""


class TestIsTransientError:
    """Test suite for is_transient_error()."""

    @pytest.mark.parametrize(
        "exc",
        [
            ConnectionError("reset"),
            TimeoutError(),
            OSError("network unreachable"),
            RuntimeError("upstream temporarily unavailable"),
            RuntimeError("Rate limit exceeded"),
            TransientBrokerError("broker down"),
        ],
    )
    def test_transient(self, exc):
        """Test failures that may clear on their own."""
        assert is_transient_error(exc) is True

    @pytest.mark.parametrize(
        "exc",
        [
            ValueError("bad payload"),
            KeyError("familyId"),
            json.JSONDecodeError("Expecting value", "", 0),
            PermanentDeliveryError("unknown exchange"),
        ],
    )
    def test_permanent(self, exc):
        """Test failures that repeat on every attempt."""
        assert is_transient_error(exc) is False

    def test_explicit_transient_flag_wins(self):
        """Test that ConsumerProcessingError carries its own verdict."""
        assert is_transient_error(ConsumerProcessingError("x", transient=False)) is False
        assert is_transient_error(ConsumerProcessingError("x", transient=True)) is True

    def test_unknown_uses_default(self):
        """Test the caller-chosen verdict for unrecognised failures."""
        exc = RuntimeError("something odd")

        assert is_transient_error(exc) is True
        assert is_transient_error(exc, default=False) is False

    def test_registered_permanent_type(self):
        """Test runtime registration of permanent exception types."""
        register_permanent(DeviceTokenRevokedError)
        try:
            assert is_transient_error(DeviceTokenRevokedError("gone")) is False
        finally:
            unregister_permanent(DeviceTokenRevokedError)

        assert is_transient_error(DeviceTokenRevokedError("gone")) is True


class TestClassifyPublishError:
    """Test suite for classify_publish_error()."""

    def test_wraps_connection_failure_as_transient(self):
        """Test that driver connection errors become TransientBrokerError."""
        error = classify_publish_error(ConnectionRefusedError("refused"))

        assert isinstance(error, TransientBrokerError)
        assert error.details == {"error_type": "ConnectionRefusedError"}

    def test_wraps_type_error_as_permanent(self):
        """Test that serialization errors become PermanentDeliveryError."""
        error = classify_publish_error(TypeError("Object of type set is not JSON serializable"))

        assert isinstance(error, PermanentDeliveryError)
        assert error.transient is False

    def test_delivery_errors_pass_through(self):
        """Test that already-classified errors are returned unchanged."""
        original = PermanentDeliveryError("nope")

        assert classify_publish_error(original) is original
