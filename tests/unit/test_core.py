"""
Unit tests for keyed locks, exceptions, logging and telemetry.
"""
import asyncio
import json
import logging
import pytest
from unittest.mock import MagicMock, patch

from app.config.logging import JsonFormatter
from app.core.exceptions import (
    DuplicateContentError,
    IllegalTransitionError,
    InvalidRatingError,
    ProvisioningFailedError,
    UnknownHostError,
)
from app.core.locking import KeyedLock
from app.core.telemetry import setup_telemetry
from fastapi import FastAPI


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        """Test that holders of one key never overlap."""
        locks = KeyedLock()
        order = []

        async def worker(name):
            async with locks.hold("video-1"):
                order.append(f"{name}:start")
                await asyncio.sleep(0.01)
                order.append(f"{name}:end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a:start", "a:end", "b:start", "b:end"]

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        """Test that distinct keys do not block each other."""
        locks = KeyedLock()
        inside = asyncio.Event()

        async def holder():
            async with locks.hold(1):
                await inside.wait()

        task = asyncio.create_task(holder())
        await asyncio.sleep(0)

        async with locks.hold(2):
            assert locks.is_locked(1)
            inside.set()

        await task

    @pytest.mark.asyncio
    async def test_locks_are_released_and_dropped(self):
        """Lock entries are released on error and not leaked."""
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            async with locks.hold("k"):
                raise RuntimeError("fail")

        assert locks.is_locked("k") is False
        assert len(locks) == 0


class TestExceptions:
    def test_duplicate_message_names_code_and_url(self):
        """Test duplicate error message and payload."""
        exc = DuplicateContentError("https://youtu.be/dQw4w9WgXcQ", 3, "dQw4w9WgXcQ")

        body = exc.to_dict()["error"]

        assert exc.status_code == 409
        assert body["code"] == "DUPLICATE_CONTENT"
        assert "found via video code: dQw4w9WgXcQ" in body["message"]
        assert body["details"]["existing_video_id"] == 3

    def test_illegal_transition_reports_both_states(self):
        """Test illegal transition error carries current and target."""
        exc = IllegalTransitionError(1, 2, "pending", "assigned", "transition not allowed")

        assert exc.details["current"] == "pending"
        assert exc.details["attempted"] == "assigned"
        assert "pending -> assigned" in exc.message

    def test_only_provisioning_is_retryable(self):
        """Only provisioning failures advertise a retry."""
        assert ProvisioningFailedError(3, "seed_statuses", "timeout").to_dict()["error"]["retryable"] is True
        assert UnknownHostError(3).retryable is False
        assert InvalidRatingError(9, [-1, 0, 1, 2, 3]).status_code == 400


class TestJsonFormatter:
    def test_context_fields_are_included(self):
        """Test that extra context lands in the JSON record."""
        record = logging.LogRecord("app", logging.INFO, __file__, 1, "moved", None, None)
        record.video_id = 7
        record.host_id = 2

        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "moved"
        assert payload["video_id"] == 7
        assert payload["host_id"] == 2
        assert "request_id" not in payload


class TestTelemetry:
    @patch("app.core.telemetry.get_settings")
    @patch("app.core.telemetry.Instrumentator")
    def test_setup_telemetry_prometheus_enabled(self, mock_instrumentator, mock_get_settings):
        # Mock settings
        mock_settings = MagicMock()
        mock_settings.ENABLE_PROMETHEUS = True
        mock_settings.ENABLE_OTEL = False
        mock_get_settings.return_value = mock_settings

        app = FastAPI()
        setup_telemetry(app)

        mock_instrumentator.assert_called_once()
        mock_instrumentator.return_value.instrument.assert_called_once_with(app)

    @patch("app.core.telemetry.get_settings")
    @patch("app.core.telemetry.OTLPSpanExporter")
    @patch("app.core.telemetry.BatchSpanProcessor")
    @patch("app.core.telemetry.FastAPIInstrumentor")
    def test_setup_telemetry_otel_enabled(
        self, mock_fastapi_instr, mock_processor, mock_exporter, mock_get_settings
    ):
        mock_settings = MagicMock()
        mock_settings.ENABLE_PROMETHEUS = False
        mock_settings.ENABLE_OTEL = True
        mock_settings.APP_NAME = "test"
        mock_settings.APP_VERSION = "1.0"
        mock_settings.DEBUG = False
        mock_get_settings.return_value = mock_settings

        app = FastAPI()
        setup_telemetry(app)

        mock_fastapi_instr.instrument_app.assert_called_once()
        mock_processor.assert_called_once_with(mock_exporter.return_value)
