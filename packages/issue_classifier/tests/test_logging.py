"""Tests for structured logging setup."""

import io
import json
import logging

import pytest
import structlog

from packages.issue_classifier.logging import PACKAGE_LOGGER, setup_logging


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.handlers = []
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)
    structlog.reset_defaults()


class TestStructuredLogging:
    """Test structlog outputs structured JSON."""

    def test_setup_logging_configures_structlog(self):
        """After setup, structlog.get_logger() should return a bound logger."""
        setup_logging(log_level="DEBUG", json_output=True)
        logger = structlog.get_logger()
        assert logger is not None

    def test_setup_logging_dev_mode(self):
        """Dev mode should configure console renderer without errors."""
        buffer = io.StringIO()
        setup_logging(log_level="DEBUG", json_output=False, stream=buffer)
        structlog.get_logger(f"{PACKAGE_LOGGER}.test").info("dev_event", count=3)
        assert "dev_event" in buffer.getvalue()

    def test_json_output_is_parseable(self):
        """JSON mode renders the event and its keys as one JSON object per line."""
        buffer = io.StringIO()
        setup_logging(log_level="INFO", json_output=True, stream=buffer)

        structlog.get_logger(f"{PACKAGE_LOGGER}.test").info("model_saved", classes=2)

        payload = json.loads(buffer.getvalue().strip())
        assert payload["event"] == "model_saved"
        assert payload["classes"] == 2
        assert payload["level"] == "info"
        assert "timestamp" in payload

    def test_level_filters_events(self):
        buffer = io.StringIO()
        setup_logging(log_level="WARNING", json_output=True, stream=buffer)

        logger = structlog.get_logger(f"{PACKAGE_LOGGER}.test")
        logger.info("hidden")
        logger.warning("shown")

        assert "hidden" not in buffer.getvalue()
        assert "shown" in buffer.getvalue()

    def test_logs_go_to_stderr_by_default(self, capsys):
        setup_logging(log_level="INFO", json_output=True)
        structlog.get_logger(f"{PACKAGE_LOGGER}.test").info("to_stderr")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "to_stderr" in captured.err

    def test_repeated_setup_keeps_one_handler(self):
        setup_logging(stream=io.StringIO())
        setup_logging(stream=io.StringIO())
        assert len(logging.getLogger(PACKAGE_LOGGER).handlers) == 1
