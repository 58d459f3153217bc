"""Unit tests for logging configuration."""

from __future__ import annotations

import json
import logging
import logging.handlers
from io import StringIO
from pathlib import Path
from typing import Any

import pytest
import structlog

from notequeue.config import LoggingConfig
from notequeue.logging import (
    add_correlation_id,
    bind_task_context,
    clear_task_context,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)


@pytest.fixture(autouse=True)
def reset_logging() -> None:
    """Reset logging configuration before each test."""
    logging.getLogger().handlers.clear()
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    set_correlation_id(None)


@pytest.fixture
def capture_stream() -> StringIO:
    return StringIO()


def _capture(config: LoggingConfig, stream: StringIO) -> None:
    setup_logging(config)
    logging.getLogger().handlers[0].stream = stream


def _last_entry(stream: StringIO) -> dict[str, Any]:
    return json.loads(stream.getvalue().strip().splitlines()[-1])


def test_json_output_format(capture_stream: StringIO) -> None:
    """JSON format produces one parseable object per event."""
    _capture(LoggingConfig(level="INFO", format="json"), capture_stream)

    get_logger("notequeue.test").info("task_claimed", attempt=2, priority="high")

    entry = _last_entry(capture_stream)
    assert entry["event"] == "task_claimed"
    assert entry["attempt"] == 2
    assert entry["priority"] == "high"
    assert entry["level"] == "info"
    assert entry["logger"] == "notequeue.test"
    assert "timestamp" in entry


def test_console_output_format(capture_stream: StringIO) -> None:
    _capture(LoggingConfig(level="DEBUG", format="console"), capture_stream)

    get_logger("notequeue.test").debug("worker_tick", pending=3)

    output = capture_stream.getvalue()
    assert "worker_tick" in output
    assert "pending" in output
    with pytest.raises(json.JSONDecodeError):
        json.loads(output.strip())


def test_log_level_filtering(capture_stream: StringIO) -> None:
    _capture(LoggingConfig(level="WARNING", format="json"), capture_stream)
    logger = get_logger("notequeue.test")

    logger.info("ignored")
    assert capture_stream.getvalue() == ""

    logger.warning("kept")
    assert _last_entry(capture_stream)["event"] == "kept"


def test_correlation_id_binding(capture_stream: StringIO) -> None:
    _capture(LoggingConfig(level="INFO", format="json"), capture_stream)
    logger = get_logger("notequeue.test")

    set_correlation_id("bulk_abc123")
    assert get_correlation_id() == "bulk_abc123"
    logger.info("bulk_batch_queued")
    assert _last_entry(capture_stream)["correlation_id"] == "bulk_abc123"

    set_correlation_id(None)
    logger.info("after_bulk")
    assert "correlation_id" not in _last_entry(capture_stream)


def test_correlation_id_processor() -> None:
    event_dict: dict[str, Any] = {"event": "test"}

    assert "correlation_id" not in add_correlation_id(None, "", event_dict.copy())

    set_correlation_id("test-id")
    assert add_correlation_id(None, "", event_dict.copy())["correlation_id"] == "test-id"


def test_task_context_binding_and_clearing(capture_stream: StringIO) -> None:
    """Task context is attached until cleared."""
    _capture(LoggingConfig(level="INFO", format="json"), capture_stream)
    logger = get_logger("notequeue.test")

    bind_task_context("7f0c2a7e-task", 42)
    logger.info("embedding_started")
    entry = _last_entry(capture_stream)
    assert entry["task_id"] == "7f0c2a7e-task"
    assert entry["article_id"] == 42

    clear_task_context()
    logger.info("idle")
    entry = _last_entry(capture_stream)
    assert "task_id" not in entry
    assert "article_id" not in entry


def test_file_output_uses_rotating_handler(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "notequeue.log"
    setup_logging(
        LoggingConfig(level="INFO", format="json", file=log_file, rotation_size_mb=1)
    )

    handler = logging.getLogger().handlers[0]
    assert isinstance(handler, logging.handlers.RotatingFileHandler)
    assert handler.maxBytes == 1024 * 1024

    get_logger("notequeue.test").info("written_to_file")
    handler.flush()
    assert "written_to_file" in log_file.read_text()
