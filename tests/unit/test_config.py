"""Unit tests for configuration management.

Tests cover:
- Default configuration values
- Queue bounds and the heartbeat/worker interval rule
- Immutability of loaded configuration
- TOML file loading
- Environment variable overrides
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from notequeue.config import (
    DatabaseConfig,
    LoggingConfig,
    NotequeueConfig,
    OllamaConfig,
    QueueConfig,
    load_config,
)


class TestQueueConfig:
    """Test QueueConfig defaults and validation."""

    def test_default_values(self) -> None:
        config = QueueConfig()
        assert config.enabled is True
        assert config.worker_interval_ms == 5000
        assert config.max_retries == 3
        assert config.retry_backoff_base_ms == 1000
        assert config.batch_size == 10
        assert config.cleanup_interval_hours == 24
        assert config.cleanup_retention_days == 30
        assert config.heartbeat_interval_ms == 30_000
        assert config.metrics_interval_ms == 60_000
        assert config.max_processing_time_ms == 30 * 60 * 1000
        assert config.stuck_task_cleanup_enabled is True
        assert config.stuck_check_interval_ms == 60_000

    def test_timedelta_properties(self) -> None:
        config = QueueConfig(worker_interval_ms=2000, cleanup_retention_days=7)
        assert config.worker_interval == timedelta(seconds=2)
        assert config.retry_backoff_base == timedelta(seconds=1)
        assert config.cleanup_retention == timedelta(days=7)
        assert config.cleanup_interval == timedelta(hours=24)
        assert config.max_processing_time == timedelta(minutes=30)

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("worker_interval_ms", 999),
            ("worker_interval_ms", 300_001),
            ("max_retries", 0),
            ("max_retries", 11),
            ("retry_backoff_base_ms", 99),
            ("batch_size", 101),
            ("cleanup_interval_hours", 169),
            ("cleanup_retention_days", 0),
            ("heartbeat_interval_ms", 4999),
            ("metrics_interval_ms", 9999),
            ("max_processing_time_ms", 59_999),
            ("stuck_check_interval_ms", 3_600_001),
        ],
    )
    def test_out_of_range_values_rejected(self, field: str, value: int) -> None:
        with pytest.raises(ValidationError):
            QueueConfig(**{field: value})

    def test_heartbeat_shorter_than_worker_interval_rejected(self) -> None:
        with pytest.raises(ValidationError, match="heartbeat_interval_ms"):
            QueueConfig(worker_interval_ms=20_000, heartbeat_interval_ms=10_000)

    def test_heartbeat_equal_to_worker_interval_accepted(self) -> None:
        config = QueueConfig(worker_interval_ms=10_000, heartbeat_interval_ms=10_000)
        assert config.heartbeat_interval == config.worker_interval

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            QueueConfig(poll_everything=True)

    def test_config_is_frozen(self) -> None:
        config = QueueConfig()
        with pytest.raises(ValidationError):
            config.max_retries = 5


class TestLoggingConfig:
    """Test LoggingConfig normalisation."""

    def test_level_is_uppercased(self) -> None:
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_level_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")

    def test_invalid_format_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")


class TestNotequeueConfig:
    """Test the root configuration object."""

    def test_sections_have_defaults(self) -> None:
        config = NotequeueConfig()
        assert isinstance(config.database, DatabaseConfig)
        assert isinstance(config.ollama, OllamaConfig)
        assert isinstance(config.logging, LoggingConfig)
        assert isinstance(config.queue, QueueConfig)
        assert config.ollama.model == "nomic-embed-text"

    def test_environment_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NOTEQUEUE_QUEUE__MAX_RETRIES", "7")
        monkeypatch.setenv("NOTEQUEUE_QUEUE__ENABLED", "false")
        config = QueueConfig()
        assert config.max_retries == 7
        assert config.enabled is False


class TestLoadConfig:
    """Test TOML loading."""

    def test_load_from_explicit_path(self, tmp_path: Path) -> None:
        config_file = tmp_path / "notequeue.toml"
        config_file.write_text(
            """
[database]
url = "sqlite+aiosqlite:///notes.db"

[queue]
worker_interval_ms = 2000
heartbeat_interval_ms = 10000
batch_size = 25

[logging]
format = "console"
"""
        )

        config = load_config(config_file)

        assert config.database.url == "sqlite+aiosqlite:///notes.db"
        assert config.queue.worker_interval_ms == 2000
        assert config.queue.batch_size == 25
        assert config.logging.format == "console"
        # Untouched sections keep their defaults
        assert config.queue.max_retries == 3

    def test_environment_overrides_toml(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config_file = tmp_path / "notequeue.toml"
        config_file.write_text(
            '[database]\nurl = "sqlite+aiosqlite:///notes.db"\n\n[queue]\nmax_retries = 5\n'
        )
        monkeypatch.setenv("NOTEQUEUE_QUEUE__MAX_RETRIES", "7")
        monkeypatch.setenv("NOTEQUEUE_QUEUE__ENABLED", "false")

        config = load_config(config_file)

        assert config.queue.max_retries == 7
        assert config.queue.enabled is False
        # Keys only the file sets survive the merge
        assert config.database.url == "sqlite+aiosqlite:///notes.db"

    def test_missing_explicit_path_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.toml")

    def test_invalid_values_raise_value_error(self, tmp_path: Path) -> None:
        config_file = tmp_path / "notequeue.toml"
        config_file.write_text("[queue]\nmax_retries = 50\n")

        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(config_file)

    def test_inconsistent_intervals_abort_loading(self, tmp_path: Path) -> None:
        config_file = tmp_path / "notequeue.toml"
        config_file.write_text(
            "[queue]\nworker_interval_ms = 60000\nheartbeat_interval_ms = 30000\n"
        )

        with pytest.raises(ValueError, match="heartbeat_interval_ms"):
            load_config(config_file)
