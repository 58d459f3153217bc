"""Integration tests for CLI commands.

Each invocation loads a TOML config pointing at a temporary SQLite file,
so the commands run through the real callback, context and services.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from typer.testing import CliRunner

from notequeue.database.models import Article, Base
from notequeue.main import app


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Create an empty schema in a temporary SQLite file."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"

    async def _create() -> None:
        engine = create_async_engine(url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_create())
    return url


@pytest.fixture
def config_file(tmp_path: Path, database_url: str) -> Path:
    path = tmp_path / "notequeue.toml"
    path.write_text(
        f'[database]\nurl = "{database_url}"\n\n[logging]\nlevel = "WARNING"\n'
    )
    return path


@pytest.fixture
def invoke(cli_runner: CliRunner, config_file: Path):
    """Run a CLI command with the temporary config."""

    def _invoke(*args: str):
        return cli_runner.invoke(app, ["--config", str(config_file), *args])

    return _invoke


def seed_articles(database_url: str, count: int) -> None:
    async def _seed() -> None:
        engine = create_async_engine(database_url)
        async with engine.begin() as conn:
            await conn.execute(
                Article.__table__.insert(),
                [
                    {"id": i, "slug": f"note-{i}", "title": f"Note {i}", "content": "Body"}
                    for i in range(1, count + 1)
                ],
            )
        await engine.dispose()

    asyncio.run(_seed())


class TestQueueCLI:
    def test_stats_on_empty_queue(self, invoke) -> None:
        result = invoke("queue", "stats")

        assert result.exit_code == 0
        assert "Queue Statistics" in result.stdout

    def test_enqueue_then_list(self, invoke) -> None:
        result = invoke("queue", "enqueue", "7", "note-7", "--priority", "high")
        assert result.exit_code == 0
        assert "Task enqueued" in result.stdout

        listed = invoke("queue", "list", "--format", "json")
        assert listed.exit_code == 0
        assert '"slug": "note-7"' in listed.stdout
        assert '"priority": "high"' in listed.stdout

    def test_enqueue_skips_article_with_active_task(self, invoke) -> None:
        invoke("queue", "enqueue", "7", "note-7")

        result = invoke("queue", "enqueue", "7", "note-7")

        assert result.exit_code == 0
        assert "already has an active task" in result.stdout

    def test_enqueue_rejects_unknown_operation(self, invoke) -> None:
        result = invoke("queue", "enqueue", "7", "note-7", "--operation", "rebuild")

        assert result.exit_code == 1

    def test_list_rejects_unknown_status(self, invoke) -> None:
        result = invoke("queue", "list", "--status", "sleeping")

        assert result.exit_code == 1
        assert "Invalid status" in result.stdout

    def test_health_of_empty_queue(self, invoke) -> None:
        result = invoke("queue", "health")

        assert result.exit_code == 0
        assert "Queue Healthy" in result.stdout

    def test_maintenance_commands(self, invoke) -> None:
        assert invoke("queue", "retry-failed").exit_code == 0
        assert invoke("queue", "cleanup", "--days", "7").exit_code == 0
        assert invoke("queue", "cleanup-stuck", "--minutes", "5").exit_code == 0


class TestBulkCLI:
    def test_identify_with_no_articles(self, invoke) -> None:
        result = invoke("bulk", "identify")

        assert result.exit_code == 0
        assert "All articles are up to date" in result.stdout

    def test_queue_and_inspect_operation(self, invoke, database_url: str) -> None:
        seed_articles(database_url, 3)

        identified = invoke("bulk", "identify")
        assert identified.exit_code == 0
        assert "no_completed_task" in identified.stdout

        queued = invoke("bulk", "queue")
        assert queued.exit_code == 0
        assert "Bulk Update Queued" in queued.stdout

        operations = invoke("bulk", "operations")
        assert operations.exit_code == 0
        assert "bulk_" in operations.stdout

    def test_status_of_unknown_operation(self, invoke) -> None:
        result = invoke("bulk", "status", "bulk_missing")

        assert result.exit_code == 1
        assert "not found" in result.stdout


class TestWorkerCLI:
    def test_status_without_snapshot(self, invoke) -> None:
        result = invoke("worker", "status")

        assert result.exit_code == 0
        assert "Stopped" in result.stdout


class TestObservabilityCLI:
    def test_logs_after_enqueue(self, invoke) -> None:
        invoke("queue", "enqueue", "3", "note-3")

        result = invoke("observe", "logs", "--category", "queue_operations")

        assert result.exit_code == 0
        assert "enqueue" in result.stdout

    def test_summary_and_cleanup(self, invoke) -> None:
        assert invoke("observe", "summary").exit_code == 0
        assert invoke("observe", "log-stats").exit_code == 0
        assert invoke("observe", "cleanup").exit_code == 0


def test_invalid_config_aborts(cli_runner: CliRunner, tmp_path: Path) -> None:
    bad = tmp_path / "bad.toml"
    bad.write_text("[queue]\nworker_interval_ms = 10\n")

    result = cli_runner.invoke(app, ["--config", str(bad), "queue", "stats"])

    assert result.exit_code == 1
    assert "Error loading configuration" in result.stdout
