"""Main CLI entry point for notequeue.

This module provides the main Typer application with sub-commands for
queue inspection, bulk embedding operations, the background worker and
observability reports.

Usage:
    notequeue queue stats
    notequeue bulk identify
    notequeue bulk queue --priority high
    notequeue worker start
    notequeue observe logs --category task_lifecycle
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from notequeue.articles import SqlArticleStore
from notequeue.cli import bulk as bulk_cli
from notequeue.cli import observability as observability_cli
from notequeue.cli import queue as queue_cli
from notequeue.cli import worker as worker_cli
from notequeue.config import NotequeueConfig, load_config
from notequeue.database.connection import get_engine, get_session_factory
from notequeue.intelligence.vector_index import PgVectorIndex
from notequeue.logging import setup_logging
from notequeue.observability.audit import AuditLogger
from notequeue.observability.metrics import MetricsRecorder
from notequeue.queue.service import QueueService

app = typer.Typer(
    name="notequeue",
    help="notequeue: background embedding queue for markdown notes",
    no_args_is_help=True,
)

# Add sub-apps
app.add_typer(queue_cli.app, name="queue", help="Inspect and maintain the task queue")
app.add_typer(bulk_cli.app, name="bulk", help="Bulk embedding operations")
app.add_typer(worker_cli.app, name="worker", help="Run the background worker")
app.add_typer(observability_cli.app, name="observe", help="Audit logs and metrics")

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded notequeue configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
        audit: Audit logger
        metrics: Metrics recorder
        article_store: Article reader on the articles table
        vector_index: Chunk vector storage
        queue: Queue service wired to the collaborators above
    """

    def __init__(self, config: NotequeueConfig):
        self.config = config
        self.engine = get_engine(config.database)
        self.session_factory = get_session_factory(self.engine)
        self.audit = AuditLogger(self.session_factory)
        self.metrics = MetricsRecorder(self.session_factory, self.audit)
        self.article_store = SqlArticleStore(self.session_factory)
        self.vector_index = PgVectorIndex(self.session_factory)
        self.queue = QueueService(
            config.queue,
            self.session_factory,
            self.audit,
            self.metrics,
            article_store=self.article_store,
            vector_index=self.vector_index,
        )


# Global context holder
_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: NotequeueConfig) -> AppContext:
    global _app_context
    _app_context = AppContext(config)
    return _app_context


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure global options and initialize application context.

    Args:
        config_path: Optional path to TOML configuration file
        verbose: Enable debug-level logging
    """
    # Invalid configuration aborts before anything touches the queue
    try:
        config = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    logging_config = config.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    setup_logging(logging_config)

    try:
        initialize_context(config)
    except Exception as e:
        console.print(f"[red]Error initializing application:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
