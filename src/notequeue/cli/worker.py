"""Background worker CLI commands.

This module provides CLI commands for running the embedding worker in the
foreground and for reading the persisted worker status.
"""

from __future__ import annotations

import asyncio
import signal

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from notequeue.database.models.article import EMBEDDING_DIMENSIONS
from notequeue.intelligence.chunking import MarkdownChunker
from notequeue.intelligence.embeddings import OllamaEmbeddingProvider
from notequeue.intelligence.ollama_client import OllamaClient
from notequeue.worker.processor import TaskProcessor
from notequeue.worker.state import WorkerStatus
from notequeue.worker.worker import EmbeddingWorker, WorkerStats

app = typer.Typer(help="Background worker commands")
console = Console()


@app.command()
def start() -> None:
    """Run the embedding worker until interrupted.

    The worker polls the queue, processes one task per tick and runs the
    retry, stuck-task, metrics and retention sweeps. Ctrl+C or SIGTERM
    stops it after the in-flight task finishes.
    """
    from notequeue.main import get_app_context

    ctx = get_app_context()
    queue_config = ctx.config.queue

    if not queue_config.enabled:
        console.print("[yellow]The embedding queue is disabled in configuration[/yellow]")
        raise typer.Exit(code=1)

    console.print()
    console.print(
        Panel(
            f"[bold cyan]notequeue Embedding Worker[/bold cyan]\n\n"
            f"[bold]Model:[/bold] {ctx.config.ollama.model}\n"
            f"[bold]Poll Interval:[/bold] {queue_config.worker_interval_ms} ms\n"
            f"[bold]Max Attempts:[/bold] {queue_config.max_retries}\n"
            f"[bold]Stuck-task Sweep:[/bold] "
            f"{'enabled' if queue_config.stuck_task_cleanup_enabled else 'disabled'}",
            title="Starting Worker",
            border_style="cyan",
        )
    )
    console.print()

    async def run_worker() -> None:
        shutdown_event = asyncio.Event()

        def request_shutdown() -> None:
            console.print()
            console.print("[yellow]Shutdown signal received. Stopping worker...[/yellow]")
            shutdown_event.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, request_shutdown)

        async with OllamaClient(ctx.config.ollama) as ollama:
            processor = TaskProcessor(
                article_store=ctx.article_store,
                chunker=MarkdownChunker(),
                embedding_provider=OllamaEmbeddingProvider(ollama, EMBEDDING_DIMENSIONS),
                vector_index=ctx.vector_index,
                metrics=ctx.metrics,
            )
            worker = EmbeddingWorker(
                queue_config,
                ctx.queue,
                processor,
                ctx.audit,
                ctx.metrics,
                status=WorkerStatus(ctx.session_factory),
            )

            if not await ollama.health_check():
                console.print(
                    "[yellow]Ollama is not reachable; tasks will fail and be retried[/yellow]"
                )

            await worker.start()
            console.print("[bold green]Worker running[/bold green]")
            console.print("[dim]Press Ctrl+C to stop[/dim]")
            console.print()

            try:
                stats = await worker.get_worker_stats()
                with Live(generate_status_table(stats), refresh_per_second=1) as live:
                    while not shutdown_event.is_set():
                        try:
                            await asyncio.wait_for(shutdown_event.wait(), timeout=1.0)
                        except asyncio.TimeoutError:
                            pass
                        live.update(generate_status_table(await worker.get_worker_stats()))
            finally:
                await worker.stop()
                await ctx.engine.dispose()
                console.print()
                console.print("[green]Worker stopped[/green]")

    try:
        asyncio.run(run_worker())
    except Exception as e:
        console.print(f"[red]Fatal error:[/red] {e}")
        raise typer.Exit(code=1)


@app.command()
def status() -> None:
    """Show the persisted worker status."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    async def _load() -> WorkerStatus:
        return await WorkerStatus(ctx.session_factory).load()

    try:
        worker_status = asyncio.run(_load())
    except Exception as e:
        console.print(f"[red]Error reading worker status:[/red] {e}")
        raise typer.Exit(code=1)

    stale = worker_status.is_heartbeat_stale(ctx.config.queue.heartbeat_interval)
    if not worker_status.is_running:
        state = "[dim]Stopped[/dim]"
    elif stale:
        state = "[red]Unresponsive (stale heartbeat)[/red]"
    else:
        state = "[green]Running[/green]"

    table = Table(title="Worker Status", show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    table.add_row("Status", state)
    table.add_row("Started", _fmt(worker_status.started_at))
    table.add_row("Last Heartbeat", _fmt(worker_status.last_heartbeat))
    table.add_row("Processed", str(worker_status.tasks_processed))
    table.add_row("Succeeded", f"[green]{worker_status.tasks_succeeded}[/green]")
    table.add_row("Failed", f"[red]{worker_status.tasks_failed}[/red]")
    console.print(table)

    if stale:
        raise typer.Exit(code=2)


def _fmt(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def generate_status_table(stats: WorkerStats) -> Table:
    """Generate a live status table for the worker.

    Args:
        stats: Snapshot returned by EmbeddingWorker.get_worker_stats()

    Returns:
        Rich Table with current worker status
    """
    table = Table(title="Worker Status", show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")

    table.add_row("State", stats.state.value)
    table.add_row("Last Heartbeat", _fmt(stats.last_heartbeat))
    table.add_row("Processed", str(stats.tasks_processed))
    table.add_row("Succeeded", f"[green]{stats.tasks_succeeded}[/green]")
    table.add_row("Failed", f"[red]{stats.tasks_failed}[/red]")
    average = (
        f"{stats.average_processing_time_ms:.0f} ms"
        if stats.average_processing_time_ms is not None
        else "-"
    )
    table.add_row("Avg Processing (24h)", average)
    if stats.uptime_seconds is not None:
        table.add_row("Uptime", f"{int(stats.uptime_seconds)}s")

    return table
