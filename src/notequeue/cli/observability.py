"""Audit log and metrics CLI commands."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from notequeue.database.models.audit_log import LogCategory, LogLevel
from notequeue.database.models.base import utcnow
from notequeue.database.models.metric import MetricType
from notequeue.observability.audit import LogQueryFilters

app = typer.Typer(help="Audit log and metrics commands")
console = Console()

LEVEL_COLORS = {
    LogLevel.debug: "dim",
    LogLevel.info: "white",
    LogLevel.warn: "yellow",
    LogLevel.error: "red",
}


@app.command()
def logs(
    level: Annotated[
        Optional[str],
        typer.Option("--level", "-l", help="Filter by level (debug, info, warn, error)"),
    ] = None,
    category: Annotated[
        Optional[str],
        typer.Option("--category", "-C", help="Filter by category"),
    ] = None,
    task_id: Annotated[Optional[str], typer.Option("--task", help="Filter by task id")] = None,
    article_id: Annotated[
        Optional[int], typer.Option("--article", help="Filter by article id")
    ] = None,
    operation_id: Annotated[
        Optional[str], typer.Option("--operation", help="Filter by bulk operation id")
    ] = None,
    hours: Annotated[
        Optional[int], typer.Option("--hours", help="Only entries from the last N hours")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum rows")] = 50,
) -> None:
    """Show audit log entries, newest first."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        filters = LogQueryFilters(
            level=LogLevel(level) if level else None,
            category=LogCategory(category) if category else None,
            task_id=task_id,
            article_id=article_id,
            operation_id=operation_id,
            start_time=utcnow() - timedelta(hours=hours) if hours else None,
            limit=limit,
        )
    except ValueError as e:
        console.print(f"[red]Invalid filter:[/red] {e}")
        raise typer.Exit(code=1)

    try:
        entries = asyncio.run(ctx.audit.query_logs(filters))
    except Exception as e:
        console.print(f"[red]Error reading audit log:[/red] {e}")
        raise typer.Exit(code=1)

    if not entries:
        console.print("[yellow]No audit entries found[/yellow]")
        return

    table = Table(title="Audit Log")
    table.add_column("Time", style="dim", no_wrap=True)
    table.add_column("Level")
    table.add_column("Category", style="blue")
    table.add_column("Message", overflow="fold")
    table.add_column("Duration", justify="right", style="dim")

    for entry in entries:
        color = LEVEL_COLORS.get(entry.level, "white")
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            f"[{color}]{entry.level.value}[/{color}]",
            entry.category.value,
            entry.message,
            f"{entry.duration:.0f} ms" if entry.duration is not None else "-",
        )
    console.print(table)


@app.command(name="log-stats")
def log_stats(
    days: Annotated[int, typer.Option("--days", "-d", min=1, help="Window in days")] = 7,
) -> None:
    """Show audit log volume by level and category."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        stats = asyncio.run(ctx.audit.get_log_statistics(days))
    except Exception as e:
        console.print(f"[red]Error reading audit statistics:[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"Audit Log, last {days} day(s): {stats.total_entries} entries")
    table.add_column("Group", style="bold cyan")
    table.add_column("Name")
    table.add_column("Entries", justify="right")
    for name, count in stats.entries_by_level.items():
        table.add_row("level", name, str(count))
    for name, count in stats.entries_by_category.items():
        table.add_row("category", name, str(count))
    console.print(table)


@app.command()
def summary(
    hours: Annotated[int, typer.Option("--hours", min=1, help="Window in hours")] = 24,
) -> None:
    """Show the performance summary over the last N hours."""
    from notequeue.main import get_app_context

    ctx = get_app_context()
    end = utcnow()

    try:
        report = asyncio.run(
            ctx.metrics.get_performance_summary(end - timedelta(hours=hours), end)
        )
    except Exception as e:
        console.print(f"[red]Error building performance summary:[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"Performance, last {hours} hour(s)", show_header=False)
    table.add_column("Metric", style="bold cyan")
    table.add_column("Value", justify="right")

    tm, qm, wm, sm = (
        report.task_metrics,
        report.queue_metrics,
        report.worker_metrics,
        report.system_metrics,
    )
    table.add_row("Tasks processed", str(tm.total_processed))
    table.add_row("Avg processing time", f"{tm.average_processing_time:.0f} ms")
    table.add_row("Success rate", f"{tm.success_rate:.1f}%")
    table.add_row("Throughput", f"{tm.throughput_per_hour:.1f} tasks/hour")
    table.add_row("Avg queue depth", f"{qm.average_depth:.1f}")
    table.add_row("Max queue depth", f"{qm.max_depth:.0f}")
    table.add_row("Avg wait time", f"{qm.average_wait_time:.0f} ms")
    table.add_row("Worker utilization", f"{wm.utilization:.1f}%")
    table.add_row("Error rate", f"{wm.error_rate:.1f}%")
    table.add_row("Avg article read", f"{sm.average_database_query_time:.0f} ms")
    table.add_row("Avg embedding time", f"{sm.average_embedding_time:.0f} ms")
    console.print(table)


@app.command()
def metric(
    metric_type: Annotated[str, typer.Argument(help="Metric type")],
    hours: Annotated[int, typer.Option("--hours", min=1, help="Window in hours")] = 24,
) -> None:
    """Show the distribution of one metric type."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        selected = MetricType(metric_type)
    except ValueError:
        console.print(
            f"[red]Invalid metric type:[/red] {metric_type}. "
            f"Valid values: {', '.join(m.value for m in MetricType)}"
        )
        raise typer.Exit(code=1)

    end = utcnow()
    try:
        stats = asyncio.run(
            ctx.metrics.get_metric_statistics(selected, end - timedelta(hours=hours), end)
        )
    except Exception as e:
        console.print(f"[red]Error reading metric statistics:[/red] {e}")
        raise typer.Exit(code=1)

    if stats.count == 0:
        console.print(f"[yellow]No {selected.value} samples in the last {hours} hour(s)[/yellow]")
        return

    table = Table(title=f"{selected.value} ({stats.unit}), {stats.count} samples")
    for column in ("avg", "min", "median", "p95", "p99", "max"):
        table.add_column(column, justify="right")
    table.add_row(
        *(
            f"{v:.1f}"
            for v in (stats.average, stats.min, stats.median, stats.p95, stats.p99, stats.max)
        )
    )
    console.print(table)


@app.command()
def cleanup() -> None:
    """Apply the audit and metric retention windows now."""
    from notequeue.main import get_app_context

    ctx = get_app_context()
    queue_config = ctx.config.queue

    async def _cleanup() -> tuple[int, int]:
        logs_deleted = await ctx.audit.cleanup_old_logs(queue_config.audit_retention_days)
        metrics_deleted = await ctx.metrics.cleanup_old_metrics(
            queue_config.metrics_retention_days
        )
        return logs_deleted, metrics_deleted

    try:
        logs_deleted, metrics_deleted = asyncio.run(_cleanup())
    except Exception as e:
        console.print(f"[red]Error applying retention:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(
        f"[green]Deleted {logs_deleted} audit entries and {metrics_deleted} metric samples[/green]"
    )
