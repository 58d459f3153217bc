"""Queue inspection and maintenance CLI commands.

This module provides CLI commands for queue statistics and health, task
listing, manual enqueue and the maintenance sweeps (retry, cleanup,
stuck-task reclaim).
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from notequeue.database.models.task import TaskOperation, TaskPriority, TaskStatus
from notequeue.schemas import TaskView, priority_choices

app = typer.Typer(help="Queue inspection and maintenance commands")
console = Console()

STATUS_COLORS = {
    "pending": "yellow",
    "processing": "blue",
    "completed": "green",
    "failed": "red",
}


def _status_text(status: TaskStatus) -> str:
    color = STATUS_COLORS.get(status.value, "white")
    return f"[{color}]{status.value}[/{color}]"


def _fail(message: str, error: Exception) -> typer.Exit:
    console.print(f"[red]{message}:[/red] {error}")
    return typer.Exit(code=1)


def render_task_table(title: str, tasks: list) -> Table:
    """Build a table of tasks."""
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Article", justify="right")
    table.add_column("Slug", style="bold")
    table.add_column("Operation", style="blue")
    table.add_column("Priority", style="dim")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Created", style="dim")
    table.add_column("Error", style="red", overflow="fold")

    for t in tasks:
        table.add_row(
            str(t.id)[:8] + "...",
            str(t.article_id),
            t.slug,
            t.operation.value,
            t.priority.value,
            _status_text(t.status),
            f"{t.attempts}/{t.max_attempts}",
            t.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            t.error_message or "-",
        )
    return table


@app.command()
def stats() -> None:
    """Show task counts by status and priority."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        queue_stats = asyncio.run(ctx.queue.get_queue_stats())
    except Exception as e:
        raise _fail("Error reading queue stats", e)

    table = Table(title="Queue Statistics")
    table.add_column("Status", style="bold")
    table.add_column("Total", justify="right")
    for priority in TaskPriority:
        table.add_column(priority.value.capitalize(), justify="right", style="dim")

    for status in TaskStatus:
        by_priority = queue_stats.by_priority.get(status.value, {})
        table.add_row(
            _status_text(status),
            str(getattr(queue_stats, status.value)),
            *(str(by_priority.get(p.value, 0)) for p in TaskPriority),
        )
    table.add_row("[bold]total[/bold]", f"[bold]{queue_stats.total}[/bold]")

    console.print(table)


@app.command()
def health() -> None:
    """Show queue health and detected issues."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        report = asyncio.run(ctx.queue.get_queue_health())
    except Exception as e:
        raise _fail("Error checking queue health", e)

    oldest = (
        report.oldest_pending_task.strftime("%Y-%m-%d %H:%M:%S")
        if report.oldest_pending_task
        else "-"
    )
    average = (
        f"{report.average_processing_time_ms:.0f} ms"
        if report.average_processing_time_ms is not None
        else "-"
    )
    body = (
        f"[bold]Pending:[/bold] {report.stats.pending}\n"
        f"[bold]Processing:[/bold] {report.stats.processing}\n"
        f"[bold]Failed (24h):[/bold] {report.recent_failures}\n"
        f"[bold]Oldest pending:[/bold] {oldest}\n"
        f"[bold]Avg processing time (24h):[/bold] {average}"
    )
    if report.issues:
        body += "\n\n[bold red]Issues:[/bold red]\n" + "\n".join(
            f"  - {issue}" for issue in report.issues
        )

    console.print(
        Panel(
            body,
            title="Queue Healthy" if report.is_healthy else "Queue Unhealthy",
            border_style="green" if report.is_healthy else "red",
        )
    )
    if not report.is_healthy:
        raise typer.Exit(code=2)


@app.command(name="list")
def list_tasks(
    status: Annotated[
        str,
        typer.Option(
            "--status",
            "-s",
            help="Task status (pending, processing, completed, failed)",
        ),
    ] = "pending",
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum rows")] = 50,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List tasks in one status, newest first."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        status_filter = TaskStatus(status)
    except ValueError:
        console.print(
            f"[red]Invalid status:[/red] {status}. "
            f"Valid values: {', '.join(s.value for s in TaskStatus)}"
        )
        raise typer.Exit(code=1)

    try:
        tasks = asyncio.run(ctx.queue.list_tasks_by_status(status_filter, limit=limit))
    except Exception as e:
        raise _fail("Error listing tasks", e)

    if format == "json":
        output = [TaskView.from_task(t).model_dump(mode="json") for t in tasks]
        console.print(json.dumps(output, indent=2))
        return

    if not tasks:
        console.print(f"[yellow]No {status_filter.value} tasks[/yellow]")
        return
    console.print(render_task_table(f"{status_filter.value.capitalize()} Tasks", tasks))


@app.command()
def inspect(
    task_id: Annotated[str, typer.Argument(help="Task UUID")],
) -> None:
    """Show one task in full."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        task = asyncio.run(ctx.queue.get_task(task_id))
    except ValueError:
        console.print(f"[red]Invalid task UUID:[/red] {task_id}")
        raise typer.Exit(code=1)
    except Exception as e:
        raise _fail("Error reading task", e)

    if task is None:
        console.print(f"[red]Task not found:[/red] {task_id}")
        raise typer.Exit(code=1)

    console.print_json(TaskView.from_task(task).model_dump_json())


@app.command()
def article(
    article_id: Annotated[int, typer.Argument(help="Article id")],
) -> None:
    """Show the task history of one article."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        tasks = asyncio.run(ctx.queue.get_tasks_for_article(article_id))
    except Exception as e:
        raise _fail("Error reading tasks", e)

    if not tasks:
        console.print(f"[yellow]No tasks for article {article_id}[/yellow]")
        return
    console.print(render_task_table(f"Tasks for article {article_id}", tasks))


@app.command()
def enqueue(
    article_id: Annotated[int, typer.Argument(help="Article id")],
    slug: Annotated[str, typer.Argument(help="Article slug")],
    operation: Annotated[
        str,
        typer.Option("--operation", "-o", help="Operation (create, update, delete)"),
    ] = "update",
    priority: Annotated[
        str,
        typer.Option("--priority", "-p", help=f"Priority ({', '.join(priority_choices())})"),
    ] = "normal",
    force: Annotated[
        bool,
        typer.Option("--force", help="Enqueue even if the article has an active task"),
    ] = False,
) -> None:
    """Enqueue one embedding task."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        task_operation = TaskOperation(operation)
        task_priority = TaskPriority(priority)
    except ValueError as e:
        raise _fail("Invalid argument", e)

    async def _enqueue() -> str | None:
        if not force and await ctx.queue.has_active_task(article_id):
            return None
        return await ctx.queue.enqueue(article_id, slug, task_operation, task_priority)

    try:
        task_id = asyncio.run(_enqueue())
    except Exception as e:
        raise _fail("Error enqueueing task", e)

    if task_id is None:
        console.print(
            f"[yellow]Article {article_id} already has an active task. "
            "Use --force to enqueue anyway.[/yellow]"
        )
        return
    console.print(f"[green]Task enqueued:[/green] {task_id}")


@app.command(name="retry-failed")
def retry_failed() -> None:
    """Reschedule retryable failed tasks with backoff."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        count = asyncio.run(ctx.queue.retry_failed_tasks())
    except Exception as e:
        raise _fail("Error retrying tasks", e)

    console.print(f"[green]Rescheduled {count} failed task(s)[/green]")


@app.command()
def cleanup(
    days: Annotated[
        Optional[int],
        typer.Option("--days", "-d", min=1, help="Retention in days (default from config)"),
    ] = None,
) -> None:
    """Delete completed tasks older than the retention window."""
    from datetime import timedelta

    from notequeue.main import get_app_context

    ctx = get_app_context()
    retention = timedelta(days=days) if days is not None else None

    try:
        count = asyncio.run(ctx.queue.clear_completed_tasks(retention))
    except Exception as e:
        raise _fail("Error cleaning up tasks", e)

    console.print(f"[green]Deleted {count} completed task(s)[/green]")


@app.command(name="cleanup-stuck")
def cleanup_stuck(
    minutes: Annotated[
        Optional[int],
        typer.Option(
            "--minutes",
            "-m",
            min=1,
            help="Processing age threshold in minutes (default from config)",
        ),
    ] = None,
) -> None:
    """Reclaim tasks stuck in processing."""
    from datetime import timedelta

    from notequeue.main import get_app_context

    ctx = get_app_context()
    threshold = timedelta(minutes=minutes) if minutes is not None else None

    try:
        report = asyncio.run(ctx.queue.reset_stuck_tasks(threshold))
    except Exception as e:
        raise _fail("Error reclaiming stuck tasks", e)

    console.print(
        f"[green]Reclaimed {report.total} stuck task(s):[/green] "
        f"{report.reset_to_pending} reset to pending, {report.marked_failed} marked failed"
    )
