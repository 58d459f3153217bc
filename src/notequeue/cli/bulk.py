"""Bulk embedding CLI commands.

This module provides CLI commands to find articles whose embeddings are
missing or failed, enqueue update tasks for all of them with live
progress, and report on bulk operations afterwards.
"""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from notequeue.database.models.task import TaskPriority
from notequeue.schemas import BulkOperationStatus, BulkOperationSummary, BulkProgress, priority_choices

app = typer.Typer(help="Bulk embedding commands")
console = Console()

OPERATION_COLORS = {
    BulkOperationStatus.PROCESSING: "blue",
    BulkOperationStatus.COMPLETED: "green",
    BulkOperationStatus.FAILED: "red",
}


@app.command()
def identify() -> None:
    """List articles that need (re-)embedding and why."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        articles = asyncio.run(ctx.queue.identify_articles_needing_embedding())
    except Exception as e:
        console.print(f"[red]Error identifying articles:[/red] {e}")
        raise typer.Exit(code=1)

    if not articles:
        console.print("[green]All articles are up to date[/green]")
        return

    table = Table(title=f"Articles Needing Embedding ({len(articles)})")
    table.add_column("Article", justify="right", style="cyan")
    table.add_column("Slug", style="bold")
    table.add_column("Title")
    table.add_column("Reason", style="magenta")
    table.add_column("Last Error", style="red", overflow="fold")

    for a in articles:
        table.add_row(
            str(a.article_id),
            a.slug,
            a.title,
            a.reason.value,
            a.last_error or "-",
        )
    console.print(table)


@app.command()
def queue(
    priority: Annotated[
        str,
        typer.Option("--priority", "-p", help=f"Priority ({', '.join(priority_choices())})"),
    ] = "normal",
) -> None:
    """Enqueue update tasks for every article needing embedding."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        task_priority = TaskPriority(priority)
    except ValueError:
        console.print(
            f"[red]Invalid priority:[/red] {priority}. "
            f"Valid values: {', '.join(priority_choices())}"
        )
        raise typer.Exit(code=1)

    async def _run() -> BulkProgress | None:
        final: BulkProgress | None = None
        with Progress(
            TextColumn("[bold cyan]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            bar = progress.add_task("Identifying articles", total=None)
            async for snapshot in ctx.queue.queue_bulk_embedding_update(task_priority):
                progress.update(
                    bar,
                    total=snapshot.total_articles,
                    completed=snapshot.processed_articles,
                    description=snapshot.current_slug or "Queueing",
                )
                final = snapshot
        return final

    try:
        final = asyncio.run(_run())
    except Exception as e:
        console.print(f"[red]Error queueing bulk update:[/red] {e}")
        raise typer.Exit(code=1)

    if final is None or final.total_articles == 0:
        console.print("[green]All articles are up to date, nothing queued[/green]")
        return

    body = (
        f"[bold]Operation ID:[/bold] {final.operation_id}\n"
        f"[bold]Articles:[/bold] {final.total_articles}\n"
        f"[bold]Queued:[/bold] {final.queued_tasks}\n"
        f"[bold]Skipped (already active):[/bold] {final.skipped_articles}\n"
        f"[bold]Errors:[/bold] {len(final.errors)}"
    )
    if final.errors:
        body += "\n\n" + "\n".join(f"[red]- {err}[/red]" for err in final.errors[:10])
    console.print(
        Panel(
            body,
            title="Bulk Update Queued",
            border_style="red" if final.errors else "green",
        )
    )


def render_summary(summary: BulkOperationSummary) -> Panel:
    """Build a panel describing one bulk operation."""
    color = OPERATION_COLORS[summary.status]
    average = (
        f"{summary.average_processing_time_ms:.0f} ms"
        if summary.average_processing_time_ms is not None
        else "-"
    )
    body = (
        f"[bold]Status:[/bold] [{color}]{summary.status.value}[/{color}]\n"
        f"[bold]Started:[/bold] {summary.started_at:%Y-%m-%d %H:%M:%S}\n"
        f"[bold]Finished:[/bold] "
        f"{summary.completed_at.strftime('%Y-%m-%d %H:%M:%S') if summary.completed_at else '-'}\n"
        f"[bold]Tasks:[/bold] {summary.total_tasks} "
        f"(completed {summary.completed_tasks}, failed {summary.failed_tasks}, "
        f"pending {summary.pending_tasks}, processing {summary.processing_tasks})\n"
        f"[bold]Success rate:[/bold] {summary.success_rate:.1f}%\n"
        f"[bold]Avg processing time:[/bold] {average}"
    )
    if summary.errors:
        body += "\n\n[bold red]Errors:[/bold red]\n" + "\n".join(
            f"  - {err}" for err in summary.errors[:10]
        )
    return Panel(body, title=summary.operation_id, border_style=color)


@app.command()
def status(
    operation_id: Annotated[str, typer.Argument(help="Bulk operation id")],
) -> None:
    """Show the progress of one bulk operation."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        summary = asyncio.run(ctx.queue.get_bulk_operation_summary(operation_id))
    except Exception as e:
        console.print(f"[red]Error reading bulk operation:[/red] {e}")
        raise typer.Exit(code=1)

    if summary is None:
        console.print(f"[red]Bulk operation not found:[/red] {operation_id}")
        raise typer.Exit(code=1)
    console.print(render_summary(summary))


@app.command()
def operations(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum rows")] = 10,
) -> None:
    """List recent bulk operations."""
    from notequeue.main import get_app_context

    ctx = get_app_context()

    try:
        summaries = asyncio.run(ctx.queue.list_recent_bulk_operations(limit))
    except Exception as e:
        console.print(f"[red]Error listing bulk operations:[/red] {e}")
        raise typer.Exit(code=1)

    if not summaries:
        console.print("[yellow]No bulk operations found[/yellow]")
        return

    table = Table(title="Bulk Operations")
    table.add_column("Operation", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Started", style="dim")
    table.add_column("Tasks", justify="right")
    table.add_column("Completed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Success", justify="right")

    for s in summaries:
        color = OPERATION_COLORS[s.status]
        table.add_row(
            s.operation_id,
            f"[{color}]{s.status.value}[/{color}]",
            s.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(s.total_tasks),
            str(s.completed_tasks),
            str(s.failed_tasks),
            f"{s.success_rate:.1f}%",
        )
    console.print(table)
