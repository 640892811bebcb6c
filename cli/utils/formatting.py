"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATE_STYLES = {
    "queued": "yellow",
    "sending": "blue",
    "sent": "green",
    "failed": "red",
    "unknown": "dim",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def create_queue_panel(snapshot: dict[str, Any]) -> Panel:
    """Summary panel for a queue snapshot"""
    breaker = snapshot.get("breaker", {})
    breaker_state = breaker.get("state", "unknown")
    breaker_color = "green" if breaker_state == "closed" else "red"
    retry_in = breaker.get("retry_in_s")

    content = (
        f"• Queue: [cyan]{snapshot.get('queue_length', 0)}[/cyan]"
        f" / {snapshot.get('capacity', 0)}"
        f" ([green]{snapshot.get('eligible', 0)} eligible[/green])\n"
        f"• Workers: [yellow]{snapshot.get('active_workers', 0)}[/yellow]"
        f" / {snapshot.get('max_workers', 0)}\n"
        f"• Downstream: [yellow]{snapshot.get('downstream_in_flight', 0)}[/yellow]"
        f" / {snapshot.get('downstream_ceiling', 0)}\n"
        f"• Breaker: [{breaker_color}]{breaker_state}[/{breaker_color}]"
        f" ({breaker.get('failure_count', 0)}/{breaker.get('threshold', 0)} failures)"
    )
    if retry_in:
        content += f", retry in {retry_in:.0f}s"
    content += (
        f"\n• Recent errors: [red]{snapshot.get('recent_errors', 0)}[/red]\n"
        f"• Processed: {snapshot.get('processed', 0)}"
        f" ([green]{snapshot.get('succeeded', 0)} ok[/green],"
        f" [yellow]{snapshot.get('retried', 0)} retried[/yellow],"
        f" [red]{snapshot.get('abandoned', 0)} abandoned[/red])"
    )

    border = "green" if snapshot.get("running") else "red"
    return Panel(content, title="Processing Queue", border_style=border)


def create_queue_items_table(items: list[dict[str, Any]]) -> Table:
    """Table of pending jobs in dispatch order"""
    table = Table(title="Pending Jobs", box=box.ROUNDED)

    table.add_column("Job", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="center", style="magenta")
    table.add_column("Media", justify="left", style="white")
    table.add_column("Priority", justify="right", style="yellow")
    table.add_column("Attempt", justify="right")
    table.add_column("Scheduled", justify="left", style="dim")

    for item in items:
        table.add_row(
            item.get("id", ""),
            item.get("kind", ""),
            item.get("media_id", "—"),
            str(item.get("priority", "")),
            str(item.get("attempt", 0)),
            item.get("scheduled_for", "now"),
        )

    return table


def create_transfer_table(status: dict[str, Any]) -> Table:
    """Per-job transfer states"""
    table = Table(title="Transfer Status", box=box.ROUNDED)

    table.add_column("Job", justify="left", style="cyan", no_wrap=True)
    table.add_column("State", justify="center")
    table.add_column("Error", justify="left", style="red")

    for job_id, detail in status.get("per_id", {}).items():
        state = detail.get("state", "unknown")
        style = STATE_STYLES.get(state, "white")
        table.add_row(
            job_id, f"[{style}]{state}[/{style}]", detail.get("error") or "—"
        )

    return table


def create_processing_table(project_id: str, items: list[dict[str, Any]]) -> Table:
    """Media still in flight for a project"""
    table = Table(title=f"Processing: {project_id}", box=box.ROUNDED)

    table.add_column("Media", justify="left", style="cyan", no_wrap=True)
    table.add_column("Kind", justify="center", style="magenta")
    table.add_column("Job", justify="left", style="white")
    table.add_column("Since", justify="left", style="dim")

    for item in items:
        table.add_row(
            item.get("media_id", ""),
            item.get("kind") or "—",
            item.get("job_id") or "—",
            item.get("started_at") or "—",
        )

    return table
