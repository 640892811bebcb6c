"""Project Commands - per-project processing view"""

import typer
from rich.console import Console

from ..client.base import MediaQueueError
from ..client.endpoints import MediaQueueClient
from ..utils.formatting import create_processing_table, print_error, print_success

console = Console()
app = typer.Typer(name="projects", help="Per-project processing status")


@app.command("processing")
def processing(
    project_id: str = typer.Argument(..., help="Project to inspect"),
):
    """⏳ List media still being processed for a project"""
    try:
        with MediaQueueClient() as client:
            data = client.get_processing(project_id)
    except MediaQueueError as e:
        print_error(f"Failed to fetch processing items: {e}")
        raise typer.Exit(1) from None

    items = data.get("items", [])
    if not items:
        print_success(f"Nothing in flight for {project_id}")
        return

    console.print(create_processing_table(project_id, items))
    console.print(f"[dim]{data.get('count', len(items))} item(s) in flight[/dim]")
