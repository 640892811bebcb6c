"""Job Commands - enqueue work and inspect the processing queue"""

import typer
from rich.console import Console

from ..client.base import MediaQueueError
from ..client.endpoints import MediaQueueClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_queue_items_table,
    create_queue_panel,
    create_transfer_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="jobs", help="Analysis job management")


@app.command("enqueue")
def enqueue(
    media_id: str = typer.Argument(..., help="Media record to analyse"),
    project_id: str = typer.Option(..., "--project", "-p", help="Owning project"),
    kind: str = typer.Option(
        "image_analysis",
        "--type",
        "-t",
        help="Job type: image_analysis or video_frame_analysis",
    ),
    size: int | None = typer.Option(
        None, "--size", "-s", help="Estimated payload size in bytes"
    ),
    frame_timestamp: float | None = typer.Option(
        None, "--frame-timestamp", help="Frame offset in seconds (video frames)"
    ),
):
    """📤 Enqueue an analysis job"""
    if kind not in ("image_analysis", "video_frame_analysis"):
        print_error("Job type must be image_analysis or video_frame_analysis")
        raise typer.Exit(1)

    try:
        with MediaQueueClient() as client:
            result = client.enqueue_job(
                kind,
                media_id,
                project_id,
                estimated_size=size,
                frame_timestamp=frame_timestamp,
            )
    except MediaQueueError as e:
        if e.status_code == 429:
            print_warning("Queue is full, try again shortly")
        else:
            print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Queued {result.get('job_id')}")
    print_info(f"Track it with: media-queue jobs transfer-status {result.get('job_id')}")


@app.command("queue")
def show_queue(
    items: bool | None = typer.Option(
        None, "--items/--no-items", help="List pending jobs (default from config)"
    ),
):
    """📊 Show queue, worker and breaker state"""
    if items is None:
        items = bool(config.get("display.show_items", False))

    try:
        with MediaQueueClient() as client:
            snapshot = client.get_queue(include_items=items)
    except MediaQueueError as e:
        print_error(f"Failed to fetch queue: {e}")
        raise typer.Exit(1) from None

    console.print(create_queue_panel(snapshot))

    if items:
        pending = snapshot.get("items") or []
        if pending:
            console.print(create_queue_items_table(pending))
        else:
            console.print("[dim]No pending jobs[/dim]")


@app.command("transfer-status")
def transfer_status(
    job_ids: list[str] = typer.Argument(..., help="One or more job ids"),
):
    """🚚 Check whether jobs have been handed to the analysis service"""
    try:
        with MediaQueueClient() as client:
            status = client.get_transfer_status(job_ids)
    except MediaQueueError as e:
        print_error(f"Failed to fetch transfer status: {e}")
        raise typer.Exit(1) from None

    console.print(create_transfer_table(status))

    summary = status.get("summary", {})
    message = summary.get("message", "")
    if status.get("has_failures"):
        print_warning(message)
    elif status.get("all_transferred"):
        print_success(message)
    else:
        print_info(message)

    if summary.get("can_leave"):
        console.print("[dim]Safe to close the uploading client[/dim]")
