"""Media Queue CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client.endpoints import MediaQueueClient
from .commands import config, jobs, projects
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="media-queue",
    help="📦 Media Queue - media analysis job pipeline CLI",
    rich_markup_mode="rich",
)

app.add_typer(jobs.app, name="jobs")
app.add_typer(projects.app, name="projects")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check service health and pipeline state"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with MediaQueueClient(base_url) as client:
            health = client.health_check()
    except Exception as e:
        print_error(f"Failed to connect: {e}")
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"Make sure the Media Queue API is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"You can update the API URL with:\n"
                f"[cyan]media-queue config set api.base_url <url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    pipeline = health.get("pipeline", {})
    healthy = health.get("ok", False)
    headline = (
        "🚀 [green]Connected Successfully![/green]"
        if healthy
        else "⚠️ [yellow]Connected, service degraded[/yellow]"
    )
    console.print(
        Panel(
            f"{headline}\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Queue length: [cyan]{pipeline.get('queue_length', 0)}[/cyan]\n"
            f"• Breaker: [magenta]{pipeline.get('breaker_state', 'unknown')}[/magenta]\n"
            f"• API URL: [blue]{base_url}[/blue]",
            title="System Status",
            border_style="green" if healthy else "yellow",
        )
    )


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(
        Panel(
            f"📦 [bold cyan]Media Queue CLI[/bold cyan]\n\n"
            f"• Version: [green]{__version__}[/green]\n"
            f"• Type: [yellow]Command Line Interface[/yellow]",
            title="Version Info",
            border_style="cyan",
        )
    )


@app.command()
def quickstart():
    """🚀 Quick start guide"""
    console.print(
        Panel(
            "📦 [bold cyan]Media Queue Quick Start[/bold cyan]\n\n"
            "[bold]1. Check Status[/bold]\n"
            "   [dim]media-queue status[/dim]\n\n"
            "[bold]2. Enqueue Analysis[/bold]\n"
            "   [dim]media-queue jobs enqueue <media-id> --project <id>[/dim]\n\n"
            "[bold]3. Watch the Queue[/bold]\n"
            "   [dim]media-queue jobs queue --items[/dim]\n\n"
            "[bold]4. Check Transfers[/bold]\n"
            "   [dim]media-queue jobs transfer-status <job-id> ...[/dim]\n\n"
            "[bold]5. Project Progress[/bold]\n"
            "   [dim]media-queue projects processing <project-id>[/dim]\n\n"
            "[bold yellow]Tip:[/bold yellow] Use [cyan]--help[/cyan] with any command for more options!",
            title="Quick Start Guide",
            border_style="green",
        )
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    show_version: bool = typer.Option(
        False, "--version", "-v", help="Show version and exit"
    ),
):
    """
    📦 Media Queue CLI

    Enqueue media analysis jobs, watch the worker pool and circuit breaker,
    and check whether uploads have reached the analysis service.
    """
    if show_version:
        from . import __version__

        console.print(f"Media Queue CLI v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()


if __name__ == "__main__":
    app()
