"""Pipeline Jobs CLI - Main Entry Point"""

from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

# Import command modules
from .commands import config, jobs, worker
from .utils.formatting import print_error, print_info
from .utils.config_manager import config as config_manager
from .client.endpoints import PipelineJobsClient, PipelineJobsError

console = Console()

# Create main Typer app
app = typer.Typer(
    name="pipeline-jobs",
    help="⚙️ Pipeline Jobs - website analysis and content generation jobs",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(worker.app, name="worker")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check API connectivity and queue health"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with PipelineJobsClient(base_url) as client:
            health = client.health_check()
    except PipelineJobsError as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the Pipeline Jobs API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]pipeline-jobs config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1) from None

    worker_health = health.get("worker") or {}
    console.print(Panel(
        f"🚀 [green]Connected Successfully![/green]\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
        f"• Active workers: [cyan]{worker_health.get('active_workers', 0)}[/cyan]\n"
        f"• Pending jobs: [yellow]{worker_health.get('pending_jobs', 0)}[/yellow]\n"
        f"• API URL: [blue]{base_url}[/blue]",
        title="System Status",
        border_style="green"
    ))


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(Panel(
        f"⚙️ [bold cyan]Pipeline Jobs CLI[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]",
        title="Version Info",
        border_style="cyan"
    ))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", help="Show version and exit"
    ),
):
    """
    ⚙️ Pipeline Jobs CLI

    Submit website analysis and content jobs, follow their progress and run
    a worker.
    """
    if version:
        from . import __version__
        console.print(f"Pipeline Jobs CLI v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


if __name__ == "__main__":
    app()
