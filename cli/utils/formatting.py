"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "blue",
    "succeeded": "green",
    "failed": "red",
    "cancelled": "dim",
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


def styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def format_progress(progress: dict[str, Any] | None) -> str:
    """Render stored progress as '2/4 Generating audiences'"""
    if not progress:
        return "-"
    step = progress.get("step_index", 0)
    total = progress.get("total_steps") or "?"
    label = progress.get("step_label", "")
    return f"{step}/{total} {label}".strip()


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a jobs list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Priority", justify="center", style="yellow")
    table.add_column("Attempts", justify="center")
    table.add_column("Progress", justify="left", style="white")
    table.add_column("Created", justify="left", style="dim")

    for job in jobs:
        table.add_row(
            str(job.get("id", ""))[:8],  # Short ID
            job.get("type", ""),
            styled_status(job.get("status", "")),
            str(job.get("priority", "")),
            f"{job.get('attempts', 0)}/{job.get('max_attempts', '?')}",
            format_progress(job.get("progress")),
            str(job.get("created_at", ""))[:19],
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Create a detail panel for a single job"""
    lines = [
        f"• ID: [cyan]{job.get('id')}[/cyan]",
        f"• Type: [magenta]{job.get('type')}[/magenta]",
        f"• Status: {styled_status(job.get('status', ''))}",
        f"• Attempts: {job.get('attempts', 0)}/{job.get('max_attempts', '?')}",
        f"• Progress: {format_progress(job.get('progress'))}",
    ]
    if job.get("error_message"):
        lines.append(
            f"• Error: [red]{job.get('error_code') or 'ERROR'}: {job['error_message']}[/red]"
        )
    if job.get("completed_at"):
        lines.append(f"• Completed: [dim]{job['completed_at']}[/dim]")

    border = STATUS_STYLES.get(job.get("status", ""), "white")
    if border == "dim":
        border = "white"
    return Panel("\n".join(lines), title="Job", border_style=border)


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for job statistics"""
    by_status = stats.get("by_status", {})
    by_type = stats.get("by_type", {})
    status_lines = "\n".join(
        f"  {styled_status(name)}: {count}" for name, count in sorted(by_status.items())
    )
    type_lines = "\n".join(
        f"  [magenta]{name}[/magenta]: {count}" for name, count in sorted(by_type.items())
    )
    content = (
        f"📊 [bold blue]Job Statistics[/bold blue]\n\n"
        f"• Total jobs: [cyan]{stats.get('total_jobs', 0)}[/cyan]\n"
        f"• Queue depth: [yellow]{stats.get('queue_depth', 0)}[/yellow]\n"
        f"• Failed (last hour): [red]{stats.get('failed_last_hour', 0)}[/red]\n\n"
        f"[bold]By status[/bold]\n{status_lines or '  -'}\n\n"
        f"[bold]By type[/bold]\n{type_lines or '  -'}"
    )
    return Panel(content, title="Job Stats", border_style="green")
