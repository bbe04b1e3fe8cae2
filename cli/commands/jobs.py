"""Jobs Commands - submit, inspect and control pipeline jobs"""

import json
import time
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.endpoints import PipelineJobsClient, PipelineJobsError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_stats_panel,
    format_progress,
    print_error,
    print_info,
    print_success,
    print_warning,
    styled_status,
)

console = Console()
app = typer.Typer(name="jobs", help="Pipeline job commands")

TERMINAL_STATUSES = {"succeeded", "failed", "cancelled"}


def _parse_json_option(value: str | None, name: str) -> dict[str, Any]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        print_error(f"--{name} must be valid JSON: {e}")
        raise typer.Exit(1) from None
    if not isinstance(parsed, dict):
        print_error(f"--{name} must be a JSON object")
        raise typer.Exit(1)
    return parsed


@app.command("submit")
def submit_job(
    type: str = typer.Argument(..., help="Job type, e.g. narrative_generation"),
    payload: str | None = typer.Option(None, "--payload", "-p", help="JSON payload"),
    priority: int | None = typer.Option(
        None, "--priority", min=0, max=10, help="Priority (10=highest)"
    ),
):
    """🚀 Submit a job"""
    body = _parse_json_option(payload, "payload")

    try:
        with PipelineJobsClient() as client:
            result = client.submit_job(type, body, priority)
    except PipelineJobsError as e:
        if e.status_code == 409:
            print_warning(
                f"A {type} job is already active: {e.details.get('job_id')} "
                f"({e.details.get('status')})"
            )
            raise typer.Exit(1) from None
        print_error(f"Failed to submit job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Submitted job {result['job_id']} ({result['status']})")


@app.command("analyze")
def analyze_website(
    url: str = typer.Argument(..., help="Website URL to analyze"),
    context: str | None = typer.Option(
        None, "--context", "-c", help="JSON context hints for the analysis"
    ),
    priority: int | None = typer.Option(None, "--priority", min=0, max=10),
    watch: bool = typer.Option(False, "--watch", "-w", help="Follow until done"),
):
    """🔎 Start a website analysis"""
    hints = _parse_json_option(context, "context")

    try:
        with PipelineJobsClient() as client:
            result = client.analyze_website(url, hints, priority)
    except PipelineJobsError as e:
        print_error(f"Failed to start analysis: {e}")
        raise typer.Exit(1) from None

    if result.get("deduplicated"):
        print_info(f"Analysis already in progress: {result['job_id']}")
    else:
        print_success(f"Analysis started: {result['job_id']}")

    if watch:
        watch_job(result["job_id"], interval=None)


@app.command("status")
def job_status(job_id: str = typer.Argument(..., help="Job ID")):
    """📋 Show a job's status, progress and error"""
    try:
        with PipelineJobsClient() as client:
            job = client.get_job(job_id)
    except PipelineJobsError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))
    if job.get("result"):
        console.print(
            Panel(json.dumps(job["result"], indent=2)[:4000], title="Result")
        )


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Jobs to show"),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
):
    """📚 List your jobs, newest first"""
    limit = limit or int(config.get("display.jobs_per_page", 20))

    try:
        with PipelineJobsClient() as client:
            data = client.list_jobs(status=status, type=type, limit=limit, offset=offset)
    except PipelineJobsError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = data.get("jobs", [])
    total = data.get("total", len(jobs))
    if not jobs:
        console.print(
            Panel("📭 [yellow]No jobs found[/yellow]", title="Jobs", border_style="yellow")
        )
        return

    console.print(create_jobs_table(jobs))
    console.print(f"\n📊 Showing [cyan]{len(jobs)}[/cyan] of [yellow]{total}[/yellow] jobs")
    if offset + limit < total:
        console.print(f"💡 Use [cyan]--offset {offset + limit}[/cyan] to see more")


@app.command("stats")
def job_stats():
    """📊 Show job statistics"""
    try:
        with PipelineJobsClient() as client:
            stats = client.job_stats()
    except PipelineJobsError as e:
        print_error(f"Failed to get stats: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_panel(stats))


@app.command("retry")
def retry_job(job_id: str = typer.Argument(..., help="Failed job ID")):
    """🔁 Retry a failed job"""
    try:
        with PipelineJobsClient() as client:
            job = client.retry_job(job_id)
    except PipelineJobsError as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job_id} is {job.get('status')} again (attempts so far: {job.get('attempts')})")


@app.command("cancel")
def cancel_job(job_id: str = typer.Argument(..., help="Job ID")):
    """🛑 Cancel a pending or processing job"""
    try:
        with PipelineJobsClient() as client:
            client.cancel_job(job_id)
    except PipelineJobsError as e:
        print_error(f"Failed to cancel job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job_id} cancelled")


@app.command("watch")
def watch_job(
    job_id: str = typer.Argument(..., help="Job ID"),
    interval: float | None = typer.Option(
        None, "--interval", "-i", help="Seconds between polls"
    ),
):
    """👀 Follow a job until it finishes"""
    interval = interval or float(config.get("watch.interval_s", 2))
    last_line = None

    try:
        with PipelineJobsClient() as client:
            while True:
                job = client.get_job(job_id)
                line = f"{styled_status(job['status'])} {format_progress(job.get('progress'))}"
                if line != last_line:
                    console.print(line)
                    last_line = line
                if job["status"] in TERMINAL_STATUSES:
                    break
                time.sleep(interval)
    except PipelineJobsError as e:
        print_error(f"Failed to watch job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))
    if job["status"] != "succeeded":
        raise typer.Exit(1)


@app.command("adopt")
def adopt_session(session_id: str = typer.Argument(..., help="Anonymous session ID")):
    """🔗 Move an anonymous session's jobs and analysis to your user"""
    try:
        with PipelineJobsClient() as client:
            summary = client.adopt_session(session_id)
    except PipelineJobsError as e:
        print_error(f"Failed to adopt session: {e}")
        raise typer.Exit(1) from None

    print_success(
        f"Adopted session {session_id}: {summary.get('jobs_moved', 0)} jobs, "
        f"{summary.get('organizations_moved', 0) + summary.get('organizations_merged', 0)} "
        f"analysis records"
    )
