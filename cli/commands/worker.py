"""Worker Commands - run the job worker in-process"""

import asyncio
import signal

import typer
from rich.console import Console
from rich.panel import Panel

from api.config.logging import setup_logging
from api.config.settings import settings
from api.v1.infra.jobs.worker import build_worker

console = Console()
app = typer.Typer(name="worker", help="Job worker commands")


async def _run_worker(once: bool) -> int:
    worker = build_worker(settings)

    if once:
        return await worker.drain()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.ensure_future(worker.stop()))

    await worker.start()
    return 0


@app.command("run")
def run_worker(
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-c", min=1, help="Override JOB_CONCURRENCY"
    ),
    once: bool = typer.Option(
        False, "--once", help="Process runnable jobs, then exit"
    ),
):
    """⚙️ Run a job worker against the configured database"""
    setup_logging()
    if concurrency:
        settings.job_concurrency = concurrency

    console.print(
        Panel(
            f"• Provider: [cyan]{settings.analysis_provider.value}[/cyan]\n"
            f"• Concurrency: [yellow]{settings.job_concurrency}[/yellow]\n"
            f"• Mode: [green]{'drain' if once else 'continuous'}[/green]",
            title="Job Worker",
            border_style="blue",
        )
    )

    processed = asyncio.run(_run_worker(once))
    if once:
        console.print(f"Processed [cyan]{processed}[/cyan] jobs")
