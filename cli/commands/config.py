"""Configuration Commands - CLI settings management"""

import typer
from rich.console import Console
from rich.panel import Panel

from ..utils.config_manager import config
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="config", help="CLI configuration management")


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Configuration key (e.g., 'api.base_url')"),
    value: str = typer.Argument(..., help="Configuration value"),
):
    """⚙️ Set a configuration value"""
    # Validate common keys
    if key == "api.base_url" and not value.startswith(("http://", "https://")):
        print_error("API base URL must start with http:// or https://")
        raise typer.Exit(1)

    if key.endswith((".timeout", ".interval_s", ".jobs_per_page")) and not value.isdigit():
        print_error(f"{key} must be numeric")
        raise typer.Exit(1)

    try:
        config.set(key, int(value) if value.isdigit() else value)
    except OSError as e:
        print_error(f"Failed to set configuration: {e}")
        raise typer.Exit(1) from None

    print_success(f"Set {key} = {value}")

    # Show helpful tips for common keys
    if key == "api.base_url":
        print_info("Test connection with: pipeline-jobs status")
    elif key in ("api.user_id", "api.session_id"):
        print_info("Requests now identify as this tenant (server must use AUTH_MODE=headers)")


@app.command("get")
def get_config(key: str = typer.Argument(..., help="Configuration key")):
    """📋 Get a configuration value"""
    value = config.get(key)
    if value is None:
        console.print(f"[yellow]Key '{key}' not set[/yellow]")
    else:
        console.print(f"[cyan]{key}[/cyan] = [yellow]{value}[/yellow]")


@app.command("show")
def show_all_config():
    """📊 Show all configuration settings"""
    console.print(
        Panel(
            "[bold cyan]Pipeline Jobs CLI Configuration[/bold cyan]\n\n"
            f"[dim]Configuration is stored in {config.config_file}[/dim]",
            title="Configuration",
            border_style="blue",
        )
    )
    _display_config_section(config.load_config(), "")


@app.command("reset")
def reset_config(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🔄 Reset configuration to defaults"""
    if not yes and not typer.confirm("Reset ALL configuration to defaults?"):
        console.print("Configuration reset cancelled.")
        return

    config.reset()
    print_success("Configuration reset to defaults")


def _display_config_section(data, prefix: str, indent: int = 0):
    """Recursively display configuration sections"""
    indent_str = "  " * indent

    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else key

        if isinstance(value, dict):
            console.print(f"{indent_str}[bold blue]{key}:[/bold blue]")
            _display_config_section(value, full_key, indent + 1)
        elif value is None:
            console.print(f"{indent_str}[cyan]{key}[/cyan]: [dim]not set[/dim]")
        elif isinstance(value, int | float):
            console.print(f"{indent_str}[cyan]{key}[/cyan]: [cyan]{value}[/cyan]")
        elif isinstance(value, str) and value.startswith("http"):
            console.print(f"{indent_str}[cyan]{key}[/cyan]: [blue]{value}[/blue]")
        else:
            console.print(f"{indent_str}[cyan]{key}[/cyan]: [yellow]{value}[/yellow]")
