"""Typer CLI for change-table capture."""

from __future__ import annotations

from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from cdc_capture.config.loader import change_tables_from_config, load_capture_config
from cdc_capture.config.models import CaptureConfig

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="cdc-capture", help="Change-table capture CLI")


def _load(config_path: str) -> CaptureConfig:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    config = load_capture_config(path)
    logger.debug("cli.config_loaded", path=str(path), pipeline_id=config.pipeline_id)
    return config


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to capture YAML"),
) -> None:
    """Validate a capture configuration file."""
    try:
        config = _load(config_path)
        change_tables_from_config(config)
    except typer.Exit:
        raise
    except Exception as exc:
        console.print(f"[red]Validation error:[/red] {exc}")
        raise typer.Exit(1) from exc

    console.print(f"[green]Valid[/green]: pipeline_id={config.pipeline_id}")
    console.print(f"  database: {config.source.database}")
    console.print(f"  tables:   {config.source.tables}")
    console.print(f"  capture instances: {len(config.capture_instances)}")
    console.print(f"  overlap policy:    {config.merge.overlap_policy}")


@app.command("change-tables")
def change_tables(
    config_path: str = typer.Argument(..., help="Path to capture YAML"),
) -> None:
    """List configured capture instances with their derived change tables."""
    try:
        config = _load(config_path)
        descriptors = change_tables_from_config(config)
    except typer.Exit:
        raise
    except Exception as exc:
        console.print(f"[red]Error loading config:[/red] {exc}")
        raise typer.Exit(1) from exc

    if not descriptors:
        console.print("[yellow]No capture instances configured[/yellow]")
        return

    table = Table(title=f"Change tables: {config.pipeline_id}")
    table.add_column("Capture instance", style="cyan")
    table.add_column("Source table")
    table.add_column("Change table")
    table.add_column("Start LSN")
    table.add_column("Stop LSN")

    for ct in descriptors:
        table.add_row(
            ct.capture_instance,
            str(ct.source_table_id),
            str(ct.change_table_id),
            str(ct.start_lsn),
            str(ct.stop_lsn),
        )

    console.print(table)
