import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
import typer
import yaml
from pydantic import ValidationError
from rich.console import Console

from abt.config.directories import resolve_directories
from abt.config.loader import load_config
from abt.config.models import RunConfig
from abt.config.quality import parse_quality
from abt.domain.exceptions import AbtError, ConfigError, EncoderUnavailableError
from abt.infrastructure.event_bus import EventBus
from abt.infrastructure.ffmpeg import FFmpegAdapter
from abt.infrastructure.logging import setup_logging
from abt.pipeline.orchestrator import Orchestrator
from abt.ui.progress import ProgressMonitor
from abt.ui.reporter import ConsoleReporter

app = typer.Typer(help="ABT (Audio Batch Transcoder) - mirror a FLAC library as MP3")

DEFAULT_CONFIG_PATH = Path("conf/abt.yaml")


def format_size(size: float) -> str:
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}TB"


def _fail(message: str) -> None:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.command()
def convert(
    source_dir: Path = typer.Argument(..., help="Directory tree containing FLAC files"),
    dest_dir: Path = typer.Argument(..., help="Directory receiving the mirrored MP3 tree"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be converted without writing anything"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Re-encode even when a valid MP3 already exists"),
    bitrate: Optional[str] = typer.Option(
        None,
        "--bitrate",
        "-b",
        help="CBR (320k, 256k, 192k, 128k) or VBR (V0, V2, V4, V6). Default: 320k",
    ),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", min=1, help="Override number of parallel encoders"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    log_path: Optional[Path] = typer.Option(
        None,
        "--log-path",
        help="Log file path (default: <dest>/abt.log; dry runs write no log unless set)",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Convert every FLAC file under SOURCE_DIR into an MP3 under DEST_DIR, keeping the layout."""
    console = Console()

    try:
        if config_path is None and DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
        try:
            config = load_config(config_path)
        except (FileNotFoundError, ConfigError, ValidationError, yaml.YAMLError) as exc:
            _fail(f"Invalid configuration: {exc}")

        # Apply CLI overrides
        if threads: config.general.threads = threads
        if log_path is not None: config.general.log_path = str(log_path)
        if debug: config.general.debug = True

        encoder = FFmpegAdapter(config.general.encoder, debug=config.general.debug)
        try:
            encoder.check_available()
        except EncoderUnavailableError as exc:
            _fail(f"{exc}. Install it with your package manager (e.g. apt install ffmpeg)")

        if bitrate is not None:
            try:
                parse_quality(bitrate)
            except ValueError as exc:
                _fail(str(exc))
            config.general.bitrate = bitrate

        source, dest, nested = resolve_directories(source_dir, dest_dir, create_dest=not dry_run)

        if nested:
            typer.secho(
                "Warning: Destination directory is inside source directory",
                fg=typer.colors.YELLOW,
            )
            typer.echo("This may cause issues if you run the conversion again.")
            if not dry_run and not yes and not typer.confirm("Continue anyway?"):
                typer.echo("Conversion cancelled")
                return

        # Dry runs leave the destination untouched, including the log
        log_path_value = Path(config.general.log_path) if config.general.log_path else None
        logger = setup_logging(
            None if dry_run else dest,
            debug=config.general.debug,
            log_path=log_path_value,
        )
        logger.info(f"ABT started: source={source} dest={dest} dry_run={dry_run} overwrite={overwrite}")

        run_config = RunConfig.from_app_config(
            config,
            source_root=source,
            dest_root=dest,
            overwrite=overwrite,
            dry_run=dry_run,
        )
        logger.info(
            f"Config: quality={run_config.quality.label}, workers={run_config.pool_size}, "
            f"debug={run_config.debug}"
        )

        bus = EventBus()
        ConsoleReporter(bus, console, verbose=run_config.debug, source_root=source)
        def monitor_factory(store, total, start_time):
            return ProgressMonitor(
                store,
                total,
                interval_s=run_config.progress_interval_s,
                warmup_s=run_config.eta_warmup_s,
                console=console,
                start_time=start_time,
            )

        orchestrator = Orchestrator(
            run_config, bus, encoder, console=console, monitor_factory=monitor_factory
        )

        console.print(f"[bold]ABT[/bold] - {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        console.print(f"Source:      {source}")
        console.print(f"Destination: {dest}")
        console.print(f"Quality:     {run_config.quality.label}")
        console.print(f"Workers:     {run_config.pool_size}")
        if dry_run:
            console.print("[cyan]Mode:        DRY RUN (no files will be written)[/cyan]")
        elif overwrite:
            console.print("[yellow]Mode:        OVERWRITE existing files[/yellow]")
        console.print()
        console.print("Scanning for FLAC files...")

        def confirm(plan):
            if plan.capacity is not None:
                console.print(
                    f"Estimated output size: {format_size(plan.capacity.estimated_bytes)} "
                    f"(available: {format_size(plan.capacity.available_bytes)})"
                )
            if dry_run or yes:
                return True
            return typer.confirm("Proceed with conversion?")

        summary = orchestrator.run(confirm=confirm)
        if summary is None:
            typer.echo("Conversion cancelled")
        elif summary.total == 0:
            console.print("[yellow]No FLAC files found in source directory[/yellow]")

    except KeyboardInterrupt:
        # Workers and scratch state were already cleaned up by the orchestrator
        typer.secho("\nConversion interrupted by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except AbtError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    except Exception as e:
        logging.getLogger(__name__).exception("Fatal error")
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def run() -> None:
    """Console entry point. Usage errors exit with 1 instead of click's 2."""
    try:
        code = app(standalone_mode=False)
    except click.exceptions.UsageError as exc:
        exc.show()
        code = 1
    except click.exceptions.Abort:
        typer.echo("Conversion cancelled", err=True)
        code = 1
    sys.exit(code or 0)


if __name__ == "__main__":
    run()
