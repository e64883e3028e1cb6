from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape

from abt.domain.events import (
    DiscoveryFinished, JobConverted, JobEvent, JobFailed, JobSkipped, JobStarted,
    JobWouldConvert,
)
from abt.infrastructure.event_bus import EventBus


class ConsoleReporter:
    """Subscribes to job events and prints one line per noteworthy job.

    Failures and corrupt-output replacements are always shown. Individual
    conversions and skips only in verbose mode, since the progress line
    already counts them.
    """

    def __init__(
        self,
        bus: EventBus,
        console: Optional[Console] = None,
        verbose: bool = False,
        source_root: Optional[Path] = None,
    ):
        self.bus = bus
        self.console = console or Console()
        self.verbose = verbose
        self.source_root = source_root
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(DiscoveryFinished, self.on_discovery_finished)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobConverted, self.on_job_converted)
        self.bus.subscribe(JobSkipped, self.on_job_skipped)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(JobWouldConvert, self.on_job_would_convert)

    def _display_path(self, event: JobEvent) -> str:
        path = event.job.source_path
        if self.source_root is not None:
            try:
                path = path.relative_to(self.source_root)
            except ValueError:
                pass
        return escape(str(path))

    def _prefix(self, event: JobEvent) -> str:
        if event.total:
            return f"[dim]\\[{event.sequence}/{event.total}][/dim] "
        return ""

    def on_discovery_finished(self, event: DiscoveryFinished):
        self.console.print(f"Found [bold]{event.jobs}[/bold] FLAC files to process")
        if event.rejected:
            self.console.print(
                f"[yellow]Ignored {event.rejected} files with a source extension but no FLAC signature[/yellow]"
            )

    def on_job_started(self, event: JobStarted):
        if event.replacing_corrupt:
            self.console.print(
                f"{self._prefix(event)}[yellow]Replacing corrupt file:[/yellow] {self._display_path(event)}"
            )
        elif self.verbose:
            self.console.print(f"{self._prefix(event)}Converting: {self._display_path(event)}")

    def on_job_converted(self, event: JobConverted):
        if self.verbose:
            self.console.print(f"{self._prefix(event)}[green]✓[/green] {self._display_path(event)}")

    def on_job_skipped(self, event: JobSkipped):
        if self.verbose:
            self.console.print(
                f"{self._prefix(event)}[yellow]⊘[/yellow] Skipping (already exists): {self._display_path(event)}"
            )

    def on_job_failed(self, event: JobFailed):
        self.console.print(
            f"{self._prefix(event)}[red]✗ {escape(event.error_message)}:[/red] {self._display_path(event)}"
        )

    def on_job_would_convert(self, event: JobWouldConvert):
        self.console.print(f"[cyan]Would convert:[/cyan] {self._display_path(event)}")
