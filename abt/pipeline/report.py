import logging
import shutil
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule

from abt.config.models import RunConfig
from abt.domain.models import RunSummary, format_duration
from abt.infrastructure.shared_state import SharedStateStore

ERROR_LOG_NAME = "conversion_errors.log"


class ReportAggregator:
    """Turns the final state of the store into a RunSummary and prints it."""

    def __init__(self, config: RunConfig, store: SharedStateStore, console: Optional[Console] = None):
        self.config = config
        self.store = store
        self.console = console or Console()
        self.logger = logging.getLogger(__name__)

    def collect(self, total: int, elapsed_seconds: float) -> RunSummary:
        summary = RunSummary(
            success=self.store.success.read(),
            skipped=self.store.skipped.read(),
            failed=self.store.failed.read(),
            total=total,
            dry_run=self.config.dry_run,
            elapsed_seconds=elapsed_seconds,
            failures=self.store.read_failures(),
            dest_root=self.config.dest_root,
        )
        if summary.failed > 0 and not self.config.dry_run:
            summary.error_log_path = self._persist_error_log()
        self.logger.info(
            f"Run finished: success={summary.success} skipped={summary.skipped} "
            f"failed={summary.failed} total={summary.total} elapsed={elapsed_seconds:.1f}s"
        )
        return summary

    def _persist_error_log(self) -> Optional[Path]:
        if not self.store.error_log_text().strip():
            return None
        target = self.config.dest_root / ERROR_LOG_NAME
        try:
            shutil.copyfile(self.store.error_log.path, target)
        except OSError as e:
            self.logger.error(f"Failed to copy error log to {target}: {e}")
            return None
        return target

    def render(self, summary: RunSummary) -> None:
        c = self.console
        c.print()
        c.print(Rule("Dry Run Summary" if summary.dry_run else "Conversion Summary"))
        if summary.dry_run:
            c.print(f"[cyan]Would convert:[/cyan] {summary.success}")
            c.print(f"[yellow]Would skip (already exist):[/yellow] {summary.skipped}")
        else:
            c.print(f"[green]Successfully converted:[/green] {summary.success}")
            c.print(f"[yellow]Skipped (already exist):[/yellow] {summary.skipped}")
        if summary.failed:
            c.print(f"[red]Failed:[/red] {summary.failed}")
        c.print(f"Total processed: {summary.processed}/{summary.total}")
        c.print(f"Elapsed: {format_duration(summary.elapsed_seconds)}")

        if summary.failures:
            c.print()
            c.print("[red]Failed files:[/red]")
            for record in summary.failures:
                c.print(f"  - {escape(str(record.path))}")

        if summary.error_log_path is not None:
            c.print()
            c.print(f"Error details saved to: {escape(str(summary.error_log_path))}")

        if not summary.dry_run and summary.dest_root is not None:
            c.print()
            c.print(f"Output directory: {escape(str(summary.dest_root))}")
