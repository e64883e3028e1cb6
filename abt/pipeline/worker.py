"""Per-job conversion logic.

Each job walks the same stages and stops at the first one that decides it:

1. dry run        -> would-skip or would-convert, nothing touches the disk
2. directory      -> the output's parent directory must exist
3. existing file  -> a valid output is kept unless overwriting
4. encode         -> into a temporary file next to the destination
5. publish        -> atomic rename onto the final name

Whatever the path taken, exactly one of the success/skipped/failed counters
is incremented exactly once, so the counters always add up to the number of
finished jobs.
"""

import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

from abt.config.models import OUTPUT_EXTENSION, RunConfig
from abt.domain.events import (
    JobConverted, JobFailed, JobSkipped, JobStarted, JobWouldConvert,
)
from abt.domain.models import Job, JobOutcome
from abt.infrastructure.event_bus import EventBus
from abt.infrastructure.format_validator import is_valid_output
from abt.infrastructure.shared_state import SharedStateStore


class ConversionWorker:
    """Runs one job at a time; safe to call from many threads at once."""

    def __init__(
        self,
        config: RunConfig,
        store: SharedStateStore,
        encoder,
        event_bus: Optional[EventBus] = None,
        total: int = 0,
        shutdown_event: Optional[threading.Event] = None,
        output_validator: Optional[Callable[[Path], bool]] = None,
    ):
        self.config = config
        self.store = store
        self.encoder = encoder
        self.event_bus = event_bus
        self.total = total
        self.shutdown_event = shutdown_event
        self.output_validator = output_validator or (
            lambda path: is_valid_output(path, config.min_output_bytes)
        )
        self.logger = logging.getLogger(__name__)

    def _publish(self, event) -> None:
        if self.event_bus is None:
            return
        try:
            self.event_bus.publish(event)
        except Exception:
            # Display only; counters are already final at this point
            self.logger.exception(f"Event subscriber failed for {type(event).__name__}")

    def _has_valid_output(self, job: Job) -> bool:
        return job.output_path.is_file() and self.output_validator(job.output_path)

    def _fail(self, job: Job, cause: str, sequence: int, diagnostics: Optional[str] = None) -> JobOutcome:
        self.logger.error(f"{cause}: {job.source_path}")
        self.store.failed.increment()
        # The job is counted; losing its details must not fail it a second time
        try:
            self.store.record_failure(job.source_path, cause)
            if diagnostics is not None:
                self.store.log_error(f"{cause}: {job.source_path}", diagnostics)
        except OSError as e:
            self.logger.warning(f"Failed to record failure details for {job.source_path}: {e}")
        self._publish(JobFailed(job=job, sequence=sequence, total=self.total, error_message=cause))
        return JobOutcome.FAILED

    def _skip(self, job: Job, sequence: int) -> JobOutcome:
        self.store.skipped.increment()
        self._publish(JobSkipped(job=job, sequence=sequence, total=self.total))
        return JobOutcome.SKIPPED

    def _make_temp_path(self, job: Job) -> Path:
        """Creates an empty temp file beside the destination, keeping the output extension."""
        fd, temp_name = tempfile.mkstemp(
            prefix=f"{job.output_path.name}.tmp.",
            suffix=OUTPUT_EXTENSION,
            dir=str(job.output_path.parent),
        )
        os.close(fd)
        return Path(temp_name)

    def process(self, job: Job) -> JobOutcome:
        """Converts a single job and records the outcome in the shared store."""
        filename = job.source_path.name
        start_time = time.monotonic() if self.config.debug else None
        sequence = self.store.sequence.increment() or 0

        if self.config.debug:
            self.logger.info(f"PROCESS_START: {filename} [{sequence}/{self.total}] (thread {threading.get_ident()})")

        temp_files: List[Path] = []
        try:
            outcome = self._run_stages(job, sequence, temp_files)
        except Exception as e:
            # Never let one bad job take the pool down
            self.logger.exception(f"Exception processing {filename}")
            outcome = self._fail(job, "Unexpected error", sequence, diagnostics=f"{type(e).__name__}: {e}")
        finally:
            # Published output was renamed away; anything left here is partial
            for temp_output in temp_files:
                if temp_output.exists():
                    try:
                        temp_output.unlink()
                    except OSError as e:
                        self.logger.warning(f"Failed to cleanup temp file {temp_output}: {e}")
            if self.config.debug and start_time is not None:
                elapsed = time.monotonic() - start_time
                self.logger.info(f"PROCESS_END: {filename} elapsed={elapsed:.2f}s")

        if self.config.debug:
            self.logger.info(f"PROCESS_RESULT: {filename} status={outcome.value}")
        return outcome

    def _run_stages(self, job: Job, sequence: int, temp_files: List[Path]) -> JobOutcome:
        """Temp files created along the way are appended to temp_files for the caller to remove."""
        # 1. Dry run
        if self.config.dry_run:
            if not self.config.overwrite and self._has_valid_output(job):
                return self._skip(job, sequence)
            # success doubles as the would-convert count in dry runs
            self.store.success.increment()
            self._publish(JobWouldConvert(job=job, sequence=sequence, total=self.total))
            return JobOutcome.WOULD_CONVERT

        # 2. Output directory
        dest_dir = job.output_path.parent
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return self._fail(job, f"Failed to create directory {dest_dir}", sequence, diagnostics=str(e))

        # 3. Existing output
        replacing_corrupt = False
        if job.output_path.exists():
            if self.config.overwrite:
                pass
            elif self._has_valid_output(job):
                return self._skip(job, sequence)
            else:
                replacing_corrupt = True
                self.logger.warning(f"Replacing corrupt file: {job.output_path}")

        # 4. Encode into a temp file carrying the real extension
        try:
            temp_output = self._make_temp_path(job)
            temp_files.append(temp_output)
        except OSError as e:
            return self._fail(job, "Failed to create temp file", sequence, diagnostics=str(e))

        self._publish(JobStarted(job=job, sequence=sequence, total=self.total, replacing_corrupt=replacing_corrupt))
        result = self.encoder.encode(
            job.source_path,
            temp_output,
            self.config.quality,
            shutdown_event=self.shutdown_event,
        )
        if result.interrupted:
            self.logger.info(f"Interrupted: {job.source_path}")
            return JobOutcome.INTERRUPTED
        if not result.success:
            outcome = self._fail(
                job,
                "Conversion failed",
                sequence,
                diagnostics=f"ffmpeg error output:\n{result.diagnostics}",
            )
            return outcome

        # 5. Publish atomically; the final name never shows a partial file
        try:
            os.replace(temp_output, job.output_path)
        except OSError as e:
            outcome = self._fail(
                job,
                "Failed to move output",
                sequence,
                diagnostics=f"Could not move temporary file to destination: {e}",
            )
            return outcome

        self.store.success.increment()
        self._publish(JobConverted(job=job, sequence=sequence, total=self.total))
        return JobOutcome.CONVERTED
