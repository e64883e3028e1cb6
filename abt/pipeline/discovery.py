import logging
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from abt.config.directories import is_nested
from abt.config.models import OUTPUT_EXTENSION, RunConfig
from abt.domain.models import FileKind, Job
from abt.infrastructure.file_scanner import FileScanner
from abt.infrastructure.format_validator import classify


class DiscoveryResult(BaseModel):
    jobs: List[Job] = Field(default_factory=list)
    candidates: int = 0
    rejected: List[Path] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.jobs)

    @property
    def total_input_bytes(self) -> int:
        return sum(job.size_bytes for job in self.jobs)


class JobDiscovery:
    """Turns the source tree into the ordered list of conversion jobs.

    Candidates are picked by extension, then confirmed by content signature,
    so files merely named ``*.flac`` never become jobs.
    """

    def __init__(
        self,
        config: RunConfig,
        file_scanner: Optional[FileScanner] = None,
        classifier: Callable[[Path], FileKind] = classify,
    ):
        self.config = config
        self.classifier = classifier
        self.logger = logging.getLogger(__name__)
        if file_scanner is None:
            exclude = []
            if self.dest_nested_in_source():
                exclude.append(config.dest_root)
            file_scanner = FileScanner(config.source_extensions, exclude_dirs=exclude)
        self.file_scanner = file_scanner

    def dest_nested_in_source(self) -> bool:
        return is_nested(self.config.dest_root, self.config.source_root)

    def output_path_for(self, source_path: Path) -> Path:
        """Mirrors source_path under dest_root and swaps the extension."""
        try:
            rel_path = source_path.relative_to(self.config.source_root)
        except ValueError:
            rel_path = Path(source_path.name)
        return self.config.dest_root / rel_path.with_suffix(OUTPUT_EXTENSION)

    def discover(self) -> DiscoveryResult:
        result = DiscoveryResult()
        if self.config.debug:
            self.logger.info(f"DISCOVERY_START: scanning {self.config.source_root}")

        for candidate in self.file_scanner.scan(self.config.source_root):
            result.candidates += 1
            if self.classifier(candidate) is not FileKind.SOURCE:
                self.logger.info(f"Ignoring {candidate}: not a valid FLAC stream")
                result.rejected.append(candidate)
                continue
            try:
                size_bytes = candidate.stat().st_size
            except OSError as e:
                # Skip files we can't access
                self.logger.warning(f"Cannot stat {candidate}: {e}")
                result.rejected.append(candidate)
                continue
            result.jobs.append(
                Job(
                    source_path=candidate,
                    output_path=self.output_path_for(candidate),
                    size_bytes=size_bytes,
                )
            )

        self.logger.info(
            f"Discovery finished: candidates={result.candidates}, jobs={result.total}, "
            f"rejected={len(result.rejected)}"
        )
        return result
