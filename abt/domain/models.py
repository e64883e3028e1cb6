from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class FileKind(str, Enum):
    SOURCE = "SOURCE"
    OUTPUT = "OUTPUT"
    INVALID = "INVALID"


class JobOutcome(str, Enum):
    CONVERTED = "CONVERTED"
    WOULD_CONVERT = "WOULD_CONVERT"  # dry run
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    INTERRUPTED = "INTERRUPTED"  # Ctrl+C, no counter touched


class Job(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_path: Path
    output_path: Path
    size_bytes: int = 0


class FailureRecord(BaseModel):
    path: Path
    cause: str
    timestamp: datetime = Field(default_factory=datetime.now)


def format_duration(seconds: float) -> str:
    """Format seconds as 45s, 2m 30s or 1h 15m."""
    seconds = max(0, int(seconds))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class ProgressSnapshot(BaseModel):
    """Point-in-time view of the shared counters; never stored."""
    model_config = ConfigDict(frozen=True)

    success: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    elapsed_seconds: float = 0.0
    warmup_seconds: float = 2.0
    unknown_after_seconds: float = 5.0

    @property
    def processed(self) -> int:
        return self.success + self.skipped + self.failed

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.processed)

    @property
    def finished(self) -> bool:
        return self.processed >= self.total

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return min(100, self.processed * 100 // self.total)

    @property
    def eta_seconds(self) -> Optional[float]:
        if self.finished:
            return 0.0
        if self.processed > 0 and self.elapsed_seconds > self.warmup_seconds:
            return max(0.0, self.elapsed_seconds * self.remaining / self.processed)
        return None

    @property
    def eta_label(self) -> str:
        if self.finished:
            return "done"
        eta = self.eta_seconds
        if eta is not None:
            return format_duration(eta)
        if self.processed == 0 and self.elapsed_seconds > self.unknown_after_seconds:
            return "unknown"
        return "calculating..."


class RunSummary(BaseModel):
    success: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    dry_run: bool = False
    elapsed_seconds: float = 0.0
    failures: List[FailureRecord] = Field(default_factory=list)
    error_log_path: Optional[Path] = None
    dest_root: Optional[Path] = None

    @property
    def processed(self) -> int:
        return self.success + self.skipped + self.failed
