"""Domain events for the transcoding pipeline.

Workers publish these through the EventBus; the console reporter turns them
into per-job lines. Progress counters do not travel here, they live in the
shared state store.
"""

from pathlib import Path
from pydantic import BaseModel
from .models import Job


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class JobEvent(Event):
    job: Job
    sequence: int = 0
    total: int = 0


class JobStarted(JobEvent):
    """Emitted right before the encoder is invoked."""

    replacing_corrupt: bool = False


class JobConverted(JobEvent):
    pass


class JobSkipped(JobEvent):
    """Valid output already present (or would be, in a dry run)."""

    pass


class JobFailed(JobEvent):
    error_message: str


class JobWouldConvert(JobEvent):
    """Dry run: the job would be encoded."""

    pass


class DiscoveryFinished(Event):
    source_root: Path
    candidates: int
    jobs: int
    rejected: int = 0


class ProcessingFinished(Event):
    pass
