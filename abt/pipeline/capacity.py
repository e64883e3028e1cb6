import logging
import shutil
from pathlib import Path
from typing import Callable, Iterable

from pydantic import BaseModel

from abt.config.models import RunConfig
from abt.domain.exceptions import InsufficientSpaceError
from abt.domain.models import Job


class CapacityEstimate(BaseModel):
    input_bytes: int
    estimated_bytes: int
    required_bytes: int
    available_bytes: int

    @property
    def sufficient(self) -> bool:
        return self.required_bytes <= self.available_bytes


class CapacityPlanner:
    """Projects output size from input size and checks free space up front.

    One flat output/input ratio is used for every quality directive; it is
    a rough average, not a per-bitrate model.
    """

    def __init__(self, config: RunConfig, disk_usage: Callable = shutil.disk_usage):
        self.config = config
        self.disk_usage = disk_usage
        self.logger = logging.getLogger(__name__)

    def estimate(self, input_bytes: int) -> CapacityEstimate:
        estimated = int(input_bytes * self.config.output_size_ratio)
        required = int(estimated * (1.0 + self.config.safety_margin))
        available = self._available_bytes(self.config.dest_root)
        return CapacityEstimate(
            input_bytes=input_bytes,
            estimated_bytes=estimated,
            required_bytes=required,
            available_bytes=available,
        )

    def _available_bytes(self, path: Path) -> int:
        # Walk up to the nearest existing ancestor so a not-yet-created destination still resolves
        probe = path
        while not probe.exists() and probe.parent != probe:
            probe = probe.parent
        return int(self.disk_usage(str(probe)).free)

    def check(self, jobs: Iterable[Job]) -> CapacityEstimate:
        """Raises InsufficientSpaceError when the projected output does not fit."""
        estimate = self.estimate(sum(job.size_bytes for job in jobs))
        self.logger.info(
            f"Capacity: input={estimate.input_bytes} estimated={estimate.estimated_bytes} "
            f"required={estimate.required_bytes} available={estimate.available_bytes}"
        )
        if not estimate.sufficient:
            raise InsufficientSpaceError(estimate.required_bytes, estimate.available_bytes)
        return estimate
