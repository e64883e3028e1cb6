import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

TEMP_MARKER = ".tmp."


class HousekeepingService:
    """Service for cleaning up partial encoder outputs."""

    def cleanup_temp_files(self, directory: Path) -> int:
        """Recursively removes temporary outputs (``<name>.tmp.<random><ext>``). Returns count removed."""
        removed = 0
        if not directory.is_dir():
            return removed
        for root, dirs, files in os.walk(directory):
            for file in files:
                if TEMP_MARKER in file:
                    try:
                        (Path(root) / file).unlink()
                        removed += 1
                    except OSError as e:
                        logger.warning(f"Failed to remove temp file {Path(root) / file}: {e}")
        if removed:
            logger.info(f"Removed {removed} partial output file(s) from {directory}")
        return removed
