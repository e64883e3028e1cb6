import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FILE_NAME = "abt.log"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(output_dir: Optional[Path], debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Setup logging configuration for ABT.

    Writes to log_path if given, else to abt.log inside output_dir.
    With neither (dry runs) no file is written; warnings such as lost
    counter increments still go to stderr.

    Args:
        output_dir: Destination root of the run, or None
        debug: If True, enable DEBUG level logging with per-job timings
        log_path: Optional path to log file (overrides output_dir)
    """
    level = logging.DEBUG if debug else logging.INFO

    if log_path is not None or output_dir is not None:
        log_file = Path(log_path) if log_path else (Path(output_dir) / LOG_FILE_NAME)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file)
    else:
        log_file = None
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.WARNING)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[handler],
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
