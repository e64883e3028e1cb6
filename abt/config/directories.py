import os
from pathlib import Path
from typing import Tuple

from abt.domain.exceptions import DirectoryError


def _is_dir_writable(path: Path) -> bool:
    return path.is_dir() and os.access(path, os.W_OK | os.X_OK)


def _has_read_access(path: Path) -> bool:
    return os.access(path, os.R_OK | os.X_OK)


def is_nested(dest: Path, source: Path) -> bool:
    """True if dest lies strictly inside source."""
    source = source.resolve()
    dest = dest.resolve()
    if dest == source:
        return False
    try:
        dest.relative_to(source)
        return True
    except ValueError:
        return False


def validate_source_dir(source: Path) -> Path:
    if not source.exists():
        raise DirectoryError(f"Source directory does not exist: {source}")
    if not source.is_dir():
        raise DirectoryError(f"Source is not a directory: {source}")
    if not _has_read_access(source):
        raise DirectoryError(f"Source directory is not readable: {source}")
    return source.resolve()


def prepare_dest_dir(dest: Path, create: bool = True) -> Path:
    """Creates the destination if asked and checks it can be written to.

    Dry runs pass create=False: a missing destination is then accepted
    as-is, since nothing will be written to it.
    """
    if dest.exists() and not dest.is_dir():
        raise DirectoryError(f"Destination is not a directory: {dest}")
    if create:
        try:
            dest.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DirectoryError(f"Cannot create destination directory {dest}: {e}") from e
        if not _is_dir_writable(dest):
            raise DirectoryError(f"Destination directory is not writable: {dest}")
    return dest.resolve()


def resolve_directories(source: Path, dest: Path, create_dest: bool = True) -> Tuple[Path, Path, bool]:
    """Validates the source/destination pair.

    Returns (source, dest, nested) with both paths absolute; nested is True
    when the destination lies inside the source tree.
    """
    source = validate_source_dir(source)
    if dest.resolve() == source:
        raise DirectoryError("Source and destination directories cannot be the same")
    dest = prepare_dest_dir(dest, create=create_dest)
    return source, dest, is_nested(dest, source)
