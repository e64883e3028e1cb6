import os
from pathlib import Path
from typing import List, Generator, Optional


class FileScanner:
    """Recursively scans for files whose name carries one of the given extensions."""

    def __init__(self, extensions: List[str], exclude_dirs: Optional[List[Path]] = None):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.exclude_dirs = {Path(p).resolve() for p in (exclude_dirs or [])}

    def scan(self, root_dir: Path) -> Generator[Path, None, None]:
        """Scans the directory depth-first in sorted order and yields matching paths."""
        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)

            # Skip excluded subtrees (destination nested inside the source)
            if self.exclude_dirs:
                dirs[:] = [d for d in dirs if (root_path / d).resolve() not in self.exclude_dirs]

            # Ensure deterministic traversal: sort directories and files
            dirs.sort()
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                if file_path.suffix.lower() not in self.extensions:
                    continue
                if not file_path.is_file():
                    continue
                yield file_path
