"""Filesystem-backed shared state for concurrently running workers.

Every piece of mutable run state (outcome counters, the failure list, the
error log) lives as a plain file inside one scratch directory, and every
read-modify-write happens under a lock that is itself a directory created
with ``mkdir``. Because ``mkdir`` either creates the directory or fails
atomically, the lock works between threads and between unrelated processes
alike; nothing here relies on shared memory.

A lock whose holder died is detected by age: once a waiter has polled for
the full timeout and the lock directory is older than the staleness
threshold, the waiter reclaims it.
"""

import logging
import os
import shutil
import tempfile
import threading
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from abt.domain.models import FailureRecord, ProgressSnapshot

logger = logging.getLogger(__name__)

OWNER_FILE = "owner"
COUNTER_NAMES = ("success", "skipped", "failed", "sequence")


class LockSettings(BaseModel):
    timeout_s: float = Field(default=5.0, gt=0)
    poll_interval_s: float = Field(default=0.1, gt=0)
    stale_after_s: float = Field(default=5.0, gt=0)


class FileLock:
    """Exclusive lock identified by a directory path.

    One instance represents one acquisition; create a fresh instance per
    critical section when several threads share the same lock path.
    """

    def __init__(self, path: Path, settings: Optional[LockSettings] = None):
        self.path = Path(path)
        self.settings = settings or LockSettings()
        self._token: Optional[str] = None

    @property
    def held(self) -> bool:
        return self._token is not None

    def age(self) -> Optional[float]:
        """Seconds since the lock directory was last touched, None if it does not exist."""
        try:
            return max(0.0, time.time() - self.path.stat().st_mtime)
        except FileNotFoundError:
            return None

    def _try_create(self) -> bool:
        try:
            os.mkdir(self.path)
        except FileExistsError:
            return False
        token = f"{os.getpid()}:{threading.get_ident()}:{uuid.uuid4().hex}"
        try:
            (self.path / OWNER_FILE).write_text(token)
        except OSError:
            # Lock is still ours even if the owner note could not be written
            pass
        self._token = token
        return True

    def _reclaim_stale(self) -> bool:
        """Moves a stale lock out of the way. Only one of several racing reclaimers wins the rename.

        Staleness is checked again on the moved directory: if another waiter
        reclaimed the lock and created a fresh one in between, that fresh lock
        is what got moved, and it is put back.
        """
        tombstone = self.path.with_name(f"{self.path.name}.stale.{uuid.uuid4().hex}")
        try:
            os.rename(self.path, tombstone)
        except OSError:
            return False
        try:
            moved_age = time.time() - tombstone.stat().st_mtime
        except OSError:
            moved_age = None
        if moved_age is not None and moved_age <= self.settings.stale_after_s:
            try:
                os.rename(tombstone, self.path)
            except OSError as e:
                logger.warning(f"Could not restore live lock {self.path}: {e}")
                shutil.rmtree(tombstone, ignore_errors=True)
            return False
        shutil.rmtree(tombstone, ignore_errors=True)
        logger.warning(f"Reclaimed stale lock {self.path}")
        return True

    def acquire(self) -> bool:
        """Polls until the lock is ours. Returns False on timeout with a live holder."""
        if self.held:
            raise RuntimeError(f"Lock already held by this instance: {self.path}")
        deadline = time.monotonic() + self.settings.timeout_s
        while not self._try_create():
            if time.monotonic() >= deadline:
                age = self.age()
                if age is not None and age <= self.settings.stale_after_s:
                    return False
                if age is not None:
                    self._reclaim_stale()
                # One last attempt: the lock is gone, or another waiter beat us to it
                return self._try_create()
            time.sleep(self.settings.poll_interval_s)
        return True

    def release(self) -> None:
        if not self.held:
            return
        token, self._token = self._token, None
        owner_path = self.path / OWNER_FILE
        try:
            current = owner_path.read_text()
        except OSError:
            current = token
        if current != token:
            logger.warning(f"Lock {self.path} was reclaimed by another worker before release")
            return
        try:
            owner_path.unlink()
        except FileNotFoundError:
            pass
        try:
            os.rmdir(self.path)
        except OSError as e:
            logger.warning(f"Failed to release lock {self.path}: {e}")


def _write_atomic(path: Path, text: str) -> None:
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}")
    tmp_path.write_text(text)
    os.replace(tmp_path, path)


class SharedCounter:
    """A named non-negative integer persisted in a file, guarded by its own lock."""

    def __init__(self, path: Path, settings: Optional[LockSettings] = None):
        self.path = Path(path)
        self.lock_path = self.path.with_name(f"{self.path.name}.lock")
        self.settings = settings or LockSettings()

    @property
    def name(self) -> str:
        return self.path.name

    def initialize(self) -> None:
        _write_atomic(self.path, "0")

    def read(self) -> int:
        """Lock-free read; writes are atomic replaces so a torn value is never seen."""
        try:
            return int(self.path.read_text().strip() or 0)
        except (OSError, ValueError):
            return 0

    def increment(self) -> Optional[int]:
        """Adds one under the lock and returns the new value.

        On lock timeout the increment is dropped and None is returned: the
        count may come out low but the stored value is never corrupted.
        """
        lock = FileLock(self.lock_path, self.settings)
        if not lock.acquire():
            logger.warning(f"Failed to acquire lock for counter '{self.name}'; increment lost")
            return None
        try:
            value = self.read() + 1
            _write_atomic(self.path, str(value))
            return value
        finally:
            lock.release()


class SharedAppendFile:
    """Append-only text file; each append happens under the file's lock."""

    def __init__(self, path: Path, settings: Optional[LockSettings] = None):
        self.path = Path(path)
        self.lock_path = self.path.with_name(f"{self.path.name}.lock")
        self.settings = settings or LockSettings()

    def initialize(self) -> None:
        self.path.touch()

    def append(self, text: str) -> bool:
        lock = FileLock(self.lock_path, self.settings)
        if not lock.acquire():
            logger.warning(f"Failed to acquire lock for {self.path.name}; entry lost")
            return False
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(text)
            return True
        except OSError as e:
            logger.warning(f"Failed to write {self.path.name}: {e}; entry lost")
            return False
        finally:
            lock.release()

    def read_text(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError:
            return ""


class SharedStateStore:
    """Counters, failure list and error log of one run, kept in a scratch directory.

    The store holds only paths and numbers, so it can be handed to worker
    threads or pickled into worker processes unchanged.
    """

    def __init__(self, scratch_dir: Path, settings: Optional[LockSettings] = None):
        self.scratch_dir = Path(scratch_dir)
        self.settings = settings or LockSettings()
        self.success = SharedCounter(self.scratch_dir / "success", self.settings)
        self.skipped = SharedCounter(self.scratch_dir / "skipped", self.settings)
        self.failed = SharedCounter(self.scratch_dir / "failed", self.settings)
        self.sequence = SharedCounter(self.scratch_dir / "sequence", self.settings)
        self.failures = SharedAppendFile(self.scratch_dir / "failed_list.jsonl", self.settings)
        self.error_log = SharedAppendFile(self.scratch_dir / "conversion_errors.log", self.settings)

    @classmethod
    def create(cls, settings: Optional[LockSettings] = None, parent: Optional[Path] = None) -> "SharedStateStore":
        scratch_dir = Path(tempfile.mkdtemp(prefix="abt-", dir=str(parent) if parent else None))
        store = cls(scratch_dir, settings)
        store.initialize()
        logger.debug(f"Shared state initialized in {scratch_dir}")
        return store

    def initialize(self) -> None:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        for counter in (self.success, self.skipped, self.failed, self.sequence):
            counter.initialize()
        self.failures.initialize()
        self.error_log.initialize()

    def record_failure(self, path: Path, cause: str) -> bool:
        record = FailureRecord(path=path, cause=cause)
        return self.failures.append(record.model_dump_json() + "\n")

    def log_error(self, headline: str, detail: str = "") -> bool:
        """Appends a timestamped block to the error log."""
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        lines = [f"[{stamp}] {headline}"]
        for line in detail.splitlines():
            lines.append(f"  {line}")
        return self.error_log.append("\n".join(lines) + "\n\n")

    def read_failures(self) -> List[FailureRecord]:
        records: List[FailureRecord] = []
        for line in self.failures.read_text().splitlines():
            if not line.strip():
                continue
            try:
                records.append(FailureRecord.model_validate_json(line))
            except ValueError:
                logger.warning(f"Skipping unreadable failure record: {line!r}")
        return records

    def error_log_text(self) -> str:
        return self.error_log.read_text()

    def snapshot(self, total: int, elapsed_seconds: float, warmup_seconds: float = 2.0) -> ProgressSnapshot:
        return ProgressSnapshot(
            success=self.success.read(),
            skipped=self.skipped.read(),
            failed=self.failed.read(),
            total=total,
            elapsed_seconds=elapsed_seconds,
            warmup_seconds=warmup_seconds,
        )

    def cleanup(self) -> None:
        """Removes the scratch directory. Safe to call more than once."""
        if self.scratch_dir.exists():
            shutil.rmtree(self.scratch_dir, ignore_errors=True)
            logger.debug(f"Shared state removed: {self.scratch_dir}")
