import logging
import threading
import time
from typing import Callable, Optional

from rich.console import Console
from rich.live import Live
from rich.text import Text

from abt.domain.models import ProgressSnapshot
from abt.infrastructure.shared_state import SharedStateStore

BAR_WIDTH = 40
FILLED = "█"
EMPTY = "░"


def render_bar(percent: int, width: int = BAR_WIDTH) -> str:
    percent = max(0, min(100, percent))
    filled = width * percent // 100
    return FILLED * filled + EMPTY * (width - filled)


def render_progress(snapshot: ProgressSnapshot) -> Text:
    """One status line: bar, percentage, processed/total, outcome counts and ETA."""
    width = len(str(max(snapshot.total, 1)))
    text = Text()
    text.append("Progress: [")
    text.append(render_bar(snapshot.percent), style="cyan")
    text.append(f"] {snapshot.percent:3d}% ")
    text.append(f"({snapshot.processed:{width}d}/{snapshot.total}) ")
    text.append(f"✓{snapshot.success:{width}d}", style="green")
    text.append(" ")
    text.append(f"⊘{snapshot.skipped:{width}d}", style="yellow")
    text.append(" ")
    text.append(f"✗{snapshot.failed:{width}d}", style="red")
    text.append(f" ETA: {snapshot.eta_label}", style="dim")
    return text


class ProgressMonitor:
    """Periodically samples the shared counters and redraws a progress line.

    Read-only with respect to the store. The refresh thread ends on its own
    once every job is accounted for, or when stop() is called.
    """

    def __init__(
        self,
        store: SharedStateStore,
        total: int,
        interval_s: float = 2.0,
        warmup_s: float = 2.0,
        console: Optional[Console] = None,
        clock: Callable[[], float] = time.monotonic,
        start_time: Optional[float] = None,
    ):
        self.store = store
        self.total = total
        self.interval_s = interval_s
        self.warmup_s = warmup_s
        self.console = console or Console()
        self.clock = clock
        self.start_time = start_time if start_time is not None else clock()
        self.logger = logging.getLogger(__name__)
        self._stop_refresh = threading.Event()
        self._refresh_thread: Optional[threading.Thread] = None
        self._live: Optional[Live] = None
        self._last: Optional[ProgressSnapshot] = None

    @property
    def last_snapshot(self) -> Optional[ProgressSnapshot]:
        return self._last

    def sample(self) -> ProgressSnapshot:
        elapsed = self.clock() - self.start_time
        self._last = self.store.snapshot(self.total, elapsed, self.warmup_s)
        return self._last

    def _redraw(self) -> Optional[ProgressSnapshot]:
        try:
            snapshot = self.sample()
            if self._live:
                self._live.update(render_progress(snapshot))
            return snapshot
        except Exception as e:
            self.logger.warning(f"Progress refresh failed: {e}")
            return None

    def _refresh_loop(self):
        while not self._stop_refresh.wait(self.interval_s):
            snapshot = self._redraw()
            if snapshot is not None and snapshot.finished:
                break

    def start(self) -> "ProgressMonitor":
        self._live = Live(
            render_progress(self.sample()),
            console=self.console,
            refresh_per_second=4,
            transient=False,
        )
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, name="abt-progress", daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self) -> None:
        """Stops the refresh thread and leaves the final state on screen. Idempotent."""
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=self.interval_s + 1.0)
            self._refresh_thread = None
        if self._live:
            self._redraw()
            try:
                self._live.stop()
            except Exception as e:
                self.logger.warning(f"Failed to stop progress display: {e}")
            self._live = None
