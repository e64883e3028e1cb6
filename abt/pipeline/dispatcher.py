import concurrent.futures
import logging
import threading
import time
from collections import deque
from typing import Callable, Dict, Iterable, Optional

from abt.domain.models import Job, JobOutcome


class WorkerDispatcher:
    """Feeds jobs to a bounded thread pool, submitting only as slots free up.

    Never more than ``pool_size`` jobs are in flight. A job that raises is
    logged and does not stop the others.
    """

    def __init__(
        self,
        pool_size: int,
        shutdown_event: Optional[threading.Event] = None,
        interrupt_grace_s: float = 10.0,
    ):
        if pool_size < 1:
            raise ValueError(f"pool_size must be >= 1, got {pool_size}")
        self.pool_size = pool_size
        self.shutdown_event = shutdown_event or threading.Event()
        self.interrupt_grace_s = interrupt_grace_s
        self.logger = logging.getLogger(__name__)

    def run(self, jobs: Iterable[Job], handler: Callable[[Job], JobOutcome]) -> Dict[JobOutcome, int]:
        """Runs handler over every job and returns how many jobs ended in each outcome."""
        pending = deque(jobs)
        in_flight: Dict[concurrent.futures.Future, Job] = {}
        outcomes: Dict[JobOutcome, int] = {}

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.pool_size, thread_name_prefix="abt-worker"
        )

        def submit_batch():
            while len(in_flight) < self.pool_size and pending and not self.shutdown_event.is_set():
                job = pending.popleft()
                in_flight[executor.submit(handler, job)] = job

        try:
            submit_batch()
            while in_flight:
                done, _ = concurrent.futures.wait(
                    set(in_flight.keys()),
                    timeout=1.0,
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for future in done:
                    job = in_flight.pop(future)
                    try:
                        outcome = future.result()
                    except Exception as e:
                        self.logger.error(f"Worker failed with exception for {job.source_path}: {e}")
                        continue
                    outcomes[outcome] = outcomes.get(outcome, 0) + 1
                submit_batch()
        except KeyboardInterrupt:
            self.logger.info("Ctrl+C detected - stopping new jobs and interrupting active encoders...")
            self.shutdown_event.set()
            pending.clear()

            for future in list(in_flight.keys()):
                if not future.done():
                    future.cancel()

            # Running jobs watch shutdown_event and terminate their encoder
            deadline = time.monotonic() + self.interrupt_grace_s
            while True:
                running = [future for future in in_flight if not future.done()]
                if not running:
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.logger.warning(f"{len(running)} jobs still running after grace period")
                    break
                concurrent.futures.wait(
                    running,
                    timeout=min(0.2, remaining),
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )

            executor.shutdown(wait=False, cancel_futures=True)
            self.logger.info("Shutdown complete")
            raise
        else:
            executor.shutdown(wait=True)

        if self.shutdown_event.is_set() and pending:
            self.logger.info(f"Shutdown requested, {len(pending)} jobs not started")
        return outcomes
