"""Top-level run coordination: discover, plan capacity, convert, report."""

import logging
import threading
import time
from typing import Callable, Optional

from pydantic import BaseModel
from rich.console import Console

from abt.config.models import RunConfig
from abt.domain.events import DiscoveryFinished, ProcessingFinished
from abt.domain.models import RunSummary
from abt.infrastructure.event_bus import EventBus
from abt.infrastructure.housekeeping import HousekeepingService
from abt.infrastructure.shared_state import LockSettings, SharedStateStore
from abt.pipeline.capacity import CapacityEstimate, CapacityPlanner
from abt.pipeline.discovery import DiscoveryResult, JobDiscovery
from abt.pipeline.dispatcher import WorkerDispatcher
from abt.pipeline.report import ReportAggregator
from abt.pipeline.worker import ConversionWorker


class RunPlan(BaseModel):
    discovery: DiscoveryResult
    capacity: Optional[CapacityEstimate] = None  # not checked on dry runs

    @property
    def total(self) -> int:
        return self.discovery.total


class RunScope:
    """Owns the run's transient resources and releases them exactly once.

    close() stops the progress monitor, removes partial outputs from the
    destination (real runs only) and deletes the scratch directory. It is
    called from a finally block, so it runs on normal return, on error and
    on Ctrl+C alike; further calls do nothing.
    """

    def __init__(
        self,
        store: SharedStateStore,
        config: RunConfig,
        housekeeper: HousekeepingService,
    ):
        self.store = store
        self.config = config
        self.housekeeper = housekeeper
        self.monitor = None
        self._closed = False
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self.monitor is not None:
            try:
                self.monitor.stop()
            except Exception as e:
                self.logger.warning(f"Failed to stop progress monitor: {e}")
        if not self.config.dry_run:
            self.housekeeper.cleanup_temp_files(self.config.dest_root)
        self.store.cleanup()


class Orchestrator:
    def __init__(
        self,
        config: RunConfig,
        event_bus: EventBus,
        encoder,
        discovery: Optional[JobDiscovery] = None,
        capacity_planner: Optional[CapacityPlanner] = None,
        housekeeper: Optional[HousekeepingService] = None,
        console: Optional[Console] = None,
        store_factory: Optional[Callable[[LockSettings], SharedStateStore]] = None,
        monitor_factory: Optional[Callable] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.event_bus = event_bus
        self.encoder = encoder
        self.discovery = discovery or JobDiscovery(config)
        self.capacity_planner = capacity_planner or CapacityPlanner(config)
        self.housekeeper = housekeeper or HousekeepingService()
        self.console = console or Console()
        self.store_factory = store_factory or SharedStateStore.create
        # (store, total, start_time) -> object with start/stop; None runs without live progress
        self.monitor_factory = monitor_factory
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self._shutdown_event = threading.Event()

    @property
    def shutdown_event(self) -> threading.Event:
        return self._shutdown_event

    def _lock_settings(self) -> LockSettings:
        return LockSettings(
            timeout_s=self.config.lock_timeout_s,
            poll_interval_s=self.config.lock_poll_s,
            stale_after_s=self.config.lock_stale_s,
        )

    def plan(self) -> RunPlan:
        """Discovers jobs and, on real runs, checks the destination has room for them.

        Raises InsufficientSpaceError before anything is written.
        """
        self.logger.info(f"Discovery started: {self.config.source_root}")
        discovery = self.discovery.discover()
        self.event_bus.publish(DiscoveryFinished(
            source_root=self.config.source_root,
            candidates=discovery.candidates,
            jobs=discovery.total,
            rejected=len(discovery.rejected),
        ))

        capacity = None
        if discovery.total and not self.config.dry_run:
            capacity = self.capacity_planner.check(discovery.jobs)
        return RunPlan(discovery=discovery, capacity=capacity)

    def execute(self, plan: RunPlan) -> RunSummary:
        total = plan.total
        if total == 0:
            self.logger.info("No files to process, exiting")
            self.event_bus.publish(ProcessingFinished())
            return RunSummary(total=0, dry_run=self.config.dry_run, dest_root=self.config.dest_root)

        start_time = self.clock()
        self._shutdown_event.clear()
        store = self.store_factory(self._lock_settings())
        scope = RunScope(store, self.config, self.housekeeper)
        self.logger.info(
            f"Processing {total} jobs with {self.config.pool_size} workers "
            f"({self.config.quality.label}, overwrite={self.config.overwrite}, dry_run={self.config.dry_run})"
        )

        try:
            worker = ConversionWorker(
                self.config,
                store,
                self.encoder,
                event_bus=self.event_bus,
                total=total,
                shutdown_event=self._shutdown_event,
            )
            dispatcher = WorkerDispatcher(self.config.pool_size, shutdown_event=self._shutdown_event)

            if not self.config.dry_run and self.monitor_factory is not None:
                scope.monitor = self.monitor_factory(store, total, start_time)
                scope.monitor.start()

            dispatcher.run(plan.discovery.jobs, worker.process)

            if scope.monitor is not None:
                scope.monitor.stop()

            aggregator = ReportAggregator(self.config, store, self.console)
            summary = aggregator.collect(total, self.clock() - start_time)
            aggregator.render(summary)
            self.event_bus.publish(ProcessingFinished())
            return summary
        finally:
            scope.close()

    def run(self, confirm: Optional[Callable[[RunPlan], bool]] = None) -> Optional[RunSummary]:
        """plan() then execute(). Returns None if confirm declines the plan."""
        plan = self.plan()
        if plan.total and confirm is not None and not confirm(plan):
            self.logger.info("Run declined at confirmation")
            return None
        return self.execute(plan)
