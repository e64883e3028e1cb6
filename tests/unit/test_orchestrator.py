from collections import namedtuple
from io import StringIO
from unittest.mock import MagicMock
import pytest
from rich.console import Console
from abt.domain.events import DiscoveryFinished, ProcessingFinished
from abt.domain.exceptions import InsufficientSpaceError
from abt.pipeline.capacity import CapacityPlanner
from abt.pipeline.orchestrator import Orchestrator, RunScope
from abt.infrastructure.shared_state import SharedStateStore
from tests.helpers import FakeEncoder, write_flac, write_mp3

DiskUsage = namedtuple("DiskUsage", "total used free")
GB = 1024 ** 3


@pytest.fixture
def console():
    return Console(file=StringIO(), force_terminal=False, width=400)


@pytest.fixture
def scratch_stores(tmp_path):
    """Store factory that keeps scratch dirs inside tmp_path and remembers them."""
    created = []

    def factory(settings):
        store = SharedStateStore.create(settings, parent=tmp_path)
        created.append(store)
        return store

    factory.created = created
    return factory


def _orchestrator(config, event_bus, console, scratch_stores, encoder=None, free=10 * GB):
    return Orchestrator(
        config,
        event_bus,
        encoder or FakeEncoder(),
        capacity_planner=CapacityPlanner(config, disk_usage=lambda p: DiskUsage(0, 0, free)),
        console=console,
        store_factory=scratch_stores,
    )


def test_plan_publishes_discovery(make_run_config, source_dir, event_bus, console, scratch_stores):
    write_flac(source_dir / "a.flac")
    (source_dir / "b.flac").write_text("impostor")
    events = []
    event_bus.subscribe(DiscoveryFinished, events.append)

    plan = _orchestrator(make_run_config(), event_bus, console, scratch_stores).plan()

    assert plan.total == 1
    assert plan.capacity is not None
    assert events[0].jobs == 1
    assert events[0].rejected == 1


def test_plan_raises_on_insufficient_space(make_run_config, source_dir, event_bus, console, scratch_stores):
    write_flac(source_dir / "a.flac", b"fLaC" + b"\x00" * 10000)
    orchestrator = _orchestrator(make_run_config(), event_bus, console, scratch_stores, free=100)

    with pytest.raises(InsufficientSpaceError):
        orchestrator.plan()
    assert scratch_stores.created == []


def test_dry_run_skips_capacity_check(make_run_config, source_dir, event_bus, console, scratch_stores):
    write_flac(source_dir / "a.flac", b"fLaC" + b"\x00" * 10000)
    plan = _orchestrator(make_run_config(dry_run=True), event_bus, console, scratch_stores, free=0).plan()
    assert plan.capacity is None
    assert plan.total == 1


def test_execute_converts_and_cleans_up(make_run_config, source_dir, dest_dir, event_bus, console, scratch_stores):
    for i in range(4):
        write_flac(source_dir / f"{i}.flac")
    finished = []
    event_bus.subscribe(ProcessingFinished, finished.append)

    summary = _orchestrator(make_run_config(), event_bus, console, scratch_stores).run()

    assert (summary.success, summary.skipped, summary.failed, summary.total) == (4, 0, 0, 4)
    assert sorted(p.name for p in dest_dir.iterdir()) == ["0.mp3", "1.mp3", "2.mp3", "3.mp3"]
    assert len(finished) == 1
    assert not scratch_stores.created[0].scratch_dir.exists()
    assert "Successfully converted: 4" in console.file.getvalue()


def test_execute_no_jobs(make_run_config, event_bus, console, scratch_stores):
    summary = _orchestrator(make_run_config(), event_bus, console, scratch_stores).run()
    assert summary.total == 0
    assert scratch_stores.created == []


def test_run_declined(make_run_config, source_dir, dest_dir, event_bus, console, scratch_stores):
    write_flac(source_dir / "a.flac")
    confirm = MagicMock(return_value=False)

    result = _orchestrator(make_run_config(), event_bus, console, scratch_stores).run(confirm=confirm)

    assert result is None
    confirm.assert_called_once()
    assert list(dest_dir.iterdir()) == []


def test_failures_reported_and_log_persisted(make_run_config, source_dir, dest_dir, event_bus, console, scratch_stores):
    write_flac(source_dir / "good.flac")
    write_flac(source_dir / "bad.flac")
    encoder = FakeEncoder(fail_names={"bad.flac"})

    summary = _orchestrator(make_run_config(), event_bus, console, scratch_stores, encoder=encoder).run()

    assert (summary.success, summary.failed) == (1, 1)
    assert summary.error_log_path == dest_dir / "conversion_errors.log"
    assert "bad.flac" in summary.error_log_path.read_text()
    assert not list(dest_dir.glob("*.tmp.*"))


def test_teardown_runs_on_interrupt(make_run_config, source_dir, dest_dir, event_bus, console, scratch_stores):
    write_flac(source_dir / "a.flac")

    class InterruptingEncoder:
        def encode(self, source, temp_output, quality, shutdown_event=None):
            raise KeyboardInterrupt

    orchestrator = _orchestrator(make_run_config(pool_size=1), event_bus, console, scratch_stores,
                                 encoder=InterruptingEncoder())
    # A partial output from an earlier crash is swept up as well
    (dest_dir / "old.mp3.tmp.abc.mp3").write_bytes(b"partial")

    with pytest.raises(KeyboardInterrupt):
        orchestrator.run()

    assert not scratch_stores.created[0].scratch_dir.exists()
    assert not list(dest_dir.rglob("*.tmp.*"))


def test_dry_run_writes_nothing(make_run_config, source_dir, dest_dir, event_bus, console, scratch_stores):
    write_flac(source_dir / "a.flac")
    write_flac(source_dir / "b.flac")
    write_mp3(dest_dir / "b.mp3")
    before = sorted(p.name for p in dest_dir.iterdir())

    summary = _orchestrator(make_run_config(dry_run=True), event_bus, console, scratch_stores).run()

    assert (summary.success, summary.skipped) == (1, 1)
    assert summary.dry_run
    assert sorted(p.name for p in dest_dir.iterdir()) == before
    out = console.file.getvalue()
    assert "Would convert: 1" in out
    assert "Would skip (already exist): 1" in out


def test_run_scope_closes_once(make_run_config, store):
    housekeeper = MagicMock()
    monitor = MagicMock()
    scope = RunScope(store, make_run_config(), housekeeper)
    scope.monitor = monitor

    scope.close()
    scope.close()

    assert scope.closed
    monitor.stop.assert_called_once()
    housekeeper.cleanup_temp_files.assert_called_once()
    assert not store.scratch_dir.exists()


def test_run_scope_dry_run_leaves_destination_alone(make_run_config, store):
    housekeeper = MagicMock()
    RunScope(store, make_run_config(dry_run=True), housekeeper).close()
    housekeeper.cleanup_temp_files.assert_not_called()


def test_monitor_started_and_stopped(make_run_config, source_dir, event_bus, console, scratch_stores):
    write_flac(source_dir / "a.flac")
    monitor = MagicMock()
    factory = MagicMock(return_value=monitor)
    orchestrator = Orchestrator(
        make_run_config(),
        event_bus,
        FakeEncoder(),
        capacity_planner=CapacityPlanner(make_run_config(), disk_usage=lambda p: DiskUsage(0, 0, GB)),
        console=console,
        store_factory=scratch_stores,
        monitor_factory=factory,
    )

    orchestrator.run()

    store, total, _start = factory.call_args.args
    assert store is scratch_stores.created[0]
    assert total == 1
    monitor.start.assert_called_once()
    assert monitor.stop.called


def test_dry_run_has_no_monitor(make_run_config, source_dir, event_bus, console, scratch_stores):
    write_flac(source_dir / "a.flac")
    factory = MagicMock()
    orchestrator = Orchestrator(
        make_run_config(dry_run=True),
        event_bus,
        FakeEncoder(),
        console=console,
        store_factory=scratch_stores,
        monitor_factory=factory,
    )

    orchestrator.run()
    factory.assert_not_called()
