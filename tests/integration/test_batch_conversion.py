"""End-to-end runs through the orchestrator with a fake encoder."""
from collections import namedtuple
from io import StringIO
import pytest
from rich.console import Console
from abt.infrastructure.event_bus import EventBus
from abt.infrastructure.format_validator import is_valid_output
from abt.pipeline.capacity import CapacityPlanner
from abt.pipeline.orchestrator import Orchestrator
from tests.helpers import FakeEncoder, write_flac, write_mp3

pytestmark = pytest.mark.integration

DiskUsage = namedtuple("DiskUsage", "total used free")


def _run(config, encoder=None):
    orchestrator = Orchestrator(
        config,
        EventBus(),
        encoder or FakeEncoder(),
        capacity_planner=CapacityPlanner(config, disk_usage=lambda p: DiskUsage(0, 0, 1024 ** 4)),
        console=Console(file=StringIO(), force_terminal=False, width=400),
    )
    return orchestrator.run()


def _library(source_dir, count=10):
    paths = []
    for i in range(count):
        paths.append(write_flac(source_dir / f"Artist {i % 3}" / f"Album {i % 2}" / f"{i:02d} - Track.flac"))
    return paths


def _outputs(dest_dir):
    return sorted(p for p in dest_dir.rglob("*.mp3") if ".tmp." not in p.name)


def test_ten_files_pool_of_two(make_run_config, source_dir, dest_dir):
    _library(source_dir, 10)

    summary = _run(make_run_config(pool_size=2))

    assert (summary.success, summary.skipped, summary.failed) == (10, 0, 0)
    assert summary.success + summary.skipped + summary.failed == summary.total
    outputs = _outputs(dest_dir)
    assert len(outputs) == 10
    assert all(is_valid_output(p) for p in outputs)
    assert not (dest_dir / "conversion_errors.log").exists()
    assert not list(dest_dir.rglob("*.tmp.*"))


def test_rerun_skips_everything(make_run_config, source_dir, dest_dir):
    _library(source_dir, 6)
    _run(make_run_config())

    encoder = FakeEncoder()
    summary = _run(make_run_config(), encoder)

    assert (summary.success, summary.skipped, summary.failed) == (0, 6, 0)
    assert encoder.calls == []


def test_rerun_with_overwrite_converts_everything(make_run_config, source_dir, dest_dir):
    _library(source_dir, 6)
    _run(make_run_config())

    summary = _run(make_run_config(overwrite=True))

    assert (summary.success, summary.skipped, summary.failed) == (6, 0, 0)


def test_corrupt_outputs_are_replaced(make_run_config, source_dir, dest_dir):
    sources = _library(source_dir, 4)
    _run(make_run_config())
    victim = dest_dir / sources[0].relative_to(source_dir).with_suffix(".mp3")
    victim.write_bytes(b"\xff\xfb" + b"\x00" * 20)

    summary = _run(make_run_config())

    assert (summary.success, summary.skipped) == (1, 3)
    assert is_valid_output(victim)


def test_dry_run_counts_and_writes_nothing(make_run_config, source_dir, dest_dir):
    sources = _library(source_dir, 7)
    for src in sources[:3]:
        write_mp3(dest_dir / src.relative_to(source_dir).with_suffix(".mp3"))
    before = sorted(dest_dir.rglob("*"))
    encoder = FakeEncoder()

    summary = _run(make_run_config(dry_run=True), encoder)

    assert (summary.success, summary.skipped, summary.failed) == (4, 3, 0)
    assert encoder.calls == []
    assert sorted(dest_dir.rglob("*")) == before


def test_impostor_is_not_a_job(make_run_config, source_dir, dest_dir):
    _library(source_dir, 5)
    (source_dir / "Artist 0" / "cover.flac").write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 500)

    summary = _run(make_run_config())

    assert summary.total == 5
    assert not (dest_dir / "Artist 0" / "cover.mp3").exists()


def test_partial_failure_keeps_going(make_run_config, source_dir, dest_dir):
    sources = _library(source_dir, 8)
    failing = {sources[2].name, sources[5].name}

    summary = _run(make_run_config(pool_size=3), FakeEncoder(fail_names=failing))

    assert (summary.success, summary.skipped, summary.failed) == (6, 0, 2)
    assert sorted(r.path.name for r in summary.failures) == sorted(failing)
    log = (dest_dir / "conversion_errors.log").read_text()
    for name in failing:
        assert name in log
    assert not list(dest_dir.rglob("*.tmp.*"))
