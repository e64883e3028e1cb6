import concurrent.futures
import threading
import time
from pathlib import Path
from unittest.mock import patch
import pytest
from abt.domain.models import Job, JobOutcome
from abt.pipeline.dispatcher import WorkerDispatcher


def _jobs(n):
    return [Job(source_path=Path(f"/s/{i}.flac"), output_path=Path(f"/d/{i}.mp3")) for i in range(n)]


def test_every_job_handled_once():
    seen = []
    lock = threading.Lock()

    def handler(job):
        with lock:
            seen.append(job.source_path)
        return JobOutcome.CONVERTED

    outcomes = WorkerDispatcher(3).run(_jobs(10), handler)

    assert sorted(seen) == sorted(j.source_path for j in _jobs(10))
    assert outcomes == {JobOutcome.CONVERTED: 10}


def test_never_more_than_pool_size_in_flight():
    active = 0
    peak = 0
    lock = threading.Lock()

    def handler(job):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1
        return JobOutcome.SKIPPED

    WorkerDispatcher(2).run(_jobs(8), handler)
    assert peak <= 2


def test_handler_exception_does_not_stop_others():
    def handler(job):
        if job.source_path.name == "3.flac":
            raise RuntimeError("worker crashed")
        return JobOutcome.CONVERTED

    outcomes = WorkerDispatcher(2).run(_jobs(6), handler)
    assert outcomes == {JobOutcome.CONVERTED: 5}


def test_mixed_outcomes_are_tallied():
    mapping = {0: JobOutcome.CONVERTED, 1: JobOutcome.SKIPPED, 2: JobOutcome.FAILED}

    def handler(job):
        return mapping[int(job.source_path.stem) % 3]

    outcomes = WorkerDispatcher(4).run(_jobs(9), handler)
    assert outcomes == {JobOutcome.CONVERTED: 3, JobOutcome.SKIPPED: 3, JobOutcome.FAILED: 3}


def test_invalid_pool_size():
    with pytest.raises(ValueError):
        WorkerDispatcher(0)


def test_shutdown_event_stops_new_submissions():
    shutdown = threading.Event()
    handled = []

    def handler(job):
        handled.append(job)
        shutdown.set()
        return JobOutcome.INTERRUPTED

    WorkerDispatcher(1, shutdown_event=shutdown).run(_jobs(5), handler)
    assert len(handled) == 1


def test_keyboard_interrupt_signals_workers_and_reraises():
    shutdown = threading.Event()
    started = threading.Event()

    def handler(job):
        started.set()
        # A real worker's encoder watches the shutdown event
        shutdown.wait(timeout=5)
        return JobOutcome.INTERRUPTED

    dispatcher = WorkerDispatcher(2, shutdown_event=shutdown, interrupt_grace_s=2.0)
    real_wait = concurrent.futures.wait
    calls = {"n": 0}

    def wait_then_interrupt(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            started.wait(timeout=5)
            raise KeyboardInterrupt
        return real_wait(*args, **kwargs)

    with patch("abt.pipeline.dispatcher.concurrent.futures.wait", side_effect=wait_then_interrupt):
        with pytest.raises(KeyboardInterrupt):
            dispatcher.run(_jobs(6), handler)

    assert shutdown.is_set()
