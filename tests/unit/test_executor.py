from __future__ import annotations

import functools
import multiprocessing
import os
import signal
import sys
import time
from pathlib import Path

import pytest

from wfmaint.cache import CacheStore
from wfmaint.counter import ConcurrentCounter
from wfmaint.errors import Interrupted, InvalidArgument
from wfmaint.executor import ItemResult, ParallelExecutor
from wfmaint.signals import SignalManager


def _count_item(item: int) -> ItemResult:
    return ItemResult(error_count=item % 2, warning_count=1, output_text=f"item {item}")


def _fail_on_five(item: int) -> ItemResult:
    if item == 5:
        sys.exit(3)
    return ItemResult(output_text=f"ok {item}")


def _oversized_status(item: int) -> ItemResult:
    return ItemResult(exit_status=256 * item)


def _exit_512(item: int) -> ItemResult:
    if item == 1:
        sys.exit(512)
    return ItemResult()


def _raise_on_two(item: int) -> ItemResult:
    if item == 2:
        raise ValueError("bad item")
    return ItemResult()


def _noisy(item: int) -> None:
    print(f"print {item}")
    os.write(1, f"raw {item}\n".encode())


def _track_concurrency(marker_dir: str, log_path: str, item: int) -> ItemResult:
    marker = Path(marker_dir) / f"active-{item}"
    marker.touch()
    time.sleep(0.2)
    active = len(list(Path(marker_dir).glob("active-*")))
    with open(log_path, "a", encoding="utf-8") as handle:
        handle.write(f"{active}\n")
    marker.unlink()
    return ItemResult()


def _logged(log_path: str, item: int) -> ItemResult:
    with open(log_path, "a", encoding="utf-8") as handle:
        handle.write(f"{item}\n")
    return ItemResult(warning_count=1, exit_status=2 if item == 99 else 0)


def _signal_parent(item: int) -> None:
    if item == 0:
        time.sleep(0.3)
        os.kill(os.getppid(), signal.SIGTERM)
    time.sleep(30)


def _executor(tmp_path: Path, outputs: list[str] | None = None, **kwargs) -> ParallelExecutor:
    counter = ConcurrentCounter(tmp_path / "state")
    sink = outputs.append if outputs is not None else (lambda _text: None)
    return ParallelExecutor(tmp_path / "work", counter, on_output=sink, poll_interval=0.05, **kwargs)


def _job_files(directory: Path) -> list[Path]:
    return list(directory.glob("job-*")) if directory.exists() else []


def test_empty_items_return_empty_report(tmp_path):
    report = _executor(tmp_path).run([], _count_item, 4)
    assert report.total == 0
    assert report.outcomes == []
    assert report.errors == 0


@pytest.mark.parametrize("max_jobs", [0, -1, True, 1.5])
def test_invalid_max_jobs_rejected(tmp_path, max_jobs):
    with pytest.raises(InvalidArgument):
        _executor(tmp_path).run([1], _count_item, max_jobs)


def test_counts_from_workers_are_merged(tmp_path):
    outputs: list[str] = []
    report = _executor(tmp_path, outputs).run(range(6), _count_item, 3)

    assert report.total == 6
    assert report.completed == 6
    assert report.errors == 3
    assert report.warnings == 6
    assert report.failed == 0
    assert sorted(outputs) == [f"item {i}\n" for i in range(6)]


def test_partial_failure_keeps_running_remaining_items(tmp_path):
    outputs: list[str] = []
    report = _executor(tmp_path, outputs).run(range(10), _fail_on_five, 4)

    assert len(report.outcomes) == 10
    assert report.failed == 1
    assert report.errors == 1
    failed = [outcome for outcome in report.outcomes if outcome.failed]
    assert [outcome.item for outcome in failed] == [5]
    assert failed[0].exit_status == 3
    assert failed[0].result is None
    assert len(outputs) == 9
    assert _job_files(tmp_path / "work") == []


def test_exception_in_policy_counts_as_failed_job(tmp_path):
    outputs: list[str] = []
    report = _executor(tmp_path, outputs).run(range(4), _raise_on_two, 2)

    assert report.failed == 1
    assert report.errors == 1
    assert any("ValueError: bad item" in text for text in outputs)


def test_exit_status_above_byte_range_still_fails(tmp_path):
    report = _executor(tmp_path).run([0, 1, 2], _oversized_status, 2)

    assert report.failed == 2
    assert report.errors == 2
    failed = sorted(outcome.item for outcome in report.outcomes if outcome.failed)
    assert failed == [1, 2]
    assert all(outcome.exit_status == 1 for outcome in report.outcomes if outcome.failed)


def test_sys_exit_above_byte_range_still_fails(tmp_path):
    report = _executor(tmp_path).run([0, 1], _exit_512, 2)

    assert report.failed == 1
    assert [outcome.item for outcome in report.outcomes if outcome.failed] == [1]


def test_worker_output_is_captured(tmp_path):
    outputs: list[str] = []
    report = _executor(tmp_path, outputs).run([7], _noisy, 1)

    assert report.failed == 0
    assert len(outputs) == 1
    assert "print 7" in outputs[0]
    assert "raw 7" in outputs[0]
    assert report.outcomes[0].output == outputs[0]


def test_concurrency_never_exceeds_max_jobs(tmp_path):
    marker_dir = tmp_path / "markers"
    marker_dir.mkdir()
    log_path = tmp_path / "active.log"
    fn = functools.partial(_track_concurrency, str(marker_dir), str(log_path))

    report = _executor(tmp_path).run(range(8), fn, 2)

    observed = [int(line) for line in log_path.read_text(encoding="utf-8").split()]
    assert report.completed == 8
    assert len(observed) == 8
    assert max(observed) <= 2


def test_progress_callback_reports_each_completion(tmp_path):
    seen: list[tuple[int, int, str]] = []
    executor = _executor(tmp_path, progress=lambda done, total, label: seen.append((done, total, label)))

    executor.run(range(3), _count_item, 2, label="files")

    assert seen == [(1, 3, "files"), (2, 3, "files"), (3, 3, "files")]


def test_cached_results_skip_policy(tmp_path):
    log_path = tmp_path / "calls.log"
    fn = functools.partial(_logged, str(log_path))
    cache = CacheStore(tmp_path / "cache", ttl=600, base_dir=tmp_path)

    first = _executor(tmp_path / "first").run([1, 2, 3], fn, 2, cache=cache, cache_context="t")
    second = _executor(tmp_path / "second").run([1, 2, 3], fn, 2, cache=cache, cache_context="t")

    assert sorted(log_path.read_text(encoding="utf-8").split()) == ["1", "2", "3"]
    assert first.warnings == 3
    assert second.warnings == 3


def test_failed_results_are_not_cached(tmp_path):
    log_path = tmp_path / "calls.log"
    fn = functools.partial(_logged, str(log_path))
    cache = CacheStore(tmp_path / "cache", ttl=600, base_dir=tmp_path)

    _executor(tmp_path / "first").run([99], fn, 1, cache=cache)
    report = _executor(tmp_path / "second").run([99], fn, 1, cache=cache)

    assert log_path.read_text(encoding="utf-8").split() == ["99", "99"]
    assert report.failed == 1
    assert cache.stats().entries == 0


def test_signal_terminates_workers_and_cleans_up(tmp_path):
    counter = ConcurrentCounter(tmp_path / "state")
    work_dir = tmp_path / "work"

    with pytest.raises(Interrupted) as excinfo:
        with SignalManager() as signals:
            executor = ParallelExecutor(
                work_dir,
                counter,
                signals=signals,
                on_output=lambda _text: None,
                poll_interval=0.05,
            )
            signals.register(counter.cleanup, name="counter")
            executor.run(range(4), _signal_parent, 3)

    assert excinfo.value.exit_code == 143
    assert executor.active_jobs == []
    assert multiprocessing.active_children() == []
    assert _job_files(work_dir) == []
    assert not counter.lock_path.exists()
    assert not counter.state_path.exists()
