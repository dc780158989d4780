"""Bounded pool of worker processes mapping a policy function over items."""

from __future__ import annotations

import json
import logging
import multiprocessing
import os
import sys
import time
import traceback
from collections import deque
from contextlib import redirect_stderr, redirect_stdout
from dataclasses import asdict, dataclass, field
from multiprocessing import connection
from pathlib import Path
from typing import Any, Callable, Iterable

from .cache import CacheStore
from .counter import ConcurrentCounter
from .errors import InvalidArgument, Interrupted, ResourceUnavailable
from .signals import SignalManager, reset_child_signals

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
TERMINATE_GRACE = 2.0
ERRORS = "errors"
WARNINGS = "warnings"
FAILED = "failed"
COMPLETED = "completed"

ProgressFn = Callable[[int, int, str], None]
OutputFn = Callable[[str], None]


@dataclass(slots=True)
class ItemResult:
    """What a policy function reports for one item."""

    error_count: int = 0
    warning_count: int = 0
    output_text: str = ""
    exit_status: int = 0

    @classmethod
    def from_json(cls, raw: str) -> "ItemResult":
        data = json.loads(raw)
        return cls(
            error_count=int(data.get("error_count", 0)),
            warning_count=int(data.get("warning_count", 0)),
            output_text=str(data.get("output_text", "")),
            exit_status=int(data.get("exit_status", 0)),
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)


@dataclass(slots=True)
class WorkerJob:
    id: int
    item: Any
    pid: int | None
    started_at: float
    process: Any
    output_path: Path
    result_path: Path


@dataclass(slots=True)
class JobOutcome:
    id: int
    item: Any
    exit_status: int
    output: str
    result: ItemResult | None
    duration: float

    @property
    def failed(self) -> bool:
        return self.exit_status != 0


@dataclass(slots=True)
class ExecutionReport:
    total: int = 0
    outcomes: list[JobOutcome] = field(default_factory=list)
    counters: dict[str, int] = field(default_factory=dict)

    @property
    def errors(self) -> int:
        return self.counters.get(ERRORS, 0)

    @property
    def warnings(self) -> int:
        return self.counters.get(WARNINGS, 0)

    @property
    def failed(self) -> int:
        return self.counters.get(FAILED, 0)

    @property
    def completed(self) -> int:
        return len(self.outcomes)


def default_mp_context():
    if "fork" in multiprocessing.get_all_start_methods():
        return multiprocessing.get_context("fork")
    return multiprocessing.get_context("spawn")


def _coerce_exit_code(code: object) -> int:
    if code is None:
        return 0
    if isinstance(code, int):
        return code if 0 <= code <= 255 else 1
    return 1


def _cache_key_for(cache: CacheStore, item: Any, context: str | None) -> str:
    if isinstance(item, (str, os.PathLike)):
        return cache.key_for(item, context)
    return cache.key_for_text(f"{context or ''}:{item!r}")


def _call_policy(
    fn: Callable[[Any], ItemResult | None],
    item: Any,
    cache: CacheStore | None,
    cache_context: str | None,
) -> ItemResult:
    key = None
    if cache is not None:
        key = _cache_key_for(cache, item, cache_context)
        cached = cache.get(key)
        if cached is not None:
            try:
                return ItemResult.from_json(cached)
            except (ValueError, TypeError):
                logger.debug("Discarding unreadable cached result for %r", item)
    result = fn(item)
    if result is None:
        result = ItemResult()
    if cache is not None and key is not None and result.exit_status == 0:
        cache.put(key, result.to_json())
    return result


def _worker_main(
    fn: Callable[[Any], ItemResult | None],
    item: Any,
    output_path: str,
    result_path: str,
    counter: ConcurrentCounter,
    cache: CacheStore | None,
    cache_context: str | None,
) -> None:
    reset_child_signals()
    status = 0
    with open(output_path, "a", encoding="utf-8") as out:
        for stream in (sys.stdout, sys.stderr):
            try:
                stream.flush()
            except (OSError, ValueError):
                pass
        os.dup2(out.fileno(), 1)
        os.dup2(out.fileno(), 2)
        with redirect_stdout(out), redirect_stderr(out):
            try:
                result = _call_policy(fn, item, cache, cache_context)
            except SystemExit as exc:
                status = _coerce_exit_code(exc.code)
                result = None
            except Exception:
                traceback.print_exc(file=out)
                status = 1
                result = None
            if result is not None:
                if result.output_text:
                    out.write(result.output_text)
                    if not result.output_text.endswith("\n"):
                        out.write("\n")
                status = _coerce_exit_code(result.exit_status)
                counter.add_many({ERRORS: result.error_count, WARNINGS: result.warning_count})
                tmp_result = f"{result_path}.tmp"
                with open(tmp_result, "w", encoding="utf-8") as handle:
                    handle.write(result.to_json())
                os.replace(tmp_result, result_path)
        out.flush()
    sys.exit(status)


class ParallelExecutor:
    """Run a policy function over items in separate worker processes.

    At most ``max_jobs`` workers run at once. Each worker writes its output to
    a private file under ``work_dir``; the parent prints each file as soon as
    the worker exits and deletes it. Per-item counts are merged through
    ``counter``. A non-zero exit status counts as a failed job and one error,
    and the remaining items still run.
    """

    def __init__(
        self,
        work_dir: Path | str,
        counter: ConcurrentCounter,
        *,
        signals: SignalManager | None = None,
        on_output: OutputFn | None = None,
        progress: ProgressFn | None = None,
        poll_interval: float = POLL_INTERVAL,
        mp_context=None,
    ) -> None:
        self.work_dir = Path(work_dir)
        self.counter = counter
        self.on_output = on_output
        self.progress = progress
        self.poll_interval = poll_interval
        self._ctx = mp_context if mp_context is not None else default_mp_context()
        self._active: dict[int, WorkerJob] = {}
        self._stopping = False
        if signals is not None:
            signals.register(self.stop, name="terminate workers")

    @property
    def active_jobs(self) -> list[WorkerJob]:
        return list(self._active.values())

    def run(
        self,
        items: Iterable[Any],
        fn: Callable[[Any], ItemResult | None],
        max_jobs: int,
        *,
        label: str = "items",
        cache: CacheStore | None = None,
        cache_context: str | None = None,
    ) -> ExecutionReport:
        if isinstance(max_jobs, bool) or not isinstance(max_jobs, int) or max_jobs <= 0:
            raise InvalidArgument(f"max_jobs must be a positive integer (got {max_jobs!r})")
        pending = deque(enumerate(items))
        report = ExecutionReport(total=len(pending))
        if not pending:
            return report
        self._ensure_work_dir()
        self._stopping = False
        logger.info("Processing %d %s with up to %d parallel jobs", report.total, label, max_jobs)
        try:
            while pending or self._active:
                while pending and len(self._active) < max_jobs and not self._stopping:
                    job_id, item = pending.popleft()
                    self._spawn(job_id, item, fn, cache, cache_context)
                if self._stopping:
                    break
                if not self._active:
                    continue
                ready = connection.wait(list(self._active), timeout=self.poll_interval)
                for sentinel in ready:
                    job = self._active.pop(sentinel)
                    report.outcomes.append(self._collect(job))
                    self._emit_progress(len(report.outcomes), report.total, label)
        finally:
            self._shutdown()
        report.counters = self.counter.snapshot()
        if report.failed:
            logger.warning("%d %s jobs failed", report.failed, label)
        return report

    def stop(self) -> None:
        """Stop spawning, terminate running workers and remove their files."""

        self._stopping = True
        self._shutdown()

    def _ensure_work_dir(self) -> None:
        try:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ResourceUnavailable(f"Cannot create work directory {self.work_dir}: {exc}") from exc

    def _spawn(
        self,
        job_id: int,
        item: Any,
        fn: Callable[[Any], ItemResult | None],
        cache: CacheStore | None,
        cache_context: str | None,
    ) -> WorkerJob:
        output_path = self.work_dir / f"job-{job_id}.out"
        result_path = self.work_dir / f"job-{job_id}.result.json"
        try:
            fd = os.open(output_path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o600)
            os.close(fd)
        except OSError as exc:
            raise ResourceUnavailable(f"Cannot create worker output file {output_path}: {exc}") from exc
        process = self._ctx.Process(
            target=_worker_main,
            args=(fn, item, str(output_path), str(result_path), self.counter, cache, cache_context),
            name=f"wfmaint-job-{job_id}",
            daemon=True,
        )
        process.start()
        job = WorkerJob(
            id=job_id,
            item=item,
            pid=process.pid,
            started_at=time.monotonic(),
            process=process,
            output_path=output_path,
            result_path=result_path,
        )
        self._active[process.sentinel] = job
        logger.debug("Started job %d (pid %s) for %r", job_id, process.pid, item)
        return job

    def _collect(self, job: WorkerJob) -> JobOutcome:
        job.process.join()
        code = job.process.exitcode
        exit_status = 128 + abs(code) if code is not None and code < 0 else int(code or 0)
        output = _read_text(job.output_path)
        result = None
        raw_result = _read_text(job.result_path)
        if raw_result:
            try:
                result = ItemResult.from_json(raw_result)
            except (ValueError, TypeError):
                logger.debug("Unreadable result file for job %d", job.id)
        _remove_files(job)
        _close_process(job.process)
        if output:
            self._emit_output(output)
        deltas = {COMPLETED: 1}
        if exit_status != 0:
            logger.error("Worker job failed for %r (pid %s, exit %d)", job.item, job.pid, exit_status)
            deltas[FAILED] = 1
            deltas[ERRORS] = 1
        self.counter.add_many(deltas)
        return JobOutcome(
            id=job.id,
            item=job.item,
            exit_status=exit_status,
            output=output,
            result=result,
            duration=time.monotonic() - job.started_at,
        )

    def _emit_output(self, text: str) -> None:
        if self.on_output is not None:
            self.on_output(text)
            return
        sys.stdout.write(text)
        sys.stdout.flush()

    def _emit_progress(self, completed: int, total: int, label: str) -> None:
        if self.progress is None:
            return
        try:
            self.progress(completed, total, label)
        except Interrupted:
            raise
        except Exception:
            logger.debug("Progress callback failed", exc_info=True)

    def _shutdown(self) -> None:
        jobs = list(self._active.values())
        self._active.clear()
        for job in jobs:
            if job.process.is_alive():
                job.process.terminate()
        deadline = time.monotonic() + TERMINATE_GRACE
        for job in jobs:
            job.process.join(max(deadline - time.monotonic(), 0))
            if job.process.is_alive():
                job.process.kill()
                job.process.join()
            _remove_files(job)
            _close_process(job.process)
        if jobs:
            logger.warning("Terminated %d running jobs", len(jobs))
        self._remove_leftovers()

    def _remove_leftovers(self) -> None:
        if not self.work_dir.is_dir():
            return
        for pattern in ("job-*.out", "job-*.result.json", "job-*.result.json.tmp"):
            for path in self.work_dir.glob(pattern):
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return ""


def _remove_files(job: WorkerJob) -> None:
    for path in (job.output_path, job.result_path, Path(f"{job.result_path}.tmp")):
        try:
            path.unlink()
        except FileNotFoundError:
            continue


def _close_process(process) -> None:
    try:
        process.close()
    except ValueError:
        pass
