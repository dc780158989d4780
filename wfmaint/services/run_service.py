"""One top-level maintenance invocation and the framework pieces it owns."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

from ..cache import CacheStore
from ..config import Config, cache_dir
from ..counter import ConcurrentCounter
from ..errors import ResourceUnavailable
from ..executor import ExecutionReport, ItemResult, OutputFn, ParallelExecutor, ProgressFn
from ..providers.github import GitHubClient
from ..ratelimit import RateLimiter
from ..resources import ResourceMonitor, ResourceSample, ThresholdCheck
from ..signals import SignalManager

logger = logging.getLogger(__name__)

RUNTIME_PREFIX = "wfmaint-"


@dataclass(slots=True)
class RunSummary:
    errors: int = 0
    warnings: int = 0
    failed_jobs: int = 0
    completed: int = 0
    total: int = 0

    @property
    def exit_code(self) -> int:
        return 1 if self.errors > 0 else 0

    @classmethod
    def from_report(cls, report: ExecutionReport) -> "RunSummary":
        return cls(
            errors=report.errors,
            warnings=report.warnings,
            failed_jobs=report.failed,
            completed=report.completed,
            total=report.total,
        )


@dataclass(slots=True)
class JobPlan:
    jobs: int
    sample: ResourceSample
    check: ThresholdCheck


def runtime_dir_for(pid: int | None = None, root: Path | str | None = None) -> Path:
    base = Path(root) if root is not None else Path(tempfile.gettempdir())
    return base / f"{RUNTIME_PREFIX}{pid if pid is not None else os.getpid()}"


class MaintenanceRun:
    """Context manager wiring cache, limiter, counters and signals for one run.

    Entering creates ``<tmp>/wfmaint-<pid>``, installs the signal handlers and
    prunes the cache. Leaving (or a signal) drains the cleanup registry, which
    stops workers, removes the lock files and deletes the runtime directory.
    """

    def __init__(
        self,
        config: Config,
        *,
        base_dir: Path | str | None = None,
        use_cache: bool = True,
        runtime_root: Path | str | None = None,
        monitor: ResourceMonitor | None = None,
        signals: SignalManager | None = None,
        on_output: OutputFn | None = None,
        progress: ProgressFn | None = None,
    ) -> None:
        self.config = config
        self.base_dir = Path(base_dir).resolve() if base_dir is not None else Path.cwd()
        self.use_cache = use_cache and config.enable_cache
        self.runtime_dir = runtime_dir_for(root=runtime_root)
        self.monitor = monitor or ResourceMonitor(
            memory_limit_percent=config.memory_limit_percent,
            cpu_limit_percent=config.cpu_limit_percent,
            min_parallel_jobs=config.min_parallel_jobs,
            max_system_parallel_jobs=config.max_system_parallel_jobs,
        )
        self.signals = signals or SignalManager()
        self._on_output = on_output
        self._progress = progress
        self.cache: CacheStore | None = None
        self.counter: ConcurrentCounter | None = None
        self.rate_limiter: RateLimiter | None = None
        self.executor: ParallelExecutor | None = None
        self.pruned = 0

    def __enter__(self) -> "MaintenanceRun":
        self.signals.install()
        try:
            self._setup()
        except BaseException:
            self.signals.__exit__(None, None, None)
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return self.signals.__exit__(exc_type, exc, tb)

    def _setup(self) -> None:
        try:
            self.runtime_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(self.runtime_dir, 0o700)
        except OSError as exc:
            raise ResourceUnavailable(f"Cannot create runtime directory {self.runtime_dir}: {exc}") from exc
        self.counter = ConcurrentCounter(self.runtime_dir, lock_timeout=self.config.lock_timeout_seconds)
        self.rate_limiter = RateLimiter(
            per_minute=self.config.rate_limit_per_minute,
            burst_size=self.config.burst_size,
            delay=self.config.rate_limit_delay_seconds,
            quota_low_water=self.config.quota_low_water,
            state_dir=self.runtime_dir,
            lock_timeout=self.config.lock_timeout_seconds,
        )
        self.executor = ParallelExecutor(
            self.runtime_dir,
            self.counter,
            signals=self.signals,
            on_output=self._on_output,
            progress=self._progress,
        )
        self.signals.register(self.counter.cleanup, name="remove counter files")
        self.signals.register(self.rate_limiter.cleanup, name="remove rate limit files")
        self.signals.register(self._remove_runtime_dir, name="remove runtime directory")
        if self.use_cache:
            self.cache = CacheStore(
                cache_dir(self.config),
                ttl=self.config.cache_ttl_seconds,
                base_dir=self.base_dir,
            )
            self.cache.ensure_root()
            self.pruned = self.cache.prune()
        logger.debug("Runtime directory %s ready", self.runtime_dir)

    def _remove_runtime_dir(self) -> None:
        shutil.rmtree(self.runtime_dir, ignore_errors=True)

    def client(self) -> GitHubClient:
        """Return a remote client sharing this run's cache, limiter and counters."""

        return GitHubClient(
            command=self.config.remote_command,
            cache=self.cache,
            rate_limiter=self.rate_limiter,
            counter=self.counter,
        )

    def counters(self) -> dict[str, int]:
        return self.counter.snapshot() if self.counter is not None else {}

    def plan_jobs(self, requested: int | None = None) -> JobPlan:
        sample = self.monitor.sample()
        check = self.monitor.check_thresholds(sample)
        if not check.ok:
            logger.warning("Host is under load: %s", check.reason)
        wanted = requested if requested is not None else self.config.max_parallel_jobs
        return JobPlan(jobs=self.monitor.safe_job_count(wanted, sample), sample=sample, check=check)

    def execute(
        self,
        items: Iterable[Any],
        fn: Callable[[Any], ItemResult | None],
        *,
        jobs: int,
        label: str = "items",
        cache_context: str | None = None,
        use_cache: bool = True,
    ) -> tuple[RunSummary, ExecutionReport]:
        if self.executor is None:
            raise RuntimeError("MaintenanceRun must be entered before execute()")
        report = self.executor.run(
            items,
            fn,
            jobs,
            label=label,
            cache=self.cache if use_cache else None,
            cache_context=cache_context,
        )
        return RunSummary.from_report(report), report
