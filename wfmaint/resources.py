"""Host resource sampling and safe worker-count derivation."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field

import psutil

from .errors import InvalidArgument

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_LIMIT_PERCENT = 80.0
DEFAULT_CPU_LIMIT_PERCENT = 90.0
DEFAULT_MIN_PARALLEL_JOBS = 1
DEFAULT_MAX_SYSTEM_PARALLEL_JOBS = 8
CPU_SAMPLE_INTERVAL = 0.2


@dataclass(frozen=True, slots=True)
class ResourceSample:
    mem_percent: float
    cpu_percent: float
    cores: int


@dataclass(frozen=True, slots=True)
class ThresholdCheck:
    constrained: bool = False
    reasons: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.constrained

    @property
    def reason(self) -> str | None:
        return "; ".join(self.reasons) if self.reasons else None


def neutral_sample() -> ResourceSample:
    return ResourceSample(mem_percent=0.0, cpu_percent=0.0, cores=os.cpu_count() or 1)


class ResourceMonitor:
    """Derive a worker-pool size from a snapshot of host memory and CPU load."""

    def __init__(
        self,
        *,
        memory_limit_percent: float = DEFAULT_MEMORY_LIMIT_PERCENT,
        cpu_limit_percent: float = DEFAULT_CPU_LIMIT_PERCENT,
        min_parallel_jobs: int = DEFAULT_MIN_PARALLEL_JOBS,
        max_system_parallel_jobs: int = DEFAULT_MAX_SYSTEM_PARALLEL_JOBS,
        cpu_interval: float = CPU_SAMPLE_INTERVAL,
    ) -> None:
        if min_parallel_jobs < 1:
            raise InvalidArgument("min_parallel_jobs must be >= 1")
        if max_system_parallel_jobs < min_parallel_jobs:
            raise InvalidArgument("max_system_parallel_jobs must be >= min_parallel_jobs")
        for name, value in (
            ("memory_limit_percent", memory_limit_percent),
            ("cpu_limit_percent", cpu_limit_percent),
        ):
            if not 0 < value <= 100:
                raise InvalidArgument(f"{name} must be within (0, 100]")
        self.memory_limit_percent = float(memory_limit_percent)
        self.cpu_limit_percent = float(cpu_limit_percent)
        self.min_parallel_jobs = int(min_parallel_jobs)
        self.max_system_parallel_jobs = int(max_system_parallel_jobs)
        self.cpu_interval = min(max(float(cpu_interval), 0.0), 1.0)

    def sample(self) -> ResourceSample:
        """Return a best-effort snapshot; falls back to a neutral reading."""

        try:
            memory = psutil.virtual_memory()
            cpu = psutil.cpu_percent(interval=self.cpu_interval)
            cores = psutil.cpu_count(logical=True) or os.cpu_count() or 1
            return ResourceSample(
                mem_percent=float(memory.percent),
                cpu_percent=float(cpu),
                cores=int(cores),
            )
        except Exception as exc:
            logger.debug("Resource sampling unavailable, using neutral reading: %s", exc)
            return neutral_sample()

    def safe_job_count(self, requested: int, sample: ResourceSample | None = None) -> int:
        """Return how many workers may run given *requested* and host load."""

        if requested <= 0:
            raise InvalidArgument(f"requested jobs must be greater than 0 (got {requested})")
        reading = sample if sample is not None else self.sample()
        upper = min(int(requested), self.max_system_parallel_jobs)
        floor = min(self.min_parallel_jobs, upper)
        jobs = upper
        jobs = min(jobs, self._scaled(upper, reading.mem_percent, self.memory_limit_percent))
        jobs = min(jobs, self._scaled(upper, reading.cpu_percent, self.cpu_limit_percent))
        jobs = max(floor, min(jobs, upper))
        if jobs < upper:
            logger.info(
                "Reducing parallel jobs from %d to %d (memory %.0f%%, cpu %.0f%%)",
                upper,
                jobs,
                reading.mem_percent,
                reading.cpu_percent,
            )
        return jobs

    @staticmethod
    def _scaled(upper: int, used: float, limit: float) -> int:
        if used <= limit:
            return upper
        headroom = 100.0 - limit
        if headroom <= 0:
            return 0
        overage = min((used - limit) / headroom, 1.0)
        return math.floor(upper * (1.0 - overage))

    def check_thresholds(self, sample: ResourceSample | None = None) -> ThresholdCheck:
        reading = sample if sample is not None else self.sample()
        reasons: list[str] = []
        if reading.mem_percent > self.memory_limit_percent:
            reasons.append(
                f"memory usage {reading.mem_percent:.0f}% exceeds {self.memory_limit_percent:.0f}%"
            )
        if reading.cpu_percent > self.cpu_limit_percent:
            reasons.append(
                f"cpu usage {reading.cpu_percent:.0f}% exceeds {self.cpu_limit_percent:.0f}%"
            )
        return ThresholdCheck(constrained=bool(reasons), reasons=tuple(reasons))
