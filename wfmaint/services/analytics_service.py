"""Run-duration summaries, API usage levels and workflow efficiency counts."""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from ..providers.github import RateLimitInfo
from .cleanup_service import WorkflowRun

DEFAULT_RUN_LIMIT = 50
MODERATE_USAGE_PERCENT = 60
HIGH_USAGE_PERCENT = 80


@dataclass(slots=True)
class WorkflowStats:
    name: str
    runs: int
    avg_duration_minutes: float
    success_rate: int


@dataclass(slots=True)
class ApiUsage:
    used: int
    limit: int
    remaining: int

    @classmethod
    def from_rate_limit(cls, info: RateLimitInfo) -> "ApiUsage":
        return cls(used=info.used, limit=info.limit, remaining=info.remaining)

    @property
    def percent(self) -> int:
        if self.limit <= 0:
            return 0
        return self.used * 100 // self.limit

    @property
    def level(self) -> str:
        if self.percent > HIGH_USAGE_PERCENT:
            return "high"
        if self.percent > MODERATE_USAGE_PERCENT:
            return "moderate"
        return "healthy"


@dataclass(slots=True)
class EfficiencyReport:
    total: int = 0
    caching: int = 0
    conditional: int = 0
    matrix: int = 0

    @property
    def needs_caching(self) -> bool:
        return self.caching < self.total // 2


def _duration_minutes(run: WorkflowRun) -> int:
    if run.updated_at is None:
        return 0
    seconds = (run.updated_at - run.created_at).total_seconds()
    return max(math.floor(seconds / 60), 0)


def summarize_runs(runs: Sequence[WorkflowRun]) -> list[WorkflowStats]:
    """Per-workflow run count, mean duration and success rate, slowest first."""

    grouped: dict[str, list[WorkflowRun]] = defaultdict(list)
    for run in runs:
        grouped[run.name].append(run)
    stats: list[WorkflowStats] = []
    for name, group in grouped.items():
        durations = [_duration_minutes(run) for run in group]
        successes = sum(1 for run in group if run.conclusion == "success")
        stats.append(
            WorkflowStats(
                name=name,
                runs=len(group),
                avg_duration_minutes=sum(durations) / len(group),
                success_rate=successes * 100 // len(group),
            )
        )
    stats.sort(key=lambda item: (-item.avg_duration_minutes, item.name))
    return stats


def analyze_efficiency(files: Sequence[Path]) -> EfficiencyReport:
    report = EfficiencyReport(total=len(files))
    for path in files:
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        if "cache:" in text or "actions/cache" in text:
            report.caching += 1
        if "if:" in text:
            report.conditional += 1
        if "strategy:" in text and "matrix:" in text:
            report.matrix += 1
    return report
