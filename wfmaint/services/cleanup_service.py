"""Selection and deletion of stale workflow runs."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Sequence

from ..errors import InvalidArgument, Transient
from ..executor import ItemResult
from ..providers.github import GitHubClient

logger = logging.getLogger(__name__)

DEFAULT_KEEP_DAYS = 30
DEFAULT_MAX_RUNS = 100
LIST_LIMIT = 1000
LABEL = "runs"


@dataclass(frozen=True, slots=True)
class WorkflowRun:
    id: int
    name: str
    created_at: datetime
    updated_at: datetime | None = None
    status: str = ""
    conclusion: str = ""


@dataclass(slots=True)
class CleanupPlan:
    cutoff: datetime
    max_runs: int
    total: int = 0
    old: list[WorkflowRun] = field(default_factory=list)
    excess: list[WorkflowRun] = field(default_factory=list)

    @property
    def candidates(self) -> list[WorkflowRun]:
        seen: set[int] = set()
        ordered: list[WorkflowRun] = []
        for run in [*self.old, *self.excess]:
            if run.id in seen:
                continue
            seen.add(run.id)
            ordered.append(run)
        return ordered


def parse_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def parse_runs(payload: Iterable[dict]) -> list[WorkflowRun]:
    """Turn ``gh run list --json`` rows into runs; rows without id or date are skipped."""

    runs: list[WorkflowRun] = []
    for row in payload:
        if not isinstance(row, dict):
            continue
        created = parse_timestamp(row.get("createdAt"))
        run_id = row.get("databaseId")
        if created is None or not isinstance(run_id, int):
            continue
        runs.append(
            WorkflowRun(
                id=run_id,
                name=str(row.get("name") or ""),
                created_at=created,
                updated_at=parse_timestamp(row.get("updatedAt")),
                status=str(row.get("status") or ""),
                conclusion=str(row.get("conclusion") or ""),
            )
        )
    return runs


def plan_cleanup(
    runs: Sequence[WorkflowRun],
    *,
    days: int = DEFAULT_KEEP_DAYS,
    max_runs: int = DEFAULT_MAX_RUNS,
    now: datetime | None = None,
) -> CleanupPlan:
    """Select runs older than *days* plus, per workflow, runs beyond the newest *max_runs*."""

    if days < 0:
        raise InvalidArgument("days must be >= 0")
    if max_runs < 0:
        raise InvalidArgument("max_runs must be >= 0")
    current = now or datetime.now(timezone.utc)
    cutoff = current - timedelta(days=days)
    plan = CleanupPlan(cutoff=cutoff, max_runs=max_runs, total=len(runs))
    plan.old = [run for run in runs if run.created_at < cutoff]
    old_ids = {run.id for run in plan.old}

    by_workflow: dict[str, list[WorkflowRun]] = defaultdict(list)
    for run in runs:
        by_workflow[run.name].append(run)
    for name in sorted(by_workflow):
        ordered = sorted(by_workflow[name], key=lambda run: run.created_at, reverse=True)
        for run in ordered[max_runs:]:
            if run.id not in old_ids:
                plan.excess.append(run)
    return plan


@dataclass(slots=True)
class RunDeleter:
    """Per-run policy deleting one run through the shared client."""

    client: GitHubClient

    def __call__(self, run: WorkflowRun) -> ItemResult:
        try:
            self.client.delete_run(run.id)
        except Transient as exc:
            return ItemResult(
                warning_count=1,
                output_text=f"WARN: Failed to delete run ID {run.id} ({run.name}): {exc}\n",
            )
        return ItemResult(output_text=f"Deleted run ID {run.id} ({run.name})\n")


def fetch_runs(client: GitHubClient, limit: int = LIST_LIMIT, *, cached: bool = False) -> list[WorkflowRun]:
    return parse_runs(client.list_runs(limit=limit, cached=cached))
