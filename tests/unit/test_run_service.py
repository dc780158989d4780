from __future__ import annotations

import json
import signal
import time

import pytest

from wfmaint.cache import CacheStore
from wfmaint.config import Config
from wfmaint.errors import ResourceUnavailable
from wfmaint.resources import ResourceMonitor, ResourceSample
from wfmaint.services import validate_service
from wfmaint.services.run_service import MaintenanceRun, RunSummary, runtime_dir_for


class FixedMonitor(ResourceMonitor):
    def __init__(self, sample: ResourceSample, **kwargs) -> None:
        super().__init__(**kwargs)
        self._fixed = sample

    def sample(self) -> ResourceSample:
        return self._fixed


CALM = ResourceSample(mem_percent=20.0, cpu_percent=10.0, cores=4)


def _config(tmp_path, **overrides) -> Config:
    return Config(cache_dir=str(tmp_path / "cache"), **overrides)


def _run(tmp_path, config: Config | None = None, **kwargs) -> MaintenanceRun:
    return MaintenanceRun(
        config or _config(tmp_path),
        base_dir=tmp_path,
        runtime_root=tmp_path / "runtime",
        monitor=kwargs.pop("monitor", FixedMonitor(CALM)),
        on_output=kwargs.pop("on_output", lambda _text: None),
        **kwargs,
    )


def test_runtime_dir_for():
    assert runtime_dir_for(pid=123, root="/tmp/x").as_posix() == "/tmp/x/wfmaint-123"


def test_run_summary_exit_code():
    assert RunSummary().exit_code == 0
    assert RunSummary(warnings=3).exit_code == 0
    assert RunSummary(errors=1).exit_code == 1


def test_runtime_dir_created_and_removed(tmp_path):
    before = signal.getsignal(signal.SIGTERM)
    run = _run(tmp_path)

    with run:
        assert run.runtime_dir.is_dir()
        assert (run.runtime_dir.stat().st_mode & 0o777) == 0o700
        assert signal.getsignal(signal.SIGTERM) != before
        run.counter.increment("x")

    assert not run.runtime_dir.exists()
    assert signal.getsignal(signal.SIGTERM) == before
    assert run.signals.drained


def test_cache_is_pruned_on_enter(tmp_path):
    store = CacheStore(tmp_path / "cache", ttl=1800, base_dir=tmp_path)
    stale = store.key_for_text("stale")
    store.put(stale, "x")
    entry = store.entry_path(stale)
    envelope = json.loads(entry.read_text())
    envelope["written_at"] = time.time() - 10_000
    entry.write_text(json.dumps(envelope))

    with _run(tmp_path) as run:
        assert run.cache is not None
        assert run.pruned == 1


def test_cache_disabled(tmp_path):
    with _run(tmp_path, use_cache=False) as run:
        assert run.cache is None
    with _run(tmp_path, config=_config(tmp_path, enable_cache=False)) as run:
        assert run.cache is None


def test_plan_jobs_uses_config_default(tmp_path):
    with _run(tmp_path, config=_config(tmp_path, max_parallel_jobs=3)) as run:
        assert run.plan_jobs().jobs == 3
        assert run.plan_jobs(2).jobs == 2
        assert run.plan_jobs(50).jobs == 8


def test_plan_jobs_under_load(tmp_path):
    loaded = FixedMonitor(ResourceSample(mem_percent=100.0, cpu_percent=10.0, cores=4))
    with _run(tmp_path, monitor=loaded) as run:
        plan = run.plan_jobs(4)
    assert plan.jobs == 1
    assert not plan.check.ok


def test_execute_requires_entered_run(tmp_path):
    run = _run(tmp_path)
    with pytest.raises(RuntimeError):
        run.execute([], validate_service.validate_workflow, jobs=1)


def test_execute_runs_policy_and_caches(tmp_path):
    good = tmp_path / "good.yml"
    good.write_text("name: A\non: push\npermissions: {}\njobs:\n  a:\n    runs-on: x\n    steps: []\n")
    bad = tmp_path / "bad.yml"
    bad.write_text("name: B\n")
    outputs: list[str] = []

    with _run(tmp_path, on_output=outputs.append) as run:
        summary, report = run.execute(
            [good, bad],
            validate_service.validate_workflow,
            jobs=2,
            cache_context=validate_service.CACHE_CONTEXT,
        )
        assert run.cache.stats().entries == 2

    assert summary.total == 2
    assert summary.completed == 2
    assert summary.errors == 2
    assert summary.warnings == 1
    assert summary.failed_jobs == 0
    assert summary.exit_code == 1
    assert len(report.outcomes) == 2
    assert any("Validating: bad.yml" in text for text in outputs)


def test_setup_failure_restores_signal_handlers(tmp_path):
    blocker = tmp_path / "runtime"
    blocker.write_text("file")
    before = signal.getsignal(signal.SIGTERM)

    with pytest.raises(ResourceUnavailable):
        with _run(tmp_path):
            pass

    assert signal.getsignal(signal.SIGTERM) == before


def test_client_shares_run_state(tmp_path):
    with _run(tmp_path, config=_config(tmp_path, remote_command="gh-enterprise")) as run:
        client = run.client()
        assert client.command == "gh-enterprise"
        assert client.cache is run.cache
        assert client.rate_limiter is run.rate_limiter
        assert client.counter is run.counter
