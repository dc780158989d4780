from __future__ import annotations

import pytest

import wfmaint.resources as resources
from wfmaint.errors import InvalidArgument
from wfmaint.resources import ResourceMonitor, ResourceSample


def _sample(mem: float = 10.0, cpu: float = 10.0, cores: int = 8) -> ResourceSample:
    return ResourceSample(mem_percent=mem, cpu_percent=cpu, cores=cores)


def test_idle_host_gets_requested_jobs():
    monitor = ResourceMonitor()
    assert monitor.safe_job_count(4, _sample()) == 4


def test_requested_is_capped_by_system_maximum():
    monitor = ResourceMonitor(max_system_parallel_jobs=8)
    assert monitor.safe_job_count(20, _sample()) == 8


def test_memory_pressure_scales_down():
    monitor = ResourceMonitor(memory_limit_percent=80)
    assert monitor.safe_job_count(4, _sample(mem=90)) == 2
    assert monitor.safe_job_count(4, _sample(mem=100)) == 1


def test_cpu_pressure_scales_down():
    monitor = ResourceMonitor(cpu_limit_percent=50)
    assert monitor.safe_job_count(8, _sample(cpu=75)) == 4


def test_floor_never_exceeds_request():
    monitor = ResourceMonitor(min_parallel_jobs=2, max_system_parallel_jobs=8)
    assert monitor.safe_job_count(1, _sample(mem=100, cpu=100)) == 1
    assert monitor.safe_job_count(6, _sample(mem=100, cpu=100)) == 2


@pytest.mark.parametrize("requested", [1, 2, 3, 5, 8, 13])
def test_job_count_stays_within_bounds(requested):
    monitor = ResourceMonitor(min_parallel_jobs=2, max_system_parallel_jobs=6)
    upper = min(requested, 6)
    for mem in (0, 50, 79, 80, 85, 95, 100):
        for cpu in (0, 45, 90, 95, 100):
            jobs = monitor.safe_job_count(requested, _sample(mem=mem, cpu=cpu))
            assert min(2, upper) <= jobs <= upper


@pytest.mark.parametrize("requested", [0, -3])
def test_non_positive_request_rejected(requested):
    with pytest.raises(InvalidArgument):
        ResourceMonitor().safe_job_count(requested, _sample())


@pytest.mark.parametrize(
    "kwargs",
    [
        {"min_parallel_jobs": 0},
        {"min_parallel_jobs": 4, "max_system_parallel_jobs": 2},
        {"memory_limit_percent": 0},
        {"cpu_limit_percent": 120},
    ],
)
def test_invalid_monitor_configuration(kwargs):
    with pytest.raises(InvalidArgument):
        ResourceMonitor(**kwargs)


def test_sampling_failure_falls_back_to_neutral(monkeypatch):
    def boom():
        raise RuntimeError("no /proc")

    monkeypatch.setattr(resources.psutil, "virtual_memory", boom)
    sample = ResourceMonitor(cpu_interval=0).sample()

    assert sample.mem_percent == 0.0
    assert sample.cpu_percent == 0.0
    assert sample.cores >= 1


def test_sample_reads_psutil(monkeypatch):
    class FakeMemory:
        percent = 42.5

    monkeypatch.setattr(resources.psutil, "virtual_memory", lambda: FakeMemory())
    monkeypatch.setattr(resources.psutil, "cpu_percent", lambda interval=None: 12.0)
    monkeypatch.setattr(resources.psutil, "cpu_count", lambda logical=True: 6)

    sample = ResourceMonitor().sample()

    assert sample == ResourceSample(mem_percent=42.5, cpu_percent=12.0, cores=6)


def test_check_thresholds_reports_reasons():
    monitor = ResourceMonitor(memory_limit_percent=80, cpu_limit_percent=90)

    calm = monitor.check_thresholds(_sample())
    assert calm.ok
    assert calm.reason is None

    loaded = monitor.check_thresholds(_sample(mem=95, cpu=99))
    assert not loaded.ok
    assert len(loaded.reasons) == 2
    assert "memory usage 95%" in loaded.reason
    assert "cpu usage 99%" in loaded.reason
