"""Logic helpers for the `wfmaint doctor` diagnostics."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config import Config, cache_dir, config_file_path
from ..resources import ResourceMonitor
from ..text import Messages


@dataclass
class DoctorCheckResult:
    """Result of a single doctor check."""

    name: str
    passed: bool
    message: str
    detail: str | None = None


def find_command_on_path(command: str) -> Optional[str]:
    """Return the resolved path for *command* if present on PATH."""

    return shutil.which(command)


def check_remote_command(command: str) -> DoctorCheckResult:
    """Check if the remote command (``gh`` by default) is available on PATH."""
    path = find_command_on_path(command)
    if path:
        return DoctorCheckResult(
            name="Remote CLI",
            passed=True,
            message=Messages.DOCTOR_REMOTE_FOUND.format(command=command, path=path),
        )
    return DoctorCheckResult(
        name="Remote CLI",
        passed=False,
        message=Messages.DOCTOR_REMOTE_MISSING.format(command=command),
        detail=Messages.DOCTOR_REMOTE_MISSING_DETAIL,
    )


def check_remote_auth(command: str, *, timeout: float = 15.0) -> DoctorCheckResult:
    """Run ``<command> auth status``."""
    try:
        completed = subprocess.run(
            [command, "auth", "status"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        return DoctorCheckResult(name="Remote auth", passed=False, message=str(exc))
    if completed.returncode == 0:
        return DoctorCheckResult(name="Remote auth", passed=True, message="Authenticated.")
    detail = (completed.stderr or completed.stdout or "").strip() or None
    return DoctorCheckResult(
        name="Remote auth",
        passed=False,
        message=f"Not authenticated. Run `{command} auth login`.",
        detail=detail,
    )


def check_config_exists() -> DoctorCheckResult:
    """Check if config file exists."""
    config_file = config_file_path()
    if config_file.exists():
        return DoctorCheckResult(
            name="Config",
            passed=True,
            message=Messages.DOCTOR_CONFIG_EXISTS.format(path=config_file),
        )
    return DoctorCheckResult(
        name="Config",
        passed=True,
        message=Messages.DOCTOR_CONFIG_DEFAULT,
        detail=str(config_file),
    )


def check_cache_directory(directory: Path) -> DoctorCheckResult:
    """Check if cache directory exists and is writable."""
    if not directory.exists():
        try:
            directory.mkdir(parents=True, exist_ok=True)
            return DoctorCheckResult(
                name="Cache Dir",
                passed=True,
                message=Messages.DOCTOR_CACHE_CREATED.format(path=directory),
            )
        except OSError as exc:
            return DoctorCheckResult(
                name="Cache Dir",
                passed=False,
                message=Messages.DOCTOR_CACHE_CANNOT_CREATE.format(path=directory),
                detail=str(exc),
            )

    test_file = directory / ".doctor_test"
    try:
        test_file.write_text("test", encoding="utf-8")
        test_file.unlink()
        return DoctorCheckResult(
            name="Cache Dir",
            passed=True,
            message=Messages.DOCTOR_CACHE_WRITABLE.format(path=directory),
        )
    except OSError as exc:
        return DoctorCheckResult(
            name="Cache Dir",
            passed=False,
            message=Messages.DOCTOR_CACHE_NOT_WRITABLE.format(path=directory),
            detail=str(exc),
        )


def check_resources(monitor: ResourceMonitor) -> DoctorCheckResult:
    """Sample host load. A constrained host is reported but does not fail."""
    sample = monitor.sample()
    check = monitor.check_thresholds(sample)
    message = Messages.DOCTOR_RESOURCES_OK.format(
        mem=sample.mem_percent,
        cpu=sample.cpu_percent,
        cores=sample.cores,
    )
    detail = None
    if not check.ok:
        detail = Messages.DOCTOR_RESOURCES_CONSTRAINED.format(reason=check.reason)
    return DoctorCheckResult(name="Resources", passed=True, message=message, detail=detail)


def run_all_doctor_checks(
    config: Config,
    *,
    skip_remote: bool = False,
    monitor: ResourceMonitor | None = None,
) -> list[DoctorCheckResult]:
    """Run all doctor checks and return results."""
    results = [
        check_config_exists(),
        check_cache_directory(cache_dir(config)),
        check_resources(
            monitor
            or ResourceMonitor(
                memory_limit_percent=config.memory_limit_percent,
                cpu_limit_percent=config.cpu_limit_percent,
                min_parallel_jobs=config.min_parallel_jobs,
                max_system_parallel_jobs=config.max_system_parallel_jobs,
            )
        ),
    ]
    if not skip_remote:
        remote = check_remote_command(config.remote_command)
        results.append(remote)
        if remote.passed:
            results.append(check_remote_auth(config.remote_command))
    return results
