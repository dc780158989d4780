"""Structural and best-practice checks for one workflow definition."""

from __future__ import annotations

import re
from pathlib import Path

import yaml

from ..executor import ItemResult

CACHE_CONTEXT = "validate:v1"
LABEL = "validation"

_UNPINNED_ACTION = re.compile(r"uses:\s*\S+@(main|master|latest)\b")
_INSTALL_STEP = re.compile(r"node_modules|npm install|npm ci|yarn install|pip install")
_CACHE_USAGE = re.compile(r"actions/cache|^\s*cache:", re.MULTILINE)


class _Report:
    def __init__(self, name: str) -> None:
        self.lines = [f"Validating: {name}"]
        self.errors = 0
        self.warnings = 0

    def error(self, message: str) -> None:
        self.lines.append(f"ERROR: {message}")
        self.errors += 1

    def warn(self, message: str) -> None:
        self.lines.append(f"WARN: {message}")
        self.warnings += 1

    def result(self) -> ItemResult:
        return ItemResult(
            error_count=self.errors,
            warning_count=self.warnings,
            output_text="\n".join(self.lines) + "\n",
        )


def _trigger(document: dict):
    # YAML 1.1 reads a bare `on` key as boolean True.
    if "on" in document:
        return document["on"]
    return document.get(True)


def _check_jobs(jobs, name: str, report: _Report) -> None:
    if not isinstance(jobs, dict) or not jobs:
        report.error(f"'jobs' must be a non-empty mapping in: {name}")
        return
    for job_id, job in jobs.items():
        if not isinstance(job, dict):
            report.error(f"Job '{job_id}' is not a mapping in: {name}")
            continue
        if "uses" in job:
            continue
        if "runs-on" not in job:
            report.error(f"Missing 'runs-on' in job '{job_id}' in: {name}")
        if "steps" not in job:
            report.error(f"Missing 'steps' in job '{job_id}' in: {name}")


def validate_workflow(path: Path | str) -> ItemResult:
    """Check one workflow file. Returns counts and a textual report."""

    file_path = Path(path)
    name = file_path.name
    report = _Report(name)
    try:
        text = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        report.error(f"Cannot read {file_path}: {exc}")
        return report.result()

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        report.error(f"YAML syntax error in: {file_path}")
        report.lines.append(f"ERROR: Error details: {exc}")
        return report.result()

    if not isinstance(document, dict):
        report.error(f"Workflow is not a mapping: {name}")
        return report.result()

    if not document.get("name"):
        report.warn(f"Missing 'name' field in: {name}")
    if _trigger(document) is None:
        report.error(f"Missing 'on' field in: {name}")
    if "jobs" not in document:
        report.error(f"Missing 'jobs' field in: {name}")
    else:
        _check_jobs(document["jobs"], name, report)

    if _UNPINNED_ACTION.search(text):
        report.warn(f"Using unpinned action versions in: {name} (consider using specific versions)")
    if "permissions:" not in text:
        report.warn(f"No explicit permissions defined in: {name}")
    if _INSTALL_STEP.search(text) and not _CACHE_USAGE.search(text):
        report.warn(f"Consider adding dependency caching in: {name}")
    return report.result()
