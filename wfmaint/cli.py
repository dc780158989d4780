"""Command line interface for wfmaint."""

from __future__ import annotations

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Sequence

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from . import __version__
from .config import Config, cache_dir, config_file_path, load_config, reset_config
from .errors import Interrupted, InvalidArgument, WfmaintError
from .executor import ItemResult
from .output import ConsoleProgress, configure_logging, format_status_icon
from .providers.github import metrics_from_counters
from .services import validate_service
from .services import security_service
from .services.analytics_service import (
    DEFAULT_RUN_LIMIT,
    ApiUsage,
    analyze_efficiency,
    summarize_runs,
)
from .services.cache_service import cache_summary, clear_cache, prune_cache
from .services.cleanup_service import (
    DEFAULT_KEEP_DAYS,
    DEFAULT_MAX_RUNS,
    RunDeleter,
    fetch_runs,
    parse_runs,
    plan_cleanup,
)
from .services.config_service import apply_config_updates, config_rows, get_config_snapshot
from .services.run_service import MaintenanceRun, RunSummary
from .services.system_service import DoctorCheckResult, run_all_doctor_checks
from .text import Messages, Styles
from .utils import collect_files, collect_workflow_files, ensure_positive, plural_suffix, resolve_directory

console = Console()

app = typer.Typer(
    help=Messages.APP_HELP,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"wfmaint v{__version__}")
        raise typer.Exit()


def _styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/{style}]"


@contextmanager
def _cli_errors():
    """Render framework errors and map them to exit codes."""
    try:
        yield
    except Interrupted as exc:
        console.print(_styled(Messages.ERROR_INTERRUPTED.format(signum=exc.signum), Styles.ERROR))
        raise typer.Exit(code=exc.exit_code)
    except (InvalidArgument, FileNotFoundError, NotADirectoryError) as exc:
        console.print(Text(str(exc), style=Styles.ERROR))
        raise typer.Exit(code=2)
    except WfmaintError as exc:
        console.print(Text(str(exc), style=Styles.ERROR))
        raise typer.Exit(code=1)


def _print_worker_output(text: str) -> None:
    for line in text.splitlines():
        if line.startswith("ERROR:"):
            console.print(Text(line, style=Styles.ERROR), soft_wrap=True)
        elif line.startswith("WARN:"):
            console.print(Text(line, style=Styles.WARNING), soft_wrap=True)
        else:
            console.print(Text(line), soft_wrap=True)


def _progress() -> ConsoleProgress | None:
    return ConsoleProgress(console) if console.is_terminal else None


def _print_summary(summary: RunSummary, label: str) -> None:
    message = Messages.INFO_SUMMARY.format(
        errors=summary.errors,
        errors_plural=plural_suffix(summary.errors),
        warnings=summary.warnings,
        warnings_plural=plural_suffix(summary.warnings),
        completed=summary.completed,
        total=summary.total,
        label=label,
        failed=summary.failed_jobs,
    )
    if summary.errors:
        style = Styles.ERROR
    elif summary.warnings:
        style = Styles.WARNING
    else:
        style = Styles.SUCCESS
    console.print(_styled(message, style))
    if summary.exit_code:
        raise typer.Exit(code=summary.exit_code)


def _run_policy(
    config: Config,
    directory: Path,
    items: Sequence[Any],
    fn: Callable[[Any], ItemResult | None],
    *,
    label: str,
    cache_context: str,
    jobs: int | None,
    no_cache: bool,
) -> RunSummary:
    with MaintenanceRun(
        config,
        base_dir=directory,
        use_cache=not no_cache,
        on_output=_print_worker_output,
        progress=_progress(),
    ) as run:
        if run.cache is not None:
            stats = run.cache.stats()
            if stats.entries:
                console.print(
                    _styled(Messages.INFO_CACHE_USING.format(label=label, count=stats.entries), Styles.INFO)
                )
        plan = run.plan_jobs(jobs)
        if not plan.check.ok:
            console.print(_styled(Messages.WARNING_RESOURCES.format(reason=plan.check.reason), Styles.WARNING))
        console.print(
            _styled(
                Messages.INFO_RESOURCES.format(
                    mem=plan.sample.mem_percent,
                    cpu=plan.sample.cpu_percent,
                    cores=plan.sample.cores,
                    jobs=plan.jobs,
                ),
                Styles.INFO,
            )
        )
        summary, _report = run.execute(
            items,
            fn,
            jobs=plan.jobs,
            label=label,
            cache_context=cache_context,
        )
    return summary


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help=Messages.HELP_VERBOSE,
    ),
) -> None:
    """Global Typer callback for shared options."""
    configure_logging(verbose)


@app.command()
def validate(
    path: Path = typer.Option(
        Path("."),
        "--path",
        "-p",
        help=Messages.HELP_PATH,
    ),
    jobs: int | None = typer.Option(
        None,
        "--jobs",
        "-j",
        help=Messages.HELP_JOBS,
    ),
    no_cache: bool = typer.Option(
        False,
        "--no-cache",
        help=Messages.HELP_NO_CACHE,
    ),
) -> None:
    """Validate workflow definitions for structure, pinning and permissions."""
    with _cli_errors():
        config = load_config()
        directory = resolve_directory(path)
        if jobs is not None:
            ensure_positive(jobs, "--jobs")
        files = collect_workflow_files(directory, config.workflow_dir)
        if not files:
            console.print(
                _styled(Messages.INFO_NO_WORKFLOWS.format(path=directory / config.workflow_dir), Styles.WARNING)
            )
            return
        console.print(
            _styled(
                Messages.INFO_VALIDATE_RUNNING.format(
                    count=len(files),
                    plural=plural_suffix(len(files)),
                    path=directory / config.workflow_dir,
                ),
                Styles.INFO,
            )
        )
        summary = _run_policy(
            config,
            directory,
            files,
            validate_service.validate_workflow,
            label=validate_service.LABEL,
            cache_context=validate_service.CACHE_CONTEXT,
            jobs=jobs,
            no_cache=no_cache,
        )
    _print_summary(summary, "files")


@app.command()
def security(
    path: Path = typer.Option(
        Path("."),
        "--path",
        "-p",
        help=Messages.HELP_SECURITY_PATH,
    ),
    jobs: int | None = typer.Option(
        None,
        "--jobs",
        "-j",
        help=Messages.HELP_JOBS,
    ),
    no_cache: bool = typer.Option(
        False,
        "--no-cache",
        help=Messages.HELP_NO_CACHE,
    ),
) -> None:
    """Scan the repository for hardcoded secrets and risky workflow permissions."""
    with _cli_errors():
        config = load_config()
        directory = resolve_directory(path)
        if jobs is not None:
            ensure_positive(jobs, "--jobs")
        files = collect_files(directory)
        console.print(
            _styled(
                Messages.INFO_SECURITY_RUNNING.format(
                    count=len(files),
                    plural=plural_suffix(len(files)),
                    path=directory,
                ),
                Styles.INFO,
            )
        )
        summary = _run_policy(
            config,
            directory,
            files,
            security_service.SecretScanner(workflow_dir=config.workflow_dir),
            label=security_service.LABEL,
            cache_context=security_service.CACHE_CONTEXT,
            jobs=jobs,
            no_cache=no_cache,
        )
    _print_summary(summary, "files")


@app.command()
def cleanup(
    days: int = typer.Option(
        DEFAULT_KEEP_DAYS,
        "--days",
        min=0,
        help=Messages.HELP_CLEANUP_DAYS,
    ),
    max_runs: int = typer.Option(
        DEFAULT_MAX_RUNS,
        "--max-runs",
        min=0,
        help=Messages.HELP_CLEANUP_MAX_RUNS,
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help=Messages.HELP_CLEANUP_DRY_RUN,
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help=Messages.HELP_CLEANUP_FORCE,
    ),
    jobs: int | None = typer.Option(
        None,
        "--jobs",
        "-j",
        help=Messages.HELP_JOBS,
    ),
) -> None:
    """Delete workflow runs older than --days or beyond --max-runs per workflow."""
    summary: RunSummary | None = None
    with _cli_errors():
        config = load_config()
        if jobs is not None:
            ensure_positive(jobs, "--jobs")
        with MaintenanceRun(config, on_output=_print_worker_output, progress=_progress()) as run:
            client = run.client()
            console.print(_styled(Messages.INFO_CLEANUP_ANALYZING, Styles.TITLE))
            client.check_quota()
            runs = fetch_runs(client)
            plan = plan_cleanup(runs, days=days, max_runs=max_runs)
            candidates = plan.candidates
            console.print(
                _styled(
                    Messages.INFO_CLEANUP_STATS.format(
                        total=plan.total,
                        cutoff=plan.cutoff.date().isoformat(),
                        max_runs=max_runs,
                    ),
                    Styles.INFO,
                )
            )
            if not candidates:
                console.print(_styled(Messages.INFO_CLEANUP_NONE, Styles.SUCCESS))
                return
            console.print(
                _styled(
                    Messages.INFO_CLEANUP_CANDIDATES.format(
                        count=len(candidates),
                        plural=plural_suffix(len(candidates)),
                        old=len(plan.old),
                        days=days,
                        excess=len(plan.excess),
                    ),
                    Styles.INFO,
                )
            )
            if dry_run:
                for item in candidates:
                    console.print(
                        f"  {item.id}  {item.name}  {item.created_at.isoformat()}",
                        markup=False,
                        highlight=False,
                    )
                console.print(
                    _styled(
                        Messages.INFO_CLEANUP_DRY_RUN.format(
                            count=len(candidates),
                            plural=plural_suffix(len(candidates)),
                        ),
                        Styles.WARNING,
                    )
                )
                return
            if not force and not typer.confirm(
                Messages.CONFIRM_CLEANUP.format(count=len(candidates), plural=plural_suffix(len(candidates))),
                default=False,
            ):
                console.print(_styled(Messages.INFO_CLEANUP_CANCELLED, Styles.INFO))
                return
            job_plan = run.plan_jobs(jobs)
            summary, report = run.execute(
                candidates,
                RunDeleter(client),
                jobs=job_plan.jobs,
                label="runs",
                use_cache=False,
            )
            deleted = sum(
                1
                for outcome in report.outcomes
                if not outcome.failed and outcome.result is not None and not outcome.result.warning_count
            )
            console.print(
                _styled(
                    Messages.INFO_CLEANUP_DONE.format(
                        deleted=deleted,
                        plural=plural_suffix(deleted),
                        failed=len(candidates) - deleted,
                    ),
                    Styles.SUCCESS if deleted == len(candidates) else Styles.WARNING,
                )
            )
            _print_api_metrics(report.counters)
    if summary is not None:
        _print_summary(summary, "runs")


def _print_api_metrics(counters: dict[str, int]) -> None:
    metrics = metrics_from_counters(counters)
    console.print(
        _styled(
            Messages.INFO_API_METRICS.format(
                calls=metrics.api_calls_total,
                hits=metrics.cache_hits,
                rate=metrics.cache_hit_rate_percent,
                warnings=metrics.rate_limit_warnings,
            ),
            Styles.INFO,
        )
    )


@app.command()
def analyze(
    path: Path = typer.Option(
        Path("."),
        "--path",
        "-p",
        help=Messages.HELP_PATH,
    ),
    limit: int = typer.Option(
        DEFAULT_RUN_LIMIT,
        "--limit",
        "-n",
        min=1,
        help=Messages.HELP_ANALYZE_LIMIT,
    ),
) -> None:
    """Summarize recent run performance, API usage and workflow efficiency."""
    with _cli_errors():
        config = load_config()
        directory = resolve_directory(path)
        with MaintenanceRun(config, base_dir=directory) as run:
            client = run.client()
            runs = parse_runs(client.list_runs(limit=limit))
            stats = summarize_runs(runs)
            if not stats:
                console.print(_styled(Messages.INFO_ANALYZE_NO_RUNS, Styles.WARNING))
            else:
                table = Table(
                    title=Messages.TABLE_TITLE_ANALYZE,
                    show_header=True,
                    header_style=Styles.TABLE_HEADER,
                )
                table.add_column(Messages.TABLE_HEADER_WORKFLOW, overflow="fold")
                table.add_column(Messages.TABLE_HEADER_RUNS, justify="right")
                table.add_column(Messages.TABLE_HEADER_AVG, justify="right")
                table.add_column(Messages.TABLE_HEADER_SUCCESS, justify="right")
                for item in stats:
                    table.add_row(
                        item.name,
                        str(item.runs),
                        f"{item.avg_duration_minutes:.1f}",
                        f"{item.success_rate}%",
                    )
                console.print(_styled(Messages.INFO_ANALYZE_RUNTIME.format(count=len(runs)), Styles.TITLE))
                console.print(table)

            usage = ApiUsage.from_rate_limit(client.check_quota())
            console.print(
                _styled(
                    Messages.INFO_ANALYZE_API.format(
                        used=usage.used,
                        limit=usage.limit,
                        percent=usage.percent,
                        remaining=usage.remaining,
                    ),
                    Styles.INFO,
                )
            )
            if usage.level == "high":
                console.print(_styled(Messages.WARNING_ANALYZE_API_HIGH.format(percent=usage.percent), Styles.WARNING))
            elif usage.level == "moderate":
                console.print(
                    _styled(Messages.WARNING_ANALYZE_API_MODERATE.format(percent=usage.percent), Styles.WARNING)
                )
            else:
                console.print(_styled(Messages.INFO_ANALYZE_API_HEALTHY, Styles.SUCCESS))

            efficiency = analyze_efficiency(collect_workflow_files(directory, config.workflow_dir))
            console.print(
                _styled(
                    Messages.INFO_ANALYZE_EFFICIENCY.format(
                        total=efficiency.total,
                        caching=efficiency.caching,
                        conditional=efficiency.conditional,
                        matrix=efficiency.matrix,
                    ),
                    Styles.INFO,
                )
            )
            if efficiency.needs_caching:
                console.print(
                    _styled(Messages.WARNING_ANALYZE_CACHING, Styles.WARNING)
                )
            _print_api_metrics(run.counters())


@app.command()
def cache(
    show: bool = typer.Option(
        False,
        "--show",
        help=Messages.HELP_CACHE_SHOW,
    ),
    clear: bool = typer.Option(
        False,
        "--clear",
        help=Messages.HELP_CACHE_CLEAR,
    ),
    prune: bool = typer.Option(
        False,
        "--prune",
        help=Messages.HELP_CACHE_PRUNE,
    ),
) -> None:
    """Inspect or maintain the result cache."""
    if sum((show, clear, prune)) > 1:
        raise typer.BadParameter(Messages.ERROR_CACHE_OPTION_CONFLICT)
    with _cli_errors():
        config = load_config()
        if clear:
            removed = clear_cache(config)
            console.print(
                _styled(
                    Messages.INFO_CACHE_CLEARED.format(count=removed, plural=plural_suffix(removed, "y", "ies")),
                    Styles.SUCCESS,
                )
            )
            return
        if prune:
            removed = prune_cache(config)
            console.print(
                _styled(
                    Messages.INFO_CACHE_PRUNED.format(count=removed, plural=plural_suffix(removed, "y", "ies")),
                    Styles.SUCCESS,
                )
            )
            return
        stats = cache_summary(config)
        console.print(
            _styled(
                Messages.INFO_CACHE_SUMMARY.format(
                    path=cache_dir(config),
                    entries=stats.entries,
                    size=stats.total_bytes,
                    ttl=config.cache_ttl_seconds,
                ),
                Styles.INFO,
            )
        )


@app.command()
def config(
    show: bool = typer.Option(
        False,
        "--show",
        help=Messages.HELP_CONFIG_SHOW,
    ),
    set_values: list[str] | None = typer.Option(
        None,
        "--set",
        help=Messages.HELP_CONFIG_SET,
    ),
    reset: bool = typer.Option(
        False,
        "--reset",
        help=Messages.HELP_CONFIG_RESET,
    ),
    show_path: bool = typer.Option(
        False,
        "--path",
        help=Messages.HELP_CONFIG_PATH,
    ),
) -> None:
    """Show or update the configuration in ~/.wfmaint/config.json."""
    with _cli_errors():
        if reset:
            reset_config()
            console.print(_styled(Messages.INFO_CONFIG_RESET, Styles.SUCCESS))
        if set_values:
            updated = apply_config_updates(set_values)
            for raw in set_values:
                key = raw.partition("=")[0].strip()
                console.print(
                    _styled(Messages.INFO_CONFIG_SAVED.format(key=key, value=getattr(updated, key)), Styles.SUCCESS)
                )
        if show_path:
            console.print(str(config_file_path()), markup=False, highlight=False)
        if show or not any((reset, set_values, show_path)):
            cfg = get_config_snapshot()
            table = Table(
                title=Messages.TABLE_TITLE_CONFIG,
                show_header=True,
                header_style=Styles.TABLE_HEADER,
            )
            table.add_column(Messages.TABLE_HEADER_KEY, no_wrap=True)
            table.add_column(Messages.TABLE_HEADER_VALUE, overflow="fold")
            for key, value in config_rows(cfg):
                table.add_row(key, value)
            console.print(table)


@app.command()
def doctor(
    skip_remote: bool = typer.Option(
        False,
        "--skip-remote",
        help=Messages.HELP_DOCTOR_SKIP_REMOTE,
    ),
) -> None:
    """Run diagnostic checks for the installation, cache and host."""
    console.print(_styled(Messages.DOCTOR_TITLE.format(version=__version__), Styles.TITLE))
    console.print()

    results = []
    try:
        cfg = load_config()
    except InvalidArgument as exc:
        cfg = Config()
        results.append(
            DoctorCheckResult(
                name="Config JSON",
                passed=False,
                message=Messages.DOCTOR_CONFIG_INVALID.format(path=config_file_path()),
                detail=str(exc),
            )
        )
    results.extend(run_all_doctor_checks(cfg, skip_remote=skip_remote))

    has_failure = False
    for result in results:
        icon = format_status_icon(result.passed, console=console)
        if not result.passed:
            has_failure = True

        console.print(f"  {icon} [bold]{result.name}:[/bold] {result.message}")
        if result.detail:
            console.print(f"      [dim]{result.detail}[/dim]")

    console.print()
    if has_failure:
        console.print(_styled(Messages.DOCTOR_SOME_FAILED, Styles.WARNING))
        raise typer.Exit(code=1)
    console.print(_styled(Messages.DOCTOR_ALL_PASSED, Styles.SUCCESS))


def run(argv: list[str] | None = None) -> None:
    """Entry point wrapper allowing optional argument override."""
    if argv is None:
        app()
    else:
        app(args=list(argv))


if __name__ == "__main__":  # pragma: no cover
    run(sys.argv[1:])
