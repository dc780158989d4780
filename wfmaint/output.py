"""Helpers for formatting CLI output safely across terminals."""

from __future__ import annotations

import logging
import sys

from rich.console import Console
from rich.logging import RichHandler


def _encoding_supports(text: str, encoding: str | None) -> bool:
    if not encoding:
        return False
    try:
        text.encode(encoding)
    except Exception:
        return False
    return True


def supports_unicode_output(console: Console | None = None) -> bool:
    sample = "✓✗"
    if console is not None and _encoding_supports(sample, console.encoding):
        return True
    return _encoding_supports(sample, sys.stdout.encoding)


def format_status_icon(passed: bool, console: Console | None = None) -> str:
    if supports_unicode_output(console):
        return "[green]✓[/green]" if passed else "[red]✗[/red]"
    return "[green]OK[/green]" if passed else "[red]X[/red]"


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Route the package loggers through a RichHandler on stderr."""

    logger = logging.getLogger("wfmaint")
    for handler in list(logger.handlers):
        if getattr(handler, "_wfmaint_handler", False):
            logger.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=False,
        show_path=verbose,
        markup=False,
        rich_tracebacks=verbose,
    )
    handler._wfmaint_handler = True  # type: ignore[attr-defined]
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


class ConsoleProgress:
    """Progress callback printing one dim line per completed job."""

    def __init__(self, console: Console) -> None:
        self.console = console

    def __call__(self, completed: int, total: int, label: str) -> None:
        width = len(str(total))
        self.console.print(f"[dim][{completed:>{width}}/{total}] {label}[/dim]")
