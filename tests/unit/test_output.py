from __future__ import annotations

import io
import logging

from rich.console import Console

from wfmaint import output


def _console() -> Console:
    return Console(file=io.StringIO(), force_terminal=False, width=120)


def test_configure_logging_is_idempotent():
    logger = logging.getLogger("wfmaint")
    try:
        output.configure_logging(False, console=_console())
        output.configure_logging(True, console=_console())

        handlers = [handler for handler in logger.handlers if getattr(handler, "_wfmaint_handler", False)]
        assert len(handlers) == 1
        assert logger.level == logging.DEBUG
        assert logger.propagate is False

        output.configure_logging(False, console=_console())
        assert logger.level == logging.WARNING
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
        logger.propagate = True


def test_module_loggers_reach_rich_handler():
    console = _console()
    logger = logging.getLogger("wfmaint")
    try:
        output.configure_logging(False, console=console)
        logging.getLogger("wfmaint.executor").warning("3 validation jobs failed")
        logging.getLogger("wfmaint.executor").info("hidden")
        text = console.file.getvalue()
        assert "3 validation jobs failed" in text
        assert "hidden" not in text
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
        logger.propagate = True


def test_console_progress_prints_counts():
    console = _console()
    progress = output.ConsoleProgress(console)

    progress(1, 12, "files")
    progress(12, 12, "files")

    lines = console.file.getvalue().splitlines()
    assert lines == ["[ 1/12] files", "[12/12] files"]


def test_format_status_icon_ascii_fallback(monkeypatch):
    monkeypatch.setattr(output, "supports_unicode_output", lambda console=None: False)
    assert output.format_status_icon(True) == "[green]OK[/green]"
    assert output.format_status_icon(False) == "[red]X[/red]"
