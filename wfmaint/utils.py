"""Utility helpers for filesystem access and path handling."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Sequence
import os

from .errors import InvalidArgument

WORKFLOW_EXTENSIONS = (".yml", ".yaml")
SCAN_EXCLUDED_DIRS = frozenset({".git", "node_modules", "tests", "test"})
SCAN_EXCLUDED_EXTENSIONS = (".md", ".txt", ".log")


def resolve_directory(path: Path | str) -> Path:
    """Resolve and validate a user supplied directory path."""
    dir_path = Path(path).expanduser().resolve()
    if not dir_path.exists():
        raise FileNotFoundError(f"Directory does not exist: {dir_path}")
    if not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    return dir_path


def normalize_extensions(values: Iterable[str] | None) -> tuple[str, ...]:
    """Return a sorted, deduplicated tuple of normalized file extensions."""

    if not values:
        return ()

    normalized: list[str] = []
    seen: set[str] = set()
    for raw in values:
        if raw is None:
            continue
        token = raw.strip().lower()
        if not token:
            continue
        if not token.startswith("."):
            token = f".{token}"
        if token == ".":
            continue
        if token not in seen:
            seen.add(token)
            normalized.append(token)
    return tuple(sorted(normalized))


def collect_workflow_files(root: Path | str, workflow_dir: str) -> List[Path]:
    """Return the workflow definitions under ``root / workflow_dir``, sorted."""

    directory = resolve_directory(root) / workflow_dir
    if not directory.is_dir():
        return []
    files = [
        entry
        for entry in directory.iterdir()
        if entry.is_file() and _matches_extension(entry, WORKFLOW_EXTENSIONS)
    ]
    files.sort()
    return files


def collect_files(
    root: Path | str,
    *,
    excluded_dirs: Iterable[str] = SCAN_EXCLUDED_DIRS,
    excluded_extensions: Sequence[str] = SCAN_EXCLUDED_EXTENSIONS,
) -> List[Path]:
    """Collect files under *root* recursively, skipping excluded dirs and suffixes."""

    directory = resolve_directory(root)
    skip_dirs = set(excluded_dirs)
    skip_exts = normalize_extensions(excluded_extensions)
    files: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(directory, topdown=True):
        dirnames[:] = [d for d in dirnames if d not in skip_dirs]
        current_dir = Path(dirpath)
        for filename in filenames:
            candidate = current_dir / filename
            if skip_exts and _matches_extension(candidate, skip_exts):
                continue
            if candidate.is_symlink() or not candidate.is_file():
                continue
            files.append(candidate)
    files.sort()
    return files


def _matches_extension(path: Path, extensions: Sequence[str]) -> bool:
    """Return True if *path* ends with any of the provided *extensions*."""

    filename = path.name.lower()
    return any(filename.endswith(ext) for ext in extensions)


def ensure_positive(value: int, name: str) -> int:
    """Validate that *value* is positive."""
    if value <= 0:
        raise InvalidArgument(f"{name} must be greater than 0")
    return value


def plural_suffix(count: int, singular: str = "", plural: str = "s") -> str:
    return singular if count == 1 else plural
