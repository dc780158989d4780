"""Cross-process counters guarded by an advisory file lock."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Mapping

from filelock import FileLock, Timeout

from .errors import InvalidArgument, ResourceUnavailable

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 30.0
LOCK_FILENAME = "counters.lock"
STATE_FILENAME = "counters.json"


def _load_state(path: Path) -> dict[str, int]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    if not raw.strip():
        return {}
    data = json.loads(raw)
    return {str(name): int(value) for name, value in data.items()}


def _write_state(path: Path, state: Mapping[str, int]) -> None:
    tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    tmp_path.write_text(json.dumps(dict(state), sort_keys=True), encoding="utf-8")
    os.replace(tmp_path, path)


class ConcurrentCounter:
    """Named integer counters shared by every worker process of one run.

    Each ``increment`` performs its read-modify-write of the state file while
    holding an exclusive lock on ``counters.lock``, so concurrent increments
    from separate processes are never lost. The lock is held only for that
    critical section.

    Instances hold nothing but paths, so they can be handed to worker
    processes.
    """

    def __init__(
        self,
        directory: Path | str,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self.directory = Path(directory)
        self.lock_timeout = float(lock_timeout)
        self.lock_path = self.directory / LOCK_FILENAME
        self.state_path = self.directory / STATE_FILENAME

    def _lock(self) -> FileLock:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ResourceUnavailable(
                f"Cannot create counter directory {self.directory}: {exc}"
            ) from exc
        return FileLock(str(self.lock_path), timeout=self.lock_timeout)

    def increment(self, name: str, delta: int = 1) -> int:
        """Add *delta* to counter *name* and return the new value."""

        if not name:
            raise InvalidArgument("Counter name must not be empty")
        lock = self._lock()
        try:
            with lock:
                state = _load_state(self.state_path)
                value = state.get(name, 0) + int(delta)
                state[name] = value
                _write_state(self.state_path, state)
        except Timeout as exc:
            raise ResourceUnavailable(
                f"Timed out after {self.lock_timeout}s waiting for {self.lock_path}"
            ) from exc
        except OSError as exc:
            raise ResourceUnavailable(f"Cannot update counters in {self.directory}: {exc}") from exc
        return value

    def add_many(self, deltas: Mapping[str, int]) -> None:
        """Apply several deltas inside a single critical section."""

        updates = {name: int(delta) for name, delta in deltas.items() if delta}
        if not updates:
            return
        lock = self._lock()
        try:
            with lock:
                state = _load_state(self.state_path)
                for name, delta in updates.items():
                    state[name] = state.get(name, 0) + delta
                _write_state(self.state_path, state)
        except Timeout as exc:
            raise ResourceUnavailable(
                f"Timed out after {self.lock_timeout}s waiting for {self.lock_path}"
            ) from exc
        except OSError as exc:
            raise ResourceUnavailable(f"Cannot update counters in {self.directory}: {exc}") from exc

    def read(self, name: str) -> int:
        return self.snapshot().get(name, 0)

    def snapshot(self) -> dict[str, int]:
        if not self.state_path.exists():
            return {}
        lock = self._lock()
        try:
            with lock:
                return _load_state(self.state_path)
        except Timeout as exc:
            raise ResourceUnavailable(
                f"Timed out after {self.lock_timeout}s waiting for {self.lock_path}"
            ) from exc

    def cleanup(self) -> None:
        """Remove the lock and state files. Safe to call more than once."""

        for path in (self.state_path, self.lock_path):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Could not remove %s: %s", path, exc)
