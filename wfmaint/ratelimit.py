"""Client-side throttle for calls to the remote platform API."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from filelock import FileLock, Timeout

from .errors import InvalidArgument, ResourceUnavailable

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0
DEFAULT_QUOTA_LOW_WATER = 100
LOCK_FILENAME = "ratelimit.lock"
STATE_FILENAME = "ratelimit.json"


@dataclass(slots=True)
class RateBudget:
    window_start: float
    ops_in_window: int = 0
    delay_multiplier: int = 1


@dataclass(slots=True)
class RateLimitStats:
    total_calls: int = 0
    throttled: int = 0
    backed_off: bool = False


class RateLimiter:
    """Sliding-window limiter with a burst allowance and one-way backoff.

    Calls within the first ``burst_size`` operations of a window go through
    immediately. After that, whenever the observed rate in the window exceeds
    ``per_minute`` the caller sleeps ``delay`` seconds. The window restarts
    once 60 seconds have passed since it opened.

    With ``state_dir`` set, the budget lives in a JSON file updated under an
    exclusive file lock so that worker processes of one run share it. The lock
    is released before sleeping.
    """

    def __init__(
        self,
        *,
        per_minute: int,
        burst_size: int,
        delay: float,
        quota_low_water: int = DEFAULT_QUOTA_LOW_WATER,
        state_dir: Path | str | None = None,
        lock_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if per_minute <= 0:
            raise InvalidArgument("per_minute must be greater than 0")
        if burst_size < 0:
            raise InvalidArgument("burst_size must be >= 0")
        if delay < 0:
            raise InvalidArgument("delay must be >= 0")
        self.per_minute = int(per_minute)
        self.burst_size = int(burst_size)
        self.base_delay = float(delay)
        self.quota_low_water = int(quota_low_water)
        self.state_dir = Path(state_dir) if state_dir is not None else None
        self.lock_timeout = float(lock_timeout)
        self._clock = clock
        self._sleep = sleep
        self._thread_lock = threading.Lock()
        self._budget = RateBudget(window_start=clock())
        self.stats = RateLimitStats()

    def __getstate__(self) -> dict:
        state = self.__dict__.copy()
        state.pop("_thread_lock", None)
        return state

    def __setstate__(self, state: dict) -> None:
        self.__dict__.update(state)
        self._thread_lock = threading.Lock()

    @property
    def delay(self) -> float:
        """The delay currently applied to throttled calls."""

        return self.base_delay * self._read_budget().delay_multiplier

    def admit(self, weight: int = 1) -> float:
        """Block until a call of *weight* operations may proceed.

        Returns the number of seconds spent sleeping.
        """

        if weight <= 0:
            raise InvalidArgument("weight must be greater than 0")
        wait = self._update(lambda budget, now: self._charge(budget, now, weight))
        self.stats.total_calls += 1
        if wait > 0:
            self.stats.throttled += 1
            logger.debug("Rate limit throttle: sleeping %.2fs", wait)
            self._sleep(wait)
        return wait

    def observe_remaining(self, remaining: int) -> bool:
        """Record the platform's remaining quota.

        When *remaining* is below the low-water mark the delay doubles for the
        rest of the process lifetime. The backoff applies once and is never
        relaxed. Returns True when this call triggered it.
        """

        if remaining >= self.quota_low_water:
            return False

        def _backoff(budget: RateBudget, _now: float) -> bool:
            if budget.delay_multiplier > 1:
                return False
            budget.delay_multiplier = 2
            return True

        triggered = self._update(_backoff)
        if triggered:
            self.stats.backed_off = True
            logger.warning(
                "Remote quota low (%d remaining); rate limit delay raised to %.2fs",
                remaining,
                self.base_delay * 2,
            )
        return triggered

    def _charge(self, budget: RateBudget, now: float, weight: int) -> float:
        if now - budget.window_start >= WINDOW_SECONDS:
            budget.window_start = now
            budget.ops_in_window = 0
        budget.ops_in_window += weight
        if budget.ops_in_window <= self.burst_size:
            return 0.0
        elapsed = now - budget.window_start
        if elapsed > 0:
            per_minute = budget.ops_in_window / elapsed * WINDOW_SECONDS
            if per_minute <= self.per_minute:
                return 0.0
        return self.base_delay * budget.delay_multiplier

    def _update(self, mutate):
        if self.state_dir is None:
            with self._thread_lock:
                return mutate(self._budget, self._clock())
        lock = self._file_lock()
        try:
            with lock:
                budget = self._load_shared()
                result = mutate(budget, self._clock())
                self._store_shared(budget)
                return result
        except Timeout as exc:
            raise ResourceUnavailable(
                f"Timed out after {self.lock_timeout}s waiting for rate limit lock"
            ) from exc
        except OSError as exc:
            raise ResourceUnavailable(f"Cannot update rate limit state: {exc}") from exc

    def _read_budget(self) -> RateBudget:
        if self.state_dir is None:
            return self._budget
        return self._update(lambda budget, _now: budget)

    def _file_lock(self) -> FileLock:
        assert self.state_dir is not None
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ResourceUnavailable(f"Cannot create {self.state_dir}: {exc}") from exc
        return FileLock(str(self.state_dir / LOCK_FILENAME), timeout=self.lock_timeout)

    def _load_shared(self) -> RateBudget:
        assert self.state_dir is not None
        path = self.state_dir / STATE_FILENAME
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return RateBudget(
                window_start=float(data["window_start"]),
                ops_in_window=max(int(data["ops_in_window"]), 0),
                delay_multiplier=max(int(data.get("delay_multiplier", 1)), 1),
            )
        except FileNotFoundError:
            return RateBudget(window_start=self._clock())
        except (ValueError, KeyError, TypeError):
            logger.debug("Resetting unreadable rate limit state at %s", path)
            return RateBudget(window_start=self._clock())

    def _store_shared(self, budget: RateBudget) -> None:
        assert self.state_dir is not None
        path = self.state_dir / STATE_FILENAME
        tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
        tmp_path.write_text(
            json.dumps(
                {
                    "window_start": budget.window_start,
                    "ops_in_window": budget.ops_in_window,
                    "delay_multiplier": budget.delay_multiplier,
                }
            ),
            encoding="utf-8",
        )
        os.replace(tmp_path, path)

    def cleanup(self) -> None:
        """Remove the shared state and lock files, if any."""

        if self.state_dir is None:
            return
        for name in (STATE_FILENAME, LOCK_FILENAME):
            try:
                (self.state_dir / name).unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Could not remove %s: %s", self.state_dir / name, exc)
