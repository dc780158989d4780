"""GitHub CLI backed client for workflow run queries."""

from __future__ import annotations

import json
import logging
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from ..cache import CacheStore
from ..counter import ConcurrentCounter
from ..errors import ResourceUnavailable, Transient
from ..ratelimit import RateLimiter
from ..text import Messages

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "gh"
DEFAULT_TIMEOUT = 60.0
RUN_FIELDS = "databaseId,name,status,conclusion,createdAt,updatedAt"
QUOTA_EXHAUSTED = 10
MAX_RESET_WAIT = 3600.0

API_CALLS = "api_calls_total"
CACHE_HITS = "cache_hits"
RATE_LIMIT_WARNINGS = "rate_limit_warnings"

_MAX_RETRIES = 2
_RETRY_BASE_DELAY = 0.5
_RETRY_MAX_DELAY = 4.0
_RETRYABLE_TOKENS = (
    "rate limit",
    "timeout",
    "timed out",
    "temporar",
    "try again",
    "502",
    "503",
    "504",
    "connection reset",
)

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


@dataclass(slots=True)
class ApiMetrics:
    api_calls_total: int = 0
    cache_hits: int = 0
    rate_limit_warnings: int = 0

    @property
    def cache_hit_rate_percent(self) -> int:
        if self.api_calls_total <= 0:
            return 0
        return self.cache_hits * 100 // self.api_calls_total


@dataclass(slots=True)
class RateLimitInfo:
    limit: int
    used: int
    remaining: int
    reset: int

    @classmethod
    def from_payload(cls, payload: Any) -> "RateLimitInfo":
        rate = payload.get("rate", {}) if isinstance(payload, dict) else {}
        return cls(
            limit=int(rate.get("limit") or 0),
            used=int(rate.get("used") or 0),
            remaining=int(rate.get("remaining") or 0),
            reset=int(rate.get("reset") or 0),
        )


class GitHubClient:
    """Run ``gh`` subcommands through the run's cache and rate limiter.

    Read-only calls are cached by their argument list. Every call that reaches
    the remote goes through ``RateLimiter.admit`` first. Metrics are kept in
    ``metrics`` and, when a ``counter`` is given, merged into it so that calls
    made from worker processes are counted too.
    """

    def __init__(
        self,
        *,
        command: str = DEFAULT_COMMAND,
        cache: CacheStore | None = None,
        rate_limiter: RateLimiter | None = None,
        counter: ConcurrentCounter | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        runner: Runner | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.command = command
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.counter = counter
        self.timeout = timeout
        self.metrics = ApiMetrics()
        self._runner = runner if runner is not None else subprocess.run
        self._sleep = sleep
        self._clock = clock

    def list_runs(
        self,
        *,
        limit: int = 1000,
        workflow: str | None = None,
        cached: bool = True,
    ) -> list[dict]:
        args = ["run", "list", "--limit", str(limit), "--json", RUN_FIELDS]
        if workflow:
            args.extend(["--workflow", workflow])
        payload = self._json(args, cached=cached)
        return payload if isinstance(payload, list) else []

    def delete_run(self, run_id: int) -> None:
        self.call(["run", "delete", str(run_id)], cached=False)

    def rate_limit(self) -> RateLimitInfo:
        # The rate_limit endpoint does not count against the quota.
        return RateLimitInfo.from_payload(self._json(["api", "rate_limit"], cached=False, admit=False))

    def check_quota(self, low_water: int | None = None) -> RateLimitInfo:
        """Fetch remaining quota and feed it to the rate limiter.

        Below the low-water mark the limiter's one-way backoff engages. When
        the quota is nearly exhausted and resets within the hour, sleep until
        the reset.
        """

        info = self.rate_limit()
        threshold = low_water
        if threshold is None:
            threshold = self.rate_limiter.quota_low_water if self.rate_limiter else 100
        if info.remaining < threshold:
            self._record(RATE_LIMIT_WARNINGS)
            logger.warning("GitHub API rate limit approaching: %d requests remaining", info.remaining)
            if self.rate_limiter is not None:
                self.rate_limiter.observe_remaining(info.remaining)
            if info.remaining < QUOTA_EXHAUSTED:
                wait = info.reset - self._clock()
                if 0 < wait < MAX_RESET_WAIT:
                    logger.warning("Rate limit almost exhausted. Waiting %ds for reset...", int(wait))
                    self._sleep(wait)
        return info

    def call(self, args: Sequence[str], *, cached: bool = True, admit: bool = True) -> str:
        """Run ``<command> *args`` and return its stdout."""

        self._record(API_CALLS)
        key = None
        if cached and self.cache is not None:
            key = self.cache.key_for_text(f"remote:{self.command}:{json.dumps(list(args))}")
            hit = self.cache.get(key)
            if hit is not None:
                self._record(CACHE_HITS)
                logger.debug("Cache hit for %s %s", self.command, " ".join(args))
                return hit
        if admit and self.rate_limiter is not None:
            self.rate_limiter.admit()
        output = self._run_with_retries(list(args))
        if key is not None and self.cache is not None:
            self.cache.put(key, output)
        return output

    def _json(self, args: Sequence[str], *, cached: bool, admit: bool = True) -> Any:
        output = self.call(args, cached=cached, admit=admit)
        try:
            return json.loads(output) if output.strip() else None
        except json.JSONDecodeError as exc:
            raise Transient(Messages.ERROR_REMOTE_JSON.format(command=self._display(args))) from exc

    def _run_with_retries(self, args: list[str]) -> str:
        attempt = 0
        while True:
            try:
                return self._run_once(args)
            except Transient as exc:
                if _should_retry(exc) and attempt < _MAX_RETRIES:
                    delay = _backoff_delay(attempt)
                    logger.debug("Retrying %s in %.1fs: %s", self._display(args), delay, exc)
                    self._sleep(delay)
                    attempt += 1
                    continue
                raise

    def _run_once(self, args: list[str]) -> str:
        display = self._display(args)
        try:
            completed = self._runner(
                [self.command, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ResourceUnavailable(Messages.ERROR_REMOTE_MISSING.format(command=self.command)) from exc
        except subprocess.TimeoutExpired as exc:
            raise Transient(Messages.ERROR_REMOTE_TIMEOUT.format(command=display, timeout=self.timeout)) from exc
        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip() or "no output"
            raise Transient(
                Messages.ERROR_REMOTE_FAILED.format(command=display, code=completed.returncode, detail=detail)
            )
        return completed.stdout or ""

    def _record(self, name: str) -> None:
        setattr(self.metrics, name, getattr(self.metrics, name) + 1)
        if self.counter is not None:
            self.counter.increment(name)

    def _display(self, args: Sequence[str]) -> str:
        return " ".join([self.command, *args])


def _backoff_delay(attempt: int) -> float:
    return min(_RETRY_MAX_DELAY, _RETRY_BASE_DELAY * (2**attempt))


def _should_retry(exc: Exception) -> bool:
    if isinstance(exc.__cause__, subprocess.TimeoutExpired):
        return True
    message = str(exc).lower()
    return any(token in message for token in _RETRYABLE_TOKENS)


def metrics_from_counters(counters: dict[str, int]) -> ApiMetrics:
    return ApiMetrics(
        api_calls_total=counters.get(API_CALLS, 0),
        cache_hits=counters.get(CACHE_HITS, 0),
        rate_limit_warnings=counters.get(RATE_LIMIT_WARNINGS, 0),
    )
