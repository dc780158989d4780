"""Helpers behind the `wfmaint cache` command."""

from __future__ import annotations

from ..cache import CacheStats, CacheStore
from ..config import Config, cache_dir


def open_cache(config: Config) -> CacheStore:
    return CacheStore(cache_dir(config), ttl=config.cache_ttl_seconds)


def cache_summary(config: Config) -> CacheStats:
    return open_cache(config).stats()


def prune_cache(config: Config, max_age: float | None = None) -> int:
    """Remove entries older than *max_age* (defaults to the configured TTL)."""

    return open_cache(config).prune(max_age)


def clear_cache(config: Config) -> int:
    return open_cache(config).clear()
