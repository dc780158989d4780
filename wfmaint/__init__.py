"""wfmaint package initialization."""

from __future__ import annotations

from .cache import CacheStore
from .counter import ConcurrentCounter
from .errors import (
    Interrupted,
    InvalidArgument,
    InvalidKey,
    ResourceUnavailable,
    Transient,
    WfmaintError,
)
from .executor import ExecutionReport, ItemResult, ParallelExecutor
from .ratelimit import RateLimiter
from .resources import ResourceMonitor, ResourceSample
from .signals import SignalManager

__all__ = [
    "__version__",
    "CacheStore",
    "ConcurrentCounter",
    "ExecutionReport",
    "Interrupted",
    "InvalidArgument",
    "InvalidKey",
    "ItemResult",
    "ParallelExecutor",
    "RateLimiter",
    "ResourceMonitor",
    "ResourceSample",
    "ResourceUnavailable",
    "SignalManager",
    "Transient",
    "WfmaintError",
    "get_version",
]

__version__ = "0.3.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
