"""Exception types shared by the execution framework and the CLI."""

from __future__ import annotations


class WfmaintError(Exception):
    """Base class for wfmaint failures."""


class InvalidArgument(WfmaintError, ValueError):
    """Raised when a caller passes a bad value into the framework."""


class InvalidKey(InvalidArgument):
    """Raised when a cache key or cache path fails validation."""


class ResourceUnavailable(WfmaintError):
    """Raised when a cache directory, lock file or runtime dir cannot be used."""


class Transient(WfmaintError):
    """Raised when a remote call fails in a way that may succeed later."""


class Interrupted(WfmaintError):
    """Raised after a termination signal has drained the cleanup registry."""

    def __init__(self, signum: int) -> None:
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum

    @property
    def exit_code(self) -> int:
        return 128 + self.signum
