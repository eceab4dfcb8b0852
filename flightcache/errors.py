"""
Exceptions raised by the cache and its write-back path.
"""
from typing import Any, Hashable, Optional


class CacheError(Exception):
    """Base class for all cache errors."""
    pass


class LoadFailedError(CacheError):
    """
    The loader raised while computing a value.

    Every caller that shared the load receives its own LoadFailedError,
    but `cause` is the same exception object for all of them.
    """

    def __init__(self, key: Hashable, cause: BaseException):
        self.key = key
        self.cause = cause
        super().__init__(f"Load failed for {key!r}: {cause!r}")


class LoadTimeoutError(CacheError, TimeoutError):
    """Gave up waiting on another caller's in-flight load."""

    def __init__(self, key: Hashable, timeout: Optional[float]):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Load for {key!r} timed out after {timeout}s")


class WriteBackError(CacheError):
    """A backing store write failed after all retry attempts."""

    def __init__(
        self,
        key: Hashable,
        version: Optional[int],
        cause: BaseException,
        attempts: int = 0,
    ):
        self.key = key
        self.version = version
        self.cause = cause
        self.attempts = attempts
        super().__init__(
            f"Write-back failed for {key!r} (version {version}) "
            f"after {attempts} attempts: {cause!r}"
        )


class WriteBackClosedError(CacheError):
    """Write submitted after the coordinator was shut down."""

    def __init__(self, key: Any = None):
        self.key = key
        super().__init__(f"Write-back coordinator is closed (key={key!r})")
