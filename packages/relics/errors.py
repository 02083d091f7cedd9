"""Error taxonomy for the snapshot pipeline.

Fatal errors (``FatalInputError``, ``CrawlError``) abort a run. Everything
else is a per-item problem: it is caught at the worker boundary, logged and
recorded as an :class:`ItemFailure`.
"""

from __future__ import annotations

from dataclasses import dataclass

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


class RelicsError(Exception):
    """Base class for all snapshot pipeline errors."""


class FatalInputError(RelicsError):
    """Raised when a required input is missing or cannot be parsed."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class ConfigError(RelicsError, ValueError):
    """Raised when a configuration value is invalid."""


class CrawlError(RelicsError):
    """Raised when the collection listing cannot be walked to completion."""


class PermanentItemError(RelicsError):
    """Malformed response shape or unresolved rarity. Never retried."""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key
        self.message = message


class FetchError(RelicsError):
    """Base class for failures of a single HTTP call."""

    retryable = False

    def __init__(self, url: str, message: str):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.message = message


class TransientFetchError(FetchError):
    """Network-level failure (connection reset, DNS, ...)."""

    retryable = True


class FetchTimeoutError(TransientFetchError):
    """No response within the configured deadline."""


class FetchAborted(FetchError):
    """The call was cancelled by its caller. Never retried."""


class DecodeError(FetchError):
    """Response body is not valid JSON."""


class HttpError(FetchError):
    """Raised when the API returns a non-2xx response."""

    def __init__(self, url: str, status: int, body: str = ""):
        super().__init__(url, f"HTTP {status}")
        self.status = status
        self.body = body

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status in RETRYABLE_STATUSES


def is_retryable(exc: BaseException) -> bool:
    """Return True when ``exc`` should consume another attempt."""
    return isinstance(exc, FetchError) and bool(exc.retryable)


@dataclass(frozen=True)
class ItemFailure:
    """Terminal outcome of one work item that could not be processed."""

    phase: str
    key: str
    error_type: str
    message: str

    @classmethod
    def from_exception(cls, phase: str, key: str, exc: BaseException) -> "ItemFailure":
        message = getattr(exc, "message", None) or str(exc)
        return cls(
            phase=phase,
            key=key,
            error_type=type(exc).__name__,
            message=message,
        )

    def describe(self) -> str:
        return f"[{self.phase}] {self.key}: {self.error_type}: {self.message}"
