"""Exceptions for portal-sync."""

from typing import Any

# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class PortalSyncError(Exception):
    """
    Base exception for all portal-sync errors.

    All exceptions raised by this library inherit from this class,
    allowing callers to catch all library-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Category Exceptions
# ---------------------------------------------------------------------------


class ValidationError(PortalSyncError):
    """
    Raised when an argument fails validation.

    Examples include a non-positive concurrency bound or an unknown
    cache category name.
    """

    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class ConfigError(PortalSyncError):
    """Raised when configuration cannot be loaded or parsed."""

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        if source:
            message = f"{message} (source: {source})"
        super().__init__(message)


class RemoteError(PortalSyncError):
    """
    Base exception for failures of remote calls that could not be absorbed.

    Transient failures are retried by the retry policy; a RemoteError only
    surfaces once retries are exhausted and the failure cannot be isolated.
    """

    pass


# ---------------------------------------------------------------------------
# Remote Exceptions
# ---------------------------------------------------------------------------


class EventQueryError(RemoteError):
    """
    Raised when a paginated event lookup aborts.

    A page fetch that exhausts its retries aborts the whole query for
    that event name and time window. Partially folded pages are discarded.

    Attributes:
        event_name: The event name being queried
        page: Zero-based index of the page that failed
        cause: The underlying exception from the last attempt
    """

    def __init__(self, event_name: str, page: int, cause: BaseException) -> None:
        self.event_name = event_name
        self.page = page
        self.cause = cause
        super().__init__(
            f"Event lookup for {event_name} failed on page {page}: "
            f"{type(cause).__name__}: {cause}"
        )

    def as_dict(self) -> dict[str, Any]:
        """Serialize for JSON API responses."""
        return {
            "error": "event_query_failed",
            "message": str(self),
            "event_name": self.event_name,
            "page": self.page,
            "cause": type(self.cause).__name__,
        }
