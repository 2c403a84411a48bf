"""
Error definitions for tabharvest.

Error codes follow the pattern:
- INVALID_*: Input validation errors (caller-side fix needed)
- *_TIMEOUT: A deadline expired while waiting on the browser or a page agent
- *_ERROR / *_REJECTED: The browser or a remote API refused the operation

"Field not found" is deliberately absent: a missing label is an ordinary
extraction result (see tabharvest.extractor.labels.NOT_FOUND), never raised.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes surfaced in command responses."""

    INVALID_INPUT = "INVALID_INPUT"
    """Malformed source URL, wrong page type, or missing required ID."""

    TAB_CREATION_ERROR = "TAB_CREATION_ERROR"
    """The browser refused to open a tab. Fatal for the job, not the batch."""

    TAB_CLOSED = "TAB_CLOSED"
    """The tab was closed (by the user or the browser) while still in use."""

    NAVIGATION_TIMEOUT = "NAVIGATION_TIMEOUT"
    """The tab never reached the "load" state before the deadline."""

    AGENT_TIMEOUT = "AGENT_TIMEOUT"
    """The page agent never answered successfully before the deadline.
    Usually a changed page layout or a slow SPA render."""

    DOWNLOAD_REJECTED = "DOWNLOAD_REJECTED"
    """The download request failed or returned an error status."""

    RECORDS_API_ERROR = "RECORDS_API_ERROR"
    """The records API failed or returned no usable record."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    """Unexpected error in command dispatch."""


class HarvestError(Exception):
    """Base exception for tabharvest errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class TabCreationError(HarvestError):
    """Raised when a hidden tab cannot be created."""

    def __init__(self, url: str, reason: str):
        super().__init__(
            ErrorCode.TAB_CREATION_ERROR,
            f"Failed to create tab for {url}: {reason}",
            details={"url": url},
        )


class TabClosed(HarvestError):
    """Raised when a tab disappears while a flow still holds it."""

    def __init__(self, url: str):
        super().__init__(
            ErrorCode.TAB_CLOSED,
            f"Tab was closed while in use: {url}",
            details={"url": url},
        )


class NavigationTimeout(HarvestError):
    """Raised when a tab does not finish loading within the deadline."""

    def __init__(self, url: str, timeout: float):
        super().__init__(
            ErrorCode.NAVIGATION_TIMEOUT,
            f"Page did not finish loading within {timeout:g}s: {url}",
            details={"url": url, "timeout": timeout},
        )


class AgentTimeout(HarvestError):
    """Raised when a page agent never answers successfully."""

    def __init__(self, url: str, query_kind: str, attempts: int, elapsed: float):
        super().__init__(
            ErrorCode.AGENT_TIMEOUT,
            f"Page agent did not answer {query_kind} within {elapsed:.1f}s "
            f"({attempts} attempts): {url}",
            details={"url": url, "query": query_kind, "attempts": attempts},
        )


class DownloadRejected(HarvestError):
    """Raised when the download subsystem refuses or fails a download."""

    def __init__(self, url: str, reason: str, *, status: int | None = None):
        details: dict[str, Any] = {"url": url}
        if status is not None:
            details["status"] = status
        super().__init__(
            ErrorCode.DOWNLOAD_REJECTED,
            f"Download rejected for {url}: {reason}",
            details=details,
        )


class InvalidInput(HarvestError):
    """Raised when command input is malformed or the page type is wrong."""

    def __init__(self, message: str, *, param_name: str | None = None):
        super().__init__(
            ErrorCode.INVALID_INPUT,
            message,
            details={"param_name": param_name} if param_name else None,
        )


class RecordsApiError(HarvestError):
    """Raised when the records API call fails or finds nothing."""

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(
            ErrorCode.RECORDS_API_ERROR,
            message,
            details={"status": status} if status is not None else None,
        )
