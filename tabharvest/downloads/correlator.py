"""
Download filename correlation.

The flow that starts a download knows a correlation ID (the meld number of an
invoice); the code that names the saved file only sees the download URL and
the server-suggested filename. The correlator carries the ID across that gap:

    correlator.remember(download_url, "123")
    ... download completes ...
    correlator.apply(download_url, "invoice.pdf")  # -> "invoice-123.pdf"

Entries are single use. Nothing is persisted; an entry whose download never
completes is eventually evicted when the table is full.
"""

from __future__ import annotations

import threading
from collections import OrderedDict

from tabharvest.utils.logging import get_logger

logger = get_logger(__name__)


def insert_suffix(filename: str, suffix: str) -> str:
    """Insert -suffix before the last extension, or append when there is none.

    A leading dot (".env") is not an extension.
    """
    last_dot = filename.rfind(".")
    if last_dot > 0:
        return f"{filename[:last_dot]}-{suffix}{filename[last_dot:]}"
    return f"{filename}-{suffix}"


class FilenameCorrelator:
    """Bounded, thread-safe download_url -> correlation_id table."""

    def __init__(self, max_entries: int = 256):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._entries: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, download_url: object) -> bool:
        with self._lock:
            return download_url in self._entries

    def remember(self, download_url: str, correlation_id: str) -> None:
        """Record the ID for a download about to start.

        Re-remembering a URL replaces its ID. When full, the oldest entry is
        evicted.
        """
        evicted: tuple[str, str] | None = None
        with self._lock:
            if download_url in self._entries:
                self._entries.move_to_end(download_url)
            self._entries[download_url] = correlation_id
            if len(self._entries) > self._max_entries:
                evicted = self._entries.popitem(last=False)

        logger.debug("Correlation remembered", url=download_url, correlation_id=correlation_id)
        if evicted is not None:
            logger.warning(
                "Correlation table full, evicted oldest entry",
                url=evicted[0],
                correlation_id=evicted[1],
                max_entries=self._max_entries,
            )

    def consume(self, download_url: str) -> str | None:
        """Return and remove the ID for a URL (None when absent)."""
        with self._lock:
            return self._entries.pop(download_url, None)

    def apply(self, download_url: str, suggested_filename: str) -> str:
        """Filename listener: annotate the suggested name with the remembered ID.

        Consumes the entry. Unrelated URLs get their filename back untouched.
        """
        correlation_id = self.consume(download_url)
        if not correlation_id:
            return suggested_filename

        filename = insert_suffix(suggested_filename, correlation_id)
        logger.info(
            "Filename correlated",
            url=download_url,
            original=suggested_filename,
            filename=filename,
        )
        return filename

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
