"""
Browser download subsystem.

Downloads go through the browser context's request client so they carry the
session cookies of the logged-in tabs. The saved filename is the caller's
choice, else the server's Content-Disposition name, else the last URL path
segment; registered filename listeners may then rewrite it (see
FilenameCorrelator.apply).
"""

from __future__ import annotations

import re
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

from playwright.async_api import Error as PlaywrightError

from tabharvest.errors import DownloadRejected
from tabharvest.utils.config import get_project_root, get_settings
from tabharvest.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext

logger = get_logger(__name__)

# (download_url, suggested_filename) -> filename
FilenameListener = Callable[[str, str], str]

DEFAULT_FILENAME = "download"

_CD_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*(?:[\w-]+'[\w-]*')?([^;]+)", re.IGNORECASE)
_CD_FILENAME_RE = re.compile(r'filename\s*=\s*"?([^";]+)"?', re.IGNORECASE)
_UNSAFE_FILENAME_RE = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def filename_from_content_disposition(header: str | None) -> str | None:
    if not header:
        return None
    match = _CD_FILENAME_STAR_RE.search(header)
    if match:
        return unquote(match.group(1).strip().strip('"')) or None
    match = _CD_FILENAME_RE.search(header)
    if match:
        return match.group(1).strip() or None
    return None


def filename_from_url(url: str) -> str | None:
    segments = [s for s in urlparse(url).path.split("/") if s]
    if not segments:
        return None
    return unquote(segments[-1]) or None


def sanitize_filename(filename: str) -> str:
    cleaned = _UNSAFE_FILENAME_RE.sub("_", filename).strip().strip(".")
    return cleaned or DEFAULT_FILENAME


def unique_path(directory: Path, filename: str) -> Path:
    """First free path for filename, numbering duplicates "name (1).ext"."""
    candidate = directory / filename
    if not candidate.exists():
        return candidate
    stem, suffix = candidate.stem, candidate.suffix
    counter = 1
    while True:
        candidate = directory / f"{stem} ({counter}){suffix}"
        if not candidate.exists():
            return candidate
        counter += 1


class DownloadManager:
    """Fetches URLs through a browser context and saves them to disk."""

    def __init__(
        self,
        context: BrowserContext,
        *,
        download_dir: Path | str | None = None,
        timeout: float | None = None,
    ):
        config = get_settings().downloads
        self._context = context
        directory = Path(download_dir or config.download_dir)
        if not directory.is_absolute():
            directory = get_project_root() / directory
        self._download_dir = directory
        self._timeout = timeout if timeout is not None else config.request_timeout
        self._listeners: list[FilenameListener] = []

    @property
    def context(self) -> BrowserContext:
        return self._context

    @property
    def download_dir(self) -> Path:
        return self._download_dir

    def add_filename_listener(self, listener: FilenameListener) -> None:
        """Register a listener invoked for every completed download."""
        self._listeners.append(listener)

    def remove_filename_listener(self, listener: FilenameListener) -> None:
        self._listeners.remove(listener)

    def _determine_filename(self, url: str, suggested: str) -> str:
        filename = suggested
        for listener in self._listeners:
            try:
                filename = listener(url, filename)
            except Exception as e:
                logger.warning("Filename listener failed", url=url, error=str(e))
        return sanitize_filename(filename)

    async def download(self, url: str, filename: str | None = None) -> Path:
        """Download url and save it.

        Args:
            url: Absolute download URL.
            filename: Requested filename; listeners still see it.

        Returns:
            Path of the saved file.

        Raises:
            DownloadRejected: The request failed or returned an error status.
        """
        logger.debug("Download started", url=url)
        try:
            response = await self._context.request.get(url, timeout=self._timeout * 1000)
        except PlaywrightError as e:
            raise DownloadRejected(url, str(e)) from e

        if not response.ok:
            raise DownloadRejected(
                url,
                f"{response.status} {response.status_text}".strip(),
                status=response.status,
            )

        try:
            body = await response.body()
        except PlaywrightError as e:
            raise DownloadRejected(url, str(e)) from e

        suggested = (
            filename
            or filename_from_content_disposition(response.headers.get("content-disposition"))
            or filename_from_url(response.url or url)
            or DEFAULT_FILENAME
        )
        final_name = self._determine_filename(url, suggested)

        try:
            self._download_dir.mkdir(parents=True, exist_ok=True)
            path = unique_path(self._download_dir, final_name)
            path.write_bytes(body)
        except OSError as e:
            logger.error("Saving download failed", url=url, filename=final_name, error=str(e))
            raise DownloadRejected(url, f"could not save {final_name}: {e}") from e

        logger.info("Download complete", url=url, path=str(path), size=len(body))
        return path
