"""
Invoice download flows.

Single job: open the payment summary page in a hidden tab, let the SPA
settle, ask its agent for the download link and meld number, remember the
meld number for the filename listener, download, close the tab.

Batch: the single job run by run_batch over many payment summary pages, or
over every payment summary linked from a payments listing.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urljoin

from tabharvest.agent.page_agent import PageAgent
from tabharvest.agent.queries import InvoiceDownloadQuery, PaymentListingQuery
from tabharvest.browser.tab_session import open_tab
from tabharvest.downloads.batch import BatchResult, ProgressListener, run_batch
from tabharvest.downloads.correlator import FilenameCorrelator
from tabharvest.downloads.manager import DownloadManager
from tabharvest.errors import HarvestError
from tabharvest.utils.config import Settings, get_settings
from tabharvest.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext

logger = get_logger(__name__)


class InvoiceDownloader:
    """Downloads invoices from Unit App payment pages through hidden tabs."""

    def __init__(
        self,
        context: BrowserContext,
        manager: DownloadManager,
        correlator: FilenameCorrelator,
        *,
        settings: Settings | None = None,
    ):
        self._context = context
        self._manager = manager
        self._correlator = correlator
        self._settings = settings or get_settings()

    def _invoice_query(self) -> InvoiceDownloadQuery:
        config = self._settings.polling.invoice_agent
        return InvoiceDownloadQuery(timeout=config.max_wait, max_attempts=config.max_attempts)

    async def download_from_payment_page(self, payment_summary_url: str) -> str | None:
        """Download the invoice linked from one payment summary page.

        Returns:
            The absolute download URL, or None when the page never exposed a
            download link.

        Raises:
            HarvestError: Tab creation, navigation or the download failed.
        """
        async with open_tab(self._context, payment_summary_url) as session:
            await asyncio.sleep(self._settings.tabs.spa_settle_delay)

            result = await PageAgent(session).extract(self._invoice_query())
            if not result.ok:
                logger.warning(
                    "Could not find download URL",
                    url=payment_summary_url,
                    status=result.status.value,
                    error=result.error,
                )
                return None

            download_url = urljoin(payment_summary_url, result.get("download_url"))
            meld_number = result.get("meld_number")
            if meld_number:
                self._correlator.remember(download_url, meld_number)

            try:
                await self._manager.download(download_url)
            except HarvestError:
                # The filename listener never ran for this URL
                self._correlator.consume(download_url)
                raise

            await asyncio.sleep(self._settings.downloads.post_download_delay)
            return download_url

    async def download_from_payment_pages(
        self,
        payment_summary_urls: Sequence[str],
        *,
        on_progress: ProgressListener | None = None,
    ) -> BatchResult:
        config = self._settings.downloads
        return await run_batch(
            payment_summary_urls,
            self.download_from_payment_page,
            concurrency=config.concurrency,
            on_progress=on_progress,
            inter_wave_pause=config.inter_wave_pause,
            item_label="invoice",
        )

    async def collect_payment_summary_urls(self, listing_url: str) -> list[str]:
        """Unique payment summary URLs linked from a payments listing.

        Raises:
            AgentTimeout: The listing never showed any payment summary link.
        """
        async with open_tab(self._context, listing_url) as session:
            response = await PageAgent(session).ask_until_answered(PaymentListingQuery())
        urls: list[str] = response.fields["payment_summary_urls"]
        logger.info("Payment summaries collected", url=listing_url, count=len(urls))
        return urls

    async def download_from_listing(
        self,
        listing_url: str,
        *,
        on_progress: ProgressListener | None = None,
    ) -> BatchResult:
        urls = await self.collect_payment_summary_urls(listing_url)
        return await self.download_from_payment_pages(urls, on_progress=on_progress)


async def download_files(
    manager: DownloadManager,
    urls: Sequence[str],
    filenames: Sequence[str | None] | None = None,
    *,
    delay: float | None = None,
) -> list[Path]:
    """Download urls one after another; failures are logged and skipped.

    Args:
        manager: Download manager.
        urls: Absolute URLs.
        filenames: Optional filename per URL (by position).
        delay: Pause after each started download (default: downloads.sequential_delay).

    Returns:
        Paths of the files that were saved.
    """
    if delay is None:
        delay = get_settings().downloads.sequential_delay

    logger.info("Sequential download started", total=len(urls))
    saved: list[Path] = []
    for i, url in enumerate(urls):
        filename = filenames[i] if filenames is not None and i < len(filenames) else None
        logger.debug("Downloading file", position=i + 1, total=len(urls), url=url)
        try:
            saved.append(await manager.download(url, filename))
        except HarvestError as e:
            logger.warning("Download failed, continuing", url=url, error=e.message)
            continue
        await asyncio.sleep(delay)

    logger.info("Sequential download finished", total=len(urls), saved=len(saved))
    return saved
