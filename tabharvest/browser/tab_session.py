"""
Hidden tab lifecycle.

A TabSession is one background page opened for one flow. The creating call
owns it and must close it on every exit path; open_tab() guarantees that.

State machine:
    OPENING -> LOADING -> READY -> CLOSED
    any state -> CLOSED (close() is idempotent)
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from tabharvest.errors import NavigationTimeout, TabClosed, TabCreationError
from tabharvest.utils.config import get_settings
from tabharvest.utils.logging import LogContext, get_logger

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Page

logger = get_logger(__name__)

_tab_ids = itertools.count(1)


class TabState(str, Enum):
    OPENING = "opening"
    LOADING = "loading"
    READY = "ready"
    CLOSED = "closed"


class TabSession:
    """A background browser page bound to one source URL."""

    def __init__(self, page: Page, source_url: str):
        self.tab_id = next(_tab_ids)
        self.source_url = source_url
        self.state = TabState.OPENING
        self.created_at = datetime.now(UTC)
        self._page = page
        self._load_wait: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"TabSession(tab_id={self.tab_id}, state={self.state.value}, url={self.source_url!r})"

    @property
    def page(self) -> Page:
        if self.state == TabState.CLOSED:
            raise TabClosed(self.source_url)
        return self._page

    @property
    def url(self) -> str:
        """Current page URL (after redirects); source_url once closed."""
        if self.state == TabState.CLOSED:
            return self.source_url
        return self._page.url or self.source_url

    @property
    def is_closed(self) -> bool:
        if self.state == TabState.CLOSED:
            return True
        try:
            return self._page.is_closed()
        except Exception:
            return True

    @classmethod
    async def open(cls, context: BrowserContext, url: str) -> TabSession:
        """Create a background page and start navigating to url.

        Returns once the navigation is committed; use wait_for_load() for
        the "load" state.

        Raises:
            TabCreationError: The browser refused the page or the navigation.
        """
        try:
            page = await context.new_page()
        except PlaywrightError as e:
            raise TabCreationError(url, str(e)) from e
        if page is None:
            raise TabCreationError(url, "browser returned no page")

        session = cls(page, url)
        logger.debug("Tab created", tab_id=session.tab_id, url=url)

        try:
            await page.goto(url, wait_until="commit")
        except PlaywrightError as e:
            await session.close()
            raise TabCreationError(url, str(e)) from e

        session.state = TabState.LOADING
        return session

    async def wait_for_load(self, timeout: float | None = None) -> None:
        """Wait until the page reports the "load" state.

        Concurrent callers share one underlying wait.

        Args:
            timeout: Deadline in seconds (default: tabs.navigation_timeout).

        Raises:
            NavigationTimeout: The deadline passed first.
            TabClosed: The tab was closed while waiting.
        """
        if self.state == TabState.READY:
            return
        if self.state == TabState.CLOSED:
            raise TabClosed(self.source_url)

        if timeout is None:
            timeout = get_settings().tabs.navigation_timeout

        wait = self._load_wait
        if wait is None or wait.done():
            wait = self._load_wait = asyncio.ensure_future(self._wait_for_load_state(timeout))
        try:
            await asyncio.shield(wait)
        except asyncio.CancelledError:
            # close() cancels the shared wait; the caller's own cancellation propagates
            if wait.cancelled() and self.state == TabState.CLOSED:
                raise TabClosed(self.source_url) from None
            raise
        finally:
            if wait.done() and self._load_wait is wait:
                self._load_wait = None

    async def _wait_for_load_state(self, timeout: float) -> None:
        try:
            await self._page.wait_for_load_state("load", timeout=timeout * 1000)
        except PlaywrightTimeoutError as e:
            logger.warning(
                "Tab did not finish loading",
                tab_id=self.tab_id,
                url=self.source_url,
                timeout=timeout,
            )
            raise NavigationTimeout(self.source_url, timeout) from e
        except PlaywrightError as e:
            if self.is_closed:
                raise TabClosed(self.source_url) from e
            raise

        if self.state != TabState.CLOSED:
            self.state = TabState.READY
            logger.debug("Tab loaded", tab_id=self.tab_id, url=self.url)

    async def content(self) -> str:
        """Snapshot of the rendered DOM as HTML.

        Raises:
            TabClosed: The tab is gone.
        """
        page = self.page
        try:
            return await page.content()
        except PlaywrightError as e:
            if self.is_closed:
                raise TabClosed(self.source_url) from e
            raise

    async def close(self) -> None:
        """Close the tab. Safe to call more than once."""
        if self.state == TabState.CLOSED:
            return
        self.state = TabState.CLOSED

        if self._load_wait is not None and not self._load_wait.done():
            self._load_wait.cancel()
        self._load_wait = None

        try:
            await self._page.close()
        except Exception as e:
            # Already closed by the user or the browser
            logger.debug("Tab close failed", tab_id=self.tab_id, error=str(e))
        else:
            logger.debug("Tab closed", tab_id=self.tab_id)


@asynccontextmanager
async def open_tab(
    context: BrowserContext,
    url: str,
    *,
    wait_for_load: bool = True,
    navigation_timeout: float | None = None,
) -> AsyncIterator[TabSession]:
    """Open a hidden tab for the duration of a block; always closed on exit."""
    session = await TabSession.open(context, url)
    with LogContext(tab_id=session.tab_id):
        try:
            if wait_for_load:
                await session.wait_for_load(navigation_timeout)
            yield session
        finally:
            await session.close()
