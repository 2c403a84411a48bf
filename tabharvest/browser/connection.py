"""
Browser connection for hidden-tab work.

Attaches to the user's running Chrome over CDP and reuses its default
context, so hidden tabs carry the cookies of both logged-in web applications.
When no Chrome is listening and the fallback is enabled, a local Chromium is
launched instead (useful for pages that need no session).
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from tabharvest.utils.config import BrowserConfig, get_settings
from tabharvest.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Playwright

logger = get_logger(__name__)


class BrowserConnection:
    """Owns the Playwright driver, the browser and the working context."""

    def __init__(self, config: BrowserConfig | None = None):
        self._config = config or get_settings().browser
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._owns_context = False
        self._lock = asyncio.Lock()

    @property
    def cdp_url(self) -> str:
        return f"http://{self._config.chrome_host}:{self._config.chrome_port}"

    @property
    def is_connected(self) -> bool:
        if self._browser is None:
            return False
        try:
            return self._browser.is_connected()
        except Exception:
            return False

    async def get_context(self) -> BrowserContext:
        """Return the working context, connecting on first use.

        Reconnects when the user closed Chrome since the last call.

        Raises:
            RuntimeError: CDP connection failed and the launch fallback is disabled.
        """
        async with self._lock:
            if self._context is not None and self.is_connected:
                return self._context

            if self._browser is not None:
                logger.warning("Browser disconnected, reconnecting", url=self.cdp_url)
                await self._release()

            await self._connect()
            assert self._context is not None
            return self._context

    async def _connect(self) -> None:
        from playwright.async_api import async_playwright

        if self._playwright is None:
            self._playwright = await async_playwright().start()

        timeout = self._config.connect_timeout
        try:
            # Playwright's own timeout (ms) plus an asyncio safety net
            self._browser = await asyncio.wait_for(
                self._playwright.chromium.connect_over_cdp(
                    self.cdp_url,
                    timeout=timeout * 1000,
                ),
                timeout=timeout + 1.0,
            )
        except Exception as exc:
            if not self._config.launch_fallback:
                raise RuntimeError(
                    f"CDP connection failed: {exc}. "
                    f"Start Chrome with --remote-debugging-port={self._config.chrome_port}"
                ) from exc
            logger.info(
                "CDP connection failed, launching local Chromium",
                url=self.cdp_url,
                error=str(exc),
            )
            await self._launch()
            return

        logger.info("Connected to Chrome via CDP", url=self.cdp_url)
        contexts = self._browser.contexts
        if contexts:
            # The profile's default context holds the session cookies
            self._context = contexts[0]
            self._owns_context = False
            logger.debug("Reusing existing browser context", context_count=len(contexts))
        else:
            self._context = await self._new_context()
            self._owns_context = True
            logger.info("Created new browser context (no existing context found)")

    async def _launch(self) -> None:
        assert self._playwright is not None
        self._browser = await self._playwright.chromium.launch(
            headless=self._config.fallback_headless,
        )
        self._context = await self._new_context()
        self._owns_context = True
        logger.info("Launched local Chromium", headless=self._config.fallback_headless)

    async def _new_context(self) -> BrowserContext:
        assert self._browser is not None
        return await self._browser.new_context(
            viewport={
                "width": self._config.viewport_width,
                "height": self._config.viewport_height,
            },
            accept_downloads=True,
        )

    async def _release(self) -> None:
        if self._context is not None and self._owns_context:
            try:
                await self._context.close()
            except Exception as e:
                logger.debug("Context close failed", error=str(e))
        if self._browser is not None:
            try:
                # For a CDP attachment this disconnects without closing the user's Chrome
                await self._browser.close()
            except Exception as e:
                logger.debug("Browser close failed", error=str(e))
        self._context = None
        self._browser = None
        self._owns_context = False

    async def close(self) -> None:
        """Disconnect and stop the Playwright driver."""
        async with self._lock:
            await self._release()
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.debug("Browser connection closed")
