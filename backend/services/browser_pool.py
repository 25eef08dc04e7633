"""
Long-lived headless Chromium shared by all markup renders.

One browser process is launched lazily on first use and kept warm; each
render opens its own page. Concurrent callers that arrive during a cold
start all await the same in-flight launch. A browser that has crashed or
disconnected is noticed on the next acquire and relaunched.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from playwright.async_api import Browser, Playwright, async_playwright

from domain.errors import RenderError, RenderErrorKind

logger = logging.getLogger(__name__)

DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--font-render-hinting=none",
]

Launcher = Callable[[], Awaitable[Any]]


class BrowserPool:
    def __init__(
        self,
        *,
        headless: bool = True,
        launch_args: Optional[List[str]] = None,
        launcher: Optional[Launcher] = None,
    ):
        self.headless = headless
        self.launch_args = list(launch_args if launch_args is not None else DEFAULT_LAUNCH_ARGS)
        self._launcher = launcher or self._launch_chromium
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._launch_task: Optional[asyncio.Future] = None
        self.launch_count = 0

    @property
    def is_warm(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    @property
    def is_launching(self) -> bool:
        return self._launch_task is not None and not self._launch_task.done()

    async def _launch_chromium(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=self.headless, args=self.launch_args)

    async def _launch(self) -> Browser:
        logger.info("[browser-pool] launching headless browser")
        try:
            browser = await self._launcher()
        except Exception as exc:
            logger.exception("[browser-pool] browser launch failed")
            raise RenderError(
                RenderErrorKind.BROWSER_UNAVAILABLE,
                "Headless browser could not be started",
                details=str(exc),
            ) from exc
        self._browser = browser
        self.launch_count += 1
        return browser

    async def acquire(self) -> Browser:
        """Return a connected browser, launching one if needed."""
        browser = self._browser
        if browser is not None:
            if browser.is_connected():
                return browser
            logger.warning("[browser-pool] browser disconnected; relaunching")
            self._browser = None

        task = self._launch_task
        if task is None or task.done():
            # a finished launch is never reused, even if every waiter gave up before it failed
            task = asyncio.ensure_future(self._launch())
            task.add_done_callback(self._launch_finished)
            self._launch_task = task
        # shield: a caller giving up must not cancel the launch others share
        return await asyncio.shield(task)

    def _launch_finished(self, task: asyncio.Future) -> None:
        if self._launch_task is task:
            self._launch_task = None
        if not task.cancelled():
            # mark the failure retrieved; it was logged in _launch and waiters get it from shield
            task.exception()

    async def invalidate(self, browser: Browser) -> None:
        """Drop a browser that failed mid-render so the next acquire relaunches."""
        if self._browser is browser:
            self._browser = None
        try:
            await browser.close()
        except Exception:
            logger.debug("[browser-pool] closing invalidated browser failed", exc_info=True)

    async def shutdown(self) -> None:
        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.close()
            except Exception:
                logger.warning("[browser-pool] browser close failed", exc_info=True)
        playwright, self._playwright = self._playwright, None
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception:
                logger.warning("[browser-pool] playwright stop failed", exc_info=True)
        logger.info("[browser-pool] shut down")
