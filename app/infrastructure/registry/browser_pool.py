"""Bounded pool of Playwright pages over one long-lived Chromium process.

Launching a browser is the dominant cost of a registry lookup, so the
process is started once and reused. Each lookup borrows one page (in its
own browser context) for its whole duration; callers beyond the pool size
wait on a semaphore instead of spawning new processes.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from opentelemetry import trace
from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    Route,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from app.infrastructure.registry.config import RegistrySettings, registry_settings
from app.infrastructure.registry.exceptions import (
    BrowserPoolClosedError,
    RegistryNavigationError,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class BrowserPagePool:
    """Page pool with lazy browser start and automatic relaunch after a crash.

    Example:
        ```python
        pool = BrowserPagePool(size=2)
        async with pool.page() as page:
            await page.goto("https://sistemas.sacs.gob.ve/consultas/prfsnal_salud")
        await pool.close()
        ```
    """

    def __init__(
        self,
        settings: RegistrySettings | None = None,
        size: int | None = None,
    ):
        """Initialize the pool without starting the browser.

        Args:
            settings: Registry settings. Defaults to environment settings.
            size: Maximum number of concurrently borrowed pages.
        """
        self._settings = settings or registry_settings
        self.size = size or self._settings.REGISTRY_POOL_SIZE
        self._semaphore = asyncio.Semaphore(self.size)
        self._start_lock = asyncio.Lock()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._idle: list[Page] = []
        self._in_use = 0
        self._waiting = 0
        self._launch_count = 0
        self._closed = False

    @property
    def is_running(self) -> bool:
        """True when the browser process is connected."""
        return self._browser is not None and self._browser.is_connected()

    async def start(self) -> None:
        """Launch the browser process if it is not already running."""
        async with self._start_lock:
            if self._closed:
                raise BrowserPoolClosedError("Browser pool is closed")
            if self.is_running:
                return

            with tracer.start_as_current_span("registry_browser_launch") as span:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()

                self._browser = await self._playwright.chromium.launch(
                    headless=self._settings.REGISTRY_HEADLESS,
                    args=self._settings.REGISTRY_BROWSER_ARGS,
                )
                self._browser.on("disconnected", self._on_disconnected)
                self._launch_count += 1
                span.set_attribute("registry.browser_launch_count", self._launch_count)
                logger.info(f"Navigateur Chromium démarré (lancement #{self._launch_count})")

    def _on_disconnected(self, browser: Browser) -> None:
        logger.warning("Navigateur Chromium déconnecté, relance au prochain emprunt")
        self._idle.clear()
        if self._browser is browser:
            self._browser = None

    async def _block_heavy_resources(self, route: Route) -> None:
        if route.request.resource_type in self._settings.REGISTRY_BLOCKED_RESOURCES:
            await route.abort()
        else:
            await route.continue_()

    async def _new_page(self) -> Page:
        await self.start()
        if self._browser is None:
            raise RegistryNavigationError("Browser disconnected before a page could be opened")

        context = await self._browser.new_context(
            user_agent=self._settings.REGISTRY_USER_AGENT,
            locale="es-VE",
            ignore_https_errors=True,
            viewport={"width": 1280, "height": 800},
        )
        page = await context.new_page()
        page.set_default_timeout(self._settings.REGISTRY_RESULT_TIMEOUT_MS)
        page.set_default_navigation_timeout(self._settings.REGISTRY_NAVIGATION_TIMEOUT_MS)
        if self._settings.REGISTRY_BLOCKED_RESOURCES:
            await page.route("**/*", self._block_heavy_resources)
        return page

    async def _discard_page(self, page: Page) -> None:
        try:
            await page.context.close()
        except PlaywrightError as e:
            logger.debug(f"Fermeture de page ignorée: {e}")

    async def _acquire_page(self) -> Page:
        while self._idle:
            page = self._idle.pop()
            if not page.is_closed():
                return page
        return await self._new_page()

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """Borrow a page; it goes back to the pool only if the caller succeeded."""
        if self._closed:
            raise BrowserPoolClosedError("Browser pool is closed")

        self._waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting -= 1

        try:
            page = await self._acquire_page()
            self._in_use += 1
            healthy = False
            try:
                yield page
                healthy = True
            finally:
                self._in_use -= 1
                if healthy and self.is_running and not self._closed and not page.is_closed():
                    self._idle.append(page)
                else:
                    await self._discard_page(page)
        finally:
            self._semaphore.release()

    def stats(self) -> dict[str, Any]:
        """Pool statistics for health reporting."""
        return {
            "size": self.size,
            "in_use": self._in_use,
            "idle": len(self._idle),
            "waiting": self._waiting,
            "browser_running": self.is_running,
            "launch_count": self._launch_count,
            "closed": self._closed,
        }

    async def close(self) -> None:
        """Close idle pages, the browser process and the Playwright driver."""
        self._closed = True
        idle, self._idle = self._idle, []
        for page in idle:
            await self._discard_page(page)

        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning(f"Erreur à la fermeture du navigateur: {e}")
            self._browser = None

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Pool de pages du registre fermé")
