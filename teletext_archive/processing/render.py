"""Headless Chromium rendering of archived pages."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from ..config import ThumbnailSettings


LOGGER = logging.getLogger(__name__)

# Extra seconds granted on top of navigation + capture before the render is
# abandoned outright.
_HARD_DEADLINE_MARGIN_SECONDS = 5.0


class RenderError(RuntimeError):
    """Base class for rendering failures."""


class RenderTimeoutError(RenderError):
    """Navigation or capture exceeded its deadline."""


class RenderCrashError(RenderError):
    """The browser failed while loading or capturing a page."""


class RenderBackendUnavailableError(RenderError):
    """No browser could be launched, so no page can be rendered at all."""


class RenderBackend(Protocol):
    """Anything that can turn a local HTML file into a PNG screenshot."""

    async def render(self, html_path: Path) -> bytes:
        ...

    async def close(self) -> None:
        ...


class PlaywrightRenderBackend:
    """Shared Chromium instance with a process-wide cap on open tabs.

    The browser is launched lazily on the first render and relaunched when it
    disconnects. Each render gets a fresh page which is always closed again,
    so a failed or timed-out render never leaks a tab.
    """

    def __init__(
        self,
        settings: ThumbnailSettings,
        *,
        playwright_factory: Callable[[], Any] = async_playwright,
        hard_deadline_margin: float = _HARD_DEADLINE_MARGIN_SECONDS,
    ) -> None:
        self._settings = settings
        self._playwright_factory = playwright_factory
        self._deadline_margin = hard_deadline_margin
        self._slots = asyncio.Semaphore(settings.max_concurrent_renders)
        self._launch_lock = asyncio.Lock()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._active = 0
        self._closed = False

    @property
    def max_concurrent(self) -> int:
        return self._settings.max_concurrent_renders

    @property
    def active(self) -> int:
        return self._active

    async def render(self, html_path: Path) -> bytes:
        if not html_path.is_file():
            raise RenderCrashError(f"Page file not found: {html_path.name}")

        timeout = self._settings.navigation_timeout
        deadline = timeout * 2 + self._deadline_margin
        async with self._slots:
            self._active += 1
            try:
                browser = await self._ensure_browser()
                try:
                    return await asyncio.wait_for(
                        self._capture(browser, html_path), timeout=deadline
                    )
                except asyncio.TimeoutError as error:
                    raise RenderTimeoutError(
                        f"Rendering {html_path.name} exceeded {deadline:.1f}s"
                    ) from error
                except PlaywrightTimeoutError as error:
                    raise RenderTimeoutError(
                        f"Navigation timeout of {timeout:.0f}s exceeded for {html_path.name}"
                    ) from error
                except Exception as error:  # noqa: BLE001 - browser errors are untyped
                    if not browser.is_connected():
                        await self._forget_browser(browser)
                    raise RenderCrashError(f"Renderer failed on {html_path.name}: {error}") from error
            finally:
                self._active -= 1

    async def _capture(self, browser: Browser, html_path: Path) -> bytes:
        timeout_ms = int(self._settings.navigation_timeout * 1000)
        page: Page = await browser.new_page(
            viewport={
                "width": self._settings.viewport_width,
                "height": self._settings.viewport_height,
            }
        )
        try:
            page.set_default_timeout(timeout_ms)
            await page.goto(
                html_path.resolve().as_uri(),
                wait_until="networkidle",
                timeout=timeout_ms,
            )
            return await page.screenshot(type="png", full_page=True, timeout=timeout_ms)
        finally:
            try:
                await page.close()
            except Exception as error:  # noqa: BLE001 - page may die with the browser
                LOGGER.debug("Closing page for %s failed: %s", html_path.name, error)

    async def _ensure_browser(self) -> Browser:
        async with self._launch_lock:
            if self._closed:
                raise RenderBackendUnavailableError("Render backend has been shut down")
            browser = self._browser
            if browser is not None and browser.is_connected():
                return browser
            if browser is not None:
                LOGGER.warning("Headless browser disconnected; launching a replacement")
                self._browser = None
            try:
                if self._playwright is None:
                    self._playwright = await self._playwright_factory().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=list(self._settings.browser_args),
                )
            except Exception as error:  # noqa: BLE001 - launch failures vary by platform
                LOGGER.error("Unable to launch headless Chromium: %s", error)
                raise RenderBackendUnavailableError(
                    f"Unable to launch headless Chromium: {error}"
                ) from error
            LOGGER.info(
                "Launched headless Chromium (max %s concurrent renders)",
                self._settings.max_concurrent_renders,
            )
            return self._browser

    async def _forget_browser(self, browser: Browser) -> None:
        async with self._launch_lock:
            if self._browser is browser:
                self._browser = None
        try:
            await browser.close()
        except Exception as error:  # noqa: BLE001 - the process is already gone
            LOGGER.debug("Closing crashed browser failed: %s", error)

    async def close(self) -> None:
        async with self._launch_lock:
            self._closed = True
            browser, self._browser = self._browser, None
            playwright, self._playwright = self._playwright, None
        if browser is not None:
            try:
                await browser.close()
            except Exception as error:  # noqa: BLE001 - shutdown must not raise
                LOGGER.warning("Closing headless browser failed: %s", error)
        if playwright is not None:
            await playwright.stop()
        LOGGER.debug("Render backend closed")


__all__ = [
    "PlaywrightRenderBackend",
    "RenderBackend",
    "RenderBackendUnavailableError",
    "RenderCrashError",
    "RenderError",
    "RenderTimeoutError",
]
