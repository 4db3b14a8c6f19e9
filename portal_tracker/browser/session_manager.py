"""Lifecycle of the long-lived Playwright browser and its working page."""

from __future__ import annotations

import asyncio
import json
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

import structlog
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from ..config import BrowserConfig
from .scraper import SessionLostError, is_session_lost_error


logger = structlog.get_logger(__name__)

_COOKIE_KEYS = {"name", "value", "url", "domain", "path", "expires", "httpOnly", "secure", "sameSite"}


class BrowserUnavailableError(Exception):
    """The browser could not be (re)launched; the caller should back off."""


_CHROMIUM_INSTALL_PATHS = (
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
)


def find_chromium_executable(configured: str | None = None) -> str | None:
    """Browser binary to launch; None lets Playwright use its bundled Chromium.

    An explicitly configured path always wins, even if it does not exist, so
    a typo surfaces as a launch error instead of silently picking another
    browser.
    """
    if configured:
        return configured
    for path in (os.getenv("CHROMIUM_PATH"), *_CHROMIUM_INSTALL_PATHS):
        if path and Path(path).exists():
            return path
    return None


def load_cookies(path: str | None) -> list[dict[str, Any]]:
    """Read a cookie jar exported from a browser; unknown keys are dropped."""
    if not path or not os.path.exists(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Could not load cookies, continuing without them", path=path, error=str(e))
        return []
    if not isinstance(raw, list):
        return []

    cookies = []
    for item in raw:
        if not isinstance(item, dict) or "name" not in item or "value" not in item:
            continue
        cookie = {k: v for k, v in item.items() if k in _COOKIE_KEYS}
        if cookie.get("sameSite") not in (None, "Strict", "Lax", "None"):
            cookie.pop("sameSite")
        if isinstance(cookie.get("expires"), (int, float)) and cookie["expires"] < 0:
            cookie.pop("expires")
        cookies.append(cookie)
    return cookies


class SessionManager:
    """Owns one browser context and one steady-state working page.

    ``ensure_ready`` is idempotent: a live handle is returned as is, a dead one
    is closed best-effort and replaced. Launch failures surface as
    ``BrowserUnavailableError`` without internal retries.
    """

    def __init__(
        self,
        config: BrowserConfig,
        on_page_opened: Callable[[Page], Awaitable[Any]] | None = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ):
        self.config = config
        self.on_page_opened = on_page_opened
        self._playwright_factory = playwright_factory
        self._playwright: Playwright | None = None
        self.browser: Browser | None = None
        self.context: BrowserContext | None = None
        self.page: Page | None = None
        self._disconnected = False
        self._launch_lock = asyncio.Lock()

    def is_live(self) -> bool:
        if self.browser is None or self.context is None or self._disconnected:
            return False
        try:
            return self.browser.is_connected()
        except Exception:
            return False

    def discard(self) -> None:
        """Forget the current handle so the next ``ensure_ready`` recreates it."""
        if self.browser is not None:
            logger.warning("Discarding browser session")
        self._disconnected = True

    def _on_disconnected(self, *_args) -> None:
        logger.warning("Browser disconnected")
        self._disconnected = True

    async def _close_stale(self) -> None:
        browser, self.browser, self.context, self.page = self.browser, None, None, None
        if browser is None:
            return
        try:
            await browser.close()
        except Exception as e:
            logger.warning("Could not close previous browser instance", error=str(e))

    async def ensure_ready(self) -> BrowserContext:
        if self.is_live():
            return self.context
        async with self._launch_lock:
            if self.is_live():
                return self.context
            return await self._launch()

    async def _launch(self) -> BrowserContext:
        await self._close_stale()
        logger.info("Launching Chromium", headless=self.config.headless)
        try:
            if self._playwright is None:
                self._playwright = await self._playwright_factory().start()
            browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                executable_path=find_chromium_executable(self.config.executable_path),
                args=list(self.config.launch_args),
                timeout=self.config.launch_timeout_seconds * 1000,
            )
            context = await browser.new_context(no_viewport=True)
            cookies = load_cookies(self.config.cookies_path)
            if cookies:
                await context.add_cookies(cookies)
        except Exception as e:
            logger.error("Could not launch Chromium", error=f"{type(e).__name__}: {e}")
            # a dead driver cannot launch again; start a fresh one next time
            await self._stop_playwright()
            raise BrowserUnavailableError(str(e)) from e

        browser.on("disconnected", self._on_disconnected)
        self.browser = browser
        self.context = context
        self._disconnected = False
        logger.info("Browser session ready", cookies_loaded=len(cookies))
        return context

    async def ensure_page(self, context: BrowserContext | None = None) -> Page:
        """Return the working page, opening a new one when it is closed."""
        if self.page is not None and not self.page.is_closed():
            return self.page

        context = context or await self.ensure_ready()
        try:
            self.page = await context.new_page()
        except Exception as e:
            if is_session_lost_error(e):
                self.discard()
                raise SessionLostError(f"new_page: {e}") from e
            raise
        logger.info("Opened working page")
        if self.on_page_opened is not None:
            await self.on_page_opened(self.page)
        return self.page

    @asynccontextmanager
    async def ephemeral_page(self) -> AsyncIterator[Page]:
        """Short-lived page for one-off scans; never the working page."""
        context = await self.ensure_ready()
        page = await context.new_page()
        try:
            yield page
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug("Ephemeral page close failed", error=str(e))

    async def _stop_playwright(self) -> None:
        playwright, self._playwright = self._playwright, None
        if playwright is None:
            return
        try:
            await playwright.stop()
        except Exception as e:
            logger.debug("Playwright stop failed", error=str(e))

    async def close(self) -> None:
        await self._close_stale()
        await self._stop_playwright()
        logger.info("Browser session closed")
