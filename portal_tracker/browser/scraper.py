"""Admin portal scraping on top of a Playwright page.

Every public fetch fails soft (see the return values) except when the browser
session itself is gone: that is reported as ``SessionLostError`` so the loop can
rebuild the session instead of retrying against a dead browser.
"""

from __future__ import annotations

import asyncio
import random
import re
from typing import Any, Mapping
from urllib.parse import urljoin

import structlog
from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from ..config import AgentConfig, PortalConfig


logger = structlog.get_logger(__name__)

PERMISSION_CODES = {
    "Member": "M",
    "Listing fee": "L",
    "General": "G",
    "Manager": "MGR",
    "Fraud": "FRD",
    "Edited": "E",
    "Verification": "V",
    "Email": "MAIL",
}

PERMISSIONS_NOT_CONFIGURED = "N/A"
PERMISSIONS_USER_NOT_FOUND = "User Not Found"
PERMISSIONS_ERROR = "Error"

_QUEUE_COUNTS_JS = """
(selector) => {
    const counts = {};
    document.querySelectorAll(selector).forEach((el) => {
        const type = el.dataset ? el.dataset.type : null;
        const num = parseInt((el.textContent || '').trim().replace(/,/g, ''), 10);
        if (type && !isNaN(num)) counts[type] = num;
    });
    return counts;
}
"""

_CHECKED_LABELS_JS = "(els) => els.map((cb) => (cb.parentElement ? cb.parentElement.textContent : '').trim())"


class SessionLostError(Exception):
    """The browser, context or page behind a scrape is gone."""


def is_session_lost_error(exc: BaseException) -> bool:
    name = type(exc).__name__
    msg = str(exc or "").lower()

    if isinstance(exc, SessionLostError):
        return True
    if name == "TargetClosedError":
        return True
    if "target page, context or browser has been closed" in msg:
        return True
    if "browser has been closed" in msg or "browser has disconnected" in msg:
        return True
    if "target closed" in msg or "session closed" in msg:
        return True

    # Renderer crashes leave the page unusable.
    if "page crashed" in msg or "target crashed" in msg:
        return True

    # Playwright driver transport died.
    if "connection closed while reading from the driver" in msg:
        return True
    if "connection closed while writing to the driver" in msg:
        return True
    if "pipe closed by peer" in msg:
        return True

    return False


def format_permissions(labels: list[str] | str | None) -> str:
    """Abbreviate permission labels, e.g. ``["General", "Fraud"]`` -> ``"G FRD"``."""
    if not labels:
        return "-"
    if isinstance(labels, str):
        labels = [labels]
    parts = [PERMISSION_CODES.get(label.strip(), label.strip()) for label in labels if label and label.strip()]
    return " ".join(parts) if parts else "-"


def parse_result_total(text: str, pattern: str) -> int | None:
    match = re.search(pattern, text or "")
    if not match:
        return None
    try:
        return int(match.group(1).replace(",", ""))
    except (IndexError, ValueError):
        return None


def _coerce_counts(raw: Any) -> dict[str, int]:
    if not isinstance(raw, Mapping):
        return {}
    out: dict[str, int] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not key:
            continue
        try:
            num = int(value)
        except (TypeError, ValueError):
            continue
        if num >= 0:
            out[key] = num
    return out


class PortalScraper:
    """Reads queue counts, agent totals and permissions from the admin portal."""

    def __init__(self, portal: PortalConfig, agents: Mapping[str, AgentConfig]):
        self.portal = portal
        self.agents = dict(agents)

    def url(self, path: str) -> str:
        return urljoin(self.portal.base_url.rstrip("/") + "/", path.lstrip("/")) if path else self.portal.base_url

    def agent_search_url(self, agent_id: str) -> str | None:
        agent = self.agents.get(agent_id)
        if agent is None:
            return None
        return self.url(self.portal.agent_search_path.format(agent_id=agent.id))

    @property
    def _nav_timeout_ms(self) -> float:
        return self.portal.navigation_timeout_seconds * 1000

    async def _guarded(self, what: str, coro, fallback, **log_kw):
        try:
            return await asyncio.wait_for(coro, timeout=self.portal.scrape_timeout_seconds)
        except SessionLostError:
            raise
        except (asyncio.TimeoutError, PlaywrightTimeoutError) as e:
            logger.warning(f"{what} timed out", error=str(e), **log_kw)
            return fallback
        except Exception as e:
            if is_session_lost_error(e):
                raise SessionLostError(f"{what}: {type(e).__name__}: {e}") from e
            logger.error(f"{what} failed", error=f"{type(e).__name__}: {e}", **log_kw)
            return fallback

    async def check_login(self, page: Page) -> bool:
        """Open the login-check page; False when the portal redirects to a login form."""

        async def _check() -> bool:
            await page.goto(self.url(self.portal.login_check_path), wait_until="domcontentloaded",
                            timeout=min(self._nav_timeout_ms, 20_000))
            if "login" in page.url:
                logger.error("Portal session expired, log in manually in the browser window", url=page.url)
                return False
            logger.info("Logged in to portal")
            return True

        return await self._guarded("Login check", _check(), False)

    async def fetch_queue_counts(self, page: Page) -> dict[str, int]:
        """Queue name -> pending count; empty mapping on any failure."""

        async def _scrape() -> dict[str, int]:
            await page.goto(self.url(self.portal.queue_path), wait_until="networkidle", timeout=self._nav_timeout_ms)
            if "login" in page.url:
                logger.error("Portal session invalid, redirected to login", url=page.url)
                return {}
            try:
                await page.wait_for_selector(self.portal.queue_count_selector,
                                             timeout=self.portal.selector_timeout_seconds * 1000)
            except PlaywrightTimeoutError:
                logger.warning("Queue counters missing", selector=self.portal.queue_count_selector)
            raw = await page.evaluate(_QUEUE_COUNTS_JS, self.portal.queue_count_selector)
            return _coerce_counts(raw)

        return await self._guarded("Queue scrape", _scrape(), {})

    async def fetch_agent_total(self, page: Page, agent_id: str) -> int | None:
        """Cumulative count of ``agent_id``; None means keep the previous value."""
        url = self.agent_search_url(agent_id)
        if url is None:
            logger.warning("Agent missing from roster", agent=agent_id)
            return None

        async def _scrape() -> int | None:
            await page.goto(url, wait_until="domcontentloaded", timeout=self._nav_timeout_ms)
            text = await page.inner_text("body")
            total = parse_result_total(text, self.portal.result_count_pattern)
            if total is None:
                logger.warning("Result count not found", agent=agent_id)
            return total

        return await self._guarded("Agent scrape", _scrape(), None, agent=agent_id)

    async def fetch_permissions(self, page: Page, agent_id: str) -> str:
        agent = self.agents.get(agent_id)
        if agent is None or not agent.permission_url:
            return PERMISSIONS_NOT_CONFIGURED

        async def _scrape() -> str:
            await page.goto(self.url(agent.permission_url), wait_until="domcontentloaded",
                            timeout=self._nav_timeout_ms)
            link = await page.query_selector(self.portal.permission_edit_selector)
            href = await link.get_attribute("href") if link else None
            if not href:
                return PERMISSIONS_USER_NOT_FOUND
            await page.goto(self.url(href), wait_until="domcontentloaded", timeout=self._nav_timeout_ms)
            labels = await page.eval_on_selector_all(self.portal.permission_checkbox_selector, _CHECKED_LABELS_JS)
            return format_permissions(labels)

        return await self._guarded("Permission scrape", _scrape(), PERMISSIONS_ERROR, agent=agent_id)

    async def jitter(self, page: Page) -> None:
        """Small mouse/scroll movement so the portal does not consider the session idle."""
        try:
            await page.mouse.move(random.randint(50, 600), random.randint(50, 400), steps=5)
            await page.mouse.wheel(0, random.choice((-120, 120)))
        except Exception as e:
            if is_session_lost_error(e):
                raise SessionLostError(f"Jitter: {e}") from e
            logger.debug("Jitter skipped", error=str(e))
