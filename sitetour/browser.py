"""
Browser Capability
==================
The explorer never talks to Playwright directly.  It drives a
``BaseBrowser``: one page, serially, through a handful of async calls
(navigate, evaluate, click, current URL, title, wait for load).

``PlaywrightBrowser`` is the production implementation: a single
Chromium page with resource blocking for images/fonts/media and common
analytics scripts.  Tests substitute an in-memory fake.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Union

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .errors import NavigationFailure

logger = logging.getLogger(__name__)

ClickTarget = Union[str, Tuple[float, float]]

_BLOCKED_RESOURCE_TYPES = frozenset(["image", "media", "font"])

_BLOCKED_URL_PATTERNS = [
    re.compile(r"google[-_]?analytics", re.IGNORECASE),
    re.compile(r"googletagmanager", re.IGNORECASE),
    re.compile(r"facebook\.net", re.IGNORECASE),
    re.compile(r"doubleclick\.net", re.IGNORECASE),
    re.compile(r"hotjar\.", re.IGNORECASE),
    re.compile(r"segment\.(com|io)", re.IGNORECASE),
    re.compile(r"mixpanel\.", re.IGNORECASE),
    re.compile(r"fullstory\.", re.IGNORECASE),
]


# ---------------------------------------------------------------------------
# Abstract capability
# ---------------------------------------------------------------------------

class BaseBrowser(ABC):
    """Minimal scriptable-browser contract consumed by the explorer.

    Subclasses MUST implement:
        - ``navigate(url, timeout_ms)``  - raise ``NavigationFailure`` on failure
        - ``evaluate(script, arg)``      - run JS, return JSON-able result
        - ``click(target, timeout_ms)``  - best effort, return success flag
        - ``current_url()``              - URL of the active page
        - ``title()``                    - document title
        - ``wait_for_load_settled(timeout_ms)``
    """

    @abstractmethod
    async def navigate(self, url: str, timeout_ms: int = 10000) -> None:
        ...

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        ...

    @abstractmethod
    async def click(self, target: ClickTarget, timeout_ms: int = 3000) -> bool:
        ...

    @abstractmethod
    def current_url(self) -> str:
        ...

    @abstractmethod
    async def title(self) -> str:
        ...

    @abstractmethod
    async def wait_for_load_settled(self, timeout_ms: int = 3000) -> None:
        ...

    async def expose_function(self, name: str, fn: Callable) -> None:
        """Expose a Python callable to page scripts (optional capability)."""
        raise NotImplementedError(f"{type(self).__name__} cannot expose functions")


# ---------------------------------------------------------------------------
# Playwright implementation
# ---------------------------------------------------------------------------

@dataclass
class BrowserConfig:
    """Configuration for the Playwright-backed browser."""
    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    )
    block_resources: bool = True
    block_analytics: bool = True
    wait_until: str = "domcontentloaded"
    evaluate_timeout_ms: int = 5000
    networkidle_timeout_ms: int = 1500


class PlaywrightBrowser(BaseBrowser):
    """
    Single-page async Playwright browser.

    Usage::

        async with PlaywrightBrowser(BrowserConfig(headless=True)) as browser:
            explorer = SiteExplorer(browser, ExplorerConfig())
            result = await explorer.explore("https://example.com")
    """

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def __aenter__(self) -> "PlaywrightBrowser":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser not started")
        return self._page

    async def start(self) -> None:
        """Launch Chromium, open one context and one page."""
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=[
                '--disable-gpu',
                '--no-sandbox',
                '--disable-dev-shm-usage',
                '--disable-background-networking',
                '--disable-extensions',
                '--no-first-run',
            ],
        )
        self._context = await self._browser.new_context(
            user_agent=self.config.user_agent,
            viewport={
                'width': self.config.viewport_width,
                'height': self.config.viewport_height,
            },
            locale='en-US',
        )
        if self.config.block_resources or self.config.block_analytics:
            await self._context.route("**/*", self._route_handler)
        self._page = await self._context.new_page()
        logger.info(
            f"[BROWSER] Playwright Chromium started "
            f"(headless={self.config.headless}, "
            f"blocking={'on' if self.config.block_resources else 'off'})"
        )

    async def _route_handler(self, route) -> None:
        """Block heavy resources and tracking scripts."""
        request = route.request
        if self.config.block_resources and request.resource_type in _BLOCKED_RESOURCE_TYPES:
            await route.abort()
            return
        if self.config.block_analytics and request.resource_type == "script":
            for pattern in _BLOCKED_URL_PATTERNS:
                if pattern.search(request.url):
                    await route.abort()
                    return
        await route.continue_()

    async def close(self) -> None:
        """Close page, context, browser and Playwright, ignoring teardown errors."""
        for closer in (self._context, self._browser):
            if closer is None:
                continue
            try:
                await closer.close()
            except PlaywrightError as e:
                logger.debug(f"[BROWSER] Close error: {e}")
        if self._playwright is not None:
            await self._playwright.stop()
        self._page = self._context = self._browser = self._playwright = None

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------

    async def navigate(self, url: str, timeout_ms: int = 10000) -> None:
        try:
            response = await self.page.goto(url, timeout=timeout_ms, wait_until=self.config.wait_until)
        except PlaywrightTimeout as e:
            raise NavigationFailure(url, f"timeout after {timeout_ms}ms", e) from e
        except PlaywrightError as e:
            raise NavigationFailure(url, str(e).splitlines()[0], e) from e
        if response is not None and response.status >= 400:
            logger.warning(f"[BROWSER] {url} answered HTTP {response.status}")

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        timeout_s = self.config.evaluate_timeout_ms / 1000
        try:
            return await asyncio.wait_for(self.page.evaluate(script, arg), timeout=timeout_s)
        except asyncio.TimeoutError as e:
            raise NavigationFailure(self.page.url, "evaluate timed out", e) from e
        except PlaywrightError as e:
            raise NavigationFailure(self.page.url, f"evaluate failed: {e}", e) from e

    async def click(self, target: ClickTarget, timeout_ms: int = 3000) -> bool:
        try:
            if isinstance(target, tuple):
                await self.page.mouse.click(target[0], target[1])
            else:
                await self.page.locator(target).first.click(timeout=timeout_ms)
            return True
        except PlaywrightError as e:
            logger.debug(f"[BROWSER] Click on {target!r} failed: {str(e).splitlines()[0]}")
            return False

    def current_url(self) -> str:
        return self.page.url

    async def title(self) -> str:
        try:
            return await self.page.title()
        except PlaywrightError:
            return ""

    async def wait_for_load_settled(self, timeout_ms: int = 3000) -> None:
        try:
            await self.page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
        except PlaywrightError:
            return
        try:
            await self.page.wait_for_load_state(
                "networkidle",
                timeout=min(timeout_ms, self.config.networkidle_timeout_ms),
            )
        except PlaywrightError:
            pass  # long-polling sites never go idle

    async def expose_function(self, name: str, fn: Callable) -> None:
        await self.page.expose_function(name, fn)
