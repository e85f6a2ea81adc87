"""
Shared fixtures: an in-memory browser that simulates a small website.

A site is a dict of *screens*.  A screen is one visible page/application
state; its key is usually its URL, but SPA states that share a URL use any
other key and set ``url`` explicitly::

    {
        "https://site.test/": {
            "title": "Home",
            "links": [
                {"text": "Features", "href": "/features"},
                {"text": "Tab", "href": "/tab", "target": "home:tab"},  # SPA state
                {"text": "Noop", "href": "/noop", "noop": True},         # nothing happens
                {"text": "Gone", "href": "/gone", "broken": True},       # click fails
            ],
        },
        "home:tab": {"url": "https://site.test/", "title": "Home", "content": "tab"},
    }

``navigate(url)`` loads the screen whose key is that URL; hrefs without a
screen (other hosts, unknown paths) load an empty page at that URL.
"""

from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin

import pytest

from sitetour.browser import BaseBrowser
from sitetour.content import FINGERPRINT_JS
from sitetour.errors import NavigationFailure
from sitetour.link_filter import LINK_CAPTURE_JS, canonicalize
from sitetour.site_explorer import PAGE_META_JS, ExplorerConfig
from sitetour.spa_detector import (
    FRAMEWORK_JS,
    HISTORY_BACK_JS,
    HISTORY_FORWARD_JS,
    HISTORY_LENGTH_JS,
    INSTALL_INTERCEPT_JS,
    SPA_INDICATORS_JS,
    SPA_READY_JS,
    STATE_CAPTURE_JS,
    STATE_SNAPSHOT_JS,
    UNINSTALL_INTERCEPT_JS,
)


def _norm(url: str) -> str:
    canon = canonicalize(url)
    return canon.raw if canon else url


class FakeBrowser(BaseBrowser):
    """Serial single-page browser over a dict of screens."""

    def __init__(
        self,
        screens: Dict[str, Dict[str, Any]],
        spa: bool = False,
        framework: Optional[str] = None,
        unreachable: Optional[List[str]] = None,
        fingerprints: Optional[List[Dict[str, Any]]] = None,
    ):
        self.screens = screens
        self.spa = spa
        self.framework = framework
        self.unreachable = {_norm(u) for u in (unreachable or [])}
        self.fingerprints = list(fingerprints or [])

        self._by_url = {
            _norm(screen.get("url", key)): key
            for key, screen in screens.items()
            if screen.get("url", key) == key
        }
        self._history: List[str] = []
        self._index = -1
        self._blank: Dict[str, Dict[str, Any]] = {}

        self.navigations: List[str] = []
        self.clicks: List[str] = []
        self.exposed: Dict[str, Callable] = {}
        self.intercept_installed = False

    # ------------------------------------------------------------------
    # Screen bookkeeping
    # ------------------------------------------------------------------

    def _screen(self, key: Optional[str] = None) -> Dict[str, Any]:
        key = key if key is not None else self.current_key
        if key in self.screens:
            return self.screens[key]
        return self._blank.setdefault(key, {"url": key, "title": "", "links": []})

    @property
    def current_key(self) -> Optional[str]:
        return self._history[self._index] if self._index >= 0 else None

    def _push(self, key: str) -> None:
        del self._history[self._index + 1:]
        self._history.append(key)
        self._index = len(self._history) - 1

    def _key_for_url(self, url: str) -> str:
        return self._by_url.get(_norm(url), url)

    def _abs(self, href: str) -> str:
        return urljoin(self.current_url() or "", href)

    def fire_route_change(self, type_: str, url: str) -> None:
        """Simulate the page calling the exposed navigation binding."""
        fn = next(iter(self.exposed.values()), None)
        if fn is not None and self.intercept_installed:
            fn({"type": type_, "url": url, "timestamp": 1_700_000_000_000})

    # ------------------------------------------------------------------
    # BaseBrowser
    # ------------------------------------------------------------------

    async def navigate(self, url: str, timeout_ms: int = 10000) -> None:
        self.navigations.append(url)
        if _norm(url) in self.unreachable:
            raise NavigationFailure(url, "net::ERR_NAME_NOT_RESOLVED")
        self._push(self._key_for_url(url))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        screen = self._screen()
        if script is LINK_CAPTURE_JS:
            out = []
            for link in screen.get("links", []):
                href = link["href"]
                out.append({
                    "text": link.get("text", ""),
                    "href": self._abs(href),
                    "selector": link.get("selector", f'a[href="{href}"]'),
                    "isNav": link.get("nav", False),
                })
            return out
        if script is PAGE_META_JS:
            return {
                "title": screen.get("title", ""),
                "description": screen.get("description", ""),
                "h1": screen.get("h1", ""),
            }
        if script is STATE_SNAPSHOT_JS:
            return {
                "url": self.current_url(),
                "title": screen.get("title", ""),
                "content": screen.get("content", ""),
                "activeNav": screen.get("active_nav", ""),
                "hasModal": screen.get("modal", False),
                "formCount": 0,
                "headings": "",
            }
        if script is STATE_CAPTURE_JS:
            content = screen.get("content", "")
            return {
                "url": self.current_url(),
                "title": screen.get("title", ""),
                "mainContentLength": len(content),
                "mainContentSample": content[:200],
                "activeNav": screen.get("active_nav", ""),
                "hasModal": screen.get("modal", False),
                "activeTabs": [],
            }
        if script is SPA_INDICATORS_JS:
            return {
                "react": self.spa,
                "spa_root": self.spa,
                "history_api": self.spa,
                "link_handlers": 0,
            }
        if script is FRAMEWORK_JS:
            return {"name": self.framework or "unknown", "version": None}
        if script is SPA_READY_JS:
            return True
        if script is HISTORY_LENGTH_JS:
            return len(self._history)
        if script is HISTORY_BACK_JS:
            if self._index > 0:
                self._index -= 1
            return True
        if script is HISTORY_FORWARD_JS:
            if self._index < len(self._history) - 1:
                self._index += 1
            return True
        if script is INSTALL_INTERCEPT_JS:
            self.intercept_installed = True
            return True
        if script is UNINSTALL_INTERCEPT_JS:
            was = self.intercept_installed
            self.intercept_installed = False
            return was
        if script is FINGERPRINT_JS:
            return self.fingerprints.pop(0) if self.fingerprints else None
        raise AssertionError(f"Unexpected script: {script[:40]!r}")

    async def click(self, target, timeout_ms: int = 3000) -> bool:
        if not isinstance(target, str):
            return False
        for link in self._screen().get("links", []):
            if link.get("selector", f'a[href="{link["href"]}"]') != target:
                continue
            if link.get("broken"):
                return False
            self.clicks.append(target)
            if link.get("noop"):
                return True
            key = link.get("target") or self._key_for_url(self._abs(link["href"]))
            if key not in self.screens:
                key = self._abs(key) if key.startswith("/") else key
            self._push(key)
            return True
        return False

    def current_url(self) -> str:
        if self.current_key is None:
            return ""
        return self._screen().get("url", self.current_key)

    async def title(self) -> str:
        return self._screen().get("title", "")

    async def wait_for_load_settled(self, timeout_ms: int = 3000) -> None:
        return None

    async def expose_function(self, name: str, fn: Callable) -> None:
        self.exposed[name] = fn


def fast_config(**overrides) -> ExplorerConfig:
    """Explorer limits with millisecond-scale waits."""
    params = dict(
        settle_timeout_ms=20,
        state_change_timeout_ms=20,
        back_timeout_ms=20,
        poll_interval_ms=5,
    )
    params.update(overrides)
    return ExplorerConfig(**params)


# ----------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------

@pytest.fixture
def make_browser():
    """Factory: ``make_browser(screens, spa=False, ...)`` → FakeBrowser."""
    return FakeBrowser


@pytest.fixture
def explorer_config():
    """Factory: ``explorer_config(max_pages=3, ...)`` → fast ExplorerConfig."""
    return fast_config


@pytest.fixture
def marketing_site():
    """Home page with features / pricing / blog / login and an off-site link."""
    return {
        "https://site.test/": {
            "title": "Acme",
            "description": "Acme does things",
            "links": [
                {"text": "Blog", "href": "/blog"},
                {"text": "Pricing", "href": "/pricing", "nav": True},
                {"text": "Features", "href": "/features", "nav": True},
                {"text": "Log in", "href": "/login"},
                {"text": "Twitter", "href": "https://twitter.com/acme"},
                {"text": "Logo", "href": "/logo.png"},
            ],
        },
        "https://site.test/features": {
            "title": "Features",
            "links": [{"text": "Home", "href": "/"}],
        },
        "https://site.test/pricing": {
            "title": "Pricing",
            "links": [{"text": "Home", "href": "/"}],
        },
        "https://site.test/blog": {"title": "Blog", "links": []},
        "https://site.test/login": {"title": "Log in", "links": []},
    }
