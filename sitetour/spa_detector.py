"""
SPA Detector
============
Single-page-application awareness for the explorer.

- ``is_spa()``               - weighted heuristic, sticky once positive
- ``detect_framework()``     - best-effort framework name/version
- ``get_state_hash()``       - fingerprint of the visible application state
- ``wait_for_state_change``  - poll the fingerprint after a click
- ``intercepting(callback)`` - scoped History-API instrumentation
- ``navigate_back/forward``  - history navigation confirmed by re-hashing

Every DOM evaluation can fail mid-navigation (detached frame, context
destroyed).  Failures are logged and reported as "unknown": ``None`` for
hashes and snapshots, ``False`` for predicates.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from .browser import BaseBrowser

logger = logging.getLogger(__name__)

SPA_THRESHOLD = 30
STATE_HISTORY_LIMIT = 100
NAVIGATION_BINDING = "__sitetourNavigation"

# Indicator → score contribution
INDICATOR_WEIGHTS = {
    "react": 30,
    "vue": 30,
    "angular": 30,
    "svelte": 30,
    "nextjs": 25,
    "nuxt": 25,
    "router_script": 20,
    "history_api": 5,
    "spa_root": 15,
    "service_worker": 5,
}
LINK_HANDLER_WEIGHT = 15
LINK_HANDLER_MIN = 3


# ---------------------------------------------------------------------------
# Page scripts
# ---------------------------------------------------------------------------

SPA_INDICATORS_JS = """
() => {
    const w = window;
    const scripts = Array.from(document.querySelectorAll('script[src]')).map(s => s.src.toLowerCase());
    let handlers = 0;
    document.querySelectorAll('a[href]').forEach(a => {
        if (a.onclick || a.hasAttribute('data-router-link') || a.hasAttribute('routerlink')) handlers++;
    });
    return {
        react: !!(w.React || w.__REACT_DEVTOOLS_GLOBAL_HOOK__ || document.querySelector('[data-reactroot]')),
        vue: !!(w.Vue || w.__VUE__ || document.querySelector('[data-v-app]')),
        angular: !!(w.ng || document.querySelector('[ng-version]')),
        svelte: !!document.querySelector('[class*="svelte-"]'),
        nextjs: !!(w.__NEXT_DATA__ || document.getElementById('__next')),
        nuxt: !!(w.__NUXT__ || document.getElementById('__nuxt')),
        router_script: scripts.some(s => /router|history/.test(s)),
        history_api: typeof w.history.pushState === 'function' && w.history.length > 1,
        spa_root: !!document.querySelector('#root, #app, #__next, #__nuxt, [data-reactroot], app-root'),
        service_worker: !!(navigator.serviceWorker && navigator.serviceWorker.controller),
        link_handlers: handlers,
    };
}
"""

FRAMEWORK_JS = """
() => {
    const w = window;
    if (w.__NEXT_DATA__ || document.getElementById('__next'))
        return {name: 'nextjs', version: (w.next && w.next.version) || null};
    if (w.__NUXT__ || document.getElementById('__nuxt'))
        return {name: 'nuxt', version: null};
    if (w.__remixContext) return {name: 'remix', version: null};
    if (w.___gatsby || document.getElementById('___gatsby')) return {name: 'gatsby', version: null};
    if (w.React || document.querySelector('[data-reactroot]'))
        return {name: 'react', version: (w.React && w.React.version) || null};
    if (w.Vue || w.__VUE__) return {name: 'vue', version: (w.Vue && w.Vue.version) || null};
    const ng = document.querySelector('[ng-version]');
    if (ng) return {name: 'angular', version: ng.getAttribute('ng-version')};
    if (document.querySelector('[class*="svelte-"]')) return {name: 'svelte', version: null};
    return {name: 'unknown', version: null};
}
"""

# Order-sensitive, bounded snapshot used for the state hash.
STATE_SNAPSHOT_JS = """
() => {
    const main = document.querySelector('main, [role="main"], #app, #root');
    const nav = document.querySelector('nav .active, nav [aria-current]');
    const heads = Array.from(document.querySelectorAll('h1, h2')).slice(0, 5)
        .map(h => (h.textContent || '').trim());
    return {
        url: location.href,
        title: document.title,
        content: main ? main.innerHTML.slice(0, 1000) : '',
        activeNav: nav ? (nav.textContent || '').trim() : '',
        hasModal: !!document.querySelector('[role="dialog"]:not([hidden])'),
        formCount: document.forms.length,
        headings: heads.join('|'),
    };
}
"""

STATE_CAPTURE_JS = """
() => {
    const main = document.querySelector('main, [role="main"], #app, #root');
    const nav = document.querySelector('nav .active, nav [aria-current]');
    const modal = document.querySelector('[role="dialog"]:not([hidden])');
    const sidebar = document.querySelector('aside, [role="complementary"]');
    const tabs = Array.from(document.querySelectorAll('[role="tab"][aria-selected="true"]'))
        .map(t => (t.textContent || '').trim());
    return {
        url: location.href,
        pathname: location.pathname,
        search: location.search,
        hash: location.hash,
        title: document.title,
        mainContentLength: main ? main.innerHTML.length : 0,
        mainContentSample: main ? (main.textContent || '').trim().slice(0, 200) : '',
        activeNav: nav ? (nav.textContent || '').trim() : '',
        hasModal: !!modal,
        modalTitle: modal ? ((modal.querySelector('h1, h2, h3') || {}).textContent || '').trim() : '',
        sidebarVisible: !!(sidebar && sidebar.offsetParent !== null),
        formCount: document.forms.length,
        activeTabs: tabs,
        scrollY: window.scrollY,
    };
}
"""

SPA_READY_JS = """
() => document.readyState === 'complete'
    && !!document.querySelector('main, [role="main"], #app, #root, body > *')
"""

HISTORY_LENGTH_JS = "() => window.history.length"
HISTORY_BACK_JS = "() => { window.history.back(); return true; }"
HISTORY_FORWARD_JS = "() => { window.history.forward(); return true; }"

INSTALL_INTERCEPT_JS = """
(binding) => {
    if (window.__sitetourRestore) return false;
    const emit = (type) => {
        try { window[binding]({type: type, url: location.href, timestamp: Date.now()}); } catch (e) {}
    };
    const push = history.pushState;
    const replace = history.replaceState;
    history.pushState = function () { const r = push.apply(this, arguments); emit('pushState'); return r; };
    history.replaceState = function () { const r = replace.apply(this, arguments); emit('replaceState'); return r; };
    const onPop = () => emit('popstate');
    const onHash = () => emit('hashchange');
    window.addEventListener('popstate', onPop);
    window.addEventListener('hashchange', onHash);
    window.__sitetourRestore = () => {
        history.pushState = push;
        history.replaceState = replace;
        window.removeEventListener('popstate', onPop);
        window.removeEventListener('hashchange', onHash);
        delete window.__sitetourRestore;
    };
    return true;
}
"""

UNINSTALL_INTERCEPT_JS = """
() => {
    if (!window.__sitetourRestore) return false;
    window.__sitetourRestore();
    return true;
}
"""


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def score_indicators(indicators: Dict[str, Any]) -> int:
    """Weighted SPA score for an indicator record from ``SPA_INDICATORS_JS``."""
    score = 0
    for key, weight in INDICATOR_WEIGHTS.items():
        if indicators.get(key):
            score += weight
    if (indicators.get("link_handlers") or 0) > LINK_HANDLER_MIN:
        score += LINK_HANDLER_WEIGHT
    return score


_SNAPSHOT_FIELDS = ("url", "title", "content", "activeNav", "hasModal", "formCount", "headings")


def hash_state(snapshot: Dict[str, Any]) -> str:
    """Deterministic 16-hex-char fingerprint of a state snapshot."""
    ordered = [snapshot.get(k) for k in _SNAPSHOT_FIELDS]
    payload = json.dumps(ordered, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:16]


@dataclass
class FrameworkInfo:
    name: str = "unknown"
    version: Optional[str] = None


@dataclass
class RouteChange:
    """One canonical navigation event (``pushState``, ``popstate``...)."""
    type: str
    url: str
    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class SPADetector:
    """
    SPA heuristics and state fingerprinting for one browser page.

    The detector is bound to a single browser for one exploration run and
    is not meant to be shared.
    """

    def __init__(self, browser: BaseBrowser, poll_interval_ms: int = 100):
        self.browser = browser
        self.poll_interval_ms = poll_interval_ms

        self._is_spa: Optional[bool] = None
        self._spa_score = 0
        self._framework: Optional[FrameworkInfo] = None
        self._history: Deque[Dict[str, Any]] = deque(maxlen=STATE_HISTORY_LIMIT)

        self._callback: Optional[Callable[[RouteChange], Any]] = None
        self._intercepting = False
        self._binding_exposed = False

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    @property
    def spa_score(self) -> int:
        return self._spa_score

    async def is_spa(self, refresh: bool = False) -> bool:
        """
        Evaluate SPA indicators once and cache the verdict.

        ``refresh=True`` re-evaluates, but a positive verdict never flips
        back to negative.
        """
        if self._is_spa and not refresh:
            return True
        if self._is_spa is not None and not refresh:
            return self._is_spa
        try:
            indicators = await self.browser.evaluate(SPA_INDICATORS_JS) or {}
        except Exception as e:
            logger.debug(f"[SPA] Indicator evaluation failed: {e}")
            return bool(self._is_spa)

        score = score_indicators(indicators)
        self._spa_score = max(self._spa_score, score)
        self._is_spa = bool(self._is_spa) or score >= SPA_THRESHOLD
        logger.info(f"[SPA] score={score} threshold={SPA_THRESHOLD} spa={self._is_spa}")
        return self._is_spa

    async def detect_framework(self) -> FrameworkInfo:
        if self._framework is not None:
            return self._framework
        try:
            raw = await self.browser.evaluate(FRAMEWORK_JS) or {}
            self._framework = FrameworkInfo(
                name=raw.get("name") or "unknown",
                version=raw.get("version"),
            )
        except Exception as e:
            logger.debug(f"[SPA] Framework detection failed: {e}")
            return FrameworkInfo()
        logger.info(f"[SPA] Framework: {self._framework.name} {self._framework.version or ''}".rstrip())
        return self._framework

    # ------------------------------------------------------------------
    # State fingerprinting
    # ------------------------------------------------------------------

    async def get_state_hash(self) -> Optional[str]:
        """Fingerprint of the current state, or ``None`` when unobtainable."""
        try:
            snapshot = await self.browser.evaluate(STATE_SNAPSHOT_JS)
        except Exception as e:
            logger.debug(f"[SPA] State snapshot failed: {e}")
            return None
        if not isinstance(snapshot, dict):
            return None
        return hash_state(snapshot)

    async def capture_state(self) -> Optional[Dict[str, Any]]:
        """Full state snapshot, appended to the bounded history."""
        try:
            state = await self.browser.evaluate(STATE_CAPTURE_JS)
        except Exception as e:
            logger.debug(f"[SPA] State capture failed: {e}")
            return None
        if not isinstance(state, dict):
            return None
        state["capturedAt"] = time.time()
        self._history.append(state)
        return state

    def get_history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    @staticmethod
    def get_state_diff(old: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Any]:
        """Describe what changed between two ``capture_state`` snapshots."""
        old = old or {}
        new = new or {}
        changes: Dict[str, Any] = {}
        for key in ("url", "title", "hasModal", "activeNav", "activeTabs"):
            if old.get(key) != new.get(key):
                changes[key] = {"from": old.get(key), "to": new.get(key)}
        delta = abs((new.get("mainContentLength") or 0) - (old.get("mainContentLength") or 0))
        if delta > 500:
            changes["content"] = {"length_delta": delta}
        return {"changed": bool(changes), "changes": changes}

    async def detect_state_change(self, previous_hash: Optional[str]) -> bool:
        """True when the current hash is known and differs from *previous_hash*."""
        current = await self.get_state_hash()
        if current is None or previous_hash is None:
            return False
        return current != previous_hash

    async def wait_for_state_change(
        self,
        timeout_ms: int = 3000,
        baseline: Optional[str] = None,
    ) -> Optional[str]:
        """
        Poll the state hash until it differs from *baseline*.

        Returns the new hash, or ``None`` on timeout.  Unobtainable hashes
        count as "no change".
        """
        if baseline is None:
            baseline = await self.get_state_hash()
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            current = await self.get_state_hash()
            if current is not None and current != baseline:
                return current
            if time.monotonic() >= deadline:
                return None
            await asyncio.sleep(self.poll_interval_ms / 1000)

    async def wait_for_route_change(self, timeout_ms: int = 3000) -> Optional[RouteChange]:
        """Poll for a URL change; returns the new route or ``None`` on timeout."""
        start_url = self.browser.current_url()
        deadline = time.monotonic() + timeout_ms / 1000
        while time.monotonic() < deadline:
            await asyncio.sleep(self.poll_interval_ms / 1000)
            url = self.browser.current_url()
            if url != start_url:
                return RouteChange(type="route", url=url)
        return None

    def has_navigated_away(self, url: str) -> bool:
        return self.browser.current_url() != url

    # ------------------------------------------------------------------
    # History-API instrumentation
    # ------------------------------------------------------------------

    async def intercept_navigation(self, callback: Callable[[RouteChange], Any]) -> bool:
        """Install the History-API hooks; events go to *callback*."""
        self._callback = callback
        if not self._binding_exposed:
            try:
                await self.browser.expose_function(NAVIGATION_BINDING, self._on_navigation)
                self._binding_exposed = True
            except Exception as e:
                logger.debug(f"[SPA] Cannot expose navigation binding: {e}")
                return False
        try:
            await self.browser.evaluate(INSTALL_INTERCEPT_JS, NAVIGATION_BINDING)
        except Exception as e:
            logger.debug(f"[SPA] Interception install failed: {e}")
            return False
        self._intercepting = True
        return True

    async def stop_interception(self) -> None:
        """Restore the original History API."""
        if not self._intercepting:
            return
        self._intercepting = False
        self._callback = None
        try:
            await self.browser.evaluate(UNINSTALL_INTERCEPT_JS)
        except Exception as e:
            logger.debug(f"[SPA] Interception uninstall failed: {e}")

    @asynccontextmanager
    async def intercepting(self, callback: Callable[[RouteChange], Any]):
        """Scoped interception: hooks are removed on exit, even on error."""
        installed = await self.intercept_navigation(callback)
        try:
            yield installed
        finally:
            await self.stop_interception()

    def _on_navigation(self, event: Dict[str, Any]) -> None:
        if self._callback is None or not isinstance(event, dict):
            return
        change = RouteChange(
            type=str(event.get("type", "")),
            url=str(event.get("url", "")),
            timestamp=(event.get("timestamp") or time.time() * 1000) / 1000,
        )
        try:
            self._callback(change)
        except Exception as e:
            logger.debug(f"[SPA] Navigation callback raised: {e}")

    # ------------------------------------------------------------------
    # History navigation
    # ------------------------------------------------------------------

    async def can_navigate_back(self) -> bool:
        try:
            length = await self.browser.evaluate(HISTORY_LENGTH_JS)
        except Exception:
            return False
        return isinstance(length, (int, float)) and length > 1

    async def navigate_back(self, timeout_ms: int = 2000) -> bool:
        """
        ``history.back()`` and wait for the state to change.

        Returns True when a different state was observed.  The caller is
        responsible for checking that it is the *expected* state.
        """
        baseline = await self.get_state_hash()
        start_url = self.browser.current_url()
        try:
            await self.browser.evaluate(HISTORY_BACK_JS)
        except Exception as e:
            # a real page unload can tear down the evaluation context
            logger.debug(f"[SPA] history.back() raised: {e}")
        try:
            await self.browser.wait_for_load_settled(timeout_ms)
        except Exception as e:
            logger.debug(f"[SPA] Load wait after back failed: {e}")
        if self.browser.current_url() != start_url:
            return True
        return await self.wait_for_state_change(timeout_ms, baseline) is not None

    async def navigate_forward(self, timeout_ms: int = 2000) -> bool:
        """``history.forward()``; True only when a different state was observed."""
        baseline = await self.get_state_hash()
        start_url = self.browser.current_url()
        try:
            await self.browser.evaluate(HISTORY_FORWARD_JS)
        except Exception as e:
            logger.debug(f"[SPA] history.forward() raised: {e}")
        try:
            await self.browser.wait_for_load_settled(timeout_ms)
        except Exception as e:
            logger.debug(f"[SPA] Load wait after forward failed: {e}")
        if self.browser.current_url() != start_url:
            return True
        return await self.wait_for_state_change(timeout_ms, baseline) is not None


async def wait_for_spa_ready(browser: BaseBrowser, timeout_ms: int = 5000, poll_ms: int = 100) -> bool:
    """Wait until the document is complete and an app root has content."""
    try:
        await browser.wait_for_load_settled(timeout_ms)
    except Exception as e:
        logger.debug(f"[SPA] Load wait failed: {e}")
    deadline = time.monotonic() + timeout_ms / 1000
    while time.monotonic() < deadline:
        try:
            if await browser.evaluate(SPA_READY_JS):
                return True
        except Exception as e:
            logger.debug(f"[SPA] Readiness probe failed: {e}")
        await asyncio.sleep(poll_ms / 1000)
    return False


async def detect_spa_framework(browser: BaseBrowser) -> FrameworkInfo:
    """One-shot framework detection without keeping a detector around."""
    return await SPADetector(browser).detect_framework()
