"""
Site Explorer
=============
Drives one browser page through a website and builds a
``NavigationGraph`` of the distinct states it reaches.

Graph mode (default)
--------------------
1. Load the start URL (the only fatal failure) and run SPA detection once.
2. Register the root node and bind an ``ExplorationStrategy`` to the graph.
3. Explore with an explicit work stack of frames ``(node_id, iterations)``:
   the top frame is the node the browser is currently on.  Each step asks
   the strategy for an action:

   - ``CLICK(link)``: click (or navigate to) the link, then compare URL
     and, on SPAs, the state hash.  No change discards the link; a known
     id adds a non-tree edge; a new id adds a child node and, below
     ``max_depth``, pushes a frame for it.
   - ``BACK`` / ``DONE``: pop the frame and return to the parent.

   Every frame is bounded by ``2 × max_pages`` iterations, independent of
   any timeout.  Returning to a parent tries native history first and
   reloads the parent URL when the re-hashed state does not match.
4. Return the graph, flat page summaries and run statistics.

Legacy mode
-----------
Home page only: rank same-host links with the oracle (or the keyword
heuristic) and visit the top ``max_pages - 1`` at depth 1.  No recursion,
no backtracking, no SPA awareness.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .browser import BaseBrowser, BrowserConfig, PlaywrightBrowser
from .errors import GraphLimitReached, NavigationFailure, StartUrlUnreachable
from .exploration_strategy import ActionType, ExplorationStrategy, StrategyConfig, create_strategy
from .link_filter import LINK_CAPTURE_JS, Link, LinkFilter, canonicalize, categorize_path
from .monitor import ExplorationMonitor, StepTiming
from .navigation_graph import NavigationGraph, NavigationNode, create_node_id
from .oracle import BaseRankingOracle, PageContext, RankingCandidate, rank_with_fallback
from .spa_detector import FrameworkInfo, SPADetector, wait_for_spa_ready

logger = logging.getLogger(__name__)

PAGE_META_JS = """
() => {
    const meta = document.querySelector('meta[name="description"], meta[property="og:description"]');
    const h1 = document.querySelector('h1');
    return {
        title: document.title || '',
        description: meta ? (meta.getAttribute('content') || '') : '',
        h1: h1 ? (h1.textContent || '').trim().slice(0, 200) : '',
    };
}
"""


# ---------------------------------------------------------------------------
# Configuration / results
# ---------------------------------------------------------------------------

@dataclass
class ExplorerConfig:
    """Limits and timeouts for one exploration run."""
    max_pages: int = 8
    max_depth: int = 2
    mode: str = "graph"                  # "graph" | "legacy"
    strategy: str = "priority"
    focus: str = "features"

    # Timeouts (ms)
    timeout_ms: int = 10000              # navigation
    click_timeout_ms: int = 3000
    settle_timeout_ms: int = 3000
    state_change_timeout_ms: int = 2000
    back_timeout_ms: int = 2000
    poll_interval_ms: int = 100

    # Links
    max_links_per_page: int = 50
    link_filters: List[str] = field(default_factory=lambda: ["assets", "auth", "legal"])
    max_nodes_per_level: Optional[int] = None

    # Oracle
    oracle_timeout_s: float = 20.0

    @property
    def safety_limit(self) -> int:
        """Per-node loop bound."""
        return 2 * self.max_pages


@dataclass
class SitePage:
    """Flat summary of one explored page."""
    url: str
    path: str
    title: str = ""
    description: str = ""
    links: List[str] = field(default_factory=list)
    priority: int = 50
    category: str = "other"
    depth: int = 0
    visited: bool = False


@dataclass
class ExplorationResult:
    start_url: str
    graph: NavigationGraph
    pages: List[SitePage] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    is_spa: bool = False
    framework: FrameworkInfo = field(default_factory=FrameworkInfo)
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_url": self.start_url,
            "is_spa": self.is_spa,
            "framework": asdict(self.framework),
            "stats": self.stats,
            "pages": [asdict(p) for p in self.pages],
            "graph": self.graph.to_dict(),
            "errors": list(self.errors),
        }


@dataclass
class _Frame:
    node_id: str
    iterations: int = 0


@dataclass
class _StepOutcome:
    status: str                      # see monitor.STEP_STATUSES
    child: Optional[NavigationNode] = None
    moved: bool = False              # browser is no longer on the source node


# ---------------------------------------------------------------------------
# Explorer
# ---------------------------------------------------------------------------

class SiteExplorer:
    """
    Usage::

        async with PlaywrightBrowser() as browser:
            explorer = SiteExplorer(browser, ExplorerConfig(max_pages=8))
            result = await explorer.explore("https://example.com")
            print(result.graph.to_mermaid())
    """

    def __init__(
        self,
        browser: BaseBrowser,
        config: Optional[ExplorerConfig] = None,
        oracle: Optional[BaseRankingOracle] = None,
    ):
        self.browser = browser
        self.config = config or ExplorerConfig()
        self.oracle = oracle
        self.monitor = ExplorationMonitor()

        self.detector = SPADetector(browser, poll_interval_ms=self.config.poll_interval_ms)
        self.graph: NavigationGraph = NavigationGraph(max_nodes=self.config.max_pages)
        self.strategy: Optional[ExplorationStrategy] = None
        self._link_filter: Optional[LinkFilter] = None
        self._is_spa = False
        self._errors: List[Dict[str, str]] = []
        self._stop_requested = False
        self._progress_callback: Optional[Callable] = None

    def set_progress_callback(self, callback: Callable) -> None:
        """Set callback: callback(node: NavigationNode, graph: NavigationGraph)"""
        self._progress_callback = callback

    def stop(self) -> None:
        """Request graceful stop after the current step."""
        self._stop_requested = True
        logger.info("[EXPLORE] Stop requested")

    def run(self, start_url: str) -> ExplorationResult:
        """Sync wrapper for browsers not yet bound to an event loop."""
        return asyncio.run(self.explore(start_url))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def explore(self, start_url: str) -> ExplorationResult:
        """Explore from *start_url*. Raises ``StartUrlUnreachable`` if it cannot load."""
        started = time.monotonic()
        self.monitor = ExplorationMonitor()
        self.monitor.start()
        self.graph = NavigationGraph(max_nodes=self.config.max_pages)
        self._errors = []
        self._stop_requested = False
        self._link_filter = LinkFilter(base_url=start_url, max_links=self.config.max_links_per_page)

        logger.info(f"[EXPLORE] Start: {start_url} (mode={self.config.mode}, strategy={self.config.strategy})")
        try:
            await self.browser.navigate(start_url, self.config.timeout_ms)
        except NavigationFailure as e:
            raise StartUrlUnreachable(start_url, e.reason, e.cause or e) from e
        await wait_for_spa_ready(self.browser, self.config.settle_timeout_ms, self.config.poll_interval_ms)

        if self.config.mode == "legacy":
            result = await self._explore_legacy(start_url)
        else:
            result = await self._explore_graph(start_url)

        reason = "stopped" if self._stop_requested else ("node limit" if self.graph.is_full else "completed")
        self.monitor.stop(reason)
        metrics = self.monitor.snapshot()
        result.stats.update({
            "mode": self.config.mode,
            "elapsed_time": round(time.monotonic() - started, 2),
            "monitor": metrics.to_dict(),
            "graph": self.graph.get_summary(),
        })
        result.errors = list(self._errors)
        logger.info(
            f"[EXPLORE] Done: {self.graph.size} states, {self.graph.edge_count} edges, "
            f"{len(self._errors)} errors ({reason})"
        )
        return result

    # ------------------------------------------------------------------
    # Graph mode
    # ------------------------------------------------------------------

    async def _explore_graph(self, start_url: str) -> ExplorationResult:
        self._is_spa = await self.detector.is_spa()
        framework = await self.detector.detect_framework()

        self.strategy = create_strategy(
            self.config.strategy,
            self.graph,
            StrategyConfig(
                max_depth=self.config.max_depth,
                max_total_nodes=self.config.max_pages,
                focus=self.config.focus,
                base_domain=start_url,
                max_nodes_per_level=self.config.max_nodes_per_level,
                link_filters=list(self.config.link_filters),
                oracle_timeout_s=self.config.oracle_timeout_s,
            ),
            oracle=self.oracle,
        )

        url, state_hash = await self._current_identity()
        root = self.graph.add_node(NavigationNode(url=url, state_hash=state_hash, depth=0))
        self.graph.set_root(root.id)
        self.strategy.record_node_created(root)
        await self._observe_node(root)
        self._notify(root)

        await self._run_stack(root)

        return ExplorationResult(
            start_url=start_url,
            graph=self.graph,
            pages=self._page_summaries(),
            stats={"strategy": self.strategy.get_stats(), "spa_score": self.detector.spa_score},
            is_spa=self._is_spa,
            framework=framework,
        )

    async def _run_stack(self, root: NavigationNode) -> None:
        stack: List[_Frame] = [_Frame(root.id)]
        limit = self.config.safety_limit

        while stack:
            if self._stop_requested or self.graph.is_full:
                break
            frame = stack[-1]
            node = self.graph.get_node(frame.node_id)

            finished = (
                not node.unexplored_links
                or frame.iterations >= limit
            )
            action = None
            if not finished:
                frame.iterations += 1
                action = await self.strategy.select_next_action(node)
                finished = action.type in (ActionType.DONE, ActionType.BACK)

            if finished:
                if frame.iterations >= limit and node.unexplored_links:
                    logger.warning(f"[EXPLORE] Safety limit ({limit}) hit on {node.id}")
                if action is not None and action.reason:
                    logger.debug(f"[EXPLORE] Leaving {node.id}: {action.reason}")
                if not node.unexplored_links:
                    self.graph.mark_as_leaf(node.id)
                stack.pop()
                if stack:
                    await self._return_to(self.graph.get_node(stack[-1].node_id))
                continue

            link = action.link
            outcome = await self._follow_link(node, link)
            node.mark_link_explored(link)

            if outcome.status == "new" and outcome.child.depth < self.config.max_depth and not self.graph.is_full:
                stack.append(_Frame(outcome.child.id))
                continue
            if outcome.moved and not (self.graph.is_full or self._stop_requested):
                await self._return_to(node)

    async def _follow_link(self, node: NavigationNode, link: Link) -> _StepOutcome:
        """Activate *link* from *node* and classify what happened."""
        timing = StepTiming(node_id=node.id, href=link.href)
        t0 = time.monotonic()
        before_url = self.browser.current_url()
        before_hash = await self.detector.get_state_hash() if self._is_spa else None

        clicked = False
        if link.selector:
            clicked = await self.browser.click(link.selector, self.config.click_timeout_ms)
        if not clicked:
            try:
                await self.browser.navigate(link.href, self.config.timeout_ms)
            except NavigationFailure as e:
                logger.warning(f"[EXPLORE] {e}")
                self._errors.append({"node_id": node.id, "url": link.href, "error": str(e)})
                return self._finish_step(timing, t0, _StepOutcome("failed", moved=True))
        timing.click_ms = (time.monotonic() - t0) * 1000

        t1 = time.monotonic()
        try:
            await self.browser.wait_for_load_settled(self.config.settle_timeout_ms)
        except Exception as e:
            logger.debug(f"[EXPLORE] Settle wait failed: {e}")

        after_url = self.browser.current_url()
        url_changed = _same_address(after_url) != _same_address(before_url)
        state_hash = None
        if self._is_spa:
            if url_changed:
                state_hash = await self.detector.get_state_hash()
            else:
                state_hash = await self.detector.wait_for_state_change(
                    self.config.state_change_timeout_ms, baseline=before_hash,
                )
        timing.settle_ms = (time.monotonic() - t1) * 1000

        if not url_changed and state_hash is None:
            return self._finish_step(timing, t0, _StepOutcome("no_change"))
        if self._is_spa and state_hash is None:
            # hash unobtainable after a URL change: never invent a node
            return self._finish_step(timing, t0, _StepOutcome("no_change", moved=True))
        if not self._link_filter.accepts_host(after_url):
            logger.info(f"[EXPLORE] {link.href} left the site ({after_url})")
            return self._finish_step(timing, t0, _StepOutcome("external", moved=True))

        child_id = create_node_id(after_url, state_hash)
        if child_id == node.id:
            return self._finish_step(timing, t0, _StepOutcome("no_change"))

        edge_type = self._edge_type(link, after_url, clicked, url_changed)
        if self.graph.has_node(child_id):
            self.graph.add_edge(node.id, child_id, via=link, type=edge_type)
            return self._finish_step(timing, t0, _StepOutcome("duplicate", moved=True))

        canon = canonicalize(after_url)
        child = NavigationNode(
            url=canon.raw if canon else after_url,
            state_hash=state_hash,
            parent=node.id,
            depth=node.depth + 1,
        )
        try:
            child = self.graph.add_node(child)
        except GraphLimitReached:
            return self._finish_step(timing, t0, _StepOutcome("limit", moved=True))
        self.graph.add_edge(node.id, child.id, via=link, type=edge_type)
        self.strategy.record_node_created(child)
        await self._observe_node(child)
        logger.info(
            f"[EXPLORE] [{self.graph.size}/{self.config.max_pages}] "
            f"d{child.depth} {child.title or child.url}"
        )
        self._notify(child)
        return self._finish_step(timing, t0, _StepOutcome("new", child=child, moved=True))

    def _finish_step(self, timing: StepTiming, t0: float, outcome: _StepOutcome) -> _StepOutcome:
        timing.status = outcome.status
        timing.total_ms = (time.monotonic() - t0) * 1000
        self.monitor.record_step(timing)
        return outcome

    @staticmethod
    def _edge_type(link: Link, after_url: str, clicked: bool, url_changed: bool) -> str:
        if not url_changed:
            return "spa"
        if _same_address(after_url) != _same_address(link.href):
            return "redirect"
        return "click" if clicked else "navigate"

    async def _return_to(self, node: NavigationNode) -> bool:
        """
        Bring the browser back to *node*.

        Native history first, confirmed by re-deriving the node id; direct
        URL load otherwise.  A reload cannot restore client-only state that
        is reflected in neither the URL nor the history.
        """
        if await self._current_node_id() == node.id:
            return True

        if await self.detector.can_navigate_back():
            moved = await self.detector.navigate_back(self.config.back_timeout_ms)
            if moved and await self._current_node_id() == node.id:
                self.monitor.record_return(native=True)
                return True

        try:
            await self.browser.navigate(node.url, self.config.timeout_ms)
            await wait_for_spa_ready(self.browser, self.config.settle_timeout_ms, self.config.poll_interval_ms)
        except NavigationFailure as e:
            logger.warning(f"[EXPLORE] Could not return to {node.url}: {e}")
            self._errors.append({"node_id": node.id, "url": node.url, "error": str(e)})
            self.monitor.record_return(native=False, ok=False)
            return False

        self.monitor.record_return(native=False)
        if await self._current_node_id() != node.id:
            logger.warning(f"[EXPLORE] Reloaded {node.url} but state differs from {node.id}")
            return False
        return True

    # ------------------------------------------------------------------
    # Node capture
    # ------------------------------------------------------------------

    async def _current_identity(self):
        url = self.browser.current_url()
        canon = canonicalize(url)
        state_hash = await self.detector.get_state_hash() if self._is_spa else None
        return (canon.raw if canon else url), state_hash

    async def _current_node_id(self) -> str:
        url, state_hash = await self._current_identity()
        return create_node_id(url, state_hash)

    async def _observe_node(self, node: NavigationNode) -> None:
        """Record the visit, page metadata and the node's outbound links."""
        node.record_visit()
        try:
            meta = await self.browser.evaluate(PAGE_META_JS) or {}
        except Exception as e:
            logger.debug(f"[EXPLORE] Metadata capture failed on {node.url}: {e}")
            meta = {}
        node.title = meta.get("title") or await self.browser.title() or node.title
        if meta.get("description"):
            node.metadata["description"] = meta["description"]
        if meta.get("h1"):
            node.metadata["h1"] = meta["h1"]

        try:
            raw_links = await self.browser.evaluate(LINK_CAPTURE_JS) or []
        except Exception as e:
            logger.debug(f"[EXPLORE] Link capture failed on {node.url}: {e}")
            raw_links = []
        links = self._link_filter.filter_links(raw_links, page_url=self.browser.current_url())
        node.set_unexplored_links(links)
        node.metadata["link_count"] = len(links)

    def _notify(self, node: NavigationNode) -> None:
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(node, self.graph)
        except Exception as e:
            logger.debug(f"[EXPLORE] Progress callback raised: {e}")

    def _page_summaries(self) -> List[SitePage]:
        pages = []
        for node in self.graph.iter_bfs():
            canon = canonicalize(node.url)
            path = canon.path if canon else node.url
            is_root = node.id == self.graph.root_id
            pages.append(SitePage(
                url=node.url,
                path=path,
                title=node.title,
                description=str(node.metadata.get("description", "")),
                links=[l.href for l in node.explored_links + node.unexplored_links + node.skipped_links],
                priority=100 if is_root else 50,
                category="home" if is_root else categorize_path(path),
                depth=node.depth,
                visited=node.visit_count > 0,
            ))
        return pages

    # ------------------------------------------------------------------
    # Legacy mode
    # ------------------------------------------------------------------

    async def _explore_legacy(self, start_url: str) -> ExplorationResult:
        url, _ = await self._current_identity()
        root = self.graph.add_node(NavigationNode(url=url, depth=0))
        self.graph.set_root(root.id)
        await self._observe_node(root)

        links = list(root.unexplored_links)
        by_path = {}
        for link in links:
            by_path.setdefault(link.path, link)
        candidates = [RankingCandidate(path=l.path, text=l.text, is_nav=l.is_nav) for l in by_path.values()]
        context = PageContext(
            url=root.url,
            title=root.title,
            description=str(root.metadata.get("description", "")),
            focus=self.config.focus,
        )
        ranked, used_oracle = await rank_with_fallback(
            self.oracle, context, candidates, timeout_s=self.config.oracle_timeout_s,
        )
        logger.info(
            f"[EXPLORE] Legacy ranking via {'oracle' if used_oracle else 'heuristic'}: "
            f"{ranked[: self.config.max_pages - 1]}"
        )

        for path in ranked[: max(0, self.config.max_pages - 1)]:
            if self._stop_requested:
                break
            link = by_path[path]
            t0 = time.monotonic()
            timing = StepTiming(node_id=root.id, href=link.href)
            try:
                await self.browser.navigate(link.href, self.config.timeout_ms)
                await self.browser.wait_for_load_settled(self.config.settle_timeout_ms)
            except NavigationFailure as e:
                logger.warning(f"[EXPLORE] {e}")
                self._errors.append({"node_id": root.id, "url": link.href, "error": str(e)})
                self._finish_step(timing, t0, _StepOutcome("failed"))
                root.mark_link_explored(link)
                continue

            page_url, _ = await self._current_identity()
            if not self._link_filter.accepts_host(page_url):
                logger.info(f"[EXPLORE] {link.href} left the site ({page_url})")
                self._finish_step(timing, t0, _StepOutcome("external"))
                root.mark_link_explored(link)
                continue
            child = NavigationNode(url=page_url, parent=root.id, depth=1)
            if self.graph.has_node(child.id):
                self._finish_step(timing, t0, _StepOutcome("duplicate"))
                root.mark_link_explored(link)
                continue
            child = self.graph.add_node(child)
            self.graph.add_edge(root.id, child.id, via=link, type="navigate")
            await self._observe_node(child)
            root.mark_link_explored(link)
            self._finish_step(timing, t0, _StepOutcome("new", child=child))
            self._notify(child)

        return ExplorationResult(
            start_url=start_url,
            graph=self.graph,
            pages=self._page_summaries(),
            stats={"ranking": "oracle" if used_oracle else "heuristic", "ranked_paths": ranked},
            is_spa=False,
            framework=FrameworkInfo(),
        )


def _same_address(url: str) -> str:
    canon = canonicalize(url)
    return canon.raw if canon else url


async def explore_site(
    start_url: str,
    config: Optional[ExplorerConfig] = None,
    browser_config: Optional[BrowserConfig] = None,
    oracle: Optional[BaseRankingOracle] = None,
    progress_callback: Optional[Callable] = None,
) -> ExplorationResult:
    """Open a Playwright browser, explore *start_url*, close the browser."""
    async with PlaywrightBrowser(browser_config) as browser:
        explorer = SiteExplorer(browser, config, oracle)
        if progress_callback is not None:
            explorer.set_progress_callback(progress_callback)
        return await explorer.explore(start_url)
