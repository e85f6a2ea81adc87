"""
Exploration Strategy
====================
Per-step policy deciding what the explorer does next on a node:
``CLICK(link)``, ``BACK`` or ``DONE``.

The policy itself is shared by every flavor:

- ``DONE`` once the graph holds ``max_total_nodes`` or the node sits at
  ``max_depth``
- a link is never issued twice for the same node
- cross-origin links are excluded before any ranking
- pluggable link filters (auth pages, legal pages, blog, social...)

Flavors differ only in how the surviving links are ranked, which is
delegated to a ``LinkRanker``:

    breadth-first   shallow URL paths first
    depth-first     links that extend the current path first
    priority        demo-value keyword score
    ai-guided       ranking oracle, falling back to priority

New rankers register through ``StrategyFactory.register()``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple, Type, Union

from .errors import OracleFailure
from .link_filter import Link, canonicalize, is_asset_url
from .navigation_graph import NavigationGraph, NavigationNode
from .oracle import BaseRankingOracle, PageContext, RankingCandidate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class ActionType(str, Enum):
    CLICK = "click"
    BACK = "back"
    DONE = "done"


@dataclass(frozen=True)
class ExplorationAction:
    type: ActionType
    link: Optional[Link] = None
    reason: str = ""

    @classmethod
    def click(cls, link: Link, reason: str = "") -> "ExplorationAction":
        return cls(ActionType.CLICK, link, reason)

    @classmethod
    def back(cls, reason: str = "") -> "ExplorationAction":
        return cls(ActionType.BACK, None, reason)

    @classmethod
    def done(cls, reason: str = "") -> "ExplorationAction":
        return cls(ActionType.DONE, None, reason)


class StrategyType(str, Enum):
    BREADTH_FIRST = "breadth-first"
    DEPTH_FIRST = "depth-first"
    PRIORITY = "priority"
    AI_GUIDED = "ai-guided"


# ---------------------------------------------------------------------------
# Link scoring
# ---------------------------------------------------------------------------

HIGH_VALUE_KEYWORDS = {
    "feature": 30,
    "product": 25,
    "pricing": 20,
    "how it works": 25,
    "tour": 25,
    "demo": 30,
    "explore": 20,
    "discover": 15,
    "see": 10,
    "learn more": 15,
    "get started": 20,
    "dashboard": 15,
    "overview": 15,
}

LOW_VALUE_KEYWORDS = {
    "blog": -20,
    "news": -15,
    "login": -40,
    "sign in": -40,
    "sign up": -30,
    "register": -30,
    "terms": -50,
    "privacy": -50,
    "cookie": -50,
    "legal": -50,
    "careers": -40,
    "jobs": -40,
    "contact": -10,
    "support": -10,
}

FOCUS_KEYWORDS = {
    "features": ("feature", "product", "capabilit"),
    "pricing": ("pricing", "plan", "price"),
    "technical": ("docs", "api", "developer", "integration"),
    "overview": ("about", "overview", "how"),
}
FOCUS_BOOST = 20
NAV_BOOST = 10


def _keyword_hit(keyword: str, text: str, href: str) -> bool:
    return keyword in text or keyword.replace(" ", "-") in href


def score_link_for_demo(link: Link, focus: str = "features") -> int:
    """Demo-value score of a link from its text, href and navigation placement."""
    text = (link.text or "").lower()
    href = (link.href or "").lower()
    score = 0
    for keyword, weight in HIGH_VALUE_KEYWORDS.items():
        if _keyword_hit(keyword, text, href):
            score += weight
    for keyword, weight in LOW_VALUE_KEYWORDS.items():
        if _keyword_hit(keyword, text, href):
            score += weight
    if any(_keyword_hit(k, text, href) for k in FOCUS_KEYWORDS.get(focus, ())):
        score += FOCUS_BOOST
    if link.is_nav:
        score += NAV_BOOST
    return score


def _path_depth(link: Link) -> int:
    return len([s for s in link.path.split("/") if s])


# ---------------------------------------------------------------------------
# Link filters
# ---------------------------------------------------------------------------

LinkPredicate = Callable[[Link], bool]   # True keeps the link

_AUTH_RE = re.compile(r"log-?in|sign-?in|sign-?up|register|/auth|/account|password", re.IGNORECASE)
_LEGAL_RE = re.compile(r"terms|privacy|cookie|legal|gdpr|imprint", re.IGNORECASE)
_SOCIAL_RE = re.compile(r"facebook|twitter|x\.com|linkedin|instagram|youtube|github|tiktok", re.IGNORECASE)
_BLOG_RE = re.compile(r"/blog|/news|/articles?/|/press", re.IGNORECASE)


def _regex_filter(rx: re.Pattern) -> Callable[["StrategyConfig"], LinkPredicate]:
    def factory(config: "StrategyConfig") -> LinkPredicate:
        return lambda link: not (rx.search(link.href) or rx.search(link.text or ""))
    return factory


def _same_domain_filter(config: "StrategyConfig") -> LinkPredicate:
    base = canonicalize(config.base_domain) if config.base_domain else None
    if base is None:
        return lambda link: True

    def keep(link: Link) -> bool:
        cand = canonicalize(link.href)
        return cand is not None and cand.host == base.host
    return keep


BUILTIN_FILTERS: Dict[str, Callable[["StrategyConfig"], LinkPredicate]] = {
    "external": _same_domain_filter,
    "same-domain": _same_domain_filter,
    "assets": lambda config: (lambda link: not is_asset_url(link.href)),
    "auth": _regex_filter(_AUTH_RE),
    "legal": _regex_filter(_LEGAL_RE),
    "social": _regex_filter(_SOCIAL_RE),
    "blog": _regex_filter(_BLOG_RE),
}


@dataclass
class StrategyConfig:
    """Limits and filters bound to one exploration run."""
    max_depth: int = 2
    max_total_nodes: int = 8
    focus: str = "features"
    base_domain: str = ""
    max_nodes_per_level: Optional[int] = None
    link_filters: List[str] = field(default_factory=lambda: ["assets", "auth", "legal"])
    skip_visited_urls: bool = True
    oracle_timeout_s: float = 20.0


# ---------------------------------------------------------------------------
# Rankers
# ---------------------------------------------------------------------------

class LinkRanker(ABC):
    """Orders already-filtered candidate links, best first."""

    strategy_type: StrategyType = StrategyType.PRIORITY

    @abstractmethod
    async def rank(
        self,
        node: NavigationNode,
        links: List[Link],
        strategy: "ExplorationStrategy",
    ) -> List[Link]:
        ...


class BreadthFirstRanker(LinkRanker):
    strategy_type = StrategyType.BREADTH_FIRST

    async def rank(self, node, links, strategy):
        return sorted(links, key=_path_depth)


class DepthFirstRanker(LinkRanker):
    strategy_type = StrategyType.DEPTH_FIRST

    async def rank(self, node, links, strategy):
        current = canonicalize(node.url)
        prefix = current.path.rstrip("/") + "/" if current else "/"

        def key(link: Link) -> Tuple[int, int]:
            extends = link.path.startswith(prefix) and link.path != current.path if current else False
            return (0 if extends else 1, -_path_depth(link))
        return sorted(links, key=key)


class PriorityRanker(LinkRanker):
    strategy_type = StrategyType.PRIORITY

    async def rank(self, node, links, strategy):
        focus = strategy.config.focus
        return sorted(links, key=lambda link: -score_link_for_demo(link, focus))


class AIGuidedRanker(LinkRanker):
    """Oracle ranking; any oracle failure falls back to ``PriorityRanker``."""

    strategy_type = StrategyType.AI_GUIDED

    def __init__(self, oracle: Optional[BaseRankingOracle] = None):
        self.oracle = oracle
        self._fallback = PriorityRanker()

    async def rank(self, node, links, strategy):
        if self.oracle is None:
            strategy.stats["ai_fallbacks"] += 1
            return await self._fallback.rank(node, links, strategy)

        by_key = {link.key: link for link in links}
        candidates = [RankingCandidate(path=l.key, text=l.text, is_nav=l.is_nav) for l in links]
        context = PageContext(
            url=node.url,
            title=node.title,
            description=str(node.metadata.get("description", "")),
            focus=strategy.config.focus,
        )
        try:
            ranked_keys = await asyncio.wait_for(
                self.oracle.rank_paths(context, candidates),
                timeout=strategy.config.oracle_timeout_s,
            )
        except (OracleFailure, asyncio.TimeoutError) as e:
            logger.warning(f"[STRATEGY] Oracle ranking failed ({e or 'timeout'}); using priority")
            strategy.stats["ai_fallbacks"] += 1
            return await self._fallback.rank(node, links, strategy)
        except Exception as e:
            logger.warning(f"[STRATEGY] Oracle {self.oracle.name} raised {type(e).__name__}: {e}; using priority")
            strategy.stats["ai_fallbacks"] += 1
            return await self._fallback.rank(node, links, strategy)

        strategy.stats["ai_decisions"] += 1
        ranked = [by_key[k] for k in ranked_keys if k in by_key]
        rest = await self._fallback.rank(node, [l for l in links if l.key not in ranked_keys], strategy)
        return ranked + rest


_RANKER_REGISTRY: Dict[str, Type[LinkRanker]] = {}


class StrategyFactory:
    """Registry of link rankers keyed by strategy name."""

    @staticmethod
    def register(ranker_class: Type[LinkRanker]) -> None:
        name = StrategyType(ranker_class.strategy_type).value
        _RANKER_REGISTRY[name] = ranker_class
        logger.debug(f"[STRATEGY] Registered ranker: {name}")

    @staticmethod
    def create_ranker(
        strategy_type: Union[str, StrategyType],
        oracle: Optional[BaseRankingOracle] = None,
    ) -> LinkRanker:
        name = StrategyType(strategy_type).value
        ranker_class = _RANKER_REGISTRY.get(name)
        if ranker_class is None:
            raise ValueError(f"No ranker registered for strategy '{name}'")
        if ranker_class is AIGuidedRanker:
            return AIGuidedRanker(oracle)
        return ranker_class()

    @staticmethod
    def available() -> List[str]:
        return list(_RANKER_REGISTRY.keys())


for _ranker in (BreadthFirstRanker, DepthFirstRanker, PriorityRanker, AIGuidedRanker):
    StrategyFactory.register(_ranker)


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------

class ExplorationStrategy:
    """
    Bound to one graph for one run.

    Usage::

        strategy = create_strategy("priority", graph, StrategyConfig(max_depth=2))
        action = await strategy.select_next_action(node)
    """

    def __init__(
        self,
        graph: NavigationGraph,
        config: Optional[StrategyConfig] = None,
        strategy_type: Union[str, StrategyType] = StrategyType.PRIORITY,
        oracle: Optional[BaseRankingOracle] = None,
    ):
        self.graph = graph
        self.config = config or StrategyConfig()
        self.oracle = oracle
        self.ranker = StrategyFactory.create_ranker(strategy_type, oracle)

        self._base = canonicalize(self.config.base_domain) if self.config.base_domain else None
        self._processed: Dict[str, Set[str]] = {}
        self._filters: List[Tuple[str, LinkPredicate]] = []
        for name in self.config.link_filters:
            self.add_link_filter(name)
        self.stats: Dict = {}
        self.reset_stats()

    @property
    def strategy_type(self) -> StrategyType:
        return self.ranker.strategy_type

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_strategy(self, strategy_type: Union[str, StrategyType]) -> None:
        self.ranker = StrategyFactory.create_ranker(strategy_type, self.oracle)
        logger.info(f"[STRATEGY] Switched to {self.ranker.strategy_type.value}")

    def set_max_depth(self, max_depth: int) -> None:
        self.config.max_depth = max_depth

    def set_max_total_nodes(self, max_total_nodes: int) -> None:
        self.config.max_total_nodes = max_total_nodes

    def add_link_filter(self, name: str, predicate: Optional[LinkPredicate] = None) -> None:
        """Add a built-in filter by name, or a custom ``predicate`` under *name*."""
        if predicate is None:
            factory = BUILTIN_FILTERS.get(name)
            if factory is None:
                raise ValueError(f"Unknown link filter '{name}'")
            predicate = factory(self.config)
        self._filters.append((name, predicate))

    def clear_link_filters(self) -> None:
        self._filters = []

    def reset_stats(self) -> None:
        self.stats = {
            "links_evaluated": 0,
            "links_skipped": 0,
            "links_filtered": Counter(),
            "clicks_issued": 0,
            "back_navigations": 0,
            "done_decisions": 0,
            "nodes_created": 0,
            "nodes_by_depth": Counter(),
            "ai_decisions": 0,
            "ai_fallbacks": 0,
        }

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def mark_processed(self, node_id: str, link: Link) -> None:
        self._processed.setdefault(node_id, set()).add(link.key)

    def is_processed(self, node_id: str, link: Link) -> bool:
        return link.key in self._processed.get(node_id, ())

    def record_node_created(self, node: NavigationNode) -> None:
        self.stats["nodes_created"] += 1
        self.stats["nodes_by_depth"][node.depth] += 1

    def is_high_value_node(self, node: NavigationNode) -> bool:
        haystack = f"{node.title} {node.url}".lower()
        return any(k in haystack or k.replace(" ", "-") in haystack for k in HIGH_VALUE_KEYWORDS)

    def _is_cross_origin(self, link: Link) -> bool:
        if self._base is None:
            return False
        cand = canonicalize(link.href)
        return cand is None or cand.host != self._base.host

    def _skip(self, node: NavigationNode, link: Link, reason: str) -> None:
        self.mark_processed(node.id, link)
        node.mark_link_skipped(link)
        self.stats["links_skipped"] += 1
        self.stats["links_filtered"][reason] += 1

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    async def select_next_action(
        self,
        node: NavigationNode,
        unexplored_links: Optional[List[Link]] = None,
    ) -> ExplorationAction:
        if self.graph.size >= self.config.max_total_nodes:
            self.stats["done_decisions"] += 1
            return ExplorationAction.done("node limit reached")
        if node.depth >= self.config.max_depth:
            self.stats["done_decisions"] += 1
            return ExplorationAction.done("depth limit reached")
        if self.config.max_nodes_per_level is not None:
            next_level = len(self.graph.get_nodes_at_depth(node.depth + 1))
            if next_level >= self.config.max_nodes_per_level:
                self.stats["done_decisions"] += 1
                return ExplorationAction.done("level limit reached")

        links = node.unexplored_links if unexplored_links is None else unexplored_links
        visited_urls = set(self.graph.get_visited_urls()) if self.config.skip_visited_urls else set()

        candidates: List[Link] = []
        for link in list(links):
            if self.is_processed(node.id, link):
                continue
            self.stats["links_evaluated"] += 1
            if self._is_cross_origin(link):
                self._skip(node, link, "cross-origin")
                continue
            rejected_by = next((name for name, keep in self._filters if not keep(link)), None)
            if rejected_by:
                self._skip(node, link, rejected_by)
                continue
            if link.href in visited_urls:
                self._skip(node, link, "visited")
                continue
            candidates.append(link)

        if not candidates:
            if node.parent is not None:
                self.stats["back_navigations"] += 1
                return ExplorationAction.back("no candidate links")
            self.stats["done_decisions"] += 1
            return ExplorationAction.done("no candidate links")

        ranked = await self.ranker.rank(node, candidates, self)
        chosen = ranked[0] if ranked else candidates[0]
        self.mark_processed(node.id, chosen)
        self.stats["clicks_issued"] += 1
        logger.debug(f"[STRATEGY] {self.strategy_type.value}: {node.id} -> {chosen.href}")
        return ExplorationAction.click(chosen, reason=self.strategy_type.value)

    def get_stats(self) -> Dict:
        return {
            "strategy": self.strategy_type.value,
            "links_evaluated": self.stats["links_evaluated"],
            "links_skipped": self.stats["links_skipped"],
            "links_filtered": dict(self.stats["links_filtered"]),
            "clicks_issued": self.stats["clicks_issued"],
            "back_navigations": self.stats["back_navigations"],
            "done_decisions": self.stats["done_decisions"],
            "nodes_created": self.stats["nodes_created"],
            "nodes_by_depth": dict(sorted(self.stats["nodes_by_depth"].items())),
            "ai_decisions": self.stats["ai_decisions"],
            "ai_fallbacks": self.stats["ai_fallbacks"],
            "processed_pairs": sum(len(v) for v in self._processed.values()),
        }


def create_strategy(
    strategy_type: Union[str, StrategyType],
    graph: NavigationGraph,
    config: Optional[StrategyConfig] = None,
    oracle: Optional[BaseRankingOracle] = None,
) -> ExplorationStrategy:
    """Build an ``ExplorationStrategy`` with the named ranker."""
    return ExplorationStrategy(graph, config, strategy_type, oracle)
