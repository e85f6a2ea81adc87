"""
Demo Plan
=========
Turns a finished ``NavigationGraph`` (plus optional per-page content
analyses) into an ordered, time-boxed schedule for a recorder.

Pipeline (``DemoPlan.create``):

1. ``select_pages``     score every visited state, keep the top
                        ``max_pages``, home first
2. ``optimize_order``   narrative order after home; transition method
                        from graph edges
3. ``allocate_time``    split the budget left after transitions in
                        proportion to priority, within per-page bounds
4. ``plan_transitions`` running start times
5. ``create_timelines`` per-page action timelines
6. ``generate_narrative`` optional text seed

All times are integer milliseconds.  When the bounds make the budget
infeasible (too many pages for the minimum or too few for the maximum)
the bounds win and the shortfall is reported as ``drift``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .content import ContentDeduplicator, ContentSection, PageAnalysis
from .link_filter import canonicalize
from .navigation_graph import NavigationGraph, NavigationNode

logger = logging.getLogger(__name__)

NARRATIVE_STYLES = ("professional", "casual", "energetic")
TRANSITION_METHODS = ("navigate", "click", "back")

_TITLE_KEYWORDS = ("feature", "pricing", "product", "service", "solution", "demo", "about")

# Narrative ordinal: lower plays earlier
_ORDER_KEYWORDS = (
    ("feature", 10),
    ("product", 20),
    ("solution", 25),
    ("service", 30),
    ("pricing", 50),
    ("demo", 60),
    ("about", 80),
    ("contact", 90),
)
_DEFAULT_ORDER = 40

SETTLE_MS = 1000
HOLD_MS = 500
SCROLL_TO_MS = 800
MAX_SECTIONS = 5
MAX_HOVERS = 3
SECTION_SCORE_CUTOFF = 30


@dataclass
class PlanOptions:
    duration_s: float = 60
    max_pages: int = 5
    style: str = "professional"
    focus: str = "features"
    include_narrative: bool = True
    min_page_duration_ms: int = 8000
    max_page_duration_ms: int = 20000
    transition_time_ms: int = 1500

    def __post_init__(self):
        if self.style not in NARRATIVE_STYLES:
            raise ValueError(f"Unknown narrative style '{self.style}' (expected one of {NARRATIVE_STYLES})")
        if self.min_page_duration_ms > self.max_page_duration_ms:
            raise ValueError("min_page_duration_ms exceeds max_page_duration_ms")
        if self.max_pages < 1:
            raise ValueError("max_pages must be at least 1")

    @property
    def total_ms(self) -> int:
        return int(round(self.duration_s * 1000))


@dataclass
class TimelineEntry:
    start_time: int
    duration: int
    type: str                                # wait | scroll | scroll-to | hover | pan | click
    target: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    narrative: Optional[str] = None
    priority: int = 50
    skippable: bool = False
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def end_time(self) -> int:
        return self.start_time + self.duration

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None and v != {}}


@dataclass
class PageEntry:
    id: str
    url: str
    title: str
    duration: int = 0
    priority: float = 50
    start_time: int = 0
    transition_method: str = "navigate"
    timeline: List[TimelineEntry] = field(default_factory=list)
    is_home: bool = False
    analysis: Optional[PageAnalysis] = field(default=None, repr=False)
    node: Optional[NavigationNode] = field(default=None, repr=False)

    @property
    def end_time(self) -> int:
        return self.start_time + self.duration

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "duration": self.duration,
            "priority": self.priority,
            "start_time": self.start_time,
            "transition_method": self.transition_method,
            "timeline": [t.to_dict() for t in self.timeline],
        }


AnalysisInput = Union[PageAnalysis, Dict[str, Any]]


class DemoPlan:
    """
    Usage::

        plan = DemoPlan.create(result.graph, analyses, PlanOptions(duration_s=45))
        for page in plan.pages:
            ...
        plan.get_action_at_time(12_000)
    """

    def __init__(
        self,
        graph: Optional[NavigationGraph],
        analyses: Optional[Mapping[str, AnalysisInput]] = None,
        options: Optional[PlanOptions] = None,
        deduplicator: Optional[ContentDeduplicator] = None,
    ):
        self.graph = graph
        self.options = options or PlanOptions()
        self.deduplicator = deduplicator
        self.analyses: Dict[str, PageAnalysis] = {
            key: value if isinstance(value, PageAnalysis) else PageAnalysis.from_dict(value)
            for key, value in (analyses or {}).items()
        }
        self.pages: List[PageEntry] = []
        self.narrative = ""
        self.total_duration = self.options.total_ms
        self.drift = 0

    @classmethod
    def create(
        cls,
        graph: Optional[NavigationGraph],
        analyses: Optional[Mapping[str, AnalysisInput]] = None,
        options: Optional[PlanOptions] = None,
        deduplicator: Optional[ContentDeduplicator] = None,
    ) -> "DemoPlan":
        plan = cls(graph, analyses, options, deduplicator)
        plan.select_pages()
        plan.optimize_order()
        plan.allocate_time()
        plan.plan_transitions()
        plan.create_timelines()
        if plan.options.include_narrative:
            plan.generate_narrative()
        logger.info(
            f"[PLAN] {len(plan.pages)} pages over {plan.total_duration}ms "
            f"(drift={plan.drift}ms, style={plan.options.style})"
        )
        return plan

    # ------------------------------------------------------------------
    # 1. Selection
    # ------------------------------------------------------------------

    def _analysis_for(self, node: NavigationNode) -> Optional[PageAnalysis]:
        analysis = self.analyses.get(node.id) or self.analyses.get(node.url)
        if analysis is None or self.deduplicator is None:
            return analysis
        return PageAnalysis(
            sections=self.deduplicator.strip_chrome(analysis.sections),
            interactive_elements=analysis.interactive_elements,
            title=analysis.title,
            summary=analysis.summary,
        )

    def _is_home(self, node: NavigationNode) -> bool:
        if self.graph is not None and node.id == self.graph.root_id:
            return True
        canon = canonicalize(node.url)
        return canon is not None and canon.path == "/" and not node.state_hash and not canon.route

    def calculate_page_score(self, node: NavigationNode, analysis: Optional[PageAnalysis]) -> float:
        score = 50.0
        if self._is_home(node):
            score += 20
        title = (node.title or "").lower()
        if any(k in title for k in _TITLE_KEYWORDS):
            score += 10
        if analysis is not None:
            score += min(15, len(analysis.sections) * 3)
            score += analysis.average_demo_score * 0.2
            score += min(10, len(analysis.interactive_elements))
        if node.depth == 1:
            score += 5
        if node.depth > 2:
            score -= (node.depth - 2) * 5
        return round(max(0.0, min(100.0, score)), 2)

    def select_pages(self) -> None:
        nodes: List[NavigationNode] = []
        if self.graph is not None:
            ordered = list(self.graph.iter_bfs())
            nodes = [n for n in ordered if n.visit_count > 0] or ordered

        if not nodes:
            self.pages = [PageEntry(
                id="home",
                url="/",
                title="Home",
                duration=self.total_duration,
                priority=100,
                is_home=True,
            )]
            return

        scored = []
        for node in nodes:
            analysis = self._analysis_for(node)
            scored.append(PageEntry(
                id=node.id,
                url=node.url,
                title=node.title or (analysis.title if analysis else "") or "Page",
                priority=self.calculate_page_score(node, analysis),
                is_home=self._is_home(node),
                analysis=analysis,
                node=node,
            ))
        # stable: ties keep breadth-first order
        scored.sort(key=lambda p: -p.priority)
        selected = scored[: self.options.max_pages]

        home_index = next((i for i, p in enumerate(selected) if p.is_home), None)
        if home_index:
            selected.insert(0, selected.pop(home_index))
        self.pages = selected

    # ------------------------------------------------------------------
    # 2. Ordering
    # ------------------------------------------------------------------

    @staticmethod
    def order_score(page: PageEntry) -> int:
        title = (page.title or "").lower()
        url = (page.url or "").lower()
        for keyword, rank in _ORDER_KEYWORDS:
            if keyword in title or keyword in url:
                return rank
        return _DEFAULT_ORDER

    def determine_transition_method(self, prev: PageEntry, page: PageEntry) -> str:
        if self.graph is None:
            return "navigate"
        if self.graph.has_edge(prev.id, page.id):
            return "click"
        if self.graph.has_edge(page.id, prev.id):
            return "back"
        return "navigate"

    def optimize_order(self) -> None:
        if len(self.pages) > 1:
            if self.pages[0].is_home:
                head, rest = self.pages[:1], self.pages[1:]
            else:
                head, rest = [], self.pages
            rest = sorted(rest, key=self.order_score)
            self.pages = head + rest

        for i, page in enumerate(self.pages):
            page.transition_method = (
                "navigate" if i == 0 else self.determine_transition_method(self.pages[i - 1], page)
            )

    # ------------------------------------------------------------------
    # 3. Time allocation
    # ------------------------------------------------------------------

    def allocate_time(self) -> None:
        """
        Clamped proportional split of the time left after transitions.

        Shares are computed by water-filling: pages whose proportional
        share falls outside ``[min, max]`` are pinned to the bound and the
        rest re-split until every share fits.  The integer rounding
        remainder goes to the highest-priority page, re-clamped, spilling
        over to the next page if needed.
        """
        n = len(self.pages)
        if n == 0:
            return
        if n == 1 and self.pages[0].node is None:
            # placeholder page for an empty graph spans the whole budget
            self.pages[0].duration = self.total_duration
            return

        lo = self.options.min_page_duration_ms
        hi = self.options.max_page_duration_ms
        available = self.total_duration - (n - 1) * self.options.transition_time_ms

        if available < n * lo or available > n * hi:
            logger.warning(
                f"[PLAN] {n} pages cannot fill {available}ms within "
                f"[{lo}, {hi}]ms each; page bounds take precedence"
            )

        weights = [max(0.0, float(p.priority)) for p in self.pages]

        shares: Dict[int, float] = {}
        free = set(range(n))
        while free:
            remaining = available - sum(shares.values())
            total_weight = sum(weights[i] for i in free)
            if total_weight > 0:
                tentative = {i: remaining * weights[i] / total_weight for i in free}
            else:
                tentative = {i: remaining / len(free) for i in free}
            low = [i for i, v in tentative.items() if v < lo]
            high = [i for i, v in tentative.items() if v > hi]
            if low:
                for i in low:
                    shares[i] = lo
                    free.discard(i)
            elif high:
                for i in high:
                    shares[i] = hi
                    free.discard(i)
            else:
                shares.update(tentative)
                free.clear()

        durations = [int(round(min(hi, max(lo, shares[i])))) for i in range(n)]

        by_priority = sorted(range(n), key=lambda i: (-self.pages[i].priority, i))
        diff = available - sum(durations)
        for i in by_priority:
            if diff == 0:
                break
            adjusted = min(hi, max(lo, durations[i] + diff))
            diff -= adjusted - durations[i]
            durations[i] = adjusted

        for page, duration in zip(self.pages, durations):
            page.duration = duration
        self.drift = diff
        if diff:
            logger.warning(f"[PLAN] Allocation drift: {diff}ms")

    # ------------------------------------------------------------------
    # 4. Transitions
    # ------------------------------------------------------------------

    def plan_transitions(self) -> None:
        offset = 0
        for i, page in enumerate(self.pages):
            page.start_time = offset
            offset += page.duration
            if i < len(self.pages) - 1:
                offset += self.options.transition_time_ms

    # ------------------------------------------------------------------
    # 5. Timelines
    # ------------------------------------------------------------------

    def create_timelines(self) -> None:
        for page in self.pages:
            page.timeline = self.create_page_timeline(page)

    def create_page_timeline(self, page: PageEntry) -> List[TimelineEntry]:
        duration = page.duration
        settle = min(SETTLE_MS, duration)
        timeline = [TimelineEntry(
            start_time=0,
            duration=settle,
            type="wait",
            narrative=self.get_narrative_for_page(page, "intro") or None,
            priority=100,
            skippable=False,
        )]
        current = settle

        sections: List[ContentSection] = []
        if page.analysis is not None:
            sections = [s for s in page.analysis.sections if s.demo_score > SECTION_SCORE_CUTOFF][:MAX_SECTIONS]

        if sections:
            per_section = max(0, duration - 2 * SETTLE_MS) / len(sections)
            for section in sections:
                for entry in self._plan_section_actions(section, per_section):
                    entry.start_time = int(round(current + entry.start_time))
                    timeline.append(entry)
                current += per_section
        else:
            timeline.extend(self._generic_actions(current, duration))

        hold = min(HOLD_MS, duration)
        timeline.append(TimelineEntry(
            start_time=duration - hold,
            duration=hold,
            type="wait",
            priority=90,
        ))

        timeline = [t for t in timeline if t.duration > 0 or t.type == "wait"]
        timeline.sort(key=lambda t: t.start_time)
        return timeline

    @staticmethod
    def _plan_section_actions(section: ContentSection, slot: float) -> List[TimelineEntry]:
        """Actions for one section with start times relative to the slot."""
        actions: List[TimelineEntry] = []
        offset = 0.0

        if section.bounds.y > 100 and slot > SCROLL_TO_MS:
            actions.append(TimelineEntry(
                start_time=0,
                duration=SCROLL_TO_MS,
                type="scroll-to",
                y=section.bounds.y - 100,
                priority=90,
            ))
            offset += SCROLL_TO_MS

        elements = section.key_elements[:MAX_HOVERS]
        if elements:
            per_element = max(0.0, slot - offset - 500) / len(elements)
            for element in elements:
                actions.append(TimelineEntry(
                    start_time=int(round(offset)),
                    duration=int(per_element * 0.7),
                    type="hover",
                    target=element.selector or None,
                    x=element.x,
                    y=element.y,
                    priority=element.priority or 50,
                    skippable=True,
                ))
                offset += per_element
        else:
            actions.append(TimelineEntry(
                start_time=int(round(offset)),
                duration=int(max(0.0, slot - offset - 300)),
                type="pan",
                priority=40,
                params={"bounds": asdict(section.bounds)},
            ))
        return actions

    @staticmethod
    def _generic_actions(start: int, duration: int) -> List[TimelineEntry]:
        """Pan / scroll / back-to-top for pages without analysis."""
        budget = max(0, min(max(1000, duration - 3000), duration - SETTLE_MS - HOLD_MS))
        pan = int(budget * 0.3)
        scroll = int(budget * 0.5)
        top = int(budget * 0.2)
        return [
            TimelineEntry(
                start_time=start,
                duration=pan,
                type="pan",
                priority=60,
                params={"startX": 0.2, "startY": 0.3, "endX": 0.8, "endY": 0.4},
            ),
            TimelineEntry(
                start_time=start + pan,
                duration=scroll,
                type="scroll",
                priority=50,
                params={"distance": 1500},
            ),
            TimelineEntry(
                start_time=start + pan + scroll,
                duration=top,
                type="scroll-to",
                y=0,
                priority=40,
                params={"y": 0},
            ),
        ]

    # ------------------------------------------------------------------
    # 6. Narrative
    # ------------------------------------------------------------------

    def get_narrative_for_page(self, page: PageEntry, part: str) -> str:
        if not self.options.include_narrative:
            return ""
        title = page.title or "this page"
        style = self.options.style
        if part == "intro":
            if style == "professional":
                return (f"Welcome to {title}. Let me show you what this platform offers."
                        if page.is_home else f"Let's explore the {title} section.")
            if style == "casual":
                return (f"Hey! Check out {title} - pretty cool stuff here."
                        if page.is_home else f"Now let's check out {title}.")
            if style == "energetic":
                return (f"Welcome to {title}! Get ready to see some amazing features!"
                        if page.is_home else f"And here's the awesome {title} page!")
        if part == "content" and style == "professional" and page.analysis is not None:
            return page.analysis.summary
        return ""

    def generate_narrative(self) -> str:
        parts = []
        for page in self.pages:
            for part in ("intro", "content"):
                text = self.get_narrative_for_page(page, part)
                if text:
                    parts.append(text)
        self.narrative = " ".join(parts)
        return self.narrative

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_page(self, page_id: str) -> Optional[PageEntry]:
        return next((p for p in self.pages if p.id == page_id), None)

    def get_timeline_for_page(self, page_id: str) -> List[TimelineEntry]:
        page = self.get_page(page_id)
        return page.timeline if page else []

    def get_page_at_time(self, t: int) -> Optional[PageEntry]:
        return next((p for p in self.pages if p.start_time <= t < p.end_time), None)

    def get_action_at_time(self, t: int) -> Optional[TimelineEntry]:
        """Timeline entry active at global time *t* (ms), if any."""
        page = self.get_page_at_time(t)
        if page is None:
            return None
        local = t - page.start_time
        return next((a for a in page.timeline if a.start_time <= local < a.end_time), None)

    def get_next_action(self, t: int) -> Optional[Tuple[PageEntry, TimelineEntry]]:
        """First entry starting strictly after global time *t*."""
        for page in self.pages:
            if t < page.start_time:
                if page.timeline:
                    return page, page.timeline[0]
                continue
            if t < page.end_time:
                local = t - page.start_time
                for action in page.timeline:
                    if action.start_time > local:
                        return page, action
        return None

    def adjust_timeline(self, delta: int, from_time: int = 0) -> None:
        """Shift every page starting at or after *from_time* by *delta* ms."""
        for page in self.pages:
            if page.start_time >= from_time:
                page.start_time += delta
        self.total_duration += delta

    @property
    def planned_duration(self) -> int:
        """Sum of page durations plus transitions."""
        if not self.pages:
            return 0
        return sum(p.duration for p in self.pages) + (len(self.pages) - 1) * self.options.transition_time_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pages": [p.to_dict() for p in self.pages],
            "narrative": self.narrative,
            "total_duration": self.total_duration,
            "drift": self.drift,
            "options": asdict(self.options),
        }
