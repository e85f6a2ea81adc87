"""
Tests for demo_plan.py.

Covers page selection (home first), narrative ordering, time allocation
(conservation, bounds, drift), transitions, timelines and queries.
"""

import pytest

from sitetour.content import ContentDeduplicator
from sitetour.demo_plan import DemoPlan, PlanOptions
from sitetour.navigation_graph import NavigationGraph, NavigationNode

HOME = "https://example.com/"


def _site(*pages, visited=True):
    """Root plus depth-1 children given as (path, title)."""
    graph = NavigationGraph()
    root = graph.add_node(NavigationNode(url=HOME, title="Home"))
    graph.set_root(root.id)
    if visited:
        root.record_visit()
    for path, title in pages:
        node = graph.add_node(NavigationNode(url=f"https://example.com{path}", title=title, parent=root.id, depth=1))
        graph.add_edge(root.id, node.id)
        if visited:
            node.record_visit()
    return graph


def _plan(graph, analyses=None, **options):
    return DemoPlan.create(graph, analyses, PlanOptions(**options))


STANDARD = (("/about", "About us"), ("/pricing", "Pricing"), ("/features", "Features"))


class TestOptions:

    def test_defaults(self):
        opts = PlanOptions()
        assert opts.total_ms == 60000
        assert opts.transition_time_ms == 1500

    @pytest.mark.parametrize("kwargs", [
        {"style": "sarcastic"},
        {"min_page_duration_ms": 30000, "max_page_duration_ms": 10000},
        {"max_pages": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            PlanOptions(**kwargs)


class TestSelectionAndOrder:

    def test_home_first_then_narrative_order(self):
        plan = _plan(_site(*STANDARD))
        assert [p.title for p in plan.pages] == ["Home", "Features", "Pricing", "About us"]
        assert plan.pages[0].is_home

    def test_home_first_even_when_outscored(self):
        analyses = {
            "https://example.com/features": {
                "sections": [{"type": "hero", "demoScore": 100, "bounds": {"y": 300}}] * 5,
                "interactiveElements": [{}] * 10,
            },
        }
        plan = _plan(_site(*STANDARD), analyses)
        features = plan.get_page("https://example.com/features")
        assert features.priority > plan.pages[0].priority
        assert plan.pages[0].id == HOME

    def test_max_pages(self):
        plan = _plan(_site(*STANDARD), max_pages=2)
        assert len(plan.pages) == 2
        assert plan.pages[0].id == HOME

    def test_unvisited_nodes_ignored(self):
        graph = _site(*STANDARD)
        graph.add_node(NavigationNode(url="https://example.com/ghost", parent=HOME, depth=1))
        plan = _plan(graph)
        assert plan.get_page("https://example.com/ghost") is None

    def test_empty_graph_gives_placeholder_home(self):
        for graph in (None, NavigationGraph()):
            plan = _plan(graph, duration_s=30)
            assert len(plan.pages) == 1
            page = plan.pages[0]
            assert page.id == "home"
            assert page.duration == 30000
            assert page.transition_method == "navigate"

    def test_transition_methods(self):
        plan = _plan(_site(*STANDARD))
        methods = [p.transition_method for p in plan.pages]
        assert methods[0] == "navigate"
        # home -> features follows a graph edge; siblings have none
        assert methods[1] == "click"
        assert methods[2] == "navigate"

    def test_back_transition(self):
        graph = _site(("/features", "Features"))
        graph.add_node(NavigationNode(url="https://example.com/a", title="Demo", parent=HOME, depth=1)).record_visit()
        graph.add_edge("https://example.com/a", "https://example.com/features")
        plan = _plan(graph)
        # Features (10) then Demo (60): Demo links to Features, so going Features -> Demo is "back"
        assert [p.title for p in plan.pages] == ["Home", "Features", "Demo"]
        assert plan.pages[2].transition_method == "back"


class TestTimeAllocation:

    def test_time_is_conserved(self):
        plan = _plan(_site(*STANDARD), duration_s=60)
        assert plan.drift == 0
        assert plan.planned_duration == 60000
        assert plan.pages[-1].end_time == 60000

    def test_durations_within_bounds(self):
        plan = _plan(_site(*STANDARD), duration_s=60)
        for page in plan.pages:
            assert 8000 <= page.duration <= 20000

    def test_higher_priority_gets_more_time(self):
        plan = _plan(_site(*STANDARD), duration_s=60)
        home = plan.pages[0]
        assert all(home.duration >= p.duration for p in plan.pages[1:])

    def test_clamped_shares_redistributed(self):
        analyses = {
            "https://example.com/features": {
                "sections": [{"demoScore": 100}] * 5,
                "interactiveElements": [{}] * 10,
            },
        }
        plan = _plan(_site(*STANDARD), analyses, duration_s=60, max_page_duration_ms=14000)
        assert plan.drift == 0
        assert sum(p.duration for p in plan.pages) == 60000 - 3 * 1500
        assert max(p.duration for p in plan.pages) <= 14000

    def test_infeasible_budget_reports_drift(self):
        plan = _plan(_site(*STANDARD), duration_s=10)
        assert all(p.duration == 8000 for p in plan.pages)
        assert plan.drift == (10000 - 3 * 1500) - 4 * 8000

    def test_oversized_budget_reports_drift(self):
        plan = _plan(_site(("/features", "Features")), duration_s=120)
        assert all(p.duration == 20000 for p in plan.pages)
        assert plan.drift > 0

    def test_start_times(self):
        plan = _plan(_site(*STANDARD))
        for prev, page in zip(plan.pages, plan.pages[1:]):
            assert page.start_time == prev.end_time + 1500


class TestTimelines:

    def test_generic_timeline_bounds(self):
        plan = _plan(_site(*STANDARD))
        for page in plan.pages:
            timeline = page.timeline
            assert timeline[0].type == "wait"
            assert timeline[0].start_time == 0
            assert timeline[-1].type == "wait"
            assert timeline[-1].end_time == page.duration
            assert [t.start_time for t in timeline] == sorted(t.start_time for t in timeline)
            assert all(0 <= t.start_time and t.end_time <= page.duration for t in timeline)
            assert {"pan", "scroll", "scroll-to"} <= {t.type for t in timeline}

    def test_section_timeline(self):
        analyses = {
            "https://example.com/features": {
                "sections": [
                    {"type": "hero", "demoScore": 80, "bounds": {"x": 0, "y": 600, "width": 800, "height": 400},
                     "keyElements": [{"selector": "#cta", "x": 10, "y": 20}]},
                    {"type": "grid", "demoScore": 70, "bounds": {"y": 50}},
                    {"type": "footer", "demoScore": 10},
                ],
            },
        }
        plan = _plan(_site(*STANDARD), analyses)
        timeline = plan.get_timeline_for_page("https://example.com/features")
        types = [t.type for t in timeline]
        assert "scroll-to" in types
        assert "hover" in types
        assert "pan" in types
        hover = next(t for t in timeline if t.type == "hover")
        assert hover.target == "#cta"
        assert hover.skippable

    def test_narrative(self):
        plan = _plan(_site(*STANDARD), style="casual")
        assert plan.pages[0].timeline[0].narrative.startswith("Hey! Check out Home")
        assert "Now let's check out Features." in plan.narrative

    def test_no_narrative(self):
        plan = _plan(_site(*STANDARD), include_narrative=False)
        assert plan.narrative == ""
        assert plan.pages[0].timeline[0].narrative is None


class TestQueries:

    def test_action_at_time(self):
        plan = _plan(_site(*STANDARD))
        assert plan.get_action_at_time(500).type == "wait"
        assert plan.get_page_at_time(0).id == HOME
        gap = plan.pages[0].end_time + 10
        assert plan.get_page_at_time(gap) is None
        assert plan.get_action_at_time(gap) is None

    def test_next_action(self):
        plan = _plan(_site(*STANDARD))
        page, action = plan.get_next_action(plan.pages[0].end_time + 10)
        assert page is plan.pages[1]
        assert action.start_time == 0
        assert plan.get_next_action(plan.pages[-1].end_time) is None

    def test_adjust_timeline(self):
        plan = _plan(_site(*STANDARD))
        second = plan.pages[1].start_time
        plan.adjust_timeline(2000, from_time=second)
        assert plan.pages[0].start_time == 0
        assert plan.pages[1].start_time == second + 2000
        assert plan.total_duration == 62000

    def test_to_dict(self):
        data = _plan(_site(*STANDARD)).to_dict()
        assert data["total_duration"] == 60000
        assert len(data["pages"]) == 4
        assert data["pages"][0]["timeline"][0]["type"] == "wait"
        assert data["options"]["style"] == "professional"


class TestChromeStripping:

    def test_header_sections_ignored_with_deduplicator(self):
        analyses = {
            HOME: {"sections": [
                {"type": "header", "demoScore": 90, "bounds": {"y": 0, "height": 60}},
                {"type": "hero", "demoScore": 60, "bounds": {"y": 400, "height": 300}},
            ]},
        }
        plan = DemoPlan.create(_site(*STANDARD), analyses, PlanOptions(), ContentDeduplicator())
        sections = plan.pages[0].analysis.sections
        assert [s.type for s in sections] == ["hero"]
