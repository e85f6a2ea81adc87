"""
Tests for exploration_strategy.py.

Covers the shared decision policy (limits, no repeats, cross-origin and
filter exclusion) and each ranker flavor.
"""

import asyncio

import pytest

from sitetour.errors import OracleFailure
from sitetour.exploration_strategy import (
    ActionType,
    ExplorationStrategy,
    LinkRanker,
    StrategyConfig,
    StrategyFactory,
    StrategyType,
    create_strategy,
    score_link_for_demo,
)
from sitetour.link_filter import Link
from sitetour.navigation_graph import NavigationGraph, NavigationNode
from sitetour.oracle import BaseRankingOracle

HOME = "https://example.com/"


def _link(path, text="", nav=False, host="example.com"):
    return Link(text=text, href=f"https://{host}{path}", selector=f'a[href="{path}"]', is_nav=nav, path=path)


def _setup(links, strategy="priority", oracle=None, **config):
    graph = NavigationGraph()
    root = graph.add_node(NavigationNode(url=HOME, title="Home"))
    graph.set_root(root.id)
    root.set_unexplored_links(links)
    cfg = StrategyConfig(base_domain=HOME, **config)
    return graph, root, create_strategy(strategy, graph, cfg, oracle=oracle)


def _next(strategy, node):
    return asyncio.run(strategy.select_next_action(node))


class TestScoring:

    def test_pricing_beats_blog(self):
        pricing = _link("/pricing", "Pricing")
        blog = _link("/blog", "Blog")
        assert score_link_for_demo(pricing) > score_link_for_demo(blog)

    def test_focus_and_nav_boost(self):
        link = _link("/pricing", "Pricing")
        assert score_link_for_demo(link, focus="pricing") == score_link_for_demo(link, focus="features") + 20
        assert score_link_for_demo(_link("/x", "X", nav=True)) == 10

    def test_legal_is_heavily_penalised(self):
        assert score_link_for_demo(_link("/privacy", "Privacy policy")) <= -50


class TestDecisionPolicy:

    def test_clicks_best_link_first(self):
        _, root, strategy = _setup([_link("/blog", "Blog"), _link("/features", "Features")])
        action = _next(strategy, root)
        assert action.type == ActionType.CLICK
        assert action.link.path == "/features"

    def test_never_issues_same_link_twice(self):
        _, root, strategy = _setup([_link("/a", "A"), _link("/b", "B")])
        first = _next(strategy, root)
        second = _next(strategy, root)
        third = _next(strategy, root)
        assert {first.link.path, second.link.path} == {"/a", "/b"}
        assert third.type == ActionType.DONE

    def test_child_without_candidates_goes_back(self):
        graph, root, strategy = _setup([])
        child = graph.add_node(NavigationNode(url="https://example.com/a", parent=root.id, depth=1))
        assert _next(strategy, child).type == ActionType.BACK

    def test_node_limit(self):
        _, root, strategy = _setup([_link("/a", "A")], max_total_nodes=1)
        action = _next(strategy, root)
        assert action.type == ActionType.DONE
        assert "node limit" in action.reason

    def test_depth_limit(self):
        graph, root, strategy = _setup([], max_depth=1)
        child = graph.add_node(NavigationNode(url="https://example.com/a", parent=root.id, depth=1))
        child.set_unexplored_links([_link("/a/b", "B")])
        action = _next(strategy, child)
        assert action.type == ActionType.DONE
        assert "depth" in action.reason

    def test_level_limit(self):
        graph, root, strategy = _setup([_link("/b", "B")], max_nodes_per_level=1)
        graph.add_node(NavigationNode(url="https://example.com/a", parent=root.id, depth=1))
        assert _next(strategy, root).type == ActionType.DONE

    def test_cross_origin_excluded(self):
        _, root, strategy = _setup([_link("/x", "Features", host="other.com")])
        assert _next(strategy, root).type == ActionType.DONE
        assert strategy.get_stats()["links_filtered"] == {"cross-origin": 1}

    def test_default_filters(self):
        links = [_link("/login", "Log in"), _link("/terms", "Terms"), _link("/logo.svg", "Logo")]
        _, root, strategy = _setup(links)
        assert _next(strategy, root).type == ActionType.DONE
        assert strategy.get_stats()["links_filtered"] == {"auth": 1, "legal": 1, "assets": 1}

    def test_rejected_links_leave_the_node(self):
        _, root, strategy = _setup([_link("/login", "Log in"), _link("/terms", "Terms"), _link("/a", "A")])
        action = _next(strategy, root)
        assert action.link.path == "/a"
        assert [l.path for l in root.unexplored_links] == ["/a"]
        assert {l.path for l in root.skipped_links} == {"/login", "/terms"}

    def test_optional_filters(self):
        _, root, strategy = _setup([_link("/blog/post", "Post")])
        strategy.add_link_filter("blog")
        assert _next(strategy, root).type == ActionType.DONE

    def test_custom_filter_and_clear(self):
        _, root, strategy = _setup([_link("/secret", "Secret")])
        strategy.add_link_filter("no-secret", lambda link: "secret" not in link.path)
        strategy.clear_link_filters()
        assert _next(strategy, root).type == ActionType.CLICK

    def test_unknown_filter(self):
        _, _, strategy = _setup([])
        with pytest.raises(ValueError):
            strategy.add_link_filter("nope")

    def test_visited_urls_skipped(self):
        graph, root, strategy = _setup([_link("/a", "A")])
        graph.add_node(NavigationNode(url="https://example.com/a", parent=root.id, depth=1))
        assert _next(strategy, root).type == ActionType.DONE
        assert strategy.get_stats()["links_filtered"] == {"visited": 1}

    def test_stats(self):
        _, root, strategy = _setup([_link("/a", "A")])
        strategy.record_node_created(root)
        _next(strategy, root)
        stats = strategy.get_stats()
        assert stats["strategy"] == "priority"
        assert stats["clicks_issued"] == 1
        assert stats["nodes_by_depth"] == {0: 1}
        strategy.reset_stats()
        assert strategy.get_stats()["clicks_issued"] == 0


class TestRankers:

    def test_breadth_first_prefers_shallow_paths(self):
        links = [_link("/a/b/c", "Deep"), _link("/a", "Shallow")]
        _, root, strategy = _setup(links, strategy="breadth-first")
        assert _next(strategy, root).link.path == "/a"

    def test_depth_first_prefers_extending_paths(self):
        graph, root, strategy = _setup([], strategy="depth-first", max_depth=5)
        node = graph.add_node(NavigationNode(url="https://example.com/docs", parent=root.id, depth=1))
        node.set_unexplored_links([_link("/pricing", "Pricing"), _link("/docs/api", "API")])
        assert _next(strategy, node).link.path == "/docs/api"

    def test_set_strategy_switches_ranker(self):
        _, root, strategy = _setup([_link("/a/b/c", "Features"), _link("/x", "X")])
        strategy.set_strategy("breadth-first")
        assert strategy.strategy_type == StrategyType.BREADTH_FIRST
        assert _next(strategy, root).link.path == "/x"

    def test_registry(self):
        assert set(StrategyFactory.available()) >= {"breadth-first", "depth-first", "priority", "ai-guided"}
        with pytest.raises(ValueError):
            StrategyFactory.create_ranker("random-walk")


class _ListOracle(BaseRankingOracle):
    def __init__(self, keys=None, error=None):
        self.keys = keys or []
        self.error = error
        self.calls = 0

    async def rank_paths(self, context, candidates):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.keys)


class TestAIGuided:

    def test_uses_oracle_order(self):
        oracle = _ListOracle(["https://example.com/blog"])
        links = [_link("/features", "Features"), _link("/blog", "Blog")]
        _, root, strategy = _setup(links, strategy="ai-guided", oracle=oracle)
        assert _next(strategy, root).link.path == "/blog"
        assert strategy.get_stats()["ai_decisions"] == 1

    def test_falls_back_on_failure(self):
        oracle = _ListOracle(error=OracleFailure("bad reply"))
        links = [_link("/blog", "Blog"), _link("/features", "Features")]
        _, root, strategy = _setup(links, strategy="ai-guided", oracle=oracle)
        assert _next(strategy, root).link.path == "/features"
        assert strategy.get_stats()["ai_fallbacks"] == 1

    def test_falls_back_on_unexpected_provider_error(self):
        oracle = _ListOracle(error=RuntimeError("provider SDK blew up"))
        links = [_link("/blog", "Blog"), _link("/features", "Features")]
        _, root, strategy = _setup(links, strategy="ai-guided", oracle=oracle)
        action = _next(strategy, root)
        assert action.type == ActionType.CLICK
        assert action.link.path == "/features"
        assert strategy.get_stats()["ai_fallbacks"] == 1

    def test_without_oracle(self):
        _, root, strategy = _setup([_link("/blog", "Blog"), _link("/pricing", "Pricing")], strategy="ai-guided")
        assert _next(strategy, root).link.path == "/pricing"
        assert strategy.get_stats()["ai_fallbacks"] == 1


class TestCustomRanker:

    def test_registered_ranker_is_used(self):
        class ReverseRanker(LinkRanker):
            strategy_type = StrategyType.BREADTH_FIRST

            async def rank(self, node, links, strategy):
                return list(reversed(links))

        original = StrategyFactory.create_ranker("breadth-first").__class__
        StrategyFactory.register(ReverseRanker)
        try:
            graph = NavigationGraph()
            root = graph.add_node(NavigationNode(url=HOME))
            graph.set_root(root.id)
            root.set_unexplored_links([_link("/a", "A"), _link("/b", "B")])
            strategy = ExplorationStrategy(graph, StrategyConfig(base_domain=HOME), "breadth-first")
            assert _next(strategy, root).link.path == "/b"
        finally:
            StrategyFactory.register(original)
