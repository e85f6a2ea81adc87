"""
sitetour
========
Explore a website's reachable states (including single-page applications
that change state without changing the URL) and turn them into a
fixed-duration, ordered demo plan for a recorder.

CLI Usage:
    python -m sitetour <url> [options]

    Options:
        --pages         Maximum states to discover (default: 8)
        --depth         Maximum click depth (default: 2)
        --strategy      breadth-first | depth-first | priority | ai-guided
        --mode          graph | legacy
        --duration      Demo length in seconds (default: 60)
        --plan-pages    Pages in the demo (default: 5)
        --output-json   Export exploration + plan
        --output-mermaid Export the navigation graph diagram
"""

from .browser import BaseBrowser, BrowserConfig, PlaywrightBrowser
from .content import Bounds, ContentDeduplicator, ContentSection, KeyElement, PageAnalysis
from .demo_plan import DemoPlan, PageEntry, PlanOptions, TimelineEntry
from .errors import (
    GraphLimitReached,
    NavigationFailure,
    OracleFailure,
    SiteTourError,
    StartUrlUnreachable,
)
from .exploration_strategy import (
    ActionType,
    ExplorationAction,
    ExplorationStrategy,
    StrategyConfig,
    StrategyFactory,
    StrategyType,
    create_strategy,
    score_link_for_demo,
)
from .link_filter import Link, LinkFilter, canonicalize, is_same_host
from .monitor import ExplorationMonitor
from .navigation_graph import NavigationEdge, NavigationGraph, NavigationNode, create_node_id
from .oracle import BaseRankingOracle, OpenAIRankingOracle, heuristic_prioritize
from .run_config import TourRunConfig
from .site_explorer import ExplorationResult, ExplorerConfig, SiteExplorer, SitePage, explore_site
from .spa_detector import FrameworkInfo, SPADetector

__all__ = [
    # Graph
    'NavigationGraph',
    'NavigationNode',
    'NavigationEdge',
    'create_node_id',
    # Exploration
    'SiteExplorer',
    'ExplorerConfig',
    'ExplorationResult',
    'SitePage',
    'explore_site',
    'SPADetector',
    'FrameworkInfo',
    'ExplorationStrategy',
    'ExplorationAction',
    'ActionType',
    'StrategyType',
    'StrategyConfig',
    'StrategyFactory',
    'create_strategy',
    'score_link_for_demo',
    'Link',
    'LinkFilter',
    'canonicalize',
    'is_same_host',
    'ExplorationMonitor',
    # Browser / oracle
    'BaseBrowser',
    'BrowserConfig',
    'PlaywrightBrowser',
    'BaseRankingOracle',
    'OpenAIRankingOracle',
    'heuristic_prioritize',
    # Planning
    'DemoPlan',
    'PlanOptions',
    'PageEntry',
    'TimelineEntry',
    'PageAnalysis',
    'ContentSection',
    'KeyElement',
    'Bounds',
    'ContentDeduplicator',
    # Config / errors
    'TourRunConfig',
    'SiteTourError',
    'NavigationFailure',
    'StartUrlUnreachable',
    'OracleFailure',
    'GraphLimitReached',
]

__version__ = '0.1.0'
