"""
Unified Run Configuration
=========================
Single source of truth for every sitetour default and runtime limit.

The CLI populates ``TourRunConfig``; the browser, explorer and planner
configs are built *from* it via ``to_*`` converters, so no magic number
lives in more than one place.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults
# ---------------------------------------------------------------------------
_DEFAULTS = {
    # Exploration
    "max_pages": 8,
    "max_depth": 2,
    "timeout_seconds": 10,           # per navigation
    "mode": "graph",                 # "graph" | "legacy"
    "strategy": "priority",          # breadth-first | depth-first | priority | ai-guided
    "focus": "features",             # features | pricing | technical | overview
    "max_links_per_page": 50,
    "click_timeout_ms": 3000,
    "settle_timeout_ms": 3000,
    "state_change_timeout_ms": 2000,
    "back_timeout_ms": 2000,
    # Browser
    "headless": True,
    "user_agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
    # Planning
    "duration_s": 60,
    "plan_pages": 5,
    "style": "professional",
    "include_narrative": True,
    "min_page_duration_ms": 8000,
    "max_page_duration_ms": 20000,
    "transition_time_ms": 1500,
    # Oracle
    "use_ai": False,
    "ai_model": "gpt-4o-mini",
    "ai_timeout_s": 20.0,
    # Output
    "output_json": None,
    "output_mermaid": None,
}


@dataclass
class TourRunConfig:
    """
    Unified configuration for one explore-then-plan run.

    Populate via:
      - ``TourRunConfig()``                  → all defaults
      - ``TourRunConfig(max_pages=5)``       → override one value
      - ``TourRunConfig.from_cli_args(ns)``  → from argparse Namespace
    """

    # ---- Exploration ----
    max_pages: int = _DEFAULTS["max_pages"]
    max_depth: int = _DEFAULTS["max_depth"]
    timeout_seconds: int = _DEFAULTS["timeout_seconds"]
    mode: str = _DEFAULTS["mode"]
    strategy: str = _DEFAULTS["strategy"]
    focus: str = _DEFAULTS["focus"]
    max_links_per_page: int = _DEFAULTS["max_links_per_page"]
    click_timeout_ms: int = _DEFAULTS["click_timeout_ms"]
    settle_timeout_ms: int = _DEFAULTS["settle_timeout_ms"]
    state_change_timeout_ms: int = _DEFAULTS["state_change_timeout_ms"]
    back_timeout_ms: int = _DEFAULTS["back_timeout_ms"]
    link_filters: List[str] = field(default_factory=lambda: ["assets", "auth", "legal"])

    # ---- Browser ----
    headless: bool = _DEFAULTS["headless"]
    user_agent: str = _DEFAULTS["user_agent"]

    # ---- Planning ----
    duration_s: float = _DEFAULTS["duration_s"]
    plan_pages: int = _DEFAULTS["plan_pages"]
    style: str = _DEFAULTS["style"]
    include_narrative: bool = _DEFAULTS["include_narrative"]
    min_page_duration_ms: int = _DEFAULTS["min_page_duration_ms"]
    max_page_duration_ms: int = _DEFAULTS["max_page_duration_ms"]
    transition_time_ms: int = _DEFAULTS["transition_time_ms"]

    # ---- Oracle ----
    use_ai: bool = _DEFAULTS["use_ai"]
    ai_model: str = _DEFAULTS["ai_model"]
    ai_timeout_s: float = _DEFAULTS["ai_timeout_s"]

    # ---- Output paths (None = skip) ----
    output_json: Optional[str] = _DEFAULTS["output_json"]
    output_mermaid: Optional[str] = _DEFAULTS["output_mermaid"]

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_cli_args(cls, args) -> "TourRunConfig":
        """Build config from an argparse Namespace (``__main__.py``)."""
        strategy = getattr(args, "strategy", None) or _DEFAULTS["strategy"]
        use_ai = bool(getattr(args, "ai", False)) or strategy == "ai-guided"
        return cls(
            max_pages=getattr(args, "pages", _DEFAULTS["max_pages"]),
            max_depth=getattr(args, "depth", _DEFAULTS["max_depth"]),
            timeout_seconds=getattr(args, "timeout", _DEFAULTS["timeout_seconds"]),
            mode=getattr(args, "mode", None) or _DEFAULTS["mode"],
            strategy=strategy,
            focus=getattr(args, "focus", None) or _DEFAULTS["focus"],
            headless=not getattr(args, "headed", False),
            duration_s=getattr(args, "duration", _DEFAULTS["duration_s"]),
            plan_pages=getattr(args, "plan_pages", _DEFAULTS["plan_pages"]),
            style=getattr(args, "style", None) or _DEFAULTS["style"],
            include_narrative=not getattr(args, "no_narrative", False),
            use_ai=use_ai,
            ai_model=os.getenv("SITETOUR_AI_MODEL", _DEFAULTS["ai_model"]),
            output_json=getattr(args, "output_json", None),
            output_mermaid=getattr(args, "output_mermaid", None),
        )

    # -----------------------------------------------------------------------
    # Converters to component config objects
    # -----------------------------------------------------------------------
    def to_browser_config(self):
        """Return a ``BrowserConfig`` populated from this run config."""
        from .browser import BrowserConfig
        return BrowserConfig(
            headless=self.headless,
            user_agent=self.user_agent,
        )

    def to_explorer_config(self):
        """Return an ``ExplorerConfig`` populated from this run config."""
        from .site_explorer import ExplorerConfig
        return ExplorerConfig(
            max_pages=self.max_pages,
            max_depth=self.max_depth,
            mode=self.mode,
            strategy=self.strategy,
            focus=self.focus,
            timeout_ms=self.timeout_seconds * 1000,
            click_timeout_ms=self.click_timeout_ms,
            settle_timeout_ms=self.settle_timeout_ms,
            state_change_timeout_ms=self.state_change_timeout_ms,
            back_timeout_ms=self.back_timeout_ms,
            max_links_per_page=self.max_links_per_page,
            link_filters=list(self.link_filters),
            oracle_timeout_s=self.ai_timeout_s,
        )

    def to_plan_options(self):
        """Return ``PlanOptions`` populated from this run config."""
        from .demo_plan import PlanOptions
        return PlanOptions(
            duration_s=self.duration_s,
            max_pages=self.plan_pages,
            style=self.style,
            focus=self.focus,
            include_narrative=self.include_narrative,
            min_page_duration_ms=self.min_page_duration_ms,
            max_page_duration_ms=self.max_page_duration_ms,
            transition_time_ms=self.transition_time_ms,
        )

    def build_oracle(self):
        """Ranking oracle for this run, or ``None`` when AI is off or unconfigured."""
        if not self.use_ai:
            return None
        from .oracle import create_oracle_from_env
        return create_oracle_from_env(model=self.ai_model, timeout_s=self.ai_timeout_s)

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self, url: str) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("SITETOUR RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  URL:              {url}")
        logger.info(f"  Mode:             {self.mode}")
        logger.info(f"  Strategy:         {self.strategy} (focus: {self.focus})")
        logger.info(f"  Max Pages:        {self.max_pages}")
        logger.info(f"  Max Depth:        {self.max_depth}")
        logger.info(f"  Timeout:          {self.timeout_seconds}s per navigation")
        logger.info(f"  AI Ranking:       {'on (' + self.ai_model + ')' if self.use_ai else 'off'}")
        logger.info(f"  Plan:             {self.duration_s}s, {self.plan_pages} pages, {self.style}")
        logger.info(
            f"  Page Bounds:      {self.min_page_duration_ms}-{self.max_page_duration_ms}ms "
            f"(+{self.transition_time_ms}ms transitions)"
        )
        if self.output_json:
            logger.info(f"  JSON Output:      {self.output_json}")
        if self.output_mermaid:
            logger.info(f"  Mermaid Output:   {self.output_mermaid}")
        logger.info("=" * 60)
