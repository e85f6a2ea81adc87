"""
Content Analysis Model
======================
Per-page content analysis consumed by the demo planner, plus the
``ContentDeduplicator`` that keeps repeated page chrome (header, footer,
navigation) out of scoring.

Analyses come from an external analyzer as plain dictionaries::

    {"sections": [{"type", "bounds", "headline", "demoScore",
                   "suggestedDuration", "keyElements"}],
     "interactiveElements": [...]}

``PageAnalysis.from_dict`` accepts both camelCase and snake_case keys
and tolerates missing fields.  Bounds are document pixels.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .browser import BaseBrowser

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT_HEIGHT = 1080
MIN_DEMO_SCORE = 30


def _get(data: Dict[str, Any], *keys, default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class Bounds:
    x: float = 0.0
    y: float = 0.0
    width: float = 100.0
    height: float = 20.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Bounds":
        data = data or {}
        return cls(
            x=float(data.get("x", 0)),
            y=float(data.get("y", 0)),
            width=float(data.get("width", 100)),
            height=float(data.get("height", 20)),
        )


@dataclass
class KeyElement:
    selector: str = ""
    x: Optional[float] = None
    y: Optional[float] = None
    text: str = ""
    priority: int = 50

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyElement":
        return cls(
            selector=str(data.get("selector") or ""),
            x=data.get("x"),
            y=data.get("y"),
            text=str(data.get("text") or ""),
            priority=int(data.get("priority") or 50),
        )


@dataclass
class ContentSection:
    type: str = "content"
    bounds: Bounds = field(default_factory=Bounds)
    headline: str = ""
    demo_score: float = 50
    suggested_duration: float = 3          # seconds
    key_elements: List[KeyElement] = field(default_factory=list)
    skip_reason: Optional[str] = None

    @property
    def should_include(self) -> bool:
        return self.skip_reason is None and self.demo_score >= MIN_DEMO_SCORE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentSection":
        return cls(
            type=str(data.get("type") or "content"),
            bounds=Bounds.from_dict(data.get("bounds")),
            headline=str(data.get("headline") or ""),
            demo_score=float(_get(data, "demoScore", "demo_score", default=50)),
            suggested_duration=float(_get(data, "suggestedDuration", "suggested_duration", default=3)),
            key_elements=[
                KeyElement.from_dict(e)
                for e in _get(data, "keyElements", "key_elements", default=[])
                if isinstance(e, dict)
            ],
            skip_reason=_get(data, "skipReason", "skip_reason"),
        )


@dataclass
class PageAnalysis:
    """Content analysis for one page (keyed by node id or URL)."""
    sections: List[ContentSection] = field(default_factory=list)
    interactive_elements: List[Dict[str, Any]] = field(default_factory=list)
    title: str = ""
    summary: str = ""

    @property
    def average_demo_score(self) -> float:
        if not self.sections:
            return 0.0
        return sum(s.demo_score for s in self.sections) / len(self.sections)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PageAnalysis":
        data = data or {}
        return cls(
            sections=[
                ContentSection.from_dict(s)
                for s in data.get("sections") or []
                if isinstance(s, dict)
            ],
            interactive_elements=list(_get(data, "interactiveElements", "interactive_elements", default=[])),
            title=str(data.get("title") or ""),
            summary=str(data.get("summary") or ""),
        )


# ---------------------------------------------------------------------------
# Section fingerprinting
# ---------------------------------------------------------------------------

FINGERPRINT_JS = """
(b) => {
    const cx = b.x + b.width / 2;
    const cy = b.y + b.height / 2 - window.scrollY;
    const els = document.elementsFromPoint(cx, cy);
    return {
        structure: els.slice(0, 5).map(e => e.tagName).join('>'),
        textSample: els.slice(0, 3).map(e => (e.textContent || '').slice(0, 30).trim()).filter(Boolean).join('|'),
        linkCount: els.filter(e => e.tagName === 'A').length,
        hasLogo: els.some(e => e.matches('img[alt*="logo" i], [class*="logo" i]')),
        hasNav: els.some(e => e.matches('nav, [role="navigation"]')),
        hasFooter: els.some(e => e.matches('footer, [role="contentinfo"]')),
        hasSocial: els.some(e => e.matches('[class*="social"], [href*="twitter"], [href*="facebook"], [href*="linkedin"]')),
    };
}
"""

_FLAGS = ("hasLogo", "hasNav", "hasFooter", "hasSocial")
_WORD_RE = re.compile(r"\W+")


def _words(text: str) -> List[str]:
    return [w for w in _WORD_RE.split((text or "").lower()) if w]


class ContentDeduplicator:
    """
    Remembers section fingerprints across pages so that chrome repeated
    on every page is recognised and skipped.
    """

    def __init__(self, similarity_threshold: float = 0.8, viewport_height: int = DEFAULT_VIEWPORT_HEIGHT):
        self.similarity_threshold = similarity_threshold
        self.viewport_height = viewport_height
        self._seen: Dict[str, Dict[str, Any]] = {}

    @staticmethod
    def make_fingerprint(data: Dict[str, Any]) -> str:
        return json.dumps(data, sort_keys=True, ensure_ascii=False)

    async def fingerprint_section(self, browser: BaseBrowser, bounds: Bounds) -> Optional[str]:
        try:
            raw = await browser.evaluate(FINGERPRINT_JS, {
                "x": bounds.x, "y": bounds.y, "width": bounds.width, "height": bounds.height,
            })
        except Exception as e:
            logger.debug(f"[CONTENT] Fingerprint failed: {e}")
            return None
        return self.make_fingerprint(raw) if isinstance(raw, dict) else None

    @staticmethod
    def compare_fingerprints(fp1: str, fp2: str) -> float:
        """Similarity in ``[0, 1]``; unparsable fingerprints score 0."""
        try:
            a = json.loads(fp1)
            b = json.loads(fp2)
        except (TypeError, ValueError):
            return 0.0

        matches = 0
        total = 2
        if a.get("structure") == b.get("structure"):
            matches += 2
        for flag in _FLAGS:
            total += 1
            if a.get(flag) == b.get(flag):
                matches += 1
        total += 1
        if abs((a.get("linkCount") or 0) - (b.get("linkCount") or 0)) <= 2:
            matches += 1
        if a.get("textSample") and b.get("textSample"):
            total += 1
            a_words = _words(a["textSample"])
            b_words = set(_words(b["textSample"]))
            overlap = sum(1 for w in a_words if w in b_words)
            if overlap >= min(len(a_words), len(b_words)) * 0.5:
                matches += 1
        return matches / total

    def mark_as_seen(self, fingerprint: str, url: str = "", **metadata) -> None:
        entry = self._seen.get(fingerprint)
        if entry:
            entry["count"] += 1
        else:
            self._seen[fingerprint] = {"count": 1, "first_seen": url or "unknown", "metadata": metadata}

    def seen_count(self, fingerprint: str) -> int:
        entry = self._seen.get(fingerprint)
        return entry["count"] if entry else 0

    def is_repetitive(self, fingerprint: str) -> bool:
        if self.seen_count(fingerprint) > 1:
            return True
        return any(
            self.compare_fingerprints(fingerprint, seen) > self.similarity_threshold
            for seen in self._seen
        )

    async def get_unique_content(
        self,
        browser: BaseBrowser,
        sections: List[ContentSection],
        url: str = "",
    ) -> List[ContentSection]:
        """Sections of the current page whose fingerprint is not repetitive."""
        unique = []
        for section in sections:
            fp = await self.fingerprint_section(browser, section.bounds)
            if fp is None:
                unique.append(section)
                continue
            if not self.is_repetitive(fp):
                unique.append(section)
            self.mark_as_seen(fp, url=url, type=section.type)
        return unique

    def _percent_y(self, value: float) -> float:
        return value / self.viewport_height * 100 if self.viewport_height else value

    def is_likely_header(self, section: ContentSection) -> bool:
        return (
            section.type in ("header", "nav")
            or (self._percent_y(section.bounds.y) < 10 and self._percent_y(section.bounds.height) < 15)
        )

    def is_likely_footer(self, section: ContentSection) -> bool:
        return section.type == "footer" or (
            self._percent_y(section.bounds.y) > 80 and "©" in section.headline
        )

    def strip_chrome(self, sections: List[ContentSection]) -> List[ContentSection]:
        """Drop header/footer/nav sections (no browser needed)."""
        return [
            s for s in sections
            if not (self.is_likely_header(s) or self.is_likely_footer(s))
        ]

    def reset(self) -> None:
        self._seen.clear()
