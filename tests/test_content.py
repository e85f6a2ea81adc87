"""
Tests for content.py: analysis parsing and repeated-chrome detection.
"""

import asyncio

from sitetour.content import (
    Bounds,
    ContentDeduplicator,
    ContentSection,
    PageAnalysis,
)

HOME = "https://site.test/"

NAV_FP = {"structure": "NAV>UL>LI>A>SPAN", "textSample": "Home|Pricing", "linkCount": 5,
          "hasLogo": True, "hasNav": True, "hasFooter": False, "hasSocial": False}
HERO_FP = {"structure": "SECTION>DIV>H1", "textSample": "Ship faster with Acme", "linkCount": 1,
           "hasLogo": False, "hasNav": False, "hasFooter": False, "hasSocial": False}


class TestAnalysisParsing:

    def test_camel_case(self):
        analysis = PageAnalysis.from_dict({
            "title": "Home",
            "sections": [{
                "type": "hero",
                "bounds": {"x": 0, "y": 120, "width": 1200, "height": 500},
                "demoScore": 85,
                "suggestedDuration": 5,
                "keyElements": [{"selector": "#cta", "x": 10, "y": 20, "priority": 90}],
            }],
            "interactiveElements": [{"selector": "button"}],
        })
        section = analysis.sections[0]
        assert section.demo_score == 85
        assert section.bounds.y == 120
        assert section.key_elements[0].priority == 90
        assert len(analysis.interactive_elements) == 1
        assert analysis.title == "Home"

    def test_snake_case_and_defaults(self):
        analysis = PageAnalysis.from_dict({"sections": [{"demo_score": 20, "skip_reason": "legal"}, "junk"]})
        assert len(analysis.sections) == 1
        section = analysis.sections[0]
        assert section.type == "content"
        assert section.bounds == Bounds()
        assert not section.should_include

    def test_empty(self):
        analysis = PageAnalysis.from_dict(None)
        assert analysis.sections == []
        assert analysis.average_demo_score == 0.0

    def test_average_score(self):
        analysis = PageAnalysis(sections=[ContentSection(demo_score=40), ContentSection(demo_score=80)])
        assert analysis.average_demo_score == 60

    def test_should_include_threshold(self):
        assert ContentSection(demo_score=30).should_include
        assert not ContentSection(demo_score=29).should_include


class TestFingerprints:

    def test_identical_fingerprints(self):
        fp = ContentDeduplicator.make_fingerprint(NAV_FP)
        assert ContentDeduplicator.compare_fingerprints(fp, fp) == 1.0

    def test_different_sections(self):
        a = ContentDeduplicator.make_fingerprint(NAV_FP)
        b = ContentDeduplicator.make_fingerprint(HERO_FP)
        assert ContentDeduplicator.compare_fingerprints(a, b) < 0.8

    def test_unparsable(self):
        assert ContentDeduplicator.compare_fingerprints("{", "{}") == 0.0

    def test_seen_and_repetitive(self):
        dedup = ContentDeduplicator()
        fp = dedup.make_fingerprint(NAV_FP)
        assert not dedup.is_repetitive(fp)
        dedup.mark_as_seen(fp, url=HOME)
        assert dedup.seen_count(fp) == 1
        similar = dedup.make_fingerprint({**NAV_FP, "linkCount": 6})
        assert dedup.is_repetitive(similar)
        dedup.reset()
        assert dedup.seen_count(fp) == 0

    def test_unique_content_across_pages(self, make_browser):
        site = {HOME: {"title": "Home", "links": []}}
        browser = make_browser(site, fingerprints=[NAV_FP, HERO_FP, NAV_FP, HERO_FP])
        dedup = ContentDeduplicator()
        sections = [ContentSection(type="nav"), ContentSection(type="hero")]

        async def scenario():
            await browser.navigate(HOME)
            first = await dedup.get_unique_content(browser, sections, url=HOME)
            second = await dedup.get_unique_content(browser, sections, url=HOME + "pricing")
            return first, second

        first, second = asyncio.run(scenario())
        assert len(first) == 2
        assert second == []

    def test_fingerprint_failure_keeps_section(self, make_browser):
        browser = make_browser({HOME: {"title": "Home"}})
        dedup = ContentDeduplicator()

        async def scenario():
            await browser.navigate(HOME)
            return await dedup.get_unique_content(browser, [ContentSection(type="hero")])

        assert len(asyncio.run(scenario())) == 1


class TestChrome:

    def test_header_by_type_and_position(self):
        dedup = ContentDeduplicator()
        assert dedup.is_likely_header(ContentSection(type="nav", bounds=Bounds(y=500)))
        assert dedup.is_likely_header(ContentSection(type="content", bounds=Bounds(y=0, height=80)))
        assert not dedup.is_likely_header(ContentSection(type="hero", bounds=Bounds(y=0, height=600)))

    def test_footer(self):
        dedup = ContentDeduplicator()
        assert dedup.is_likely_footer(ContentSection(type="footer"))
        assert dedup.is_likely_footer(ContentSection(bounds=Bounds(y=1000), headline="© 2024 Acme"))
        assert not dedup.is_likely_footer(ContentSection(bounds=Bounds(y=1000), headline="Contact"))

    def test_strip_chrome(self):
        dedup = ContentDeduplicator()
        sections = [
            ContentSection(type="header", bounds=Bounds(y=0, height=60)),
            ContentSection(type="hero", bounds=Bounds(y=200, height=500)),
            ContentSection(type="footer", bounds=Bounds(y=1000)),
        ]
        assert [s.type for s in dedup.strip_chrome(sections)] == ["hero"]
