"""
Tests for link_extractor.py: normalization, the static pass and click discovery.
"""

import asyncio

import pytest
from bs4 import BeautifulSoup

from sitescan.constants import ANCHOR_SELECTOR
from sitescan.link_extractor import LinkExtractor, filter_hrefs, normalize_candidate
from sitescan.scope_filter import ScopePolicy
from sitescan.state import CrawlState, Frontier, PageInfo

from fakes import FakeElement, FakeFrame, FakePage, FakeSite, SitePage

BASE = "https://example.com/docs/"


def make_extractor(safe_mode=False, is_disallowed=None, blacklisted=None):
    frontier = Frontier(CrawlState(), max_requests=100)
    scope = ScopePolicy("https://example.com/", "same-domain", blacklisted or [])
    extractor = LinkExtractor(
        frontier, scope,
        is_disallowed=is_disallowed,
        safe_mode=safe_mode,
        max_clicks=10,
        click_delay_s=0,
    )
    return extractor, frontier


def pending_urls(frontier):
    return [r.url for r in frontier.drain()]


class TestNormalizeCandidate:

    @pytest.mark.parametrize("href,expected", [
        ("guide", "https://example.com/docs/guide"),
        ("../blog/", "https://example.com/blog/"),
        ("/about#team", "https://example.com/about"),
        ("https://example.com/p?utm_source=x&id=3", "https://example.com/p?id=3"),
        ("//cdn.example.com/a", "https://cdn.example.com/a"),
    ])
    def test_resolved(self, href, expected):
        assert normalize_candidate(href, BASE) == expected

    @pytest.mark.parametrize("href", [
        "", "   ", "#top", "mailto:me@example.com", "tel:+100", "javascript:void(0)",
        "data:text/html,hi", "ftp://example.com/file",
    ])
    def test_rejected(self, href):
        assert normalize_candidate(href, BASE) is None


class TestFilterHrefs:

    def test_scope_and_duplicates(self):
        scope = ScopePolicy("https://example.com/", "same-domain")
        found = filter_hrefs(
            ["/a", "/a#x", "https://blog.example.com/post", "https://elsewhere.org/"],
            BASE, scope,
        )
        assert [r.url for r in found] == ["https://example.com/a", "https://blog.example.com/post"]

    def test_same_hostname_drops_subdomains(self):
        scope = ScopePolicy("https://example.com/", "same-hostname")
        found = filter_hrefs(["https://blog.example.com/post", "/a"], BASE, scope)
        assert [r.url for r in found] == ["https://example.com/a"]

    def test_pdf_links_skip_navigation(self):
        scope = ScopePolicy("https://example.com/", "same-domain")
        found = filter_hrefs(["/manual.pdf", "/page"], BASE, scope)
        assert [r.skip_navigation for r in found] == [True, False]

    def test_robots_and_exclusions(self):
        scope = ScopePolicy("https://example.com/", "same-domain", ["/drafts/"])
        found = filter_hrefs(
            ["/drafts/x", "/admin/panel", "/ok"], BASE, scope,
            is_disallowed=lambda url: "/admin/" in url,
        )
        assert [r.url for r in found] == ["https://example.com/ok"]


class TestStaticPass:

    def test_anchors_enqueued_once(self):
        site = FakeSite({BASE: SitePage(hrefs=["intro", "intro#part-2", "/", "https://other.net/"])})
        extractor, frontier = make_extractor(safe_mode=True)

        async def run():
            page = FakePage(site)
            await page.goto(BASE)
            return await extractor.enqueue_from_page(page)

        asyncio.run(run())
        assert pending_urls(frontier) == ["https://example.com/docs/intro", "https://example.com/"]

    def test_links_with_fragments_are_collected(self):
        html = (
            '<a href="/about#team">Team</a>'
            '<a href="#top">Top</a>'
            '<a href="mailto:info@example.com">Mail</a>'
            '<a>No target</a>'
        )
        hrefs = [a["href"] for a in BeautifulSoup(html, "lxml").select(ANCHOR_SELECTOR)]
        assert hrefs == ["/about#team"]

        site = FakeSite({BASE: SitePage(hrefs=hrefs)})
        extractor, frontier = make_extractor(safe_mode=True)

        async def run():
            page = FakePage(site)
            await page.goto(BASE)
            await extractor.extract_static(page)

        asyncio.run(run())
        assert pending_urls(frontier) == ["https://example.com/about"]

    def test_already_classified_pages_not_requeued(self):
        site = FakeSite({BASE: SitePage(hrefs=["/done", "/todo"])})
        extractor, frontier = make_extractor(safe_mode=True)
        frontier.state.commit_scan(PageInfo(url="https://example.com/done"))

        async def run():
            page = FakePage(site)
            await page.goto(BASE)
            await extractor.extract_static(page)

        asyncio.run(run())
        assert pending_urls(frontier) == ["https://example.com/todo"]


class TestClickDiscovery:

    def test_targets_clicks_and_failures(self):
        site = FakeSite({BASE: SitePage()})
        extractor, frontier = make_extractor()
        page = FakePage(site)
        hidden = FakeElement(target="/hidden", visible=False)
        spa = FakeElement(on_click=lambda: page.emit("framenavigated", FakeFrame("https://example.com/app/route")))
        page.elements = [
            FakeElement(target="/from-data-path"),
            FakeElement(fails=True),
            spa,
            hidden,
        ]

        async def run():
            await page.goto(BASE)
            return await extractor.enqueue_from_page(page)

        result = asyncio.run(run())
        assert result is page
        assert spa.clicked
        assert not hidden.clicked
        assert pending_urls(frontier) == [
            "https://example.com/from-data-path",
            "https://example.com/app/route",
        ]

    def test_popup_back_to_same_page_is_closed(self):
        site = FakeSite({BASE: SitePage()})
        extractor, frontier = make_extractor()
        page = FakePage(site)
        popup = FakePage(site)
        popup.url = BASE
        page.elements = [FakeElement(on_click=lambda: page.emit("popup", popup))]

        async def run():
            await page.goto(BASE)
            await extractor.discover_by_clicking(page)
            await asyncio.sleep(0)

        asyncio.run(run())
        assert popup.closed
        assert frontier.pending == 0

    def test_page_reopened_after_navigating_away(self):
        site = FakeSite({BASE: SitePage()})
        extractor, frontier = make_extractor()
        page = FakePage(site)

        def navigate_away():
            page.url = "https://example.com/somewhere-else"

        page.elements = [FakeElement(on_click=navigate_away), FakeElement(target="/never-reached")]

        async def run():
            await page.goto(BASE)
            return await extractor.discover_by_clicking(page)

        result = asyncio.run(run())
        assert page.closed
        assert result is not page
        assert result.url == BASE
        assert frontier.pending == 0

    def test_safe_mode_never_clicks(self):
        site = FakeSite({BASE: SitePage()})
        extractor, _ = make_extractor(safe_mode=True)
        page = FakePage(site)
        element = FakeElement()
        page.elements = [element]

        async def run():
            await page.goto(BASE)
            await extractor.enqueue_from_page(page)

        asyncio.run(run())
        assert not element.clicked
