"""
Tests for sitemap.py: format detection, recursion, ranking and failure isolation.
"""

from datetime import datetime, timezone

from bs4 import BeautifulSoup

from sitescan import sitemap as sitemap_module
from sitescan.sitemap import (
    SitemapResolver,
    SitemapType,
    classify_root,
    closeness,
    find_sitemap,
    parse_date,
)

from fakes import FakeHttpResponse, fake_get

NS = "http://www.sitemaps.org/schemas/sitemap/0.9"


def urlset(*entries):
    body = "".join(
        f"<url><loc>{loc}</loc>" + (f"<lastmod>{lastmod}</lastmod>" if lastmod else "") + "</url>"
        for loc, lastmod in entries
    )
    return f'<?xml version="1.0" encoding="UTF-8"?><urlset xmlns="{NS}">{body}</urlset>'


def sitemapindex(*locs):
    body = "".join(f"<sitemap><loc>{loc}</loc></sitemap>" for loc in locs)
    return f'<?xml version="1.0" encoding="UTF-8"?><sitemapindex xmlns="{NS}">{body}</sitemapindex>'


RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel>
  <item><link>https://example.com/news/1</link><pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate></item>
  <item><link>https://example.com/news/2</link><pubDate>Tue, 02 Jan 2024 10:00:00 GMT</pubDate></item>
</channel></rss>"""

ATOM = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <entry><link href="https://example.com/post/a"/><published>2024-03-01T00:00:00Z</published></entry>
  <entry><link href="https://example.com/post/b"/><published>2024-04-01T00:00:00Z</published></entry>
</feed>"""


def _serve(monkeypatch, routes, calls=None):
    monkeypatch.setattr(sitemap_module.requests, "get", fake_get(routes, calls))


def _urls(requests_):
    return [r.url for r in requests_]


class TestClassifyRoot:

    def _root(self, xml):
        return BeautifulSoup(xml, "xml").find()

    def test_urlset(self):
        assert classify_root(self._root(urlset(("https://e.com/", None)))) is SitemapType.XML

    def test_index(self):
        assert classify_root(self._root(sitemapindex("https://e.com/a.xml"))) is SitemapType.XML_INDEX

    def test_rss_and_atom(self):
        assert classify_root(self._root(RSS)) is SitemapType.RSS
        assert classify_root(self._root(ATOM)) is SitemapType.ATOM

    def test_urlset_without_namespace_is_unknown(self):
        assert classify_root(self._root("<urlset><url><loc>x</loc></url></urlset>")) is SitemapType.UNKNOWN

    def test_missing_root(self):
        assert classify_root(None) is SitemapType.UNKNOWN


class TestResolveFormats:

    def test_urlset_in_document_order(self, monkeypatch):
        _serve(monkeypatch, {"https://example.com/sitemap.xml": FakeHttpResponse(text=urlset(
            ("https://example.com/b", None), ("https://example.com/a", None),
        ))})
        found = SitemapResolver().resolve("https://example.com/sitemap.xml", max_links=10)
        assert _urls(found) == ["https://example.com/b", "https://example.com/a"]

    def test_rss(self, monkeypatch):
        _serve(monkeypatch, {"https://example.com/feed": FakeHttpResponse(text=RSS)})
        found = SitemapResolver().resolve("https://example.com/feed", max_links=10)
        assert _urls(found) == ["https://example.com/news/1", "https://example.com/news/2"]

    def test_atom(self, monkeypatch):
        _serve(monkeypatch, {"https://example.com/atom.xml": FakeHttpResponse(text=ATOM)})
        found = SitemapResolver().resolve("https://example.com/atom.xml", max_links=10)
        assert _urls(found) == ["https://example.com/post/a", "https://example.com/post/b"]

    def test_plain_text_list(self, monkeypatch):
        text = "https://example.com/one\nnot a url\nhttps://example.com/two\n"
        _serve(monkeypatch, {"https://example.com/sitemap.txt": FakeHttpResponse(text=text)})
        found = SitemapResolver().resolve("https://example.com/sitemap.txt", max_links=10)
        assert _urls(found) == ["https://example.com/one", "https://example.com/two"]

    def test_truncated_to_max_links(self, monkeypatch):
        entries = [(f"https://example.com/{i}", None) for i in range(20)]
        _serve(monkeypatch, {"https://example.com/sitemap.xml": FakeHttpResponse(text=urlset(*entries))})
        found = SitemapResolver().resolve("https://example.com/sitemap.xml", max_links=5)
        assert len(found) == 5

    def test_pdf_entries_skip_navigation(self, monkeypatch):
        _serve(monkeypatch, {"https://example.com/sitemap.xml": FakeHttpResponse(text=urlset(
            ("https://example.com/guide.pdf", None), ("https://example.com/page", None),
        ))})
        found = SitemapResolver().resolve("https://example.com/sitemap.xml", max_links=10)
        assert [r.skip_navigation for r in found] == [True, False]

    def test_pdf_source_emitted_directly(self, monkeypatch):
        calls = []
        _serve(monkeypatch, {}, calls)
        found = SitemapResolver().resolve("https://example.com/files/manual.pdf", max_links=10)
        assert _urls(found) == ["https://example.com/files/manual.pdf"]
        assert found[0].skip_navigation
        assert calls == []

    def test_robots_disallowed_entries_dropped(self, monkeypatch):
        _serve(monkeypatch, {"https://example.com/sitemap.xml": FakeHttpResponse(text=urlset(
            ("https://example.com/private/x", None), ("https://example.com/ok", None),
        ))})
        resolver = SitemapResolver(is_disallowed=lambda url: "/private/" in url)
        found = resolver.resolve("https://example.com/sitemap.xml", max_links=10)
        assert _urls(found) == ["https://example.com/ok"]

    def test_local_file(self, tmp_path):
        path = tmp_path / "sitemap.xml"
        path.write_text(urlset(("https://example.com/a", None), (str(tmp_path / "page.html"), None)))
        found = SitemapResolver().resolve(str(path), max_links=10)
        assert _urls(found)[0] == "https://example.com/a"
        assert _urls(found)[1].startswith("file://")

    def test_missing_local_file_yields_nothing(self, tmp_path):
        assert SitemapResolver().resolve(str(tmp_path / "nope.xml"), max_links=10) == []


class TestResolveIndex:

    def test_index_with_failing_child_keeps_surviving_child(self, monkeypatch):
        _serve(monkeypatch, {
            "https://example.com/sitemap.xml": FakeHttpResponse(text=sitemapindex(
                "https://example.com/sitemap-pages.xml",
                "https://example.com/sitemap-missing.xml",
            )),
            "https://example.com/sitemap-pages.xml": FakeHttpResponse(text=urlset(
                ("https://example.com/", None),
                ("https://example.com/about", None),
                ("https://example.com/contact", None),
            )),
        })
        found = SitemapResolver().resolve("https://example.com/sitemap.xml", max_links=100)
        assert _urls(found) == [
            "https://example.com/",
            "https://example.com/about",
            "https://example.com/contact",
        ]

    def test_self_referencing_index_terminates(self, monkeypatch):
        calls = []
        _serve(monkeypatch, {
            "https://example.com/a.xml": FakeHttpResponse(text=sitemapindex(
                "https://example.com/a.xml", "https://example.com/b.xml", "https://example.com/leaf.xml",
            )),
            "https://example.com/b.xml": FakeHttpResponse(text=sitemapindex("https://example.com/a.xml")),
            "https://example.com/leaf.xml": FakeHttpResponse(text=urlset(("https://example.com/page", None))),
        }, calls)
        found = SitemapResolver().resolve("https://example.com/a.xml", max_links=100)
        assert _urls(found) == ["https://example.com/page"]
        assert sorted(calls) == sorted(set(calls))

    def test_non_sitemap_loc_in_index_is_a_page(self, monkeypatch):
        _serve(monkeypatch, {"https://example.com/sitemap.xml": FakeHttpResponse(
            text=sitemapindex("https://example.com/landing"),
        )})
        found = SitemapResolver().resolve("https://example.com/sitemap.xml", max_links=10)
        assert _urls(found) == ["https://example.com/landing"]

    def test_resolver_is_reusable(self, monkeypatch):
        _serve(monkeypatch, {"https://example.com/s.xml": FakeHttpResponse(text=urlset(("https://example.com/x", None)))})
        resolver = SitemapResolver()
        assert len(resolver.resolve("https://example.com/s.xml", max_links=10)) == 1
        assert len(resolver.resolve("https://example.com/s.xml", max_links=10)) == 1


class TestRanking:

    def test_closeness_scores(self):
        seed = "https://www.example.com/products/"
        assert closeness("http://example.com/products", seed) == 2
        assert closeness("https://example.com/products/shoes", seed) == 1
        assert closeness("https://example.com/about", seed) == 0

    def test_rank_by_closeness_then_recency(self, monkeypatch):
        _serve(monkeypatch, {"https://example.com/sitemap.xml": FakeHttpResponse(text=urlset(
            ("https://example.com/about", "2024-06-01"),
            ("https://example.com/products/shoes", "2023-01-01"),
            ("https://example.com/products/hats", "2024-01-01"),
            ("https://example.com/products", "2020-01-01"),
        ))})
        found = SitemapResolver().resolve(
            "https://example.com/sitemap.xml", max_links=10,
            rank_by_seed_closeness=True, seed_url="https://example.com/products",
        )
        assert _urls(found) == [
            "https://example.com/products",
            "https://example.com/products/hats",
            "https://example.com/products/shoes",
            "https://example.com/about",
        ]

    def test_ranking_applies_before_truncation(self, monkeypatch):
        entries = [(f"https://example.com/misc/{i}", None) for i in range(5)]
        entries.append(("https://example.com/target", None))
        _serve(monkeypatch, {"https://example.com/sitemap.xml": FakeHttpResponse(text=urlset(*entries))})
        found = SitemapResolver().resolve(
            "https://example.com/sitemap.xml", max_links=1,
            rank_by_seed_closeness=True, seed_url="https://example.com/target",
        )
        assert _urls(found) == ["https://example.com/target"]

    def test_parse_date_formats(self):
        assert parse_date("2024-01-02") == datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert parse_date("Tue, 02 Jan 2024 10:00:00 GMT").day == 2
        assert parse_date("garbage") is None
        assert parse_date("") is None


class TestFindSitemap:

    def test_first_answering_path_wins(self, monkeypatch):
        calls = []
        _serve(monkeypatch, {
            "https://example.com/sitemap_index.xml": FakeHttpResponse(text=sitemapindex()),
        }, calls)
        assert find_sitemap("https://example.com/deep/page") == "https://example.com/sitemap_index.xml"
        assert calls[0] == "https://example.com/sitemap.xml"

    def test_robots_candidates_tried_first(self, monkeypatch):
        _serve(monkeypatch, {
            "https://example.com/custom-map.xml": FakeHttpResponse(text=urlset()),
            "https://example.com/sitemap.xml": FakeHttpResponse(text=urlset()),
        })
        found = find_sitemap("https://example.com/", candidates=["https://example.com/custom-map.xml"])
        assert found == "https://example.com/custom-map.xml"

    def test_none_when_nothing_answers(self, monkeypatch):
        _serve(monkeypatch, {})
        assert find_sitemap("https://example.com/") is None
