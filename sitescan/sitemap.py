"""
Sitemap Resolver
=================
Turns a sitemap source (URL or local file) into a bounded, ordered list of
``Request`` objects.

Supported inputs:
- sitemap.org ``urlset`` and ``sitemapindex`` XML
- RSS 2.0 and Atom feeds
- anything else (plain-text URL lists, broken XML): every line that is an
  ``http(s)://`` URL is taken as-is

Sitemap indices are followed recursively; a ``visited`` set keyed by URL
stops cycles (an index that lists itself, or two indices that list each
other).  A branch that fails to fetch or parse yields nothing and is logged;
it never aborts the whole resolve.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

import requests
from bs4 import BeautifulSoup

from .constants import DEFAULT_USER_AGENT, SITEMAP_NAMESPACE_FRAGMENT, SITEMAP_PATHS
from .state import Request
from .utils import (
    convert_local_file_to_path,
    convert_path_to_local_file,
    home_url,
    is_file_path,
    is_url_pdf,
    is_valid_http_url,
)

logger = logging.getLogger(__name__)

_NON_STANDARD_URL_RE = re.compile(r"^(?:http|https)://.+$", re.IGNORECASE | re.MULTILINE)


class SitemapType(Enum):
    XML = "xml"
    XML_INDEX = "xmlIndex"
    RSS = "rss"
    ATOM = "atom"
    UNKNOWN = "unknown"


@dataclass
class SitemapEntry:
    url: str
    last_modified: Optional[datetime] = None


def classify_root(root) -> SitemapType:
    """Map a parsed root element (tag name + namespace) onto a ``SitemapType``."""
    if root is None:
        return SitemapType.UNKNOWN
    xmlns = root.get("xmlns") or getattr(root, "namespace", None) or ""
    name = root.name
    if name == "urlset" and SITEMAP_NAMESPACE_FRAGMENT in xmlns:
        return SitemapType.XML
    if name == "sitemapindex" and SITEMAP_NAMESPACE_FRAGMENT in xmlns:
        return SitemapType.XML_INDEX
    if name == "rss":
        return SitemapType.RSS
    if name == "feed":
        return SitemapType.ATOM
    return SitemapType.UNKNOWN


def parse_date(value: str) -> Optional[datetime]:
    """ISO-8601 (``lastmod``/``published``) or RFC-822 (``pubDate``) to an aware datetime."""
    value = (value or "").strip()
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _strip_scheme_and_www(url: str) -> str:
    return re.sub(r"^(https?://)?(www\.)?", "", url)


def closeness(candidate_url: str, seed_url: str) -> int:
    """2 = same host+path as the seed, 1 = under the seed's path, 0 = otherwise."""
    cand = _strip_scheme_and_www(candidate_url).rstrip("/")
    seed = _strip_scheme_and_www(seed_url).rstrip("/")
    if cand == seed:
        return 2
    if cand.startswith(seed):
        return 1
    return 0


def rank_entries(entries: List[SitemapEntry], seed_url: str) -> List[SitemapEntry]:
    """Closest to the seed first; ties broken by most recent modification."""
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(
        entries,
        key=lambda e: (closeness(e.url, seed_url), e.last_modified or epoch),
        reverse=True,
    )


# ---------------------------------------------------------------------------
# Entry extraction (one function per feed format)
# ---------------------------------------------------------------------------

def _text_entries(soup, section: str, link: str, date: str) -> List[SitemapEntry]:
    entries = []
    for node in soup.find_all(section):
        link_el = node.find(link)
        url = link_el.get_text(strip=True) if link_el else ""
        date_el = node.find(date)
        entries.append(SitemapEntry(url, parse_date(date_el.get_text() if date_el else "")))
    return entries


def _xml_entries(soup) -> List[SitemapEntry]:
    return _text_entries(soup, "url", "loc", "lastmod")


def _rss_entries(soup) -> List[SitemapEntry]:
    return _text_entries(soup, "item", "link", "pubDate")


def _atom_entries(soup) -> List[SitemapEntry]:
    entries = []
    for node in soup.find_all("entry"):
        link_el = node.find("link")
        url = (link_el.get("href") or link_el.get_text(strip=True)) if link_el else ""
        date_el = node.find("published")
        entries.append(SitemapEntry(url, parse_date(date_el.get_text() if date_el else "")))
    return entries


_ENTRY_EXTRACTORS: Dict[SitemapType, Callable] = {
    SitemapType.XML: _xml_entries,
    SitemapType.RSS: _rss_entries,
    SitemapType.ATOM: _atom_entries,
}


class SitemapResolver:
    """
    Recursive sitemap reader.

    Usage::

        resolver = SitemapResolver(is_disallowed=robots.is_disallowed)
        requests_ = resolver.resolve("https://example.com/sitemap.xml", max_links=100)
    """

    def __init__(
        self,
        extra_http_headers: Optional[Dict[str, str]] = None,
        is_disallowed: Optional[Callable[[str], bool]] = None,
        user_agent: str = None,
        timeout: int = 60,
        allow_local_files: bool = True,
    ):
        self.extra_http_headers = dict(extra_http_headers or {})
        self.is_disallowed = is_disallowed or (lambda url: False)
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.timeout = timeout
        self.allow_local_files = allow_local_files

        # per-resolve state
        self._visited: Set[str] = set()
        self._urls: Dict[str, Request] = {}
        self._max_links = 0
        self._seed_url: Optional[str] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(
        self,
        sitemap_url: str,
        max_links: int,
        rank_by_seed_closeness: bool = False,
        seed_url: Optional[str] = None,
    ) -> List[Request]:
        """
        Resolve *sitemap_url* into at most *max_links* requests.

        With *rank_by_seed_closeness* (intelligent mode) the entries of each
        leaf sitemap are ranked by closeness to *seed_url* (the sitemap's home
        URL when not given) before truncation; otherwise document order is kept.
        """
        self._visited = set()
        self._urls = {}
        self._max_links = max_links
        self._seed_url = None
        if rank_by_seed_closeness:
            self._seed_url = seed_url or home_url(sitemap_url)

        try:
            self._fetch_urls(sitemap_url)
        except Exception as e:
            logger.error(f"[SITEMAP] Failed to resolve {sitemap_url}: {e}")

        resolved = list(self._urls.values())[:max_links]
        logger.info(f"[SITEMAP] Resolved {len(resolved)} URLs from {sitemap_url}")
        return resolved

    async def resolve_async(self, sitemap_url: str, max_links: int,
                            rank_by_seed_closeness: bool = False,
                            seed_url: Optional[str] = None) -> List[Request]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self.resolve, sitemap_url, max_links, rank_by_seed_closeness, seed_url
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _limit_reached(self) -> bool:
        return len(self._urls) >= self._max_links

    def _add_url(self, url: str) -> None:
        url = (url or "").strip()
        if not url or self._limit_reached():
            return
        if self.is_disallowed(url):
            return
        url = convert_path_to_local_file(url)
        self._urls[url] = Request(url=url, skip_navigation=is_url_pdf(url))

    def _fetch(self, url: str) -> Tuple[Optional[str], str]:
        """Return ``(text, content_type)``; ``(None, "")`` when unavailable."""
        if is_file_path(url):
            path = convert_local_file_to_path(url)
            if not self.allow_local_files or not os.path.exists(path):
                logger.warning(f"[SITEMAP] Local file not available: {path}")
                return None, ""
            with open(path, encoding="utf-8", errors="replace") as fh:
                return fh.read(), ""

        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/xml, text/xml, text/plain, */*",
            **self.extra_http_headers,
        }
        response = requests.get(url, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.text, (response.headers.get("content-type") or "").lower()

    def _fetch_urls(self, url: str) -> None:
        if url in self._visited:
            return
        self._visited.add(url)

        if not is_file_path(url) and not is_valid_http_url(url):
            logger.warning(f"[SITEMAP] Invalid URL/file path: {url}")
            return

        if is_url_pdf(url):
            self._add_url(url)
            return

        try:
            data, content_type = self._fetch(url)
        except Exception as e:
            logger.warning(f"[SITEMAP] Could not fetch {url}: {e}")
            return
        if data is None:
            return
        if "application/pdf" in content_type:
            self._add_url(url)
            return

        try:
            soup = BeautifulSoup(data, "xml")
            root = soup.find()
        except Exception as e:
            logger.warning(f"[SITEMAP] Could not parse {url}: {e}")
            root = None

        if root is None:
            self._process_non_standard(data)
            return

        sitemap_type = classify_root(root)
        logger.info(f"[SITEMAP] {url} is a {sitemap_type.value} sitemap")

        if sitemap_type is SitemapType.XML_INDEX:
            self._process_index(soup)
        elif sitemap_type in _ENTRY_EXTRACTORS:
            self._process_entries(_ENTRY_EXTRACTORS[sitemap_type](soup))
        else:
            self._process_non_standard(data)

    def _process_index(self, soup) -> None:
        for loc in soup.find_all("loc"):
            if self._limit_reached():
                break
            child = loc.get_text(strip=True)
            if child.endswith(".xml") or child.endswith(".txt"):
                self._fetch_urls(child)
            else:
                self._add_url(child)

    def _process_entries(self, entries: List[SitemapEntry]) -> None:
        if self._seed_url:
            entries = rank_entries(entries, self._seed_url)
        for entry in entries[:self._max_links]:
            self._add_url(entry.url)

    def _process_non_standard(self, data: str) -> None:
        found = [m.group(0).strip() for m in _NON_STANDARD_URL_RE.finditer(data or "")]
        for url in found[:self._max_links]:
            self._add_url(url)


def find_sitemap(
    url: str,
    extra_http_headers: Optional[Dict[str, str]] = None,
    candidates: Optional[List[str]] = None,
    timeout: int = 15,
) -> Optional[str]:
    """
    Probe well-known sitemap locations under *url*'s home URL.

    *candidates* (for example ``Sitemap:`` lines from robots.txt) are tried
    before the built-in paths.  Returns the first URL answering 2xx, or None.
    """
    base = home_url(url)
    probes = list(candidates or []) + [base + path for path in SITEMAP_PATHS]
    headers = {"User-Agent": DEFAULT_USER_AGENT, **(extra_http_headers or {})}

    for probe in probes:
        try:
            response = requests.get(probe, headers=headers, timeout=timeout, allow_redirects=True)
        except requests.RequestException as e:
            logger.debug(f"[SITEMAP] Probe failed for {probe}: {e}")
            continue
        if response.ok:
            logger.info(f"[SITEMAP] Sitemap found at {probe}")
            return probe
    logger.info(f"[SITEMAP] No sitemap found under {base}")
    return None
