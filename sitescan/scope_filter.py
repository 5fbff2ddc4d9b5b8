"""
Scope Filter
=============
Scope policy and URL identity for the crawl engine.

Two questions are answered here and nowhere else:

- *Is this URL ours?*  ``in_scope(candidate, reference, strategy)`` compares
  either the registrable domain (``same-domain``) or the full hostname
  (``same-hostname``).
- *Have we seen this page?*  ``dedup_key(url)`` produces the normalised key the
  frontier deduplicates on: scheme-agnostic, ``www.``-agnostic, with ``utm_*``
  tracking parameters and fragments removed.

Public API
----------
- ``ScopeStrategy``                         — the two enqueue strategies
- ``in_scope(candidate, reference, strategy)`` — pure scope predicate
- ``are_links_equal(a, b)``                 — host+path equality ignoring scheme/www
- ``dedup_key(url)``                        — frontier identity
- ``strip_tracking_params(url)``            — drop ``utm_*`` query parameters
- ``ScopePolicy``                           — scope + user exclusion patterns bound to a seed
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

logger = logging.getLogger(__name__)


class ScopeStrategy(str, Enum):
    SAME_DOMAIN = "same-domain"
    SAME_HOSTNAME = "same-hostname"

    @classmethod
    def parse(cls, value) -> "ScopeStrategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown scope strategy '{value}' "
                f"(expected one of: {', '.join(s.value for s in cls)})"
            ) from None


# -----------------------------------------------------------------------
# Host helpers
# -----------------------------------------------------------------------

def _hostname(url: str) -> Optional[str]:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def registrable_domain(hostname: str) -> str:
    """Last two DNS labels of *hostname* (``a.b.example.com`` → ``example.com``)."""
    return ".".join(hostname.split(".")[-2:])


def _strip_default_port(netloc: str, scheme: str) -> str:
    """Remove ``:80`` for http and ``:443`` for https from *netloc*."""
    if ":" not in netloc:
        return netloc
    host, _, port = netloc.rpartition(":")
    if scheme == "http" and port == "80":
        return host
    if scheme == "https" and port == "443":
        return host
    return netloc


# -----------------------------------------------------------------------
# Scope predicate
# -----------------------------------------------------------------------

def in_scope(candidate_url: str, reference_url: str, strategy=ScopeStrategy.SAME_DOMAIN) -> bool:
    """
    Return True if *candidate_url* may be followed from *reference_url*.

    ``same-hostname`` requires identical hostnames; ``same-domain`` only the
    same registrable domain, so a hostname match always implies a domain match.
    Unparseable or host-less URLs are never in scope.
    """
    strategy = ScopeStrategy.parse(strategy)
    cand_host = _hostname(candidate_url)
    ref_host = _hostname(reference_url)
    if not cand_host or not ref_host:
        return False

    if strategy is ScopeStrategy.SAME_DOMAIN:
        return registrable_domain(cand_host) == registrable_domain(ref_host)
    return cand_host == ref_host


# -----------------------------------------------------------------------
# URL identity
# -----------------------------------------------------------------------

_UTM_RE = re.compile(r"^utm_", re.IGNORECASE)


def strip_tracking_params(url: str) -> str:
    """Remove every ``utm_*`` query parameter, keeping the others in order."""
    try:
        p = urlparse(url)
    except ValueError:
        return url
    if not p.query:
        return url
    kept = [(k, v) for k, v in parse_qsl(p.query, keep_blank_values=True) if not _UTM_RE.match(k)]
    return urlunparse(p._replace(query=urlencode(kept, doseq=True)))


def _www_agnostic_netloc(url: str) -> Optional[tuple]:
    try:
        p = urlparse(url)
    except ValueError:
        return None
    if not p.netloc:
        return None
    scheme = p.scheme.lower()
    netloc = p.netloc.lower().rsplit("@", 1)[-1]
    netloc = _strip_default_port(netloc, scheme).removeprefix("www.")
    return netloc, p


def are_links_equal(link1: str, link2: str) -> bool:
    """
    Compare two URLs by host and path only.

    ``http://example.com/a`` and ``https://www.example.com/a`` are equal.
    Falls back to plain string equality when either URL cannot be parsed.
    """
    a = _www_agnostic_netloc(link1)
    b = _www_agnostic_netloc(link2)
    if a is None or b is None:
        return link1 == link2
    (host_a, pa), (host_b, pb) = a, b
    return host_a == host_b and (pa.path or "/") == (pb.path or "/")


def dedup_key(url: str) -> str:
    """
    Frontier identity for *url*.

    Two URLs that differ only by scheme, a leading ``www.``, credentials, a
    default port, a fragment or ``utm_*`` parameters share a key.
    """
    cleaned = strip_tracking_params(url.strip())
    parsed = _www_agnostic_netloc(cleaned)
    if parsed is None:
        return cleaned
    host, p = parsed
    key = host + (p.path or "/")
    if p.query:
        key += "?" + p.query
    return key


# -----------------------------------------------------------------------
# User exclusion patterns
# -----------------------------------------------------------------------

def is_blacklisted(url: str, patterns: Optional[List[str]]) -> bool:
    """True if any pattern matches the URL's hostname or the full URL."""
    if not patterns:
        return False
    host = _hostname(url) or ""
    for pattern in patterns:
        try:
            rx = re.compile(pattern)
        except re.error:
            logger.warning(f"[SCOPE] Invalid exclusion pattern '{pattern}'")
            continue
        if rx.search(host) or rx.search(url):
            return True
    return False


def is_skipped_url(page_url: str, patterns: Optional[List[str]]) -> bool:
    """True if a pattern equals *page_url* (literal URLs) or matches it as a regex."""
    if not patterns:
        return False
    for raw in patterns:
        pattern = raw.replace("\r", "").replace("\n", "")
        if pattern.startswith("http") and pattern == page_url:
            return True
        try:
            if re.search(pattern, page_url):
                return True
        except re.error:
            continue
    return False


@dataclass
class ScopePolicy:
    """
    Scope enforcer bound to one seed URL for a single crawl run.

    Parameters
    ----------
    seed_url : str
        URL the crawl started from; every candidate is compared against it.
    strategy : ScopeStrategy
        ``same-domain`` or ``same-hostname``.
    blacklisted_patterns : list[str]
        User exclusion regexes, compiled once.
    """

    seed_url: str = ""
    strategy: ScopeStrategy = ScopeStrategy.SAME_DOMAIN
    blacklisted_patterns: List[str] = field(default_factory=list)

    _compiled: List[re.Pattern] = field(init=False, repr=False, default_factory=list)

    def __post_init__(self):
        self.strategy = ScopeStrategy.parse(self.strategy)
        self._compiled = []
        for pat in self.blacklisted_patterns or []:
            try:
                self._compiled.append(re.compile(pat))
            except re.error as exc:
                logger.warning(f"[SCOPE] Invalid exclusion pattern '{pat}': {exc}")

    def follows(self, candidate_url: str, reference_url: Optional[str] = None) -> bool:
        return in_scope(candidate_url, reference_url or self.seed_url, self.strategy)

    def is_blacklisted(self, url: str) -> bool:
        host = _hostname(url) or ""
        return any(rx.search(host) or rx.search(url) for rx in self._compiled)

    def accept(self, candidate_url: str, reference_url: Optional[str] = None) -> bool:
        """In scope and not excluded by the user's patterns."""
        return self.follows(candidate_url, reference_url) and not self.is_blacklisted(candidate_url)

    def log_scope(self) -> None:
        host = _hostname(self.seed_url) or "(unknown)"
        if self.strategy is ScopeStrategy.SAME_DOMAIN:
            desc = f"Domain: *.{registrable_domain(host)}"
        else:
            desc = f"Hostname: {host}"
        logger.info(f"[SCOPE] {desc}")
        if self._compiled:
            logger.info(f"[SCOPE] Exclusion patterns: {len(self._compiled)}")
