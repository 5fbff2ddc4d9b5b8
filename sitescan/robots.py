"""
Robots.txt Policy Cache
Fetches robots.txt once per origin, keeps the ``User-agent: *`` rules and
answers "is this URL disallowed?".
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urlparse

import requests

from .constants import DEFAULT_USER_AGENT
from .utils import origin_of

logger = logging.getLogger(__name__)

_DIRECTORY_RE = re.compile(r"^/(?:[^?#/]+/)*[^?#]*$")
_FILE_PATH_RE = re.compile(r"^/(?:[^/]+/)*[^/]+\.[a-zA-Z0-9]{1,6}$")


def sanitise_pattern(pattern: str) -> str:
    """
    Normalise one Allow/Disallow value into a glob.

    Directory-looking prefixes (no file extension) become recursive globs:
    ``/private`` → ``/private/**`` and ``/tmp*`` → ``/tmp**``.  File paths
    such as ``/private/public.html`` are kept as exact matches.
    """
    if pattern.endswith("$"):
        return pattern
    if _DIRECTORY_RE.match(pattern) and not _FILE_PATH_RE.match(pattern):
        if pattern.endswith("*"):
            pattern += "*"
        else:
            if not pattern.endswith("/"):
                pattern += "/"
            pattern += "**"
    return pattern


def glob_to_regex(pattern: str) -> re.Pattern:
    """
    Compile a robots glob.

    ``**`` spans any number of path segments, ``*`` stays inside one segment
    (so ``/*/`` is exactly one segment) and a trailing ``$`` anchors the end.
    A trailing ``/**`` also matches the directory itself: ``/admin/**``
    covers ``/admin``.
    """
    anchored = pattern.endswith("$")
    if anchored:
        pattern = pattern[:-1]

    out = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("/**", i) and i + 3 == len(pattern):
            out.append("(?:/.*)?")
            i += 3
        elif pattern.startswith("/**/", i):
            out.append("/(?:.*/)?")
            i += 4
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + ("$" if anchored else r"\Z"))


@dataclass
class RobotsPolicy:
    """Allow/Disallow globs of one origin's ``User-agent: *`` block."""
    disallowed_patterns: List[str] = field(default_factory=list)
    allowed_patterns: List[str] = field(default_factory=list)
    sitemaps: List[str] = field(default_factory=list)

    _disallowed_rx: List[re.Pattern] = field(init=False, repr=False, default_factory=list)
    _allowed_rx: List[re.Pattern] = field(init=False, repr=False, default_factory=list)

    def __post_init__(self):
        self._disallowed_rx = [glob_to_regex(p) for p in self.disallowed_patterns]
        self._allowed_rx = [glob_to_regex(p) for p in self.allowed_patterns]

    @classmethod
    def parse(cls, robots_text: str) -> "RobotsPolicy":
        """
        Parse the block that starts at ``User-agent: *`` and ends at the next
        ``User-agent:`` line.  Only Allow/Disallow are kept; ``Sitemap:``
        lines are collected from anywhere in the file.
        """
        disallowed: List[str] = []
        allowed: List[str] = []
        sitemaps: List[str] = []
        capturing = False
        finished = False

        for raw_line in (robots_text or "").splitlines():
            line = raw_line.split("#", 1)[0].strip()
            if not line or ":" not in line:
                continue
            key, _, value = line.partition(":")
            key = key.strip().lower()
            value = value.strip()

            if key == "sitemap" and value:
                sitemaps.append(value)
                continue
            if finished:
                continue
            if key == "user-agent":
                if value == "*":
                    capturing = True
                elif capturing:
                    finished = True
            elif capturing and key == "disallow" and value:
                disallowed.append(sanitise_pattern(value))
            elif capturing and key == "allow" and value:
                allowed.append(sanitise_pattern(value))

        return cls(disallowed_patterns=disallowed, allowed_patterns=allowed, sitemaps=sitemaps)

    @staticmethod
    def _target(url_or_path: str) -> str:
        if url_or_path.startswith("/"):
            return url_or_path.split("#", 1)[0]
        parsed = urlparse(url_or_path)
        target = parsed.path or "/"
        if parsed.query:
            target += "?" + parsed.query
        return target

    def disallowed(self, url_or_path: str) -> bool:
        """Disallowed by at least one rule and allowed by none."""
        target = self._target(url_or_path)
        if not any(rx.match(target) for rx in self._disallowed_rx):
            return False
        return not any(rx.match(target) for rx in self._allowed_rx)

    @property
    def is_empty(self) -> bool:
        return not self.disallowed_patterns and not self.allowed_patterns


class RobotsPolicyCache:
    """
    Per-origin robots.txt cache for one crawl run.

    ``ensure_loaded`` populates an origin at most once in the common case.
    Two workers racing on the same origin may both fetch; the parsed result
    is identical so the second write is harmless.  A failed fetch caches an
    empty policy (nothing disallowed).
    """

    def __init__(
        self,
        user_agent: str = None,
        timeout: int = 30,
        extra_http_headers: Optional[Dict[str, str]] = None,
    ):
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.timeout = timeout
        self.extra_http_headers = dict(extra_http_headers or {})
        self._cache: Dict[str, RobotsPolicy] = {}

    def is_loaded(self, url: str) -> bool:
        return origin_of(url) in self._cache

    def policy_for(self, url: str) -> Optional[RobotsPolicy]:
        return self._cache.get(origin_of(url))

    def _fetch_robots_txt(self, robots_url: str) -> Optional[str]:
        headers = {"User-Agent": self.user_agent, **self.extra_http_headers}
        try:
            response = requests.get(robots_url, headers=headers, timeout=self.timeout,
                                    allow_redirects=True)
        except requests.RequestException as e:
            logger.info(f"[ROBOTS] Unable to fetch {robots_url}: {e}")
            return None

        if response.status_code != 200:
            logger.info(f"[ROBOTS] No robots.txt at {robots_url} (status: {response.status_code})")
            return None
        logger.info(f"[ROBOTS] Fetched robots.txt from {robots_url}")
        return response.text

    def ensure_loaded(self, url: str) -> RobotsPolicy:
        origin = origin_of(url)
        cached = self._cache.get(origin)
        if cached is not None:
            return cached

        text = self._fetch_robots_txt(f"{origin}/robots.txt")
        policy = RobotsPolicy.parse(text) if text else RobotsPolicy()
        # first writer wins
        policy = self._cache.setdefault(origin, policy)
        if not policy.is_empty:
            logger.info(
                f"[ROBOTS] {origin}: {len(policy.disallowed_patterns)} disallow, "
                f"{len(policy.allowed_patterns)} allow rules"
            )
        return policy

    async def ensure_loaded_async(self, url: str) -> RobotsPolicy:
        if self.is_loaded(url):
            return self._cache[origin_of(url)]
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.ensure_loaded, url)

    def is_disallowed(self, url: str) -> bool:
        """False for origins that were never loaded."""
        try:
            policy = self._cache.get(origin_of(url))
        except ValueError:
            return False
        if policy is None:
            return False
        disallowed = policy.disallowed(url)
        if disallowed:
            logger.debug(f"[ROBOTS] Disallowed: {url}")
        return disallowed

    def get_sitemaps(self, url: str) -> List[str]:
        policy = self.ensure_loaded(url)
        return list(policy.sitemaps)

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("[ROBOTS] Cache cleared")
