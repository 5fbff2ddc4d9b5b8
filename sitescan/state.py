"""
Crawl State & Frontier
======================
Single source of truth for "have we seen this URL" during one crawl run.

``CrawlState`` holds the mutually exclusive, append-only outcome buckets.
``Frontier`` holds the dedup index and the pending queue, and refuses new
work once the scanned bucket has reached the page cap.

Both objects are passed explicitly into every component that needs them; a
sitemap pass followed by a domain pass shares state by handing the same
instances over.

Thread-safety: every mutation runs under a short ``threading.Lock`` critical
section, so the structures are safe both for asyncio workers and for code
pushed onto executor threads.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Set, Union

from .scope_filter import dedup_key

logger = logging.getLogger(__name__)


@dataclass
class Request:
    """
    One unit of crawl work.

    ``label`` is the URL at enqueue time; comparing it with the URL the
    browser finally lands on reveals redirects.  ``skip_navigation`` marks
    URLs that must not be opened in a browser (PDFs, downloads).
    ``harvest_only`` pages are visited for their links only and never
    re-scanned.
    """
    url: str
    label: str = ""
    skip_navigation: bool = False
    harvest_only: bool = False
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.label:
            self.label = self.url

    @property
    def unique_key(self) -> str:
        return dedup_key(self.url)


@dataclass
class PageInfo:
    """Outcome record; every classified visit produces exactly one."""
    url: str
    actual_url: str = ""
    page_title: str = ""
    metadata: str = ""
    http_status_code: int = 0

    def to_dict(self) -> dict:
        return {
            'url': self.url,
            'actualUrl': self.actual_url or self.url,
            'pageTitle': self.page_title,
            'metadata': self.metadata,
            'httpStatusCode': self.http_status_code,
        }


@dataclass
class RedirectPair:
    from_url: str
    to_url: str

    def to_dict(self) -> dict:
        return {'fromUrl': self.from_url, 'toUrl': self.to_url}


class Bucket(str, Enum):
    SCANNED = "scanned"
    NOT_SCANNED_REDIRECTS = "notScannedRedirects"
    INVALID = "invalid"
    BLACKLISTED = "blacklisted"
    OUT_OF_DOMAIN = "outOfDomain"
    ERROR = "error"
    EXCEEDED_REQUESTS = "exceededRequests"
    FORBIDDEN = "forbidden"
    USER_EXCLUDED = "userExcluded"


class CommitResult(str, Enum):
    """What ``CrawlState.commit_scan`` did with a page; truthy only when scanned."""
    SCANNED = "scanned"
    EXCEEDED = "exceeded"
    DUPLICATE = "duplicate"
    REDIRECT_DUPLICATE = "redirectDuplicate"

    def __bool__(self) -> bool:
        return self is CommitResult.SCANNED


Entry = Union[PageInfo, RedirectPair]


class CrawlState:
    """
    Outcome buckets for one crawl run.

    A URL is classified at most once: the first writer wins and later
    attempts return ``False`` without touching any bucket.  ``scanned_redirects``
    is an auxiliary list recorded alongside ``scanned`` and is not terminal.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._buckets: Dict[Bucket, List[Entry]] = {b: [] for b in Bucket}
        self.scanned_redirects: List[RedirectPair] = []
        self._classified: Dict[str, Bucket] = {}
        self._scanned_actual_keys: Set[str] = set()
        self._finalized = False

    # ------------------------------------------------------------------
    # Bucket accessors
    # ------------------------------------------------------------------

    def bucket(self, name: Bucket) -> List[Entry]:
        return self._buckets[Bucket(name)]

    @property
    def scanned(self) -> List[PageInfo]:
        return self._buckets[Bucket.SCANNED]

    @property
    def not_scanned_redirects(self) -> List[RedirectPair]:
        return self._buckets[Bucket.NOT_SCANNED_REDIRECTS]

    @property
    def invalid(self) -> List[PageInfo]:
        return self._buckets[Bucket.INVALID]

    @property
    def error(self) -> List[PageInfo]:
        return self._buckets[Bucket.ERROR]

    @property
    def user_excluded(self) -> List[PageInfo]:
        return self._buckets[Bucket.USER_EXCLUDED]

    @property
    def exceeded_requests(self) -> List[PageInfo]:
        return self._buckets[Bucket.EXCEEDED_REQUESTS]

    @property
    def num_scanned(self) -> int:
        return len(self._buckets[Bucket.SCANNED])

    @property
    def num_classified(self) -> int:
        return len(self._classified)

    @property
    def finalized(self) -> bool:
        return self._finalized

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def bucket_of(self, url: str) -> Optional[Bucket]:
        return self._classified.get(dedup_key(url))

    def is_classified(self, url: str) -> bool:
        return dedup_key(url) in self._classified

    def is_scanned(self, url: str) -> bool:
        return self._classified.get(dedup_key(url)) is Bucket.SCANNED

    def is_scanned_as_actual(self, url: str) -> bool:
        """True if some scanned page finally loaded *url* (its actual URL)."""
        return dedup_key(url) in self._scanned_actual_keys

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self._finalized:
            raise RuntimeError("CrawlState is finalized and can no longer be mutated")

    @staticmethod
    def _entry_key(entry: Entry) -> str:
        url = entry.from_url if isinstance(entry, RedirectPair) else entry.url
        return dedup_key(url)

    def classify(self, bucket: Bucket, entry: Entry) -> bool:
        """
        Place *entry* into *bucket*.

        Returns ``False`` (and records nothing) if the URL already sits in a
        bucket.  Use ``commit_scan`` for the scanned bucket.
        """
        bucket = Bucket(bucket)
        if bucket is Bucket.SCANNED:
            raise ValueError("use commit_scan() to record scanned pages")
        key = self._entry_key(entry)
        with self._lock:
            self._check_open()
            existing = self._classified.get(key)
            if existing is not None:
                logger.debug(f"[STATE] {key} already in {existing.value}; dropping {bucket.value}")
                return False
            self._buckets[bucket].append(entry)
            self._classified[key] = bucket
            return True

    def commit_scan(
        self,
        info: PageInfo,
        max_requests: Optional[int] = None,
        redirected_from: Optional[str] = None,
    ) -> CommitResult:
        """
        Record a scanned page.

        The cap is re-checked under the lock because several workers may be
        finishing pages at once; a page that arrives after the cap is met goes
        to ``exceededRequests`` instead.  When *redirected_from* is given the
        redirect is also recorded in ``scanned_redirects``, unless another
        worker already scanned the same final URL: then the pair goes to
        ``notScannedRedirects`` and the first scan stands.
        """
        key = dedup_key(info.url)
        actual_key = dedup_key(info.actual_url or info.url)
        with self._lock:
            self._check_open()
            if key in self._classified:
                return CommitResult.DUPLICATE
            if redirected_from and actual_key in self._scanned_actual_keys:
                self._buckets[Bucket.NOT_SCANNED_REDIRECTS].append(
                    RedirectPair(redirected_from, info.actual_url))
                self._classified[key] = Bucket.NOT_SCANNED_REDIRECTS
                return CommitResult.REDIRECT_DUPLICATE
            if max_requests is not None and len(self._buckets[Bucket.SCANNED]) >= max_requests:
                self._buckets[Bucket.EXCEEDED_REQUESTS].append(info)
                self._classified[key] = Bucket.EXCEEDED_REQUESTS
                return CommitResult.EXCEEDED
            self._buckets[Bucket.SCANNED].append(info)
            self._classified[key] = Bucket.SCANNED
            self._scanned_actual_keys.add(actual_key)
            if redirected_from:
                self.scanned_redirects.append(RedirectPair(redirected_from, info.actual_url))
            return CommitResult.SCANNED

    def finalize(self) -> "CrawlState":
        """Freeze the state; it is handed to report generation as-is."""
        with self._lock:
            self._finalized = True
        return self

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        out = {b.value: [e.to_dict() for e in entries] for b, entries in self._buckets.items()}
        out['scannedRedirects'] = [p.to_dict() for p in self.scanned_redirects]
        return out

    def summary(self) -> Dict[str, int]:
        out = {b.value: len(entries) for b, entries in self._buckets.items()}
        out['scannedRedirects'] = len(self.scanned_redirects)
        return out


class Frontier:
    """
    Dedup index + pending queue.

    ``enqueue_if_new`` is a no-op when the request's dedup key has already
    been queued, classified, or marked seen.  Once ``state.num_scanned``
    reaches *max_requests* no new work is accepted; requests already in
    flight may still push the scanned count slightly past the cap, which
    ``CrawlState.commit_scan`` catches.
    """

    def __init__(self, state: CrawlState, max_requests: Optional[int] = None):
        self.state = state
        self.max_requests = max_requests
        self._lock = threading.Lock()
        self._seen: Set[str] = set()
        self._pending: Deque[Request] = deque()
        self._skipped: Set[str] = set()

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def discovered(self) -> int:
        return len(self._seen)

    @property
    def skipped(self) -> Set[str]:
        """Keys of pages left unclassified on purpose (robots-disallowed)."""
        return set(self._skipped)

    def is_capped(self) -> bool:
        return self.max_requests is not None and self.state.num_scanned >= self.max_requests

    def has_seen(self, url: str) -> bool:
        key = dedup_key(url)
        return key in self._seen or self.state.is_classified(url)

    def mark_seen(self, url: str) -> bool:
        """Register *url* without queueing it.  Returns True if it was new."""
        key = dedup_key(url)
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def mark_skipped(self, url: str) -> None:
        with self._lock:
            self._skipped.add(dedup_key(url))

    def enqueue_if_new(self, request: Request) -> bool:
        key = request.unique_key
        with self._lock:
            if self.is_capped():
                return False
            if key in self._seen or self.state.is_classified(request.url):
                return False
            self._seen.add(key)
            self._pending.append(request)
        logger.debug(f"[FRONTIER] + {request.url}")
        return True

    def reseed(self, request: Request) -> bool:
        """
        Queue an already-classified page again for link harvesting.

        Used when a second crawl pass starts from a seed the first pass
        already scanned; the request is forced to ``harvest_only``.
        """
        request.harvest_only = True
        with self._lock:
            if self.is_capped():
                return False
            self._seen.add(request.unique_key)
            self._pending.append(request)
        logger.debug(f"[FRONTIER] ~ {request.url} (harvest only)")
        return True

    def enqueue_many(self, requests) -> int:
        return sum(1 for r in requests if self.enqueue_if_new(r))

    def next_request(self) -> Optional[Request]:
        with self._lock:
            if not self._pending:
                return None
            return self._pending.popleft()

    def drain(self) -> List[Request]:
        """Remove and return everything still pending (used on abort)."""
        with self._lock:
            remaining = list(self._pending)
            self._pending.clear()
        return remaining
