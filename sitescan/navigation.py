"""
Navigation Controller
=====================
Per-request lifecycle: navigate, wait for the page to settle, decide the
request's single outcome, and either hand the page to the scanner or record
a terminal bucket.

Evaluation order once a page has loaded:

1. page cap / time budget already exceeded  → exceededRequests, abort the pool
2. URL already scanned                        → drop
3. robots-disallowed                          → harvest links only
4. unsupported content (download, non-HTML)   → userExcluded (code 1),
   or the PDF hand-off when PDFs are requested
5. blacklisted by exclusion patterns          → userExcluded (code 0)
6. redirected out of scope                    → notScannedRedirects
7. status >= 300                              → invalid (status kept)
8. scan; redirect onto an already scanned page → notScannedRedirects,
   otherwise scanned (+ scannedRedirects when redirected)

Any exception on the way lands the request in ``error``; only
``CrawlerResourceError`` propagates.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .browser import wait_for_page_loaded
from .constants import STATUS_CRAWLER_ERRORED, STATUS_NOT_SUPPORTED_DOCUMENT, STATUS_PAGE_EXCLUDED, status_metadata
from .content_probe import ContentProbe
from .dataset import Dataset
from .exceptions import CrawlerResourceError
from .link_extractor import LinkExtractor
from .logs import log_progress
from .pdf import PdfDownloader
from .pool import CrawlBudget, StopReason
from .robots import RobotsPolicyCache
from .run_config import CrawlerRunConfig
from .scanner import ScanOptions, Scanner
from .scope_filter import ScopePolicy, are_links_equal, is_skipped_url
from .state import Bucket, CommitResult, CrawlState, Frontier, PageInfo, RedirectPair, Request
from .utils import (
    is_blacklisted_file_extension,
    is_url_pdf,
    is_whitelisted_content_type,
    origin_of,
    url_without_auth,
)

logger = logging.getLogger(__name__)

_BLANK_URLS = ("", "about:blank")


class Outcome(str, Enum):
    SCANNED = "scanned"
    HARVESTED = "harvested"
    DROPPED = "dropped"
    ROBOTS_SKIPPED = "robotsSkipped"
    EXCLUDED = "excluded"
    REDIRECTED_AWAY = "redirectedAway"
    REDIRECT_DUPLICATE = "redirectDuplicate"
    INVALID = "invalid"
    EXCEEDED = "exceeded"
    ERRORED = "errored"
    ABORTED = "aborted"

    @property
    def progress_status(self) -> str:
        if self is Outcome.SCANNED:
            return "scanned"
        if self is Outcome.ERRORED:
            return "error"
        return "skipped"


@dataclass
class CrawlContext:
    """Everything one crawl pass shares between its workers."""
    seed_url: str
    config: CrawlerRunConfig
    state: CrawlState
    frontier: Frontier
    scope: ScopePolicy
    robots: RobotsPolicyCache
    dataset: Dataset
    scanner: Scanner
    budget: CrawlBudget
    pdf_downloader: Optional[PdfDownloader] = None
    content_probe: Optional[ContentProbe] = None
    link_extractor: Optional[LinkExtractor] = None
    auth_headers: Dict[str, str] = field(default_factory=dict)
    scan_options: ScanOptions = field(default_factory=ScanOptions)
    on_abort: Callable[[StopReason], None] = lambda reason: None

    def headers_for(self, url: str) -> Dict[str, str]:
        """Extra headers for *url*; credentials only go to the seed's origin."""
        headers = dict(self.config.extra_http_headers)
        if self.auth_headers and origin_of(url) == origin_of(self.seed_url):
            headers.update(self.auth_headers)
        return headers


@dataclass
class PageVisit:
    request: Request
    page: Any
    response: Any = None
    actual_url: str = ""
    outcome: Optional[Outcome] = None

    @property
    def status(self) -> Optional[int]:
        if self.response is None:
            return None
        return self.response.status

    @property
    def content_type(self) -> str:
        if self.response is None:
            return ""
        return (self.response.headers or {}).get("content-type", "")


class NavigationController:
    def __init__(self, ctx: CrawlContext):
        self.ctx = ctx

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def handle(self, request: Request, page) -> PageVisit:
        """Navigate and classify *request*; never raises for page-level failures."""
        visit = PageVisit(request=request, page=page)
        try:
            await asyncio.wait_for(
                self._navigate_and_process(visit),
                timeout=self.ctx.config.request_handler_timeout_s,
            )
        except CrawlerResourceError:
            raise
        except Exception as e:
            logger.warning(f"[ERROR] {request.url}: {type(e).__name__}: {e}")
            self._record_error(visit)
            visit.outcome = Outcome.ERRORED
        return visit

    async def _navigate_and_process(self, visit: PageVisit) -> None:
        request, page = visit.request, visit.page
        cfg = self.ctx.config

        if self.ctx.content_probe and not request.skip_navigation and not request.harvest_only:
            if not await self.ctx.content_probe.is_processible_async(request.url):
                request.skip_navigation = True

        if not request.skip_navigation:
            await page.set_extra_http_headers({**self.ctx.headers_for(request.url), **request.headers})
            visit.response = await page.goto(
                request.url,
                wait_until="domcontentloaded",
                timeout=cfg.navigation_timeout_ms,
            )
            await wait_for_page_loaded(page, cfg.page_load_timeout_ms)

        visit.outcome = await self.process(visit)

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    async def process(self, visit: PageVisit) -> Outcome:
        ctx = self.ctx
        request = visit.request
        page_url = visit.page.url if visit.page is not None else ""
        actual_url = page_url if page_url not in _BLANK_URLS else request.url
        visit.actual_url = actual_url
        clean_url = url_without_auth(request.url)

        reason = ctx.budget.exceeded(ctx.state)
        if reason:
            ctx.on_abort(reason)
            if not ctx.state.finalized:
                ctx.state.classify(Bucket.EXCEEDED_REQUESTS, PageInfo(
                    url=clean_url,
                    actual_url=actual_url,
                    page_title=clean_url,
                ))
            return Outcome.ABORTED

        if ctx.state.is_scanned(request.url):
            if request.harvest_only:
                await self._discover_links(visit)
                return Outcome.HARVESTED
            return Outcome.DROPPED

        if ctx.config.follow_robots:
            await ctx.robots.ensure_loaded_async(request.url)
        if ctx.robots.is_disallowed(request.url):
            ctx.frontier.mark_skipped(request.url)
            log_progress("skipped", ctx.state.num_scanned, clean_url)
            await self._discover_links(visit)
            return Outcome.ROBOTS_SKIPPED

        outcome = await self._check_content(visit, page_url)
        if outcome is not None:
            return outcome

        if not are_links_equal(request.url, ctx.seed_url) and is_skipped_url(actual_url, ctx.config.blacklisted_patterns):
            self._exclude(visit, STATUS_PAGE_EXCLUDED)
            await self._discover_links(visit)
            return Outcome.EXCLUDED

        redirected = not are_links_equal(actual_url, request.url)
        if redirected and not ctx.scope.follows(actual_url, request.url):
            ctx.state.classify(Bucket.NOT_SCANNED_REDIRECTS, RedirectPair(clean_url, actual_url))
            log_progress("skipped", ctx.state.num_scanned, clean_url)
            return Outcome.REDIRECTED_AWAY

        status = visit.status
        if status is not None and status >= 300:
            ctx.state.classify(Bucket.INVALID, PageInfo(
                url=clean_url,
                actual_url=actual_url,
                page_title=clean_url,
                metadata=status_metadata(status),
                http_status_code=status,
            ))
            log_progress("skipped", ctx.state.num_scanned, clean_url)
            return Outcome.INVALID

        return await self._scan(visit, clean_url, actual_url, redirected)

    async def _check_content(self, visit: PageVisit, page_url: str) -> Optional[Outcome]:
        """Outcome for responses that are not a scannable HTML page, else None."""
        ctx = self.ctx
        request = visit.request

        if request.skip_navigation and page_url in _BLANK_URLS:
            if is_url_pdf(request.url) and ctx.config.scan_pdfs and ctx.pdf_downloader:
                return await self._handle_pdf(visit)
            return self._exclude(visit, STATUS_NOT_SUPPORTED_DOCUMENT, actual_url=request.url)

        if is_blacklisted_file_extension(visit.actual_url):
            return self._exclude(visit, STATUS_NOT_SUPPORTED_DOCUMENT)

        content_type = visit.content_type
        if content_type and not is_whitelisted_content_type(content_type):
            if "application/pdf" in content_type and ctx.config.scan_pdfs and ctx.pdf_downloader:
                return await self._handle_pdf(visit)
            return self._exclude(visit, STATUS_NOT_SUPPORTED_DOCUMENT)

        if not ctx.config.scan_html:
            return self._exclude(visit, STATUS_NOT_SUPPORTED_DOCUMENT)
        return None

    def _exclude(self, visit: PageVisit, code: int, actual_url: Optional[str] = None) -> Outcome:
        clean_url = url_without_auth(visit.request.url)
        self.ctx.state.classify(Bucket.USER_EXCLUDED, PageInfo(
            url=clean_url,
            actual_url=actual_url or visit.actual_url or clean_url,
            page_title=clean_url,
            metadata=status_metadata(code),
            http_status_code=0,
        ))
        log_progress("skipped", self.ctx.state.num_scanned, clean_url)
        return Outcome.EXCLUDED

    async def _handle_pdf(self, visit: PageVisit) -> Outcome:
        ctx = self.ctx
        url = visit.request.url
        clean_url = url_without_auth(url)
        handoff = await ctx.pdf_downloader.download_async(url, ctx.headers_for(url))
        if handoff is None:
            ctx.state.classify(Bucket.INVALID, PageInfo(
                url=clean_url,
                actual_url=clean_url,
                page_title=clean_url,
                metadata=status_metadata(STATUS_NOT_SUPPORTED_DOCUMENT),
                http_status_code=0,
            ))
            log_progress("skipped", ctx.state.num_scanned, clean_url)
            return Outcome.INVALID

        info = PageInfo(url=clean_url, actual_url=clean_url, page_title=clean_url)
        if not ctx.state.commit_scan(info, max_requests=ctx.budget.max_requests):
            return Outcome.EXCEEDED
        log_progress("scanned", ctx.state.num_scanned, clean_url)
        return Outcome.SCANNED

    async def _scan(self, visit: PageVisit, clean_url: str, actual_url: str, redirected: bool) -> Outcome:
        ctx = self.ctx

        if redirected and ctx.state.is_scanned_as_actual(actual_url):
            ctx.state.classify(Bucket.NOT_SCANNED_REDIRECTS, RedirectPair(clean_url, actual_url))
            log_progress("skipped", ctx.state.num_scanned, clean_url)
            return Outcome.REDIRECT_DUPLICATE

        result = await ctx.scanner.scan(visit.page, ctx.scan_options)
        info = PageInfo(url=clean_url, actual_url=actual_url, page_title=result.page_title)
        committed = ctx.state.commit_scan(
            info,
            max_requests=ctx.budget.max_requests,
            redirected_from=clean_url if redirected else None,
        )
        if committed is CommitResult.REDIRECT_DUPLICATE:
            log_progress("skipped", ctx.state.num_scanned, clean_url)
            return Outcome.REDIRECT_DUPLICATE
        if not committed:
            logger.info(f"[LIMIT] Not recording {clean_url}; page cap reached")
            return Outcome.EXCEEDED

        if redirected:
            ctx.frontier.mark_seen(actual_url)
        result.url = clean_url
        result.actual_url = actual_url
        ctx.dataset.push_data(result.to_dict())
        log_progress("scanned", ctx.state.num_scanned, clean_url)

        if ctx.config.follow_robots:
            await ctx.robots.ensure_loaded_async(actual_url)
        await self._discover_links(visit)
        return Outcome.SCANNED

    async def _discover_links(self, visit: PageVisit) -> None:
        extractor = self.ctx.link_extractor
        if extractor is None or visit.page is None or visit.page.url in _BLANK_URLS:
            return
        visit.page = await extractor.enqueue_from_page(visit.page)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def _record_error(self, visit: PageVisit) -> None:
        clean_url = url_without_auth(visit.request.url)
        status = visit.status
        if status is not None:
            metadata = status_metadata(status)
        else:
            metadata = status_metadata(STATUS_CRAWLER_ERRORED)
        if self.ctx.state.finalized:
            return
        self.ctx.state.classify(Bucket.ERROR, PageInfo(
            url=clean_url,
            actual_url=clean_url,
            page_title=clean_url,
            metadata=metadata,
            http_status_code=status or 0,
        ))
        log_progress("error", self.ctx.state.num_scanned, clean_url)
