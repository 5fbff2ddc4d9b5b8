"""
Crawl Strategies
================
Composition root.  Three entry points assemble scope, robots, sitemap,
frontier, navigation and pool:

- ``crawl_domain``               start from one URL, follow links
- ``crawl_sitemap``              visit the URLs a sitemap lists, nothing else
- ``crawl_intelligent_sitemap``  sitemap first (ranked by closeness to the
                                 seed), then a domain crawl for whatever
                                 page cap and time budget is left

Passes compose by explicit hand-off: the intelligent strategy creates one
``CrawlState``, ``Frontier``, ``Dataset`` and browser session and passes
them to both sub-crawls.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from .browser import BrowserSession
from .content_probe import ContentProbe
from .dataset import Dataset
from .link_extractor import LinkExtractor
from .navigation import CrawlContext, NavigationController
from .pdf import PdfDownloader, PdfHandoff
from .pool import Autoscaler, CrawlBudget, CrawlerPool, StopReason
from .robots import RobotsPolicyCache
from .run_config import CrawlerRunConfig
from .scanner import ScanOptions, Scanner, TitleOnlyScanner
from .scope_filter import ScopePolicy
from .sitemap import SitemapResolver, find_sitemap
from .state import CrawlState, Frontier, Request
from .utils import Stopwatch, extract_basic_auth, is_url_pdf, is_valid_http_url, origin_of

logger = logging.getLogger(__name__)


@dataclass
class CrawlResult:
    state: CrawlState
    frontier: Frontier
    dataset: Dataset
    stop_reason: StopReason = StopReason.COMPLETED
    pdf_handoffs: List[PdfHandoff] = field(default_factory=list)

    def summary(self) -> dict:
        out = self.state.summary()
        out['pending'] = self.frontier.pending
        out['robotsSkipped'] = len(self.frontier.skipped)
        out['stopReason'] = self.stop_reason.value
        return out


@dataclass
class _Shared:
    """Objects handed from one pass to the next."""
    state: CrawlState
    frontier: Frontier
    dataset: Dataset
    pdf_downloader: PdfDownloader
    session: object
    owns_session: bool


def _shared(
    config: CrawlerRunConfig,
    state: Optional[CrawlState],
    frontier: Optional[Frontier],
    dataset: Optional[Dataset],
    pdf_downloader: Optional[PdfDownloader],
    session,
    on_pdf: Optional[Callable[[PdfHandoff], None]],
) -> _Shared:
    state = state or CrawlState()
    frontier = frontier or Frontier(state, config.max_requests_per_crawl)
    dataset = dataset or Dataset(config.storage_dir, config.random_token)
    pdf_downloader = pdf_downloader or PdfDownloader(
        config.storage_dir, config.random_token,
        headers=config.extra_http_headers, on_downloaded=on_pdf,
    )
    owns_session = session is None
    if session is None:
        profile_root = config.user_data_dir or Path(config.storage_dir) / config.random_token / "profiles"
        session = BrowserSession(config, profile_root, extra_http_headers=config.extra_http_headers)
    return _Shared(state, frontier, dataset, pdf_downloader, session, owns_session)


def _budget(config: CrawlerRunConfig, scan_duration: Optional[float]) -> CrawlBudget:
    duration = config.scan_duration if scan_duration is None else scan_duration
    return CrawlBudget(max_requests=config.max_requests_per_crawl, scan_duration=duration)


def _robots(config: CrawlerRunConfig, headers: dict) -> RobotsPolicyCache:
    return RobotsPolicyCache(user_agent=config.user_agent, extra_http_headers=headers)


async def _run_pass(ctx: CrawlContext, session) -> StopReason:
    cfg = ctx.config
    controller = NavigationController(ctx)

    async def handler(request: Request, worker_id: int) -> str:
        page = await session.new_page(worker_id)
        visit = None
        try:
            visit = await controller.handle(request, page)
        finally:
            pages = {id(page): page}
            if visit is not None and visit.page is not None:
                pages[id(visit.page)] = visit.page
            for p in pages.values():
                try:
                    await p.close()
                except Exception as e:
                    logger.debug(f"[POOL] Closing page for {request.url}: {e}")
        return visit.outcome.progress_status

    pool = CrawlerPool(
        frontier=ctx.frontier,
        state=ctx.state,
        handler=handler,
        budget=ctx.budget,
        autoscaler=Autoscaler(
            min_concurrency=cfg.min_concurrency,
            max_concurrency=cfg.max_concurrency,
            up_step=cfg.scale_up_step,
            down_step=cfg.scale_down_step,
            slow_threshold_s=cfg.slow_page_threshold_s,
        ),
    )
    ctx.on_abort = pool.abort
    return await pool.run()


def _scan_options(config: CrawlerRunConfig) -> ScanOptions:
    return ScanOptions(random_token=config.random_token)


async def crawl_domain(
    url: str,
    config: Optional[CrawlerRunConfig] = None,
    scanner: Optional[Scanner] = None,
    *,
    state: Optional[CrawlState] = None,
    frontier: Optional[Frontier] = None,
    dataset: Optional[Dataset] = None,
    pdf_downloader: Optional[PdfDownloader] = None,
    session=None,
    scan_duration: Optional[float] = None,
    on_pdf: Optional[Callable[[PdfHandoff], None]] = None,
    finalize: bool = True,
) -> CrawlResult:
    """Crawl outward from *url*, following in-scope links."""
    config = (config or CrawlerRunConfig()).validate()
    shared = _shared(config, state, frontier, dataset, pdf_downloader, session, on_pdf)
    clean_url, auth_headers = extract_basic_auth(url)
    headers = {**config.extra_http_headers, **auth_headers}

    scope = ScopePolicy(clean_url, config.scope_strategy, config.blacklisted_patterns)
    scope.log_scope()
    robots = _robots(config, headers)
    if config.follow_robots:
        await robots.ensure_loaded_async(clean_url)

    seed = Request(url=clean_url, skip_navigation=is_url_pdf(clean_url), headers=dict(auth_headers))
    if not shared.frontier.enqueue_if_new(seed) and shared.state.is_scanned(clean_url):
        shared.frontier.reseed(Request(url=clean_url, headers=dict(auth_headers)))

    ctx = CrawlContext(
        seed_url=clean_url,
        config=config,
        state=shared.state,
        frontier=shared.frontier,
        scope=scope,
        robots=robots,
        dataset=shared.dataset,
        scanner=scanner or TitleOnlyScanner(),
        budget=_budget(config, scan_duration),
        pdf_downloader=shared.pdf_downloader,
        content_probe=ContentProbe(headers),
        link_extractor=LinkExtractor(
            shared.frontier, scope,
            is_disallowed=robots.is_disallowed,
            safe_mode=config.safe_mode,
            headers=auth_headers,
        ),
        auth_headers=auth_headers,
        scan_options=_scan_options(config),
    )

    logger.info(f"[DOMAIN] Crawling {clean_url} ({config.summary()})")
    try:
        stop_reason = await _run_pass(ctx, shared.session)
    finally:
        if shared.owns_session:
            await shared.session.close()

    if finalize:
        shared.state.finalize()
    return CrawlResult(
        state=shared.state,
        frontier=shared.frontier,
        dataset=shared.dataset,
        stop_reason=stop_reason,
        pdf_handoffs=shared.pdf_downloader.handoffs,
    )


async def crawl_sitemap(
    sitemap_url: str,
    config: Optional[CrawlerRunConfig] = None,
    scanner: Optional[Scanner] = None,
    *,
    seed_url: Optional[str] = None,
    rank_by_seed_closeness: bool = False,
    state: Optional[CrawlState] = None,
    frontier: Optional[Frontier] = None,
    dataset: Optional[Dataset] = None,
    pdf_downloader: Optional[PdfDownloader] = None,
    session=None,
    scan_duration: Optional[float] = None,
    on_pdf: Optional[Callable[[PdfHandoff], None]] = None,
    finalize: bool = True,
) -> CrawlResult:
    """Visit exactly the URLs *sitemap_url* resolves to (no link following)."""
    config = (config or CrawlerRunConfig()).validate()
    shared = _shared(config, state, frontier, dataset, pdf_downloader, session, on_pdf)
    seed, auth_headers = extract_basic_auth(seed_url or sitemap_url)
    clean_sitemap_url, sitemap_auth = extract_basic_auth(sitemap_url)
    auth_headers = auth_headers or sitemap_auth
    headers = {**config.extra_http_headers, **auth_headers}

    robots = _robots(config, headers)
    if config.follow_robots and is_valid_http_url(seed):
        await robots.ensure_loaded_async(seed)

    resolver = SitemapResolver(
        extra_http_headers=headers,
        is_disallowed=robots.is_disallowed,
        user_agent=config.user_agent,
    )
    found = await resolver.resolve_async(
        clean_sitemap_url,
        config.max_requests_per_crawl,
        rank_by_seed_closeness,
        seed if rank_by_seed_closeness else None,
    )
    for request in found:
        if auth_headers and is_valid_http_url(request.url) and origin_of(request.url) == origin_of(seed):
            request.headers = dict(auth_headers)
    added = shared.frontier.enqueue_many(found)
    logger.info(f"[SITEMAP] Queued {added} of {len(found)} sitemap URL(s)")

    ctx = CrawlContext(
        seed_url=seed,
        config=config,
        state=shared.state,
        frontier=shared.frontier,
        scope=ScopePolicy(seed, config.scope_strategy, config.blacklisted_patterns),
        robots=robots,
        dataset=shared.dataset,
        scanner=scanner or TitleOnlyScanner(),
        budget=_budget(config, scan_duration),
        pdf_downloader=shared.pdf_downloader,
        auth_headers=auth_headers,
        scan_options=_scan_options(config),
    )

    try:
        stop_reason = await _run_pass(ctx, shared.session)
    finally:
        if shared.owns_session:
            await shared.session.close()

    if finalize:
        shared.state.finalize()
    return CrawlResult(
        state=shared.state,
        frontier=shared.frontier,
        dataset=shared.dataset,
        stop_reason=stop_reason,
        pdf_handoffs=shared.pdf_downloader.handoffs,
    )


async def crawl_intelligent_sitemap(
    url: str,
    config: Optional[CrawlerRunConfig] = None,
    scanner: Optional[Scanner] = None,
    *,
    session=None,
    on_pdf: Optional[Callable[[PdfHandoff], None]] = None,
) -> CrawlResult:
    """
    Sitemap-first crawl of *url*'s site.

    With no sitemap found this is a plain domain crawl with the full budget.
    Otherwise the sitemap pass runs first; a domain pass follows only while
    the page cap is unmet and time budget remains.
    """
    config = (config or CrawlerRunConfig()).validate()
    stopwatch = Stopwatch()
    shared = _shared(config, None, None, None, None, session, on_pdf)
    clean_url, auth_headers = extract_basic_auth(url)
    headers = {**config.extra_http_headers, **auth_headers}

    candidates: List[str] = []
    if config.follow_robots:
        robots = _robots(config, headers)
        await robots.ensure_loaded_async(clean_url)
        candidates = robots.get_sitemaps(clean_url)

    loop = asyncio.get_running_loop()
    sitemap_url = await loop.run_in_executor(None, find_sitemap, clean_url, headers, candidates)

    hand_off = dict(
        state=shared.state,
        frontier=shared.frontier,
        dataset=shared.dataset,
        pdf_downloader=shared.pdf_downloader,
        session=shared.session,
        finalize=False,
    )
    try:
        if not sitemap_url:
            logger.info(f"[INTELLIGENT] No sitemap for {clean_url}; running a domain crawl")
            result = await crawl_domain(url, config, scanner, **hand_off)
        else:
            result = await crawl_sitemap(
                sitemap_url, config, scanner,
                seed_url=url,
                rank_by_seed_closeness=True,
                **hand_off,
            )
            remaining = None
            if config.scan_duration:
                remaining = config.scan_duration - stopwatch.elapsed

            if shared.state.num_scanned >= config.max_requests_per_crawl:
                logger.info("[INTELLIGENT] Page cap met by the sitemap pass")
            elif remaining is not None and remaining <= 0:
                logger.info("[INTELLIGENT] Time budget spent by the sitemap pass")
            else:
                logger.info(
                    f"[INTELLIGENT] Continuing with a domain crawl "
                    f"({shared.state.num_scanned}/{config.max_requests_per_crawl} scanned, "
                    f"{'unlimited' if remaining is None else f'{remaining:.0f}s'} left)"
                )
                result = await crawl_domain(url, config, scanner, scan_duration=remaining, **hand_off)
    finally:
        if shared.owns_session:
            await shared.session.close()

    shared.state.finalize()
    return result
