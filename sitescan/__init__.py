"""
sitescan
========
Crawl engine for site-wide page scanning: scope policy, robots.txt cache,
sitemap resolution, URL frontier and outcome buckets, per-page navigation,
link discovery and a bounded worker pool.

Usage::

    import asyncio
    from sitescan import CrawlerRunConfig, crawl_intelligent_sitemap

    config = CrawlerRunConfig.from_env(max_requests_per_crawl=50)
    result = asyncio.run(crawl_intelligent_sitemap("https://example.com/", config))
    print(result.summary())
"""

from .exceptions import (
    BrowserLaunchError,
    ConfigError,
    CrawlerResourceError,
    ProfileDirectoryError,
    SitescanError,
)
from .run_config import CrawlerRunConfig, load_blacklisted_patterns
from .scope_filter import ScopePolicy, ScopeStrategy, are_links_equal, dedup_key, in_scope
from .state import Bucket, CommitResult, CrawlState, Frontier, PageInfo, RedirectPair, Request
from .robots import RobotsPolicy, RobotsPolicyCache
from .sitemap import SitemapResolver, SitemapType, classify_root, find_sitemap
from .scanner import ScanOptions, ScanResult, Scanner, TitleOnlyScanner
from .pdf import PdfDownloader, PdfHandoff, download_pdf
from .dataset import Dataset
from .pool import Autoscaler, CrawlBudget, CrawlerPool, StopReason
from .navigation import CrawlContext, NavigationController, Outcome
from .link_extractor import LinkExtractor
from .strategies import CrawlResult, crawl_domain, crawl_intelligent_sitemap, crawl_sitemap
from .logs import setup_logging

__all__ = [
    # Errors
    'SitescanError',
    'ConfigError',
    'CrawlerResourceError',
    'BrowserLaunchError',
    'ProfileDirectoryError',
    # Configuration
    'CrawlerRunConfig',
    'load_blacklisted_patterns',
    'setup_logging',
    # Scope & state
    'ScopePolicy',
    'ScopeStrategy',
    'in_scope',
    'are_links_equal',
    'dedup_key',
    'Bucket',
    'CommitResult',
    'CrawlState',
    'Frontier',
    'PageInfo',
    'RedirectPair',
    'Request',
    # Robots & sitemaps
    'RobotsPolicy',
    'RobotsPolicyCache',
    'SitemapResolver',
    'SitemapType',
    'classify_root',
    'find_sitemap',
    # Collaborators
    'Scanner',
    'ScanOptions',
    'ScanResult',
    'TitleOnlyScanner',
    'PdfDownloader',
    'PdfHandoff',
    'download_pdf',
    'Dataset',
    # Engine
    'Autoscaler',
    'CrawlBudget',
    'CrawlerPool',
    'StopReason',
    'CrawlContext',
    'NavigationController',
    'Outcome',
    'LinkExtractor',
    # Strategies
    'CrawlResult',
    'crawl_domain',
    'crawl_sitemap',
    'crawl_intelligent_sitemap',
]

__version__ = '1.0.0'
