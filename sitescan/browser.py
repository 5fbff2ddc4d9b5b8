"""
Browser session and page-load waiting.

Each pool worker gets its own persistent Chromium context backed by its own
profile directory (``<user_data_dir>/worker-<n>``) so cookies and on-disk
browser state are never shared between workers.  Launch and profile
failures are fatal to the run and surface as ``CrawlerResourceError``.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

from playwright.async_api import BrowserContext, Page, async_playwright

from .constants import LAUNCH_ARGS
from .exceptions import BrowserLaunchError, ProfileDirectoryError

logger = logging.getLogger(__name__)

# Resolves once the DOM has been quiet for 1s, or bails out on a mutation
# storm (500 mutations) or a single attribute flipping 10 times.
_DOM_STABLE_JS = """
(observerTimeout) => new Promise(resolve => {
    if (document.contentType === 'application/pdf') {
        resolve('pdf');
        return;
    }
    const root = document.documentElement || document.body;
    if (!(root instanceof Node)) {
        resolve('no-root');
        return;
    }
    let timer;
    let mutationCount = 0;
    const seen = {};
    const observer = new MutationObserver(mutations => {
        clearTimeout(timer);
        mutationCount++;
        if (mutationCount > 500) {
            observer.disconnect();
            resolve('too-many-mutations');
            return;
        }
        for (const m of mutations) {
            if (m.target instanceof Element) {
                for (const attr of Array.from(m.target.attributes)) {
                    const key = m.target.nodeName + '-' + attr.name;
                    seen[key] = (seen[key] || 0) + 1;
                    if (seen[key] >= 10) {
                        observer.disconnect();
                        resolve('attribute-thrash');
                        return;
                    }
                }
            }
        }
        timer = setTimeout(() => { observer.disconnect(); resolve('stable'); }, 1000);
    });
    timer = setTimeout(() => { observer.disconnect(); resolve('timeout'); }, observerTimeout);
    observer.observe(root, { childList: true, subtree: true, attributes: true });
})
"""


async def wait_for_page_loaded(page, timeout_ms: int = 10000) -> None:
    """
    Wait for whichever comes first: ``load``, ``networkidle``, DOM
    stability, or *timeout_ms*.  Never raises; losers are cancelled.
    """
    waiters = [
        asyncio.ensure_future(page.wait_for_load_state("load", timeout=timeout_ms)),
        asyncio.ensure_future(page.wait_for_load_state("networkidle", timeout=timeout_ms)),
        asyncio.ensure_future(page.evaluate(_DOM_STABLE_JS, timeout_ms)),
        asyncio.ensure_future(asyncio.sleep(timeout_ms / 1000)),
    ]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for w in waiters:
            if not w.done():
                w.cancel()
        await asyncio.gather(*waiters, return_exceptions=True)


class BrowserSession:
    """
    Lazily launched per-worker browser contexts.

    Usage::

        session = BrowserSession(config, profile_root)
        page = await session.new_page(worker_id)
        ...
        await session.close()
    """

    def __init__(self, config, profile_root, extra_http_headers: Optional[Dict[str, str]] = None):
        self.config = config
        self.profile_root = Path(profile_root)
        self.extra_http_headers = dict(extra_http_headers or {})
        self._playwright = None
        self._contexts: Dict[int, BrowserContext] = {}
        self._lock = asyncio.Lock()

    async def _ensure_playwright(self):
        if self._playwright is None:
            try:
                self._playwright = await async_playwright().start()
            except Exception as e:
                raise BrowserLaunchError(f"Could not start Playwright: {e}") from e
        return self._playwright

    def _profile_dir(self, worker_id: int) -> Path:
        path = self.profile_root / f"worker-{worker_id}"
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ProfileDirectoryError(f"Cannot create profile directory {path}: {e}") from e
        return path

    async def context_for(self, worker_id: int) -> BrowserContext:
        async with self._lock:
            context = self._contexts.get(worker_id)
            if context is not None:
                return context

            playwright = await self._ensure_playwright()
            profile_dir = self._profile_dir(worker_id)
            launch_kwargs = dict(
                headless=self.config.headless,
                args=LAUNCH_ARGS,
                user_agent=self.config.user_agent,
                ignore_https_errors=True,
                bypass_csp=True,
                extra_http_headers=self.extra_http_headers or None,
            )
            if self.config.browser_channel:
                launch_kwargs["channel"] = self.config.browser_channel
            if self.config.viewport:
                launch_kwargs["viewport"] = self.config.viewport
            try:
                context = await playwright.chromium.launch_persistent_context(
                    str(profile_dir), **launch_kwargs
                )
            except Exception as e:
                raise BrowserLaunchError(f"Browser launch failed for worker {worker_id}: {e}") from e

            context.set_default_navigation_timeout(self.config.navigation_timeout_ms)
            self._contexts[worker_id] = context
            logger.info(f"[BROWSER] Worker {worker_id} context ready ({profile_dir})")
            return context

    async def new_page(self, worker_id: int) -> Page:
        context = await self.context_for(worker_id)
        return await context.new_page()

    async def close(self) -> None:
        for worker_id, context in list(self._contexts.items()):
            try:
                await context.close()
            except Exception as e:
                logger.debug(f"[BROWSER] Closing worker {worker_id} context: {e}")
        self._contexts.clear()
        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.debug(f"[BROWSER] Stopping Playwright: {e}")
            self._playwright = None
