"""
Link Extractor
==============
Feeds newly discovered URLs from a loaded page back into the frontier.

Static pass
    One JS evaluation collects every anchor ``href`` matching
    ``ANCHOR_SELECTOR``; each candidate is normalized, scope-checked and
    enqueued.

Dynamic pass (skipped in safe mode)
    Elements that look clickable but carry no ``href`` are tried one by
    one.  A static target (``href`` / ``data-path``) is used when present;
    otherwise the element is clicked and two listeners (``popup`` and
    ``framenavigated``) push whatever URL results onto the frontier.  If a
    click navigated the page away, the page is reopened at its original
    URL before the next element.  Every per-element failure is swallowed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, List, Optional
from urllib.parse import urldefrag, urljoin

from .constants import ANCHOR_SELECTOR, CLICKABLE_SELECTORS, NON_NAVIGATIONAL_PREFIXES
from .scope_filter import ScopePolicy, strip_tracking_params
from .state import Frontier, Request
from .utils import is_url_pdf

logger = logging.getLogger(__name__)

_COLLECT_HREFS_JS = """
(selector) => {
    const seen = new Set();
    const result = [];
    document.querySelectorAll(selector).forEach(el => {
        const href = el.getAttribute('href');
        if (href && !seen.has(href)) {
            seen.add(href);
            result.push(href);
        }
    });
    return result;
}
"""

_STATIC_TARGET_JS = "el => el.getAttribute('href') || el.getAttribute('data-path')"


def normalize_candidate(href: str, base_url: str) -> Optional[str]:
    """Absolute, fragment-free, tracking-free http(s) URL, or None."""
    href = (href or "").strip()
    if not href or href.lower().startswith(NON_NAVIGATIONAL_PREFIXES):
        return None
    try:
        absolute = urljoin(base_url, href)
    except ValueError:
        return None
    if not absolute.startswith(("http://", "https://")):
        return None
    absolute, _ = urldefrag(absolute)
    return strip_tracking_params(absolute)


def filter_hrefs(
    hrefs: Iterable[str],
    base_url: str,
    scope: ScopePolicy,
    is_disallowed: Optional[Callable[[str], bool]] = None,
) -> List[Request]:
    """Turn raw hrefs into in-scope ``Request`` objects (order kept, no duplicates)."""
    requests_: List[Request] = []
    seen = set()
    for href in hrefs:
        url = normalize_candidate(href, base_url)
        if not url or url in seen:
            continue
        seen.add(url)
        if not scope.accept(url):
            continue
        if is_disallowed and is_disallowed(url):
            continue
        requests_.append(Request(url=url, skip_navigation=is_url_pdf(url)))
    return requests_


class LinkExtractor:
    def __init__(
        self,
        frontier: Frontier,
        scope: ScopePolicy,
        is_disallowed: Optional[Callable[[str], bool]] = None,
        safe_mode: bool = False,
        max_clicks: int = 50,
        click_delay_s: float = 1.0,
        headers: Optional[dict] = None,
    ):
        self.frontier = frontier
        self.scope = scope
        self.is_disallowed = is_disallowed
        self.safe_mode = safe_mode
        self.max_clicks = max_clicks
        self.click_delay_s = click_delay_s
        self.headers = dict(headers or {})

    # ------------------------------------------------------------------
    # Frontier channel
    # ------------------------------------------------------------------

    def offer(self, href: str, base_url: str) -> bool:
        """Single entry point for both passes and both listeners."""
        found = filter_hrefs([href], base_url, self.scope, self.is_disallowed)
        if not found:
            return False
        request = found[0]
        request.headers = dict(self.headers)
        return self.frontier.enqueue_if_new(request)

    # ------------------------------------------------------------------
    # Static pass
    # ------------------------------------------------------------------

    async def extract_static(self, page) -> int:
        try:
            hrefs = await page.evaluate(_COLLECT_HREFS_JS, ANCHOR_SELECTOR)
        except Exception as e:
            logger.debug(f"[LINKS] Anchor collection failed on {page.url}: {e}")
            return 0
        base_url = page.url
        added = sum(1 for href in hrefs or [] if self.offer(href, base_url))
        logger.debug(f"[LINKS] {added} new link(s) from {base_url}")
        return added

    # ------------------------------------------------------------------
    # Dynamic pass
    # ------------------------------------------------------------------

    def _attach_listeners(self, page, initial_url: str) -> None:
        async def on_popup(popup):
            try:
                popup_url = popup.url
                if popup_url == initial_url or not self.offer(popup_url, initial_url):
                    await popup.close()
            except Exception as e:
                logger.debug(f"[LINKS] Popup handling failed: {e}")

        def on_frame_navigated(frame):
            frame_url = frame.url
            if frame_url and frame_url != initial_url and frame_url != "about:blank":
                self.offer(frame_url, initial_url)

        page.on("popup", on_popup)
        page.on("framenavigated", on_frame_navigated)

    async def _reopen(self, page, initial_url: str):
        context = page.context
        try:
            await page.close()
        except Exception as e:
            logger.debug(f"[LINKS] Closing navigated page failed: {e}")
        page = await context.new_page()
        await page.goto(initial_url, wait_until="domcontentloaded")
        self._attach_listeners(page, initial_url)
        return page

    async def discover_by_clicking(self, page):
        """
        Try every heuristically clickable element once.

        Returns the page the caller should keep using (it is replaced when a
        click navigated away and the original URL had to be reopened).
        """
        initial_url = page.url
        selector = ", ".join(CLICKABLE_SELECTORS)
        self._attach_listeners(page, initial_url)

        for index in range(self.max_clicks):
            try:
                if page.url != initial_url:
                    page = await self._reopen(page, initial_url)
                elements = await page.query_selector_all(selector)
                if index >= len(elements):
                    break
                element = elements[index]

                if not await element.is_visible():
                    continue
                target = await element.evaluate(_STATIC_TARGET_JS)
                if target:
                    self.offer(target, page.url)
                    continue
                await element.click(force=True)
                await asyncio.sleep(self.click_delay_s)
            except Exception as e:
                logger.debug(f"[LINKS] Click discovery step failed on {initial_url}: {e}")
        return page

    async def enqueue_from_page(self, page):
        """Static pass, then the dynamic pass unless safe mode is on."""
        await self.extract_static(page)
        if self.safe_mode:
            return page
        try:
            return await self.discover_by_clicking(page)
        except Exception as e:
            logger.debug(f"[LINKS] Click discovery aborted on {page.url}: {e}")
            return page
