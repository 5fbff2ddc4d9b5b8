"""
Downloadable-content probe.

Before the browser is pointed at a URL discovered during a domain crawl, a
HEAD request (plus a 4-byte ranged GET for ``.zip`` URLs) decides whether
the target is a page or a file download.  Answers are cached per URL for
the whole run; any probe failure counts as "processible".
"""

import asyncio
import logging
import threading
from typing import Dict, Optional

import requests

from .constants import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

ZIP_MAGIC = "504b0304"


def is_downloadable_response(headers) -> bool:
    content_type = (headers.get("content-type") or "").lower()
    disposition = (headers.get("content-disposition") or "").lower()
    if "attachment" in disposition:
        return True
    if content_type.startswith("application/") or "octet-stream" in content_type:
        return True
    mime = content_type.split(";", 1)[0].strip()
    if mime and not mime.startswith("text/"):
        return True
    return False


class ContentProbe:
    def __init__(self, headers: Optional[Dict[str, str]] = None, timeout: int = 15):
        self.headers = {"User-Agent": DEFAULT_USER_AGENT, **(headers or {})}
        self.timeout = timeout
        self._cache: Dict[str, bool] = {}
        self._lock = threading.Lock()

    def _probe(self, url: str) -> bool:
        response = requests.head(url, headers=self.headers, timeout=self.timeout, allow_redirects=True)
        if is_downloadable_response(response.headers):
            logger.info(f"[PROBE] Skipping downloadable content at {url}")
            return False

        if url.lower().endswith(".zip"):
            byte_response = requests.get(
                url,
                headers={**self.headers, "Range": "bytes=0-3"},
                timeout=self.timeout,
            )
            if byte_response.content[:4].hex() == ZIP_MAGIC:
                logger.info(f"[PROBE] Skipping zip file at {url}")
                return False
        return True

    def is_processible(self, url: str) -> bool:
        with self._lock:
            if url in self._cache:
                return self._cache[url]
        try:
            result = self._probe(url)
        except requests.RequestException as e:
            logger.debug(f"[PROBE] Probe failed for {url}, assuming processible: {e}")
            result = True
        with self._lock:
            self._cache.setdefault(url, result)
            return self._cache[url]

    async def is_processible_async(self, url: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.is_processible, url)
