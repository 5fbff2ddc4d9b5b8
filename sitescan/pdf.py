"""
PDF hand-off
============
PDFs are never opened in the browser.  Their bytes are downloaded with
``requests`` into ``<storage_dir>/<random_token>/pdfs/<uuid>.pdf`` and a
``PdfHandoff`` record is emitted for the external PDF pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

import requests

from .constants import DEFAULT_USER_AGENT
from .utils import ensure_dir

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


@dataclass
class PdfHandoff:
    url: str
    downloaded_file_path: str

    def to_dict(self) -> dict:
        return {'url': self.url, 'downloadedFilePath': self.downloaded_file_path}


def download_pdf(
    url: str,
    dest_dir,
    headers: Optional[Dict[str, str]] = None,
    timeout: int = 60,
) -> Optional[PdfHandoff]:
    """
    Download *url* into *dest_dir*.

    Returns ``None`` (and leaves nothing on disk) when the request fails or
    the body does not start with the PDF magic bytes.
    """
    dest = ensure_dir(dest_dir) / f"{uuid.uuid4()}.pdf"
    request_headers = {"User-Agent": DEFAULT_USER_AGENT, **(headers or {})}
    try:
        with requests.get(url, headers=request_headers, timeout=timeout, stream=True) as response:
            response.raise_for_status()
            with open(dest, "wb") as fh:
                for chunk in response.iter_content(chunk_size=64 * 1024):
                    if chunk:
                        fh.write(chunk)
    except (requests.RequestException, OSError) as e:
        logger.warning(f"[PDF] Download failed for {url}: {e}")
        dest.unlink(missing_ok=True)
        return None

    with open(dest, "rb") as fh:
        head = fh.read(len(PDF_MAGIC))
    if head != PDF_MAGIC:
        logger.info(f"[PDF] {url} is not a PDF document")
        dest.unlink(missing_ok=True)
        return None

    return PdfHandoff(url=url, downloaded_file_path=str(dest))


class PdfDownloader:
    """
    Collects PDF downloads for one run.

    *on_downloaded* is called once per successful download, which is how the
    external PDF pipeline is fed.
    """

    def __init__(
        self,
        storage_dir: str,
        random_token: str,
        headers: Optional[Dict[str, str]] = None,
        on_downloaded: Optional[Callable[[PdfHandoff], None]] = None,
    ):
        self.dest_dir = Path(storage_dir) / random_token / "pdfs"
        self.headers = dict(headers or {})
        self.on_downloaded = on_downloaded
        self._lock = threading.Lock()
        self._handoffs: List[PdfHandoff] = []

    @property
    def handoffs(self) -> List[PdfHandoff]:
        with self._lock:
            return list(self._handoffs)

    def download(self, url: str, headers: Optional[Dict[str, str]] = None) -> Optional[PdfHandoff]:
        handoff = download_pdf(url, self.dest_dir, headers={**self.headers, **(headers or {})})
        if handoff is None:
            return None
        with self._lock:
            self._handoffs.append(handoff)
        logger.info(f"[PDF] Downloaded {url} -> {handoff.downloaded_file_path}")
        if self.on_downloaded:
            self.on_downloaded(handoff)
        return handoff

    async def download_async(self, url: str, headers: Optional[Dict[str, str]] = None) -> Optional[PdfHandoff]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.download, url, headers)
