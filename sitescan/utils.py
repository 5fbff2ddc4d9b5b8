"""
Utility Functions
URL credential handling, file/PDF detection and small helpers shared by the
crawlers.
"""

import base64
import logging
import os
import re
import secrets
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse, urlunparse
from urllib.request import pathname2url, url2pathname

from .constants import BLACKLISTED_FILE_EXTENSIONS

logger = logging.getLogger(__name__)

_PDF_RE = re.compile(r"\.pdf($|\?|#)", re.IGNORECASE)
_DRIVE_LETTER_RE = re.compile(r"^[A-Z]:", re.IGNORECASE)
_HTTP_URL_RE = re.compile(r'^(http|https)://[^ "]+$')


def is_valid_http_url(url: str) -> bool:
    return bool(_HTTP_URL_RE.match(url or ""))


def is_file_path(url: str) -> bool:
    """True for ``file://`` URLs, absolute POSIX paths and Windows paths."""
    return (
        url.startswith("file://")
        or url.startswith("/")
        or bool(_DRIVE_LETTER_RE.match(url))
        or "\\" in url
    )


def convert_local_file_to_path(url: str) -> str:
    """``file:///tmp/a.xml`` → ``/tmp/a.xml``; other inputs are returned as-is."""
    if url.startswith("file://"):
        return url2pathname(unquote(urlparse(url).path))
    return url


def convert_path_to_local_file(file_path: str) -> str:
    """``/tmp/a.html`` → ``file:///tmp/a.html``; other inputs are returned as-is."""
    if file_path.startswith("/"):
        return "file://" + pathname2url(file_path)
    return file_path


def is_url_pdf(url: str) -> bool:
    """PDF detection by extension, tolerant of query strings and fragments."""
    if is_file_path(url):
        return url.lower().endswith(".pdf")
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return bool(_PDF_RE.search(parsed.path) or _PDF_RE.search(url))


def is_blacklisted_file_extension(url: str, extensions: Optional[List[str]] = None) -> bool:
    extensions = BLACKLISTED_FILE_EXTENSIONS if extensions is None else extensions
    return url.split(".")[-1] in extensions


def is_whitelisted_content_type(content_type: str) -> bool:
    return (content_type or "").strip().lower().startswith("text/html")


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

def url_without_auth(url: str) -> str:
    """Strip ``user:pass@`` from *url*.  Reported URLs never carry credentials."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not (parsed.username or parsed.password):
        return url
    netloc = parsed.netloc.rsplit("@", 1)[-1]
    return urlunparse(parsed._replace(netloc=netloc))


def extract_basic_auth(url: str) -> Tuple[str, Dict[str, str]]:
    """
    Split embedded credentials out of *url*.

    Returns the URL without credentials and the headers to send instead
    (``{"Authorization": "Basic ..."}``, or ``{}`` when the URL had none).
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return url, {}
    if not parsed.username or parsed.password is None:
        return url, {}

    username = unquote(parsed.username)
    password = unquote(parsed.password)
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return url_without_auth(url), {"Authorization": f"Basic {token}"}


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc.rsplit('@', 1)[-1]}"


def home_url(url: str) -> str:
    """Scheme + host (+ port) of *url*, keeping credentials when present."""
    parsed = urlparse(url)
    port = f":{parsed.port}" if parsed.port else ""
    if parsed.username and parsed.password:
        return f"{parsed.scheme}://{parsed.username}:{parsed.password}@{parsed.hostname}{port}"
    return f"{parsed.scheme}://{parsed.hostname}{port}"


# ---------------------------------------------------------------------------
# Run bookkeeping
# ---------------------------------------------------------------------------

def generate_random_token(label: str = "crawl") -> str:
    """Per-run token: ``<yyyymmdd_HHMMSS>_<label>_<hex>``."""
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    safe_label = re.sub(r"[^\w\-]", "_", label)[:40] or "crawl"
    return f"{stamp}_{safe_label}_{secrets.token_hex(3)}"


def ensure_dir(path) -> Path:
    p = Path(path)
    os.makedirs(p, exist_ok=True)
    return p


class Stopwatch:
    """Monotonic elapsed-time helper used for the scan-duration budget."""

    def __init__(self):
        self.start_time = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time
