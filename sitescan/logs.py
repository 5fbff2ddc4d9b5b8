"""
Logging setup for crawl runs.

Console output uses the same ``time | level | message`` layout everywhere;
a per-run log file is added when a log directory is given.
"""

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'
DATE_FORMAT = '%H:%M:%S'

progress_logger = logging.getLogger("sitescan.progress")


def setup_logging(
    level: int = logging.INFO,
    log_dir: Optional[str] = None,
    random_token: Optional[str] = None,
) -> logging.Logger:
    """Configure the ``sitescan`` logger tree and return its root."""
    root = logging.getLogger("sitescan")
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if not any(getattr(h, "_sitescan_console", False) for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console._sitescan_console = True
        root.addHandler(console)

    if log_dir and random_token:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path / f"{random_token}.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root


def log_progress(status: str, num_scanned: int, url: str) -> None:
    """Per-URL progress line: ``[SCANNED] #12 https://...``."""
    tag = status.upper()
    if tag == "ERROR":
        progress_logger.warning(f"[{tag}] #{num_scanned} {url}")
    else:
        progress_logger.info(f"[{tag}] #{num_scanned} {url}")
