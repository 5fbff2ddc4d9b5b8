"""
Unified Run Configuration
=========================
Single source of truth for all crawl-engine defaults and runtime limits.

Every strategy, the worker pool and the navigation controller read from
this object.  Environment variables (``SITESCAN_*``, optionally loaded from
a ``.env`` file) populate it via ``CrawlerRunConfig.from_env()``.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from .constants import DEFAULT_MAX_CONCURRENCY, DEFAULT_MAX_REQUESTS_PER_CRAWL, DEFAULT_USER_AGENT
from .exceptions import ConfigError
from .scope_filter import ScopeStrategy
from .utils import generate_random_token

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "max_requests_per_crawl": DEFAULT_MAX_REQUESTS_PER_CRAWL,
    "scan_duration": 0,                  # seconds, 0 = no wall-clock budget
    "navigation_timeout_ms": 30000,
    "page_load_timeout_ms": 10000,       # ceiling for the DOM-stability wait
    "request_handler_timeout_s": 90,
    "min_concurrency": 1,
    "max_concurrency": DEFAULT_MAX_CONCURRENCY,
    "scale_up_step": 2,
    "scale_down_step": 1,
    "slow_page_threshold_s": 15.0,
    "strategy": ScopeStrategy.SAME_DOMAIN.value,
    "file_types": "html-only",
    "headless": True,
    "storage_dir": "./sitescan_storage",
    "user_agent": DEFAULT_USER_AGENT,
}

FILE_TYPES = ("all", "html-only", "pdf-only")

_ENV_PREFIX = "SITESCAN_"


def load_blacklisted_patterns(path: Optional[str] = None) -> List[str]:
    """
    Read one exclusion regex per line from *path* (default ``exclusions.txt``).

    A missing default file yields an empty list; a missing explicit file or
    an invalid regex raises ``ConfigError``.
    """
    explicit = path is not None
    path = Path(path or "exclusions.txt")
    if not path.exists():
        if explicit:
            raise ConfigError(f"Exclusions file not found: {path}")
        return []

    patterns = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            re.compile(line)
        except re.error as e:
            raise ConfigError(f"Invalid exclusion pattern {line!r} in {path}: {e}") from e
        patterns.append(line)
    logger.info(f"[CONFIG] Loaded {len(patterns)} exclusion pattern(s) from {path}")
    return patterns


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class CrawlerRunConfig:
    """
    Configuration consumed by every crawl strategy.

    Populate via:
      - ``CrawlerRunConfig()``                          → all defaults
      - ``CrawlerRunConfig(max_requests_per_crawl=50)``  → override one value
      - ``CrawlerRunConfig.from_env()``                  → ``.env`` + ``SITESCAN_*``
    """

    # ---- Limits ----
    max_requests_per_crawl: int = _DEFAULTS["max_requests_per_crawl"]
    scan_duration: int = _DEFAULTS["scan_duration"]
    navigation_timeout_ms: int = _DEFAULTS["navigation_timeout_ms"]
    page_load_timeout_ms: int = _DEFAULTS["page_load_timeout_ms"]
    request_handler_timeout_s: int = _DEFAULTS["request_handler_timeout_s"]

    # ---- Concurrency ----
    min_concurrency: int = _DEFAULTS["min_concurrency"]
    max_concurrency: int = _DEFAULTS["max_concurrency"]
    scale_up_step: int = _DEFAULTS["scale_up_step"]
    scale_down_step: int = _DEFAULTS["scale_down_step"]
    slow_page_threshold_s: float = _DEFAULTS["slow_page_threshold_s"]

    # ---- Policy ----
    strategy: str = _DEFAULTS["strategy"]
    blacklisted_patterns: List[str] = field(default_factory=list)
    file_types: str = _DEFAULTS["file_types"]
    follow_robots: bool = False
    safe_mode: bool = False
    extra_http_headers: Dict[str, str] = field(default_factory=dict)

    # ---- Browser ----
    browser_channel: Optional[str] = None
    headless: bool = _DEFAULTS["headless"]
    user_data_dir: Optional[str] = None
    viewport: Optional[Dict[str, int]] = None
    user_agent: str = _DEFAULTS["user_agent"]

    # ---- Storage ----
    storage_dir: str = _DEFAULTS["storage_dir"]
    random_token: str = ""

    def __post_init__(self):
        if not self.random_token:
            self.random_token = generate_random_token()

    # -----------------------------------------------------------------------
    # Derived values
    # -----------------------------------------------------------------------
    @property
    def scope_strategy(self) -> ScopeStrategy:
        return ScopeStrategy.parse(self.strategy)

    @property
    def scan_html(self) -> bool:
        return self.file_types in ("all", "html-only")

    @property
    def scan_pdfs(self) -> bool:
        return self.file_types in ("all", "pdf-only")

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides) -> "CrawlerRunConfig":
        """Load ``.env`` then build a config from ``SITESCAN_*`` variables."""
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        def env(name):
            return os.environ.get(_ENV_PREFIX + name)

        kwargs = {}
        for name, cast in (
            ("MAX_REQUESTS_PER_CRAWL", int),
            ("SCAN_DURATION", int),
            ("NAVIGATION_TIMEOUT_MS", int),
            ("PAGE_LOAD_TIMEOUT_MS", int),
            ("MIN_CONCURRENCY", int),
            ("MAX_CONCURRENCY", int),
            ("STRATEGY", str),
            ("FILE_TYPES", str),
            ("BROWSER_CHANNEL", str),
            ("USER_DATA_DIR", str),
            ("STORAGE_DIR", str),
            ("USER_AGENT", str),
            ("RANDOM_TOKEN", str),
            ("FOLLOW_ROBOTS", _env_bool),
            ("SAFE_MODE", _env_bool),
            ("HEADLESS", _env_bool),
        ):
            raw = env(name)
            if raw is None or raw == "":
                continue
            try:
                kwargs[name.lower()] = cast(raw)
            except ValueError as e:
                raise ConfigError(f"{_ENV_PREFIX}{name}={raw!r}: {e}") from e

        exclusions = env("EXCLUSIONS_FILE")
        kwargs["blacklisted_patterns"] = load_blacklisted_patterns(exclusions)

        kwargs.update(overrides)
        cfg = cls(**kwargs)
        cfg.validate()
        return cfg

    def validate(self) -> "CrawlerRunConfig":
        """Raise ``ConfigError`` on values the engine cannot run with."""
        if self.max_requests_per_crawl < 1:
            raise ConfigError("max_requests_per_crawl must be >= 1")
        if self.scan_duration < 0:
            raise ConfigError("scan_duration must be >= 0")
        if not 1 <= self.min_concurrency <= self.max_concurrency:
            raise ConfigError(
                f"concurrency bounds invalid: min={self.min_concurrency} max={self.max_concurrency}"
            )
        if self.file_types not in FILE_TYPES:
            raise ConfigError(f"file_types must be one of {FILE_TYPES}, got {self.file_types!r}")
        try:
            ScopeStrategy.parse(self.strategy)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        for pattern in self.blacklisted_patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ConfigError(f"Invalid blacklisted pattern {pattern!r}: {e}") from e
        return self

    def summary(self) -> str:
        """One-line human-readable summary for logging."""
        return (
            f"max_requests={self.max_requests_per_crawl}  "
            f"duration={self.scan_duration or 'unlimited'}  "
            f"concurrency={self.min_concurrency}-{self.max_concurrency}  "
            f"strategy={self.strategy}  file_types={self.file_types}  "
            f"robots={'on' if self.follow_robots else 'off'}  "
            f"safe_mode={'on' if self.safe_mode else 'off'}"
        )
