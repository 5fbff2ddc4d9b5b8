"""
Scanner interface.

The crawl engine hands every loaded, in-scope HTML page to a scanner and
records whatever it returns; it knows nothing about the rules inside.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@dataclass
class ScanOptions:
    random_token: str = ""
    include_screenshots: bool = False
    ruleset: List[str] = field(default_factory=list)


@dataclass
class ScanResult:
    page_title: str = ""
    violations: List[Dict[str, Any]] = field(default_factory=list)
    passes: List[Dict[str, Any]] = field(default_factory=list)
    incomplete: List[Dict[str, Any]] = field(default_factory=list)
    url: str = ""
    actual_url: str = ""

    def to_dict(self) -> dict:
        return {
            'pageTitle': self.page_title,
            'url': self.url,
            'actualUrl': self.actual_url or self.url,
            'violations': self.violations,
            'passes': self.passes,
            'incomplete': self.incomplete,
        }


@runtime_checkable
class Scanner(Protocol):
    async def scan(self, page, options: ScanOptions) -> ScanResult:
        """Evaluate a loaded page.  Any exception counts as a page-level error."""
        ...


class TitleOnlyScanner:
    """Records the page title and nothing else; useful for crawl-only runs."""

    async def scan(self, page, options: Optional[ScanOptions] = None) -> ScanResult:
        return ScanResult(page_title=await page.title())
