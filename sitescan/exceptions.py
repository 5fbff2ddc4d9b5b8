"""
Exception taxonomy for the crawl engine.

Only ``CrawlerResourceError`` and its subclasses are allowed to escape a
crawl strategy.  Every per-page failure is converted into a bucket entry by
the navigation controller.
"""


class SitescanError(Exception):
    """Base class for all sitescan errors."""


class ConfigError(SitescanError):
    """Invalid run configuration (bad limits, unsafe exclusion patterns...)."""


class CrawlerResourceError(SitescanError):
    """A resource the whole run depends on is unavailable.  Fatal."""


class BrowserLaunchError(CrawlerResourceError):
    """The browser (or a persistent context) could not be started."""


class ProfileDirectoryError(CrawlerResourceError):
    """A per-worker browser profile directory could not be created."""
