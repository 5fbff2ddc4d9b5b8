"""
Constants
=========
Shared lookup tables for the crawl engine: status-code metadata, file
extensions that are never scanned, the well-known sitemap locations probed by
the intelligent strategy and the selectors used by the click-based link
discovery.
"""

from __future__ import annotations

from typing import Dict, List

DEFAULT_MAX_REQUESTS_PER_CRAWL = 100
DEFAULT_MAX_CONCURRENCY = 25

# Engine-internal codes live below 100; they never come from a server.
STATUS_PAGE_EXCLUDED = 0
STATUS_NOT_SUPPORTED_DOCUMENT = 1
STATUS_CRAWLER_ERRORED = 2
STATUS_UNCOMMON = 599

STATUS_CODE_METADATA: Dict[int, str] = {
    STATUS_PAGE_EXCLUDED: 'Page Excluded',
    STATUS_NOT_SUPPORTED_DOCUMENT: 'Not A Supported Document',
    STATUS_CRAWLER_ERRORED: 'Web Crawler Errored',
    STATUS_UNCOMMON: 'Uncommon Response Status Code Received',

    # Status OK, but the page could still not be scanned
    200: '200 - However Page Could Not Be Scanned',

    100: '100 - Continue',
    101: '101 - Switching Protocols',
    102: '102 - Processing',
    103: '103 - Early Hints',

    204: '204 - No Content',
    205: '205 - Reset Content',

    300: '300 - Multiple Choices',
    301: '301 - Moved Permanently',
    302: '302 - Found',
    303: '303 - See Other',
    304: '304 - Not Modified',
    305: '305 - Use Proxy',
    307: '307 - Temporary Redirect',
    308: '308 - Permanent Redirect',

    400: '400 - Bad Request',
    401: '401 - Unauthorized',
    402: '402 - Payment Required',
    403: '403 - Forbidden',
    404: '404 - Not Found',
    405: '405 - Method Not Allowed',
    406: '406 - Not Acceptable',
    407: '407 - Proxy Authentication Required',
    408: '408 - Request Timeout',
    409: '409 - Conflict',
    410: '410 - Gone',
    411: '411 - Length Required',
    412: '412 - Precondition Failed',
    413: '413 - Payload Too Large',
    414: '414 - URI Too Long',
    415: '415 - Unsupported Media Type',
    416: '416 - Range Not Satisfiable',
    417: '417 - Expectation Failed',
    418: "418 - I'm a teapot",
    421: '421 - Misdirected Request',
    422: '422 - Unprocessable Content',
    423: '423 - Locked',
    424: '424 - Failed Dependency',
    425: '425 - Too Early',
    426: '426 - Upgrade Required',
    428: '428 - Precondition Required',
    429: '429 - Too Many Requests',
    431: '431 - Request Header Fields Too Large',
    451: '451 - Unavailable For Legal Reasons',

    500: '500 - Internal Server Error',
    501: '501 - Not Implemented',
    502: '502 - Bad Gateway',
    503: '503 - Service Unavailable',
    504: '504 - Gateway Timeout',
    505: '505 - HTTP Version Not Supported',
    506: '506 - Variant Also Negotiates',
    507: '507 - Insufficient Storage',
    508: '508 - Loop Detected',
    510: '510 - Not Extended',
    511: '511 - Network Authentication Required',
}


def status_metadata(status_code: int) -> str:
    """Human readable metadata for *status_code*; unknown codes map to 599."""
    return STATUS_CODE_METADATA.get(status_code, STATUS_CODE_METADATA[STATUS_UNCOMMON])


BLACKLISTED_FILE_EXTENSIONS: List[str] = [
    'css', 'js', 'txt', 'mp3', 'mp4', 'jpg', 'jpeg', 'png', 'svg',
    'gif', 'woff', 'zip', 'webp', 'json', 'xml',
]

SITEMAP_PATHS: List[str] = [
    '/sitemap.xml',
    '/sitemap/sitemap.xml',
    '/sitemap-index.xml',
    '/sitemap_index.xml',
    '/sitemapindex.xml',
    '/sitemap/index.xml',
    '/sitemap1.xml',
    '/sitemap/',
    '/post-sitemap',
    '/page-sitemap',
    '/sitemap.txt',
    '/sitemap.php',
]

SITEMAP_NAMESPACE_FRAGMENT = '/schemas/sitemap'

# Elements that navigate without an href: role=link or onclick buttons that
# are not anchors, anchors with no href, and role=button non-anchors.
CLICKABLE_SELECTORS: List[str] = [
    ':not(a):is([role="link"], button[onclick])',
    'a:not([href])',
    '[role="button"]:not(a[href])',
]

# Anchors worth enqueueing: skip fragment-only links and mail links.
ANCHOR_SELECTOR = 'a[href]:not([href^="#"]):not([href^="mailto:"])'

NON_NAVIGATIONAL_PREFIXES = ('mailto:', 'tel:', 'javascript:', 'data:', '#')

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

LAUNCH_ARGS: List[str] = [
    '--disable-gpu',
    '--no-sandbox',
    '--disable-dev-shm-usage',
    '--disable-background-networking',
    '--disable-default-apps',
    '--disable-extensions',
    '--disable-sync',
    '--disable-translate',
    '--metrics-recording-only',
    '--no-first-run',
    '--mute-audio',
]
