"""URL helpers shared by the crawl engine and the link extractor."""

from __future__ import annotations

import os
from typing import Iterable, Optional
from urllib.parse import urlsplit, urlunsplit

from .options import CheckOptions, UrlRewriteExpression

COMMON_PAGE_NAMES = frozenset({"index", "default", "home", "main"})


def apply_rewrites(url: str, expressions: Iterable[UrlRewriteExpression]) -> str:
    """Apply each rewrite in order; later rules see earlier rewrites."""
    for expression in expressions:
        url = expression.apply(url)
    return url


def normalize_base_url(base_url: str, clean_urls: bool = False) -> str:
    """Add a trailing slash to extensionless page URLs.

    Relative links on ``/docs/guide`` resolve against ``/docs/`` with
    ``urljoin``, while browsers serving a directory resolve them against
    ``/docs/guide/``. Paths with a file extension, common page names
    (``index``, ``home``...) and clean-URL sites are left untouched.
    """
    if clean_urls:
        return base_url
    try:
        parts = urlsplit(base_url)
    except ValueError:
        return base_url

    path = parts.path
    if not path or path.endswith("/"):
        return base_url

    last_segment = path.rsplit("/", 1)[-1]
    has_extension = "." in last_segment and last_segment.index(".") > 0
    if has_extension or last_segment.lower() in COMMON_PAGE_NAMES:
        return base_url
    return urlunsplit(parts._replace(path=path + "/"))


def map_url(url: Optional[str], options: Optional[CheckOptions]) -> Optional[str]:
    """Translate local static server URLs back to filesystem-relative paths.

    ``http://localhost:5000/docs/README.md`` → ``docs/README.md`` when the
    run started its own server. Other URLs are returned unchanged.
    """
    if not url or options is None:
        return url
    host = options.static_http_server_host
    if not host or not url.startswith(host):
        return url

    mapped = url[len(host):]
    if options.synthetic_server_root:
        mapped = os.path.join(options.synthetic_server_root, mapped)
    if mapped == "":
        mapped = "." + os.sep
    return mapped


def url_host(url: str) -> str:
    """Return ``host[:port]`` for ``url`` (empty string when unparseable)."""
    try:
        return urlsplit(url).netloc.rsplit("@", 1)[-1].lower()
    except ValueError:
        return ""


def url_fragment(url: str) -> str:
    try:
        return urlsplit(url).fragment
    except ValueError:
        return ""


def strip_fragment(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit(parts._replace(fragment=""))
