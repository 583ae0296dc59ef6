"""Broken-link checker for websites and local directory trees.

This module provides a small API for crawling a site (or a directory served
by a throwaway local web server) and classifying every link it finds as
OK, BROKEN or SKIPPED. It supports:

- Single or multiple roots, HTTP URLs or filesystem paths/globs
- Recursion restricted to the root's path prefix and host
- 429 ``retry-after`` handling and exponential retry of transient errors
- Status-code, HTTPS, redirect and fragment policies

Example usage:

    from linksweep import check, LinkChecker, CheckOptions

    # One call
    result = check("https://example.com", recurse=True)
    for link in result.broken:
        print(link.status, link.url, "on", link.parent)

    # Streaming results as they arrive
    checker = LinkChecker()
    checker.on("link", lambda link: print(link.state.value, link.url))
    result = await checker.check(CheckOptions(path="./docs", markdown=True))
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence, Union

from .crawler import EVENTS, LinkChecker
from .options import CheckOptions, ConfigError, UrlRewriteExpression, build_options
from .results import (
    CrawlResult,
    ErrorDetail,
    HttpInsecureInfo,
    LinkResult,
    LinkState,
    RedirectInfo,
    ResponseDetail,
    RetryInfo,
    StatusCodeWarning,
)

__all__ = [
    # Engine
    "LinkChecker",
    "EVENTS",
    "check",
    "check_async",
    # Options
    "CheckOptions",
    "ConfigError",
    "UrlRewriteExpression",
    # Results
    "CrawlResult",
    "LinkResult",
    "LinkState",
    "ErrorDetail",
    "ResponseDetail",
    # Event payloads
    "RetryInfo",
    "RedirectInfo",
    "HttpInsecureInfo",
    "StatusCodeWarning",
    # MCP Server
    "mcp",
]


# Lazy import for mcp to avoid requiring fastmcp if not used
def __getattr__(name):
    if name == "mcp":
        from .mcp_server import mcp

        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


async def check_async(
    path: Union[str, Sequence[str], CheckOptions],
    **kwargs: Any,
) -> CrawlResult:
    """
    Check one or more locations for broken links.

    Args:
        path: A URL, a filesystem path/glob, a list of either, or a fully
            built ``CheckOptions``.
        **kwargs: Any ``CheckOptions`` field (``recurse``, ``concurrency``...).

    Returns:
        CrawlResult with every link result and the pass/fail verdict.

    Raises:
        ConfigError: If the options are invalid.
    """
    options: Optional[CheckOptions]
    if isinstance(path, CheckOptions):
        options = path
    else:
        options = build_options(path=path, **kwargs)
        kwargs = {}
    return await LinkChecker().check(options, **kwargs)


def check(
    path: Union[str, Sequence[str], CheckOptions],
    **kwargs: Any,
) -> CrawlResult:
    """Synchronous wrapper for check_async."""
    return asyncio.run(check_async(path, **kwargs))
