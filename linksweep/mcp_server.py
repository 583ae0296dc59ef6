"""MCP Server for the link checker.

Provides a ``check_links`` tool that checks URLs (or paths on the server's
filesystem) for broken links and returns a JSON report.

Supports both STDIO and HTTP transports.

Usage:
    # STDIO (for desktop MCP clients)
    python -m linksweep.mcp_server

    # HTTP (for remote access)
    python -m linksweep.mcp_server --transport http --port 8000

    # Or via FastMCP CLI
    fastmcp run linksweep/mcp_server.py:mcp --transport http --port 8000

Environment Variables:
    LINKSWEEP_CONCURRENCY: Default connection limit per check
    LINKSWEEP_TIMEOUT: Default request timeout in ms
    LINKSWEEP_USER_AGENT: User-Agent header sent with every request
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP

from .crawler import LinkChecker
from .options import build_options
from .results import CrawlResult, LinkState

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
LOGGER = logging.getLogger(__name__)

# Load .env before reading environment variables
load_dotenv()

mcp = FastMCP(
    name="Link Checker",
    instructions="""
    A link checker that finds broken links on websites.

    Tool:
       - check_links: Check one or more URLs for broken links, optionally
         crawling every page under the same path and host.

    The result is JSON with a pass/fail verdict, a summary and one entry per
    link (url, status, state, parent page and failure details).
    """,
)


def _format_timestamp() -> str:
    """Get current timestamp in ISO format."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


def _summarize(result: CrawlResult) -> Dict[str, int]:
    return {
        "total": len(result.links),
        "ok": sum(1 for link in result.links if link.state == LinkState.OK),
        "broken": len(result.broken),
        "skipped": len(result.skipped),
    }


def _format_result(result: CrawlResult) -> str:
    payload: Dict[str, Any] = {
        "checked_at": _format_timestamp(),
        "passed": result.passed,
        "summary": _summarize(result),
        "links": [link.to_dict() for link in result.links],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


# =============================================================================
# TOOLS
# =============================================================================


@mcp.tool
async def check_links(
    paths: List[str],
    recurse: bool = False,
    concurrency: Optional[int] = None,
    timeout: Optional[float] = None,
    skip: Optional[List[str]] = None,
    retry: bool = False,
    retry_errors: bool = False,
    retry_no_header: bool = False,
    check_fragments: bool = False,
    redirects: str = "allow",
    require_https: str = "off",
) -> str:
    """
    Check one or more locations for broken links.

    Args:
        paths: URLs (or paths on the server's disk) to start from
        recurse: Follow links that stay under the starting path and host
        concurrency: Maximum simultaneous requests (default: 100)
        timeout: Request timeout in milliseconds (default: none)
        skip: Regular expressions; matching URLs are reported as skipped
        retry: Honour 429 responses that carry a retry-after header
        retry_errors: Retry network errors and 5xx responses with backoff
        retry_no_header: Retry 429 responses without retry-after after a fixed delay
        check_fragments: Verify that #fragment anchors exist on HTML pages
        redirects: "allow" (default), "warn" or "error"
        require_https: "off" (default), "warn" or "error"

    Returns:
        JSON with checked_at, passed, summary and links.

    Examples:
        # Single page
        check_links(paths=["https://docs.example.com"])

        # Whole site, ignoring external links
        check_links(
            paths=["https://docs.example.com/"],
            recurse=True,
            skip=["^(?!https://docs\\.example\\.com)"],
        )
    """
    LOGGER.info("Checking %d location(s)...", len(paths))
    try:
        options = build_options(
            path=paths,
            recurse=recurse,
            concurrency=concurrency or _env_int("LINKSWEEP_CONCURRENCY"),
            timeout=timeout or _env_float("LINKSWEEP_TIMEOUT"),
            links_to_skip=skip,
            retry=retry,
            retry_errors=retry_errors,
            retry_no_header=retry_no_header,
            check_fragments=check_fragments,
            redirects=redirects,
            require_https=require_https,
            user_agent=os.getenv("LINKSWEEP_USER_AGENT") or None,
        )
        result = await LinkChecker().check(options)
    except ValueError as exc:  # ConfigError or a malformed LINKSWEEP_* value
        LOGGER.warning("Invalid check request: %s", exc)
        return json.dumps({"error": str(exc), "checked_at": _format_timestamp()})

    summary = _summarize(result)
    LOGGER.info(
        "Completed: %d links, %d broken, %d skipped",
        summary["total"],
        summary["broken"],
        summary["skipped"],
    )
    return _format_result(result)


# =============================================================================


def main():
    """CLI entry point for running the MCP server."""
    parser = argparse.ArgumentParser(
        description="Run the link checker MCP server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
    LINKSWEEP_CONCURRENCY  Default connection limit per check
    LINKSWEEP_TIMEOUT      Default request timeout in ms
    LINKSWEEP_USER_AGENT   User-Agent header for requests

Examples:
    # STDIO transport (default)
    python -m linksweep.mcp_server

    # HTTP transport (for remote access)
    python -m linksweep.mcp_server --transport http --port 8000

    # Custom host/port
    python -m linksweep.mcp_server --transport http --host 0.0.0.0 --port 9000
""",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to for HTTP transport (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to for HTTP transport (default: 8000)",
    )

    args = parser.parse_args()

    if args.transport == "http":
        LOGGER.info("Starting MCP server on http://%s:%d/mcp", args.host, args.port)
        mcp.run(transport="http", host=args.host, port=args.port)
    else:
        LOGGER.info("Starting MCP server with STDIO transport")
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
