"""Command-line interface for the link checker."""

from __future__ import annotations

import argparse
import asyncio
import logging
import re
import shutil
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .cli_config import env_settings, load_config, merge_settings, read_config_file

# Configuration directory for global CLI usage
CONFIG_DIR = Path.home() / ".config" / "linksweep"
CONFIG_ENV_FILE = CONFIG_DIR / ".env"


def _load_config() -> None:
    """Load .env configuration with fallback to user config directory.

    Search order:
    1. .env in current working directory
    2. ~/.config/linksweep/.env

    If neither exists and .env.example is found in the package directory,
    it will be copied to ~/.config/linksweep/.env as a starting point.
    """
    load_config(
        config_dir=CONFIG_DIR,
        config_env_file=CONFIG_ENV_FILE,
        cwd=Path.cwd(),
        load_env=load_dotenv,
        copy_file=shutil.copy,
    )


_load_config()

from .cli_output import (  # noqa: E402
    FORMATS,
    VERBOSITY_LEVELS,
    format_csv,
    format_json,
    format_junit,
    format_text,
    parse_format,
    parse_verbosity,
    summary_line,
)
from .crawler import LinkChecker  # noqa: E402
from .options import (  # noqa: E402
    CheckOptions,
    ConfigError,
    UrlRewriteExpression,
    build_options,
)
from .results import (  # noqa: E402
    CrawlResult,
    HttpInsecureInfo,
    RedirectInfo,
    RetryInfo,
    StatusCodeWarning,
)

# Settings that map one-to-one onto CheckOptions fields.
DIRECT_SETTINGS = (
    "concurrency",
    "recurse",
    "timeout",
    "markdown",
    "server_root",
    "directory_listing",
    "clean_urls",
    "retry",
    "retry_errors",
    "retry_errors_count",
    "retry_errors_jitter",
    "retry_no_header",
    "retry_no_header_count",
    "retry_no_header_delay",
    "redirects",
    "require_https",
    "check_fragments",
    "user_agent",
    "allow_insecure_certs",
)


def _setup_logging(verbosity: str) -> None:
    level = VERBOSITY_LEVELS.get(verbosity, logging.WARNING)
    logging.basicConfig(
        level=min(level, logging.CRITICAL + 1),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


# =============================================================================
# ARGUMENTS
# =============================================================================


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="linksweep",
        description="Find broken links on a website or in a local directory.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Check a single page
  linksweep https://example.com

  # Crawl a whole site
  linksweep https://example.com --recurse

  # Check a local docs folder, including markdown files
  linksweep ./docs --recurse --markdown

  # Skip external links and report as CSV
  linksweep . --recurse --skip "^(?!http://localhost)" --format csv
""",
    )
    # Every option defaults to None so a config file value survives unless
    # the flag was actually passed.
    parser.add_argument(
        "locations",
        nargs="+",
        help="URL(s) or path(s) to check",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file (default: ./linksweep.config.json)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Simultaneous connections (default: 100)",
    )
    parser.add_argument(
        "-r",
        "--recurse",
        action="store_true",
        default=None,
        help="Follow links under the same root path and host",
    )
    parser.add_argument(
        "-s",
        "--skip",
        action="append",
        default=None,
        help="Regex of URLs to skip; repeatable, comma/space separated",
    )
    parser.add_argument(
        "-f",
        "--format",
        type=str,
        default=None,
        help=f"Output format: {', '.join(FORMATS)} (default: text)",
    )
    parser.add_argument(
        "--silent",
        action="store_true",
        default=None,
        help="Only show broken links",
    )
    parser.add_argument(
        "--verbosity",
        type=str,
        default=None,
        help=f"One of {', '.join(VERBOSITY_LEVELS)} (default: warning)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Shorthand for --verbosity debug; prints tracebacks",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Request timeout in ms (default: none)",
    )
    parser.add_argument(
        "--markdown",
        action="store_true",
        default=None,
        help="Render and scan markdown files from a local path",
    )
    parser.add_argument(
        "--server-root",
        type=str,
        default=None,
        help="Directory the local server is started in",
    )
    parser.add_argument(
        "--directory-listing",
        action="store_true",
        default=None,
        help="Serve a listing for directories without index.html",
    )
    parser.add_argument(
        "--clean-urls",
        action="store_true",
        default=None,
        help="Serve /page from page.html on the local server",
    )
    parser.add_argument(
        "--retry",
        action="store_true",
        default=None,
        help="Retry 429 responses that carry retry-after",
    )
    parser.add_argument(
        "--retry-errors",
        action="store_true",
        default=None,
        help="Retry network errors and 5xx responses",
    )
    parser.add_argument(
        "--retry-errors-count",
        type=int,
        default=None,
        help="Maximum error retries per link (default: 5)",
    )
    parser.add_argument(
        "--retry-errors-jitter",
        type=float,
        default=None,
        help="Random extra delay in ms (default: 3000)",
    )
    parser.add_argument(
        "--retry-no-header",
        action="store_true",
        default=None,
        help="Retry 429 responses that have no retry-after header",
    )
    parser.add_argument(
        "--retry-no-header-count",
        type=int,
        default=None,
        help="Maximum no-header retries per link; -1 for unlimited (default: -1)",
    )
    parser.add_argument(
        "--retry-no-header-delay",
        type=float,
        default=None,
        help="Delay before a no-header retry in ms (default: 1800000)",
    )
    parser.add_argument(
        "--url-rewrite-search",
        type=str,
        default=None,
        help="Regex to rewrite in every URL before requesting it",
    )
    parser.add_argument(
        "--url-rewrite-replace",
        type=str,
        default=None,
        help="Replacement for --url-rewrite-search",
    )
    parser.add_argument(
        "--redirects",
        choices=["allow", "warn", "error"],
        default=None,
        help="How to treat redirects (default: allow)",
    )
    parser.add_argument(
        "--require-https",
        choices=["off", "warn", "error"],
        default=None,
        help="How to treat plain-HTTP links (default: off)",
    )
    parser.add_argument(
        "--check-fragments",
        action="store_true",
        default=None,
        help="Verify #fragment anchors exist on HTML pages",
    )
    parser.add_argument(
        "--status-code",
        action="append",
        default=None,
        metavar="CODE:ACTION",
        help="Status code rule such as 403:skip or 4xx:warn; repeatable",
    )
    parser.add_argument(
        "--header",
        action="append",
        default=None,
        metavar="'Key: Value'",
        help="Extra request header; repeatable",
    )
    parser.add_argument(
        "--user-agent",
        type=str,
        default=None,
        help="User-Agent header",
    )
    parser.add_argument(
        "--allow-insecure-certs",
        action="store_true",
        default=None,
        help="Accept invalid TLS certificates",
    )
    return parser.parse_args(argv)


def _split_skip(values: Any) -> List[str]:
    if isinstance(values, str):
        values = [values]
    patterns: List[str] = []
    for value in values or []:
        patterns.extend(p for p in re.split(r"[\s,]+", value) if p)
    return patterns


def _parse_status_codes(values: Any) -> Dict[str, str]:
    if isinstance(values, dict):
        return {str(k): str(v) for k, v in values.items()}
    rules: Dict[str, str] = {}
    for value in values or []:
        code, sep, action = value.partition(":")
        if not sep or not code.strip() or not action.strip():
            raise ConfigError(f"Invalid --status-code {value!r}; expected CODE:ACTION")
        rules[code.strip()] = action.strip().lower()
    return rules


def _parse_headers(values: Any) -> Dict[str, str]:
    if isinstance(values, dict):
        return {str(k): str(v) for k, v in values.items()}
    headers: Dict[str, str] = {}
    for value in values or []:
        key, sep, header_value = value.partition(":")
        if not sep or not key.strip():
            raise ConfigError(f"Invalid --header {value!r}; expected 'Key: Value'")
        headers[key.strip()] = header_value.strip()
    return headers


def _build_check_options(
    locations: List[str], settings: Dict[str, Any]
) -> CheckOptions:
    kwargs: Dict[str, Any] = {
        key: settings[key] for key in DIRECT_SETTINGS if key in settings
    }
    kwargs["path"] = locations

    skip = settings.get("skip", settings.get("links_to_skip"))
    if skip:
        kwargs["links_to_skip"] = _split_skip(skip)

    codes = settings.get("status_code", settings.get("status_codes"))
    if codes:
        kwargs["status_codes"] = _parse_status_codes(codes)

    headers = settings.get("header", settings.get("extra_headers"))
    if headers:
        kwargs["extra_headers"] = _parse_headers(headers)

    search = settings.get("url_rewrite_search")
    replace = settings.get("url_rewrite_replace")
    if search and replace is None:
        raise ConfigError("--url-rewrite-search requires --url-rewrite-replace")
    if search:
        kwargs["url_rewrite_expressions"] = [UrlRewriteExpression(search, replace)]

    return build_options(**kwargs)


# =============================================================================
# CHECK COMMAND
# =============================================================================


def _attach_listeners(checker: LinkChecker) -> None:
    def on_retry(info: RetryInfo) -> None:
        logging.warning("Retrying: %s in %d seconds.", info.url, info.seconds_until_retry)

    def on_redirect(info: RedirectInfo) -> None:
        kind = "Non-standard redirect" if info.is_non_standard else "Redirect"
        logging.warning("%s: %s -> %s (%d)", kind, info.url, info.target_url, info.status)

    def on_insecure(info: HttpInsecureInfo) -> None:
        logging.warning("Insecure HTTP link: %s", info.url)

    def on_status_warning(info: StatusCodeWarning) -> None:
        logging.warning("Status %d for %s", info.status, info.url)

    checker.on("retry", on_retry)
    checker.on("redirect", on_redirect)
    checker.on("http_insecure", on_insecure)
    checker.on("status_code_warning", on_status_warning)


def _print_report(result: CrawlResult, fmt: str, verbosity: str, elapsed: float) -> None:
    if fmt == "json":
        print(format_json(result, verbosity))
        return
    if fmt == "csv":
        print(format_csv(result, verbosity), end="")
        return
    if fmt == "junit":
        print(format_junit(result))
        return

    for line in format_text(result, verbosity):
        print(line)
    if verbosity != "none":
        print(summary_line(result, elapsed))


async def _run_check_async(args: argparse.Namespace) -> int:
    """Main async entry point for a check run."""
    flags = {
        key: value
        for key, value in vars(args).items()
        if key not in ("locations", "config", "verbose", "format", "silent", "verbosity")
    }
    settings = merge_settings(flags, read_config_file(args.config), env_settings())
    options = _build_check_options(args.locations, settings)

    logging.info("Checking %s", ", ".join(args.locations))
    checker = LinkChecker()
    _attach_listeners(checker)

    start = time.monotonic()
    result = await checker.check(options)
    _print_report(result, args.format, args.verbosity, time.monotonic() - start)
    return 0 if result.passed else 1


def _resolve_output_flags(args: argparse.Namespace) -> None:
    """Fill format and verbosity from the config file, then validate them."""
    config = read_config_file(args.config)
    if args.verbose:
        args.verbosity = args.verbosity or "debug"
    args.format = parse_format(args.format or config.get("format"))
    args.verbosity = parse_verbosity(
        args.verbosity or config.get("verbosity"),
        bool(args.silent if args.silent is not None else config.get("silent")),
    )


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the linksweep command."""
    args = _parse_args(argv)

    try:
        _resolve_output_flags(args)
    except ConfigError as exc:
        _setup_logging("warning")
        logging.error("Error: %s", exc)
        return 1
    _setup_logging(args.verbosity)

    try:
        return asyncio.run(_run_check_async(args))
    except KeyboardInterrupt:
        logging.info("Interrupted")
        return 130
    except Exception as exc:
        logging.error("Error: %s", exc)
        if args.verbose or args.verbosity == "debug":
            logging.exception("Full traceback:")
        return 1


if __name__ == "__main__":
    sys.exit(main())
