"""Check options and run-level validation."""

from __future__ import annotations

import glob
import logging
import os
import re
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Pattern,
    Sequence,
    Union,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

REDIRECT_MODES = ("allow", "warn", "error")
HTTPS_MODES = ("off", "warn", "error")
STATUS_ACTIONS = ("ok", "warn", "skip", "error")

STATUS_KEY = re.compile(r"^(?:\d{3}|\dxx)$")

SkipPredicate = Callable[[str], Union[bool, Awaitable[bool]]]


class ConfigError(ValueError):
    """Raised when the options for a run are invalid or inconsistent."""


@dataclass(frozen=True)
class UrlRewriteExpression:
    """A regex substitution applied to every URL before it is requested."""

    pattern: Union[str, Pattern[str]]
    replacement: str

    def apply(self, url: str) -> str:
        return re.sub(self.pattern, self.replacement, url)


@dataclass(frozen=True)
class CheckOptions:
    """Options for a single check run.

    Durations are in milliseconds. ``path`` accepts one location or a list;
    locations are either all HTTP(S) URLs or all filesystem paths/globs.
    """

    path: Union[str, Sequence[str]] = field(default_factory=list)
    concurrency: int = 100
    recurse: bool = False
    timeout: Optional[float] = None
    links_to_skip: Union[Sequence[str], SkipPredicate, None] = None
    retry: bool = False
    retry_errors: bool = False
    retry_errors_count: int = 5
    retry_errors_jitter: float = 3000
    retry_no_header: bool = False
    retry_no_header_count: int = -1  # -1 retries forever
    retry_no_header_delay: float = 30 * 60 * 1000
    redirects: str = "allow"
    require_https: str = "off"
    status_codes: Mapping[str, str] = field(default_factory=dict)
    check_fragments: bool = False
    url_rewrite_expressions: Sequence[UrlRewriteExpression] = field(
        default_factory=list
    )
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    user_agent: str = DEFAULT_USER_AGENT
    allow_insecure_certs: bool = False

    # Local static server
    port: Optional[int] = None
    server_root: Optional[str] = None
    markdown: Optional[bool] = None
    directory_listing: bool = False
    clean_urls: bool = False

    # Filled in by process_options / the local server
    synthetic_server_root: Optional[str] = None
    static_http_server_host: Optional[str] = None

    @property
    def paths(self) -> List[str]:
        if isinstance(self.path, str):
            return [self.path]
        return list(self.path)


def is_http_path(path: str) -> bool:
    return path.startswith("http")


def _coerce_rewrite(item: Any) -> UrlRewriteExpression:
    if isinstance(item, UrlRewriteExpression):
        return item
    if isinstance(item, Mapping):
        return UrlRewriteExpression(item["pattern"], item["replacement"])
    pattern, replacement = item
    return UrlRewriteExpression(pattern, replacement)


def _validate_policies(options: CheckOptions) -> None:
    if options.concurrency < 1:
        raise ConfigError("'concurrency' must be a positive integer.")
    if options.retry_errors_count < 0:
        raise ConfigError("'retry_errors_count' cannot be negative.")
    if options.retry_no_header_count < -1:
        raise ConfigError(
            "'retry_no_header_count' must be -1 (unlimited) or a non-negative integer."
        )
    if options.retry_no_header_delay < 0:
        raise ConfigError("'retry_no_header_delay' cannot be negative.")
    if options.redirects not in REDIRECT_MODES:
        raise ConfigError(
            f"Invalid value for 'redirects': {options.redirects!r}. "
            f"Expected one of {', '.join(REDIRECT_MODES)}."
        )
    if options.require_https not in HTTPS_MODES:
        raise ConfigError(
            f"Invalid value for 'require_https': {options.require_https!r}. "
            f"Expected one of {', '.join(HTTPS_MODES)}."
        )
    for key, action in options.status_codes.items():
        if not STATUS_KEY.match(str(key)):
            raise ConfigError(
                f"Invalid status code key {key!r}: use a code like '404' "
                "or a pattern like '4xx'."
            )
        if action not in STATUS_ACTIONS:
            raise ConfigError(
                f"Invalid action {action!r} for status code {key}. "
                f"Expected one of {', '.join(STATUS_ACTIONS)}."
            )


def _expand_globs(paths: List[str], server_root: Optional[str]) -> List[str]:
    expanded: List[str] = []
    for file_path in paths:
        # Globs are relative to the server root when one is given.
        full_path = os.path.join(server_root, file_path) if server_root else file_path
        matches = sorted(glob.glob(full_path, recursive=True))
        if not matches:
            raise ConfigError(
                f'The provided glob "{file_path}" returned 0 results. '
                f'The current working directory is "{os.getcwd()}".'
            )
        for match in matches:
            match = os.path.normpath(match)
            if server_root:
                match = os.path.relpath(match, server_root)
            expanded.append(match)
    return expanded


def process_options(options: CheckOptions) -> CheckOptions:
    """Validate ``options`` and resolve paths, returning a normalised copy.

    Raises:
        ConfigError: If the options cannot produce a valid run.
    """
    paths = options.paths
    if not paths:
        raise ConfigError("At least one path must be provided")

    _validate_policies(options)

    url_types = {is_http_path(p) for p in paths}
    if len(url_types) > 1:
        raise ConfigError(
            "Paths cannot be mixed between HTTP and local filesystem paths."
        )
    is_url_type = url_types.pop()

    if options.server_root and is_url_type:
        raise ConfigError(
            "'server_root' cannot be defined when the 'path' points to an "
            "HTTP endpoint."
        )

    server_root = os.path.normpath(options.server_root) if options.server_root else None
    markdown = options.markdown
    synthetic_server_root = None

    if not is_url_type:
        paths = _expand_globs(paths, server_root)

        if markdown is None and any(
            os.path.splitext(p)[1].lower() == ".md" for p in paths
        ):
            markdown = True

        if not server_root:
            if len(paths) > 1:
                server_root = os.getcwd()
            else:
                target = paths[0]
                if os.path.isfile(target):
                    server_root = os.path.dirname(target) or "."
                    paths = [os.path.basename(target)]
                else:
                    server_root = target
                    paths = ["/"]
                synthetic_server_root = server_root

    links_to_skip = options.links_to_skip
    if links_to_skip is not None and not callable(links_to_skip):
        links_to_skip = list(links_to_skip)

    processed = replace(
        options,
        path=paths,
        server_root=server_root,
        markdown=bool(markdown),
        synthetic_server_root=synthetic_server_root,
        links_to_skip=links_to_skip or [],
        url_rewrite_expressions=[
            _coerce_rewrite(item) for item in options.url_rewrite_expressions
        ],
        status_codes={str(k): v for k, v in options.status_codes.items()},
        extra_headers=dict(options.extra_headers),
    )
    LOGGER.debug("Processed options: %s", processed)
    return processed


def build_options(**kwargs: Any) -> CheckOptions:
    """Build ``CheckOptions`` from keyword arguments, ignoring ``None`` values."""
    known = {name for name in CheckOptions.__dataclass_fields__}
    values: Dict[str, Any] = {}
    for key, value in kwargs.items():
        if key not in known:
            raise ConfigError(f"Unknown option: {key}")
        if value is not None:
            values[key] = value
    return CheckOptions(**values)
