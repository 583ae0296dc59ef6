"""Crawl engine: the per-link state machine behind ``LinkChecker.check``.

Every link goes through the same steps: URL rewrite, protocol and skip-list
filters, host back-off, fetch, 429 and error retries, classification through
the policy pipeline and, for pages that should be recursed into, extraction of
child links that are queued on the same scheduler.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import os
import random
import re
import time
from dataclasses import dataclass, field, replace
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from .cache import CrawlCache
from .links import extract_fragment_ids, extract_links, is_html
from .options import CheckOptions, build_options, is_http_path, process_options
from .policies import Outcome, apply_policies
from .results import (
    CrawlResult,
    ErrorDetail,
    FailureDetail,
    LinkResult,
    LinkState,
    ResponseDetail,
    RetryInfo,
)
from .scheduler import Clock, Scheduler, Sleep
from .server import LocalServer, start_web_server
from .url_utils import apply_rewrites, map_url, strip_fragment, url_fragment, url_host

LOGGER = logging.getLogger(__name__)

EVENTS = (
    "link",
    "pagestart",
    "retry",
    "redirect",
    "http_insecure",
    "status_code_warning",
)

TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL)

Listener = Callable[[Any], Any]


@dataclass
class CrawlContext:
    """State shared by every task of one run."""

    options: CheckOptions
    cache: CrawlCache
    scheduler: Scheduler
    client: httpx.AsyncClient
    results: List[LinkResult] = field(default_factory=list)


@dataclass
class LinkTask:
    """One link to check; ``crawl`` means its page is parsed for more links."""

    url: str
    crawl: bool
    root_path: str
    parent: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None


@dataclass
class FetchResult:
    response: Optional[httpx.Response] = None
    body: Optional[str] = None
    failures: List[FailureDetail] = field(default_factory=list)
    will_be_retried: bool = False

    @property
    def status(self) -> int:
        return self.response.status_code if self.response is not None else 0


def _is_success(response: Optional[httpx.Response]) -> bool:
    return response is not None and 200 <= response.status_code < 300


def _error_detail(exc: Exception) -> ErrorDetail:
    cause = exc.__cause__ or exc.__context__
    return ErrorDetail(
        message=str(exc) or exc.__class__.__name__,
        cause=repr(cause) if cause is not None else exc.__class__.__name__,
    )


def _response_detail(response: httpx.Response) -> ResponseDetail:
    return ResponseDetail(
        status=response.status_code,
        status_text=response.reason_phrase,
        url=str(response.url),
        headers=dict(response.headers),
        ok=response.is_success,
    )


class LinkChecker:
    """Check a set of locations for broken links.

    Register listeners with :meth:`on` before calling :meth:`check`::

        checker = LinkChecker()
        checker.on("link", lambda result: print(result.state, result.url))
        result = await checker.check(CheckOptions(path="https://example.com"))

    ``transport`` replaces the httpx transport (``httpx.MockTransport`` in
    tests). ``clock``/``sleep`` drive retry deadlines and scheduler delays and
    ``rng`` supplies retry jitter.
    """

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._transport = transport
        self._clock: Clock = clock or time.time
        self._sleep = sleep
        self._random = rng or random.Random()
        self._listeners: Dict[str, List[Listener]] = {name: [] for name in EVENTS}

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, listener: Listener) -> "LinkChecker":
        if event not in self._listeners:
            raise ValueError(f"Unknown event {event!r}; expected one of {EVENTS}")
        self._listeners[event].append(listener)
        return self

    def off(self, event: str, listener: Listener) -> "LinkChecker":
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)
        return self

    def emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners[event]):
            listener(payload)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def check(
        self, options: Optional[CheckOptions] = None, **kwargs: Any
    ) -> CrawlResult:
        """Crawl the configured paths and return every link result.

        Raises:
            ConfigError: If the options are invalid. Nothing is crawled then.
        """
        if options is None:
            options = build_options(**kwargs)
        elif kwargs:
            options = replace(options, **kwargs)
        options = process_options(options)

        server, options = self._setup_local_server(options)
        if os.getenv("LINKSWEEP_DEBUG"):
            LOGGER.debug("Check options: %s", options)

        try:
            scheduler = Scheduler(
                options.concurrency, clock=self._clock, sleep=self._sleep
            )
            async with self._build_client(options) as client:
                context = CrawlContext(
                    options=options,
                    cache=CrawlCache(),
                    scheduler=scheduler,
                    client=client,
                )
                for path in options.paths:
                    context.cache.mark_seen(path)
                    self._enqueue(context, LinkTask(url=path, crawl=True, root_path=path))
                await scheduler.on_idle()
        finally:
            if server is not None:
                server.stop()

        result = CrawlResult.from_links(context.results)
        LOGGER.debug(
            "Checked %d links (%d broken)", len(result.links), len(result.broken)
        )
        return result

    def _setup_local_server(
        self, options: CheckOptions
    ) -> Tuple[Optional[LocalServer], CheckOptions]:
        if any(is_http_path(p) for p in options.paths):
            return None, options

        server = start_web_server(
            root=options.server_root or ".",
            port=options.port,
            markdown=bool(options.markdown),
            directory_listing=options.directory_listing,
            clean_urls=options.clean_urls,
        )
        host = f"http://localhost:{server.port}/"
        paths = []
        for path in options.paths:
            path = path.replace(os.sep, "/")
            paths.append(host + (path[1:] if path.startswith("/") else path))
        LOGGER.debug("Serving %s at %s", options.server_root, host)
        return server, replace(options, path=paths, static_http_server_host=host)

    def _build_client(self, options: CheckOptions) -> httpx.AsyncClient:
        headers = {"User-Agent": options.user_agent}
        headers.update(options.extra_headers)
        timeout = httpx.Timeout(options.timeout / 1000 if options.timeout else None)
        return httpx.AsyncClient(
            headers=headers,
            timeout=timeout,
            verify=not options.allow_insecure_certs,
            limits=httpx.Limits(max_connections=options.concurrency),
            transport=self._transport,
        )

    def _enqueue(self, context: CrawlContext, task: LinkTask, delay: float = 0.0) -> None:
        async def run() -> None:
            await self.crawl(context, task)

        context.scheduler.add(run, delay)

    # ------------------------------------------------------------------
    # Per-link state machine
    # ------------------------------------------------------------------

    async def crawl(self, context: CrawlContext, task: LinkTask) -> None:
        """Check one link, possibly re-queueing it or queueing its children."""
        options = context.options
        task.url = apply_rewrites(task.url, options.url_rewrite_expressions)

        if await self._should_skip(context, task):
            return

        fetch = await self._request_with_retry(context, task)
        if fetch.will_be_retried:
            return

        status = fetch.status
        if self._should_retry_on_error(context, task, status):
            return

        response = fetch.response
        outcome = Outcome(
            url=task.url,
            status=status,
            final_url=self._final_url(task, response),
            location=response.headers.get("location") if response is not None else None,
            has_body=self._has_body(fetch),
            is_html=response is not None and is_html(response.headers.get("content-type")),
            body=fetch.body,
            fragment=url_fragment(task.url),
            is_local=self._is_local(task.url, options),
        )
        decision = apply_policies(
            outcome,
            status_codes=options.status_codes,
            require_https=options.require_https,
            redirects=options.redirects,
            check_fragments=options.check_fragments,
            extract_ids=extract_fragment_ids,
        )
        for event, payload in decision.events:
            self.emit(event, payload)

        self._record(
            context,
            task,
            decision.state,
            status,
            [*fetch.failures, *decision.details],
        )
        await self._maybe_recurse(context, task, fetch)

    def _wants_body(self, context: CrawlContext, task: LinkTask) -> bool:
        if task.crawl:
            return True
        return context.options.check_fragments and bool(url_fragment(task.url))

    @staticmethod
    def _final_url(task: LinkTask, response: Optional[httpx.Response]) -> Optional[str]:
        if response is None:
            return None
        # Only a followed redirect changes the URL.
        return str(response.url) if response.history else task.url

    @staticmethod
    def _has_body(fetch: FetchResult) -> bool:
        if fetch.body is not None:
            return bool(fetch.body)
        if fetch.response is None:
            return False
        try:
            return int(fetch.response.headers.get("content-length", "0")) > 0
        except ValueError:
            return False

    @staticmethod
    def _is_local(url: str, options: CheckOptions) -> bool:
        host = options.static_http_server_host
        return bool(host) and url.startswith(host)

    def _record(
        self,
        context: CrawlContext,
        task: LinkTask,
        state: LinkState,
        status: int,
        failures: List[FailureDetail],
        url: Optional[str] = None,
    ) -> LinkResult:
        options = context.options
        result = LinkResult(
            url=map_url(url or task.url, options),
            status=status,
            state=state,
            parent=map_url(task.parent, options),
            failure_details=tuple(failures),
            element_metadata=task.metadata,
        )
        context.results.append(result)
        LOGGER.debug("[%s] %s %s", status, state.value, result.url)
        self.emit("link", result)
        return result

    # -- filters ---------------------------------------------------------

    async def _should_skip(self, context: CrawlContext, task: LinkTask) -> bool:
        if self._skip_protocol(context, task):
            return True
        if await self._skip_links(context, task):
            return True
        return self._handle_existing_delay(context, task)

    def _skip_protocol(self, context: CrawlContext, task: LinkTask) -> bool:
        scheme = task.url.split(":", 1)[0].lower() if ":" in task.url else ""
        if scheme in ("http", "https"):
            return False
        LOGGER.debug("Skipping non-http link %s", task.url)
        self._record(context, task, LinkState.SKIPPED, 0, [])
        return True

    async def _skip_links(self, context: CrawlContext, task: LinkTask) -> bool:
        skip = context.options.links_to_skip
        if callable(skip):
            matched = skip(task.url)
            if inspect.isawaitable(matched):
                matched = await matched
        else:
            matched = any(re.search(pattern, task.url) for pattern in skip or [])
        if not matched:
            return False
        LOGGER.debug("Skipping %s (matched links_to_skip)", task.url)
        self._record(context, task, LinkState.SKIPPED, 0, [])
        return True

    def _handle_existing_delay(self, context: CrawlContext, task: LinkTask) -> bool:
        deadline = context.cache.get_host_delay(url_host(task.url))
        if deadline is None:
            return False
        now = self._clock()
        if deadline <= now:
            return False
        LOGGER.debug("Host of %s is backing off; waiting %.1fs", task.url, deadline - now)
        self._enqueue(context, task, deadline - now)
        return True

    # -- fetching --------------------------------------------------------

    async def _fetch(
        self,
        context: CrawlContext,
        url: str,
        method: str,
        read_body: bool,
    ) -> Tuple[httpx.Response, Optional[str]]:
        client = context.client
        request = client.build_request(method, url)
        response = await client.send(
            request,
            stream=True,
            follow_redirects=context.options.redirects != "error",
        )
        body = None
        try:
            if read_body and method == "GET":
                await response.aread()
                body = response.text
        finally:
            await response.aclose()
        return response, body

    async def _request_with_retry(
        self, context: CrawlContext, task: LinkTask
    ) -> FetchResult:
        result = FetchResult()
        read_body = self._wants_body(context, task)
        method = "GET" if read_body else "HEAD"
        sent_get = method == "GET"

        try:
            result.response, result.body = await self._fetch(
                context, task.url, method, read_body
            )
            if self._should_retry_after(context, task, result.response):
                return FetchResult(will_be_retried=True)
            if result.response.status_code == 405 and not sent_get:
                sent_get = True
                result.response, result.body = await self._fetch(
                    context, task.url, "GET", read_body
                )
                if self._should_retry_after(context, task, result.response):
                    return FetchResult(will_be_retried=True)
        except TRANSPORT_ERRORS as exc:
            # DNS failures, refused connections, TLS problems, timeouts, too
            # many redirects. A plain GET below gets one more chance.
            LOGGER.debug("Request to %s failed: %s", task.url, exc)
            result.failures.append(_error_detail(exc))

        if not _is_success(result.response) and not sent_get:
            # Some servers answer HEAD badly without saying 405.
            try:
                result.response, result.body = await self._fetch(
                    context, task.url, "GET", read_body
                )
                if self._should_retry_after(context, task, result.response):
                    return FetchResult(will_be_retried=True)
            except TRANSPORT_ERRORS as exc:
                LOGGER.debug("GET fallback to %s failed: %s", task.url, exc)
                result.failures.append(_error_detail(exc))

        if result.response is not None and not _is_success(result.response):
            result.failures.append(_response_detail(result.response))
        return result

    # -- retries ---------------------------------------------------------

    def _parse_retry_after(self, raw: str) -> Optional[float]:
        """Return the absolute deadline named by a ``retry-after`` value."""
        raw = raw.strip()
        try:
            seconds = float(raw)
        except ValueError:
            seconds = None
        if seconds is not None:
            if not math.isfinite(seconds):
                return None
            return self._clock() + seconds
        try:
            parsed = parsedate_to_datetime(raw)
        except (TypeError, ValueError, IndexError):
            return None
        if parsed is None:
            return None
        return parsed.timestamp()

    def _should_retry_after(
        self,
        context: CrawlContext,
        task: LinkTask,
        response: httpx.Response,
    ) -> bool:
        """Re-queue a 429 after its ``retry-after`` or the no-header delay."""
        if response.status_code != 429:
            return False
        options = context.options
        raw = response.headers.get("retry-after")

        if options.retry and raw is not None:
            deadline = self._parse_retry_after(raw)
            if deadline is None:
                LOGGER.debug("Ignoring unparseable retry-after %r for %s", raw, task.url)
                return False
            kind = "retry-after"
            attempt = max_attempts = None
        elif options.retry_no_header and raw is None:
            max_attempts = options.retry_no_header_count
            attempt = context.cache.increment_no_header_attempt(task.url)
            if 0 <= max_attempts < attempt:
                return False
            deadline = self._clock() + options.retry_no_header_delay / 1000
            kind = "retry-no-header"
        else:
            return False

        context.cache.record_host_delay(url_host(task.url), deadline)
        delay = max(0.0, deadline - self._clock())
        self._enqueue(context, task, delay)
        LOGGER.warning("Got 429 for %s; retrying in %.0f seconds", task.url, delay)
        self.emit(
            "retry",
            RetryInfo(
                type=kind,
                url=task.url,
                status=response.status_code,
                seconds_until_retry=round(delay),
                current_attempt=attempt,
                max_attempts=max_attempts,
                retry_after_raw=raw,
            ),
        )
        return True

    def _should_retry_on_error(
        self, context: CrawlContext, task: LinkTask, status: int
    ) -> bool:
        """Back off exponentially on network errors (status 0) and 5xx."""
        options = context.options
        if not options.retry_errors:
            return False
        if 0 < status < 500:
            return False

        attempt = context.cache.increment_error_attempt(task.url)
        if attempt > options.retry_errors_count:
            return False

        delay_ms = 2**attempt * 1000 + self._random.uniform(
            0, options.retry_errors_jitter
        )
        self._enqueue(context, task, delay_ms / 1000)
        LOGGER.warning(
            "Got status %d for %s; retry %d/%d in %.0f seconds",
            status,
            task.url,
            attempt,
            options.retry_errors_count,
            delay_ms / 1000,
        )
        self.emit(
            "retry",
            RetryInfo(
                type="retry-error",
                url=task.url,
                status=status,
                seconds_until_retry=round(delay_ms / 1000),
                current_attempt=attempt,
                max_attempts=options.retry_errors_count,
            ),
        )
        return True

    # -- recursion -------------------------------------------------------

    async def _maybe_recurse(
        self, context: CrawlContext, task: LinkTask, fetch: FetchResult
    ) -> None:
        response = fetch.response
        if not task.crawl or response is None or fetch.body is None:
            return
        if not is_html(response.headers.get("content-type")):
            return

        options = context.options
        self.emit("pagestart", task.url)
        parsed_links = await asyncio.to_thread(
            extract_links, fetch.body, str(response.url), clean_urls=options.clean_urls
        )
        root_host = url_host(task.root_path)

        for parsed in parsed_links:
            if parsed.url is None:
                # Could not be turned into a URL at all.
                broken = LinkTask(
                    url=parsed.link,
                    crawl=False,
                    root_path=task.root_path,
                    parent=task.url,
                    metadata=parsed.metadata,
                )
                self._record(context, broken, LinkState.BROKEN, 0, [])
                continue

            child_url = parsed.url
            if not options.check_fragments:
                child_url = strip_fragment(child_url)

            crawl = (
                options.recurse
                and child_url.startswith(task.root_path)
                and url_host(child_url) == root_host
            )
            if context.cache.should_visit(child_url):
                self._enqueue(
                    context,
                    LinkTask(
                        url=child_url,
                        crawl=crawl,
                        root_path=task.root_path,
                        parent=task.url,
                        metadata=parsed.metadata,
                    ),
                )
