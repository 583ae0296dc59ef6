"""Static file server used to check links in a local directory tree."""

from __future__ import annotations

import html
import logging
import mimetypes
import os
import re
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Optional, Tuple
from urllib.parse import unquote, urlsplit

from markdown_it import MarkdownIt

LOGGER = logging.getLogger(__name__)

REDIRECT_BODY = b"<html><body>Redirecting</body></html>"

# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------

_MARKDOWN = MarkdownIt("commonmark", {"html": True}).enable(["table", "strikethrough"])


def _slug(text: str) -> str:
    text = re.sub(r"<[^>]+>", "", text).strip().lower()
    text = re.sub(r"[^\w\- ]", "", text)
    return re.sub(r"\s", "-", text)


def render_markdown(source: str) -> str:
    """Render Markdown to an HTML document.

    Headings get GitHub-style ``id`` slugs (``-1``, ``-2``... for repeats) so
    ``#fragment`` links resolve. Raw HTML is passed through.
    """
    tokens = _MARKDOWN.parse(source)
    seen: Dict[str, int] = {}
    for index, token in enumerate(tokens):
        if token.type != "heading_open":
            continue
        slug = _slug(tokens[index + 1].content)
        count = seen.get(slug, 0)
        seen[slug] = count + 1
        token.attrSet("id", f"{slug}-{count}" if count else slug)
    body = _MARKDOWN.renderer.render(tokens, _MARKDOWN.options, {})
    return "<html><body>\n" + body + "</body></html>\n"


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


class _StaticServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(
        self,
        address: Tuple[str, int],
        root: str,
        markdown: bool,
        directory_listing: bool,
        clean_urls: bool,
    ) -> None:
        self.root = root
        self.markdown = markdown
        self.directory_listing = directory_listing
        self.clean_urls = clean_urls
        super().__init__(address, _StaticHandler)


class _StaticHandler(BaseHTTPRequestHandler):
    server: _StaticServer

    def log_message(self, format: str, *args) -> None:  # noqa: A003
        LOGGER.debug("local server: " + format, *args)

    def do_GET(self) -> None:  # noqa: N802
        self._respond(include_body=True)

    def do_HEAD(self) -> None:  # noqa: N802
        self._respond(include_body=False)

    def _respond(self, include_body: bool) -> None:
        status, headers, body = self._resolve()
        self.send_response(status)
        for key, value in headers.items():
            self.send_header(key, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if include_body:
            self.wfile.write(body)

    def _local_path(self, url_path: str) -> Optional[str]:
        root = self.server.root
        local = os.path.realpath(os.path.join(root, url_path.lstrip("/")))
        if local != root and not local.startswith(root + os.sep):
            return None
        return local

    def _resolve(self) -> Tuple[int, Dict[str, str], bytes]:
        url_path = unquote(urlsplit(self.path).path) or "/"
        local = self._local_path(url_path)
        if local is None:
            return _not_found(url_path)

        if url_path.endswith("/"):
            index = os.path.join(local, "index.html")
            if os.path.isfile(index):
                return self._file(index, url_path)
            if self.server.directory_listing and os.path.isdir(local):
                return _listing(local)
            return _not_found(url_path)

        if os.path.isdir(local):
            headers = {
                "Location": url_path + "/",
                "Content-Type": "text/html; charset=utf-8",
            }
            return 301, headers, REDIRECT_BODY
        if os.path.isfile(local):
            return self._file(local, url_path)
        if self.server.clean_urls and os.path.isfile(local + ".html"):
            return self._file(local + ".html", url_path)
        return _not_found(url_path)

    def _file(self, local: str, url_path: str) -> Tuple[int, Dict[str, str], bytes]:
        with open(local, "rb") as handle:
            data = handle.read()
        if self.server.markdown and url_path.lower().endswith(".md"):
            rendered = render_markdown(data.decode("utf-8", errors="replace"))
            return 200, {"Content-Type": "text/html; charset=utf-8"}, rendered.encode("utf-8")
        content_type = mimetypes.guess_type(local)[0] or "application/octet-stream"
        if content_type.startswith("text/"):
            content_type += "; charset=utf-8"
        return 200, {"Content-Type": content_type}, data


def _not_found(url_path: str) -> Tuple[int, Dict[str, str], bytes]:
    body = f"Not found: {html.escape(url_path)}".encode("utf-8")
    return 404, {"Content-Type": "text/plain; charset=utf-8"}, body


def _listing(directory: str) -> Tuple[int, Dict[str, str], bytes]:
    items = "\r\n".join(
        f'<li><a href="{html.escape(name)}">{html.escape(name)}</a></li>'
        for name in sorted(os.listdir(directory))
    )
    body = f"<html><body><ul>{items}</ul></body></html>".encode("utf-8")
    return 200, {"Content-Type": "text/html; charset=utf-8"}, body


@dataclass
class LocalServer:
    """A running static server; call :meth:`stop` when the run is over."""

    port: int
    root: str
    _httpd: _StaticServer
    _thread: threading.Thread

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}/"

    def stop(self) -> None:
        self._httpd.shutdown()
        self._httpd.server_close()
        self._thread.join(timeout=5)
        LOGGER.debug("Stopped local server on port %d", self.port)


def start_web_server(
    root: str,
    port: Optional[int] = None,
    *,
    markdown: bool = False,
    directory_listing: bool = False,
    clean_urls: bool = False,
) -> LocalServer:
    """Serve ``root`` on ``localhost`` from a daemon thread.

    ``port`` defaults to a free ephemeral port; read it back from the
    returned :class:`LocalServer`.
    """
    root = os.path.realpath(root)
    httpd = _StaticServer(
        ("localhost", port or 0),
        root=root,
        markdown=markdown,
        directory_listing=directory_listing,
        clean_urls=clean_urls,
    )
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    bound_port = httpd.server_address[1]
    LOGGER.debug("Serving %s on port %d", root, bound_port)
    return LocalServer(port=bound_port, root=root, _httpd=httpd, _thread=thread)
