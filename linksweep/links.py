"""Link and anchor extraction from HTML pages."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from .url_utils import normalize_base_url

LOGGER = logging.getLogger(__name__)

# Attribute → tags that carry a URL in that attribute.
LINK_ATTRIBUTES: Dict[str, FrozenSet[str]] = {
    "background": frozenset({"body"}),
    "cite": frozenset({"blockquote", "del", "ins", "q"}),
    "data": frozenset({"object"}),
    "href": frozenset({"a", "area", "link"}),
    "longdesc": frozenset({"frame", "iframe", "img"}),
    "poster": frozenset({"video"}),
    "src": frozenset(
        {
            "audio",
            "embed",
            "frame",
            "iframe",
            "img",
            "input",
            "script",
            "source",
            "track",
            "video",
        }
    ),
    "srcset": frozenset({"img", "source"}),
}

# <link rel=...> hints that point at origins rather than documents.
IGNORED_LINK_RELS = frozenset({"preconnect", "dns-prefetch", "prefetch"})

# <meta> tags whose content is a URL worth checking.
URL_META_KEYS = frozenset(
    {"og:image", "og:image:url", "og:audio", "og:video", "twitter:image"}
)

REFRESH_URL = re.compile(r"url\s*=\s*['\"]?([^'\"]+)", re.IGNORECASE)

HTML_CONTENT_TYPE = re.compile(r"text/html|application/xhtml\+xml", re.IGNORECASE)

JSON_LD_TYPE = "application/ld+json"

# schema.org properties whose values are URLs.
JSON_LD_URL_KEYS = frozenset(
    {
        "url",
        "image",
        "logo",
        "sameAs",
        "contentUrl",
        "embedUrl",
        "thumbnailUrl",
        "downloadUrl",
        "installUrl",
        "discussionUrl",
        "codeRepository",
        "mainEntityOfPage",
        "license",
        "photo",
    }
)

LIKELY_URL = re.compile(r"^(?:https?:)?//|^\.{0,2}/", re.IGNORECASE)

RawLink = Tuple[str, Dict[str, str]]


@dataclass(frozen=True, slots=True)
class ParsedLink:
    """A candidate link: the raw attribute text and its absolute URL, if any.

    ``metadata`` names the element and attribute the link was found in, e.g.
    ``{"tag": "img", "attribute": "srcset"}``.
    """

    link: str
    url: Optional[str]
    metadata: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)


def is_html(content_type: Optional[str]) -> bool:
    return bool(content_type and HTML_CONTENT_TYPE.search(content_type))


def _parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def _srcset_urls(value: str) -> Iterable[str]:
    for candidate in value.split(","):
        candidate = candidate.strip()
        if candidate:
            yield candidate.split()[0]


def _meta_url(tag) -> Optional[str]:
    content = (tag.get("content") or "").strip()
    if not content:
        return None
    if (tag.get("http-equiv") or "").lower() == "refresh":
        match = REFRESH_URL.search(content)
        return match.group(1).strip() if match else None
    key = (tag.get("property") or tag.get("name") or "").lower()
    if key in URL_META_KEYS:
        return content
    return None


# ---------------------------------------------------------------------------
# JSON-LD
# ---------------------------------------------------------------------------


def _json_ld_urls(node: Any) -> Iterable[Tuple[str, str]]:
    """Yield ``(property, url)`` pairs from a parsed JSON-LD document."""
    if isinstance(node, list):
        for item in node:
            yield from _json_ld_urls(item)
        return
    if not isinstance(node, dict):
        return
    for key, value in node.items():
        if key in JSON_LD_URL_KEYS:
            values = value if isinstance(value, list) else [value]
            for item in values:
                if isinstance(item, str):
                    if LIKELY_URL.match(item.strip()):
                        yield key, item.strip()
                else:
                    yield from _json_ld_urls(item)
        elif isinstance(value, (dict, list)):
            yield from _json_ld_urls(value)


def _json_ld_links(tag) -> Iterable[RawLink]:
    source = tag.string or tag.get_text()
    if not source or not source.strip():
        return
    try:
        document = json.loads(source)
    except json.JSONDecodeError as exc:
        LOGGER.debug("Ignoring invalid JSON-LD block: %s", exc)
        return
    for key, url in _json_ld_urls(document):
        yield url, {"tag": "script", "attribute": JSON_LD_TYPE, "property": key}


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------


def _raw_links(soup: BeautifulSoup) -> Iterable[RawLink]:
    for tag in soup.find_all(True):
        if tag.name == "meta":
            value = _meta_url(tag)
            if value:
                yield value, {"tag": "meta", "attribute": "content"}
            continue
        if tag.name == "script" and (tag.get("type") or "").lower() == JSON_LD_TYPE:
            yield from _json_ld_links(tag)
            continue
        if tag.name == "link":
            rels = {r.lower() for r in (tag.get("rel") or [])}
            if rels & IGNORED_LINK_RELS:
                continue
        for attr, tags in LINK_ATTRIBUTES.items():
            if tag.name not in tags:
                continue
            value = tag.get(attr)
            if not isinstance(value, str):
                continue
            value = value.strip()
            if not value:
                continue
            metadata = {"tag": tag.name, "attribute": attr}
            if attr == "srcset":
                for url in _srcset_urls(value):
                    yield url, metadata
            else:
                yield value, metadata


def resolve_link(link: str, base_url: str) -> Optional[str]:
    """Resolve ``link`` against ``base_url``; None when it cannot be a URL."""
    try:
        resolved = urljoin(base_url, link)
        parts = urlsplit(resolved)
        # Accessing .port validates it.
        parts.port
    except ValueError:
        return None
    if parts.scheme in ("http", "https") and not parts.hostname:
        return None
    if not parts.scheme:
        return None
    return resolved


def extract_links(
    html: str,
    base_url: str,
    *,
    clean_urls: bool = False,
) -> List[ParsedLink]:
    """Return every candidate link on the page, in document order.

    The page URL is normalised for directory-style paths, and a ``<base href>``
    element overrides it. URLs inside ``application/ld+json`` scripts are
    included.
    """
    soup = _parse(html)
    base = normalize_base_url(base_url, clean_urls)
    base_tag = soup.find("base", href=True)
    if base_tag is not None:
        base = resolve_link(base_tag["href"].strip(), base) or base

    return [
        ParsedLink(link=raw, url=resolve_link(raw, base), metadata=metadata)
        for raw, metadata in _raw_links(soup)
    ]


def extract_fragment_ids(html: str) -> Set[str]:
    """Collect the anchors a fragment may point at: ``id`` and ``<a name>``."""
    soup = _parse(html)
    ids: Set[str] = set()
    for tag in soup.find_all(id=True):
        ids.add(tag["id"])
    for tag in soup.find_all("a", attrs={"name": True}):
        ids.add(tag["name"])
    return ids
