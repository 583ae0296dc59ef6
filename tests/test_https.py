from __future__ import annotations

import pytest
from conftest import FIXTURES, html, page, site_transport

from linksweep import CheckOptions, LinkChecker, LinkState
from linksweep.policies import HTTPS_REQUIRED_MESSAGE

HTTP_ROOT = "http://example.com/"


def _transport():
    return site_transport(
        {
            HTTP_ROOT: html(page("https://example.com/secure")),
            "https://example.com/secure": html("<p>secure</p>"),
        }
    )


async def _check(mode: str, **kwargs):
    events: list = []
    checker = LinkChecker(transport=kwargs.pop("transport", None) or _transport())
    checker.on("http_insecure", events.append)
    result = await checker.check(CheckOptions(require_https=mode, **kwargs))
    return result, events


@pytest.mark.asyncio
async def test_https_off_accepts_plain_http() -> None:
    result, events = await _check("off", path=HTTP_ROOT)

    assert result.passed is True
    assert events == []


@pytest.mark.asyncio
async def test_https_warn_reports_only_http_links() -> None:
    result, events = await _check("warn", path=HTTP_ROOT)

    assert result.passed is True
    assert [event.url for event in events] == [HTTP_ROOT]


@pytest.mark.asyncio
async def test_https_error_breaks_http_links() -> None:
    result, events = await _check("error", path=HTTP_ROOT)
    links = {link.url: link for link in result.links}

    assert result.passed is False
    assert links[HTTP_ROOT].state == LinkState.BROKEN
    assert links[HTTP_ROOT].status == 200
    assert links[HTTP_ROOT].failure_details[-1].message == HTTPS_REQUIRED_MESSAGE
    assert links["https://example.com/secure"].state == LinkState.OK
    assert events == []


@pytest.mark.asyncio
async def test_local_server_is_exempt_from_https_policy() -> None:
    events: list = []
    checker = LinkChecker().on("http_insecure", events.append)

    result = await checker.check(
        CheckOptions(
            path=str(FIXTURES / "relative"),
            recurse=True,
            require_https="error",
        )
    )

    assert result.passed is True
    assert events == []
