"""Shared fixtures: simulated time, fixture trees and HTTP helpers."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Dict, Optional

import httpx
import pytest

FIXTURES = Path(__file__).parent / "fixtures"


class FakeClock:
    """Epoch-seconds clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.sleeps: list = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        await asyncio.sleep(0)


def html(body: str, status: int = 200, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
    merged = {"content-type": "text/html; charset=utf-8"}
    merged.update(headers or {})
    return httpx.Response(status, headers=merged, text=body)


def page(*hrefs: str) -> str:
    links = "".join(f'<a href="{href}">{href}</a>' for href in hrefs)
    return f"<html><body>{links}</body></html>"


def site_transport(
    pages: Dict[str, httpx.Response],
    calls: Optional[list] = None,
) -> httpx.MockTransport:
    """Serve ``pages`` by URL; anything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append((request.method, str(request.url)))
        response = pages.get(str(request.url))
        if response is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(
            response.status_code,
            headers=response.headers,
            content=response.content,
        )

    return httpx.MockTransport(handler)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def make_transport() -> Callable[..., httpx.MockTransport]:
    return site_transport
