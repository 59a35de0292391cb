"""
Shared fakes and fixtures: an in-memory renderer, a scripted HTTP session and
record builders.
"""
import asyncio
import json
from typing import Dict, List, Optional, Union

import pytest
import requests

from schemamap.config import CrawlOptions
from schemamap.errors import FatalCrawlError, RenderError
from schemamap.models import PageRef, SchemaRecord
from schemamap.render import PageRenderer, RenderedPage

BASE = "https://example.com"


def make_page(
    url: str,
    schemas: Optional[List[dict]] = None,
    links: Optional[List[str]] = None,
    title: str = "",
    raw_blocks: Optional[List[str]] = None,
) -> RenderedPage:
    blocks = [json.dumps(s) for s in (schemas or [])] + list(raw_blocks or [])
    return RenderedPage(
        url=url,
        final_url=url,
        status_code=200,
        title=title,
        html="<html></html>",
        schema_blocks=blocks,
        links=list(links or []),
        load_time=0.01,
    )


def record(kind: str, page: str, id: Optional[str] = None, **props) -> SchemaRecord:
    return SchemaRecord(kind=kind, id=id, properties=dict(props), source_page=PageRef(url=page))


class FakeRenderer(PageRenderer):
    """Serves prepared pages; unknown URLs fail like a 404."""

    def __init__(
        self,
        pages: Dict[str, Union[RenderedPage, Exception]],
        delay: float = 0.0,
        fail_start: bool = False,
    ) -> None:
        self.pages = pages
        self.delay = delay
        self.fail_start = fail_start
        self.rendered: List[str] = []
        self.started = False
        self.closed = False
        self.active = 0
        self.max_active = 0

    async def start(self) -> None:
        if self.fail_start:
            raise FatalCrawlError("Browser initialization failed: no browser")
        self.started = True

    async def close(self) -> None:
        self.closed = True

    async def render(self, url: str) -> RenderedPage:
        self.rendered.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            page = self.pages.get(url)
            if page is None:
                raise RenderError(url, "HTTP 404")
            if isinstance(page, Exception):
                raise page
            return page
        finally:
            self.active -= 1


class FakeDiscoverer:
    def __init__(self, urls=()) -> None:
        self.urls = set(urls)
        self.calls = []
        self.closed = False

    async def discover(self, seed_url, base_origin, seed_page=None):
        self.calls.append((seed_url, base_origin, seed_page))
        return set(self.urls)

    def close(self) -> None:
        self.closed = True


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", headers: Optional[dict] = None) -> None:
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}
        self.url = ""


class FakeSession:
    """requests.Session stand-in answering from a URL table."""

    def __init__(self, routes: Dict[str, Union[FakeResponse, Exception]]) -> None:
        self.routes = routes
        self.headers: Dict[str, str] = {}
        self.requested: List[str] = []
        self.closed = False

    def get(self, url, timeout=None, allow_redirects=True):
        self.requested.append(url)
        answer = self.routes.get(url, FakeResponse(404))
        if isinstance(answer, Exception):
            raise answer
        answer.url = url
        return answer

    def close(self) -> None:
        self.closed = True


def sitemap_xml(*urls: str) -> str:
    entries = "".join(f"<url><loc>{u}</loc></url>" for u in urls)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'
    )


def sitemap_index_xml(*urls: str) -> str:
    entries = "".join(f"<sitemap><loc>{u}</loc></sitemap>" for u in urls)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</sitemapindex>'
    )


@pytest.fixture
def options() -> CrawlOptions:
    """Fast options for tests: no delay, short timeout."""
    return CrawlOptions(crawl_delay=0.0, timeout=2.0, renderer="static", scans_dir="unused")


@pytest.fixture
def connection_error() -> Exception:
    return requests.ConnectionError("connection refused")
