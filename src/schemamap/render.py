"""
Page renderers: turn a URL into its rendered DOM, JSON-LD blocks and links.

``BrowserRenderer`` drives headless Chromium through Playwright and waits for
network idle, so schema injected by JavaScript is seen. ``StaticRenderer``
fetches the raw HTML with requests for sites that do not need a browser.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from schemamap.config import CrawlOptions
from schemamap.errors import FatalCrawlError, RenderError, RenderTimeout
from schemamap.urls import extract_links

logger = logging.getLogger(__name__)

JSON_LD_TYPE = "application/ld+json"

_SCHEMA_BLOCKS_JS = (
    "els => els.map(e => e.textContent || '')"
)
_LINKS_JS = (
    "els => els.map(e => e.href).filter(Boolean)"
)


@dataclass(slots=True)
class RenderedPage:
    """Everything the pipeline needs from one loaded page."""
    url: str
    final_url: str
    status_code: Optional[int]
    title: str
    html: str
    schema_blocks: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    description: str = ""
    load_time: float = 0.0


def parse_rendered_html(html: str) -> Tuple[str, str, List[str], List[str]]:
    """
    Extract title, meta description, JSON-LD blocks and hrefs from HTML.

    The title falls back from ``<title>`` to a WebPage schema name, the first
    H1 and ``og:title``.
    """
    soup = BeautifulSoup(html, "lxml")

    blocks = [
        script.string or script.get_text() or ""
        for script in soup.find_all("script", attrs={"type": JSON_LD_TYPE})
    ]
    hrefs = extract_links(html)

    description = ""
    meta = soup.find("meta", attrs={"name": "description"})
    if meta and meta.get("content"):
        description = meta["content"].strip()

    return _page_title(soup, blocks), description, blocks, hrefs


def _page_title(soup: BeautifulSoup, blocks: List[str]) -> str:
    if soup.title and soup.title.string and soup.title.string.strip():
        return soup.title.string.strip()

    for block in blocks:
        try:
            data = json.loads(block)
        except ValueError:
            continue
        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                continue
            candidates = [item] + [g for g in item.get("@graph", []) if isinstance(g, dict)]
            for candidate in candidates:
                if candidate.get("@type") == "WebPage" and isinstance(candidate.get("name"), str):
                    return candidate["name"].strip()

    h1 = soup.find("h1")
    if h1 and h1.get_text(strip=True):
        return h1.get_text(" ", strip=True)

    og_title = soup.find("meta", attrs={"property": "og:title"})
    if og_title and og_title.get("content", "").strip():
        return og_title["content"].strip()

    return "Untitled Page"


class PageRenderer:
    """
    Base class for renderers. Use as an async context manager; ``start`` is
    where unrecoverable setup errors surface as ``FatalCrawlError``.
    """

    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def render(self, url: str) -> RenderedPage:
        raise NotImplementedError

    async def __aenter__(self) -> "PageRenderer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class BrowserRenderer(PageRenderer):
    """Headless Chromium via Playwright, one browser and context per scan."""

    def __init__(self, options: CrawlOptions) -> None:
        self.options = options
        self._playwright = None
        self._browser = None
        self._context = None

    async def start(self) -> None:
        if self._context is not None:
            return
        try:
            from playwright.async_api import async_playwright

            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.options.headless,
                args=[
                    "--no-sandbox",
                    "--disable-setuid-sandbox",
                    "--disable-dev-shm-usage",
                    "--disable-gpu",
                    "--no-first-run",
                    "--no-zygote",
                ],
            )
            self._context = await self._browser.new_context(
                user_agent=self.options.user_agent,
                viewport={
                    "width": self.options.viewport_width,
                    "height": self.options.viewport_height,
                },
            )
        except Exception as e:
            await self.close()
            raise FatalCrawlError(f"Browser initialization failed: {e}") from e
        logger.info("Browser initialized")

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
            self._context = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def render(self, url: str) -> RenderedPage:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeout

        if self._context is None:
            await self.start()

        timeout_ms = int(self.options.timeout * 1000)
        started = time.monotonic()
        page = None
        try:
            page = await self._context.new_page()
            response = await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            status = response.status if response else None
            if status is not None and status >= 400:
                raise RenderError(url, f"HTTP {status}")

            html = await page.content()
            blocks = await page.eval_on_selector_all(
                f'script[type="{JSON_LD_TYPE}"]', _SCHEMA_BLOCKS_JS
            )
            links = await page.eval_on_selector_all("a[href], area[href]", _LINKS_JS)
            title, description, _, _ = parse_rendered_html(html)
            return RenderedPage(
                url=url,
                final_url=page.url,
                status_code=status,
                title=title,
                html=html,
                schema_blocks=list(blocks),
                links=list(links),
                description=description,
                load_time=time.monotonic() - started,
            )
        except PlaywrightTimeout as e:
            raise RenderTimeout(url, self.options.timeout) from e
        except PlaywrightError as e:
            raise RenderError(url, str(e).splitlines()[0] if str(e) else type(e).__name__) from e
        finally:
            if page is not None:
                await page.close()


class StaticRenderer(PageRenderer):
    """Plain HTTP fetch with requests; blocking I/O runs in a worker thread."""

    def __init__(self, options: CrawlOptions, session: Optional[requests.Session] = None) -> None:
        self.options = options
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = options.user_agent

    async def close(self) -> None:
        self.session.close()

    async def render(self, url: str) -> RenderedPage:
        return await asyncio.to_thread(self._fetch, url)

    def _fetch(self, url: str) -> RenderedPage:
        started = time.monotonic()
        try:
            resp = self.session.get(url, timeout=self.options.timeout, allow_redirects=True)
        except requests.Timeout as e:
            raise RenderTimeout(url, self.options.timeout) from e
        except requests.RequestException as e:
            raise RenderError(url, str(e)) from e

        if resp.status_code >= 400:
            raise RenderError(url, f"HTTP {resp.status_code}")

        # Only parse HTML content
        content_type = (resp.headers.get("content-type") or "").lower()
        if "html" not in content_type:
            return RenderedPage(
                url=url,
                final_url=resp.url,
                status_code=resp.status_code,
                title="",
                html="",
                load_time=time.monotonic() - started,
            )

        html = resp.text
        title, description, blocks, hrefs = parse_rendered_html(html)
        return RenderedPage(
            url=url,
            final_url=resp.url,
            status_code=resp.status_code,
            title=title,
            html=html,
            schema_blocks=blocks,
            links=hrefs,
            description=description,
            load_time=time.monotonic() - started,
        )


def make_renderer(options: CrawlOptions) -> PageRenderer:
    if options.renderer == "static":
        return StaticRenderer(options)
    return BrowserRenderer(options)
