"""
Crawl frontier seeding.

Four independent, best-effort methods: links on the seed page, conventional
sitemap locations, sitemaps declared in robots.txt and a static list of common
content paths. A failing method is logged and skipped.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Iterable, List, Optional, Set

import requests
from bs4 import BeautifulSoup

from schemamap.config import CrawlOptions
from schemamap.errors import DiscoveryError, RenderError
from schemamap.render import PageRenderer, RenderedPage
from schemamap.urls import filter_local_links, is_local, normalize_url, origin_of, should_skip_url

logger = logging.getLogger(__name__)

SITEMAP_PATHS = ("/sitemap.xml", "/sitemap_index.xml", "/sitemap1.xml", "/wp-sitemap.xml")

COMMON_PATHS = (
    "/about", "/about-us", "/contact", "/services", "/products",
    "/blog", "/news", "/events", "/team", "/careers",
    "/privacy", "/terms", "/help", "/support", "/faq",
)

# Nested sitemap indexes are followed this many levels deep
MAX_SITEMAP_DEPTH = 2

SITEMAP_DIRECTIVE = re.compile(r"^\s*sitemap\s*:\s*(\S+)", re.IGNORECASE | re.MULTILINE)


class UrlDiscoverer:
    """Builds the initial set of URLs to scan for a site."""

    def __init__(
        self,
        options: CrawlOptions,
        renderer: Optional[PageRenderer] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.options = options
        self.renderer = renderer
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = options.user_agent

    def close(self) -> None:
        self.session.close()

    async def discover(
        self,
        seed_url: str,
        base_origin: str,
        seed_page: Optional[RenderedPage] = None,
    ) -> Set[str]:
        """
        Union of all discovery methods, normalized and deduplicated.

        ``seed_page`` is the already rendered seed; when omitted and a renderer
        is available, the seed is rendered here.
        """
        found: Set[str] = set()

        found |= await self._run("page links", self.from_page(seed_url, base_origin, seed_page))
        if self.options.include_sitemaps:
            found |= await self._run(
                "sitemap", asyncio.to_thread(self.from_sitemap, base_origin, base_origin)
            )
            found |= await self._run(
                "robots.txt", asyncio.to_thread(self.from_robots, base_origin)
            )
        if self.options.include_common_pages:
            found |= self.common_pages(base_origin)

        logger.info("Discovery complete: %d URLs for %s", len(found), base_origin)
        return found

    async def _run(self, method: str, pending) -> Set[str]:
        try:
            urls = await pending
        except (DiscoveryError, RenderError, requests.RequestException, ValueError) as e:
            logger.warning("URL discovery via %s failed: %s", method, e)
            return set()
        logger.info("Discovery via %s found %d URLs", method, len(urls))
        return urls

    async def from_page(
        self,
        url: str,
        base_origin: str,
        page: Optional[RenderedPage] = None,
    ) -> Set[str]:
        """Same-origin links on the rendered seed page."""
        if page is None:
            if self.renderer is None:
                return set()
            try:
                page = await asyncio.wait_for(self.renderer.render(url), self.options.timeout)
            except asyncio.TimeoutError as e:
                raise DiscoveryError("page links", f"timed out rendering {url}") from e
        return set(filter_local_links(page.links, page.final_url or url, base_origin))

    def from_sitemap(self, origin: str, base_origin: str) -> Set[str]:
        """Try the conventional sitemap paths at ``origin`` in order."""
        candidates = [origin.rstrip("/") + path for path in SITEMAP_PATHS]
        return self._fetch_first_sitemap(candidates, base_origin, depth=0)

    def from_robots(self, base_origin: str) -> Set[str]:
        """Follow ``Sitemap:`` directives declared in robots.txt."""
        robots_url = base_origin.rstrip("/") + "/robots.txt"
        resp = self.session.get(robots_url, timeout=self.options.request_timeout, allow_redirects=True)
        if resp.status_code != 200:
            raise DiscoveryError("robots.txt", f"HTTP {resp.status_code} for {robots_url}")

        urls: Set[str] = set()
        for declared in SITEMAP_DIRECTIVE.findall(resp.text):
            logger.info("Found sitemap in robots.txt: %s", declared)
            sitemap_origin = origin_of(declared)
            candidates = _unique([declared] + [sitemap_origin + path for path in SITEMAP_PATHS])
            urls |= self._fetch_first_sitemap(candidates, base_origin, depth=0)
        return urls

    def common_pages(self, base_origin: str) -> Set[str]:
        urls = {normalize_url(base_origin.rstrip("/") + path) for path in COMMON_PATHS}
        urls.discard(None)
        return urls

    def _fetch_first_sitemap(self, candidates: Iterable[str], base_origin: str, depth: int) -> Set[str]:
        for candidate in candidates:
            try:
                resp = self.session.get(
                    candidate, timeout=self.options.request_timeout, allow_redirects=True
                )
            except requests.RequestException as e:
                logger.warning("Could not fetch sitemap %s: %s", candidate, e)
                continue
            if resp.status_code != 200:
                logger.debug("Sitemap %s returned HTTP %s", candidate, resp.status_code)
                continue
            logger.info("Using sitemap %s", candidate)
            return self._parse_sitemap(resp.text, base_origin, depth)
        return set()

    def _parse_sitemap(self, xml: str, base_origin: str, depth: int) -> Set[str]:
        soup = BeautifulSoup(xml, "xml")
        urls: Set[str] = set()
        for loc in soup.find_all("loc"):
            parent = loc.parent.name if loc.parent else None
            if parent not in ("url", "sitemap"):
                continue
            text = loc.get_text(strip=True)
            if not text:
                continue
            if parent == "sitemap":
                # Index entries are sitemaps whatever their extension (.xml.gz, .php?page=2)
                if depth + 1 < MAX_SITEMAP_DEPTH:
                    urls |= self._fetch_first_sitemap([text], base_origin, depth + 1)
                continue
            target = normalize_url(text)
            if target and is_local(target, base_origin) and not should_skip_url(target):
                urls.add(target)
        return urls


def _unique(items: List[str]) -> List[str]:
    seen: Set[str] = set()
    return [i for i in items if not (i in seen or seen.add(i))]
