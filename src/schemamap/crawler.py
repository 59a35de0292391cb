"""
Concurrent site crawler.

A fixed-size pool of asyncio workers drains one shared FIFO frontier. Each
worker renders a URL, extracts its structured data, enqueues a bounded number
of new same-origin links and sleeps for the crawl delay. A failed or timed out
render marks the URL failed and the crawl goes on.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable, Optional, Set

from schemamap.config import CrawlOptions
from schemamap.discovery import UrlDiscoverer
from schemamap.errors import RenderError, RenderTimeout, ValidationError
from schemamap.extractor import extract
from schemamap.models import PageRef, ScanProgress, ScanSession
from schemamap.render import PageRenderer, RenderedPage, make_renderer
from schemamap.urls import filter_local_links, normalize_url, origin_of, title_from_url, utc_now_iso

logger = logging.getLogger(__name__)

# Called after every page with the page and the number of links it enqueued
PageCallback = Callable[[PageRef, int], None]


class Crawler:
    """Scans one site into a ScanSession."""

    def __init__(
        self,
        options: CrawlOptions,
        renderer: Optional[PageRenderer] = None,
        discoverer: Optional[UrlDiscoverer] = None,
        on_page: Optional[PageCallback] = None,
    ) -> None:
        self.options = options
        self.renderer = renderer or make_renderer(options)
        self.discoverer = discoverer or UrlDiscoverer(options)
        self.on_page = on_page
        self.session: Optional[ScanSession] = None
        self._stop_requested = False
        self._in_flight: Set[str] = set()
        self._cond: Optional[asyncio.Condition] = None

    def stop(self) -> None:
        """Ask workers to finish; in-flight renders complete or time out."""
        self._stop_requested = True
        logger.info("Scanning stop requested")

    @property
    def stopped(self) -> bool:
        return self._stop_requested

    def progress(self) -> ScanProgress:
        if self.session is None:
            return ScanProgress(scanned=0, failed=0, queued=0, percent=0)
        return self.session.progress()

    async def crawl(
        self,
        seed_url: str,
        scan_id: Optional[str] = None,
        discover: bool = True,
    ) -> ScanSession:
        """
        Scan the seed, discover the frontier (unless ``discover`` is False) and
        drain it with the worker pool.

        Raises:
            ValidationError: the seed is not an http(s) URL.
            FatalCrawlError: the renderer could not start.
        """
        seed = normalize_url(seed_url)
        if not seed:
            raise ValidationError(
                f"Invalid start URL: {seed_url}",
                [{"field": "url", "message": "must be an absolute http(s) URL"}],
            )

        base_origin = origin_of(seed)
        session = ScanSession(
            scan_id=scan_id or uuid.uuid4().hex,
            base_url=base_origin,
            started_at=utc_now_iso(),
        )
        self.session = session
        self._in_flight = set()
        self._cond = asyncio.Condition()

        logger.info("Starting crawl from %s (max pages: %d)", seed, self.options.max_pages)

        try:
            async with self.renderer:
                session.enqueue(seed, 0)
                session.frontier.popleft()
                seed_page = await self._scan_url(session, seed, 0)

                if discover and not self._should_stop(session):
                    urls = await self.discoverer.discover(seed, base_origin, seed_page=seed_page)
                    for url in sorted(urls):
                        if not session.is_done(url):
                            session.enqueue(url, 1)

                worker_count = min(self.options.max_concurrency, len(session.frontier))
                if worker_count > 0 and not self._should_stop(session):
                    logger.info(
                        "Processing scan queue: %d URLs, %d workers", len(session.frontier), worker_count
                    )
                    await asyncio.gather(*(self._worker(session, i) for i in range(worker_count)))
        finally:
            self.discoverer.close()

        session.finished_at = utc_now_iso()
        logger.info(
            "Scan completed: %d scanned, %d failed, %d records",
            len(session.scanned), len(session.failed), len(session.records),
        )
        return session

    def _should_stop(self, session: ScanSession) -> bool:
        if self._stop_requested:
            return True
        return len(session.pages) + len(self._in_flight) >= self.options.max_pages

    async def _worker(self, session: ScanSession, worker_id: int) -> None:
        cond = self._cond
        while True:
            async with cond:
                # An empty frontier may still be refilled by pages in flight
                while not session.frontier and self._in_flight and not self._should_stop(session):
                    await cond.wait()
                if self._should_stop(session) or not session.frontier:
                    cond.notify_all()
                    logger.debug("Worker %d finished", worker_id)
                    return
                url, depth = session.frontier.popleft()
                if session.is_done(url) or url in self._in_flight:
                    continue
                self._in_flight.add(url)

            try:
                await self._scan_url(session, url, depth)
            finally:
                async with cond:
                    self._in_flight.discard(url)
                    cond.notify_all()

            # Rate limiting
            if session.frontier and not self._stop_requested:
                await asyncio.sleep(self.options.crawl_delay)

    async def _scan_url(self, session: ScanSession, url: str, depth: int) -> Optional[RenderedPage]:
        """Render, extract and enqueue links for one URL; a render failure only marks the URL failed."""
        scanned_at = utc_now_iso()
        logger.info("Scanning page: %s", url)
        try:
            rendered = await asyncio.wait_for(self.renderer.render(url), timeout=self.options.timeout)
        except asyncio.TimeoutError:
            error = str(RenderTimeout(url, self.options.timeout))
        except RenderError as e:
            error = str(e)
        except Exception as e:
            logger.exception("Renderer raised an unexpected error for %s", url)
            error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
        else:
            page = PageRef(
                url=url,
                title=rendered.title or title_from_url(url),
                scanned_at=scanned_at,
                load_time=round(rendered.load_time, 3),
            )
            records = extract(rendered.schema_blocks, page, session.extraction_errors)
            session.record_success(page, records)
            new_links = self._enqueue_links(session, rendered, depth)
            logger.info("Scanned %s (%d schemas, +%d links)", url, len(records), new_links)
            if self.on_page:
                self.on_page(page, new_links)
            return rendered

        logger.warning("Failed to scan %s: %s", url, error)
        page = PageRef(url=url, title=title_from_url(url), scanned_at=scanned_at, error=error)
        session.record_failure(page)
        if self.on_page:
            self.on_page(page, 0)
        return None

    def _enqueue_links(self, session: ScanSession, rendered: RenderedPage, depth: int) -> int:
        if not self.options.follow_links or depth >= self.options.crawl_depth:
            return 0
        added = 0
        for link in filter_local_links(rendered.links, rendered.final_url or rendered.url, session.base_url):
            if added >= self.options.max_links_per_page:
                break
            if session.is_done(link):
                continue
            if session.enqueue(link, depth + 1):
                added += 1
        return added
