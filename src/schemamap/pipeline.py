"""
Pipeline wiring, scan bookkeeping and persistence.

``SchemaMapService`` exposes the four operations a front end needs
(``analyze``, ``start_scan``, ``progress``, ``results``). Active scans live in
a ``ScanRegistry`` owned by the service; finished reports are written once to
a ``ScanStore`` directory of JSON files plus a rolling ``index.json``.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import threading
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from schemamap.api import AnalyzeRequest, ScanSiteRequest, parse_request
from schemamap.config import CrawlOptions
from schemamap.crawler import Crawler
from schemamap.errors import RenderError, ScanNotFound, SchemaMapError
from schemamap.graph import EntityGraphBuilder
from schemamap.models import ScanSession
from schemamap.scoring import ConsistencyScorer, sort_recommendations
from schemamap.seo import page_recommendations, rank_records, seo_score
from schemamap.urls import utc_now_iso

logger = logging.getLogger(__name__)

CrawlerFactory = Callable[[CrawlOptions], Crawler]

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


def build_report(session: ScanSession, builder: Optional[EntityGraphBuilder] = None) -> Dict[str, Any]:
    """Graph, score and recommendations for a finished scan session."""
    graph = (builder or EntityGraphBuilder()).build(session.records)
    consistency = ConsistencyScorer().score(session.records, graph)
    recommendations = sort_recommendations(consistency.recommendations + graph.recommendations())

    return {
        "scan_id": session.scan_id,
        "base_url": session.base_url,
        "status": STATUS_COMPLETED,
        "started_at": session.started_at,
        "finished_at": session.finished_at,
        "summary": {
            "pages_scanned": len(session.scanned),
            "pages_failed": len(session.failed),
            "total_schemas": len(session.records),
            "total_entities": len(graph),
            "consistency_score": consistency.score,
            "extraction_errors": len(session.extraction_errors),
        },
        "session": session.to_dict(),
        "entity_graph": graph.to_dict(),
        "consistency": consistency.to_dict(),
        "recommendations": [r.to_dict() for r in recommendations],
    }


def build_page_report(session: ScanSession, request: AnalyzeRequest) -> Dict[str, Any]:
    """Single-page analysis payload; raises RenderError if the page failed."""
    if not session.pages:
        raise RenderError(request.url, "Page was not scanned")
    page = session.pages[0]
    if not page.ok:
        raise RenderError(page.url, page.error or "Page could not be rendered")

    opts = request.options
    records = session.records
    graph = EntityGraphBuilder().build(records)
    consistency = ConsistencyScorer().score(records, graph)

    recommendations: List[Dict[str, Any]] = []
    if opts.include_recommendations:
        recs = page_recommendations(records, page.url, page.title)
        recs += consistency.recommendations + graph.recommendations()
        recommendations = [r.to_dict() for r in sort_recommendations(recs)]

    return {
        "scan_id": session.scan_id,
        "timestamp": utc_now_iso(),
        "url": page.url,
        "status": STATUS_COMPLETED,
        "results": {
            "basic_info": {
                "page_title": page.title,
                "schemas_found": len(records),
                "load_time": page.load_time,
                "has_structured_data": bool(records),
            },
            "seo_score": seo_score(records, consistency.score, graph),
            "schemas": rank_records(records),
            "entities": graph.to_dict() if opts.analyze_entities else None,
            "recommendations": recommendations,
            "consistency_analysis": consistency.to_dict() if opts.check_consistency else None,
        },
    }


@dataclass(slots=True)
class ScanEntry:
    """Bookkeeping for one scan while it is known to this process."""
    scan_id: str
    start_url: str
    started_at: str
    options: Dict[str, Any] = field(default_factory=dict)
    status: str = STATUS_PROCESSING
    message: Optional[str] = None
    crawler: Optional[Crawler] = None
    task: Optional["asyncio.Task[None]"] = None
    report: Optional[Dict[str, Any]] = None


class ScanRegistry:
    """In-memory table of active and completed scans."""

    def __init__(self) -> None:
        self._entries: Dict[str, ScanEntry] = {}

    def __contains__(self, scan_id: str) -> bool:
        return scan_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, entry: ScanEntry) -> ScanEntry:
        self._entries[entry.scan_id] = entry
        return entry

    def get(self, scan_id: str) -> Optional[ScanEntry]:
        return self._entries.get(scan_id)

    def active(self) -> List[ScanEntry]:
        return [e for e in self._entries.values() if e.status == STATUS_PROCESSING]

    def complete(self, scan_id: str, report: Dict[str, Any]) -> None:
        entry = self._entries[scan_id]
        entry.status = STATUS_COMPLETED
        entry.report = report
        entry.crawler = None

    def fail(self, scan_id: str, message: str) -> None:
        entry = self._entries[scan_id]
        entry.status = STATUS_FAILED
        entry.message = message
        entry.crawler = None


_SCAN_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def _write_atomic(path: Path, text: str) -> None:
    """Write through a temp file in the same directory, then swap it in."""
    tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


class ScanStore:
    """One JSON document per scan plus an ``index.json``, most recent first."""

    MAX_INDEX_ENTRIES = 100
    INDEX_FILE = "index.json"

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._index_lock = threading.Lock()

    def path_for(self, scan_id: str) -> Path:
        if not _SCAN_ID.match(scan_id) or scan_id == Path(self.INDEX_FILE).stem:
            raise ScanNotFound(scan_id)
        return self.directory / f"{scan_id}.json"

    def save(self, scan_id: str, payload: Dict[str, Any], url: str, status: str = STATUS_COMPLETED) -> Path:
        path = self.path_for(scan_id)
        self.directory.mkdir(parents=True, exist_ok=True)
        _write_atomic(path, json.dumps(payload, ensure_ascii=False, indent=2, default=str))
        self._update_index(scan_id, url, status)
        logger.info("Scan %s saved to %s", scan_id, path)
        return path

    def load(self, scan_id: str) -> Dict[str, Any]:
        path = self.path_for(scan_id)
        if not path.exists():
            raise ScanNotFound(scan_id)
        return json.loads(path.read_text(encoding="utf-8"))

    def index(self) -> Dict[str, Dict[str, Any]]:
        path = self.directory / self.INDEX_FILE
        if not path.exists():
            return {}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except ValueError:
            logger.warning("Scan index %s is corrupt, starting a new one", path)
            return {}

    def _update_index(self, scan_id: str, url: str, status: str) -> None:
        # Saves run in worker threads; the read-modify-write must not interleave
        with self._index_lock:
            entries = {scan_id: {"url": url, "timestamp": utc_now_iso(), "status": status}}
            for key, value in self.index().items():
                if key != scan_id and len(entries) < self.MAX_INDEX_ENTRIES:
                    entries[key] = value
            _write_atomic(self.directory / self.INDEX_FILE, json.dumps(entries, indent=2))


class SchemaMapService:
    """
    Entry point for front ends: validates payloads, runs scans as asyncio tasks
    and answers progress and result queries.
    """

    def __init__(
        self,
        options: Optional[CrawlOptions] = None,
        store: Optional[ScanStore] = None,
        registry: Optional[ScanRegistry] = None,
        crawler_factory: Optional[CrawlerFactory] = None,
    ) -> None:
        self.options = options or CrawlOptions.from_env()
        self.store = store or ScanStore(self.options.scans_dir)
        self.registry = registry or ScanRegistry()
        self.crawler_factory = crawler_factory or Crawler

    async def analyze(self, payload: Any) -> Dict[str, Any]:
        """Scan a single URL (no discovery, no link following) and report on it."""
        request = parse_request(AnalyzeRequest, payload)
        options = self.options.merged(
            max_pages=1,
            follow_links=False,
            timeout=request.options.timeout,
            renderer=request.options.renderer,
        )
        scan_id = uuid.uuid4().hex
        logger.info("Starting single URL analysis: %s (%s)", request.url, scan_id)

        crawler = self.crawler_factory(options)
        session = await crawler.crawl(request.url, scan_id=scan_id, discover=False)
        result = build_page_report(session, request)

        await asyncio.to_thread(self.store.save, scan_id, result, result["url"])
        logger.info("Single URL analysis completed: %s, %d schemas", result["url"], len(session.records))
        return result

    async def start_scan(self, payload: Any) -> Dict[str, str]:
        """Validate and launch a site scan; returns before the crawl starts."""
        request = parse_request(ScanSiteRequest, payload)
        opts = request.options
        options = self.options.merged(
            max_pages=opts.max_pages,
            crawl_depth=opts.crawl_depth,
            crawl_delay=opts.crawl_delay,
            include_sitemaps=opts.include_sitemaps,
            renderer=opts.renderer,
        )
        scan_id = uuid.uuid4().hex
        entry = self.registry.register(ScanEntry(
            scan_id=scan_id,
            start_url=request.start_url,
            started_at=utc_now_iso(),
            options=opts.model_dump(),
            crawler=self.crawler_factory(options),
        ))
        entry.task = asyncio.create_task(self._run_scan(entry))
        logger.info("Starting site scan: %s (%s)", request.start_url, scan_id)
        return {"scan_id": scan_id, "status": STATUS_PROCESSING}

    async def wait(self, scan_id: str) -> Dict[str, Any]:
        """Block until a scan started here finishes, then return its results."""
        entry = self.registry.get(scan_id)
        if entry is None:
            raise ScanNotFound(scan_id)
        if entry.task is not None:
            await entry.task
        return self.results(scan_id)

    def stop(self, scan_id: str) -> None:
        entry = self.registry.get(scan_id)
        if entry is None:
            raise ScanNotFound(scan_id)
        if entry.crawler is not None:
            entry.crawler.stop()

    def progress(self, scan_id: str) -> Dict[str, Any]:
        entry = self.registry.get(scan_id)
        if entry is not None:
            if entry.crawler is not None:
                progress = asdict(entry.crawler.progress())
            elif entry.report is not None:
                progress = entry.report["session"]["progress"]
            else:
                progress = {"scanned": 0, "failed": 0, "queued": 0, "percent": 0}
            status: Dict[str, Any] = {"scan_id": scan_id, "status": entry.status, "progress": progress}
            if entry.message:
                status["message"] = entry.message
            return status

        report = self.store.load(scan_id)
        return {
            "scan_id": scan_id,
            "status": report.get("status", STATUS_COMPLETED),
            "progress": report.get("session", {}).get(
                "progress", {"scanned": 0, "failed": 0, "queued": 0, "percent": 0}
            ),
        }

    def results(self, scan_id: str) -> Dict[str, Any]:
        """
        The report of a scan, from memory or from the store.

        Raises:
            ScanNotFound: the id is unknown to both.
        """
        entry = self.registry.get(scan_id)
        if entry is not None:
            if entry.report is not None:
                return entry.report
            if entry.status == STATUS_FAILED:
                return {"scan_id": scan_id, "status": STATUS_FAILED, "message": entry.message}
            return self.progress(scan_id)
        return self.store.load(scan_id)

    def list_scans(self) -> Dict[str, Dict[str, Any]]:
        return self.store.index()

    async def _run_scan(self, entry: ScanEntry) -> None:
        crawler = entry.crawler
        try:
            session = await crawler.crawl(entry.start_url, scan_id=entry.scan_id)
            report = build_report(session)
        except SchemaMapError as e:
            # FatalCrawlError (browser unavailable) or an invalid start URL
            logger.error("Site scan %s failed: %s", entry.scan_id, e)
            await self._fail_scan(entry, str(e))
            return
        except Exception as e:
            logger.exception("Site scan %s failed unexpectedly", entry.scan_id)
            await self._fail_scan(entry, f"Scan failed: {type(e).__name__}: {e}")
            return

        self.registry.complete(entry.scan_id, report)
        await asyncio.to_thread(self.store.save, entry.scan_id, report, entry.start_url)
        logger.info(
            "Site scan completed: %s, %d pages, %d schemas",
            entry.start_url, report["summary"]["pages_scanned"], report["summary"]["total_schemas"],
        )

    async def _fail_scan(self, entry: ScanEntry, message: str) -> None:
        self.registry.fail(entry.scan_id, message)
        failure = {"scan_id": entry.scan_id, "status": STATUS_FAILED, "message": message}
        await asyncio.to_thread(self.store.save, entry.scan_id, failure, entry.start_url, STATUS_FAILED)
