"""
Core data structures shared by the pipeline stages.
"""
from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, List, Optional, Set, Tuple, Union

# JSON value as found inside a structured-data block
Value = Union[str, int, float, bool, None, Dict[str, "Value"], List["Value"]]


@dataclass(slots=True)
class PageRef:
    """One visited URL, successful or not."""
    url: str
    title: str = ""
    scanned_at: Optional[str] = None
    error: Optional[str] = None
    load_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class SchemaRecord:
    """A single structured-data object found on a page."""
    kind: str
    id: Optional[str]
    properties: Dict[str, Value]
    source_page: PageRef

    @property
    def has_id(self) -> bool:
        return bool(self.id)

    @property
    def label(self) -> Optional[str]:
        """Human-readable name of the record, if it carries one."""
        for key in ("name", "headline", "title"):
            value = self.properties.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    def to_json_ld(self) -> Dict[str, Value]:
        data: Dict[str, Value] = {"@type": self.kind}
        if self.id:
            data["@id"] = self.id
        data.update(self.properties)
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "properties": self.properties,
            "source_page": self.source_page.url,
        }


@dataclass(slots=True)
class ExtractionError:
    """A structured-data block that could not be turned into records."""
    page_url: str
    block_index: int
    message: str


@dataclass(slots=True)
class Recommendation:
    """One report item; ``level`` is high, medium, low or success."""
    type: str
    level: str
    message: str
    affected_schemas: int = 0
    example: Optional[str] = None
    bad_example: Optional[str] = None
    details: List[str] = field(default_factory=list)
    fix: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v not in (None, [])}


@dataclass(slots=True)
class ScanProgress:
    scanned: int
    failed: int
    queued: int
    percent: int


@dataclass(slots=True)
class ScanSession:
    """
    Aggregate root of a site scan.

    Mutated only by the crawler and its workers; read-only once ``finished_at``
    is set. ``frontier`` holds ``(url, depth)`` pairs.
    """
    scan_id: str
    base_url: str
    frontier: Deque[Tuple[str, int]] = field(default_factory=deque)
    scanned: Set[str] = field(default_factory=set)
    failed: Set[str] = field(default_factory=set)
    pages: List[PageRef] = field(default_factory=list)
    records: List[SchemaRecord] = field(default_factory=list)
    extraction_errors: List[ExtractionError] = field(default_factory=list)
    enqueued: Set[str] = field(default_factory=set)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def enqueue(self, url: str, depth: int = 0) -> bool:
        """Append a URL to the frontier unless it has been seen before."""
        if url in self.enqueued:
            return False
        self.enqueued.add(url)
        self.frontier.append((url, depth))
        return True

    def is_done(self, url: str) -> bool:
        return url in self.scanned or url in self.failed

    def record_success(self, page: PageRef, records: List[SchemaRecord]) -> None:
        self.scanned.add(page.url)
        self.pages.append(page)
        self.records.extend(records)

    def record_failure(self, page: PageRef) -> None:
        self.failed.add(page.url)
        self.pages.append(page)

    @property
    def failed_pages(self) -> List[PageRef]:
        return [p for p in self.pages if not p.ok]

    def progress(self) -> ScanProgress:
        completed = len(self.scanned) + len(self.failed)
        queued = len(self.frontier)
        total = completed + queued
        percent = round(completed / total * 100) if total else 0
        return ScanProgress(
            scanned=len(self.scanned),
            failed=len(self.failed),
            queued=queued,
            percent=percent,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scan_id": self.scan_id,
            "base_url": self.base_url,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "scanned": sorted(self.scanned),
            "failed": sorted(self.failed),
            "pages": [asdict(p) for p in self.pages],
            "records": [r.to_dict() for r in self.records],
            "extraction_errors": [asdict(e) for e in self.extraction_errors],
            "progress": asdict(self.progress()),
        }
