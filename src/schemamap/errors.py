"""
Exception hierarchy.

Discovery, render and parse errors are recovered where they happen and turned
into data (failed pages, extraction errors); only ``FatalCrawlError`` aborts a
scan and ``ValidationError``/``ScanNotFound`` are meant for the caller.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class SchemaMapError(Exception):
    """Base class for every error raised by schemamap."""


class DiscoveryError(SchemaMapError):
    """A single URL discovery method failed."""

    def __init__(self, method: str, message: str) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method


class RenderError(SchemaMapError):
    """A page could not be loaded or rendered."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(message)
        self.url = url


class RenderTimeout(RenderError):
    """A render call exceeded its deadline."""

    def __init__(self, url: str, timeout: float) -> None:
        super().__init__(url, f"Timed out after {timeout:g}s")
        self.timeout = timeout


class SchemaParseError(SchemaMapError):
    """A structured-data block is not valid JSON."""

    def __init__(self, block_index: int, message: str) -> None:
        super().__init__(f"block {block_index}: {message}")
        self.block_index = block_index


class ValidationError(SchemaMapError):
    """Malformed request input, with per-field details."""

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        return {"error": str(self), "details": self.details}


class FatalCrawlError(SchemaMapError):
    """The crawl could not start (e.g. the browser is unavailable)."""


class ScanNotFound(SchemaMapError):
    """No scan with this id exists in memory or on disk."""

    def __init__(self, scan_id: str) -> None:
        super().__init__(f"Scan not found: {scan_id}")
        self.scan_id = scan_id
