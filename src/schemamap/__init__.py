"""
Website structured-data mapper: crawls a site, extracts its JSON-LD records,
links them into a cross-page entity graph and scores identifier consistency.
"""
from schemamap.config import CrawlOptions
from schemamap.crawler import Crawler
from schemamap.graph import EntityGraph, EntityGraphBuilder
from schemamap.models import PageRef, ScanSession, SchemaRecord
from schemamap.pipeline import SchemaMapService, build_report
from schemamap.scoring import ConsistencyReport, ConsistencyScorer

__version__ = "1.0.0"
__all__ = [
    "ConsistencyReport",
    "ConsistencyScorer",
    "CrawlOptions",
    "Crawler",
    "EntityGraph",
    "EntityGraphBuilder",
    "PageRef",
    "ScanSession",
    "SchemaMapService",
    "SchemaRecord",
    "build_report",
]
