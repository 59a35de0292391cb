"""
JSON-LD block parsing into SchemaRecord objects.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, List, Optional

from schemamap.errors import SchemaParseError
from schemamap.models import ExtractionError, PageRef, SchemaRecord

logger = logging.getLogger(__name__)

# Keys that identify a record but carry no content of their own
STRUCTURAL_KEYS = frozenset(("@type", "@id", "@context"))

# Keys dropped from the stored properties
DROPPED_KEYS = frozenset(("@type", "@id", "@context", "@graph"))


def record_kind(obj: Dict[str, Any]) -> Optional[str]:
    """The record's type; the first entry when ``@type`` is a list."""
    kind = obj.get("@type")
    if isinstance(kind, list):
        kind = kind[0] if kind else None
    if isinstance(kind, str) and kind.strip():
        return kind.strip()
    return None


def is_empty_record(obj: Dict[str, Any]) -> bool:
    """At most two keys, all of them @type/@id/@context; a full identity triple is kept."""
    return len(obj) <= 2 and all(key in STRUCTURAL_KEYS for key in obj)


def _flatten(value: Any) -> Iterator[Dict[str, Any]]:
    """Yield candidate record objects from a parsed block."""
    if isinstance(value, list):
        for item in value:
            yield from _flatten(item)
    elif isinstance(value, dict):
        graph = value.get("@graph")
        if isinstance(graph, list):
            # Multi-record container; the container itself counts only if typed
            if record_kind(value):
                yield {k: v for k, v in value.items() if k != "@graph"}
            for item in graph:
                yield from _flatten(item)
        else:
            yield value


def parse_block(raw: str, block_index: int) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise SchemaParseError(block_index, str(e)) from e


def extract(
    raw_blocks: List[str],
    page: PageRef,
    errors: Optional[List[ExtractionError]] = None,
) -> List[SchemaRecord]:
    """
    Turn raw JSON-LD script contents into validated records.

    A block that is not valid JSON is skipped and, when ``errors`` is given,
    reported there; other blocks on the page are still processed.
    """
    records: List[SchemaRecord] = []

    for index, raw in enumerate(raw_blocks):
        if not raw or not raw.strip():
            continue
        try:
            parsed = parse_block(raw.strip(), index)
        except SchemaParseError as e:
            logger.warning("Invalid JSON-LD on %s: %s", page.url, e)
            if errors is not None:
                errors.append(ExtractionError(page_url=page.url, block_index=index, message=str(e)))
            continue

        for obj in _flatten(parsed):
            kind = record_kind(obj)
            if kind is None or is_empty_record(obj):
                continue
            raw_id = obj.get("@id")
            record_id = raw_id.strip() if isinstance(raw_id, str) and raw_id.strip() else None
            records.append(SchemaRecord(
                kind=kind,
                id=record_id,
                properties={k: v for k, v in obj.items() if k not in DROPPED_KEYS},
                source_page=page,
            ))

    return records
