"""
Cross-page entity graph.

Every record maps to exactly one entity: its ``@id`` when it has one, else a
synthetic ``temp:`` id built from its type and name (or its position among
anonymous records of that type). References found in a record's property tree
become connections to known entities, or broken references when the target is
unknown.

Entities live in an arena (``EntityGraph.entities``) and are looked up by id
through an index, so the graph holds no object cycles.
"""
from __future__ import annotations

import json
import logging
import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern, Set, Tuple

from schemamap.models import Recommendation, SchemaRecord, Value

logger = logging.getLogger(__name__)

# String values that look like an entity identifier
IDENTIFIER_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"^schema:"),
    re.compile(r"^https?://.*#"),
    re.compile(r"^#[a-zA-Z]"),
)

REFERENCE_PROPERTIES = frozenset((
    "author", "editor", "publisher", "creator",
    "member", "employee", "founder", "owner",
    "mainEntity", "about", "mentions",
    "isPartOf", "hasPart", "memberOf",
    "worksFor", "alumniOf", "knows",
    "follows", "sponsor", "funder",
    "manufacturer", "brand", "organizer", "performer", "location",
))

# (from kind, to kind) -> relationship label, for display only
RELATIONSHIP_TYPES: Dict[Tuple[str, str], str] = {
    ("Person", "Organization"): "worksFor",
    ("Article", "Person"): "author",
    ("BlogPosting", "Person"): "author",
    ("Article", "Organization"): "publisher",
    ("WebSite", "Organization"): "publisher",
    ("Product", "Organization"): "manufacturer",
    ("WebPage", "Organization"): "about",
    ("WebPage", "WebSite"): "isPartOf",
    ("Event", "Place"): "location",
    ("Event", "Organization"): "organizer",
}
DEFAULT_RELATIONSHIP = "relatedTo"

STRONG_RELATIONSHIPS = frozenset(("author", "worksFor", "memberOf"))

# Properties compared when estimating how strongly two entities relate
SUMMARY_PROPERTIES = (
    "name", "title", "headline", "description",
    "url", "sameAs", "identifier", "email",
    "telephone", "address", "location",
    "datePublished", "dateModified",
)

MAX_WALK_DEPTH = 32

TEMP_PREFIX = "temp:"


def is_identifier(value: Any) -> bool:
    return isinstance(value, str) and any(p.search(value) for p in IDENTIFIER_PATTERNS)


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return slug.strip("-")


def infer_relationship(from_kind: str, to_kind: str) -> str:
    return RELATIONSHIP_TYPES.get((from_kind, to_kind), DEFAULT_RELATIONSHIP)


@dataclass(slots=True)
class Entity:
    key: str
    index: int
    kind: str
    synthetic: bool
    records: List[SchemaRecord] = field(default_factory=list)
    pages: List[str] = field(default_factory=list)
    incoming_refs: Set[str] = field(default_factory=set)
    outgoing_refs: Set[str] = field(default_factory=set)

    @property
    def label(self) -> str:
        for record in self.records:
            if record.label:
                return record.label
        return self.kind

    @property
    def summary_properties(self) -> Dict[str, Value]:
        props: Dict[str, Value] = {}
        for record in self.records:
            for name in SUMMARY_PROPERTIES:
                if name not in props and record.properties.get(name):
                    props[name] = record.properties[name]
        return props

    @property
    def connection_count(self) -> int:
        return len(self.incoming_refs) + len(self.outgoing_refs)


@dataclass(slots=True)
class Connection:
    source: str
    target: str
    source_page: str
    target_page: str
    relationship: str
    via_property: str
    cross_page: bool = False


@dataclass(slots=True)
class BrokenReference:
    source: str
    target_id: str
    property_path: str
    page: str


@dataclass(slots=True)
class EntityGraph:
    entities: List[Entity] = field(default_factory=list)
    connections: List[Connection] = field(default_factory=list)
    broken_references: List[BrokenReference] = field(default_factory=list)
    orphaned: Set[str] = field(default_factory=set)
    index: Dict[str, int] = field(default_factory=dict)

    def __contains__(self, key: str) -> bool:
        return key in self.index

    def __len__(self) -> int:
        return len(self.entities)

    def entity(self, key: str) -> Entity:
        return self.entities[self.index[key]]

    @property
    def cross_page_connections(self) -> List[Connection]:
        return [c for c in self.connections if c.cross_page]

    @property
    def entities_with_broken_refs(self) -> Set[str]:
        return {b.source for b in self.broken_references}

    def pages_by_identifier(self) -> Dict[str, Set[str]]:
        """Distinct pages each real (non-synthetic) identifier was seen on."""
        return {e.key: set(e.pages) for e in self.entities if not e.synthetic}

    def connection_strength(self, connection: Connection) -> float:
        source = self.entity(connection.source)
        target = self.entity(connection.target)
        strength = 0.5
        common = set(source.summary_properties) & set(target.summary_properties)
        strength += len(common) * 0.1
        if connection.relationship in STRONG_RELATIONSHIPS:
            strength += 0.3
        if connection.cross_page:
            strength += 0.2
        return round(min(1.0, strength), 2)

    def metrics(self) -> Dict[str, Any]:
        counts = [e.connection_count for e in self.entities]
        return {
            "total_entities": len(self.entities),
            "entities_with_id": sum(1 for e in self.entities if not e.synthetic),
            "valid_connections": len(self.connections),
            "broken_connections": len(self.broken_references),
            "orphaned_entities": len(self.orphaned),
            "cross_page_connections": len(self.cross_page_connections),
            "avg_connections": round(sum(counts) / len(counts), 2) if counts else 0,
            "max_connections": max(counts, default=0),
            "isolated_nodes": sum(1 for c in counts if c == 0),
            "strongly_connected": sum(1 for c in counts if c >= 3),
            "entity_types": dict(Counter(e.kind for e in self.entities)),
        }

    def recommendations(self) -> List[Recommendation]:
        """Entity-level findings: missing ids, broken links, isolation."""
        recs: List[Recommendation] = []

        anonymous = [e for e in self.entities if e.synthetic]
        if anonymous:
            recs.append(Recommendation(
                type="Missing Entity IDs",
                level="high",
                message=(
                    f"{len(anonymous)} entities are missing @id properties. "
                    "This prevents proper cross-referencing."
                ),
                example='"@id": "schema:Organization"',
                affected_schemas=len(anonymous),
                details=[f"{e.kind} on {e.pages[0]}" for e in anonymous],
            ))

        broken_by_source: Dict[str, List[str]] = defaultdict(list)
        for ref in self.broken_references:
            if ref.target_id not in broken_by_source[ref.source]:
                broken_by_source[ref.source].append(ref.target_id)
        if broken_by_source:
            recs.append(Recommendation(
                type="Broken Entity References",
                level="high",
                message=f"Found {len(broken_by_source)} entities with broken references to other entities.",
                example="Ensure referenced entities exist and have proper @id values",
                affected_schemas=len(broken_by_source),
                details=[
                    f"{source} references missing: {', '.join(targets)}"
                    for source, targets in sorted(broken_by_source.items())
                ],
            ))

        if self.orphaned:
            recs.append(Recommendation(
                type="Orphaned Entities",
                level="medium",
                message=(
                    f"{len(self.orphaned)} entities have no connections to other entities. "
                    "Consider adding relevant relationships."
                ),
                example='Add "author", "worksFor", or "memberOf" properties',
                affected_schemas=len(self.orphaned),
                details=[
                    f"{self.entity(key).kind} on {self.entity(key).pages[0]}"
                    for key in sorted(self.orphaned)
                ],
            ))

        total = len(self.entities)
        if total > 5:
            ratio = len(self.cross_page_connections) / total
            if ratio < 0.3:
                recs.append(Recommendation(
                    type="Limited Cross-Page Connections",
                    level="medium",
                    message=(
                        "Consider adding more connections between entities on different "
                        "pages to improve site coherence."
                    ),
                    example="Reference organization entities from multiple pages using consistent @id values",
                    affected_schemas=total,
                    details=[f"Only {round(ratio * 100)}% of entities have cross-page connections"],
                ))

        well_connected = [e for e in self.entities if e.connection_count >= 2]
        if well_connected:
            recs.append(Recommendation(
                type="Well-Connected Entities",
                level="success",
                message=f"Excellent! {len(well_connected)} entities have strong connections to other entities.",
                affected_schemas=len(well_connected),
            ))

        return recs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [
                {
                    "id": e.key,
                    "type": e.kind,
                    "label": e.label,
                    "pages": list(e.pages),
                    "connections": e.connection_count,
                    "properties": e.summary_properties,
                    "is_orphaned": e.key in self.orphaned,
                    "has_broken_refs": e.key in self.entities_with_broken_refs,
                }
                for e in self.entities
            ],
            "edges": [
                {
                    "source": c.source,
                    "target": c.target,
                    "source_type": self.entity(c.source).kind,
                    "target_type": self.entity(c.target).kind,
                    "source_page": c.source_page,
                    "target_page": c.target_page,
                    "relationship": c.relationship,
                    "via": c.via_property,
                    "is_cross_page": c.cross_page,
                    "strength": self.connection_strength(c),
                }
                for c in self.connections
            ],
            "orphaned": sorted(self.orphaned),
            "broken_references": [
                {
                    "source": b.source,
                    "target": b.target_id,
                    "path": b.property_path,
                    "page": b.page,
                }
                for b in self.broken_references
            ],
            "metrics": self.metrics(),
        }


def _canonical_key(record: SchemaRecord) -> Tuple[str, str, str, str]:
    return (
        record.source_page.url,
        record.kind,
        record.id or "",
        json.dumps(record.properties, sort_keys=True, default=str),
    )


def find_references(properties: Dict[str, Value]) -> List[Tuple[str, str]]:
    """
    Walk a property tree and return ``(target id, property path)`` pairs.

    Matches string identifiers or ``@id``-carrying objects under a known
    reference property, and any nested object whose ``@id`` looks like an
    identifier. Uses an explicit stack; nodes deeper than MAX_WALK_DEPTH are
    ignored.
    """
    found: List[Tuple[str, str]] = []
    seen: Set[str] = set()
    # (value, path, governing property name, depth)
    stack: List[Tuple[Value, str, str, int]] = [
        (value, key, key, 1) for key, value in reversed(list(properties.items()))
    ]

    while stack:
        value, path, prop, depth = stack.pop()
        if depth > MAX_WALK_DEPTH:
            continue

        target: Optional[str] = None
        if isinstance(value, str):
            if prop in REFERENCE_PROPERTIES and is_identifier(value):
                target = value
        elif isinstance(value, dict):
            ref_id = value.get("@id")
            if isinstance(ref_id, str) and ref_id.strip():
                if prop in REFERENCE_PROPERTIES or is_identifier(ref_id):
                    target = ref_id.strip()
            children = [
                (child, f"{path}.{key}", key, depth + 1)
                for key, child in value.items()
                if key != "@id"
            ]
            stack.extend(reversed(children))
        elif isinstance(value, list):
            stack.extend(reversed([
                (item, f"{path}[{i}]", prop, depth + 1) for i, item in enumerate(value)
            ]))

        if target is not None and target not in seen:
            seen.add(target)
            found.append((target, path))

    return found


class EntityGraphBuilder:
    """
    Builds an EntityGraph from records of every scanned page.

    ``broken_refs_count_as_links`` decides whether an entity whose only
    references are broken still counts as orphaned (default: it does).
    """

    def __init__(self, broken_refs_count_as_links: bool = False) -> None:
        self.broken_refs_count_as_links = broken_refs_count_as_links

    def build(self, records: Iterable[SchemaRecord]) -> EntityGraph:
        ordered = sorted(records, key=_canonical_key)
        graph = EntityGraph()

        # Phase 1: one entity per distinct id
        record_keys: List[str] = []
        anonymous_counts: Dict[str, int] = defaultdict(int)
        for record in ordered:
            key = self.entity_id(record, anonymous_counts)
            record_keys.append(key)
            if key not in graph.index:
                graph.index[key] = len(graph.entities)
                graph.entities.append(Entity(
                    key=key,
                    index=len(graph.entities),
                    kind=record.kind,
                    synthetic=key.startswith(TEMP_PREFIX) and not record.has_id,
                ))
            entity = graph.entities[graph.index[key]]
            entity.records.append(record)
            if record.source_page.url not in entity.pages:
                entity.pages.append(record.source_page.url)

        # Phase 2: references
        by_pair: Dict[Tuple[str, str], Connection] = {}
        for record, key in zip(ordered, record_keys):
            source = graph.entity(key)
            page_url = record.source_page.url
            for target_id, path in find_references(record.properties):
                if target_id == key:
                    continue
                if target_id not in graph.index:
                    graph.broken_references.append(BrokenReference(
                        source=key, target_id=target_id, property_path=path, page=page_url,
                    ))
                    continue

                target = graph.entity(target_id)
                cross_page = page_url not in target.pages
                existing = by_pair.get((key, target_id))
                if existing is not None:
                    existing.cross_page = existing.cross_page or cross_page
                    continue

                connection = Connection(
                    source=key,
                    target=target_id,
                    source_page=page_url,
                    target_page=target.pages[0] if cross_page else page_url,
                    relationship=infer_relationship(source.kind, target.kind),
                    via_property=path.split(".")[-1].split("[")[0],
                    cross_page=cross_page,
                )
                by_pair[(key, target_id)] = connection
                graph.connections.append(connection)
                source.outgoing_refs.add(target_id)
                target.incoming_refs.add(key)

        # Phase 3: orphans
        broken_sources = graph.entities_with_broken_refs
        for entity in graph.entities:
            if entity.incoming_refs or entity.outgoing_refs:
                continue
            if self.broken_refs_count_as_links and entity.key in broken_sources:
                continue
            graph.orphaned.add(entity.key)

        logger.info(
            "Entity graph: %d entities, %d connections, %d broken references, %d orphaned",
            len(graph.entities), len(graph.connections),
            len(graph.broken_references), len(graph.orphaned),
        )
        return graph

    @staticmethod
    def entity_id(record: SchemaRecord, anonymous_counts: Dict[str, int]) -> str:
        """
        The record's id, else ``temp:<kind>-<name slug>``, else
        ``temp:<kind>-<n>`` with ``n`` counting anonymous records of that kind.
        """
        if record.id:
            return record.id
        label = record.label
        slug = slugify(label) if label else ""
        if slug:
            return f"{TEMP_PREFIX}{record.kind}-{slug}"
        n = anonymous_counts[record.kind]
        anonymous_counts[record.kind] += 1
        return f"{TEMP_PREFIX}{record.kind}-{n}"


def build(records: Iterable[SchemaRecord], broken_refs_count_as_links: bool = False) -> EntityGraph:
    return EntityGraphBuilder(broken_refs_count_as_links).build(records)
