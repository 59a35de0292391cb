"""
Identifier-consistency scoring.

The score (0 to 100) adds up four independently computed parts:

- identifier coverage, up to 40 points
- recommended-pattern compliance among unique identifiers, up to 30 points
- cross-page reuse, 5 points per identifier seen on more than one page, up to 30
- a 5 point penalty per record type that uses more than one identifier

and is clamped to [0, 100] once, at the end.
"""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Set, Tuple

from schemamap.graph import EntityGraph
from schemamap.models import Recommendation, SchemaRecord

logger = logging.getLogger(__name__)

COVERAGE_WEIGHT = 40
PATTERN_WEIGHT = 30
REUSE_POINTS = 5
REUSE_CAP = 30
INCONSISTENCY_PENALTY = 5

RECOMMENDED_PREFIX = "schema:"

GOOD_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"^schema:"),
    re.compile(r"^https?://schema\.org/"),
)
ACCEPTABLE_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"^https?://.*#[a-zA-Z]"),
    re.compile(r"^#[a-zA-Z]"),
)
BAD_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"^https?://.*/.*$"),   # URLs without fragments
    re.compile(r"^[^#]*$"),            # no fragment at all
    re.compile(r"^#\d+$"),             # just numbers
    re.compile(r"^#$"),                # empty fragment
)

LEVEL_ORDER = {"high": 0, "medium": 1, "low": 2, "success": 3}


def is_good_pattern(identifier: str) -> bool:
    return any(p.search(identifier) for p in GOOD_PATTERNS)


def categorize_pattern(identifier: str) -> str:
    if is_good_pattern(identifier):
        return "good"
    if any(p.search(identifier) for p in ACCEPTABLE_PATTERNS):
        return "acceptable"
    if any(p.search(identifier) for p in BAD_PATTERNS):
        return "bad"
    return "unknown"


def pattern_advice(category: str) -> str:
    if category == "bad":
        return f'Use "{RECOMMENDED_PREFIX}EntityType" format for better consistency.'
    if category == "acceptable":
        return f'Consider using "{RECOMMENDED_PREFIX}EntityType" format for improved standardization.'
    return "Use a more descriptive and consistent pattern."


def sort_recommendations(recs: List[Recommendation]) -> List[Recommendation]:
    """High, medium, low, then successes; stable within a level."""
    return sorted(recs, key=lambda r: LEVEL_ORDER.get(r.level, LEVEL_ORDER["low"]))


@dataclass(slots=True)
class Category:
    """One line of the score breakdown."""
    category: str
    description: str
    points: int
    max_points: int
    percentage: int
    status: str
    issues: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ConsistencyReport:
    score: int
    breakdown: List[Category]
    recommendations: List[Recommendation]
    raw_score: float = 0.0
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "breakdown": [asdict(c) for c in self.breakdown],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "summary": self.summary,
        }


def _status(part: int, whole: int) -> str:
    if part == whole:
        return "excellent"
    return "good" if part >= whole * 0.8 else "poor"


class ConsistencyScorer:
    """Scores how consistently a site identifies its structured-data entities."""

    def score(self, records: List[SchemaRecord], graph: Optional[EntityGraph] = None) -> ConsistencyReport:
        total = len(records)
        if total == 0:
            return ConsistencyReport(score=0, breakdown=[], recommendations=[], summary=self._summary([]))

        # Groupings shared by the score and the recommendations
        id_records: Dict[str, List[SchemaRecord]] = defaultdict(list)
        ids_by_kind: Dict[str, List[str]] = defaultdict(list)
        for record in records:
            if not record.id:
                continue
            id_records[record.id].append(record)
            if record.id not in ids_by_kind[record.kind]:
                ids_by_kind[record.kind].append(record.id)

        pages_by_id = self._pages_by_identifier(id_records, graph)
        inconsistent = {kind: ids for kind, ids in ids_by_kind.items() if len(ids) > 1}
        reused = [i for i in id_records if len(pages_by_id.get(i, ())) > 1]

        breakdown: List[Category] = []

        # Identifier coverage
        with_id = sum(len(group) for group in id_records.values())
        coverage = with_id / total * COVERAGE_WEIGHT
        breakdown.append(Category(
            category="@id Coverage",
            description=f"{with_id} of {total} schemas have @id properties",
            points=round(coverage),
            max_points=COVERAGE_WEIGHT,
            percentage=round(with_id / total * 100),
            status=_status(with_id, total),
            issues=[f"{total - with_id} schemas missing @id"] if with_id < total else [],
        ))

        # Pattern compliance
        unique_ids = list(id_records)
        good_ids = [i for i in unique_ids if is_good_pattern(i)]
        pattern = len(good_ids) / len(unique_ids) * PATTERN_WEIGHT if unique_ids else 0.0
        breakdown.append(Category(
            category="Standard Pattern Usage",
            description=f"{len(good_ids)} of {len(unique_ids)} unique @ids use recommended patterns",
            points=round(pattern),
            max_points=PATTERN_WEIGHT,
            percentage=round(len(good_ids) / len(unique_ids) * 100) if unique_ids else 0,
            status=_status(len(good_ids), len(unique_ids)) if unique_ids else "poor",
            issues=[f'"{i}" doesn\'t follow recommended pattern' for i in unique_ids if not is_good_pattern(i)],
        ))

        # Type consistency
        penalty = len(inconsistent) * INCONSISTENCY_PENALTY
        breakdown.append(Category(
            category="Type Consistency",
            description=(
                f"{len(inconsistent)} schema types use inconsistent @ids"
                if inconsistent else "All schema types use consistent @ids"
            ),
            points=-penalty,
            max_points=0,
            percentage=0 if inconsistent else 100,
            status="poor" if inconsistent else "excellent",
            issues=[
                f"{kind}: uses {len(ids)} different @ids ({', '.join(ids)})"
                for kind, ids in inconsistent.items()
            ],
        ))

        # Cross-page reuse
        bonus = min(REUSE_CAP, REUSE_POINTS * len(reused))
        breakdown.append(Category(
            category="Cross-Page Reuse",
            description=f"{len(reused)} @ids are reused across multiple pages",
            points=bonus,
            max_points=REUSE_CAP,
            percentage=round(bonus / REUSE_CAP * 100),
            status="excellent" if bonus >= 20 else "good" if bonus >= 10 else "poor",
            issues=[] if reused else ["No @ids are reused across pages"],
        ))

        raw = coverage + pattern + bonus - penalty
        final = round(min(100.0, max(0.0, raw)))

        recommendations = sort_recommendations(
            self._recommendations(records, id_records, inconsistent, pages_by_id)
        )
        logger.info("Consistency score %d/100 for %d schemas", final, total)
        return ConsistencyReport(
            score=final,
            breakdown=breakdown,
            recommendations=recommendations,
            raw_score=raw,
            summary=self._summary(breakdown),
        )

    @staticmethod
    def _pages_by_identifier(
        id_records: Dict[str, List[SchemaRecord]],
        graph: Optional[EntityGraph],
    ) -> Dict[str, Set[str]]:
        if graph is not None:
            return graph.pages_by_identifier()
        return {i: {r.source_page.url for r in group} for i, group in id_records.items()}

    @staticmethod
    def _summary(breakdown: List[Category]) -> Dict[str, int]:
        return {
            "total_issues": sum(len(c.issues) for c in breakdown),
            "excellent_categories": sum(1 for c in breakdown if c.status == "excellent"),
            "poor_categories": sum(1 for c in breakdown if c.status == "poor"),
        }

    def _recommendations(
        self,
        records: List[SchemaRecord],
        id_records: Dict[str, List[SchemaRecord]],
        inconsistent: Dict[str, List[str]],
        pages_by_id: Dict[str, Set[str]],
    ) -> List[Recommendation]:
        recs: List[Recommendation] = []

        missing = [r for r in records if not r.id]
        if missing:
            recs.append(Recommendation(
                type="Missing @id",
                level="high",
                message=(
                    f"{len(missing)} schemas are missing @id properties. Add consistent @id "
                    f'values using the pattern "{RECOMMENDED_PREFIX}EntityType".'
                ),
                example=f'"@id": "{RECOMMENDED_PREFIX}WebPageElement"',
                affected_schemas=len(missing),
                fix={
                    "type": "add_missing_ids",
                    "fixes": [
                        {
                            "type": r.kind,
                            "recommended_id": f"{RECOMMENDED_PREFIX}{r.kind}",
                            "page": r.source_page.url,
                        }
                        for r in missing
                    ],
                    "instructions": "Add @id property to each schema using the recommended pattern",
                },
            ))

        for kind, ids in inconsistent.items():
            bad_example = next((i for i in ids if not is_good_pattern(i)), ids[0])
            recs.append(Recommendation(
                type="Inconsistent @id Usage",
                level="high",
                message=(
                    f'The schema type "{kind}" uses {len(ids)} different @id values. '
                    "Use a single consistent @id across all pages."
                ),
                example=f'"@id": "{RECOMMENDED_PREFIX}{kind}"',
                bad_example=f'"@id": "{bad_example}"',
                details=[f"Found @ids: {', '.join(ids)}"],
                affected_schemas=len(ids),
                fix={
                    "type": "fix_inconsistency",
                    "schema_type": kind,
                    "recommended_id": f"{RECOMMENDED_PREFIX}{kind}",
                    "current_ids": list(ids),
                    "instructions": (
                        f'Replace all instances with single consistent @id: "{RECOMMENDED_PREFIX}{kind}"'
                    ),
                },
            ))

        for identifier, group in id_records.items():
            if is_good_pattern(identifier):
                continue
            category = categorize_pattern(identifier)
            kind = group[0].kind
            recs.append(Recommendation(
                type="Non-standard @id Pattern",
                level="high" if category == "bad" else "medium",
                message=(
                    f'The @id "{identifier}" doesn\'t follow recommended patterns. '
                    f"{pattern_advice(category)}"
                ),
                example=f'"@id": "{RECOMMENDED_PREFIX}{kind}"',
                bad_example=f'"@id": "{identifier}"',
                affected_schemas=len(group),
                fix={
                    "type": "fix_pattern",
                    "current_id": identifier,
                    "recommended_id": f"{RECOMMENDED_PREFIX}{kind}",
                    "instructions": f'Replace "{identifier}" with "{RECOMMENDED_PREFIX}{kind}"',
                },
            ))

        for identifier in id_records:
            pages = pages_by_id.get(identifier, set())
            if is_good_pattern(identifier) and len(pages) >= 2:
                recs.append(Recommendation(
                    type="Excellent Consistency",
                    level="success",
                    message=(
                        f'Great! The @id "{identifier}" is used consistently across {len(pages)} pages.'
                    ),
                    affected_schemas=len(pages),
                ))

        return recs


def score(records: List[SchemaRecord], graph: Optional[EntityGraph] = None) -> ConsistencyReport:
    return ConsistencyScorer().score(records, graph)
