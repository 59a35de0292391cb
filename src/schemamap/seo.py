"""
Per-record quality ranking and the overall SEO score of a page.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from schemamap.graph import EntityGraph
from schemamap.models import Recommendation, SchemaRecord
from schemamap.scoring import is_good_pattern

SCHEMA_RANKS: Dict[str, int] = {
    "Organization": 5, "Product": 5, "LocalBusiness": 5,
    "Person": 4, "Article": 4, "Event": 4, "FAQPage": 4, "HowTo": 4, "Service": 4,
    "WebSite": 3, "Recipe": 3, "Review": 3, "JobPosting": 3, "Course": 3,
    "VideoObject": 3, "Offer": 3, "ContactPoint": 3, "Place": 3,
    "WebPage": 2, "CreativeWork": 2, "ImageObject": 2, "PostalAddress": 2,
    "WebPageElement": 2, "SiteNavigationElement": 2,
    "BreadcrumbList": 1, "ItemList": 1,
}

REQUIRED_FIELDS: Dict[str, List[str]] = {
    "Organization": ["name"],
    "Person": ["name"],
    "Product": ["name"],
    "Article": ["headline"],
    "WebPage": ["name"],
    "WebSite": ["name"],
    "LocalBusiness": ["name", "address"],
    "Event": ["name", "startDate"],
    "Recipe": ["name", "recipeIngredient"],
    "Review": ["reviewBody", "author"],
    "BreadcrumbList": ["itemListElement"],
}

RECOMMENDED_FIELDS: Dict[str, List[str]] = {
    "Organization": ["url", "logo", "description", "contactPoint", "address", "sameAs"],
    "Person": ["url", "image", "jobTitle", "worksFor", "sameAs", "email"],
    "Product": ["description", "image", "brand", "offers", "review", "aggregateRating"],
    "Article": ["author", "datePublished", "dateModified", "image", "publisher"],
    "WebPage": ["description", "url", "image", "breadcrumb", "mainEntity"],
    "WebSite": ["url", "description", "publisher", "potentialAction"],
    "LocalBusiness": ["telephone", "openingHours", "geo", "priceRange", "image"],
    "Event": ["location", "endDate", "description", "image", "organizer"],
    "Recipe": ["recipeInstructions", "cookTime", "prepTime", "nutrition", "author"],
    "Review": ["itemReviewed", "reviewRating", "datePublished"],
    "BreadcrumbList": ["numberOfItems"],
}
DEFAULT_RECOMMENDED = ["name", "description", "url", "image"]

IMAGE_EXPECTED = frozenset(("Organization", "Person", "Product", "Article", "Event"))

SCORE_WEIGHTS = {
    "schema_quality": 0.3,
    "consistency": 0.3,
    "completeness": 0.25,
    "entity_connectivity": 0.15,
}


def _present(record: SchemaRecord, name: str) -> bool:
    value = record.properties.get(name)
    return value not in (None, "", [], {})


def completeness(record: SchemaRecord) -> int:
    """Required fields weigh 3, recommended fields 1; percent of the maximum."""
    required = REQUIRED_FIELDS.get(record.kind, [])
    recommended = RECOMMENDED_FIELDS.get(record.kind, DEFAULT_RECOMMENDED)
    # @type is always required and always present on an accepted record
    score, max_score = 3, 3
    for name in required:
        max_score += 3
        score += 3 if _present(record, name) else 0
    for name in recommended:
        max_score += 1
        score += 1 if _present(record, name) else 0
    return round(score / max_score * 100)


def importance(record: SchemaRecord) -> float:
    value = float(SCHEMA_RANKS.get(record.kind, 0))
    if _present(record, "name") or _present(record, "headline"):
        value += 1
    if _present(record, "description"):
        value += 1
    if _present(record, "url"):
        value += 1
    if _present(record, "image"):
        value += 0.5
    if record.id:
        value += 1
    if record.kind == "Organization" and _present(record, "logo"):
        value += 1
    elif record.kind == "Person" and _present(record, "jobTitle"):
        value += 0.5
    elif record.kind == "Product" and _present(record, "offers"):
        value += 1
    elif record.kind == "Article" and _present(record, "author"):
        value += 0.5
    return round(value, 1)


def rank_records(records: List[SchemaRecord]) -> List[Dict[str, Any]]:
    """Records by type rank, then completeness, then importance (highest first)."""
    ranked = [
        {
            "index": i,
            "type": r.kind,
            "id": r.id,
            "rank": SCHEMA_RANKS.get(r.kind, 0),
            "completeness": completeness(r),
            "seo_importance": importance(r),
            "has_id": bool(r.id),
            "valid_id": bool(r.id) and is_good_pattern(r.id),
            "page": r.source_page.url,
        }
        for i, r in enumerate(records)
    ]
    ranked.sort(key=lambda x: (-x["rank"], -x["completeness"], -x["seo_importance"]))
    return ranked


def connectivity_score(graph: EntityGraph) -> int:
    total = len(graph)
    if total == 0:
        return 0
    connected = sum(1 for e in graph.entities if e.connection_count > 0)
    density = len(graph.connections) / total
    return round((connected / total * 0.7 + min(density, 1.0) * 0.3) * 100)


def grade(value: int) -> str:
    for threshold, letter in ((90, "A+"), (80, "A"), (70, "B"), (60, "C"), (50, "D")):
        if value >= threshold:
            return letter
    return "F"


def seo_score(records: List[SchemaRecord], consistency: int, graph: EntityGraph) -> Dict[str, Any]:
    if records:
        quality = min(100.0, sum(
            completeness(r) * 0.6 + (20 if r.id and is_good_pattern(r.id) else 0) + importance(r) * 2
            for r in records
        ) / len(records))
        complete = sum(completeness(r) for r in records) / len(records)
    else:
        quality = complete = 0.0

    scores = {
        "schema_quality": round(quality, 1),
        "consistency": consistency,
        "completeness": round(complete, 1),
        "entity_connectivity": connectivity_score(graph),
    }
    overall = round(sum(scores[k] * w for k, w in SCORE_WEIGHTS.items()))
    return {
        "overall": overall,
        "breakdown": scores,
        "weights": dict(SCORE_WEIGHTS),
        "grade": grade(overall),
    }


def _is_home_page(url: str) -> bool:
    return urlparse(url).path in ("", "/", "/index.html", "/index.php")


def page_recommendations(records: List[SchemaRecord], url: str, title: Optional[str] = None) -> List[Recommendation]:
    """Checks that only make sense for a single page."""
    kinds = {r.kind for r in records}
    recs: List[Recommendation] = []

    if "WebPage" not in kinds:
        recs.append(Recommendation(
            type="Missing WebPage Schema",
            level="high",
            message="Add WebPage schema to improve page indexing and search appearance.",
            example=json.dumps({
                "@type": "WebPage",
                "@id": "schema:WebPage",
                "url": url,
                "name": title or "Page Title",
            }, indent=2),
        ))

    if "/about" in urlparse(url).path and "Organization" not in kinds:
        recs.append(Recommendation(
            type="Missing Organization Schema",
            level="high",
            message="About pages should include Organization schema for better business entity recognition.",
            example=json.dumps({
                "@type": "Organization",
                "@id": "schema:Organization",
                "name": "Your Company Name",
                "url": url,
            }, indent=2),
        ))

    if not _is_home_page(url) and "BreadcrumbList" not in kinds:
        recs.append(Recommendation(
            type="Missing BreadcrumbList",
            level="medium",
            message="Add BreadcrumbList schema to help search engines understand page hierarchy.",
        ))

    without_images = [r for r in records if r.kind in IMAGE_EXPECTED and not _present(r, "image")]
    if without_images:
        recs.append(Recommendation(
            type="Missing Images",
            level="medium",
            message=(
                f"{len(without_images)} schemas should include image properties "
                "for better visual search results."
            ),
            affected_schemas=len(without_images),
        ))

    without_description = [r for r in records if not _present(r, "description")]
    if without_description:
        recs.append(Recommendation(
            type="Missing Descriptions",
            level="low",
            message=f"{len(without_description)} schemas lack description properties.",
            details=["Descriptions help search engines understand content context."],
            affected_schemas=len(without_description),
        ))

    return recs
