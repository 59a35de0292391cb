"""
Tests for identifier-consistency scoring
"""
from conftest import record

from schemamap.graph import build
from schemamap.models import Recommendation
from schemamap.scoring import (
    ConsistencyScorer,
    categorize_pattern,
    is_good_pattern,
    score,
    sort_recommendations,
)

P1 = "https://example.com/"
P2 = "https://example.com/about"
P3 = "https://example.com/contact"


def points(report):
    return {c.category: c.points for c in report.breakdown}


class TestScenarios:
    """Reference scenarios"""

    def test_same_organization_id_on_three_pages(self):
        records = [record("Organization", p, id="schema:Organization", name="Acme") for p in (P1, P2, P3)]
        report = score(records, build(records))

        assert points(report) == {
            "@id Coverage": 40,
            "Standard Pattern Usage": 30,
            "Type Consistency": 0,
            "Cross-Page Reuse": 5,
        }
        assert report.score == 75
        assert len(report.recommendations) == 1
        rec = report.recommendations[0]
        assert rec.type == "Excellent Consistency"
        assert rec.level == "success"
        assert rec.affected_schemas == 3

    def test_records_without_ids(self):
        records = [record("WebPage", P1, name="Home"), record("Organization", P1, name="Acme")]
        report = score(records)

        assert report.score == 0
        assert len(report.recommendations) == 1
        rec = report.recommendations[0]
        assert rec.type == "Missing @id"
        assert rec.level == "high"
        assert rec.affected_schemas == 2
        assert [f["recommended_id"] for f in rec.fix["fixes"]] == ["schema:WebPage", "schema:Organization"]


class TestScorer:
    """Test ConsistencyScorer"""

    def test_empty_input(self):
        report = score([])
        assert report.score == 0
        assert report.breakdown == []
        assert report.recommendations == []

    def test_inconsistent_ids_penalized(self):
        records = [
            record("Organization", P1, id="https://example.com/org", name="Acme"),
            record("Organization", P2, id="#org", name="Acme"),
        ]
        report = score(records)
        # coverage 40, pattern 0, no reuse, one inconsistent type
        assert report.raw_score == 35
        assert report.score == 35
        types = [r.type for r in report.recommendations]
        assert types.count("Inconsistent @id Usage") == 1
        assert types.count("Non-standard @id Pattern") == 2

        levels = {r.bad_example: r.level for r in report.recommendations if r.type == "Non-standard @id Pattern"}
        assert levels['"@id": "https://example.com/org"'] == "high"
        assert levels['"@id": "#org"'] == "medium"

    def test_score_is_clamped(self):
        records = []
        for i in range(8):
            records.append(record(f"Type{i}", P1, id=f"bad-{i}-a", name="x"))
            records.append(record(f"Type{i}", P2, id=f"bad-{i}-b", name="x"))
        records.append(record("Thing", P1, name="no id"))
        report = score(records)

        assert report.raw_score < 0
        assert report.score == 0

    def test_reuse_bonus_is_capped(self):
        records = []
        for i in range(8):
            records += [record(f"Type{i}", p, id=f"schema:Type{i}", name="x") for p in (P1, P2)]
        report = score(records)

        assert points(report)["Cross-Page Reuse"] == 30
        assert report.score == 100

    def test_reuse_counts_distinct_pages(self):
        records = [
            record("Organization", P1, id="schema:Organization"),
            record("Organization", P1, id="schema:Organization", name="dup"),
            record("Organization", P2, id="schema:Organization"),
        ]
        report = ConsistencyScorer().score(records, build(records))

        success = [r for r in report.recommendations if r.level == "success"]
        assert len(success) == 1
        assert success[0].affected_schemas == 2
        assert "across 2 pages" in success[0].message

    def test_single_page_id_is_not_reuse(self):
        records = [record("Organization", P1, id="schema:Organization"), record("WebPage", P1, id="schema:WebPage")]
        report = score(records)

        assert points(report)["Cross-Page Reuse"] == 0
        assert report.score == 70
        assert all(r.level != "success" for r in report.recommendations)

    def test_recommendations_sorted_by_level(self):
        records = [
            record("Organization", P1, id="schema:Organization"),
            record("Organization", P2, id="schema:Organization"),
            record("WebPage", P1, id="#page"),
            record("Person", P1, name="Ada"),
        ]
        levels = [r.level for r in score(records).recommendations]
        assert levels == sorted(levels, key=["high", "medium", "low", "success"].index)
        assert levels[-1] == "success"

    def test_to_dict(self):
        records = [record("Organization", P1, id="schema:Organization")]
        data = score(records).to_dict()

        assert data["score"] == 70
        assert [c["category"] for c in data["breakdown"]][0] == "@id Coverage"
        assert data["summary"]["total_issues"] >= 1


class TestPatterns:
    def test_good(self):
        assert is_good_pattern("schema:Organization")
        assert is_good_pattern("https://schema.org/Organization")

    def test_categories(self):
        assert categorize_pattern("schema:Person") == "good"
        assert categorize_pattern("https://example.com/#org") == "acceptable"
        assert categorize_pattern("#main") == "acceptable"
        assert categorize_pattern("https://example.com/org") == "bad"
        assert categorize_pattern("#123") == "bad"

    def test_sort_is_stable_within_level(self):
        recs = [
            Recommendation(type="a", level="success", message=""),
            Recommendation(type="b", level="medium", message=""),
            Recommendation(type="c", level="high", message=""),
            Recommendation(type="d", level="medium", message=""),
        ]
        assert [r.type for r in sort_recommendations(recs)] == ["c", "b", "d", "a"]
