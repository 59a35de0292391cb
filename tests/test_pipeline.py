"""
Tests for the service, the scan registry and the scan store
"""
import json
import threading

import pytest

from conftest import FakeDiscoverer, FakeRenderer, make_page, record

from schemamap.extractor import extract

from schemamap.config import CrawlOptions
from schemamap.crawler import Crawler
from schemamap.errors import RenderError, ScanNotFound, ValidationError
from schemamap.models import PageRef, ScanSession
from schemamap.pipeline import (
    ScanEntry,
    ScanRegistry,
    ScanStore,
    SchemaMapService,
    build_report,
)

BASE = "https://example.com"
SEED = "https://example.com/"

ORG = {"@type": "Organization", "@id": "schema:Organization", "name": "Acme"}


def site():
    return {
        SEED: make_page(SEED, schemas=[ORG], links=["/about", "/contact"], title="Home"),
        BASE + "/about": make_page(BASE + "/about", schemas=[
            ORG,
            {"@type": "Person", "name": "Ada", "worksFor": {"@id": "schema:Organization"}},
        ]),
        BASE + "/contact": make_page(BASE + "/contact", schemas=[ORG]),
    }


def crawler_factory(pages, discovered=(), fail_start=False):
    def factory(opts):
        return Crawler(
            opts.merged(crawl_delay=0.0),
            renderer=FakeRenderer(pages, fail_start=fail_start),
            discoverer=FakeDiscoverer(discovered),
        )
    return factory


@pytest.fixture
def service(tmp_path):
    return SchemaMapService(
        options=CrawlOptions(scans_dir=str(tmp_path), crawl_delay=0.0),
        crawler_factory=crawler_factory(site()),
    )


class TestAnalyze:
    """Test SchemaMapService.analyze"""

    @pytest.mark.asyncio
    async def test_single_page(self, service):
        result = await service.analyze({"url": SEED})

        assert result["status"] == "completed"
        assert result["url"] == SEED
        results = result["results"]
        assert set(results) == {
            "basic_info", "seo_score", "schemas", "entities", "recommendations", "consistency_analysis",
        }
        assert results["basic_info"]["page_title"] == "Home"
        assert results["basic_info"]["schemas_found"] == 1
        assert results["basic_info"]["has_structured_data"] is True
        assert results["schemas"][0]["type"] == "Organization"
        assert results["seo_score"]["grade"] in ("A+", "A", "B", "C", "D", "F")
        assert results["entities"]["metrics"]["total_entities"] == 1
        types = [r["type"] for r in results["recommendations"]]
        assert "Missing WebPage Schema" in types

    @pytest.mark.asyncio
    async def test_does_not_follow_links(self, service):
        result = await service.analyze({"url": SEED})
        stored = service.store.load(result["scan_id"])

        assert stored["results"]["basic_info"]["schemas_found"] == 1
        assert result["scan_id"] in service.list_scans()

    @pytest.mark.asyncio
    async def test_optional_sections(self, service):
        result = await service.analyze({
            "url": SEED,
            "options": {"analyze_entities": False, "check_consistency": False, "include_recommendations": False},
        })
        results = result["results"]
        assert results["entities"] is None
        assert results["consistency_analysis"] is None
        assert results["recommendations"] == []

    @pytest.mark.asyncio
    async def test_failed_page(self, tmp_path):
        service = SchemaMapService(
            options=CrawlOptions(scans_dir=str(tmp_path)),
            crawler_factory=crawler_factory({}),
        )
        with pytest.raises(RenderError, match="HTTP 404"):
            await service.analyze({"url": SEED})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload, field", [
        ({}, "url"),
        ({"url": "not a url"}, "url"),
        ({"url": SEED, "options": {"timeout": 1}}, "options.timeout"),
        ({"url": SEED, "options": {"deep": True}}, "options.deep"),
    ])
    async def test_validation(self, service, payload, field):
        with pytest.raises(ValidationError) as exc:
            await service.analyze(payload)
        assert field in [d["field"] for d in exc.value.details]


class TestSiteScan:
    """Test start_scan, progress and results"""

    @pytest.mark.asyncio
    async def test_scan_lifecycle(self, service):
        started = await service.start_scan({"start_url": SEED, "options": {"max_pages": 10}})

        assert started["status"] == "processing"
        scan_id = started["scan_id"]
        assert service.progress(scan_id)["status"] == "processing"

        report = await service.wait(scan_id)

        assert report["status"] == "completed"
        assert report["summary"]["pages_scanned"] == 3
        assert report["summary"]["pages_failed"] == 0
        assert report["summary"]["total_schemas"] == 4
        assert report["consistency"]["score"] == 65

        progress = service.progress(scan_id)
        assert progress["status"] == "completed"
        assert progress["progress"]["percent"] == 100
        assert service.results(scan_id) is report

    @pytest.mark.asyncio
    async def test_results_survive_restart(self, service, tmp_path):
        started = await service.start_scan({"start_url": SEED})
        await service.wait(started["scan_id"])

        fresh = SchemaMapService(options=CrawlOptions(scans_dir=str(tmp_path)))
        report = fresh.results(started["scan_id"])

        assert report["summary"]["pages_scanned"] == 3
        assert fresh.progress(started["scan_id"])["status"] == "completed"

    @pytest.mark.asyncio
    async def test_browser_unavailable(self, tmp_path):
        service = SchemaMapService(
            options=CrawlOptions(scans_dir=str(tmp_path)),
            crawler_factory=crawler_factory({}, fail_start=True),
        )
        started = await service.start_scan({"start_url": SEED})
        result = await service.wait(started["scan_id"])

        assert result["status"] == "failed"
        assert "Browser initialization failed" in result["message"]
        progress = service.progress(started["scan_id"])
        assert progress["status"] == "failed"
        assert progress["message"] == result["message"]

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_the_scan(self, tmp_path):
        class BrokenDiscoverer(FakeDiscoverer):
            async def discover(self, seed_url, base_origin, seed_page=None):
                raise RuntimeError("resolver crashed")

        def factory(opts):
            return Crawler(opts, renderer=FakeRenderer(site()), discoverer=BrokenDiscoverer())

        service = SchemaMapService(
            options=CrawlOptions(scans_dir=str(tmp_path), crawl_delay=0.0),
            crawler_factory=factory,
        )
        started = await service.start_scan({"start_url": SEED})
        result = await service.wait(started["scan_id"])

        assert result["status"] == "failed"
        assert result["message"] == "Scan failed: RuntimeError: resolver crashed"
        assert service.progress(started["scan_id"])["status"] == "failed"
        assert service.store.load(started["scan_id"])["status"] == "failed"
        assert service.list_scans()[started["scan_id"]]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_scan_validation(self, service):
        with pytest.raises(ValidationError) as exc:
            await service.start_scan({"start_url": SEED, "options": {"max_pages": 500, "crawl_depth": 0}})
        fields = {d["field"] for d in exc.value.details}
        assert fields == {"options.max_pages", "options.crawl_depth"}
        assert len(service.registry) == 0

    def test_unknown_scan(self, service):
        with pytest.raises(ScanNotFound):
            service.results("does-not-exist")
        with pytest.raises(ScanNotFound):
            service.progress("does-not-exist")
        with pytest.raises(ScanNotFound):
            service.results("../../etc/passwd")


class TestRegistry:
    def test_lifecycle(self):
        registry = ScanRegistry()
        registry.register(ScanEntry(scan_id="a", start_url=SEED, started_at="now"))
        registry.register(ScanEntry(scan_id="b", start_url=SEED, started_at="now"))

        assert "a" in registry
        assert len(registry.active()) == 2

        registry.complete("a", {"status": "completed"})
        registry.fail("b", "boom")

        assert registry.get("a").report == {"status": "completed"}
        assert registry.get("b").message == "boom"
        assert registry.active() == []


class TestStore:
    def test_save_and_load(self, tmp_path):
        store = ScanStore(tmp_path / "scans")
        path = store.save("abc", {"scan_id": "abc", "value": 1}, SEED)

        assert path == tmp_path / "scans" / "abc.json"
        assert store.load("abc") == {"scan_id": "abc", "value": 1}
        assert store.index()["abc"]["url"] == SEED
        assert store.index()["abc"]["status"] == "completed"

    def test_index_is_capped_and_most_recent_first(self, tmp_path):
        store = ScanStore(tmp_path)
        for i in range(105):
            store.save(f"scan{i}", {"i": i}, SEED)

        index = store.index()
        assert len(index) == ScanStore.MAX_INDEX_ENTRIES
        assert list(index)[0] == "scan104"
        assert "scan4" not in index
        assert "scan5" in index

    def test_index_file_is_not_a_scan(self, tmp_path):
        store = ScanStore(tmp_path)
        store.save("abc", {}, SEED)
        with pytest.raises(ScanNotFound):
            store.load("index")

    def test_concurrent_saves_keep_every_index_entry(self, tmp_path):
        store = ScanStore(tmp_path)
        store.save("first", {}, SEED)
        threads = [
            threading.Thread(target=store.save, args=(f"scan{i}", {"i": i}, SEED)) for i in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        index = store.index()
        assert set(index) == {"first"} | {f"scan{i}" for i in range(20)}
        assert not list(tmp_path.glob("*.tmp"))

    def test_corrupt_index(self, tmp_path):
        (tmp_path / "index.json").write_text("{nope", encoding="utf-8")
        store = ScanStore(tmp_path)
        store.save("abc", {}, SEED)
        assert list(store.index()) == ["abc"]
        assert json.loads((tmp_path / "index.json").read_text())["abc"]["url"] == SEED


def test_build_report_from_session():
    session = ScanSession(scan_id="s1", base_url=BASE, started_at="t0", finished_at="t1")

    for path in ("/", "/a", "/b"):
        page = PageRef(url=BASE + path, title="T")
        session.record_success(page, [record("Organization", page.url, id="schema:Organization", name="Acme")])
    session.record_failure(PageRef(url=BASE + "/x", error="HTTP 500"))

    report = build_report(session)

    assert report["summary"]["pages_scanned"] == 3
    assert report["summary"]["pages_failed"] == 1
    assert report["consistency"]["score"] == 75
    assert [r["type"] for r in report["consistency"]["recommendations"]] == ["Excellent Consistency"]
    assert report["session"]["pages"][3]["error"] == "HTTP 500"


def test_identity_stubs_count_as_reuse():
    session = ScanSession(scan_id="s2", base_url=BASE, started_at="t0", finished_at="t1")
    stub = '{"@context": "https://schema.org", "@type": "Organization", "@id": "schema:Organization"}'

    for path in ("/", "/a", "/b"):
        page = PageRef(url=BASE + path, title="T")
        session.record_success(page, extract([stub], page))

    report = build_report(session)

    assert report["summary"]["total_schemas"] == 3
    assert report["consistency"]["score"] == 75
