"""Tests for web routes."""

import json

import pytest
from conftest import FakeFetcher
from fastapi.testclient import TestClient

from content_importer.core.errors import RequestTimeoutError
from content_importer.core.schema import ArticleSelectors, CategoryMapping, ListPageConfig, SelectorSets, Source
from content_importer.db.repositories import CategoryRepository
from content_importer.ingestion.diagnostics import DiagnosticsService
from content_importer.ingestion.extractor import DetailExtractor
from content_importer.ingestion.jobs import JobLifecycleManager
from content_importer.ingestion.pipeline import ImportPipeline
from content_importer.ingestion.presets import InMemoryPresetStore
from content_importer.ingestion.registry import SourceRegistry
from content_importer.web.app import create_app
from content_importer.web.dependencies import get_diagnostics, get_job_manager

BASE = "https://news.example.com"

ARTICLE = (
    "<html><body><h1>Lãi suất giảm</h1>"
    "<div class='body'><p>Ngân hàng giảm lãi suất.</p></div></body></html>"
)

LISTING = (
    "<html><body>"
    "<div class='item'><a href='/a.html'>A</a></div>"
    "<div class='item'><a href='/b.html'>B</a></div>"
    "</body></html>"
)


def source_payload(name: str = "Tin nhanh") -> dict:
    return {
        "name": name,
        "base_url": BASE,
        "selectors": {"article": {"title": "h1", "content": ".body"}},
    }


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher({f"{BASE}/a.html": ARTICLE, f"{BASE}/list": LISTING})


@pytest.fixture
def yaml_source() -> Source:
    return Source(
        id="yaml-news",
        name="YAML News",
        base_url=BASE,
        selectors=SelectorSets(article=ArticleSelectors(title="h1", content=".body")),
        list_page=ListPageConfig(enabled=True, item_selector=".item", link_selector="a"),
        category_mappings=[CategoryMapping(id="m1", category_id="cat-1", list_page_url="/list")],
    )


@pytest.fixture
def manager(session_factory, fetcher: FakeFetcher, yaml_source: Source) -> JobLifecycleManager:
    registry = SourceRegistry()
    registry.register(yaml_source)
    return JobLifecycleManager(
        session_factory,
        ImportPipeline(fetcher, DetailExtractor()),
        registry,
        preset_store=InMemoryPresetStore(),
    )


@pytest.fixture
def client(manager: JobLifecycleManager, fetcher: FakeFetcher) -> TestClient:
    """Create a test client wired to the test database and fake fetcher."""
    app = create_app(initialize_db=False)
    app.dependency_overrides[get_job_manager] = lambda: manager
    app.dependency_overrides[get_diagnostics] = lambda: DiagnosticsService(fetcher)
    return TestClient(app)


class TestHealth:
    """Tests for the health check."""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestSourceRoutes:
    """Tests for source management routes."""

    def test_list_sources(self, client: TestClient) -> None:
        response = client.get("/api/crawler/sources")
        assert [s["id"] for s in response.json()["sources"]] == ["yaml-news"]

    def test_validate_reports_errors(self, client: TestClient) -> None:
        payload = source_payload()
        payload["selectors"]["article"]["content"] = ""

        response = client.post("/api/crawler/sources/validate", json=payload)

        assert response.status_code == 200
        assert response.json() == {"valid": False, "errors": ["Content selector is required for articles"]}

    def test_create_get_update_delete(self, client: TestClient) -> None:
        created = client.post("/api/crawler/sources", json=source_payload())
        assert created.status_code == 201
        source_id = created.json()["source"]["id"]

        assert client.get(f"/api/crawler/sources/{source_id}").json()["source"]["name"] == "Tin nhanh"

        payload = source_payload()
        payload["selectors"]["article"]["title"] = "h1.headline"
        updated = client.put(f"/api/crawler/sources/{source_id}", json=payload)
        assert updated.json()["source"]["selectors"]["article"]["title"] == "h1.headline"

        assert client.delete(f"/api/crawler/sources/{source_id}").status_code == 200
        assert client.get(f"/api/crawler/sources/{source_id}").status_code == 404

    def test_create_invalid_source(self, client: TestClient) -> None:
        payload = source_payload()
        payload["base_url"] = "not a url"

        response = client.post("/api/crawler/sources", json=payload)

        assert response.status_code == 400
        assert response.json()["errors"]

    def test_create_duplicate_name(self, client: TestClient) -> None:
        client.post("/api/crawler/sources", json=source_payload())
        response = client.post("/api/crawler/sources", json=source_payload())
        assert response.status_code == 409

    def test_yaml_source_is_read_only(self, client: TestClient) -> None:
        assert client.delete("/api/crawler/sources/yaml-news").status_code == 409
        assert client.put("/api/crawler/sources/yaml-news", json=source_payload()).status_code == 409

    def test_discover_mapping_enqueues_jobs(self, client: TestClient, manager: JobLifecycleManager) -> None:
        response = client.post("/api/crawler/sources/yaml-news/discover", json={"mapping_id": "m1"})

        data = response.json()
        assert [link["url"] for link in data["links"]] == [f"{BASE}/a.html", f"{BASE}/b.html"]
        assert len(data["job_ids"]) == 2
        assert manager.get(data["job_ids"][0]).category_id == "cat-1"

    def test_discover_unknown_mapping(self, client: TestClient) -> None:
        response = client.post("/api/crawler/sources/yaml-news/discover", json={"mapping_id": "nope"})
        assert response.status_code == 404


class TestJobRoutes:
    """Tests for job routes."""

    def test_create_run_and_approve(self, client: TestClient) -> None:
        created = client.post(
            "/api/crawler/jobs", json={"urls": [f"{BASE}/a.html"], "source_id": "yaml-news"}
        )
        assert created.status_code == 201
        [job_id] = created.json()["job_ids"]

        ran = client.post(f"/api/crawler/jobs/{job_id}/run")
        assert ran.json()["job"]["status"] == "pending_review"

        edited = client.put(f"/api/crawler/jobs/{job_id}/review", json={"excerpt": "Tóm tắt"})
        assert edited.json()["record"]["fields"]["excerpt"] == "Tóm tắt"

        approved = client.post(f"/api/crawler/jobs/{job_id}/approve", json={"status": "published"})
        assert approved.status_code == 200
        assert approved.json()["slug"] == "lai-suat-giam"

        job = client.get(f"/api/crawler/jobs/{job_id}").json()["job"]
        assert job["status"] == "success"
        assert job["created_item_id"] == approved.json()["item_id"]

        again = client.post(f"/api/crawler/jobs/{job_id}/approve", json={})
        assert again.status_code == 409

    def test_run_twice_conflicts(self, client: TestClient) -> None:
        [job_id] = client.post("/api/crawler/jobs", json={"urls": [f"{BASE}/a.html"]}).json()["job_ids"]
        client.post(f"/api/crawler/jobs/{job_id}/run")

        assert client.post(f"/api/crawler/jobs/{job_id}/run").status_code == 409

    def test_empty_urls_rejected(self, client: TestClient) -> None:
        response = client.post("/api/crawler/jobs", json={"urls": ["  "]})
        assert response.status_code == 400

    def test_unknown_source_rejected(self, client: TestClient) -> None:
        response = client.post("/api/crawler/jobs", json={"urls": [f"{BASE}/a.html"], "source_id": "nope"})
        assert response.status_code == 404

    def test_unknown_job(self, client: TestClient) -> None:
        assert client.get("/api/crawler/jobs/missing").status_code == 404
        assert client.post("/api/crawler/jobs/missing/approve", json={}).status_code == 404

    def test_list_with_stats(self, client: TestClient) -> None:
        client.post("/api/crawler/jobs", json={"urls": [f"{BASE}/1", f"{BASE}/2"]})

        data = client.get("/api/crawler/jobs", params={"status": "queued"}).json()

        assert data["total"] == 2
        assert data["stats"]["queued"] == 2

    def test_requeue_and_delete(self, client: TestClient) -> None:
        [job_id] = client.post("/api/crawler/jobs", json={"urls": [f"{BASE}/missing"]}).json()["job_ids"]
        client.post(f"/api/crawler/jobs/{job_id}/run")

        requeued = client.post(f"/api/crawler/jobs/{job_id}/requeue")
        assert requeued.status_code == 201

        assert client.delete(f"/api/crawler/jobs/{job_id}").status_code == 200
        assert client.get(f"/api/crawler/jobs/{job_id}").status_code == 404


class TestBatchRoute:
    """Tests for direct batch import."""

    def test_batch_report(self, client: TestClient) -> None:
        response = client.post(
            "/api/crawler/batch",
            json={"urls": [f"{BASE}/a.html", f"{BASE}/gone"], "source_id": "yaml-news", "item_delay_ms": 0},
        )

        data = response.json()
        assert [r["status"] for r in data["results"]] == ["success", "failed"]
        assert data["summary"]["total"] == 2
        assert data["cancelled"] is False

    def test_batch_stream(self, client: TestClient) -> None:
        response = client.post(
            "/api/crawler/batch",
            params={"stream": "true"},
            json={"urls": [f"{BASE}/a.html", f"{BASE}/a.html"], "source_id": "yaml-news", "item_delay_ms": 0},
        )

        lines = [json.loads(line) for line in response.text.splitlines()]
        assert [line["status"] for line in lines] == ["success", "duplicate"]

    def test_batch_invalid_source(self, client: TestClient) -> None:
        response = client.post(
            "/api/crawler/batch",
            params={"stream": "true"},
            json={"urls": [f"{BASE}/a.html"], "source_id": "yaml-news", "kind": "product"},
        )
        assert response.status_code == 400


class TestDiagnosticsRoutes:
    """Tests for the diagnostics routes."""

    def test_test_selector(self, client: TestClient) -> None:
        response = client.post("/api/crawler/test-selector", json={"url": f"{BASE}/a.html", "selector": "h1"})
        assert response.json()["value"] == "Lãi suất giảm"

    def test_extract_links(self, client: TestClient) -> None:
        response = client.post("/api/crawler/extract-links", json={"url": f"{BASE}/list"})
        assert response.json()["total"] == 2

    def test_extract_links_local_url(self, client: TestClient) -> None:
        response = client.post("/api/crawler/extract-links", json={"url": "http://localhost/list"})
        assert response.status_code == 400

    def test_test_list(self, client: TestClient) -> None:
        response = client.post(
            "/api/crawler/test-list", json={"url": f"{BASE}/list", "item_selector": ".item", "link_selector": "a"}
        )
        assert response.json()["links_found"] == 2

    def test_upstream_errors(self, client: TestClient, fetcher: FakeFetcher) -> None:
        fetcher.errors[f"{BASE}/slow"] = RequestTimeoutError(f"{BASE}/slow", "timed out")

        assert client.post("/api/crawler/detect-images", json={"url": f"{BASE}/gone"}).status_code == 502
        slow = client.post("/api/crawler/detect-images", json={"url": f"{BASE}/slow"})
        assert slow.status_code == 504
        assert slow.json()["url"] == f"{BASE}/slow"


class TestPresetAndCategoryRoutes:
    """Tests for presets and categories."""

    def test_preset_lifecycle(self, client: TestClient) -> None:
        preset = {
            "name": "Shop",
            "domain": "shop.example.com",
            "kind": "product",
            "selectors": {"product": {"name": "h1", "price": ".price"}},
        }
        assert client.post("/api/crawler/presets", json=preset).status_code == 201
        assert [p["domain"] for p in client.get("/api/crawler/presets").json()["presets"]] == ["shop.example.com"]
        assert client.delete("/api/crawler/presets/shop.example.com").status_code == 200
        assert client.delete("/api/crawler/presets/shop.example.com").status_code == 404

    def test_categories(self, client: TestClient, session) -> None:
        repo = CategoryRepository(session)
        parent = repo.create("Kinh tế", "kinh-te")
        repo.create("Ngân hàng", "ngan-hang", parent_id=parent.id)
        session.commit()

        categories = client.get("/api/crawler/categories").json()["categories"]

        assert [c["label"] for c in categories] == ["Kinh tế", "-- Ngân hàng"]
