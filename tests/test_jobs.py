"""Tests for the crawl job lifecycle."""

import asyncio

import pytest
from conftest import FakeFetcher

from content_importer.core.enums import ContentKind, JobStatus, PublishStatus
from content_importer.core.errors import ConfigValidationError, JobNotFoundError, JobStateError, NetworkError
from content_importer.core.schema import (
    ArticleSelectors,
    ProductSelectors,
    SelectorPreset,
    SelectorSets,
    SeoConfig,
    Source,
)
from content_importer.db.repositories import CatalogRepository, CrawlJobRepository
from content_importer.ingestion.extractor import DetailExtractor
from content_importer.ingestion.jobs import JobLifecycleManager
from content_importer.ingestion.pipeline import ImportPipeline
from content_importer.ingestion.presets import InMemoryPresetStore
from content_importer.ingestion.registry import SourceRegistry

BASE = "https://news.example.com"


def article_page(title: str, body: str = "Nội dung bài viết") -> str:
    return (
        "<html><head><meta name='description' content='Mô tả'></head><body>"
        f"<h1 class='title'>{title}</h1><div class='body'><p>{body}</p></div>"
        "</body></html>"
    )


@pytest.fixture
def news_source() -> Source:
    return Source(
        id="news",
        name="News",
        base_url=BASE,
        selectors=SelectorSets(article=ArticleSelectors(title="h1.title", content=".body")),
    )


@pytest.fixture
def registry(news_source: Source) -> SourceRegistry:
    registry = SourceRegistry()
    registry.register(news_source)
    return registry


@pytest.fixture
def manager(session_factory, fetcher: FakeFetcher, registry: SourceRegistry) -> JobLifecycleManager:
    return JobLifecycleManager(session_factory, ImportPipeline(fetcher, DetailExtractor()), registry)


class TestEnqueueAndQuery:
    """Tests for creating and querying jobs."""

    def test_enqueue_skips_blank_urls(self, manager: JobLifecycleManager) -> None:
        job_ids = manager.enqueue([f"{BASE}/a", "  ", "", f" {BASE}/b "], source_id="news")

        assert len(job_ids) == 2
        job = manager.get(job_ids[1])
        assert job.url == f"{BASE}/b"
        assert job.status == JobStatus.QUEUED
        assert job.target_status == PublishStatus.PENDING_REVIEW

    def test_get_missing(self, manager: JobLifecycleManager) -> None:
        with pytest.raises(JobNotFoundError):
            manager.get("missing")

    def test_list_and_stats(self, manager: JobLifecycleManager) -> None:
        manager.enqueue([f"{BASE}/{n}" for n in range(5)])
        manager.enqueue([f"{BASE}/p"], kind=ContentKind.PRODUCT)

        jobs, total = manager.list_jobs(kind=ContentKind.ARTICLE, page=1, limit=2)
        assert total == 5
        assert len(jobs) == 2
        assert manager.stats()["queued"] == 6
        assert manager.stats()["failed"] == 0

    def test_delete(self, manager: JobLifecycleManager) -> None:
        [job_id] = manager.enqueue([f"{BASE}/a"])

        manager.delete(job_id)

        with pytest.raises(JobNotFoundError):
            manager.get(job_id)
        with pytest.raises(JobNotFoundError):
            manager.delete(job_id)


class TestRun:
    """Tests for running a job."""

    @pytest.mark.asyncio
    async def test_default_target_goes_to_review(self, manager: JobLifecycleManager, fetcher: FakeFetcher) -> None:
        fetcher.pages[f"{BASE}/a"] = article_page("Tin nóng")
        [job_id] = manager.enqueue([f"{BASE}/a"], source_id="news")

        job = await manager.run(job_id)

        assert job.status == JobStatus.PENDING_REVIEW
        assert job.extracted_data["fields"]["title"] == "Tin nóng"
        assert job.created_item_id is None
        assert job.processed_at is not None

    @pytest.mark.asyncio
    async def test_draft_target_writes_catalog(
        self, manager: JobLifecycleManager, fetcher: FakeFetcher, session
    ) -> None:
        fetcher.pages[f"{BASE}/a?utm_source=fb"] = article_page("Tin nóng")
        [job_id] = manager.enqueue(
            [f"{BASE}/a?utm_source=fb"],
            source_id="news",
            category_id="cat-1",
            target_status=PublishStatus.DRAFT,
        )

        job = await manager.run(job_id)

        assert job.status == JobStatus.SUCCESS
        article = CatalogRepository(session).get_article(job.created_item_id)
        assert article.slug == "tin-nong"
        assert article.status == "draft"
        assert article.category_id == "cat-1"
        assert article.source_url == f"{BASE}/a"
        assert article.meta_description == "Mô tả"
        assert article.published_at is None

    @pytest.mark.asyncio
    async def test_published_target_sets_published_at(
        self, manager: JobLifecycleManager, fetcher: FakeFetcher, session
    ) -> None:
        fetcher.pages[f"{BASE}/a"] = article_page("Tin nóng")
        [job_id] = manager.enqueue([f"{BASE}/a"], source_id="news", target_status=PublishStatus.PUBLISHED)

        job = await manager.run(job_id)

        article = CatalogRepository(session).get_article(job.created_item_id)
        assert article.status == "published"
        assert article.published_at is not None

    @pytest.mark.asyncio
    async def test_missing_required_field_fails(self, manager: JobLifecycleManager, fetcher: FakeFetcher) -> None:
        fetcher.pages[f"{BASE}/a"] = "<html><body><div class='body'>text</div></body></html>"
        [job_id] = manager.enqueue([f"{BASE}/a"], source_id="news")

        job = await manager.run(job_id)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Required field 'title' not found"
        assert job.extracted_data is None

    @pytest.mark.asyncio
    async def test_fetch_error_fails(self, manager: JobLifecycleManager) -> None:
        [job_id] = manager.enqueue([f"{BASE}/gone"], source_id="news")

        job = await manager.run(job_id)

        assert job.status == JobStatus.FAILED
        assert "HTTP 404" in job.error_message

    @pytest.mark.asyncio
    async def test_network_error_fails(self, manager: JobLifecycleManager, fetcher: FakeFetcher) -> None:
        fetcher.errors[f"{BASE}/a"] = NetworkError(f"{BASE}/a", "connection reset")
        [job_id] = manager.enqueue([f"{BASE}/a"], source_id="news")

        job = await manager.run(job_id)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "connection reset"

    @pytest.mark.asyncio
    async def test_second_run_rejected(self, manager: JobLifecycleManager, fetcher: FakeFetcher) -> None:
        fetcher.pages[f"{BASE}/a"] = article_page("Tin nóng")
        [job_id] = manager.enqueue([f"{BASE}/a"], source_id="news")
        await manager.run(job_id)

        with pytest.raises(JobStateError):
            await manager.run(job_id)
        assert fetcher.requests == [f"{BASE}/a"]

    @pytest.mark.asyncio
    async def test_claimed_job_rejected(self, manager: JobLifecycleManager, session) -> None:
        [job_id] = manager.enqueue([f"{BASE}/a"], source_id="news")
        assert CrawlJobRepository(session).claim(job_id)
        session.commit()

        with pytest.raises(JobStateError):
            await manager.run(job_id)
        assert manager.get(job_id).status == JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_claim_is_single_winner(self, manager: JobLifecycleManager, session_factory) -> None:
        [job_id] = manager.enqueue([f"{BASE}/a"], source_id="news")

        with session_factory() as first, session_factory() as second:
            won_first = CrawlJobRepository(first).claim(job_id)
            first.commit()
            won_second = CrawlJobRepository(second).claim(job_id)
            second.commit()

        assert (won_first, won_second) == (True, False)

    @pytest.mark.asyncio
    async def test_cancelled_run_marks_job_failed(self, manager: JobLifecycleManager, fetcher: FakeFetcher) -> None:
        fetcher.errors[f"{BASE}/a"] = asyncio.CancelledError()
        [job_id] = manager.enqueue([f"{BASE}/a"], source_id="news")

        with pytest.raises(asyncio.CancelledError):
            await manager.run(job_id)

        job = manager.get(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message == "cancelled"
        assert manager.get(manager.requeue(job_id)).status == JobStatus.QUEUED


class TestDuplicates:
    """Tests for duplicate handling during a run."""

    @pytest.mark.asyncio
    async def test_same_url_is_duplicate(self, manager: JobLifecycleManager, fetcher: FakeFetcher) -> None:
        fetcher.pages[f"{BASE}/a"] = article_page("Tin nóng")
        first, second = manager.enqueue([f"{BASE}/a", f"{BASE}/a/"], source_id="news", target_status=PublishStatus.DRAFT)

        created = await manager.run(first)
        job = await manager.run(second)

        assert job.status == JobStatus.DUPLICATE
        assert job.created_item_id == created.created_item_id
        assert job.error_message.startswith("Article already exists")
        assert fetcher.requests == [f"{BASE}/a"]

    @pytest.mark.asyncio
    async def test_same_content_is_duplicate(self, manager: JobLifecycleManager, fetcher: FakeFetcher) -> None:
        fetcher.pages[f"{BASE}/a"] = article_page("Tin nóng")
        fetcher.pages[f"{BASE}/amp/a"] = article_page("Tin nóng")
        first, second = manager.enqueue(
            [f"{BASE}/a", f"{BASE}/amp/a"], source_id="news", target_status=PublishStatus.DRAFT
        )

        await manager.run(first)
        job = await manager.run(second)

        assert job.status == JobStatus.DUPLICATE

    @pytest.mark.asyncio
    async def test_slug_collision_is_uniquified(
        self, manager: JobLifecycleManager, fetcher: FakeFetcher, session
    ) -> None:
        fetcher.pages[f"{BASE}/a"] = article_page("Tin nóng", "một")
        fetcher.pages[f"{BASE}/b"] = article_page("Tin nóng", "hai")
        first, second = manager.enqueue([f"{BASE}/a", f"{BASE}/b"], source_id="news", target_status=PublishStatus.DRAFT)

        await manager.run(first)
        job = await manager.run(second)

        assert job.status == JobStatus.SUCCESS
        assert CatalogRepository(session).get_article(job.created_item_id).slug == "tin-nong-1"


class TestSourceResolution:
    """Tests for picking and validating a job's source."""

    @pytest.mark.asyncio
    async def test_invalid_source_leaves_job_queued(
        self, manager: JobLifecycleManager, registry: SourceRegistry
    ) -> None:
        registry.register(Source(id="broken", name="Broken", base_url=BASE))
        [job_id] = manager.enqueue([f"{BASE}/a"], source_id="broken")

        with pytest.raises(ConfigValidationError):
            await manager.run(job_id)
        assert manager.get(job_id).status == JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_invalid_seo_selector_rejected_before_fetch(
        self, manager: JobLifecycleManager, registry: SourceRegistry, news_source: Source, fetcher: FakeFetcher
    ) -> None:
        seo = SeoConfig(meta_title="h1[[[")
        registry.register(news_source.model_copy(update={"id": "seo", "name": "Seo", "seo": seo}))
        [job_id] = manager.enqueue([f"{BASE}/a"], source_id="seo")

        with pytest.raises(ConfigValidationError):
            await manager.run(job_id)
        assert manager.get(job_id).status == JobStatus.QUEUED
        assert fetcher.requests == []

    @pytest.mark.asyncio
    async def test_unknown_source(self, manager: JobLifecycleManager) -> None:
        [job_id] = manager.enqueue([f"{BASE}/a"], source_id="nope")

        with pytest.raises(ConfigValidationError):
            await manager.run(job_id)

    def test_unbound_job_uses_preset(self, session_factory, fetcher: FakeFetcher, registry: SourceRegistry) -> None:
        preset = SelectorPreset(
            name="shop",
            domain="shop.example.com",
            kind=ContentKind.PRODUCT,
            selectors=SelectorSets(product=ProductSelectors(name="h2", price=".gia")),
        )
        manager = JobLifecycleManager(
            session_factory,
            ImportPipeline(fetcher),
            registry,
            preset_store=InMemoryPresetStore([preset]),
        )
        [job_id] = manager.enqueue(["https://shop.example.com/p/1"], kind=ContentKind.PRODUCT)

        source = manager.resolve_source(manager.get(job_id))

        assert source.selectors.product.name == "h2"

    def test_unbound_job_falls_back_to_defaults(self, manager: JobLifecycleManager) -> None:
        [job_id] = manager.enqueue(["https://other.example.org/x"])

        source = manager.resolve_source(manager.get(job_id))

        assert source.base_url == "https://other.example.org"
        assert source.selectors.article is not None


class TestRequeue:
    """Tests for requeueing finished jobs."""

    @pytest.mark.asyncio
    async def test_requeue_failed_job(self, manager: JobLifecycleManager) -> None:
        [job_id] = manager.enqueue([f"{BASE}/gone"], source_id="news", category_id="c1")
        await manager.run(job_id)

        new_id = manager.requeue(job_id)

        new_job = manager.get(new_id)
        assert new_id != job_id
        assert new_job.status == JobStatus.QUEUED
        assert new_job.category_id == "c1"
        assert manager.get(job_id).status == JobStatus.FAILED

    def test_requeue_queued_job_rejected(self, manager: JobLifecycleManager) -> None:
        [job_id] = manager.enqueue([f"{BASE}/a"])

        with pytest.raises(JobStateError):
            manager.requeue(job_id)
