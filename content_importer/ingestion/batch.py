"""
Batch Orchestrator Module
=========================

Imports many URLs straight into the catalog (bypassing the job queue
and review), strictly one after another with a delay between items.
Every URL yields exactly one outcome; a failing item never stops the
batch. Results are streamed so a caller can report progress as it goes
and cancel between items.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from content_importer.core.enums import BatchItemStatus, ContentKind, PublishStatus
from content_importer.core.errors import (
    ConfigValidationError,
    CrawlerError,
    DuplicateContentError,
    SlugConflictError,
)
from content_importer.core.schema import Source
from content_importer.db.repositories import CatalogRepository, CrawlSourceRepository
from content_importer.ingestion.dedup import DedupDetector
from content_importer.ingestion.pipeline import ImportPipeline, slug_for, write_record
from content_importer.ingestion.presets import PresetStore
from content_importer.ingestion.registry import SourceRegistry

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag checked between batch items."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class BatchConfig:
    """Settings shared by every URL of a batch."""

    source_id: str | None = None
    kind: ContentKind = ContentKind.ARTICLE
    category_id: str | None = None
    status: PublishStatus = PublishStatus.DRAFT
    item_delay_ms: int | None = None


@dataclass
class BatchItemResult:
    """Outcome of one URL."""

    url: str
    status: BatchItemStatus
    error: str | None = None
    item_id: str | None = None
    slug: str | None = None
    title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class BatchReport:
    """All outcomes of a batch run."""

    results: list[BatchItemResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in BatchItemStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts

    @property
    def summary(self) -> str:
        counts = self.counts
        text = (
            f"{counts['success']} success, {counts['failed']} failed, "
            f"{counts['duplicate']} duplicate, {counts['slug_conflict']} slug conflict"
        )
        return f"{text} (cancelled)" if self.cancelled else text

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": {"total": len(self.results), **self.counts},
            "message": self.summary,
            "cancelled": self.cancelled,
        }


class BatchOrchestrator:
    """
    Runs batch imports.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session
        pipeline: Fetch + extract pipeline
        registry: Registry for YAML sources, validation and defaults
        preset_store: Quick-import presets consulted when no source is given
        sleep: Awaitable sleep (injected in tests)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        pipeline: ImportPipeline,
        registry: SourceRegistry,
        preset_store: PresetStore | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self.pipeline = pipeline
        self.registry = registry
        self.preset_store = preset_store
        self._sleep = sleep

    def _bound_source(self, config: BatchConfig) -> Source | None:
        if not config.source_id:
            return None
        source = self.registry.find(config.source_id)
        if source is None:
            with self._session_factory() as session:
                source = CrawlSourceRepository(session).get_by_id(config.source_id)
        if source is None:
            raise ConfigValidationError([f"Source '{config.source_id}' not found"])
        errors = self.registry.validate(source.model_copy(update={"kind": config.kind}))
        if errors:
            raise ConfigValidationError(errors)
        return source

    def _source_for_url(self, url: str, config: BatchConfig) -> Source:
        if self.preset_store is not None:
            preset = self.preset_store.find_for_url(url)
            if preset is not None and preset.kind == config.kind:
                logger.debug(f"Using preset '{preset.name}' for {url}")
                return preset.to_source(url)
        return self.registry.default_source(config.kind, url)

    def _item_delay(self, config: BatchConfig, source: Source | None) -> float:
        if config.item_delay_ms is not None:
            return config.item_delay_ms / 1000
        if source is not None:
            return source.request_policy.delay_ms / 1000
        return self.registry.global_config.batch_item_delay_ms / 1000

    async def iter_batch(
        self,
        urls: list[str],
        config: BatchConfig,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[BatchItemResult]:
        """
        Import URLs one by one, yielding each outcome as it completes.

        Raises:
            ConfigValidationError: The bound source is missing or invalid
                (raised before any request is made).
        """
        source = self._bound_source(config)
        delay = self._item_delay(config, source)
        pending = [u.strip() for u in urls if u.strip()]

        for index, url in enumerate(pending):
            if cancel is not None and cancel.cancelled:
                logger.info(f"Batch cancelled after {index} of {len(pending)} items")
                return
            if index > 0 and delay > 0:
                await self._sleep(delay)

            item_source = source or self._source_for_url(url, config)
            result = await self._import_one(url, item_source, config)
            logger.info(f"Batch item {index + 1}/{len(pending)} {url}: {result.status.value}")
            yield result

    async def run_batch(
        self,
        urls: list[str],
        config: BatchConfig,
        cancel: CancellationToken | None = None,
        on_result: Callable[[BatchItemResult], None] | None = None,
    ) -> BatchReport:
        """Run a whole batch and collect a report."""
        report = BatchReport()
        async for result in self.iter_batch(urls, config, cancel):
            report.results.append(result)
            if on_result is not None:
                on_result(result)
        report.cancelled = bool(cancel and cancel.cancelled)
        logger.info(f"Batch finished: {report.summary}")
        return report

    async def _import_one(self, url: str, source: Source, config: BatchConfig) -> BatchItemResult:
        label = "Article" if config.kind == ContentKind.ARTICLE else "Product"
        try:
            with self._session_factory() as session:
                existing = DedupDetector(CatalogRepository(session)).check_url(url, config.kind)
            if not existing.is_unique:
                return BatchItemResult(
                    url=url,
                    status=BatchItemStatus.DUPLICATE,
                    error=f"{label} already exists with this URL",
                    item_id=existing.existing_id,
                )

            record = await self.pipeline.extract_url(url, source, config.kind)
            title = record.title
            slug = slug_for(record)

            with self._session_factory() as session:
                catalog = CatalogRepository(session)
                try:
                    check = DedupDetector(catalog).ensure_new(url, slug, config.kind, record.content_hash)
                except DuplicateContentError as e:
                    return BatchItemResult(
                        url=url,
                        status=BatchItemStatus.DUPLICATE,
                        error=f"{label} already exists with the same content",
                        item_id=e.existing_id,
                        title=title,
                    )
                except SlugConflictError as e:
                    return BatchItemResult(
                        url=url,
                        status=BatchItemStatus.SLUG_CONFLICT,
                        error=str(e),
                        slug=e.slug,
                        title=title,
                    )

                try:
                    item_id = write_record(
                        catalog,
                        record,
                        slug=slug,
                        category_id=config.category_id,
                        status=config.status.value,
                        source_url=check.normalized_url,
                    )
                    session.commit()
                except Exception:
                    session.rollback()
                    raise

            return BatchItemResult(
                url=url,
                status=BatchItemStatus.SUCCESS,
                item_id=item_id,
                slug=slug,
                title=title,
            )
        except CrawlerError as e:
            logger.warning(f"Batch item {url} failed: {e}")
            return BatchItemResult(url=url, status=BatchItemStatus.FAILED, error=str(e))
        except Exception as e:
            logger.exception(f"Batch item {url} failed unexpectedly")
            return BatchItemResult(url=url, status=BatchItemStatus.FAILED, error=str(e) or e.__class__.__name__)
