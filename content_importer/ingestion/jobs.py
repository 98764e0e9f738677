"""
Job Lifecycle Module
====================

Owns the crawl job state machine:

    queued -> processing -> success | failed | duplicate | pending_review
    pending_review -> success            (review gateway only)

Claiming a job is a single conditional UPDATE, so two triggers can
never process the same job. Jobs are never retried automatically;
``requeue`` creates a new job.

Also defines the optional arq task for running jobs from a Redis-backed
worker.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import Any

from arq import create_pool
from arq.connections import RedisSettings
from sqlalchemy.orm import Session

from content_importer.core.enums import ContentKind, JobStatus, PublishStatus
from content_importer.core.errors import (
    CatalogWriteError,
    ConfigValidationError,
    FetchError,
    JobNotFoundError,
    JobStateError,
    RequiredFieldMissingError,
)
from content_importer.core.schema import CrawlJob, Source
from content_importer.db.repositories import CatalogRepository, CrawlJobRepository, CrawlSourceRepository
from content_importer.ingestion.dedup import DedupDetector
from content_importer.ingestion.pipeline import ImportPipeline, slug_for, write_record
from content_importer.ingestion.presets import PresetStore
from content_importer.ingestion.registry import SourceRegistry

logger = logging.getLogger(__name__)

# Target statuses that write straight to the catalog
DIRECT_WRITE_STATUSES = {PublishStatus.DRAFT, PublishStatus.PUBLISHED}


class JobLifecycleManager:
    """
    Creates, runs and finalizes crawl jobs.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session
        pipeline: Fetch + extract pipeline
        registry: Registry for YAML sources and validation
        preset_store: Optional quick-import presets for unbound jobs
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        pipeline: ImportPipeline,
        registry: SourceRegistry,
        preset_store: PresetStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.pipeline = pipeline
        self.registry = registry
        self.preset_store = preset_store

    @property
    def session_factory(self) -> Callable[[], Session]:
        return self._session_factory

    # ------------------------------------------------------------------
    # Queries and bookkeeping
    # ------------------------------------------------------------------

    def enqueue(
        self,
        urls: list[str],
        kind: ContentKind = ContentKind.ARTICLE,
        source_id: str | None = None,
        category_id: str | None = None,
        target_status: PublishStatus = PublishStatus.PENDING_REVIEW,
    ) -> list[str]:
        """
        Create one queued job per non-blank URL.

        Returns:
            The new job IDs, in input order
        """
        job_ids = []
        with self._session_factory() as session:
            repo = CrawlJobRepository(session)
            for url in urls:
                url = url.strip()
                if not url:
                    continue
                job = repo.create(
                    CrawlJob(
                        url=url,
                        kind=kind,
                        source_id=source_id,
                        category_id=category_id,
                        target_status=target_status,
                    )
                )
                job_ids.append(job.id)
            session.commit()
        logger.info(f"Enqueued {len(job_ids)} {ContentKind(kind).value} jobs")
        return job_ids

    def get(self, job_id: str) -> CrawlJob:
        """
        Get a job.

        Raises:
            JobNotFoundError: No such job.
        """
        with self._session_factory() as session:
            job = CrawlJobRepository(session).get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(f"Job '{job_id}' not found")
        return job

    def list_jobs(
        self,
        status: JobStatus | str | None = None,
        kind: ContentKind | str | None = None,
        source_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[CrawlJob], int]:
        """List jobs newest first; returns (page of jobs, total)."""
        with self._session_factory() as session:
            return CrawlJobRepository(session).list_jobs(status, kind, source_id, page, limit)

    def stats(self) -> dict[str, int]:
        with self._session_factory() as session:
            return CrawlJobRepository(session).count_by_status()

    def requeue(self, job_id: str) -> str:
        """
        Create a new queued job for a terminal job's URL.

        Raises:
            JobNotFoundError: No such job.
            JobStateError: The job is not in a terminal state.
        """
        job = self.get(job_id)
        if not job.status.is_terminal:
            raise JobStateError(f"Job {job_id} is {job.status.value}; only finished jobs can be requeued")
        return self.enqueue(
            [job.url],
            kind=job.kind,
            source_id=job.source_id,
            category_id=job.category_id,
            target_status=job.target_status,
        )[0]

    def delete(self, job_id: str) -> None:
        """
        Delete a job (the only deletion path).

        Raises:
            JobNotFoundError: No such job.
        """
        with self._session_factory() as session:
            if not CrawlJobRepository(session).delete(job_id):
                raise JobNotFoundError(f"Job '{job_id}' not found")
            session.commit()
        logger.info(f"Deleted job {job_id}")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def resolve_source(self, job: CrawlJob) -> Source:
        """
        Pick the source for a job.

        Bound sources come from the registry, then the database. Unbound
        jobs use the preset for the URL's domain, else generic selectors.
        """
        if job.source_id:
            source = self.registry.find(job.source_id)
            if source is None:
                with self._session_factory() as session:
                    source = CrawlSourceRepository(session).get_by_id(job.source_id)
            if source is None:
                raise ConfigValidationError([f"Source '{job.source_id}' not found"])
            return source

        if self.preset_store is not None:
            preset = self.preset_store.find_for_url(job.url)
            if preset is not None and preset.kind == job.kind:
                return preset.to_source(job.url)
        return self.registry.default_source(job.kind, job.url)

    def _finish(self, job_id: str, to_status: JobStatus, **values: Any) -> None:
        with self._session_factory() as session:
            if not CrawlJobRepository(session).transition(job_id, JobStatus.PROCESSING, to_status, **values):
                raise JobStateError(f"Job {job_id} left processing unexpectedly")
            session.commit()
        logger.info(f"Job {job_id} -> {to_status.value}")

    async def run(self, job_id: str) -> CrawlJob:
        """
        Run one job to a terminal or pending_review state.

        The source configuration is validated before the claim, so an
        invalid source leaves the job queued.

        Returns:
            The job after the run

        Raises:
            JobNotFoundError: No such job.
            JobStateError: The job is not queued or was claimed elsewhere.
            ConfigValidationError: The job's source is invalid.
        """
        job = self.get(job_id)
        if job.status != JobStatus.QUEUED:
            raise JobStateError(f"Job {job_id} is {job.status.value}, expected queued")

        source = self.resolve_source(job)
        errors = self.registry.validate(source)
        if errors:
            raise ConfigValidationError(errors)

        with self._session_factory() as session:
            claimed = CrawlJobRepository(session).claim(job_id)
            session.commit()
        if not claimed:
            raise JobStateError(f"Job {job_id} was claimed by another worker")
        logger.info(f"Job {job_id} claimed ({job.kind.value} {job.url})")

        try:
            await self._process(job, source)
        except (FetchError, RequiredFieldMissingError, ConfigValidationError, CatalogWriteError) as e:
            logger.warning(f"Job {job_id} failed: {e}")
            self._finish(job_id, JobStatus.FAILED, error_message=str(e))
        except Exception as e:
            logger.exception(f"Job {job_id} failed unexpectedly")
            self._finish(job_id, JobStatus.FAILED, error_message=str(e) or e.__class__.__name__)
        except BaseException:
            # Worker timeout or shutdown; a job must not stay in processing
            with self._session_factory() as session:
                if CrawlJobRepository(session).transition(
                    job_id, JobStatus.PROCESSING, JobStatus.FAILED, error_message="cancelled"
                ):
                    session.commit()
                    logger.warning(f"Job {job_id} cancelled while processing")
            raise

        return self.get(job_id)

    async def _process(self, job: CrawlJob, source: Source) -> None:
        with self._session_factory() as session:
            existing = DedupDetector(CatalogRepository(session)).check_url(job.url, job.kind)
        if not existing.is_unique:
            self._mark_duplicate(job, existing.existing_id)
            return

        record = await self.pipeline.extract_url(job.url, source, job.kind)

        with self._session_factory() as session:
            catalog = CatalogRepository(session)
            result = DedupDetector(catalog).check(job.url, None, job.kind, record.content_hash)
            if not result.is_unique:
                session.rollback()
                self._mark_duplicate(job, result.existing_id)
                return

            if job.target_status not in DIRECT_WRITE_STATUSES:
                transitioned = CrawlJobRepository(session).transition(
                    job.id,
                    JobStatus.PROCESSING,
                    JobStatus.PENDING_REVIEW,
                    extracted_data=record.model_dump(mode="json"),
                    error_message=None,
                )
                if not transitioned:
                    raise JobStateError(f"Job {job.id} left processing unexpectedly")
                session.commit()
                logger.info(f"Job {job.id} -> pending_review")
                return

            try:
                slug = catalog.ensure_unique_slug(job.kind, slug_for(record))
                item_id = write_record(
                    catalog,
                    record,
                    slug=slug,
                    category_id=job.category_id,
                    status=job.target_status.value,
                    source_url=result.normalized_url,
                )
                transitioned = CrawlJobRepository(session).transition(
                    job.id,
                    JobStatus.PROCESSING,
                    JobStatus.SUCCESS,
                    extracted_data=record.model_dump(mode="json"),
                    created_item_id=item_id,
                    error_message=None,
                )
                if not transitioned:
                    raise JobStateError(f"Job {job.id} left processing unexpectedly")
                session.commit()
            except Exception:
                session.rollback()
                raise
        logger.info(f"Job {job.id} -> success ({item_id})")

    def _mark_duplicate(self, job: CrawlJob, existing_id: str | None) -> None:
        label = "Article" if job.kind == ContentKind.ARTICLE else "Product"
        self._finish(
            job.id,
            JobStatus.DUPLICATE,
            error_message=f"{label} already exists: {existing_id}",
            created_item_id=existing_id,
        )


# ============================================================================
# Background worker (arq)
# ============================================================================


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


def build_default_manager() -> JobLifecycleManager:
    """Wire a manager from the default registry, crawler, asset store and DB."""
    from content_importer.db.engine import get_session_factory
    from content_importer.ingestion.crawler import get_default_crawler
    from content_importer.ingestion.extractor import DetailExtractor
    from content_importer.ingestion.images import ImageResolver
    from content_importer.ingestion.presets import SqlPresetStore
    from content_importer.ingestion.registry import get_default_registry
    from content_importer.ingestion.storage import get_default_asset_store

    session_factory = get_session_factory()
    registry = get_default_registry()
    with session_factory() as session:
        registry.load_from_repository(CrawlSourceRepository(session).list_all())

    extractor = DetailExtractor(ImageResolver(get_default_asset_store()))
    return JobLifecycleManager(
        session_factory,
        ImportPipeline(get_default_crawler(), extractor),
        registry,
        preset_store=SqlPresetStore(session_factory),
    )


async def run_crawl_job(ctx: dict[str, Any], job_id: str) -> dict[str, Any]:
    """
    arq task: run one queued crawl job.

    Args:
        ctx: arq context (holds the manager built at startup)
        job_id: Crawl job ID

    Returns:
        The job after the run, as a JSON-ready dict
    """
    manager: JobLifecycleManager = ctx.get("manager") or build_default_manager()
    job = await manager.run(job_id)
    return job.model_dump(mode="json")


async def dispatch_jobs(job_ids: list[str]) -> list[str]:
    """
    Send queued jobs to the arq worker.

    Returns:
        arq job IDs
    """
    redis = await create_pool(get_redis_settings())
    try:
        arq_ids = []
        for job_id in job_ids:
            arq_job = await redis.enqueue_job("run_crawl_job", job_id, _job_id=f"crawl:{job_id}")
            if arq_job is not None:
                arq_ids.append(arq_job.job_id)
        return arq_ids
    finally:
        await redis.close()


async def _startup(ctx: dict[str, Any]) -> None:
    ctx["manager"] = build_default_manager()


class WorkerSettings:
    """arq worker settings."""

    functions = [run_crawl_job]
    on_startup = _startup
    redis_settings = get_redis_settings()
    max_jobs = 5
    job_timeout = 600
    keep_result = 86400  # 24 hours
