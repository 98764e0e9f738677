"""Crawler API routes: sources, jobs, review, batch import and diagnostics."""

import json
import logging
from dataclasses import asdict
from urllib.parse import urljoin

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from content_importer.core.enums import ContentKind, JobStatus, PublishStatus
from content_importer.core.errors import ConfigValidationError, SourceNotFoundError
from content_importer.core.schema import ListPageConfig, SelectorPreset, Source
from content_importer.db.repositories import CategoryRepository, CrawlSourceRepository
from content_importer.ingestion.batch import BatchConfig, BatchOrchestrator
from content_importer.ingestion.diagnostics import DiagnosticsService
from content_importer.ingestion.discovery import ListDiscoveryEngine, discover_category
from content_importer.ingestion.jobs import JobLifecycleManager, dispatch_jobs
from content_importer.services.review_service import ApprovalEdits, ReviewService
from content_importer.web.dependencies import (
    get_batch_orchestrator,
    get_diagnostics,
    get_discovery_engine,
    get_job_manager,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/crawler", tags=["crawler"])


# ============================================================================
# Request bodies
# ============================================================================


class EnqueueRequest(BaseModel):
    urls: list[str]
    kind: ContentKind = ContentKind.ARTICLE
    source_id: str | None = None
    category_id: str | None = None
    target_status: PublishStatus = PublishStatus.PENDING_REVIEW
    dispatch: bool = False


class BatchRequest(BaseModel):
    urls: list[str]
    kind: ContentKind = ContentKind.ARTICLE
    source_id: str | None = None
    category_id: str | None = None
    status: PublishStatus = PublishStatus.DRAFT
    item_delay_ms: int | None = Field(default=None, ge=0)


class DiscoverRequest(BaseModel):
    mapping_id: str | None = None
    listing_url: str | None = None
    enqueue: bool = True


class ExtractLinksRequest(BaseModel):
    url: str
    link_selector: str = "a[href]"
    container_selector: str | None = None
    filter_pattern: str | None = None
    exclude_pattern: str | None = None
    limit: int = Field(default=100, ge=1, le=1000)


class TestSelectorRequest(BaseModel):
    url: str
    selector: str
    multiple: bool = False


class DetectImagesRequest(BaseModel):
    url: str


class TestListRequest(BaseModel):
    url: str
    item_selector: str
    link_selector: str = ""
    title_selector: str | None = None
    image_selector: str | None = None


def _job_json(job) -> dict:
    return job.model_dump(mode="json")


# ============================================================================
# Sources
# ============================================================================


@router.get("/sources")
async def list_sources(
    active_only: bool = False,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    """List registered sources (YAML and database)."""
    registry = manager.registry
    sources = registry.list_active_sources() if active_only else registry.list_sources()
    return JSONResponse({"sources": [s.model_dump(mode="json") for s in sources]})


@router.post("/sources/validate")
async def validate_source(
    source: Source,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    """Validate a source configuration without saving or fetching anything."""
    errors = manager.registry.validate(source)
    return JSONResponse({"valid": not errors, "errors": errors})


@router.post("/sources")
async def create_source(
    source: Source,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    """Validate and store a new source."""
    manager.registry.require_valid(source)

    with manager.session_factory() as session:
        repo = CrawlSourceRepository(session)
        if repo.get_by_name(source.name) is not None:
            raise HTTPException(status_code=409, detail=f"Source '{source.name}' already exists")
        stored = repo.create(source)
        session.commit()

    manager.registry.register(stored)
    logger.info(f"Created source {stored.name} ({stored.id})")
    return JSONResponse({"source": stored.model_dump(mode="json")}, status_code=201)


@router.get("/sources/{source_id}")
async def get_source(
    source_id: str,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    source = manager.registry.get(source_id)
    return JSONResponse({"source": source.model_dump(mode="json")})


@router.put("/sources/{source_id}")
async def update_source(
    source_id: str,
    source: Source,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    """Replace a database-backed source. YAML sources are read-only."""
    source = source.model_copy(update={"id": source_id})
    manager.registry.require_valid(source)

    with manager.session_factory() as session:
        repo = CrawlSourceRepository(session)
        if repo.get_by_id(source_id) is None:
            if manager.registry.find(source_id) is not None:
                raise HTTPException(status_code=409, detail="Source is defined in the config file and is read-only")
            raise SourceNotFoundError(f"Source '{source_id}' not found")
        stored = repo.update(source)
        session.commit()

    manager.registry.register(stored)
    return JSONResponse({"source": stored.model_dump(mode="json")})


@router.delete("/sources/{source_id}")
async def delete_source(
    source_id: str,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    with manager.session_factory() as session:
        deleted = CrawlSourceRepository(session).delete(source_id)
        session.commit()
    if not deleted:
        if manager.registry.find(source_id) is not None:
            raise HTTPException(status_code=409, detail="Source is defined in the config file and is read-only")
        raise SourceNotFoundError(f"Source '{source_id}' not found")

    manager.registry.unregister(source_id)
    return JSONResponse({"success": True})


@router.post("/sources/{source_id}/discover")
async def discover_source(
    source_id: str,
    body: DiscoverRequest,
    manager: JobLifecycleManager = Depends(get_job_manager),
    engine: ListDiscoveryEngine = Depends(get_discovery_engine),
) -> JSONResponse:
    """
    Discover detail URLs on a source's listing page.

    With ``mapping_id`` the mapping's listing is walked and, when
    ``enqueue`` is set, every link becomes a queued job carrying the
    mapping's category and status.
    """
    source = manager.registry.get(source_id)
    manager.registry.require_valid(source)

    job_ids: list[str] = []
    if body.mapping_id:
        mapping = next((m for m in source.category_mappings if m.id == body.mapping_id), None)
        if mapping is None:
            raise HTTPException(status_code=404, detail=f"Category mapping '{body.mapping_id}' not found")
        if body.enqueue:
            result, job_ids = await discover_category(engine, manager, source, mapping)
        else:
            result = await engine.discover(urljoin(source.base_url, mapping.list_page_url), source)
    else:
        listing_url = urljoin(source.base_url, body.listing_url or "")
        result = await engine.discover(listing_url, source)
        if body.enqueue:
            job_ids = manager.enqueue(result.urls, kind=source.kind, source_id=source.id)

    return JSONResponse({
        "links": [asdict(link) for link in result.links],
        "pages_fetched": result.pages_fetched,
        "errors": result.errors,
        "job_ids": job_ids,
    })


# ============================================================================
# Jobs
# ============================================================================


@router.get("/jobs")
async def list_jobs(
    status: JobStatus | None = None,
    kind: ContentKind | None = None,
    source_id: str | None = None,
    page: int = 1,
    limit: int = 20,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    """List jobs newest first with per-status counts."""
    jobs, total = manager.list_jobs(status, kind, source_id, page, limit)
    return JSONResponse({
        "jobs": [_job_json(job) for job in jobs],
        "total": total,
        "page": page,
        "limit": limit,
        "stats": manager.stats(),
    })


@router.post("/jobs")
async def create_jobs(
    body: EnqueueRequest,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    """Queue one job per URL, optionally handing them to the background worker."""
    if body.source_id:
        manager.registry.get(body.source_id)

    job_ids = manager.enqueue(
        body.urls,
        kind=body.kind,
        source_id=body.source_id,
        category_id=body.category_id,
        target_status=body.target_status,
    )
    if not job_ids:
        raise ConfigValidationError(["At least one URL is required"])

    dispatched: list[str] = []
    if body.dispatch:
        dispatched = await dispatch_jobs(job_ids)
    return JSONResponse({"job_ids": job_ids, "dispatched": dispatched}, status_code=201)


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    return JSONResponse({"job": _job_json(manager.get(job_id))})


@router.delete("/jobs/{job_id}")
async def delete_job(
    job_id: str,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    manager.delete(job_id)
    return JSONResponse({"success": True})


@router.post("/jobs/{job_id}/run")
async def run_job(
    job_id: str,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    """Run a queued job now and return it in its resulting state."""
    job = await manager.run(job_id)
    return JSONResponse({"job": _job_json(job)})


@router.post("/jobs/{job_id}/requeue")
async def requeue_job(
    job_id: str,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    new_id = manager.requeue(job_id)
    return JSONResponse({"job_id": new_id}, status_code=201)


@router.put("/jobs/{job_id}/review")
async def save_review_edits(
    job_id: str,
    edits: ApprovalEdits,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    """Store operator edits on a pending-review job."""
    manager.get(job_id)
    with manager.session_factory() as session:
        record = ReviewService(session).save_edits(job_id, edits)
        session.commit()
    if record is None:
        raise HTTPException(status_code=409, detail="Job is not pending review")
    return JSONResponse({"record": record.model_dump(mode="json")})


@router.post("/jobs/{job_id}/approve")
async def approve_job(
    job_id: str,
    edits: ApprovalEdits,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    """Approve a pending-review job and create its catalog item."""
    manager.get(job_id)
    with manager.session_factory() as session:
        result = ReviewService(session).approve(job_id, edits)
    if not result.success:
        raise HTTPException(status_code=409, detail=result.error_message)
    return JSONResponse({"job_id": job_id, "item_id": result.item_id, "slug": result.slug})


# ============================================================================
# Batch import
# ============================================================================


@router.post("/batch")
async def run_batch(
    body: BatchRequest,
    stream: bool = False,
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator),
):
    """
    Import URLs straight into the catalog.

    With ``stream=true`` outcomes are sent as newline-delimited JSON as
    each URL completes; otherwise the full report is returned at the end.
    """
    config = BatchConfig(
        source_id=body.source_id,
        kind=body.kind,
        category_id=body.category_id,
        status=body.status,
        item_delay_ms=body.item_delay_ms,
    )
    urls = [u for u in body.urls if u.strip()]
    if not urls:
        raise ConfigValidationError(["At least one URL is required"])

    if not stream:
        report = await orchestrator.run_batch(urls, config)
        return JSONResponse(report.to_dict())

    # Surface configuration errors before the stream starts
    results = orchestrator.iter_batch(urls, config)
    first = await anext(results, None)

    async def lines():
        if first is not None:
            yield json.dumps(first.to_dict()) + "\n"
        async for result in results:
            yield json.dumps(result.to_dict()) + "\n"

    return StreamingResponse(lines(), media_type="application/x-ndjson")


# ============================================================================
# Diagnostics
# ============================================================================


@router.post("/extract-links")
async def extract_links(
    body: ExtractLinksRequest,
    diagnostics: DiagnosticsService = Depends(get_diagnostics),
) -> JSONResponse:
    links = await diagnostics.extract_links(
        body.url,
        link_selector=body.link_selector,
        container_selector=body.container_selector,
        filter_pattern=body.filter_pattern,
        exclude_pattern=body.exclude_pattern,
        limit=body.limit,
    )
    return JSONResponse({"links": [asdict(link) for link in links], "total": len(links)})


@router.post("/test-selector")
async def test_selector(
    body: TestSelectorRequest,
    diagnostics: DiagnosticsService = Depends(get_diagnostics),
) -> JSONResponse:
    result = await diagnostics.test_selector(body.url, body.selector, body.multiple)
    return JSONResponse(asdict(result))


@router.post("/detect-images")
async def detect_images(
    body: DetectImagesRequest,
    diagnostics: DiagnosticsService = Depends(get_diagnostics),
) -> JSONResponse:
    result = await diagnostics.detect_image_selectors(body.url)
    return JSONResponse(asdict(result))


@router.post("/test-list")
async def test_list(
    body: TestListRequest,
    diagnostics: DiagnosticsService = Depends(get_diagnostics),
) -> JSONResponse:
    config = ListPageConfig(
        enabled=True,
        item_selector=body.item_selector,
        link_selector=body.link_selector,
        title_selector=body.title_selector,
        image_selector=body.image_selector,
    )
    result = await diagnostics.test_list_page(body.url, config)
    return JSONResponse(asdict(result))


# ============================================================================
# Presets and categories
# ============================================================================


@router.get("/presets")
async def list_presets(manager: JobLifecycleManager = Depends(get_job_manager)) -> JSONResponse:
    presets = manager.preset_store.list_all() if manager.preset_store else []
    return JSONResponse({"presets": [p.model_dump(mode="json") for p in presets]})


@router.post("/presets")
async def save_preset(
    preset: SelectorPreset,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    """Save (or replace) the quick-import preset for a domain."""
    if manager.preset_store is None:
        raise HTTPException(status_code=501, detail="No preset store configured")
    stored = manager.preset_store.save(preset)
    return JSONResponse({"preset": stored.model_dump(mode="json")}, status_code=201)


@router.delete("/presets/{domain}")
async def delete_preset(
    domain: str,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    if manager.preset_store is None or not manager.preset_store.delete(domain):
        raise HTTPException(status_code=404, detail=f"No preset for '{domain}'")
    return JSONResponse({"success": True})


@router.get("/categories")
async def list_categories(
    kind: ContentKind = ContentKind.ARTICLE,
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> JSONResponse:
    """Categories of a kind as an indented pick-list (parents before children)."""
    with manager.session_factory() as session:
        flat = CategoryRepository(session).flatten(kind)
    return JSONResponse({"categories": [{**asdict(c), "label": c.label} for c in flat]})
