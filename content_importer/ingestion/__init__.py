"""
Content Importer Ingestion Framework
====================================

This package provides the import pipeline that turns pages on external
websites into catalog articles and products.

Pipeline Stages:
1. Discover - Walk paginated listing pages and collect detail URLs
2. Fetch - Crawler downloads pages with per-source headers and timeouts
3. Extract - Selectors, transforms and image rules build a record
4. Deduplicate - Match by normalized URL, content hash and slug
5. Persist - Write to the catalog or park the job for review
"""

from content_importer.ingestion.registry import (
    SourceRegistry,
    GlobalConfig,
    get_default_registry,
)
from content_importer.ingestion.crawler import (
    Crawler,
    Fetcher,
    FetchResult,
)
from content_importer.ingestion.storage import (
    AssetStore,
    LocalAssetStore,
    StoredAsset,
)
from content_importer.ingestion.extractor import DetailExtractor
from content_importer.ingestion.dedup import (
    DedupDetector,
    DedupResult,
    normalize_url,
    generate_slug,
)
from content_importer.ingestion.discovery import (
    ListDiscoveryEngine,
    DiscoveryResult,
)
from content_importer.ingestion.pipeline import ImportPipeline
from content_importer.ingestion.jobs import (
    JobLifecycleManager,
    dispatch_jobs,
    run_crawl_job,
)
from content_importer.ingestion.batch import (
    BatchOrchestrator,
    BatchConfig,
    BatchReport,
    CancellationToken,
)

__all__ = [
    # Registry
    "SourceRegistry",
    "GlobalConfig",
    "get_default_registry",
    # Crawler
    "Crawler",
    "Fetcher",
    "FetchResult",
    # Storage
    "AssetStore",
    "LocalAssetStore",
    "StoredAsset",
    # Extraction
    "DetailExtractor",
    # Dedup
    "DedupDetector",
    "DedupResult",
    "normalize_url",
    "generate_slug",
    # Discovery
    "ListDiscoveryEngine",
    "DiscoveryResult",
    # Jobs
    "ImportPipeline",
    "JobLifecycleManager",
    "dispatch_jobs",
    "run_crawl_job",
    # Batch
    "BatchOrchestrator",
    "BatchConfig",
    "BatchReport",
    "CancellationToken",
]
