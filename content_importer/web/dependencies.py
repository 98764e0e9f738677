"""FastAPI dependencies wiring the import pipeline into routes.

Every dependency is built once per process from the default registry,
crawler and database. Tests replace them with
``app.dependency_overrides``.
"""

from fastapi import Depends

from content_importer.ingestion.batch import BatchOrchestrator
from content_importer.ingestion.crawler import get_default_crawler
from content_importer.ingestion.diagnostics import DiagnosticsService
from content_importer.ingestion.discovery import ListDiscoveryEngine
from content_importer.ingestion.jobs import JobLifecycleManager, build_default_manager

_manager: JobLifecycleManager | None = None


def get_job_manager() -> JobLifecycleManager:
    """Dependency to get the job lifecycle manager.

    The manager owns the session factory, pipeline, registry and preset
    store shared by every other dependency.

    Returns:
        JobLifecycleManager instance.
    """
    global _manager
    if _manager is None:
        _manager = build_default_manager()
    return _manager


def reset_dependencies() -> None:
    """Drop the cached manager (useful for testing)."""
    global _manager
    _manager = None


def get_batch_orchestrator(
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> BatchOrchestrator:
    """Dependency to get a batch orchestrator sharing the manager's pipeline."""
    return BatchOrchestrator(
        manager.session_factory,
        manager.pipeline,
        manager.registry,
        preset_store=manager.preset_store,
    )


def get_discovery_engine(
    manager: JobLifecycleManager = Depends(get_job_manager),
) -> ListDiscoveryEngine:
    return ListDiscoveryEngine(manager.pipeline.fetcher)


def get_diagnostics() -> DiagnosticsService:
    """Dependency to get the selector diagnostics service."""
    return DiagnosticsService(get_default_crawler())
