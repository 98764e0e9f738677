"""
Crawl CLI Commands
==================

CLI commands for sources, crawl jobs, review, batch import and
selector diagnostics.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from content_importer.core.enums import ContentKind, JobStatus, PublishStatus
from content_importer.core.errors import CrawlerError
from content_importer.ingestion.batch import BatchConfig, BatchItemResult
from content_importer.ingestion.jobs import JobLifecycleManager, build_default_manager

console = Console()
crawl_app = typer.Typer(help="Import pipeline commands")
sources_app = typer.Typer(help="Source management commands")
jobs_app = typer.Typer(help="Crawl job commands")

crawl_app.add_typer(sources_app, name="sources")
crawl_app.add_typer(jobs_app, name="jobs")

STATUS_COLORS = {
    "queued": "yellow",
    "processing": "blue",
    "success": "green",
    "failed": "red",
    "duplicate": "magenta",
    "slug_conflict": "magenta",
    "pending_review": "cyan",
}


def _status(value: str) -> str:
    color = STATUS_COLORS.get(value, "white")
    return f"[{color}]{value}[/{color}]"


def _manager() -> JobLifecycleManager:
    from content_importer.db.engine import init_db

    init_db()
    return build_default_manager()


def _read_urls(urls: list[str], file: Path | None) -> list[str]:
    collected = list(urls)
    if file is not None:
        collected.extend(line.strip() for line in file.read_text().splitlines())
    return [u for u in collected if u and not u.startswith("#")]


def _fail(error: Exception) -> None:
    rprint(f"[red]Error:[/red] {error}")
    errors = getattr(error, "errors", None)
    if errors and len(errors) > 1:
        for message in errors:
            rprint(f"  • {message}")
    raise typer.Exit(1)


# Sources subcommands


@sources_app.command("list")
def list_sources(
    all_sources: bool = typer.Option(False, "--all", "-a", help="Show inactive sources too"),
) -> None:
    """
    List configured sources.

    Examples:
        content-importer crawl sources list
        content-importer crawl sources list --all
    """
    manager = _manager()
    registry = manager.registry
    sources = registry.list_sources() if all_sources else registry.list_active_sources()

    if not sources:
        rprint("[yellow]No sources configured[/yellow]")
        rprint("\nAdd sources to config/sources.yaml")
        return

    table = Table(title="Crawl Sources")
    table.add_column("Name", style="bold")
    table.add_column("Domain")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Delay")
    table.add_column("Discovery")

    for source in sources:
        status = "[green]active[/green]" if source.is_active else "[yellow]inactive[/yellow]"
        pagination = source.list_page.pagination
        discovery = pagination.type if source.list_page.enabled and pagination else (
            "single page" if source.list_page.enabled else "-"
        )
        table.add_row(
            source.name,
            source.domain,
            source.kind.value,
            status,
            f"{source.request_policy.delay_ms}ms",
            discovery,
        )

    console.print(table)


@sources_app.command("show")
def show_source(
    name: str = typer.Argument(..., help="Source name or ID"),
) -> None:
    """
    Show detailed information about a source.

    Examples:
        content-importer crawl sources show vnexpress
    """
    source = _manager().registry.find(name)
    if source is None:
        rprint(f"[red]Error:[/red] Source '{name}' not found")
        raise typer.Exit(1)

    status = "[green]active[/green]" if source.is_active else "[yellow]inactive[/yellow]"
    rprint(f"\n[bold]Source: {source.name}[/bold]")
    rprint(f"  ID: {source.id}")
    rprint(f"  Status: {status}")
    rprint(f"  Base URL: {source.base_url}")
    rprint(f"  Kind: {source.kind.value}")

    rprint("\n[bold]Request Policy:[/bold]")
    rprint(f"  Delay: {source.request_policy.delay_ms}ms")
    rprint(f"  Timeout: {source.request_policy.timeout_ms}ms")

    selectors = source.selectors_for()
    if selectors is not None:
        rprint("\n[bold]Selectors:[/bold]")
        for field_name, value in selectors:
            if isinstance(value, str) and value:
                rprint(f"  {field_name}: {value}")
            elif isinstance(value, list) and value:
                rprint(f"  {field_name}: {', '.join(value)}")

    if source.category_mappings:
        rprint("\n[bold]Category Mappings:[/bold]")
        for mapping in source.category_mappings:
            rprint(f"  • {mapping.list_page_url} -> {mapping.category_id} ({mapping.status.value}) [dim]{mapping.id}[/dim]")


@sources_app.command("validate")
def validate_sources(
    name: Optional[str] = typer.Argument(None, help="Source to validate (default: all)"),
) -> None:
    """
    Validate source configurations without any network access.

    Examples:
        content-importer crawl sources validate
        content-importer crawl sources validate vnexpress
    """
    registry = _manager().registry
    if name:
        source = registry.find(name)
        if source is None:
            rprint(f"[red]Error:[/red] Source '{name}' not found")
            raise typer.Exit(1)
        sources = [source]
    else:
        sources = registry.list_sources()

    failed = False
    for source in sources:
        errors = registry.validate(source)
        if errors:
            failed = True
            rprint(f"[red]✗[/red] {source.name}")
            for error in errors:
                rprint(f"    • {error}")
        else:
            rprint(f"[green]✓[/green] {source.name}")

    if failed:
        raise typer.Exit(1)


# Jobs subcommands


@jobs_app.command("enqueue")
def enqueue_jobs(
    urls: list[str] = typer.Argument(None, help="URLs to import"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="File with one URL per line"),
    kind: ContentKind = typer.Option(ContentKind.ARTICLE, "--kind", "-k", help="Content kind"),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Source name or ID"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Target category ID"),
    status: PublishStatus = typer.Option(PublishStatus.PENDING_REVIEW, "--status", help="Target publish status"),
    dispatch: bool = typer.Option(False, "--dispatch", help="Send jobs to the arq worker"),
) -> None:
    """
    Queue crawl jobs.

    Examples:
        content-importer crawl jobs enqueue https://example.com/a https://example.com/b
        content-importer crawl jobs enqueue -f urls.txt -s vnexpress --status draft --dispatch
    """
    manager = _manager()
    source_id = None
    if source:
        found = manager.registry.find(source)
        if found is None:
            rprint(f"[red]Error:[/red] Source '{source}' not found")
            raise typer.Exit(1)
        source_id = found.id

    job_ids = manager.enqueue(_read_urls(urls or [], file), kind, source_id, category, status)
    if not job_ids:
        rprint("[yellow]No URLs given[/yellow]")
        raise typer.Exit(1)

    rprint(f"[green]Queued {len(job_ids)} jobs[/green]")
    for job_id in job_ids:
        rprint(f"  {job_id}")

    if dispatch:
        from content_importer.ingestion.jobs import dispatch_jobs

        try:
            arq_ids = asyncio.run(dispatch_jobs(job_ids))
        except OSError as e:
            rprint(f"\n[red]Error:[/red] Failed to dispatch jobs: {e}")
            rprint("\nMake sure Redis is running:")
            rprint("  docker-compose up -d redis")
            raise typer.Exit(1)
        rprint(f"\nDispatched {len(arq_ids)} jobs to the worker")


@jobs_app.command("run")
def run_job(
    job_id: Optional[str] = typer.Argument(None, help="Job ID (default: all queued jobs)"),
) -> None:
    """
    Run queued jobs in this process.

    Examples:
        content-importer crawl jobs run
        content-importer crawl jobs run 0b6c...
    """
    manager = _manager()
    if job_id:
        job_ids = [job_id]
    else:
        jobs, _ = manager.list_jobs(JobStatus.QUEUED, limit=1000)
        job_ids = [job.id for job in reversed(jobs)]

    if not job_ids:
        rprint("[yellow]No queued jobs[/yellow]")
        return

    async def run_all() -> None:
        for current in job_ids:
            try:
                job = await manager.run(current)
            except CrawlerError as e:
                rprint(f"[red]✗[/red] {current}: {e}")
                continue
            detail = job.error_message or job.created_item_id or ""
            rprint(f"{_status(job.status.value)} {job.url} [dim]{detail}[/dim]")

    asyncio.run(run_all())


@jobs_app.command("list")
def list_jobs(
    status: Optional[JobStatus] = typer.Option(None, "--status", help="Filter by status"),
    kind: Optional[ContentKind] = typer.Option(None, "--kind", "-k", help="Filter by kind"),
    page: int = typer.Option(1, "--page", "-p"),
    limit: int = typer.Option(20, "--limit", "-l"),
) -> None:
    """
    List crawl jobs, newest first.

    Examples:
        content-importer crawl jobs list --status pending_review
    """
    manager = _manager()
    jobs, total = manager.list_jobs(status, kind, None, page, limit)

    table = Table(title=f"Crawl Jobs ({total} total)")
    table.add_column("ID", style="dim")
    table.add_column("Status")
    table.add_column("Kind")
    table.add_column("URL")
    table.add_column("Detail")

    for job in jobs:
        table.add_row(
            job.id[:8],
            _status(job.status.value),
            job.kind.value,
            job.url,
            job.error_message or job.created_item_id or "",
        )
    console.print(table)

    stats = manager.stats()
    rprint("  ".join(f"{_status(name)}: {count}" for name, count in stats.items() if count))


@jobs_app.command("approve")
def approve_job(
    job_id: str = typer.Argument(..., help="Pending-review job ID"),
    title: Optional[str] = typer.Option(None, "--title", help="Override title/name"),
    excerpt: Optional[str] = typer.Option(None, "--excerpt", help="Override excerpt"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Category ID"),
    price: Optional[str] = typer.Option(None, "--price", help="Override price"),
    status: PublishStatus = typer.Option(PublishStatus.DRAFT, "--status", help="draft or published"),
) -> None:
    """
    Approve a pending-review job and create its catalog item.

    Examples:
        content-importer crawl jobs approve 0b6c... --status published
    """
    from content_importer.services.review_service import ApprovalEdits, ReviewService

    manager = _manager()
    edits = ApprovalEdits(title=title, excerpt=excerpt, category_id=category, price=price, status=status)
    with manager.session_factory() as session:
        result = ReviewService(session).approve(job_id, edits)

    if not result.success:
        rprint(f"[red]Error:[/red] {result.error_message}")
        raise typer.Exit(1)
    rprint(f"[green]Approved[/green] {job_id} -> {result.item_id} ({result.slug})")


@jobs_app.command("requeue")
def requeue_job(job_id: str = typer.Argument(..., help="Finished job ID")) -> None:
    """Create a new queued job for a finished job's URL."""
    try:
        new_id = _manager().requeue(job_id)
    except CrawlerError as e:
        _fail(e)
    rprint(f"[green]Requeued as[/green] {new_id}")


# Batch, discovery and diagnostics


@crawl_app.command("batch")
def run_batch(
    urls: list[str] = typer.Argument(None, help="URLs to import"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="File with one URL per line"),
    kind: ContentKind = typer.Option(ContentKind.ARTICLE, "--kind", "-k"),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Source name or ID"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Target category ID"),
    status: PublishStatus = typer.Option(PublishStatus.DRAFT, "--status"),
    delay_ms: Optional[int] = typer.Option(None, "--delay-ms", help="Delay between items"),
) -> None:
    """
    Import URLs directly into the catalog (no queue, no review).

    Examples:
        content-importer crawl batch -f urls.txt -s vnexpress -c news --status published
    """
    from content_importer.ingestion.batch import BatchOrchestrator

    manager = _manager()
    source_id = None
    if source:
        found = manager.registry.find(source)
        if found is None:
            rprint(f"[red]Error:[/red] Source '{source}' not found")
            raise typer.Exit(1)
        source_id = found.id

    orchestrator = BatchOrchestrator(
        manager.session_factory, manager.pipeline, manager.registry, preset_store=manager.preset_store
    )
    config = BatchConfig(source_id=source_id, kind=kind, category_id=category, status=status, item_delay_ms=delay_ms)

    def show(result: BatchItemResult) -> None:
        detail = result.error or result.slug or ""
        rprint(f"{_status(result.status.value)} {result.url} [dim]{detail}[/dim]")

    try:
        report = asyncio.run(orchestrator.run_batch(_read_urls(urls or [], file), config, on_result=show))
    except CrawlerError as e:
        _fail(e)

    rprint(f"\n[bold]{report.summary}[/bold]")
    if report.counts["failed"]:
        raise typer.Exit(1)


@crawl_app.command("discover")
def discover(
    source: str = typer.Option(..., "--source", "-s", help="Source name or ID"),
    mapping: Optional[str] = typer.Option(None, "--mapping", "-m", help="Category mapping ID (enqueues jobs)"),
    listing_url: Optional[str] = typer.Option(None, "--url", "-u", help="Listing URL (default: base URL)"),
) -> None:
    """
    Discover detail URLs on a source's listing pages.

    With --mapping every discovered link is queued as a job.

    Examples:
        content-importer crawl discover -s vnexpress -u /kinh-doanh
        content-importer crawl discover -s vnexpress -m 5f3a...
    """
    from urllib.parse import urljoin

    from content_importer.ingestion.discovery import ListDiscoveryEngine, discover_category

    manager = _manager()
    found = manager.registry.find(source)
    if found is None:
        rprint(f"[red]Error:[/red] Source '{source}' not found")
        raise typer.Exit(1)

    engine = ListDiscoveryEngine(manager.pipeline.fetcher)
    job_ids: list[str] = []
    try:
        manager.registry.require_valid(found)
        if mapping:
            selected = next((m for m in found.category_mappings if m.id == mapping), None)
            if selected is None:
                rprint(f"[red]Error:[/red] Category mapping '{mapping}' not found")
                raise typer.Exit(1)
            result, job_ids = asyncio.run(discover_category(engine, manager, found, selected))
        else:
            result = asyncio.run(engine.discover(urljoin(found.base_url, listing_url or ""), found))
    except CrawlerError as e:
        _fail(e)

    table = Table(title=f"Discovered {len(result.links)} links ({result.pages_fetched} pages)")
    table.add_column("#", style="dim")
    table.add_column("Title")
    table.add_column("URL")
    for index, link in enumerate(result.links, start=1):
        table.add_row(str(index), (link.title or "")[:60], link.url)
    console.print(table)

    for error in result.errors:
        rprint(f"[yellow]Warning:[/yellow] {error}")
    if job_ids:
        rprint(f"[green]Queued {len(job_ids)} jobs[/green]")


@crawl_app.command("test-selector")
def test_selector(
    url: str = typer.Argument(..., help="Page URL"),
    selector: str = typer.Argument(..., help="CSS selector (optionally ending in ::attr(name))"),
    multiple: bool = typer.Option(False, "--multiple", "-m", help="Return every match"),
) -> None:
    """
    Run a selector against a live page.

    Examples:
        content-importer crawl test-selector https://example.com/post "h1.title"
        content-importer crawl test-selector https://example.com/post "meta[property='og:image']::attr(content)"
    """
    from content_importer.ingestion.crawler import get_default_crawler
    from content_importer.ingestion.diagnostics import DiagnosticsService

    service = DiagnosticsService(get_default_crawler())
    try:
        result = asyncio.run(service.test_selector(url, selector, multiple))
    except CrawlerError as e:
        _fail(e)

    if not result.success:
        rprint("[yellow]No elements matched[/yellow]")
        raise typer.Exit(1)

    rprint(f"[green]{result.count} match(es)[/green]")
    if multiple:
        for value in result.values:
            rprint(f"  • {value}")
    else:
        rprint(result.value)
    for image in result.images:
        rprint(f"  [dim]image:[/dim] {image}")


@crawl_app.command("worker")
def start_worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the crawl job worker.

    The worker runs jobs dispatched to Redis.

    Examples:
        content-importer crawl worker
        content-importer crawl worker --burst
    """
    from arq import run_worker

    from content_importer.ingestion.jobs import WorkerSettings

    rprint("[bold]Starting crawl worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")

    try:
        run_worker(WorkerSettings, burst=burst)
    except OSError as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        rprint("\nMake sure Redis is running:")
        rprint("  docker-compose up -d redis")
        raise typer.Exit(1)
