"""Repository classes for database operations."""

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from content_importer.core.enums import ContentKind, JobStatus
from content_importer.core.errors import CatalogWriteError
from content_importer.core.schema import CrawlJob, SelectorPreset, Source
from content_importer.db.models import (
    ArticleDB,
    CategoryDB,
    CrawlJobDB,
    CrawlSourceDB,
    ProductDB,
    ProductVariantDB,
    SelectorPresetDB,
)


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class CrawlSourceRepository:
    """Repository for crawl Source CRUD operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, source: Source) -> Source:
        """
        Create a new source in the database.

        Args:
            source: The Source configuration to store.

        Returns:
            The stored Source.
        """
        db_source = CrawlSourceDB(
            id=source.id,
            name=source.name,
            base_url=source.base_url,
            domain=source.domain,
            kind=source.kind.value,
            is_active=source.is_active,
            config_json=source.model_dump_json(),
        )
        self.session.add(db_source)
        self.session.flush()
        return self._to_domain(db_source)

    def get_by_id(self, source_id: str) -> Source | None:
        """Get a source by ID."""
        stmt = select(CrawlSourceDB).where(CrawlSourceDB.id == source_id)
        db_source = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_source) if db_source else None

    def get_by_name(self, name: str) -> Source | None:
        """Get a source by its unique name."""
        stmt = select(CrawlSourceDB).where(CrawlSourceDB.name == name)
        db_source = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_source) if db_source else None

    def get_by_domain(self, domain: str) -> Source | None:
        """Get the first active source configured for a domain."""
        stmt = (
            select(CrawlSourceDB)
            .where(CrawlSourceDB.domain == domain.lower())
            .where(CrawlSourceDB.is_active == True)  # noqa: E712
            .order_by(CrawlSourceDB.created_at)
        )
        db_source = self.session.execute(stmt).scalars().first()
        return self._to_domain(db_source) if db_source else None

    def list_all(self, active_only: bool = False) -> list[Source]:
        """
        List all sources.

        Args:
            active_only: If True, exclude inactive sources.

        Returns:
            List of Source models ordered by name.
        """
        stmt = select(CrawlSourceDB).order_by(CrawlSourceDB.name)
        if active_only:
            stmt = stmt.where(CrawlSourceDB.is_active == True)  # noqa: E712
        return [self._to_domain(s) for s in self.session.execute(stmt).scalars().all()]

    def update(self, source: Source) -> Source:
        """
        Replace a stored source configuration.

        Raises:
            ValueError: If the source does not exist.
        """
        stmt = select(CrawlSourceDB).where(CrawlSourceDB.id == source.id)
        db_source = self.session.execute(stmt).scalar_one_or_none()
        if db_source is None:
            raise ValueError(f"Source with id {source.id} not found")

        db_source.name = source.name
        db_source.base_url = source.base_url
        db_source.domain = source.domain
        db_source.kind = source.kind.value
        db_source.is_active = source.is_active
        db_source.config_json = source.model_dump_json()
        db_source.updated_at = _utc_now()
        self.session.flush()
        return self._to_domain(db_source)

    def delete(self, source_id: str) -> bool:
        """Delete a source. Returns False if not found."""
        stmt = select(CrawlSourceDB).where(CrawlSourceDB.id == source_id)
        db_source = self.session.execute(stmt).scalar_one_or_none()
        if db_source is None:
            return False
        self.session.delete(db_source)
        self.session.flush()
        return True

    def _to_domain(self, db_source: CrawlSourceDB) -> Source:
        """Convert DB model to domain model."""
        return Source.model_validate_json(db_source.config_json)


class CrawlJobRepository:
    """
    Repository for crawl jobs.

    Every status change goes through a conditional UPDATE on the
    expected current status, so concurrent triggers race on the row
    rather than on in-memory state.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, job: CrawlJob) -> CrawlJob:
        """
        Create a new job in the database.

        Args:
            job: The CrawlJob to create.

        Returns:
            The created CrawlJob.
        """
        db_job = CrawlJobDB(
            id=job.id,
            url=job.url,
            kind=job.kind.value,
            status=job.status.value,
            source_id=job.source_id,
            category_id=job.category_id,
            target_status=job.target_status.value,
            extracted_json=json.dumps(job.extracted_data) if job.extracted_data is not None else None,
            error_message=job.error_message,
            created_item_id=job.created_item_id,
            created_at=job.created_at,
            processed_at=job.processed_at,
        )
        self.session.add(db_job)
        self.session.flush()
        return self._to_domain(db_job)

    def get_by_id(self, job_id: str) -> CrawlJob | None:
        """Get a job by ID."""
        stmt = (
            select(CrawlJobDB)
            .where(CrawlJobDB.id == job_id)
            .execution_options(populate_existing=True)
        )
        db_job = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_job) if db_job else None

    def list_jobs(
        self,
        status: JobStatus | str | None = None,
        kind: ContentKind | str | None = None,
        source_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[CrawlJob], int]:
        """
        List jobs newest first.

        Args:
            status: Optional status filter.
            kind: Optional content kind filter.
            source_id: Optional owning source filter.
            page: 1-based page number.
            limit: Page size.

        Returns:
            Tuple of (jobs on the page, total matching jobs).
        """
        stmt = select(CrawlJobDB).execution_options(populate_existing=True)
        count_stmt = select(func.count()).select_from(CrawlJobDB)
        filters = []
        if status:
            filters.append(CrawlJobDB.status == JobStatus(status).value)
        if kind:
            filters.append(CrawlJobDB.kind == ContentKind(kind).value)
        if source_id:
            filters.append(CrawlJobDB.source_id == source_id)
        for condition in filters:
            stmt = stmt.where(condition)
            count_stmt = count_stmt.where(condition)

        page = max(page, 1)
        stmt = stmt.order_by(CrawlJobDB.created_at.desc()).offset((page - 1) * limit).limit(limit)
        jobs = [self._to_domain(j) for j in self.session.execute(stmt).scalars().all()]
        total = self.session.execute(count_stmt).scalar_one()
        return jobs, total

    def count_by_status(self) -> dict[str, int]:
        """Count jobs grouped by status."""
        stmt = select(CrawlJobDB.status, func.count()).group_by(CrawlJobDB.status)
        counts = {status.value: 0 for status in JobStatus}
        for status, count in self.session.execute(stmt).all():
            counts[status] = count
        return counts

    def claim(self, job_id: str) -> bool:
        """
        Atomically move a job from queued to processing.

        Returns:
            True if this caller won the claim, False otherwise.
        """
        return self.transition(job_id, JobStatus.QUEUED, JobStatus.PROCESSING)

    def transition(
        self,
        job_id: str,
        from_status: JobStatus,
        to_status: JobStatus,
        **values: Any,
    ) -> bool:
        """
        Conditionally change a job's status.

        Args:
            job_id: The job ID.
            from_status: Status the row must currently have.
            to_status: New status.
            **values: Extra column values (error_message, created_item_id,
                extracted_data).

        Returns:
            True if exactly one row was updated.
        """
        if "extracted_data" in values:
            data = values.pop("extracted_data")
            values["extracted_json"] = json.dumps(data) if data is not None else None
        if to_status != JobStatus.PROCESSING:
            values.setdefault("processed_at", _utc_now())

        stmt = (
            update(CrawlJobDB)
            .where(CrawlJobDB.id == job_id)
            .where(CrawlJobDB.status == from_status.value)
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1

    def save_extracted(self, job_id: str, extracted_data: dict[str, Any]) -> bool:
        """Replace the stored record of a job that is still pending review."""
        stmt = (
            update(CrawlJobDB)
            .where(CrawlJobDB.id == job_id)
            .where(CrawlJobDB.status == JobStatus.PENDING_REVIEW.value)
            .values(extracted_json=json.dumps(extracted_data))
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def delete(self, job_id: str) -> bool:
        """Delete a job. Returns False if not found."""
        stmt = select(CrawlJobDB).where(CrawlJobDB.id == job_id)
        db_job = self.session.execute(stmt).scalar_one_or_none()
        if db_job is None:
            return False
        self.session.delete(db_job)
        self.session.flush()
        return True

    def _to_domain(self, db_job: CrawlJobDB) -> CrawlJob:
        """Convert DB model to domain model."""
        return CrawlJob(
            id=db_job.id,
            url=db_job.url,
            kind=ContentKind(db_job.kind),
            status=JobStatus(db_job.status),
            source_id=db_job.source_id,
            category_id=db_job.category_id,
            target_status=db_job.target_status,
            extracted_data=json.loads(db_job.extracted_json) if db_job.extracted_json else None,
            error_message=db_job.error_message,
            created_item_id=db_job.created_item_id,
            created_at=db_job.created_at,
            processed_at=db_job.processed_at,
        )


class SelectorPresetRepository:
    """Repository for quick-import selector presets, one per domain."""

    def __init__(self, session: Session):
        self.session = session

    def save(self, preset: SelectorPreset) -> SelectorPreset:
        """Insert or replace the preset for ``preset.domain``."""
        domain = preset.domain.lower()
        stmt = select(SelectorPresetDB).where(SelectorPresetDB.domain == domain)
        db_preset = self.session.execute(stmt).scalar_one_or_none()
        if db_preset is None:
            db_preset = SelectorPresetDB(id=preset.id, domain=domain, name=preset.name, preset_json="")
            self.session.add(db_preset)
        stored = preset.model_copy(update={"id": db_preset.id, "domain": domain})
        db_preset.name = preset.name
        db_preset.preset_json = stored.model_dump_json()
        self.session.flush()
        return stored

    def find_by_domain(self, domain: str) -> SelectorPreset | None:
        stmt = select(SelectorPresetDB).where(SelectorPresetDB.domain == domain.lower())
        db_preset = self.session.execute(stmt).scalar_one_or_none()
        return SelectorPreset.model_validate_json(db_preset.preset_json) if db_preset else None

    def list_all(self) -> list[SelectorPreset]:
        stmt = select(SelectorPresetDB).order_by(SelectorPresetDB.domain)
        return [
            SelectorPreset.model_validate_json(p.preset_json)
            for p in self.session.execute(stmt).scalars().all()
        ]

    def delete(self, domain: str) -> bool:
        stmt = select(SelectorPresetDB).where(SelectorPresetDB.domain == domain.lower())
        db_preset = self.session.execute(stmt).scalar_one_or_none()
        if db_preset is None:
            return False
        self.session.delete(db_preset)
        self.session.flush()
        return True


class CatalogRepository:
    """
    Repository for catalog items (articles and products).

    Lookups are scoped by content kind: a slug or source URL only
    collides with items of the same kind.
    """

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _model_for(kind: ContentKind | str) -> type[ArticleDB] | type[ProductDB]:
        return ArticleDB if ContentKind(kind) == ContentKind.ARTICLE else ProductDB

    def find_by_source_url(self, kind: ContentKind | str, source_url: str) -> str | None:
        """
        Find an existing item imported from ``source_url``.

        Returns:
            The item ID if found, None otherwise.
        """
        model = self._model_for(kind)
        stmt = select(model.id).where(model.source_url == source_url)
        return self.session.execute(stmt).scalars().first()

    def find_by_content_hash(self, kind: ContentKind | str, content_hash: str) -> str | None:
        """Find an existing item whose fetched document had the same hash."""
        if not content_hash:
            return None
        model = self._model_for(kind)
        stmt = select(model.id).where(model.content_hash == content_hash)
        return self.session.execute(stmt).scalars().first()

    def find_by_slug(self, kind: ContentKind | str, slug: str) -> str | None:
        model = self._model_for(kind)
        stmt = select(model.id).where(model.slug == slug)
        return self.session.execute(stmt).scalars().first()

    def slug_exists(self, kind: ContentKind | str, slug: str) -> bool:
        return self.find_by_slug(kind, slug) is not None

    def ensure_unique_slug(self, kind: ContentKind | str, base_slug: str) -> str:
        """
        Return ``base_slug`` or the first free ``base_slug-N`` (N = 1, 2, ...).
        """
        slug = base_slug
        counter = 1
        while self.slug_exists(kind, slug):
            slug = f"{base_slug}-{counter}"
            counter += 1
        return slug

    def create_article(self, fields: dict[str, Any]) -> str:
        """
        Create an article.

        Args:
            fields: Column values; ``title`` and ``slug`` are required.

        Returns:
            The new article ID.

        Raises:
            CatalogWriteError: If the row cannot be written.
        """
        db_article = ArticleDB(
            title=fields["title"],
            slug=fields["slug"],
            excerpt=fields.get("excerpt") or None,
            content=fields.get("content") or "",
            featured_image=fields.get("featured_image") or None,
            author=fields.get("author") or None,
            category_id=fields.get("category_id") or None,
            status=fields.get("status") or "draft",
            meta_title=fields.get("meta_title") or None,
            meta_description=fields.get("meta_description") or None,
            source_url=fields.get("source_url"),
            content_hash=fields.get("content_hash") or None,
            published_at=_utc_now() if fields.get("status") == "published" else None,
        )
        return self._insert(db_article)

    def create_product(self, fields: dict[str, Any], variants: list[dict[str, Any]] | None = None) -> str:
        """
        Create a product and its variants.

        Args:
            fields: Column values; ``name`` and ``slug`` are required.
            variants: Variant dicts with ``sku``, ``price`` and optional
                ``sale_price``/``stock_quantity``.

        Returns:
            The new product ID.

        Raises:
            CatalogWriteError: If the rows cannot be written.
        """
        db_product = ProductDB(
            name=fields["name"],
            slug=fields["slug"],
            short_description=fields.get("short_description") or None,
            description=fields.get("description") or None,
            images_json=json.dumps(fields.get("images") or []),
            category_id=fields.get("category_id") or None,
            status=fields.get("status") or "draft",
            meta_title=fields.get("meta_title") or None,
            meta_description=fields.get("meta_description") or None,
            source_url=fields.get("source_url"),
            content_hash=fields.get("content_hash") or None,
        )
        for variant in variants or []:
            db_product.variants.append(
                ProductVariantDB(
                    sku=variant["sku"],
                    price=variant["price"],
                    sale_price=variant.get("sale_price"),
                    stock_quantity=variant.get("stock_quantity", 0),
                )
            )
        return self._insert(db_product)

    def get_article(self, article_id: str) -> ArticleDB | None:
        return self.session.get(ArticleDB, article_id)

    def get_product(self, product_id: str) -> ProductDB | None:
        return self.session.get(ProductDB, product_id)

    def _insert(self, db_item: ArticleDB | ProductDB) -> str:
        self.session.add(db_item)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise CatalogWriteError(f"Failed to write catalog item '{db_item.slug}': {e.orig}") from e
        return db_item.id


@dataclass
class FlatCategory:
    """A category with its depth in the tree."""

    id: str
    name: str
    slug: str
    parent_id: str | None
    depth: int

    @property
    def label(self) -> str:
        return f"{'-- ' * self.depth}{self.name}"


class CategoryRepository:
    """Repository for catalog categories."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        name: str,
        slug: str,
        kind: ContentKind | str = ContentKind.ARTICLE,
        parent_id: str | None = None,
        sort_order: int = 0,
    ) -> CategoryDB:
        db_category = CategoryDB(
            name=name,
            slug=slug,
            kind=ContentKind(kind).value,
            parent_id=parent_id,
            sort_order=sort_order,
        )
        self.session.add(db_category)
        self.session.flush()
        return db_category

    def get_by_id(self, category_id: str) -> CategoryDB | None:
        return self.session.get(CategoryDB, category_id)

    def walk(self, kind: ContentKind | str, visitor: Callable[[CategoryDB, int], None]) -> None:
        """
        Depth-first traversal of the category tree for one content kind.

        Siblings are visited by (sort_order, name). The visitor receives
        each category and its depth (roots are depth 0).

        Args:
            kind: Content kind whose tree to walk.
            visitor: Callback invoked once per category.
        """
        stmt = (
            select(CategoryDB)
            .where(CategoryDB.kind == ContentKind(kind).value)
            .order_by(CategoryDB.sort_order, CategoryDB.name)
        )
        categories = self.session.execute(stmt).scalars().all()
        known_ids = {c.id for c in categories}
        children: dict[str | None, list[CategoryDB]] = {}
        for category in categories:
            # Orphans whose parent belongs to another kind are treated as roots
            parent = category.parent_id if category.parent_id in known_ids else None
            children.setdefault(parent, []).append(category)

        visited: set[str] = set()
        stack = [(c, 0) for c in reversed(children.get(None, []))]
        while stack:
            category, depth = stack.pop()
            if category.id in visited:
                continue
            visited.add(category.id)
            visitor(category, depth)
            for child in reversed(children.get(category.id, [])):
                stack.append((child, depth + 1))

    def flatten(self, kind: ContentKind | str) -> list[FlatCategory]:
        """Return the category tree as a pre-ordered flat list."""
        flat: list[FlatCategory] = []
        self.walk(
            kind,
            lambda c, depth: flat.append(
                FlatCategory(id=c.id, name=c.name, slug=c.slug, parent_id=c.parent_id, depth=depth)
            ),
        )
        return flat
