"""SQLAlchemy ORM models for crawl sources, jobs and the catalog.

Tables:
- CrawlSourceDB, CrawlJobDB, SelectorPresetDB (import pipeline)
- CategoryDB, ArticleDB, ProductDB, ProductVariantDB (catalog store)
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ============================================================================
# Import pipeline
# ============================================================================


class CrawlSourceDB(Base):
    """
    Database model for crawl sources.

    Queryable attributes are columns; the full validated Source
    configuration is stored as JSON.
    """

    __tablename__ = "crawl_sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    base_url: Mapped[str] = mapped_column(String(500), nullable=False)
    domain: Mapped[str] = mapped_column(String(255), default="", index=True)
    kind: Mapped[str] = mapped_column(String(20), default="article")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    config_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    jobs: Mapped[list["CrawlJobDB"]] = relationship("CrawlJobDB", back_populates="source")

    def __repr__(self) -> str:
        return f"<CrawlSourceDB(id={self.id}, name='{self.name}')>"


class CrawlJobDB(Base):
    """
    Database model for crawl jobs.

    Status transitions are made with conditional updates so two
    triggers can never process the same job.
    """

    __tablename__ = "crawl_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), default="article", index=True)
    status: Mapped[str] = mapped_column(String(20), default="queued", index=True)
    source_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("crawl_sources.id", ondelete="SET NULL"), nullable=True, index=True
    )
    category_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    target_status: Mapped[str] = mapped_column(String(20), default="pending_review")
    extracted_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_item_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, index=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    source: Mapped["CrawlSourceDB | None"] = relationship("CrawlSourceDB", back_populates="jobs")

    def __repr__(self) -> str:
        return f"<CrawlJobDB(id={self.id}, status='{self.status}')>"


class SelectorPresetDB(Base):
    """Database model for quick-import selector presets (one per domain)."""

    __tablename__ = "selector_presets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    preset_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


# ============================================================================
# Catalog
# ============================================================================


class CategoryDB(Base):
    """Database model for catalog categories (a tree per content kind)."""

    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), default="article", index=True)
    parent_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=True, index=True
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    children: Mapped[list["CategoryDB"]] = relationship(
        "CategoryDB", back_populates="parent", order_by="CategoryDB.sort_order"
    )
    parent: Mapped["CategoryDB | None"] = relationship(
        "CategoryDB", back_populates="children", remote_side="CategoryDB.id"
    )

    def __repr__(self) -> str:
        return f"<CategoryDB(id={self.id}, name='{self.name}')>"


class ArticleDB(Base):
    """Database model for catalog articles."""

    __tablename__ = "articles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    excerpt: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, default="")
    featured_image: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    author: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(String(20), default="draft")
    meta_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meta_description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    source_url: Mapped[str | None] = mapped_column(String(2000), nullable=True, index=True)
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    def __repr__(self) -> str:
        return f"<ArticleDB(id={self.id}, slug='{self.slug}')>"


class ProductDB(Base):
    """Database model for catalog products."""

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    short_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    images_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(String(20), default="draft")
    meta_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meta_description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    source_url: Mapped[str | None] = mapped_column(String(2000), nullable=True, index=True)
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    variants: Mapped[list["ProductVariantDB"]] = relationship(
        "ProductVariantDB", back_populates="product", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<ProductDB(id={self.id}, slug='{self.slug}')>"


class ProductVariantDB(Base):
    """Database model for product variants (price carrier)."""

    __tablename__ = "product_variants"
    __table_args__ = (UniqueConstraint("product_id", "sku", name="uq_product_variant_sku"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id"), nullable=False, index=True
    )
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    sale_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0)

    product: Mapped["ProductDB"] = relationship("ProductDB", back_populates="variants")
