"""Pydantic v2 models for crawl sources, jobs and extracted records.

Source configuration is a tree of closed models. Transform steps and
pagination strategies are tagged unions discriminated on ``type`` so a
malformed configuration fails when the source is loaded, not when a job
runs.
"""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Union
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import BaseModel, Field

from content_importer.core.enums import ContentKind, JobStatus, PublishStatus


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_id() -> str:
    """Generate a UUID string."""
    return str(uuid4())


# Removed from every fetched document before any selector runs
DEFAULT_REMOVE_ELEMENTS: list[str] = [
    "script",
    "style",
    "noscript",
    "template",
    "iframe",
    ".advertisement",
    ".ads",
    ".ad-container",
    "[data-ad]",
]

DEFAULT_LAZY_LOAD_ATTRIBUTES: list[str] = [
    "data-src",
    "data-original",
    "data-lazy-src",
    "data-srcset",
    "data-lazy-srcset",
    "nitro-lazy-src",
]


# ============================================================================
# Transforms
# ============================================================================


class TrimTransform(BaseModel):
    type: Literal["trim"] = "trim"


class ReplaceTransform(BaseModel):
    type: Literal["replace"] = "replace"
    find: str = ""
    replace: str = ""


class RegexTransform(BaseModel):
    type: Literal["regex"] = "regex"
    pattern: str = ""
    flags: str = "g"
    replace: str = ""


class ToNumberTransform(BaseModel):
    type: Literal["toNumber"] = "toNumber"


class RemoveNonDigitTransform(BaseModel):
    type: Literal["removeNonDigit"] = "removeNonDigit"


class StripTagsTransform(BaseModel):
    type: Literal["stripTags"] = "stripTags"


class MaxLengthTransform(BaseModel):
    type: Literal["maxLength"] = "maxLength"
    max: int = Field(ge=0)
    ellipsis: str = "..."


class AddPrefixTransform(BaseModel):
    type: Literal["addPrefix"] = "addPrefix"
    prefix: str = ""


class AddSuffixTransform(BaseModel):
    type: Literal["addSuffix"] = "addSuffix"
    suffix: str = ""


class ToLowerTransform(BaseModel):
    type: Literal["toLower"] = "toLower"


class ToUpperTransform(BaseModel):
    type: Literal["toUpper"] = "toUpper"


class RemoveEmptyTagsTransform(BaseModel):
    type: Literal["removeEmptyTags"] = "removeEmptyTags"


class DecodeHtmlTransform(BaseModel):
    type: Literal["decodeHtml"] = "decodeHtml"


class FormatPriceTransform(BaseModel):
    type: Literal["formatPrice"] = "formatPrice"
    suffix: str = "đ"
    separator: str = "."


Transform = Annotated[
    Union[
        TrimTransform,
        ReplaceTransform,
        RegexTransform,
        ToNumberTransform,
        RemoveNonDigitTransform,
        StripTagsTransform,
        MaxLengthTransform,
        AddPrefixTransform,
        AddSuffixTransform,
        ToLowerTransform,
        ToUpperTransform,
        RemoveEmptyTagsTransform,
        DecodeHtmlTransform,
        FormatPriceTransform,
    ],
    Field(discriminator="type"),
]


# ============================================================================
# Field configuration
# ============================================================================


class FieldConfig(BaseModel):
    """Per-field transform chain and sub-selectors stripped before capture."""

    transforms: list[Transform] = Field(default_factory=list)
    remove_elements: list[str] = Field(default_factory=list)
    remove_attributes: list[str] = Field(default_factory=list)


class ImageFieldConfig(FieldConfig):
    """Field configuration for image-valued fields."""

    lazy_load_enabled: bool = True
    lazy_load_attributes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_LAZY_LOAD_ATTRIBUTES)
    )
    upload_to_asset_store: bool = False
    asset_folder: str = "imported"
    max_size_mb: float = Field(default=5.0, gt=0)
    skip_tracking_images: bool = True
    skip_small_images: bool = True
    min_image_size: int = Field(default=50, ge=0)


class ArticleSelectors(BaseModel):
    """Detail-page selectors for articles."""

    title: str = ""
    content: str = ""
    excerpt: str | None = None
    featured_image: str | None = None
    use_front_content_image_as_featured: bool = False
    content_images: list[str] = Field(default_factory=list)
    author: str | None = None
    publish_date: str | None = None
    field_configs: dict[str, FieldConfig] = Field(default_factory=dict)
    image_configs: dict[str, ImageFieldConfig] = Field(default_factory=dict)


class ProductSelectors(BaseModel):
    """Detail-page selectors for products."""

    name: str = ""
    price: str = ""
    original_price: str | None = None
    short_description: str | None = None
    description: str | None = None
    images: list[str] = Field(default_factory=list)
    sku: str | None = None
    field_configs: dict[str, FieldConfig] = Field(default_factory=dict)
    image_configs: dict[str, ImageFieldConfig] = Field(default_factory=dict)


class SelectorSets(BaseModel):
    """One selector set per content kind."""

    article: ArticleSelectors | None = None
    product: ProductSelectors | None = None


class SeoConfig(BaseModel):
    """SEO metadata extraction settings."""

    enabled: bool = True
    meta_title: str | None = None
    meta_description: str | None = None
    og_image: str | None = None


# ============================================================================
# List pages and pagination
# ============================================================================


class NextButtonPagination(BaseModel):
    type: Literal["next_button"] = "next_button"
    next_selector: str = ""
    max_pages: int = Field(default=5, ge=1)


class InfiniteScrollPagination(BaseModel):
    type: Literal["infinite_scroll"] = "infinite_scroll"
    load_more_selector: str = ""
    scroll_delay_ms: int = Field(default=1000, ge=0)
    max_pages: int = Field(default=5, ge=1)


class NumberedUrlPagination(BaseModel):
    type: Literal["numbered_url"] = "numbered_url"
    url_pattern: str = ""
    max_pages: int = Field(default=5, ge=1)


PaginationConfig = Annotated[
    Union[NextButtonPagination, InfiniteScrollPagination, NumberedUrlPagination],
    Field(discriminator="type"),
]


class ListPageConfig(BaseModel):
    """Listing page selectors used by discovery."""

    enabled: bool = False
    item_selector: str = ""
    link_selector: str = ""
    image_selector: str | None = None
    title_selector: str | None = None
    pagination: PaginationConfig | None = None


class CategoryMapping(BaseModel):
    """Binds a listing URL to a catalog category and default status."""

    id: str = Field(default_factory=_generate_id)
    category_id: str
    list_page_url: str
    status: PublishStatus = PublishStatus.DRAFT


class RequestPolicy(BaseModel):
    """Politeness and transport settings for one source."""

    delay_ms: int = Field(default=1000, ge=0)
    timeout_ms: int = Field(default=30000, gt=0)
    headers: dict[str, str] = Field(default_factory=dict)


# ============================================================================
# Source
# ============================================================================


class Source(BaseModel):
    """Configuration for one external website."""

    id: str = Field(default_factory=_generate_id)
    name: str
    base_url: str
    kind: ContentKind = ContentKind.ARTICLE
    is_active: bool = True
    request_policy: RequestPolicy = Field(default_factory=RequestPolicy)
    selectors: SelectorSets = Field(default_factory=SelectorSets)
    remove_elements: list[str] = Field(default_factory=lambda: list(DEFAULT_REMOVE_ELEMENTS))
    seo: SeoConfig = Field(default_factory=SeoConfig)
    list_page: ListPageConfig = Field(default_factory=ListPageConfig)
    category_mappings: list[CategoryMapping] = Field(default_factory=list)

    @property
    def domain(self) -> str:
        return urlparse(self.base_url).netloc.lower()

    def selectors_for(self, kind: ContentKind | None = None) -> ArticleSelectors | ProductSelectors | None:
        """Return the selector set for ``kind`` (defaults to the source's kind)."""
        kind = kind or self.kind
        if kind == ContentKind.ARTICLE:
            return self.selectors.article
        return self.selectors.product


class SelectorPreset(BaseModel):
    """Reusable selector set keyed by domain (used by quick import)."""

    id: str = Field(default_factory=_generate_id)
    name: str
    domain: str
    kind: ContentKind = ContentKind.ARTICLE
    selectors: SelectorSets = Field(default_factory=SelectorSets)
    remove_elements: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)

    def to_source(self, url: str) -> Source:
        """Build an ad-hoc source for a URL on this preset's domain."""
        parsed = urlparse(url)
        return Source(
            id=f"preset:{self.id}",
            name=self.name,
            base_url=f"{parsed.scheme}://{parsed.netloc}",
            kind=self.kind,
            selectors=self.selectors,
            remove_elements=DEFAULT_REMOVE_ELEMENTS + self.remove_elements,
        )


# ============================================================================
# Jobs and records
# ============================================================================


class CrawlJob(BaseModel):
    """One URL's journey through extraction to a terminal or review state."""

    id: str = Field(default_factory=_generate_id)
    url: str
    kind: ContentKind = ContentKind.ARTICLE
    status: JobStatus = JobStatus.QUEUED
    source_id: str | None = None
    category_id: str | None = None
    target_status: PublishStatus = PublishStatus.PENDING_REVIEW
    extracted_data: dict[str, Any] | None = None
    error_message: str | None = None
    created_item_id: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    processed_at: datetime | None = None


class ExtractedRecord(BaseModel):
    """Structured output of the detail extractor."""

    kind: ContentKind
    source_url: str
    fields: dict[str, str | list[str]] = Field(default_factory=dict)
    content_hash: str = ""

    def text(self, name: str) -> str:
        """Get a scalar field, or an empty string."""
        value = self.fields.get(name)
        if isinstance(value, list):
            return value[0] if value else ""
        return value or ""

    def items(self, name: str) -> list[str]:
        """Get a multi-valued field, or an empty list."""
        value = self.fields.get(name)
        if value is None or value == "":
            return []
        if isinstance(value, str):
            return [value]
        return list(value)

    @property
    def title(self) -> str:
        key = "title" if self.kind == ContentKind.ARTICLE else "name"
        return self.text(key)
