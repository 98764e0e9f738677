"""
Import Pipeline Module
======================

Glue between fetching, detail extraction and the catalog: fetches a
page, extracts a record, and turns a record into catalog rows.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any

from content_importer.core.enums import ContentKind
from content_importer.core.schema import ExtractedRecord, Source
from content_importer.db.repositories import CatalogRepository
from content_importer.ingestion.crawler import Fetcher
from content_importer.ingestion.dedup import generate_slug
from content_importer.ingestion.extractor import DetailExtractor

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")

META_TITLE_FALLBACK_LENGTH = 60
META_DESCRIPTION_FALLBACK_LENGTH = 160


def parse_price(text: str | None) -> int | None:
    """
    Parse a Vietnamese-formatted price (``1.250.000đ``, ``1,250,000``).

    Dots and commas are treated as thousands separators.
    """
    if not text:
        return None
    digits = re.sub(r"[^\d]", "", text)
    return int(digits) if digits else None


def _plain(text: str) -> str:
    return " ".join(_TAG_RE.sub(" ", text).split())


def slug_for(record: ExtractedRecord) -> str:
    """Slug candidate for a record (falls back to the content hash)."""
    slug = generate_slug(record.title)
    if not slug:
        slug = f"{record.kind.value}-{(record.content_hash or str(int(time.time())))[:8]}"
    return slug


def catalog_fields(
    record: ExtractedRecord,
    *,
    slug: str,
    category_id: str | None,
    status: str,
    source_url: str,
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """
    Map an extracted record to catalog column values.

    Meta title falls back to the first 60 characters of the title; meta
    description to the first 160 characters of the excerpt (articles) or
    plain-text description (products).

    Returns:
        Tuple of (item fields, product variants)
    """
    title = record.title
    common = {
        "slug": slug,
        "category_id": category_id,
        "status": status,
        "source_url": source_url,
        "content_hash": record.content_hash,
        "meta_title": record.text("meta_title") or title[:META_TITLE_FALLBACK_LENGTH],
    }

    if record.kind == ContentKind.ARTICLE:
        images = record.items("images") or record.items("content_images")
        excerpt = record.text("excerpt")
        fields = {
            **common,
            "title": title,
            "content": record.text("content"),
            "excerpt": excerpt,
            "featured_image": record.text("featured_image") or (images[0] if images else ""),
            "author": record.text("author"),
            "meta_description": record.text("meta_description")
            or _plain(excerpt)[:META_DESCRIPTION_FALLBACK_LENGTH],
        }
        return fields, []

    description = record.text("description")
    fields = {
        **common,
        "name": title,
        "short_description": record.text("short_description"),
        "description": description,
        "images": record.items("images"),
        "meta_description": record.text("meta_description")
        or _plain(description)[:META_DESCRIPTION_FALLBACK_LENGTH],
    }

    variants = []
    price = parse_price(record.text("price"))
    if price:
        variants.append(
            {
                "sku": record.text("sku") or f"SKU-{int(time.time() * 1000)}",
                "price": price,
                "sale_price": parse_price(record.text("original_price")),
                "stock_quantity": 0,
            }
        )
    return fields, variants


def write_record(
    catalog: CatalogRepository,
    record: ExtractedRecord,
    *,
    slug: str,
    category_id: str | None,
    status: str,
    source_url: str,
) -> str:
    """
    Create the catalog item for a record.

    Returns:
        The created item ID

    Raises:
        CatalogWriteError: The item could not be written.
    """
    fields, variants = catalog_fields(
        record, slug=slug, category_id=category_id, status=status, source_url=source_url
    )
    if record.kind == ContentKind.ARTICLE:
        item_id = catalog.create_article(fields)
    else:
        item_id = catalog.create_product(fields, variants)
    logger.info(f"Created {record.kind.value} {item_id} ({slug}) from {source_url}")
    return item_id


class ImportPipeline:
    """Fetch and extract one detail page."""

    def __init__(self, fetcher: Fetcher, extractor: DetailExtractor | None = None) -> None:
        self.fetcher = fetcher
        self.extractor = extractor or DetailExtractor()

    async def extract_url(
        self,
        url: str,
        source: Source,
        kind: ContentKind | None = None,
    ) -> ExtractedRecord:
        """
        Fetch ``url`` and extract a record with ``source``'s selectors.

        Raises:
            FetchError: The page could not be fetched.
            RequiredFieldMissingError: A required field is empty.
        """
        page = await self.fetcher.fetch(url, source)
        return await self.extractor.extract(
            page.text,
            source,
            url=page.final_url or url,
            content_hash=page.content_hash,
            kind=kind,
        )
