"""
Dedup Detector Module
=====================

Decides whether a candidate URL or slug collides with existing catalog
content. The normalized source URL is the primary key; the document
content hash and the slug are secondary checks.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from content_importer.core.enums import ContentKind, DedupOutcome
from content_importer.core.errors import DuplicateContentError, SlugConflictError
from content_importer.db.repositories import CatalogRepository

logger = logging.getLogger(__name__)

TRACKING_PARAMS = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "fbclid",
    "ref",
)

SLUG_MAX_LENGTH = 100


def normalize_url(url: str, ignore_params: tuple[str, ...] | list[str] = ()) -> str:
    """
    Normalize a URL for duplicate detection.

    Tracking parameters are dropped, the URL is lowercased and a
    trailing slash removed.

    Examples:
        >>> normalize_url("https://Example.com/Post/?utm_source=fb&id=2")
        'https://example.com/post/?id=2'
    """
    url = url.strip()
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return url.lower()

    dropped = set(TRACKING_PARAMS) | set(ignore_params)
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k not in dropped]
    path = parsed.path or "/"
    normalized = urlunparse(parsed._replace(path=path, query=urlencode(query), fragment=parsed.fragment))
    return normalized.lower().rstrip("/")


def generate_slug(text: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    """
    Build a URL slug from a title.

    Diacritics are stripped (``đ`` becomes ``d``), anything outside
    ``[a-z0-9 -]`` is dropped and whitespace runs become single hyphens.

    Examples:
        >>> generate_slug("Cà phê sữa đá ngon!")
        'ca-phe-sua-da-ngon'
    """
    slug = unicodedata.normalize("NFD", text.lower())
    slug = "".join(ch for ch in slug if not unicodedata.combining(ch))
    slug = slug.replace("đ", "d")
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug.strip())
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug[:max_length].rstrip("-")


@dataclass
class DedupResult:
    """Outcome of a duplicate/conflict check."""

    outcome: DedupOutcome
    normalized_url: str
    slug: str | None = None
    existing_id: str | None = None

    @property
    def is_unique(self) -> bool:
        return self.outcome == DedupOutcome.UNIQUE


class DedupDetector:
    """Checks candidates against the catalog of one content kind."""

    def __init__(self, catalog: CatalogRepository) -> None:
        self.catalog = catalog

    def check_url(self, url: str, kind: ContentKind) -> DedupResult:
        """Check only the normalized source URL (used before fetching)."""
        normalized = normalize_url(url)
        existing = self.catalog.find_by_source_url(kind, normalized)
        if existing:
            return DedupResult(DedupOutcome.DUPLICATE, normalized, existing_id=existing)
        return DedupResult(DedupOutcome.UNIQUE, normalized)

    def check(
        self,
        url: str,
        slug_candidate: str | None,
        kind: ContentKind,
        content_hash: str = "",
    ) -> DedupResult:
        """
        Full check: source URL, then content hash, then slug.

        Args:
            url: Candidate source URL
            slug_candidate: Slug the item would get (None skips the check)
            kind: Content kind to compare against
            content_hash: Hash of the fetched document

        Returns:
            DedupResult (unique, duplicate of an id, or slug conflict)
        """
        result = self.check_url(url, kind)
        if not result.is_unique:
            result.slug = slug_candidate
            return result

        existing = self.catalog.find_by_content_hash(kind, content_hash)
        if existing:
            logger.info(f"Content of {url} matches existing {kind.value} {existing}")
            return DedupResult(DedupOutcome.DUPLICATE, result.normalized_url, slug_candidate, existing)

        if slug_candidate:
            existing = self.catalog.find_by_slug(kind, slug_candidate)
            if existing:
                return DedupResult(DedupOutcome.SLUG_CONFLICT, result.normalized_url, slug_candidate, existing)

        return DedupResult(DedupOutcome.UNIQUE, result.normalized_url, slug_candidate)

    def ensure_new(
        self,
        url: str,
        slug_candidate: str | None,
        kind: ContentKind,
        content_hash: str = "",
    ) -> DedupResult:
        """
        Like ``check`` but raises on a collision.

        Raises:
            DuplicateContentError: The URL or content is already imported.
            SlugConflictError: The slug belongs to a different item.
        """
        result = self.check(url, slug_candidate, kind, content_hash)
        if result.outcome == DedupOutcome.DUPLICATE:
            raise DuplicateContentError(result.existing_id or "")
        if result.outcome == DedupOutcome.SLUG_CONFLICT:
            raise SlugConflictError(result.slug or "")
        return result
