"""
Image Resolver Module
=====================

Resolves the real URL of an ``<img>``-like node (following lazy-load
attributes), filters tracking pixels and undersized images, and
optionally re-hosts the result through an asset store.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urljoin

from content_importer.core.errors import ImageUploadError
from content_importer.core.schema import ImageFieldConfig
from content_importer.ingestion.storage import AssetStore

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"placeholder|blank|spacer|loading\.gif|lazy\.gif", re.IGNORECASE)
_DIMENSION_RE = re.compile(r"^\s*(\d+)\s*(?:px)?\s*$", re.IGNORECASE)

TRACKING_SIGNATURES = (
    "1x1",
    "pixel",
    "track",
    "beacon",
    "doubleclick",
    "google-analytics",
    "facebook.com/tr",
    "scorecardresearch",
)


def resolve_url(url: str, base_url: str | None = None) -> str:
    """
    Resolve a possibly relative URL.

    Protocol-relative URLs get ``https:``; relative URLs are joined to
    ``base_url`` when one is given.
    """
    url = (url or "").strip()
    if not url:
        return ""
    if url.startswith(("http://", "https://", "data:")):
        return url
    if url.startswith("//"):
        return "https:" + url
    if base_url:
        return urljoin(base_url, url)
    return url


def first_srcset_candidate(value: str) -> str:
    """Return the URL of the first candidate in a ``srcset`` value."""
    first = value.split(",")[0].strip()
    return first.split()[0] if first else ""


def is_placeholder(src: str) -> bool:
    """Check whether a ``src`` is empty, a data URI or a placeholder image."""
    src = src.strip()
    return not src or src.startswith("data:") or bool(_PLACEHOLDER_RE.search(src))


def parse_dimension(value: Any) -> int | None:
    """Parse a ``width``/``height`` attribute given in pixels."""
    if value is None:
        return None
    match = _DIMENSION_RE.match(str(value))
    return int(match.group(1)) if match else None


def _attr(attrs: Mapping[str, Any], name: str) -> str:
    value = attrs.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return (value or "").strip()


def is_tracking_image(url: str, attrs: Mapping[str, Any] | None = None) -> bool:
    """Check a URL (and declared dimensions) against tracking-pixel signatures."""
    lowered = url.lower()
    if any(signature in lowered for signature in TRACKING_SIGNATURES):
        return True
    if attrs:
        return parse_dimension(attrs.get("width")) == 1 and parse_dimension(attrs.get("height")) == 1
    return False


def is_too_small(attrs: Mapping[str, Any], min_size: int) -> bool:
    """Check declared dimensions against ``min_size``; unknown dimensions pass."""
    for name in ("width", "height"):
        size = parse_dimension(attrs.get(name))
        if size is not None and size < min_size:
            return True
    return False


class ImageResolver:
    """
    Resolves and filters image nodes.

    Uploaded URLs are cached per resolver so the same original is only
    re-hosted once per extraction.
    """

    def __init__(self, asset_store: AssetStore | None = None) -> None:
        self.asset_store = asset_store
        self._uploaded: dict[str, str] = {}

    def pick_source(self, attrs: Mapping[str, Any], config: ImageFieldConfig) -> str | None:
        """
        Pick the real image URL of a node.

        Tries ``src`` first; when it is missing or a placeholder, scans the
        configured lazy-load attributes in order.
        """
        src = _attr(attrs, "src")
        if src and not is_placeholder(src):
            return src

        if config.lazy_load_enabled:
            for name in config.lazy_load_attributes:
                value = _attr(attrs, name)
                if "srcset" in name:
                    value = first_srcset_candidate(value)
                if value and not value.startswith("data:"):
                    return value
        return None

    def is_filtered(self, url: str, attrs: Mapping[str, Any], config: ImageFieldConfig) -> bool:
        """Apply the tracking and size filters enabled in ``config``."""
        if config.skip_tracking_images and is_tracking_image(url, attrs):
            logger.debug(f"Skipping tracking image {url}")
            return True
        if config.skip_small_images and is_too_small(attrs, config.min_image_size):
            logger.debug(f"Skipping small image {url}")
            return True
        return False

    def resolve_node(
        self,
        attrs: Mapping[str, Any],
        config: ImageFieldConfig,
        base_url: str | None = None,
    ) -> str | None:
        """
        Resolve a node to an absolute, unfiltered URL without uploading.

        Returns:
            The resolved URL, or None if the node has no usable image.
        """
        src = self.pick_source(attrs, config)
        if not src:
            return None
        url = resolve_url(src, base_url)
        if not url or self.is_filtered(url, attrs, config):
            return None
        return url

    async def rehost(self, url: str, config: ImageFieldConfig) -> str:
        """
        Hand a resolved URL to the asset store when uploads are enabled.

        Upload failures are logged and the original URL is kept.
        """
        if not config.upload_to_asset_store or self.asset_store is None:
            return url
        if url in self._uploaded:
            return self._uploaded[url]

        try:
            asset = await self.asset_store.upload(url, folder=config.asset_folder, max_size_mb=config.max_size_mb)
        except ImageUploadError as e:
            logger.warning(f"Keeping original image URL {url}: {e}")
            return url

        self._uploaded[url] = asset.url
        return asset.url

    async def resolve(
        self,
        attrs: Mapping[str, Any],
        config: ImageFieldConfig,
        base_url: str | None = None,
    ) -> str | None:
        """Resolve, filter and (optionally) re-host one image node."""
        url = self.resolve_node(attrs, config, base_url)
        if url is None:
            return None
        return await self.rehost(url, config)

    async def resolve_url_value(
        self,
        value: str,
        config: ImageFieldConfig,
        base_url: str | None = None,
    ) -> str | None:
        """Resolve an image URL read from an attribute (no node available)."""
        url = resolve_url(value, base_url)
        if not url or url.startswith("data:"):
            return None
        if config.skip_tracking_images and is_tracking_image(url):
            return None
        return await self.rehost(url, config)

    @property
    def uploaded(self) -> dict[str, str]:
        """Original URL to hosted URL for every successful upload."""
        return dict(self._uploaded)
