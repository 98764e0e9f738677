"""
Detail Extractor Module
=======================

Turns a fetched detail page into an ExtractedRecord by applying a
Source's selectors, per-field clean-up and transform chains, then the
image resolver for image-valued fields.
"""

from __future__ import annotations

import copy
import logging

import soupsieve
from bs4 import BeautifulSoup, Tag

from content_importer.core.enums import ContentKind
from content_importer.core.errors import ConfigValidationError, RequiredFieldMissingError
from content_importer.core.schema import (
    ArticleSelectors,
    ExtractedRecord,
    FieldConfig,
    ImageFieldConfig,
    ProductSelectors,
    SeoConfig,
    Source,
)
from content_importer.ingestion.images import ImageResolver, resolve_url
from content_importer.ingestion.selectors import (
    node_text,
    parse_html,
    read_attr,
    select_value,
    split_attr_selector,
)
from content_importer.ingestion.transforms import apply_transforms

logger = logging.getLogger(__name__)

# Event handler and tracking attributes stripped from every document
REMOVE_ATTRIBUTES = [
    "onclick",
    "onload",
    "onerror",
    "onmouseover",
    "onmouseout",
    "onfocus",
    "onblur",
    "onsubmit",
    "onchange",
    "onkeydown",
    "onkeyup",
    "data-ga",
    "data-gtm",
    "data-analytics",
    "data-tracking",
    "data-action",
    "data-controller",
    "data-target",
    "data-toggle",
]

# Fields captured as inner HTML rather than text
RICH_TEXT_FIELDS = {"content", "description", "short_description"}

META_TITLE_MAX = 200
META_DESCRIPTION_MAX = 500


def _select(root: BeautifulSoup | Tag, selector: str) -> list[Tag]:
    css, _ = split_attr_selector(selector)
    if not css:
        return []
    try:
        return root.select(css)
    except soupsieve.SelectorSyntaxError as e:
        logger.warning(f"Ignoring invalid selector '{selector}': {e}")
        return []


def _remove_matching(root: BeautifulSoup | Tag, selectors: list[str]) -> None:
    for selector in selectors:
        for node in _select(root, selector):
            node.decompose()


def _strip_attributes(root: BeautifulSoup | Tag, attributes: list[str]) -> None:
    nodes = [root] if isinstance(root, Tag) and root.name != "[document]" else []
    nodes.extend(root.find_all(True))
    for node in nodes:
        for attr in attributes:
            if attr in node.attrs:
                del node.attrs[attr]


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def clean_document(soup: BeautifulSoup, remove_elements: list[str]) -> None:
    """Remove unwanted elements and event/tracking attributes in place."""
    _remove_matching(soup, remove_elements)
    _strip_attributes(soup, REMOVE_ATTRIBUTES)


class DetailExtractor:
    """
    Extracts structured records from detail pages.

    Extraction is best-effort per field: only the required fields
    (title/content for articles, name/price for products) raise when
    empty.
    """

    def __init__(self, image_resolver: ImageResolver | None = None) -> None:
        self.image_resolver = image_resolver or ImageResolver()

    async def extract(
        self,
        html: str,
        source: Source,
        url: str,
        content_hash: str = "",
        kind: ContentKind | None = None,
    ) -> ExtractedRecord:
        """
        Extract a record from a detail page.

        Args:
            html: Raw HTML of the page
            source: Source whose selectors to apply
            url: Page URL (base for relative links)
            content_hash: Hash of the fetched document
            kind: Content kind (defaults to the source's kind)

        Returns:
            ExtractedRecord with transformed field values

        Raises:
            ConfigValidationError: The source has no selectors for ``kind``.
            RequiredFieldMissingError: A required field is empty.
        """
        kind = kind or source.kind
        selectors = source.selectors_for(kind)
        if selectors is None:
            raise ConfigValidationError([f"No {kind.value} selectors configured"])

        soup = parse_html(html)
        clean_document(soup, source.remove_elements)

        if isinstance(selectors, ArticleSelectors):
            fields = await self._extract_article(soup, selectors, url)
        else:
            fields = await self._extract_product(soup, selectors, url)

        if source.seo.enabled:
            fields.update(self._extract_seo(soup, source.seo, url))

        logger.debug(f"Extracted {len(fields)} fields from {url}")
        return ExtractedRecord(kind=kind, source_url=url, fields=fields, content_hash=content_hash)

    # ------------------------------------------------------------------
    # Scalar fields
    # ------------------------------------------------------------------

    def capture(
        self,
        soup: BeautifulSoup | Tag,
        selector: str | None,
        config: FieldConfig | None = None,
        rich: bool = False,
    ) -> str:
        """
        Capture one scalar field.

        The first match is read as an attribute (``::attr()``), inner HTML
        (``rich``) or normalized text. Per-field removals apply to a copy
        of the matched node; then the transform chain runs (or a plain
        trim when the field has none).
        """
        if not selector or not selector.strip():
            return ""

        _, attr = split_attr_selector(selector)
        nodes = _select(soup, selector)
        if not nodes:
            return ""

        if attr is not None:
            value = next((v for v in (read_attr(n, attr) for n in nodes) if v), "")
        else:
            node = nodes[0]
            if config and (config.remove_elements or config.remove_attributes):
                node = copy.copy(node)
                _remove_matching(node, config.remove_elements)
                _strip_attributes(node, config.remove_attributes)
            value = node.decode_contents() if rich else node_text(node)

        if config and config.transforms:
            return apply_transforms(value, config.transforms)
        return value.strip()

    def _field(
        self,
        soup: BeautifulSoup,
        name: str,
        selector: str | None,
        configs: dict[str, FieldConfig],
        required: bool = False,
    ) -> str:
        value = self.capture(soup, selector, configs.get(name), rich=name in RICH_TEXT_FIELDS)
        if required and not value.strip():
            raise RequiredFieldMissingError(name)
        return value

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    @staticmethod
    def _image_config(configs: dict[str, ImageFieldConfig], name: str) -> ImageFieldConfig:
        return configs.get(name) or ImageFieldConfig()

    async def images_for(
        self,
        soup: BeautifulSoup | Tag,
        selector: str,
        config: ImageFieldConfig,
        base_url: str,
    ) -> list[str]:
        """
        Resolve every image matched by one selector.

        ``::attr()`` selectors yield attribute values; other matches are
        image nodes themselves or containers whose ``<img>`` descendants
        are used.
        """
        _, attr = split_attr_selector(selector)
        urls: list[str] = []
        for node in _select(soup, selector):
            if attr is not None:
                value = read_attr(node, attr)
                resolved = await self.image_resolver.resolve_url_value(value, config, base_url) if value else None
                if resolved:
                    urls.append(resolved)
                continue

            candidates = [node] if node.name == "img" or node.has_attr("src") else node.find_all("img")
            for img in candidates:
                resolved = await self.image_resolver.resolve(img.attrs, config, base_url)
                if resolved:
                    urls.append(resolved)

        if config.transforms:
            urls = [apply_transforms(u, config.transforms) for u in urls]
        return _unique(urls)

    async def _normalize_content_images(
        self,
        content_node: Tag,
        config: ImageFieldConfig,
        base_url: str,
    ) -> list[str]:
        """
        Rewrite ``<img>`` tags inside captured content in place.

        Each image gets its resolved (and possibly re-hosted) URL as
        ``src``; filtered images are removed.
        """
        urls: list[str] = []
        for img in content_node.find_all("img"):
            resolved = await self.image_resolver.resolve(img.attrs, config, base_url)
            if not resolved:
                img.decompose()
                continue
            img["src"] = resolved
            for name in config.lazy_load_attributes:
                if name in img.attrs:
                    del img.attrs[name]
            urls.append(resolved)
        return urls

    async def _rich_content(
        self,
        soup: BeautifulSoup,
        name: str,
        selector: str | None,
        selectors: ArticleSelectors | ProductSelectors,
        image_config: ImageFieldConfig,
        base_url: str,
        required: bool = False,
    ) -> tuple[str, list[str]]:
        """Capture a rich-text field with its images resolved."""
        nodes = _select(soup, selector) if selector else []
        if not nodes:
            if required:
                raise RequiredFieldMissingError(name)
            return "", []

        node = copy.copy(nodes[0])
        config = selectors.field_configs.get(name)
        if config:
            _remove_matching(node, config.remove_elements)
            _strip_attributes(node, config.remove_attributes)
        images = await self._normalize_content_images(node, image_config, base_url)

        value = node.decode_contents()
        value = apply_transforms(value, config.transforms) if config and config.transforms else value.strip()
        if required and not value.strip():
            raise RequiredFieldMissingError(name)
        return value, images

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def _extract_article(
        self,
        soup: BeautifulSoup,
        selectors: ArticleSelectors,
        url: str,
    ) -> dict[str, str | list[str]]:
        configs = selectors.field_configs
        title = self._field(soup, "title", selectors.title, configs, required=True)

        content_config = self._image_config(selectors.image_configs, "content_images")
        content, inline_images = await self._rich_content(
            soup, "content", selectors.content, selectors, content_config, url, required=True
        )

        if selectors.content_images:
            content_images: list[str] = []
            for selector in selectors.content_images:
                content_images.extend(await self.images_for(soup, selector, content_config, url))
            content_images = _unique(content_images)
        else:
            content_images = _unique(inline_images)

        featured = ""
        if selectors.featured_image:
            featured_config = self._image_config(selectors.image_configs, "featured_image")
            matches = await self.images_for(soup, selectors.featured_image, featured_config, url)
            featured = matches[0] if matches else ""
        if not featured and selectors.use_front_content_image_as_featured and content_images:
            featured = content_images[0]

        fields: dict[str, str | list[str]] = {
            "title": title,
            "content": content,
            "excerpt": self._field(soup, "excerpt", selectors.excerpt, configs),
            "featured_image": featured,
            "content_images": content_images,
            "author": self._field(soup, "author", selectors.author, configs),
            "publish_date": self._field(soup, "publish_date", selectors.publish_date, configs),
            "images": _unique(([featured] if featured else []) + content_images),
        }
        return fields

    async def _extract_product(
        self,
        soup: BeautifulSoup,
        selectors: ProductSelectors,
        url: str,
    ) -> dict[str, str | list[str]]:
        configs = selectors.field_configs
        name = self._field(soup, "name", selectors.name, configs, required=True)
        price = self._field(soup, "price", selectors.price, configs, required=True)

        images_config = self._image_config(selectors.image_configs, "images")
        description, description_images = await self._rich_content(
            soup, "description", selectors.description, selectors, images_config, url
        )
        short_description, _ = await self._rich_content(
            soup, "short_description", selectors.short_description, selectors, images_config, url
        )

        images: list[str] = []
        for selector in selectors.images:
            images.extend(await self.images_for(soup, selector, images_config, url))
        if not images:
            images = description_images

        return {
            "name": name,
            "price": price,
            "original_price": self._field(soup, "original_price", selectors.original_price, configs),
            "short_description": short_description,
            "description": description,
            "sku": self._field(soup, "sku", selectors.sku, configs),
            "images": _unique(images),
        }

    def _extract_seo(self, soup: BeautifulSoup, seo: SeoConfig, url: str) -> dict[str, str]:
        """
        Extract SEO metadata.

        Title: configured selector, og:title, <title>, first <h1>.
        Description: configured selector, og:description, meta description.
        """
        meta_title = (
            (select_value(soup, seo.meta_title) if seo.meta_title else "")
            or select_value(soup, "meta[property='og:title']::attr(content)")
            or select_value(soup, "title")
            or select_value(soup, "h1")
        )
        meta_description = (
            (select_value(soup, seo.meta_description) if seo.meta_description else "")
            or select_value(soup, "meta[property='og:description']::attr(content)")
            or select_value(soup, "meta[name='description']::attr(content)")
        )
        og_image = (select_value(soup, seo.og_image) if seo.og_image else "") or select_value(
            soup, "meta[property='og:image']::attr(content)"
        )
        return {
            "meta_title": meta_title[:META_TITLE_MAX],
            "meta_description": meta_description[:META_DESCRIPTION_MAX],
            "og_image": resolve_url(og_image, url) if og_image else "",
        }
