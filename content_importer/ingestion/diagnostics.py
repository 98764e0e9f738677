"""
Selector Diagnostics Module
===========================

Operator tools that run selectors against live pages without creating
jobs: test a selector, detect likely image selectors, extract links
from a listing page and dry-run a list-page configuration. The import
pipeline never calls into this module.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

import soupsieve
from bs4 import BeautifulSoup, Tag

from content_importer.core.errors import ConfigValidationError
from content_importer.core.schema import ImageFieldConfig, ListPageConfig, Source
from content_importer.ingestion.crawler import Fetcher
from content_importer.ingestion.discovery import ListDiscoveryEngine, clean_href
from content_importer.ingestion.images import ImageResolver, resolve_url
from content_importer.ingestion.selectors import (
    node_text,
    parse_html,
    read_attr,
    select_value,
    selector_error,
    split_attr_selector,
)

logger = logging.getLogger(__name__)

SAMPLE_LIMIT = 5
LINK_PREVIEW_LIMIT = 20

FEATURED_IMAGE_PATTERNS = [
    (".featured-image img", "Featured image container"),
    (".post-thumbnail img", "Post thumbnail"),
    (".entry-image img", "Entry image"),
    ("article header img", "Article header image"),
    (".hero-image img", "Hero image"),
    ('[data-role="content"] > figure:first-child img', "First figure image"),
]

CONTENT_IMAGE_PATTERNS = [
    ('[data-role="content"] img', "Content images (data-role)"),
    ("article.fck_detail img", "Article detail images"),
    (".article-content img", "Article content images"),
    (".post-content img", "Post content images"),
    (".entry-content img", "Entry content images"),
    ("article img", "All article images"),
    (".content img", "Content images"),
    ("img[data-author]", "Images with data-author"),
]

SKIP_IMAGE_PATTERNS = [
    re.compile(p)
    for p in (
        r"scorecardresearch",
        r"facebook\.com/tr",
        r"google-analytics",
        r"pixel\.",
        r"beacon\.",
        r"1x1",
        r"spacer",
        r"placeholder",
        r"loading\.gif",
    )
]

LOCAL_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0")


@dataclass
class SelectorTestResult:
    """Outcome of running one selector against a page."""

    success: bool
    count: int = 0
    value: str | None = None
    values: list[str] = field(default_factory=list)
    html_content: str | None = None
    images: list[str] = field(default_factory=list)
    links: list[dict[str, str]] = field(default_factory=list)


@dataclass
class DetectedSelector:
    """A candidate image selector with sample matches."""

    selector: str
    type: str
    count: int
    sample_images: list[str]
    description: str


@dataclass
class ImageDetectionResult:
    featured_selectors: list[DetectedSelector]
    content_selectors: list[DetectedSelector]
    page_title: str


@dataclass
class ExtractedLink:
    url: str
    title: str
    index: int


@dataclass
class ListPageTestResult:
    links_found: int
    links_with_image: int
    sample_links: list[dict[str, str | None]]


def _should_skip(url: str) -> bool:
    return any(pattern.search(url) for pattern in SKIP_IMAGE_PATTERNS)


def _select(root: BeautifulSoup | Tag, css: str) -> list[Tag]:
    try:
        return root.select(css)
    except soupsieve.SelectorSyntaxError as e:
        raise ConfigValidationError([f"Invalid selector '{css}': {e}"]) from e


def _compile_pattern(pattern: str | None, label: str) -> re.Pattern[str] | None:
    if not pattern:
        return None
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise ConfigValidationError([f"Invalid {label} pattern '{pattern}': {e}"]) from e


class DiagnosticsService:
    """Live selector diagnostics over a fetcher."""

    def __init__(self, fetcher: Fetcher) -> None:
        self.fetcher = fetcher
        self._resolver = ImageResolver()
        self._image_config = ImageFieldConfig(skip_small_images=False, skip_tracking_images=False)

    async def _load(self, url: str, source: Source | None = None) -> BeautifulSoup:
        page = await self.fetcher.fetch(url, source)
        return parse_html(page.text)

    def _image_url(self, img: Tag, base_url: str) -> str:
        src = self._resolver.pick_source(img.attrs, self._image_config)
        return resolve_url(src, base_url) if src else ""

    async def test_selector(self, url: str, selector: str, multiple: bool = False) -> SelectorTestResult:
        """
        Run a selector against a live page.

        Single mode returns the first match's value (attribute, image URL,
        meta content or text) plus its inner HTML, images and links.
        Multiple mode returns every match's value.
        """
        soup = await self._load(url)
        css, attr = split_attr_selector(selector)
        nodes = _select(soup, css)
        if not nodes:
            return SelectorTestResult(success=False)

        if multiple:
            values: list[str] = []
            images: list[str] = []
            for node in nodes:
                if attr:
                    value = read_attr(node, attr)
                elif node.name == "img":
                    value = self._image_url(node, url)
                    if value:
                        images.append(value)
                else:
                    value = node_text(node)
                if value:
                    values.append(value)
            return SelectorTestResult(success=True, count=len(values), values=values, images=images)

        first = nodes[0]
        result = SelectorTestResult(success=True, count=len(nodes))
        if attr:
            result.value = read_attr(first, attr)
            if result.value and re.search(r"\.(jpe?g|png|webp|gif)", result.value, re.IGNORECASE):
                result.images.append(resolve_url(result.value, url))
        elif first.name == "img":
            result.value = self._image_url(first, url)
            if result.value:
                result.images.append(result.value)
        elif first.name == "meta":
            result.value = read_attr(first, "content")
        else:
            result.value = node_text(first)
            result.html_content = first.decode_contents()
            for img in first.find_all("img"):
                image_url = self._image_url(img, url)
                if image_url and image_url not in result.images:
                    result.images.append(image_url)
            for anchor in first.find_all("a", href=True):
                text = node_text(anchor)
                href = clean_href(read_attr(anchor, "href"), url)
                if href and text:
                    result.links.append({"url": href, "text": text[:100]})
            result.links = result.links[:LINK_PREVIEW_LIMIT]
        return result

    async def detect_image_selectors(self, url: str) -> ImageDetectionResult:
        """
        Suggest featured and content image selectors for a page.

        Featured candidates are returned in priority order (og:image,
        twitter:image, then common containers); content candidates are
        ranked by the number of usable images they match.
        """
        soup = await self._load(url)
        featured: list[DetectedSelector] = []
        content: list[DetectedSelector] = []

        og_image = select_value(soup, "meta[property='og:image']::attr(content)")
        if og_image:
            featured.append(
                DetectedSelector(
                    "meta[property='og:image']::attr(content)", "featured", 1,
                    [resolve_url(og_image, url)], "OpenGraph image (recommended)",
                )
            )

        twitter_image = select_value(soup, "meta[name='twitter:image']::attr(content)") or select_value(
            soup, "meta[property='twitter:image']::attr(content)"
        )
        if twitter_image and twitter_image != og_image:
            featured.append(
                DetectedSelector(
                    "meta[name='twitter:image']::attr(content)", "featured", 1,
                    [resolve_url(twitter_image, url)], "Twitter card image",
                )
            )

        for css, description in FEATURED_IMAGE_PATTERNS:
            images = soup.select(css)
            if not images:
                continue
            sample = self._image_url(images[0], url)
            if sample and not _should_skip(sample):
                featured.append(DetectedSelector(css, "featured", len(images), [sample], description))

        for css, description in CONTENT_IMAGE_PATTERNS:
            usable = [u for u in (self._image_url(img, url) for img in soup.select(css)) if u and not _should_skip(u)]
            if usable:
                content.append(
                    DetectedSelector(
                        css, "content", len(usable), usable[:SAMPLE_LIMIT], f"{description} ({len(usable)} images)"
                    )
                )
        content.sort(key=lambda d: d.count, reverse=True)

        page_title = select_value(soup, "title") or select_value(soup, "h1")
        return ImageDetectionResult(featured, content, page_title)

    async def extract_links(
        self,
        url: str,
        link_selector: str = "a[href]",
        container_selector: str | None = None,
        filter_pattern: str | None = None,
        exclude_pattern: str | None = None,
        limit: int = 100,
    ) -> list[ExtractedLink]:
        """
        Extract unique links from a listing page.

        Raises:
            ConfigValidationError: Local URL, invalid selector or invalid
                include/exclude pattern.
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ConfigValidationError([f"Invalid URL '{url}'"])
        if any(host in parsed.hostname for host in LOCAL_HOSTS):
            raise ConfigValidationError(["Cannot extract from local URLs"])

        include = _compile_pattern(filter_pattern, "filter")
        exclude = _compile_pattern(exclude_pattern, "exclude")

        soup = await self._load(url)
        containers = _select(soup, container_selector) if container_selector else [soup.body or soup]

        links: list[ExtractedLink] = []
        seen: set[str] = set()
        for container in containers:
            for anchor in _select(container, link_selector or "a[href]"):
                if len(links) >= limit:
                    return links
                href = clean_href(read_attr(anchor, "href"), url)
                if href is None:
                    continue
                if include and not include.search(href):
                    continue
                if exclude and exclude.search(href):
                    continue
                if href in seen:
                    continue
                seen.add(href)
                title = node_text(anchor) or read_attr(anchor, "title")
                links.append(ExtractedLink(url=href, title=title[:200], index=len(links)))
        return links

    async def test_list_page(self, url: str, config: ListPageConfig) -> ListPageTestResult:
        """Dry-run a list page configuration against one page."""
        errors = []
        for css in (config.item_selector, config.link_selector, config.title_selector, config.image_selector):
            error = selector_error(css) if css else None
            if error:
                errors.append(error)
        if errors:
            raise ConfigValidationError(errors)

        soup = await self._load(url)
        links = ListDiscoveryEngine(self.fetcher).extract_links(soup, url, config)
        return ListPageTestResult(
            links_found=len(links),
            links_with_image=sum(1 for link in links if link.image),
            sample_links=[
                {"url": link.url, "title": link.title, "image": link.image} for link in links[:SAMPLE_LIMIT]
            ],
        )
