"""
List Discovery Module
=====================

Enumerates detail-page URLs from listing pages, following one of three
pagination strategies. Every strategy is bounded by ``max_pages``
fetches regardless of its own stopping heuristic.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from content_importer.core.errors import FetchError
from content_importer.core.schema import (
    CategoryMapping,
    ImageFieldConfig,
    InfiniteScrollPagination,
    ListPageConfig,
    NextButtonPagination,
    NumberedUrlPagination,
    Source,
)
from content_importer.ingestion.crawler import Fetcher
from content_importer.ingestion.dedup import normalize_url
from content_importer.ingestion.images import ImageResolver
from content_importer.ingestion.registry import numbered_page_url
from content_importer.ingestion.selectors import (
    node_text,
    parse_html,
    read_attr,
    select_all,
    select_first,
    select_value,
    split_attr_selector,
)

if TYPE_CHECKING:
    from content_importer.ingestion.jobs import JobLifecycleManager

logger = logging.getLogger(__name__)

# Attributes of a "load more" element that may carry the next chunk URL
LOAD_MORE_URL_ATTRIBUTES = ("href", "data-href", "data-url", "data-next")

SKIPPED_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:")


@dataclass
class DiscoveredLink:
    """A candidate detail page found on a listing page."""

    url: str
    title: str | None = None
    image: str | None = None


@dataclass
class DiscoveryResult:
    """Links found by one discovery run."""

    links: list[DiscoveredLink] = field(default_factory=list)
    pages_fetched: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def urls(self) -> list[str]:
        return [link.url for link in self.links]


def clean_href(href: str, page_url: str) -> str | None:
    """Resolve an href to an absolute http(s) URL, or None if unusable."""
    href = (href or "").strip()
    if not href or href.lower().startswith(SKIPPED_HREF_PREFIXES):
        return None
    url = urljoin(page_url, href)
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return parsed._replace(fragment="").geturl()


def _link_attr(selector: str | None) -> str:
    """Attribute holding the URL: the selector's ``::attr()`` or ``href``."""
    _, attr = split_attr_selector(selector or "")
    return attr or "href"


class ListDiscoveryEngine:
    """
    Discovers detail URLs across paginated listing pages.

    Pages are fetched strictly in order; links are unique by normalized
    URL within one run.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fetcher = fetcher
        self._sleep = sleep
        self._image_resolver = ImageResolver()
        self._image_config = ImageFieldConfig(skip_small_images=False)

    def extract_links(self, soup: BeautifulSoup, page_url: str, config: ListPageConfig) -> list[DiscoveredLink]:
        """Extract candidate links from one listing page."""
        links: list[DiscoveredLink] = []
        for item in select_all(soup, config.item_selector):
            if config.link_selector:
                anchor = select_first(item, config.link_selector)
                if anchor is None and item.name == "a":
                    anchor = item
            else:
                anchor = item if item.name == "a" else item.find("a", href=True)
            if anchor is None:
                continue

            url = clean_href(read_attr(anchor, _link_attr(config.link_selector)), page_url)
            if url is None:
                continue

            title = select_value(item, config.title_selector) if config.title_selector else ""
            title = title or node_text(anchor)

            image = None
            if config.image_selector:
                image_node = select_first(item, config.image_selector)
                if image_node is not None:
                    image = self._image_resolver.resolve_node(image_node.attrs, self._image_config, page_url)

            links.append(DiscoveredLink(url=url, title=title or None, image=image))
        return links

    async def discover(
        self,
        listing_url: str,
        source: Source,
        config: ListPageConfig | None = None,
    ) -> DiscoveryResult:
        """
        Discover detail URLs starting at ``listing_url``.

        Args:
            listing_url: First listing page
            source: Source supplying request policy (and list config)
            config: List page config (defaults to the source's)

        Returns:
            DiscoveryResult; a failed page fetch ends the run and is
            reported in ``errors`` alongside the links found so far.
        """
        config = config or source.list_page
        pagination = config.pagination
        result = DiscoveryResult()
        seen: set[str] = set()

        def add_links(soup: BeautifulSoup, page_url: str) -> int:
            added = 0
            for link in self.extract_links(soup, page_url, config):
                key = normalize_url(link.url)
                if key in seen:
                    continue
                seen.add(key)
                result.links.append(link)
                added += 1
            return added

        async def fetch_page(url: str) -> BeautifulSoup | None:
            if result.pages_fetched > 0:
                await self._sleep(source.request_policy.delay_ms / 1000)
            result.pages_fetched += 1
            try:
                page = await self.fetcher.fetch(url, source)
            except FetchError as e:
                logger.warning(f"Discovery stopped at {url}: {e}")
                result.errors.append(str(e))
                return None
            return parse_html(page.text)

        if isinstance(pagination, NumberedUrlPagination):
            for page_number in range(1, pagination.max_pages + 1):
                page_url = numbered_page_url(pagination.url_pattern, page_number, listing_url)
                soup = await fetch_page(page_url)
                if soup is None or add_links(soup, page_url) == 0:
                    break

        elif isinstance(pagination, NextButtonPagination):
            page_url = listing_url
            visited: set[str] = set()
            while result.pages_fetched < pagination.max_pages:
                visited.add(normalize_url(page_url))
                soup = await fetch_page(page_url)
                if soup is None:
                    break
                add_links(soup, page_url)

                next_node = select_first(soup, pagination.next_selector)
                next_attr = _link_attr(pagination.next_selector)
                next_url = clean_href(read_attr(next_node, next_attr), page_url) if next_node is not None else None
                if next_url is None or normalize_url(next_url) in visited:
                    break
                page_url = next_url

        elif isinstance(pagination, InfiniteScrollPagination):
            page_url = listing_url
            visited = set()
            while result.pages_fetched < pagination.max_pages:
                visited.add(normalize_url(page_url))
                soup = await fetch_page(page_url)
                if soup is None:
                    break
                added = add_links(soup, page_url)
                if result.pages_fetched > 1 and added == 0:
                    break

                trigger = select_first(soup, pagination.load_more_selector)
                next_url = None
                if trigger is not None:
                    next_url = self._load_more_url(trigger, pagination.load_more_selector, page_url)
                if next_url is None or normalize_url(next_url) in visited:
                    break
                await self._sleep(pagination.scroll_delay_ms / 1000)
                page_url = next_url

        else:
            soup = await fetch_page(listing_url)
            if soup is not None:
                add_links(soup, listing_url)

        logger.info(
            f"Discovered {len(result.links)} links from {listing_url} "
            f"({result.pages_fetched} pages, {len(result.errors)} errors)"
        )
        return result

    @staticmethod
    def _load_more_url(trigger, selector: str, page_url: str) -> str | None:
        _, attr = split_attr_selector(selector)
        names = (attr, *LOAD_MORE_URL_ATTRIBUTES) if attr else LOAD_MORE_URL_ATTRIBUTES
        for name in names:
            url = clean_href(read_attr(trigger, name), page_url)
            if url:
                return url
        return None


async def discover_category(
    engine: ListDiscoveryEngine,
    manager: JobLifecycleManager,
    source: Source,
    mapping: CategoryMapping,
) -> tuple[DiscoveryResult, list[str]]:
    """
    Discover a category mapping's listing and enqueue every link as a job.

    Jobs carry the mapping's category id and default publish status.

    Returns:
        Tuple of (discovery result, created job IDs)
    """
    listing_url = urljoin(source.base_url, mapping.list_page_url)
    result = await engine.discover(listing_url, source)
    job_ids = manager.enqueue(
        result.urls,
        kind=source.kind,
        source_id=source.id,
        category_id=mapping.category_id,
        target_status=mapping.status,
    )
    return result, job_ids
