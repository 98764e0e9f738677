"""
Source Registry Module
======================

Manages source configurations loaded from YAML files or the database.
Sources define which websites can be imported from, their selectors,
list-page discovery and request policy.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urljoin, urlparse

import yaml
from pydantic import ValidationError

from content_importer.core.enums import ContentKind
from content_importer.core.errors import ConfigValidationError, SourceNotFoundError
from content_importer.core.schema import (
    ArticleSelectors,
    InfiniteScrollPagination,
    NextButtonPagination,
    NumberedUrlPagination,
    ProductSelectors,
    SelectorSets,
    Source,
)
from content_importer.ingestion.selectors import selector_error

# Selectors used when a job has no bound source
DEFAULT_ARTICLE_SELECTORS = ArticleSelectors(
    title="h1",
    content="article, .article-content, .post-content, main",
    excerpt="meta[name='description']::attr(content)",
    featured_image="meta[property='og:image']::attr(content)",
)

DEFAULT_PRODUCT_SELECTORS = ProductSelectors(
    name="h1",
    price=".price, [class*='price']",
    description=".description, .product-description",
    images=["meta[property='og:image']::attr(content)"],
)


@dataclass
class GlobalConfig:
    """Global configuration settings."""

    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    request_timeout: int = 30
    default_request_delay_ms: int = 1000
    batch_item_delay_ms: int = 1000
    max_retries: int = 1
    asset_storage_path: str = "~/.content_importer/assets"
    asset_public_base_url: str = "/assets"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        defaults = cls()
        return cls(
            user_agent=data.get("user_agent", defaults.user_agent),
            request_timeout=int(data.get("request_timeout", defaults.request_timeout)),
            default_request_delay_ms=int(
                data.get("default_request_delay_ms", defaults.default_request_delay_ms)
            ),
            batch_item_delay_ms=int(data.get("batch_item_delay_ms", defaults.batch_item_delay_ms)),
            max_retries=int(data.get("max_retries", defaults.max_retries)),
            asset_storage_path=data.get("asset_storage_path", defaults.asset_storage_path),
            asset_public_base_url=data.get("asset_public_base_url", defaults.asset_public_base_url),
        )


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def numbered_page_url(pattern: str, page: int, listing_url: str) -> str:
    """
    Build the URL of page ``page`` from a ``{n}`` pattern.

    Patterns may be absolute or relative to the listing URL
    (``?page={n}``, ``/page/{n}``).
    """
    return urljoin(listing_url, pattern.replace("{n}", str(page)))


class SourceRegistry:
    """
    Registry for managing crawl source configurations.

    Loads source definitions from a YAML file (or a repository) and
    provides methods to query and validate them.
    """

    def __init__(self) -> None:
        self._sources: dict[str, Source] = {}
        self._global_config: GlobalConfig = GlobalConfig()
        self._config_path: Path | None = None

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    def load_config(self, config_path: Path | str) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the sources.yaml file

        Raises:
            FileNotFoundError: The file does not exist.
            ConfigValidationError: A source entry is malformed.
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        self._config_path = config_path
        self._global_config = GlobalConfig.from_dict(data.get("global"))

        self._sources.clear()
        for index, source_data in enumerate(data.get("sources") or []):
            source_data = dict(source_data)
            policy = source_data.setdefault("request_policy", {})
            policy.setdefault("delay_ms", self._global_config.default_request_delay_ms)
            policy.setdefault("timeout_ms", self._global_config.request_timeout * 1000)
            try:
                source = Source.model_validate(source_data)
            except ValidationError as e:
                name = source_data.get("name", f"#{index}")
                raise ConfigValidationError(
                    [f"source {name}: {err['loc']}: {err['msg']}" for err in e.errors()]
                ) from e
            self.register(source)

    def load_from_repository(self, sources: list[Source]) -> None:
        """Register sources read from the database (replacing same ids)."""
        for source in sources:
            self.register(source)

    def register(self, source: Source) -> None:
        """Add or replace a source."""
        self._sources[source.id] = source

    def unregister(self, source_id: str) -> bool:
        """Remove a source. Returns False if it was not registered."""
        return self._sources.pop(source_id, None) is not None

    def get(self, source_id: str) -> Source:
        """
        Get a source by ID or name.

        Raises:
            SourceNotFoundError: No such source.
        """
        source = self.find(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source '{source_id}' not found")
        return source

    def find(self, source_id: str) -> Source | None:
        """Get a source by ID or name, or None."""
        source = self._sources.get(source_id)
        if source is not None:
            return source
        for candidate in self._sources.values():
            if candidate.name == source_id:
                return candidate
        return None

    def list_sources(self) -> list[Source]:
        """
        Get all registered sources.

        Returns:
            List of all source configurations
        """
        return list(self._sources.values())

    def list_active_sources(self) -> list[Source]:
        return [s for s in self._sources.values() if s.is_active]

    def get_source_by_domain(self, domain: str) -> Source | None:
        """
        Find an active source by its domain.

        Args:
            domain: Domain name (e.g., "example.com")

        Returns:
            Source if found, None otherwise
        """
        domain = domain.lower()
        for source in self._sources.values():
            if source.is_active and source.domain == domain:
                return source
        return None

    @staticmethod
    def validate(source: Source) -> list[str]:
        """
        Validate a source without any network access.

        Checks:
        - base URL is an absolute http(s) URL
        - the selector set for the source's kind exists and its required
          selectors are non-empty
        - every configured selector compiles
        - enabled list-page discovery has item/link selectors and a usable
          pagination setup (a ``{n}`` URL template for numbered pages)

        Returns:
            List of error messages (empty when valid)
        """
        errors: list[str] = []

        if not source.base_url:
            errors.append("Base URL is required")
        elif not _is_http_url(source.base_url):
            errors.append(f"Base URL '{source.base_url}' is not an absolute http(s) URL")

        selectors = source.selectors_for()
        if selectors is None:
            errors.append(f"No {source.kind.value} selectors configured")
        elif isinstance(selectors, ArticleSelectors):
            if not selectors.title.strip():
                errors.append("Title selector is required for articles")
            if not selectors.content.strip():
                errors.append("Content selector is required for articles")
        else:
            if not selectors.name.strip():
                errors.append("Name selector is required for products")
            if not selectors.price.strip():
                errors.append("Price selector is required for products")

        for label, selector in SourceRegistry._configured_selectors(source):
            problem = selector_error(selector)
            if problem:
                errors.append(f"{label}: {problem}")

        list_page = source.list_page
        if list_page.enabled:
            if not list_page.item_selector.strip():
                errors.append("List page item selector is required when discovery is enabled")
            if not list_page.link_selector.strip():
                errors.append("List page link selector is required when discovery is enabled")

            pagination = list_page.pagination
            if isinstance(pagination, NumberedUrlPagination):
                errors.extend(SourceRegistry._validate_url_pattern(pagination.url_pattern, source.base_url))
            elif isinstance(pagination, NextButtonPagination) and not pagination.next_selector.strip():
                errors.append("Next button selector is required for next_button pagination")
            elif isinstance(pagination, InfiniteScrollPagination) and not pagination.load_more_selector.strip():
                errors.append("Load more selector is required for infinite_scroll pagination")

        for mapping in source.category_mappings:
            if not _is_http_url(urljoin(source.base_url, mapping.list_page_url)):
                errors.append(f"Category mapping URL '{mapping.list_page_url}' is not a valid URL")

        return errors

    @staticmethod
    def _validate_url_pattern(pattern: str, base_url: str) -> list[str]:
        if not pattern.strip():
            return ["URL pattern is required for numbered_url pagination"]
        if "{n}" not in pattern:
            return [f"URL pattern '{pattern}' must contain {{n}}"]
        if not _is_http_url(numbered_page_url(pattern, 1, base_url)):
            return [f"URL pattern '{pattern}' does not produce a valid URL"]
        return []

    @staticmethod
    def _configured_selectors(source: Source) -> list[tuple[str, str]]:
        found: list[tuple[str, str]] = []
        for kind, selectors in (("article", source.selectors.article), ("product", source.selectors.product)):
            if selectors is None:
                continue
            for field_name, value in selectors:
                if isinstance(value, str) and value.strip():
                    found.append((f"{kind}.{field_name}", value))
                elif isinstance(value, list):
                    found.extend((f"{kind}.{field_name}", v) for v in value if isinstance(v, str) and v.strip())
            configs = {**selectors.field_configs, **selectors.image_configs}
            for field_name, config in configs.items():
                found.extend((f"{kind}.{field_name}.remove_elements", s) for s in config.remove_elements)

        list_page = source.list_page
        if list_page.enabled:
            for field_name in ("item_selector", "link_selector", "image_selector", "title_selector"):
                value = getattr(list_page, field_name)
                if value and value.strip():
                    found.append((f"list_page.{field_name}", value))
            pagination = list_page.pagination
            if isinstance(pagination, NextButtonPagination) and pagination.next_selector.strip():
                found.append(("pagination.next_selector", pagination.next_selector))
            if isinstance(pagination, InfiniteScrollPagination) and pagination.load_more_selector.strip():
                found.append(("pagination.load_more_selector", pagination.load_more_selector))

        for field_name in ("meta_title", "meta_description", "og_image"):
            value = getattr(source.seo, field_name)
            if value and value.strip():
                found.append((f"seo.{field_name}", value))

        found.extend(("remove_elements", s) for s in source.remove_elements)
        return found

    def require_valid(self, source: Source) -> None:
        """
        Raise if a source is invalid.

        Raises:
            ConfigValidationError: With every validation error.
        """
        errors = self.validate(source)
        if errors:
            raise ConfigValidationError(errors)

    def default_source(self, kind: ContentKind, url: str) -> Source:
        """Build an ad-hoc source with generic selectors for ``url``'s site."""
        parsed = urlparse(url)
        selectors = (
            SelectorSets(article=DEFAULT_ARTICLE_SELECTORS)
            if kind == ContentKind.ARTICLE
            else SelectorSets(product=DEFAULT_PRODUCT_SELECTORS)
        )
        return Source(
            id=f"default:{kind.value}",
            name=f"Default {kind.value}",
            base_url=f"{parsed.scheme}://{parsed.netloc}",
            kind=kind,
            selectors=selectors,
            request_policy={
                "delay_ms": self._global_config.default_request_delay_ms,
                "timeout_ms": self._global_config.request_timeout * 1000,
            },
        )


# Global registry instance
_default_registry: SourceRegistry | None = None


def get_default_registry() -> SourceRegistry:
    """
    Get the default source registry instance.

    Loads configuration from the path specified in SOURCES_CONFIG_PATH
    environment variable, or falls back to config/sources.yaml.

    Returns:
        The global SourceRegistry instance
    """
    global _default_registry

    if _default_registry is None:
        _default_registry = SourceRegistry()

        config_path = os.environ.get("SOURCES_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            # Default to config/sources.yaml relative to project root
            project_root = Path(__file__).parent.parent.parent
            path = project_root / "config" / "sources.yaml"

        if path.exists():
            _default_registry.load_config(path)

    return _default_registry


def reset_default_registry() -> None:
    """Reset the default registry (useful for testing)."""
    global _default_registry
    _default_registry = None
