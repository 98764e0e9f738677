"""Tests for the source registry."""

from pathlib import Path

import pytest

from content_importer.core.enums import ContentKind
from content_importer.core.errors import ConfigValidationError, SourceNotFoundError
from content_importer.core.schema import (
    ArticleSelectors,
    CategoryMapping,
    ListPageConfig,
    NextButtonPagination,
    NumberedUrlPagination,
    ProductSelectors,
    SelectorSets,
    SeoConfig,
    Source,
)
from content_importer.ingestion.registry import SourceRegistry, get_default_registry, numbered_page_url

SOURCES_YAML = """
global:
  request_timeout: 10
  default_request_delay_ms: 250
  batch_item_delay_ms: 0

sources:
  - id: blog
    name: Example Blog
    base_url: https://blog.example.com
    kind: article
    selectors:
      article:
        title: h1
        content: .post-body
    request_policy:
      delay_ms: 2000
  - id: shop
    name: Example Shop
    base_url: https://shop.example.com
    kind: product
    is_active: false
    selectors:
      product:
        name: h1.product
        price: .price
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "sources.yaml"
    path.write_text(SOURCES_YAML)
    return path


def article_source(**overrides) -> Source:
    data = {
        "name": "blog",
        "base_url": "https://blog.example.com",
        "selectors": SelectorSets(article=ArticleSelectors(title="h1", content=".post")),
    }
    data.update(overrides)
    return Source(**data)


class TestLoadConfig:
    """Tests for loading sources.yaml."""

    def test_loads_sources_and_globals(self, config_file: Path) -> None:
        registry = SourceRegistry()
        registry.load_config(config_file)

        assert len(registry.list_sources()) == 2
        assert [s.id for s in registry.list_active_sources()] == ["blog"]
        assert registry.global_config.request_timeout == 10
        assert registry.global_config.batch_item_delay_ms == 0

    def test_global_policy_defaults_applied(self, config_file: Path) -> None:
        registry = SourceRegistry()
        registry.load_config(config_file)

        assert registry.get("blog").request_policy.delay_ms == 2000
        assert registry.get("blog").request_policy.timeout_ms == 10000
        assert registry.get("shop").request_policy.delay_ms == 250

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            SourceRegistry().load_config(tmp_path / "missing.yaml")

    def test_malformed_source(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("sources:\n  - name: broken\n    kind: video\n")

        with pytest.raises(ConfigValidationError) as exc_info:
            SourceRegistry().load_config(path)
        assert any("broken" in error for error in exc_info.value.errors)


class TestLookup:
    """Tests for get/find/unregister."""

    def test_get_by_id_or_name(self, config_file: Path) -> None:
        registry = SourceRegistry()
        registry.load_config(config_file)

        assert registry.get("Example Blog").id == "blog"
        assert registry.find("nope") is None
        with pytest.raises(SourceNotFoundError):
            registry.get("nope")

    def test_by_domain_ignores_inactive(self, config_file: Path) -> None:
        registry = SourceRegistry()
        registry.load_config(config_file)

        assert registry.get_source_by_domain("BLOG.example.com").id == "blog"
        assert registry.get_source_by_domain("shop.example.com") is None

    def test_unregister(self) -> None:
        registry = SourceRegistry()
        source = article_source()
        registry.register(source)

        assert registry.unregister(source.id) is True
        assert registry.unregister(source.id) is False
        assert registry.list_sources() == []

    def test_default_source(self) -> None:
        registry = SourceRegistry()
        source = registry.default_source(ContentKind.PRODUCT, "https://shop.example.com/p/1?x=1")

        assert source.base_url == "https://shop.example.com"
        assert source.selectors.product is not None
        assert source.selectors.article is None
        assert registry.validate(source) == []


class TestValidate:
    """Tests for offline source validation."""

    def test_valid_source(self) -> None:
        assert SourceRegistry.validate(article_source()) == []

    def test_relative_base_url(self) -> None:
        errors = SourceRegistry.validate(article_source(base_url="/blog"))
        assert any("absolute" in error for error in errors)

    def test_missing_selector_set(self) -> None:
        errors = SourceRegistry.validate(article_source(kind=ContentKind.PRODUCT))
        assert errors == ["No product selectors configured"]

    def test_empty_required_selectors(self) -> None:
        source = article_source(
            kind=ContentKind.PRODUCT,
            selectors=SelectorSets(product=ProductSelectors(name="", price=" ")),
        )
        errors = SourceRegistry.validate(source)
        assert "Name selector is required for products" in errors
        assert "Price selector is required for products" in errors

    def test_invalid_css(self) -> None:
        source = article_source(selectors=SelectorSets(article=ArticleSelectors(title="h1[", content=".post")))
        errors = SourceRegistry.validate(source)
        assert len(errors) == 1
        assert errors[0].startswith("article.title:")

    def test_invalid_seo_selector(self) -> None:
        source = article_source(seo=SeoConfig(meta_title="h1[[[", og_image="meta[property='og:image']::attr(content)"))
        errors = SourceRegistry.validate(source)
        assert len(errors) == 1
        assert errors[0].startswith("seo.meta_title:")

    def test_numbered_pattern_requires_placeholder(self) -> None:
        list_page = ListPageConfig(
            enabled=True,
            item_selector=".item",
            link_selector="a",
            pagination=NumberedUrlPagination(url_pattern="/page/2"),
        )
        errors = SourceRegistry.validate(article_source(list_page=list_page))
        assert errors == ["URL pattern '/page/2' must contain {n}"]

    def test_enabled_list_page_requires_selectors(self) -> None:
        list_page = ListPageConfig(enabled=True, pagination=NextButtonPagination())
        errors = SourceRegistry.validate(article_source(list_page=list_page))
        assert "List page item selector is required when discovery is enabled" in errors
        assert "List page link selector is required when discovery is enabled" in errors
        assert "Next button selector is required for next_button pagination" in errors

    def test_disabled_list_page_not_checked(self) -> None:
        list_page = ListPageConfig(enabled=False, pagination=NextButtonPagination())
        assert SourceRegistry.validate(article_source(list_page=list_page)) == []

    def test_category_mapping_url(self) -> None:
        mapping = CategoryMapping(category_id="c1", list_page_url="ftp://files.example.com/list")
        errors = SourceRegistry.validate(article_source(category_mappings=[mapping]))
        assert len(errors) == 1

    def test_require_valid_raises_with_all_errors(self) -> None:
        source = article_source(base_url="", kind=ContentKind.PRODUCT)
        with pytest.raises(ConfigValidationError) as exc_info:
            SourceRegistry().require_valid(source)
        assert len(exc_info.value.errors) == 2


class TestNumberedPageUrl:
    """Tests for numbered_page_url."""

    def test_relative_query(self) -> None:
        assert numbered_page_url("?page={n}", 3, "https://a.com/list") == "https://a.com/list?page=3"

    def test_relative_path(self) -> None:
        assert numbered_page_url("/tin-tuc-p{n}", 2, "https://a.com/tin-tuc") == "https://a.com/tin-tuc-p2"

    def test_absolute(self) -> None:
        assert numbered_page_url("https://b.com/p/{n}", 1, "https://a.com/") == "https://b.com/p/1"


class TestDefaultRegistry:
    """Tests for the process-wide registry."""

    def test_bundled_config_is_valid(self, monkeypatch) -> None:
        config_path = Path(__file__).parent.parent / "config" / "sources.yaml"
        monkeypatch.setenv("SOURCES_CONFIG_PATH", str(config_path))

        registry = get_default_registry()

        assert {s.id for s in registry.list_sources()} == {"vnexpress-business", "demo-shop"}
        for source in registry.list_sources():
            assert registry.validate(source) == []

    def test_env_path_missing_file_gives_empty_registry(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("SOURCES_CONFIG_PATH", str(tmp_path / "none.yaml"))

        assert get_default_registry().list_sources() == []
