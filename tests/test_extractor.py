"""Tests for the detail extractor."""

import pytest

from content_importer.core.enums import ContentKind
from content_importer.core.errors import ConfigValidationError, RequiredFieldMissingError
from content_importer.core.schema import (
    ArticleSelectors,
    FieldConfig,
    ImageFieldConfig,
    ProductSelectors,
    SelectorSets,
    Source,
)
from content_importer.ingestion.extractor import DetailExtractor

ARTICLE_HTML = """
<html>
<head>
  <title>Page title</title>
  <meta property="og:title" content="OG title">
  <meta property="og:description" content="OG description">
  <meta property="og:image" content="https://cdn.example.com/og.jpg">
</head>
<body>
  <h1 class="title">  Cà phê sữa đá  </h1>
  <p class="sapo">Một ly cà phê ngon</p>
  <script>track();</script>
  <article class="detail" onclick="spy()">
    <p>Đoạn một</p>
    <img src="data:image/gif;base64,R0lGOD" data-src="/uploads/ly-ca-phe.jpg" width="600" height="400">
    <div class="related">Tin liên quan</div>
    <img src="https://www.facebook.com/tr?id=1" width="1" height="1">
    <p>Đoạn hai</p>
  </article>
  <span class="author">Tác giả: Lan Anh</span>
</body>
</html>
"""

PRODUCT_HTML = """
<html><body>
  <h1 class="name">Máy xay sinh tố</h1>
  <div class="price">Giá: 1.290.000đ</div>
  <div class="old-price">1.590.000đ</div>
  <div class="sku">MX-01</div>
  <div class="gallery">
    <img src="/p/1.jpg"><img src="/p/2.jpg"><img src="/p/1.jpg">
  </div>
  <div class="desc"><p>Công suất lớn</p></div>
</body></html>
"""


def article_source(**overrides) -> Source:
    selectors = ArticleSelectors(
        title="h1.title",
        content="article.detail",
        excerpt="p.sapo",
        author="span.author",
        **overrides,
    )
    return Source(name="news", base_url="https://news.example.com", selectors=SelectorSets(article=selectors))


def product_source() -> Source:
    selectors = ProductSelectors(
        name="h1.name",
        price=".price",
        original_price=".old-price",
        sku=".sku",
        description=".desc",
        images=[".gallery img"],
        field_configs={"price": FieldConfig(transforms=[{"type": "removeNonDigit"}])},
        image_configs={"images": ImageFieldConfig(skip_small_images=False)},
    )
    return Source(
        name="shop",
        base_url="https://shop.example.com",
        kind=ContentKind.PRODUCT,
        selectors=SelectorSets(product=selectors),
    )


class TestArticleExtraction:
    """Tests for article records."""

    @pytest.mark.asyncio
    async def test_basic_fields(self) -> None:
        record = await DetailExtractor().extract(ARTICLE_HTML, article_source(), "https://news.example.com/a/1")

        assert record.kind == ContentKind.ARTICLE
        assert record.title == "Cà phê sữa đá"
        assert record.text("excerpt") == "Một ly cà phê ngon"
        assert record.text("author") == "Tác giả: Lan Anh"
        assert "Đoạn một" in record.text("content")
        assert "track()" not in record.text("content")
        assert "onclick" not in record.text("content")

    @pytest.mark.asyncio
    async def test_content_images_resolved_and_filtered(self) -> None:
        record = await DetailExtractor().extract(ARTICLE_HTML, article_source(), "https://news.example.com/a/1")

        assert record.items("content_images") == ["https://news.example.com/uploads/ly-ca-phe.jpg"]
        content = record.text("content")
        assert 'src="https://news.example.com/uploads/ly-ca-phe.jpg"' in content
        assert "facebook.com/tr" not in content
        assert "data-src" not in content

    @pytest.mark.asyncio
    async def test_featured_falls_back_to_first_content_image(self) -> None:
        source = article_source(use_front_content_image_as_featured=True)
        record = await DetailExtractor().extract(ARTICLE_HTML, source, "https://news.example.com/a/1")

        assert record.text("featured_image") == "https://news.example.com/uploads/ly-ca-phe.jpg"

    @pytest.mark.asyncio
    async def test_no_featured_without_fallback(self) -> None:
        record = await DetailExtractor().extract(ARTICLE_HTML, article_source(), "https://news.example.com/a/1")
        assert record.text("featured_image") == ""

    @pytest.mark.asyncio
    async def test_featured_from_meta_attribute(self) -> None:
        source = article_source(featured_image="meta[property='og:image']::attr(content)")
        record = await DetailExtractor().extract(ARTICLE_HTML, source, "https://news.example.com/a/1")
        assert record.text("featured_image") == "https://cdn.example.com/og.jpg"

    @pytest.mark.asyncio
    async def test_field_level_removal_and_transforms(self) -> None:
        source = article_source(
            field_configs={
                "content": FieldConfig(remove_elements=[".related"]),
                "author": FieldConfig(transforms=[{"type": "replace", "find": "Tác giả:", "replace": ""}, {"type": "trim"}]),
            }
        )
        record = await DetailExtractor().extract(ARTICLE_HTML, source, "https://news.example.com/a/1")

        assert "Tin liên quan" not in record.text("content")
        assert record.text("author") == "Lan Anh"

    @pytest.mark.asyncio
    async def test_seo_fields(self) -> None:
        record = await DetailExtractor().extract(ARTICLE_HTML, article_source(), "https://news.example.com/a/1")
        assert record.text("meta_title") == "OG title"
        assert record.text("meta_description") == "OG description"

    @pytest.mark.asyncio
    async def test_missing_title_raises(self) -> None:
        source = article_source()
        source.selectors.article.title = "h1.missing"
        with pytest.raises(RequiredFieldMissingError):
            await DetailExtractor().extract(ARTICLE_HTML, source, "https://news.example.com/a/1")

    @pytest.mark.asyncio
    async def test_missing_content_raises(self) -> None:
        source = article_source()
        source.selectors.article.content = "div.nothing"
        with pytest.raises(RequiredFieldMissingError):
            await DetailExtractor().extract(ARTICLE_HTML, source, "https://news.example.com/a/1")

    @pytest.mark.asyncio
    async def test_no_selectors_for_kind(self) -> None:
        with pytest.raises(ConfigValidationError):
            await DetailExtractor().extract(
                ARTICLE_HTML, article_source(), "https://news.example.com/a/1", kind=ContentKind.PRODUCT
            )


class TestProductExtraction:
    """Tests for product records."""

    @pytest.mark.asyncio
    async def test_product_fields(self) -> None:
        record = await DetailExtractor().extract(PRODUCT_HTML, product_source(), "https://shop.example.com/p/1")

        assert record.title == "Máy xay sinh tố"
        assert record.text("price") == "1290000"
        assert record.text("original_price") == "1.590.000đ"
        assert record.text("sku") == "MX-01"
        assert "Công suất lớn" in record.text("description")
        assert record.items("images") == [
            "https://shop.example.com/p/1.jpg",
            "https://shop.example.com/p/2.jpg",
        ]

    @pytest.mark.asyncio
    async def test_missing_price_raises(self) -> None:
        source = product_source()
        source.selectors.product.price = ".no-price"
        with pytest.raises(RequiredFieldMissingError):
            await DetailExtractor().extract(PRODUCT_HTML, source, "https://shop.example.com/p/1")
