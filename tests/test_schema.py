"""Tests for the configuration and record models."""

import pytest
from pydantic import ValidationError

from content_importer.core.enums import ContentKind, JobStatus, PublishStatus
from content_importer.core.schema import (
    CrawlJob,
    ExtractedRecord,
    FieldConfig,
    ImageFieldConfig,
    MaxLengthTransform,
    NumberedUrlPagination,
    Source,
)


class TestSourceModel:
    """Tests for Source parsing."""

    def test_minimal_source_defaults(self) -> None:
        source = Source(name="s", base_url="https://WWW.Example.com/news")

        assert source.kind == ContentKind.ARTICLE
        assert source.domain == "www.example.com"
        assert source.request_policy.delay_ms == 1000
        assert "script" in source.remove_elements
        assert source.selectors_for() is None
        assert source.list_page.enabled is False

    def test_pagination_discriminated_by_type(self) -> None:
        source = Source.model_validate(
            {
                "name": "s",
                "base_url": "https://a.com",
                "list_page": {"pagination": {"type": "numbered_url", "url_pattern": "?p={n}"}},
            }
        )
        assert isinstance(source.list_page.pagination, NumberedUrlPagination)
        assert source.list_page.pagination.max_pages == 5

    def test_unknown_pagination_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Source.model_validate(
                {"name": "s", "base_url": "https://a.com", "list_page": {"pagination": {"type": "scroll"}}}
            )

    def test_max_pages_minimum(self) -> None:
        with pytest.raises(ValidationError):
            NumberedUrlPagination(url_pattern="?p={n}", max_pages=0)


class TestFieldConfig:
    """Tests for field and image configuration."""

    def test_transforms_parsed(self) -> None:
        config = FieldConfig.model_validate({"transforms": [{"type": "trim"}, {"type": "maxLength", "max": 10}]})

        assert config.transforms[0].type == "trim"
        assert isinstance(config.transforms[1], MaxLengthTransform)
        assert config.transforms[1].ellipsis == "..."

    def test_unknown_transform_rejected(self) -> None:
        with pytest.raises(ValidationError):
            FieldConfig.model_validate({"transforms": [{"type": "uppercaseFirst"}]})

    def test_max_length_requires_max(self) -> None:
        with pytest.raises(ValidationError):
            FieldConfig.model_validate({"transforms": [{"type": "maxLength"}]})

    def test_image_defaults(self) -> None:
        config = ImageFieldConfig()

        assert config.lazy_load_attributes[0] == "data-src"
        assert config.upload_to_asset_store is False
        assert config.skip_tracking_images is True
        assert config.min_image_size == 50


class TestRecordsAndJobs:
    """Tests for ExtractedRecord and CrawlJob."""

    def test_record_accessors(self) -> None:
        record = ExtractedRecord(
            kind=ContentKind.PRODUCT,
            source_url="https://a.com/p",
            fields={"name": "Quạt", "images": ["1.jpg", "2.jpg"], "sku": ""},
        )

        assert record.title == "Quạt"
        assert record.text("images") == "1.jpg"
        assert record.items("name") == ["Quạt"]
        assert record.items("sku") == []
        assert record.text("missing") == ""

    def test_job_defaults(self) -> None:
        job = CrawlJob(url="https://a.com/x")

        assert job.status == JobStatus.QUEUED
        assert job.target_status == PublishStatus.PENDING_REVIEW
        assert job.created_at.tzinfo is not None

    def test_terminal_statuses(self) -> None:
        assert JobStatus.SUCCESS.is_terminal
        assert JobStatus.DUPLICATE.is_terminal
        assert not JobStatus.PENDING_REVIEW.is_terminal
        assert not JobStatus.QUEUED.is_terminal
