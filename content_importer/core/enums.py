"""Enums for crawl sources, jobs and catalog items."""

from enum import Enum


class ContentKind(str, Enum):
    """Kind of catalog content a source produces."""

    ARTICLE = "article"
    PRODUCT = "product"


class JobStatus(str, Enum):
    """Persisted crawl job status (stable wire format)."""

    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    SLUG_CONFLICT = "slug_conflict"
    PENDING_REVIEW = "pending_review"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.DUPLICATE, JobStatus.SLUG_CONFLICT}
)


class PublishStatus(str, Enum):
    """Publish status requested for imported content."""

    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    PUBLISHED = "published"


class DedupOutcome(str, Enum):
    """Result of checking a candidate against the catalog."""

    UNIQUE = "unique"
    DUPLICATE = "duplicate"
    SLUG_CONFLICT = "slug_conflict"


class BatchItemStatus(str, Enum):
    """Outcome of one URL in a direct batch import."""

    SUCCESS = "success"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    SLUG_CONFLICT = "slug_conflict"
