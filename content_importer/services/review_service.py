"""Review service for crawl jobs parked in pending_review."""

import logging
from dataclasses import dataclass

from pydantic import BaseModel
from sqlalchemy.orm import Session

from content_importer.core.enums import ContentKind, JobStatus, PublishStatus
from content_importer.core.errors import CatalogWriteError
from content_importer.core.schema import CrawlJob, ExtractedRecord
from content_importer.db.repositories import CatalogRepository, CrawlJobRepository
from content_importer.ingestion.dedup import normalize_url
from content_importer.ingestion.pipeline import slug_for, write_record

logger = logging.getLogger(__name__)


class ApprovalEdits(BaseModel):
    """Operator edits applied over an extracted record before approval."""

    title: str | None = None
    excerpt: str | None = None
    category_id: str | None = None
    price: str | None = None
    original_price: str | None = None
    featured_image: str | None = None
    status: PublishStatus = PublishStatus.DRAFT


@dataclass
class ApprovalResult:
    """Result of an approval."""

    success: bool
    job_id: str
    item_id: str | None = None
    slug: str | None = None
    error_message: str | None = None


class ReviewService:
    """Service for editing and approving pending-review jobs."""

    def __init__(self, session: Session):
        """
        Initialize the review service.

        Args:
            session: SQLAlchemy database session.
        """
        self.session = session
        self.job_repo = CrawlJobRepository(session)
        self.catalog = CatalogRepository(session)

    def get_pending(self, job_id: str) -> ExtractedRecord | None:
        """
        Get the stored record of a pending-review job.

        Args:
            job_id: The job ID.

        Returns:
            The record, or None if the job is missing or not pending review.
        """
        job = self.job_repo.get_by_id(job_id)
        if job is None or job.status != JobStatus.PENDING_REVIEW or not job.extracted_data:
            return None
        return ExtractedRecord.model_validate(job.extracted_data)

    def save_edits(self, job_id: str, edits: ApprovalEdits) -> ExtractedRecord | None:
        """
        Store operator edits on a pending job without committing to the catalog.

        The job stays in pending_review.

        Returns:
            The edited record, or None if the job is not pending review.
        """
        record = self.get_pending(job_id)
        if record is None:
            return None
        record = self._apply_edits(record, edits)
        if not self.job_repo.save_extracted(job_id, record.model_dump(mode="json")):
            return None
        self.session.flush()
        logger.info(f"Saved review edits for job {job_id}")
        return record

    def approve(self, job_id: str, edits: ApprovalEdits | None = None) -> ApprovalResult:
        """
        Approve a pending-review job and create its catalog item.

        The item insert and the pending_review -> success transition share
        one transaction; on any failure both are rolled back.

        Args:
            job_id: The job ID.
            edits: Optional operator edits and target category/status.

        Returns:
            ApprovalResult with the created item ID and slug.
        """
        edits = edits or ApprovalEdits()
        job = self.job_repo.get_by_id(job_id)

        if job is None:
            return ApprovalResult(success=False, job_id=job_id, error_message=f"Job {job_id} not found")

        if job.status != JobStatus.PENDING_REVIEW:
            return ApprovalResult(
                success=False,
                job_id=job_id,
                error_message=f"Job is {job.status.value}, not pending review",
            )

        if not job.extracted_data:
            return ApprovalResult(success=False, job_id=job_id, error_message="No extracted data found")

        if edits.status == PublishStatus.PENDING_REVIEW:
            return ApprovalResult(
                success=False,
                job_id=job_id,
                error_message="Approval status must be draft or published",
            )

        record = self._apply_edits(ExtractedRecord.model_validate(job.extracted_data), edits)
        if not record.title:
            return ApprovalResult(success=False, job_id=job_id, error_message="Title is required")

        try:
            slug = self.catalog.ensure_unique_slug(job.kind, slug_for(record))
            item_id = write_record(
                self.catalog,
                record,
                slug=slug,
                category_id=edits.category_id or job.category_id,
                status=edits.status.value,
                source_url=normalize_url(job.url),
            )
            if not self.job_repo.transition(
                job_id,
                JobStatus.PENDING_REVIEW,
                JobStatus.SUCCESS,
                created_item_id=item_id,
                error_message=None,
            ):
                raise CatalogWriteError(f"Job {job_id} is no longer pending review")
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Failed to approve job {job_id}: {e}")
            return ApprovalResult(
                success=False,
                job_id=job_id,
                error_message=f"Failed to approve: {str(e)}",
            )

        logger.info(f"Approved job {job_id} -> {job.kind.value} {item_id} ({slug})")
        return ApprovalResult(success=True, job_id=job_id, item_id=item_id, slug=slug)

    def _apply_edits(self, record: ExtractedRecord, edits: ApprovalEdits) -> ExtractedRecord:
        """
        Merge edits over a record.

        Args:
            record: The stored record.
            edits: Operator edits; None values keep the extracted value.

        Returns:
            A new ExtractedRecord.
        """
        fields = dict(record.fields)
        title_key = "title" if record.kind == ContentKind.ARTICLE else "name"
        updates = {
            title_key: edits.title,
            "excerpt": edits.excerpt,
            "price": edits.price,
            "original_price": edits.original_price,
            "featured_image": edits.featured_image,
        }
        for key, value in updates.items():
            if value is not None:
                fields[key] = value
        return record.model_copy(update={"fields": fields})

    def pending_jobs(self, limit: int = 50) -> list[CrawlJob]:
        """List jobs awaiting review, newest first."""
        jobs, _ = self.job_repo.list_jobs(JobStatus.PENDING_REVIEW, None, None, 1, limit)
        return jobs
