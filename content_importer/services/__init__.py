"""Application services for Content Importer."""

from content_importer.services.review_service import (
    ApprovalEdits,
    ApprovalResult,
    ReviewService,
)

__all__ = [
    "ApprovalEdits",
    "ApprovalResult",
    "ReviewService",
]
