"""Error taxonomy for the import pipeline."""

from __future__ import annotations


class CrawlerError(Exception):
    """Base class for all import pipeline errors."""


class ConfigValidationError(CrawlerError):
    """Source configuration is invalid; raised before any request is made."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid configuration")


class FetchError(CrawlerError):
    """Base class for page fetch failures."""

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(message)


class NetworkError(FetchError):
    """Connection, DNS or protocol failure."""


class HttpStatusError(NetworkError):
    """The server answered with a non-2xx status."""

    def __init__(self, url: str, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(url, f"Failed to fetch {url}: HTTP {status_code}")


class RequestTimeoutError(FetchError):
    """The request exceeded the configured timeout."""


class RequiredFieldMissingError(CrawlerError):
    """A mandatory field could not be extracted."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"Required field '{field}' not found")


class TransformStepError(CrawlerError):
    """A single transform step could not be applied."""


class ImageUploadError(CrawlerError):
    """The asset store rejected or failed to store an image."""


class DuplicateContentError(CrawlerError):
    """The content already exists in the catalog."""

    def __init__(self, existing_id: str) -> None:
        self.existing_id = existing_id
        super().__init__(f"Content already exists: {existing_id}")


class SlugConflictError(CrawlerError):
    """The generated slug is already used by a different item."""

    def __init__(self, slug: str) -> None:
        self.slug = slug
        super().__init__(f'Slug "{slug}" already exists')


class CatalogWriteError(CrawlerError):
    """Persisting a catalog item failed."""


class JobStateError(CrawlerError):
    """A job is not in the state required for the requested transition."""


class JobNotFoundError(CrawlerError, LookupError):
    """No job with the given id exists."""


class SourceNotFoundError(CrawlerError, LookupError):
    """No source with the given id or name exists."""
