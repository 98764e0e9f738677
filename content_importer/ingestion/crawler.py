"""
Web Crawler Module
==================

Provides HTTP fetching of static HTML pages with per-source headers
and timeouts. Failures are raised as typed errors so callers can tell
a timeout from a non-2xx response from a connection failure.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

import httpx

from content_importer.core.errors import FetchError, HttpStatusError, NetworkError, RequestTimeoutError

if TYPE_CHECKING:
    from content_importer.core.schema import Source

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "vi-VN,vi;q=0.9,en-US;q=0.8,en;q=0.7",
}


@dataclass
class FetchResult:
    """Result of fetching a URL."""

    url: str
    final_url: str
    text: str
    content_hash: str
    mime_type: str
    status_code: int
    fetched_at: datetime


class Fetcher(Protocol):
    """Anything that can fetch a page for a source."""

    async def fetch(self, url: str, source: Source | None = None) -> FetchResult: ...


class Crawler:
    """
    HTTP fetcher for detail and listing pages.

    Features:
    - Source-specific headers and timeout
    - Content hashing for deduplication
    - Retries on connection failures and timeouts (not on HTTP status)
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 30.0,
        max_retries: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._transport = transport

    @staticmethod
    def compute_hash(content: bytes) -> str:
        """
        Compute SHA-256 hash of content.

        Args:
            content: Raw bytes to hash

        Returns:
            Hex-encoded SHA-256 hash
        """
        return hashlib.sha256(content).hexdigest()

    def _build_headers(self, source: Source | None) -> dict[str, str]:
        headers = {"User-Agent": self.user_agent, **DEFAULT_HEADERS}
        if source is not None:
            headers.update(source.request_policy.headers)
        return headers

    def _timeout_for(self, source: Source | None) -> float:
        if source is not None:
            return source.request_policy.timeout_ms / 1000
        return self.timeout

    async def fetch(self, url: str, source: Source | None = None) -> FetchResult:
        """
        Fetch a URL.

        Args:
            url: URL to fetch
            source: Optional source supplying headers and timeout

        Returns:
            FetchResult with the decoded body

        Raises:
            RequestTimeoutError: The request exceeded the timeout.
            HttpStatusError: The server answered with a non-2xx status.
            NetworkError: Connection, DNS or protocol failure.
        """
        timeout = self._timeout_for(source)
        headers = self._build_headers(source)
        last_error: FetchError | None = None

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                    response = await client.get(url, headers=headers, follow_redirects=True)
            except httpx.TimeoutException:
                last_error = RequestTimeoutError(url, f"Timeout fetching {url} after {timeout}s")
                logger.warning(f"Timeout fetching {url} (attempt {attempt + 1}/{self.max_retries})")
            except httpx.HTTPError as e:
                last_error = NetworkError(url, str(e) or e.__class__.__name__)
                logger.warning(f"HTTP error fetching {url}: {e} (attempt {attempt + 1}/{self.max_retries})")
            else:
                if not 200 <= response.status_code < 300:
                    raise HttpStatusError(url, response.status_code)

                content = response.content
                return FetchResult(
                    url=url,
                    final_url=str(response.url),
                    text=response.text,
                    content_hash=self.compute_hash(content),
                    mime_type=response.headers.get("content-type", "").split(";")[0].strip(),
                    status_code=response.status_code,
                    fetched_at=datetime.now(UTC),
                )

            # Wait before retry with exponential backoff
            if attempt < self.max_retries - 1:
                await asyncio.sleep(2**attempt)

        assert last_error is not None
        raise last_error


# Global crawler instance
_default_crawler: Crawler | None = None


def get_default_crawler() -> Crawler:
    """Get the crawler configured from the registry's global settings."""
    global _default_crawler

    if _default_crawler is None:
        from content_importer.ingestion.registry import get_default_registry

        global_config = get_default_registry().global_config
        _default_crawler = Crawler(
            user_agent=global_config.user_agent,
            timeout=global_config.request_timeout,
            max_retries=global_config.max_retries,
        )
    return _default_crawler


def reset_default_crawler() -> None:
    """Reset the default crawler (useful for testing)."""
    global _default_crawler
    _default_crawler = None
