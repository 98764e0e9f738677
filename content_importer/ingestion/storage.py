"""
Asset Storage Module
====================

Provides abstract and concrete implementations of the asset store that
re-hosts images found on imported pages.
"""

from __future__ import annotations

import hashlib
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import httpx

from content_importer.core.errors import ImageUploadError

logger = logging.getLogger(__name__)


@dataclass
class StoredAsset:
    """Metadata about a stored asset."""

    id: str
    url: str
    folder: str
    size_bytes: int
    created_at: datetime


@dataclass
class AssetPage:
    """One page of a folder listing."""

    items: list[StoredAsset]
    next_cursor: str | None = None


class AssetStore(ABC):
    """
    Abstract base class for asset storage.

    Implementations receive remote image URLs (or raw bytes), store them
    and return a hosted URL.
    """

    @abstractmethod
    async def upload(
        self,
        source: str | bytes,
        folder: str,
        max_size_mb: float = 5.0,
    ) -> StoredAsset:
        """
        Store an image.

        Args:
            source: Remote URL to download, or raw bytes
            folder: Target folder
            max_size_mb: Reject originals larger than this

        Returns:
            StoredAsset with the hosted URL

        Raises:
            ImageUploadError: Download failed or the image is too large
        """
        pass

    @abstractmethod
    def delete(self, asset_id: str) -> bool:
        """Delete an asset. Returns False if not found."""
        pass

    @abstractmethod
    def move(self, asset_ids: list[str], folder: str) -> dict[str, str | None]:
        """
        Move assets to another folder.

        Returns:
            Mapping of old asset ID to new asset ID (None if not found)
        """
        pass

    @abstractmethod
    def list_by_folder(self, folder: str, cursor: str | None = None, limit: int = 50) -> AssetPage:
        """List assets in a folder, ``limit`` at a time."""
        pass


class LocalAssetStore(AssetStore):
    """
    Local filesystem asset store.

    Directory structure:
        {base_path}/{folder}/{sha256}.{ext}

    Asset IDs are ``{folder}/{filename}``; public URLs are
    ``{public_base_url}/{folder}/{filename}``.
    """

    # Map MIME types to file extensions
    MIME_EXTENSIONS = {
        "image/jpeg": "jpg",
        "image/jpg": "jpg",
        "image/png": "png",
        "image/gif": "gif",
        "image/webp": "webp",
        "image/svg+xml": "svg",
        "image/avif": "avif",
    }

    def __init__(
        self,
        base_path: str | Path,
        public_base_url: str = "/assets",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize local asset storage.

        Args:
            base_path: Base directory for stored files
            public_base_url: URL prefix under which files are served
            timeout: Download timeout in seconds
            transport: Optional httpx transport (used in tests)
        """
        self.base_path = Path(base_path).expanduser().resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _folder_path(self, folder: str) -> Path:
        parts = PurePosixPath(folder.strip("/")).parts
        if not parts or any(p in ("..", ".") for p in parts):
            raise ImageUploadError(f"Invalid asset folder: '{folder}'")
        return self.base_path.joinpath(*parts)

    def _get_extension(self, mime_type: str, url: str | None) -> str:
        """Get file extension from the MIME type, else the URL path."""
        ext = self.MIME_EXTENSIONS.get(mime_type)
        if ext:
            return ext
        if url:
            suffix = PurePosixPath(urlparse(url).path).suffix.lower().lstrip(".")
            if suffix in self.MIME_EXTENSIONS.values() or suffix == "jpeg":
                return suffix
        return "bin"

    def _to_asset(self, path: Path) -> StoredAsset:
        relative = path.relative_to(self.base_path).as_posix()
        stat = path.stat()
        return StoredAsset(
            id=relative,
            url=f"{self.public_base_url}/{relative}",
            folder=path.parent.relative_to(self.base_path).as_posix(),
            size_bytes=stat.st_size,
            created_at=datetime.fromtimestamp(stat.st_mtime, UTC),
        )

    async def _download(self, url: str, max_bytes: int) -> tuple[bytes, str]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                async with client.stream("GET", url, follow_redirects=True) as response:
                    if not 200 <= response.status_code < 300:
                        raise ImageUploadError(f"Failed to download {url}: HTTP {response.status_code}")

                    declared = response.headers.get("content-length")
                    if declared and declared.isdigit() and int(declared) > max_bytes:
                        raise ImageUploadError(f"Image {url} exceeds {max_bytes} bytes")

                    chunks = []
                    received = 0
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if received > max_bytes:
                            raise ImageUploadError(f"Image {url} exceeds {max_bytes} bytes")
                        chunks.append(chunk)

                    mime_type = response.headers.get("content-type", "").split(";")[0].strip()
                    return b"".join(chunks), mime_type
        except httpx.HTTPError as e:
            raise ImageUploadError(f"Failed to download {url}: {e}") from e

    async def upload(
        self,
        source: str | bytes,
        folder: str,
        max_size_mb: float = 5.0,
    ) -> StoredAsset:
        """Download (or take) an image and store it under ``folder``."""
        max_bytes = int(max_size_mb * 1024 * 1024)
        folder_path = self._folder_path(folder)

        if isinstance(source, bytes):
            if len(source) > max_bytes:
                raise ImageUploadError(f"Image exceeds {max_bytes} bytes")
            content, mime_type, url = source, "", None
        else:
            content, mime_type = await self._download(source, max_bytes)
            url = source

        digest = hashlib.sha256(content).hexdigest()
        file_path = folder_path / f"{digest}.{self._get_extension(mime_type, url)}"
        if not file_path.exists():
            folder_path.mkdir(parents=True, exist_ok=True)
            with open(file_path, "wb") as f:
                f.write(content)
            logger.info(f"Stored asset {file_path.name} ({len(content)} bytes) in '{folder}'")

        return self._to_asset(file_path)

    def delete(self, asset_id: str) -> bool:
        """Delete an asset file."""
        file_path = self._folder_path(asset_id)
        if not file_path.is_file():
            return False
        file_path.unlink()
        return True

    def move(self, asset_ids: list[str], folder: str) -> dict[str, str | None]:
        """Move asset files into ``folder``."""
        target = self._folder_path(folder)
        results: dict[str, str | None] = {}
        for asset_id in asset_ids:
            file_path = self._folder_path(asset_id)
            if not file_path.is_file():
                results[asset_id] = None
                continue
            target.mkdir(parents=True, exist_ok=True)
            moved = file_path.rename(target / file_path.name)
            results[asset_id] = moved.relative_to(self.base_path).as_posix()
        return results

    def list_by_folder(self, folder: str, cursor: str | None = None, limit: int = 50) -> AssetPage:
        """
        List assets in a folder ordered by file name.

        The cursor is the last file name of the previous page.
        """
        folder_path = self._folder_path(folder)
        if not folder_path.is_dir():
            return AssetPage(items=[])

        names = sorted(p.name for p in folder_path.iterdir() if p.is_file())
        if cursor:
            names = [n for n in names if n > cursor]

        page = names[:limit]
        next_cursor = page[-1] if len(names) > limit else None
        return AssetPage(items=[self._to_asset(folder_path / n) for n in page], next_cursor=next_cursor)


def get_default_asset_store() -> LocalAssetStore:
    """
    Get the default asset store.

    Uses ASSET_STORAGE_PATH (else the registry's ``asset_storage_path``)
    and the registry's ``asset_public_base_url``.
    """
    from content_importer.ingestion.registry import get_default_registry

    global_config = get_default_registry().global_config
    storage_path = os.environ.get("ASSET_STORAGE_PATH", global_config.asset_storage_path)
    return LocalAssetStore(storage_path, public_base_url=global_config.asset_public_base_url)
