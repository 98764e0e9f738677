"""Tests for the local asset store."""

import tempfile

import httpx
import pytest

from content_importer.core.errors import ImageUploadError
from content_importer.ingestion.storage import LocalAssetStore

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def image_transport(body: bytes = PNG_BYTES, status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, content=body, headers={"content-type": "image/png"})

    return httpx.MockTransport(handler)


class TestLocalAssetStore:
    """Tests for LocalAssetStore."""

    @pytest.fixture
    def tmpdir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.mark.asyncio
    async def test_upload_from_url(self, tmpdir) -> None:
        store = LocalAssetStore(tmpdir, transport=image_transport())
        asset = await store.upload("https://cdn.example.com/a.png", folder="news")

        assert asset.url.startswith("/assets/news/")
        assert asset.url.endswith(".png")
        assert asset.folder == "news"
        assert asset.size_bytes == len(PNG_BYTES)

    @pytest.mark.asyncio
    async def test_same_content_stored_once(self, tmpdir) -> None:
        store = LocalAssetStore(tmpdir, transport=image_transport())
        first = await store.upload("https://cdn.example.com/a.png", folder="news")
        second = await store.upload("https://cdn.example.com/copy-of-a.png", folder="news")

        assert first.id == second.id
        assert len(store.list_by_folder("news").items) == 1

    @pytest.mark.asyncio
    async def test_oversized_image_rejected(self, tmpdir) -> None:
        store = LocalAssetStore(tmpdir, transport=image_transport(body=b"x" * 2048))
        with pytest.raises(ImageUploadError):
            await store.upload("https://cdn.example.com/big.png", folder="news", max_size_mb=0.001)

    @pytest.mark.asyncio
    async def test_http_error_raises_upload_error(self, tmpdir) -> None:
        store = LocalAssetStore(tmpdir, transport=image_transport(status_code=404))
        with pytest.raises(ImageUploadError):
            await store.upload("https://cdn.example.com/missing.png", folder="news")

    @pytest.mark.asyncio
    async def test_folder_traversal_rejected(self, tmpdir) -> None:
        store = LocalAssetStore(tmpdir)
        with pytest.raises(ImageUploadError):
            await store.upload(PNG_BYTES, folder="../outside")

    @pytest.mark.asyncio
    async def test_move_and_delete(self, tmpdir) -> None:
        store = LocalAssetStore(tmpdir)
        asset = await store.upload(PNG_BYTES, folder="inbox")

        moved = store.move([asset.id, "inbox/missing.png"], "archive")
        assert moved["inbox/missing.png"] is None
        new_id = moved[asset.id]
        assert new_id.startswith("archive/")

        assert store.delete(new_id) is True
        assert store.delete(new_id) is False

    @pytest.mark.asyncio
    async def test_list_by_folder_pages(self, tmpdir) -> None:
        store = LocalAssetStore(tmpdir)
        for index in range(3):
            await store.upload(PNG_BYTES + bytes([index]), folder="gallery")

        first = store.list_by_folder("gallery", limit=2)
        assert len(first.items) == 2
        assert first.next_cursor is not None

        second = store.list_by_folder("gallery", cursor=first.next_cursor, limit=2)
        assert len(second.items) == 1
        assert second.next_cursor is None
