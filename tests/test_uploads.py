"""Tests for image upload validation and storage paths."""

import re

import pytest

from socialsync.config import Bucket
from socialsync.errors import BackendError, NotAuthenticatedError, UploadValidationError
from socialsync.uploads import Uploader, object_path

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def test_object_path():
    assert object_path("u1", "me.PNG", now_ms=1700000000000) == "u1/1700000000000.PNG"
    assert object_path("u1", "archive.tar.gz", now_ms=5) == "u1/5.gz"


class TestValidate:
    @pytest.mark.parametrize(
        "size,content_type,message",
        [
            (0, "image/png", "No file provided"),
            (5 * 1024 * 1024 + 1, "image/png", "File size must be less than 5MB"),
            (10, "application/pdf", "File must be an image (JPEG, PNG, GIF, or WebP)"),
            (10, None, "File must be an image"),
        ],
    )
    def test_rejections(self, backend, size, content_type, message):
        with pytest.raises(UploadValidationError, match=re.escape(message)):
            Uploader(backend).validate(size, content_type)

    @pytest.mark.parametrize("content_type", ["image/jpeg", "image/png", "image/gif", "image/webp"])
    def test_accepted_types(self, backend, content_type):
        Uploader(backend).validate(5 * 1024 * 1024, content_type)


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_returns_public_url(self, backend):
        uploader = Uploader(backend)

        url = await uploader.upload_avatar("me.png", PNG, "image/png")

        upload = backend.uploads[0]
        assert upload["bucket"] == "avatars"
        assert upload["path"].startswith("user-1/")
        assert upload["path"].endswith(".png")
        assert upload["upsert"] is True
        assert upload["cache_control"] == "3600"
        assert url == f"https://project.example.co/storage/v1/object/public/avatars/{upload['path']}"
        assert uploader.progress == 100
        assert uploader.uploading is False

    @pytest.mark.asyncio
    async def test_bucket_helpers(self, backend):
        uploader = Uploader(backend)

        await uploader.upload_post_image("a.jpg", PNG, "image/jpeg")
        await uploader.upload_cover("b.webp", PNG, "image/webp")

        assert [u["bucket"] for u in backend.uploads] == [Bucket.POST_IMAGES, Bucket.COVERS]

    @pytest.mark.asyncio
    async def test_invalid_file_never_reaches_storage(self, backend):
        with pytest.raises(UploadValidationError):
            await Uploader(backend).upload_file("avatars", "doc.pdf", b"%PDF", "application/pdf")

        assert backend.uploads == []

    @pytest.mark.asyncio
    async def test_storage_failure_resets_progress(self, backend):
        backend.fail_on("avatars", "upload", BackendError("bucket not found", status=404))
        uploader = Uploader(backend)

        with pytest.raises(BackendError):
            await uploader.upload_avatar("me.png", PNG, "image/png")

        assert uploader.progress == 0
        assert uploader.uploading is False

    @pytest.mark.asyncio
    async def test_requires_viewer(self, anon_backend):
        with pytest.raises(NotAuthenticatedError):
            await Uploader(anon_backend).upload_avatar("me.png", PNG, "image/png")

    @pytest.mark.asyncio
    async def test_upload_path_guesses_type(self, backend, tmp_path):
        image = tmp_path / "photo.gif"
        image.write_bytes(b"GIF89a" + b"\x00" * 16)

        await Uploader(backend).upload_path("post-images", image)

        assert backend.uploads[0]["content_type"] == "image/gif"
        assert backend.uploads[0]["size"] == 22

    @pytest.mark.asyncio
    async def test_upload_path_missing_file(self, backend, tmp_path):
        with pytest.raises(UploadValidationError, match="No file provided"):
            await Uploader(backend).upload_path("post-images", tmp_path / "missing.png")
