"""Image uploads to object storage.

Files land at ``<viewer_id>/<epoch_ms>.<ext>`` in the chosen bucket,
overwriting on collision, and are served through the bucket's public URL.
"""

import mimetypes
import time
from pathlib import Path

from socialsync.config import Bucket, settings
from socialsync.errors import UploadValidationError
from socialsync.interfaces import IBackendClient
from socialsync.logging import logger

CACHE_CONTROL_SECONDS = "3600"


def object_path(user_id: str, filename: str, now_ms: int | None = None) -> str:
    """Storage key for an upload.

    Example:
        >>> object_path("u1", "me.png", now_ms=1700000000000)
        'u1/1700000000000.png'
    """
    ext = filename.rsplit(".", 1)[-1]
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{user_id}/{stamp}.{ext}"


class Uploader:
    """Validates and uploads images, tracking progress.

    State:
        uploading: True while an upload runs
        progress: 0 before/after a failed upload, 100 once done
    """

    def __init__(
        self,
        backend: IBackendClient,
        max_bytes: int | None = None,
        allowed_types: tuple[str, ...] | None = None,
    ):
        self.backend = backend
        self.max_bytes = max_bytes or settings.max_upload_bytes
        self.allowed_types = allowed_types or settings.allowed_image_types
        self.uploading = False
        self.progress = 0

    def validate(self, size: int, content_type: str | None) -> None:
        """Check size and type before anything is sent.

        Raises:
            UploadValidationError: If the file is empty, too large or not an
                accepted image type
        """
        if size <= 0:
            raise UploadValidationError("No file provided")
        if size > self.max_bytes:
            limit_mb = self.max_bytes / (1024 * 1024)
            raise UploadValidationError(f"File size must be less than {limit_mb:g}MB")
        if content_type not in self.allowed_types:
            raise UploadValidationError("File must be an image (JPEG, PNG, GIF, or WebP)")

    async def upload_file(
        self,
        bucket: Bucket | str,
        filename: str,
        content: bytes,
        content_type: str | None,
    ) -> str:
        """Upload ``content`` and return its public URL.

        Raises:
            NotAuthenticatedError: If nobody is signed in
            UploadValidationError: If validation fails
            BackendError: If storage rejects the upload
        """
        viewer_id = self.backend.require_user()
        self.validate(len(content), content_type)

        path = object_path(viewer_id, filename)
        self.uploading = True
        self.progress = 0
        try:
            await self.backend.upload(
                str(bucket),
                path,
                content,
                content_type or "application/octet-stream",
                upsert=True,
                cache_control=CACHE_CONTROL_SECONDS,
            )
        except Exception:
            self.progress = 0
            raise
        finally:
            self.uploading = False

        self.progress = 100
        url = self.backend.public_url(str(bucket), path)
        logger.info(f"Uploaded {filename} ({len(content)} bytes) to {bucket}/{path}")
        return url

    async def upload_path(self, bucket: Bucket | str, file_path: Path) -> str:
        """Upload a local file, guessing its type from the extension."""
        if not file_path.is_file():
            raise UploadValidationError(f"No file provided: {file_path}")
        content_type, _ = mimetypes.guess_type(file_path.name)
        return await self.upload_file(bucket, file_path.name, file_path.read_bytes(), content_type)

    async def upload_avatar(self, filename: str, content: bytes, content_type: str | None) -> str:
        return await self.upload_file(Bucket.AVATARS, filename, content, content_type)

    async def upload_post_image(
        self, filename: str, content: bytes, content_type: str | None
    ) -> str:
        return await self.upload_file(Bucket.POST_IMAGES, filename, content, content_type)

    async def upload_cover(self, filename: str, content: bytes, content_type: str | None) -> str:
        return await self.upload_file(Bucket.COVERS, filename, content, content_type)


__all__ = ["Uploader", "object_path", "CACHE_CONTROL_SECONDS"]
