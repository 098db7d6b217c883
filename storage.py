"""Image uploads (profile avatars) stored under MEDIA_ROOT and served from MEDIA_URL."""

import logging
import uuid
from pathlib import Path
from typing import Optional

import config

logger = logging.getLogger(__name__)

IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


class UploadRejected(Exception):
    pass


def validate_image(content_type: Optional[str], size: int, max_bytes: Optional[int] = None) -> str:
    """Return the file extension for an acceptable image, else raise UploadRejected."""
    max_bytes = max_bytes or config.MAX_UPLOAD_BYTES
    ext = IMAGE_TYPES.get((content_type or "").lower())
    if ext is None:
        raise UploadRejected(f"Unsupported file type {content_type!r}; upload a JPEG, PNG, GIF or WebP image")
    if size <= 0:
        raise UploadRejected("File is empty")
    if size > max_bytes:
        raise UploadRejected(f"File is too large ({size} bytes, limit {max_bytes})")
    return ext


class MediaStorage:
    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None, max_bytes: Optional[int] = None):
        self.root = Path(root or config.MEDIA_ROOT)
        self.base_url = (base_url or config.MEDIA_URL).rstrip("/")
        self.max_bytes = max_bytes or config.MAX_UPLOAD_BYTES

    def save(self, data: bytes, content_type: Optional[str], folder: str = "avatars") -> str:
        """Store `data` under a generated key and return its public URL."""
        ext = validate_image(content_type, len(data), self.max_bytes)
        key = f"{folder}/{uuid.uuid4().hex}.{ext}"
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info("Stored upload %s (%d bytes)", key, len(data))
        return f"{self.base_url}/{key}"
