"""
Image storage for report photos
Validates uploads and hands back a URL the report keeps
"""

import logging
import uuid
from pathlib import Path
from typing import Dict, Optional

from src.core.config import settings
from src.core.constants import ALLOWED_IMAGE_TYPES
from src.core.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def validate_image(data: bytes, mime_type: str, max_bytes: Optional[int] = None) -> str:
    """
    Check an upload against the allowed types and size limit.

    Returns:
        File extension for the mime type
    """
    max_bytes = max_bytes or settings.max_image_bytes
    extension = ALLOWED_IMAGE_TYPES.get((mime_type or "").lower())
    if extension is None:
        raise ValidationError(
            "Invalid file type. Only JPEG, PNG and WebP are allowed",
            {"mime_type": mime_type},
        )
    if not data:
        raise ValidationError("Image file is empty")
    if len(data) > max_bytes:
        raise ValidationError(
            f"Image exceeds {max_bytes} bytes",
            {"size": len(data), "max_bytes": max_bytes},
        )
    return extension


class LocalImageStore:
    """Writes images under a directory and serves them from a URL prefix."""

    def __init__(
        self,
        directory: Optional[str] = None,
        url_prefix: str = "/uploads",
        max_bytes: Optional[int] = None
    ):
        self.directory = Path(directory or settings.image_storage_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes or settings.max_image_bytes

    def save(self, data: bytes, mime_type: str) -> str:
        extension = validate_image(data, mime_type, self.max_bytes)
        self.directory.mkdir(parents=True, exist_ok=True)

        filename = f"{uuid.uuid4().hex}{extension}"
        (self.directory / filename).write_bytes(data)

        logger.info(f"Stored image {filename} ({len(data)} bytes)")
        return f"{self.url_prefix}/{filename}"

    def load(self, url: str) -> bytes:
        path = self.directory / url.rsplit("/", 1)[-1]
        if not path.is_file():
            raise NotFoundError("Image", url)
        return path.read_bytes()


class InMemoryImageStore:
    """Keeps images in a dict; for tests and local runs."""

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes or settings.max_image_bytes
        self.images: Dict[str, bytes] = {}

    def save(self, data: bytes, mime_type: str) -> str:
        extension = validate_image(data, mime_type, self.max_bytes)
        url = f"memory://{uuid.uuid4().hex}{extension}"
        self.images[url] = data
        return url

    def load(self, url: str) -> bytes:
        try:
            return self.images[url]
        except KeyError:
            raise NotFoundError("Image", url)
