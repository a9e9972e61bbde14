"""
Blob storage for announcement attachments.
Files are written under UPLOAD_DIR and served from /uploads.
"""
import logging
import os
import uuid
from typing import Dict, Protocol

from bulletin.config import settings
from bulletin.errors import ValidationError
from bulletin.models.announcement import ResourceType

logger = logging.getLogger(__name__)

ALLOWED_MIMETYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def blob_folder(announcement_id: str) -> str:
    return f"announcements/{announcement_id}/attachments"


def resource_type_for(mimetype: str) -> ResourceType:
    return ResourceType.IMAGE if mimetype.startswith("image/") else ResourceType.RAW


def validate_file(mimetype: str, size: int, max_size: int = None) -> None:
    """Raise ValidationError for a disallowed type or an oversized file"""
    max_size = max_size or settings.MAX_ATTACHMENT_SIZE
    if mimetype not in ALLOWED_MIMETYPES:
        raise ValidationError(
            "Invalid file type. Only images (JPEG, PNG, WEBP) and documents (PDF, DOC, DOCX) are allowed"
        )
    if size > max_size:
        raise ValidationError(
            f"File too large. Maximum size is {max_size // (1024 * 1024)}MB"
        )


class BlobStore(Protocol):
    async def put(self, announcement_id: str, filename: str, data: bytes, mimetype: str) -> Dict[str, str]:
        ...

    async def delete(self, public_id: str, resource_type: str) -> None:
        ...


class LocalBlobStore:
    """Stores blobs on the local filesystem"""

    def __init__(self, root: str = None, base_url: str = "/uploads"):
        self.root = root or settings.UPLOAD_DIR
        self.base_url = base_url.rstrip("/")

    def _path(self, public_id: str) -> str:
        return os.path.join(self.root, *public_id.split("/"))

    async def put(self, announcement_id: str, filename: str, data: bytes, mimetype: str) -> Dict[str, str]:
        extension = os.path.splitext(filename)[1].lower()
        public_id = f"{blob_folder(announcement_id)}/{uuid.uuid4()}{extension}"
        path = self._path(public_id)
        os.makedirs(os.path.dirname(path), exist_ok=True)

        with open(path, "wb") as buffer:
            buffer.write(data)

        return {
            "public_id": public_id,
            "url": f"{self.base_url}/{public_id}",
            "resource_type": resource_type_for(mimetype).value,
        }

    async def delete(self, public_id: str, resource_type: str) -> None:
        path = self._path(public_id)
        if os.path.exists(path):
            os.remove(path)
        else:
            logger.debug("Blob %s (%s) already gone", public_id, resource_type)
