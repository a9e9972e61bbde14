"""
Attachment Manager
Batch upload with content-hash dedup, soft delete, restore, hard delete, tags
"""
import asyncio
import hashlib
import logging
import uuid
import weakref
from dataclasses import dataclass
from datetime import datetime
from typing import List

from beanie.operators import Unset

from bulletin.config import settings
from bulletin.errors import ConflictError, NotFoundError, ValidationError
from bulletin.models.announcement import (
    Announcement,
    Attachment,
    AttachmentListing,
    AttachmentTag,
    ResourceType,
    UploadFailure,
    UploadOutcome,
)
from bulletin.models.employee import Employee
from bulletin.services.fanout import Distributor
from bulletin.services.permissions import Action, can, require
from bulletin.services.realtime import AnnouncementEvent
from bulletin.services.repository import load_announcement, touch, update_announcement
from bulletin.services.storage import BlobStore, validate_file

logger = logging.getLogger(__name__)


@dataclass
class FileUpload:
    """A file received from a client, fully read into memory"""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def file_hash(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


class AttachmentManager:
    def __init__(
        self,
        blob_store: BlobStore,
        distributor: Distributor,
        max_size: int = None,
        max_files: int = None,
    ):
        self.blob_store = blob_store
        self.distributor = distributor
        self.max_size = max_size or settings.MAX_ATTACHMENT_SIZE
        self.max_files = max_files or settings.MAX_ATTACHMENTS_PER_REQUEST
        # Held only while an upload runs, so idle announcements leave no entry
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, announcement_id: str) -> asyncio.Lock:
        lock = self._locks.get(announcement_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[announcement_id] = lock
        return lock

    def _get(self, announcement: Announcement, attachment_id: str) -> Attachment:
        attachment = announcement.attachments.get(attachment_id)
        if attachment is None:
            raise NotFoundError("Attachment not found")
        return attachment

    async def upload(self, announcement_id: str, files: List[FileUpload], actor: Employee) -> UploadOutcome:
        """Upload a batch of files to an existing announcement"""
        if not files:
            raise ValidationError("No files uploaded")

        announcement = await load_announcement(announcement_id)
        require(actor, Action.UPLOAD_ATTACHMENT, announcement,
                message="Not authorized to upload attachments to this announcement")

        outcome = await self.attach(announcement_id, files, actor)

        if outcome.uploaded:
            await self.distributor.announce(
                AnnouncementEvent.ATTACHMENTS_ADDED,
                announcement_id,
                {"new_attachments": [a.model_dump(mode="json") for a in outcome.uploaded]},
            )
        return outcome

    async def attach(self, announcement_id: str, files: List[FileUpload], actor: Employee) -> UploadOutcome:
        """
        Store files and append them to the announcement.

        Runs under the announcement's upload lock so two concurrent batches
        can never both add the same content. A file whose MD5 matches a live
        attachment, or an earlier file of the same batch, is reported as a
        duplicate. Validation and storage failures are collected per file.
        Raises ConflictError when every file is a duplicate.
        """
        if not files:
            raise ValidationError("No files uploaded")
        if len(files) > self.max_files:
            raise ValidationError(f"Maximum {self.max_files} files allowed per upload")

        async with self._lock_for(announcement_id):
            announcement = await load_announcement(announcement_id)
            seen = {a.file_hash for a in announcement.live_attachments()}
            outcome = UploadOutcome()

            for upload in files:
                digest = file_hash(upload.data)
                if digest in seen:
                    outcome.duplicates.append(upload.filename)
                    continue

                try:
                    validate_file(upload.content_type, upload.size, self.max_size)
                except ValidationError as e:
                    outcome.failed.append(UploadFailure(original_name=upload.filename, error=e.message))
                    continue

                try:
                    stored = await self.blob_store.put(
                        announcement_id, upload.filename, upload.data, upload.content_type
                    )
                except Exception as e:
                    logger.warning("Blob upload failed for %s: %s", upload.filename, e)
                    outcome.failed.append(UploadFailure(original_name=upload.filename, error=f"Upload failed: {e}"))
                    continue

                seen.add(digest)
                outcome.uploaded.append(Attachment(
                    id=uuid.uuid4().hex,
                    public_id=stored["public_id"],
                    url=stored["url"],
                    resource_type=stored.get("resource_type", ResourceType.RAW),
                    original_name=upload.filename,
                    mimetype=upload.content_type,
                    file_size=upload.size,
                    file_hash=digest,
                    uploaded_by=actor.employee_id,
                ))

            if len(outcome.duplicates) == len(files):
                raise ConflictError("All files are duplicates", outcome.duplicates)

            if outcome.uploaded:
                added = await update_announcement(
                    announcement.id,
                    touch({f"attachments.{a.id}": a for a in outcome.uploaded}, datetime.utcnow()),
                )
                if not added:
                    raise NotFoundError("Announcement not found")

        logger.info(
            "Announcement %s: %d uploaded, %d failed, %d duplicates",
            announcement_id, len(outcome.uploaded), len(outcome.failed), len(outcome.duplicates),
        )
        return outcome

    async def soft_delete(self, announcement_id: str, attachment_id: str, actor: Employee) -> Announcement:
        announcement = await load_announcement(announcement_id)
        attachment = self._get(announcement, attachment_id)
        require(actor, Action.REMOVE_ATTACHMENT, announcement, attachment=attachment,
                message="Not authorized to delete this attachment")

        if not attachment.is_deleted:
            now = datetime.utcnow()
            path = f"attachments.{attachment_id}"
            await update_announcement(
                announcement.id,
                touch({
                    f"{path}.is_deleted": True,
                    f"{path}.deleted_at": now,
                    f"{path}.deleted_by": actor.employee_id,
                }, now),
                where={f"{path}.is_deleted": False},
            )

        await self.distributor.announce(
            AnnouncementEvent.ATTACHMENT_DELETED,
            announcement_id,
            {"attachment_id": attachment_id, "permanent": False},
        )
        return await load_announcement(announcement_id)

    async def permanent_delete(self, announcement_id: str, attachment_id: str, actor: Employee) -> Announcement:
        announcement = await load_announcement(announcement_id)
        attachment = self._get(announcement, attachment_id)
        require(actor, Action.REMOVE_ATTACHMENT, announcement, attachment=attachment,
                message="Not authorized to delete this attachment")

        await self.distributor.best_effort(
            "blob",
            self.blob_store.delete(attachment.public_id, attachment.resource_type.value),
        )

        await update_announcement(
            announcement.id,
            Unset({f"attachments.{attachment_id}": ""}),
            touch({}, datetime.utcnow()),
        )

        await self.distributor.announce(
            AnnouncementEvent.ATTACHMENT_DELETED,
            announcement_id,
            {"attachment_id": attachment_id, "permanent": True},
        )
        return await load_announcement(announcement_id)

    async def restore(self, announcement_id: str, attachment_id: str, actor: Employee) -> Attachment:
        announcement = await load_announcement(announcement_id)
        require(actor, Action.RESTORE_ATTACHMENT, announcement,
                message="Only admins can restore attachments")

        # Shares the upload lock so the hash check cannot race a concurrent upload
        async with self._lock_for(announcement_id):
            announcement = await load_announcement(announcement_id)
            attachment = self._get(announcement, attachment_id)

            if not attachment.is_deleted:
                raise ValidationError("Attachment is not deleted")

            if any(a.file_hash == attachment.file_hash for a in announcement.live_attachments()):
                raise ConflictError(
                    "An identical attachment is already attached",
                    [attachment.original_name],
                )

            path = f"attachments.{attachment_id}"
            await update_announcement(
                announcement.id,
                touch({
                    f"{path}.is_deleted": False,
                    f"{path}.deleted_at": None,
                    f"{path}.deleted_by": None,
                }, datetime.utcnow()),
                where={path: {"$exists": True}},
            )
            attachment.is_deleted = False
            attachment.deleted_at = None
            attachment.deleted_by = None

        await self.distributor.announce(
            AnnouncementEvent.ATTACHMENT_RESTORED,
            announcement_id,
            {"attachment_id": attachment_id, "attachment": attachment.model_dump(mode="json")},
        )
        return attachment

    async def update_tag(self, announcement_id: str, attachment_id: str, tag: str, actor: Employee) -> Attachment:
        allowed = [t.value for t in AttachmentTag]
        if tag not in allowed:
            raise ValidationError(f"Invalid tag. Must be one of: {', '.join(allowed)}")

        announcement = await load_announcement(announcement_id)
        require(actor, Action.TAG_ATTACHMENT, announcement,
                message="Not authorized to tag attachments on this announcement")
        attachment = self._get(announcement, attachment_id)

        attachment.tag = AttachmentTag(tag)
        await update_announcement(
            announcement.id,
            touch({f"attachments.{attachment_id}.tag": attachment.tag}, datetime.utcnow()),
            where={f"attachments.{attachment_id}": {"$exists": True}},
        )

        await self.distributor.announce(
            AnnouncementEvent.ATTACHMENT_TAGGED,
            announcement_id,
            {"attachment_id": attachment_id, "tag": tag},
        )
        return attachment

    async def list_attachments(
        self, announcement_id: str, actor: Employee, include_deleted: bool = False
    ) -> AttachmentListing:
        announcement = await load_announcement(announcement_id)
        show_deleted = include_deleted and can(actor, Action.VIEW_DELETED_ATTACHMENTS, announcement)

        attachments = [
            a for a in announcement.attachments.values()
            if show_deleted or not a.is_deleted
        ]
        images = [a for a in attachments if a.resource_type == ResourceType.IMAGE]
        documents = [a for a in attachments if a.resource_type != ResourceType.IMAGE]

        return AttachmentListing(
            all=attachments,
            images=images,
            documents=documents,
            total_count=len(attachments),
            image_count=len(images),
            document_count=len(documents),
        )
