"""
Announcement Routes
Endpoints for publishing, reading and engaging with announcements
"""
import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import ValidationError as PydanticValidationError

from bulletin.api.deps import get_services
from bulletin.api.routes.auth import get_current_employee
from bulletin.config import settings
from bulletin.errors import ValidationError
from bulletin.models.announcement import (
    AnnouncementCreate,
    AnnouncementUpdate,
    ArchiveRequest,
    CommentCreate,
    ExtendExpiryRequest,
    PinRequest,
    ReactionCreate,
    TagUpdate,
)
from bulletin.models.employee import Employee
from bulletin.services.attachments import FileUpload
from bulletin.services.fanout import serialize
from bulletin.services.registry import Services

router = APIRouter()


def envelope(data: Any = None, message: Optional[str] = None, **extra) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


def _parse_json_field(raw: Optional[str], name: str) -> Any:
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except ValueError:
        raise ValidationError(f"Invalid {name} format")


def _first_error(exc: PydanticValidationError) -> str:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ()))
    return f"{field}: {error.get('msg')}" if field else error.get("msg", "Invalid request")


async def _read_files(files: Optional[List[UploadFile]]) -> List[FileUpload]:
    files = [f for f in (files or []) if f is not None and f.filename]
    if len(files) > settings.MAX_ATTACHMENTS_PER_REQUEST:
        raise ValidationError(
            f"Maximum {settings.MAX_ATTACHMENTS_PER_REQUEST} files allowed per upload"
        )

    uploads = []
    for upload in files:
        # One byte past the limit is enough to reject an oversized file
        data = await upload.read(settings.MAX_ATTACHMENT_SIZE + 1)
        uploads.append(FileUpload(
            filename=upload.filename,
            content_type=upload.content_type or "application/octet-stream",
            data=data,
        ))
    return uploads


@router.get("")
async def get_announcements(
    sort: str = "latest",
    category: Optional[str] = None,
    is_archived: bool = False,
    search: Optional[str] = None,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    """List announcements visible to the current employee"""
    announcements = await services.lifecycle.list_announcements(
        current_employee,
        sort=sort,
        category=category,
        is_archived=is_archived,
        search=search,
    )
    return envelope(announcements, count=len(announcements))


@router.get("/stats/overview")
async def get_announcement_stats(
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    """Announcement statistics (Admin/Manager only)"""
    stats = await services.lifecycle.stats(current_employee)
    return envelope(stats.model_dump(mode="json"))


@router.get("/{id}")
async def get_announcement(
    id: str,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    """Get one announcement and record that the current employee read it"""
    return envelope(await services.lifecycle.get_and_mark_read(id, current_employee))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_announcement(
    title: str = Form(""),
    description: str = Form(""),
    category: str = Form("General"),
    custom_category: Optional[str] = Form(None),
    subscribers: Optional[str] = Form(None),
    last_for: Optional[str] = Form(None),
    scheduled_for: Optional[str] = Form(None),
    allow_comments: bool = Form(True),
    is_pinned: bool = Form(False),
    files: Optional[List[UploadFile]] = File(None),
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    """
    Create a new announcement (Admin/Manager/HR only)

    ``subscribers`` and ``last_for`` are JSON strings. Up to five files may be
    attached; per-file problems are reported in ``upload_errors``.
    """
    try:
        data = AnnouncementCreate(
            title=title,
            description=description,
            category=category,
            custom_category=custom_category,
            subscribers=_parse_json_field(subscribers, "subscribers"),
            last_for=_parse_json_field(last_for, "last_for"),
            scheduled_for=scheduled_for or None,
            allow_comments=allow_comments,
            is_pinned=is_pinned,
        )
    except PydanticValidationError as e:
        raise ValidationError(_first_error(e))

    uploads = await _read_files(files)
    announcement, upload_errors = await services.lifecycle.create(data, current_employee, uploads)

    return envelope(
        serialize(announcement),
        message=(
            "Announcement scheduled successfully"
            if announcement.is_scheduled
            else "Announcement created and broadcasted successfully"
        ),
        upload_errors=[e.model_dump() for e in upload_errors] or None,
    )


@router.put("/{id}")
async def update_announcement(
    id: str,
    data: AnnouncementUpdate,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    """Partially update an announcement"""
    announcement = await services.lifecycle.update(id, data, current_employee)
    return envelope(serialize(announcement), message="Announcement updated successfully")


@router.delete("/{id}")
async def delete_announcement(
    id: str,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    """Delete an announcement; deleting a missing one still succeeds"""
    deleted = await services.lifecycle.delete(id, current_employee)
    if not deleted:
        return envelope(message="Announcement already deleted or does not exist")
    return envelope(message="Announcement deleted successfully")


# --- Comments ---

@router.post("/{id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    id: str,
    data: CommentCreate,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    comment = await services.engagement.add_comment(id, data.text, current_employee)
    return envelope(comment.model_dump(mode="json"), message="Comment added successfully")


@router.delete("/{id}/comments/{comment_id}")
async def delete_comment(
    id: str,
    comment_id: str,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    await services.engagement.delete_comment(id, comment_id, current_employee)
    return envelope(message="Comment deleted successfully")


# --- Reactions ---

@router.post("/{id}/reactions")
async def add_reaction(
    id: str,
    data: ReactionCreate,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    announcement = await services.engagement.add_reaction(id, data.emoji, current_employee)
    reactions = [r.model_dump(mode="json") for r in announcement.reactions.values()]
    return envelope(reactions, message="Reaction added successfully")


@router.delete("/{id}/reactions/{emoji}")
async def remove_reaction(
    id: str,
    emoji: str,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    announcement = await services.engagement.remove_reaction(id, emoji, current_employee)
    reactions = [r.model_dump(mode="json") for r in announcement.reactions.values()]
    return envelope(reactions, message="Reaction removed successfully")


# --- Visibility ---

@router.put("/{id}/pin")
async def toggle_pin(
    id: str,
    data: PinRequest,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    announcement = await services.lifecycle.set_pinned(id, data.pin, current_employee)
    return envelope(
        serialize(announcement),
        message="Announcement pinned successfully" if data.pin else "Announcement unpinned successfully",
    )


@router.put("/{id}/archive")
async def toggle_archive(
    id: str,
    data: ArchiveRequest,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    announcement = await services.lifecycle.set_archived(id, data.archive, current_employee)
    return envelope(
        serialize(announcement),
        message="Announcement archived successfully" if data.archive else "Announcement unarchived successfully",
    )


@router.put("/{id}/extend-expiry")
async def extend_expiry(
    id: str,
    data: ExtendExpiryRequest,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    announcement = await services.lifecycle.extend_expiry(id, data, current_employee)
    return envelope(serialize(announcement), message="Announcement expiry extended successfully")


# --- Attachments ---

@router.get("/{id}/attachments")
async def get_attachments(
    id: str,
    include_deleted: bool = Query(False),
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    listing = await services.attachments.list_attachments(id, current_employee, include_deleted)
    return envelope(listing.model_dump(mode="json"))


@router.post("/{id}/attachments")
async def upload_attachments(
    id: str,
    files: Optional[List[UploadFile]] = File(None),
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    uploads = await _read_files(files)
    outcome = await services.attachments.upload(id, uploads, current_employee)
    return envelope(
        outcome.model_dump(mode="json"),
        message=f"{len(outcome.uploaded)} attachment(s) uploaded successfully",
    )


@router.delete("/{id}/attachments/{attachment_id}")
async def delete_attachment(
    id: str,
    attachment_id: str,
    permanent: bool = Query(False),
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    if permanent:
        announcement = await services.attachments.permanent_delete(id, attachment_id, current_employee)
        message = "Attachment permanently deleted"
    else:
        announcement = await services.attachments.soft_delete(id, attachment_id, current_employee)
        message = "Attachment deleted successfully"
    return envelope(serialize(announcement), message=message)


@router.put("/{id}/attachments/{attachment_id}/restore")
async def restore_attachment(
    id: str,
    attachment_id: str,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    attachment = await services.attachments.restore(id, attachment_id, current_employee)
    return envelope(attachment.model_dump(mode="json"), message="Attachment restored successfully")


@router.put("/{id}/attachments/{attachment_id}/tag")
async def update_attachment_tag(
    id: str,
    attachment_id: str,
    data: TagUpdate,
    current_employee: Employee = Depends(get_current_employee),
    services: Services = Depends(get_services),
):
    attachment = await services.attachments.update_tag(id, attachment_id, data.tag, current_employee)
    return envelope(attachment.model_dump(mode="json"), message="Attachment tag updated successfully")
