from datetime import datetime, timedelta

from bulletin.models.announcement import AnnouncementCreate, LastFor
from bulletin.services.attachments import FileUpload


def new_announcement(**overrides) -> AnnouncementCreate:
    data = {
        "title": "Quarterly update",
        "description": "Numbers are in.",
        "last_for": LastFor(value=7, unit="days"),
    }
    data.update(overrides)
    return AnnouncementCreate(**data)


def future(**delta) -> datetime:
    return datetime.utcnow() + timedelta(**delta)


def upload(name: str, data: bytes, content_type: str = "application/pdf") -> FileUpload:
    return FileUpload(filename=name, content_type=content_type, data=data)


async def backdate(announcement, minutes: int):
    """Move created_at into the past so sort order does not depend on timing"""
    announcement.created_at = datetime.utcnow() - timedelta(minutes=minutes)
    await announcement.save()
    return announcement
