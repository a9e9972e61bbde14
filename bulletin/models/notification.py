from beanie import Document
from datetime import datetime
from typing import Optional
from enum import Enum
from pydantic import Field


class NotificationType(str, Enum):
    ANNOUNCEMENT_CREATED = "announcement_created"
    GENERAL = "general"


class Notification(Document):
    recipient_id: str
    sender_id: Optional[str] = None
    title: str
    message: str
    type: NotificationType
    announcement_id: Optional[str] = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    link: Optional[str] = None

    class Settings:
        name = "notifications"
        indexes = ["recipient_id", "announcement_id"]
