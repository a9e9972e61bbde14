"""
Announcement Model
Database schema for announcements and the entities they own
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from beanie import Document
from pydantic import BaseModel, Field, computed_field, field_validator


class Category(str, Enum):
    """Announcement categories"""
    HR = "HR"
    GENERAL = "General"
    URGENT = "Urgent"
    SYSTEM_UPDATE = "System Update"
    EVENTS = "Events"
    CUSTOM = "Custom"


class DurationUnit(str, Enum):
    """Units accepted for last_for"""
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


class Emoji(str, Enum):
    """Reaction vocabulary"""
    THUMBS_UP = "👍"
    HEART = "❤️"
    PARTY = "🎉"
    FIRE = "🔥"
    EYES = "👀"


class AttachmentTag(str, Enum):
    """Attachment labels"""
    NOTICE = "notice"
    HOLIDAY = "holiday"
    EXAM = "exam"
    GENERAL = "general"
    POLICY = "policy"
    OTHER = "other"


class ResourceType(str, Enum):
    IMAGE = "image"
    RAW = "raw"


# --- Category (tagged union) ---

class StandardCategory(BaseModel):
    """One of the fixed categories"""
    kind: Literal["standard"] = "standard"
    name: Category = Category.GENERAL

    @field_validator("name")
    @classmethod
    def _not_custom(cls, value: Category) -> Category:
        if value == Category.CUSTOM:
            raise ValueError("Custom categories need a label")
        return value

    @property
    def label(self) -> Optional[str]:
        return None


class CustomCategory(BaseModel):
    """Free-text category"""
    kind: Literal["custom"] = "custom"
    name: Literal["Custom"] = "Custom"
    label: str = Field(..., min_length=1, max_length=50)


CategorySpec = Annotated[
    Union[StandardCategory, CustomCategory], Field(discriminator="kind")
]


# --- Subscribers (tagged union) ---

class AllSubscribers(BaseModel):
    type: Literal["all"] = "all"


class DepartmentSubscribers(BaseModel):
    type: Literal["departments"] = "departments"
    departments: List[str] = []


class UserSubscribers(BaseModel):
    type: Literal["users"] = "users"
    users: List[str] = []


class ManagerSubscribers(BaseModel):
    type: Literal["managers"] = "managers"


class CustomSubscribers(BaseModel):
    type: Literal["custom"] = "custom"
    users: List[str] = []


SubscriberSpec = Annotated[
    Union[
        AllSubscribers,
        DepartmentSubscribers,
        UserSubscribers,
        ManagerSubscribers,
        CustomSubscribers,
    ],
    Field(discriminator="type"),
]


# --- Owned entities ---

class LastFor(BaseModel):
    """How long an announcement stays live"""
    value: int = Field(..., ge=1)
    unit: str = Field(..., min_length=1)  # hours, days, weeks, months


class Attachment(BaseModel):
    """File attached to an announcement"""
    id: str
    public_id: str
    url: str
    resource_type: ResourceType = ResourceType.RAW
    original_name: str
    mimetype: str
    file_size: int
    file_hash: str
    uploaded_by: str
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)
    tag: AttachmentTag = AttachmentTag.GENERAL

    # Soft delete
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None


class Comment(BaseModel):
    """Reader comment"""
    id: str
    author: str
    author_name: Optional[str] = None
    text: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Reaction(BaseModel):
    """All users who reacted with one emoji"""
    emoji: Emoji
    users: List[str] = []

    @computed_field
    @property
    def count(self) -> int:
        return len(self.users)


class ReadReceipt(BaseModel):
    user_id: str
    read_at: datetime = Field(default_factory=datetime.utcnow)


class Announcement(Document):
    """Announcement document model"""

    # Content
    title: str = Field(..., max_length=200)
    description: str
    category: CategorySpec = Field(default_factory=StandardCategory)

    # Ownership
    created_by: str
    created_by_name: str = ""

    # Audience
    subscribers: SubscriberSpec = Field(default_factory=AllSubscribers)

    # Lifetime
    last_for: LastFor
    expires_at: datetime
    is_scheduled: bool = False
    scheduled_for: Optional[datetime] = None
    schedule_broadcasted: bool = False

    allow_comments: bool = True

    # Visibility
    is_pinned: bool = False
    pin_position: Optional[int] = Field(None, ge=1)
    is_archived: bool = False
    archived_at: Optional[datetime] = None

    # Owned collections keyed by generated id (emoji for reactions)
    attachments: Dict[str, Attachment] = {}
    comments: Dict[str, Comment] = {}
    reactions: Dict[str, Reaction] = {}
    read_by: List[ReadReceipt] = []
    view_count: int = 0

    # Distribution
    broadcasted_at: Optional[datetime] = None
    broadcasted_to: List[str] = []

    # Metadata
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def comments_count(self) -> int:
        return len(self.comments)

    @property
    def total_reactions(self) -> int:
        return sum(r.count for r in self.reactions.values())

    def live_attachments(self) -> List[Attachment]:
        return [a for a in self.attachments.values() if not a.is_deleted]

    def remaining_seconds(self, now: Optional[datetime] = None) -> Optional[float]:
        if self.is_archived:
            return None
        remaining = (self.expires_at - (now or datetime.utcnow())).total_seconds()
        return max(remaining, 0.0)

    class Settings:
        name = "announcements"
        indexes = [
            "created_by",
            "subscribers.users",
            "subscribers.departments",
            "is_pinned",
            "category.name",
            "expires_at",
            [("is_archived", 1), ("expires_at", 1)],
            [("is_scheduled", 1), ("scheduled_for", 1)],
        ]


# --- Request schemas ---

class AnnouncementCreate(BaseModel):
    """Schema for creating an announcement"""
    title: str = ""
    description: str = ""
    category: Category = Category.GENERAL
    custom_category: Optional[str] = Field(None, max_length=50)
    subscribers: Optional[SubscriberSpec] = None
    last_for: Optional[LastFor] = None
    scheduled_for: Optional[Union[datetime, str]] = None
    allow_comments: bool = True
    is_pinned: bool = False


class AnnouncementUpdate(BaseModel):
    """Schema for a partial update"""
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    category: Optional[Category] = None
    custom_category: Optional[str] = Field(None, max_length=50)
    subscribers: Optional[SubscriberSpec] = None
    allow_comments: Optional[bool] = None
    is_pinned: Optional[bool] = None


class PinRequest(BaseModel):
    pin: bool


class ArchiveRequest(BaseModel):
    archive: bool


class ExtendExpiryRequest(LastFor):
    pass


class CommentCreate(BaseModel):
    text: str = ""


class ReactionCreate(BaseModel):
    emoji: str


class TagUpdate(BaseModel):
    tag: str = ""


# --- Response schemas ---

class AnnouncementResponse(BaseModel):
    """Schema for announcement responses and realtime payloads"""
    id: str
    title: str
    description: str
    category: Category
    custom_category: Optional[str] = None
    created_by: str
    created_by_name: str
    subscribers: SubscriberSpec
    last_for: LastFor
    expires_at: datetime
    remaining_seconds: Optional[float] = None
    is_scheduled: bool
    scheduled_for: Optional[datetime] = None
    allow_comments: bool
    is_pinned: bool
    pin_position: Optional[int] = None
    is_archived: bool
    archived_at: Optional[datetime] = None
    attachments: List[Attachment]
    comments: List[Comment]
    comments_count: int
    reactions: List[Reaction]
    total_reactions: int
    read_by: List[ReadReceipt]
    view_count: int
    broadcasted_at: Optional[datetime] = None
    broadcasted_to: List[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, announcement: Announcement) -> "AnnouncementResponse":
        return cls(
            id=str(announcement.id),
            title=announcement.title,
            description=announcement.description,
            category=announcement.category.name,
            custom_category=announcement.category.label,
            created_by=announcement.created_by,
            created_by_name=announcement.created_by_name,
            subscribers=announcement.subscribers,
            last_for=announcement.last_for,
            expires_at=announcement.expires_at,
            remaining_seconds=announcement.remaining_seconds(),
            is_scheduled=announcement.is_scheduled,
            scheduled_for=announcement.scheduled_for,
            allow_comments=announcement.allow_comments,
            is_pinned=announcement.is_pinned,
            pin_position=announcement.pin_position,
            is_archived=announcement.is_archived,
            archived_at=announcement.archived_at,
            attachments=announcement.live_attachments(),
            comments=list(announcement.comments.values()),
            comments_count=announcement.comments_count,
            reactions=list(announcement.reactions.values()),
            total_reactions=announcement.total_reactions,
            read_by=list(announcement.read_by),
            view_count=announcement.view_count,
            broadcasted_at=announcement.broadcasted_at,
            broadcasted_to=announcement.broadcasted_to,
            created_at=announcement.created_at,
            updated_at=announcement.updated_at,
        )


class UploadFailure(BaseModel):
    original_name: str
    error: str


class UploadOutcome(BaseModel):
    """Result of a batch upload"""
    uploaded: List[Attachment] = []
    failed: List[UploadFailure] = []
    duplicates: List[str] = []


class AttachmentListing(BaseModel):
    all: List[Attachment]
    images: List[Attachment]
    documents: List[Attachment]
    total_count: int
    image_count: int
    document_count: int


class CategoryCount(BaseModel):
    category: str
    count: int


class AnnouncementStats(BaseModel):
    total: int
    active: int
    archived: int
    pinned: int
    by_category: List[CategoryCount]
