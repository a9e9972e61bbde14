"""
Lifecycle Manager
Create, update, pin, archive, expiry, read tracking, delete, listing and the
scheduler jobs for announcements.

Pin capacity and pin positions are only changed while holding the pin lock,
which keeps positions of live pinned announcements dense (1..n) within this
process.
"""
import asyncio
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from beanie.operators import Inc, Push, Set
from pymongo import ASCENDING, DESCENDING

from bulletin.config import settings
from bulletin.errors import BulletinError, CapacityError, NotFoundError, ValidationError
from bulletin.models.announcement import (
    AllSubscribers,
    Announcement,
    AnnouncementCreate,
    AnnouncementStats,
    AnnouncementUpdate,
    Category,
    CategoryCount,
    CustomCategory,
    LastFor,
    ReadReceipt,
    StandardCategory,
    UploadFailure,
)
from bulletin.models.employee import Employee, Role
from bulletin.services.attachments import AttachmentManager, FileUpload
from bulletin.services.cache import AnnouncementCache
from bulletin.services.expiry import compute_expiry, parse_instant
from bulletin.services.fanout import Distributor, serialize
from bulletin.services.permissions import Action, require
from bulletin.services.realtime import AnnouncementEvent
from bulletin.services.repository import find_announcement, load_announcement, touch, update_announcement

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 200

SORTS = {
    "latest": [("created_at", DESCENDING)],
    "pinned": [("is_pinned", DESCENDING), ("created_at", DESCENDING)],
    "oldest": [("created_at", ASCENDING)],
    "category": [("category.name", ASCENDING), ("created_at", DESCENDING)],
    "scheduled": [("scheduled_for", ASCENDING), ("created_at", DESCENDING)],
}
UNPARTITIONED_SORTS = {"oldest", "scheduled"}


def build_category(category: Category, custom_category: Optional[str]):
    if category == Category.CUSTOM:
        label = (custom_category or "").strip()
        if not label:
            raise ValidationError("Custom category name is required")
        return CustomCategory(label=label)
    return StandardCategory(name=category)


def _clean_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(f"Title cannot exceed {TITLE_MAX_LENGTH} characters")
    return title


def pinned_first(announcements: List[Announcement]) -> List[Announcement]:
    """Pinned by position (newest first on ties), then the rest in query order"""
    pinned = sorted(
        (a for a in announcements if a.is_pinned),
        key=lambda a: (a.pin_position or 0, -a.created_at.timestamp()),
    )
    return pinned + [a for a in announcements if not a.is_pinned]


class LifecycleManager:
    def __init__(
        self,
        distributor: Distributor,
        attachments: AttachmentManager,
        cache: AnnouncementCache,
        max_pinned: int = None,
    ):
        self.distributor = distributor
        self.attachments = attachments
        self.cache = cache
        self.max_pinned = max_pinned or settings.MAX_PINNED_ANNOUNCEMENTS
        self._pin_lock = asyncio.Lock()

    # --- Pins ---

    async def _count_pinned(self, exclude: Optional[Announcement] = None) -> int:
        query = [Announcement.is_pinned == True, Announcement.is_archived == False]
        if exclude is not None and exclude.id is not None:
            query.append(Announcement.id != exclude.id)
        return await Announcement.find(*query).count()

    async def _next_pin_position(self, exclude: Optional[Announcement] = None) -> int:
        pinned = await self._count_pinned(exclude)
        if pinned >= self.max_pinned:
            raise CapacityError(f"Maximum {self.max_pinned} announcements can be pinned")
        return pinned + 1

    async def _compact_pins(self) -> None:
        """Renumber live pinned announcements to 1..n; caller holds the pin lock"""
        pinned = await Announcement.find(
            Announcement.is_pinned == True,
            Announcement.is_archived == False,
        ).sort([("pin_position", ASCENDING), ("created_at", DESCENDING)]).to_list()

        for position, announcement in enumerate(pinned, start=1):
            if announcement.pin_position != position:
                announcement.pin_position = position
                await update_announcement(announcement.id, Set({"pin_position": position}))

    async def _apply_pin(self, announcement: Announcement, pin: bool) -> None:
        async with self._pin_lock:
            current = await load_announcement(str(announcement.id))
            now = datetime.utcnow()
            if pin:
                if current.is_archived:
                    raise ValidationError("Archived announcements cannot be pinned")
                fields = {"is_pinned": True, "pin_position": current.pin_position}
                if not current.is_pinned:
                    fields["pin_position"] = await self._next_pin_position(exclude=current)
            else:
                fields = {"is_pinned": False, "pin_position": None}

            await self._write(announcement, fields, now)
            if not pin and current.is_pinned:
                await self._compact_pins()

    async def _write(self, announcement: Announcement, fields: Dict[str, Any], now: datetime) -> None:
        """Set the given fields in storage and on the loaded announcement"""
        if not await update_announcement(announcement.id, touch(fields, now)):
            raise NotFoundError("Announcement not found")
        for name, value in fields.items():
            setattr(announcement, name, value)
        announcement.updated_at = now

    # --- Create / update ---

    async def create(
        self,
        data: AnnouncementCreate,
        actor: Employee,
        files: Optional[List[FileUpload]] = None,
    ) -> Tuple[Announcement, List[UploadFailure]]:
        """
        Create an announcement, attach any files and broadcast it.

        A ``scheduled_for`` that parses to a future instant defers the
        broadcast to the scheduler; anything else broadcasts now. Upload
        problems are returned alongside the announcement and never undo
        the create.
        """
        require(actor, Action.CREATE, message="Not authorized to create announcements")

        title = _clean_title(data.title)
        description = (data.description or "").strip()
        if not title or not description:
            raise ValidationError("Title and description are required")
        if data.last_for is None:
            raise ValidationError("Expiration duration is required")

        now = datetime.utcnow()
        scheduled_for = parse_instant(data.scheduled_for)
        is_scheduled = scheduled_for is not None and scheduled_for >= now

        announcement = Announcement(
            title=title,
            description=description,
            category=build_category(data.category, data.custom_category),
            created_by=actor.employee_id,
            created_by_name=actor.full_name,
            subscribers=data.subscribers or AllSubscribers(),
            last_for=data.last_for,
            expires_at=compute_expiry(data.last_for.value, data.last_for.unit, now),
            is_scheduled=is_scheduled,
            scheduled_for=scheduled_for if is_scheduled else None,
            allow_comments=data.allow_comments,
            created_at=now,
            updated_at=now,
        )

        if data.is_pinned:
            async with self._pin_lock:
                announcement.pin_position = await self._next_pin_position()
                announcement.is_pinned = True
                await announcement.insert()
        else:
            await announcement.insert()

        announcement_id = str(announcement.id)
        logger.info("Announcement %s created by %s (scheduled=%s)", announcement_id, actor.employee_id, is_scheduled)

        upload_errors: List[UploadFailure] = []
        if files:
            upload_errors = await self._attach_on_create(announcement_id, files, actor)
            announcement = await load_announcement(announcement_id)

        if not is_scheduled:
            await self.distributor.broadcast(announcement)

        await self.distributor.invalidate(announcement_id, broad=True)
        return announcement, upload_errors

    async def _attach_on_create(
        self, announcement_id: str, files: List[FileUpload], actor: Employee
    ) -> List[UploadFailure]:
        try:
            outcome = await self.attachments.attach(announcement_id, files, actor)
        except BulletinError as e:
            duplicates = getattr(e, "duplicates", None) or []
            if duplicates:
                return [UploadFailure(original_name=name, error="Duplicate file") for name in duplicates]
            return [UploadFailure(original_name=f.filename, error=e.message) for f in files]
        except Exception as e:
            logger.exception("Attachment upload failed for new announcement %s", announcement_id)
            return [UploadFailure(original_name=f.filename, error=f"Upload failed: {e}") for f in files]

        return outcome.failed + [
            UploadFailure(original_name=name, error="Duplicate file") for name in outcome.duplicates
        ]

    async def update(self, announcement_id: str, data: AnnouncementUpdate, actor: Employee) -> Announcement:
        announcement = await load_announcement(announcement_id)
        require(actor, Action.UPDATE, announcement, message="Not authorized to update this announcement")

        changes: Dict[str, Any] = {}
        if data.title is not None:
            title = _clean_title(data.title)
            if not title:
                raise ValidationError("Title cannot be empty")
            changes["title"] = title
        if data.description is not None:
            description = data.description.strip()
            if not description:
                raise ValidationError("Description cannot be empty")
            changes["description"] = description
        if data.category is not None:
            changes["category"] = build_category(data.category, data.custom_category)
        if data.subscribers is not None:
            changes["subscribers"] = data.subscribers
        if data.allow_comments is not None:
            changes["allow_comments"] = data.allow_comments

        await self._write(announcement, changes, datetime.utcnow())
        if data.is_pinned is not None and data.is_pinned != announcement.is_pinned:
            await self._apply_pin(announcement, data.is_pinned)

        announcement = await load_announcement(announcement_id)
        await self.distributor.announce(
            AnnouncementEvent.UPDATED,
            announcement_id,
            {"announcement": serialize(announcement)},
            broad=True,
        )
        return announcement

    # --- Visibility transitions ---

    async def set_pinned(self, announcement_id: str, pin: bool, actor: Employee) -> Announcement:
        announcement = await load_announcement(announcement_id)
        require(actor, Action.PIN, announcement, message="Not authorized to pin this announcement")

        await self._apply_pin(announcement, pin)

        announcement = await load_announcement(announcement_id)
        await self.distributor.announce(
            AnnouncementEvent.PIN_TOGGLED,
            announcement_id,
            {"is_pinned": announcement.is_pinned, "pin_position": announcement.pin_position},
            broad=True,
        )
        return announcement

    async def _archive(self, announcement: Announcement, archive: bool, now: Optional[datetime] = None) -> bool:
        """Apply the archive flag; returns True if a pin was released"""
        now = now or datetime.utcnow()
        released = False
        if archive:
            fields = {"is_archived": True, "is_pinned": False, "pin_position": None}
            if not announcement.is_archived:
                fields["archived_at"] = now
            released = announcement.is_pinned
        else:
            fields = {"is_archived": False, "archived_at": None}
        await self._write(announcement, fields, now)
        return released

    async def set_archived(self, announcement_id: str, archive: bool, actor: Employee) -> Announcement:
        announcement = await load_announcement(announcement_id)
        require(actor, Action.ARCHIVE, announcement, message="Not authorized to archive this announcement")

        async with self._pin_lock:
            announcement = await load_announcement(announcement_id)
            if await self._archive(announcement, archive):
                await self._compact_pins()

        await self.distributor.announce(
            AnnouncementEvent.ARCHIVED,
            announcement_id,
            {"is_archived": announcement.is_archived},
            broad=True,
        )
        return announcement

    async def extend_expiry(self, announcement_id: str, last_for: LastFor, actor: Employee) -> Announcement:
        announcement = await load_announcement(announcement_id)
        require(actor, Action.EXTEND_EXPIRY, announcement, message="Not authorized to extend this announcement")

        now = datetime.utcnow()
        await self._write(announcement, {
            "last_for": LastFor(value=last_for.value, unit=last_for.unit),
            "expires_at": compute_expiry(last_for.value, last_for.unit, now),
        }, now)

        await self.distributor.announce(
            AnnouncementEvent.EXPIRY_EXTENDED,
            announcement_id,
            {"new_expires_at": announcement.expires_at.isoformat()},
        )
        return announcement

    # --- Reads ---

    async def get_and_mark_read(self, announcement_id: str, actor: Employee) -> Dict[str, Any]:
        """
        Return the serialized announcement, recording a first read.

        The receipt and the view count change in one conditional update, so a
        user is counted once even when two requests race.
        """
        existing = await find_announcement(announcement_id)
        if existing is None:
            raise NotFoundError("Announcement not found")

        user_id = actor.employee_id
        first_read = await update_announcement(
            existing.id,
            Push({"read_by": ReadReceipt(user_id=user_id, read_at=datetime.utcnow())}),
            Inc({"view_count": 1}),
            where={"read_by.user_id": {"$ne": user_id}},
        )
        if first_read:
            await self.distributor.invalidate(announcement_id)
        else:
            cached = await self.cache.get_entry(announcement_id)
            if cached is not None:
                return cached

        announcement = await load_announcement(announcement_id)
        data = serialize(announcement)
        await self.cache.set_entry(announcement_id, data)
        return data

    async def list_announcements(
        self,
        actor: Employee,
        sort: str = "latest",
        category: Optional[str] = None,
        is_archived: bool = False,
        search: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Announcements visible to the actor, pinned first for most sorts"""
        sort = sort if sort in SORTS else "latest"
        search = (search or "").strip()
        filters = {"sort": sort, "category": category, "is_archived": is_archived, "search": search}

        cached = await self.cache.get_list(actor.employee_id, filters)
        if cached is not None:
            return cached

        visibility: List[Dict[str, Any]] = [
            {"subscribers.type": "all"},
            {"subscribers.users": actor.employee_id},
            {"created_by": actor.employee_id},
        ]
        if actor.department:
            visibility.append({"subscribers.departments": actor.department})
        if actor.role == Role.MANAGER:
            visibility.append({"subscribers.type": "managers"})

        conditions: List[Dict[str, Any]] = [{"$or": visibility}, {"is_archived": is_archived}]
        if category and category != "all":
            conditions.append({"category.name": category})
        if search:
            pattern = re.escape(search)
            conditions.append({"$or": [
                {"title": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
            ]})

        announcements = await Announcement.find({"$and": conditions}).sort(SORTS[sort]).to_list()
        if sort not in UNPARTITIONED_SORTS:
            announcements = pinned_first(announcements)

        data = [serialize(a) for a in announcements]
        await self.cache.set_list(actor.employee_id, filters, data)
        return data

    async def stats(self, actor: Employee) -> AnnouncementStats:
        require(actor, Action.VIEW_STATS, message="Not authorized to view announcement statistics")

        now = datetime.utcnow()
        total = await Announcement.find_all().count()
        active = await Announcement.find(
            Announcement.is_archived == False,
            Announcement.expires_at > now,
        ).count()
        archived = await Announcement.find(Announcement.is_archived == True).count()
        pinned = await self._count_pinned()

        groups = await Announcement.aggregate([
            {"$group": {"_id": "$category.name", "count": {"$sum": 1}}},
            {"$sort": {"count": -1, "_id": 1}},
        ]).to_list()

        return AnnouncementStats(
            total=total,
            active=active,
            archived=archived,
            pinned=pinned,
            by_category=[CategoryCount(category=g["_id"], count=g["count"]) for g in groups],
        )

    # --- Delete ---

    async def delete(self, announcement_id: str, actor: Employee) -> bool:
        """Delete an announcement; False if it was already gone"""
        announcement = await find_announcement(announcement_id)
        if announcement is None:
            return False

        require(actor, Action.DELETE, announcement, message="Not authorized to delete this announcement")

        for attachment in announcement.attachments.values():
            await self.distributor.best_effort(
                "blob",
                self.attachments.blob_store.delete(attachment.public_id, attachment.resource_type.value),
            )

        async with self._pin_lock:
            was_pinned = announcement.is_pinned and not announcement.is_archived
            await announcement.delete()
            if was_pinned:
                await self._compact_pins()

        logger.info("Announcement %s deleted by %s", announcement_id, actor.employee_id)
        await self.distributor.announce(AnnouncementEvent.DELETED, announcement_id, broad=True)
        return True

    # --- Scheduler jobs ---

    async def process_scheduled(self, now: Optional[datetime] = None) -> int:
        """
        Broadcast scheduled announcements that have come due.

        Each one is claimed by flipping ``schedule_broadcasted`` before it is
        sent, so a failed or overlapping run never broadcasts it twice.
        """
        now = now or datetime.utcnow()
        due = await Announcement.find(
            Announcement.is_scheduled == True,
            Announcement.schedule_broadcasted == False,
            Announcement.is_archived == False,
            Announcement.scheduled_for <= now,
        ).to_list()

        processed = 0
        for announcement in due:
            claimed = await update_announcement(
                announcement.id,
                Set({"schedule_broadcasted": True}),
                where={"schedule_broadcasted": False},
            )
            if not claimed:
                continue
            announcement.schedule_broadcasted = True
            try:
                await self.distributor.broadcast(announcement)
                processed += 1
            except Exception:
                logger.exception("Failed to broadcast scheduled announcement %s", announcement.id)

        if processed:
            await self.distributor.invalidate(broad=True)
            logger.info("Broadcast %d scheduled announcements", processed)
        return processed

    async def archive_expired(self, now: Optional[datetime] = None) -> int:
        """Archive every live announcement whose expiry has passed"""
        now = now or datetime.utcnow()
        expired = await Announcement.find(
            Announcement.is_archived == False,
            Announcement.expires_at <= now,
        ).to_list()

        archived = 0
        released = False
        async with self._pin_lock:
            for announcement in expired:
                try:
                    released = await self._archive(announcement, True, now) or released
                    archived += 1
                except Exception:
                    logger.exception("Failed to archive expired announcement %s", announcement.id)
                    continue
            if released:
                await self._compact_pins()

        for announcement in expired:
            if announcement.is_archived:
                await self.distributor.announce(
                    AnnouncementEvent.ARCHIVED,
                    str(announcement.id),
                    {"is_archived": True, "reason": "expired"},
                )

        if archived:
            await self.distributor.invalidate(broad=True)
            logger.info("Archived %d expired announcements", archived)
        return archived
