"""
Distribution/fanout: turns a committed state change into notifications,
realtime events, cache invalidations and queued emails.

Every side channel is best-effort. A failure is wrapped in SideEffectFailure,
logged and recorded, and never reaches the caller: by the time fanout runs the
primary write has already been committed.
"""
import logging
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from bulletin.errors import SideEffectFailure
from bulletin.models.announcement import AllSubscribers, Announcement, AnnouncementResponse
from bulletin.models.employee import DirectoryEntry
from bulletin.models.notification import Notification, NotificationType
from bulletin.services.cache import AnnouncementCache
from bulletin.services.realtime import (
    ANNOUNCEMENTS_CHANNEL,
    AnnouncementEvent,
    Publisher,
    user_channel,
)
from bulletin.services.repository import touch, update_announcement
from bulletin.services.subscribers import load_directory, resolve
from bulletin.services.tasks import BackgroundTaskQueue

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "New Announcement"


def notification_message(sender_name: str, title: str) -> str:
    return f"{sender_name} posted: {title}"


def serialize(announcement: Announcement) -> Dict[str, Any]:
    return AnnouncementResponse.from_document(announcement).model_dump(mode="json")


class Distributor:
    """Fans committed announcement changes out to the side channels"""

    def __init__(
        self,
        publisher: Publisher,
        cache: AnnouncementCache,
        tasks: Optional[BackgroundTaskQueue] = None,
        email_service: Any = None,
        directory_loader: Callable[[], Awaitable[List[DirectoryEntry]]] = load_directory,
        failure_history: int = 100,
    ):
        self.publisher = publisher
        self.cache = cache
        self.tasks = tasks
        self.email_service = email_service
        self.directory_loader = directory_loader
        self.recent_failures: Deque[SideEffectFailure] = deque(maxlen=failure_history)

    async def best_effort(self, channel: str, awaitable: Awaitable[Any], default: Any = None) -> Any:
        try:
            return await awaitable
        except Exception as e:
            failure = SideEffectFailure(channel, e)
            logger.warning("Side effect failed: %s", failure)
            self.recent_failures.append(failure)
            return default

    async def _resolve_recipients(self, announcement: Announcement) -> List[str]:
        directory = await self.directory_loader()
        return resolve(announcement.subscribers or AllSubscribers(), directory)

    async def _notify(self, announcement: Announcement, recipients: List[str]) -> None:
        if not recipients:
            return
        message = notification_message(announcement.created_by_name, announcement.title)
        await Notification.insert_many([
            Notification(
                recipient_id=user_id,
                sender_id=announcement.created_by,
                title=NOTIFICATION_TITLE,
                message=message,
                type=NotificationType.ANNOUNCEMENT_CREATED,
                announcement_id=str(announcement.id),
                link=f"/announcements/{announcement.id}",
            )
            for user_id in recipients
        ])

    async def _publish_created(self, announcement: Announcement, recipients: List[str]) -> None:
        payload = {
            "announcement_id": str(announcement.id),
            "announcement": serialize(announcement),
            "notification": {
                "type": NotificationType.ANNOUNCEMENT_CREATED.value,
                "title": NOTIFICATION_TITLE,
                "message": notification_message(announcement.created_by_name, announcement.title),
            },
        }
        for user_id in recipients:
            await self.best_effort(
                "realtime",
                self.publisher.publish(user_channel(user_id), AnnouncementEvent.CREATED.value, payload),
            )

    async def _record_broadcast(self, announcement: Announcement, recipients: List[str]) -> None:
        now = datetime.utcnow()
        announcement.broadcasted_at = now
        announcement.broadcasted_to = list(recipients)
        announcement.updated_at = now
        await update_announcement(
            announcement.id,
            touch({"broadcasted_at": now, "broadcasted_to": announcement.broadcasted_to}, now),
        )

    def _queue_emails(self, announcement: Announcement, recipients: List[str]) -> None:
        if not self.tasks or not self.email_service or not recipients:
            return
        try:
            self.tasks.submit(
                f"announcement-emails:{announcement.id}",
                self.email_service.send_announcement_emails,
                announcement,
                list(recipients),
            )
        except Exception as e:
            failure = SideEffectFailure("email", e)
            logger.warning("Side effect failed: %s", failure)
            self.recent_failures.append(failure)

    async def broadcast(self, announcement: Announcement) -> List[str]:
        """
        Deliver an announcement to its resolved audience.

        Resolves recipients, stores one notification each, pushes the
        ``announcement-created`` event to every recipient channel, records the
        broadcast metadata and queues the emails. Returns the recipient ids.
        """
        recipients = await self.best_effort(
            "resolver", self._resolve_recipients(announcement), default=[]
        )
        await self.best_effort("notification", self._notify(announcement, recipients))
        await self._publish_created(announcement, recipients)
        await self.best_effort("broadcast-metadata", self._record_broadcast(announcement, recipients))
        self._queue_emails(announcement, recipients)

        logger.info("Announcement %s broadcast to %d recipients", announcement.id, len(recipients))
        return recipients

    async def announce(
        self,
        event: AnnouncementEvent,
        announcement_id: str,
        payload: Optional[Dict[str, Any]] = None,
        broad: bool = False,
    ) -> None:
        """Publish one event on the shared channel, then invalidate caches"""
        message = {"announcement_id": str(announcement_id), **(payload or {})}
        await self.best_effort(
            "realtime", self.publisher.publish(ANNOUNCEMENTS_CHANNEL, event.value, message)
        )
        await self.invalidate(announcement_id, broad=broad)

    async def invalidate(self, announcement_id: Optional[str] = None, broad: bool = False) -> None:
        if announcement_id is not None:
            await self.best_effort("cache", self.cache.invalidate_entry(str(announcement_id)))
        if broad:
            await self.best_effort("cache", self.cache.invalidate_all())
