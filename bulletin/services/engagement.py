"""
Engagement: comments and emoji reactions
"""
import logging
import uuid
from datetime import datetime

from beanie.operators import AddToSet, Pull, Unset

from bulletin.errors import AuthorizationError, NotFoundError, ValidationError
from bulletin.models.announcement import Announcement, Comment, Emoji
from bulletin.models.employee import Employee
from bulletin.services.fanout import Distributor
from bulletin.services.permissions import Action, require
from bulletin.services.realtime import AnnouncementEvent
from bulletin.services.repository import load_announcement, touch, update_announcement

logger = logging.getLogger(__name__)

EMOJI_VALUES = [e.value for e in Emoji]


def parse_emoji(value: str) -> Emoji:
    if value not in EMOJI_VALUES:
        raise ValidationError("Invalid emoji")
    return Emoji(value)


def _reaction_count(announcement: Announcement, emoji: Emoji) -> int:
    reaction = announcement.reactions.get(emoji.value)
    return reaction.count if reaction else 0


class EngagementService:
    def __init__(self, distributor: Distributor):
        self.distributor = distributor

    async def add_comment(self, announcement_id: str, text: str, actor: Employee) -> Comment:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Comment text is required")

        announcement = await load_announcement(announcement_id)
        if not announcement.allow_comments:
            raise AuthorizationError("Comments are disabled for this announcement")

        comment = Comment(
            id=uuid.uuid4().hex,
            author=actor.employee_id,
            author_name=actor.full_name,
            text=text,
        )
        updated = await update_announcement(
            announcement.id,
            touch({f"comments.{comment.id}": comment}, datetime.utcnow()),
        )
        if not updated:
            raise NotFoundError("Announcement not found")

        await self.distributor.announce(
            AnnouncementEvent.COMMENT_ADDED,
            announcement_id,
            {"comment": comment.model_dump(mode="json")},
        )
        return comment

    async def delete_comment(self, announcement_id: str, comment_id: str, actor: Employee) -> None:
        announcement = await load_announcement(announcement_id)
        comment = announcement.comments.get(comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")

        require(actor, Action.DELETE_COMMENT, announcement, comment=comment,
                message="Not authorized to delete this comment")

        now = datetime.utcnow()
        await update_announcement(
            announcement.id,
            Unset({f"comments.{comment_id}": ""}),
            touch({}, now),
        )

        await self.distributor.announce(
            AnnouncementEvent.COMMENT_DELETED,
            announcement_id,
            {"comment_id": comment_id},
        )

    async def add_reaction(self, announcement_id: str, emoji: str, actor: Employee) -> Announcement:
        """Add the actor to the emoji's reaction; repeating it changes nothing"""
        emoji = parse_emoji(emoji)
        announcement = await load_announcement(announcement_id)
        path = f"reactions.{emoji.value}"

        added = await update_announcement(
            announcement.id,
            AddToSet({f"{path}.users": actor.employee_id}),
            touch({f"{path}.emoji": emoji}, datetime.utcnow()),
            where={f"{path}.users": {"$ne": actor.employee_id}},
        )
        announcement = await load_announcement(announcement_id)
        if not added:
            return announcement

        await self.distributor.announce(
            AnnouncementEvent.REACTION_ADDED,
            announcement_id,
            {"emoji": emoji.value, "user_id": actor.employee_id, "count": _reaction_count(announcement, emoji)},
        )
        return announcement

    async def remove_reaction(self, announcement_id: str, emoji: str, actor: Employee) -> Announcement:
        emoji = parse_emoji(emoji)
        announcement = await load_announcement(announcement_id)
        path = f"reactions.{emoji.value}"

        if emoji.value not in announcement.reactions:
            raise NotFoundError("Reaction not found")

        await update_announcement(
            announcement.id,
            Pull({f"{path}.users": actor.employee_id}),
            touch({}, datetime.utcnow()),
        )
        # Drop the reaction only once nobody is left in it
        await update_announcement(
            announcement.id,
            Unset({path: ""}),
            where={f"{path}.users": {"$size": 0}},
        )

        announcement = await load_announcement(announcement_id)
        await self.distributor.announce(
            AnnouncementEvent.REACTION_REMOVED,
            announcement_id,
            {"emoji": emoji.value, "user_id": actor.employee_id, "count": _reaction_count(announcement, emoji)},
        )
        return announcement
