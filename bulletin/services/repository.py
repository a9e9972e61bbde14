"""
Announcement lookups and targeted updates shared by the lifecycle, attachment
and engagement services.

Writes go through ``update_announcement`` so each one touches only the paths
it changes; a whole-document save would overwrite concurrent writes.
"""
from typing import Any, Dict, Optional

from beanie.operators import Set
from bson import ObjectId

from bulletin.errors import NotFoundError
from bulletin.models.announcement import Announcement


def _object_id(announcement_id: Any) -> Optional[ObjectId]:
    if isinstance(announcement_id, ObjectId):
        return announcement_id
    if not announcement_id or not ObjectId.is_valid(str(announcement_id)):
        return None
    return ObjectId(str(announcement_id))


async def find_announcement(announcement_id: str) -> Optional[Announcement]:
    """Return the announcement, or None for an unknown or malformed id"""
    object_id = _object_id(announcement_id)
    if object_id is None:
        return None
    return await Announcement.get(object_id)


async def load_announcement(announcement_id: str) -> Announcement:
    announcement = await find_announcement(announcement_id)
    if announcement is None:
        raise NotFoundError("Announcement not found")
    return announcement


async def update_announcement(
    announcement_id: Any,
    *operations,
    where: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Apply update operators to one announcement.

    ``where`` adds conditions to the ``_id`` match. Returns True when a
    document matched, False when it is gone or a condition failed.
    """
    object_id = _object_id(announcement_id)
    if object_id is None:
        return False
    query: Dict[str, Any] = {"_id": object_id}
    query.update(where or {})
    result = await Announcement.find_one(query).update(*operations)
    return result.matched_count > 0


def touch(fields: Dict[str, Any], now) -> Set:
    """``$set`` for the given paths plus ``updated_at``"""
    return Set({**fields, "updated_at": now})
