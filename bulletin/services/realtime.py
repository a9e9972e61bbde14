"""
Realtime delivery over WebSockets.

Publishing is at-most-once: a broken socket is dropped from its rooms and the
message is not retried.
"""
import json
import logging
from enum import Enum
from typing import Any, Dict, List, Protocol, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

ANNOUNCEMENTS_CHANNEL = "announcements"


def user_channel(user_id: str) -> str:
    return f"user-{user_id}"


class Publisher(Protocol):
    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        ...


class ConnectionManager:
    """Tracks open sockets per channel and fans messages out to them"""

    def __init__(self):
        self.channels: Dict[str, List[WebSocket]] = {}
        self.memberships: Dict[WebSocket, Set[str]] = {}

    async def connect(self, websocket: WebSocket, channels: List[str]) -> None:
        await websocket.accept()
        for channel in channels:
            self.channels.setdefault(channel, []).append(websocket)
        self.memberships[websocket] = set(channels)

    def disconnect(self, websocket: WebSocket) -> None:
        for channel in self.memberships.pop(websocket, set()):
            sockets = self.channels.get(channel)
            if sockets and websocket in sockets:
                sockets.remove(websocket)
            if not sockets:
                self.channels.pop(channel, None)

    def connection_count(self, channel: str) -> int:
        return len(self.channels.get(channel, []))

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        sockets = list(self.channels.get(channel, []))
        if not sockets:
            return

        message = json.dumps({"event": event, "data": jsonable_encoder(payload)})
        for websocket in sockets:
            try:
                await websocket.send_text(message)
            except Exception as e:
                logger.warning("Dropping socket on %s after send failure: %s", channel, e)
                self.disconnect(websocket)


class AnnouncementEvent(str, Enum):
    CREATED = "announcement-created"
    UPDATED = "announcement-updated"
    DELETED = "announcement-deleted"
    PIN_TOGGLED = "announcement-pin-toggled"
    ARCHIVED = "announcement-archived"
    EXPIRY_EXTENDED = "announcement-expiry-extended"
    COMMENT_ADDED = "announcement-comment-added"
    COMMENT_DELETED = "announcement-comment-deleted"
    REACTION_ADDED = "announcement-reaction-added"
    REACTION_REMOVED = "announcement-reaction-removed"
    ATTACHMENTS_ADDED = "announcement-attachments-added"
    ATTACHMENT_DELETED = "announcement-attachment-deleted"
    ATTACHMENT_RESTORED = "announcement-attachment-restored"
    ATTACHMENT_TAGGED = "announcement-attachment-tagged"
