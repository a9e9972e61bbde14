"""
Error taxonomy for the announcement engine.

Every error the engine raises on purpose derives from ``BulletinError`` and
carries the HTTP status the API layer renders it with. ``SideEffectFailure``
is the exception: it wraps a failed notification/realtime/cache/blob call and
is only ever logged, never surfaced to the caller.
"""
from typing import Any, Dict, List, Optional

from fastapi import status


class BulletinError(Exception):
    """Base class for all user-facing engine errors"""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, **self.details}


class ValidationError(BulletinError):
    """Missing or malformed required fields"""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(BulletinError):
    """Unknown announcement, comment, reaction or attachment"""

    status_code = status.HTTP_404_NOT_FOUND


class AuthorizationError(BulletinError):
    """Role or ownership mismatch"""

    status_code = status.HTTP_403_FORBIDDEN


class CapacityError(BulletinError):
    """Pin limit exceeded"""

    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(BulletinError):
    """Duplicate attachment content"""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, duplicates: Optional[List[str]] = None):
        self.duplicates = list(duplicates or [])
        super().__init__(message, {"duplicates": self.duplicates} if self.duplicates else None)


class SideEffectFailure(Exception):
    """A best-effort collaborator call failed after the primary write"""

    def __init__(self, channel: str, cause: BaseException):
        self.channel = channel
        self.cause = cause
        super().__init__(f"{channel} failed: {cause}")
