"""
Capability checks for announcement operations.

A single predicate decides who may do what, instead of each route repeating
its own role comparison.
"""
from enum import Enum
from typing import Optional

from bulletin.errors import AuthorizationError
from bulletin.models.announcement import Announcement, Attachment, Comment
from bulletin.models.employee import Employee, Role


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    PIN = "pin"
    ARCHIVE = "archive"
    EXTEND_EXPIRY = "extend_expiry"
    UPLOAD_ATTACHMENT = "upload_attachment"
    REMOVE_ATTACHMENT = "remove_attachment"
    RESTORE_ATTACHMENT = "restore_attachment"
    TAG_ATTACHMENT = "tag_attachment"
    VIEW_DELETED_ATTACHMENTS = "view_deleted_attachments"
    DELETE_COMMENT = "delete_comment"
    VIEW_STATS = "view_stats"


PUBLISHER_ROLES = {Role.ADMIN, Role.MANAGER, Role.HR}

# Roles that are always allowed, on top of any ownership rule below
ROLE_GRANTS = {
    Action.CREATE: PUBLISHER_ROLES,
    Action.UPDATE: {Role.ADMIN, Role.MANAGER},
    Action.DELETE: {Role.ADMIN, Role.MANAGER},
    Action.PIN: {Role.ADMIN},
    Action.ARCHIVE: {Role.ADMIN},
    Action.EXTEND_EXPIRY: {Role.ADMIN},
    Action.UPLOAD_ATTACHMENT: {Role.ADMIN, Role.MANAGER},
    Action.REMOVE_ATTACHMENT: {Role.ADMIN},
    Action.RESTORE_ATTACHMENT: {Role.ADMIN},
    Action.TAG_ATTACHMENT: {Role.ADMIN},
    Action.VIEW_DELETED_ATTACHMENTS: {Role.ADMIN},
    Action.DELETE_COMMENT: {Role.ADMIN},
    Action.VIEW_STATS: {Role.ADMIN, Role.MANAGER},
}

CREATOR_ACTIONS = {
    Action.UPDATE,
    Action.DELETE,
    Action.PIN,
    Action.ARCHIVE,
    Action.EXTEND_EXPIRY,
    Action.UPLOAD_ATTACHMENT,
    Action.REMOVE_ATTACHMENT,
    Action.TAG_ATTACHMENT,
}


def can(
    actor: Employee,
    action: Action,
    announcement: Optional[Announcement] = None,
    *,
    attachment: Optional[Attachment] = None,
    comment: Optional[Comment] = None,
) -> bool:
    """Return True if the actor may perform the action"""
    if actor.role in ROLE_GRANTS.get(action, set()):
        return True

    if (
        action in CREATOR_ACTIONS
        and announcement is not None
        and announcement.created_by == actor.employee_id
    ):
        return True

    if action == Action.REMOVE_ATTACHMENT and attachment is not None:
        return attachment.uploaded_by == actor.employee_id

    if action == Action.DELETE_COMMENT and comment is not None:
        return comment.author == actor.employee_id

    return False


def require(
    actor: Employee,
    action: Action,
    announcement: Optional[Announcement] = None,
    *,
    attachment: Optional[Attachment] = None,
    comment: Optional[Comment] = None,
    message: Optional[str] = None,
) -> None:
    """Raise AuthorizationError unless the actor may perform the action"""
    if not can(actor, action, announcement, attachment=attachment, comment=comment):
        raise AuthorizationError(
            message or f"Not authorized to {action.value.replace('_', ' ')}"
        )
