import pytest

from bulletin.errors import AuthorizationError
from bulletin.models.announcement import Announcement, Attachment, Comment, LastFor
from bulletin.models.employee import Employee, Role
from bulletin.services.permissions import Action, can, require


def person(employee_id: str, role: Role) -> Employee:
    return Employee.model_construct(
        employee_id=employee_id,
        first_name=employee_id,
        last_name="",
        email=f"{employee_id}@company.com",
        role=role,
    )


ADMIN = person("admin", Role.ADMIN)
MANAGER = person("mgr", Role.MANAGER)
HR = person("hr", Role.HR)
CREATOR = person("creator", Role.EMPLOYEE)
READER = person("reader", Role.EMPLOYEE)

ANNOUNCEMENT = Announcement.model_construct(
    title="t",
    description="d",
    created_by="creator",
    last_for=LastFor(value=1, unit="days"),
)


@pytest.mark.parametrize(
    "actor,allowed",
    [(ADMIN, True), (MANAGER, True), (HR, True), (READER, False)],
)
def test_create(actor, allowed):
    assert can(actor, Action.CREATE) is allowed


@pytest.mark.parametrize("action", [Action.UPDATE, Action.DELETE])
def test_update_and_delete(action):
    assert can(ADMIN, action, ANNOUNCEMENT)
    assert can(MANAGER, action, ANNOUNCEMENT)
    assert can(CREATOR, action, ANNOUNCEMENT)
    assert not can(HR, action, ANNOUNCEMENT)
    assert not can(READER, action, ANNOUNCEMENT)


@pytest.mark.parametrize(
    "action", [Action.PIN, Action.ARCHIVE, Action.EXTEND_EXPIRY, Action.TAG_ATTACHMENT]
)
def test_creator_or_admin_actions(action):
    assert can(ADMIN, action, ANNOUNCEMENT)
    assert can(CREATOR, action, ANNOUNCEMENT)
    assert not can(MANAGER, action, ANNOUNCEMENT)
    assert not can(READER, action, ANNOUNCEMENT)


def test_upload_attachments():
    assert can(MANAGER, Action.UPLOAD_ATTACHMENT, ANNOUNCEMENT)
    assert can(CREATOR, Action.UPLOAD_ATTACHMENT, ANNOUNCEMENT)
    assert not can(HR, Action.UPLOAD_ATTACHMENT, ANNOUNCEMENT)


def test_remove_attachment_allows_uploader():
    attachment = Attachment.model_construct(id="a1", uploaded_by="reader")
    other = Attachment.model_construct(id="a2", uploaded_by="someone")
    assert can(READER, Action.REMOVE_ATTACHMENT, ANNOUNCEMENT, attachment=attachment)
    assert not can(READER, Action.REMOVE_ATTACHMENT, ANNOUNCEMENT, attachment=other)
    assert can(CREATOR, Action.REMOVE_ATTACHMENT, ANNOUNCEMENT, attachment=other)
    assert not can(MANAGER, Action.REMOVE_ATTACHMENT, ANNOUNCEMENT, attachment=other)


def test_restore_and_view_deleted_are_admin_only():
    for action in (Action.RESTORE_ATTACHMENT, Action.VIEW_DELETED_ATTACHMENTS):
        assert can(ADMIN, action, ANNOUNCEMENT)
        assert not can(CREATOR, action, ANNOUNCEMENT)
        assert not can(MANAGER, action, ANNOUNCEMENT)


def test_delete_comment_author_or_admin():
    comment = Comment.model_construct(id="c1", author="reader", text="hi")
    assert can(READER, Action.DELETE_COMMENT, ANNOUNCEMENT, comment=comment)
    assert can(ADMIN, Action.DELETE_COMMENT, ANNOUNCEMENT, comment=comment)
    assert not can(CREATOR, Action.DELETE_COMMENT, ANNOUNCEMENT, comment=comment)


def test_view_stats():
    assert can(ADMIN, Action.VIEW_STATS)
    assert can(MANAGER, Action.VIEW_STATS)
    assert not can(HR, Action.VIEW_STATS)


def test_require_raises_with_message():
    with pytest.raises(AuthorizationError) as exc:
        require(READER, Action.VIEW_STATS)
    assert exc.value.status_code == 403
    assert "view stats" in exc.value.message

    with pytest.raises(AuthorizationError, match="Nope"):
        require(READER, Action.PIN, ANNOUNCEMENT, message="Nope")
