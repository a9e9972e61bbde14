import asyncio
import gc

import pytest

from bulletin.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from bulletin.models.announcement import Announcement, AttachmentTag
from bulletin.models.employee import Role
from bulletin.services import engagement
from tests.factories import new_announcement, upload


@pytest.fixture
async def announcement(services, admin):
    created, _ = await services.lifecycle.create(new_announcement(), admin)
    return created


def live_hashes(announcement):
    return [a.file_hash for a in announcement.live_attachments()]


async def test_upload_dedups_within_batch_and_against_existing(services, publisher, announcement, admin):
    announcement_id = str(announcement.id)

    first = await services.attachments.upload(
        announcement_id,
        [upload("a.pdf", b"alpha"), upload("a-again.pdf", b"alpha"), upload("photo.png", b"png", "image/png")],
        admin,
    )
    assert [a.original_name for a in first.uploaded] == ["a.pdf", "photo.png"]
    assert first.duplicates == ["a-again.pdf"]
    assert first.uploaded[1].resource_type == "image"
    assert first.uploaded[0].resource_type == "raw"

    second = await services.attachments.upload(
        announcement_id, [upload("renamed.pdf", b"alpha"), upload("b.pdf", b"beta")], admin
    )
    assert [a.original_name for a in second.uploaded] == ["b.pdf"]
    assert second.duplicates == ["renamed.pdf"]

    stored = await Announcement.get(announcement.id)
    hashes = live_hashes(stored)
    assert len(hashes) == len(set(hashes)) == 3

    events = publisher.named("announcement-attachments-added")
    assert len(events) == 2
    assert [a["original_name"] for a in events[1][2]["new_attachments"]] == ["b.pdf"]


async def test_all_duplicates_is_a_conflict(services, announcement, admin):
    announcement_id = str(announcement.id)
    await services.attachments.upload(announcement_id, [upload("a.pdf", b"same")], admin)

    with pytest.raises(ConflictError) as exc:
        await services.attachments.upload(
            announcement_id, [upload("b.pdf", b"same"), upload("c.pdf", b"same")], admin
        )
    assert exc.value.status_code == 409
    assert exc.value.duplicates == ["b.pdf", "c.pdf"]
    assert exc.value.to_dict()["duplicates"] == ["b.pdf", "c.pdf"]
    assert exc.value.message == "All files are duplicates"


async def test_invalid_files_are_reported_not_raised(services, blob_store, announcement, admin):
    blob_store.fail_names.add("flaky.pdf")
    services.attachments.max_size = 16

    outcome = await services.attachments.upload(
        str(announcement.id),
        [
            upload("ok.pdf", b"fine"),
            upload("big.pdf", b"x" * 17),
            upload("script.sh", b"#!", "text/x-shellscript"),
            upload("flaky.pdf", b"flaky"),
        ],
        admin,
    )

    assert [a.original_name for a in outcome.uploaded] == ["ok.pdf"]
    errors = {f.original_name: f.error for f in outcome.failed}
    assert errors["big.pdf"].startswith("File too large")
    assert errors["script.sh"].startswith("Invalid file type")
    assert errors["flaky.pdf"].startswith("Upload failed")


async def test_upload_limits(services, announcement, admin, employee):
    with pytest.raises(ValidationError, match="No files uploaded"):
        await services.attachments.upload(str(announcement.id), [], admin)

    with pytest.raises(ValidationError, match="Maximum 5 files"):
        await services.attachments.upload(
            str(announcement.id), [upload(f"{i}.pdf", bytes([i])) for i in range(6)], admin
        )

    with pytest.raises(AuthorizationError):
        await services.attachments.upload(str(announcement.id), [upload("a.pdf", b"a")], employee)

    with pytest.raises(NotFoundError):
        await services.attachments.upload("64b7f0c2a1b2c3d4e5f60718", [upload("a.pdf", b"a")], admin)


async def test_soft_delete_and_restore(services, publisher, announcement, admin):
    announcement_id = str(announcement.id)
    outcome = await services.attachments.upload(announcement_id, [upload("a.pdf", b"alpha")], admin)
    attachment_id = outcome.uploaded[0].id

    updated = await services.attachments.soft_delete(announcement_id, attachment_id, admin)
    attachment = updated.attachments[attachment_id]
    assert attachment.is_deleted is True
    assert attachment.deleted_by == "ADMIN1"
    assert attachment.deleted_at is not None
    assert publisher.named("announcement-attachment-deleted")[0][2]["permanent"] is False

    # the same content can be uploaded again once the original is soft-deleted
    again = await services.attachments.upload(announcement_id, [upload("a2.pdf", b"alpha")], admin)
    assert len(again.uploaded) == 1

    with pytest.raises(ConflictError):
        await services.attachments.restore(announcement_id, attachment_id, admin)

    await services.attachments.permanent_delete(announcement_id, again.uploaded[0].id, admin)
    restored = await services.attachments.restore(announcement_id, attachment_id, admin)
    assert restored.is_deleted is False
    assert restored.deleted_at is None
    assert restored.deleted_by is None
    assert publisher.named("announcement-attachment-restored")[0][2]["attachment_id"] == attachment_id

    with pytest.raises(ValidationError, match="Attachment is not deleted"):
        await services.attachments.restore(announcement_id, attachment_id, admin)


async def test_restore_is_admin_only(services, make_employee, admin):
    creator = await make_employee("MGR9", role=Role.MANAGER)
    created, _ = await services.lifecycle.create(new_announcement(), creator)
    outcome = await services.attachments.upload(str(created.id), [upload("a.pdf", b"a")], creator)
    attachment_id = outcome.uploaded[0].id
    await services.attachments.soft_delete(str(created.id), attachment_id, creator)

    with pytest.raises(AuthorizationError):
        await services.attachments.restore(str(created.id), attachment_id, creator)
    await services.attachments.restore(str(created.id), attachment_id, admin)


async def test_uploader_may_delete_own_attachment(services, make_employee, admin, manager):
    created, _ = await services.lifecycle.create(new_announcement(), admin)
    outcome = await services.attachments.upload(str(created.id), [upload("m.pdf", b"m")], manager)
    attachment_id = outcome.uploaded[0].id

    other = await make_employee("MGR2", role=Role.MANAGER)
    with pytest.raises(AuthorizationError):
        await services.attachments.soft_delete(str(created.id), attachment_id, other)

    await services.attachments.soft_delete(str(created.id), attachment_id, manager)


async def test_permanent_delete_removes_record_and_blob(services, blob_store, publisher, announcement, admin):
    announcement_id = str(announcement.id)
    outcome = await services.attachments.upload(announcement_id, [upload("a.pdf", b"alpha")], admin)
    attachment = outcome.uploaded[0]

    updated = await services.attachments.permanent_delete(announcement_id, attachment.id, admin)

    assert attachment.id not in updated.attachments
    assert blob_store.deleted == [attachment.public_id]
    assert publisher.named("announcement-attachment-deleted")[0][2]["permanent"] is True

    with pytest.raises(NotFoundError):
        await services.attachments.permanent_delete(announcement_id, attachment.id, admin)


async def test_permanent_delete_survives_blob_failure(services, blob_store, announcement, admin):
    announcement_id = str(announcement.id)
    outcome = await services.attachments.upload(announcement_id, [upload("a.pdf", b"alpha")], admin)

    async def broken_delete(public_id, resource_type):
        raise IOError("storage unavailable")

    blob_store.delete = broken_delete
    updated = await services.attachments.permanent_delete(announcement_id, outcome.uploaded[0].id, admin)

    assert updated.attachments == {}
    assert services.distributor.recent_failures[-1].channel == "blob"


async def test_update_tag(services, publisher, announcement, admin):
    announcement_id = str(announcement.id)
    outcome = await services.attachments.upload(announcement_id, [upload("a.pdf", b"alpha")], admin)
    attachment_id = outcome.uploaded[0].id

    tagged = await services.attachments.update_tag(announcement_id, attachment_id, "policy", admin)
    assert tagged.tag == AttachmentTag.POLICY
    stored = await Announcement.get(announcement.id)
    assert stored.attachments[attachment_id].tag == AttachmentTag.POLICY
    assert publisher.named("announcement-attachment-tagged")[0][2]["tag"] == "policy"

    with pytest.raises(ValidationError, match="Invalid tag. Must be one of: notice, holiday, exam, general, policy, other"):
        await services.attachments.update_tag(announcement_id, attachment_id, "memo", admin)


async def test_list_attachments(services, announcement, admin, employee):
    announcement_id = str(announcement.id)
    outcome = await services.attachments.upload(
        announcement_id,
        [upload("a.pdf", b"a"), upload("b.png", b"b", "image/png"), upload("c.docx", b"c",
         "application/vnd.openxmlformats-officedocument.wordprocessingml.document")],
        admin,
    )
    await services.attachments.soft_delete(announcement_id, outcome.uploaded[0].id, admin)

    listing = await services.attachments.list_attachments(announcement_id, employee)
    assert listing.total_count == 2
    assert listing.image_count == 1
    assert listing.document_count == 1
    assert [a.original_name for a in listing.images] == ["b.png"]

    # only admins can opt into deleted attachments
    assert (await services.attachments.list_attachments(announcement_id, employee, include_deleted=True)).total_count == 2
    with_deleted = await services.attachments.list_attachments(announcement_id, admin, include_deleted=True)
    assert with_deleted.total_count == 3
    assert with_deleted.document_count == 2


async def test_upload_locks_are_released_when_idle(services, admin):
    for i in range(3):
        created, _ = await services.lifecycle.create(new_announcement(title=f"A{i}"), admin)
        await services.attachments.upload(str(created.id), [upload(f"{i}.pdf", f"file {i}".encode())], admin)

    gc.collect()
    assert len(services.attachments._locks) == 0


async def test_reaction_does_not_undo_concurrent_upload(services, announcement, admin, employee, monkeypatch):
    announcement_id = str(announcement.id)
    original = engagement.load_announcement

    async def slow(announcement_id):
        loaded = await original(announcement_id)
        await asyncio.sleep(0.05)
        return loaded

    monkeypatch.setattr(engagement, "load_announcement", slow)

    await asyncio.gather(
        services.engagement.add_reaction(announcement_id, "🔥", employee),
        services.attachments.upload(announcement_id, [upload("plan.pdf", b"plan")], admin),
    )

    stored = await Announcement.get(announcement.id)
    assert [a.original_name for a in stored.attachments.values()] == ["plan.pdf"]
    assert stored.reactions["🔥"].users == ["EMP1"]
