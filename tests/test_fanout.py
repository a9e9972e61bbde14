import asyncio
import json
from datetime import datetime

from bulletin.models.announcement import Announcement
from bulletin.models.notification import Notification
from bulletin.services.fanout import Distributor
from bulletin.services.realtime import ANNOUNCEMENTS_CHANNEL, AnnouncementEvent, ConnectionManager
from bulletin.services.scheduler import AnnouncementScheduler
from bulletin.services.tasks import BackgroundTaskQueue
from tests.factories import new_announcement


async def test_realtime_failure_does_not_break_create(services, publisher, admin, employee):
    publisher.fail = True

    created, _ = await services.lifecycle.create(new_announcement(), admin)

    stored = await Announcement.get(created.id)
    assert stored is not None
    assert set(stored.broadcasted_to) == {"ADMIN1", "EMP1"}
    assert await Notification.find(Notification.announcement_id == str(created.id)).count() == 2
    channels = {f.channel for f in services.distributor.recent_failures}
    assert channels == {"realtime"}


async def test_notification_failure_does_not_break_create(services, publisher, admin, employee, monkeypatch):
    async def broken(*args, **kwargs):
        raise ConnectionError("notifications collection unavailable")

    monkeypatch.setattr(Notification, "insert_many", broken)

    created, _ = await services.lifecycle.create(new_announcement(), admin)

    stored = await Announcement.get(created.id)
    assert stored.broadcasted_at is not None
    assert set(stored.broadcasted_to) == {"ADMIN1", "EMP1"}
    assert len(publisher.named(AnnouncementEvent.CREATED.value)) == 2
    assert {f.channel for f in services.distributor.recent_failures} == {"notification"}


async def test_cache_failure_does_not_break_mutations(services, cache, admin):
    cache.fail = True

    created, _ = await services.lifecycle.create(new_announcement(), admin)
    await services.lifecycle.set_pinned(str(created.id), True, admin)

    assert (await Announcement.get(created.id)).is_pinned is True
    assert any(f.channel == "cache" for f in services.distributor.recent_failures)


async def test_resolver_failure_gives_empty_broadcast(db, publisher, cache, tasks, email):
    async def broken_directory():
        raise ConnectionError("directory offline")

    distributor = Distributor(publisher, cache, tasks=tasks, email_service=email, directory_loader=broken_directory)
    announcement = Announcement(
        title="t", description="d", created_by="ADMIN1", last_for={"value": 1, "unit": "days"},
        expires_at=datetime.utcnow(),
    )
    await announcement.insert()

    recipients = await distributor.broadcast(announcement)

    assert recipients == []
    assert publisher.named(AnnouncementEvent.CREATED.value) == []
    assert tasks.jobs == []
    assert distributor.recent_failures[0].channel == "resolver"
    assert (await Announcement.get(announcement.id)).broadcasted_at is not None


async def test_broadcast_queues_emails(services, tasks, email, admin, employee):
    created, _ = await services.lifecycle.create(new_announcement(), admin)

    assert [job[0] for job in tasks.jobs] == [f"announcement-emails:{created.id}"]
    await tasks.run_all()
    assert email.sent == [(str(created.id), ["ADMIN1", "EMP1"])]


async def test_announce_publishes_then_invalidates(services, publisher, cache):
    await services.distributor.announce(AnnouncementEvent.ARCHIVED, "abc", {"is_archived": True}, broad=True)

    assert publisher.events == [
        (ANNOUNCEMENTS_CHANNEL, "announcement-archived", {"announcement_id": "abc", "is_archived": True})
    ]
    assert cache.entry_invalidations == ["abc"]
    assert cache.broad_invalidations == 1


# --- Task queue ---

async def test_task_queue_runs_jobs():
    queue = BackgroundTaskQueue(concurrency=2)
    done = []

    async def job(value):
        done.append(value)

    await queue.start()
    for i in range(5):
        assert queue.submit(f"job-{i}", job, i)
    await queue.join()
    await queue.stop()

    assert sorted(done) == [0, 1, 2, 3, 4]
    assert queue.completed == 5
    assert queue.get_stats()["running"] is False


async def test_task_queue_dead_letters_failures():
    queue = BackgroundTaskQueue(concurrency=1)

    async def boom():
        raise RuntimeError("smtp refused")

    await queue.start()
    queue.submit("emails", boom)
    await queue.join()
    await queue.stop()

    assert queue.completed == 0
    assert queue.dead_letters[0]["job"] == "emails"
    assert queue.dead_letters[0]["error"] == "smtp refused"


async def test_full_task_queue_dead_letters_the_job():
    queue = BackgroundTaskQueue(maxsize=1)

    async def noop():
        pass

    assert queue.submit("first", noop) is True
    assert queue.submit("second", noop) is False
    assert queue.dead_letters[0] == {
        "job": "second", "error": "queue full", "failed_at": queue.dead_letters[0]["failed_at"],
    }


# --- Realtime ---

class FakeSocket:
    def __init__(self, broken=False):
        self.accepted = False
        self.sent = []
        self.broken = broken

    async def accept(self):
        self.accepted = True

    async def send_text(self, message):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(message))


async def test_connection_manager_routes_by_channel():
    manager = ConnectionManager()
    alice, bob = FakeSocket(), FakeSocket()
    await manager.connect(alice, ["user-alice", ANNOUNCEMENTS_CHANNEL])
    await manager.connect(bob, ["user-bob", ANNOUNCEMENTS_CHANNEL])

    await manager.publish("user-alice", "announcement-created", {"announcement_id": "1"})
    await manager.publish(ANNOUNCEMENTS_CHANNEL, "announcement-deleted", {"announcement_id": "2"})

    assert alice.accepted
    assert [m["event"] for m in alice.sent] == ["announcement-created", "announcement-deleted"]
    assert bob.sent == [{"event": "announcement-deleted", "data": {"announcement_id": "2"}}]

    manager.disconnect(alice)
    assert manager.connection_count("user-alice") == 0
    assert manager.connection_count(ANNOUNCEMENTS_CHANNEL) == 1


async def test_connection_manager_drops_broken_sockets():
    manager = ConnectionManager()
    good, bad = FakeSocket(), FakeSocket(broken=True)
    await manager.connect(good, [ANNOUNCEMENTS_CHANNEL])
    await manager.connect(bad, [ANNOUNCEMENTS_CHANNEL])

    await manager.publish(ANNOUNCEMENTS_CHANNEL, "announcement-updated", {})

    assert len(good.sent) == 1
    assert manager.connection_count(ANNOUNCEMENTS_CHANNEL) == 1
    assert bad not in manager.memberships


# --- Scheduler ---

class StubLifecycle:
    def __init__(self, fail_scheduled=False):
        self.fail_scheduled = fail_scheduled
        self.calls = 0

    async def process_scheduled(self):
        if self.fail_scheduled:
            raise RuntimeError("mongo down")
        return 2

    async def archive_expired(self):
        self.calls += 1
        return 1


async def test_scheduler_run_once_isolates_failures():
    assert await AnnouncementScheduler(StubLifecycle()).run_once() == {"scheduled": 2, "archived": 1}

    lifecycle = StubLifecycle(fail_scheduled=True)
    assert await AnnouncementScheduler(lifecycle).run_once() == {"scheduled": 0, "archived": 1}
    assert lifecycle.calls == 1


async def test_scheduler_start_and_stop():
    lifecycle = StubLifecycle()
    scheduler = AnnouncementScheduler(lifecycle, interval_seconds=3600)

    scheduler.start()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    await scheduler.stop()

    assert lifecycle.calls == 1
