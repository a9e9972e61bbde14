from typing import Any, Dict, List, Optional

import pytest
from beanie import init_beanie
from mongomock_motor import AsyncMongoMockClient

from bulletin.config import settings
from bulletin.models.employee import Employee, Role
from bulletin.models.announcement import Announcement
from bulletin.models.notification import Notification
from bulletin.services.cache import AnnouncementCache
from bulletin.services.registry import build_services


class RecordingPublisher:
    def __init__(self):
        self.events: List[tuple] = []
        self.fail = False

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("realtime transport down")
        self.events.append((channel, event, payload))

    def named(self, event: str) -> List[tuple]:
        return [e for e in self.events if e[1] == event]


class RecordingCache(AnnouncementCache):
    """In-memory cache that records invalidations"""

    def __init__(self):
        super().__init__(None)
        self.store: Dict[str, Any] = {}
        self.entry_invalidations: List[str] = []
        self.broad_invalidations = 0
        self.fail = False

    @property
    def enabled(self) -> bool:
        return True

    async def _get(self, key: str) -> Optional[Any]:
        return self.store.get(key)

    async def _set(self, key: str, value: Any) -> None:
        self.store[key] = value

    async def invalidate_entry(self, announcement_id: str) -> None:
        if self.fail:
            raise ConnectionError("redis down")
        self.entry_invalidations.append(announcement_id)
        self.store = {k: v for k, v in self.store.items() if not k.endswith(f"entry:{announcement_id}")}

    async def invalidate_all(self) -> int:
        if self.fail:
            raise ConnectionError("redis down")
        self.broad_invalidations += 1
        count = len(self.store)
        self.store = {}
        return count


class MemoryBlobStore:
    def __init__(self):
        self.blobs: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_names: set = set()

    async def put(self, announcement_id: str, filename: str, data: bytes, mimetype: str) -> Dict[str, str]:
        if filename in self.fail_names:
            raise IOError("storage unavailable")
        public_id = f"announcements/{announcement_id}/attachments/{len(self.blobs)}-{filename}"
        self.blobs[public_id] = data
        return {
            "public_id": public_id,
            "url": f"/uploads/{public_id}",
            "resource_type": "image" if mimetype.startswith("image/") else "raw",
        }

    async def delete(self, public_id: str, resource_type: str) -> None:
        self.deleted.append(public_id)
        self.blobs.pop(public_id, None)


class FakeEmailService:
    def __init__(self):
        self.sent: List[tuple] = []

    async def send_announcement_emails(self, announcement, recipient_ids):
        self.sent.append((str(announcement.id), list(recipient_ids)))
        return len(recipient_ids)


class RecordingTasks:
    """Collects submitted jobs; ``run_all`` executes them in order"""

    def __init__(self):
        self.jobs: List[tuple] = []

    def submit(self, name, func, *args, **kwargs) -> bool:
        self.jobs.append((name, func, args, kwargs))
        return True

    async def run_all(self) -> None:
        jobs, self.jobs = self.jobs, []
        for _, func, args, kwargs in jobs:
            await func(*args, **kwargs)

    def get_stats(self):
        return {"running": False, "queue_size": len(self.jobs)}


@pytest.fixture
async def db():
    client = AsyncMongoMockClient()
    database = client["bulletin_test"]
    await init_beanie(database=database, document_models=[Employee, Announcement, Notification])
    yield database


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def cache():
    return RecordingCache()


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def email():
    return FakeEmailService()


@pytest.fixture
def tasks():
    return RecordingTasks()


@pytest.fixture
def services(db, publisher, cache, blob_store, email, tasks):
    return build_services(
        settings,
        publisher=publisher,
        blob_store=blob_store,
        email_service=email,
        tasks=tasks,
        cache=cache,
    )


@pytest.fixture
def make_employee(db):
    async def _make(
        employee_id: str,
        role: Role = Role.EMPLOYEE,
        department: Optional[str] = "Engineering",
        is_active: bool = True,
        is_verified: bool = True,
        password_hash: str = "",
    ) -> Employee:
        employee = Employee(
            employee_id=employee_id,
            first_name=employee_id.title(),
            last_name="Tester",
            email=f"{employee_id.lower()}@company.com",
            department=department,
            role=role,
            is_active=is_active,
            is_verified=is_verified,
            password_hash=password_hash,
        )
        await employee.insert()
        return employee

    return _make


@pytest.fixture
async def admin(make_employee):
    return await make_employee("ADMIN1", role=Role.ADMIN, department="Management")


@pytest.fixture
async def manager(make_employee):
    return await make_employee("MGR1", role=Role.MANAGER)


@pytest.fixture
async def employee(make_employee):
    return await make_employee("EMP1")

