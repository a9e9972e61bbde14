"""
Service wiring. One ``Services`` instance is built at startup and kept on
``app.state.services``; routes reach it through ``get_services``.
"""
from dataclasses import dataclass
from typing import Any

from bulletin.config import Settings
from bulletin.services.attachments import AttachmentManager
from bulletin.services.cache import AnnouncementCache
from bulletin.services.email import email_service as default_email_service
from bulletin.services.engagement import EngagementService
from bulletin.services.fanout import Distributor
from bulletin.services.lifecycle import LifecycleManager
from bulletin.services.realtime import ConnectionManager
from bulletin.services.storage import BlobStore, LocalBlobStore
from bulletin.services.tasks import BackgroundTaskQueue


@dataclass
class Services:
    lifecycle: LifecycleManager
    attachments: AttachmentManager
    engagement: EngagementService
    distributor: Distributor
    publisher: Any
    cache: AnnouncementCache
    tasks: BackgroundTaskQueue
    blob_store: BlobStore


def build_services(
    settings: Settings,
    redis_client: Any = None,
    publisher: Any = None,
    blob_store: BlobStore = None,
    email_service: Any = None,
    tasks: BackgroundTaskQueue = None,
    cache: AnnouncementCache = None,
) -> Services:
    publisher = publisher or ConnectionManager()
    cache = cache or AnnouncementCache(redis_client, ttl_seconds=settings.CACHE_TTL_SECONDS)
    tasks = tasks or BackgroundTaskQueue(
        concurrency=settings.TASK_QUEUE_CONCURRENCY,
        maxsize=settings.TASK_QUEUE_MAXSIZE,
    )
    blob_store = blob_store or LocalBlobStore(settings.UPLOAD_DIR)

    distributor = Distributor(
        publisher,
        cache,
        tasks=tasks,
        email_service=email_service or default_email_service,
    )
    attachments = AttachmentManager(
        blob_store,
        distributor,
        max_size=settings.MAX_ATTACHMENT_SIZE,
        max_files=settings.MAX_ATTACHMENTS_PER_REQUEST,
    )
    lifecycle = LifecycleManager(
        distributor,
        attachments,
        cache,
        max_pinned=settings.MAX_PINNED_ANNOUNCEMENTS,
    )

    return Services(
        lifecycle=lifecycle,
        attachments=attachments,
        engagement=EngagementService(distributor),
        distributor=distributor,
        publisher=publisher,
        cache=cache,
        tasks=tasks,
        blob_store=blob_store,
    )
