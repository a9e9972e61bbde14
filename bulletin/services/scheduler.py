"""
Periodic announcement jobs: broadcast due scheduled items, archive expired ones.
"""
import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class AnnouncementScheduler:
    def __init__(self, lifecycle, interval_seconds: int = 60):
        self.lifecycle = lifecycle
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> dict:
        results = {"scheduled": 0, "archived": 0}
        try:
            results["scheduled"] = await self.lifecycle.process_scheduled()
        except Exception as e:
            logger.error("Error processing scheduled announcements: %s", e)
        try:
            results["archived"] = await self.lifecycle.archive_expired()
        except Exception as e:
            logger.error("Error archiving expired announcements: %s", e)
        return results

    async def _loop(self) -> None:
        logger.info("Announcement scheduler started (every %ss)", self.interval_seconds)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Announcement scheduler stopped")
