"""OpenProject sync module.

Entry point: OpenProjectModule. Creates and coordinates the client, store,
notifier and TaskSync, and owns the periodic trigger.
"""
import asyncio
import logging

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from services.notifications import TelegramNotifier
from services.openproject.client import OpenProjectClient
from services.openproject.sync import TaskSync
from services.task_store import TaskStore

logger = logging.getLogger("opsync.openproject")


class OpenProjectModule:
    """Wires the sync pass to its collaborators and runs it on a timer."""

    def __init__(
        self,
        redis: Redis | None,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.redis = redis
        self.session_factory = session_factory

        self.client = OpenProjectClient()
        self.store = TaskStore(session_factory)
        self.notifier = TelegramNotifier()
        self.sync = TaskSync(self.client, self.store, self.notifier, redis)

        self.interval = max(1, settings.SYNC_INTERVAL_MINUTES) * 60
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Probe the connection and start the periodic sync."""
        logger.info("OpenProject module starting...")

        conn = await self.client.test_connection()
        if conn.get("success"):
            logger.info("OpenProject connection OK")
        else:
            logger.warning("OpenProject connection failed: %s", conn.get("error"))

        self._task = asyncio.create_task(self.run_periodic(), name="op_task_sync")
        logger.info(
            "OpenProject module started: sync every %d minute(s)",
            self.interval // 60,
        )

    async def run_periodic(self) -> None:
        """Run one pass now, then every SYNC_INTERVAL_MINUTES."""
        while True:
            try:
                res = await self.sync.run()
                if res.get("success"):
                    logger.info("Scheduled sync completed: %s", res.get("results"))
                else:
                    logger.error(
                        "Scheduled sync failed: %s",
                        res.get("error") or res.get("message"),
                    )
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Scheduled sync error: %s", exc, exc_info=True)
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        """Stop the periodic sync and close HTTP clients."""
        logger.info("OpenProject module stopping...")
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        await self.client.close()
        await self.notifier.close()
        logger.info("OpenProject module stopped")
