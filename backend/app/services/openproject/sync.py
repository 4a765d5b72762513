"""TaskSync — one OpenProject → local store reconciliation pass.

Pass outline:
1. Single-flight guard (at most one pass per process)
2. Connectivity probe, then full fetch (either failing is fatal)
3. Per work package: lookup by external_id, upsert, diff, notify
4. Per-record failures are collected, never abort the pass

RunStatus belongs to this instance and is only mutated here.
"""
import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from redis.asyncio import Redis

from services.notifications import TelegramNotifier
from services.openproject.changes import detect_task_changes
from services.openproject.client import OpenProjectClient, OpenProjectConnectivityError
from services.openproject.config import REDIS_CHANNEL_SYNC, SYNC_ALREADY_RUNNING
from services.task_store import TaskStore

logger = logging.getLogger("opsync.openproject.sync")


@dataclass
class RunStatus:
    last_run: datetime | None = None
    last_status: str = "never"          # never | running | ok | failed
    last_error: str | None = None
    is_running: bool = False

    def snapshot(self) -> dict:
        return {
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_status": self.last_status,
            "last_error": self.last_error,
            "is_running": self.is_running,
        }


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    notifications: int = 0
    errors: list[dict] = field(default_factory=list)


class TaskSync:

    def __init__(
        self,
        client: OpenProjectClient,
        store: TaskStore,
        notifier: TelegramNotifier,
        redis: Redis | None = None,
    ):
        self.client = client
        self.store = store
        self.notifier = notifier
        self.redis = redis
        self._status = RunStatus()

    def status(self) -> dict:
        return self._status.snapshot()

    async def run(self) -> dict:
        """Run one reconciliation pass.

        Returns {"success": True, "results": {...}} or
        {"success": False, "error": "..."} on a fatal failure.
        """
        # Check-and-set with no await in between: atomic on the event loop.
        if self._status.is_running:
            logger.info("Sync requested while a pass is running, skipping")
            return {"success": False, "message": SYNC_ALREADY_RUNNING}

        self._status.is_running = True
        self._status.last_run = datetime.utcnow()
        self._status.last_status = "running"
        self._status.last_error = None

        try:
            response = await self._run_pass()
        except asyncio.CancelledError:
            self._status.last_status = "failed"
            self._status.last_error = "cancelled"
            logger.warning("Sync pass cancelled")
            raise
        finally:
            self._status.is_running = False

        await self._publish(response)
        return response

    async def _run_pass(self) -> dict:
        try:
            conn = await self.client.test_connection()
            if not conn.get("success"):
                raise OpenProjectConnectivityError(conn.get("error") or "Connection failed")
            candidates = await self.client.get_tasks()
        except Exception as exc:
            self._status.last_status = "failed"
            self._status.last_error = str(exc)
            logger.error("Sync pass failed: %s", exc)
            return {"success": False, "error": str(exc)}

        results = SyncResult()
        for task in candidates:
            await self._reconcile(task, results)

        self._status.last_status = "ok"
        logger.info(
            "Sync pass done: %d created, %d updated, %d notifications, %d errors",
            results.created, results.updated, results.notifications, len(results.errors),
        )
        return {"success": True, "results": asdict(results)}

    async def _reconcile(self, task: Any, results: SyncResult) -> None:
        try:
            existing = await self.store.find_by_external_id(task.external_id)
            await self.store.upsert_by_external_id(task.model_dump())

            if existing:
                changes = detect_task_changes(existing, task)
                if changes and await self._notify(
                    self.notifier.notify_task_change, task, changes,
                ):
                    results.notifications += 1
                # Counted even when nothing changed.
                results.updated += 1
            else:
                if await self._notify(self.notifier.notify_new_task, task):
                    results.notifications += 1
                results.created += 1

        except Exception as exc:
            logger.warning("Sync error for task %s: %s", task.external_id, exc)
            results.errors.append({"external_id": task.external_id, "error": str(exc)})

    @staticmethod
    async def _notify(send: Callable[..., Awaitable[dict]], *args) -> bool:
        try:
            result = await send(*args)
        except Exception as exc:
            logger.error("Failed to send task notification: %s", exc)
            return False
        if not result.get("success"):
            logger.debug("Notification not delivered: %s", result.get("error"))
            return False
        return True

    async def _publish(self, response: dict) -> None:
        if self.redis is None:
            return
        payload = {
            "type": "sync_pass",
            "status": self.status(),
            "response": response,
        }
        try:
            await self.redis.publish(REDIS_CHANNEL_SYNC, json.dumps(payload, default=str))
        except Exception as exc:
            logger.debug("Sync event publish failed: %s", exc)
