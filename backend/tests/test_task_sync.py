"""
Tests for TaskSync: single-flight guard, reconciliation counts, failure handling.
"""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from services.openproject.client import OpenProjectError
from services.openproject.sync import TaskSync
from services.task_store import TaskStore
from .fakes import FakeOpenProjectClient, make_task


class FlakyStore(TaskStore):
    """Fails the upsert for selected external ids."""

    def __init__(self, session_factory, failing: set[str]):
        super().__init__(session_factory)
        self.failing = failing

    async def upsert_by_external_id(self, data):
        if data.get("external_id") in self.failing:
            raise RuntimeError(f"disk full for {data['external_id']}")
        return await super().upsert_by_external_id(data)


@pytest.fixture
def client() -> FakeOpenProjectClient:
    return FakeOpenProjectClient([make_task(1), make_task(2)])


@pytest.fixture
def sync(client, store, notifier) -> TaskSync:
    return TaskSync(client, store, notifier)


class TestStatus:

    def test_initial_status(self, sync):
        assert sync.status() == {
            "last_run": None,
            "last_status": "never",
            "last_error": None,
            "is_running": False,
        }

    @pytest.mark.asyncio
    async def test_status_after_successful_pass(self, sync):
        await sync.run()
        status = sync.status()

        assert status["last_status"] == "ok"
        assert status["last_error"] is None
        assert status["is_running"] is False
        assert status["last_run"] is not None


class TestSingleFlight:

    @pytest.mark.asyncio
    async def test_second_run_is_rejected_while_first_in_progress(self, sync, client, store):
        client.gate = asyncio.Event()
        first = asyncio.create_task(sync.run())
        await asyncio.sleep(0)

        assert sync.status()["is_running"] is True
        assert sync.status()["last_status"] == "running"

        second = await sync.run()
        assert second == {"success": False, "message": "Sync already running"}
        assert client.probe_calls == 1

        client.gate.set()
        result = await first

        assert result["success"] is True
        assert result["results"]["created"] == 2
        assert len(await store.find_all()) == 2
        assert sync.status()["is_running"] is False

    @pytest.mark.asyncio
    async def test_concurrent_runs_only_one_executes(self, sync, client):
        client.gate = asyncio.Event()
        runs = [asyncio.create_task(sync.run()) for _ in range(3)]
        await asyncio.sleep(0)
        client.gate.set()
        results = await asyncio.gather(*runs)

        assert sum(1 for r in results if r.get("success")) == 1
        assert sum(1 for r in results if r.get("message") == "Sync already running") == 2
        assert client.fetch_calls == 1


class TestReconcile:

    @pytest.mark.asyncio
    async def test_first_pass_creates_and_notifies(self, sync, notifier, store):
        result = await sync.run()

        assert result == {
            "success": True,
            "results": {"created": 2, "updated": 0, "notifications": 2, "errors": []},
        }
        assert notifier.notify_new_task.await_count == 2
        notifier.notify_task_change.assert_not_awaited()

        row = await store.find_by_external_id("1")
        assert row.title == "Task 1"
        assert row.status == "New"

    @pytest.mark.asyncio
    async def test_unchanged_records_still_count_as_updated(self, sync, notifier):
        await sync.run()
        notifier.reset_mock()

        result = await sync.run()

        assert result["results"] == {"created": 0, "updated": 2, "notifications": 0, "errors": []}
        notifier.notify_new_task.assert_not_awaited()
        notifier.notify_task_change.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tracked_change_sends_change_notification(self, sync, client, notifier, store):
        await sync.run()
        notifier.reset_mock()
        client.tasks = [make_task(1, status="Closed"), make_task(2)]

        result = await sync.run()

        assert result["results"]["updated"] == 2
        assert result["results"]["notifications"] == 1
        notifier.notify_task_change.assert_awaited_once()
        task, changes = notifier.notify_task_change.await_args.args
        assert task.external_id == "1"
        assert changes == ["Status: New → Closed"]
        assert (await store.find_by_external_id("1")).status == "Closed"

    @pytest.mark.asyncio
    async def test_untracked_change_is_stored_without_notification(self, sync, client, notifier, store):
        await sync.run()
        notifier.reset_mock()
        client.tasks = [make_task(1, title="Renamed"), make_task(2)]

        result = await sync.run()

        assert result["results"]["notifications"] == 0
        assert (await store.find_by_external_id("1")).title == "Renamed"

    @pytest.mark.asyncio
    async def test_per_record_failure_does_not_abort_pass(self, session_factory, notifier):
        client = FakeOpenProjectClient([make_task(1), make_task(2), make_task(3)])
        store = FlakyStore(session_factory, failing={"2"})
        sync = TaskSync(client, store, notifier)

        result = await sync.run()

        assert result["success"] is True
        assert result["results"]["created"] == 2
        assert result["results"]["errors"] == [
            {"external_id": "2", "error": "disk full for 2"},
        ]
        assert await store.find_by_external_id("1") is not None
        assert await store.find_by_external_id("2") is None
        assert await store.find_by_external_id("3") is not None
        assert sync.status()["last_status"] == "ok"

    @pytest.mark.asyncio
    async def test_empty_fetch_is_a_successful_pass(self, sync, client):
        client.tasks = []
        result = await sync.run()
        assert result == {
            "success": True,
            "results": {"created": 0, "updated": 0, "notifications": 0, "errors": []},
        }


class TestNotifierFailures:

    @pytest.mark.asyncio
    async def test_notifier_exception_is_swallowed(self, sync, notifier, store):
        notifier.notify_new_task.side_effect = RuntimeError("telegram down")

        result = await sync.run()

        assert result["results"]["created"] == 2
        assert result["results"]["notifications"] == 0
        assert result["results"]["errors"] == []
        assert len(await store.find_all()) == 2

    @pytest.mark.asyncio
    async def test_undelivered_notification_is_not_counted(self, sync, notifier):
        notifier.notify_new_task.return_value = {
            "success": False, "error": "Telegram not configured",
        }

        result = await sync.run()

        assert result["results"]["created"] == 2
        assert result["results"]["notifications"] == 0


class TestFatalFailures:

    @pytest.mark.asyncio
    async def test_probe_failure_aborts_before_fetch(self, sync, client, store):
        client.probe = {"success": False, "error": "Connection failed: refused"}

        result = await sync.run()

        assert result == {"success": False, "error": "Connection failed: refused"}
        assert client.fetch_calls == 0
        assert await store.find_all() == []
        status = sync.status()
        assert status["last_status"] == "failed"
        assert status["last_error"] == "Connection failed: refused"
        assert status["is_running"] is False

    @pytest.mark.asyncio
    async def test_repeated_probe_failure_never_sticks_running(self, sync, client):
        client.probe = {"success": False, "error": "API key not configured"}

        for _ in range(3):
            result = await sync.run()
            assert result["error"] == "API key not configured"

        assert client.probe_calls == 3
        assert sync.status()["is_running"] is False

    @pytest.mark.asyncio
    async def test_fetch_failure_is_fatal(self, sync, client, notifier):
        client.fetch_error = OpenProjectError("500", "Internal error")

        result = await sync.run()

        assert result == {"success": False, "error": "[500] Internal error"}
        assert sync.status()["last_error"] == "[500] Internal error"
        notifier.notify_new_task.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recovers_after_failure(self, sync, client):
        client.fetch_error = OpenProjectError("500", "Internal error")
        await sync.run()
        client.fetch_error = None

        result = await sync.run()

        assert result["success"] is True
        assert sync.status()["last_status"] == "ok"
        assert sync.status()["last_error"] is None


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancelled_pass_is_reported_failed(self, sync, client):
        client.gate = asyncio.Event()
        pass_task = asyncio.create_task(sync.run())
        await asyncio.sleep(0)

        pass_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pass_task

        status = sync.status()
        assert status["is_running"] is False
        assert status["last_status"] == "failed"
        assert status["last_error"] == "cancelled"

    @pytest.mark.asyncio
    async def test_next_pass_runs_after_cancellation(self, sync, client):
        client.gate = asyncio.Event()
        pass_task = asyncio.create_task(sync.run())
        await asyncio.sleep(0)
        pass_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pass_task

        client.gate.set()
        result = await sync.run()

        assert result["success"] is True
        assert sync.status()["last_status"] == "ok"
        assert sync.status()["last_error"] is None


class TestPublish:

    @pytest.mark.asyncio
    async def test_pass_result_published_on_sync_channel(self, client, store, notifier):
        redis = AsyncMock()
        sync = TaskSync(client, store, notifier, redis)

        result = await sync.run()

        redis.publish.assert_awaited_once()
        channel, payload = redis.publish.await_args.args
        assert channel == "sync:events"
        event = json.loads(payload)
        assert event["type"] == "sync_pass"
        assert event["response"] == result
        assert event["status"]["last_status"] == "ok"

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_pass(self, client, store, notifier):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis gone")
        sync = TaskSync(client, store, notifier, redis)

        result = await sync.run()

        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_rejected_run_is_not_published(self, client, store, notifier):
        redis = AsyncMock()
        sync = TaskSync(client, store, notifier, redis)
        client.gate = asyncio.Event()
        first = asyncio.create_task(sync.run())
        await asyncio.sleep(0)

        await sync.run()
        redis.publish.assert_not_awaited()

        client.gate.set()
        await first
        redis.publish.assert_awaited_once()
