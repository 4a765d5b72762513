"""TelegramNotifier — best-effort task notifications via the Telegram Bot API.

Never raises to callers: every public method returns {"success": bool, ...}.
"""
import logging
from typing import Any, Sequence

import httpx

from config import settings
from services.openproject.config import MSG_NEW_TASK, MSG_TASK_CHANGED, MSG_TITLE_MAX

logger = logging.getLogger("opsync.notifications")

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramError(Exception):
    """Telegram Bot API error."""


def _short_title(task: Any) -> str:
    title = _get(task, "title")
    if not title:
        return "Unknown Task"
    return title[:MSG_TITLE_MAX] + "..." if len(title) > MSG_TITLE_MAX else title


def _get(task: Any, field: str) -> Any:
    if isinstance(task, dict):
        return task.get(field)
    return getattr(task, field, None)


def _task_ref(task: Any) -> Any:
    return _get(task, "id") or _get(task, "external_id")


def format_new_task_message(task: Any) -> str:
    return MSG_NEW_TASK.format(
        title=_short_title(task),
        status=_get(task, "status") or "N/A",
        assignee=_get(task, "assignee") or "Unassigned",
        task_id=_task_ref(task),
    )


def format_task_change_message(task: Any, changes: Sequence[str]) -> str:
    return MSG_TASK_CHANGED.format(
        title=_short_title(task),
        changes="\n".join(f"• {c}" for c in changes),
        task_id=_task_ref(task),
    )


class TelegramNotifier:

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
        notify_new_tasks: bool | None = None,
        notify_task_changes: bool | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.bot_token = bot_token if bot_token is not None else settings.TELEGRAM_BOT_TOKEN
        self.chat_id = chat_id if chat_id is not None else settings.TELEGRAM_CHAT_ID
        self.notify_new_tasks = (
            settings.NOTIFY_NEW_TASKS if notify_new_tasks is None else notify_new_tasks
        )
        self.notify_task_changes = (
            settings.NOTIFY_TASK_CHANGES if notify_task_changes is None else notify_task_changes
        )
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.TELEGRAM_TIMEOUT,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def send(self, message: str) -> dict:
        """Send one Markdown message to the configured chat."""
        if not self.is_configured:
            logger.warning("Telegram not configured; skipping send")
            return {"success": False, "error": "Telegram not configured"}

        try:
            data = await self._post("sendMessage", {
                "chat_id": self.chat_id,
                "text": message,
                "parse_mode": "Markdown",
            })
            return {"success": True, "data": data}
        except (TelegramError, httpx.HTTPError) as exc:
            logger.error("Failed to send Telegram message: %s", exc)
            return {"success": False, "error": str(exc)}

    async def notify_new_task(self, task: Any) -> dict:
        if not self.notify_new_tasks:
            return {"success": False, "error": "New task notifications disabled"}
        return await self.send(format_new_task_message(task))

    async def notify_task_change(self, task: Any, changes: Sequence[str]) -> dict:
        if not self.notify_task_changes or not changes:
            return {
                "success": False,
                "error": "Task change notifications disabled or no changes",
            }
        return await self.send(format_task_change_message(task, changes))

    async def _post(self, method: str, payload: dict) -> dict:
        url = f"{TELEGRAM_API_URL}/bot{self.bot_token}/{method}"
        resp = await self._client.post(url, json=payload)
        resp.raise_for_status()
        try:
            data = resp.json()
        except ValueError as exc:
            raise TelegramError(f"Invalid response from Telegram API: {resp.text[:200]}") from exc
        if not isinstance(data, dict):
            raise TelegramError(f"Invalid response from Telegram API: {data!r}")
        if not data.get("ok"):
            raise TelegramError(data.get("description", str(data)))
        return data.get("result", {})

    async def close(self) -> None:
        await self._client.aclose()
