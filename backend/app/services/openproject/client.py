"""OpenProject API v3 client with retry.

Responsibilities:
- HTTP requests with API-key Basic auth
- Retry on 5xx / connection errors (3 attempts, exponential backoff)
- Work package listing filtered to the API-key owner (and optional projects)
- Mapping raw work packages to CanonicalTask

Does NOT know about the local store or notifications.
"""
import asyncio
import json
import logging
from typing import Any

import httpx

from config import settings
from services.openproject.config import API_VERSION
from services.openproject.mapping import CanonicalTask, format_task, format_tasks

logger = logging.getLogger("opsync.openproject.client")


class OpenProjectError(Exception):
    """OpenProject API error."""
    def __init__(self, code: str, message: str):
        self.code = code
        super().__init__(f"[{code}] {message}")


class OpenProjectAuthError(OpenProjectError):
    """Rejected API key — retries are pointless."""
    pass


class OpenProjectConnectivityError(Exception):
    """Liveness probe failed before a sync pass."""


def build_api_base_url(base_url: str) -> str:
    base_url = base_url.rstrip("/")
    if "/api/v3" in base_url:
        return base_url
    return f"{base_url}/api/{API_VERSION}"


class OpenProjectClient:

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        sync_limit: int | None = None,
        sync_projects: list[str] | None = None,
        timeout: float | None = None,
        retry_backoff: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.OP_BASE_URL
        self.api_key = api_key if api_key is not None else settings.OP_API_KEY
        self.api_base_url = build_api_base_url(self.base_url)
        self.sync_limit = sync_limit or settings.OP_SYNC_LIMIT
        self.sync_projects = (
            sync_projects if sync_projects is not None else settings.sync_projects
        )
        self._retry_backoff = retry_backoff
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.OP_TIMEOUT,
            auth=httpx.BasicAuth("apikey", self.api_key),
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            transport=transport,
        )
        self.is_connected: bool = False

        logger.info(
            "OpenProject client: api=%s limit=%d projects=%s",
            self.api_base_url, self.sync_limit,
            ", ".join(self.sync_projects) or "All projects",
        )

    async def get(self, path: str, params: dict | None = None) -> dict:
        """Single GET with retry on server/connection errors."""
        url = f"{self.api_base_url}/{path.lstrip('/')}"
        last_exc: Exception | None = None

        for attempt in range(3):
            try:
                resp = await self._client.get(url, params=params)
                if resp.status_code in (401, 403):
                    self.is_connected = False
                    raise OpenProjectAuthError(
                        str(resp.status_code), _error_message(resp),
                    )
                resp.raise_for_status()
                self.is_connected = True
                return resp.json()

            except OpenProjectError:
                raise
            except httpx.HTTPStatusError as exc:
                last_exc = exc
                if exc.response.status_code >= 500:
                    backoff = self._retry_backoff * 2 ** attempt
                    logger.warning(
                        "OP HTTP %d, retry %d/3 in %.1fs",
                        exc.response.status_code, attempt + 1, backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise OpenProjectError(
                    str(exc.response.status_code), _error_message(exc.response),
                ) from exc
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                last_exc = exc
                backoff = self._retry_backoff * 2 ** attempt
                logger.warning(
                    "OP connection error: %s, retry %d/3 in %.1fs",
                    exc, attempt + 1, backoff,
                )
                await asyncio.sleep(backoff)
                continue

        self.is_connected = False
        raise last_exc or OpenProjectError("retries", "OpenProject call failed after 3 retries")

    # ─── Probe ────────────────────────────────────────────────────────

    async def test_connection(self) -> dict:
        """Cheap liveness probe: one work package page of size 1."""
        if not self.api_key:
            return {"success": False, "error": "API key not configured"}
        try:
            await self.get("work_packages", {"pageSize": 1})
            return {"success": True}
        except Exception as exc:
            self.is_connected = False
            return {"success": False, "error": f"Connection failed: {exc}"}

    # ─── Users / projects ─────────────────────────────────────────────

    async def get_current_user(self) -> dict:
        return await self.get("users/me")

    async def get_current_user_id(self) -> str | None:
        try:
            user = await self.get_current_user()
        except OpenProjectAuthError:
            logger.error("API key does not have permission to access user information")
            return None
        except Exception as exc:
            logger.error("Error fetching current user: %s", exc)
            return None
        logger.info(
            "Current user: %s %s (%s) with ID: %s",
            user.get("firstName", ""), user.get("lastName", ""),
            user.get("email", ""), user.get("id"),
        )
        return str(user["id"]) if user.get("id") is not None else None

    async def verify_current_user(self) -> dict:
        try:
            user = await self.get_current_user()
        except Exception as exc:
            return {"success": False, "error": f"Failed to get current user: {exc}"}
        return {
            "success": True,
            "user": {
                "id": user.get("id"),
                "name": f"{user.get('firstName', '')} {user.get('lastName', '')}".strip(),
                "email": user.get("email"),
                "status": user.get("status"),
            },
        }

    async def get_project_ids_by_pattern(self) -> list[str]:
        """Ids of projects whose name contains any OP_SYNC_PROJECTS pattern."""
        try:
            data = await self.get("projects", {"pageSize": 1000})
        except Exception as exc:
            logger.error("Error fetching projects: %s", exc)
            return []

        patterns = [p.lower() for p in self.sync_projects]
        matching: list[str] = []
        for project in data.get("_embedded", {}).get("elements", []):
            name = (project.get("name") or "").lower()
            if any(pattern in name for pattern in patterns):
                matching.append(str(project["id"]))
                logger.debug("Matched project %r (ID %s)", project.get("name"), project["id"])

        logger.info(
            "Found %d matching projects for patterns: %s",
            len(matching), ", ".join(self.sync_projects),
        )
        return matching

    # ─── Work packages ────────────────────────────────────────────────

    async def get_tasks(self) -> list[CanonicalTask]:
        """Fetch the current user's work packages, newest first, as CanonicalTasks."""
        if not self.api_key:
            raise OpenProjectError("config", "OpenProject API key not configured")

        user_id = await self.get_current_user_id()
        if not user_id:
            raise OpenProjectError(
                "user",
                "Could not get current user ID. Please check API key permissions.",
            )
        filters: list[dict] = [{"assignee": {"operator": "=", "values": [user_id]}}]

        if self.sync_projects:
            project_ids = await self.get_project_ids_by_pattern()
            if project_ids:
                filters.append({"project": {"operator": "=", "values": project_ids}})

        params = {
            "pageSize": self.sync_limit,
            "sortBy": json.dumps([["updatedAt", "desc"]]),
            "filters": json.dumps(filters),
        }
        logger.debug("Fetching work packages with params: %s", params)

        data = await self.get("work_packages", params)
        tasks = format_tasks(data.get("_embedded", {}).get("elements", []))
        logger.info("Fetched %d tasks from OpenProject", len(tasks))
        return tasks

    async def get_task_by_id(self, work_package_id: int | str) -> CanonicalTask:
        if not self.api_key:
            raise OpenProjectError("config", "OpenProject API key not configured")
        return format_task(await self.get(f"work_packages/{work_package_id}"))

    # ─── Diagnostics ──────────────────────────────────────────────────

    def get_sync_configuration(self) -> dict:
        return {
            "sync_limit": self.sync_limit,
            "sync_projects": self.sync_projects or ["All projects"],
            "base_url": self.base_url,
            "api_base_url": self.api_base_url,
            "has_api_key": bool(self.api_key),
        }

    async def get_filtered_tasks_preview(self) -> dict:
        tasks = await self.get_tasks()
        return {
            "configuration": self.get_sync_configuration(),
            "task_count": len(tasks),
            "tasks": [t.model_dump() for t in tasks[:5]],
        }

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def _error_message(resp: httpx.Response) -> str:
    try:
        body: Any = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(body, dict):
        return body.get("message") or str(body)
    return str(body)
