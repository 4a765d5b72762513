"""TaskStore — persistence for Task rows keyed by id or OpenProject external_id.

One short-lived session per call; callers never hold a session across
network I/O.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.task import OP_TIMESTAMP_FORMAT, Task

logger = logging.getLogger("opsync.task_store")

TASK_FIELDS = (
    "external_id", "title", "description", "project", "project_id", "status",
    "assignee", "responsible", "priority", "estimated_hours", "spent_hours",
    "related_to", "op_created_at", "op_updated_at",
)


def _parse_ts(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.strptime(value, OP_TIMESTAMP_FORMAT)


def _to_columns(data: dict[str, Any]) -> dict[str, Any]:
    """Keep only task columns and convert canonical timestamps to datetime."""
    values = {k: data[k] for k in TASK_FIELDS if k in data}
    for key in ("op_created_at", "op_updated_at"):
        if key in values:
            values[key] = _parse_ts(values[key])
    return values


class TaskStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ─── Reads ────────────────────────────────────────────────────────

    async def find_all(self) -> list[Task]:
        async with self.session_factory() as session:
            stmt = select(Task).order_by(Task.op_updated_at.desc(), Task.id.desc())
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_by_id(self, task_id: int) -> Task | None:
        async with self.session_factory() as session:
            return await session.get(Task, task_id)

    async def find_by_external_id(self, external_id: str | None) -> Task | None:
        if external_id is None:
            return None
        async with self.session_factory() as session:
            stmt = select(Task).where(Task.external_id == external_id).limit(1)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def find_related(self, task_id: int, search_terms: list[str]) -> list[Task]:
        """Up to 10 other tasks whose title or description mentions any term."""
        if not search_terms:
            return []
        conditions = []
        for term in search_terms:
            pattern = f"%{term}%"
            conditions.append(Task.title.like(pattern))
            conditions.append(Task.description.like(pattern))

        async with self.session_factory() as session:
            stmt = (
                select(Task)
                .where(Task.id != task_id, or_(*conditions))
                .order_by(Task.op_updated_at.desc(), Task.updated_at.desc())
                .limit(10)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_by_assignee(self, assignee: str, limit: int = 50) -> list[Task]:
        return await self._find_by(Task.assignee == assignee, limit)

    async def find_by_project(self, project_id: str, limit: int = 50) -> list[Task]:
        return await self._find_by(Task.project_id == project_id, limit)

    async def find_by_status(self, status: str, limit: int = 50) -> list[Task]:
        return await self._find_by(Task.status == status, limit)

    async def _find_by(self, condition, limit: int) -> list[Task]:
        async with self.session_factory() as session:
            stmt = (
                select(Task)
                .where(condition)
                .order_by(Task.op_updated_at.desc(), Task.updated_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_stats(self) -> dict:
        async with self.session_factory() as session:
            total = (await session.execute(
                select(func.count()).select_from(Task)
            )).scalar() or 0

            by_status = await self._grouped(session, Task.status)
            by_assignee = await self._grouped(
                session, Task.assignee, Task.assignee.is_not(None), top=10,
            )
            by_project = await self._grouped(
                session, Task.project, Task.project.is_not(None), top=10,
            )
            by_priority = await self._grouped(
                session, Task.priority, Task.priority.is_not(None),
            )

            cutoff = datetime.utcnow() - timedelta(days=7)
            recently_updated = (await session.execute(
                select(func.count()).select_from(Task).where(Task.op_updated_at >= cutoff)
            )).scalar() or 0

        return {
            "total": total,
            "by_status": by_status,
            "by_assignee": by_assignee,
            "by_project": by_project,
            "by_priority": by_priority,
            "recently_updated": recently_updated,
        }

    @staticmethod
    async def _grouped(session: AsyncSession, column, condition=None, top: int | None = None) -> list[dict]:
        count = func.count().label("count")
        stmt = select(column, count).group_by(column)
        if condition is not None:
            stmt = stmt.where(condition)
        if top:
            stmt = stmt.order_by(count.desc()).limit(top)
        result = await session.execute(stmt)
        return [{column.key: value, "count": n} for value, n in result.all()]

    # ─── Writes ───────────────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> Task:
        async with self.session_factory() as session:
            task = Task(**_to_columns(data))
            session.add(task)
            await session.commit()
            await session.refresh(task)
            return task

    async def update(self, task_id: int, data: dict[str, Any]) -> Task | None:
        async with self.session_factory() as session:
            task = await session.get(Task, task_id)
            if task is None:
                return None
            for key, value in _to_columns(data).items():
                setattr(task, key, value)
            await session.commit()
            await session.refresh(task)
            return task

    async def upsert_by_external_id(self, data: dict[str, Any]) -> dict:
        """Create or overwrite the row matching data["external_id"].

        Always writes, even when nothing differs.
        """
        existing = await self.find_by_external_id(data.get("external_id"))
        if existing:
            task = await self.update(existing.id, data)
            return {"id": task.id, "was_update": True}
        task = await self.create(data)
        return {"id": task.id, "was_update": False}

    async def delete(self, task_id: int) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(delete(Task).where(Task.id == task_id))
            await session.commit()
            return result.rowcount > 0
