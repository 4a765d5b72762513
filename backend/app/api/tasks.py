"""Tasks REST API — local task CRUD, queries, export and OpenProject sync.

Prefix: /tasks. Sync endpoints need the OpenProject module (OP_ENABLED=true).
"""
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from config import settings
from services.export import export_task, extract_keywords
from services.openproject.config import SYNC_ALREADY_RUNNING
from services.task_store import TaskStore

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger("opsync.tasks.api")


def get_store(request: Request) -> TaskStore:
    return request.app.state.task_store


def _get_module(request: Request):
    """Get OpenProjectModule from app state."""
    module = getattr(request.app.state, "openproject_module", None)
    if not module:
        raise HTTPException(503, "OpenProject sync is not enabled")
    return module


def _related_to_json(value: Any) -> str | None:
    if not value:
        return None
    return value if isinstance(value, str) else json.dumps(value)


class TaskCreate(BaseModel):
    title: str
    description: str | None = None
    project: str | None = None
    project_id: str | None = None
    status: str | None = None
    assignee: str | None = None
    responsible: str | None = None
    priority: str | None = None
    estimated_hours: float | None = None
    spent_hours: float | None = None
    related_to: str | list[dict] | None = None
    op_created_at: str | None = None
    op_updated_at: str | None = None


class TaskUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    project: str | None = None
    project_id: str | None = None
    status: str | None = None
    assignee: str | None = None
    responsible: str | None = None
    priority: str | None = None
    estimated_hours: float | None = None
    spent_hours: float | None = None
    related_to: str | list[dict] | None = None
    op_created_at: str | None = None
    op_updated_at: str | None = None


# ─── Collection ───────────────────────────────────────────────────────

@router.get("")
async def list_tasks(store: TaskStore = Depends(get_store)):
    tasks = await store.find_all()
    return {"success": True, "data": [t.to_dict() for t in tasks], "count": len(tasks)}


@router.post("", status_code=201)
async def create_task(body: TaskCreate, store: TaskStore = Depends(get_store)):
    """Create a local task (no OpenProject counterpart)."""
    if not body.title.strip():
        raise HTTPException(400, "Title is required")

    try:
        task = await store.create({
            "external_id": None,
            "title": body.title,
            "description": body.description or "",
            "project": body.project or "",
            "project_id": body.project_id,
            "status": body.status or "pending",
            "assignee": body.assignee,
            "responsible": body.responsible,
            "priority": body.priority or "Normal",
            "estimated_hours": body.estimated_hours,
            "spent_hours": body.spent_hours,
            "related_to": _related_to_json(body.related_to),
            "op_created_at": body.op_created_at,
            "op_updated_at": body.op_updated_at,
        })
    except ValueError as exc:
        raise HTTPException(400, f"Invalid task data: {exc}")
    logger.info("Task created: #%d '%s'", task.id, task.title)
    return {"success": True, "data": task.to_dict()}


# ─── Sync ─────────────────────────────────────────────────────────────

@router.post("/sync")
async def sync_with_openproject(request: Request):
    """Run one reconciliation pass now."""
    module = _get_module(request)
    result = await module.sync.run()
    if result.get("success"):
        return {"success": True, "message": "Sync completed", "results": result["results"]}
    if result.get("message") == SYNC_ALREADY_RUNNING:
        raise HTTPException(409, SYNC_ALREADY_RUNNING)
    raise HTTPException(500, result.get("error") or "Sync failed")


@router.get("/sync/status")
async def get_sync_status(request: Request):
    module = _get_module(request)
    return {"success": True, "data": module.sync.status()}


@router.get("/sync/config")
async def get_sync_config(request: Request):
    module = _get_module(request)
    return {"success": True, "data": module.client.get_sync_configuration()}


@router.get("/sync/preview")
async def get_sync_preview(request: Request):
    """Fetch (without storing) what the next pass would see."""
    module = _get_module(request)
    try:
        preview = await module.client.get_filtered_tasks_preview()
    except Exception as exc:
        logger.error("Sync preview failed: %s", exc)
        raise HTTPException(502, f"OpenProject preview failed: {exc}")
    return {"success": True, "data": preview}


# ─── Queries ──────────────────────────────────────────────────────────

@router.get("/stats")
async def get_task_stats(store: TaskStore = Depends(get_store)):
    return {"success": True, "data": await store.get_stats()}


@router.get("/external/{external_id}")
async def get_task_by_external_id(external_id: str, store: TaskStore = Depends(get_store)):
    task = await store.find_by_external_id(external_id)
    if not task:
        raise HTTPException(404, "Task not found")
    return {"success": True, "data": task.to_dict()}


@router.get("/assignee/{assignee}")
async def get_tasks_by_assignee(
    assignee: str,
    limit: int = Query(50, ge=1, le=500),
    store: TaskStore = Depends(get_store),
):
    tasks = await store.find_by_assignee(assignee, limit)
    return {
        "success": True,
        "data": [t.to_dict() for t in tasks],
        "count": len(tasks),
        "assignee": assignee,
    }


@router.get("/project/{project_id}")
async def get_tasks_by_project(
    project_id: str,
    limit: int = Query(50, ge=1, le=500),
    store: TaskStore = Depends(get_store),
):
    tasks = await store.find_by_project(project_id, limit)
    return {
        "success": True,
        "data": [t.to_dict() for t in tasks],
        "count": len(tasks),
        "project_id": project_id,
    }


@router.get("/status/{status}")
async def get_tasks_by_status(
    status: str,
    limit: int = Query(50, ge=1, le=500),
    store: TaskStore = Depends(get_store),
):
    tasks = await store.find_by_status(status, limit)
    return {
        "success": True,
        "data": [t.to_dict() for t in tasks],
        "count": len(tasks),
        "status": status,
    }


# ─── Single task ──────────────────────────────────────────────────────

@router.get("/{task_id}")
async def get_task(task_id: int, store: TaskStore = Depends(get_store)):
    task = await store.find_by_id(task_id)
    if not task:
        raise HTTPException(404, "Task not found")
    return {"success": True, "data": task.to_dict()}


@router.put("/{task_id}")
async def update_task(task_id: int, body: TaskUpdate, store: TaskStore = Depends(get_store)):
    """Partial update; external_id is never changed here."""
    data = body.model_dump(exclude_unset=True)
    if "related_to" in data:
        data["related_to"] = _related_to_json(data["related_to"])

    try:
        task = await store.update(task_id, data)
    except ValueError as exc:
        raise HTTPException(400, f"Invalid task data: {exc}")
    if not task:
        raise HTTPException(404, "Task not found")
    return {"success": True, "data": task.to_dict()}


@router.get("/{task_id}/related")
async def get_related_tasks(task_id: int, store: TaskStore = Depends(get_store)):
    task = await store.find_by_id(task_id)
    if not task:
        raise HTTPException(404, "Task not found")

    keywords = extract_keywords(task.title, task.description)
    related = await store.find_related(task_id, keywords)
    return {
        "success": True,
        "data": [t.to_dict() for t in related],
        "keywords": keywords,
        "count": len(related),
    }


@router.post("/{task_id}/export")
async def export_task_implementation(task_id: int, store: TaskStore = Depends(get_store)):
    """Write a markdown implementation plan to EXPORTS_DIR."""
    task = await store.find_by_id(task_id)
    if not task:
        raise HTTPException(404, "Task not found")

    related = await store.find_related(task_id, extract_keywords(task.title, task.description))
    try:
        path = export_task(task, related, settings.EXPORTS_DIR)
    except OSError as exc:
        logger.error("Export of task #%d failed: %s", task_id, exc)
        raise HTTPException(500, "Failed to export task implementation")

    return {
        "success": True,
        "message": "Implementation file generated successfully",
        "file_path": path.name,
        "download_url": f"/exports/{path.name}",
    }
