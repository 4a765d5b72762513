"""Work package -> CanonicalTask mapping.

Defaults feed change detection: stored values are compared against freshly
mapped ones, so "Unassigned" vs "" yields a notification.
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

from models.task import OP_TIMESTAMP_FORMAT
from services.openproject.config import (
    DEFAULT_ASSIGNEE, DEFAULT_PRIORITY, DEFAULT_PROJECT, DEFAULT_STATUS,
    DEFAULT_TITLE, LINK_COLLECTIONS, LINK_PARENT,
)

logger = logging.getLogger("opsync.openproject.mapping")

_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?"
    r"(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


class RelatedLink(BaseModel):
    type: str
    id: str
    title: str


class CanonicalTask(BaseModel):
    external_id: str | None = None
    title: str = DEFAULT_TITLE
    description: str = ""
    project: str = DEFAULT_PROJECT
    project_id: str | None = None
    status: str = DEFAULT_STATUS
    assignee: str = DEFAULT_ASSIGNEE
    responsible: str | None = None
    priority: str = DEFAULT_PRIORITY
    estimated_hours: float | None = None
    spent_hours: float | None = None
    related_to: str | None = None       # compact JSON list of RelatedLink
    op_created_at: str | None = None    # "YYYY-MM-DD HH:MM:SS", UTC
    op_updated_at: str | None = None

    def related_links(self) -> list[RelatedLink]:
        if not self.related_to:
            return []
        return [RelatedLink(**item) for item in json.loads(self.related_to)]


def parse_duration_hours(value: str | None) -> float | None:
    """ISO-8601 duration ("PT2.5H", "PT1H30M", "P1DT2H") -> hours."""
    if not value:
        return None
    match = _DURATION_RE.match(value.strip())
    if not match or not any(match.groupdict().values()):
        logger.debug("Unparseable duration: %r", value)
        return None
    parts = {k: float(v) if v else 0.0 for k, v in match.groupdict().items()}
    return (
        parts["days"] * 24
        + parts["hours"]
        + parts["minutes"] / 60
        + parts["seconds"] / 3600
    )


def normalize_timestamp(value: str | None) -> str | None:
    """ISO-8601 timestamp -> "YYYY-MM-DD HH:MM:SS" in UTC.

    Raises ValueError on garbage; a broken timestamp fails the whole fetch.
    """
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime(OP_TIMESTAMP_FORMAT)


def _last_segment(href: str) -> str:
    return href.split("/")[-1]


def _link_title(links: dict, key: str) -> str | None:
    link = links.get(key)
    if isinstance(link, dict):
        return link.get("title") or None
    return None


def extract_related_tasks(work_package: dict[str, Any]) -> list[RelatedLink]:
    """Collect parent/children/relatedTo/blocks/blockedBy links, in that order."""
    links = work_package.get("_links") or {}
    related: list[RelatedLink] = []

    key, link_type, fallback = LINK_PARENT
    parent = links.get(key)
    if isinstance(parent, dict) and parent.get("href"):
        related.append(RelatedLink(
            type=link_type,
            id=_last_segment(parent["href"]),
            title=parent.get("title") or fallback,
        ))

    for key, link_type, fallback in LINK_COLLECTIONS:
        items = links.get(key)
        if not isinstance(items, list):
            continue
        for item in items:
            href = item.get("href") if isinstance(item, dict) else None
            if not href:
                continue
            related.append(RelatedLink(
                type=link_type,
                id=_last_segment(href),
                title=item.get("title") or fallback,
            ))

    return related


def format_task(work_package: dict[str, Any]) -> CanonicalTask:
    """Map one raw work package to a CanonicalTask."""
    links = work_package.get("_links") or {}
    project_link = links.get("project")
    if not isinstance(project_link, dict):
        project_link = {}
    project_href = project_link.get("href")
    description = work_package.get("description")
    if not isinstance(description, dict):
        description = {}
    raw_id = work_package.get("id")
    related = extract_related_tasks(work_package)

    return CanonicalTask(
        external_id=str(raw_id) if raw_id is not None else None,
        title=work_package.get("subject") or DEFAULT_TITLE,
        description=description.get("raw") or "",
        project=project_link.get("title") or DEFAULT_PROJECT,
        project_id=(_last_segment(project_href) or None) if project_href else None,
        status=_link_title(links, "status") or DEFAULT_STATUS,
        assignee=_link_title(links, "assignee") or DEFAULT_ASSIGNEE,
        responsible=_link_title(links, "responsible"),
        priority=_link_title(links, "priority") or DEFAULT_PRIORITY,
        estimated_hours=parse_duration_hours(work_package.get("estimatedTime")),
        spent_hours=parse_duration_hours(work_package.get("spentTime")),
        related_to=(
            json.dumps(
                [r.model_dump() for r in related],
                separators=(",", ":"),
                ensure_ascii=False,
            )
            if related else None
        ),
        op_created_at=normalize_timestamp(work_package.get("createdAt")),
        op_updated_at=normalize_timestamp(work_package.get("updatedAt")),
    )


def format_tasks(work_packages: list[dict[str, Any]]) -> list[CanonicalTask]:
    return [format_task(wp) for wp in work_packages]
