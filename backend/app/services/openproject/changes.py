"""Change detection between a stored task and a freshly mapped one."""
from typing import Any, Mapping

from services.openproject.config import TRACKED_FIELDS


def _value(task: Any, field: str) -> Any:
    if isinstance(task, Mapping):
        return task.get(field)
    return getattr(task, field, None)


def detect_task_changes(old_task: Any, new_task: Any) -> list[str]:
    """Human-readable deltas for status/assignee/responsible/priority.

    Accepts dicts, ORM rows or CanonicalTask models. Comparison is strict;
    the fallback text only affects rendering of empty values.
    """
    changes: list[str] = []
    for field, label, fallback in TRACKED_FIELDS:
        old = _value(old_task, field)
        new = _value(new_task, field)
        if old != new:
            changes.append(f"{label}: {old or fallback} → {new or fallback}")
    return changes
