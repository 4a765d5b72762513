"""Markdown implementation-plan export for a single task."""
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Iterable

from models.task import Task

logger = logging.getLogger("opsync.export")

STOP_WORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had",
    "her", "was", "one", "our", "out", "day", "get", "has", "him", "his",
    "how", "its", "new", "now", "old", "see", "two", "who", "boy", "did",
    "may", "she", "use", "way", "will", "with",
})

_WORD_RE = re.compile(r"\b\w{3,}\b")


def extract_keywords(title: str | None, description: str | None, limit: int = 10) -> list[str]:
    """First `limit` distinct words of 3+ chars, stop words removed."""
    text = f"{title or ''} {description or ''}".lower()
    keywords: list[str] = []
    for word in _WORD_RE.findall(text):
        if word in STOP_WORDS or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) == limit:
            break
    return keywords


def sanitize_file_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", name, flags=re.IGNORECASE).lower()[:50]


def _date(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d") if value else "N/A"


def generate_implementation_markdown(task: Task, related: Iterable[Task]) -> str:
    related = list(related)
    if related:
        related_md = "\n".join(f"- [Task {rt.id}] {rt.title} ({rt.status})" for rt in related)
    else:
        related_md = "No related tasks found"

    return f"""# Task Implementation: {task.title}

## Task Information

- **ID**: {task.id}
- **External ID**: {task.external_id or 'N/A'}
- **Project**: {task.project or 'N/A'}
- **Status**: {task.status}
- **Created**: {_date(task.created_at)}
- **Updated**: {_date(task.updated_at)}

## Description

{task.description or 'No description provided'}

## Implementation Plan

### Prerequisites
- [ ] Review task requirements
- [ ] Identify dependencies
- [ ] Setup development environment

### Development Steps
- [ ] Design solution architecture
- [ ] Implement core functionality
- [ ] Write tests
- [ ] Documentation
- [ ] Code review

### Testing
- [ ] Unit tests
- [ ] Integration tests
- [ ] User acceptance testing

### Deployment
- [ ] Deploy to staging
- [ ] Performance testing
- [ ] Deploy to production

## Related Tasks

{related_md}

## Notes

Add implementation notes, blockers, and progress updates here.

---
Generated on: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}
"""


def export_task(task: Task, related: Iterable[Task], exports_dir: str | Path) -> Path:
    """Write the implementation plan and return the file path."""
    exports_dir = Path(exports_dir)
    exports_dir.mkdir(parents=True, exist_ok=True)
    path = exports_dir / f"IMPLEMENTACION_{task.id}_{sanitize_file_name(task.title)}.md"
    path.write_text(generate_implementation_markdown(task, related), encoding="utf-8")
    logger.info("Exported task #%d to %s", task.id, path)
    return path
