"""Task: local copy of an OpenProject work package (or a locally created task).

external_id is NULL for tasks created through the REST API.
"""
from datetime import datetime

from sqlalchemy import Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin

OP_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class Task(TimestampMixin, Base):
    __tablename__ = "tasks"

    __table_args__ = (
        Index("ix_tasks_external_id", "external_id"),
        Index("ix_tasks_status", "status"),
        Index("ix_tasks_project", "project"),
        Index("ix_tasks_project_id", "project_id"),
        Index("ix_tasks_assignee", "assignee"),
        Index("ix_tasks_op_updated_at", "op_updated_at"),
        Index("ix_tasks_priority", "priority"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    external_id: Mapped[str | None] = mapped_column(String(255), default=None)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text, default=None)
    project: Mapped[str | None] = mapped_column(String(255), default=None)
    project_id: Mapped[str | None] = mapped_column(String(50), default=None)
    status: Mapped[str | None] = mapped_column(String(100), default="pending")
    assignee: Mapped[str | None] = mapped_column(String(255), default=None)
    responsible: Mapped[str | None] = mapped_column(String(255), default=None)
    priority: Mapped[str | None] = mapped_column(String(100), default=None)
    estimated_hours: Mapped[float | None] = mapped_column(
        Numeric(8, 2, asdecimal=False), default=None,
    )
    spent_hours: Mapped[float | None] = mapped_column(
        Numeric(8, 2, asdecimal=False), default=None,
    )
    related_to: Mapped[str | None] = mapped_column(Text, default=None)  # JSON list
    op_created_at: Mapped[datetime | None] = mapped_column(default=None)
    op_updated_at: Mapped[datetime | None] = mapped_column(default=None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "title": self.title,
            "description": self.description,
            "project": self.project,
            "project_id": self.project_id,
            "status": self.status,
            "assignee": self.assignee,
            "responsible": self.responsible,
            "priority": self.priority,
            "estimated_hours": self.estimated_hours,
            "spent_hours": self.spent_hours,
            "related_to": self.related_to,
            "op_created_at": _fmt(self.op_created_at),
            "op_updated_at": _fmt(self.op_updated_at),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def _fmt(value: datetime | None) -> str | None:
    return value.strftime(OP_TIMESTAMP_FORMAT) if value else None
