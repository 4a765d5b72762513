from models.base import Base, async_session, create_tables, engine, get_session
from models.task import Task

__all__ = [
    "Base",
    "async_session",
    "create_tables",
    "engine",
    "get_session",
    "Task",
]
