"""
Shared pytest fixtures: in-memory SQLite store and a mock notifier.
"""
import os
import tempfile

# Must be set before config/models are imported by test modules.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"
os.environ["OP_ENABLED"] = "false"
os.environ["OP_API_KEY"] = ""
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["TELEGRAM_CHAT_ID"] = ""
os.environ["EXPORTS_DIR"] = tempfile.mkdtemp(prefix="opsync-exports-")

from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from models.base import Base
from services.task_store import TaskStore

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database per test; one shared connection."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def store(session_factory) -> TaskStore:
    return TaskStore(session_factory)


@pytest.fixture
def notifier() -> AsyncMock:
    mock = AsyncMock()
    mock.notify_new_task.return_value = {"success": True}
    mock.notify_task_change.return_value = {"success": True}
    return mock
