import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from redis.asyncio import Redis

from config import settings
from models import async_session, create_tables, engine
from api.tasks import router as tasks_router
from core.websocket import router as ws_router, sync_events_bridge
from services.task_store import TaskStore

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("opsync.main")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Task sync backend starting... DEBUG=%s", settings.DEBUG)

    if settings.DB_CREATE_TABLES:
        await create_tables()
        logger.info("Database tables ensured")

    # Redis
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=False)
    app.state.redis = redis
    logger.info("Redis connected: %s", settings.REDIS_URL)

    app.state.task_store = TaskStore(async_session)

    # Redis → WebSocket bridge
    bridge_task = asyncio.create_task(sync_events_bridge(redis))

    # OpenProject sync (initial pass + periodic)
    op_module = None
    op_task = None
    if settings.OP_ENABLED:
        from services.openproject import OpenProjectModule
        op_module = OpenProjectModule(redis, async_session)
        app.state.openproject_module = op_module
        op_task = asyncio.create_task(op_module.start())
        logger.info("OpenProject module enabled")
    else:
        logger.info("OpenProject module DISABLED (OP_ENABLED=false)")

    yield

    # Shutdown
    logger.info("Task sync backend shutting down...")
    all_tasks = [bridge_task]
    if op_task:
        all_tasks.append(op_task)
    for t in all_tasks:
        t.cancel()
    for t in all_tasks:
        try:
            await t
        except asyncio.CancelledError:
            pass

    # Only after op_task is done: start() creates the periodic task.
    if op_module:
        await op_module.stop()

    await redis.close()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="OpenProject Task Sync API",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tasks_router)
app.include_router(ws_router)

Path(settings.EXPORTS_DIR).mkdir(parents=True, exist_ok=True)
app.mount("/exports", StaticFiles(directory=settings.EXPORTS_DIR), name="exports")


@app.get("/health")
async def health():
    return {"status": "ok", "version": VERSION}
