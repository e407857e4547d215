"""
GuestDrop API server
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from guestdrop.core.config import CORS_ORIGINS, RELAY_ENABLED, RELAY_INTERVAL
from guestdrop.core.database import connect_repository, disconnect_repository
from guestdrop.core.dependencies import get_durable_storage, get_temp_storage, upload_locks
from guestdrop.routes import (
    admin_router,
    auth_router,
    health_router,
    subscription_router,
    tokens_router,
    uploads_router,
    dashboard_router,
)
from guestdrop.services.errors import StorageNotConfigured
from guestdrop.services.relay import RelayWorker
from guestdrop.services.subscriptions import seed_default_plans
from guestdrop.storage import durable_container_name
from guestdrop.tasks import auto_relay_uploads, init_tasks, stop_tasks

logger = logging.getLogger(__name__)


def start_relay_task(repo):
    """Start the relay loop, or return None when durable storage is not configured"""
    try:
        durable = get_durable_storage()
    except StorageNotConfigured as e:
        logger.warning(f"Relay disabled: {e.message}")
        return None

    worker = RelayWorker(
        repo=repo,
        temp_storage=get_temp_storage(),
        durable=durable,
        container_name=durable_container_name(),
        locks=upload_locks,
    )
    init_tasks(worker, logger, RELAY_INTERVAL)
    return asyncio.create_task(auto_relay_uploads())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown"""
    repo = await connect_repository()
    await seed_default_plans(repo)

    relay_task = start_relay_task(repo) if RELAY_ENABLED else None
    yield
    # Stop background task
    stop_tasks()
    if relay_task:
        relay_task.cancel()
    await disconnect_repository()


app = FastAPI(title="GuestDrop API", lifespan=lifespan)

app.include_router(health_router)
app.include_router(auth_router)
app.include_router(subscription_router)
app.include_router(tokens_router)
app.include_router(uploads_router)
app.include_router(dashboard_router)
app.include_router(admin_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
