"""
Organizer dashboard: account overview and durable storage status
"""
import logging

from fastapi import APIRouter, Depends

from guestdrop.core import config
from guestdrop.core.dependencies import get_current_user, get_durable_storage, get_token_manager
from guestdrop.models.user import User
from guestdrop.services.errors import StorageNotConfigured
from guestdrop.services.token_manager import TokenManager
from guestdrop.storage import durable_container_name
from guestdrop.tasks import background

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["dashboard"])


@router.get("/stats")
async def dashboard_stats(
    current_user: User = Depends(get_current_user),
    manager: TokenManager = Depends(get_token_manager)
):
    return await manager.dashboard_stats(current_user.id)


@router.get("/drive/status")
async def drive_status(current_user: User = Depends(get_current_user)):
    """Whether uploads have somewhere durable to go"""
    try:
        durable = get_durable_storage()
    except StorageNotConfigured as e:
        return {
            "configured": False,
            "backend": config.DURABLE_BACKEND,
            "message": e.message,
            "relay_running": background.is_running(),
        }

    return {
        "configured": True,
        "backend": durable.name,
        "container": durable_container_name(),
        "relay_running": background.is_running(),
    }
