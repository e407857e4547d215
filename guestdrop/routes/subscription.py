"""
Plan and subscription routes
"""
from typing import List

from fastapi import APIRouter, Depends

from guestdrop.core.dependencies import get_current_user
from guestdrop.core.database import get_repository
from guestdrop.models.billing import Plan
from guestdrop.models.user import User
from guestdrop.repositories.base import Repository
from guestdrop.services.errors import GuestDropError
from guestdrop.services.subscriptions import activate_trial, subscription_status
from .common import http_error

router = APIRouter(prefix="/api", tags=["subscription"])


@router.get("/plans", response_model=List[Plan])
async def list_plans(repo: Repository = Depends(get_repository)):
    return await repo.list_plans()


@router.get("/subscription")
async def get_subscription(
    current_user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository)
):
    return await subscription_status(repo, current_user.id)


@router.post("/subscription/trial")
async def start_trial(
    current_user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository)
):
    try:
        await activate_trial(repo, current_user.id)
    except GuestDropError as e:
        raise http_error(e)
    return await subscription_status(repo, current_user.id)
