"""
Upload token routes: owner management plus the public info endpoint
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from guestdrop.core.dependencies import get_admin_user, get_admission_controller, get_current_user, get_token_manager
from guestdrop.models.schemas import BulkTokenCreate, TokenCreate, TokenCreated, TokenInfo, TokenRefresh, TokenSummary
from guestdrop.models.upload import UploadToken
from guestdrop.models.user import User
from guestdrop.services.admission import AdmissionController
from guestdrop.services.errors import GuestDropError
from guestdrop.services.token_manager import TokenManager
from guestdrop.utils.helpers import is_past, slugify
from .common import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tokens", tags=["tokens"])


def _created(manager: TokenManager, token: UploadToken) -> TokenCreated:
    return TokenCreated(
        token=token.token,
        token_id=token.id,
        url=manager.upload_url(token.token),
        name=token.name,
        max_uploads=token.max_uploads,
        expires_at=token.expires_at,
    )


def _summary(token: UploadToken) -> TokenSummary:
    return TokenSummary(
        id=token.id,
        name=token.name,
        token=token.token,
        max_uploads=token.max_uploads,
        current_uploads=token.current_uploads,
        created_at=token.created_at,
        expires_at=token.expires_at,
        is_expired=is_past(token.expires_at),
        used=token.used,
    )


@router.get("", response_model=List[TokenSummary])
async def list_tokens(
    current_user: User = Depends(get_current_user),
    manager: TokenManager = Depends(get_token_manager)
):
    return [_summary(token) for token in await manager.list_for_user(current_user.id)]


@router.post("", response_model=TokenCreated)
async def create_token(
    token_data: TokenCreate,
    current_user: User = Depends(get_current_user),
    manager: TokenManager = Depends(get_token_manager)
):
    try:
        token = await manager.create(
            current_user.id, token_data.name, token_data.max_uploads, token_data.expires_in
        )
    except GuestDropError as e:
        raise http_error(e)
    return _created(manager, token)


@router.post("/bulk-create")
async def bulk_create_tokens(
    bulk: BulkTokenCreate,
    current_user: User = Depends(get_current_user),
    manager: TokenManager = Depends(get_token_manager)
):
    try:
        created, errors = await manager.bulk_create(current_user.id, bulk.tokens)
    except GuestDropError as e:
        raise http_error(e)
    return {
        "created": [_created(manager, token) for token in created],
        "errors": errors,
    }


@router.get("/statistics")
async def token_statistics(
    current_user: User = Depends(get_current_user),
    manager: TokenManager = Depends(get_token_manager)
):
    return await manager.statistics(current_user.id)


@router.post("/cleanup-expired")
async def cleanup_expired_tokens(
    admin: dict = Depends(get_admin_user),
    manager: TokenManager = Depends(get_token_manager)
):
    """Soft-delete every expired token"""
    expired_count = await manager.cleanup_expired()
    return {"success": True, "expired_count": expired_count}


@router.get("/info/{token}", response_model=TokenInfo)
async def token_info(token: str, controller: AdmissionController = Depends(get_admission_controller)):
    """Public capacity and expiry view for the guest upload page"""
    try:
        return await controller.token_info(token)
    except GuestDropError as e:
        raise http_error(e)


@router.post("/{token_id}/refresh", response_model=TokenSummary)
async def refresh_token(
    token_id: str,
    refresh: TokenRefresh,
    current_user: User = Depends(get_current_user),
    manager: TokenManager = Depends(get_token_manager)
):
    try:
        token = await manager.refresh(current_user.id, token_id, refresh.expires_in)
    except GuestDropError as e:
        raise http_error(e)
    return _summary(token)


@router.delete("/{token_id}")
async def delete_token(
    token_id: str,
    current_user: User = Depends(get_current_user),
    manager: TokenManager = Depends(get_token_manager)
):
    try:
        await manager.delete(current_user.id, token_id)
    except GuestDropError as e:
        raise http_error(e)
    return {"message": "Token deleted"}


@router.get("/{token_id}/analytics")
async def token_analytics(
    token_id: str,
    current_user: User = Depends(get_current_user),
    manager: TokenManager = Depends(get_token_manager)
):
    try:
        return await manager.analytics(current_user.id, token_id)
    except GuestDropError as e:
        raise http_error(e)


@router.get("/{token_id}/qr")
async def token_qr_code(
    token_id: str,
    format: str = Query("png"),
    download: bool = Query(False),
    current_user: User = Depends(get_current_user),
    manager: TokenManager = Depends(get_token_manager)
):
    try:
        content, media_type, token = await manager.qr_code(current_user.id, token_id, format)
    except GuestDropError as e:
        raise http_error(e)

    headers = {}
    if download:
        headers["Content-Disposition"] = f"attachment; filename=upload_qr_{slugify(token.name)}.{format.lower()}"
    return Response(content=content, media_type=media_type, headers=headers)
