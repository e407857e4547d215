"""
Guest upload admission and owner access to uploaded files
"""
import logging
import os
import tempfile
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from guestdrop.core.config import MAX_FILE_SIZE, MAX_FILES_PER_REQUEST
from guestdrop.core.database import get_repository
from guestdrop.core.dependencies import (
    get_admission_controller,
    get_current_user,
    get_durable_storage,
    get_temp_storage,
)
from guestdrop.models.schemas import AdmissionResponse, GuestUpload, QuotaInfo, UploadResult, UploadSummary
from guestdrop.models.upload import GuestInfo, IncomingFile, UploadState
from guestdrop.models.user import User
from guestdrop.repositories.base import Repository
from guestdrop.services import tokens
from guestdrop.services.admission import AdmissionController
from guestdrop.services.errors import GuestDropError, InvalidTokenFormat, TooManyFiles, UploadFailed
from guestdrop.storage.local import LocalStorage
from guestdrop.utils.helpers import get_file_extension
from .common import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["uploads"])


@router.post("/upload/{token}", response_model=AdmissionResponse)
async def upload_photos(
    token: str,
    photos: Optional[List[UploadFile]] = File(None),
    guest_name: str = Form("Anonymous"),
    guest_message: str = Form(""),
    controller: AdmissionController = Depends(get_admission_controller)
):
    """Guest upload against a shared token. No authentication."""
    photos = photos or []
    # Reject a malformed link before reading any upload bodies
    if not tokens.verify_shape(token):
        raise http_error(InvalidTokenFormat())
    if len(photos) > MAX_FILES_PER_REQUEST:
        raise http_error(TooManyFiles(f"Maximum {MAX_FILES_PER_REQUEST} files per upload"))

    files = []
    for photo in photos:
        # One byte past the limit is enough to reject an oversized file
        content = await photo.read(MAX_FILE_SIZE + 1)
        files.append(IncomingFile(
            filename=photo.filename or "",
            content_type=photo.content_type or "",
            content=content,
        ))

    try:
        result = await controller.admit(
            token,
            files,
            GuestInfo(guest_name=guest_name[:200], guest_message=guest_message[:1000]),
        )
    except GuestDropError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Unexpected upload failure: {e}")
        raise http_error(UploadFailed())

    return AdmissionResponse(
        message=f"Successfully uploaded {len(result.records)} photo(s)",
        uploads=[
            UploadResult(id=record.id, filename=record.original_name, status="pending")
            for record in result.records
        ],
        remaining_uploads=result.remaining_uploads,
        quota=QuotaInfo(**result.quota.to_dict()),
    )


@router.get("/uploads", response_model=List[UploadSummary])
async def list_uploads(
    current_user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository)
):
    records = await repo.list_records_by_user(current_user.id)
    return [
        UploadSummary(**{**record.model_dump(), "state": UploadState(record.state).value})
        for record in records
    ]


@router.get("/uploads/{upload_id}/file")
async def download_upload(
    upload_id: str,
    current_user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
    temp_storage: LocalStorage = Depends(get_temp_storage)
):
    record = await repo.get_upload_record(upload_id)
    if not record or record.user_id != current_user.id:
        raise HTTPException(status_code=404, detail="Upload not found")

    if record.state != UploadState.IN_DURABLE_STORAGE and await temp_storage.exists(record.filename):
        return FileResponse(
            temp_storage.path(record.filename),
            media_type=record.mime_type,
            filename=record.original_name
        )

    if not record.remote_handle:
        raise HTTPException(status_code=404, detail="File is not available")

    try:
        durable = get_durable_storage()
    except GuestDropError as e:
        raise http_error(e)

    fd, tmp_path = tempfile.mkstemp(suffix=f".{get_file_extension(record.original_name)}")
    os.close(fd)
    try:
        await durable.get(record.remote_handle, tmp_path)
    except Exception as e:
        os.remove(tmp_path)
        logger.error(f"Durable fetch failed for upload {upload_id}: {e}")
        raise HTTPException(status_code=502, detail="Could not fetch file from storage")

    return FileResponse(
        tmp_path,
        media_type=record.mime_type,
        filename=record.original_name,
        background=BackgroundTask(os.remove, tmp_path)
    )


@router.get("/uploads/{token}", response_model=List[GuestUpload])
async def list_token_uploads(
    token: str,
    controller: AdmissionController = Depends(get_admission_controller)
):
    """Public list of what guests have uploaded through a token"""
    try:
        upload_token = await controller.resolve_token(token)
    except GuestDropError as e:
        raise http_error(e)

    records = await controller.repo.list_records_by_token(upload_token.id)
    return [
        GuestUpload(**{**record.model_dump(), "state": UploadState(record.state).value})
        for record in records
    ]
