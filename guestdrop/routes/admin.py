"""
Admin login and relay operations
"""
import logging
import secrets

from fastapi import APIRouter, HTTPException, Depends

from guestdrop.core.config import ADMIN_USERNAME, ADMIN_PASSWORD
from guestdrop.core.database import get_repository
from guestdrop.core.dependencies import get_admin_user
from guestdrop.models.schemas import RelayPassSummary, RelayStatus
from guestdrop.models.upload import UploadState
from guestdrop.models.user import AdminLogin, AdminToken
from guestdrop.repositories.base import Repository
from guestdrop.services.auth import create_access_token
from guestdrop.tasks import background

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _require_worker():
    worker = background.get_worker()
    if worker is None:
        raise HTTPException(status_code=503, detail="Relay worker is not configured")
    return worker


@router.post("/login", response_model=AdminToken)
async def admin_login(credentials: AdminLogin):
    valid_user = secrets.compare_digest(credentials.username, ADMIN_USERNAME)
    valid_password = secrets.compare_digest(credentials.password, ADMIN_PASSWORD)
    if not (valid_user and valid_password):
        raise HTTPException(status_code=401, detail="Invalid admin credentials")

    access_token = create_access_token({"sub": "admin", "is_admin": True})
    return AdminToken(access_token=access_token)


@router.get("/relay/status", response_model=RelayStatus)
async def relay_status(
    admin: dict = Depends(get_admin_user),
    repo: Repository = Depends(get_repository)
):
    return RelayStatus(
        running=background.is_running(),
        last_pass=background.get_last_pass(),
        pending=await repo.count_records_by_state(UploadState.PENDING_LOCAL),
        failed=await repo.count_records_by_state(UploadState.FAILED),
    )


@router.post("/relay/run", response_model=RelayPassSummary)
async def run_relay_pass(admin: dict = Depends(get_admin_user)):
    """Run a pass now; 409 if one is already in progress"""
    _require_worker()
    summary = await background.trigger_relay_pass()
    if summary is None:
        raise HTTPException(status_code=409, detail="A relay pass is already running")
    logger.info(f"Manual relay pass: {summary.processed} processed, {summary.failed} failed")
    return summary


@router.post("/relay/retry-failed")
async def retry_failed_uploads(admin: dict = Depends(get_admin_user)):
    worker = _require_worker()
    requeued = await worker.retry_failed()
    return {"requeued": requeued}
