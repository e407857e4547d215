"""
FastAPI dependencies for authentication and shared services
"""
import logging
from typing import Optional

from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError

from guestdrop.models.user import User
from guestdrop.repositories.base import Repository
from guestdrop.services.admission import AdmissionController
from guestdrop.services.auth import decode_access_token
from guestdrop.services.cache import TTLCache
from guestdrop.services.token_manager import TokenManager
from guestdrop.storage import DurableStorage, LocalStorage, create_durable_storage
from guestdrop.utils.locks import KeyedLock
from .config import TOKEN_SECRET, UPLOAD_DIR, USER_CACHE_TTL
from .database import get_repository

logger = logging.getLogger(__name__)

security = HTTPBearer()

user_cache = TTLCache(ttl=USER_CACHE_TTL)
upload_locks = KeyedLock()

_temp_storage: Optional[LocalStorage] = None
_durable_storage: Optional[DurableStorage] = None


def get_temp_storage() -> LocalStorage:
    global _temp_storage
    if _temp_storage is None:
        _temp_storage = LocalStorage(UPLOAD_DIR)
    return _temp_storage


def get_durable_storage() -> DurableStorage:
    """Raises StorageNotConfigured when no durable backend is set up"""
    global _durable_storage
    if _durable_storage is None:
        _durable_storage = create_durable_storage()
    return _durable_storage


def get_admission_controller(
    repo: Repository = Depends(get_repository),
    temp_storage: LocalStorage = Depends(get_temp_storage),
) -> AdmissionController:
    return AdmissionController(repo, temp_storage, TOKEN_SECRET, upload_locks)


def get_token_manager(repo: Repository = Depends(get_repository)) -> TokenManager:
    return TokenManager(repo, TOKEN_SECRET)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    repo: Repository = Depends(get_repository),
) -> User:
    """Get current authenticated user from JWT token"""
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = user_cache.get(user_id)
    if user is None:
        found = await repo.get_user_by_id(user_id)
        if not found:
            raise HTTPException(status_code=401, detail="User not found")
        user = User(**found.model_dump(exclude={"password_hash"}))
        user_cache.set(user_id, user)
    return user


async def get_admin_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """Get admin user from JWT token"""
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin access required")
    return {"is_admin": True}
