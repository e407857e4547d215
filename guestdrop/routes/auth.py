"""
Organizer authentication routes
"""
import logging

from fastapi import APIRouter, HTTPException, Depends

from guestdrop.core.dependencies import get_current_user, user_cache
from guestdrop.core.database import get_repository
from guestdrop.models.user import Token, User, UserLogin, UserRegister
from guestdrop.repositories.base import Repository
from guestdrop.services.auth import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _public(user) -> User:
    return User(**user.model_dump(exclude={"password_hash"}))


@router.post("/register", response_model=Token)
async def register(user_data: UserRegister, repo: Repository = Depends(get_repository)):
    existing = await repo.get_user_by_email(user_data.email)
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    user = await repo.create_user(
        email=user_data.email,
        name=user_data.name,
        password_hash=hash_password(user_data.password),
    )
    logger.info(f"Registered user {user.id}")
    access_token = create_access_token({"sub": user.id})
    return Token(access_token=access_token, user=_public(user))


@router.post("/login", response_model=Token)
async def login(credentials: UserLogin, repo: Repository = Depends(get_repository)):
    user = await repo.get_user_by_email(credentials.email)
    if not user or not verify_password(credentials.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    access_token = create_access_token({"sub": user.id})
    return Token(access_token=access_token, user=_public(user))


@router.get("/me", response_model=User)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/logout")
async def logout(current_user: User = Depends(get_current_user)):
    """Tokens are stateless; logging out only drops the cached user"""
    user_cache.invalidate(current_user.id)
    return {"message": "Logged out"}
