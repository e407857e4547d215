"""
Owner-side upload token management: minting, refresh, soft delete,
analytics and QR codes.
"""
import io
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import qrcode
import qrcode.image.svg
from pydantic import ValidationError

from guestdrop.core.config import DEFAULT_TOKEN_NAME, FRONTEND_URL, MAX_BULK_TOKENS
from guestdrop.models.schemas import TokenCreate
from guestdrop.models.upload import UploadState, UploadToken
from guestdrop.utils.helpers import is_past, utc_now
from . import tokens
from .errors import GuestDropError, NoActiveSubscription, TokenNotFound, TooManyTokens, UnsupportedQrFormat
from .subscriptions import subscription_status

logger = logging.getLogger(__name__)

QR_FORMATS = {
    "png": "image/png",
    "svg": "image/svg+xml",
}


class TokenManager:

    def __init__(self, repo, secret_key: str, frontend_url: str = FRONTEND_URL):
        self.repo = repo
        self.secret_key = secret_key
        self.frontend_url = frontend_url.rstrip('/')

    def upload_url(self, token_string: str) -> str:
        return f"{self.frontend_url}/upload/{token_string}"

    async def create(
        self,
        user_id: str,
        name: str = DEFAULT_TOKEN_NAME,
        max_uploads: int = 100,
        expires_in: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> UploadToken:
        now = now or utc_now()
        if not await self.repo.get_active_subscription(user_id, now):
            raise NoActiveSubscription()

        payload = tokens.new_signing_payload(user_id, name)
        token = UploadToken(
            id=payload["id"],
            user_id=user_id,
            token=tokens.mint(self.secret_key, payload),
            name=name,
            max_uploads=max_uploads,
            created_at=now,
            expires_at=now + timedelta(days=expires_in) if expires_in else None,
            signing_payload=tokens.canonical_json(payload),
        )
        await self.repo.create_token(token)
        logger.info(f"Created upload token {token.id} for user {user_id}")
        return token

    async def bulk_create(self, user_id: str, items: List[dict]) -> Tuple[List[UploadToken], List[dict]]:
        if len(items) > MAX_BULK_TOKENS:
            raise TooManyTokens(f"Maximum {MAX_BULK_TOKENS} tokens per request")

        created, errors = [], []
        for index, item in enumerate(items):
            try:
                token_data = TokenCreate(**item)
            except ValidationError as e:
                errors.append({"index": index, "error": e.errors()[0]["msg"]})
                continue
            try:
                created.append(await self.create(user_id, token_data.name, token_data.max_uploads, token_data.expires_in))
            except GuestDropError as e:
                errors.append({"index": index, "error": e.message})
        return created, errors

    async def get_owned(self, user_id: str, token_id: str) -> UploadToken:
        token = await self.repo.get_token_by_id(token_id)
        if not token or token.user_id != user_id or token.deleted_at:
            raise TokenNotFound("Token not found")
        return token

    async def list_for_user(self, user_id: str) -> List[UploadToken]:
        return await self.repo.list_tokens(user_id)

    async def refresh(self, user_id: str, token_id: str, expires_in: Optional[int] = None) -> UploadToken:
        """Give the token a new expiry counted from now; None removes the expiry"""
        await self.get_owned(user_id, token_id)
        expires_at = utc_now() + timedelta(days=expires_in) if expires_in else None
        await self.repo.update_token(token_id, expires_at=expires_at)
        return await self.repo.get_token_by_id(token_id)

    async def delete(self, user_id: str, token_id: str) -> None:
        await self.get_owned(user_id, token_id)
        await self.repo.soft_delete_token(token_id)
        logger.info(f"Soft-deleted upload token {token_id}")

    async def analytics(self, user_id: str, token_id: str) -> dict:
        token = await self.get_owned(user_id, token_id)
        records = await self.repo.list_records_by_token(token_id)

        by_state = {state.value: 0 for state in UploadState}
        for record in records:
            by_state[UploadState(record.state).value] += 1

        return {
            "token_id": token.id,
            "name": token.name,
            "max_uploads": token.max_uploads,
            "current_uploads": token.current_uploads,
            "remaining_uploads": max(0, token.max_uploads - token.current_uploads),
            "access_count": token.access_count,
            "is_expired": is_past(token.expires_at),
            "total_files": len(records),
            "total_bytes": sum(record.size for record in records),
            "unique_guests": len({record.guest_name for record in records}),
            "by_state": by_state,
            "last_upload_at": records[-1].created_at if records else None,
        }

    async def statistics(self, user_id: str) -> dict:
        user_tokens = await self.repo.list_tokens(user_id)
        now = utc_now()
        expired = {t.id for t in user_tokens if is_past(t.expires_at, now)}
        full = {t.id for t in user_tokens if t.current_uploads >= t.max_uploads}
        return {
            "total_tokens": len(user_tokens),
            "active_tokens": len([t for t in user_tokens if t.id not in expired | full]),
            "expired_tokens": len(expired),
            "full_tokens": len(full),
            "total_uploads": sum(t.current_uploads for t in user_tokens),
            "total_capacity": sum(t.max_uploads for t in user_tokens),
        }

    async def dashboard_stats(self, user_id: str) -> dict:
        """Organizer overview: tokens, uploads, storage and subscription"""
        user_tokens = await self.repo.list_tokens(user_id)
        records = await self.repo.list_records_by_user(user_id)
        usage = await self.repo.get_usage(user_id)
        subscription = await subscription_status(self.repo, user_id)

        now = utc_now()
        return {
            "total_tokens": len(user_tokens),
            "active_tokens": len([
                t for t in user_tokens
                if not is_past(t.expires_at, now) and t.current_uploads < t.max_uploads
            ]),
            "total_uploads": len(records),
            "pending_uploads": len([r for r in records if r.state == UploadState.PENDING_LOCAL]),
            "total_storage_used": usage.storage_bytes_used,
            "subscription_status": subscription["status"],
        }

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Soft-delete every expired token across all owners"""
        expired = await self.repo.list_expired_tokens(now or utc_now())
        for token in expired:
            await self.repo.soft_delete_token(token.id)
        if expired:
            logger.info(f"Soft-deleted {len(expired)} expired upload token(s)")
        return len(expired)

    async def qr_code(self, user_id: str, token_id: str, fmt: str = "png") -> Tuple[bytes, str, UploadToken]:
        fmt = fmt.lower()
        if fmt not in QR_FORMATS:
            raise UnsupportedQrFormat()

        token = await self.get_owned(user_id, token_id)

        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(self.upload_url(token.token))
        qr.make(fit=True)

        if fmt == "svg":
            img = qr.make_image(image_factory=qrcode.image.svg.SvgPathImage)
        else:
            img = qr.make_image(fill_color="black", back_color="white")

        img_buffer = io.BytesIO()
        img.save(img_buffer)

        await self.repo.increment_token_access(token.id)
        await self.repo.update_token(token.id, qr_generated_at=utc_now())
        return img_buffer.getvalue(), QR_FORMATS[fmt], token

